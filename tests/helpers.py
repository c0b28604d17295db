"""Test doubles and record builders shared by the test modules."""

from presence.request import (
    CacheLookup,
    CapabilityRecord,
    CapabilityRequest,
    RequestResult,
    SourceType,
)
from presence.services import CapabilityCache, ForbiddenState, ForbiddenStatus

A = "tel:+15550100"
B = "tel:+15550101"
C = "tel:+15550102"


def make_record(
    uri: str,
    result: RequestResult = RequestResult.CAPABLE,
    features: list[str] | None = None,
    source: SourceType = SourceType.NETWORK,
) -> CapabilityRecord:
    return CapabilityRecord(
        contact_uri=uri,
        request_result=result,
        features=features if features is not None else ["chat"],
        source_type=source,
    )


class FakeManager:
    """RequestManagerCallback backed by a real cache and admission state, recording calls."""

    def __init__(self, cache: CapabilityCache | None = None):
        self.cache = cache or CapabilityCache()
        self.forbidden_state = ForbiddenState("test")
        self.capability_lookups: list[list[str]] = []
        self.availability_lookups: list[str] = []
        self.saved: list[list[CapabilityRecord]] = []
        self.finished: list[int] = []
        self.forbidden_calls: list[tuple[bool, int]] = []

    def is_request_forbidden(self) -> bool:
        return self.forbidden_state.read().is_forbidden

    def get_retry_after_millis(self) -> int:
        return self.forbidden_state.read().retry_after_ms

    def get_forbidden_status(self) -> ForbiddenStatus:
        return self.forbidden_state.read()

    def on_request_forbidden(self, forbidden: bool, retry_after_ms: int) -> None:
        self.forbidden_calls.append((forbidden, retry_after_ms))
        self.forbidden_state.set_forbidden(forbidden, retry_after_ms)

    def on_request_finished(self, task_id: int) -> None:
        self.finished.append(task_id)

    def save_capabilities(self, records: list[CapabilityRecord]) -> None:
        self.saved.append(list(records))
        self.cache.save(records)

    def get_capabilities_from_cache(self, uris: list[str]) -> list[CacheLookup]:
        self.capability_lookups.append(list(uris))
        return list(self.cache.lookup_many(uris).values())

    def get_availability_from_cache(self, uri: str) -> CacheLookup:
        self.availability_lookups.append(uri)
        return self.cache.lookup_one(uri)

    @property
    def cache_accessed(self) -> bool:
        return bool(self.capability_lookups or self.availability_lookups)


class RecordingQuery:
    """Network phase that only records what it was asked for."""

    def __init__(self):
        self.calls: list[tuple[CapabilityRequest, list[str]]] = []

    def request_capabilities(self, request: CapabilityRequest, uris: list[str]) -> None:
        self.calls.append((request, list(uris)))
