"""
Request-layer types: capability records, cache lookups, error codes and the
caller-facing callback protocol.
"""

from enum import Enum, IntEnum
from typing import Protocol

from pydantic import BaseModel, Field, field_validator

from presence.utils import normalize_contact_uri


class RequestType(IntEnum):
    """Kind of request; fixes how many contacts the cache is asked about."""

    CAPABILITY = 1
    AVAILABILITY = 2


class ErrorCode(IntEnum):
    """Error codes surfaced to the caller through on_error."""

    GENERIC_FAILURE = 1
    NOT_ENABLED = 2
    NOT_AVAILABLE = 3
    NOT_REGISTERED = 4
    NOT_AUTHORIZED = 5
    SERVER_UNAVAILABLE = 6
    REQUEST_TIMEOUT = 7
    INSUFFICIENT_MEMORY = 8
    LOST_NETWORK = 9
    FORBIDDEN = 10
    NOT_FOUND = 11


class NetworkResponseCode(IntEnum):
    """Response codes reported by the network phase."""

    OK = 200
    ACCEPTED = 202
    FORBIDDEN = 403
    NOT_FOUND = 404
    REQUEST_TIMEOUT = 408
    INTERVAL_TOO_BRIEF = 423
    TEMPORARILY_UNAVAILABLE = 480
    BUSY = 486
    SERVER_INTERNAL_ERROR = 500
    SERVICE_UNAVAILABLE = 503
    BUSY_EVERYWHERE = 600
    DECLINE = 603
    DOES_NOT_EXIST_ANYWHERE = 604


def error_code_from_network_response(code: int) -> ErrorCode:
    """Map a network response code onto the caller-facing error code."""
    if code == NetworkResponseCode.FORBIDDEN:
        return ErrorCode.FORBIDDEN
    if code in (
        NetworkResponseCode.NOT_FOUND,
        NetworkResponseCode.DOES_NOT_EXIST_ANYWHERE,
    ):
        return ErrorCode.NOT_FOUND
    if code == NetworkResponseCode.REQUEST_TIMEOUT:
        return ErrorCode.REQUEST_TIMEOUT
    if code in (
        NetworkResponseCode.TEMPORARILY_UNAVAILABLE,
        NetworkResponseCode.SERVICE_UNAVAILABLE,
    ):
        return ErrorCode.SERVER_UNAVAILABLE
    return ErrorCode.GENERIC_FAILURE


class SourceType(str, Enum):
    """Where a capability record came from."""

    CACHED = "CACHED"
    NETWORK = "NETWORK"


class RequestResult(str, Enum):
    """Outcome of resolving one contact."""

    CAPABLE = "CAPABLE"
    NOT_FOUND = "NOT_FOUND"
    NOT_ONLINE = "NOT_ONLINE"
    UNKNOWN = "UNKNOWN"


class CapabilityRecord(BaseModel):
    """Resolved presence/capability data for one contact."""

    contact_uri: str
    source_type: SourceType = SourceType.NETWORK
    request_result: RequestResult = RequestResult.CAPABLE
    features: list[str] = Field(default_factory=list)

    @field_validator("contact_uri")
    @classmethod
    def _normalize_uri(cls, value: str) -> str:
        return normalize_contact_uri(value)


class CacheQueryStatus(str, Enum):
    """Status of a single cache lookup."""

    SUCCESSFUL = "SUCCESSFUL"  # Hit
    NOT_FOUND = "NOT_FOUND"  # Miss
    EXPIRED = "EXPIRED"  # Entry older than the lookup TTL
    ERROR = "ERROR"  # Lookup could not be performed


class CacheLookup(BaseModel):
    """Result of looking up one contact in the capability cache."""

    contact_uri: str
    status: CacheQueryStatus
    record: CapabilityRecord | None = None

    @property
    def is_hit(self) -> bool:
        return self.status == CacheQueryStatus.SUCCESSFUL and self.record is not None


class CapabilitiesCallback(Protocol):
    """
    Sink receiving the results of one request.

    Calls are serialized under the response lock, so a sink may call back into
    the request on its own thread but must not block waiting on another thread
    that delivers to the same request.
    """

    def on_capabilities_received(self, records: list[CapabilityRecord]) -> None: ...

    def on_complete(self) -> None: ...

    def on_error(self, error_code: ErrorCode, retry_after_ms: int) -> None: ...
