"""
RequestManager - Creates, tracks and finishes capability requests for one
subscription.

Combines:
- CapabilityCache for cache-first resolution and network write-back
- ForbiddenState as the admission gate shared by every request
- A CapabilityQuery strategy for the network phase
"""

import threading
from typing import TYPE_CHECKING, Any, Iterable

from loguru import logger

from presence.request.request import CapabilityQuery, CapabilityRequest
from presence.request.types import (
    CacheLookup,
    CapabilitiesCallback,
    CapabilityRecord,
    RequestType,
)
from presence.services.admission import ForbiddenState, ForbiddenStatus

if TYPE_CHECKING:
    from presence.services.cache import CapabilityCache


class RequestManager:
    """
    Owns the task registry and the shared admission state of a subscription.

    Usage:
        manager = RequestManager(sub_id=1, cache=CapabilityCache(), query=query)

        task_id = manager.send_capability_request(
            ["tel:+15550100", "tel:+15550101"], callback
        )

        # Stop caring about the result
        manager.discard_request(task_id)
    """

    def __init__(
        self,
        sub_id: int,
        cache: "CapabilityCache",
        query: CapabilityQuery,
        forbidden_state: ForbiddenState | None = None,
    ):
        self.sub_id = sub_id
        self._cache = cache
        self._query = query
        self._forbidden_state = forbidden_state or ForbiddenState(f"sub{sub_id}")
        self._requests: dict[int, CapabilityRequest] = {}
        self._lock = threading.Lock()

    # Client surface

    def send_capability_request(
        self, uris: Iterable[str], callback: CapabilitiesCallback
    ) -> int:
        """
        Resolve the capabilities of the given contacts.

        Returns:
            Task id of the new request

        Raises:
            ValueError: If a contact URI is malformed
        """
        return self._send(RequestType.CAPABILITY, list(uris), callback)

    def send_availability_request(
        self, uri: str, callback: CapabilitiesCallback
    ) -> int:
        """Resolve the availability of a single contact. Returns the task id."""
        return self._send(RequestType.AVAILABILITY, [uri], callback)

    def _send(
        self,
        request_type: RequestType,
        uris: list[str],
        callback: CapabilitiesCallback,
    ) -> int:
        request = CapabilityRequest(self.sub_id, request_type, self, self._query)
        request.set_contact_uri(uris)
        request.set_capabilities_callback(callback)

        with self._lock:
            self._requests[request.task_id] = request
        logger.debug(
            f"[{self.sub_id}] Registered {request_type.name} request "
            f"taskId={request.task_id}, contacts={len(request.contact_uris)}"
        )

        request.execute()
        return request.task_id

    def get_request(self, task_id: int) -> CapabilityRequest | None:
        """Get a pending request by task id."""
        with self._lock:
            return self._requests.get(task_id)

    def get_pending_task_ids(self) -> list[int]:
        """Task ids of requests that have not finished yet."""
        with self._lock:
            return sorted(self._requests)

    def discard_request(self, task_id: int) -> bool:
        """
        Stop tracking a request; its later network callbacks become no-ops.

        Returns:
            True if the task was pending
        """
        with self._lock:
            request = self._requests.pop(task_id, None)
        if request is None:
            return False
        request.on_finish()
        logger.info(f"[{self.sub_id}] Discarded request taskId={task_id}")
        return True

    def close(self) -> None:
        """Finish every pending request."""
        with self._lock:
            requests = list(self._requests.values())
            self._requests.clear()
        for request in requests:
            request.on_finish()
        if requests:
            logger.info(f"[{self.sub_id}] Closed {len(requests)} pending requests")

    # Callbacks used by CapabilityRequest

    def is_request_forbidden(self) -> bool:
        return self._forbidden_state.read().is_forbidden

    def get_retry_after_millis(self) -> int:
        return self._forbidden_state.read().retry_after_ms

    def get_forbidden_status(self) -> ForbiddenStatus:
        return self._forbidden_state.read()

    def on_request_forbidden(self, forbidden: bool, retry_after_ms: int) -> None:
        logger.info(
            f"[{self.sub_id}] Request forbidden={forbidden}, retry after {retry_after_ms}ms"
        )
        self._forbidden_state.set_forbidden(forbidden, retry_after_ms)

    def on_request_finished(self, task_id: int) -> None:
        with self._lock:
            request = self._requests.pop(task_id, None)
        if request is None:
            logger.debug(f"[{self.sub_id}] Finished taskId={task_id} was not registered")
            return
        request.on_finish()
        logger.debug(f"[{self.sub_id}] Request taskId={task_id} finished")

    def save_capabilities(self, records: list[CapabilityRecord]) -> None:
        self._cache.save(records)

    def get_capabilities_from_cache(self, uris: list[str]) -> list[CacheLookup]:
        return list(self._cache.lookup_many(uris).values())

    def get_availability_from_cache(self, uri: str) -> CacheLookup:
        return self._cache.lookup_one(uri)

    def get_status(self) -> dict[str, Any]:
        """Get manager status as dictionary."""
        with self._lock:
            pending = sorted(self._requests)
        return {
            "sub_id": self.sub_id,
            "pending_requests": pending,
            "admission": self._forbidden_state.get_status(),
            "cache": self._cache.get_stats().to_dict(),
        }
