"""
CapabilityRequest - Resolves the capabilities of a batch of contacts, cache
first, network for the rest.

Lifecycle:
- CREATED: Contacts and callback are being configured
- EXECUTING: Cache phase done, waiting on the network phase
- FINISHED: A terminal callback fired or the manager finished the request

Transitions:
- CREATED → EXECUTING: execute() passed the admission check
- CREATED/EXECUTING → FINISHED: handle_request_failed, handle_request_completed
  or on_finish, whichever comes first; the others become no-ops
"""

import threading
from enum import Enum
from typing import Iterable, Protocol

from loguru import logger

from presence.request.response import CapabilityRequestResponse
from presence.request.types import (
    CacheLookup,
    CapabilitiesCallback,
    CapabilityRecord,
    ErrorCode,
    NetworkResponseCode,
    RequestType,
)
from presence.services.admission import ForbiddenStatus
from presence.utils import generate_task_id, normalize_contact_uri


class RequestManagerCallback(Protocol):
    """What a request needs from the manager that owns it."""

    def is_request_forbidden(self) -> bool: ...

    def get_retry_after_millis(self) -> int: ...

    def get_forbidden_status(self) -> ForbiddenStatus: ...

    def on_request_forbidden(self, forbidden: bool, retry_after_ms: int) -> None: ...

    def on_request_finished(self, task_id: int) -> None: ...

    def save_capabilities(self, records: list[CapabilityRecord]) -> None: ...

    def get_capabilities_from_cache(self, uris: list[str]) -> list[CacheLookup]: ...

    def get_availability_from_cache(self, uri: str) -> CacheLookup: ...


class CapabilityQuery(Protocol):
    """Network phase strategy; results flow back through the request's hooks."""

    def request_capabilities(
        self, request: "CapabilityRequest", uris: list[str]
    ) -> None: ...


class RequestState(str, Enum):
    CREATED = "CREATED"
    EXECUTING = "EXECUTING"
    FINISHED = "FINISHED"


class CapabilityRequest:
    """
    One capability or availability request.

    Usage:
        request = CapabilityRequest(sub_id, RequestType.CAPABILITY, manager, query)
        request.set_contact_uri(["tel:+15550100", "tel:+15550101"])
        request.set_capabilities_callback(callback)
        request.execute()
    """

    def __init__(
        self,
        sub_id: int,
        request_type: RequestType,
        manager: RequestManagerCallback,
        query: CapabilityQuery,
        response: CapabilityRequestResponse | None = None,
    ):
        self._sub_id = sub_id
        self._request_type = request_type
        self._manager = manager
        self._query = query
        self._response = response or CapabilityRequestResponse()
        self._task_id = generate_task_id()

        self._uris: tuple[str, ...] = ()
        self._state = RequestState.CREATED
        self._state_lock = threading.Lock()

    @property
    def task_id(self) -> int:
        return self._task_id

    @property
    def sub_id(self) -> int:
        return self._sub_id

    @property
    def request_type(self) -> RequestType:
        return self._request_type

    @property
    def contact_uris(self) -> tuple[str, ...]:
        return self._uris

    @property
    def response(self) -> CapabilityRequestResponse:
        return self._response

    @property
    def state(self) -> RequestState:
        with self._state_lock:
            return self._state

    @property
    def is_finished(self) -> bool:
        return self.state == RequestState.FINISHED

    def on_finish(self) -> None:
        """Mark this request finished. Safe to call more than once."""
        with self._state_lock:
            self._state = RequestState.FINISHED

    def set_contact_uri(self, uris: Iterable[str]) -> None:
        """
        Set the contacts this request resolves.

        URIs are normalized and duplicates dropped, keeping the first
        occurrence. Must be called before execute().
        """
        normalized: list[str] = []
        for uri in uris:
            value = normalize_contact_uri(uri)
            if value not in normalized:
                normalized.append(value)
        self._uris = tuple(normalized)

    def set_capabilities_callback(self, callback: CapabilitiesCallback) -> None:
        """Set the callback receiving this request's results."""
        self._response.set_capabilities_callback(callback)

    def execute(self) -> None:
        """Start executing this request."""
        with self._state_lock:
            if self._state == RequestState.EXECUTING:
                self._logw("execute: The request is already executing")
                return
            if self._state == RequestState.FINISHED:
                self._logw("execute: This request is finished")
                return
            allowed = self._is_request_allowed()
            if allowed:
                self._state = RequestState.EXECUTING

        if not allowed:
            self._logd("execute: The request is not allowed to execute.")
            self.handle_request_failed(True)
            return

        cached = self._get_capabilities_from_cache()
        self._logd(f"execute: cached capabilities={len(cached)}")

        # Terminate this request if the cached capabilities cannot be delivered.
        if not self._handle_cached_capabilities(cached):
            self._response.set_request_internal_error(ErrorCode.GENERIC_FAILURE)
            self.handle_request_failed(True)
            return

        request_uris = self.get_requesting_from_network_uris(cached)
        self._logd(f"execute: requesting from network size={len(request_uris)}")

        if not request_uris:
            self.handle_request_completed(True)
        else:
            self._request_capabilities(request_uris)

    def _is_request_allowed(self) -> bool:
        # Caller holds the state lock.
        if not self._uris:
            self._logw("is_request_allowed: uri is empty")
            self._response.set_request_internal_error(ErrorCode.GENERIC_FAILURE)
            return False

        status = self._manager.get_forbidden_status()
        if status.is_forbidden:
            self._logw(
                f"is_request_allowed: The request is forbidden, retry={status.retry_after_ms}"
            )
            self._response.set_request_internal_error(
                ErrorCode.FORBIDDEN, status.retry_after_ms
            )
            return False
        return True

    def _get_capabilities_from_cache(self) -> list[CapabilityRecord]:
        lookups: list[CacheLookup] = []
        if self._request_type == RequestType.CAPABILITY:
            lookups = self._manager.get_capabilities_from_cache(list(self._uris))
        elif self._request_type == RequestType.AVAILABILITY:
            # Availability is always about the first contact only.
            lookups = [self._manager.get_availability_from_cache(self._uris[0])]

        return [lookup.record for lookup in lookups if lookup.is_hit]

    def get_requesting_from_network_uris(
        self, cached_capabilities: list[CapabilityRecord]
    ) -> list[str]:
        """Contacts that the cache could not satisfy, in request order."""
        cached_uris = {record.contact_uri for record in cached_capabilities}
        return [uri for uri in self._uris if uri not in cached_uris]

    def _handle_cached_capabilities(self, cached: list[CapabilityRecord]) -> bool:
        return self._response.trigger_cached_capabilities_callback(cached)

    def handle_capabilities_updated(self) -> bool:
        """
        Save the capabilities the network reported and deliver them.

        Records are still saved once the request is finished, but not delivered.

        Returns:
            False if delivering to the callback failed
        """
        updated = self._response.get_updated_capabilities()
        self._logd(f"handle_capabilities_updated: size={len(updated)}")

        if updated:
            self._manager.save_capabilities(updated)
            if self.is_finished:
                return True
            return self._response.trigger_capabilities_callback(updated)
        return True

    def handle_resource_terminated(self) -> bool:
        """
        Save the contacts the network reported as terminated and deliver them.

        Records are still saved once the request is finished, but not delivered.

        Returns:
            False if delivering to the callback failed
        """
        terminated = self._response.get_terminated_resources()
        self._logd(f"handle_resource_terminated: size={len(terminated)}")

        if terminated:
            self._manager.save_capabilities(terminated)
            if self.is_finished:
                return True
            return self._response.trigger_resource_terminated_callback(terminated)
        return True

    def handle_request_failed(self, notify_manager: bool) -> None:
        """
        End this request with on_error.

        A forbidden network response escalates the shared admission state even
        when the request was already finished by another path.
        """
        self._check_request_forbidden()

        if not self._claim_finish():
            self._logd("handle_request_failed: request already finished")
            return

        self._logd(f"handle_request_failed: {self._response}, notify={notify_manager}")
        self._response.trigger_error_callback()

        if notify_manager:
            self._manager.on_request_finished(self._task_id)

    def _check_request_forbidden(self) -> None:
        if self._response.network_response_code == NetworkResponseCode.FORBIDDEN:
            retry_after = self._response.retry_after_millis
            self._manager.on_request_forbidden(True, retry_after)

    def handle_request_completed(self, notify_manager: bool) -> None:
        """End this request with on_complete."""
        if not self._claim_finish():
            self._logd("handle_request_completed: request already finished")
            return

        self._logd(f"handle_request_completed: notify={notify_manager}")
        self._response.trigger_completed_callback()

        if notify_manager:
            self._manager.on_request_finished(self._task_id)

    def _claim_finish(self) -> bool:
        """Move to FINISHED. Returns False if another path got there first."""
        with self._state_lock:
            if self._state == RequestState.FINISHED:
                return False
            self._state = RequestState.FINISHED
            return True

    def _request_capabilities(self, uris: list[str]) -> None:
        self._query.request_capabilities(self, uris)

    def _logd(self, message: str) -> None:
        logger.debug(f"{self._log_prefix()}{message}")

    def _logw(self, message: str) -> None:
        logger.warning(f"{self._log_prefix()}{message}")

    def _log_prefix(self) -> str:
        return f"[{self._sub_id}][taskId={self._task_id}] "

    def __repr__(self) -> str:
        return (
            f"CapabilityRequest(task_id={self._task_id}, type={self._request_type.name}, "
            f"contacts={len(self._uris)}, state={self.state.value})"
        )
