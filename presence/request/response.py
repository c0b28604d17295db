"""
CapabilityRequestResponse - Accumulates the results of one capability request
and delivers them to the caller's callback.

Callback categories:
- CACHED: records satisfied by the cache (one-shot)
- UPDATED: records learned from the network (each distinct record once)
- TERMINATED: records the network reported as withdrawn (each distinct record once)
- ERROR / COMPLETED: terminal, one-shot, mutually exclusive

Every trigger is safe to call concurrently from the caller thread and from
network threads. Sink calls are serialized and nothing is delivered once a
terminal category has fired.
"""

import threading
from enum import Enum
from typing import Callable, Iterable

from loguru import logger

from presence.request.types import (
    CapabilitiesCallback,
    CapabilityRecord,
    ErrorCode,
    error_code_from_network_response,
)


class CallbackCategory(str, Enum):
    """Kinds of notification delivered to the caller."""

    CACHED = "CACHED"
    UPDATED = "UPDATED"
    TERMINATED = "TERMINATED"
    ERROR = "ERROR"
    COMPLETED = "COMPLETED"


ONE_SHOT_CATEGORIES = frozenset(
    {CallbackCategory.CACHED, CallbackCategory.ERROR, CallbackCategory.COMPLETED}
)
TERMINAL_CATEGORIES = frozenset({CallbackCategory.ERROR, CallbackCategory.COMPLETED})


class _Delivery(str, Enum):
    DELIVERED = "DELIVERED"
    SKIPPED = "SKIPPED"  # Already fired or request already terminated
    FAILED = "FAILED"


class CapabilityRequestResponse:
    """
    Per-request result aggregator with trigger-once semantics.

    Usage:
        response = CapabilityRequestResponse()
        response.set_capabilities_callback(callback)

        response.add_updated_capabilities(records_from_network)
        updated = response.get_updated_capabilities()  # read-and-clear
        response.trigger_capabilities_callback(updated)

        response.trigger_completed_callback()
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._callback: CapabilitiesCallback | None = None

        # Errors
        self._request_internal_error: ErrorCode | None = None
        self._internal_retry_after_ms = 0
        self._network_response_code: int | None = None
        self._reason_phrase = ""
        self._network_retry_after_ms = 0

        # Latest known record per contact, merged across cache and network
        self._contact_caps: dict[str, CapabilityRecord] = {}
        # Records already handed to the callback, per contact
        self._delivered: dict[str, CapabilityRecord] = {}
        self._pending_updated: dict[str, CapabilityRecord] = {}
        self._pending_terminated: dict[str, CapabilityRecord] = {}

        self._fired: set[CallbackCategory] = set()
        self._terminal: CallbackCategory | None = None

    def set_capabilities_callback(self, callback: CapabilitiesCallback) -> None:
        """Attach the sink that receives this request's results."""
        with self._lock:
            self._callback = callback

    # Error state

    def set_request_internal_error(
        self, error_code: ErrorCode, retry_after_ms: int = 0
    ) -> None:
        """Record an error detected locally (admission, delivery)."""
        with self._lock:
            if self._terminal is not None:
                logger.debug(
                    f"Ignoring error {error_code.name}, request already {self._terminal.value}"
                )
                return
            self._request_internal_error = error_code
            self._internal_retry_after_ms = retry_after_ms

    def set_network_response(
        self, code: int, reason: str = "", retry_after_ms: int = 0
    ) -> None:
        """Record the response code the network phase received."""
        with self._lock:
            self._network_response_code = code
            self._reason_phrase = reason
            self._network_retry_after_ms = retry_after_ms

    @property
    def network_response_code(self) -> int | None:
        with self._lock:
            return self._network_response_code

    @property
    def reason_phrase(self) -> str:
        with self._lock:
            return self._reason_phrase

    @property
    def retry_after_millis(self) -> int:
        with self._lock:
            if self._request_internal_error is not None:
                return self._internal_retry_after_ms
            return self._network_retry_after_ms

    def get_error_code(self) -> ErrorCode:
        """
        Error code reported through on_error.

        A locally recorded error wins over the network response; a request
        that failed without any recorded cause reports GENERIC_FAILURE.
        """
        with self._lock:
            if self._request_internal_error is not None:
                return self._request_internal_error
            code = self._network_response_code
            if code is not None and code >= 300:
                return error_code_from_network_response(code)
            return ErrorCode.GENERIC_FAILURE

    # Accumulated records

    def add_updated_capabilities(self, records: Iterable[CapabilityRecord]) -> int:
        """
        Merge records received from the network.

        Returns:
            Number of records queued for delivery (unchanged records are not)
        """
        return self._add(records, self._pending_updated)

    def add_terminated_resources(self, records: Iterable[CapabilityRecord]) -> int:
        """Merge records the network reported as terminated."""
        return self._add(records, self._pending_terminated)

    def _add(
        self,
        records: Iterable[CapabilityRecord],
        pending: dict[str, CapabilityRecord],
    ) -> int:
        queued = 0
        with self._lock:
            for record in records:
                uri = record.contact_uri
                self._contact_caps[uri] = record
                if self._delivered.get(uri) == record:
                    pending.pop(uri, None)
                    continue
                pending[uri] = record
                queued += 1
        return queued

    def get_updated_capabilities(self) -> list[CapabilityRecord]:
        """Return and clear the records updated since the last call."""
        with self._lock:
            records = list(self._pending_updated.values())
            self._pending_updated.clear()
            return records

    def get_terminated_resources(self) -> list[CapabilityRecord]:
        """Return and clear the records terminated since the last call."""
        with self._lock:
            records = list(self._pending_terminated.values())
            self._pending_terminated.clear()
            return records

    def get_contact_capabilities(self) -> dict[str, CapabilityRecord]:
        """Snapshot of the latest known record per contact."""
        with self._lock:
            return dict(self._contact_caps)

    # Triggers

    def trigger_cached_capabilities_callback(
        self, records: list[CapabilityRecord]
    ) -> bool:
        """Deliver the records found in the cache. Fires at most once."""
        with self._lock:
            for record in records:
                self._contact_caps.setdefault(record.contact_uri, record)
            if not records:
                self._fired.add(CallbackCategory.CACHED)
                return True
            result = self._trigger(
                CallbackCategory.CACHED,
                lambda cb: cb.on_capabilities_received(list(records)),
            )
            if result == _Delivery.DELIVERED:
                self._mark_delivered(records)
            return result != _Delivery.FAILED

    def trigger_capabilities_callback(self, records: list[CapabilityRecord]) -> bool:
        """Deliver records learned from the network."""
        return self._trigger_records(CallbackCategory.UPDATED, records)

    def trigger_resource_terminated_callback(
        self, records: list[CapabilityRecord]
    ) -> bool:
        """Deliver records the network reported as terminated."""
        return self._trigger_records(CallbackCategory.TERMINATED, records)

    def trigger_error_callback(self) -> bool:
        """Deliver on_error with the current error code. Fires at most once."""
        with self._lock:
            error_code = self.get_error_code()
            retry_after_ms = self.retry_after_millis
            result = self._trigger(
                CallbackCategory.ERROR,
                lambda cb: cb.on_error(error_code, retry_after_ms),
            )
            return result != _Delivery.FAILED

    def trigger_completed_callback(self) -> bool:
        """Deliver on_complete. Fires at most once."""
        with self._lock:
            result = self._trigger(
                CallbackCategory.COMPLETED, lambda cb: cb.on_complete()
            )
            return result != _Delivery.FAILED

    def _trigger_records(
        self, category: CallbackCategory, records: list[CapabilityRecord]
    ) -> bool:
        if not records:
            return True
        with self._lock:
            fresh = [r for r in records if self._delivered.get(r.contact_uri) != r]
            if not fresh:
                return True
            result = self._trigger(
                category, lambda cb: cb.on_capabilities_received(fresh)
            )
            if result == _Delivery.DELIVERED:
                self._mark_delivered(fresh)
            return result != _Delivery.FAILED

    def _trigger(
        self,
        category: CallbackCategory,
        deliver: Callable[[CapabilitiesCallback], None],
    ) -> _Delivery:
        with self._lock:
            if self._terminal is not None:
                logger.debug(
                    f"Skip {category.value} callback, request already {self._terminal.value}"
                )
                return _Delivery.SKIPPED
            if category in ONE_SHOT_CATEGORIES and category in self._fired:
                logger.debug(f"Skip {category.value} callback, already fired")
                return _Delivery.SKIPPED

            self._fired.add(category)
            if category in TERMINAL_CATEGORIES:
                self._terminal = category

            if self._callback is None:
                logger.warning(f"No callback to deliver {category.value} to")
                return _Delivery.FAILED

            try:
                deliver(self._callback)
            except Exception as e:
                logger.warning(
                    f"Delivering {category.value} callback failed: {type(e).__name__}: {e}"
                )
                return _Delivery.FAILED
            return _Delivery.DELIVERED

    def _mark_delivered(self, records: Iterable[CapabilityRecord]) -> None:
        for record in records:
            self._delivered[record.contact_uri] = record

    @property
    def fired_categories(self) -> frozenset[CallbackCategory]:
        with self._lock:
            return frozenset(self._fired)

    @property
    def terminal_category(self) -> CallbackCategory | None:
        with self._lock:
            return self._terminal

    @property
    def is_terminated(self) -> bool:
        return self.terminal_category is not None

    def __str__(self) -> str:
        with self._lock:
            return (
                f"CapabilityRequestResponse(internal_error={self._request_internal_error}, "
                f"network_response={self._network_response_code} {self._reason_phrase!r}, "
                f"retry_after_ms={self.retry_after_millis}, "
                f"contacts={len(self._contact_caps)}, "
                f"fired={sorted(c.value for c in self._fired)})"
            )
