"""
HttpCapabilityQuery - Network phase that asks a presence server over HTTP.

Each delegated request is served on its own worker thread:
- POST {base_url}/capabilities with the contacts still unresolved
- Feed the returned records into the request's response
- Drive the request to completion or failure through its hooks
"""

import threading
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from presence.request.types import (
    CapabilityRecord,
    ErrorCode,
    NetworkResponseCode,
    RequestType,
    SourceType,
)
from presence.services.errors import (
    NetworkQueryError,
    RequestForbiddenError,
    RequestTimeoutError,
    ServiceError,
)

if TYPE_CHECKING:
    from presence.request.request import CapabilityRequest


def parse_retry_after(value: str | None) -> int:
    """Convert a Retry-After header (seconds) into milliseconds."""
    if not value:
        return 0
    try:
        return max(0, int(float(value) * 1000))
    except ValueError:
        return 0


class HttpCapabilityQuery:
    """
    Capability query strategy backed by an HTTP presence server.

    Usage:
        query = HttpCapabilityQuery("https://presence.example.com", timeout=10.0)
        manager = RequestManager(sub_id=1, cache=cache, query=query)
        ...
        query.close()
    """

    service_id = "presence_server"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )
        self._workers: dict[int, threading.Thread] = {}
        self._lock = threading.Lock()

    def request_capabilities(
        self, request: "CapabilityRequest", uris: list[str]
    ) -> None:
        """Start the network phase for the given contacts and return."""
        worker = threading.Thread(
            target=self._run,
            args=(request, list(uris)),
            name=f"capability-query-{request.task_id}",
            daemon=True,
        )
        with self._lock:
            self._workers[request.task_id] = worker
        worker.start()
        logger.debug(
            f"[taskId={request.task_id}] Capability query started for {len(uris)} contacts"
        )

    def _run(self, request: "CapabilityRequest", uris: list[str]) -> None:
        try:
            self._process(request, uris)
        finally:
            with self._lock:
                self._workers.pop(request.task_id, None)

    def _process(self, request: "CapabilityRequest", uris: list[str]) -> None:
        response = request.response
        try:
            data = self._execute_query(request.request_type, uris)
        except NetworkQueryError as e:
            response.set_network_response(e.status_code, e.reason, e.retry_after_ms)
            request.handle_request_failed(True)
            return
        except RequestTimeoutError as e:
            logger.warning(str(e))
            response.set_request_internal_error(ErrorCode.REQUEST_TIMEOUT)
            request.handle_request_failed(True)
            return
        except ServiceError as e:
            logger.warning(str(e))
            response.set_request_internal_error(ErrorCode.LOST_NETWORK)
            request.handle_request_failed(True)
            return

        response.set_network_response(NetworkResponseCode.OK)
        response.add_updated_capabilities(data["capabilities"])
        response.add_terminated_resources(data["terminated"])

        if not request.handle_capabilities_updated():
            response.set_request_internal_error(ErrorCode.GENERIC_FAILURE)
            request.handle_request_failed(True)
            return
        if not request.handle_resource_terminated():
            response.set_request_internal_error(ErrorCode.GENERIC_FAILURE)
            request.handle_request_failed(True)
            return
        request.handle_request_completed(True)

    def _execute_query(
        self, request_type: RequestType, uris: list[str]
    ) -> dict[str, list[CapabilityRecord]]:
        """Execute the HTTP exchange and parse the records."""
        payload = {
            "type": request_type.name.lower(),
            "contacts": uris,
        }
        try:
            resp = self._client.post(
                f"{self._base_url}/capabilities",
                json=payload,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.service_id, self._timeout) from e
        except httpx.RequestError as e:
            raise ServiceError(str(e), service_id=self.service_id) from e

        retry_after_ms = parse_retry_after(resp.headers.get("Retry-After"))
        if resp.status_code == NetworkResponseCode.FORBIDDEN:
            raise RequestForbiddenError(self.service_id, retry_after_ms)
        if resp.status_code >= 300:
            raise NetworkQueryError(
                self.service_id,
                resp.status_code,
                reason=resp.reason_phrase,
                retry_after_ms=retry_after_ms,
            )

        try:
            body: dict[str, Any] = resp.json()
            return {
                "capabilities": self._parse_records(body.get("capabilities", [])),
                "terminated": self._parse_records(body.get("terminated", [])),
            }
        except ValueError as e:
            raise ServiceError(
                f"Malformed capability response: {e}", service_id=self.service_id
            ) from e

    @staticmethod
    def _parse_records(items: list[dict[str, Any]]) -> list[CapabilityRecord]:
        return [
            CapabilityRecord.model_validate({**item, "source_type": SourceType.NETWORK})
            for item in items
        ]

    def get_in_flight_count(self) -> int:
        """Number of queries whose worker has not finished."""
        with self._lock:
            return len(self._workers)

    def join(self, timeout: float | None = None) -> None:
        """Wait for in-flight workers to finish."""
        with self._lock:
            workers = list(self._workers.values())
        for worker in workers:
            worker.join(timeout)

    def close(self) -> None:
        """Wait for workers and close the HTTP client."""
        self.join(self._timeout)
        self._client.close()
        logger.debug("HttpCapabilityQuery closed")
