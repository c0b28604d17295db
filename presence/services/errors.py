"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class NetworkQueryError(ServiceError):
    """The network rejected a capability query."""

    def __init__(
        self,
        service_id: str,
        status_code: int,
        reason: str = "",
        retry_after_ms: int = 0,
    ):
        self.status_code = status_code
        self.reason = reason
        self.retry_after_ms = retry_after_ms
        msg = f"Capability query to '{service_id}' failed with {status_code}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, service_id=service_id)


class RequestForbiddenError(NetworkQueryError):
    """The network throttled the caller."""

    def __init__(self, service_id: str, retry_after_ms: int = 0):
        super().__init__(
            service_id, 403, reason="Forbidden", retry_after_ms=retry_after_ms
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )
