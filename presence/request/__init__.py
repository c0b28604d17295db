"""
Capability request lifecycle: cache first, network for the rest, exactly one
terminal callback.
"""

from presence.request.types import (
    CacheLookup,
    CacheQueryStatus,
    CapabilitiesCallback,
    CapabilityRecord,
    ErrorCode,
    NetworkResponseCode,
    RequestResult,
    RequestType,
    SourceType,
)
from presence.request.response import CallbackCategory, CapabilityRequestResponse
from presence.request.request import (
    CapabilityQuery,
    CapabilityRequest,
    RequestManagerCallback,
    RequestState,
)
from presence.request.manager import RequestManager

__all__ = [
    # Types
    "CacheLookup",
    "CacheQueryStatus",
    "CapabilitiesCallback",
    "CapabilityRecord",
    "ErrorCode",
    "NetworkResponseCode",
    "RequestResult",
    "RequestType",
    "SourceType",
    # Response
    "CallbackCategory",
    "CapabilityRequestResponse",
    # Request
    "CapabilityQuery",
    "CapabilityRequest",
    "RequestManagerCallback",
    "RequestState",
    # Manager
    "RequestManager",
]
