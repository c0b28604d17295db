"""
Service layer infrastructure - collaborators of the capability request.

Provides:
- CapabilityCache: In-memory capability store with per-lookup TTL
- ForbiddenState: Admission gate shared by every request
- HttpCapabilityQuery: Network phase against an HTTP presence server
"""

from presence.services.errors import (
    ServiceError,
    CacheError,
    NetworkQueryError,
    RequestForbiddenError,
    RequestTimeoutError,
)
from presence.services.cache import CapabilityCache, CacheEntry, CacheStats
from presence.services.admission import ForbiddenState, ForbiddenStatus
from presence.services.network import HttpCapabilityQuery

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "NetworkQueryError",
    "RequestForbiddenError",
    "RequestTimeoutError",
    # Cache
    "CapabilityCache",
    "CacheEntry",
    "CacheStats",
    # Admission
    "ForbiddenState",
    "ForbiddenStatus",
    # Network
    "HttpCapabilityQuery",
]
