"""
CapabilityCache - Thread-safe in-memory cache of contact capabilities.

Features:
- One entry per normalized contact URI
- Per-lookup TTL (capability lookups tolerate older entries than availability)
- Oldest-entry eviction at capacity
- Hit/miss/expired statistics
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable

from loguru import logger

from presence.request.types import (
    CacheLookup,
    CacheQueryStatus,
    CapabilityRecord,
    SourceType,
)
from presence.services.errors import CacheError
from presence.utils import normalize_contact_uri


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    record: CapabilityRecord
    timestamp: datetime

    def is_expired(self, ttl: timedelta) -> bool:
        """Check if entry is older than the given TTL."""
        return datetime.now() > self.timestamp + ttl


class CapabilityCache:
    """
    In-memory capability store consulted before any network query.

    Usage:
        cache = CapabilityCache(max_size=1000)
        cache.save([CapabilityRecord(contact_uri="tel:+15550100")])

        lookup = cache.lookup_one("tel:+15550100")
        if lookup.is_hit:
            return lookup.record
    """

    def __init__(
        self,
        max_size: int = 1000,
        capability_ttl: timedelta = timedelta(days=7),
        availability_ttl: timedelta = timedelta(seconds=60),
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._capability_ttl = capability_ttl
        self._availability_ttl = availability_ttl
        self._debug = debug
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def lookup_many(self, uris: Iterable[str]) -> dict[str, CacheLookup]:
        """
        Look up several contacts at once using the capability TTL.

        Returns a mapping from each requested URI (as given) to its lookup.
        """
        with self._lock:
            return {uri: self._lookup(uri, self._capability_ttl) for uri in uris}

    def lookup_one(self, uri: str) -> CacheLookup:
        """Look up a single contact using the availability TTL."""
        with self._lock:
            return self._lookup(uri, self._availability_ttl)

    def _lookup(self, uri: str, ttl: timedelta) -> CacheLookup:
        try:
            key = self._key(uri)
        except CacheError as e:
            self._stats.errors += 1
            logger.warning(f"[CapabilityCache] Lookup failed: {e}")
            return CacheLookup(contact_uri=str(uri), status=CacheQueryStatus.ERROR)

        entry = self._memory.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key}")
            return CacheLookup(contact_uri=key, status=CacheQueryStatus.NOT_FOUND)

        if entry.is_expired(ttl):
            self._stats.expired += 1
            self._log(f"EXPIRED: {key}")
            return CacheLookup(contact_uri=key, status=CacheQueryStatus.EXPIRED)

        self._stats.hits += 1
        self._log(f"HIT: {key}")
        record = entry.record.model_copy(update={"source_type": SourceType.CACHED})
        return CacheLookup(
            contact_uri=key, status=CacheQueryStatus.SUCCESSFUL, record=record
        )

    def save(self, records: Iterable[CapabilityRecord]) -> int:
        """
        Store records, replacing any existing entry for the same contact.

        Returns:
            Number of records stored
        """
        now = datetime.now()
        count = 0
        with self._lock:
            for record in records:
                key = record.contact_uri
                if len(self._memory) >= self._max_size and key not in self._memory:
                    self._evict_oldest()
                self._memory[key] = CacheEntry(record=record, timestamp=now)
                count += 1
                self._log(f"SET: {key} ({record.request_result.value})")
        return count

    def delete(self, uri: str) -> bool:
        """Delete a specific contact from the cache."""
        with self._lock:
            key = self._key(uri)
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key}")
                return True
            return False

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    def cleanup_expired(self) -> int:
        """Remove entries older than the capability TTL. Returns count removed."""
        with self._lock:
            expired_keys = [
                k
                for k, v in self._memory.items()
                if v.is_expired(self._capability_ttl)
            ]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def _evict_oldest(self) -> None:
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].timestamp,
        )
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key}")

    @staticmethod
    def _key(uri: str) -> str:
        try:
            return normalize_contact_uri(uri)
        except ValueError as e:
            raise CacheError(str(e), service_id="capability_cache") from e

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CapabilityCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    errors: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses + self.expired
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "errors": self.errors,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
