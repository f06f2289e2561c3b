"""
Bounded in-memory key/value store with per-entry TTL.

Eviction is by insertion age, not by access: when an insert would push the
store past its capacity, expired entries are swept and then the oldest
quarter of capacity is dropped in one go.
"""
import heapq
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .core import CacheEntry

logger = logging.getLogger("cache.entry_store")

# Marker for "no value" so that None can be cached.
MISSING = object()


class EntryStore:
    """
    Thread-safe TTL map with oldest-insertion-first eviction.

    Usage:
        store = EntryStore(max_size=100)
        store.set("services:v1:service:abc", service, ttl=3600)
        value = store.get("services:v1:service:abc")
        if value is MISSING:
            ...
    """

    def __init__(
        self,
        max_size: int = 200,
        eviction_fraction: float = 0.25,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            max_size: Maximum number of entries held at once
            eviction_fraction: Share of capacity dropped by one eviction sweep
            clock: Time source in seconds, injectable for tests
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._evict_count = max(1, int(max_size * eviction_fraction))
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "evictions": 0,
        }

    def get(self, key: str) -> Any:
        """
        Return the cached value, or MISSING if absent or expired.

        Expired entries are removed on the way out.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return MISSING
            if not entry.is_valid(now):
                del self._entries[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                logger.debug(f"Expired entry dropped: {key} [age={entry.age(now):.1f}s]")
                return MISSING
            self._stats["hits"] += 1
            return entry.value

    def peek(self, key: str) -> Any:
        """Like get(), but without touching stats or purging."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_valid(now):
                return MISSING
            return entry.value

    def contains(self, key: str) -> bool:
        """True if a valid entry exists."""
        return self.peek(key) is not MISSING

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Insert or overwrite an entry, sweeping first if the store is full."""
        now = self._clock()
        with self._lock:
            # Re-inserting moves the key to the end of insertion order.
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_size:
                self._sweep(now)
            self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, ttl=ttl)

    def _sweep(self, now: float) -> None:
        """Drop expired entries, then the oldest slice if still at capacity. Lock held."""
        expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
        for key in expired:
            del self._entries[key]
        self._stats["expired"] += len(expired)

        if len(self._entries) < self.max_size:
            return

        oldest = heapq.nsmallest(
            self._evict_count,
            self._entries.values(),
            key=lambda e: e.inserted_at,
        )
        for entry in oldest:
            del self._entries[entry.key]
        self._stats["evictions"] += len(oldest)
        logger.info(
            f"Evicted {len(oldest)} oldest entries "
            f"({len(expired)} expired swept, capacity {self.max_size})"
        )

    def invalidate(self, key: str) -> bool:
        """
        Remove a specific entry.

        Returns:
            True if the entry was found and removed
        """
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                logger.info(f"Invalidated cache: {key}")
                return True
            return False

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Remove every entry whose key contains the pattern.

        Returns:
            Number of entries invalidated
        """
        with self._lock:
            to_delete = [k for k in self._entries if pattern in k]
            for key in to_delete:
                del self._entries[key]
            if to_delete:
                logger.info(f"Invalidated {len(to_delete)} entries matching '{pattern}'")
            return len(to_delete)

    def clear(self) -> int:
        """
        Remove all entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            logger.info(f"Cleared {count} cache entries")
            return count

    def keys(self) -> List[str]:
        """Keys of currently valid entries, oldest insertion first."""
        now = self._clock()
        with self._lock:
            return [k for k, e in self._entries.items() if e.is_valid(now)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def approx_size_bytes(self) -> int:
        """Rough serialized size of all values. Diagnostics only."""
        with self._lock:
            values = [e.value for e in self._entries.values()]
        total = 0
        for value in values:
            try:
                total += len(json.dumps(value, default=_json_default))
            except (TypeError, ValueError):
                total += len(repr(value))
        return total

    def get_stats(self) -> Dict[str, Any]:
        """Get entry store statistics."""
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_size": self.max_size,
                **self._stats,
            }


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return str(value)
