"""
Core cache data structures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class CacheSource(Enum):
    """Where a value was resolved from."""
    MEMORY = "memory"       # Entry store hit
    DURABLE = "durable"     # Durable store hit, promoted to memory
    UPSTREAM = "upstream"   # Fetched from the repository
    FALLBACK = "fallback"   # Served by the static fallback dataset


@dataclass
class CacheEntry:
    """
    A cached value with its insertion time and time-to-live.

    An entry is valid iff now - inserted_at < ttl. Invalid entries are
    treated as absent.
    """
    key: str
    value: Any
    inserted_at: float
    ttl: float

    def age(self, now: float) -> float:
        """Seconds since the entry was inserted."""
        return now - self.inserted_at

    def is_valid(self, now: float) -> bool:
        return self.age(now) < self.ttl


@dataclass
class DurableRecord:
    """A persisted cache record, as stored in the durable tier."""
    key: str
    payload: str
    inserted_at: float
    ttl: float
    schema_version: int

    def is_valid(self, now: float, schema_version: int) -> bool:
        if self.schema_version != schema_version:
            return False
        return now - self.inserted_at < self.ttl


@dataclass
class CacheStats:
    """Diagnostics snapshot for the cache admin API."""
    entry_count: int
    durable_entry_count: int
    approx_size_bytes: int
    pending_requests: int = 0
    hits_memory: int = 0
    hits_durable: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate_percent(self) -> float:
        total_hits = self.hits_memory + self.hits_durable
        total_requests = total_hits + self.misses
        if total_requests == 0:
            return 0.0
        return round(total_hits / total_requests * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "entry_count": self.entry_count,
            "durable_entry_count": self.durable_entry_count,
            "approx_size_bytes": self.approx_size_bytes,
            "pending_requests": self.pending_requests,
            "hits_memory": self.hits_memory,
            "hits_durable": self.hits_durable,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate_percent": self.hit_rate_percent,
        }
