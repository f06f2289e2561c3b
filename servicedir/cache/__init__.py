"""
Multi-tier caching: bounded in-memory store, durable SQLite tier, and
request coordination with in-flight deduplication.
"""
from .core import CacheEntry, CacheSource, CacheStats, DurableRecord
from .entry_store import MISSING, EntryStore
from .durable import DurableStore
from .coordinator import InFlightRequest, RequestCoordinator

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "CacheStats",
    "DurableRecord",
    # Tiers
    "MISSING",
    "EntryStore",
    "DurableStore",
    # Coordination
    "InFlightRequest",
    "RequestCoordinator",
]
