"""
Request coordination across the cache tiers.

When multiple concurrent requests ask for the same key and nothing valid is
cached, only one fetch runs and every requester shares its outcome.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from servicedir.errors import RequestTimeoutError

from .core import CacheSource
from .durable import DurableStore
from .entry_store import MISSING, EntryStore

logger = logging.getLogger("cache.coordinator")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch for one key."""
    future: Future = field(default_factory=Future)
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 1


class RequestCoordinator:
    """
    Read-through access to the entry store and durable store with
    per-key deduplication of in-flight fetches.

    Pattern:
    - Entry store hit returns immediately
    - First miss for a key registers a pending request and runs the fetch
      on the coordinator's worker pool
    - Later misses for the same key wait on that pending request
    - On success the value is written to both tiers before the pending
      request is removed, then every waiter receives it
    - On failure the pending request is removed and every waiter gets the
      same exception; nothing is cached

    Fetches run on worker threads so that a caller whose own timeout expires
    walks away without cancelling the fetch other callers are waiting on.

    Usage:
        coordinator = RequestCoordinator(entry_store, durable_store)
        service = coordinator.get_or_create(
            "services:v1:service:abc",
            lambda: repository.fetch_by_id("abc"),
            ttl=3600,
        )
    """

    def __init__(
        self,
        entry_store: EntryStore,
        durable_store: Optional[DurableStore] = None,
        max_workers: int = 8,
        default_timeout: Optional[float] = 30.0,
    ):
        """
        Args:
            entry_store: In-memory tier
            durable_store: Persistent tier, or None when storage is unavailable
            max_workers: Size of the fetch worker pool
            default_timeout: Seconds a caller waits when it gives no timeout
                (None waits indefinitely)
        """
        self._entry_store = entry_store
        self._durable_store = durable_store
        self._default_timeout = default_timeout
        self._pending: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cache-fetch",
        )

        self._stats = {
            "hits_memory": 0,
            "hits_durable": 0,
            "misses": 0,
            "coalesced": 0,
            "failures": 0,
            "timeouts": 0,
        }

    @property
    def entry_store(self) -> EntryStore:
        return self._entry_store

    @property
    def durable_store(self) -> Optional[DurableStore]:
        return self._durable_store

    def get_or_create(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        ttl: float,
        timeout: Optional[float] = None,
        persist: bool = True,
    ) -> Any:
        """
        Return the cached value for key, fetching it at most once if absent.

        Args:
            key: Cache key
            fetch_fn: Called with no arguments when no tier has the value
            ttl: Lifetime in seconds for the stored value
            timeout: Max seconds this caller waits; defaults to the coordinator's
            persist: Also write the fetched value to the durable store

        Raises:
            RequestTimeoutError: This caller's deadline passed
            Exception: Any error from fetch_fn, shared by all waiters
        """
        value, _ = self.resolve(key, fetch_fn, ttl, timeout=timeout, persist=persist)
        return value

    def resolve(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        ttl: float,
        timeout: Optional[float] = None,
        persist: bool = True,
    ) -> Tuple[Any, CacheSource]:
        """Same as get_or_create(), also reporting which tier answered."""
        value = self._entry_store.get(key)
        if value is not MISSING:
            logger.debug(f"CACHE HIT (memory): {key}")
            self._bump("hits_memory")
            return value, CacheSource.MEMORY

        with self._lock:
            in_flight = self._pending.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                self._stats["coalesced"] += 1
                logger.debug(
                    f"Coalescing request for {key} (waiters: {in_flight.waiter_count})"
                )
            else:
                # A fetch may have completed between the store check and the lock.
                value = self._entry_store.peek(key)
                if value is not MISSING:
                    self._stats["hits_memory"] += 1
                    return value, CacheSource.MEMORY

                in_flight = InFlightRequest()
                self._pending[key] = in_flight
                logger.debug(f"Initiating fetch for {key}")
                try:
                    in_flight.future = self._executor.submit(
                        self._run_fetch, key, in_flight, fetch_fn, ttl, persist
                    )
                except RuntimeError:
                    del self._pending[key]
                    raise

        return self._wait(key, in_flight, timeout)

    def _wait(
        self,
        key: str,
        in_flight: InFlightRequest,
        timeout: Optional[float],
    ) -> Tuple[Any, CacheSource]:
        effective = self._default_timeout if timeout is None else timeout
        try:
            return in_flight.future.result(timeout=effective)
        except FutureTimeoutError:
            # Only this caller gives up; the fetch keeps running for the others.
            self._bump("timeouts")
            logger.error(f"Timeout waiting for request: {key}")
            raise RequestTimeoutError(key, effective)

    def _run_fetch(
        self,
        key: str,
        in_flight: InFlightRequest,
        fetch_fn: Callable[[], Any],
        ttl: float,
        persist: bool,
    ) -> Tuple[Any, CacheSource]:
        """Worker body: durable tier, then upstream, then write-back."""
        try:
            source = CacheSource.DURABLE
            value, remaining = MISSING, 0.0
            if self._durable_store is not None:
                value, remaining = self._durable_store.load_with_remaining(key)

            if value is MISSING:
                source = CacheSource.UPSTREAM
                logger.info(f"CACHE MISS: {key}")
                try:
                    value = fetch_fn()
                except Exception as e:
                    self._bump("failures")
                    logger.warning(f"Fetch failed for {key}: {e}")
                    raise
                self._bump("misses")
            else:
                logger.debug(f"CACHE HIT (durable): {key}")
                self._bump("hits_durable")

            if source is CacheSource.UPSTREAM:
                self._entry_store.set(key, value, ttl)
                if persist and self._durable_store is not None:
                    self._durable_store.save(key, value, ttl)
            else:
                # A promoted record keeps the lifetime it had left on disk.
                self._entry_store.set(key, value, min(ttl, remaining))
            return value, source
        finally:
            with self._lock:
                if self._pending.get(key) is in_flight:
                    del self._pending[key]

    def warm_from_local(self, key: str, ttl: float) -> bool:
        """
        True if key can be served without a network call.

        A durable hit is promoted into the entry store on the way, with no
        more than the lifetime it had left on disk.
        """
        if self._entry_store.contains(key):
            return True
        if self._durable_store is None:
            return False
        value, remaining = self._durable_store.load_with_remaining(key)
        if value is MISSING:
            return False
        self._entry_store.set(key, value, min(ttl, remaining))
        self._bump("hits_durable")
        return True

    def _bump(self, stat: str) -> None:
        with self._lock:
            self._stats[stat] += 1

    def invalidate(self, key: str) -> None:
        """Drop key from both tiers."""
        self._entry_store.invalidate(key)
        if self._durable_store is not None:
            self._durable_store.delete(key)

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key containing pattern from both tiers."""
        count = self._entry_store.invalidate_pattern(pattern)
        if self._durable_store is not None:
            self._durable_store.delete_pattern(pattern)
        return count

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._pending)

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._pending

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._lock:
            return {
                **self._stats,
                "active_requests": len(self._pending),
                "active_keys": list(self._pending.keys()),
            }

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting fetches. In-flight fetches finish when wait is True."""
        self._executor.shutdown(wait=wait)
        logger.info("Request coordinator shut down")
