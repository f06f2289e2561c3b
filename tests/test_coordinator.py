"""
Tests for the request coordinator: read-through tiers and in-flight dedup.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from servicedir.cache import CacheSource, DurableStore, EntryStore, RequestCoordinator
from servicedir.errors import RequestTimeoutError, UnavailableError


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class CountingFetch:
    """fetch_fn that counts calls and can be held until released."""

    def __init__(self, value="value", error=None, hold=False):
        self.value = value
        self.error = error
        self.calls = 0
        self.release = threading.Event()
        if not hold:
            self.release.set()
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture
def durable(temp_dir, clock):
    return DurableStore(temp_dir / "cache.db", schema_version=1, clock=clock)


@pytest.fixture
def coordinator(clock, durable):
    coordinator = RequestCoordinator(EntryStore(max_size=50, clock=clock), durable, max_workers=4)
    yield coordinator
    coordinator.shutdown()


class TestReadThrough:
    """Memory, then durable, then upstream."""

    def test_cold_cache_fetches_once(self, coordinator):
        fetch = CountingFetch()

        first = coordinator.resolve("k", fetch, ttl=60)
        second = coordinator.resolve("k", fetch, ttl=60)

        assert first == ("value", CacheSource.UPSTREAM)
        assert second == ("value", CacheSource.MEMORY)
        assert fetch.calls == 1

    def test_fetched_value_written_to_durable(self, coordinator, durable, clock):
        coordinator.get_or_create("k", CountingFetch(), ttl=60)

        fresh = RequestCoordinator(EntryStore(clock=clock), durable)
        fetch = CountingFetch()
        value, source = fresh.resolve("k", fetch, ttl=60)
        fresh.shutdown()

        assert value == "value"
        assert source is CacheSource.DURABLE
        assert fetch.calls == 0

    def test_persist_false_skips_durable(self, coordinator, durable):
        coordinator.get_or_create("k", CountingFetch(), ttl=60, persist=False)
        assert durable.count() == 0

    def test_expired_entry_refetched(self, coordinator, durable, clock):
        fetch = CountingFetch()
        coordinator.get_or_create("k", fetch, ttl=60)
        clock.advance(61)
        coordinator.get_or_create("k", fetch, ttl=60)
        assert fetch.calls == 2

    def test_durable_hit_keeps_original_expiry(self, coordinator, durable, clock):
        durable.save("k", "old", ttl=100)
        clock.advance(90)
        assert coordinator.resolve("k", CountingFetch(value="new"), ttl=100) == (
            "old", CacheSource.DURABLE
        )

        clock.advance(50)
        fetch = CountingFetch(value="new")
        value, source = coordinator.resolve("k", fetch, ttl=100)

        assert value == "new"
        assert source is CacheSource.UPSTREAM
        assert fetch.calls == 1

    def test_warm_from_local_keeps_original_expiry(self, coordinator, durable, clock):
        durable.save("k", "old", ttl=100)
        clock.advance(90)

        assert coordinator.warm_from_local("k", ttl=1000) is True
        clock.advance(20)

        assert not coordinator.entry_store.contains("k")

    def test_schema_bump_falls_back_to_upstream(self, temp_dir, clock):
        path = temp_dir / "bump.db"
        DurableStore(path, schema_version=1, clock=clock).save("k", "stale", ttl=600)

        coordinator = RequestCoordinator(
            EntryStore(clock=clock), DurableStore(path, schema_version=2, clock=clock)
        )
        fetch = CountingFetch(value="fresh")
        value, source = coordinator.resolve("k", fetch, ttl=60)
        coordinator.shutdown()

        assert value == "fresh"
        assert source is CacheSource.UPSTREAM
        assert fetch.calls == 1


class TestDeduplication:
    """Concurrent identical reads collapse into one fetch."""

    def test_five_concurrent_callers_share_one_fetch(self, coordinator):
        fetch = CountingFetch(hold=True)

        with ThreadPoolExecutor(max_workers=5) as pool:
            futures = [pool.submit(coordinator.get_or_create, "k", fetch, 60) for _ in range(5)]
            assert wait_until(lambda: coordinator.get_stats()["coalesced"] == 4)
            fetch.release.set()
            results = [f.result(timeout=5) for f in futures]

        assert results == ["value"] * 5
        assert fetch.calls == 1
        assert coordinator.active_requests == 0

    def test_failure_reaches_every_waiter_and_is_not_cached(self, coordinator):
        fetch = CountingFetch(error=UnavailableError("down"), hold=True)

        with ThreadPoolExecutor(max_workers=3) as pool:
            futures = [pool.submit(coordinator.get_or_create, "k", fetch, 60) for _ in range(3)]
            assert wait_until(lambda: coordinator.get_stats()["coalesced"] == 2)
            fetch.release.set()
            for future in futures:
                with pytest.raises(UnavailableError):
                    future.result(timeout=5)

        assert fetch.calls == 1
        assert not coordinator.is_pending("k")

        # Nothing cached: the next call fetches again
        fetch.error = None
        assert coordinator.get_or_create("k", fetch, 60) == "value"
        assert fetch.calls == 2

    def test_hit_counts_exact_under_concurrency(self, coordinator):
        coordinator.get_or_create("k", CountingFetch(), 60)

        def read_many():
            for _ in range(500):
                coordinator.get_or_create("k", CountingFetch(), 60)

        threads = [threading.Thread(target=read_many) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        stats = coordinator.get_stats()
        assert stats["hits_memory"] == 8 * 500
        assert stats["misses"] == 1

    def test_different_keys_fetch_independently(self, coordinator):
        fetch_a = CountingFetch(value="a")
        fetch_b = CountingFetch(value="b")
        assert coordinator.get_or_create("a", fetch_a, 60) == "a"
        assert coordinator.get_or_create("b", fetch_b, 60) == "b"
        assert (fetch_a.calls, fetch_b.calls) == (1, 1)


class TestTimeout:
    """A caller's deadline never cancels the shared fetch."""

    def test_timed_out_caller_does_not_cancel_fetch(self, coordinator):
        fetch = CountingFetch(hold=True)

        with pytest.raises(RequestTimeoutError):
            coordinator.get_or_create("k", fetch, 60, timeout=0.05)

        assert coordinator.is_pending("k")
        fetch.release.set()
        assert coordinator.get_or_create("k", fetch, 60, timeout=5) == "value"
        assert fetch.calls == 1

    def test_timeout_error_is_a_builtin_timeout(self):
        assert issubclass(RequestTimeoutError, TimeoutError)


class TestInvalidation:
    """Invalidation reaches both tiers."""

    def test_invalidate_pattern_clears_both_tiers(self, coordinator, durable):
        coordinator.get_or_create("services:v1:service:a", CountingFetch(), 60)
        coordinator.get_or_create("services:v1:featured:limit=6", CountingFetch(), 60)

        coordinator.invalidate_pattern(":service:")

        assert not coordinator.entry_store.contains("services:v1:service:a")
        assert durable.count() == 1

    def test_warm_from_local_promotes_durable_hit(self, coordinator, durable):
        durable.save("k", "stored", ttl=60)

        assert coordinator.warm_from_local("k", ttl=60) is True
        assert coordinator.entry_store.peek("k") == "stored"
        assert coordinator.warm_from_local("other", ttl=60) is False
