"""
Tests for the preload scheduler.
"""
import threading

import pytest

from servicedir.errors import UnavailableError
from servicedir.preload import PreloadScheduler

HOUR = 60 * 60


class TestPreloadPopular:
    """Warming the cache from visit popularity."""

    def test_skips_services_already_cached(self, context, repository):
        context.tracker.track_visit("svc-1")
        context.tracker.track_visit("svc-2")
        context.client.get_service("svc-1")

        run = context.scheduler.preload_popular(force=True)

        assert run.started is True
        assert run.skipped == 1
        assert run.succeeded == 1
        assert repository.id_calls("svc-1") == 1
        assert repository.id_calls("svc-2") == 1

    def test_preloaded_services_served_from_memory(self, context, repository):
        context.tracker.track_visit("svc-3")
        context.scheduler.preload_popular(force=True)

        assert context.client.is_service_cached("svc-3")
        context.client.get_service("svc-3")
        assert repository.id_calls("svc-3") == 1

    def test_durable_record_counts_as_cached(self, context, repository):
        context.client.get_service("svc-2")
        context.entry_store.clear()
        context.tracker.track_visit("svc-2")

        run = context.scheduler.preload_popular(force=True)

        assert run.skipped == 1
        assert repository.id_calls("svc-2") == 1

    def test_failures_counted_and_batch_continues(self, context):
        context.tracker.track_visit("svc-1")
        context.tracker.track_visit("does-not-exist")

        run = context.scheduler.preload_popular(force=True)

        assert run.failed == 1
        assert run.succeeded == 1
        assert context.scheduler.get_status().failed == 1

    def test_fallback_never_cached_by_preload(self, context, repository):
        repository.error = UnavailableError("down")
        context.tracker.track_visit("farmacia-salud")

        run = context.scheduler.preload_popular(force=True)

        assert run.failed == 1
        assert not context.client.is_service_cached("farmacia-salud")

    def test_empty_tracker_runs_nothing(self, context, repository):
        run = context.scheduler.preload_popular(force=True)

        assert run.started is True
        assert run.total == 0
        assert repository.calls == []


class TestGating:
    """Interval, minimum spacing and single-run checks."""

    def test_interval_gate_blocks_unforced_rerun(self, context, clock):
        context.scheduler.preload_popular()
        clock.advance(HOUR)

        run = context.scheduler.preload_popular()

        assert run.started is False
        assert run.reason == "interval_not_elapsed"

    def test_runs_again_after_interval(self, context, clock):
        context.scheduler.preload_popular()
        clock.advance(2 * HOUR)
        assert context.scheduler.preload_popular().started is True

    def test_force_bypasses_interval(self, context):
        context.scheduler.preload_popular()
        assert context.scheduler.preload_popular(force=True).started is True

    def test_force_never_starts_second_concurrent_run(self, context, repository):
        context.tracker.track_visit("svc-1")
        repository.gate = threading.Event()

        first = {}
        worker = threading.Thread(
            target=lambda: first.setdefault("run", context.scheduler.preload_popular(force=True))
        )
        worker.start()
        try:
            assert _wait_for(lambda: context.scheduler.get_status().is_preloading)
            second = context.scheduler.preload_popular(force=True)
        finally:
            repository.gate.set()
            worker.join(timeout=5)

        assert second.started is False
        assert second.reason == "already_running"
        assert first["run"].succeeded == 1


class TestCategoryAndStats:
    """Category preloads and reporting."""

    def test_category_preload(self, context, repository):
        context.tracker.track_visit("svc-3", category="Veterinaria")
        context.tracker.track_visit("svc-1", category="Lavandería")

        run = context.scheduler.preload_category("Veterinaria")

        assert run.succeeded == 1
        assert repository.id_calls("svc-3") == 1
        assert repository.id_calls("svc-1") == 0

    def test_batches_respect_concurrency(self, context, repository):
        scheduler = PreloadScheduler(
            context.client, context.tracker, max_concurrent=2, delay_seconds=0
        )
        for service_id in ("svc-1", "svc-2", "svc-3"):
            context.tracker.track_visit(service_id)
        try:
            run = scheduler.preload_popular(force=True)
        finally:
            scheduler.stop()

        assert run.total == 3
        assert run.succeeded == 3

    def test_category_limit_defaults_to_five(self, context):
        for i in range(7):
            context.tracker.track_visit(f"cat-{i}", category="Panadería")

        assert context.scheduler.preload_category("Panadería").total == 5
        assert context.scheduler.preload_category("Panadería", limit=0).total == 0
        assert context.scheduler.preload_category("Panadería", limit=2).total == 2

    def test_stop_interrupts_wait_between_batches(self, context):
        scheduler = PreloadScheduler(
            context.client, context.tracker, max_concurrent=1, delay_seconds=30
        )
        for service_id in ("svc-1", "svc-2", "svc-3"):
            context.tracker.track_visit(service_id)

        result = {}
        worker = threading.Thread(
            target=lambda: result.setdefault("run", scheduler.preload_popular(force=True))
        )
        worker.start()
        assert _wait_for(lambda: scheduler.get_status().preloaded_count == 1)

        scheduler.stop()
        worker.join(timeout=5)

        assert not worker.is_alive()
        run = result["run"]
        assert run.total == 3
        assert run.succeeded == 1
        assert scheduler.get_status().is_preloading is False
        assert context.coordinator.active_requests == 0

    def test_preload_stats(self, context, clock):
        context.tracker.track_visit("svc-1")
        context.scheduler.preload_popular(force=True)

        stats = context.scheduler.get_preload_stats()

        assert stats["is_preloading"] is False
        assert stats["preloaded_count"] == 1
        assert stats["total_to_preload"] == 1
        assert stats["last_preload_time"] == clock.now
        assert stats["is_preload_enabled"] is False
        assert stats["next_preload_time"] is None

    def test_set_auto_preload(self, context, clock):
        context.scheduler.set_auto_preload(True)
        stats = context.scheduler.get_preload_stats()

        assert stats["is_preload_enabled"] is True
        assert stats["next_preload_time"] == pytest.approx(clock.now + 2 * HOUR)
        context.scheduler.set_auto_preload(False)


def _wait_for(predicate, timeout=5.0):
    event = threading.Event()
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        event.wait(0.01)
    return False
