"""
Tests for the service data client: provenance, fallback and admin calls.
"""
import pytest

from servicedir.cache import CacheSource
from servicedir.context import create_cache_context
from servicedir.data import ServiceFilter, SupabaseRepository, TTLPolicy
from servicedir.environment import Environment
from servicedir.errors import NotFoundError, ServiceUnavailableError, UnavailableError

from conftest import MissingRepository


class TestGetService:
    """Single service reads."""

    def test_first_read_upstream_then_memory(self, context, repository):
        first = context.client.get_service("svc-1")
        second = context.client.get_service("svc-1")

        assert first.source is CacheSource.UPSTREAM
        assert second.source is CacheSource.MEMORY
        assert first.data.name == "Lavandería Express"
        assert first.degraded is False
        assert repository.id_calls("svc-1") == 1

    def test_not_found_propagates_and_is_not_cached(self, test_settings, clock):
        repository = MissingRepository()
        context = create_cache_context(test_settings, repository=repository, clock=clock)
        try:
            for _ in range(2):
                with pytest.raises(NotFoundError):
                    context.client.get_service("ghost")
            assert repository.id_calls("ghost") == 2
        finally:
            context.close()

    def test_unavailable_serves_fallback_degraded(self, context, repository):
        repository.error = UnavailableError("supabase down")

        result = context.client.get_service("farmacia-salud")

        assert result.source is CacheSource.FALLBACK
        assert result.degraded is True
        assert result.data.name == "Farmacia Salud"

    def test_fallback_data_is_not_cached(self, context, repository):
        repository.error = UnavailableError("supabase down")
        context.client.get_service("farmacia-salud")

        assert not context.client.is_service_cached("farmacia-salud")
        assert context.durable_store.count() == 0

    def test_malformed_repository_url_serves_fallback(self, test_settings, clock):
        repository = SupabaseRepository("not-a-url", "anon-key")
        context = create_cache_context(test_settings, repository=repository, clock=clock)
        try:
            result = context.client.get_service("agente-bcp")

            assert result.source is CacheSource.FALLBACK
            assert result.degraded is True
            assert result.data.name == "Agente BCP"
        finally:
            context.close()

    def test_unavailable_without_fallback_answer(self, context, repository):
        repository.error = UnavailableError("supabase down")

        with pytest.raises(ServiceUnavailableError) as exc_info:
            context.client.get_service("svc-1")

        assert exc_info.value.degraded is True

    def test_offline_never_contacts_repository(self, test_settings, repository, clock):
        context = create_cache_context(
            test_settings,
            repository=repository,
            environment=Environment(storage_available=True, online=False),
            clock=clock,
        )
        try:
            result = context.client.get_service("agente-bcp")
            assert result.source is CacheSource.FALLBACK
            assert repository.calls == []
        finally:
            context.close()

    def test_offline_still_serves_durable_records(self, test_settings, repository, clock):
        online = create_cache_context(test_settings, repository=repository, clock=clock)
        online.client.get_service("svc-2")
        online.close()

        offline = create_cache_context(
            test_settings,
            repository=repository,
            environment=Environment(storage_available=True, online=False),
            clock=clock,
        )
        try:
            result = offline.client.get_service("svc-2")
            assert result.source is CacheSource.DURABLE
            assert repository.id_calls("svc-2") == 1
        finally:
            offline.close()

    def test_without_storage_nothing_persists(self, test_settings, repository, clock):
        context = create_cache_context(
            test_settings,
            repository=repository,
            environment=Environment(storage_available=False, online=True),
            clock=clock,
        )
        try:
            context.client.get_service("svc-1")
            assert context.durable_store is None
            assert context.client.get_cache_stats().durable_entry_count == 0
        finally:
            context.close()


class TestListings:
    """Collection reads."""

    def test_featured_ordered_by_rating(self, context):
        result = context.client.get_featured_services()
        assert [s.id for s in result.data] == ["svc-2", "svc-1"]

    def test_featured_fallback(self, context, repository):
        repository.error = UnavailableError("down")

        result = context.client.get_featured_services()

        ratings = [s.rating for s in result.data]
        assert result.degraded is True
        assert ratings == sorted(ratings, reverse=True)
        assert all(s.featured for s in result.data)

    def test_all_categories_pseudo_value(self, context):
        everything = context.client.get_services_by_category("Todas")
        assert len(everything.data) == 3

    def test_category_filter(self, context):
        result = context.client.get_services_by_category("Veterinaria")
        assert [s.id for s in result.data] == ["svc-3"]

    def test_search_is_case_insensitive(self, context):
        result = context.client.search_services("FERRETER")
        assert [s.id for s in result.data] == ["svc-2"]

    def test_identical_list_reads_share_cache(self, context, repository):
        service_filter = ServiceFilter(barrio="Miraflores")
        context.client.get_services(service_filter)
        second = context.client.get_services(ServiceFilter(barrio="Miraflores"))

        assert second.source is CacheSource.MEMORY
        assert len([c for c in repository.calls if c[0] == "filter"]) == 1


class TestAdmin:
    """Cache admin and visit ingestion."""

    def test_clear_all_cache_empties_both_tiers(self, context):
        context.client.get_service("svc-1")
        context.client.get_featured_services()

        cleared = context.client.clear_all_cache()

        assert cleared == {"entries_cleared": 2, "durable_records_cleared": 2}
        stats = context.client.get_cache_stats()
        assert stats.entry_count == 0
        assert stats.durable_entry_count == 0

    def test_cache_stats_counts(self, context):
        context.client.get_service("svc-1")
        context.client.get_service("svc-1")

        stats = context.client.get_cache_stats()

        assert stats.entry_count == 1
        assert stats.durable_entry_count == 1
        assert stats.misses == 1
        assert stats.hits_memory == 1
        assert stats.hit_rate_percent == 50.0
        assert stats.approx_size_bytes > 0

    def test_track_visit_reaches_tracker(self, context):
        context.client.track_visit("svc-1", category="Lavandería")
        assert context.tracker.get_services_to_preload(1) == ["svc-1"]

    def test_track_visit_never_raises(self, context):
        class BrokenTracker:
            def track_visit(self, *args):
                raise RuntimeError("disk on fire")

        context.client._tracker = BrokenTracker()
        context.client.track_visit("svc-1")


class TestTTLPolicy:
    """Per-kind lifetimes."""

    def test_safety_margin_applied(self, test_settings):
        policy = TTLPolicy.from_settings(test_settings)

        assert policy.featured == 24 * 3600 - 300
        assert policy.listing == 48 * 3600 - 300
        assert policy.single == 7 * 24 * 3600 - 300

    def test_single_service_expires_after_ttl(self, context, repository, clock):
        context.client.get_service("svc-1")
        clock.advance(context.client.ttl_policy.single)

        result = context.client.get_service("svc-1")

        assert result.source is CacheSource.UPSTREAM
        assert repository.id_calls("svc-1") == 2
