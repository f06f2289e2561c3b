"""
Session wiring for the data-access layer.

One CacheContext per session owns every cache component; nothing here is a
module-level singleton.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from servicedir.analytics import AccessTracker
from servicedir.cache import DurableStore, EntryStore, RequestCoordinator
from servicedir.data import (
    FallbackDataset,
    RepositoryAdapter,
    ServiceDataClient,
    SupabaseRepository,
    TTLPolicy,
    decode_payload,
    encode_payload,
)
from servicedir.environment import Environment
from servicedir.preload import PreloadScheduler

logger = logging.getLogger("servicedir.context")


@dataclass
class CacheContext:
    """Every component of one session's cache."""
    settings: object
    environment: Environment
    entry_store: EntryStore
    durable_store: Optional[DurableStore]
    coordinator: RequestCoordinator
    tracker: AccessTracker
    client: ServiceDataClient
    scheduler: PreloadScheduler

    def start(self) -> None:
        """Session start: drop stale records, prune old visits, start preloading."""
        if self.durable_store is not None:
            self.durable_store.clear_expired()
        self.tracker.cleanup_old_data()
        self.scheduler.start()
        logger.info("Cache context started")

    def close(self) -> None:
        """Session teardown."""
        self.scheduler.stop()
        self.tracker.close()
        self.coordinator.shutdown(wait=True)
        logger.info("Cache context closed")

    def __enter__(self) -> "CacheContext":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_cache_context(
    settings,
    repository: Optional[RepositoryAdapter] = None,
    environment: Optional[Environment] = None,
    fallback: Optional[FallbackDataset] = None,
    clock: Callable[[], float] = time.time,
) -> CacheContext:
    """
    Build a CacheContext from settings.

    Args:
        settings: A config.settings.Settings instance
        repository: Defaults to a SupabaseRepository from settings
        environment: Defaults to what settings declare
        fallback: Defaults to the built-in fallback dataset
        clock: Time source shared by every component
    """
    environment = environment or Environment.from_settings(settings)
    if repository is None:
        repository = SupabaseRepository(
            settings.supabase_url,
            settings.supabase_key,
            table=settings.supabase_table,
            timeout=settings.request_timeout_seconds,
        )

    entry_store = EntryStore(
        max_size=settings.cache_max_entries,
        eviction_fraction=settings.cache_eviction_fraction,
        clock=clock,
    )

    durable_store = None
    if environment.storage_available:
        durable_store = DurableStore(
            settings.cache_db_path,
            settings.cache_schema_version,
            encode=encode_payload,
            decode=decode_payload,
            clock=clock,
        )

    coordinator = RequestCoordinator(
        entry_store,
        durable_store,
        max_workers=settings.coordinator_workers,
        default_timeout=settings.coordinator_timeout_seconds,
    )

    tracker = AccessTracker(
        data_dir=settings.analytics_directory,
        persist=environment.storage_available,
        max_events=settings.max_events,
        retention_days=settings.retention_days,
        cleanup_interval_seconds=settings.cleanup_interval_seconds,
        recency_weight=settings.recency_weight,
        recency_window_days=settings.recency_window_days,
        persist_debounce_seconds=settings.persist_debounce_seconds,
        clock=clock,
    )

    client = ServiceDataClient(
        coordinator,
        repository,
        fallback=fallback if fallback is not None else FallbackDataset(),
        tracker=tracker,
        environment=environment,
        ttl_policy=TTLPolicy.from_settings(settings),
    )

    scheduler = PreloadScheduler.from_settings(client, tracker, settings, clock=clock)

    return CacheContext(
        settings=settings,
        environment=environment,
        entry_store=entry_store,
        durable_store=durable_store,
        coordinator=coordinator,
        tracker=tracker,
        client=client,
        scheduler=scheduler,
    )
