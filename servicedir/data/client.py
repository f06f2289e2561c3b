"""
Service data client.

The one object the UI layer reads services through. Each read goes
coordinator (memory, durable, repository) and, when the repository is
unavailable, the static fallback dataset.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from servicedir.cache import CacheSource, CacheStats, RequestCoordinator
from servicedir.environment import Environment
from servicedir.errors import NotFoundError, ServiceUnavailableError, UnavailableError

from .fallback import FallbackDataset
from .models import ServiceEntity, ServiceFilter
from .repository import FEATURED_LIMIT, RepositoryAdapter

logger = logging.getLogger("data.client")

KEY_PREFIX = "services:v1"
DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class TTLPolicy:
    """Lifetime in seconds for each kind of read."""
    featured: float = 24 * 60 * 60
    listing: float = 48 * 60 * 60
    single: float = 7 * 24 * 60 * 60

    @classmethod
    def from_settings(cls, settings) -> "TTLPolicy":
        """Configured TTLs, each shortened by the safety margin."""
        margin = settings.ttl_safety_margin_seconds

        def shorten(ttl: float) -> float:
            return max(1.0, ttl - margin)

        return cls(
            featured=shorten(settings.featured_ttl_seconds),
            listing=shorten(settings.list_ttl_seconds),
            single=shorten(settings.single_service_ttl_seconds),
        )


@dataclass
class FetchResult:
    """A read outcome with where it came from."""
    data: Any
    source: CacheSource
    degraded: bool = False

    def to_dict(self) -> dict:
        data = self.data
        if isinstance(data, ServiceEntity):
            data = data.to_dict()
        elif isinstance(data, list):
            data = [d.to_dict() if isinstance(d, ServiceEntity) else d for d in data]
        return {"data": data, "source": self.source.value, "degraded": self.degraded}


def service_key(service_id: str) -> str:
    return f"{KEY_PREFIX}:service:{service_id}"


def list_key(service_filter: ServiceFilter, page_size: int, offset: int = 0) -> str:
    return f"{KEY_PREFIX}:list:{service_filter.cache_fragment()}|size={page_size}|offset={offset}"


def featured_key(limit: int = FEATURED_LIMIT) -> str:
    return f"{KEY_PREFIX}:featured:limit={limit}"


class ServiceDataClient:
    """
    Cached reads of services.

    Usage:
        client = ServiceDataClient(coordinator, repository, FallbackDataset())
        result = client.get_service("restaurante-el-sabor")
        result.data.name, result.source, result.degraded
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        repository: RepositoryAdapter,
        fallback: Optional[FallbackDataset] = None,
        tracker=None,
        environment: Optional[Environment] = None,
        ttl_policy: Optional[TTLPolicy] = None,
    ):
        self._coordinator = coordinator
        self._repository = repository
        self._fallback = fallback
        self._tracker = tracker
        self._environment = environment or Environment()
        self._ttl = ttl_policy or TTLPolicy()

    @property
    def coordinator(self) -> RequestCoordinator:
        return self._coordinator

    @property
    def ttl_policy(self) -> TTLPolicy:
        return self._ttl

    # =========================================================================
    # Reads
    # =========================================================================

    def get_service(self, service_id: str, timeout: Optional[float] = None) -> FetchResult:
        """
        Get one service.

        Raises:
            NotFoundError: The repository says the service does not exist
            ServiceUnavailableError: Repository down and no fallback answer
            RequestTimeoutError: This caller's deadline passed
        """
        return self._read(
            service_key(service_id),
            lambda: self._repository.fetch_by_id(service_id),
            self._ttl.single,
            timeout,
            lambda fallback: fallback.fetch_by_id(service_id),
        )

    def fetch_service(self, service_id: str, timeout: Optional[float] = None) -> ServiceEntity:
        """
        Get one service without fallback substitution.

        Used by the preloader, which must never cache fallback data.
        """
        return self._coordinator.get_or_create(
            service_key(service_id),
            self._fetcher(lambda: self._repository.fetch_by_id(service_id)),
            self._ttl.single,
            timeout=timeout,
            persist=self._environment.storage_available,
        )

    def get_services(
        self,
        service_filter: Optional[ServiceFilter] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Get one page of services matching the filter."""
        service_filter = service_filter or ServiceFilter()
        return self._read(
            list_key(service_filter, page_size, offset),
            lambda: self._repository.fetch_by_filter(service_filter, page_size, offset),
            self._ttl.listing,
            timeout,
            lambda fallback: fallback.fetch_by_filter(service_filter, page_size, offset),
        )

    def get_featured_services(self, timeout: Optional[float] = None) -> FetchResult:
        """Featured services, best rated first."""
        service_filter = ServiceFilter(featured=True)
        return self._read(
            featured_key(),
            lambda: self._repository.fetch_by_filter(service_filter, FEATURED_LIMIT),
            self._ttl.featured,
            timeout,
            lambda fallback: fallback.fetch_by_filter(service_filter, FEATURED_LIMIT),
        )

    def get_services_by_category(self, category: str, page_size: int = DEFAULT_PAGE_SIZE) -> FetchResult:
        return self.get_services(ServiceFilter(category=category), page_size=page_size)

    def search_services(self, term: str, page_size: int = DEFAULT_PAGE_SIZE) -> FetchResult:
        term = (term or "").strip()
        return self.get_services(ServiceFilter(search=term or None), page_size=page_size)

    def is_service_cached(self, service_id: str) -> bool:
        """True if the service can be served without a network call."""
        return self._coordinator.warm_from_local(service_key(service_id), self._ttl.single)

    def _fetcher(self, fetch_fn: Callable[[], Any]) -> Callable[[], Any]:
        if self._environment.online:
            return fetch_fn
        return _offline_fetch

    def _read(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        ttl: float,
        timeout: Optional[float],
        fallback_fn: Callable[[FallbackDataset], Any],
    ) -> FetchResult:
        try:
            value, source = self._coordinator.resolve(
                key,
                self._fetcher(fetch_fn),
                ttl,
                timeout=timeout,
                persist=self._environment.storage_available,
            )
            return FetchResult(data=value, source=source)
        except NotFoundError:
            raise
        except UnavailableError as e:
            logger.warning(f"Repository unavailable for {key}, trying fallback: {e}")
            return self._from_fallback(key, fallback_fn, e)

    def _from_fallback(
        self,
        key: str,
        fallback_fn: Callable[[FallbackDataset], Any],
        cause: Exception,
    ) -> FetchResult:
        # Fallback data is served but never cached.
        if self._fallback is None:
            raise ServiceUnavailableError(f"No data available for {key}") from cause
        try:
            value = fallback_fn(self._fallback)
        except NotFoundError:
            raise ServiceUnavailableError(f"No data available for {key}") from cause
        logger.info(f"Serving fallback data for {key}")
        return FetchResult(data=value, source=CacheSource.FALLBACK, degraded=True)

    # =========================================================================
    # Visits and admin
    # =========================================================================

    def track_visit(self, service_id: str, category: Optional[str] = None) -> None:
        """Record a view. Never raises."""
        if self._tracker is None:
            return
        try:
            self._tracker.track_visit(service_id, category)
        except Exception as e:
            logger.warning(f"Could not track visit for {service_id}: {e}")

    def invalidate_service(self, service_id: str) -> None:
        self._coordinator.invalidate(service_key(service_id))

    def clear_all_cache(self) -> dict:
        """Empty both cache tiers."""
        entries = self._coordinator.entry_store.clear()
        durable = 0
        if self._coordinator.durable_store is not None:
            durable = self._coordinator.durable_store.clear()
        logger.info(f"Cache cleared: {entries} memory entries, {durable} durable records")
        return {"entries_cleared": entries, "durable_records_cleared": durable}

    def get_cache_stats(self) -> CacheStats:
        entry_store = self._coordinator.entry_store
        durable_store = self._coordinator.durable_store
        coordinator_stats = self._coordinator.get_stats()
        entry_stats = entry_store.get_stats()

        durable_count = 0
        size = entry_store.approx_size_bytes()
        if durable_store is not None:
            durable_count = durable_store.count()
            size += durable_store.approx_size_bytes()

        return CacheStats(
            entry_count=len(entry_store),
            durable_entry_count=durable_count,
            approx_size_bytes=size,
            pending_requests=coordinator_stats["active_requests"],
            hits_memory=coordinator_stats["hits_memory"],
            hits_durable=coordinator_stats["hits_durable"],
            misses=coordinator_stats["misses"],
            evictions=entry_stats.get("evictions", 0),
        )


def _offline_fetch() -> List[ServiceEntity]:
    raise UnavailableError("Offline: repository not contacted")
