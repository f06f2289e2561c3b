"""
Shared fixtures: a controllable clock, a scripted repository and isolated
settings pointing at temporary directories.
"""
import tempfile
import threading
from pathlib import Path

import pytest

from config.settings import Settings
from servicedir.data import FallbackDataset, ServiceEntity, ServiceFilter
from servicedir.errors import NotFoundError


class FakeClock:
    """Time source that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


UPSTREAM_RECORDS = [
    {
        "id": "svc-1",
        "name": "Lavandería Express",
        "description": "Lavado y planchado en el día.",
        "category": "Lavandería",
        "barrio": "Miraflores",
        "rating": 4.2,
        "featured": True,
        "active": True,
    },
    {
        "id": "svc-2",
        "name": "Ferretería Central",
        "description": "Herramientas y materiales.",
        "category": "Ferretería",
        "barrio": "Surco",
        "rating": 4.9,
        "featured": True,
        "active": True,
    },
    {
        "id": "svc-3",
        "name": "Veterinaria Patitas",
        "description": "Atención para mascotas.",
        "category": "Veterinaria",
        "barrio": "Miraflores",
        "rating": 3.8,
        "featured": False,
        "active": True,
    },
]


class FakeRepository:
    """
    In-memory repository that records every call.

    Set ``error`` to make every call raise it; set ``gate`` to an Event to
    block fetches until it is set.
    """

    def __init__(self, records=None):
        self._dataset = FallbackDataset(UPSTREAM_RECORDS if records is None else records)
        self.calls = []
        self.error = None
        self.gate = None
        self._lock = threading.Lock()

    def _enter(self, call):
        with self._lock:
            self.calls.append(call)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error

    def fetch_by_id(self, service_id: str) -> ServiceEntity:
        self._enter(("id", service_id))
        return self._dataset.fetch_by_id(service_id)

    def fetch_by_filter(self, service_filter: ServiceFilter, page_size: int, offset: int = 0):
        self._enter(("filter", service_filter.cache_fragment()))
        return self._dataset.fetch_by_filter(service_filter, page_size, offset)

    def id_calls(self, service_id: str) -> int:
        with self._lock:
            return self.calls.count(("id", service_id))


class MissingRepository(FakeRepository):
    """Repository in which nothing exists."""

    def fetch_by_id(self, service_id: str) -> ServiceEntity:
        self._enter(("id", service_id))
        raise NotFoundError(service_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for cache and analytics files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir):
    """Settings isolated from the developer's environment and disk."""
    return Settings(
        supabase_url=None,
        supabase_key=None,
        offline_mode=False,
        storage_available=True,
        cache_directory=temp_dir / "cache",
        analytics_directory=temp_dir / "analytics",
        persist_debounce_seconds=0,
        preload_delay_seconds=0,
        enable_background_preload=False,
        coordinator_timeout_seconds=5.0,
    )


@pytest.fixture
def context(test_settings, repository, clock):
    """A full cache context over the fake repository."""
    from servicedir.context import create_cache_context

    context = create_cache_context(test_settings, repository=repository, clock=clock)
    yield context
    context.close()
