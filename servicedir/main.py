"""
Service Directory - Data Access API
Cached reads of services, visit ingestion and cache administration.
"""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request

from config.settings import settings
from servicedir.context import CacheContext, create_cache_context
from servicedir.data import FetchResult, ServiceFilter
from servicedir.errors import NotFoundError, RequestTimeoutError, ServiceUnavailableError
from servicedir.schemas import (
    AnalyticsResponse,
    AutoPreloadRequest,
    CacheClearResponse,
    CacheStatsResponse,
    FetchResponse,
    PreloadRequest,
    PreloadRunResponse,
    PreloadStatusResponse,
    ServiceListResponse,
    VisitRequest,
    VisitResponse,
)

load_dotenv()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("servicedir.api")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Service Directory"
APP_STAGE = "Beta"


def _context(request: Request) -> CacheContext:
    return request.app.state.cache


def _run_read(read: Callable[[], FetchResult]) -> FetchResult:
    """Run a client read, mapping data-access errors to HTTP errors."""
    try:
        return read()
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ServiceUnavailableError as e:
        raise HTTPException(
            status_code=503,
            detail={"message": str(e), "degraded": e.degraded},
        )
    except RequestTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))


def create_app(context_factory: Optional[Callable[[], CacheContext]] = None) -> FastAPI:
    """
    Build the API.

    Args:
        context_factory: Builds the session's CacheContext on startup;
            defaults to one built from the global settings
    """
    factory = context_factory or (lambda: create_cache_context(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context = factory()
        try:
            context.start()
            app.state.cache = context
            yield
        finally:
            context.close()

    app = FastAPI(
        title=f"{APP_NAME} ({APP_STAGE})",
        description="Cached access to the locality service directory",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint."""
        environment = _context(request).environment
        return {
            "status": "ok",
            "mode": "online" if environment.online else "offline",
            "storage": environment.storage_available,
        }

    @app.get("/version")
    def version_info():
        """Version information endpoint."""
        return {
            "name": APP_NAME,
            "version": APP_VERSION,
            "stage": APP_STAGE,
            "full": f"{APP_NAME} {APP_VERSION} ({APP_STAGE})"
        }

    # =========================================================================
    # SERVICES
    # =========================================================================

    @app.get("/services", response_model=ServiceListResponse)
    def list_services(
        request: Request,
        category: Optional[str] = Query(None, description="Category, 'Todas' for all"),
        barrio: Optional[str] = Query(None),
        q: Optional[str] = Query(None, min_length=1, description="Search term"),
        page_size: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
    ):
        """Get a page of active services."""
        client = _context(request).client
        service_filter = ServiceFilter(category=category, barrio=barrio, search=q)
        result = _run_read(lambda: client.get_services(service_filter, page_size, offset))
        return {**result.to_dict(), "count": len(result.data)}

    @app.get("/services/featured", response_model=ServiceListResponse)
    def featured_services(request: Request):
        """Get featured services, best rated first."""
        client = _context(request).client
        result = _run_read(client.get_featured_services)
        return {**result.to_dict(), "count": len(result.data)}

    @app.get("/services/{service_id}", response_model=FetchResponse)
    def get_service(
        request: Request,
        service_id: str,
        timeout: Optional[float] = Query(None, gt=0, description="Seconds to wait"),
    ):
        """Get one service."""
        client = _context(request).client
        result = _run_read(lambda: client.get_service(service_id, timeout=timeout))
        return result.to_dict()

    @app.post("/services/{service_id}/visit", response_model=VisitResponse, status_code=202)
    def track_visit(request: Request, service_id: str, body: Optional[VisitRequest] = None):
        """Record a service view. Always accepted."""
        category = body.category if body else None
        _context(request).client.track_visit(service_id, category)
        return {"status": "accepted", "service_id": service_id}

    # =========================================================================
    # ANALYTICS AND PRELOAD
    # =========================================================================

    @app.get("/analytics", response_model=AnalyticsResponse)
    def analytics_summary(request: Request):
        """Visit totals, popular services and preload candidates."""
        context = _context(request)
        return context.tracker.get_analytics_stats(
            preload_count=context.scheduler.preload_count
        )

    @app.post("/preload", response_model=PreloadRunResponse)
    def run_preload(request: Request, body: Optional[PreloadRequest] = None):
        """Warm the cache with popular services."""
        body = body or PreloadRequest()
        scheduler = _context(request).scheduler
        if body.category:
            run = scheduler.preload_category(body.category, limit=body.limit)
        else:
            run = scheduler.preload_popular(force=body.force)
        return run.to_dict()

    @app.get("/preload/status", response_model=PreloadStatusResponse)
    def preload_status(request: Request):
        return _context(request).scheduler.get_preload_stats()

    @app.post("/preload/auto", response_model=PreloadStatusResponse)
    def set_auto_preload(request: Request, body: AutoPreloadRequest):
        """Turn background preloading on or off."""
        scheduler = _context(request).scheduler
        scheduler.set_auto_preload(body.enabled)
        return scheduler.get_preload_stats()

    # =========================================================================
    # CACHE ADMIN
    # =========================================================================

    @app.get("/cache/stats", response_model=CacheStatsResponse)
    def cache_stats(request: Request):
        """Get cache statistics."""
        return _context(request).client.get_cache_stats().to_dict()

    @app.post("/cache/clear", response_model=CacheClearResponse)
    def clear_cache(request: Request):
        """Empty every cache tier."""
        cleared = _context(request).client.clear_all_cache()
        return {"status": "cleared", **cleared}

    return app


app = create_app()
