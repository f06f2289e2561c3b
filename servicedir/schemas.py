"""
Pydantic schemas for API request/response models
"""
from typing import Any, List, Optional

from pydantic import BaseModel


# ===== SERVICE SCHEMAS =====

class FetchResponse(BaseModel):
    """A service read with its provenance"""
    data: Any
    source: str
    degraded: bool = False


class ServiceListResponse(FetchResponse):
    """A page of services"""
    count: int = 0


# ===== VISIT SCHEMAS =====

class VisitRequest(BaseModel):
    """Body for POST /services/{id}/visit"""
    category: Optional[str] = None


class VisitResponse(BaseModel):
    status: str = "accepted"
    service_id: str


# ===== PRELOAD SCHEMAS =====

class PreloadRequest(BaseModel):
    """Body for POST /preload"""
    force: bool = False
    category: Optional[str] = None
    limit: Optional[int] = None


class PreloadRunResponse(BaseModel):
    started: bool
    reason: Optional[str] = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class PreloadStatusResponse(BaseModel):
    is_preloading: bool
    preloaded_count: int
    total_to_preload: int
    last_preload_time: Optional[float] = None
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    is_preload_enabled: bool
    next_preload_time: Optional[float] = None


class AutoPreloadRequest(BaseModel):
    enabled: bool


# ===== CACHE SCHEMAS =====

class CacheStatsResponse(BaseModel):
    entry_count: int
    durable_entry_count: int
    approx_size_bytes: int
    pending_requests: int = 0
    hits_memory: int = 0
    hits_durable: int = 0
    misses: int = 0
    evictions: int = 0
    hit_rate_percent: float = 0.0


class CacheClearResponse(BaseModel):
    status: str = "cleared"
    entries_cleared: int
    durable_records_cleared: int


# ===== ANALYTICS SCHEMAS =====

class PopularServiceResponse(BaseModel):
    entity_id: str
    visits: int
    last_visit: float
    score: float
    category: Optional[str] = None


class CategoryCountResponse(BaseModel):
    category: str
    visits: int


class AnalyticsResponse(BaseModel):
    total_visits: int
    recent_visits: int
    popular_services: List[PopularServiceResponse]
    top_categories: List[CategoryCountResponse]
    services_to_preload: List[str]
