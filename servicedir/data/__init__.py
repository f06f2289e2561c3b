"""
Service records, repository adapters, the static fallback dataset, and the
cached data client the UI layer talks to.
"""
from .models import (
    ServiceEntity,
    ServiceFilter,
    encode_payload,
    decode_payload,
)
from .repository import (
    RepositoryAdapter,
    SupabaseRepository,
    TransientRepositoryError,
)
from .fallback import FallbackDataset, FALLBACK_RECORDS
from .client import FetchResult, ServiceDataClient, TTLPolicy

__all__ = [
    # Models
    "ServiceEntity",
    "ServiceFilter",
    "encode_payload",
    "decode_payload",
    # Sources
    "RepositoryAdapter",
    "SupabaseRepository",
    "TransientRepositoryError",
    "FallbackDataset",
    "FALLBACK_RECORDS",
    # Client
    "FetchResult",
    "ServiceDataClient",
    "TTLPolicy",
]
