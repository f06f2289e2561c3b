"""
Repository adapters: where services are actually read from.

The provider pattern lets the data client stay agnostic of whether a
Supabase table, a test double, or the static fallback dataset answers.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from servicedir.errors import NotFoundError, UnavailableError

from .models import ServiceEntity, ServiceFilter

logger = logging.getLogger("data.repository")

FEATURED_LIMIT = 6


class RepositoryAdapter(Protocol):
    """
    Interface for service repositories.

    Implementations:
    - SupabaseRepository: PostgREST over HTTP
    - FallbackDataset: hardcoded in-memory services
    """

    def fetch_by_id(self, service_id: str) -> ServiceEntity:
        """
        Get one service.

        Raises:
            NotFoundError: No such service
            UnavailableError: Repository unreachable or misconfigured
        """
        ...

    def fetch_by_filter(
        self,
        service_filter: ServiceFilter,
        page_size: int,
        offset: int = 0,
    ) -> List[ServiceEntity]:
        """Get one page of services matching the filter."""
        ...


class TransientRepositoryError(UnavailableError):
    """Failure worth retrying (network error, 5xx, rate limit)."""


class SupabaseRepository:
    """
    Reads the services table through Supabase's PostgREST endpoint.

    Transient failures are retried with exponential backoff inside each
    call, so callers above never see partial retries.
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        table: str = "services",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = (base_url or "").rstrip("/")
        self._api_key = api_key
        self._table = table
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    def _get_headers(self) -> Dict[str, str]:
        """Get API authentication headers."""
        return {
            "apikey": self._api_key or "",
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TransientRepositoryError),
        reraise=True,
    )
    def _select(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Run one select against the table with retry logic.

        Retries on network errors, 5xx and 429 with exponential backoff.
        """
        if not self.is_configured:
            raise UnavailableError("Supabase is not configured")

        url = f"{self._base_url}/rest/v1/{self._table}"
        try:
            response = self._session.get(
                url,
                headers=self._get_headers(),
                params={"select": "*", **params},
                timeout=self._timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Supabase connection error: {e}")
            raise TransientRepositoryError(str(e)) from e
        except requests.RequestException as e:
            # Bad URL, redirect loop, broken stream: not worth retrying
            logger.error(f"Supabase request failed: {e}")
            raise UnavailableError(str(e)) from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Supabase transient error: {response.status_code}")
            raise TransientRepositoryError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.error(f"Supabase API error: {response.status_code} - {response.text[:200]}")
            raise UnavailableError(f"HTTP {response.status_code}")

        try:
            rows = response.json()
        except ValueError as e:
            raise UnavailableError(f"Invalid JSON from Supabase: {e}") from e
        if not isinstance(rows, list):
            raise UnavailableError("Unexpected Supabase response shape")
        return rows

    def fetch_by_id(self, service_id: str) -> ServiceEntity:
        rows = self._select({"id": f"eq.{service_id}", "limit": 1})
        if not rows:
            # Older rows are keyed by uid
            rows = self._select({"uid": f"eq.{service_id}", "limit": 1})
        if not rows:
            logger.info(f"Service {service_id} not found in Supabase")
            raise NotFoundError(service_id)
        return ServiceEntity.from_record(rows[0], fallback_id=service_id)

    def fetch_by_filter(
        self,
        service_filter: ServiceFilter,
        page_size: int,
        offset: int = 0,
    ) -> List[ServiceEntity]:
        params: Dict[str, Any] = {"limit": page_size, "offset": offset}
        if service_filter.active_only:
            params["active"] = "eq.true"
        if service_filter.effective_category:
            params["category"] = f"eq.{service_filter.effective_category}"
        if service_filter.barrio:
            params["barrio"] = f"eq.{service_filter.barrio}"
        if service_filter.user_id:
            params["userId"] = f"eq.{service_filter.user_id}"
        if service_filter.search:
            term = service_filter.search.replace(",", " ").strip()
            params["or"] = (
                f"(name.ilike.*{term}*,description.ilike.*{term}*,category.ilike.*{term}*)"
            )
        if service_filter.featured:
            params["featured"] = "eq.true"
            params["order"] = "rating.desc"
        else:
            params["order"] = "createdAt.desc"

        rows = self._select(params)
        logger.info(f"Supabase returned {len(rows)} rows for [{service_filter.cache_fragment()}]")
        return [ServiceEntity.from_record(row) for row in rows]
