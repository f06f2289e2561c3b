"""
Error taxonomy for the service data-access layer.
"""
from typing import Optional


class ServiceDataError(Exception):
    """Base class for all data-access errors."""


class NotFoundError(ServiceDataError):
    """The entity genuinely does not exist upstream. Never retried, never cached."""

    def __init__(self, entity_id: str, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"Service {entity_id} not found")


class UnavailableError(ServiceDataError):
    """Transient repository or network failure."""


class ServiceUnavailableError(UnavailableError):
    """
    Neither the repository nor the fallback dataset could answer.

    Raised to the UI layer so it can render an error state instead of
    an empty "not found" state.
    """

    def __init__(self, message: str, degraded: bool = True):
        self.degraded = degraded
        super().__init__(message)


class CorruptRecordError(ServiceDataError):
    """A durable cache record could not be decoded or has a stale schema."""


class RequestTimeoutError(ServiceDataError, TimeoutError):
    """The caller's deadline passed while waiting on a fetch."""

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Request for {key} timed out after {timeout}s")
