"""
Background cache warming for popular services.
"""
from .scheduler import PreloadRun, PreloadScheduler, PreloadStatus

__all__ = ["PreloadRun", "PreloadScheduler", "PreloadStatus"]
