"""
Visit tracking and popularity scoring.
"""
from .tracker import (
    AccessEvent,
    AccessTracker,
    PopularityScore,
    compute_popularity_score,
)

__all__ = [
    "AccessEvent",
    "AccessTracker",
    "PopularityScore",
    "compute_popularity_score",
]
