"""
Service Access Tracker

Records service views and derives popularity from them:
1. Visit log (append-only, capped)
2. Popularity scores combining frequency and recency
3. Category breakdowns (for targeted preloading)

The log survives restarts as JSON in the analytics directory when the
environment allows writing to disk.
"""

import json
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from servicedir.utils.debounce import Debouncer

logger = logging.getLogger("analytics.tracker")

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class AccessEvent:
    """One view of one service."""
    entity_id: str
    timestamp: float
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"entity_id": self.entity_id, "timestamp": self.timestamp}
        if self.category:
            data["category"] = self.category
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessEvent":
        return cls(
            entity_id=str(data["entity_id"]),
            timestamp=float(data["timestamp"]),
            category=data.get("category"),
        )


@dataclass
class PopularityScore:
    """Derived popularity of one service."""
    entity_id: str
    visits: int
    last_visit: float
    score: float
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "visits": self.visits,
            "last_visit": self.last_visit,
            "score": round(self.score, 4),
            "category": self.category,
        }


def compute_popularity_score(
    visits: int,
    days_since_last_visit: float,
    recency_weight: float = 1.5,
    recency_window_days: float = 30.0,
) -> float:
    """
    Frequency plus a recency bonus.

    score = visits + visits * recency_factor * recency_weight, where
    recency_factor falls linearly from 1 (visited now) to 0 (visited
    recency_window_days ago or earlier) and never goes negative.
    """
    recency_factor = max(0.0, 1.0 - days_since_last_visit / recency_window_days)
    recency_factor = min(1.0, recency_factor)
    return visits + visits * recency_factor * recency_weight


def _as_timestamp(value: Any) -> Optional[float]:
    """Epoch seconds from a stored value, or None if it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid last_cleanup value: {value!r}")
        return None


class AccessTracker:
    """
    Records service visits and ranks services by popularity.

    Stores:
    - Visit events (capped FIFO log)
    - Last cleanup time (so cleanup runs at most once per interval)
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        persist: bool = True,
        max_events: int = 500,
        retention_days: int = 30,
        cleanup_interval_seconds: float = 3 * SECONDS_PER_DAY,
        recency_weight: float = 1.5,
        recency_window_days: float = 30.0,
        persist_debounce_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.persist = persist and data_dir is not None
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self.max_events = max_events
        self.retention_days = retention_days
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.recency_weight = recency_weight
        self.recency_window_days = recency_window_days
        self._persist_debounce = persist_debounce_seconds
        self._clock = clock

        # In-memory state
        self._events: List[AccessEvent] = []
        self._last_cleanup: Optional[float] = None

        # Thread safety
        self._lock = threading.Lock()
        self._debouncer = Debouncer(name="tracker-persist")

        if self.persist:
            self.visits_file = self.data_dir / "visits.json"
            self.state_file = self.data_dir / "analytics_state.json"
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Analytics persistence disabled, cannot create {self.data_dir}: {e}")
                self.persist = False
            else:
                self._load_data()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_data(self):
        """Load existing analytics data from disk."""
        try:
            if self.visits_file.exists():
                with open(self.visits_file, "r", encoding="utf-8") as f:
                    self._events = [AccessEvent.from_dict(d) for d in json.load(f)]
        except (json.JSONDecodeError, IOError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable visit log: {e}")
            self._events = []

        try:
            if self.state_file.exists():
                with open(self.state_file, "r", encoding="utf-8") as f:
                    self._last_cleanup = _as_timestamp(json.load(f).get("last_cleanup"))
        except (json.JSONDecodeError, IOError, AttributeError) as e:
            logger.warning(f"Discarding unreadable analytics state: {e}")
            self._last_cleanup = None

        if len(self._events) > self.max_events:
            self._events = self._events[-self.max_events:]

    def _save_visits(self):
        """Persist the visit log to disk."""
        if not self.persist:
            return
        with self._lock:
            snapshot = [e.to_dict() for e in self._events]
        try:
            with open(self.visits_file, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, ensure_ascii=False)
        except IOError as e:
            logger.warning(f"Could not persist visit log: {e}")

    def _save_state(self):
        """Persist the last cleanup timestamp to disk."""
        if not self.persist:
            return
        try:
            with open(self.state_file, "w", encoding="utf-8") as f:
                json.dump({"last_cleanup": self._last_cleanup}, f)
        except IOError as e:
            logger.warning(f"Could not persist analytics state: {e}")

    def _schedule_save(self):
        if not self.persist:
            return
        if self._persist_debounce <= 0:
            self._save_visits()
        else:
            self._debouncer.schedule(self._save_visits, self._persist_debounce)

    def flush(self):
        """Write any debounced visit log changes now."""
        if not self._debouncer.flush() and self.persist:
            self._save_visits()

    def close(self):
        """Flush pending writes. Call at session teardown."""
        self.flush()

    # =========================================================================
    # Ingestion
    # =========================================================================

    def track_visit(self, entity_id: str, category: Optional[str] = None) -> None:
        """
        Record a view of a service.

        Best effort: never raises and never blocks on disk I/O.
        """
        if not entity_id:
            return
        try:
            event = AccessEvent(
                entity_id=str(entity_id),
                timestamp=self._clock(),
                category=category,
            )
            with self._lock:
                self._events.append(event)
                overflow = len(self._events) - self.max_events
                if overflow > 0:
                    del self._events[:overflow]
            self._schedule_save()
            logger.debug(f"Visit recorded: {entity_id}")
        except Exception as e:
            logger.warning(f"Error recording visit for {entity_id}: {e}")

    # =========================================================================
    # Popularity
    # =========================================================================

    def get_popular_services(
        self,
        limit: Optional[int] = None,
        category: Optional[str] = None,
    ) -> List[PopularityScore]:
        """
        Rank services by popularity score.

        Args:
            limit: Maximum results to return (None for all)
            category: Only services with at least one visit tagged with it

        Returns:
            Scores sorted by score, then visits (both descending), then id
        """
        now = self._clock()
        with self._lock:
            events = list(self._events)

        stats: Dict[str, Dict[str, Any]] = {}
        tagged = set()
        for event in events:
            entry = stats.setdefault(
                event.entity_id,
                {"visits": 0, "last_visit": float("-inf"), "category": None, "tagged_at": float("-inf")},
            )
            entry["visits"] += 1
            entry["last_visit"] = max(entry["last_visit"], event.timestamp)
            if event.category:
                # Label with the category of the latest tagged visit
                if event.timestamp >= entry["tagged_at"]:
                    entry["category"] = event.category
                    entry["tagged_at"] = event.timestamp
                if event.category == category:
                    tagged.add(event.entity_id)

        scores = []
        for entity_id, entry in stats.items():
            if category is not None and entity_id not in tagged:
                continue
            days_since = max(0.0, (now - entry["last_visit"]) / SECONDS_PER_DAY)
            scores.append(PopularityScore(
                entity_id=entity_id,
                visits=entry["visits"],
                last_visit=entry["last_visit"],
                score=compute_popularity_score(
                    entry["visits"],
                    days_since,
                    self.recency_weight,
                    self.recency_window_days,
                ),
                category=entry["category"],
            ))

        scores.sort(key=lambda s: (-s.score, -s.visits, s.entity_id))
        if limit is not None:
            return scores[:limit]
        return scores

    def get_services_to_preload(self, limit: int, category: Optional[str] = None) -> List[str]:
        """Ids of the most popular services, best first."""
        return [s.entity_id for s in self.get_popular_services(limit, category=category)]

    # =========================================================================
    # Maintenance and reporting
    # =========================================================================

    def cleanup_old_data(self) -> int:
        """
        Drop visits older than the retention window.

        Runs at most once per cleanup interval; calls in between are no-ops.

        Returns:
            Number of visits removed
        """
        now = self._clock()
        with self._lock:
            if (
                self._last_cleanup is not None
                and now - self._last_cleanup < self.cleanup_interval_seconds
            ):
                return 0

            cutoff = now - self.retention_days * SECONDS_PER_DAY
            before = len(self._events)
            self._events = [e for e in self._events if e.timestamp > cutoff]
            removed = before - len(self._events)
            self._last_cleanup = now

        self._save_state()
        if removed:
            self._schedule_save()
        logger.info(f"Analytics cleanup: {removed} old visits removed")
        return removed

    def get_analytics_stats(self, preload_count: int = 8) -> Dict[str, Any]:
        """Get analytics summary."""
        now = self._clock()
        with self._lock:
            events = list(self._events)

        recent = [e for e in events if now - e.timestamp < SECONDS_PER_DAY]
        categories: Dict[str, int] = defaultdict(int)
        for event in events:
            if event.category:
                categories[event.category] += 1
        top_categories = sorted(categories.items(), key=lambda x: (-x[1], x[0]))[:5]

        popular = self.get_popular_services()
        return {
            "total_visits": len(events),
            "recent_visits": len(recent),
            "popular_services": [p.to_dict() for p in popular[:5]],
            "top_categories": [{"category": c, "visits": n} for c, n in top_categories],
            "services_to_preload": [p.entity_id for p in popular[:preload_count]],
        }

    @property
    def event_count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self):
        """Forget every visit."""
        with self._lock:
            self._events = []
        self._debouncer.cancel()
        if self.persist:
            self._save_visits()
