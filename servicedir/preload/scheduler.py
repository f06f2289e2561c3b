"""
Popularity-driven cache preloading.

Warms the cache for the services users visit most, in small batches, through
the same coordinator path as interactive reads so a preload and a user request
for the same service never fetch twice.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from servicedir.analytics import AccessTracker

logger = logging.getLogger("preload.scheduler")

# Services warmed per category when no limit is given.
CATEGORY_PRELOAD_LIMIT = 5


@dataclass
class PreloadStatus:
    """Progress of the current or last preload run."""
    is_preloading: bool = False
    preloaded_count: int = 0
    total_to_preload: int = 0
    last_preload_time: Optional[float] = None
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class PreloadRun:
    """Outcome of one preload request."""
    started: bool
    reason: Optional[str] = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PreloadScheduler:
    """
    Preloads popular services into the cache.

    States: idle, running (batch i of k), idle. At most one run at a time;
    ``force`` skips the interval checks but never starts a second run.

    Usage:
        scheduler = PreloadScheduler(client, tracker, delay_seconds=0)
        run = scheduler.preload_popular(force=True)
    """

    def __init__(
        self,
        client,
        tracker: AccessTracker,
        preload_count: int = 8,
        interval_seconds: float = 2 * 60 * 60,
        min_time_between_seconds: float = 10 * 60,
        max_concurrent: int = 1,
        delay_seconds: float = 5.0,
        auto_preload: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._tracker = tracker
        self.preload_count = preload_count
        self.interval_seconds = interval_seconds
        self.min_time_between_seconds = min_time_between_seconds
        self.max_concurrent = max(1, max_concurrent)
        self.delay_seconds = delay_seconds
        self._auto_preload = auto_preload
        self._clock = clock

        self._status = PreloadStatus()
        self._last_attempt: Optional[float] = None
        self._started_at: Optional[float] = None

        self._run_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent,
            thread_name_prefix="preload",
        )

    @classmethod
    def from_settings(cls, client, tracker: AccessTracker, settings, clock=time.time) -> "PreloadScheduler":
        return cls(
            client,
            tracker,
            preload_count=settings.preload_count,
            interval_seconds=settings.preload_interval_seconds,
            min_time_between_seconds=settings.min_time_between_preloads_seconds,
            max_concurrent=settings.max_concurrent_preloads,
            delay_seconds=settings.preload_delay_seconds,
            auto_preload=settings.enable_background_preload,
            clock=clock,
        )

    # =========================================================================
    # Runs
    # =========================================================================

    def preload_popular(self, force: bool = False) -> PreloadRun:
        """
        Preload the most popular services.

        Args:
            force: Ignore the interval and minimum spacing checks

        Returns:
            What happened; ``started`` is False when a gate refused the run
        """
        if not self._run_lock.acquire(blocking=False):
            logger.debug("Preload already running, skipping")
            return PreloadRun(started=False, reason="already_running")

        try:
            now = self._clock()
            if not force:
                reason = self._gate(now)
                if reason is not None:
                    logger.debug(f"Preload skipped: {reason}")
                    return PreloadRun(started=False, reason=reason)
            self._last_attempt = now

            ids = self._tracker.get_services_to_preload(self.preload_count)
            return self._run(ids)
        finally:
            self._run_lock.release()

    def preload_category(self, category: str, limit: Optional[int] = None) -> PreloadRun:
        """Preload the most popular services visited under one category."""
        if not self._run_lock.acquire(blocking=False):
            return PreloadRun(started=False, reason="already_running")

        try:
            self._last_attempt = self._clock()
            ids = self._tracker.get_services_to_preload(
                CATEGORY_PRELOAD_LIMIT if limit is None else limit, category=category
            )
            logger.info(f"Category preload for {category}: {len(ids)} candidates")
            return self._run(ids)
        finally:
            self._run_lock.release()

    def _gate(self, now: float) -> Optional[str]:
        last_preload = self._status.last_preload_time
        if last_preload is not None and now - last_preload < self.interval_seconds:
            return "interval_not_elapsed"
        if self._last_attempt is not None and now - self._last_attempt < self.min_time_between_seconds:
            return "too_soon"
        return None

    def _run(self, ids: List[str]) -> PreloadRun:
        """Preload ids in batches. Caller holds the run lock."""
        run = PreloadRun(started=True, total=len(ids))
        with self._status_lock:
            self._status = PreloadStatus(
                is_preloading=True,
                total_to_preload=len(ids),
                last_preload_time=self._status.last_preload_time,
            )

        if ids:
            logger.info(f"Preloading {len(ids)} popular services")

        batches = [
            ids[i:i + self.max_concurrent]
            for i in range(0, len(ids), self.max_concurrent)
        ]
        try:
            for index, batch in enumerate(batches):
                self._run_batch(batch, run)
                if index < len(batches) - 1 and self._stop_event.wait(self.delay_seconds):
                    logger.info("Preload interrupted by shutdown")
                    break
        finally:
            with self._status_lock:
                self._status.is_preloading = False
                self._status.last_preload_time = self._clock()

        logger.info(
            f"Preload finished: {run.succeeded} loaded, {run.skipped} cached, {run.failed} failed"
        )
        return run

    def _run_batch(self, batch: List[str], run: PreloadRun) -> None:
        to_fetch = []
        for service_id in batch:
            if self._client.is_service_cached(service_id):
                run.skipped += 1
                self._record("skipped")
            else:
                to_fetch.append(service_id)

        futures = {
            self._executor.submit(self._client.fetch_service, service_id): service_id
            for service_id in to_fetch
        }
        for future in as_completed(futures):
            service_id = futures[future]
            try:
                future.result()
                run.succeeded += 1
                self._record("succeeded")
            except Exception as e:
                run.failed += 1
                self._record("failed")
                logger.warning(f"Preload failed for {service_id}: {e}")

    def _record(self, outcome: str) -> None:
        with self._status_lock:
            setattr(self._status, outcome, getattr(self._status, outcome) + 1)
            self._status.preloaded_count += 1

    # =========================================================================
    # Background loop
    # =========================================================================

    def start(self) -> None:
        """Start the background loop if automatic preloading is enabled."""
        self._started_at = self._clock()
        if self._auto_preload:
            self._start_thread()

    def _start_thread(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="preload-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Background preloading started")

    def _loop(self) -> None:
        tick = min(self.interval_seconds, self.min_time_between_seconds) or 1.0
        while not self._stop_event.wait(tick):
            if not self._auto_preload:
                continue
            try:
                self.preload_popular()
            except Exception as e:
                logger.error(f"Background preload crashed: {e}")

    def set_auto_preload(self, enabled: bool) -> None:
        self._auto_preload = enabled
        logger.info(f"Automatic preloading {'enabled' if enabled else 'disabled'}")
        if enabled and self._started_at is not None:
            self._start_thread()

    def stop(self) -> None:
        """Stop the loop. A batch in progress finishes first."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=30)
            self._thread = None
        self._executor.shutdown(wait=True)

    # =========================================================================
    # Reporting
    # =========================================================================

    @property
    def is_auto_preload_enabled(self) -> bool:
        return self._auto_preload

    def get_status(self) -> PreloadStatus:
        with self._status_lock:
            return PreloadStatus(**asdict(self._status))

    def get_preload_stats(self) -> Dict[str, Any]:
        status = self.get_status()
        next_time = None
        if self._auto_preload:
            base = status.last_preload_time or self._started_at or self._clock()
            next_time = base + self.interval_seconds
        return {
            **asdict(status),
            "is_preload_enabled": self._auto_preload,
            "next_preload_time": next_time,
        }
