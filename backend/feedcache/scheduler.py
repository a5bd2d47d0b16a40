"""Background scheduler for feed maintenance jobs.

Every job runs on its own daemon thread and timer. A job whose previous run
is still in flight skips the tick instead of overlapping, and a failing job
is logged and recorded without affecting its siblings.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .feed_tasks import FeedMaintenance, TaskSummary
from .models import utcnow
from .telemetry import emit_event

logger = logging.getLogger(__name__)

JobAction = Callable[[], TaskSummary]


@dataclass(frozen=True)
class JobSchedule:
    """Either a fixed interval aligned to the epoch or a set of UTC hours on the hour."""

    interval: Optional[timedelta] = None
    at_hours: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if (self.interval is None) == (not self.at_hours):
            raise ValueError("JobSchedule needs exactly one of interval or at_hours")
        if any(hour < 0 or hour > 23 for hour in self.at_hours):
            raise ValueError("at_hours must be within 0..23")

    def next_run_after(self, now: datetime) -> datetime:
        if self.interval is not None:
            period = self.interval.total_seconds()
            next_ts = (math.floor(now.timestamp() / period) + 1) * period
            return datetime.fromtimestamp(next_ts, tz=now.tzinfo)
        base = now.replace(minute=0, second=0, microsecond=0)
        for day_offset in (0, 1):
            for hour in sorted(self.at_hours):
                candidate = base.replace(hour=hour) + timedelta(days=day_offset)
                if candidate > now:
                    return candidate
        raise AssertionError("unreachable: at_hours is non-empty")


@dataclass
class JobStatus:
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_status: Optional[str] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_summary: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScheduledJob:
    name: str
    schedule: JobSchedule
    action: JobAction
    enabled: bool = True
    status: JobStatus = field(default_factory=JobStatus)
    running: threading.Lock = field(default_factory=threading.Lock, repr=False)


def default_jobs(maintenance: FeedMaintenance, *, disabled: Iterable[str] = ()) -> List[ScheduledJob]:
    disabled_names = set(disabled)
    jobs = [
        ScheduledJob("refresh_feeds", JobSchedule(interval=timedelta(hours=4)), maintenance.refresh_all_feeds),
        ScheduledJob("cleanup_expired", JobSchedule(interval=timedelta(hours=1)), maintenance.cleanup_expired),
        ScheduledJob("new_user_feeds", JobSchedule(interval=timedelta(minutes=30)), maintenance.generate_for_new_users),
        ScheduledJob("update_analytics", JobSchedule(interval=timedelta(hours=2)), maintenance.update_analytics),
        ScheduledJob("peak_prep", JobSchedule(at_hours=(8, 13, 18)), maintenance.prepare_peak_hour_feeds),
        ScheduledJob("daily_health", JobSchedule(at_hours=(2,)), maintenance.run_daily_health_check),
    ]
    for job in jobs:
        job.enabled = job.name not in disabled_names
    return jobs


class FeedScheduler:
    def __init__(
        self,
        jobs: Iterable[ScheduledJob],
        *,
        clock: Callable[[], datetime] = utcnow,
        join_timeout: float = 5.0,
    ) -> None:
        self._jobs: Dict[str, ScheduledJob] = {job.name: job for job in jobs}
        self._clock = clock
        self._join_timeout = join_timeout
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        with self._lock:
            if self._is_running:
                logger.info("Feed scheduler is already running")
                return
            self._stop_event.clear()
            for job in self._jobs.values():
                if not job.enabled:
                    logger.info("Job %s is disabled; not scheduling it", job.name)
                    continue
                thread = threading.Thread(target=self._loop, args=(job,), name=f"feed-job-{job.name}", daemon=True)
                thread.start()
                self._threads.append(thread)
                logger.info("Started job: %s", job.name)
            self._is_running = True
        logger.info("Feed scheduler running %s jobs", len(self._threads))

    def stop(self) -> None:
        with self._lock:
            if not self._is_running:
                logger.info("Feed scheduler is not running")
                return
            self._stop_event.set()
            threads, self._threads = self._threads, []
            self._is_running = False
        for thread in threads:
            thread.join(timeout=self._join_timeout)
            if thread.is_alive():
                logger.warning("Thread %s did not stop within %ss", thread.name, self._join_timeout)
        logger.info("Feed scheduler stopped")

    def run_job(self, name: str) -> Optional[TaskSummary]:
        """Run a job synchronously. Returns ``None`` if a run was already in flight."""
        job = self._get(name)
        logger.info("Manually running job: %s", name)
        return self._execute(job, reraise=True)

    def trigger(self, name: str) -> bool:
        """Start a job in the background; False if it is already running."""
        job = self._get(name)
        if job.running.locked():
            logger.info("Job %s already running; trigger ignored", name)
            return False
        thread = threading.Thread(target=self._execute, args=(job,), name=f"feed-trigger-{name}", daemon=True)
        with self._lock:
            self._threads = [existing for existing in self._threads if existing.is_alive()]
            self._threads.append(thread)
        thread.start()
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self._is_running,
            "registered_jobs": sorted(self._jobs),
            "active_jobs": sorted(name for name, job in self._jobs.items() if job.enabled),
            "jobs": {
                name: {
                    "enabled": job.enabled,
                    "in_progress": job.running.locked(),
                    "runs": job.status.runs,
                    "failures": job.status.failures,
                    "skipped": job.status.skipped,
                    "last_status": job.status.last_status,
                    "last_started_at": job.status.last_started_at,
                    "last_finished_at": job.status.last_finished_at,
                    "last_error": job.status.last_error,
                }
                for name, job in sorted(self._jobs.items())
            },
        }

    def _get(self, name: str) -> ScheduledJob:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"Unknown job: {name}") from None

    def _loop(self, job: ScheduledJob) -> None:
        while not self._stop_event.is_set():
            now = self._clock()
            delay = max((job.schedule.next_run_after(now) - now).total_seconds(), 0.0)
            if self._stop_event.wait(delay):
                break
            self._execute(job)

    def _execute(self, job: ScheduledJob, *, reraise: bool = False) -> Optional[TaskSummary]:
        if not job.running.acquire(blocking=False):
            job.status.skipped += 1
            logger.warning("Skipping %s: previous run still in progress", job.name)
            emit_event("feed_task", job=job.name, status="skipped")
            return None
        started_at = perf_counter()
        job.status.last_started_at = self._clock()
        logger.info("Running job %s", job.name)
        try:
            summary = job.action()
        except Exception as exc:  # noqa: BLE001
            job.status.failures += 1
            job.status.last_status = "failed"
            job.status.last_error = str(exc)
            logger.exception("Job %s failed", job.name)
            emit_event(
                "feed_task",
                job=job.name,
                status="failed",
                error=str(exc),
                exception_type=exc.__class__.__name__,
                duration_ms=round((perf_counter() - started_at) * 1000.0, 2),
            )
            if reraise:
                raise
            return None
        finally:
            job.status.runs += 1
            job.status.last_finished_at = self._clock()
            job.running.release()

        job.status.last_status = "success"
        job.status.last_error = None
        job.status.last_summary = summary.as_fields()
        logger.info("Job %s completed: %s", job.name, job.status.last_summary)
        emit_event(
            "feed_task",
            job=job.name,
            status="success",
            duration_ms=round((perf_counter() - started_at) * 1000.0, 2),
            **summary.as_fields(),
        )
        return summary


__all__ = [
    "FeedScheduler",
    "JobSchedule",
    "JobStatus",
    "ScheduledJob",
    "default_jobs",
]
