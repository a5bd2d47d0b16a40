"""Bodies of the periodic feed maintenance tasks.

Each method is safe to run concurrently with itself and with the request
path: feed writes go through the manager's upsert/pop operations and the
deletes are idempotent. Per-user failures are logged and skipped so one bad
user never aborts a sweep.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Sequence

from .behavior_profiler import BehaviorProfiler
from .errors import FeedError
from .feed_manager import FeedManager
from .feed_store import FeedStore
from .models import DEFAULT_FEED_TYPE
from .telemetry import emit_event

logger = logging.getLogger(__name__)

REFRESH_ACTIVITY_WINDOW = timedelta(days=7)
NEW_USER_ACTIVITY_WINDOW = timedelta(days=3)
ANALYTICS_ACTIVITY_WINDOW = timedelta(hours=24)
CONTENT_RETENTION = timedelta(days=7)
LOW_ENGAGEMENT_WINDOW = timedelta(days=7)

NEW_USER_BATCH_LIMIT = 20
ANALYTICS_BATCH_LIMIT = 50
PEAK_USER_LIMIT = 30
PEAK_LOW_WATERMARK = 3
LOW_ENGAGEMENT_THRESHOLD = 0.3
LOW_ENGAGEMENT_LIMIT = 10
HEALTHY_COVERAGE_PERCENT = 80.0


@dataclass
class TaskSummary:
    """Outcome of one maintenance run, logged by the scheduler."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def as_fields(self) -> Dict[str, Any]:
        return {"processed": self.processed, "succeeded": self.succeeded, "failed": self.failed, **self.details}


class FeedMaintenance:
    def __init__(
        self,
        manager: FeedManager,
        store: FeedStore,
        profiler: BehaviorProfiler,
        *,
        batch_size: int = 5,
        batch_pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._manager = manager
        self._store = store
        self._profiler = profiler
        self._batch_size = max(batch_size, 1)
        self._batch_pause_seconds = batch_pause_seconds
        self._sleep = sleep

    def refresh_all_feeds(self) -> TaskSummary:
        now = self._manager.now()
        user_ids = self._store.active_user_ids(now - REFRESH_ACTIVITY_WINDOW)
        logger.info("Refreshing feeds for %s active users", len(user_ids))
        summary = TaskSummary(processed=len(user_ids))
        batches = [user_ids[index : index + self._batch_size] for index in range(0, len(user_ids), self._batch_size)]
        with ThreadPoolExecutor(max_workers=self._batch_size, thread_name_prefix="feed-refresh") as pool:
            for position, batch in enumerate(batches):
                outcomes = list(pool.map(self._refresh_one, batch))
                summary.succeeded += sum(1 for ok in outcomes if ok)
                summary.failed += sum(1 for ok in outcomes if not ok)
                if position < len(batches) - 1 and self._batch_pause_seconds > 0:
                    self._sleep(self._batch_pause_seconds)
        summary.details["batches"] = len(batches)
        return summary

    def cleanup_expired(self) -> TaskSummary:
        now = self._manager.now()
        feeds_deleted = self._store.delete_expired_feeds(now)
        content_deleted = self._store.delete_unread_pregenerated(now - CONTENT_RETENTION)
        logger.info("Cleaned up %s expired feeds and %s unused pre-generated items", feeds_deleted, content_deleted)
        return TaskSummary(
            processed=feeds_deleted + content_deleted,
            succeeded=feeds_deleted + content_deleted,
            details={"feeds_deleted": feeds_deleted, "content_deleted": content_deleted},
        )

    def generate_for_new_users(self) -> TaskSummary:
        now = self._manager.now()
        user_ids = self._store.active_user_ids_without_feed(
            now - NEW_USER_ACTIVITY_WINDOW,
            now=now,
            feed_type=DEFAULT_FEED_TYPE,
            limit=NEW_USER_BATCH_LIMIT,
        )
        logger.info("Found %s users needing new feeds", len(user_ids))
        return self._for_each(user_ids, self._refresh_one)

    def update_analytics(self) -> TaskSummary:
        now = self._manager.now()
        user_ids = self._store.active_user_ids(now - ANALYTICS_ACTIVITY_WINDOW, limit=ANALYTICS_BATCH_LIMIT)
        logger.info("Updating behavior profiles for %s active users", len(user_ids))

        def _profile(user_id: str) -> bool:
            try:
                self._profiler.refresh(user_id, now=now)
            except FeedError as exc:
                logger.error("Failed to update profile for user %s: %s", user_id, exc)
                return False
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected error updating profile for user %s", user_id)
                return False
            return True

        return self._for_each(user_ids, _profile)

    def prepare_peak_hour_feeds(self) -> TaskSummary:
        now = self._manager.now()
        upcoming_hour = (now.hour + 1) % 24
        user_ids = self._store.user_ids_with_peak_hour(upcoming_hour, PEAK_USER_LIMIT)
        logger.info("Preparing feeds for %s users peaking at %02d:00", len(user_ids), upcoming_hour)
        refreshed: List[str] = []

        def _top_up(user_id: str) -> bool:
            feed = self._store.get_feed(user_id, DEFAULT_FEED_TYPE)
            if feed is not None and feed.is_valid(now) and feed.remaining >= PEAK_LOW_WATERMARK:
                return True
            if self._refresh_one(user_id):
                refreshed.append(user_id)
                return True
            return False

        summary = self._for_each(user_ids, _top_up)
        summary.details.update({"upcoming_hour": upcoming_hour, "refreshed": len(refreshed)})
        return summary

    def run_daily_health_check(self) -> TaskSummary:
        now = self._manager.now()
        since = now - REFRESH_ACTIVITY_WINDOW
        active_users = self._store.count_active_users(since)
        covered_users = self._store.count_active_users_with_valid_feed(since, now)
        coverage = (covered_users / active_users * 100.0) if active_users else 0.0
        logger.info("Feed coverage: %.1f%% (%s/%s users)", coverage, covered_users, active_users)

        low_engagement = self._store.low_engagement_user_ids(
            threshold=LOW_ENGAGEMENT_THRESHOLD,
            updated_since=now - LOW_ENGAGEMENT_WINDOW,
            limit=LOW_ENGAGEMENT_LIMIT,
        )
        summary = self._for_each(low_engagement, self._refresh_one)
        status = "healthy" if coverage >= HEALTHY_COVERAGE_PERCENT else "needs_attention"
        statistics = self._manager.feed_statistics()
        summary.details.update(
            {
                "active_users": active_users,
                "users_with_feeds": covered_users,
                "feed_coverage_percent": round(coverage, 2),
                "low_engagement_users_refreshed": summary.succeeded,
                "total_active_feeds": statistics.total_active_feeds,
                "system_status": status,
            }
        )
        log = logger.info if status == "healthy" else logger.warning
        log("Daily health check: status=%s coverage=%.1f%%", status, coverage)
        emit_event("feed_health", **summary.details)
        return summary

    def _refresh_one(self, user_id: str) -> bool:
        try:
            self._manager.generate_or_reuse_feed(user_id, DEFAULT_FEED_TYPE)
        except FeedError as exc:
            logger.error("Failed to refresh feed for user %s: %s", user_id, exc)
            return False
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error refreshing feed for user %s", user_id)
            return False
        return True

    @staticmethod
    def _for_each(user_ids: Sequence[str], action: Callable[[str], bool]) -> TaskSummary:
        summary = TaskSummary(processed=len(user_ids))
        for user_id in user_ids:
            try:
                ok = action(user_id)
            except Exception:  # noqa: BLE001
                logger.exception("Maintenance step failed for user %s", user_id)
                ok = False
            if ok:
                summary.succeeded += 1
            else:
                summary.failed += 1
        return summary


__all__ = ["FeedMaintenance", "TaskSummary"]
