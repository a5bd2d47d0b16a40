"""Transactional facade over the feed cache repositories.

Every public method runs in its own session scope. Database errors roll the
transaction back and surface as :class:`StoreUnavailable`, so callers never
observe a half-written feed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.session import SessionFactory, session_scope
from .errors import StoreUnavailable
from .models import (
    BehaviorProfile,
    ContentFeedback,
    ContentItem,
    FeedEntry,
    FeedTypeStatistics,
    SessionRecord,
    UserRecord,
)
from .repositories import (
    BehaviorProfileRepository,
    ContentItemRepository,
    FeedEntryRepository,
    UserActivityRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FeedStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self._feeds = FeedEntryRepository()
        self._content = ContentItemRepository()
        self._profiles = BehaviorProfileRepository()
        self._users = UserActivityRepository()

    def _run(self, operation: str, work: Callable[[Session], T], *, commit: bool = True) -> T:
        try:
            with session_scope(self._session_factory, commit=commit) as session:
                return work(session)
        except SQLAlchemyError as exc:
            logger.error("Feed store operation %s failed: %s", operation, exc)
            raise StoreUnavailable(f"Feed store operation '{operation}' failed: {exc}") from exc

    def ping(self) -> None:
        self._run("ping", lambda session: session.execute(text("SELECT 1")), commit=False)

    # Feed entries

    def get_feed(self, user_id: str, feed_type: str) -> Optional[FeedEntry]:
        return self._run("get_feed", lambda s: self._feeds.get(s, user_id, feed_type), commit=False)

    def list_valid_feeds(self, user_id: str, now: datetime) -> List[FeedEntry]:
        return self._run("list_valid_feeds", lambda s: self._feeds.list_valid_for_user(s, user_id, now), commit=False)

    def upsert_feed(self, entry: FeedEntry) -> FeedEntry:
        return self._run("upsert_feed", lambda s: self._feeds.upsert(s, entry))

    def pop_front(self, feed: FeedEntry, *, delivered: bool, now: datetime) -> Optional[FeedEntry]:
        if not feed.content_queue:
            return None
        head = feed.content_queue[0]
        return self._run(
            "pop_front",
            lambda s: self._feeds.pop_front(
                s,
                feed.id,
                expected_version=feed.version,
                expected_head=head,
                delivered=delivered,
                now=now,
            ),
        )

    def delete_expired_feeds(self, now: datetime) -> int:
        return self._run("delete_expired_feeds", lambda s: self._feeds.delete_expired(s, now))

    def count_valid_feeds(self, now: datetime) -> int:
        return self._run("count_valid_feeds", lambda s: self._feeds.count_valid(s, now), commit=False)

    def feed_type_statistics(self, now: datetime) -> List[FeedTypeStatistics]:
        return self._run("feed_type_statistics", lambda s: self._feeds.statistics(s, now), commit=False)

    # Content items

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        return self._run("get_content", lambda s: self._content.get(s, content_id), commit=False)

    def add_content(self, item: ContentItem) -> ContentItem:
        return self._run("add_content", lambda s: self._content.add(s, item))

    def recent_content(self, user_id: str, limit: int = 100) -> List[ContentItem]:
        return self._run("recent_content", lambda s: self._content.recent_for_user(s, user_id, limit), commit=False)

    def delete_unread_pregenerated(self, created_before: datetime) -> int:
        return self._run(
            "delete_unread_pregenerated",
            lambda s: self._content.delete_unread_pregenerated(s, created_before),
        )

    def record_feedback(self, content_id: str, feedback: ContentFeedback) -> Optional[ContentItem]:
        return self._run("record_feedback", lambda s: self._content.record_feedback(s, content_id, feedback))

    # Behavior profiles

    def get_profile(self, user_id: str) -> Optional[BehaviorProfile]:
        return self._run("get_profile", lambda s: self._profiles.get(s, user_id), commit=False)

    def upsert_profile(self, profile: BehaviorProfile) -> BehaviorProfile:
        return self._run("upsert_profile", lambda s: self._profiles.upsert(s, profile))

    def nudge_engagement(self, user_id: str, target: float, *, weight: float, now: datetime) -> Optional[BehaviorProfile]:
        return self._run(
            "nudge_engagement",
            lambda s: self._profiles.nudge_engagement(s, user_id, target, weight=weight, now=now),
        )

    def record_delivery(self, user_id: str, *, increment: float, now: datetime) -> Optional[BehaviorProfile]:
        return self._run(
            "record_delivery",
            lambda s: self._profiles.record_delivery(s, user_id, increment=increment, now=now),
        )

    def user_ids_with_peak_hour(self, hour: int, limit: int) -> List[str]:
        return self._run(
            "user_ids_with_peak_hour",
            lambda s: self._profiles.user_ids_with_peak_hour(s, hour, limit),
            commit=False,
        )

    def low_engagement_user_ids(self, *, threshold: float, updated_since: datetime, limit: int) -> List[str]:
        return self._run(
            "low_engagement_user_ids",
            lambda s: self._profiles.low_engagement_user_ids(
                s, threshold=threshold, updated_since=updated_since, limit=limit
            ),
            commit=False,
        )

    # Users and history

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._run("get_user", lambda s: self._users.get_user(s, user_id), commit=False)

    def active_user_ids(self, since: datetime, *, limit: Optional[int] = None) -> List[str]:
        return self._run("active_user_ids", lambda s: self._users.active_user_ids(s, since, limit=limit), commit=False)

    def active_user_ids_without_feed(self, since: datetime, *, now: datetime, feed_type: str, limit: int) -> List[str]:
        return self._run(
            "active_user_ids_without_feed",
            lambda s: self._users.active_user_ids_without_feed(s, since, now=now, feed_type=feed_type, limit=limit),
            commit=False,
        )

    def count_active_users(self, since: Optional[datetime] = None) -> int:
        return self._run("count_active_users", lambda s: self._users.count_active_users(s, since), commit=False)

    def count_active_users_with_valid_feed(self, since: datetime, now: datetime) -> int:
        return self._run(
            "count_active_users_with_valid_feed",
            lambda s: self._users.count_active_users_with_valid_feed(s, since, now),
            commit=False,
        )

    def recent_sessions(self, user_id: str, limit: int = 50) -> List[SessionRecord]:
        return self._run("recent_sessions", lambda s: self._users.recent_sessions(s, user_id, limit), commit=False)


__all__ = ["FeedStore"]
