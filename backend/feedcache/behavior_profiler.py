"""Reduce a user's recent sessions and content into a behavior profile."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from .feed_store import FeedStore
from .models import (
    DEFAULT_DIFFICULTY,
    DEFAULT_SESSION_MINUTES,
    DIFFICULTY_LEVELS,
    BehaviorProfile,
    ContentItem,
    SessionRecord,
    ensure_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

ANALYSIS_WINDOW = timedelta(days=30)
ANALYSIS_WINDOW_DAYS = 30
SESSION_HISTORY_LIMIT = 50
CONTENT_HISTORY_LIMIT = 100
MAX_PREFERRED_CATEGORIES = 5
PEAK_HOUR_COUNT = 3
COMPLETION_THRESHOLD = 0.8


def compute_behavior_profile(
    user_id: str,
    sessions: Sequence[SessionRecord],
    items: Sequence[ContentItem],
    *,
    now: datetime,
) -> BehaviorProfile:
    """Derive a profile from history as seen at ``now``.

    The result depends only on the inputs, so the same window and reference
    time always produce an equal profile. Missing or empty history yields the
    defaults: intermediate difficulty, a 15 minute session, no categories and
    no peak hours.
    """
    now = ensure_utc(now)
    cutoff = now - ANALYSIS_WINDOW
    recent_items = [item for item in items if ensure_utc(item.created_at) > cutoff]
    recent_sessions = [session for session in sessions if ensure_utc(session.started_at) > cutoff]

    category_counts = Counter(item.category for item in recent_items if item.category)
    preferred_categories = [category for category, _ in category_counts.most_common(MAX_PREFERRED_CATEGORIES)]

    difficulty_counts = Counter(item.difficulty for item in recent_items if item.difficulty in DIFFICULTY_LEVELS)
    preferred_difficulty = DEFAULT_DIFFICULTY
    if difficulty_counts:
        # Counter keeps first-seen order, and max() returns the first maximal key.
        preferred_difficulty = max(difficulty_counts, key=lambda label: difficulty_counts[label])

    hour_counts = [0] * 24
    for session in recent_sessions:
        hour_counts[ensure_utc(session.started_at).hour] += 1
    ranked_hours = sorted(
        (hour for hour in range(24) if hour_counts[hour] > 0),
        key=lambda hour: (-hour_counts[hour], hour),
    )
    peak_hours = ranked_hours[:PEAK_HOUR_COUNT]

    durations = [
        session.duration_minutes
        for session in sessions
        if session.duration_minutes is not None and session.duration_minutes > 0
    ]
    avg_session_minutes = sum(durations) / len(durations) if durations else DEFAULT_SESSION_MINUTES

    feature_counts = Counter(session.session_type for session in recent_sessions)
    total_feature_use = sum(feature_counts.values())
    feature_usage_ratio: Dict[str, float] = {
        feature: count / total_feature_use for feature, count in feature_counts.items()
    }

    completed = sum(1 for item in recent_items if item.reading_progress >= COMPLETION_THRESHOLD)
    completion_rate = completed / len(recent_items) if recent_items else 0.0
    consumption_rate = len(recent_items) / ANALYSIS_WINDOW_DAYS
    interaction_frequency = len(recent_sessions) / ANALYSIS_WINDOW_DAYS

    engagement_score = (
        0.4 * completion_rate
        + 0.3 * min(consumption_rate / 2, 1.0)
        + 0.3 * min(interaction_frequency / 3, 1.0)
    )

    return BehaviorProfile(
        user_id=user_id,
        preferred_categories=preferred_categories,
        preferred_difficulty=preferred_difficulty,  # type: ignore[arg-type]
        peak_hours=peak_hours,
        avg_session_minutes=avg_session_minutes,
        feature_usage_ratio=feature_usage_ratio,
        completion_rate=completion_rate,
        consumption_rate=consumption_rate,
        interaction_frequency=interaction_frequency,
        engagement_score=min(max(engagement_score, 0.0), 1.0),
        last_updated=now,
    )


class BehaviorProfiler:
    """Reads bounded history from the store and upserts the derived profile."""

    def __init__(
        self,
        store: FeedStore,
        *,
        session_limit: int = SESSION_HISTORY_LIMIT,
        content_limit: int = CONTENT_HISTORY_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._session_limit = session_limit
        self._content_limit = content_limit
        self._clock = clock

    def refresh(self, user_id: str, *, now: Optional[datetime] = None) -> BehaviorProfile:
        reference = now or self._clock()
        sessions: List[SessionRecord] = self._store.recent_sessions(user_id, self._session_limit)
        items: List[ContentItem] = self._store.recent_content(user_id, self._content_limit)
        profile = compute_behavior_profile(user_id, sessions, items, now=reference)
        stored = self._store.upsert_profile(profile)
        logger.debug(
            "Profile refreshed for %s (categories=%s, difficulty=%s, engagement=%.3f)",
            user_id,
            stored.preferred_categories,
            stored.preferred_difficulty,
            stored.engagement_score,
        )
        return stored


__all__ = [
    "ANALYSIS_WINDOW",
    "BehaviorProfiler",
    "COMPLETION_THRESHOLD",
    "compute_behavior_profile",
]
