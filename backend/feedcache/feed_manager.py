"""Feed generation orchestration and the consumption protocol."""

from __future__ import annotations

import logging
import random
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from time import perf_counter
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

from .behavior_profiler import BehaviorProfiler
from .errors import FeedExhausted, NoValidContent, StoreUnavailable, UnsupportedFeedType, UpstreamGenerationFailure
from .feed_store import FeedStore
from .models import (
    DEFAULT_DIFFICULTY,
    DEFAULT_FEED_TYPE,
    BehaviorProfile,
    ContentFeedback,
    ContentItem,
    DeliveredContent,
    DeliveryMetadata,
    Difficulty,
    FeedEntry,
    FeedRecommendations,
    FeedStatistics,
    FeedStatus,
    TopicSpec,
    utcnow,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)

FEED_TTL = timedelta(hours=24)
MIN_FEED_SIZE = 5
MAX_FEED_SIZE = 15
SUPPORTED_FEED_TYPES: Tuple[str, ...] = ("reading",)

PREFERRED_CATEGORY_LIMIT = 3
ITEMS_PER_CATEGORY = 2
TARGET_LENGTH_RANGE = (300, 700)
DEFAULT_CATEGORIES: Tuple[str, ...] = ("technology", "business", "science")
TOP_UP_CATEGORIES: Tuple[str, ...] = ("health", "education", "lifestyle", "culture")

ON_DEMAND_CATEGORY = "technology"
ON_DEMAND_TARGET_LENGTH = 400
FEEDBACK_WEIGHT = 0.3
DELIVERY_INTERACTION_INCREMENT = 0.1


class ItemGenerator(Protocol):
    def generate_item(
        self,
        user_id: str,
        spec: TopicSpec,
        *,
        preferred_difficulty: Difficulty,
        pre_generated: bool = True,
    ) -> ContentItem:  # pragma: no cover - protocol definition
        ...


class _KeyedLocks:
    """Re-entrant lock per (user_id, feed_type); unrelated keys never contend.

    Entries are reference counted and dropped once the last holder releases,
    so the map only holds keys that are in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Tuple[str, str]) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _LockEntry()
                self._locks[key] = entry
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class FeedManager:
    def __init__(
        self,
        store: FeedStore,
        generator: ItemGenerator,
        profiler: BehaviorProfiler,
        *,
        feed_ttl: timedelta = FEED_TTL,
        min_feed_size: int = MIN_FEED_SIZE,
        max_feed_size: int = MAX_FEED_SIZE,
        default_categories: Sequence[str] = DEFAULT_CATEGORIES,
        top_up_categories: Sequence[str] = TOP_UP_CATEGORIES,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        if min_feed_size > max_feed_size:
            raise ValueError("min_feed_size must not exceed max_feed_size")
        self._store = store
        self._generator = generator
        self._profiler = profiler
        self._feed_ttl = feed_ttl
        self._min_feed_size = min_feed_size
        self._max_feed_size = max_feed_size
        self._default_categories = tuple(default_categories)
        self._top_up_categories = tuple(top_up_categories)
        self._clock = clock
        self._rng = rng or random.Random()
        self._locks = _KeyedLocks()

    @property
    def min_feed_size(self) -> int:
        return self._min_feed_size

    def now(self) -> datetime:
        return self._clock()

    def generate_or_reuse_feed(self, user_id: str, feed_type: str = DEFAULT_FEED_TYPE) -> FeedEntry:
        """Return the user's valid, well-stocked feed or build a new one.

        Raises ``UpstreamGenerationFailure`` only when no item at all could be
        generated; a partially failed batch still produces a feed.
        """
        _require_supported(feed_type)
        with self._locks.hold((user_id, feed_type)):
            now = self._clock()
            existing = self._store.get_feed(user_id, feed_type)
            if existing is not None and existing.is_valid(now) and existing.remaining >= self._min_feed_size:
                emit_event(
                    "feed_cache_hit",
                    user_id=user_id,
                    feed_type=feed_type,
                    feed_id=existing.id,
                    remaining_content=existing.remaining,
                )
                return existing
            return self._regenerate(user_id, feed_type, now, previous=existing)

    def consume_next(self, user_id: str, feed_type: str = DEFAULT_FEED_TYPE) -> DeliveredContent:
        """Pop and return the next deliverable item from the user's feed.

        Dangling ids at the head of the queue are dropped until a live item is
        found. Raises ``FeedExhausted`` (or its ``NoValidContent`` subclass)
        when nothing can be served from the feed.
        """
        _require_supported(feed_type)
        with self._locks.hold((user_id, feed_type)):
            now = self._clock()
            feed = self._store.get_feed(user_id, feed_type)
            if feed is None or not feed.is_valid(now) or not feed.content_queue:
                try:
                    feed = self.generate_or_reuse_feed(user_id, feed_type)
                except UpstreamGenerationFailure as exc:
                    raise FeedExhausted(
                        user_id, feed_type, f"Feed '{feed_type}' for user '{user_id}' could not be refilled: {exc}"
                    ) from exc
            if not feed.content_queue:
                raise FeedExhausted(user_id, feed_type)
            return self._pop_deliverable(feed, now)

    def generate_on_demand(self, user_id: str, feed_type: str = DEFAULT_FEED_TYPE) -> DeliveredContent:
        """Synchronously generate one item outside the feed (request-path fallback)."""
        _require_supported(feed_type)
        profile = self._store.get_profile(user_id)
        category = ON_DEMAND_CATEGORY
        difficulty: Difficulty = DEFAULT_DIFFICULTY
        if profile is not None:
            difficulty = profile.preferred_difficulty
            if profile.preferred_categories:
                category = profile.preferred_categories[0]
        spec = TopicSpec(category=category, difficulty=difficulty, target_length=ON_DEMAND_TARGET_LENGTH)
        started_at = perf_counter()
        item = self._generator.generate_item(user_id, spec, preferred_difficulty=difficulty, pre_generated=False)
        stored = self._store.add_content(item)
        emit_event(
            "feed_fallback",
            user_id=user_id,
            feed_type=feed_type,
            content_id=stored.id,
            category=category,
            duration_ms=round((perf_counter() - started_at) * 1000.0, 2),
        )
        return DeliveredContent(
            content=stored,
            delivery_metadata=DeliveryMetadata(from_feed=False, generation_method="on_demand_fallback"),
        )

    def record_feedback(
        self,
        user_id: str,
        content_id: str,
        rating: int,
        *,
        feedback_type: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> Optional[ContentItem]:
        """Store feedback on an item and nudge the user's engagement score. Queues are untouched."""
        existing = self._store.get_content(content_id)
        if existing is None or existing.user_id != user_id:
            return None
        now = self._clock()
        feedback = ContentFeedback(rating=rating, feedback_type=feedback_type, comments=comments, recorded_at=now)
        updated = self._store.record_feedback(content_id, feedback)
        profile = self._store.nudge_engagement(user_id, rating / 5.0, weight=FEEDBACK_WEIGHT, now=now)
        if profile is None:
            logger.debug("No behavior profile for %s yet; feedback stored on content only", user_id)
        return updated

    def feed_status(self, user_id: str) -> FeedStatus:
        feeds = self._store.list_valid_feeds(user_id, self._clock())
        return FeedStatus(
            user_id=user_id,
            feeds=feeds,
            analytics=self._store.get_profile(user_id),
            recommendations=FeedRecommendations(
                feed_health="good" if feeds else "needs_generation",
                total_content_available=sum(feed.remaining for feed in feeds),
            ),
        )

    def feed_statistics(self) -> FeedStatistics:
        now = self._clock()
        total_users = self._store.count_active_users()
        active_feeds = self._store.count_valid_feeds(now)
        return FeedStatistics(
            feed_types=self._store.feed_type_statistics(now),
            total_active_users=total_users,
            total_active_feeds=active_feeds,
            feed_coverage=round(active_feeds / total_users * 100, 2) if total_users else 0.0,
        )

    def _regenerate(
        self,
        user_id: str,
        feed_type: str,
        now: datetime,
        *,
        previous: Optional[FeedEntry],
    ) -> FeedEntry:
        started_at = perf_counter()
        profile = self._profiler.refresh(user_id, now=now)
        content_ids = self._generate_content(user_id, profile)
        duration_ms = round((perf_counter() - started_at) * 1000.0, 2)
        if not content_ids:
            emit_event(
                "feed_generation",
                user_id=user_id,
                feed_type=feed_type,
                status="failed",
                item_count=0,
                duration_ms=duration_ms,
            )
            raise UpstreamGenerationFailure(f"No content could be generated for user '{user_id}'.")

        entry = FeedEntry(
            user_id=user_id,
            feed_type=feed_type,
            content_queue=content_ids[: self._max_feed_size],
            profile_snapshot=profile,
            created_at=now,
            expires_at=now + self._feed_ttl,
            avg_engagement=profile.engagement_score,
        )
        stored = self._store.upsert_feed(entry)
        logger.info(
            "Generated %s feed for user %s with %s items (replaced=%s)",
            feed_type,
            user_id,
            stored.remaining,
            previous is not None,
        )
        emit_event(
            "feed_generation",
            user_id=user_id,
            feed_type=feed_type,
            status="success",
            feed_id=stored.id,
            item_count=stored.remaining,
            replaced=previous is not None,
            categories=profile.preferred_categories,
            duration_ms=duration_ms,
        )
        return stored

    def _generate_content(self, user_id: str, profile: BehaviorProfile) -> List[str]:
        categories = list(profile.preferred_categories[:PREFERRED_CATEGORY_LIMIT]) or list(self._default_categories)
        content_ids: List[str] = []
        for category in categories:
            for _ in range(ITEMS_PER_CATEGORY):
                item = self._try_generate(user_id, category, profile)
                if item is None:
                    break
                content_ids.append(item.id)

        for category in self._top_up_categories:
            if len(content_ids) >= self._min_feed_size:
                break
            item = self._try_generate(user_id, category, profile)
            if item is not None:
                content_ids.append(item.id)
        return content_ids

    def _try_generate(self, user_id: str, category: str, profile: BehaviorProfile) -> Optional[ContentItem]:
        spec = TopicSpec(
            category=category,
            difficulty=profile.preferred_difficulty,
            target_length=self._rng.randint(*TARGET_LENGTH_RANGE),
        )
        try:
            item = self._generator.generate_item(
                user_id,
                spec,
                preferred_difficulty=profile.preferred_difficulty,
            )
        except UpstreamGenerationFailure as exc:
            logger.warning("Skipping category %s for user %s: %s", category, user_id, exc)
            return None
        return self._store.add_content(item)

    def _pop_deliverable(self, feed: FeedEntry, now: datetime) -> DeliveredContent:
        user_id, feed_type = feed.user_id, feed.feed_type
        attempts = len(feed.content_queue)
        dropped = 0
        current: Optional[FeedEntry] = feed
        while attempts > 0 and current is not None and current.content_queue:
            attempts -= 1
            content_id = current.content_queue[0]
            item = self._store.get_content(content_id)
            popped = self._store.pop_front(current, delivered=item is not None, now=now)
            if popped is None:
                # Another writer changed the feed since we read it.
                current = self._store.get_feed(user_id, feed_type)
                if current is not None and not current.is_valid(now):
                    current = None
                continue
            current = popped
            if item is None:
                dropped += 1
                logger.warning("Dropped dangling content id %s from %s feed of user %s", content_id, feed_type, user_id)
                emit_event(
                    "feed_dangling_reference",
                    user_id=user_id,
                    feed_type=feed_type,
                    feed_id=current.id,
                    content_id=content_id,
                )
                continue
            emit_event(
                "feed_delivery",
                user_id=user_id,
                feed_type=feed_type,
                feed_id=current.id,
                content_id=item.id,
                remaining_content=current.remaining,
                dropped_dangling=dropped,
            )
            self._record_delivery(user_id, now)
            return DeliveredContent(
                content=item,
                delivery_metadata=DeliveryMetadata(
                    from_feed=True,
                    feed_id=current.id,
                    remaining_content=current.remaining,
                ),
            )
        raise NoValidContent(
            user_id,
            feed_type,
            f"No valid content in '{feed_type}' feed for user '{user_id}' ({dropped} dangling ids dropped).",
        )

    def _record_delivery(self, user_id: str, now: datetime) -> None:
        # The item is already popped; a failed profile bump must not undo the delivery.
        try:
            self._store.record_delivery(user_id, increment=DELIVERY_INTERACTION_INCREMENT, now=now)
        except StoreUnavailable as exc:
            logger.warning("Could not record delivery for user %s: %s", user_id, exc)


def _require_supported(feed_type: str) -> None:
    if feed_type not in SUPPORTED_FEED_TYPES:
        raise UnsupportedFeedType(feed_type)


__all__ = [
    "DEFAULT_CATEGORIES",
    "DELIVERY_INTERACTION_INCREMENT",
    "FEED_TTL",
    "FeedManager",
    "ItemGenerator",
    "MAX_FEED_SIZE",
    "MIN_FEED_SIZE",
    "SUPPORTED_FEED_TYPES",
    "TOP_UP_CATEGORIES",
]
