from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from feedcache.errors import (
    FeedExhausted,
    NoValidContent,
    StoreUnavailable,
    UnsupportedFeedType,
    UpstreamGenerationFailure,
)
from feedcache.feed_manager import (
    DEFAULT_CATEGORIES,
    DELIVERY_INTERACTION_INCREMENT,
    MAX_FEED_SIZE,
    MIN_FEED_SIZE,
    FeedManager,
)
from feedcache.models import BehaviorProfile, FeedEntry

from conftest import FIXED_NOW


def _seed_feed(store, user_id: str, content_ids, *, expires_in: timedelta = timedelta(hours=12)) -> FeedEntry:
    return store.upsert_feed(
        FeedEntry(
            user_id=user_id,
            content_queue=list(content_ids),
            created_at=FIXED_NOW,
            expires_at=FIXED_NOW + expires_in,
        )
    )


def test_cold_start_builds_bounded_feed_from_fallback_categories(manager, generator, store) -> None:
    feed = manager.generate_or_reuse_feed("newbie")

    assert MIN_FEED_SIZE <= feed.remaining <= MAX_FEED_SIZE
    assert generator.categories()[:6] == [category for category in DEFAULT_CATEGORIES for _ in range(2)]
    assert {spec.difficulty for spec in generator.calls} == {"intermediate"}
    assert all(300 <= spec.target_length <= 700 for spec in generator.calls)
    assert feed.profile_snapshot is not None
    assert feed.profile_snapshot.preferred_difficulty == "intermediate"
    assert feed.expires_at == FIXED_NOW + timedelta(hours=24)
    assert feed.access_count == 0 and feed.content_consumed == 0
    for content_id in feed.content_queue:
        assert store.get_content(content_id) is not None


def test_preferred_categories_drive_generation(manager, generator, add_user, add_content) -> None:
    add_user("u1")
    for category in ("art", "art", "art", "music", "music", "history", "travel"):
        add_content("u1", category=category, difficulty="advanced", created_at=FIXED_NOW - timedelta(days=1))

    feed = manager.generate_or_reuse_feed("u1")

    assert generator.categories() == ["art", "art", "music", "music", "history", "history"]
    assert feed.remaining == 6
    assert {spec.difficulty for spec in generator.calls} == {"advanced"}


def test_failed_category_is_skipped_and_topped_up(manager, generator) -> None:
    generator.failing_categories = {"business"}

    feed = manager.generate_or_reuse_feed("u1")

    # business fails once and is abandoned; top-up fills the remaining slot.
    assert generator.categories() == ["technology", "technology", "business", "science", "science", "health"]
    assert feed.remaining == MIN_FEED_SIZE


def test_total_generation_failure_raises_upstream_error(manager, generator, store, events) -> None:
    generator.fail_all = True

    with pytest.raises(UpstreamGenerationFailure):
        manager.generate_or_reuse_feed("u1")

    assert store.get_feed("u1", "reading") is None
    assert [event.payload["status"] for event in events if event.name == "feed_generation"] == ["failed"]


def test_queue_is_truncated_to_max_size(store, generator, profiler, clock) -> None:
    manager = FeedManager(store, generator, profiler, clock=clock, min_feed_size=2, max_feed_size=4)

    feed = manager.generate_or_reuse_feed("u1")

    assert feed.remaining == 4


def test_valid_full_feed_is_a_cache_hit(manager, generator, events) -> None:
    first = manager.generate_or_reuse_feed("u1")
    calls = len(generator.calls)

    second = manager.generate_or_reuse_feed("u1")

    assert second.id == first.id
    assert second.content_queue == first.content_queue
    assert len(generator.calls) == calls
    assert any(event.name == "feed_cache_hit" for event in events)


def test_expired_feed_is_never_a_cache_hit(manager, generator, clock) -> None:
    first = manager.generate_or_reuse_feed("u1")
    clock.advance(timedelta(hours=24, seconds=1))
    calls = len(generator.calls)

    second = manager.generate_or_reuse_feed("u1")

    assert len(generator.calls) > calls
    assert second.version == first.version + 1
    assert not set(second.content_queue) & set(first.content_queue)
    assert second.expires_at == clock.now + timedelta(hours=24)


def test_short_feed_is_regenerated(manager, store, add_content, generator) -> None:
    _seed_feed(store, "u1", [add_content("u1") for _ in range(MIN_FEED_SIZE - 1)])

    feed = manager.generate_or_reuse_feed("u1")

    assert generator.calls
    assert feed.remaining >= MIN_FEED_SIZE


def test_consume_next_reports_remaining_content(manager, store, add_content, generator) -> None:
    ids = [add_content("u1") for _ in range(5)]
    seeded = _seed_feed(store, "u1", ids)

    first = manager.consume_next("u1", "reading")
    second = manager.consume_next("u1", "reading")

    assert [first.content.id, second.content.id] == ids[:2]
    assert second.delivery_metadata.from_feed is True
    assert second.delivery_metadata.feed_id == seeded.id
    assert second.delivery_metadata.remaining_content == 3
    assert generator.calls == []

    feed = store.get_feed("u1", "reading")
    assert feed.access_count == 2
    assert feed.content_consumed == 2
    assert feed.last_accessed == FIXED_NOW


def test_dangling_ids_are_dropped_until_a_valid_item(manager, store, add_content, events) -> None:
    valid = add_content("u1")
    _seed_feed(store, "u1", ["missing-1", "missing-2", valid])

    delivered = manager.consume_next("u1", "reading")

    assert delivered.content.id == valid
    assert delivered.delivery_metadata.remaining_content == 0
    feed = store.get_feed("u1", "reading")
    assert feed.content_queue == []
    assert feed.access_count == 1
    dangling = [event.payload["content_id"] for event in events if event.name == "feed_dangling_reference"]
    assert dangling == ["missing-1", "missing-2"]


def test_all_dangling_ids_raise_no_valid_content(manager, store) -> None:
    _seed_feed(store, "u1", ["gone-1", "gone-2"])

    with pytest.raises(NoValidContent) as excinfo:
        manager.consume_next("u1", "reading")

    assert isinstance(excinfo.value, FeedExhausted)
    assert store.get_feed("u1", "reading").content_queue == []


def test_exhaustion_with_failing_generator(manager, store, add_content, generator) -> None:
    _seed_feed(store, "u1", [add_content("u1")])
    generator.fail_all = True

    manager.consume_next("u1", "reading")
    with pytest.raises(FeedExhausted) as excinfo:
        manager.consume_next("u1", "reading")

    assert isinstance(excinfo.value.__cause__, UpstreamGenerationFailure)


def test_empty_feed_is_regenerated_on_consume(manager, store, add_content, generator) -> None:
    _seed_feed(store, "u1", [add_content("u1")])
    manager.consume_next("u1", "reading")

    delivered = manager.consume_next("u1", "reading")

    assert generator.calls
    assert delivered.delivery_metadata.from_feed is True
    assert delivered.delivery_metadata.remaining_content >= MIN_FEED_SIZE - 1


def test_concurrent_consumers_never_receive_the_same_item(manager, store, add_content) -> None:
    ids = [add_content("u1") for _ in range(8)]
    _seed_feed(store, "u1", ids)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: manager.consume_next("u1", "reading"), range(8)))

    delivered = [result.content.id for result in results]
    assert sorted(delivered) == sorted(ids)
    assert len(set(delivered)) == 8
    feed = store.get_feed("u1", "reading")
    assert feed.content_queue == []
    assert feed.content_consumed == 8


def test_unsupported_feed_type_is_rejected(manager) -> None:
    with pytest.raises(UnsupportedFeedType):
        manager.consume_next("u1", "video")
    with pytest.raises(UnsupportedFeedType):
        manager.generate_or_reuse_feed("u1", "video")


def test_generate_on_demand_uses_profile_and_skips_feed(manager, store, generator) -> None:
    store.upsert_profile(
        BehaviorProfile(user_id="u1", preferred_categories=["science"], preferred_difficulty="beginner")
    )

    delivered = manager.generate_on_demand("u1")

    assert delivered.delivery_metadata.from_feed is False
    assert delivered.delivery_metadata.generation_method == "on_demand_fallback"
    assert delivered.content.is_pre_generated is False
    assert delivered.content.source == "on_demand"
    assert generator.calls[0].category == "science"
    assert generator.calls[0].difficulty == "beginner"
    assert generator.calls[0].target_length == 400
    assert store.get_content(delivered.content.id) is not None
    assert store.get_feed("u1", "reading") is None


def test_record_feedback_updates_item_and_nudges_engagement(manager, store, add_content) -> None:
    content_id = add_content("u1")
    _seed_feed(store, "u1", [content_id])
    store.upsert_profile(BehaviorProfile(user_id="u1", engagement_score=0.5))

    updated = manager.record_feedback("u1", content_id, 5, feedback_type="helpful", comments="great")

    assert updated is not None
    assert updated.user_engagement_score == 5
    assert updated.feedback.feedback_type == "helpful"
    assert store.get_profile("u1").engagement_score == pytest.approx(0.7 * 0.5 + 0.3 * 1.0)
    assert store.get_feed("u1", "reading").content_queue == [content_id]


def test_record_feedback_rejects_unknown_or_foreign_content(manager, add_content) -> None:
    other = add_content("someone-else")

    assert manager.record_feedback("u1", "does-not-exist", 4) is None
    assert manager.record_feedback("u1", other, 4) is None


def test_feed_status_and_statistics(manager, add_user) -> None:
    add_user("u1")
    add_user("u2")
    assert manager.feed_status("u1").recommendations.feed_health == "needs_generation"

    feed = manager.generate_or_reuse_feed("u1")
    status = manager.feed_status("u1")

    assert status.recommendations.feed_health == "good"
    assert status.recommendations.total_content_available == feed.remaining
    assert status.analytics is not None

    statistics = manager.feed_statistics()
    assert statistics.total_active_users == 2
    assert statistics.total_active_feeds == 1
    assert statistics.feed_coverage == 50.0
    assert [entry.feed_type for entry in statistics.feed_types] == ["reading"]


def test_feed_builds_when_history_has_unknown_difficulty_labels(manager, store, add_content) -> None:
    add_content("u1", difficulty="expert")
    add_content("u1", difficulty="advanced")

    feed = manager.generate_or_reuse_feed("u1")

    assert feed.remaining >= MIN_FEED_SIZE
    assert feed.profile_snapshot.preferred_difficulty == "advanced"


def test_per_key_locks_are_released_after_use(manager) -> None:
    for index in range(50):
        manager.generate_or_reuse_feed(f"user-{index}")

    assert len(manager._locks) == 0


def test_delivery_bumps_profile_interaction_frequency(manager, store, add_content, clock) -> None:
    ids = [add_content("u1") for _ in range(2)]
    _seed_feed(store, "u1", ids)
    store.upsert_profile(BehaviorProfile(user_id="u1", interaction_frequency=1.0))
    clock.advance(timedelta(minutes=5))

    manager.consume_next("u1")
    manager.consume_next("u1")

    profile = store.get_profile("u1")
    assert profile.interaction_frequency == pytest.approx(1.0 + 2 * DELIVERY_INTERACTION_INCREMENT)
    assert profile.last_updated == FIXED_NOW + timedelta(minutes=5)


def test_delivery_without_profile_does_not_create_one(manager, store, add_content) -> None:
    _seed_feed(store, "u1", [add_content("u1")])

    manager.consume_next("u1")

    assert store.get_profile("u1") is None


def test_delivery_survives_failed_interaction_update(manager, store, add_content, monkeypatch) -> None:
    content_id = add_content("u1")
    _seed_feed(store, "u1", [content_id])

    def unavailable(*_args, **_kwargs):
        raise StoreUnavailable("Feed store operation 'record_delivery' failed: database is locked")

    monkeypatch.setattr(store, "record_delivery", unavailable)

    delivered = manager.consume_next("u1")

    assert delivered.content.id == content_id
    assert store.get_feed("u1", "reading").content_queue == []
