from __future__ import annotations

from datetime import timedelta

import pytest

from feedcache.behavior_profiler import compute_behavior_profile
from feedcache.models import ContentItem, SessionRecord

from conftest import FIXED_NOW


def _session(index: int, hours_ago: float, *, duration=20.0, session_type="reading", hour=None) -> SessionRecord:
    started = FIXED_NOW - timedelta(hours=hours_ago)
    if hour is not None:
        started = started.replace(hour=hour)
    return SessionRecord(
        id=f"s{index}",
        user_id="u1",
        started_at=started,
        duration_minutes=duration,
        session_type=session_type,
    )


def _item(category: str, difficulty: str = "intermediate", *, days_ago: float = 1, progress: float = 0.0) -> ContentItem:
    return ContentItem(
        user_id="u1",
        category=category,
        difficulty=difficulty,
        title=f"{category} title",
        body="body",
        reading_progress=progress,
        created_at=FIXED_NOW - timedelta(days=days_ago),
    )


def test_cold_start_profile_uses_defaults() -> None:
    profile = compute_behavior_profile("u1", [], [], now=FIXED_NOW)

    assert profile.preferred_categories == []
    assert profile.preferred_difficulty == "intermediate"
    assert profile.peak_hours == []
    assert profile.avg_session_minutes == 15.0
    assert profile.feature_usage_ratio == {}
    assert profile.completion_rate == 0.0
    assert profile.engagement_score == 0.0
    assert profile.last_updated == FIXED_NOW


def test_categories_ranked_by_frequency_with_first_seen_tiebreak() -> None:
    items = [
        _item("science"),
        _item("art"),
        _item("art"),
        _item("history"),
        _item("science"),
        _item("music"),
        _item("sports"),
        _item("travel"),
    ]

    profile = compute_behavior_profile("u1", [], items, now=FIXED_NOW)

    assert profile.preferred_categories == ["science", "art", "history", "music", "sports"]


def test_items_outside_thirty_day_window_are_ignored() -> None:
    items = [_item("old", "advanced", days_ago=31) for _ in range(5)] + [_item("fresh", "beginner")]

    profile = compute_behavior_profile("u1", [], items, now=FIXED_NOW)

    assert profile.preferred_categories == ["fresh"]
    assert profile.preferred_difficulty == "beginner"
    assert profile.consumption_rate == pytest.approx(1 / 30)


def test_difficulty_ignores_unknown_labels_and_breaks_ties_by_first_seen() -> None:
    items = [_item("a", "advanced"), _item("b", "beginner"), _item("c", "advanced"), _item("d", "beginner")]
    items.append(_item("e").model_copy(update={"difficulty": "expert"}))
    items.append(_item("f").model_copy(update={"difficulty": "expert"}))
    items.append(_item("g").model_copy(update={"difficulty": "expert"}))

    profile = compute_behavior_profile("u1", [], items, now=FIXED_NOW)

    assert profile.preferred_difficulty == "advanced"


def test_peak_hours_only_include_busy_bins() -> None:
    sessions = [
        _session(1, 24, hour=9),
        _session(2, 48, hour=9),
        _session(3, 72, hour=20),
        _session(4, 96, hour=7),
        _session(5, 120, hour=20),
    ]

    profile = compute_behavior_profile("u1", sessions, [], now=FIXED_NOW)

    assert profile.peak_hours == [9, 20, 7]


def test_session_metrics_and_engagement() -> None:
    sessions = [
        _session(1, 1, duration=10.0, session_type="reading"),
        _session(2, 2, duration=30.0, session_type="chat"),
        _session(3, 3, duration=None, session_type="reading"),
        _session(4, 4, duration=0, session_type="reading"),
    ]
    items = [_item("a", progress=0.9), _item("b", progress=0.8), _item("c", progress=0.2), _item("d")]

    profile = compute_behavior_profile("u1", sessions, items, now=FIXED_NOW)

    assert profile.avg_session_minutes == pytest.approx(20.0)
    assert profile.feature_usage_ratio == {"reading": 0.75, "chat": 0.25}
    assert profile.completion_rate == pytest.approx(0.5)
    assert profile.consumption_rate == pytest.approx(4 / 30)
    assert profile.interaction_frequency == pytest.approx(4 / 30)
    expected = 0.4 * 0.5 + 0.3 * (4 / 30) / 2 + 0.3 * (4 / 30) / 3
    assert profile.engagement_score == pytest.approx(expected)


def test_engagement_score_is_capped() -> None:
    sessions = [_session(index, index * 0.1) for index in range(50)]
    items = [_item("a", progress=1.0, days_ago=0.1) for _ in range(100)]

    profile = compute_behavior_profile("u1", sessions, items, now=FIXED_NOW)

    assert profile.engagement_score <= 1.0
    assert profile.completion_rate == 1.0


def test_profile_computation_is_idempotent() -> None:
    sessions = [_session(1, 5, session_type="chat"), _session(2, 30)]
    items = [_item("science", "advanced"), _item("art", progress=0.9)]

    first = compute_behavior_profile("u1", sessions, items, now=FIXED_NOW)
    second = compute_behavior_profile("u1", sessions, items, now=FIXED_NOW)

    assert first == second


def test_profiler_refresh_reads_history_and_upserts(store, profiler, add_user, add_session, add_content) -> None:
    add_user("u1")
    add_session("u1", FIXED_NOW - timedelta(hours=3), duration_minutes=12.0)
    add_content("u1", category="science", difficulty="advanced", reading_progress=1.0)
    add_content("u1", category="science", difficulty="advanced")

    profile = profiler.refresh("u1")

    assert profile.preferred_categories == ["science"]
    assert profile.preferred_difficulty == "advanced"
    assert profile.avg_session_minutes == pytest.approx(12.0)
    assert store.get_profile("u1") == profile


def test_profiler_refresh_skips_stored_items_with_unknown_difficulty(store, profiler, add_content) -> None:
    legacy = add_content("u1", category="history", difficulty="expert")
    add_content("u1", category="history", difficulty="")
    add_content("u1", category="science", difficulty="beginner")

    profile = profiler.refresh("u1")

    assert profile.preferred_difficulty == "beginner"
    assert profile.preferred_categories == ["history", "science"]
    assert store.get_content(legacy).difficulty is None
