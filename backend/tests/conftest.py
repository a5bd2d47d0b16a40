from __future__ import annotations

import itertools
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Set

import pytest

from feedcache.behavior_profiler import BehaviorProfiler
from feedcache.config import Settings
from feedcache.content_generator import calculate_feed_priority
from feedcache.db.models import ContentItemModel, FeedUserModel, LearningSessionModel
from feedcache.db.session import SessionFactory, build_engine, build_session_factory, create_schema, session_scope
from feedcache.errors import UpstreamGenerationFailure
from feedcache.feed_manager import FeedManager
from feedcache.feed_store import FeedStore
from feedcache.models import ContentItem, Difficulty, TopicSpec
from feedcache.telemetry import TelemetryEvent, register_listener, unregister_listener

FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeGenerator:
    """Scripted stand-in for the upstream generation service."""

    def __init__(self) -> None:
        self.calls: List[TopicSpec] = []
        self.failing_categories: Set[str] = set()
        self.fail_all = False
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def generate_item(
        self,
        user_id: str,
        spec: TopicSpec,
        *,
        preferred_difficulty: Difficulty,
        pre_generated: bool = True,
    ) -> ContentItem:
        with self._lock:
            self.calls.append(spec)
            number = next(self._counter)
        if self.fail_all or spec.category in self.failing_categories:
            raise UpstreamGenerationFailure(f"upstream down for {spec.category}", category=spec.category)
        return ContentItem(
            user_id=user_id,
            category=spec.category,
            difficulty=spec.difficulty,
            target_length=spec.target_length,
            title=f"{spec.category.title()} #{number}",
            body=f"Body of article {number}",
            is_pre_generated=pre_generated,
            source="feed" if pre_generated else "on_demand",
            feed_priority=calculate_feed_priority(spec, preferred_difficulty),
        )

    def categories(self) -> List[str]:
        return [spec.category for spec in self.calls]


@pytest.fixture
def session_factory(tmp_path) -> Iterator[SessionFactory]:
    settings = Settings(FEEDCACHE_DATABASE_URL=f"sqlite:///{tmp_path / 'feedcache.sqlite'}")
    engine = build_engine(settings)
    create_schema(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory: SessionFactory) -> FeedStore:
    return FeedStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def profiler(store: FeedStore, clock: FakeClock) -> BehaviorProfiler:
    return BehaviorProfiler(store, clock=clock)


@pytest.fixture
def manager(store: FeedStore, generator: FakeGenerator, profiler: BehaviorProfiler, clock: FakeClock) -> FeedManager:
    return FeedManager(store, generator, profiler, clock=clock)


@pytest.fixture
def events() -> Iterator[List[TelemetryEvent]]:
    captured: List[TelemetryEvent] = []
    lock = threading.Lock()

    def _listener(event: TelemetryEvent) -> None:
        with lock:
            captured.append(event)

    register_listener(_listener)
    yield captured
    unregister_listener(_listener)


@pytest.fixture
def add_user(session_factory: SessionFactory) -> Callable[..., str]:
    def _add(
        user_id: str,
        *,
        last_active: Optional[datetime] = FIXED_NOW,
        is_admin: bool = False,
        is_active: bool = True,
    ) -> str:
        with session_scope(session_factory) as session:
            session.add(
                FeedUserModel(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    is_active=is_active,
                    is_admin=is_admin,
                    last_active=last_active,
                )
            )
        return user_id

    return _add


@pytest.fixture
def add_session(session_factory: SessionFactory) -> Callable[..., None]:
    def _add(
        user_id: str,
        started_at: datetime,
        *,
        duration_minutes: Optional[float] = 20.0,
        session_type: str = "reading",
    ) -> None:
        with session_scope(session_factory) as session:
            session.add(
                LearningSessionModel(
                    user_id=user_id,
                    started_at=started_at,
                    duration_minutes=duration_minutes,
                    session_type=session_type,
                )
            )

    return _add


@pytest.fixture
def add_content(session_factory: SessionFactory) -> Callable[..., str]:
    def _add(
        user_id: str,
        *,
        category: str = "technology",
        difficulty: str = "intermediate",
        created_at: datetime = FIXED_NOW,
        reading_progress: float = 0.0,
        is_pre_generated: bool = True,
    ) -> str:
        with session_scope(session_factory) as session:
            model = ContentItemModel(
                user_id=user_id,
                category=category,
                difficulty=difficulty,
                target_length=400,
                title=f"{category} article",
                body="body",
                tags=[],
                extra_tags={},
                is_pre_generated=is_pre_generated,
                reading_progress=reading_progress,
                created_at=created_at,
            )
            session.add(model)
            session.flush()
            return model.id

    return _add
