"""Explicit construction of the feed cache's collaborating services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .behavior_profiler import BehaviorProfiler
from .config import Settings
from .content_generator import ContentGenerator
from .db.session import SessionFactory, get_session_factory
from .feed_manager import FeedManager
from .feed_store import FeedStore
from .feed_tasks import FeedMaintenance
from .scheduler import FeedScheduler, default_jobs

logger = logging.getLogger(__name__)


@dataclass
class FeedServices:
    store: FeedStore
    generator: ContentGenerator
    profiler: BehaviorProfiler
    manager: FeedManager
    maintenance: FeedMaintenance
    scheduler: FeedScheduler

    def close(self) -> None:
        self.scheduler.stop()
        self.generator.close()


def build_services(
    settings: Settings,
    session_factory: Optional[SessionFactory] = None,
    *,
    generator: Optional[ContentGenerator] = None,
) -> FeedServices:
    store = FeedStore(session_factory or get_session_factory())
    generator = generator or ContentGenerator.from_settings(settings)
    profiler = BehaviorProfiler(store)
    manager = FeedManager(
        store,
        generator,
        profiler,
        feed_ttl=timedelta(hours=settings.feed_ttl_hours),
        min_feed_size=settings.min_feed_size,
        max_feed_size=settings.max_feed_size,
    )
    maintenance = FeedMaintenance(
        manager,
        store,
        profiler,
        batch_size=settings.refresh_batch_size,
        batch_pause_seconds=settings.refresh_batch_pause_seconds,
    )
    scheduler = FeedScheduler(default_jobs(maintenance, disabled=settings.scheduler_disabled_jobs))
    logger.info(
        "Feed services ready (generator=%s, ttl=%sh, feed size %s..%s)",
        settings.generator_url,
        settings.feed_ttl_hours,
        settings.min_feed_size,
        settings.max_feed_size,
    )
    return FeedServices(
        store=store,
        generator=generator,
        profiler=profiler,
        manager=manager,
        maintenance=maintenance,
        scheduler=scheduler,
    )


__all__ = ["FeedServices", "build_services"]
