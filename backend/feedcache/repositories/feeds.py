"""Database-backed feed entry repository."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import FeedEntryModel
from ..models import BehaviorProfile, FeedEntry, FeedTypeStatistics, ensure_utc

logger = logging.getLogger(__name__)


class FeedEntryRepository:
    """Feed rows are only mutated through upsert, pop_front and expiry eviction."""

    def get(self, session: Session, user_id: str, feed_type: str) -> Optional[FeedEntry]:
        model = self._find(session, user_id, feed_type)
        return self._to_domain(model) if model is not None else None

    def list_valid_for_user(self, session: Session, user_id: str, now: datetime) -> List[FeedEntry]:
        stmt = (
            select(FeedEntryModel)
            .where(FeedEntryModel.user_id == user_id, FeedEntryModel.expires_at > now)
            .order_by(FeedEntryModel.feed_type.asc())
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def upsert(self, session: Session, entry: FeedEntry) -> FeedEntry:
        model = self._find(session, entry.user_id, entry.feed_type)
        if model is None:
            try:
                with session.begin_nested():
                    model = FeedEntryModel(id=entry.id, user_id=entry.user_id, feed_type=entry.feed_type)
                    self._apply(model, entry)
                    model.version = 1
                    session.add(model)
                    session.flush()
                return self._to_domain(model)
            except IntegrityError:
                # A concurrent writer created the row first; fall through to replace it.
                logger.debug("Feed row for %s/%s appeared concurrently; updating instead", entry.user_id, entry.feed_type)
                model = self._find(session, entry.user_id, entry.feed_type)
                if model is None:
                    raise
        self._apply(model, entry)
        model.version = (model.version or 0) + 1
        session.flush()
        return self._to_domain(model)

    def pop_front(
        self,
        session: Session,
        feed_id: str,
        *,
        expected_version: int,
        expected_head: str,
        delivered: bool,
        now: datetime,
    ) -> Optional[FeedEntry]:
        """Remove the queue head if the row still matches what the caller saw.

        Returns ``None`` when another writer changed the feed first. Delivery
        counters only move when ``delivered`` is set; dropping a dangling id
        does not count as an access.
        """
        model = session.get(FeedEntryModel, feed_id)
        if model is None or model.version != expected_version:
            return None
        queue = list(model.content_queue or [])
        if not queue or queue[0] != expected_head:
            return None

        values: dict[str, object] = {
            "content_queue": queue[1:],
            "version": FeedEntryModel.version + 1,
        }
        if delivered:
            values["access_count"] = FeedEntryModel.access_count + 1
            values["content_consumed"] = FeedEntryModel.content_consumed + 1
            values["last_accessed"] = now

        stmt = (
            update(FeedEntryModel)
            .where(FeedEntryModel.id == feed_id, FeedEntryModel.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        if result.rowcount != 1:
            return None
        session.refresh(model)
        return self._to_domain(model)

    def delete_expired(self, session: Session, now: datetime) -> int:
        stmt = delete(FeedEntryModel).where(FeedEntryModel.expires_at < now)
        result = session.execute(stmt)
        return int(result.rowcount or 0)

    def count_valid(self, session: Session, now: datetime) -> int:
        stmt = select(func.count(FeedEntryModel.id)).where(FeedEntryModel.expires_at > now)
        return int(session.execute(stmt).scalar_one())

    def statistics(self, session: Session, now: datetime) -> List[FeedTypeStatistics]:
        stmt = (
            select(
                FeedEntryModel.feed_type,
                func.count(FeedEntryModel.id),
                func.avg(FeedEntryModel.avg_engagement),
                func.avg(FeedEntryModel.content_consumed),
            )
            .where(FeedEntryModel.expires_at > now)
            .group_by(FeedEntryModel.feed_type)
            .order_by(FeedEntryModel.feed_type.asc())
        )
        return [
            FeedTypeStatistics(
                feed_type=feed_type,
                feed_count=int(count),
                avg_engagement=round(float(avg_engagement or 0.0), 4),
                avg_content_consumed=round(float(avg_consumed or 0.0), 4),
            )
            for feed_type, count, avg_engagement, avg_consumed in session.execute(stmt).all()
        ]

    def _find(self, session: Session, user_id: str, feed_type: str) -> Optional[FeedEntryModel]:
        stmt = select(FeedEntryModel).where(
            FeedEntryModel.user_id == user_id,
            FeedEntryModel.feed_type == feed_type,
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _apply(model: FeedEntryModel, entry: FeedEntry) -> None:
        model.content_queue = list(entry.content_queue)
        model.profile_snapshot = (
            entry.profile_snapshot.model_dump(mode="json") if entry.profile_snapshot is not None else None
        )
        model.created_at = ensure_utc(entry.created_at)
        model.expires_at = ensure_utc(entry.expires_at)
        model.access_count = entry.access_count
        model.content_consumed = entry.content_consumed
        model.avg_engagement = entry.avg_engagement
        model.last_accessed = ensure_utc(entry.last_accessed) if entry.last_accessed else None

    @staticmethod
    def _to_domain(model: FeedEntryModel) -> FeedEntry:
        snapshot = (
            BehaviorProfile.model_validate(model.profile_snapshot) if model.profile_snapshot else None
        )
        return FeedEntry(
            id=model.id,
            user_id=model.user_id,
            feed_type=model.feed_type,
            content_queue=list(model.content_queue or []),
            profile_snapshot=snapshot,
            created_at=ensure_utc(model.created_at),
            expires_at=ensure_utc(model.expires_at),
            access_count=model.access_count,
            content_consumed=model.content_consumed,
            avg_engagement=model.avg_engagement,
            last_accessed=ensure_utc(model.last_accessed) if model.last_accessed else None,
            version=model.version,
        )


__all__ = ["FeedEntryRepository"]
