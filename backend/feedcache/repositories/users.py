"""Read-only access to the user directory and interaction history."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from ..db.models import FeedEntryModel, FeedUserModel, LearningSessionModel
from ..models import SessionRecord, UserRecord, ensure_utc


class UserActivityRepository:
    def get_user(self, session: Session, user_id: str) -> Optional[UserRecord]:
        model = session.get(FeedUserModel, user_id)
        if model is None:
            return None
        return UserRecord(
            id=model.id,
            email=model.email,
            is_active=model.is_active,
            is_admin=model.is_admin,
            last_active=ensure_utc(model.last_active) if model.last_active else None,
        )

    def active_user_ids(self, session: Session, since: datetime, *, limit: Optional[int] = None) -> List[str]:
        stmt = (
            select(FeedUserModel.id)
            .where(FeedUserModel.is_active.is_(True), FeedUserModel.last_active >= since)
            .order_by(FeedUserModel.last_active.desc(), FeedUserModel.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.execute(stmt).scalars().all())

    def active_user_ids_without_feed(
        self,
        session: Session,
        since: datetime,
        *,
        now: datetime,
        feed_type: str,
        limit: int,
    ) -> List[str]:
        has_valid_feed = exists().where(
            FeedEntryModel.user_id == FeedUserModel.id,
            FeedEntryModel.feed_type == feed_type,
            FeedEntryModel.expires_at > now,
        )
        stmt = (
            select(FeedUserModel.id)
            .where(
                FeedUserModel.is_active.is_(True),
                FeedUserModel.last_active >= since,
                ~has_valid_feed,
            )
            .order_by(FeedUserModel.last_active.desc(), FeedUserModel.id.asc())
            .limit(limit)
        )
        return list(session.execute(stmt).scalars().all())

    def count_active_users(self, session: Session, since: Optional[datetime] = None) -> int:
        stmt = select(func.count(FeedUserModel.id)).where(FeedUserModel.is_active.is_(True))
        if since is not None:
            stmt = stmt.where(FeedUserModel.last_active >= since)
        return int(session.execute(stmt).scalar_one())

    def count_active_users_with_valid_feed(self, session: Session, since: datetime, now: datetime) -> int:
        stmt = (
            select(func.count(func.distinct(FeedEntryModel.user_id)))
            .join(FeedUserModel, FeedUserModel.id == FeedEntryModel.user_id)
            .where(
                FeedUserModel.is_active.is_(True),
                FeedUserModel.last_active >= since,
                FeedEntryModel.expires_at > now,
            )
        )
        return int(session.execute(stmt).scalar_one())

    def recent_sessions(self, session: Session, user_id: str, limit: int = 50) -> List[SessionRecord]:
        stmt = (
            select(LearningSessionModel)
            .where(LearningSessionModel.user_id == user_id)
            .order_by(LearningSessionModel.started_at.desc())
            .limit(limit)
        )
        return [
            SessionRecord(
                id=model.id,
                user_id=model.user_id,
                started_at=ensure_utc(model.started_at),
                duration_minutes=model.duration_minutes,
                session_type=model.session_type,
            )
            for model in session.execute(stmt).scalars().all()
        ]


__all__ = ["UserActivityRepository"]
