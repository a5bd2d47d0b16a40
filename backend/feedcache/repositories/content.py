"""Database-backed content item repository."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import ContentItemModel
from ..models import DEFAULT_DIFFICULTY, DIFFICULTY_LEVELS, ContentFeedback, ContentItem, ensure_utc

logger = logging.getLogger(__name__)

UNREAD_PROGRESS_THRESHOLD = 0.1
CONTENT_SOURCES = ("feed", "on_demand")


class ContentItemRepository:
    def get(self, session: Session, content_id: str) -> Optional[ContentItem]:
        model = session.get(ContentItemModel, content_id)
        return self._to_domain(model) if model is not None else None

    def add(self, session: Session, item: ContentItem) -> ContentItem:
        model = ContentItemModel(
            id=item.id,
            user_id=item.user_id,
            category=item.category,
            difficulty=item.difficulty or DEFAULT_DIFFICULTY,
            target_length=item.target_length,
            title=item.title,
            body=item.body,
            tags=list(item.tags),
            extra_tags=dict(item.extra_tags),
            is_pre_generated=item.is_pre_generated,
            source=item.source,
            feed_priority=item.feed_priority,
            reading_progress=item.reading_progress,
            generator_latency_ms=item.generator_latency_ms,
            user_engagement_score=item.user_engagement_score,
            feedback=item.feedback.model_dump(mode="json") if item.feedback else None,
            created_at=ensure_utc(item.created_at),
        )
        session.add(model)
        session.flush()
        return self._to_domain(model)

    def recent_for_user(self, session: Session, user_id: str, limit: int = 100) -> List[ContentItem]:
        stmt = (
            select(ContentItemModel)
            .where(ContentItemModel.user_id == user_id)
            .order_by(ContentItemModel.created_at.desc())
            .limit(limit)
        )
        return [self._to_domain(model) for model in session.execute(stmt).scalars().all()]

    def delete_unread_pregenerated(self, session: Session, created_before: datetime) -> int:
        stmt = delete(ContentItemModel).where(
            ContentItemModel.is_pre_generated.is_(True),
            ContentItemModel.created_at < created_before,
            ContentItemModel.reading_progress < UNREAD_PROGRESS_THRESHOLD,
        )
        result = session.execute(stmt)
        return int(result.rowcount or 0)

    def record_feedback(
        self,
        session: Session,
        content_id: str,
        feedback: ContentFeedback,
    ) -> Optional[ContentItem]:
        model = session.get(ContentItemModel, content_id)
        if model is None:
            return None
        model.user_engagement_score = feedback.rating
        model.feedback = feedback.model_dump(mode="json")
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: ContentItemModel) -> ContentItem:
        return ContentItem(
            id=model.id,
            user_id=model.user_id,
            category=model.category,
            difficulty=_known_difficulty(model),
            target_length=model.target_length,
            title=model.title,
            body=model.body,
            tags=list(model.tags or []),
            extra_tags=dict(model.extra_tags or {}),
            is_pre_generated=model.is_pre_generated,
            source=model.source if model.source in CONTENT_SOURCES else "feed",  # type: ignore[arg-type]
            feed_priority=model.feed_priority,
            reading_progress=min(max(model.reading_progress or 0.0, 0.0), 1.0),
            generator_latency_ms=model.generator_latency_ms,
            user_engagement_score=model.user_engagement_score,
            feedback=ContentFeedback.model_validate(model.feedback) if model.feedback else None,
            created_at=ensure_utc(model.created_at),
        )


def _known_difficulty(model: ContentItemModel) -> Optional[str]:
    # Rows written before the difficulty set was fixed may carry other labels.
    if model.difficulty in DIFFICULTY_LEVELS:
        return model.difficulty
    logger.debug("Content %s has unrecognized difficulty %r", model.id, model.difficulty)
    return None


__all__ = ["ContentItemRepository", "UNREAD_PROGRESS_THRESHOLD"]
