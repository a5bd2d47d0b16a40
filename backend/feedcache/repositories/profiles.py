"""Database-backed behavior profile repository."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import BehaviorProfileModel
from ..models import DEFAULT_DIFFICULTY, DIFFICULTY_LEVELS, BehaviorProfile, ensure_utc

# Rows scanned per peak-hour lookup; peak_hours is a JSON list so the filter runs in Python.
PEAK_HOUR_SCAN_LIMIT = 5000


class BehaviorProfileRepository:
    def get(self, session: Session, user_id: str) -> Optional[BehaviorProfile]:
        model = session.get(BehaviorProfileModel, user_id)
        return self._to_domain(model) if model is not None else None

    def upsert(self, session: Session, profile: BehaviorProfile) -> BehaviorProfile:
        model = session.get(BehaviorProfileModel, profile.user_id)
        if model is None:
            model = BehaviorProfileModel(user_id=profile.user_id)
            session.add(model)
        model.preferred_categories = list(profile.preferred_categories)
        model.preferred_difficulty = profile.preferred_difficulty
        model.peak_hours = list(profile.peak_hours)
        model.avg_session_minutes = profile.avg_session_minutes
        model.feature_usage_ratio = dict(profile.feature_usage_ratio)
        model.completion_rate = profile.completion_rate
        model.consumption_rate = profile.consumption_rate
        model.interaction_frequency = profile.interaction_frequency
        model.engagement_score = profile.engagement_score
        model.last_updated = ensure_utc(profile.last_updated)
        session.flush()
        return self._to_domain(model)

    def nudge_engagement(
        self,
        session: Session,
        user_id: str,
        target: float,
        *,
        weight: float,
        now: datetime,
    ) -> Optional[BehaviorProfile]:
        model = session.get(BehaviorProfileModel, user_id)
        if model is None:
            return None
        blended = (1.0 - weight) * model.engagement_score + weight * target
        model.engagement_score = min(max(blended, 0.0), 1.0)
        model.last_updated = now
        session.flush()
        return self._to_domain(model)

    def record_delivery(
        self,
        session: Session,
        user_id: str,
        *,
        increment: float,
        now: datetime,
    ) -> Optional[BehaviorProfile]:
        model = session.get(BehaviorProfileModel, user_id)
        if model is None:
            return None
        model.interaction_frequency = (model.interaction_frequency or 0.0) + increment
        model.last_updated = now
        session.flush()
        return self._to_domain(model)

    def user_ids_with_peak_hour(self, session: Session, hour: int, limit: int) -> List[str]:
        stmt = (
            select(BehaviorProfileModel.user_id, BehaviorProfileModel.peak_hours)
            .order_by(BehaviorProfileModel.user_id.asc())
            .limit(PEAK_HOUR_SCAN_LIMIT)
        )
        matches: List[str] = []
        for user_id, peak_hours in session.execute(stmt).all():
            if hour in (peak_hours or []):
                matches.append(user_id)
                if len(matches) >= limit:
                    break
        return matches

    def low_engagement_user_ids(
        self,
        session: Session,
        *,
        threshold: float,
        updated_since: datetime,
        limit: int,
    ) -> List[str]:
        stmt = (
            select(BehaviorProfileModel.user_id)
            .where(
                BehaviorProfileModel.engagement_score < threshold,
                BehaviorProfileModel.last_updated >= updated_since,
            )
            .order_by(BehaviorProfileModel.engagement_score.asc(), BehaviorProfileModel.user_id.asc())
            .limit(limit)
        )
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def _to_domain(model: BehaviorProfileModel) -> BehaviorProfile:
        return BehaviorProfile(
            user_id=model.user_id,
            preferred_categories=list(model.preferred_categories or []),
            preferred_difficulty=(
                model.preferred_difficulty if model.preferred_difficulty in DIFFICULTY_LEVELS else DEFAULT_DIFFICULTY
            ),  # type: ignore[arg-type]
            peak_hours=list(model.peak_hours or []),
            avg_session_minutes=model.avg_session_minutes,
            feature_usage_ratio=dict(model.feature_usage_ratio or {}),
            completion_rate=model.completion_rate,
            consumption_rate=model.consumption_rate,
            interaction_frequency=model.interaction_frequency,
            engagement_score=model.engagement_score,
            last_updated=ensure_utc(model.last_updated),
        )


__all__ = ["BehaviorProfileRepository"]
