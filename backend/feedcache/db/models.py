"""ORM models backing the feed cache."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class FeedUserModel(TimestampMixin, Base):
    """Read-side mirror of the application's user directory."""

    __tablename__ = "feed_users"
    __table_args__ = (Index("ix_feed_users_last_active", "last_active"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sessions: Mapped[list["LearningSessionModel"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class LearningSessionModel(Base):
    __tablename__ = "learning_sessions"
    __table_args__ = (Index("ix_learning_sessions_user_started", "user_id", "started_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("feed_users.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    session_type: Mapped[str] = mapped_column(String(32), default="reading", nullable=False)

    user: Mapped[FeedUserModel] = relationship(back_populates="sessions")


class ContentItemModel(Base):
    __tablename__ = "content_items"
    __table_args__ = (
        Index("ix_content_items_user_created", "user_id", "created_at"),
        Index("ix_content_items_pregenerated", "is_pre_generated", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    target_length: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    extra_tags: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict, nullable=False)
    is_pre_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source: Mapped[str] = mapped_column(String(16), default="feed", nullable=False)
    feed_priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    reading_progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    generator_latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    user_engagement_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    feedback: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class BehaviorProfileModel(Base):
    __tablename__ = "behavior_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    preferred_categories: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    preferred_difficulty: Mapped[str] = mapped_column(String(16), default="intermediate", nullable=False)
    peak_hours: Mapped[list[int]] = mapped_column(JSONType, default=list, nullable=False)
    avg_session_minutes: Mapped[float] = mapped_column(Float, default=15.0, nullable=False)
    feature_usage_ratio: Mapped[dict[str, float]] = mapped_column(JSONType, default=dict, nullable=False)
    completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    consumption_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    interaction_frequency: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    engagement_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class FeedEntryModel(Base):
    __tablename__ = "feed_entries"
    __table_args__ = (
        UniqueConstraint("user_id", "feed_type", name="uq_feed_entries_user_type"),
        Index("ix_feed_entries_expires_at", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    feed_type: Mapped[str] = mapped_column(String(32), default="reading", nullable=False)
    content_queue: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    profile_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    content_consumed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_engagement: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_accessed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


__all__ = [
    "BehaviorProfileModel",
    "ContentItemModel",
    "FeedEntryModel",
    "FeedUserModel",
    "LearningSessionModel",
]
