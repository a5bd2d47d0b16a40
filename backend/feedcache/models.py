"""Domain models for behavior profiles, feeds and generated content."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Difficulty = Literal["beginner", "intermediate", "advanced"]
DIFFICULTY_LEVELS: tuple[str, ...] = ("beginner", "intermediate", "advanced")
DEFAULT_DIFFICULTY: Difficulty = "intermediate"
DEFAULT_SESSION_MINUTES = 15.0

FeedType = Literal["reading"]
DEFAULT_FEED_TYPE: FeedType = "reading"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalise aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BehaviorProfile(BaseModel):
    """Preference summary derived from a user's recent history."""

    user_id: str
    preferred_categories: List[str] = Field(default_factory=list, max_length=5)
    preferred_difficulty: Difficulty = DEFAULT_DIFFICULTY
    peak_hours: List[int] = Field(default_factory=list, max_length=3)
    avg_session_minutes: float = DEFAULT_SESSION_MINUTES
    feature_usage_ratio: Dict[str, float] = Field(default_factory=dict)
    completion_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    consumption_rate: float = Field(default=0.0, ge=0.0)
    interaction_frequency: float = Field(default=0.0, ge=0.0)
    engagement_score: float = Field(default=0.0, ge=0.0, le=1.0)
    last_updated: datetime = Field(default_factory=utcnow)


class TopicSpec(BaseModel):
    category: str
    difficulty: Difficulty = DEFAULT_DIFFICULTY
    target_length: int = Field(default=400, ge=50)


class GeneratedContent(BaseModel):
    """Payload returned by the upstream generation service."""

    title: str
    body: str
    tags: List[str] = Field(default_factory=list)
    extra_tags: Dict[str, str] = Field(default_factory=dict)
    latency_ms: Optional[int] = None


class ContentFeedback(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback_type: Optional[str] = None
    comments: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utcnow)


class ContentItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    category: str
    # None when the stored label is not a known difficulty level.
    difficulty: Optional[Difficulty] = DEFAULT_DIFFICULTY
    target_length: int = 400
    title: str
    body: str
    tags: List[str] = Field(default_factory=list)
    extra_tags: Dict[str, str] = Field(default_factory=dict)
    is_pre_generated: bool = True
    source: Literal["feed", "on_demand"] = "feed"
    feed_priority: int = 5
    reading_progress: float = Field(default=0.0, ge=0.0, le=1.0)
    generator_latency_ms: Optional[int] = None
    user_engagement_score: Optional[int] = None
    feedback: Optional[ContentFeedback] = None
    created_at: datetime = Field(default_factory=utcnow)


class FeedEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    feed_type: str = DEFAULT_FEED_TYPE
    content_queue: List[str] = Field(default_factory=list)
    profile_snapshot: Optional[BehaviorProfile] = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    access_count: int = Field(default=0, ge=0)
    content_consumed: int = Field(default=0, ge=0)
    avg_engagement: float = 0.0
    last_accessed: Optional[datetime] = None
    version: int = 0

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    @property
    def remaining(self) -> int:
        return len(self.content_queue)


class SessionRecord(BaseModel):
    id: str
    user_id: str
    started_at: datetime
    duration_minutes: Optional[float] = None
    session_type: str = "reading"


class UserRecord(BaseModel):
    id: str
    email: str = ""
    is_active: bool = True
    is_admin: bool = False
    last_active: Optional[datetime] = None


class DeliveryMetadata(BaseModel):
    from_feed: bool
    feed_id: Optional[str] = None
    remaining_content: int = 0
    generation_method: Literal["personalized_feed", "on_demand_fallback"] = "personalized_feed"


class DeliveredContent(BaseModel):
    content: ContentItem
    delivery_metadata: DeliveryMetadata


class FeedRecommendations(BaseModel):
    feed_health: Literal["good", "needs_generation"]
    total_content_available: int = 0


class FeedStatus(BaseModel):
    user_id: str
    feeds: List[FeedEntry] = Field(default_factory=list)
    analytics: Optional[BehaviorProfile] = None
    recommendations: FeedRecommendations


class FeedTypeStatistics(BaseModel):
    feed_type: str
    feed_count: int
    avg_engagement: float
    avg_content_consumed: float


class FeedStatistics(BaseModel):
    feed_types: List[FeedTypeStatistics] = Field(default_factory=list)
    total_active_users: int = 0
    total_active_feeds: int = 0
    feed_coverage: float = 0.0


__all__ = [
    "BehaviorProfile",
    "ContentFeedback",
    "ContentItem",
    "DEFAULT_DIFFICULTY",
    "DEFAULT_FEED_TYPE",
    "DEFAULT_SESSION_MINUTES",
    "DIFFICULTY_LEVELS",
    "DeliveredContent",
    "DeliveryMetadata",
    "Difficulty",
    "FeedEntry",
    "FeedRecommendations",
    "FeedStatistics",
    "FeedStatus",
    "FeedType",
    "FeedTypeStatistics",
    "GeneratedContent",
    "SessionRecord",
    "TopicSpec",
    "UserRecord",
    "ensure_utc",
    "utcnow",
]
