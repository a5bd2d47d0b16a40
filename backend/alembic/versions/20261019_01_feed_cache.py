"""Feed cache schema: users, sessions, content items, profiles and feeds."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_feed_cache"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feed_users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_feed_users_last_active", "feed_users", ["last_active"])

    op.create_table(
        "learning_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("feed_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Float(), nullable=True),
        sa.Column("session_type", sa.String(length=32), nullable=False, server_default="reading"),
    )
    op.create_index("ix_learning_sessions_user_started", "learning_sessions", ["user_id", "started_at"])

    op.create_table(
        "content_items",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("difficulty", sa.String(length=16), nullable=False),
        sa.Column("target_length", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("extra_tags", sa.JSON(), nullable=False),
        sa.Column("is_pre_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="feed"),
        sa.Column("feed_priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("reading_progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("generator_latency_ms", sa.Integer(), nullable=True),
        sa.Column("user_engagement_score", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_content_items_user_created", "content_items", ["user_id", "created_at"])
    op.create_index("ix_content_items_pregenerated", "content_items", ["is_pre_generated", "created_at"])

    op.create_table(
        "behavior_profiles",
        sa.Column("user_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("preferred_categories", sa.JSON(), nullable=False),
        sa.Column("preferred_difficulty", sa.String(length=16), nullable=False, server_default="intermediate"),
        sa.Column("peak_hours", sa.JSON(), nullable=False),
        sa.Column("avg_session_minutes", sa.Float(), nullable=False, server_default="15"),
        sa.Column("feature_usage_ratio", sa.JSON(), nullable=False),
        sa.Column("completion_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("consumption_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("interaction_frequency", sa.Float(), nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )

    op.create_table(
        "feed_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("feed_type", sa.String(length=32), nullable=False, server_default="reading"),
        sa.Column("content_queue", sa.JSON(), nullable=False),
        sa.Column("profile_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content_consumed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_engagement", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "feed_type", name="uq_feed_entries_user_type"),
    )
    op.create_index("ix_feed_entries_expires_at", "feed_entries", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_feed_entries_expires_at", table_name="feed_entries")
    op.drop_table("feed_entries")
    op.drop_table("behavior_profiles")
    op.drop_index("ix_content_items_pregenerated", table_name="content_items")
    op.drop_index("ix_content_items_user_created", table_name="content_items")
    op.drop_table("content_items")
    op.drop_index("ix_learning_sessions_user_started", table_name="learning_sessions")
    op.drop_table("learning_sessions")
    op.drop_index("ix_feed_users_last_active", table_name="feed_users")
    op.drop_table("feed_users")
