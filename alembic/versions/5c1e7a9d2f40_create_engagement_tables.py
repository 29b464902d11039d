"""Create user_profiles, user_badges and activity_log tables

Revision ID: 5c1e7a9d2f40
Revises:
Create Date: 2026-10-19 09:12:31.418207

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c1e7a9d2f40'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the engagement tables."""

    # --- user_profiles ---
    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("level", sa.String(20), nullable=False, server_default="explorer"),
        sa.Column("current_streak", sa.Integer, nullable=False, server_default="1"),
        sa.Column("longest_streak", sa.Integer, nullable=False, server_default="1"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviews", sa.Integer, nullable=False, server_default="0"),
        sa.Column("comments", sa.Integer, nullable=False, server_default="0"),
        sa.Column("favorites", sa.Integer, nullable=False, server_default="0"),
        sa.Column("shares", sa.Integer, nullable=False, server_default="0"),
        sa.Column("places_visited", sa.Integer, nullable=False, server_default="0"),
        sa.Column("events_attended", sa.Integer, nullable=False, server_default="0"),
        sa.Column("helpful_votes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer, nullable=False),
    )
    op.create_index("ix_user_profiles_points", "user_profiles", ["points"])

    # --- user_badges ---
    op.create_table(
        "user_badges",
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("badge_id", sa.String(64), nullable=False),
        sa.Column(
            "unlocked_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("user_id", "badge_id"),
    )

    # --- activity_log ---
    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("source", sa.String(20), nullable=False, server_default="action"),
        sa.Column("points_delta", sa.Integer, nullable=False, server_default="0"),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    # Idempotency: one recorded action per (user, key)
    op.create_index(
        "ix_activity_log_idempotent", "activity_log",
        ["user_id", "idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )
    op.create_index(
        "ix_activity_log_user_action_time", "activity_log",
        ["user_id", "action", "occurred_at"],
    )
    op.create_index("ix_activity_log_occurred_at", "activity_log", ["occurred_at"])


def downgrade() -> None:
    """Drop the engagement tables."""
    op.drop_index("ix_activity_log_occurred_at", table_name="activity_log")
    op.drop_index("ix_activity_log_user_action_time", table_name="activity_log")
    op.drop_index("ix_activity_log_idempotent", table_name="activity_log")
    op.drop_table("activity_log")
    op.drop_table("user_badges")
    op.drop_index("ix_user_profiles_points", table_name="user_profiles")
    op.drop_table("user_profiles")
