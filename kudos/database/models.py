"""
kudos.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- user_profiles — One engagement profile per directory user (string PK)
- user_badges   — Unlocked badges, one row per (user, badge), append-only
- activity_log  — Append-only journal of every point grant, with optional
                  caller-supplied idempotency key

The badge and point-action catalogs are not stored here: they are static,
versioned, and loaded at startup (see :mod:`kudos.engine.catalog`).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Kudos ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Level(enum.StrEnum):
    """Coarse engagement tier, derived purely from total points."""
    EXPLORER = "explorer"
    EXPERT = "expert"
    AMBASSADOR = "ambassador"


class BadgeCategory(enum.StrEnum):
    CONTRIBUTION = "contribution"
    SOCIAL = "social"
    DISCOVERY = "discovery"
    SPECIAL = "special"


class Rarity(enum.StrEnum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class LeaderboardPeriod(enum.StrEnum):
    """Ranking windows; one leaderboard instance exists per period."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


class GrantSource(enum.StrEnum):
    """Why points were granted (activity_log.source)."""
    ACTION = "action"
    STREAK_BONUS = "streak_bonus"
    BADGE = "badge"
    SPECIAL_EVENT = "special_event"


# ---------------------------------------------------------------------------
# UserProfile — one row per directory user
# ---------------------------------------------------------------------------
class UserProfile(Base):
    """Denormalized engagement state for one user.

    ``version_id`` drives SQLAlchemy's optimistic concurrency check: an
    UPDATE whose version no longer matches raises ``StaleDataError``.
    """
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    level: Mapped[str] = mapped_column(
        String(20), default=Level.EXPLORER.value, nullable=False
    )

    # Streak
    current_streak: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # Per-action counters
    reviews: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    favorites: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shares: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    places_visited: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    events_attended: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    helpful_votes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    badges: Mapped[list[UserBadge]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="UserBadge.unlocked_at",
    )
    activity_logs: Mapped[list[ActivityLog]] = relationship(
        back_populates="profile", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("ix_user_profiles_points", "points"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserProfile id={self.user_id!r} points={self.points} "
            f"level={self.level}>"
        )


# ---------------------------------------------------------------------------
# UserBadge — unlocked badges
# ---------------------------------------------------------------------------
class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
        primary_key=True,
    )
    badge_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    profile: Mapped[UserProfile] = relationship(back_populates="badges")

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id!r} badge={self.badge_id!r}>"


# ---------------------------------------------------------------------------
# ActivityLog — append-only point journal
# ---------------------------------------------------------------------------
class ActivityLog(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GrantSource.ACTION.value
    )
    points_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    profile: Mapped[UserProfile] = relationship(back_populates="activity_logs")

    __table_args__ = (
        # Retried record_action calls carrying the same key are rejected here
        Index(
            "ix_activity_log_idempotent",
            "user_id",
            "idempotency_key",
            unique=True,
            postgresql_where=idempotency_key.isnot(None),
            sqlite_where=idempotency_key.isnot(None),
        ),
        Index("ix_activity_log_user_action_time", "user_id", "action", "occurred_at"),
        Index("ix_activity_log_occurred_at", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityLog id={self.id} user={self.user_id!r} "
            f"action={self.action} delta={self.points_delta}>"
        )
