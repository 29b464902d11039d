"""
kudos.services.profile_repository — ORM ↔ ProfileState mapping
===============================================================

Read and write helpers the engagement service composes inside one
session.  All timestamps are written as UTC; values read back without a
tzinfo (SQLite) are taken to be UTC.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, tzinfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from kudos.database.models import ActivityLog, GrantSource, Level, UserBadge, UserProfile
from kudos.engine.pipeline import PointGrant
from kudos.engine.profile import (
    STAT_FIELDS,
    ActionStats,
    EarnedBadge,
    ProfileState,
    StreakState,
)
from kudos.engine.streak import as_utc, local_date

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row → state
# ---------------------------------------------------------------------------
def to_state(row: UserProfile) -> ProfileState:
    """Detached :class:`ProfileState` copy of *row* (badges included)."""
    return ProfileState(
        user_id=row.user_id,
        display_name=row.display_name,
        points=row.points,
        level=Level(row.level),
        streak=StreakState(
            current=row.current_streak,
            longest=row.longest_streak,
            last_activity_at=as_utc(row.last_activity_at),
        ),
        stats=ActionStats(**{name: getattr(row, name) for name in STAT_FIELDS}),
        joined_at=as_utc(row.joined_at),
        last_active_at=as_utc(row.last_active_at),
        badges=[
            EarnedBadge(badge_id=b.badge_id, unlocked_at=as_utc(b.unlocked_at))
            for b in row.badges
        ],
    )


def get_profile_row(session: Session, user_id: str) -> UserProfile | None:
    return session.get(UserProfile, user_id)


def load_all_profiles(session: Session) -> list[ProfileState]:
    rows = session.scalars(
        select(UserProfile).options(selectinload(UserProfile.badges))
    ).all()
    return [to_state(row) for row in rows]


# ---------------------------------------------------------------------------
# State → row
# ---------------------------------------------------------------------------
def _copy_scalars(row: UserProfile, state: ProfileState) -> None:
    row.display_name = state.display_name
    row.points = state.points
    row.level = state.level.value
    row.current_streak = state.streak.current
    row.longest_streak = state.streak.longest
    row.last_activity_at = as_utc(state.streak.last_activity_at)
    row.last_active_at = as_utc(state.last_active_at)
    for name in STAT_FIELDS:
        setattr(row, name, state.stats.get(name))


def create_profile_row(session: Session, state: ProfileState) -> UserProfile:
    """Insert a new profile row (and its badges) from *state*."""
    row = UserProfile(user_id=state.user_id, joined_at=as_utc(state.joined_at))
    _copy_scalars(row, state)
    row.badges = [
        UserBadge(badge_id=b.badge_id, unlocked_at=as_utc(b.unlocked_at))
        for b in state.badges
    ]
    session.add(row)
    return row


def apply_state(row: UserProfile, state: ProfileState) -> None:
    """Write *state* back onto *row*; badges are only ever appended."""
    stored = {b.badge_id for b in row.badges}
    _copy_scalars(row, state)
    for badge in state.badges:
        if badge.badge_id not in stored:
            row.badges.append(
                UserBadge(badge_id=badge.badge_id, unlocked_at=as_utc(badge.unlocked_at))
            )


# ---------------------------------------------------------------------------
# Activity journal
# ---------------------------------------------------------------------------
def add_grants(
    session: Session,
    user_id: str,
    grants: Iterable[PointGrant],
    occurred_at: datetime,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> list[ActivityLog]:
    """Append one journal row per grant.

    The idempotency key is carried by the row of the recorded action
    itself, so a retried call collides on exactly one row.
    """
    logs: list[ActivityLog] = []
    for grant in grants:
        is_action = grant.source is GrantSource.ACTION
        log = ActivityLog(
            user_id=user_id,
            action=grant.action,
            source=grant.source.value,
            points_delta=grant.points,
            idempotency_key=idempotency_key if is_action else None,
            metadata_=metadata if is_action else None,
            occurred_at=as_utc(occurred_at),
        )
        session.add(log)
        logs.append(log)
    return logs


def find_by_idempotency_key(
    session: Session, user_id: str, idempotency_key: str
) -> ActivityLog | None:
    return session.scalar(
        select(ActivityLog).where(
            ActivityLog.user_id == user_id,
            ActivityLog.idempotency_key == idempotency_key,
        )
    )


def count_actions_on_day(
    session: Session, user_id: str, action: str, when: datetime, tz: tzinfo
) -> int:
    """How many times *user_id* recorded *action* on the local day of *when*."""
    day = local_date(when, tz)
    start = as_utc(datetime.combine(day, datetime.min.time(), tzinfo=tz))
    end = as_utc(datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=tz))
    return session.scalar(
        select(func.count())
        .select_from(ActivityLog)
        .where(
            ActivityLog.user_id == user_id,
            ActivityLog.action == action,
            ActivityLog.source == GrantSource.ACTION.value,
            ActivityLog.occurred_at >= start,
            ActivityLog.occurred_at < end,
        )
    ) or 0


def points_since(session: Session, since: datetime) -> dict[str, int]:
    """Points each user earned at or after *since*, from the journal."""
    rows = session.execute(
        select(
            ActivityLog.user_id,
            func.sum(ActivityLog.points_delta).label("total"),
        )
        .where(ActivityLog.occurred_at >= as_utc(since))
        .group_by(ActivityLog.user_id)
    ).all()
    return {row.user_id: int(row.total or 0) for row in rows}
