"""
kudos.engine.profile — In-memory profile aggregate
===================================================

``ProfileState`` is the snapshot every pipeline stage reads and amends.
It is deliberately free of ORM types so the engine stays pure: the
service layer maps it to and from :class:`~kudos.database.models.UserProfile`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from kudos.constants import level_for_points, next_level_points
from kudos.database.models import Level

# ---------------------------------------------------------------------------
# Stat counters
# ---------------------------------------------------------------------------
STAT_FIELDS: tuple[str, ...] = (
    "reviews",
    "comments",
    "favorites",
    "shares",
    "places_visited",
    "events_attended",
    "helpful_votes",
)

# Map action id → ActionStats field to increment
ACTION_TO_STAT: dict[str, str] = {
    "review": "reviews",
    "comment": "comments",
    "favorite": "favorites",
    "share": "shares",
    "visit": "places_visited",
    "event": "events_attended",
    "helpful": "helpful_votes",
}


@dataclass(slots=True)
class ActionStats:
    reviews: int = 0
    comments: int = 0
    favorites: int = 0
    shares: int = 0
    places_visited: int = 0
    events_attended: int = 0
    helpful_votes: int = 0

    def get(self, stat: str) -> int:
        return getattr(self, stat)

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in STAT_FIELDS}


@dataclass(slots=True)
class StreakState:
    current: int
    longest: int
    last_activity_at: datetime


@dataclass(frozen=True, slots=True)
class EarnedBadge:
    badge_id: str
    unlocked_at: datetime


@dataclass(slots=True)
class ProfileState:
    """Mutable snapshot of one user's engagement state.

    Invariants kept by the engine:
    - ``points`` never decreases
    - ``level == level_for_points(points)``
    - ``streak.current <= streak.longest``
    - badge ids in ``badges`` are unique and only ever appended
    """

    user_id: str
    display_name: str
    points: int
    level: Level
    streak: StreakState
    stats: ActionStats
    joined_at: datetime
    last_active_at: datetime
    badges: list[EarnedBadge] = field(default_factory=list)

    @property
    def next_level_points(self) -> int:
        return next_level_points(self.points)

    @property
    def badge_ids(self) -> set[str]:
        return {b.badge_id for b in self.badges}

    def has_badge(self, badge_id: str) -> bool:
        return any(b.badge_id == badge_id for b in self.badges)


def default_display_name(user_id: str) -> str:
    return f"User {user_id[-4:]}"


def new_profile(
    user_id: str, now: datetime, display_name: str | None = None
) -> ProfileState:
    """Zero-state profile for a user seen for the first time.

    The first day of activity already counts as a one-day streak.
    """
    return ProfileState(
        user_id=user_id,
        display_name=display_name or default_display_name(user_id),
        points=0,
        level=level_for_points(0),
        streak=StreakState(current=1, longest=1, last_activity_at=now),
        stats=ActionStats(),
        joined_at=now,
        last_active_at=now,
    )
