"""
kudos.engine.streak — Daily streak tracker
===========================================

Consecutive-day activity counting.  "Consecutive" is measured in calendar
days in the community's timezone, not in 24-hour windows: an action at
23:50 followed by one at 00:10 the next day continues the streak.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo

from kudos.constants import WEEK_STREAK_ACTION, WEEK_STREAK_DAYS
from kudos.engine.catalog import Catalog
from kudos.engine.points import grant_points
from kudos.engine.profile import ProfileState

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    """What one streak evaluation did."""

    days_diff: int
    continued: bool = False
    broken: bool = False
    bonus_points: int = 0


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo), convert others."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def local_date(dt: datetime, tz: tzinfo) -> date:
    return as_utc(dt).astimezone(tz).date()


def calendar_days_between(earlier: datetime, later: datetime, tz: tzinfo) -> int:
    """Whole calendar days from *earlier* to *later* in *tz* (negative if reversed)."""
    return (local_date(later, tz) - local_date(earlier, tz)).days


def update_streak(
    profile: ProfileState,
    now: datetime,
    catalog: Catalog,
    tz: tzinfo,
) -> StreakUpdate:
    """Advance, keep, or reset the streak for activity at *now*.

    - same day: unchanged
    - next day: ``current += 1``; the week milestone grants the
      ``weekStreak`` action's points through the ledger
    - later: reset to 1, ``longest`` untouched

    Back-dated activity (before the last recorded one) leaves the streak
    and its timestamps untouched.
    """
    streak = profile.streak
    days_diff = calendar_days_between(streak.last_activity_at, now, tz)

    if days_diff < 0:
        logger.debug(
            "Back-dated activity for %s (%d days) — streak unchanged",
            profile.user_id, days_diff,
        )
        return StreakUpdate(days_diff=days_diff)

    continued = broken = False
    bonus = 0

    if days_diff == 1:
        streak.current += 1
        if streak.current > streak.longest:
            streak.longest = streak.current
        continued = True
        if streak.current == WEEK_STREAK_DAYS:
            bonus_action = catalog.get_action(WEEK_STREAK_ACTION)
            if bonus_action is not None:
                bonus = bonus_action.base_points
                grant_points(profile, bonus)
                logger.info(
                    "Week streak reached by %s: +%d points", profile.user_id, bonus
                )
    elif days_diff > 1:
        streak.current = 1
        broken = True

    streak.last_activity_at = now
    profile.last_active_at = now
    return StreakUpdate(
        days_diff=days_diff, continued=continued, broken=broken, bonus_points=bonus
    )
