"""
kudos.engine.points — Points Ledger & Stats Counter
====================================================

The only place a profile's points change.  Actions, the streak bonus and
badge awards all go through :func:`grant_points`, which also keeps the
stored level equal to ``level_for_points(points)``.
"""

from __future__ import annotations

from kudos.constants import level_for_points
from kudos.engine.catalog import PointAction
from kudos.engine.profile import ACTION_TO_STAT, ProfileState


def grant_points(profile: ProfileState, amount: int) -> bool:
    """Add *amount* points and recompute the level.

    Returns True if the level changed.

    Raises
    ------
    ValueError
        If *amount* is negative — points never decrease.
    """
    if amount < 0:
        raise ValueError(f"Cannot grant a negative amount of points ({amount})")
    old_level = profile.level
    profile.points += amount
    profile.level = level_for_points(profile.points)
    return profile.level != old_level


def apply_action(
    profile: ProfileState, action: PointAction, points: int | None = None
) -> int:
    """Apply one recorded action: add its points, bump its stat counter once.

    *points* overrides ``action.base_points`` when given.
    Returns the number of points added.
    """
    amount = action.base_points if points is None else points
    grant_points(profile, amount)

    stat_field = ACTION_TO_STAT.get(action.id)
    if stat_field:
        setattr(profile.stats, stat_field, getattr(profile.stats, stat_field) + 1)

    return amount
