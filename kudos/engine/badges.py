"""
kudos.engine.badges — Badge unlock evaluation
==============================================

Handler-registry evaluation of badge unlock conditions.  Each condition
type maps to a pure handler ``(condition, profile) -> bool``.

Unlocking a badge grants its ``points_award``, which can in turn satisfy a
``PointsThreshold`` badge.  :func:`evaluate_badges` therefore iterates to a
fixpoint: it rescans until a full pass unlocks nothing.  Each pass unlocks
at least one badge or stops, so the loop ends after at most
``len(catalog.badges) + 1`` passes.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from kudos.engine.catalog import (
    ActionCount,
    BadgeDefinition,
    Catalog,
    PointsThreshold,
    SpecialEvent,
    StreakLength,
)
from kudos.engine.points import grant_points
from kudos.engine.profile import ACTION_TO_STAT, EarnedBadge, ProfileState
from kudos.errors import InvariantViolation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Condition handlers — pure functions (condition, profile) → bool
# ---------------------------------------------------------------------------
def _check_action_count(cond: ActionCount, profile: ProfileState) -> bool:
    stat_field = ACTION_TO_STAT.get(cond.action)
    if stat_field is None:
        return False
    return profile.stats.get(stat_field) >= cond.threshold


def _check_points_threshold(cond: PointsThreshold, profile: ProfileState) -> bool:
    return profile.points >= cond.threshold


def _check_streak_length(cond: StreakLength, profile: ProfileState) -> bool:
    return profile.streak.longest >= cond.threshold


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
CONDITION_HANDLERS: dict[type, Callable[[object, ProfileState], bool]] = {
    ActionCount: _check_action_count,
    PointsThreshold: _check_points_threshold,
    StreakLength: _check_streak_length,
    # SpecialEvent intentionally omitted — only unlocked by an explicit signal
}


def _unlock(profile: ProfileState, badge: BadgeDefinition, now: datetime) -> None:
    profile.badges.append(EarnedBadge(badge_id=badge.id, unlocked_at=now))
    grant_points(profile, badge.points_award)
    logger.info(
        "Badge unlocked: %s for %s (+%d points)",
        badge.id, profile.user_id, badge.points_award,
    )


# ---------------------------------------------------------------------------
# Main evaluation functions
# ---------------------------------------------------------------------------
def evaluate_badges(
    profile: ProfileState, catalog: Catalog, now: datetime
) -> list[BadgeDefinition]:
    """Unlock every badge whose condition *profile* now satisfies.

    Badges are scanned in catalog order, repeatedly, until a pass unlocks
    nothing.  Returns the newly unlocked badges in unlock order.
    """
    newly_unlocked: list[BadgeDefinition] = []
    earned = profile.badge_ids

    for _ in range(len(catalog.badges) + 1):
        unlocked_this_pass = False
        for badge in catalog.badges:
            if badge.id in earned:
                continue
            if is_special_event(badge):
                continue
            handler = CONDITION_HANDLERS.get(type(badge.condition))
            if handler is None:
                raise InvariantViolation(
                    f"No handler for condition {type(badge.condition).__name__}",
                    {"badge_id": badge.id},
                )
            if handler(badge.condition, profile):
                _unlock(profile, badge, now)
                earned.add(badge.id)
                newly_unlocked.append(badge)
                unlocked_this_pass = True
        if not unlocked_this_pass:
            break

    return newly_unlocked


def unlock_special_event(
    profile: ProfileState, catalog: Catalog, event_id: str, now: datetime
) -> list[BadgeDefinition]:
    """Unlock the badges bound to *event_id*, then chase any chained unlocks.

    Signalling an event the user already has badges for is a no-op.
    """
    newly_unlocked: list[BadgeDefinition] = []
    for badge in catalog.special_event_badges(event_id):
        if profile.has_badge(badge.id):
            continue
        _unlock(profile, badge, now)
        newly_unlocked.append(badge)

    if newly_unlocked:
        newly_unlocked.extend(evaluate_badges(profile, catalog, now))
    return newly_unlocked


def is_special_event(badge: BadgeDefinition) -> bool:
    return isinstance(badge.condition, SpecialEvent)
