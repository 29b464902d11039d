"""
kudos.engine.pipeline — Action pipeline
========================================

Pure composition of the per-action stages:

  PointAction → Points Ledger → Streak Tracker → (Level) → Badge Engine → ActionOutcome

Level progression is not a separate stage: :func:`~kudos.engine.points.grant_points`
recomputes it on every change.  The leaderboard stage needs shared state
and runs in the service once the profile is persisted.

No database I/O inside the pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from kudos.constants import WEEK_STREAK_ACTION
from kudos.database.models import GrantSource, Level
from kudos.engine.badges import evaluate_badges, is_special_event, unlock_special_event
from kudos.engine.catalog import BadgeDefinition, Catalog, PointAction
from kudos.engine.points import apply_action
from kudos.engine.profile import ProfileState
from kudos.engine.streak import update_streak

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PointGrant:
    """One journal line: who/what granted how many points."""

    source: GrantSource
    action: str
    points: int


@dataclass
class ActionOutcome:
    """Result of one recorded action (or special-event signal).

    ``points_awarded`` is the total increase of the profile's points caused
    by the call: base points + streak bonus + badge bonuses.
    """

    points_awarded: int = 0
    new_badges: list[str] = field(default_factory=list)
    leveled_up: bool = False
    level: Level = Level.EXPLORER
    total_points: int = 0
    duplicate: bool = False
    grants: list[PointGrant] = field(default_factory=list, repr=False)


def _badge_grants(badges: list[BadgeDefinition]) -> list[PointGrant]:
    return [PointGrant(GrantSource.BADGE, b.id, b.points_award) for b in badges]


def _finish(
    profile: ProfileState,
    start_points: int,
    start_level: Level,
    new_badges: list[BadgeDefinition],
    grants: list[PointGrant],
) -> ActionOutcome:
    outcome = ActionOutcome(
        points_awarded=profile.points - start_points,
        new_badges=[b.id for b in new_badges],
        leveled_up=profile.level != start_level,
        level=profile.level,
        total_points=profile.points,
        grants=grants,
    )
    if sum(g.points for g in grants) != outcome.points_awarded:
        logger.error(
            "Grant journal for %s does not add up: %d vs %d",
            profile.user_id, sum(g.points for g in grants), outcome.points_awarded,
        )
    return outcome


def run_action_pipeline(
    profile: ProfileState,
    action: PointAction,
    now: datetime,
    catalog: Catalog,
    tz: tzinfo,
    points: int | None = None,
) -> ActionOutcome:
    """Run every pure stage for one action against *profile* (mutated in place)."""
    start_points, start_level = profile.points, profile.level
    grants: list[PointGrant] = []

    # Stage 1: Points Ledger & Stats Counter
    base = apply_action(profile, action, points)
    grants.append(PointGrant(GrantSource.ACTION, action.id, base))

    # Stage 2: Streak Tracker
    streak = update_streak(profile, now, catalog, tz)
    if streak.bonus_points:
        grants.append(
            PointGrant(GrantSource.STREAK_BONUS, WEEK_STREAK_ACTION, streak.bonus_points)
        )

    # Stage 3: Badge Engine (chained unlocks included)
    new_badges = evaluate_badges(profile, catalog, now)
    grants.extend(_badge_grants(new_badges))

    outcome = _finish(profile, start_points, start_level, new_badges, grants)
    logger.debug(
        "Pipeline %s/%s: +%d (level=%s, badges=%s)",
        profile.user_id, action.id, outcome.points_awarded,
        outcome.level.value, outcome.new_badges,
    )
    return outcome


def run_special_event_pipeline(
    profile: ProfileState,
    event_id: str,
    now: datetime,
    catalog: Catalog,
) -> ActionOutcome:
    """Unlock the badges bound to *event_id* for *profile*."""
    start_points, start_level = profile.points, profile.level
    new_badges = unlock_special_event(profile, catalog, event_id, now)
    grants = [
        PointGrant(
            GrantSource.SPECIAL_EVENT if is_special_event(b) else GrantSource.BADGE,
            b.id,
            b.points_award,
        )
        for b in new_badges
    ]
    if new_badges:
        profile.last_active_at = max(profile.last_active_at, now)
    return _finish(profile, start_points, start_level, new_badges, grants)
