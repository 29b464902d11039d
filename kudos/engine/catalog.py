"""
kudos.engine.catalog — Point Actions & Badge Definitions
=========================================================

The static, versioned catalog the pipeline evaluates against:

* ``PointAction`` — what a countable user action is worth.
* ``BadgeDefinition`` — a one-time unlockable achievement whose
  ``condition`` is one of the ``UnlockCondition`` variants.

The catalog is immutable once built.  :data:`DEFAULT_CATALOG` carries the
directory's built-in rules; :func:`load_catalog` reads a YAML override.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml

from kudos.constants import WEEK_STREAK_ACTION
from kudos.database.models import BadgeCategory, Rarity
from kudos.errors import CatalogError
from kudos.engine.profile import ACTION_TO_STAT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Point actions
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PointAction:
    """Point value of one countable user action.

    ``daily_limit`` is only enforced when the service runs with
    ``enforce_daily_limits`` enabled.
    """

    id: str
    label: str
    base_points: int
    daily_limit: int | None = None
    description: str = ""


# ---------------------------------------------------------------------------
# Unlock conditions — one frozen dataclass per variant
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActionCount:
    """Unlocked once the stat behind *action* reaches *threshold*."""

    action: str
    threshold: int


@dataclass(frozen=True, slots=True)
class PointsThreshold:
    threshold: int


@dataclass(frozen=True, slots=True)
class StreakLength:
    """Compared against the longest streak, so a broken streak still counts."""

    threshold: int


@dataclass(frozen=True, slots=True)
class SpecialEvent:
    """Only unlocked by an explicit out-of-band signal carrying *event_id*."""

    event_id: str


UnlockCondition = ActionCount | PointsThreshold | StreakLength | SpecialEvent


@dataclass(frozen=True, slots=True)
class BadgeDefinition:
    id: str
    name: str
    category: BadgeCategory
    points_award: int
    rarity: Rarity
    condition: UnlockCondition
    description: str = ""
    icon: str = ""


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Catalog:
    """Immutable bundle of point actions and badge definitions.

    Badges keep their declaration order; the badge engine scans them in
    that order so unlock order is deterministic.
    """

    version: str
    actions: Mapping[str, PointAction]
    badges: tuple[BadgeDefinition, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Read-only view over the action map
        object.__setattr__(self, "actions", MappingProxyType(dict(self.actions)))

    def get_action(self, action_id: str) -> PointAction | None:
        return self.actions.get(action_id)

    def get_badge(self, badge_id: str) -> BadgeDefinition | None:
        for badge in self.badges:
            if badge.id == badge_id:
                return badge
        return None

    def special_event_badges(self, event_id: str) -> list[BadgeDefinition]:
        return [
            b for b in self.badges
            if isinstance(b.condition, SpecialEvent) and b.condition.event_id == event_id
        ]


def build_catalog(
    version: str,
    actions: Iterable[PointAction],
    badges: Iterable[BadgeDefinition],
) -> Catalog:
    """Validate and assemble a :class:`Catalog`.

    Raises
    ------
    CatalogError
        On duplicate ids, negative point values, non-positive thresholds,
        or an ``ActionCount`` whose action has no stat counter.
    """
    action_map: dict[str, PointAction] = {}
    for action in actions:
        if action.id in action_map:
            raise CatalogError(f"Duplicate action id: {action.id!r}")
        if action.base_points < 0:
            raise CatalogError(f"Action {action.id!r} has negative base points")
        if action.daily_limit is not None and action.daily_limit < 1:
            raise CatalogError(f"Action {action.id!r} has a non-positive daily limit")
        action_map[action.id] = action

    badge_list: list[BadgeDefinition] = []
    seen: set[str] = set()
    for badge in badges:
        if badge.id in seen:
            raise CatalogError(f"Duplicate badge id: {badge.id!r}")
        if badge.points_award < 0:
            raise CatalogError(f"Badge {badge.id!r} has negative points award")
        _validate_condition(badge, action_map)
        seen.add(badge.id)
        badge_list.append(badge)

    if WEEK_STREAK_ACTION not in action_map:
        logger.warning(
            "Catalog %s has no %r action — the 7-day streak bonus is disabled",
            version, WEEK_STREAK_ACTION,
        )

    return Catalog(version=version, actions=action_map, badges=tuple(badge_list))


def _validate_condition(badge: BadgeDefinition, actions: Mapping[str, PointAction]) -> None:
    cond = badge.condition
    match cond:
        case ActionCount(action=action, threshold=threshold):
            if action not in ACTION_TO_STAT:
                raise CatalogError(
                    f"Badge {badge.id!r} counts action {action!r}, which has no stat counter"
                )
            if action not in actions:
                raise CatalogError(
                    f"Badge {badge.id!r} counts action {action!r}, which is not in the catalog"
                )
            if threshold < 1:
                raise CatalogError(f"Badge {badge.id!r} needs a positive threshold")
        case PointsThreshold(threshold=threshold) | StreakLength(threshold=threshold):
            if threshold < 1:
                raise CatalogError(f"Badge {badge.id!r} needs a positive threshold")
        case SpecialEvent(event_id=event_id):
            if not event_id:
                raise CatalogError(f"Badge {badge.id!r} needs an event id")
        case _:
            raise CatalogError(
                f"Badge {badge.id!r} has unsupported condition {type(cond).__name__}"
            )


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------
DEFAULT_ACTIONS: tuple[PointAction, ...] = (
    PointAction("review", "Write a review", 10, 3, "Share your experience"),
    PointAction("comment", "Comment", 5, 10, "Join the discussion"),
    PointAction("favorite", "Add to favorites", 2, 20, "Save the places you love"),
    PointAction("share", "Share", 3, 10, "Share with your friends"),
    PointAction("helpful", "Helpful vote", 1, 20, "Help the community"),
    PointAction("visit", "Check in at a place", 2, 10, "Visit places around the city"),
    PointAction("event", "Attend an event", 5, 5, "Go out and join local events"),
    PointAction("photo", "Add a photo", 8, 5, "Enrich listings with your photos"),
    PointAction("verified", "Verified purchase", 15, None, "Bonus for verified purchases"),
    PointAction("dailyVisit", "Daily visit", 5, 1, "Come back every day"),
    PointAction(WEEK_STREAK_ACTION, "7-day streak", 50, None, "Visit 7 days in a row"),
)

DEFAULT_BADGES: tuple[BadgeDefinition, ...] = (
    # Contribution
    BadgeDefinition(
        "first_review", "First Impression", BadgeCategory.CONTRIBUTION, 20,
        Rarity.COMMON, ActionCount("review", 1),
        "Write your first review", "\u270d\ufe0f",
    ),
    BadgeDefinition(
        "reviewer_10", "Amateur Critic", BadgeCategory.CONTRIBUTION, 50,
        Rarity.RARE, ActionCount("review", 10),
        "Publish 10 reviews", "\U0001f4dd",
    ),
    BadgeDefinition(
        "reviewer_50", "Expert Critic", BadgeCategory.CONTRIBUTION, 200,
        Rarity.EPIC, ActionCount("review", 50),
        "Publish 50 reviews", "\U0001f3c6",
    ),
    # Social
    BadgeDefinition(
        "helpful_user", "Helpful Member", BadgeCategory.SOCIAL, 30,
        Rarity.COMMON, ActionCount("helpful", 20),
        "Cast 20 helpful votes", "\U0001f44d",
    ),
    BadgeDefinition(
        "influencer", "Influencer", BadgeCategory.SOCIAL, 100,
        Rarity.RARE, ActionCount("share", 100),
        "Share 100 times", "\U0001f4e2",
    ),
    # Discovery
    BadgeDefinition(
        "explorer_10", "Explorer", BadgeCategory.DISCOVERY, 40,
        Rarity.COMMON, ActionCount("visit", 10),
        "Visit 10 different places", "\U0001f5fa\ufe0f",
    ),
    # Special
    BadgeDefinition(
        "early_bird", "Early Bird", BadgeCategory.SPECIAL, 100,
        Rarity.LEGENDARY, SpecialEvent("launch"),
        "Member since launch", "\U0001f305",
    ),
    BadgeDefinition(
        "streak_master", "Master of Consistency", BadgeCategory.SPECIAL, 150,
        Rarity.EPIC, StreakLength(30),
        "30 consecutive days", "\U0001f525",
    ),
    BadgeDefinition(
        "ambassador", "City Ambassador", BadgeCategory.SPECIAL, 500,
        Rarity.LEGENDARY, PointsThreshold(500),
        "Reach the Ambassador level", "\U0001f396\ufe0f",
    ),
)

DEFAULT_CATALOG: Catalog = build_catalog("builtin-1", DEFAULT_ACTIONS, DEFAULT_BADGES)


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------
def _parse_condition(badge_id: str, raw: dict) -> UnlockCondition:
    kind = raw.get("type")
    try:
        if kind == "action_count":
            return ActionCount(action=str(raw["action"]), threshold=int(raw["threshold"]))
        if kind == "points_threshold":
            return PointsThreshold(threshold=int(raw["threshold"]))
        if kind == "streak":
            return StreakLength(threshold=int(raw["threshold"]))
        if kind == "special_event":
            return SpecialEvent(event_id=str(raw["event_id"]))
    except KeyError as exc:
        raise CatalogError(
            f"Badge {badge_id!r} condition is missing {exc.args[0]!r}"
        ) from exc
    raise CatalogError(f"Badge {badge_id!r} has unknown condition type {kind!r}")


def load_catalog(path: str | Path) -> Catalog:
    """Read a YAML catalog file.

    Expected shape::

        version: "2026-10"
        actions:
          - {id: review, label: Write a review, base_points: 10, daily_limit: 3}
        badges:
          - id: first_review
            name: First Impression
            category: contribution
            points_award: 20
            rarity: common
            condition: {type: action_count, action: review, threshold: 1}

    Raises
    ------
    FileNotFoundError
        If the file doesn't exist.
    CatalogError
        If the content is malformed or fails validation.
    """
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {catalog_path.resolve()}")

    with open(catalog_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    try:
        actions = [
            PointAction(
                id=str(a["id"]),
                label=str(a.get("label", a["id"])),
                base_points=int(a["base_points"]),
                daily_limit=int(a["daily_limit"]) if a.get("daily_limit") else None,
                description=str(a.get("description", "")),
            )
            for a in raw.get("actions", [])
        ]
        badges = [
            BadgeDefinition(
                id=str(b["id"]),
                name=str(b["name"]),
                category=BadgeCategory(b["category"]),
                points_award=int(b.get("points_award", 0)),
                rarity=Rarity(b.get("rarity", Rarity.COMMON.value)),
                condition=_parse_condition(str(b["id"]), b.get("condition") or {}),
                description=str(b.get("description", "")),
                icon=str(b.get("icon", "")),
            )
            for b in raw.get("badges", [])
        ]
    except (KeyError, TypeError, ValueError) as exc:
        if isinstance(exc, CatalogError):
            raise
        raise CatalogError(f"Malformed catalog file {catalog_path}: {exc}") from exc

    catalog = build_catalog(str(raw.get("version", catalog_path.stem)), actions, badges)
    logger.info(
        "Catalog %s loaded: %d actions, %d badges",
        catalog.version, len(catalog.actions), len(catalog.badges),
    )
    return catalog
