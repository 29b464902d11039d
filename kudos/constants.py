"""
kudos.constants — Shared Constants & Helpers
=============================================

Single source of truth for the level formula and presentation constants.
Import from here instead of duplicating thresholds in services and routes.
"""

from __future__ import annotations

from kudos.database.models import Level, Rarity

# ---------------------------------------------------------------------------
# Level thresholds — minimum total points for each tier
# ---------------------------------------------------------------------------
LEVEL_THRESHOLDS: dict[Level, int] = {
    Level.EXPLORER: 0,
    Level.EXPERT: 200,
    Level.AMBASSADOR: 500,
}

# Streak milestone that earns the one-off week bonus
WEEK_STREAK_DAYS = 7
WEEK_STREAK_ACTION = "weekStreak"

DEFAULT_TIMEZONE = "Europe/Paris"


# ---------------------------------------------------------------------------
# Leveling formula — THE single canonical implementation
# ---------------------------------------------------------------------------
def level_for_points(points: int) -> Level:
    """Tier implied by *points*.

    Points never decrease, so the mapping is monotone and no transition
    table is needed.
    """
    if points >= LEVEL_THRESHOLDS[Level.AMBASSADOR]:
        return Level.AMBASSADOR
    if points >= LEVEL_THRESHOLDS[Level.EXPERT]:
        return Level.EXPERT
    return Level.EXPLORER


def next_level_points(points: int) -> int:
    """Total points needed for the next tier, or ``0`` at the top tier."""
    level = level_for_points(points)
    if level is Level.EXPLORER:
        return LEVEL_THRESHOLDS[Level.EXPERT]
    if level is Level.EXPERT:
        return LEVEL_THRESHOLDS[Level.AMBASSADOR]
    return 0


# ---------------------------------------------------------------------------
# Rarity presentation (used by API catalog listings)
# ---------------------------------------------------------------------------
RARITY_EMOJI: dict[Rarity, str] = {
    Rarity.COMMON: "\u26aa",        # ⚪
    Rarity.RARE: "\U0001f535",      # 🔵
    Rarity.EPIC: "\U0001f7e3",      # 🟣
    Rarity.LEGENDARY: "\U0001f7e1", # 🟡
}

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉
