"""
kudos.api.routes.public — Read-only public endpoints
=====================================================
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from kudos.api.deps import get_service
from kudos.constants import LEVEL_THRESHOLDS, RANK_BADGES, RARITY_EMOJI
from kudos.database.models import LeaderboardPeriod
from kudos.engine.catalog import BadgeDefinition
from kudos.engine.leaderboard import LeaderboardEntry
from kudos.engine.profile import ProfileState
from kudos.services.engagement_service import MAX_LEADERBOARD_LIMIT, EngagementService

router = APIRouter(tags=["public"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _profile_dict(p: ProfileState, rank: int) -> dict:
    next_points = p.next_level_points
    floor = LEVEL_THRESHOLDS[p.level]
    return {
        "user_id": p.user_id,
        "display_name": p.display_name,
        "points": p.points,
        "level": p.level.value,
        "next_level_points": next_points,
        "level_progress": (
            1.0 if next_points == 0
            else (p.points - floor) / max(next_points - floor, 1)
        ),
        "rank": rank,
        "streak": {
            "current": p.streak.current,
            "longest": p.streak.longest,
            "last_activity_at": p.streak.last_activity_at.isoformat(),
        },
        "stats": p.stats.as_dict(),
        "badges": [
            {"id": b.badge_id, "unlocked_at": b.unlocked_at.isoformat()}
            for b in p.badges
        ],
        "joined_at": p.joined_at.isoformat(),
        "last_active_at": p.last_active_at.isoformat(),
    }


def _entry_dict(e: LeaderboardEntry) -> dict:
    return {
        "rank": e.rank,
        "medal": RANK_BADGES[e.rank - 1] if e.rank <= len(RANK_BADGES) else None,
        "user_id": e.user_id,
        "display_name": e.display_name,
        "points": e.points,
        "level": e.level.value,
        "rank_delta": e.rank_delta,
        "badge_count": e.badge_count,
    }


def _badge_dict(b: BadgeDefinition) -> dict:
    return {
        "id": b.id,
        "name": b.name,
        "description": b.description,
        "icon": b.icon,
        "category": b.category.value,
        "rarity": b.rarity.value,
        "rarity_emoji": RARITY_EMOJI[b.rarity],
        "points_award": b.points_award,
        "condition": {"type": type(b.condition).__name__, **asdict(b.condition)},
    }


# ---------------------------------------------------------------------------
# GET /profiles/{user_id}
# ---------------------------------------------------------------------------
@router.get("/profiles/{user_id}")
def get_profile(user_id: str, service: EngagementService = Depends(get_service)):
    """Profile card data; unknown users get a zero-state profile."""
    profile = service.get_profile(user_id)
    return _profile_dict(profile, service.get_user_rank(user_id))


@router.get("/profiles/{user_id}/rank")
def get_user_rank(
    user_id: str,
    period: LeaderboardPeriod = Query(LeaderboardPeriod.ALL_TIME),
    service: EngagementService = Depends(get_service),
):
    return {
        "user_id": user_id,
        "period": period.value,
        "rank": service.get_user_rank(user_id, period),
    }


# ---------------------------------------------------------------------------
# GET /leaderboard/{period}
# ---------------------------------------------------------------------------
@router.get("/leaderboard/{period}")
def get_leaderboard(
    period: LeaderboardPeriod,
    limit: int = Query(10, ge=1, le=MAX_LEADERBOARD_LIMIT),
    service: EngagementService = Depends(get_service),
):
    entries = service.get_leaderboard(period, limit)
    updated_at = service.leaderboards.board(period).updated_at
    return {
        "period": period.value,
        "updated_at": updated_at.isoformat() if updated_at else None,
        "entries": [_entry_dict(e) for e in entries],
    }


# ---------------------------------------------------------------------------
# GET /catalog/*
# ---------------------------------------------------------------------------
@router.get("/catalog/actions")
def list_actions(service: EngagementService = Depends(get_service)):
    return {
        "version": service.catalog.version,
        "actions": [
            {
                "id": a.id,
                "label": a.label,
                "description": a.description,
                "base_points": a.base_points,
                "daily_limit": a.daily_limit,
            }
            for a in service.catalog.actions.values()
        ],
    }


@router.get("/catalog/badges")
def list_badges(service: EngagementService = Depends(get_service)):
    return {
        "version": service.catalog.version,
        "badges": [_badge_dict(b) for b in service.catalog.badges],
    }
