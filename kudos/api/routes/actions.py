"""
kudos.api.routes.actions — Write endpoints
===========================================

Called by the directory's review / comment / favorite / share features
whenever a user completes a countable action.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from kudos.api.deps import get_service
from kudos.engine.pipeline import ActionOutcome
from kudos.services.engagement_service import EngagementService

router = APIRouter(tags=["actions"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ActionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    action_type: str = Field(min_length=1, max_length=64)
    occurred_at: datetime | None = None
    display_name: str | None = Field(default=None, max_length=100)
    points: int | None = Field(default=None, ge=0)
    idempotency_key: str | None = Field(default=None, max_length=128)
    metadata: dict[str, Any] | None = None


class SpecialEventRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    event_id: str = Field(min_length=1, max_length=64)
    occurred_at: datetime | None = None


def _outcome_dict(outcome: ActionOutcome) -> dict:
    return {
        "points_awarded": outcome.points_awarded,
        "new_badges": outcome.new_badges,
        "leveled_up": outcome.leveled_up,
        "level": outcome.level.value,
        "total_points": outcome.total_points,
        "duplicate": outcome.duplicate,
    }


# ---------------------------------------------------------------------------
# POST /actions
# ---------------------------------------------------------------------------
@router.post("/actions")
def record_action(
    body: ActionRequest,
    service: EngagementService = Depends(get_service),
):
    outcome = service.record_action(
        body.user_id,
        body.action_type,
        body.occurred_at,
        display_name=body.display_name,
        points=body.points,
        idempotency_key=body.idempotency_key,
        metadata=body.metadata,
    )
    return _outcome_dict(outcome)


# ---------------------------------------------------------------------------
# POST /special-events
# ---------------------------------------------------------------------------
@router.post("/special-events")
def signal_special_event(
    body: SpecialEventRequest,
    service: EngagementService = Depends(get_service),
):
    outcome = service.signal_special_event(body.user_id, body.event_id, body.occurred_at)
    return _outcome_dict(outcome)
