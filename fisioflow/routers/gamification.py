from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..deps import admin_user, get_current_user
from ..gamification import (
    REQUIREMENT_TYPES,
    award_for_action,
    award_points,
    create_badge,
    leaderboard,
    list_badges,
    list_rules,
    patient_profile,
)

router = APIRouter(prefix="/api/gamification", tags=["gamification"], dependencies=[Depends(get_current_user)])


class AwardIn(BaseModel):
    patient_id: str
    points: int
    reason: str | None = None


class ActionIn(BaseModel):
    patient_id: str
    action: str
    source_id: str | None = None


class BadgeIn(BaseModel):
    name: str = Field(..., min_length=1)
    category: str
    requirement_type: str = Field(..., pattern="^(" + "|".join(REQUIREMENT_TYPES) + ")$")
    requirement_value: int = Field(..., gt=0)
    points: int = Field(0, ge=0)
    description: str | None = None
    icon: str | None = None


@router.post("/points")
def api_award_points(payload: AwardIn) -> dict:
    return award_points(payload.patient_id, payload.points, reason=payload.reason)


@router.post("/actions")
def api_award_for_action(payload: ActionIn) -> dict:
    return award_for_action(payload.patient_id, payload.action, payload.source_id)


@router.get("/badges")
def api_list_badges(active_only: bool = True) -> list[dict]:
    return list_badges(active_only)


@router.post("/badges", status_code=status.HTTP_201_CREATED, dependencies=[Depends(admin_user)])
def api_create_badge(payload: BadgeIn) -> dict[str, Any]:
    return {"ok": True, "badge_id": create_badge(**payload.model_dump())}


@router.get("/rules")
def api_list_rules() -> list[dict]:
    return list_rules()


@router.get("/profile/{patient_id}")
def api_profile(patient_id: str, history_limit: int = Query(10, ge=1, le=100)) -> dict:
    return patient_profile(patient_id, history_limit)


@router.get("/leaderboard")
def api_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    period: str = Query("all", pattern="^(all|week|month)$"),
) -> list[dict]:
    return leaderboard(limit, period)
