from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..crm import (
    convert_lead,
    create_lead,
    delete_lead,
    funnel,
    get_lead,
    list_leads,
    move_lead,
    scoring_board,
    update_lead,
)
from ..deps import get_current_user
from ..models import LeadStatus

router = APIRouter(prefix="/api", tags=["crm"], dependencies=[Depends(get_current_user)])


class LeadIn(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: str | None = None
    source: str | None = None
    notes: str | None = None
    budget: int | None = Field(None, ge=0, description="cents")


class LeadUpdateIn(BaseModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    source: str | None = None
    notes: str | None = None
    budget: int | None = Field(None, ge=0)


class StageIn(BaseModel):
    status: LeadStatus


class ConvertIn(BaseModel):
    send_welcome: bool = False


@router.get("/leads")
def api_list_leads(status: LeadStatus | None = None, source: str | None = None) -> list[dict]:
    return list_leads(status, source)


@router.post("/leads", status_code=status.HTTP_201_CREATED)
def api_create_lead(payload: LeadIn) -> dict[str, Any]:
    return {"ok": True, "lead_id": create_lead(**payload.model_dump())}


@router.get("/leads/{lead_id}")
def api_get_lead(lead_id: str) -> dict:
    return get_lead(lead_id)


@router.patch("/leads/{lead_id}")
def api_update_lead(lead_id: str, payload: LeadUpdateIn) -> dict:
    return update_lead(lead_id, **payload.model_dump(exclude_unset=True))


@router.delete("/leads/{lead_id}")
def api_delete_lead(lead_id: str) -> dict[str, Any]:
    delete_lead(lead_id)
    return {"ok": True}


@router.post("/leads/{lead_id}/stage")
def api_move_lead(lead_id: str, payload: StageIn) -> dict:
    return move_lead(lead_id, payload.status)


@router.post("/leads/{lead_id}/convert")
def api_convert_lead(lead_id: str, payload: ConvertIn | None = None) -> dict:
    return convert_lead(lead_id, send_welcome=bool(payload and payload.send_welcome))


@router.get("/crm/scoring")
def api_scoring(tier: str | None = Query(None, pattern="^(hot|warm|cold)$")) -> dict:
    return scoring_board(tier)


@router.get("/crm/funnel")
def api_funnel(period: int = Query(30, ge=1, le=365)) -> dict:
    return funnel(period)
