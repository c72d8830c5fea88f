from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..auth_models import User
from ..deps import financial_user
from ..insurance import (
    create_guide,
    create_plan,
    delete_guide,
    get_guide,
    list_guides,
    list_plans,
    mark_guide_paid,
    resolve_guide,
    submit_guide,
    update_guide,
)
from ..models import TissGuideType, TissStatus

router = APIRouter(prefix="/api", tags=["insurance"])


class PlanIn(BaseModel):
    name: str = Field(..., min_length=1)
    ans_code: str | None = None
    cnpj: str | None = None
    phone: str | None = None
    email: str | None = None
    is_active: bool = True


class ProcedureIn(BaseModel):
    code: str = Field(..., min_length=1)
    description: str | None = None
    quantity: int = Field(1, gt=0)
    unit_value: int = Field(0, ge=0, description="cents")
    total_value: int | None = Field(None, ge=0)


class GuideIn(BaseModel):
    patient_id: str
    procedures: list[ProcedureIn] = Field(..., min_length=1)
    guide_type: TissGuideType = TissGuideType.SP_SADT
    insurance_plan_id: int | None = None
    authorization_number: str | None = None
    clinical_session_id: str | None = None
    guide_number: str | None = None


class GuideUpdateIn(BaseModel):
    procedures: list[ProcedureIn] | None = Field(None, min_length=1)
    guide_type: TissGuideType | None = None
    insurance_plan_id: int | None = None
    authorization_number: str | None = None
    clinical_session_id: str | None = None


class ResolveIn(BaseModel):
    approved: bool
    denial_reason: str | None = None


# =========================
# Plans
# =========================
@router.get("/insurance-plans")
def api_list_plans(active: bool | None = None, search: str | None = None, user: User = Depends(financial_user)) -> list[dict]:
    return list_plans(active, search)


@router.post("/insurance-plans", status_code=status.HTTP_201_CREATED)
def api_create_plan(payload: PlanIn, user: User = Depends(financial_user)) -> dict[str, Any]:
    return {"ok": True, "plan_id": create_plan(**payload.model_dump())}


# =========================
# TISS guides
# =========================
@router.get("/tiss-guides")
def api_list_guides(
    patient_id: str | None = None,
    insurance_plan_id: int | None = None,
    status: TissStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    user: User = Depends(financial_user),
) -> list[dict]:
    return list_guides(patient_id, insurance_plan_id, status, start, end)


@router.post("/tiss-guides", status_code=status.HTTP_201_CREATED)
def api_create_guide(payload: GuideIn, user: User = Depends(financial_user)) -> dict[str, Any]:
    data = payload.model_dump()
    guide_id = create_guide(created_by=user.id, **data)
    return {"ok": True, "guide_id": guide_id}


@router.get("/tiss-guides/{guide_id}")
def api_get_guide(guide_id: str, user: User = Depends(financial_user)) -> dict:
    return get_guide(guide_id)


@router.patch("/tiss-guides/{guide_id}")
def api_update_guide(guide_id: str, payload: GuideUpdateIn, user: User = Depends(financial_user)) -> dict:
    return update_guide(guide_id, **payload.model_dump(exclude_unset=True))


@router.delete("/tiss-guides/{guide_id}")
def api_delete_guide(guide_id: str, user: User = Depends(financial_user)) -> dict[str, Any]:
    delete_guide(guide_id)
    return {"ok": True, "message": "TISS guide deleted"}


@router.post("/tiss-guides/{guide_id}/submit")
def api_submit_guide(guide_id: str, user: User = Depends(financial_user)) -> dict:
    return submit_guide(guide_id)


@router.post("/tiss-guides/{guide_id}/resolve")
def api_resolve_guide(guide_id: str, payload: ResolveIn, user: User = Depends(financial_user)) -> dict:
    return resolve_guide(guide_id, payload.approved, payload.denial_reason)


@router.post("/tiss-guides/{guide_id}/paid")
def api_mark_paid(guide_id: str, user: User = Depends(financial_user)) -> dict:
    return mark_guide_paid(guide_id)
