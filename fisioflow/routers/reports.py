from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..deps import financial_user, get_current_user
from ..nps import list_responses, nps_summary, record_response
from ..reports import cash_flow, dashboard, income_statement

router = APIRouter(prefix="/api", tags=["reports"])


class NpsIn(BaseModel):
    patient_id: str
    score: int = Field(..., ge=0, le=10)
    feedback: str | None = None
    source: str = "manual"


@router.get("/reports/income-statement", dependencies=[Depends(financial_user)])
def api_income_statement(
    period: str = Query("month", pattern="^(month|quarter|year)$"),
    year: int | None = Query(None, ge=2000, le=2100),
    month: int | None = Query(None, ge=1, le=12),
) -> dict:
    return income_statement(period, year, month)


@router.get("/reports/cash-flow", dependencies=[Depends(financial_user)])
def api_cash_flow(
    period: str = Query("month", pattern="^(week|month|quarter|year)$"),
    view: str = Query("daily", pattern="^(daily|weekly|monthly)$"),
    projected: bool = False,
) -> dict:
    return cash_flow(period, view, projected)


@router.get("/reports/dashboard", dependencies=[Depends(get_current_user)])
def api_dashboard() -> dict:
    return dashboard()


# =========================
# NPS
# =========================
@router.post("/nps", status_code=status.HTTP_201_CREATED, dependencies=[Depends(get_current_user)])
def api_record_nps(payload: NpsIn) -> dict[str, Any]:
    return {"ok": True, "id": record_response(**payload.model_dump())}


@router.get("/nps", dependencies=[Depends(get_current_user)])
def api_list_nps(patient_id: str | None = None, limit: int = Query(50, ge=1, le=500)) -> list[dict]:
    return list_responses(patient_id, limit)


@router.get("/nps/summary", dependencies=[Depends(get_current_user)])
def api_nps_summary(
    start: datetime | None = None,
    end: datetime | None = None,
    days: int | None = Query(None, ge=1),
) -> dict:
    return nps_summary(start, end, days)
