from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..deps import get_current_user
from ..models import TelemedicineStatus
from ..telemedicine import (
    cancel_session,
    end_session,
    get_session,
    join_session,
    list_sessions,
    schedule_session,
    start_session,
)

router = APIRouter(prefix="/api/telemedicine", tags=["telemedicine"], dependencies=[Depends(get_current_user)])


class SessionIn(BaseModel):
    patient_id: str
    scheduled_for: datetime
    therapist_id: str | None = None
    duration_minutes: int = Field(30, gt=0)
    notes: str | None = None


class StartIn(BaseModel):
    notify_patient: bool = False


class EndIn(BaseModel):
    notes: str | None = None
    subjective: str | None = None
    objective: str | None = None
    assessment: str | None = None
    plan: str | None = None
    eva_score: int | None = Field(None, ge=0, le=10)
    duration_minutes: int | None = Field(None, gt=0)
    send_summary: bool = False


class CancelIn(BaseModel):
    reason: str | None = None


@router.get("/sessions")
def api_list_sessions(
    patient_id: str | None = None,
    therapist_id: str | None = None,
    status: TelemedicineStatus | None = None,
    upcoming: bool = False,
) -> list[dict]:
    return list_sessions(patient_id, therapist_id, status, upcoming)


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
def api_schedule_session(payload: SessionIn) -> dict[str, Any]:
    return {"ok": True, "session_id": schedule_session(**payload.model_dump())}


@router.get("/sessions/{session_id}")
def api_get_session(session_id: str) -> dict:
    return get_session(session_id)


@router.post("/sessions/{session_id}/start")
def api_start_session(session_id: str, payload: StartIn | None = None) -> dict:
    return start_session(session_id, notify_patient=bool(payload and payload.notify_patient))


@router.post("/sessions/{session_id}/join")
def api_join_session(session_id: str) -> dict:
    return join_session(session_id)


@router.post("/sessions/{session_id}/end")
def api_end_session(session_id: str, payload: EndIn | None = None) -> dict:
    return end_session(session_id, **(payload or EndIn()).model_dump())


@router.post("/sessions/{session_id}/cancel")
def api_cancel_session(session_id: str, payload: CancelIn | None = None) -> dict:
    return cancel_session(session_id, payload.reason if payload else None)
