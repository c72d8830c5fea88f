from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..deps import get_current_user
from ..patients import (
    add_pain_log,
    complete_clinical_session,
    create_clinical_session,
    create_patient,
    deactivate_patient,
    get_patient,
    list_clinical_sessions,
    list_pain_logs,
    list_patients,
    update_patient,
)

router = APIRouter(prefix="/api/patients", tags=["patients"], dependencies=[Depends(get_current_user)])


class PatientIn(BaseModel):
    full_name: str = Field(..., min_length=1)
    email: str | None = None
    phone: str | None = None
    cpf: str | None = None
    birth_date: date | None = None
    profession: str | None = None
    condition: str | None = None


class PatientUpdateIn(BaseModel):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    cpf: str | None = None
    birth_date: date | None = None
    profession: str | None = None
    condition: str | None = None


class PainLogIn(BaseModel):
    level: int = Field(..., ge=0, le=10)
    notes: str | None = None


class ClinicalSessionIn(BaseModel):
    session_date: date | None = None
    therapist_id: str | None = None
    subjective: str | None = None
    objective: str | None = None
    assessment: str | None = None
    plan: str | None = None
    eva_score: int | None = Field(None, ge=0, le=10)
    duration_minutes: int | None = Field(None, gt=0)
    session_type: str = "in_person"


class CompleteSessionIn(BaseModel):
    send_summary: bool = False


@router.get("")
def api_list_patients(search: str | None = None, include_inactive: bool = False) -> list[dict]:
    return list_patients(search=search, include_inactive=include_inactive)


@router.post("", status_code=status.HTTP_201_CREATED)
def api_create_patient(payload: PatientIn) -> dict[str, Any]:
    pid = create_patient(**payload.model_dump())
    return {"ok": True, "patient_id": pid}


@router.get("/{patient_id}")
def api_get_patient(patient_id: str) -> dict:
    return get_patient(patient_id)


@router.patch("/{patient_id}")
def api_update_patient(patient_id: str, payload: PatientUpdateIn) -> dict:
    return update_patient(patient_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{patient_id}")
def api_deactivate_patient(patient_id: str) -> dict[str, Any]:
    return {"ok": True, "changed": deactivate_patient(patient_id)}


@router.get("/{patient_id}/pain-logs")
def api_list_pain_logs(patient_id: str) -> list[dict]:
    return list_pain_logs(patient_id)


@router.post("/{patient_id}/pain-logs", status_code=status.HTTP_201_CREATED)
def api_add_pain_log(patient_id: str, payload: PainLogIn) -> dict[str, Any]:
    return {"ok": True, "id": add_pain_log(patient_id, payload.level, payload.notes)}


@router.get("/{patient_id}/sessions")
def api_list_sessions(patient_id: str) -> list[dict]:
    return list_clinical_sessions(patient_id)


@router.post("/{patient_id}/sessions", status_code=status.HTTP_201_CREATED)
def api_create_session(patient_id: str, payload: ClinicalSessionIn) -> dict[str, Any]:
    return {"ok": True, "session_id": create_clinical_session(patient_id, **payload.model_dump())}


@router.post("/sessions/{session_id}/complete")
def api_complete_session(session_id: str, payload: CompleteSessionIn | None = None) -> dict:
    return complete_clinical_session(session_id, send_summary=bool(payload and payload.send_summary))
