from __future__ import annotations

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..deps import admin_user, get_current_user
from ..models import AppointmentStatus, AppointmentType, StaffRole, WaitlistStatus
from ..scheduling import (
    add_waitlist_entry,
    book_appointment,
    cancel_appointment,
    change_status,
    create_staff,
    day_agenda,
    get_appointment,
    list_appointments,
    list_staff,
    list_waitlist,
    match_waitlist,
    queue_reminders,
    set_waitlist_status,
)

router = APIRouter(prefix="/api", tags=["scheduling"], dependencies=[Depends(get_current_user)])


class StaffIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    role: StaffRole = StaffRole.PHYSIOTHERAPIST
    phone: str | None = None
    specialty: str | None = None
    license_number: str | None = None


class AppointmentIn(BaseModel):
    patient_id: str
    therapist_id: str | None = None
    start: datetime
    end: datetime | None = None
    type: AppointmentType = AppointmentType.CONSULTATION
    notes: str | None = None
    waitlist_if_full: bool = False


class StatusIn(BaseModel):
    status: AppointmentStatus
    reason: str | None = None


class CancelIn(BaseModel):
    reason: str | None = None


class WaitlistIn(BaseModel):
    patient_name: str = Field(..., min_length=1)
    phone: str | None = None
    patient_id: str | None = None
    preferred_date: date | None = None
    preferred_time: str | None = Field(None, pattern=r"^\d{2}:\d{2}$")
    notes: str | None = None


class WaitlistStatusIn(BaseModel):
    status: WaitlistStatus


# =========================
# Staff
# =========================
@router.get("/staff")
def api_list_staff(role: StaffRole | None = None) -> list[dict]:
    return list_staff(role)


@router.post("/staff", status_code=status.HTTP_201_CREATED, dependencies=[Depends(admin_user)])
def api_create_staff(payload: StaffIn) -> dict[str, Any]:
    return {"ok": True, "staff_id": create_staff(**payload.model_dump())}


# =========================
# Appointments
# =========================
@router.get("/appointments")
def api_list_appointments(
    start: datetime | None = None,
    end: datetime | None = None,
    therapist_id: str | None = None,
    patient_id: str | None = None,
    status: AppointmentStatus | None = None,
) -> list[dict]:
    return list_appointments(start, end, therapist_id, patient_id, status)


@router.post("/appointments", status_code=status.HTTP_201_CREATED)
def api_book_appointment(payload: AppointmentIn) -> dict[str, Any]:
    outcome = book_appointment(**payload.model_dump())
    if not outcome.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=outcome.message)
    return {
        "ok": outcome.ok,
        "message": outcome.message,
        "appointment_id": outcome.appointment_id,
        "waitlisted": outcome.waitlisted,
    }


@router.get("/appointments/{appointment_id}")
def api_get_appointment(appointment_id: str) -> dict:
    return get_appointment(appointment_id)


@router.post("/appointments/{appointment_id}/status")
def api_change_status(appointment_id: str, payload: StatusIn) -> dict:
    return change_status(appointment_id, payload.status, payload.reason)


@router.post("/appointments/{appointment_id}/cancel")
def api_cancel_appointment(appointment_id: str, payload: CancelIn | None = None) -> dict:
    return cancel_appointment(appointment_id, payload.reason if payload else None)


@router.get("/agenda")
def api_agenda(therapist_id: str = Query(...), day: date = Query(...)) -> list[dict]:
    return day_agenda(therapist_id, day)


@router.post("/reminders/queue")
def api_queue_reminders(hours_ahead: int = Query(24, ge=1)) -> dict[str, int]:
    return queue_reminders(hours_ahead=hours_ahead)


# =========================
# Waitlist
# =========================
@router.get("/waitlist")
def api_list_waitlist(status: WaitlistStatus | None = WaitlistStatus.ACTIVE) -> list[dict]:
    return list_waitlist(status)


@router.post("/waitlist", status_code=status.HTTP_201_CREATED)
def api_add_waitlist(payload: WaitlistIn) -> dict[str, Any]:
    return {"ok": True, "id": add_waitlist_entry(**payload.model_dump())}


@router.post("/waitlist/{entry_id}/status")
def api_waitlist_status(entry_id: int, payload: WaitlistStatusIn) -> dict[str, Any]:
    return {"ok": True, "changed": set_waitlist_status(entry_id, payload.status)}


@router.get("/waitlist/matches")
def api_waitlist_matches(
    slot_date: date = Query(...),
    slot_time: str = Query(..., pattern=r"^\d{2}:\d{2}$"),
    notify: bool = False,
) -> list[dict]:
    return [m.__dict__ for m in match_waitlist(slot_date, slot_time, notify=notify)]
