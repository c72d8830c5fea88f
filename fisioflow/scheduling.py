from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    NotificationType,
    Patient,
    Staff,
    StaffRole,
    WaitlistEntry,
    WaitlistStatus,
    iso,
    utcnow,
)
from .notifications import queue_notification

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 50
MAX_WAITLIST_MATCHES = 5

ALLOWED_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class BookingOutcome:
    ok: bool
    appointment_id: str | None
    waitlisted: bool
    message: str


@dataclass
class WaitlistMatch:
    entry_id: int
    patient_name: str
    phone: str | None
    score: int
    reasons: list[str] = field(default_factory=list)


def appointment_dict(a: Appointment) -> dict:
    return {
        "id": a.id,
        "patient_id": a.patient_id,
        "patient_name": a.patient.full_name if a.patient else None,
        "therapist_id": a.therapist_id,
        "therapist_name": a.therapist.name if a.therapist else None,
        "type": a.type.value,
        "start_time": iso(a.start_time),
        "end_time": iso(a.end_time),
        "status": a.status.value,
        "notes": a.notes,
        "reminder_sent": a.reminder_sent,
    }


# =========================
# Staff
# =========================
def create_staff(
    name: str,
    email: str,
    role: StaffRole = StaffRole.PHYSIOTHERAPIST,
    phone: str | None = None,
    specialty: str | None = None,
    license_number: str | None = None,
) -> str:
    with db_session() as s:
        if s.execute(select(Staff.id).where(Staff.email == email)).first():
            raise ValidationError(f"Staff email already registered: {email}")
        m = Staff(
            name=name.strip(),
            email=email,
            role=role,
            phone=phone,
            specialty=specialty,
            license_number=license_number,
        )
        s.add(m)
        s.flush()
        return m.id


def list_staff(role: StaffRole | None = None) -> list[dict]:
    with db_session() as s:
        q = select(Staff).where(Staff.is_active.is_(True)).order_by(Staff.name)
        if role is not None:
            q = q.where(Staff.role == role)
        return [
            {
                "id": m.id,
                "name": m.name,
                "email": m.email,
                "phone": m.phone,
                "role": m.role.value,
                "specialty": m.specialty,
                "license_number": m.license_number,
            }
            for m in s.scalars(q)
        ]


# =========================
# Availability
# =========================
def _slot_free(
    s: Session,
    therapist_id: str | None,
    start: datetime,
    end: datetime,
    exclude_id: str | None = None,
) -> bool:
    """No overlap [start, end) with the therapist's non-cancelled appointments."""
    if therapist_id is None:
        return True

    overlap = select(Appointment.id).where(
        and_(
            Appointment.therapist_id == therapist_id,
            Appointment.status != AppointmentStatus.CANCELLED,
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
    )
    if exclude_id:
        overlap = overlap.where(Appointment.id != exclude_id)
    return s.execute(overlap.limit(1)).first() is None


# =========================
# Booking
# =========================
def book_appointment(
    patient_id: str,
    start: datetime,
    therapist_id: str | None = None,
    end: datetime | None = None,
    type: AppointmentType = AppointmentType.CONSULTATION,
    notes: str | None = None,
    waitlist_if_full: bool = False,
) -> BookingOutcome:
    """
    Book an appointment.
    - end defaults to start + the standard session length
    - the therapist must be free over [start, end)
    - if the slot is taken: optionally join the waitlist for that date/time
    """
    end = end or start + timedelta(minutes=DEFAULT_DURATION_MINUTES)
    if end <= start:
        raise ValidationError("end_time must be after start_time")

    with db_session() as s:
        patient = s.get(Patient, patient_id)
        if not patient:
            raise NotFoundError("Patient", patient_id)
        if therapist_id and not s.get(Staff, therapist_id):
            raise NotFoundError("Staff", therapist_id)

        if not _slot_free(s, therapist_id, start, end):
            if not waitlist_if_full:
                return BookingOutcome(False, None, False, "Slot not available: therapist already booked.")

            s.add(
                WaitlistEntry(
                    patient_id=patient.id,
                    patient_name=patient.full_name,
                    phone=patient.phone,
                    preferred_date=start.date(),
                    preferred_time=start.strftime("%H:%M"),
                    notes=f"Requested {start.isoformat()} (slot not available).",
                )
            )
            return BookingOutcome(True, None, True, "Slot taken: patient added to the waitlist.")

        app = Appointment(
            patient_id=patient_id,
            therapist_id=therapist_id,
            type=type,
            start_time=start,
            end_time=end,
            status=AppointmentStatus.SCHEDULED,
            notes=notes,
        )
        s.add(app)
        s.flush()
        logger.info("appointment %s booked for %s", app.id, start.isoformat())
        return BookingOutcome(True, app.id, False, "Appointment scheduled.")


def list_appointments(
    start: datetime | None = None,
    end: datetime | None = None,
    therapist_id: str | None = None,
    patient_id: str | None = None,
    status: AppointmentStatus | None = None,
) -> list[dict]:
    with db_session() as s:
        q = select(Appointment).order_by(Appointment.start_time.asc())
        if start is not None:
            q = q.where(Appointment.start_time >= start)
        if end is not None:
            q = q.where(Appointment.start_time <= end)
        if therapist_id:
            q = q.where(Appointment.therapist_id == therapist_id)
        if patient_id:
            q = q.where(Appointment.patient_id == patient_id)
        if status is not None:
            q = q.where(Appointment.status == status)
        return [appointment_dict(a) for a in s.scalars(q)]


def get_appointment(appointment_id: str) -> dict:
    with db_session() as s:
        a = s.get(Appointment, appointment_id)
        if not a:
            raise NotFoundError("Appointment", appointment_id)
        return appointment_dict(a)


def day_agenda(therapist_id: str, day: date) -> list[dict]:
    start_day = datetime.combine(day, datetime.min.time())
    end_day = start_day + timedelta(days=1)

    with db_session() as s:
        q = (
            select(Appointment)
            .where(
                and_(
                    Appointment.therapist_id == therapist_id,
                    Appointment.start_time >= start_day,
                    Appointment.start_time < end_day,
                    Appointment.status != AppointmentStatus.CANCELLED,
                )
            )
            .order_by(Appointment.start_time.asc())
        )
        return [
            {
                "id": a.id,
                "start": a.start_time.strftime("%H:%M"),
                "end": a.end_time.strftime("%H:%M"),
                "status": a.status.value,
                "type": a.type.value,
                "patient_name": a.patient.full_name,
                "notes": a.notes,
            }
            for a in s.scalars(q)
        ]


def change_status(appointment_id: str, new_status: AppointmentStatus, reason: str | None = None) -> dict:
    if new_status == AppointmentStatus.CANCELLED:
        return cancel_appointment(appointment_id, reason)

    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment", appointment_id)
        if new_status not in ALLOWED_TRANSITIONS[app.status]:
            raise ValidationError(f"Cannot move appointment from {app.status.value} to {new_status.value}")
        app.status = new_status
        return appointment_dict(app)


def cancel_appointment(appointment_id: str, reason: str | None = None) -> dict:
    """
    Cancel an appointment.
    - status CANCELLED
    - cancellation notice to the patient
    - best waitlist candidates for the freed slot
    """
    with db_session() as s:
        app = s.get(Appointment, appointment_id)
        if not app:
            raise NotFoundError("Appointment", appointment_id)
        if AppointmentStatus.CANCELLED not in ALLOWED_TRANSITIONS[app.status]:
            raise ValidationError(f"Cannot cancel an appointment that is {app.status.value}")

        app.status = AppointmentStatus.CANCELLED
        queue_notification(
            s,
            NotificationType.APPOINTMENT_CANCELLED,
            f"Your appointment on {app.start_time.strftime('%d/%m/%Y %H:%M')} was cancelled. "
            f"Reason: {reason or 'n/a'}",
            recipient=app.patient.phone,
            patient_id=app.patient_id,
            appointment_id=app.id,
        )
        result = appointment_dict(app)
        slot = app.start_time

    result["waitlist_matches"] = [m.__dict__ for m in match_waitlist(slot.date(), slot.strftime("%H:%M"))]
    logger.info("appointment %s cancelled", appointment_id)
    return result


# =========================
# Waitlist
# =========================
def add_waitlist_entry(
    patient_name: str,
    phone: str | None = None,
    patient_id: str | None = None,
    preferred_date: date | None = None,
    preferred_time: str | None = None,
    notes: str | None = None,
) -> int:
    if preferred_time is not None:
        try:
            datetime.strptime(preferred_time, "%H:%M")
        except ValueError:
            raise ValidationError("preferred_time must be HH:MM") from None

    with db_session() as s:
        if patient_id and not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        wl = WaitlistEntry(
            patient_id=patient_id,
            patient_name=patient_name.strip(),
            phone=phone,
            preferred_date=preferred_date,
            preferred_time=preferred_time,
            notes=notes,
        )
        s.add(wl)
        s.flush()
        return wl.id


def list_waitlist(status: WaitlistStatus | None = WaitlistStatus.ACTIVE) -> list[dict]:
    with db_session() as s:
        q = select(WaitlistEntry).order_by(WaitlistEntry.created_at.asc())
        if status is not None:
            q = q.where(WaitlistEntry.status == status)
        return [
            {
                "id": w.id,
                "patient_id": w.patient_id,
                "patient_name": w.patient_name,
                "phone": w.phone,
                "preferred_date": iso(w.preferred_date),
                "preferred_time": w.preferred_time,
                "notes": w.notes,
                "status": w.status.value,
                "created_at": iso(w.created_at),
            }
            for w in s.scalars(q)
        ]


def set_waitlist_status(entry_id: int, status: WaitlistStatus) -> bool:
    with db_session() as s:
        wl = s.get(WaitlistEntry, entry_id)
        if not wl:
            raise NotFoundError("WaitlistEntry", entry_id)
        if wl.status == status:
            return False
        wl.status = status
        return True


def score_waitlist_entry(
    entry: WaitlistEntry,
    slot_date: date,
    slot_hour: int,
    now: datetime,
) -> WaitlistMatch:
    score = 0
    reasons: list[str] = []

    if entry.preferred_date:
        days_diff = abs((slot_date - entry.preferred_date).days)
        if days_diff == 0:
            score += 50
            reasons.append("Exact requested date")
        elif days_diff <= 1:
            score += 40
            reasons.append("Close to the preferred date")
        elif days_diff <= 3:
            score += 25
            reasons.append("Within 3 days of the preferred date")
        elif days_diff <= 7:
            score += 10
            reasons.append("Within a week")
    else:
        score += 20
        reasons.append("Flexible on date")

    if entry.preferred_time:
        hours_diff = abs(int(entry.preferred_time.split(":")[0]) - slot_hour)
        if hours_diff == 0:
            score += 30
            reasons.append("Exact requested time")
        elif hours_diff <= 1:
            score += 20
            reasons.append("Close to the preferred time")
        elif hours_diff <= 2:
            score += 10
            reasons.append("Acceptable time")
    else:
        score += 15
        reasons.append("Flexible on time")

    wait_days = (now - entry.created_at).days
    if wait_days >= 7:
        score += 15
        reasons.append(f"Waiting for {wait_days} days")
    elif wait_days >= 3:
        score += 10
        reasons.append(f"Waiting for {wait_days} days")

    phone = entry.phone or (entry.patient.phone if entry.patient else None)
    if phone:
        score += 5
        reasons.append("Can be notified")

    return WaitlistMatch(entry.id, entry.patient_name, phone, score, reasons)


def match_waitlist(
    slot_date: date,
    slot_time: str,
    notify: bool = False,
    now: datetime | None = None,
) -> list[WaitlistMatch]:
    """Rank active waitlist entries against a free slot; best MAX_WAITLIST_MATCHES first."""
    now = now or utcnow()
    slot_hour = int(slot_time.split(":")[0])

    with db_session() as s:
        entries = s.scalars(select(WaitlistEntry).where(WaitlistEntry.status == WaitlistStatus.ACTIVE))
        matches = [score_waitlist_entry(e, slot_date, slot_hour, now) for e in entries]
        matches = [m for m in matches if m.score > 0]
        matches.sort(key=lambda m: m.score, reverse=True)
        top = matches[:MAX_WAITLIST_MATCHES]

        if notify:
            for m in top:
                if m.phone:
                    queue_notification(
                        s,
                        NotificationType.WAITLIST_OFFER,
                        f"Hi {m.patient_name}! A slot opened on {slot_date.strftime('%d/%m/%Y')} "
                        f"at {slot_time}. Reply to book it.",
                        recipient=m.phone,
                    )
        return top


# =========================
# Reminders
# =========================
def queue_reminders(hours_ahead: int = 24, now: datetime | None = None) -> dict:
    """
    Queue WhatsApp reminders for appointments starting in
    [now + hours_ahead - 1h, now + hours_ahead] not reminded yet.
    """
    now = now or utcnow()
    window_start = now + timedelta(hours=hours_ahead - 1)
    window_end = now + timedelta(hours=hours_ahead)

    results = {"total": 0, "queued": 0, "skipped": 0}
    with db_session() as s:
        q = select(Appointment).where(
            and_(
                Appointment.status.in_([AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]),
                Appointment.reminder_sent.is_(False),
                Appointment.start_time >= window_start,
                Appointment.start_time <= window_end,
            )
        )
        for app in s.scalars(q):
            results["total"] += 1
            patient = app.patient
            if not patient.phone:
                results["skipped"] += 1
                continue

            queue_notification(
                s,
                NotificationType.APPOINTMENT_REMINDER,
                f"Hi {patient.full_name}! Reminder of your appointment on "
                f"{app.start_time.strftime('%d/%m/%Y')} at {app.start_time.strftime('%H:%M')}.",
                recipient=patient.phone,
                patient_id=patient.id,
                appointment_id=app.id,
            )
            app.reminder_sent = True
            results["queued"] += 1

    logger.info("reminders: %s", results)
    return results
