from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime
from urllib.parse import quote

from sqlalchemy import select

from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .gamification import apply_points
from .models import (
    ClinicalSession,
    NotificationType,
    Patient,
    Staff,
    TelemedicineSession,
    TelemedicineStatus,
    iso,
    utcnow,
)
from .notifications import queue_notification
from .patients import session_summary_text

logger = logging.getLogger(__name__)

ROOM_BASE_URL = "https://whereby.com"
ROOM_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
PASSWORD_ALPHABET = string.ascii_uppercase + string.digits
TELEMEDICINE_POINTS = 50


def _random_token(length: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def session_dict(ts: TelemedicineSession) -> dict:
    return {
        "id": ts.id,
        "patient_id": ts.patient_id,
        "patient_name": ts.patient.full_name if ts.patient else None,
        "therapist_id": ts.therapist_id,
        "therapist_name": ts.therapist.name if ts.therapist else None,
        "scheduled_for": iso(ts.scheduled_for),
        "duration_minutes": ts.duration_minutes,
        "status": ts.status.value,
        "room_url": ts.room_url,
        "room_password": ts.room_password,
        "notes": ts.notes,
        "started_at": iso(ts.started_at),
        "completed_at": iso(ts.completed_at),
        "cancelled_at": iso(ts.cancelled_at),
    }


def _get(s, session_id: str) -> TelemedicineSession:
    ts = s.get(TelemedicineSession, session_id)
    if not ts:
        raise NotFoundError("TelemedicineSession", session_id)
    return ts


def schedule_session(
    patient_id: str,
    scheduled_for: datetime,
    therapist_id: str | None = None,
    duration_minutes: int = 30,
    notes: str | None = None,
) -> str:
    if duration_minutes <= 0:
        raise ValidationError("duration_minutes must be positive")

    with db_session() as s:
        if not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        if therapist_id and not s.get(Staff, therapist_id):
            raise NotFoundError("Staff", therapist_id)
        ts = TelemedicineSession(
            patient_id=patient_id,
            therapist_id=therapist_id,
            scheduled_for=scheduled_for,
            duration_minutes=duration_minutes,
            notes=notes,
        )
        s.add(ts)
        s.flush()
        session_id = ts.id

    cache.invalidate("telemedicine-sessions:*")
    return session_id


def list_sessions(
    patient_id: str | None = None,
    therapist_id: str | None = None,
    status: TelemedicineStatus | None = None,
    upcoming: bool = False,
) -> list[dict]:
    key = "telemedicine-sessions:{}:{}:{}:{}".format(
        patient_id or "all", therapist_id or "all", status.value if status else "all", int(upcoming)
    )

    def _query() -> list[dict]:
        with db_session() as s:
            q = select(TelemedicineSession).order_by(TelemedicineSession.scheduled_for.desc())
            if patient_id:
                q = q.where(TelemedicineSession.patient_id == patient_id)
            if therapist_id:
                q = q.where(TelemedicineSession.therapist_id == therapist_id)
            if status is not None:
                q = q.where(TelemedicineSession.status == status)
            if upcoming:
                q = q.where(
                    TelemedicineSession.status == TelemedicineStatus.SCHEDULED,
                    TelemedicineSession.scheduled_for >= utcnow(),
                )
            return [session_dict(ts) for ts in s.scalars(q)]

    return cache.remember(key, _query, ttl=180)


def get_session(session_id: str) -> dict:
    with db_session() as s:
        return session_dict(_get(s, session_id))


def start_session(session_id: str, notify_patient: bool = False) -> dict:
    """
    Therapist opens the room.
    - creates room URL and password on first start
    - status IN_PROGRESS
    - optionally sends the link to the patient
    """
    with db_session() as s:
        ts = _get(s, session_id)
        if ts.status in (TelemedicineStatus.COMPLETED, TelemedicineStatus.CANCELLED):
            raise ValidationError("Session has already ended or was cancelled")

        if not ts.room_url:
            ts.room_url = f"{ROOM_BASE_URL}/fisioflow-{_random_token(10, ROOM_ID_ALPHABET)}"
        if not ts.room_password:
            ts.room_password = _random_token(6, PASSWORD_ALPHABET)
        ts.status = TelemedicineStatus.IN_PROGRESS
        ts.started_at = utcnow()

        patient_notified = False
        if notify_patient and ts.patient.phone:
            queue_notification(
                s,
                NotificationType.TELEMEDICINE_LINK,
                f"Hi {ts.patient.full_name}! Your video consultation is ready.\n"
                f"Link: {ts.room_url}\nPassword: {ts.room_password}",
                recipient=ts.patient.phone,
                patient_id=ts.patient_id,
            )
            patient_notified = True

        host_name = ts.therapist.name if ts.therapist else "Physiotherapist"
        result = {
            "session_id": ts.id,
            "status": ts.status.value,
            "room_url": ts.room_url,
            "room_password": ts.room_password,
            "started_at": iso(ts.started_at),
            "patient_notified": patient_notified,
            "host_url": f"{ts.room_url}?displayName={quote(host_name)}",
            "guest_url": f"{ts.room_url}?displayName={quote(ts.patient.full_name)}",
        }

    cache.invalidate("telemedicine-sessions:*")
    logger.info("telemedicine session %s started", session_id)
    return result


def join_session(session_id: str) -> dict:
    with db_session() as s:
        ts = _get(s, session_id)
        if ts.status not in (TelemedicineStatus.SCHEDULED, TelemedicineStatus.IN_PROGRESS):
            raise ValidationError("Session is not available for joining")
        if ts.status == TelemedicineStatus.SCHEDULED:
            ts.status = TelemedicineStatus.IN_PROGRESS
        if not ts.room_url:
            ts.room_url = f"{ROOM_BASE_URL}/fisioflow-{ts.id[:8]}"
        result = {
            "session_id": ts.id,
            "room_url": ts.room_url,
            "password": ts.room_password,
            "status": ts.status.value,
        }

    cache.invalidate("telemedicine-sessions:*")
    return result


def end_session(
    session_id: str,
    notes: str | None = None,
    subjective: str | None = None,
    objective: str | None = None,
    assessment: str | None = None,
    plan: str | None = None,
    eva_score: int | None = None,
    duration_minutes: int | None = None,
    send_summary: bool = False,
) -> dict:
    """
    Close the consultation.
    - actual duration from start (or scheduled time) unless given
    - SOAP record when any clinical field is filled
    - telemedicine points for the patient
    """
    if eva_score is not None and not 0 <= eva_score <= 10:
        raise ValidationError("eva_score must be between 0 and 10")

    with db_session() as s:
        ts = _get(s, session_id)
        if ts.status == TelemedicineStatus.COMPLETED:
            raise ValidationError("Session has already been completed")
        if ts.status == TelemedicineStatus.CANCELLED:
            raise ValidationError("Session was cancelled")

        now = utcnow()
        started = ts.started_at or ts.scheduled_for
        actual = duration_minutes or max(0, round((now - started).total_seconds() / 60))

        ts.status = TelemedicineStatus.COMPLETED
        ts.completed_at = now
        ts.duration_minutes = actual
        ts.notes = notes or ts.notes

        clinical_session_id = None
        if subjective or objective or assessment or plan:
            cs = ClinicalSession(
                patient_id=ts.patient_id,
                therapist_id=ts.therapist_id,
                session_date=now.date(),
                session_type="telemedicine",
                subjective=subjective,
                objective=objective,
                assessment=assessment,
                plan=plan,
                eva_score=eva_score,
                duration_minutes=actual,
                completed_at=now,
            )
            s.add(cs)
            s.flush()
            clinical_session_id = cs.id

        badges = apply_points(
            s,
            ts.patient,
            TELEMEDICINE_POINTS,
            source="telemedicine_session",
            description="Video consultation completed",
            source_id=ts.id,
        )

        summary_queued = False
        if send_summary and ts.patient.phone:
            queue_notification(
                s,
                NotificationType.SESSION_SUMMARY,
                f"Hi {ts.patient.full_name}! Summary of your video consultation:\n"
                f"{session_summary_text(assessment, plan, eva_score)}",
                recipient=ts.patient.phone,
                patient_id=ts.patient_id,
            )
            summary_queued = True

        result = {
            "session_id": ts.id,
            "status": ts.status.value,
            "completed_at": iso(now),
            "actual_duration": actual,
            "clinical_session_id": clinical_session_id,
            "points_awarded": TELEMEDICINE_POINTS,
            "badges_earned": [b.name for b in badges],
            "summary_queued": summary_queued,
        }

    cache.invalidate("telemedicine-sessions:*")
    cache.invalidate("leaderboard:*")
    logger.info("telemedicine session %s completed (%d min)", session_id, actual)
    return result


def cancel_session(session_id: str, reason: str | None = None) -> dict:
    with db_session() as s:
        ts = _get(s, session_id)
        if ts.status != TelemedicineStatus.SCHEDULED:
            raise ValidationError(f"Only scheduled sessions can be cancelled (status: {ts.status.value})")
        ts.status = TelemedicineStatus.CANCELLED
        ts.cancelled_at = utcnow()
        if reason:
            ts.notes = f"{ts.notes}\nCancelled: {reason}" if ts.notes else f"Cancelled: {reason}"
        result = session_dict(ts)

    cache.invalidate("telemedicine-sessions:*")
    return result
