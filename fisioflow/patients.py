from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select

from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .gamification import apply_points
from .models import (
    ClinicalSession,
    NotificationType,
    PainLog,
    Patient,
    Staff,
    iso,
    utcnow,
)
from .notifications import queue_notification

logger = logging.getLogger(__name__)

SESSION_COMPLETED_POINTS = 50
PATIENT_FIELDS = ("full_name", "email", "phone", "cpf", "birth_date", "profession", "condition")


def _check_scale(value: int | None, field: str) -> None:
    if value is not None and not 0 <= value <= 10:
        raise ValidationError(f"{field} must be between 0 and 10")


def patient_dict(p: Patient) -> dict:
    return {
        "id": p.id,
        "full_name": p.full_name,
        "email": p.email,
        "phone": p.phone,
        "cpf": p.cpf,
        "birth_date": iso(p.birth_date),
        "profession": p.profession,
        "condition": p.condition,
        "is_active": p.is_active,
        "total_points": p.total_points,
        "level": p.level,
        "current_streak": p.current_streak,
        "created_at": iso(p.created_at),
    }


# =========================
# Patients
# =========================
def create_patient(
    full_name: str,
    email: str | None = None,
    phone: str | None = None,
    cpf: str | None = None,
    birth_date: date | None = None,
    profession: str | None = None,
    condition: str | None = None,
) -> str:
    full_name = full_name.strip()
    if not full_name:
        raise ValidationError("full_name is required")

    with db_session() as s:
        if cpf and s.execute(select(Patient.id).where(Patient.cpf == cpf)).first():
            raise ValidationError(f"A patient with CPF {cpf} already exists")

        p = Patient(
            full_name=full_name,
            email=email,
            phone=phone,
            cpf=cpf,
            birth_date=birth_date,
            profession=profession,
            condition=condition,
        )
        s.add(p)
        s.flush()
        patient_id = p.id

    cache.invalidate("patients:*")
    return patient_id


def list_patients(search: str | None = None, include_inactive: bool = False) -> list[dict]:
    def _query() -> list[dict]:
        with db_session() as s:
            q = select(Patient).order_by(Patient.full_name)
            if not include_inactive:
                q = q.where(Patient.is_active.is_(True))
            if search:
                q = q.where(Patient.full_name.ilike(f"%{search.strip()}%"))
            return [patient_dict(p) for p in s.scalars(q)]

    if search:
        return _query()
    return cache.remember(f"patients:all:{int(include_inactive)}", _query)


def get_patient(patient_id: str) -> dict:
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient", patient_id)
        return patient_dict(p)


def update_patient(patient_id: str, **fields) -> dict:
    unknown = set(fields) - set(PATIENT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown patient fields: {', '.join(sorted(unknown))}")
    if "full_name" in fields and not (fields["full_name"] or "").strip():
        raise ValidationError("full_name cannot be empty")

    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient", patient_id)
        for name, value in fields.items():
            setattr(p, name, value)
        s.flush()
        result = patient_dict(p)

    cache.invalidate("patients:*")
    return result


def deactivate_patient(patient_id: str) -> bool:
    """Soft delete (discharge). Clinical history stays in place."""
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient", patient_id)
        if not p.is_active:
            return False
        p.is_active = False

    cache.invalidate("patients:*")
    return True


# =========================
# Pain logs
# =========================
def add_pain_log(patient_id: str, level: int, notes: str | None = None) -> int:
    _check_scale(level, "level")
    with db_session() as s:
        if not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        log = PainLog(patient_id=patient_id, level=level, notes=notes)
        s.add(log)
        s.flush()
        return log.id


def list_pain_logs(patient_id: str) -> list[dict]:
    with db_session() as s:
        rows = s.scalars(select(PainLog).where(PainLog.patient_id == patient_id).order_by(PainLog.created_at.asc()))
        return [{"id": r.id, "level": r.level, "notes": r.notes, "created_at": iso(r.created_at)} for r in rows]


# =========================
# Clinical (SOAP) sessions
# =========================
def _session_dict(cs: ClinicalSession) -> dict:
    return {
        "id": cs.id,
        "patient_id": cs.patient_id,
        "therapist_id": cs.therapist_id,
        "session_date": iso(cs.session_date),
        "session_type": cs.session_type,
        "subjective": cs.subjective,
        "objective": cs.objective,
        "assessment": cs.assessment,
        "plan": cs.plan,
        "eva_score": cs.eva_score,
        "duration_minutes": cs.duration_minutes,
        "completed_at": iso(cs.completed_at),
    }


def create_clinical_session(
    patient_id: str,
    session_date: date | None = None,
    therapist_id: str | None = None,
    subjective: str | None = None,
    objective: str | None = None,
    assessment: str | None = None,
    plan: str | None = None,
    eva_score: int | None = None,
    duration_minutes: int | None = None,
    session_type: str = "in_person",
) -> str:
    _check_scale(eva_score, "eva_score")
    with db_session() as s:
        if not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        if therapist_id and not s.get(Staff, therapist_id):
            raise NotFoundError("Staff", therapist_id)

        cs = ClinicalSession(
            patient_id=patient_id,
            therapist_id=therapist_id,
            session_date=session_date or utcnow().date(),
            session_type=session_type,
            subjective=subjective,
            objective=objective,
            assessment=assessment,
            plan=plan,
            eva_score=eva_score,
            duration_minutes=duration_minutes,
        )
        s.add(cs)
        s.flush()
        return cs.id


def list_clinical_sessions(patient_id: str) -> list[dict]:
    with db_session() as s:
        q = (
            select(ClinicalSession)
            .where(ClinicalSession.patient_id == patient_id)
            .order_by(ClinicalSession.session_date.desc(), ClinicalSession.created_at.desc())
        )
        return [_session_dict(cs) for cs in s.scalars(q)]


def session_summary_text(assessment: str | None, plan: str | None, eva_score: int | None) -> str:
    parts = []
    if assessment:
        parts.append(f"Assessment: {assessment}")
    if plan:
        parts.append(f"Plan: {plan}")
    if eva_score is not None:
        parts.append(f"Pain scale: {eva_score}/10")
    return "\n\n".join(parts) or "Session completed. Keep going with the prescribed exercises!"


def complete_clinical_session(session_id: str, send_summary: bool = False) -> dict:
    """
    Close a treatment session:
    - stamps completed_at (once)
    - awards the session points and extends the patient's streak
    - optionally queues a WhatsApp summary
    """
    with db_session() as s:
        cs = s.get(ClinicalSession, session_id)
        if not cs:
            raise NotFoundError("ClinicalSession", session_id)
        if cs.completed_at is not None:
            raise ValidationError("Session already completed")

        cs.completed_at = utcnow()
        patient = cs.patient
        patient.current_streak += 1
        badges = apply_points(
            s,
            patient,
            SESSION_COMPLETED_POINTS,
            source="session",
            description="Physiotherapy session completed",
            source_id=cs.id,
        )

        summary_queued = False
        if send_summary and patient.phone:
            queue_notification(
                s,
                NotificationType.SESSION_SUMMARY,
                f"Hi {patient.full_name}! Summary of today's session:\n"
                f"{session_summary_text(cs.assessment, cs.plan, cs.eva_score)}",
                recipient=patient.phone,
                patient_id=patient.id,
            )
            summary_queued = True

        result = {
            "session_id": cs.id,
            "points_awarded": SESSION_COMPLETED_POINTS,
            "total_points": patient.total_points,
            "current_streak": patient.current_streak,
            "badges_earned": [b.name for b in badges],
            "summary_queued": summary_queued,
        }

    cache.invalidate("leaderboard:*")
    logger.info("clinical session %s completed", session_id)
    return result
