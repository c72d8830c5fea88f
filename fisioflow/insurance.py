"""
Health-insurance plans and TISS guides.

A guide collects the procedures billed to an insurance plan for one patient.
Lifecycle:

    pending -> submitted -> approved -> paid
                         -> denied

Only pending guides can be edited or deleted.
"""
from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import datetime

from sqlalchemy import or_, select

from .billing import record_transaction
from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import (
    ClinicalSession,
    InsurancePlan,
    Patient,
    TissGuide,
    TissGuideType,
    TissStatus,
    TransactionType,
    iso,
    utcnow,
)

logger = logging.getLogger(__name__)

GUIDE_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
EDITABLE_FIELDS = ("insurance_plan_id", "authorization_number", "clinical_session_id", "procedures", "guide_type")


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_guide_number() -> str:
    suffix = "".join(secrets.choice(GUIDE_SUFFIX_ALPHABET) for _ in range(4))
    return f"TISS-{str(_now_ms())[-8:]}-{suffix}"


def normalize_procedures(procedures: list[dict]) -> tuple[list[dict], int]:
    """Validate procedure lines and return them with total_value filled in, plus the guide total (cents)."""
    if not procedures:
        raise ValidationError("At least one procedure is required")

    lines = []
    for i, proc in enumerate(procedures, start=1):
        code = (proc.get("code") or "").strip()
        if not code:
            raise ValidationError(f"Procedure {i}: code is required")
        quantity = int(proc.get("quantity") or 1)
        unit_value = int(proc.get("unit_value") or 0)
        if quantity <= 0 or unit_value < 0:
            raise ValidationError(f"Procedure {i}: quantity must be positive and unit_value not negative")
        total_value = proc.get("total_value")
        total_value = int(total_value) if total_value else quantity * unit_value
        lines.append(
            {
                "code": code,
                "description": proc.get("description"),
                "quantity": quantity,
                "unit_value": unit_value,
                "total_value": total_value,
            }
        )
    return lines, sum(line["total_value"] for line in lines)


# =========================
# Insurance plans
# =========================
def _plan_dict(p: InsurancePlan) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "ans_code": p.ans_code,
        "cnpj": p.cnpj,
        "phone": p.phone,
        "email": p.email,
        "is_active": p.is_active,
    }


def create_plan(
    name: str,
    ans_code: str | None = None,
    cnpj: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    is_active: bool = True,
) -> int:
    if not (name or "").strip():
        raise ValidationError("name is required")
    with db_session() as s:
        p = InsurancePlan(name=name.strip(), ans_code=ans_code, cnpj=cnpj, phone=phone, email=email, is_active=is_active)
        s.add(p)
        s.flush()
        plan_id = p.id

    cache.invalidate("insurance-plans:*")
    return plan_id


def list_plans(active: bool | None = None, search: str | None = None) -> list[dict]:
    key = f"insurance-plans:{'all' if active is None else int(active)}:{search or 'none'}"

    def _query() -> list[dict]:
        with db_session() as s:
            q = select(InsurancePlan).order_by(InsurancePlan.name)
            if active is not None:
                q = q.where(InsurancePlan.is_active.is_(active))
            if search:
                q = q.where(or_(InsurancePlan.name.ilike(f"%{search}%"), InsurancePlan.ans_code.ilike(f"%{search}%")))
            return [_plan_dict(p) for p in s.scalars(q)]

    return cache.remember(key, _query)


# =========================
# TISS guides
# =========================
def guide_dict(g: TissGuide) -> dict:
    return {
        "id": g.id,
        "guide_number": g.guide_number,
        "guide_type": g.guide_type.value,
        "patient_id": g.patient_id,
        "patient_name": g.patient.full_name if g.patient else None,
        "insurance_plan_id": g.insurance_plan_id,
        "insurance_plan": g.insurance_plan.name if g.insurance_plan else None,
        "authorization_number": g.authorization_number,
        "clinical_session_id": g.clinical_session_id,
        "procedures": g.procedures,
        "total_amount": g.total_amount,
        "status": g.status.value,
        "submission_date": iso(g.submission_date),
        "protocol_number": g.protocol_number,
        "resolved_at": iso(g.resolved_at),
        "denial_reason": g.denial_reason,
        "created_by": g.created_by,
        "created_at": iso(g.created_at),
    }


def _get(s, guide_id: str) -> TissGuide:
    g = s.get(TissGuide, guide_id)
    if not g:
        raise NotFoundError("TissGuide", guide_id)
    return g


def _check_refs(s, insurance_plan_id: int | None, clinical_session_id: str | None) -> None:
    if insurance_plan_id is not None and not s.get(InsurancePlan, insurance_plan_id):
        raise NotFoundError("InsurancePlan", insurance_plan_id)
    if clinical_session_id and not s.get(ClinicalSession, clinical_session_id):
        raise NotFoundError("ClinicalSession", clinical_session_id)


def create_guide(
    patient_id: str,
    procedures: list[dict],
    guide_type: TissGuideType = TissGuideType.SP_SADT,
    insurance_plan_id: int | None = None,
    authorization_number: str | None = None,
    clinical_session_id: str | None = None,
    guide_number: str | None = None,
    created_by: str | None = None,
) -> str:
    lines, total = normalize_procedures(procedures)

    with db_session() as s:
        if not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        _check_refs(s, insurance_plan_id, clinical_session_id)

        number = guide_number or generate_guide_number()
        if s.execute(select(TissGuide.id).where(TissGuide.guide_number == number)).first():
            raise ValidationError(f"Guide number already in use: {number}")

        g = TissGuide(
            guide_number=number,
            guide_type=guide_type,
            patient_id=patient_id,
            insurance_plan_id=insurance_plan_id,
            authorization_number=authorization_number,
            clinical_session_id=clinical_session_id,
            procedures=lines,
            total_amount=total,
            created_by=created_by,
        )
        s.add(g)
        s.flush()
        guide_id = g.id

    cache.invalidate("tiss-guides:*")
    cache.invalidate("dashboard:*")
    logger.info("TISS guide %s created (%d cents)", number, total)
    return guide_id


def list_guides(
    patient_id: str | None = None,
    insurance_plan_id: int | None = None,
    status: TissStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict]:
    key = "tiss-guides:{}:{}:{}:{}:{}".format(
        patient_id or "all",
        insurance_plan_id or "all",
        status.value if status else "all",
        iso(start) or "none",
        iso(end) or "none",
    )

    def _query() -> list[dict]:
        with db_session() as s:
            q = select(TissGuide).order_by(TissGuide.created_at.desc())
            if patient_id:
                q = q.where(TissGuide.patient_id == patient_id)
            if insurance_plan_id is not None:
                q = q.where(TissGuide.insurance_plan_id == insurance_plan_id)
            if status is not None:
                q = q.where(TissGuide.status == status)
            if start is not None:
                q = q.where(TissGuide.created_at >= start)
            if end is not None:
                q = q.where(TissGuide.created_at <= end)
            return [guide_dict(g) for g in s.scalars(q)]

    return cache.remember(key, _query)


def get_guide(guide_id: str) -> dict:
    with db_session() as s:
        return guide_dict(_get(s, guide_id))


def update_guide(guide_id: str, **fields) -> dict:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown guide fields: {', '.join(sorted(unknown))}")
    if "guide_type" in fields and fields["guide_type"] is None:
        raise ValidationError("guide_type cannot be empty")

    with db_session() as s:
        g = _get(s, guide_id)
        if g.status != TissStatus.PENDING:
            raise ValidationError(f"Guide is {g.status.value}; only pending guides can be edited")
        _check_refs(s, fields.get("insurance_plan_id"), fields.get("clinical_session_id"))

        if "procedures" in fields:
            g.procedures, g.total_amount = normalize_procedures(fields.pop("procedures"))
        for name, value in fields.items():
            setattr(g, name, value)
        s.flush()
        result = guide_dict(g)

    cache.invalidate("tiss-guides:*")
    return result


def delete_guide(guide_id: str) -> None:
    with db_session() as s:
        g = _get(s, guide_id)
        if g.status != TissStatus.PENDING:
            raise ValidationError(f"Guide is {g.status.value}; only pending guides can be deleted")
        s.delete(g)

    cache.invalidate("tiss-guides:*")
    cache.invalidate("dashboard:*")


def submit_guide(guide_id: str) -> dict:
    with db_session() as s:
        g = _get(s, guide_id)
        if g.status != TissStatus.PENDING:
            raise ValidationError(f"Guide is already {g.status.value}. Only pending guides can be submitted.")
        if g.insurance_plan_id is None:
            raise ValidationError("Guide must have an insurance plan before submission")

        g.status = TissStatus.SUBMITTED
        g.submission_date = utcnow()
        g.protocol_number = f"PROT-{_now_ms()}"
        s.flush()
        result = {
            "guide": guide_dict(g),
            "submission_confirmation": {
                "timestamp": iso(g.submission_date),
                "protocol_number": g.protocol_number,
            },
        }

    cache.invalidate("tiss-guides:*")
    cache.invalidate("dashboard:*")
    logger.info("TISS guide %s submitted, protocol %s", result["guide"]["guide_number"], result["guide"]["protocol_number"])
    return result


def resolve_guide(guide_id: str, approved: bool, denial_reason: str | None = None) -> dict:
    """Record the insurer's answer for a submitted guide."""
    if not approved and not denial_reason:
        raise ValidationError("denial_reason is required when denying a guide")

    with db_session() as s:
        g = _get(s, guide_id)
        if g.status != TissStatus.SUBMITTED:
            raise ValidationError(f"Guide is {g.status.value}; only submitted guides can be resolved")
        g.status = TissStatus.APPROVED if approved else TissStatus.DENIED
        g.denial_reason = None if approved else denial_reason
        g.resolved_at = utcnow()
        s.flush()
        result = guide_dict(g)

    cache.invalidate("tiss-guides:*")
    logger.info("TISS guide %s %s", result["guide_number"], result["status"])
    return result


def mark_guide_paid(guide_id: str) -> dict:
    """Approved guide paid by the insurer; books the income."""
    with db_session() as s:
        g = _get(s, guide_id)
        if g.status != TissStatus.APPROVED:
            raise ValidationError(f"Guide is {g.status.value}; only approved guides can be marked paid")
        g.status = TissStatus.PAID
        record_transaction(
            s,
            TransactionType.INCOME,
            "insurance",
            g.total_amount,
            description=f"TISS guide {g.guide_number}",
            patient_id=g.patient_id,
        )
        s.flush()
        result = guide_dict(g)

    cache.invalidate("tiss-guides:*")
    cache.invalidate("dashboard:*")
    return result
