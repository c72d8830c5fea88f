from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select

from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import Lead, LeadStatus, NotificationType, Patient, iso, utcnow
from .notifications import queue_notification

logger = logging.getLogger(__name__)

FUNNEL_STAGES = (
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.QUALIFIED,
    LeadStatus.CONVERTED,
    LeadStatus.LOST,
)
TERMINAL_STAGES = {LeadStatus.CONVERTED, LeadStatus.LOST}

# budget thresholds in reais -> points
BUDGET_POINTS = ((5000, 40), (2000, 30), (1000, 20))
SOURCE_POINTS = {"referral": 30, "whatsapp": 25, "instagram": 20, "website": 15}
STATUS_POINTS = {LeadStatus.QUALIFIED: 30, LeadStatus.CONTACTED: 20, LeadStatus.NEW: 10}
SCORE_TIERS = ("hot", "warm", "cold")


def _invalidate() -> None:
    cache.invalidate("leads:*")
    cache.invalidate("crm-*")


def lead_dict(lead: Lead) -> dict:
    return {
        "id": lead.id,
        "name": lead.name,
        "email": lead.email,
        "phone": lead.phone,
        "source": lead.source,
        "status": lead.status.value,
        "notes": lead.notes,
        "budget": lead.budget,
        "patient_id": lead.patient_id,
        "created_at": iso(lead.created_at),
        "updated_at": iso(lead.updated_at),
    }


# =========================
# Leads
# =========================
def create_lead(
    name: str,
    phone: str,
    email: str | None = None,
    source: str | None = None,
    notes: str | None = None,
    budget: int | None = None,
) -> str:
    if not (name or "").strip() or not (phone or "").strip():
        raise ValidationError("name and phone are required")
    if budget is not None and budget < 0:
        raise ValidationError("budget cannot be negative")

    with db_session() as s:
        lead = Lead(
            name=name.strip(),
            phone=phone.strip(),
            email=email,
            source=source.lower() if source else None,
            notes=notes,
            budget=budget,
        )
        s.add(lead)
        s.flush()
        lead_id = lead.id

    _invalidate()
    return lead_id


def list_leads(status: LeadStatus | None = None, source: str | None = None) -> list[dict]:
    with db_session() as s:
        q = select(Lead).order_by(Lead.created_at.desc())
        if status is not None:
            q = q.where(Lead.status == status)
        if source:
            q = q.where(Lead.source == source.lower())
        return [lead_dict(lead) for lead in s.scalars(q)]


def get_lead(lead_id: str) -> dict:
    with db_session() as s:
        lead = s.get(Lead, lead_id)
        if not lead:
            raise NotFoundError("Lead", lead_id)
        return lead_dict(lead)


def update_lead(lead_id: str, **fields) -> dict:
    allowed = {"name", "email", "phone", "source", "notes", "budget"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Unknown lead fields: {', '.join(sorted(unknown))}")
    for required in ("name", "phone"):
        if required in fields:
            if not (fields[required] or "").strip():
                raise ValidationError(f"{required} cannot be empty")
            fields[required] = fields[required].strip()
    if fields.get("budget") is not None and fields["budget"] < 0:
        raise ValidationError("budget cannot be negative")
    if fields.get("source"):
        fields["source"] = fields["source"].lower()

    with db_session() as s:
        lead = s.get(Lead, lead_id)
        if not lead:
            raise NotFoundError("Lead", lead_id)
        for name, value in fields.items():
            setattr(lead, name, value)
        lead.updated_at = utcnow()
        result = lead_dict(lead)

    _invalidate()
    return result


def delete_lead(lead_id: str) -> None:
    with db_session() as s:
        lead = s.get(Lead, lead_id)
        if not lead:
            raise NotFoundError("Lead", lead_id)
        s.delete(lead)
    _invalidate()


def move_lead(lead_id: str, status: LeadStatus | str) -> dict:
    """Move a lead to another funnel stage. Converted and lost leads stay put."""
    if isinstance(status, str):
        try:
            status = LeadStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid stage: {status}") from None

    with db_session() as s:
        lead = s.get(Lead, lead_id)
        if not lead:
            raise NotFoundError("Lead", lead_id)
        if lead.status in TERMINAL_STAGES and lead.status != status:
            raise ValidationError(f"Lead is already {lead.status.value}")
        lead.status = status
        lead.updated_at = utcnow()
        result = lead_dict(lead)

    _invalidate()
    logger.info("lead %s moved to %s", lead_id, status.value)
    return result


def convert_lead(lead_id: str, send_welcome: bool = False) -> dict:
    """
    Turn a lead into a patient.
    - reuses the patient with the same phone if there is one
    - marks the lead converted and links it to the patient
    - optionally queues a welcome WhatsApp message
    """
    with db_session() as s:
        lead = s.get(Lead, lead_id)
        if not lead:
            raise NotFoundError("Lead", lead_id)
        if lead.status == LeadStatus.CONVERTED:
            raise ValidationError("Lead already converted")
        if lead.status == LeadStatus.LOST:
            raise ValidationError("Cannot convert a lost lead")

        patient = s.execute(select(Patient).where(Patient.phone == lead.phone)).scalars().first()
        created = patient is None
        if created:
            patient = Patient(
                full_name=lead.name,
                email=lead.email,
                phone=lead.phone,
                condition=lead.notes,
            )
            s.add(patient)
            s.flush()

        lead.status = LeadStatus.CONVERTED
        lead.patient_id = patient.id
        lead.updated_at = utcnow()

        welcome_queued = False
        if send_welcome:
            queue_notification(
                s,
                NotificationType.WELCOME,
                f"Hi {patient.full_name}! Welcome to the clinic. "
                "We will contact you shortly to schedule your first appointment.",
                recipient=patient.phone,
                patient_id=patient.id,
            )
            welcome_queued = True

        result = {
            "lead_id": lead.id,
            "patient_id": patient.id,
            "patient_created": created,
            "welcome_queued": welcome_queued,
        }

    cache.invalidate("patients:*")
    _invalidate()
    logger.info("lead %s converted to patient %s", lead_id, result["patient_id"])
    return result


# =========================
# Scoring
# =========================
def calculate_lead_score(
    budget: int | None,
    source: str | None,
    status: LeadStatus,
    email: str | None,
    updated_at: datetime,
    now: datetime | None = None,
) -> int:
    """Weighted 0-100 score. Budget is in cents."""
    now = now or utcnow()
    score = 0

    if budget and budget > 0:
        reais = budget / 100
        score += next((pts for threshold, pts in BUDGET_POINTS if reais >= threshold), 10)

    score += SOURCE_POINTS.get((source or "").lower(), 10)
    score += STATUS_POINTS.get(status, 0)

    if email:
        score += 5

    days = (now - updated_at).days
    if days <= 1:
        score += 10
    elif days <= 7:
        score += 5
    elif days > 30:
        score -= 10

    return max(0, min(100, score))


def score_tier(score: int) -> str:
    if score >= 80:
        return "hot"
    if score >= 50:
        return "warm"
    return "cold"


def scoring_board(tier: str | None = None) -> dict:
    if tier is not None and tier not in SCORE_TIERS:
        raise ValidationError(f"tier must be one of {', '.join(SCORE_TIERS)}")

    def _compute() -> dict:
        now = utcnow()
        with db_session() as s:
            leads = []
            for lead in s.scalars(select(Lead)):
                score = calculate_lead_score(lead.budget, lead.source, lead.status, lead.email, lead.updated_at, now)
                leads.append({**lead_dict(lead), "score": score, "tier": score_tier(score)})

        counts = {t: sum(1 for x in leads if x["tier"] == t) for t in SCORE_TIERS}
        if tier:
            leads = [x for x in leads if x["tier"] == tier]
        leads.sort(key=lambda x: x["score"], reverse=True)
        return {"leads": leads, "counts": counts, "total": sum(counts.values())}

    return cache.remember(f"crm-scoring:{tier or 'all'}", _compute)


def funnel(days: int = 30) -> dict:
    """Stage counts for leads created in the last `days` days, with drop-off between stages."""
    if days <= 0:
        raise ValidationError("days must be positive")

    def _compute() -> dict:
        since = utcnow() - timedelta(days=days)
        with db_session() as s:
            rows = s.execute(
                select(Lead.status, func.count(Lead.id)).where(Lead.created_at >= since).group_by(Lead.status)
            ).all()
        counts = {status: n for status, n in rows}
        total = sum(counts.values())

        stages = []
        previous = None
        for stage in FUNNEL_STAGES:
            count = counts.get(stage, 0)
            drop_off = max(0, previous - count) if previous is not None else 0
            stages.append(
                {
                    "stage": stage.value,
                    "count": count,
                    "percentage": round(count / total * 100, 1) if total else 0.0,
                    "drop_off": drop_off,
                    "drop_off_percentage": round(drop_off / previous * 100, 1) if previous else 0.0,
                }
            )
            previous = count

        converted = counts.get(LeadStatus.CONVERTED, 0)
        return {
            "days": days,
            "total": total,
            "conversion_rate": round(converted / total * 100, 1) if total else 0.0,
            "stages": stages,
        }

    return cache.remember(f"crm-funnel:{days}", _compute)
