from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import select

from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import NpsResponse, Patient, iso, utcnow

logger = logging.getLogger(__name__)


def _round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


def classify(score: int) -> str:
    if score >= 9:
        return "promoter"
    if score >= 7:
        return "passive"
    return "detractor"


def record_response(patient_id: str, score: int, feedback: str | None = None, source: str = "manual") -> int:
    if not isinstance(score, int) or isinstance(score, bool) or not 0 <= score <= 10:
        raise ValidationError("score must be an integer between 0 and 10")

    with db_session() as s:
        if not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        r = NpsResponse(patient_id=patient_id, score=score, feedback=feedback, source=source)
        s.add(r)
        s.flush()
        response_id = r.id

    cache.invalidate("nps-score:*")
    cache.invalidate("dashboard:*")
    return response_id


def list_responses(patient_id: str | None = None, limit: int = 50) -> list[dict]:
    with db_session() as s:
        q = select(NpsResponse).order_by(NpsResponse.responded_at.desc()).limit(limit)
        if patient_id:
            q = q.where(NpsResponse.patient_id == patient_id)
        return [
            {
                "id": r.id,
                "patient_id": r.patient_id,
                "patient_name": r.patient.full_name,
                "score": r.score,
                "category": classify(r.score),
                "feedback": r.feedback,
                "source": r.source,
                "responded_at": iso(r.responded_at),
            }
            for r in s.scalars(q)
        ]


def summarize(scores: list[int]) -> dict:
    """NPS breakdown of a list of 0-10 scores; nps is None when there are none."""
    total = len(scores)
    distribution = {str(i): 0 for i in range(11)}
    for sc in scores:
        distribution[str(sc)] += 1

    if not total:
        return {
            "nps": None,
            "promoters": 0,
            "passives": 0,
            "detractors": 0,
            "total": 0,
            "promoter_percentage": 0,
            "detractor_percentage": 0,
            "average": None,
            "distribution": distribution,
        }

    promoters = sum(1 for sc in scores if sc >= 9)
    passives = sum(1 for sc in scores if 7 <= sc <= 8)
    detractors = total - promoters - passives
    promoter_pct = promoters / total * 100
    detractor_pct = detractors / total * 100
    return {
        "nps": _round_half_up((promoters - detractors) / total * 100),
        "promoters": promoters,
        "passives": passives,
        "detractors": detractors,
        "total": total,
        "promoter_percentage": _round_half_up(promoter_pct),
        "detractor_percentage": _round_half_up(detractor_pct),
        "average": round(sum(scores) / total, 1),
        "distribution": distribution,
    }


def nps_summary(start: datetime | None = None, end: datetime | None = None, days: int | None = None) -> dict:
    if days is not None:
        if days <= 0:
            raise ValidationError("days must be positive")
        start = utcnow() - timedelta(days=days)
        end = None

    def _compute() -> dict:
        with db_session() as s:
            q = select(NpsResponse.score)
            if start is not None:
                q = q.where(NpsResponse.responded_at >= start)
            if end is not None:
                q = q.where(NpsResponse.responded_at <= end)
            scores = list(s.scalars(q))
        result = summarize(scores)
        result.update(start=iso(start), end=iso(end))
        return result

    if days is not None:
        # rolling window, the start moves with the clock
        return _compute()
    return cache.remember(f"nps-score:{iso(start) or 'all'}:{iso(end) or 'all'}", _compute)
