from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import (
    Achievement,
    Badge,
    ClinicalSession,
    Patient,
    PointsHistory,
    PointsRule,
    iso,
    utcnow,
)

logger = logging.getLogger(__name__)

# (level, min_points, max_points)
LEVEL_THRESHOLDS = [
    (1, 0, 500),
    (2, 501, 1200),
    (3, 1201, 2500),
    (4, 2501, 5000),
    (5, 5001, 10000),
]
POINTS_PER_EXTRA_LEVEL = 5000

REQUIREMENT_TYPES = ("points_earned", "sessions_completed", "streak_days")
LEADERBOARD_PERIODS = {"all": None, "week": 7, "month": 30}


def calculate_level(points: int) -> int:
    for level, lo, hi in LEVEL_THRESHOLDS:
        if lo <= points <= hi:
            return level

    top_level, _, top_max = LEVEL_THRESHOLDS[-1]
    if points > top_max:
        return top_level + (points - top_max) // POINTS_PER_EXTRA_LEVEL
    return 1


def level_progress(points: int) -> int:
    """Percentage (0-100) of the way through the current level."""
    level = calculate_level(points)
    threshold = next((t for t in LEVEL_THRESHOLDS if t[0] == level), None)
    if threshold is None:
        return 100

    _, lo, hi = threshold
    progress = (points - lo) / (hi - lo) * 100
    return min(100, max(0, int(progress)))


def _requirement_progress(s: Session, patient: Patient, requirement_type: str) -> int:
    if requirement_type == "points_earned":
        return patient.total_points
    if requirement_type == "streak_days":
        return patient.current_streak
    if requirement_type == "sessions_completed":
        return s.scalar(
            select(func.count(ClinicalSession.id)).where(
                ClinicalSession.patient_id == patient.id,
                ClinicalSession.completed_at.is_not(None),
            )
        ) or 0
    return 0


def _check_badges(s: Session, patient: Patient) -> list[Badge]:
    """Award every active badge whose requirement is now met and not yet earned."""
    earned_ids = set(s.scalars(select(Achievement.badge_id).where(Achievement.patient_id == patient.id)))
    badges = s.scalars(select(Badge).where(Badge.is_active.is_(True)).order_by(Badge.requirement_value.asc()))

    awarded: list[Badge] = []
    for badge in badges:
        if badge.id in earned_ids:
            continue
        if _requirement_progress(s, patient, badge.requirement_type) < badge.requirement_value:
            continue

        s.add(Achievement(patient_id=patient.id, badge_id=badge.id))
        awarded.append(badge)
        if badge.points:
            s.add(
                PointsHistory(
                    patient_id=patient.id,
                    points=badge.points,
                    source="badge",
                    source_id=str(badge.id),
                    description=f"Badge earned: {badge.name}",
                )
            )
            patient.total_points += badge.points
        logger.info("badge %s awarded to patient %s", badge.name, patient.id)

    patient.level = calculate_level(patient.total_points)
    return awarded


def apply_points(
    s: Session,
    patient: Patient,
    points: int,
    source: str,
    description: str,
    source_id: str | None = None,
) -> list[Badge]:
    """
    Record points inside the caller's session.
    - appends to points history
    - keeps the total at or above zero
    - recomputes level and checks badges
    """
    s.add(
        PointsHistory(
            patient_id=patient.id,
            points=points,
            source=source,
            source_id=source_id,
            description=description,
        )
    )
    patient.total_points = max(0, patient.total_points + points)
    patient.last_active_date = utcnow()
    s.flush()
    return _check_badges(s, patient)


def award_points(patient_id: str, points: int, source: str = "manual", reason: str | None = None) -> dict:
    with db_session() as s:
        patient = s.get(Patient, patient_id)
        if not patient:
            raise NotFoundError("Patient", patient_id)

        previous = patient.total_points
        badges = apply_points(s, patient, points, source, reason or "Manual adjustment")
        result = {
            "patient_id": patient.id,
            "previous_points": previous,
            "points_awarded": points,
            "new_total_points": patient.total_points,
            "level": patient.level,
            "badges_earned": [b.name for b in badges],
            "reason": reason,
        }

    cache.invalidate("leaderboard:*")
    return result


def award_for_action(patient_id: str, action: str, source_id: str | None = None) -> dict:
    """Award the points configured by the active rule for an action."""
    with db_session() as s:
        rule = s.execute(
            select(PointsRule).where(PointsRule.action == action, PointsRule.is_active.is_(True))
        ).scalar_one_or_none()
        if not rule:
            raise NotFoundError("PointsRule", action)
        points, description = rule.points, rule.description or action

    result = award_points(patient_id, points, source=action, reason=description)
    result["action"] = action
    result["source_id"] = source_id
    return result


# =========================
# Badges and rules
# =========================
def create_badge(
    name: str,
    category: str,
    requirement_type: str,
    requirement_value: int,
    points: int = 0,
    description: str | None = None,
    icon: str | None = None,
) -> int:
    if requirement_type not in REQUIREMENT_TYPES:
        raise ValidationError(f"requirement_type must be one of {', '.join(REQUIREMENT_TYPES)}")
    if requirement_value <= 0:
        raise ValidationError("requirement_value must be positive")

    with db_session() as s:
        if s.execute(select(Badge).where(Badge.name == name)).scalar_one_or_none():
            raise ValidationError(f"Badge already exists: {name}")
        b = Badge(
            name=name,
            category=category,
            requirement_type=requirement_type,
            requirement_value=requirement_value,
            points=points,
            description=description,
            icon=icon,
        )
        s.add(b)
        s.flush()
        return b.id


def list_badges(active_only: bool = True) -> list[dict]:
    with db_session() as s:
        q = select(Badge).order_by(Badge.category, Badge.requirement_value)
        if active_only:
            q = q.where(Badge.is_active.is_(True))
        return [
            {
                "id": b.id,
                "name": b.name,
                "description": b.description,
                "icon": b.icon,
                "category": b.category,
                "requirement_type": b.requirement_type,
                "requirement_value": b.requirement_value,
                "points": b.points,
            }
            for b in s.scalars(q)
        ]


def list_rules() -> list[dict]:
    with db_session() as s:
        rows = s.scalars(select(PointsRule).where(PointsRule.is_active.is_(True)).order_by(PointsRule.action))
        return [{"action": r.action, "points": r.points, "description": r.description} for r in rows]


# =========================
# Profile and leaderboard
# =========================
def patient_profile(patient_id: str, history_limit: int = 10) -> dict:
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient", patient_id)

        badges = s.execute(
            select(Badge.name, Badge.icon, Achievement.earned_at)
            .join(Achievement, Achievement.badge_id == Badge.id)
            .where(Achievement.patient_id == patient_id)
            .order_by(Achievement.earned_at.asc())
        ).all()
        history = s.scalars(
            select(PointsHistory)
            .where(PointsHistory.patient_id == patient_id)
            .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc())
            .limit(history_limit)
        )
        return {
            "patient_id": p.id,
            "full_name": p.full_name,
            "total_points": p.total_points,
            "level": calculate_level(p.total_points),
            "level_progress": level_progress(p.total_points),
            "current_streak": p.current_streak,
            "last_active_date": iso(p.last_active_date),
            "badges": [{"name": b.name, "icon": b.icon, "earned_at": iso(b.earned_at)} for b in badges],
            "history": [
                {"points": h.points, "source": h.source, "description": h.description, "created_at": iso(h.created_at)}
                for h in history
            ],
        }


def leaderboard(limit: int = 10, period: str = "all") -> list[dict]:
    if period not in LEADERBOARD_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(LEADERBOARD_PERIODS)}")

    def _compute() -> list[dict]:
        days = LEADERBOARD_PERIODS[period]
        badge_count = (
            select(Achievement.patient_id, func.count(Achievement.id).label("badge_count"))
            .group_by(Achievement.patient_id)
            .subquery()
        )
        with db_session() as s:
            if days is None:
                points_col = Patient.total_points
                q = select(Patient, points_col.label("points"), func.coalesce(badge_count.c.badge_count, 0))
            else:
                since = utcnow() - timedelta(days=days)
                period_points = (
                    select(PointsHistory.patient_id, func.sum(PointsHistory.points).label("points"))
                    .where(PointsHistory.created_at >= since)
                    .group_by(PointsHistory.patient_id)
                    .subquery()
                )
                points_col = period_points.c.points
                q = select(Patient, points_col, func.coalesce(badge_count.c.badge_count, 0)).join(
                    period_points, period_points.c.patient_id == Patient.id
                )

            q = (
                q.outerjoin(badge_count, badge_count.c.patient_id == Patient.id)
                .where(Patient.is_active.is_(True))
                .order_by(points_col.desc(), Patient.full_name.asc())
                .limit(limit)
            )
            return [
                {
                    "rank": i,
                    "patient_id": p.id,
                    "full_name": p.full_name,
                    "points": int(points or 0),
                    "total_points": p.total_points,
                    "level": calculate_level(p.total_points),
                    "current_streak": p.current_streak,
                    "badge_count": int(badges),
                }
                for i, (p, points, badges) in enumerate(s.execute(q).all(), start=1)
            ]

    return cache.remember(f"leaderboard:{period}:{limit}", _compute, ttl=300)
