from __future__ import annotations

import logging

from sqlalchemy import select

from .auth_models import User, UserRole
from .auth_security import hash_password
from .config import ADMIN_PASSWORD, ADMIN_USERNAME
from .db import db_session
from .models import Badge, InsurancePlan, PointsRule, Staff, StaffRole

logger = logging.getLogger(__name__)

# (name, description, icon, category, requirement_type, requirement_value, points)
BADGES = [
    ("First Step", "Completed the first session", "footprints", "sessions", "sessions_completed", 1, 10),
    ("Dedicated", "Completed 10 sessions", "medal", "sessions", "sessions_completed", 10, 50),
    ("Marathoner", "Completed 50 sessions", "trophy", "sessions", "sessions_completed", 50, 200),
    ("On Fire", "7 sessions in a row", "flame", "streak", "streak_days", 7, 50),
    ("Unstoppable", "30 sessions in a row", "zap", "streak", "streak_days", 30, 150),
    ("Rising Star", "Earned 1000 points", "star", "points", "points_earned", 1000, 0),
]

# (action, points, description)
POINTS_RULES = [
    ("session_completed", 50, "Physiotherapy session completed"),
    ("telemedicine_session", 50, "Video consultation completed"),
    ("exercise_completed", 10, "Home exercise completed"),
    ("pain_log", 5, "Pain diary entry"),
    ("nps_answered", 20, "Answered the satisfaction survey"),
    ("referral", 100, "Referred a new patient"),
]

STAFF = [
    ("Ana Souza", "ana.souza@fisioflow.local", StaffRole.PHYSIOTHERAPIST, "Orthopedics", "CREFITO-3/12345-F"),
    ("Bruno Lima", "bruno.lima@fisioflow.local", StaffRole.PHYSIOTHERAPIST, "Neurology", "CREFITO-3/67890-F"),
    ("Carla Dias", "carla.dias@fisioflow.local", StaffRole.RECEPTIONIST, None, None),
]

INSURANCE_PLANS = [
    ("Unimed", "339679"),
    ("Bradesco Saude", "005711"),
    ("SulAmerica", "006246"),
]


def seed_base() -> None:
    """
    Minimal reference data (idempotent):
    - staff
    - insurance plans
    - badges and points rules
    """
    with db_session() as s:
        for name, email, role, specialty, license_number in STAFF:
            if s.execute(select(Staff).where(Staff.email == email)).scalar_one_or_none() is None:
                s.add(Staff(name=name, email=email, role=role, specialty=specialty, license_number=license_number))

        for name, ans_code in INSURANCE_PLANS:
            if s.execute(select(InsurancePlan).where(InsurancePlan.name == name)).scalar_one_or_none() is None:
                s.add(InsurancePlan(name=name, ans_code=ans_code))

        for name, description, icon, category, req_type, req_value, points in BADGES:
            if s.execute(select(Badge).where(Badge.name == name)).scalar_one_or_none() is None:
                s.add(
                    Badge(
                        name=name,
                        description=description,
                        icon=icon,
                        category=category,
                        requirement_type=req_type,
                        requirement_value=req_value,
                        points=points,
                    )
                )

        for action, points, description in POINTS_RULES:
            if s.execute(select(PointsRule).where(PointsRule.action == action)).scalar_one_or_none() is None:
                s.add(PointsRule(action=action, points=points, description=description))


def seed_admin(username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD) -> bool:
    """Create the admin account from the environment; no-op without a password or if it exists."""
    if not password:
        return False
    username = username.strip().lower()
    with db_session() as s:
        if s.execute(select(User).where(User.username == username)).scalar_one_or_none():
            return False
        s.add(User(username=username, password_hash=hash_password(password), role=UserRole.ADMIN, full_name="Administrator"))
    logger.info("admin user %s seeded", username)
    return True
