import pytest

from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.gamification import (
    award_for_action,
    award_points,
    calculate_level,
    create_badge,
    leaderboard,
    level_progress,
    patient_profile,
)
from fisioflow.patients import create_patient
from fisioflow.seed import seed_base


@pytest.mark.parametrize(
    "points,level",
    [(0, 1), (500, 1), (501, 2), (1200, 2), (1201, 3), (2500, 3), (2501, 4), (5001, 5), (10000, 5), (10001, 5), (15000, 6), (20000, 7)],
)
def test_calculate_level(points, level):
    assert calculate_level(points) == level


def test_level_progress():
    assert level_progress(0) == 0
    assert level_progress(250) == 50
    assert level_progress(10000) == 100
    assert level_progress(25000) == 100


def test_award_points_never_below_zero(patient_id):
    res = award_points(patient_id, 100, reason="Homework")
    assert res["previous_points"] == 0
    assert res["new_total_points"] == 100

    res = award_points(patient_id, -1000, reason="Correction")
    assert res["new_total_points"] == 0


def test_badge_awarded_once_with_its_points(patient_id):
    create_badge("Century", "points", "points_earned", 100, points=20)

    res = award_points(patient_id, 150)
    assert res["badges_earned"] == ["Century"]
    assert res["new_total_points"] == 170

    res = award_points(patient_id, 10)
    assert res["badges_earned"] == []

    profile = patient_profile(patient_id)
    assert [b["name"] for b in profile["badges"]] == ["Century"]
    assert profile["total_points"] == 180
    assert profile["history"][0]["points"] == 10


def test_create_badge_validation():
    with pytest.raises(ValidationError):
        create_badge("Bad", "points", "logins", 10)
    with pytest.raises(ValidationError):
        create_badge("Bad", "points", "points_earned", 0)
    create_badge("Once", "points", "points_earned", 10)
    with pytest.raises(ValidationError):
        create_badge("Once", "points", "points_earned", 10)


def test_award_for_action_uses_rule(patient_id):
    seed_base()
    res = award_for_action(patient_id, "pain_log")
    assert res["points_awarded"] == 5
    assert res["action"] == "pain_log"

    with pytest.raises(NotFoundError):
        award_for_action(patient_id, "does_not_exist")


def test_leaderboard_orders_by_points():
    a = create_patient("Alice")
    b = create_patient("Bruno")
    award_points(a, 100)
    award_points(b, 300)

    board = leaderboard()
    assert [row["patient_id"] for row in board[:2]] == [b, a]
    assert board[0]["rank"] == 1
    assert board[0]["points"] == 300

    weekly = leaderboard(period="week")
    assert weekly[0]["patient_id"] == b

    with pytest.raises(ValidationError):
        leaderboard(period="decade")
