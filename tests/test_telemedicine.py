import re
from datetime import datetime

import pytest

from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.models import TelemedicineStatus
from fisioflow.notifications import pending_notifications
from fisioflow.patients import get_patient, list_clinical_sessions
from fisioflow.telemedicine import (
    cancel_session,
    end_session,
    get_session,
    join_session,
    list_sessions,
    schedule_session,
    start_session,
)

WHEN = datetime(2030, 2, 1, 15, 0)


def test_start_creates_room(patient_id, therapist_id):
    sid = schedule_session(patient_id, WHEN, therapist_id=therapist_id)

    res = start_session(sid, notify_patient=True)
    assert res["status"] == "in_progress"
    assert re.fullmatch(r"https://whereby\.com/fisioflow-[A-Za-z0-9_-]{10}", res["room_url"])
    assert re.fullmatch(r"[A-Z0-9]{6}", res["room_password"])
    assert res["host_url"] == f"{res['room_url']}?displayName=Ana%20Souza"
    assert res["guest_url"] == f"{res['room_url']}?displayName=Maria%20Silva"
    assert res["patient_notified"] is True

    link = pending_notifications()[0]
    assert link["type"] == "telemedicine_link"
    assert res["room_password"] in link["message"]

    again = start_session(sid)
    assert again["room_url"] == res["room_url"]
    assert again["room_password"] == res["room_password"]


def test_join_moves_to_in_progress(patient_id):
    sid = schedule_session(patient_id, WHEN)
    res = join_session(sid)
    assert res["status"] == "in_progress"
    assert res["room_url"].startswith("https://whereby.com/fisioflow-")


def test_end_records_soap_and_points(patient_id, therapist_id):
    sid = schedule_session(patient_id, WHEN, therapist_id=therapist_id)
    start_session(sid)

    res = end_session(sid, assessment="Better range of motion", plan="Keep stretching", eva_score=2, duration_minutes=35)
    assert res["status"] == "completed"
    assert res["actual_duration"] == 35
    assert res["points_awarded"] == 50
    assert res["clinical_session_id"] is not None

    soap = list_clinical_sessions(patient_id)[0]
    assert soap["session_type"] == "telemedicine"
    assert soap["eva_score"] == 2
    assert get_patient(patient_id)["total_points"] == 50

    with pytest.raises(ValidationError):
        end_session(sid)
    with pytest.raises(ValidationError):
        start_session(sid)


def test_end_without_clinical_notes(patient_id):
    sid = schedule_session(patient_id, WHEN)
    res = end_session(sid, notes="Connection dropped twice", duration_minutes=20)
    assert res["clinical_session_id"] is None
    assert get_session(sid)["notes"] == "Connection dropped twice"


def test_cancel_only_scheduled(patient_id):
    sid = schedule_session(patient_id, WHEN, notes="First video call")
    res = cancel_session(sid, reason="Patient travelling")
    assert res["status"] == "cancelled"
    assert res["notes"] == "First video call\nCancelled: Patient travelling"

    with pytest.raises(ValidationError):
        join_session(sid)
    with pytest.raises(ValidationError):
        cancel_session(sid)

    started = schedule_session(patient_id, WHEN)
    start_session(started)
    with pytest.raises(ValidationError):
        cancel_session(started)


def test_list_and_validation(patient_id):
    sid = schedule_session(patient_id, WHEN)
    assert [x["id"] for x in list_sessions(patient_id=patient_id)] == [sid]
    assert [x["id"] for x in list_sessions(upcoming=True)] == [sid]
    assert list_sessions(status=TelemedicineStatus.COMPLETED) == []

    with pytest.raises(ValidationError):
        schedule_session(patient_id, WHEN, duration_minutes=0)
    with pytest.raises(NotFoundError):
        schedule_session("nope", WHEN)
    with pytest.raises(ValidationError):
        end_session(sid, eva_score=11)
