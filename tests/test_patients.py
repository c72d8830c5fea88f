import pytest

from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.notifications import pending_notifications
from fisioflow.patients import (
    add_pain_log,
    complete_clinical_session,
    create_clinical_session,
    create_patient,
    deactivate_patient,
    get_patient,
    list_clinical_sessions,
    list_pain_logs,
    list_patients,
    update_patient,
)


def test_create_and_search(patient_id):
    create_patient("Joao Pereira")
    assert {p["full_name"] for p in list_patients()} == {"Maria Silva", "Joao Pereira"}
    assert [p["full_name"] for p in list_patients(search="joao")] == ["Joao Pereira"]


def test_duplicate_cpf_rejected(patient_id):
    with pytest.raises(ValidationError):
        create_patient("Other", cpf="123.456.789-00")


def test_name_required():
    with pytest.raises(ValidationError):
        create_patient("   ")


def test_update_and_deactivate(patient_id):
    p = update_patient(patient_id, condition="Low back pain")
    assert p["condition"] == "Low back pain"

    with pytest.raises(ValidationError):
        update_patient(patient_id, total_points=999)

    assert deactivate_patient(patient_id) is True
    assert deactivate_patient(patient_id) is False
    assert list_patients() == []
    assert len(list_patients(include_inactive=True)) == 1


def test_get_missing_patient():
    with pytest.raises(NotFoundError):
        get_patient("missing")


def test_pain_logs(patient_id):
    add_pain_log(patient_id, 7, "after work")
    add_pain_log(patient_id, 4)
    assert [log["level"] for log in list_pain_logs(patient_id)] == [7, 4]

    with pytest.raises(ValidationError):
        add_pain_log(patient_id, 11)


def test_complete_session_awards_points_and_streak(patient_id):
    sid = create_clinical_session(patient_id, assessment="Improving", plan="Core strengthening", eva_score=3)

    res = complete_clinical_session(sid, send_summary=True)
    assert res["points_awarded"] == 50
    assert res["total_points"] == 50
    assert res["current_streak"] == 1
    assert res["summary_queued"] is True

    pending = pending_notifications()
    assert pending[0]["type"] == "session_summary"
    assert "Pain scale: 3/10" in pending[0]["message"]

    assert list_clinical_sessions(patient_id)[0]["completed_at"] is not None

    with pytest.raises(ValidationError):
        complete_clinical_session(sid)


def test_eva_score_range(patient_id):
    with pytest.raises(ValidationError):
        create_clinical_session(patient_id, eva_score=12)
