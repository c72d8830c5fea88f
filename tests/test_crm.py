from datetime import datetime, timedelta

import pytest

from fisioflow.crm import (
    calculate_lead_score,
    convert_lead,
    create_lead,
    delete_lead,
    funnel,
    get_lead,
    list_leads,
    move_lead,
    score_tier,
    scoring_board,
    update_lead,
)
from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.models import LeadStatus
from fisioflow.notifications import pending_notifications
from fisioflow.patients import get_patient, list_patients

NOW = datetime(2030, 1, 10, 12, 0)


def test_score_is_clamped_to_100():
    score = calculate_lead_score(500000, "referral", LeadStatus.QUALIFIED, "a@b.c", NOW, now=NOW)
    assert score == 100
    assert score_tier(score) == "hot"


def test_warm_lead_score():
    # 20 budget + 20 instagram + 20 contacted + 5 recent activity
    score = calculate_lead_score(150000, "Instagram", LeadStatus.CONTACTED, None, NOW - timedelta(days=3), now=NOW)
    assert score == 65
    assert score_tier(score) == "warm"


def test_stale_lead_is_cold():
    # 10 unknown source + 10 new - 10 stale
    score = calculate_lead_score(None, None, LeadStatus.NEW, None, NOW - timedelta(days=40), now=NOW)
    assert score == 10
    assert score_tier(score) == "cold"


def test_lead_crud():
    lid = create_lead("Pedro", "+55 11 97777-0000", source="WhatsApp", budget=200000)
    assert get_lead(lid)["source"] == "whatsapp"

    assert update_lead(lid, notes="Knee pain")["notes"] == "Knee pain"
    with pytest.raises(ValidationError):
        update_lead(lid, status="converted")

    assert [lead["id"] for lead in list_leads(source="whatsapp")] == [lid]
    delete_lead(lid)
    with pytest.raises(NotFoundError):
        get_lead(lid)

    with pytest.raises(ValidationError):
        create_lead("", "123")


def test_move_lead_rules():
    lid = create_lead("Pedro", "123")
    assert move_lead(lid, "contacted")["status"] == "contacted"
    with pytest.raises(ValidationError):
        move_lead(lid, "bogus")

    move_lead(lid, LeadStatus.LOST)
    with pytest.raises(ValidationError):
        move_lead(lid, LeadStatus.NEW)


def test_convert_reuses_patient_with_same_phone(patient_id):
    lid = create_lead("Maria S.", "+55 11 99999-0000")
    res = convert_lead(lid)
    assert res == {"lead_id": lid, "patient_id": patient_id, "patient_created": False, "welcome_queued": False}
    assert get_lead(lid)["status"] == "converted"

    with pytest.raises(ValidationError):
        convert_lead(lid)


def test_convert_creates_patient_and_welcomes():
    lid = create_lead("Pedro", "+55 11 97777-0000", email="pedro@example.com", notes="Shoulder")
    res = convert_lead(lid, send_welcome=True)
    assert res["patient_created"] is True
    assert res["welcome_queued"] is True

    patient = get_patient(res["patient_id"])
    assert patient["full_name"] == "Pedro"
    assert patient["condition"] == "Shoulder"
    assert [p["id"] for p in list_patients()] == [res["patient_id"]]
    assert pending_notifications()[0]["type"] == "welcome"


def test_lost_lead_cannot_convert():
    lid = create_lead("Pedro", "123")
    move_lead(lid, LeadStatus.LOST)
    with pytest.raises(ValidationError):
        convert_lead(lid)


def test_scoring_board_tiers():
    create_lead("Hot", "1", email="h@x.com", source="referral", budget=600000)
    create_lead("Cold", "2")

    board = scoring_board()
    assert board["total"] == 2
    assert board["leads"][0]["name"] == "Hot"
    assert board["counts"]["hot"] == 1

    assert [x["name"] for x in scoring_board("hot")["leads"]] == ["Hot"]
    with pytest.raises(ValidationError):
        scoring_board("lukewarm")


def test_funnel_stages_and_drop_off():
    create_lead("A", "1")
    move_lead(create_lead("B", "2"), LeadStatus.CONTACTED)
    move_lead(create_lead("C", "3"), LeadStatus.CONVERTED)

    f = funnel(30)
    assert f["total"] == 3
    assert f["conversion_rate"] == 33.3

    stages = {s["stage"]: s for s in f["stages"]}
    assert [s["stage"] for s in f["stages"]] == ["new", "contacted", "qualified", "converted", "lost"]
    assert stages["new"]["percentage"] == 33.3
    assert stages["new"]["drop_off"] == 0
    assert stages["qualified"]["drop_off"] == 1
    assert stages["qualified"]["drop_off_percentage"] == 100.0
    assert stages["converted"]["drop_off_percentage"] == 0.0

    with pytest.raises(ValidationError):
        funnel(0)


def test_update_lead_validates_required_fields_and_normalizes_source():
    lid = create_lead("Pedro", "+55 11 97777-0000")

    for field in ("name", "phone"):
        with pytest.raises(ValidationError):
            update_lead(lid, **{field: None})
        with pytest.raises(ValidationError):
            update_lead(lid, **{field: "  "})
    with pytest.raises(ValidationError):
        update_lead(lid, budget=-1)

    updated = update_lead(lid, source="Referral", name=" Pedro Lima ")
    assert updated["source"] == "referral"
    assert updated["name"] == "Pedro Lima"
    assert get_lead(lid)["phone"] == "+55 11 97777-0000"
