import re

import pytest

from fisioflow.billing import list_transactions
from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.insurance import (
    create_guide,
    create_plan,
    delete_guide,
    generate_guide_number,
    get_guide,
    list_guides,
    list_plans,
    mark_guide_paid,
    normalize_procedures,
    resolve_guide,
    submit_guide,
    update_guide,
)
from fisioflow.models import TissStatus, TransactionType

PROCEDURES = [
    {"code": "50000012", "description": "Physiotherapy session", "quantity": 2, "unit_value": 4500},
    {"code": "50000020", "quantity": 1, "unit_value": 1000, "total_value": 900},
]


def test_guide_number_format():
    assert re.fullmatch(r"TISS-\d{8}-[A-Z0-9]{4}", generate_guide_number())


def test_normalize_procedures():
    lines, total = normalize_procedures(PROCEDURES)
    assert total == 9900
    assert lines[0]["total_value"] == 9000
    assert lines[1]["total_value"] == 900
    assert lines[1]["description"] is None

    with pytest.raises(ValidationError):
        normalize_procedures([])
    with pytest.raises(ValidationError):
        normalize_procedures([{"code": " ", "unit_value": 100}])
    with pytest.raises(ValidationError):
        normalize_procedures([{"code": "X", "quantity": -1, "unit_value": 100}])


def test_plans():
    create_plan("Unimed", ans_code="339679")
    create_plan("Old Plan", is_active=False)
    assert [p["name"] for p in list_plans(active=True)] == ["Unimed"]
    assert [p["name"] for p in list_plans(search="3396")] == ["Unimed"]
    with pytest.raises(ValidationError):
        create_plan(" ")


def test_guide_lifecycle_to_paid(patient_id):
    gid = create_guide(patient_id, PROCEDURES, created_by="user-1")
    guide = get_guide(gid)
    assert guide["status"] == "pending"
    assert guide["total_amount"] == 9900
    assert guide["created_by"] == "user-1"

    # no plan yet
    with pytest.raises(ValidationError):
        submit_guide(gid)

    plan_id = create_plan("Unimed")
    assert update_guide(gid, insurance_plan_id=plan_id)["insurance_plan"] == "Unimed"

    submitted = submit_guide(gid)
    assert submitted["guide"]["status"] == "submitted"
    protocol = submitted["submission_confirmation"]["protocol_number"]
    assert protocol.startswith("PROT-")
    assert submitted["guide"]["protocol_number"] == protocol

    with pytest.raises(ValidationError):
        update_guide(gid, authorization_number="A1")
    with pytest.raises(ValidationError):
        delete_guide(gid)
    with pytest.raises(ValidationError):
        mark_guide_paid(gid)

    assert resolve_guide(gid, approved=True)["status"] == "approved"
    assert mark_guide_paid(gid)["status"] == "paid"

    income = list_transactions(type=TransactionType.INCOME, category="insurance")
    assert [(t["amount"], t["patient_id"]) for t in income] == [(9900, patient_id)]


def test_denied_guide_needs_reason(patient_id):
    gid = create_guide(patient_id, PROCEDURES, insurance_plan_id=create_plan("Unimed"))
    submit_guide(gid)

    with pytest.raises(ValidationError):
        resolve_guide(gid, approved=False)

    denied = resolve_guide(gid, approved=False, denial_reason="Missing authorization")
    assert denied["status"] == "denied"
    assert denied["denial_reason"] == "Missing authorization"

    with pytest.raises(ValidationError):
        resolve_guide(gid, approved=True)


def test_update_recomputes_total_and_delete(patient_id):
    gid = create_guide(patient_id, PROCEDURES, guide_number="TISS-00000001-ABCD")
    updated = update_guide(gid, procedures=[{"code": "50000012", "quantity": 3, "unit_value": 5000}])
    assert updated["total_amount"] == 15000

    with pytest.raises(ValidationError):
        create_guide(patient_id, PROCEDURES, guide_number="TISS-00000001-ABCD")
    with pytest.raises(ValidationError):
        update_guide(gid, status="paid")
    with pytest.raises(ValidationError):
        update_guide(gid, guide_type=None)
    with pytest.raises(ValidationError):
        update_guide(gid, procedures=[])
    assert get_guide(gid)["total_amount"] == 15000

    assert [g["id"] for g in list_guides(status=TissStatus.PENDING)] == [gid]
    delete_guide(gid)
    with pytest.raises(NotFoundError):
        get_guide(gid)


def test_guide_references_must_exist(patient_id):
    with pytest.raises(NotFoundError):
        create_guide("nope", PROCEDURES)
    with pytest.raises(NotFoundError):
        create_guide(patient_id, PROCEDURES, insurance_plan_id=999)
