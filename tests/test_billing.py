from datetime import date, datetime

import pytest

from fisioflow.billing import (
    cancel_payable,
    cancel_receivable,
    create_installments,
    create_payable,
    create_receivable,
    create_transaction,
    list_payables,
    list_receivables,
    list_transactions,
    open_balance,
    pay_payable,
    pay_receivable,
)
from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.models import PaymentMethod, TransactionType

TODAY = date(2030, 5, 15)


def test_partial_then_full_payment(patient_id):
    rid = create_receivable("Treatment package", 10000, date(2030, 5, 20), patient_id=patient_id)

    r = pay_receivable(rid, 4000, PaymentMethod.PIX)
    assert r["status"] == "partial"
    assert r["balance"] == 6000
    assert r["paid_at"] is None

    r = pay_receivable(rid, 6000)
    assert r["status"] == "paid"
    assert r["balance"] == 0
    assert r["paid_at"] is not None
    assert r["payment_method"] == "pix"

    with pytest.raises(ValidationError):
        pay_receivable(rid, 100)

    income = list_transactions(type=TransactionType.INCOME, patient_id=patient_id)
    assert sorted(t["amount"] for t in income) == [4000, 6000]
    assert {t["category"] for t in income} == {"payment"}
    assert income[0]["description"] == "Payment received: Treatment package"


def test_payment_validation():
    rid = create_receivable("Evaluation", 5000, TODAY)
    with pytest.raises(ValidationError):
        pay_receivable(rid, 0)
    with pytest.raises(NotFoundError):
        pay_receivable(9999, 100)
    with pytest.raises(ValidationError):
        create_receivable("Nothing", -1, TODAY)


def test_cancel_rules():
    rid = create_receivable("Evaluation", 5000, TODAY)
    assert cancel_receivable(rid)["status"] == "cancelled"
    with pytest.raises(ValidationError):
        cancel_receivable(rid)
    with pytest.raises(ValidationError):
        pay_receivable(rid, 5000)

    paid = create_receivable("Session", 5000, TODAY)
    pay_receivable(paid, 5000)
    with pytest.raises(ValidationError):
        cancel_receivable(paid)


def test_installments_spread_remainder_and_clamp_month_end(patient_id):
    ids = create_installments("Pilates plan", 10000, 3, date(2030, 1, 31), patient_id=patient_id)
    assert len(ids) == 3

    rows = list_receivables(patient_id=patient_id)
    assert [r["amount"] for r in rows] == [3333, 3333, 3334]
    assert [r["due_date"] for r in rows] == ["2030-01-31", "2030-02-28", "2030-03-31"]
    assert [r["description"] for r in rows][1] == "Pilates plan (2/3)"
    assert rows[2]["installment_number"] == 3
    assert rows[2]["total_installments"] == 3

    with pytest.raises(ValidationError):
        create_installments("Too small", 2, 3, TODAY)


def test_overdue_filter():
    late = create_receivable("Late", 5000, date(2030, 5, 1))
    create_receivable("Future", 5000, date(2030, 6, 1))
    settled = create_receivable("Settled", 5000, date(2030, 4, 1))
    pay_receivable(settled, 5000)

    overdue = list_receivables(overdue=True, today=TODAY)
    assert [r["id"] for r in overdue] == [late]


def test_payable_records_expense_in_its_category():
    pid = create_payable("Landlord", "May rent", 300000, date(2030, 5, 10), category="rent")
    create_payable("Supplies Co", "Elastic bands", 15000, date(2030, 6, 10), category="materials")

    p = pay_payable(pid, 300000, PaymentMethod.TRANSFER)
    assert p["status"] == "paid"
    assert p["supplier"] == "Landlord"

    expense = list_transactions(type=TransactionType.EXPENSE)
    assert [(t["category"], t["amount"]) for t in expense] == [("rent", 300000)]

    assert [x["description"] for x in list_payables(supplier="supplies")] == ["Elastic bands"]
    assert list_payables(category="rent")[0]["status"] == "paid"

    bands = list_payables(category="materials")[0]["id"]
    assert cancel_payable(bands)["status"] == "cancelled"


def test_open_balance():
    create_receivable("Late", 5000, date(2030, 5, 1))
    partial = create_receivable("Partial", 8000, date(2030, 6, 1))
    pay_receivable(partial, 3000)
    create_payable("Power Co", "Electricity", 2000, date(2030, 5, 2), category="utilities")

    assert open_balance(TODAY) == {
        "receivable": 10000,
        "receivable_overdue": 5000,
        "payable": 2000,
        "payable_overdue": 2000,
    }


def test_manual_transaction(patient_id):
    tid = create_transaction(
        TransactionType.INCOME, "services", 12000, "Session", PaymentMethod.CASH, patient_id, when=datetime(2030, 5, 2)
    )
    assert tid
    rows = list_transactions(category="services", start=datetime(2030, 5, 1), end=datetime(2030, 5, 31))
    assert rows[0]["amount"] == 12000
    assert rows[0]["date"] == "2030-05-02T00:00:00"

    with pytest.raises(ValidationError):
        create_transaction(TransactionType.INCOME, "", 100)
