from datetime import date, datetime

import pytest

from fisioflow.billing import create_payable, create_receivable, create_transaction
from fisioflow.crm import create_lead
from fisioflow.errors import ValidationError
from fisioflow.insurance import create_guide
from fisioflow.models import TransactionType
from fisioflow.patients import create_patient, deactivate_patient
from fisioflow.reports import cash_flow, dashboard, income_statement, statement_range
from fisioflow.scheduling import book_appointment

INCOME, EXPENSE = TransactionType.INCOME, TransactionType.EXPENSE
NOW = datetime(2030, 3, 20, 12, 0)


def test_statement_range():
    assert statement_range("month", 2030, 12) == (date(2030, 12, 1), date(2031, 1, 1))
    assert statement_range("quarter", 2030, 5) == (date(2030, 4, 1), date(2030, 7, 1))
    assert statement_range("year", 2030, 5) == (date(2030, 1, 1), date(2031, 1, 1))
    with pytest.raises(ValidationError):
        statement_range("week", 2030, 5)
    with pytest.raises(ValidationError):
        statement_range("month", 2030, 13)


def test_income_statement():
    create_transaction(INCOME, "services", 100000, when=datetime(2030, 3, 2))
    create_transaction(INCOME, "payment", 20000, when=datetime(2030, 3, 3))
    create_transaction(EXPENSE, "materials", 10000, when=datetime(2030, 3, 4))
    create_transaction(EXPENSE, "rent", 30000, when=datetime(2030, 3, 5))
    create_transaction(EXPENSE, "financial", 1000, when=datetime(2030, 3, 6))
    create_transaction(EXPENSE, "software", 5000, when=datetime(2030, 3, 31, 23, 0))
    create_transaction(INCOME, "services", 99999, when=datetime(2030, 4, 1))

    dre = income_statement("month", 2030, 3)
    assert dre["period"] == {"type": "month", "start": "2030-03-01", "end": "2030-03-31"}
    assert dre["gross_revenue"] == 120000
    assert dre["services_revenue"] == 100000
    assert dre["other_revenue"] == 20000
    assert dre["taxes"] == 6000
    assert dre["net_revenue"] == 114000
    assert dre["costs"] == {"materials": 10000, "equipment": 0}
    assert dre["gross_profit"] == 104000
    assert dre["expenses"]["rent"] == 30000
    assert dre["expenses"]["other"] == 5000
    assert dre["operating_profit"] == 69000
    assert dre["financial_expenses"] == 1000
    assert dre["net_profit"] == 68000
    assert dre["margins"] == {"gross": 91.2, "operating": 60.5, "net": 59.6}


def test_income_statement_without_revenue():
    dre = income_statement("year", 2031, 1)
    assert dre["gross_revenue"] == 0
    assert dre["margins"] == {"gross": 0.0, "operating": 0.0, "net": 0.0}


def test_cash_flow_realized():
    create_transaction(INCOME, "services", 50000, when=datetime(2030, 2, 15))
    create_transaction(INCOME, "services", 10000, "Session", when=datetime(2030, 3, 5))
    create_transaction(EXPENSE, "rent", 3000, "Rent", when=datetime(2030, 3, 10))
    create_transaction(INCOME, "services", 7000, when=datetime(2030, 3, 25))

    cf = cash_flow("month", "daily", now=NOW)
    assert cf["period"]["start"] == "2030-03-01"
    assert cf["period"]["end"] == "2030-03-20"
    assert cf["opening_balance"] == 50000
    assert cf["closing_balance"] == 57000
    assert [e["balance"] for e in cf["entries"]] == [60000, 57000]
    assert cf["summary"]["total_income"] == 10000
    assert cf["summary"]["total_expense"] == 3000
    assert [g["key"] for g in cf["grouped"]] == ["2030-03-05", "2030-03-10"]

    weekly = cash_flow("month", "weekly", now=NOW)
    assert weekly["grouped"] == [{"key": "2030-W10", "income": 10000, "expense": 3000, "balance": 57000, "net": 7000}]

    monthly = cash_flow("month", "monthly", now=NOW)
    assert monthly["grouped"][0]["key"] == "2030-03"


def test_cash_flow_projection():
    create_transaction(INCOME, "services", 10000, when=datetime(2030, 3, 5))
    create_receivable("Package", 4000, date(2030, 3, 28))
    create_receivable("Next month", 9000, date(2030, 4, 2))
    create_receivable("Already late", 9000, date(2030, 3, 1))
    create_payable("Power Co", "Electricity", 2000, date(2030, 3, 22), category="utilities")

    cf = cash_flow("month", include_projected=True, now=NOW)
    assert cf["period"]["end"] == "2030-03-31"
    assert cf["summary"]["projected_income"] == 4000
    assert cf["summary"]["projected_expense"] == 2000
    assert cf["closing_balance"] == 12000
    assert [e["description"] for e in cf["entries"] if e["projected"]] == [
        "[Projected] Electricity",
        "[Projected] Package",
    ]

    with pytest.raises(ValidationError):
        cash_flow("decade", now=NOW)
    with pytest.raises(ValidationError):
        cash_flow("month", "hourly", now=NOW)


def test_dashboard(patient_id, therapist_id):
    gone = create_patient("Discharged")
    deactivate_patient(gone)
    book_appointment(patient_id, datetime(2030, 3, 20, 9, 0), therapist_id=therapist_id)
    book_appointment(patient_id, datetime(2030, 3, 21, 9, 0), therapist_id=therapist_id)
    create_transaction(INCOME, "services", 10000, when=datetime(2030, 3, 5))
    create_transaction(EXPENSE, "rent", 4000, when=datetime(2030, 3, 6))
    create_transaction(INCOME, "services", 8000, when=datetime(2030, 4, 6))
    create_receivable("Late", 5000, date(2030, 3, 1))
    create_lead("Pedro", "123")
    create_guide(patient_id, [{"code": "50000012", "unit_value": 4500}])

    d = dashboard(date(2030, 3, 20))
    assert d == {
        "date": "2030-03-20",
        "active_patients": 1,
        "appointments_today": 1,
        "month_income": 10000,
        "month_expense": 4000,
        "month_balance": 6000,
        "overdue_receivables": 1,
        "overdue_amount": 5000,
        "open_leads": 1,
        "pending_tiss_guides": 1,
    }
