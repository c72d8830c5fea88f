"""
Financial and operational reports.

All amounts are integer cents. Periods are calendar based:
month / quarter / year for the income statement, and
week / month / quarter / year (up to today) for the cash flow.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta

from sqlalchemy import case, func, select

from .cache import cache
from .db import db_session
from .errors import ValidationError
from .models import (
    AccountPayable,
    AccountReceivable,
    AccountStatus,
    Appointment,
    AppointmentStatus,
    Lead,
    LeadStatus,
    Patient,
    TissGuide,
    TissStatus,
    Transaction,
    TransactionType,
    iso,
    utcnow,
)

logger = logging.getLogger(__name__)

REVENUE_TAX_RATE = 0.05
COST_CATEGORIES = ("materials", "equipment")
EXPENSE_CATEGORIES = ("salary", "rent", "utilities", "marketing", "administrative")
FINANCIAL_CATEGORIES = ("financial",)
KNOWN_CATEGORIES = COST_CATEGORIES + EXPENSE_CATEGORIES + FINANCIAL_CATEGORIES + ("other",)

STATEMENT_PERIODS = ("month", "quarter", "year")
CASH_FLOW_PERIODS = ("week", "month", "quarter", "year")
CASH_FLOW_VIEWS = ("daily", "weekly", "monthly")

OPEN_STATUSES = (AccountStatus.PENDING, AccountStatus.PARTIAL)


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole > 0 else 0.0


def _month_start(year: int, month: int) -> date:
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, 1)


def statement_range(period: str, year: int, month: int) -> tuple[date, date]:
    """[start, end) of the calendar period containing year/month."""
    if period not in STATEMENT_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(STATEMENT_PERIODS)}")
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")

    if period == "month":
        return _month_start(year, month), _month_start(year, month + 1)
    if period == "quarter":
        first = (month - 1) // 3 * 3 + 1
        return _month_start(year, first), _month_start(year, first + 3)
    return date(year, 1, 1), date(year + 1, 1, 1)


def _at_midnight(d: date) -> datetime:
    return datetime.combine(d, datetime.min.time())


# =========================
# Income statement (DRE)
# =========================
def income_statement(period: str = "month", year: int | None = None, month: int | None = None) -> dict:
    today = utcnow().date()
    year = year or today.year
    month = month or today.month
    start, end = statement_range(period, year, month)

    with db_session() as s:
        rows = s.execute(
            select(Transaction.type, Transaction.category, func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.date >= _at_midnight(start), Transaction.date < _at_midnight(end))
            .group_by(Transaction.type, Transaction.category)
        ).all()

    services_revenue = other_revenue = 0
    expenses: dict[str, int] = defaultdict(int)
    for type_, category, total in rows:
        if type_ == TransactionType.INCOME:
            if category == "services":
                services_revenue += total
            else:
                other_revenue += total
        else:
            expenses[category or "other"] += total

    gross_revenue = services_revenue + other_revenue
    taxes = round(gross_revenue * REVENUE_TAX_RATE)
    net_revenue = gross_revenue - taxes

    costs = {c: expenses.get(c, 0) for c in COST_CATEGORIES}
    operating_costs = sum(costs.values())
    gross_profit = net_revenue - operating_costs

    operating = {c: expenses.get(c, 0) for c in EXPENSE_CATEGORIES}
    operating["other"] = expenses.get("other", 0) + sum(v for k, v in expenses.items() if k not in KNOWN_CATEGORIES)
    operating_expenses = sum(operating.values())
    operating_profit = gross_profit - operating_expenses

    financial_expenses = sum(expenses.get(c, 0) for c in FINANCIAL_CATEGORIES)
    net_profit = operating_profit - financial_expenses

    return {
        "period": {"type": period, "start": iso(start), "end": iso(end - timedelta(days=1))},
        "gross_revenue": gross_revenue,
        "services_revenue": services_revenue,
        "other_revenue": other_revenue,
        "taxes": taxes,
        "net_revenue": net_revenue,
        "operating_costs": operating_costs,
        "costs": costs,
        "gross_profit": gross_profit,
        "operating_expenses": operating_expenses,
        "expenses": operating,
        "operating_profit": operating_profit,
        "financial_expenses": financial_expenses,
        "net_profit": net_profit,
        "margins": {
            "gross": _pct(gross_profit, net_revenue),
            "operating": _pct(operating_profit, net_revenue),
            "net": _pct(net_profit, net_revenue),
        },
    }


# =========================
# Cash flow
# =========================
def cash_flow_range(period: str, today: date, include_projected: bool) -> tuple[date, date]:
    """Inclusive [start, end]; without projection the period stops today."""
    if period not in CASH_FLOW_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(CASH_FLOW_PERIODS)}")

    if period == "week":
        start = today - timedelta(days=7)
        end = today + timedelta(days=7)
    elif period == "month":
        start = today.replace(day=1)
        end = _month_start(today.year, today.month + 1) - timedelta(days=1)
    elif period == "quarter":
        start = _month_start(today.year, today.month - 2)
        end = _month_start(today.year, today.month + 1) - timedelta(days=1)
    else:
        start = date(today.year, 1, 1)
        end = date(today.year, 12, 31)

    return start, (end if include_projected else today)


def _group_key(d: str, view: str) -> str:
    if view == "monthly":
        return d[:7]
    if view == "weekly":
        iso_year, iso_week, _ = date.fromisoformat(d).isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    return d


def cash_flow(
    period: str = "month",
    view: str = "daily",
    include_projected: bool = False,
    now: datetime | None = None,
) -> dict:
    if view not in CASH_FLOW_VIEWS:
        raise ValidationError(f"view must be one of {', '.join(CASH_FLOW_VIEWS)}")

    now = now or utcnow()
    today = now.date()
    start, end = cash_flow_range(period, today, include_projected)

    with db_session() as s:
        income_expr = func.coalesce(
            func.sum(case((Transaction.type == TransactionType.INCOME, Transaction.amount), else_=0)), 0
        )
        expense_expr = func.coalesce(
            func.sum(case((Transaction.type == TransactionType.EXPENSE, Transaction.amount), else_=0)), 0
        )
        opening_income, opening_expense = s.execute(
            select(income_expr, expense_expr).where(Transaction.date < _at_midnight(start))
        ).one()
        opening_balance = opening_income - opening_expense

        entries = [
            {
                "date": t.date.date().isoformat(),
                "description": t.description or "",
                "type": t.type.value,
                "category": t.category,
                "amount": t.amount,
                "projected": False,
            }
            for t in s.scalars(
                select(Transaction)
                .where(Transaction.date >= _at_midnight(start), Transaction.date <= now)
                .order_by(Transaction.date.asc(), Transaction.id.asc())
            )
        ]

        if include_projected:
            for model, type_, category in (
                (AccountReceivable, "income", "projected_receivable"),
                (AccountPayable, "expense", "projected_payable"),
            ):
                q = select(model).where(
                    model.status.in_(OPEN_STATUSES),
                    model.due_date >= today,
                    model.due_date <= end,
                )
                for a in s.scalars(q):
                    entries.append(
                        {
                            "date": a.due_date.isoformat(),
                            "description": f"[Projected] {a.description}",
                            "type": type_,
                            "category": category,
                            "amount": a.amount - a.paid_amount,
                            "projected": True,
                        }
                    )

    # stable sort keeps realized entries before projections on the same day
    entries.sort(key=lambda e: e["date"])
    balance = opening_balance
    for e in entries:
        balance += e["amount"] if e["type"] == "income" else -e["amount"]
        e["balance"] = balance

    groups: dict[str, dict] = {}
    for e in entries:
        g = groups.setdefault(_group_key(e["date"], view), {"income": 0, "expense": 0})
        g[e["type"]] += e["amount"]
        g["balance"] = e["balance"]
    grouped = [{"key": k, **v, "net": v["income"] - v["expense"]} for k, v in groups.items()]

    def _total(type_: str, projected: bool) -> int:
        return sum(e["amount"] for e in entries if e["type"] == type_ and e["projected"] is projected)

    return {
        "period": {"type": period, "start": iso(start), "end": iso(end), "view": view},
        "include_projected": include_projected,
        "opening_balance": opening_balance,
        "closing_balance": balance,
        "summary": {
            "total_income": _total("income", False),
            "total_expense": _total("expense", False),
            "projected_income": _total("income", True),
            "projected_expense": _total("expense", True),
        },
        "entries": entries,
        "grouped": grouped,
    }


# =========================
# Dashboard
# =========================
def dashboard(today: date | None = None) -> dict:
    today = today or utcnow().date()

    def _compute() -> dict:
        day_start = _at_midnight(today)
        month_start = _at_midnight(today.replace(day=1))
        month_end = _at_midnight(_month_start(today.year, today.month + 1))
        with db_session() as s:
            active_patients = s.scalar(select(func.count(Patient.id)).where(Patient.is_active.is_(True)))
            appointments_today = s.scalar(
                select(func.count(Appointment.id)).where(
                    Appointment.start_time >= day_start,
                    Appointment.start_time < day_start + timedelta(days=1),
                    Appointment.status != AppointmentStatus.CANCELLED,
                )
            )
            month_totals = dict(
                s.execute(
                    select(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0))
                    .where(Transaction.date >= month_start, Transaction.date < month_end)
                    .group_by(Transaction.type)
                ).all()
            )
            overdue_count, overdue_amount = s.execute(
                select(
                    func.count(AccountReceivable.id),
                    func.coalesce(func.sum(AccountReceivable.amount - AccountReceivable.paid_amount), 0),
                ).where(AccountReceivable.status.in_(OPEN_STATUSES), AccountReceivable.due_date < today)
            ).one()
            open_leads = s.scalar(
                select(func.count(Lead.id)).where(
                    Lead.status.in_([LeadStatus.NEW, LeadStatus.CONTACTED, LeadStatus.QUALIFIED])
                )
            )
            pending_guides = s.scalar(select(func.count(TissGuide.id)).where(TissGuide.status == TissStatus.PENDING))

        income = month_totals.get(TransactionType.INCOME, 0)
        expense = month_totals.get(TransactionType.EXPENSE, 0)
        return {
            "date": iso(today),
            "active_patients": active_patients or 0,
            "appointments_today": appointments_today or 0,
            "month_income": income,
            "month_expense": expense,
            "month_balance": income - expense,
            "overdue_receivables": overdue_count,
            "overdue_amount": overdue_amount,
            "open_leads": open_leads or 0,
            "pending_tiss_guides": pending_guides or 0,
        }

    return cache.remember(f"dashboard:{today.isoformat()}", _compute, ttl=120)
