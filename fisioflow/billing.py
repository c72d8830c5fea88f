from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from .cache import cache
from .db import db_session
from .errors import NotFoundError, ValidationError
from .models import (
    AccountPayable,
    AccountReceivable,
    AccountStatus,
    PaymentMethod,
    Patient,
    Transaction,
    TransactionType,
    iso,
    utcnow,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (AccountStatus.PENDING, AccountStatus.PARTIAL)


def _check_amount(amount: int, field: str = "amount") -> None:
    if amount is None or amount <= 0:
        raise ValidationError(f"{field} must be positive")


def _add_months(d: date, months: int) -> date:
    month = d.month - 1 + months
    year = d.year + month // 12
    month = month % 12 + 1
    # clamp to the last day of the target month
    for day in (d.day, 30, 29, 28):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    raise ValueError(f"invalid date {year}-{month}")


# =========================
# Transactions
# =========================
def _transaction_dict(t: Transaction) -> dict:
    return {
        "id": t.id,
        "patient_id": t.patient_id,
        "type": t.type.value,
        "category": t.category,
        "amount": t.amount,
        "description": t.description,
        "payment_method": t.payment_method.value if t.payment_method else None,
        "date": iso(t.date),
    }


def record_transaction(
    s: Session,
    type: TransactionType,
    category: str,
    amount: int,
    description: str | None = None,
    payment_method: PaymentMethod | None = None,
    patient_id: str | None = None,
    when: datetime | None = None,
) -> Transaction:
    t = Transaction(
        type=type,
        category=category,
        amount=amount,
        description=description,
        payment_method=payment_method,
        patient_id=patient_id,
        date=when or utcnow(),
    )
    s.add(t)
    return t


def create_transaction(
    type: TransactionType,
    category: str,
    amount: int,
    description: str | None = None,
    payment_method: PaymentMethod | None = None,
    patient_id: str | None = None,
    when: datetime | None = None,
) -> int:
    _check_amount(amount)
    if not category:
        raise ValidationError("category is required")

    with db_session() as s:
        if patient_id and not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        t = record_transaction(s, type, category, amount, description, payment_method, patient_id, when)
        s.flush()
        transaction_id = t.id

    cache.invalidate("dashboard:*")
    return transaction_id


def list_transactions(
    type: TransactionType | None = None,
    category: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    patient_id: str | None = None,
) -> list[dict]:
    with db_session() as s:
        q = select(Transaction).order_by(Transaction.date.desc(), Transaction.id.desc())
        if type is not None:
            q = q.where(Transaction.type == type)
        if category:
            q = q.where(Transaction.category == category)
        if start is not None:
            q = q.where(Transaction.date >= start)
        if end is not None:
            q = q.where(Transaction.date <= end)
        if patient_id:
            q = q.where(Transaction.patient_id == patient_id)
        return [_transaction_dict(t) for t in s.scalars(q)]


# =========================
# Accounts receivable / payable
# =========================
def _account_dict(a: AccountReceivable | AccountPayable) -> dict:
    d = {
        "id": a.id,
        "description": a.description,
        "amount": a.amount,
        "paid_amount": a.paid_amount,
        "balance": a.amount - a.paid_amount,
        "due_date": iso(a.due_date),
        "paid_at": iso(a.paid_at),
        "status": a.status.value,
        "payment_method": a.payment_method.value if a.payment_method else None,
        "notes": a.notes,
    }
    if isinstance(a, AccountReceivable):
        d.update(
            patient_id=a.patient_id,
            patient_name=a.patient.full_name if a.patient else None,
            installment_number=a.installment_number,
            total_installments=a.total_installments,
        )
    else:
        d.update(supplier=a.supplier, category=a.category, document_number=a.document_number)
    return d


def _apply_payment(
    a: AccountReceivable | AccountPayable,
    amount: int,
    payment_method: PaymentMethod | None,
) -> None:
    _check_amount(amount)
    if a.status == AccountStatus.PAID:
        raise ValidationError("Account already paid")
    if a.status == AccountStatus.CANCELLED:
        raise ValidationError("Cannot pay a cancelled account")

    a.paid_amount += amount
    if payment_method is not None:
        a.payment_method = payment_method
    if a.paid_amount >= a.amount:
        a.status = AccountStatus.PAID
        a.paid_at = utcnow()
    else:
        a.status = AccountStatus.PARTIAL


def _cancel(a: AccountReceivable | AccountPayable) -> None:
    if a.status == AccountStatus.PAID:
        raise ValidationError("Cannot cancel a paid account")
    if a.status == AccountStatus.CANCELLED:
        raise ValidationError("Account already cancelled")
    a.status = AccountStatus.CANCELLED


def create_receivable(
    description: str,
    amount: int,
    due_date: date,
    patient_id: str | None = None,
    installment_number: int | None = None,
    total_installments: int | None = None,
    notes: str | None = None,
) -> int:
    _check_amount(amount)
    if not description:
        raise ValidationError("description is required")

    with db_session() as s:
        if patient_id and not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        r = AccountReceivable(
            patient_id=patient_id,
            description=description,
            amount=amount,
            due_date=due_date,
            installment_number=installment_number,
            total_installments=total_installments,
            notes=notes,
        )
        s.add(r)
        s.flush()
        receivable_id = r.id

    cache.invalidate("dashboard:*")
    return receivable_id


def create_installments(
    description: str,
    total: int,
    installments: int,
    first_due: date,
    patient_id: str | None = None,
) -> list[int]:
    """Split a total into monthly receivables; leftover cents go on the last one."""
    _check_amount(total, "total")
    if installments < 1:
        raise ValidationError("installments must be at least 1")

    base = total // installments
    if base == 0:
        raise ValidationError("total too small for the number of installments")
    remainder = total - base * installments

    with db_session() as s:
        if patient_id and not s.get(Patient, patient_id):
            raise NotFoundError("Patient", patient_id)
        rows = []
        for i in range(installments):
            amount = base + (remainder if i == installments - 1 else 0)
            r = AccountReceivable(
                patient_id=patient_id,
                description=f"{description} ({i + 1}/{installments})",
                amount=amount,
                due_date=_add_months(first_due, i),
                installment_number=i + 1,
                total_installments=installments,
            )
            s.add(r)
            rows.append(r)
        s.flush()
        ids = [r.id for r in rows]

    cache.invalidate("dashboard:*")
    return ids


def list_receivables(
    patient_id: str | None = None,
    status: AccountStatus | None = None,
    overdue: bool = False,
    today: date | None = None,
) -> list[dict]:
    today = today or utcnow().date()
    with db_session() as s:
        q = select(AccountReceivable).order_by(AccountReceivable.due_date.asc(), AccountReceivable.id.asc())
        if patient_id:
            q = q.where(AccountReceivable.patient_id == patient_id)
        if status is not None:
            q = q.where(AccountReceivable.status == status)
        if overdue:
            q = q.where(AccountReceivable.status.in_(OPEN_STATUSES), AccountReceivable.due_date < today)
        return [_account_dict(r) for r in s.scalars(q)]


def pay_receivable(receivable_id: int, amount: int, payment_method: PaymentMethod | None = None) -> dict:
    with db_session() as s:
        r = s.get(AccountReceivable, receivable_id)
        if not r:
            raise NotFoundError("AccountReceivable", receivable_id)
        _apply_payment(r, amount, payment_method)
        record_transaction(
            s,
            TransactionType.INCOME,
            "payment",
            amount,
            description=f"Payment received: {r.description}",
            payment_method=payment_method,
            patient_id=r.patient_id,
        )
        s.flush()
        result = _account_dict(r)

    cache.invalidate("dashboard:*")
    logger.info("receivable %s paid %d cents, status %s", receivable_id, amount, result["status"])
    return result


def cancel_receivable(receivable_id: int) -> dict:
    with db_session() as s:
        r = s.get(AccountReceivable, receivable_id)
        if not r:
            raise NotFoundError("AccountReceivable", receivable_id)
        _cancel(r)
        result = _account_dict(r)

    cache.invalidate("dashboard:*")
    return result


def create_payable(
    supplier: str,
    description: str,
    amount: int,
    due_date: date,
    category: str = "other",
    document_number: str | None = None,
    notes: str | None = None,
) -> int:
    _check_amount(amount)
    if not supplier or not description:
        raise ValidationError("supplier and description are required")

    with db_session() as s:
        p = AccountPayable(
            supplier=supplier,
            description=description,
            amount=amount,
            due_date=due_date,
            category=category or "other",
            document_number=document_number,
            notes=notes,
        )
        s.add(p)
        s.flush()
        return p.id


def list_payables(
    status: AccountStatus | None = None,
    category: str | None = None,
    supplier: str | None = None,
    overdue: bool = False,
    today: date | None = None,
) -> list[dict]:
    today = today or utcnow().date()
    with db_session() as s:
        q = select(AccountPayable).order_by(AccountPayable.due_date.asc(), AccountPayable.id.asc())
        if status is not None:
            q = q.where(AccountPayable.status == status)
        if category:
            q = q.where(AccountPayable.category == category)
        if supplier:
            q = q.where(AccountPayable.supplier.ilike(f"%{supplier}%"))
        if overdue:
            q = q.where(AccountPayable.status.in_(OPEN_STATUSES), AccountPayable.due_date < today)
        return [_account_dict(p) for p in s.scalars(q)]


def pay_payable(payable_id: int, amount: int, payment_method: PaymentMethod | None = None) -> dict:
    with db_session() as s:
        p = s.get(AccountPayable, payable_id)
        if not p:
            raise NotFoundError("AccountPayable", payable_id)
        _apply_payment(p, amount, payment_method)
        record_transaction(
            s,
            TransactionType.EXPENSE,
            p.category,
            amount,
            description=f"Payment to {p.supplier}: {p.description}",
            payment_method=payment_method,
        )
        s.flush()
        result = _account_dict(p)

    cache.invalidate("dashboard:*")
    logger.info("payable %s paid %d cents, status %s", payable_id, amount, result["status"])
    return result


def cancel_payable(payable_id: int) -> dict:
    with db_session() as s:
        p = s.get(AccountPayable, payable_id)
        if not p:
            raise NotFoundError("AccountPayable", payable_id)
        _cancel(p)
        return _account_dict(p)


def open_balance(today: date | None = None) -> dict:
    """Outstanding receivable/payable totals, split between due and overdue."""
    today = today or utcnow().date()
    out = {"receivable": 0, "receivable_overdue": 0, "payable": 0, "payable_overdue": 0}
    with db_session() as s:
        for model, key in ((AccountReceivable, "receivable"), (AccountPayable, "payable")):
            rows = s.scalars(select(model).where(model.status.in_(OPEN_STATUSES)))
            for a in rows:
                balance = a.amount - a.paid_amount
                out[key] += balance
                if a.due_date < today:
                    out[f"{key}_overdue"] += balance
    return out
