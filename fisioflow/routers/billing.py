from __future__ import annotations

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..billing import (
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
from ..deps import financial_user
from ..models import AccountStatus, PaymentMethod, TransactionType

router = APIRouter(prefix="/api", tags=["billing"], dependencies=[Depends(financial_user)])


class TransactionIn(BaseModel):
    type: TransactionType
    category: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="cents")
    description: str | None = None
    payment_method: PaymentMethod | None = None
    patient_id: str | None = None
    when: datetime | None = None


class ReceivableIn(BaseModel):
    description: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    due_date: date
    patient_id: str | None = None
    notes: str | None = None


class InstallmentsIn(BaseModel):
    description: str = Field(..., min_length=1)
    total: int = Field(..., gt=0)
    installments: int = Field(..., ge=1, le=48)
    first_due: date
    patient_id: str | None = None


class PayableIn(BaseModel):
    supplier: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    due_date: date
    category: str = "other"
    document_number: str | None = None
    notes: str | None = None


class PaymentIn(BaseModel):
    amount: int = Field(..., gt=0)
    payment_method: PaymentMethod | None = None


# =========================
# Transactions
# =========================
@router.get("/transactions")
def api_list_transactions(
    type: TransactionType | None = None,
    category: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    patient_id: str | None = None,
) -> list[dict]:
    return list_transactions(type, category, start, end, patient_id)


@router.post("/transactions", status_code=status.HTTP_201_CREATED)
def api_create_transaction(payload: TransactionIn) -> dict[str, Any]:
    return {"ok": True, "id": create_transaction(**payload.model_dump())}


# =========================
# Receivables
# =========================
@router.get("/receivables")
def api_list_receivables(
    patient_id: str | None = None,
    status: AccountStatus | None = None,
    overdue: bool = False,
) -> list[dict]:
    return list_receivables(patient_id, status, overdue)


@router.post("/receivables", status_code=status.HTTP_201_CREATED)
def api_create_receivable(payload: ReceivableIn) -> dict[str, Any]:
    return {"ok": True, "id": create_receivable(**payload.model_dump())}


@router.post("/receivables/installments", status_code=status.HTTP_201_CREATED)
def api_create_installments(payload: InstallmentsIn) -> dict[str, Any]:
    return {"ok": True, "ids": create_installments(**payload.model_dump())}


@router.post("/receivables/{receivable_id}/pay")
def api_pay_receivable(receivable_id: int, payload: PaymentIn) -> dict:
    return pay_receivable(receivable_id, payload.amount, payload.payment_method)


@router.post("/receivables/{receivable_id}/cancel")
def api_cancel_receivable(receivable_id: int) -> dict:
    return cancel_receivable(receivable_id)


# =========================
# Payables
# =========================
@router.get("/payables")
def api_list_payables(
    status: AccountStatus | None = None,
    category: str | None = None,
    supplier: str | None = None,
    overdue: bool = False,
) -> list[dict]:
    return list_payables(status, category, supplier, overdue)


@router.post("/payables", status_code=status.HTTP_201_CREATED)
def api_create_payable(payload: PayableIn) -> dict[str, Any]:
    return {"ok": True, "id": create_payable(**payload.model_dump())}


@router.post("/payables/{payable_id}/pay")
def api_pay_payable(payable_id: int, payload: PaymentIn) -> dict:
    return pay_payable(payable_id, payload.amount, payload.payment_method)


@router.post("/payables/{payable_id}/cancel")
def api_cancel_payable(payable_id: int) -> dict:
    return cancel_payable(payable_id)


@router.get("/accounts/balance")
def api_open_balance() -> dict[str, int]:
    return open_balance()
