# backend/modules/payroll/routes/payroll_routes.py

"""
Payroll and payment ledger API endpoints.

Typed ``PayrollException`` errors are rendered by the application-level
exception handler; routes only wire dependencies.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import Actor, require_employer
from core.database import get_db
from core.exceptions import ForbiddenError
from ...payouts.services.recovery_service import PayoutRecoveryService
from ..enums.payroll_enums import PaymentStatus
from ..schemas.payroll_schemas import (
    BulkActionResult,
    BulkApproveRequest,
    CancelPaymentRequest,
    PaymentListResponse,
    PaymentResponse,
    PayrollCalculationRequest,
    PayrollCalculationResult,
    PayrollSummary,
)
from ..services.payment_ledger import DEFAULT_PAGE_SIZE, PaymentLedger
from ..services.payroll_calculator import PayrollCalculator

router = APIRouter(prefix="/api/payroll", tags=["Payroll"])


def get_payment_ledger(db: Session = Depends(get_db)) -> PaymentLedger:
    return PaymentLedger(db)


def get_recovery_service(
    db: Session = Depends(get_db),
    ledger: PaymentLedger = Depends(get_payment_ledger),
) -> PayoutRecoveryService:
    return PayoutRecoveryService(db, ledger=ledger)


def _check_company(actor: Actor, company_id: int) -> None:
    if not actor.can_access_company(company_id):
        raise ForbiddenError("Not authorized to access this company")


@router.post("/companies/{company_id}/calculate", response_model=PayrollCalculationResult)
async def calculate_payroll(
    company_id: int,
    request: PayrollCalculationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_employer),
):
    """
    Calculate payroll for a company and period.

    Creates or refreshes pending payments; never sends money.
    """
    _check_company(actor, company_id)
    return PayrollCalculator(db).calculate(company_id, request.period_start, request.period_end)


@router.get("/companies/{company_id}/summary", response_model=PayrollSummary)
async def get_payroll_summary(
    company_id: int,
    period_start: Optional[datetime] = Query(None),
    period_end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_employer),
):
    _check_company(actor, company_id)
    return PayrollCalculator(db).get_payroll_summary(company_id, period_start, period_end)


@router.get("/companies/{company_id}/payments", response_model=PaymentListResponse)
async def list_payments(
    company_id: int,
    status: Optional[PaymentStatus] = Query(None, description="Filter by payment status"),
    employee_id: Optional[int] = Query(None, description="Filter by employee"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100, description="Items per page"),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    actor: Actor = Depends(require_employer),
):
    """List a company's payments, newest first, one page at a time."""
    payments, total = ledger.list_payments(
        company_id, actor, status=status, employee_id=employee_id, page=page, page_size=page_size
    )
    total_pages = (total + page_size - 1) // page_size

    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_previous=page > 1,
    )


@router.get("/companies/{company_id}/payments/pending", response_model=List[PaymentResponse])
async def get_pending_payments(
    company_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_employer),
):
    _check_company(actor, company_id)
    return PayrollCalculator(db).get_pending_payments(company_id)


@router.post("/companies/{company_id}/payments/approve", response_model=BulkActionResult)
async def bulk_approve_payments(
    company_id: int,
    request: Optional[BulkApproveRequest] = None,
    ledger: PaymentLedger = Depends(get_payment_ledger),
    actor: Actor = Depends(require_employer),
):
    """Approve and dispatch every pending payment of the company."""
    request = request or BulkApproveRequest()
    return await ledger.bulk_approve(company_id, actor, request.period_start, request.period_end)


@router.post("/companies/{company_id}/payments/retry-failed", response_model=BulkActionResult)
async def retry_failed_payments(
    company_id: int,
    recovery: PayoutRecoveryService = Depends(get_recovery_service),
    actor: Actor = Depends(require_employer),
):
    _check_company(actor, company_id)
    return await recovery.retry_failed(company_id)


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    ledger: PaymentLedger = Depends(get_payment_ledger),
    actor: Actor = Depends(require_employer),
):
    return ledger.get_payment(payment_id, actor)


@router.post("/payments/{payment_id}/approve", response_model=PaymentResponse)
async def approve_payment(
    payment_id: int,
    ledger: PaymentLedger = Depends(get_payment_ledger),
    actor: Actor = Depends(require_employer),
):
    """
    Approve a pending payment and start its payout.

    ## Error Responses
    - **403**: Payment belongs to another company
    - **404**: Payment not found
    - **409**: Payment is not pending
    - **502**: Gateway rejected the payout
    """
    return await ledger.approve(payment_id, actor)


@router.post("/payments/{payment_id}/cancel", response_model=PaymentResponse)
async def cancel_payment(
    payment_id: int,
    request: Optional[CancelPaymentRequest] = None,
    ledger: PaymentLedger = Depends(get_payment_ledger),
    actor: Actor = Depends(require_employer),
):
    request = request or CancelPaymentRequest()
    return ledger.cancel(payment_id, actor, request.reason)
