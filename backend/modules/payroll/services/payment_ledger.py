# backend/modules/payroll/services/payment_ledger.py

"""
Payment Ledger.

Caller-facing operations on payments: approval (which hands the payment to
the payout orchestrator), bulk approval, administrative cancel, lookup and
paged listing.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.auth import Actor
from core.exceptions import (
    ConflictError,
    ErrorCodes,
    ForbiddenError,
    NotFoundError,
    NotPendingError,
    PayrollException,
)
from ...staff.models.staff_models import Employee
from ..enums.payroll_enums import PaymentEvent, PaymentStatus
from ..models.payment_models import Payment
from ..schemas.payroll_schemas import BulkActionResult, PaymentActionResult
from .payment_state_machine import apply_transition

if TYPE_CHECKING:
    from ...payouts.services.payout_orchestrator import PayoutOrchestrator

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.APPROVED)
DEFAULT_PAGE_SIZE = 10


class PaymentLedger:
    """Approve, cancel and read payments on behalf of an actor"""

    def __init__(self, db_session: Session, orchestrator: Optional["PayoutOrchestrator"] = None):
        self.db = db_session
        if orchestrator is None:
            from ...payouts.services.payout_orchestrator import PayoutOrchestrator

            orchestrator = PayoutOrchestrator(db_session)
        self.orchestrator = orchestrator

    def _load(self, payment_id: int, actor: Actor) -> Payment:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        if not actor.can_access_company(payment.company_id):
            logger.warning(
                f"Actor {actor.user_id} denied access to payment {payment_id} "
                f"of company {payment.company_id}"
            )
            raise ForbiddenError("Not authorized to access this payment")
        return payment

    def get_payment(self, payment_id: int, actor: Actor) -> Payment:
        return self._load(payment_id, actor)

    def list_payments(
        self,
        company_id: int,
        actor: Actor,
        status: Optional[PaymentStatus] = None,
        employee_id: Optional[int] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Payment], int]:
        """
        Page through a company's payments, newest first.

        Returns the payments on the requested page and the total number of
        payments matching the filters.

        Raises:
            ForbiddenError: the company is not the actor's
        """
        if not actor.can_access_company(company_id):
            raise ForbiddenError("Not authorized to access payments for this company")

        query = self.db.query(Payment).filter(Payment.company_id == company_id)
        if status is not None:
            query = query.filter(Payment.status == status)
        if employee_id is not None:
            query = query.filter(Payment.employee_id == employee_id)

        total = query.count()
        payments = (
            query.order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return payments, total

    async def approve(self, payment_id: int, actor: Actor) -> Payment:
        """
        Approve a pending payment and dispatch it.

        Raises:
            NotFoundError: unknown payment
            ForbiddenError: the payment belongs to another company
            NotPendingError: the payment is not pending
            StaleStateError: a concurrent approval won the race
            PayrollException: dispatch failed (the payment is then failed)
        """
        payment = self._load(payment_id, actor)
        if payment.status != PaymentStatus.PENDING:
            raise NotPendingError(payment_id, payment.status.value)

        apply_transition(
            self.db,
            payment_id,
            PaymentStatus.PENDING,
            PaymentEvent.APPROVE,
            values={"approved_by": actor.user_id, "approved_at": datetime.utcnow()},
        )
        self.db.refresh(payment)
        logger.info(f"Payment {payment_id} approved by {actor.user_id}")

        return await self.orchestrator.dispatch(payment)

    async def bulk_approve(
        self,
        company_id: int,
        actor: Actor,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> BulkActionResult:
        """Approve and dispatch every pending payment of a company, one at a time."""
        if not actor.can_access_company(company_id):
            raise ForbiddenError("Not authorized to approve payments for this company")

        query = (
            self.db.query(Payment.id)
            .join(Employee, Employee.id == Payment.employee_id)
            .filter(
                Payment.company_id == company_id,
                Payment.status == PaymentStatus.PENDING,
                Employee.is_active == True,  # noqa: E712
            )
        )
        if period_start is not None:
            query = query.filter(Payment.period_start >= period_start)
        if period_end is not None:
            query = query.filter(Payment.period_end <= period_end)
        payment_ids = [row[0] for row in query.order_by(Payment.id).all()]

        logger.info(
            f"Bulk approving {len(payment_ids)} payments for company {company_id} "
            f"by {actor.user_id}"
        )

        result = BulkActionResult()
        for payment_id in payment_ids:
            result.add(await self._approve_isolated(payment_id, actor))

        logger.info(
            f"Bulk approval for company {company_id}: "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    async def _approve_isolated(self, payment_id: int, actor: Actor) -> PaymentActionResult:
        try:
            payment = await self.approve(payment_id, actor)
            return PaymentActionResult(payment_id=payment_id, success=True, status=payment.status)
        except PayrollException as e:
            logger.error(f"Approval of payment {payment_id} failed: {e.message}")
            error_code, error_message = e.code, e.message
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Approval of payment {payment_id} failed: {e}")
            error_code, error_message = "DATABASE_ERROR", str(e)
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Unexpected error for payment {payment_id}: {e}")
            error_code, error_message = ErrorCodes.GATEWAY_ERROR, str(e) or type(e).__name__

        current = self.db.query(Payment.status).filter(Payment.id == payment_id).scalar()
        return PaymentActionResult(
            payment_id=payment_id,
            success=False,
            status=current,
            error_code=error_code,
            error_message=error_message,
        )

    def cancel(self, payment_id: int, actor: Actor, reason: Optional[str] = None) -> Payment:
        """
        Administratively cancel a pending or approved payment.

        Raises:
            ConflictError: the payment is past approval
        """
        payment = self._load(payment_id, actor)
        if payment.status not in CANCELLABLE_STATUSES:
            raise ConflictError(
                f"Payment {payment_id} cannot be cancelled from status {payment.status.value}",
                code=ErrorCodes.INVALID_TRANSITION,
            )

        apply_transition(
            self.db,
            payment_id,
            payment.status,
            PaymentEvent.CANCEL,
            values={"failure_reason": reason or f"Cancelled by {actor.user_id}"},
        )
        self.db.refresh(payment)
        logger.info(f"Payment {payment_id} cancelled by {actor.user_id}")
        return payment
