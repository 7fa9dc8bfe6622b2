# backend/modules/payouts/services/recovery_service.py

"""
Retry and recovery for payouts that did not settle.

- ``retry_failed``: failed -> pending within the retry budget, then the
  regular approve and dispatch path as the system actor
- ``mark_stuck_payments_failed``: processing payments with no callback
  past the threshold are failed
- ``cleanup_old_failed_payments``: budget-exhausted failures are purged
  after the retention window
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.auth import SYSTEM_ACTOR
from core.config import settings
from core.exceptions import ErrorCodes, PayrollException, StaleStateError
from ...payroll.enums.payroll_enums import PaymentEvent, PaymentStatus
from ...payroll.models.payment_models import Payment
from ...payroll.schemas.payroll_schemas import BulkActionResult, PaymentActionResult
from ...payroll.services.payment_ledger import PaymentLedger
from ...payroll.services.payment_state_machine import apply_transition
from ...staff.models.staff_models import Employee
from ..schemas.payout_schemas import CleanupResult, StuckPaymentRow, StuckSweepResult
from .payout_metrics import PayoutMetrics

logger = logging.getLogger(__name__)


class PayoutRecoveryService:
    """Retries failed payouts and sweeps payouts that never settled"""

    def __init__(self, db_session: Session, ledger: Optional[PaymentLedger] = None):
        self.db = db_session
        self.ledger = ledger or PaymentLedger(db_session)
        self.max_retries = settings.PAYMENT_MAX_RETRIES

    def get_retryable_payments(self, company_id: int) -> List[Payment]:
        return (
            self.db.query(Payment)
            .join(Employee, Employee.id == Payment.employee_id)
            .filter(
                Payment.company_id == company_id,
                Payment.status == PaymentStatus.FAILED,
                Payment.retry_count < self.max_retries,
                Employee.is_active == True,  # noqa: E712
            )
            .order_by(Payment.id)
            .all()
        )

    async def retry_failed(self, company_id: int) -> BulkActionResult:
        """Re-queue and re-dispatch failed payments that still have retry budget."""
        payments = self.get_retryable_payments(company_id)
        logger.info(f"Retrying {len(payments)} failed payments for company {company_id}")

        result = BulkActionResult()
        for payment in payments:
            row = await self._retry_one(payment.id)
            result.add(row)
            PayoutMetrics.record_recovery("retry", "success" if row.success else "failure")

        logger.info(
            f"Retry run for company {company_id}: "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    async def _retry_one(self, payment_id: int) -> PaymentActionResult:
        try:
            apply_transition(
                self.db,
                payment_id,
                PaymentStatus.FAILED,
                PaymentEvent.RETRY,
                values={
                    "retry_count": Payment.retry_count + 1,
                    "failure_reason": None,
                    "failure_code": None,
                    "gateway_session_id": None,
                    "gateway_transaction_id": None,
                },
                extra_criteria=(Payment.retry_count < self.max_retries,),
            )
            payment = await self.ledger.approve(payment_id, SYSTEM_ACTOR)
            return PaymentActionResult(payment_id=payment_id, success=True, status=payment.status)
        except PayrollException as e:
            logger.error(f"Retry of payment {payment_id} failed: {e.message}")
            error_code, error_message = e.code, e.message
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Retry of payment {payment_id} failed: {e}")
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

    def find_stuck_payments(
        self, threshold_hours: Optional[int] = None, now: Optional[datetime] = None
    ) -> List[Payment]:
        """Processing payments not touched for ``threshold_hours``."""
        threshold_hours = threshold_hours or settings.STUCK_PAYMENT_THRESHOLD_HOURS
        cutoff = (now or datetime.utcnow()) - timedelta(hours=threshold_hours)
        return (
            self.db.query(Payment)
            .filter(
                Payment.status == PaymentStatus.PROCESSING,
                Payment.updated_at < cutoff,
            )
            .order_by(Payment.updated_at)
            .all()
        )

    def mark_stuck_payments_failed(
        self, threshold_hours: Optional[int] = None, now: Optional[datetime] = None
    ) -> StuckSweepResult:
        """
        Fail every stuck payment.

        The CAS re-checks ``updated_at`` so a callback that lands while the
        sweep runs takes precedence.
        """
        threshold_hours = threshold_hours or settings.STUCK_PAYMENT_THRESHOLD_HOURS
        now = now or datetime.utcnow()
        cutoff = now - timedelta(hours=threshold_hours)
        stuck = self.find_stuck_payments(threshold_hours, now=now)
        reason = f"Payment stuck in processing state for more than {threshold_hours} hours"

        result = StuckSweepResult(threshold_hours=threshold_hours, found=len(stuck))
        for payment in stuck:
            try:
                apply_transition(
                    self.db,
                    payment.id,
                    PaymentStatus.PROCESSING,
                    PaymentEvent.REPORT_FAILURE,
                    values={"failure_reason": reason, "failure_code": "STUCK_PROCESSING"},
                    extra_criteria=(Payment.updated_at < cutoff,),
                    now=now,
                )
                result.marked_failed += 1
                result.results.append(StuckPaymentRow(payment_id=payment.id, marked_failed=True))
                logger.warning(f"Marked stuck payment {payment.id} as failed")
            except StaleStateError as e:
                result.skipped += 1
                result.results.append(
                    StuckPaymentRow(payment_id=payment.id, marked_failed=False, message=e.message)
                )
                logger.info(f"Stuck payment {payment.id} moved before the sweep reached it")

        PayoutMetrics.record_recovery("stuck_sweep", "marked_failed", result.marked_failed)
        PayoutMetrics.record_recovery("stuck_sweep", "skipped", result.skipped)
        if result.found:
            logger.warning(
                f"Stuck sweep: {result.found} found, {result.marked_failed} marked failed, "
                f"{result.skipped} skipped"
            )
        return result

    def cleanup_old_failed_payments(
        self, retention_days: Optional[int] = None, now: Optional[datetime] = None
    ) -> CleanupResult:
        """Delete failed payments with no retry budget left, older than the retention window."""
        retention_days = retention_days or settings.FAILED_PAYMENT_RETENTION_DAYS
        cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)

        payments = (
            self.db.query(Payment)
            .filter(
                Payment.status == PaymentStatus.FAILED,
                Payment.retry_count >= self.max_retries,
                Payment.created_at < cutoff,
            )
            .all()
        )
        for payment in payments:
            # Cascades to the time entry links
            self.db.delete(payment)
        self.db.commit()

        PayoutMetrics.record_recovery("cleanup", "deleted", len(payments))
        logger.info(f"Deleted {len(payments)} failed payments older than {retention_days} days")
        return CleanupResult(retention_days=retention_days, deleted=len(payments))
