# backend/modules/payroll/tasks/payroll_jobs.py

"""
Scheduled payroll jobs.

The job bodies take an optional session and can be called directly;
``PayrollScheduler`` wires them to APScheduler triggers.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.auth import SYSTEM_ACTOR
from core.config import settings
from core.database import get_db
from core.exceptions import PayrollException
from ...payouts.services.recovery_service import PayoutRecoveryService
from ...staff.enums.staff_enums import PaymentCycle
from ...staff.models.staff_models import Company
from ..services.payment_ledger import PaymentLedger
from ..services.payroll_calculator import PayrollCalculator, period_for_cycle

logger = logging.getLogger(__name__)


async def process_payroll_for_cycle(
    cycle: PaymentCycle,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    auto_approve: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Calculate the previous period for every active company on ``cycle``.

    Each company is isolated: a failure is logged and counted, and the run
    continues with the next company.
    """
    cycle = PaymentCycle(cycle)
    now = now or datetime.utcnow()
    if auto_approve is None:
        auto_approve = settings.PAYROLL_AUTO_APPROVE

    owns_session = db is None
    if owns_session:
        db = next(get_db())

    summary: Dict[str, Any] = {
        "cycle": cycle.value,
        "companies": 0,
        "payments": 0,
        "approved": 0,
        "errors": 0,
    }
    try:
        companies = (
            db.query(Company)
            .filter(Company.payment_cycle == cycle, Company.is_active == True)  # noqa: E712
            .order_by(Company.id)
            .all()
        )
        period_start, period_end = period_for_cycle(cycle, now)
        logger.info(
            f"Running {cycle.value} payroll for {len(companies)} companies "
            f"({period_start} to {period_end})"
        )

        calculator = PayrollCalculator(db)
        for company in companies:
            company_id = company.id
            try:
                result = calculator.calculate(company_id, period_start, period_end)
                summary["companies"] += 1
                summary["payments"] += result.employees_with_payments

                if auto_approve:
                    approval = await PaymentLedger(db).bulk_approve(
                        company_id, SYSTEM_ACTOR, period_start, period_end
                    )
                    summary["approved"] += approval.succeeded
            except (PayrollException, SQLAlchemyError) as e:
                db.rollback()
                summary["errors"] += 1
                logger.error(f"{cycle.value} payroll failed for company {company_id}: {e}")

        logger.info(
            f"{cycle.value} payroll complete: {summary['companies']} companies, "
            f"{summary['payments']} payments, {summary['errors']} errors"
        )
        return summary
    finally:
        if owns_session:
            db.close()


async def check_stuck_payments(
    db: Optional[Session] = None,
    threshold_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Fail payments left in processing past the threshold."""
    owns_session = db is None
    if owns_session:
        db = next(get_db())
    try:
        result = PayoutRecoveryService(db).mark_stuck_payments_failed(threshold_hours)
        return result.model_dump()
    finally:
        if owns_session:
            db.close()


async def cleanup_old_failed_payments(
    db: Optional[Session] = None,
    retention_days: Optional[int] = None,
) -> Dict[str, Any]:
    """Purge budget-exhausted failed payments past retention."""
    owns_session = db is None
    if owns_session:
        db = next(get_db())
    try:
        result = PayoutRecoveryService(db).cleanup_old_failed_payments(retention_days)
        return result.model_dump()
    finally:
        if owns_session:
            db.close()


class PayrollScheduler:
    """Runs the payroll jobs on cron and interval triggers"""

    DAILY_JOB_ID = "payroll_daily_job"
    WEEKLY_JOB_ID = "payroll_weekly_job"
    MONTHLY_JOB_ID = "payroll_monthly_job"
    STUCK_JOB_ID = "payroll_stuck_payments_job"
    CLEANUP_JOB_ID = "payroll_failed_cleanup_job"

    # Period bounds are naive UTC like the time entry timestamps, so the
    # cycle runs fire at UTC midnight whatever the scheduler timezone is
    PERIOD_TIMEZONE = "UTC"

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = timezone or settings.SCHEDULER_TIMEZONE
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.is_running = False

    def register_jobs(self) -> None:
        jobs = [
            (self.DAILY_JOB_ID, "Daily Payroll", self._run_cycle,
             CronTrigger(hour=0, minute=0, timezone=self.PERIOD_TIMEZONE), [PaymentCycle.DAILY]),
            (self.WEEKLY_JOB_ID, "Weekly Payroll", self._run_cycle,
             CronTrigger(day_of_week="sun", hour=0, minute=0, timezone=self.PERIOD_TIMEZONE),
             [PaymentCycle.WEEKLY]),
            (self.MONTHLY_JOB_ID, "Monthly Payroll", self._run_cycle,
             CronTrigger(day=1, hour=0, minute=0, timezone=self.PERIOD_TIMEZONE),
             [PaymentCycle.MONTHLY]),
            (self.STUCK_JOB_ID, "Stuck Payment Check", self._run_stuck_check,
             IntervalTrigger(hours=settings.STUCK_CHECK_INTERVAL_HOURS, timezone=self.timezone), []),
            (self.CLEANUP_JOB_ID, "Failed Payment Cleanup", self._run_cleanup,
             CronTrigger(hour=2, minute=0, timezone=self.timezone), []),
        ]
        for job_id, name, func, trigger, args in jobs:
            self.scheduler.add_job(
                func=func,
                trigger=trigger,
                args=args,
                id=job_id,
                name=name,
                replace_existing=True,
                max_instances=1,
            )

    def start(self):
        """Start the payroll scheduler"""
        if self.is_running:
            logger.warning("Payroll scheduler already running")
            return

        self.register_jobs()
        self.scheduler.start()
        self.is_running = True
        logger.info(f"Payroll scheduler started (timezone {self.timezone})")

    def stop(self):
        if not self.is_running:
            return
        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Payroll scheduler stopped")

    async def _run_cycle(self, cycle: PaymentCycle):
        try:
            await process_payroll_for_cycle(cycle)
        except Exception as e:
            logger.error(f"Error in {PaymentCycle(cycle).value} payroll job: {e}", exc_info=True)

    async def _run_stuck_check(self):
        try:
            await check_stuck_payments()
        except Exception as e:
            logger.error(f"Error in stuck payment job: {e}", exc_info=True)

    async def _run_cleanup(self):
        try:
            await cleanup_old_failed_payments()
        except Exception as e:
            logger.error(f"Error in failed payment cleanup job: {e}", exc_info=True)

    def get_status(self) -> dict:
        """Get scheduler status"""
        if not self.is_running:
            return {"scheduler_running": False, "jobs": []}

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            })
        return {"scheduler_running": True, "jobs": jobs}


# Global scheduler instance
payroll_scheduler = PayrollScheduler()


async def start_payroll_scheduler():
    """Start the payroll scheduler on app startup"""
    try:
        payroll_scheduler.start()
    except Exception as e:
        logger.error(f"Failed to start payroll scheduler: {e}", exc_info=True)


async def stop_payroll_scheduler():
    """Stop the payroll scheduler on app shutdown"""
    try:
        payroll_scheduler.stop()
    except Exception as e:
        logger.error(f"Error stopping payroll scheduler: {e}", exc_info=True)
