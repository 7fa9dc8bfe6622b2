# backend/modules/payroll/services/payroll_calculator.py

"""
Payroll calculation from approved time entries.

Computes regular and bonus pay per employee for a period and upserts one
pending Payment per (employee, period). Calculation never triggers a payout.
"""

import logging
from calendar import monthrange
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ErrorCodes, NotFoundError, PayrollException, ValidationError
from ...staff.enums.staff_enums import PaymentCycle
from ...staff.models.staff_models import Company, Employee
from ...timekeeping.enums.timekeeping_enums import TimeEntryStatus
from ...timekeeping.models.time_entry_models import TimeEntry
from ..enums.payroll_enums import CalculationOutcome, PaymentStatus
from ..models.payment_models import Payment, PaymentTimeEntry
from ..schemas.payroll_schemas import (
    EmployeePayrollRow,
    PayrollCalculationResult,
    PayrollSummary,
)

logger = logging.getLogger(__name__)

MONEY_QUANTUM = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_pay(
    regular_hours: Decimal,
    bonus_hours: Decimal,
    hourly_rate: Decimal,
    bonus_rate_multiplier: Decimal,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Return ``(regular_pay, bonus_pay, total)``.

    The total is rounded once from the exact sum, so it can differ from the
    sum of the rounded parts by a cent.
    """
    regular_hours = Decimal(str(regular_hours))
    bonus_hours = Decimal(str(bonus_hours))
    hourly_rate = Decimal(str(hourly_rate))
    bonus_rate_multiplier = Decimal(str(bonus_rate_multiplier))

    regular_exact = regular_hours * hourly_rate
    bonus_exact = bonus_hours * hourly_rate * bonus_rate_multiplier
    return (
        quantize_money(regular_exact),
        quantize_money(bonus_exact),
        quantize_money(regular_exact + bonus_exact),
    )


def period_for_cycle(cycle: PaymentCycle, now: datetime) -> Tuple[datetime, datetime]:
    """
    Previous complete period for a payment cycle, bounds inclusive.

    daily: yesterday. weekly: the seven full days ending yesterday.
    monthly: the previous calendar month.
    """
    cycle = PaymentCycle(cycle)
    today = now.date()
    yesterday = today - timedelta(days=1)

    if cycle == PaymentCycle.DAILY:
        first_day, last_day = yesterday, yesterday
    elif cycle == PaymentCycle.WEEKLY:
        first_day, last_day = yesterday - timedelta(days=6), yesterday
    elif cycle == PaymentCycle.MONTHLY:
        last_day = today.replace(day=1) - timedelta(days=1)
        first_day = last_day.replace(day=1)
    else:
        raise ValidationError(f"Invalid payment cycle: {cycle}", field="payment_cycle")

    return datetime.combine(first_day, time.min), datetime.combine(last_day, time.max)


def _month_bounds(day: date) -> Tuple[datetime, datetime]:
    last = monthrange(day.year, day.month)[1]
    return (
        datetime.combine(day.replace(day=1), time.min),
        datetime.combine(day.replace(day=last), time.max),
    )


class PayrollCalculator:
    """Turns approved time entries into pending payments."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _get_company(self, company_id: int) -> Company:
        company = self.db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise NotFoundError("Company", company_id)
        return company

    def _active_employees(self, company_id: int) -> List[Employee]:
        return (
            self.db.query(Employee)
            .filter(Employee.company_id == company_id, Employee.is_active == True)  # noqa: E712
            .order_by(Employee.id)
            .all()
        )

    def _find_payment(
        self, employee_id: int, period_start: datetime, period_end: datetime
    ) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.employee_id == employee_id,
            Payment.period_start == period_start,
            Payment.period_end == period_end,
        ).first()

    def _eligible_entries(
        self,
        employee_id: int,
        period_start: datetime,
        period_end: datetime,
        payment_id: Optional[int],
    ) -> List[TimeEntry]:
        """Approved, closed entries in the period not consumed by another payment."""
        unclaimed = or_(
            PaymentTimeEntry.id.is_(None),
            PaymentTimeEntry.payment_id == payment_id,
        ) if payment_id is not None else PaymentTimeEntry.id.is_(None)

        return (
            self.db.query(TimeEntry)
            .outerjoin(PaymentTimeEntry, PaymentTimeEntry.time_entry_id == TimeEntry.id)
            .filter(
                TimeEntry.employee_id == employee_id,
                TimeEntry.status == TimeEntryStatus.APPROVED,
                TimeEntry.clock_in >= period_start,
                TimeEntry.clock_in <= period_end,
                TimeEntry.clock_out.isnot(None),
                unclaimed,
            )
            .order_by(TimeEntry.clock_in)
            .all()
        )

    def calculate(
        self,
        company_id: int,
        period_start: datetime,
        period_end: datetime,
    ) -> PayrollCalculationResult:
        """
        Calculate payroll for every active employee of a company.

        Re-running for the same period updates pending payments in place and
        leaves payments that already moved past pending untouched.
        """
        if period_end <= period_start:
            raise ValidationError(
                "period_end must be after period_start",
                field="period_end",
                code=ErrorCodes.INVALID_DATE_RANGE,
            )

        company = self._get_company(company_id)
        multiplier = Decimal(str(
            company.bonus_rate_multiplier
            if company.bonus_rate_multiplier is not None
            else settings.DEFAULT_BONUS_RATE_MULTIPLIER
        ))
        employees = self._active_employees(company_id)

        logger.info(
            f"Calculating payroll for company {company_id} "
            f"({len(employees)} employees) from {period_start} to {period_end}"
        )

        rows: List[EmployeePayrollRow] = []
        for employee in employees:
            try:
                row = self._calculate_employee(company, employee, multiplier, period_start, period_end)
            except (PayrollException, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(f"Payroll calculation failed for employee {employee.id}: {e}")
                row = EmployeePayrollRow(
                    employee_id=employee.id,
                    employee_name=employee.name,
                    outcome=CalculationOutcome.ERROR,
                    error_message=str(e),
                )
            if row is not None:
                rows.append(row)

        with_payments = [r for r in rows if r.payment_id is not None]
        total_amount = sum((r.total_pay for r in with_payments), Decimal("0.00"))

        logger.info(
            f"Payroll for company {company_id}: {len(with_payments)} payments, "
            f"total {total_amount}"
        )
        return PayrollCalculationResult(
            company_id=company.id,
            company_name=company.name,
            period_start=period_start,
            period_end=period_end,
            total_employees=len(employees),
            employees_with_payments=len(with_payments),
            total_amount=quantize_money(total_amount),
            results=rows,
        )

    def _calculate_employee(
        self,
        company: Company,
        employee: Employee,
        multiplier: Decimal,
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[EmployeePayrollRow]:
        existing = self._find_payment(employee.id, period_start, period_end)

        if existing is not None and existing.status != PaymentStatus.PENDING:
            return EmployeePayrollRow(
                employee_id=employee.id,
                employee_name=employee.name,
                payment_id=existing.id,
                regular_hours=existing.regular_hours,
                bonus_hours=existing.bonus_hours,
                hourly_rate=existing.hourly_rate,
                bonus_rate_multiplier=existing.bonus_rate_multiplier,
                regular_pay=existing.regular_pay,
                bonus_pay=existing.bonus_pay,
                total_pay=existing.amount,
                time_entry_count=len(existing.time_entry_links),
                outcome=CalculationOutcome.LOCKED,
            )

        entries = self._eligible_entries(
            employee.id, period_start, period_end, existing.id if existing else None
        )
        regular_hours = sum((Decimal(str(e.regular_hours)) for e in entries), Decimal("0.00"))
        bonus_hours = sum((Decimal(str(e.bonus_hours)) for e in entries), Decimal("0.00"))

        if regular_hours + bonus_hours <= 0:
            return None

        rate = Decimal(str(employee.hourly_rate))
        regular_pay, bonus_pay, total = compute_pay(regular_hours, bonus_hours, rate, multiplier)
        entry_ids = sorted(e.id for e in entries)

        fields = dict(
            regular_hours=regular_hours,
            bonus_hours=bonus_hours,
            hourly_rate=rate,
            bonus_rate_multiplier=multiplier,
            regular_pay=regular_pay,
            bonus_pay=bonus_pay,
            amount=total,
        )

        if existing is None:
            payment = Payment(
                employee_id=employee.id,
                company_id=company.id,
                period_start=period_start,
                period_end=period_end,
                currency=settings.PAYOUT_CURRENCY,
                status=PaymentStatus.PENDING,
                **fields,
            )
            payment.time_entry_links = [PaymentTimeEntry(time_entry_id=i) for i in entry_ids]
            self.db.add(payment)
            try:
                self.db.commit()
                outcome = CalculationOutcome.CREATED
            except IntegrityError:
                # A concurrent run created the row first; fall through to update it
                self.db.rollback()
                payment = self._find_payment(employee.id, period_start, period_end)
                if payment is None:
                    raise
                if payment.status != PaymentStatus.PENDING:
                    return self._calculate_employee(company, employee, multiplier, period_start, period_end)
                outcome = self._update_pending(payment, fields, entry_ids)
        else:
            payment = existing
            outcome = self._update_pending(payment, fields, entry_ids)

        self.db.refresh(payment)
        logger.debug(f"Payment {payment.id} for employee {employee.id}: {outcome.value}")

        return EmployeePayrollRow(
            employee_id=employee.id,
            employee_name=employee.name,
            payment_id=payment.id,
            regular_hours=regular_hours,
            bonus_hours=bonus_hours,
            hourly_rate=rate,
            bonus_rate_multiplier=multiplier,
            regular_pay=regular_pay,
            bonus_pay=bonus_pay,
            total_pay=total,
            time_entry_count=len(entry_ids),
            outcome=outcome,
        )

    def _update_pending(self, payment: Payment, fields: dict, entry_ids: List[int]) -> CalculationOutcome:
        changed = payment.time_entry_ids != entry_ids
        for key, value in fields.items():
            current = getattr(payment, key)
            if current is None or Decimal(str(current)) != Decimal(str(value)):
                changed = True
            setattr(payment, key, value)

        if not changed:
            self.db.rollback()
            return CalculationOutcome.UNCHANGED

        if payment.time_entry_ids != entry_ids:
            payment.time_entry_links.clear()
            self.db.flush()
            payment.time_entry_links.extend(PaymentTimeEntry(time_entry_id=i) for i in entry_ids)
        self.db.commit()
        return CalculationOutcome.UPDATED

    def process_company_payroll(
        self, company_id: int, now: Optional[datetime] = None
    ) -> PayrollCalculationResult:
        """Calculate the previous period of the company's payment cycle."""
        company = self._get_company(company_id)
        period_start, period_end = period_for_cycle(company.payment_cycle, now or datetime.utcnow())
        return self.calculate(company_id, period_start, period_end)

    def get_payroll_summary(
        self,
        company_id: int,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> PayrollSummary:
        """Payment counts by status and total amount for payments inside the period."""
        company = self._get_company(company_id)
        if period_start is None or period_end is None:
            period_start, period_end = _month_bounds(datetime.utcnow().date())

        employee_count = (
            self.db.query(func.count(Employee.id))
            .filter(Employee.company_id == company_id, Employee.is_active == True)  # noqa: E712
            .scalar()
        )
        rows = (
            self.db.query(Payment.status, func.count(Payment.id), func.sum(Payment.amount))
            .join(Employee, Employee.id == Payment.employee_id)
            .filter(
                Payment.company_id == company_id,
                Employee.is_active == True,  # noqa: E712
                Payment.period_start >= period_start,
                Payment.period_end <= period_end,
            )
            .group_by(Payment.status)
            .all()
        )

        by_status = {status.value: 0 for status in PaymentStatus}
        total_amount = Decimal("0.00")
        for status, count, amount in rows:
            by_status[PaymentStatus(status).value] = count
            total_amount += Decimal(str(amount or 0))

        return PayrollSummary(
            company_id=company.id,
            company_name=company.name,
            period_start=period_start,
            period_end=period_end,
            total_employees=employee_count or 0,
            total_payments=sum(by_status.values()),
            total_amount=quantize_money(total_amount),
            pending_payments=by_status[PaymentStatus.PENDING.value],
            completed_payments=by_status[PaymentStatus.COMPLETED.value],
            failed_payments=by_status[PaymentStatus.FAILED.value],
            by_status=by_status,
        )

    def get_pending_payments(self, company_id: int) -> List[Payment]:
        """Pending payments of active employees, oldest first."""
        return (
            self.db.query(Payment)
            .join(Employee, Employee.id == Payment.employee_id)
            .filter(
                Payment.company_id == company_id,
                Payment.status == PaymentStatus.PENDING,
                Employee.is_active == True,  # noqa: E712
            )
            .order_by(Payment.created_at.asc(), Payment.id.asc())
            .all()
        )
