"""
Time entry aggregation: clock-in/out, breaks and employer review.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import (
    AlreadyClockedInError,
    BreakAlreadyOpenError,
    ConflictError,
    ErrorCodes,
    ForbiddenError,
    InvalidTimeRangeError,
    NoActiveBreakError,
    NoActiveSessionError,
    NotFoundError,
    ValidationError,
)
from ...staff.models.staff_models import Employee
from ..enums.timekeeping_enums import BreakCategory, TimeEntryStatus
from ..models.time_entry_models import TimeEntry, TimeEntryBreak
from .calculations import hours_between, quantize_hours, recompute_derived

logger = logging.getLogger(__name__)


@dataclass
class ClockStatus:
    is_clocked_in: bool
    entry: Optional[TimeEntry] = None
    current_duration_hours: Decimal = Decimal("0.00")
    on_break: bool = False


class TimeEntryService:
    """Records work sessions and keeps their derived hours current."""

    def __init__(self, db_session: Session):
        self.db = db_session

    # -- lookups --------------------------------------------------------

    def _get_active_employee(self, employee_id: int) -> Employee:
        employee = self.db.query(Employee).filter(
            Employee.id == employee_id,
            Employee.is_active == True,  # noqa: E712
        ).first()
        if not employee:
            raise NotFoundError("Employee", employee_id)
        return employee

    def _find_open_entry(self, employee_id: int, now: datetime) -> Optional[TimeEntry]:
        return self.db.query(TimeEntry).filter(
            TimeEntry.employee_id == employee_id,
            TimeEntry.work_date == now.date(),
            TimeEntry.clock_out.is_(None),
        ).first()

    def _require_open_entry(self, employee_id: int, now: datetime) -> TimeEntry:
        entry = self._find_open_entry(employee_id, now)
        if not entry:
            raise NoActiveSessionError(employee_id)
        return entry

    def _max_daily_hours(self, employee: Employee) -> Decimal:
        company = employee.company
        if company is not None and company.max_daily_hours is not None:
            return Decimal(str(company.max_daily_hours))
        return Decimal(str(settings.DEFAULT_MAX_DAILY_HOURS))

    def _recompute(self, entry: TimeEntry) -> None:
        derived = recompute_derived(
            entry.clock_in,
            entry.clock_out,
            [(b.started_at, b.ended_at) for b in entry.breaks],
            self._max_daily_hours(entry.employee),
        )
        entry.total_break_hours = derived.total_break_hours
        entry.duration_hours = derived.duration_hours
        entry.regular_hours = derived.regular_hours
        entry.bonus_hours = derived.bonus_hours

    # -- clocking -------------------------------------------------------

    def clock_in(self, employee_id: int, now: Optional[datetime] = None) -> TimeEntry:
        now = now or datetime.utcnow()
        employee = self._get_active_employee(employee_id)

        if self._find_open_entry(employee_id, now):
            raise AlreadyClockedInError(employee_id)

        entry = TimeEntry(
            employee_id=employee.id,
            company_id=employee.company_id,
            work_date=now.date(),
            clock_in=now,
            status=TimeEntryStatus.PENDING,
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent clock-in for the same day
            self.db.rollback()
            raise AlreadyClockedInError(employee_id)

        self.db.refresh(entry)
        logger.info(f"Employee {employee_id} clocked in (entry {entry.id})")
        return entry

    def clock_out(self, employee_id: int, now: Optional[datetime] = None) -> TimeEntry:
        now = now or datetime.utcnow()
        entry = self._require_open_entry(employee_id, now)

        if now <= entry.clock_in:
            raise InvalidTimeRangeError("Clock out time must be after clock in time")

        open_break = entry.open_break
        if open_break is not None:
            if now > open_break.started_at:
                open_break.ended_at = now
            else:
                entry.breaks.remove(open_break)

        entry.clock_out = now
        self._recompute(entry)
        self.db.commit()
        self.db.refresh(entry)

        logger.info(
            f"Employee {employee_id} clocked out (entry {entry.id}): "
            f"{entry.duration_hours}h worked, {entry.regular_hours}h regular, "
            f"{entry.bonus_hours}h bonus"
        )
        return entry

    def start_break(
        self,
        employee_id: int,
        category: BreakCategory = BreakCategory.REST,
        now: Optional[datetime] = None,
    ) -> TimeEntryBreak:
        now = now or datetime.utcnow()
        entry = self._require_open_entry(employee_id, now)

        if entry.open_break is not None:
            raise BreakAlreadyOpenError(entry.id)
        if now < entry.clock_in:
            raise InvalidTimeRangeError("Break cannot start before clock in")
        last_break = entry.breaks[-1] if entry.breaks else None
        if last_break is not None and now < last_break.ended_at:
            raise InvalidTimeRangeError("Break cannot start before the previous break ended")

        entry_break = TimeEntryBreak(
            position=len(entry.breaks),
            started_at=now,
            category=BreakCategory(category),
        )
        entry.breaks.append(entry_break)
        self._recompute(entry)
        self.db.commit()
        self.db.refresh(entry_break)
        return entry_break

    def end_break(self, employee_id: int, now: Optional[datetime] = None) -> TimeEntryBreak:
        now = now or datetime.utcnow()
        entry = self._require_open_entry(employee_id, now)

        entry_break = entry.open_break
        if entry_break is None:
            raise NoActiveBreakError(entry.id)
        if now <= entry_break.started_at:
            raise InvalidTimeRangeError("Break end must be after break start")

        entry_break.ended_at = now
        self._recompute(entry)
        self.db.commit()
        self.db.refresh(entry_break)
        return entry_break

    # -- review ---------------------------------------------------------

    def review(
        self,
        entry_id: int,
        reviewer_id: str,
        decision: TimeEntryStatus,
        notes: Optional[str] = None,
        company_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TimeEntry:
        """
        Approve or reject a closed, pending entry.

        Callers enforce the employer role; ``company_id`` scopes the entry to
        the reviewer's company when given.
        """
        decision = TimeEntryStatus(decision)
        if decision == TimeEntryStatus.PENDING:
            raise ValidationError("Review decision must be approved or rejected", field="decision")

        entry = self.db.query(TimeEntry).filter(TimeEntry.id == entry_id).first()
        if not entry:
            raise NotFoundError("TimeEntry", entry_id)
        if company_id is not None and entry.company_id != company_id:
            raise ForbiddenError()
        if entry.is_consumed:
            raise ConflictError(
                f"Time entry {entry_id} is already included in a payment",
                code=ErrorCodes.ENTRY_LOCKED,
            )
        if entry.status != TimeEntryStatus.PENDING:
            raise ConflictError(
                f"Time entry {entry_id} was already reviewed ({entry.status.value})",
                code=ErrorCodes.INVALID_TRANSITION,
            )
        if entry.is_open:
            raise ConflictError(
                f"Time entry {entry_id} is still open",
                code=ErrorCodes.INVALID_TRANSITION,
            )

        entry.status = decision
        entry.reviewed_by = str(reviewer_id)
        entry.reviewed_at = now or datetime.utcnow()
        if notes is not None:
            entry.notes = notes
        self.db.commit()
        self.db.refresh(entry)

        logger.info(f"Time entry {entry_id} {decision.value} by {reviewer_id}")
        return entry

    def get_clock_status(self, employee_id: int, now: Optional[datetime] = None) -> ClockStatus:
        now = now or datetime.utcnow()
        self._get_active_employee(employee_id)

        entry = self._find_open_entry(employee_id, now)
        if not entry:
            return ClockStatus(is_clocked_in=False)

        return ClockStatus(
            is_clocked_in=True,
            entry=entry,
            current_duration_hours=quantize_hours(max(Decimal(0), hours_between(entry.clock_in, now))),
            on_break=entry.open_break is not None,
        )
