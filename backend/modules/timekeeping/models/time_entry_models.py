from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Numeric, Text, Enum,
    CheckConstraint, Index, text,
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin
from ..enums.timekeeping_enums import TimeEntryStatus, BreakCategory


class TimeEntry(Base, TimestampMixin):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    work_date = Column(Date, nullable=False)
    clock_in = Column(DateTime, nullable=False)
    clock_out = Column(DateTime, nullable=True)

    # Derived by recompute_derived() at every mutation site
    total_break_hours = Column(Numeric(6, 2), default=0, nullable=False)
    duration_hours = Column(Numeric(6, 2), default=0, nullable=False)
    regular_hours = Column(Numeric(6, 2), default=0, nullable=False)
    bonus_hours = Column(Numeric(6, 2), default=0, nullable=False)

    status = Column(
        Enum(TimeEntryStatus, values_callable=lambda obj: [e.value for e in obj]),
        default=TimeEntryStatus.PENDING,
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    employee = relationship("Employee")
    breaks = relationship(
        "TimeEntryBreak",
        back_populates="time_entry",
        order_by="TimeEntryBreak.position",
        cascade="all, delete-orphan",
    )
    payment_link = relationship("PaymentTimeEntry", back_populates="time_entry", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "clock_out IS NULL OR clock_out > clock_in",
            name="ck_time_entries_clock_out_after_clock_in",
        ),
        # One open session per employee per calendar day
        Index(
            "uq_time_entries_open_per_day",
            "employee_id",
            "work_date",
            unique=True,
            postgresql_where=text("clock_out IS NULL"),
            sqlite_where=text("clock_out IS NULL"),
        ),
        Index("ix_time_entries_employee_clock_in", "employee_id", "clock_in"),
        Index("ix_time_entries_company_status", "company_id", "status"),
    )

    @property
    def is_open(self) -> bool:
        return self.clock_out is None

    @property
    def open_break(self):
        for entry_break in self.breaks:
            if entry_break.ended_at is None:
                return entry_break
        return None

    @property
    def is_consumed(self) -> bool:
        return self.payment_link is not None


class TimeEntryBreak(Base):
    __tablename__ = "time_entry_breaks"

    id = Column(Integer, primary_key=True, index=True)
    time_entry_id = Column(
        Integer, ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    category = Column(
        Enum(BreakCategory, values_callable=lambda obj: [e.value for e in obj]),
        default=BreakCategory.REST,
        nullable=False,
    )

    time_entry = relationship("TimeEntry", back_populates="breaks")

    __table_args__ = (
        CheckConstraint(
            "ended_at IS NULL OR ended_at > started_at",
            name="ck_time_entry_breaks_end_after_start",
        ),
    )
