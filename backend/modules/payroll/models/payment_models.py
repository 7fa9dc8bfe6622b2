from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Numeric, Text, Enum,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin
from ..enums.payroll_enums import PaymentStatus


class Payment(Base, TimestampMixin):
    __tablename__ = "payroll_payments"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    # Hours and rate snapshot taken at calculation time
    regular_hours = Column(Numeric(8, 2), default=0, nullable=False)
    bonus_hours = Column(Numeric(8, 2), default=0, nullable=False)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    bonus_rate_multiplier = Column(Numeric(5, 2), nullable=False)

    regular_pay = Column(Numeric(12, 2), default=0, nullable=False)
    bonus_pay = Column(Numeric(12, 2), default=0, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="ETB", nullable=False)

    status = Column(
        Enum(PaymentStatus, values_callable=lambda obj: [e.value for e in obj]),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    gateway_session_id = Column(String(100), nullable=True, unique=True)
    gateway_transaction_id = Column(String(100), nullable=True)
    failure_reason = Column(Text, nullable=True)
    failure_code = Column(String(50), nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)

    approved_by = Column(String(100), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    payment_date = Column(DateTime, nullable=True)

    employee = relationship("Employee")
    time_entry_links = relationship(
        "PaymentTimeEntry",
        back_populates="payment",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "period_start", "period_end",
            name="uq_payroll_payments_employee_period",
        ),
        CheckConstraint("amount >= 0", name="ck_payroll_payments_amount_non_negative"),
        CheckConstraint(
            "retry_count >= 0 AND retry_count <= 3",
            name="ck_payroll_payments_retry_budget",
        ),
        Index("ix_payroll_payments_status_updated", "status", "updated_at"),
        Index("ix_payroll_payments_company_status", "company_id", "status"),
    )

    @property
    def time_entry_ids(self):
        return sorted(link.time_entry_id for link in self.time_entry_links)

    @property
    def gateway_reference(self) -> str:
        """Idempotency reference sent to the gateway for this attempt."""
        if self.retry_count:
            return f"{self.id}-r{self.retry_count}"
        return str(self.id)


class PaymentTimeEntry(Base):
    """Time entries consumed by a payment; an entry belongs to at most one."""

    __tablename__ = "payroll_payment_time_entries"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(
        Integer, ForeignKey("payroll_payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    time_entry_id = Column(Integer, ForeignKey("time_entries.id"), nullable=False, unique=True)

    payment = relationship("Payment", back_populates="time_entry_links")
    time_entry = relationship("TimeEntry", back_populates="payment_link")
