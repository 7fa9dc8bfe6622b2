from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, Enum, Boolean, CheckConstraint
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin
from ..enums.staff_enums import PaymentCycle


class Company(Base, TimestampMixin):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    payment_cycle = Column(
        Enum(PaymentCycle, values_callable=lambda obj: [e.value for e in obj]),
        default=PaymentCycle.MONTHLY,
        nullable=False,
    )
    bonus_rate_multiplier = Column(Numeric(5, 2), default=1.5, nullable=False)
    max_daily_hours = Column(Numeric(5, 2), default=8, nullable=False)
    # Per-merchant Arifpay key; falls back to ARIFPAY_MERCHANT_KEY
    merchant_key = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    employees = relationship("Employee", back_populates="company")

    __table_args__ = (
        CheckConstraint("bonus_rate_multiplier >= 1", name="ck_companies_bonus_multiplier"),
        CheckConstraint(
            "max_daily_hours >= 1 AND max_daily_hours <= 24",
            name="ck_companies_max_daily_hours",
        ),
    )


class Employee(Base, TimestampMixin):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    telebirr_msisdn = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    company = relationship("Company", back_populates="employees")

    __table_args__ = (
        CheckConstraint("hourly_rate >= 0", name="ck_employees_hourly_rate"),
    )
