"""
Pytest configuration file for backend testing.
"""
import os
import sys
from pathlib import Path

# Tests never touch the configured Postgres database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ARIFPAY_MERCHANT_KEY", "test-merchant-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

# Add the backend directory to Python path so imports work correctly
backend_dir = Path(__file__).parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.database import Base

# Import all models to register them with SQLAlchemy
from modules.staff.models import staff_models  # noqa: F401
from modules.timekeeping.models import time_entry_models  # noqa: F401
from modules.payroll.models import payment_models  # noqa: F401


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# Factories
@pytest.fixture
def company_factory(db_session):
    """Factory for persisted companies."""
    from modules.staff.enums.staff_enums import PaymentCycle
    from modules.staff.models.staff_models import Company

    def create_company(
        name: str = "Addis Coffee",
        payment_cycle: PaymentCycle = PaymentCycle.MONTHLY,
        bonus_rate_multiplier: Decimal = Decimal("1.5"),
        max_daily_hours: Decimal = Decimal("8"),
        merchant_key: str = "merchant-key",
        is_active: bool = True,
    ):
        company = Company(
            name=name,
            payment_cycle=payment_cycle,
            bonus_rate_multiplier=bonus_rate_multiplier,
            max_daily_hours=max_daily_hours,
            merchant_key=merchant_key,
            is_active=is_active,
        )
        db_session.add(company)
        db_session.commit()
        db_session.refresh(company)
        return company

    return create_company


@pytest.fixture
def employee_factory(db_session):
    """Factory for persisted employees."""
    from modules.staff.models.staff_models import Employee

    counter = {"n": 0}

    def create_employee(
        company,
        hourly_rate: Decimal = Decimal("10.00"),
        telebirr_msisdn: Optional[str] = "251911223344",
        is_active: bool = True,
        name: Optional[str] = None,
    ):
        counter["n"] += 1
        employee = Employee(
            company_id=company.id,
            name=name or f"Employee {counter['n']}",
            email=f"employee{counter['n']}@example.com",
            hourly_rate=hourly_rate,
            telebirr_msisdn=telebirr_msisdn,
            is_active=is_active,
        )
        db_session.add(employee)
        db_session.commit()
        db_session.refresh(employee)
        return employee

    return create_employee


@pytest.fixture
def time_entry_factory(db_session):
    """Factory for closed time entries with derived hours already computed."""
    from modules.timekeeping.enums.timekeeping_enums import TimeEntryStatus
    from modules.timekeeping.models.time_entry_models import TimeEntry
    from modules.timekeeping.services.calculations import recompute_derived

    def create_time_entry(
        employee,
        clock_in: datetime,
        hours: float = 8,
        status: TimeEntryStatus = TimeEntryStatus.APPROVED,
        max_daily_hours: Decimal = Decimal("8"),
    ):
        clock_out = clock_in + timedelta(hours=hours)
        derived = recompute_derived(clock_in, clock_out, [], max_daily_hours)
        entry = TimeEntry(
            employee_id=employee.id,
            company_id=employee.company_id,
            work_date=clock_in.date(),
            clock_in=clock_in,
            clock_out=clock_out,
            total_break_hours=derived.total_break_hours,
            duration_hours=derived.duration_hours,
            regular_hours=derived.regular_hours,
            bonus_hours=derived.bonus_hours,
            status=status,
        )
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry

    return create_time_entry


@pytest.fixture
def payment_factory(db_session):
    """Factory for payments in an arbitrary lifecycle state."""
    from modules.payroll.enums.payroll_enums import PaymentStatus
    from modules.payroll.models.payment_models import Payment

    def create_payment(
        employee,
        status: PaymentStatus = PaymentStatus.PENDING,
        amount: Decimal = Decimal("110.00"),
        period_start: datetime = datetime(2024, 3, 1),
        period_end: datetime = datetime(2024, 3, 31, 23, 59, 59),
        retry_count: int = 0,
        gateway_session_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        payment = Payment(
            employee_id=employee.id,
            company_id=employee.company_id,
            period_start=period_start,
            period_end=period_end,
            regular_hours=Decimal("8.00"),
            bonus_hours=Decimal("2.00"),
            hourly_rate=employee.hourly_rate,
            bonus_rate_multiplier=Decimal("1.50"),
            regular_pay=Decimal("80.00"),
            bonus_pay=Decimal("30.00"),
            amount=amount,
            currency="ETB",
            status=status,
            retry_count=retry_count,
            gateway_session_id=gateway_session_id,
        )
        if created_at is not None:
            payment.created_at = created_at
        if updated_at is not None:
            payment.updated_at = updated_at
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return create_payment


@pytest.fixture
def fake_gateway():
    """Payout gateway double; sessions are named after the reference."""
    from unittest.mock import AsyncMock, MagicMock
    from modules.payouts.gateways.base import PayoutSessionResponse, TransferResponse

    gateway = MagicMock()
    gateway.name = "fake"
    gateway.create_payout_session = AsyncMock(
        side_effect=lambda request: PayoutSessionResponse(
            session_id=f"session-{request.reference}", status="PENDING"
        )
    )
    gateway.execute_transfer = AsyncMock(
        side_effect=lambda session_id, phone: TransferResponse(accepted=True, session_id=session_id)
    )
    gateway.close = AsyncMock()
    return gateway


WEBHOOK_SECRET = "whsec-test"


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET


@pytest.fixture
def orchestrator(db_session, fake_gateway):
    from modules.payouts.services.payout_orchestrator import PayoutOrchestrator

    return PayoutOrchestrator(
        db_session,
        gateway_factory=lambda merchant_key: fake_gateway,
        webhook_secret=WEBHOOK_SECRET,
        callback_url="https://payroll.example.com/api/payments/webhook/arifpay",
    )


@pytest.fixture
def ledger(db_session, orchestrator):
    from modules.payroll.services.payment_ledger import PaymentLedger

    return PaymentLedger(db_session, orchestrator=orchestrator)


@pytest.fixture
def employer(company_factory):
    """A company together with an employer actor for it."""
    from core.auth import Actor

    company = company_factory()
    return company, Actor(user_id="employer-1", company_id=company.id)
