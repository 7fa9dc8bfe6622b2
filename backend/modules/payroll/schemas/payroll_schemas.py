# backend/modules/payroll/schemas/payroll_schemas.py

"""
Pydantic schemas for payroll calculation and the payment ledger.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..enums.payroll_enums import CalculationOutcome, PaymentStatus


class PeriodRequest(BaseModel):
    """Inclusive period bounds"""

    period_start: datetime
    period_end: datetime

    @model_validator(mode="after")
    def validate_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self


class PayrollCalculationRequest(PeriodRequest):
    pass


class EmployeePayrollRow(BaseModel):
    """Calculation outcome for a single employee"""

    employee_id: int
    employee_name: str
    payment_id: Optional[int] = None
    regular_hours: Decimal = Decimal("0.00")
    bonus_hours: Decimal = Decimal("0.00")
    hourly_rate: Decimal = Decimal("0.00")
    bonus_rate_multiplier: Decimal = Decimal("0.00")
    regular_pay: Decimal = Decimal("0.00")
    bonus_pay: Decimal = Decimal("0.00")
    total_pay: Decimal = Decimal("0.00")
    time_entry_count: int = 0
    outcome: CalculationOutcome
    error_message: Optional[str] = None


class PayrollCalculationResult(BaseModel):
    company_id: int
    company_name: str
    period_start: datetime
    period_end: datetime
    total_employees: int
    employees_with_payments: int
    total_amount: Decimal
    results: List[EmployeePayrollRow] = Field(default_factory=list)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    company_id: int
    period_start: datetime
    period_end: datetime
    regular_hours: Decimal
    bonus_hours: Decimal
    hourly_rate: Decimal
    bonus_rate_multiplier: Decimal
    regular_pay: Decimal
    bonus_pay: Decimal
    amount: Decimal
    currency: str
    status: PaymentStatus
    gateway_session_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    retry_count: int
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    payment_date: Optional[datetime] = None
    time_entry_ids: List[int] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PaymentListResponse(BaseModel):
    """One page of a company's payments, newest first"""

    payments: List[PaymentResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class BulkApproveRequest(BaseModel):
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class CancelPaymentRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentActionResult(BaseModel):
    """Outcome of approving, dispatching or retrying one payment"""

    payment_id: int
    success: bool
    status: Optional[PaymentStatus] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class BulkActionResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[PaymentActionResult] = Field(default_factory=list)

    def add(self, row: PaymentActionResult) -> None:
        self.results.append(row)
        self.total += 1
        if row.success:
            self.succeeded += 1
        else:
            self.failed += 1


class PayrollSummary(BaseModel):
    company_id: int
    company_name: str
    period_start: datetime
    period_end: datetime
    total_employees: int
    total_payments: int
    total_amount: Decimal
    pending_payments: int
    completed_payments: int
    failed_payments: int
    by_status: Dict[str, int] = Field(default_factory=dict)
