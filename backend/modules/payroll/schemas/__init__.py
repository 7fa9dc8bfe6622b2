from .payroll_schemas import (
    PeriodRequest,
    PayrollCalculationRequest,
    EmployeePayrollRow,
    PayrollCalculationResult,
    PaymentResponse,
    BulkApproveRequest,
    CancelPaymentRequest,
    PaymentActionResult,
    BulkActionResult,
    PayrollSummary,
)

__all__ = [
    "PeriodRequest",
    "PayrollCalculationRequest",
    "EmployeePayrollRow",
    "PayrollCalculationResult",
    "PaymentResponse",
    "BulkApproveRequest",
    "CancelPaymentRequest",
    "PaymentActionResult",
    "BulkActionResult",
    "PayrollSummary",
]
