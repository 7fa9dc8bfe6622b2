from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentEvent(str, Enum):
    APPROVE = "approve"
    BEGIN_DISPATCH = "begin_dispatch"
    CONFIRM_SUCCESS = "confirm_success"
    REPORT_FAILURE = "report_failure"
    REPORT_PENDING = "report_pending"
    RETRY = "retry"
    CANCEL = "cancel"
    GATEWAY_CANCEL = "gateway_cancel"


class CalculationOutcome(str, Enum):
    """Per-employee outcome of a payroll calculation run."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    LOCKED = "locked"
    ERROR = "error"
