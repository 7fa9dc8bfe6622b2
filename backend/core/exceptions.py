"""
Domain exceptions and their API rendering.

Component-level code raises these typed errors; bulk operations convert them
into result rows and the FastAPI handler below renders the rest as a
structured ErrorResponse.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    """Detailed error information"""

    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standardized error response"""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorCodes:
    """Centralized error codes"""

    # Validation errors
    VALIDATION_ERROR = "PAYROLL_VALIDATION_ERROR"
    INVALID_DATE_RANGE = "PAYROLL_INVALID_DATE_RANGE"
    INVALID_TIME_RANGE = "TIMEKEEPING_INVALID_TIME_RANGE"
    INVALID_RECIPIENT = "PAYOUT_INVALID_RECIPIENT"
    INVALID_WEBHOOK_PAYLOAD = "PAYOUT_INVALID_WEBHOOK_PAYLOAD"

    # Lookup errors
    RECORD_NOT_FOUND = "PAYROLL_RECORD_NOT_FOUND"

    # State machine / conflict errors
    CONFLICT = "PAYROLL_CONFLICT"
    INVALID_TRANSITION = "PAYROLL_INVALID_TRANSITION"
    STALE_STATE = "PAYROLL_STALE_STATE"
    PAYMENT_NOT_PENDING = "PAYROLL_PAYMENT_NOT_PENDING"
    ALREADY_CLOCKED_IN = "TIMEKEEPING_ALREADY_CLOCKED_IN"
    NO_ACTIVE_SESSION = "TIMEKEEPING_NO_ACTIVE_SESSION"
    BREAK_ALREADY_OPEN = "TIMEKEEPING_BREAK_ALREADY_OPEN"
    NO_ACTIVE_BREAK = "TIMEKEEPING_NO_ACTIVE_BREAK"
    ENTRY_LOCKED = "TIMEKEEPING_ENTRY_LOCKED"

    # Permission errors
    FORBIDDEN = "PAYROLL_FORBIDDEN"

    # Gateway errors
    GATEWAY_ERROR = "PAYOUT_GATEWAY_ERROR"
    GATEWAY_STRUCTURAL = "PAYOUT_GATEWAY_STRUCTURAL"
    SESSION_CREATION_FAILED = "PAYOUT_SESSION_CREATION_FAILED"
    GATEWAY_TRANSIENT = "PAYOUT_GATEWAY_TRANSIENT"
    GATEWAY_TIMEOUT = "PAYOUT_GATEWAY_TIMEOUT"

    # Webhook errors
    WEBHOOK_SIGNATURE_INVALID = "PAYOUT_WEBHOOK_SIGNATURE_INVALID"


class PayrollException(Exception):
    """Base exception for payroll and payout operations"""

    def __init__(
        self,
        message: str,
        code: str = ErrorCodes.CONFLICT,
        details: Optional[List[ErrorDetail]] = None,
        status_code: int = 400,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or []
        self.status_code = status_code


class ValidationError(PayrollException):
    """Malformed input; the caller's fault, no state was changed"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: str = ErrorCodes.VALIDATION_ERROR,
        status_code: int = 422,
    ):
        details = [ErrorDetail(field=field, message=message)] if field else None
        super().__init__(message=message, code=code, details=details, status_code=status_code)


class InvalidTimeRangeError(ValidationError):
    def __init__(self, message: str = "End time must be after start time"):
        super().__init__(message, field="time_range", code=ErrorCodes.INVALID_TIME_RANGE)


class InvalidRecipientError(ValidationError):
    def __init__(self, message: str):
        super().__init__(message, field="telebirr_msisdn", code=ErrorCodes.INVALID_RECIPIENT)


class NotFoundError(PayrollException):
    """Referenced entity absent"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} with identifier {identifier} not found",
            code=ErrorCodes.RECORD_NOT_FOUND,
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class ConflictError(PayrollException):
    """State-machine guard violated"""

    def __init__(self, message: str, code: str = ErrorCodes.CONFLICT):
        super().__init__(message=message, code=code, status_code=409)


class InvalidTransitionError(ConflictError):
    def __init__(self, current: Any, event: Any):
        super().__init__(
            f"Transition {getattr(event, 'value', event)} is not allowed "
            f"from status {getattr(current, 'value', current)}",
            code=ErrorCodes.INVALID_TRANSITION,
        )
        self.current = current
        self.event = event


class StaleStateError(ConflictError):
    """A compare-and-set write found the row in a different state"""

    def __init__(self, resource: str, identifier: Any, expected: Any):
        super().__init__(
            f"{resource} {identifier} is no longer {getattr(expected, 'value', expected)}",
            code=ErrorCodes.STALE_STATE,
        )


class NotPendingError(ConflictError):
    def __init__(self, payment_id: Any, status: Any):
        super().__init__(
            f"Payment {payment_id} is not approvable (status: {getattr(status, 'value', status)})",
            code=ErrorCodes.PAYMENT_NOT_PENDING,
        )


class AlreadyClockedInError(ConflictError):
    def __init__(self, employee_id: Any):
        super().__init__(
            f"Employee {employee_id} is already clocked in today",
            code=ErrorCodes.ALREADY_CLOCKED_IN,
        )


class NoActiveSessionError(ConflictError):
    def __init__(self, employee_id: Any):
        super().__init__(
            f"No active clock-in found today for employee {employee_id}",
            code=ErrorCodes.NO_ACTIVE_SESSION,
        )


class BreakAlreadyOpenError(ConflictError):
    def __init__(self, entry_id: Any):
        super().__init__(
            f"Time entry {entry_id} already has an open break",
            code=ErrorCodes.BREAK_ALREADY_OPEN,
        )


class NoActiveBreakError(ConflictError):
    def __init__(self, entry_id: Any):
        super().__init__(
            f"Time entry {entry_id} has no open break",
            code=ErrorCodes.NO_ACTIVE_BREAK,
        )


class ForbiddenError(PayrollException):
    """Cross-company access"""

    def __init__(self, message: str = "Not authorized to access this resource"):
        super().__init__(message=message, code=ErrorCodes.FORBIDDEN, status_code=403)


class GatewayError(PayrollException):
    """External payout provider failure"""

    retryable = False

    def __init__(
        self,
        message: str,
        code: str = ErrorCodes.GATEWAY_ERROR,
        http_status: Optional[int] = None,
    ):
        super().__init__(message=message, code=code, status_code=502)
        self.http_status = http_status


class StructuralGatewayError(GatewayError):
    """Bad request or auth problem at the gateway; never retried"""

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        code: str = ErrorCodes.GATEWAY_STRUCTURAL,
    ):
        super().__init__(message, code=code, http_status=http_status)


class SessionCreationError(StructuralGatewayError):
    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message, http_status=http_status, code=ErrorCodes.SESSION_CREATION_FAILED)


class TransientGatewayError(GatewayError):
    """Temporary gateway failure, eligible for retry or the stuck sweep"""

    retryable = True

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        code: str = ErrorCodes.GATEWAY_TRANSIENT,
    ):
        super().__init__(message, code=code, http_status=http_status)


class GatewayTimeoutError(TransientGatewayError):
    """The request may or may not have been executed by the gateway"""

    # Re-sending could pay twice; the stuck sweep resolves these instead.
    retryable = False

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCodes.GATEWAY_TIMEOUT)


class WebhookSignatureError(PayrollException):
    """Webhook authentication failure; the reason is only logged"""

    def __init__(self):
        super().__init__(
            message="Invalid webhook signature",
            code=ErrorCodes.WEBHOOK_SIGNATURE_INVALID,
            status_code=401,
        )


async def handle_payroll_exception(request: Request, exc: PayrollException) -> JSONResponse:
    """Render a PayrollException as an ErrorResponse"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} at {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} at {request.url.path}: {exc.message}")

    body = ErrorResponse(
        error=type(exc).__name__,
        message=exc.message,
        code=exc.code,
        details=exc.details or None,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PayrollException, handle_payroll_exception)


def error_detail_dict(exc: PayrollException) -> Dict[str, Any]:
    return {"error": type(exc).__name__, "code": exc.code, "message": exc.message}
