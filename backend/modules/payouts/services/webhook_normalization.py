# backend/modules/payouts/services/webhook_normalization.py

"""
Boundary normalization of Arifpay payout callbacks.

Vendor payloads are loosely shaped: the session id may arrive as
``sessionId`` or ``uuid`` and the status may sit at the top level or under
``transaction``, in any casing. Everything past this module works with
``NormalizedPayoutEvent`` only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import ErrorCodes, ValidationError
from ...payroll.enums.payroll_enums import PaymentEvent


class VendorPayoutStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"


VENDOR_STATUS_EVENTS = {
    VendorPayoutStatus.SUCCESS: PaymentEvent.CONFIRM_SUCCESS,
    VendorPayoutStatus.PENDING: PaymentEvent.REPORT_PENDING,
    VendorPayoutStatus.FAILED: PaymentEvent.REPORT_FAILURE,
    VendorPayoutStatus.EXPIRED: PaymentEvent.REPORT_FAILURE,
    VendorPayoutStatus.UNAUTHORIZED: PaymentEvent.REPORT_FAILURE,
    VendorPayoutStatus.FORBIDDEN: PaymentEvent.REPORT_FAILURE,
    VendorPayoutStatus.CANCELED: PaymentEvent.GATEWAY_CANCEL,
    VendorPayoutStatus.CANCELLED: PaymentEvent.GATEWAY_CANCEL,
}


@dataclass(frozen=True)
class NormalizedPayoutEvent:
    session_id: str
    raw_status: str
    status: Optional[VendorPayoutStatus]
    transaction_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def event(self) -> Optional[PaymentEvent]:
        if self.status is None:
            return None
        return VENDOR_STATUS_EVENTS[self.status]

    @property
    def failure_code(self) -> Optional[str]:
        if self.event in (PaymentEvent.REPORT_FAILURE, PaymentEvent.GATEWAY_CANCEL):
            return f"VENDOR_{self.status.value}"
        return None


def _failure_reason(status: VendorPayoutStatus, payload: Dict[str, Any]) -> Optional[str]:
    if status == VendorPayoutStatus.FAILED:
        return payload.get("reason") or payload.get("message") or "B2C transfer failed"
    if status in (VendorPayoutStatus.CANCELED, VendorPayoutStatus.CANCELLED):
        return "Transaction cancelled"
    if status == VendorPayoutStatus.EXPIRED:
        return "Session expired"
    if status in (VendorPayoutStatus.UNAUTHORIZED, VendorPayoutStatus.FORBIDDEN):
        return f"Authorization error: {status.value}"
    return None


def normalize_payout_event(payload: Dict[str, Any]) -> NormalizedPayoutEvent:
    """
    Map a decoded callback body to a ``NormalizedPayoutEvent``.

    Raises ``ValidationError`` when the payload carries no session id. An
    unrecognised status yields ``status=None``.
    """
    if not isinstance(payload, dict):
        raise ValidationError(
            "Webhook payload must be a JSON object",
            code=ErrorCodes.INVALID_WEBHOOK_PAYLOAD,
            status_code=400,
        )

    session_id = payload.get("sessionId") or payload.get("uuid")
    if not session_id:
        raise ValidationError(
            "Missing session identifier",
            field="sessionId",
            code=ErrorCodes.INVALID_WEBHOOK_PAYLOAD,
            status_code=400,
        )

    transaction = payload.get("transaction")
    if not isinstance(transaction, dict):
        transaction = {}

    raw_status = str(
        payload.get("transactionStatus") or transaction.get("transactionStatus") or ""
    ).strip().upper()

    try:
        status: Optional[VendorPayoutStatus] = VendorPayoutStatus(raw_status)
    except ValueError:
        status = None

    transaction_id = transaction.get("transactionId")
    return NormalizedPayoutEvent(
        session_id=str(session_id),
        raw_status=raw_status,
        status=status,
        transaction_id=str(transaction_id) if transaction_id else None,
        reason=_failure_reason(status, payload) if status else None,
    )
