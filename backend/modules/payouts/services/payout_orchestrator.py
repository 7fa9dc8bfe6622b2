# backend/modules/payouts/services/payout_orchestrator.py

"""
Payout Orchestrator.

Drives an approved payment through the two-phase Telebirr B2C payout and
applies the settlement callbacks. Status changes always go through
``apply_transition``.
"""

import json
import logging
import re
import time
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import (
    ErrorCodes,
    GatewayError,
    GatewayTimeoutError,
    InvalidRecipientError,
    InvalidTransitionError,
    PayrollException,
    StaleStateError,
    ValidationError,
    WebhookSignatureError,
)
from core.webhook_security import verify_hmac_signature
from ...payroll.enums.payroll_enums import PaymentEvent, PaymentStatus
from ...payroll.models.payment_models import Payment
from ...payroll.services.payment_state_machine import apply_transition
from ..gateways import get_payout_gateway
from ..gateways.base import PayoutGatewayInterface, PayoutSessionRequest
from ..schemas.payout_schemas import WebhookAck, WebhookOutcome
from .payout_metrics import PayoutMetrics
from .webhook_normalization import NormalizedPayoutEvent, normalize_payout_event

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[Optional[str]], PayoutGatewayInterface]

# Payment status already reached for each vendor event; replays are no-ops
SETTLED_BY_EVENT = {
    PaymentEvent.CONFIRM_SUCCESS: PaymentStatus.COMPLETED,
    PaymentEvent.REPORT_FAILURE: PaymentStatus.FAILED,
    PaymentEvent.GATEWAY_CANCEL: PaymentStatus.CANCELLED,
}


class PayoutOrchestrator:
    """Two-phase payout dispatch and webhook reconciliation"""

    def __init__(
        self,
        db_session: Session,
        gateway_factory: Optional[GatewayFactory] = None,
        webhook_secret: Optional[str] = None,
        callback_url: Optional[str] = None,
    ):
        self.db = db_session
        self.gateway_factory = gateway_factory or get_payout_gateway
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.webhook_secret
        self.callback_url = callback_url or settings.payout_callback_url
        self.msisdn_pattern = re.compile(settings.TELEBIRR_MSISDN_PATTERN)

    # -- dispatch -------------------------------------------------------

    def validate_recipient(self, msisdn: Optional[str]) -> str:
        if not msisdn:
            raise InvalidRecipientError(
                "Employee Telebirr wallet number (telebirr_msisdn) is not set"
            )
        if not self.msisdn_pattern.match(msisdn):
            raise InvalidRecipientError("Invalid Telebirr phone format. Expected: 251XXXXXXXXX")
        return msisdn

    async def dispatch(self, payment: Payment) -> Payment:
        """
        Send an approved payment to the gateway.

        The approved -> processing CAS is the single dispatch gate. On a
        timeout the payment stays in processing for the stuck sweep; any
        other failure moves it to failed and is re-raised.

        Raises:
            StaleStateError: the payment was not approved any more
        """
        payment_id = payment.id
        apply_transition(self.db, payment_id, PaymentStatus.APPROVED, PaymentEvent.BEGIN_DISPATCH)
        self.db.refresh(payment)

        employee = payment.employee
        try:
            msisdn = self.validate_recipient(employee.telebirr_msisdn)
        except InvalidRecipientError as e:
            self._record_failure(payment_id, e.message, e.code)
            PayoutMetrics.record_dispatch_failed("none", e.code)
            raise

        company = employee.company
        try:
            gateway = self.gateway_factory(company.merchant_key if company else None)
        except PayrollException as e:
            self._record_failure(payment_id, e.message, e.code)
            PayoutMetrics.record_dispatch_failed("none", e.code)
            raise
        except Exception as e:
            self._record_failure(payment_id, str(e) or type(e).__name__, ErrorCodes.GATEWAY_ERROR)
            PayoutMetrics.record_dispatch_failed("none", ErrorCodes.GATEWAY_ERROR)
            raise

        started = time.monotonic()
        try:
            session = await gateway.create_payout_session(
                PayoutSessionRequest(
                    amount=payment.amount,
                    currency=payment.currency or settings.PAYOUT_CURRENCY,
                    recipient_phone=msisdn,
                    recipient_name=employee.name,
                    reference=payment.gateway_reference,
                    description="Salary disbursement",
                    callback_url=self.callback_url,
                )
            )
            self._store_session_id(payment_id, session.session_id)

            transfer = await gateway.execute_transfer(session.session_id, msisdn)
            if not transfer.accepted:
                raise GatewayError(
                    f"Transfer execution failed: {transfer.message or 'not accepted by gateway'}"
                )

            PayoutMetrics.record_dispatched(gateway.name)
            logger.info(
                f"Payout for payment {payment_id} accepted by {gateway.name} "
                f"(session {session.session_id}); awaiting confirmation"
            )
        except GatewayTimeoutError as e:
            PayoutMetrics.record_outcome_unknown(gateway.name)
            logger.warning(
                f"Payout for payment {payment_id} has an unknown outcome, "
                f"leaving it in processing: {e.message}"
            )
        except PayrollException as e:
            self._record_failure(payment_id, e.message, e.code)
            PayoutMetrics.record_dispatch_failed(gateway.name, e.code)
            raise
        except Exception as e:
            self._record_failure(payment_id, str(e) or type(e).__name__, ErrorCodes.GATEWAY_ERROR)
            PayoutMetrics.record_dispatch_failed(gateway.name, ErrorCodes.GATEWAY_ERROR)
            raise
        finally:
            PayoutMetrics.record_dispatch_duration(gateway.name, time.monotonic() - started)
            await gateway.close()

        self.db.refresh(payment)
        return payment

    def _store_session_id(self, payment_id: int, session_id: str) -> None:
        # Committed before phase 2 so a callback can always be matched
        rowcount = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PROCESSING)
            .update(
                {"gateway_session_id": session_id, "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        if rowcount == 0:
            self.db.rollback()
            raise StaleStateError("Payment", payment_id, PaymentStatus.PROCESSING)
        self.db.commit()

    def _record_failure(self, payment_id: int, reason: str, code: Optional[str]) -> None:
        try:
            apply_transition(
                self.db,
                payment_id,
                PaymentStatus.PROCESSING,
                PaymentEvent.REPORT_FAILURE,
                values={"failure_reason": reason, "failure_code": code},
            )
            logger.error(f"Payout for payment {payment_id} failed: {reason}")
        except StaleStateError:
            logger.warning(
                f"Payment {payment_id} left processing before its failure could be recorded: {reason}"
            )

    # -- callbacks ------------------------------------------------------

    async def handle_payout_callback(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Authenticate, normalize and apply a payout callback.

        Raises:
            WebhookSignatureError: before any lookup when the signature is bad
            ValidationError: the body is not a usable JSON payload
        """
        if not verify_hmac_signature(raw_body, signature, self.webhook_secret):
            PayoutMetrics.record_webhook_rejected("signature")
            raise WebhookSignatureError()

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            PayoutMetrics.record_webhook_rejected("malformed")
            raise ValidationError(
                "Malformed webhook payload",
                code=ErrorCodes.INVALID_WEBHOOK_PAYLOAD,
                status_code=400,
            )

        try:
            event = normalize_payout_event(payload)
        except ValidationError:
            PayoutMetrics.record_webhook_rejected("malformed")
            raise

        ack = self.apply_payout_event(event)
        PayoutMetrics.record_webhook(ack.outcome.value, event.raw_status or None)
        return ack

    def apply_payout_event(self, event: NormalizedPayoutEvent) -> WebhookAck:
        payment = (
            self.db.query(Payment)
            .filter(Payment.gateway_session_id == event.session_id)
            .first()
        )
        if payment is None:
            logger.error(f"Payout callback for unknown session {event.session_id}")
            return WebhookAck(outcome=WebhookOutcome.UNMATCHED, message="Payment not found")

        if event.status is None:
            logger.warning(
                f"Payout callback for payment {payment.id} has unknown status "
                f"'{event.raw_status}'; ignoring"
            )
            return WebhookAck(
                outcome=WebhookOutcome.IGNORED,
                payment_id=payment.id,
                status=payment.status,
                message=f"Unknown status: {event.raw_status}",
            )

        action = event.event
        current = payment.status

        if action == PaymentEvent.REPORT_PENDING:
            logger.info(f"Payment {payment.id} still processing at the gateway")
            return WebhookAck(outcome=WebhookOutcome.NOOP, payment_id=payment.id, status=current)

        if current == SETTLED_BY_EVENT[action]:
            logger.info(f"Duplicate {event.status.value} callback for payment {payment.id}")
            return WebhookAck(outcome=WebhookOutcome.DUPLICATE, payment_id=payment.id, status=current)

        values = {}
        if action == PaymentEvent.CONFIRM_SUCCESS:
            values = {
                "gateway_transaction_id": event.transaction_id or payment.gateway_transaction_id,
                "payment_date": datetime.utcnow(),
                "failure_reason": None,
                "failure_code": None,
            }
        else:
            values = {"failure_reason": event.reason, "failure_code": event.failure_code}

        try:
            new_status = apply_transition(
                self.db, payment.id, PaymentStatus.PROCESSING, action, values=values
            )
        except (StaleStateError, InvalidTransitionError):
            self.db.refresh(payment)
            logger.warning(
                f"Payout callback {event.status.value} for payment {payment.id} "
                f"arrived in status {payment.status.value}; dropping"
            )
            return WebhookAck(
                outcome=WebhookOutcome.STALE,
                payment_id=payment.id,
                status=payment.status,
            )

        logger.info(f"Payment {payment.id} {new_status.value} by payout callback")
        return WebhookAck(outcome=WebhookOutcome.APPLIED, payment_id=payment.id, status=new_status)
