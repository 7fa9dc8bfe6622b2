# backend/modules/payouts/tests/test_payout_orchestrator.py

"""
Tests for payout dispatch and callback reconciliation.
"""

import json
import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

from core.exceptions import (
    ErrorCodes,
    GatewayError,
    GatewayTimeoutError,
    InvalidRecipientError,
    SessionCreationError,
    StaleStateError,
    StructuralGatewayError,
    ValidationError,
    WebhookSignatureError,
)
from core.webhook_security import calculate_signature
from ...payroll.enums.payroll_enums import PaymentStatus
from ...payroll.services.payroll_calculator import PayrollCalculator
from ..gateways.base import TransferResponse
from ..schemas.payout_schemas import WebhookOutcome


def signed(payload, secret):
    body = json.dumps(payload).encode("utf-8")
    return body, calculate_signature(secret, body)


@pytest.fixture
def approved_payment(employer, employee_factory, payment_factory):
    company, _actor = employer
    return payment_factory(employee_factory(company), status=PaymentStatus.APPROVED)


@pytest.fixture
def processing_payment(employer, employee_factory, payment_factory):
    company, _actor = employer
    return payment_factory(
        employee_factory(company),
        status=PaymentStatus.PROCESSING,
        gateway_session_id="sess-processing",
    )


class TestDispatch:
    @pytest.mark.asyncio
    async def test_two_phase_dispatch(self, orchestrator, approved_payment, fake_gateway):
        payment = await orchestrator.dispatch(approved_payment)

        assert payment.status == PaymentStatus.PROCESSING
        assert payment.gateway_session_id == f"session-{payment.id}"
        request = fake_gateway.create_payout_session.await_args.args[0]
        assert request.amount == Decimal("110.00")
        assert request.reference == str(payment.id)
        assert request.recipient_phone == "251911223344"
        assert request.currency == "ETB"
        assert request.callback_url.endswith("/api/payments/webhook/arifpay")
        fake_gateway.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retry_attempt_uses_its_own_reference(
        self, orchestrator, employer, employee_factory, payment_factory, fake_gateway
    ):
        company, _actor = employer
        payment = payment_factory(
            employee_factory(company), status=PaymentStatus.APPROVED, retry_count=2
        )

        await orchestrator.dispatch(payment)

        request = fake_gateway.create_payout_session.await_args.args[0]
        assert request.reference == f"{payment.id}-r2"

    @pytest.mark.asyncio
    async def test_not_approved_is_stale(self, orchestrator, employer, employee_factory, payment_factory, fake_gateway):
        company, _actor = employer
        payment = payment_factory(employee_factory(company), status=PaymentStatus.PENDING)

        with pytest.raises(StaleStateError):
            await orchestrator.dispatch(payment)

        fake_gateway.create_payout_session.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "msisdn,message",
        [
            (None, "Employee Telebirr wallet number (telebirr_msisdn) is not set"),
            ("0911223344", "Invalid Telebirr phone format. Expected: 251XXXXXXXXX"),
            ("25191122334", "Invalid Telebirr phone format. Expected: 251XXXXXXXXX"),
        ],
    )
    async def test_invalid_recipient_fails_payment(
        self, msisdn, message, orchestrator, employer, employee_factory, payment_factory,
        fake_gateway, db_session
    ):
        company, _actor = employer
        payment = payment_factory(
            employee_factory(company, telebirr_msisdn=msisdn), status=PaymentStatus.APPROVED
        )

        with pytest.raises(InvalidRecipientError):
            await orchestrator.dispatch(payment)

        db_session.refresh(payment)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == message
        assert payment.failure_code == ErrorCodes.INVALID_RECIPIENT
        fake_gateway.create_payout_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_rejection_fails_payment(
        self, orchestrator, approved_payment, fake_gateway, db_session
    ):
        fake_gateway.create_payout_session.side_effect = SessionCreationError(
            "Unauthorized: Invalid API key or payouts not enabled on your account", http_status=401
        )

        with pytest.raises(SessionCreationError):
            await orchestrator.dispatch(approved_payment)

        db_session.refresh(approved_payment)
        assert approved_payment.status == PaymentStatus.FAILED
        assert approved_payment.failure_code == ErrorCodes.SESSION_CREATION_FAILED
        assert approved_payment.failure_reason.startswith("Unauthorized")

    @pytest.mark.asyncio
    async def test_transfer_not_accepted_fails_payment_but_keeps_session(
        self, orchestrator, approved_payment, fake_gateway, db_session
    ):
        fake_gateway.execute_transfer.side_effect = None
        fake_gateway.execute_transfer.return_value = TransferResponse(
            accepted=False, message="insufficient balance"
        )

        with pytest.raises(GatewayError):
            await orchestrator.dispatch(approved_payment)

        db_session.refresh(approved_payment)
        assert approved_payment.status == PaymentStatus.FAILED
        assert "insufficient balance" in approved_payment.failure_reason
        assert approved_payment.gateway_session_id == f"session-{approved_payment.id}"

    @pytest.mark.asyncio
    async def test_timeout_leaves_payment_processing(
        self, orchestrator, approved_payment, fake_gateway, db_session
    ):
        fake_gateway.execute_transfer.side_effect = GatewayTimeoutError(
            "Arifpay transfer timed out (ReadTimeout); outcome unknown"
        )

        payment = await orchestrator.dispatch(approved_payment)

        assert payment.status == PaymentStatus.PROCESSING
        assert payment.failure_reason is None
        assert payment.gateway_session_id == f"session-{payment.id}"
        fake_gateway.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gateway_construction_failure_fails_payment(
        self, db_session, approved_payment, webhook_secret
    ):
        from ..services.payout_orchestrator import PayoutOrchestrator

        def no_merchant_key(merchant_key):
            raise StructuralGatewayError("Arifpay merchant key is not configured")

        orchestrator = PayoutOrchestrator(
            db_session, gateway_factory=no_merchant_key, webhook_secret=webhook_secret
        )

        with pytest.raises(StructuralGatewayError):
            await orchestrator.dispatch(approved_payment)

        db_session.refresh(approved_payment)
        assert approved_payment.status == PaymentStatus.FAILED
        assert approved_payment.failure_reason == "Arifpay merchant key is not configured"
        assert approved_payment.failure_code == ErrorCodes.GATEWAY_STRUCTURAL
        assert approved_payment.gateway_session_id is None


class TestHandlePayoutCallback:
    @pytest.mark.asyncio
    async def test_success_completes_payment(
        self, orchestrator, processing_payment, webhook_secret, db_session
    ):
        body, signature = signed(
            {
                "sessionId": "sess-processing",
                "transactionStatus": "SUCCESS",
                "transaction": {"transactionId": "tx-1"},
            },
            webhook_secret,
        )

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.acknowledged
        assert ack.outcome == WebhookOutcome.APPLIED
        assert ack.status == PaymentStatus.COMPLETED
        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.COMPLETED
        assert processing_payment.gateway_transaction_id == "tx-1"
        assert processing_payment.payment_date is not None

    @pytest.mark.asyncio
    async def test_duplicate_success_is_acknowledged_noop(
        self, orchestrator, processing_payment, webhook_secret, db_session
    ):
        body, signature = signed(
            {"sessionId": "sess-processing", "transactionStatus": "SUCCESS"}, webhook_secret
        )

        first = await orchestrator.handle_payout_callback(body, signature)
        db_session.refresh(processing_payment)
        paid_at = processing_payment.payment_date
        second = await orchestrator.handle_payout_callback(body, signature)

        assert first.outcome == WebhookOutcome.APPLIED
        assert second.outcome == WebhookOutcome.DUPLICATE
        assert second.acknowledged
        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.COMPLETED
        assert processing_payment.payment_date == paid_at

    @pytest.mark.asyncio
    async def test_missing_signature_rejected_before_lookup(
        self, orchestrator, processing_payment, db_session
    ):
        body = json.dumps({"sessionId": "sess-processing", "transactionStatus": "SUCCESS"}).encode()
        orchestrator.apply_payout_event = MagicMock()

        with pytest.raises(WebhookSignatureError) as exc_info:
            await orchestrator.handle_payout_callback(body, None)

        assert exc_info.value.status_code == 401
        orchestrator.apply_payout_event.assert_not_called()
        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_wrong_signature_rejected(self, orchestrator, processing_payment, db_session):
        body, signature = signed(
            {"sessionId": "sess-processing", "transactionStatus": "SUCCESS"}, "some-other-secret"
        )

        with pytest.raises(WebhookSignatureError):
            await orchestrator.handle_payout_callback(body, signature)

        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_non_ascii_signature_is_rejected(self, orchestrator, processing_payment):
        body = json.dumps({"sessionId": "sess-processing", "transactionStatus": "SUCCESS"}).encode()

        with pytest.raises(WebhookSignatureError):
            await orchestrator.handle_payout_callback(body, "caf\u00e9")

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self, db_session, fake_gateway):
        from ..services.payout_orchestrator import PayoutOrchestrator

        orchestrator = PayoutOrchestrator(
            db_session, gateway_factory=lambda key: fake_gateway, webhook_secret=""
        )
        body = b'{"sessionId": "s", "transactionStatus": "SUCCESS"}'

        with pytest.raises(WebhookSignatureError):
            await orchestrator.handle_payout_callback(body, calculate_signature("x", body))

    @pytest.mark.asyncio
    async def test_malformed_json_is_validation_error(self, orchestrator, webhook_secret):
        body = b"{not json"

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.handle_payout_callback(body, calculate_signature(webhook_secret, body))

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_session_is_unmatched(self, orchestrator, webhook_secret):
        body, signature = signed({"sessionId": "nope", "transactionStatus": "SUCCESS"}, webhook_secret)

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.acknowledged
        assert ack.outcome == WebhookOutcome.UNMATCHED
        assert ack.payment_id is None

    @pytest.mark.asyncio
    async def test_pending_is_noop(self, orchestrator, processing_payment, webhook_secret, db_session):
        body, signature = signed(
            {"uuid": "sess-processing", "transaction": {"transactionStatus": "pending"}},
            webhook_secret,
        )

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.outcome == WebhookOutcome.NOOP
        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unknown_status_is_ignored(self, orchestrator, processing_payment, webhook_secret):
        body, signature = signed(
            {"sessionId": "sess-processing", "transactionStatus": "REVERSED"}, webhook_secret
        )

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.outcome == WebhookOutcome.IGNORED
        assert ack.status == PaymentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_failed_records_reason(self, orchestrator, processing_payment, webhook_secret, db_session):
        body, signature = signed(
            {"sessionId": "sess-processing", "transactionStatus": "FAILED", "reason": "Wallet locked"},
            webhook_secret,
        )

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.outcome == WebhookOutcome.APPLIED
        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.FAILED
        assert processing_payment.failure_reason == "Wallet locked"
        assert processing_payment.failure_code == "VENDOR_FAILED"

    @pytest.mark.asyncio
    async def test_vendor_cancel_cancels_payment(
        self, orchestrator, processing_payment, webhook_secret, db_session
    ):
        body, signature = signed(
            {"sessionId": "sess-processing", "transactionStatus": "CANCELED"}, webhook_secret
        )

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.status == PaymentStatus.CANCELLED
        db_session.refresh(processing_payment)
        assert processing_payment.status == PaymentStatus.CANCELLED
        assert processing_payment.failure_reason == "Transaction cancelled"

    @pytest.mark.asyncio
    async def test_late_success_after_sweep_is_stale(
        self, orchestrator, employer, employee_factory, payment_factory, webhook_secret, db_session
    ):
        company, _actor = employer
        payment = payment_factory(
            employee_factory(company), status=PaymentStatus.FAILED, gateway_session_id="sess-late"
        )
        body, signature = signed({"sessionId": "sess-late", "transactionStatus": "SUCCESS"}, webhook_secret)

        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.acknowledged
        assert ack.outcome == WebhookOutcome.STALE
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.FAILED


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_ten_hour_day_is_paid_110_and_completed(
        self, db_session, employer, employee_factory, time_entry_factory, ledger, orchestrator,
        webhook_secret
    ):
        company, actor = employer
        employee = employee_factory(company, hourly_rate=Decimal("10.00"))
        time_entry_factory(employee, datetime(2024, 3, 4, 9, 0), hours=10)

        result = PayrollCalculator(db_session).calculate(
            company.id, datetime(2024, 3, 1), datetime(2024, 3, 31, 23, 59, 59)
        )
        payment_id = result.results[0].payment_id
        assert result.results[0].total_pay == Decimal("110.00")

        payment = await ledger.approve(payment_id, actor)
        assert payment.status == PaymentStatus.PROCESSING

        body, signature = signed(
            {
                "sessionId": payment.gateway_session_id,
                "transactionStatus": "SUCCESS",
                "transaction": {"transactionId": "tx-e2e"},
            },
            webhook_secret,
        )
        ack = await orchestrator.handle_payout_callback(body, signature)

        assert ack.outcome == WebhookOutcome.APPLIED
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.amount == Decimal("110.00")
        assert payment.gateway_transaction_id == "tx-e2e"
