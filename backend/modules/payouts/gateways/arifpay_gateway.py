# backend/modules/payouts/gateways/arifpay_gateway.py

"""
Arifpay Telebirr B2C payout gateway.

Payouts are two calls: a session is created for the amount and recipient,
then the transfer is executed against that session. Settlement arrives
later through the signed webhook.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.exceptions import (
    GatewayError,
    GatewayTimeoutError,
    SessionCreationError,
    StructuralGatewayError,
    TransientGatewayError,
)
from ..utils.retry_decorator import ErrorClassification, RetryConfig, retry_async
from .base import (
    PayoutGatewayInterface,
    PayoutSessionRequest,
    PayoutSessionResponse,
    TransferResponse,
)

logger = logging.getLogger(__name__)


class ArifpayGateway(PayoutGatewayInterface):
    """Arifpay Telebirr B2C implementation"""

    name = "arifpay"

    SESSION_ENDPOINT = "/api/Telebirr/b2c/session"
    TRANSFER_ENDPOINT = "/api/Telebirr/b2c/transfer"
    SESSION_TTL = timedelta(hours=24)

    def __init__(
        self,
        config: Dict[str, Any],
        test_mode: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config, test_mode)

        self.api_base = config.get("base_url", settings.ARIFPAY_BASE_URL).rstrip("/")
        self.merchant_key = config.get("merchant_key") or settings.ARIFPAY_MERCHANT_KEY
        if not self.merchant_key:
            raise StructuralGatewayError("Arifpay merchant key is not configured")

        self.retry_config = RetryConfig(
            max_attempts=config.get("max_attempts", settings.GATEWAY_MAX_ATTEMPTS),
            initial_delay=config.get("retry_initial_delay", settings.GATEWAY_RETRY_INITIAL_DELAY),
            max_delay=config.get("retry_max_delay", settings.GATEWAY_RETRY_MAX_DELAY),
        )

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                config.get("timeout", settings.GATEWAY_TIMEOUT_SECONDS),
                connect=config.get("connect_timeout", settings.GATEWAY_CONNECT_TIMEOUT),
            )
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def _post(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        operation: str,
    ) -> httpx.Response:
        """POST with transport-level retries; timeouts and 4xx are never retried."""
        url = f"{self.api_base}{endpoint}"

        @retry_async(self.retry_config)
        async def send() -> httpx.Response:
            try:
                response = await self.http_client.post(url, json=payload, headers=headers)
            except ErrorClassification.TRANSIENT_TRANSPORT_ERRORS as e:
                raise TransientGatewayError(
                    f"Arifpay {operation} connection failed: {type(e).__name__}"
                )
            except httpx.TimeoutException as e:
                raise GatewayTimeoutError(
                    f"Arifpay {operation} timed out ({type(e).__name__}); outcome unknown"
                )
            except httpx.TransportError as e:
                raise GatewayTimeoutError(
                    f"Arifpay {operation} transport error after send "
                    f"({type(e).__name__}); outcome unknown"
                )

            if response.status_code in ErrorClassification.TRANSIENT_STATUS_CODES:
                message = (
                    "Rate limit exceeded: Too many requests"
                    if response.status_code == 429
                    else f"Arifpay {operation} unavailable (HTTP {response.status_code})"
                )
                raise TransientGatewayError(message, http_status=response.status_code)
            return response

        return await send()

    @staticmethod
    def _error_message(response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return response.text or None
        if isinstance(data, dict):
            return data.get("message") or data.get("error")
        return None

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Dict[str, Any]:
        try:
            data = response.json() if response.content else {}
        except ValueError:
            raise GatewayError(f"Arifpay {operation} returned a non-JSON response")
        if not isinstance(data, dict):
            raise GatewayError(f"Arifpay {operation} returned an unexpected response")
        return data

    async def create_payout_session(self, request: PayoutSessionRequest) -> PayoutSessionResponse:
        expires_at = request.expires_at or (datetime.utcnow() + self.SESSION_TTL)
        payload: Dict[str, Any] = {
            "amount": self.format_amount(request.amount),
            "currency": request.currency,
            "recipient": {
                "phone": request.recipient_phone,
                "name": request.recipient_name or "Employee",
            },
            "reference": request.reference,
            "description": request.description or "Salary disbursement",
            "expire_date": expires_at.isoformat() + "Z",
        }
        if request.callback_url:
            payload["callback_url"] = request.callback_url

        headers = {
            "Authorization": f"Bearer {self.merchant_key}",
            "Content-Type": "application/json",
        }

        logger.info(f"Creating Arifpay B2C session for reference {request.reference}")
        response = await self._post(self.SESSION_ENDPOINT, payload, headers, "session creation")

        if response.status_code == 400:
            detail = self._error_message(response) or "Check amount, phone format, or duplicate reference"
            raise SessionCreationError(f"Invalid request: {detail}", http_status=400)
        if response.status_code == 401:
            raise SessionCreationError(
                "Unauthorized: Invalid API key or payouts not enabled on your account",
                http_status=401,
            )
        if 400 <= response.status_code < 500:
            raise SessionCreationError(
                f"Session creation failed: {self._error_message(response) or response.status_code}",
                http_status=response.status_code,
            )
        if response.status_code >= 500:
            raise GatewayError(
                f"Session creation failed: HTTP {response.status_code}",
                http_status=response.status_code,
            )

        data = self._json(response, "session creation")
        session_id = data.get("session_id") or data.get("sessionId")
        if not session_id:
            raise SessionCreationError("Failed to create B2C session - no session_id returned")

        logger.info(f"Arifpay B2C session {session_id} created for reference {request.reference}")
        return PayoutSessionResponse(
            session_id=str(session_id),
            status=data.get("status"),
            raw_response=data,
        )

    async def execute_transfer(self, session_id: str, recipient_address: str) -> TransferResponse:
        payload = {
            "Sessionid": session_id,
            "Phonenumber": recipient_address,
        }
        headers = {
            "Content-Type": "application/json",
            "x-arifpay-key": self.merchant_key,
        }

        logger.info(f"Executing Arifpay B2C transfer for session {session_id}")
        response = await self._post(self.TRANSFER_ENDPOINT, payload, headers, "transfer")

        if 400 <= response.status_code < 500:
            raise StructuralGatewayError(
                f"Transfer execution failed: {self._error_message(response) or response.status_code}",
                http_status=response.status_code,
            )
        if response.status_code >= 500:
            raise GatewayError(
                f"Transfer execution failed: HTTP {response.status_code}",
                http_status=response.status_code,
            )

        data = self._json(response, "transfer")
        accepted = data.get("success", True) is not False
        return TransferResponse(
            accepted=accepted,
            session_id=session_id,
            message=data.get("message"),
            raw_response=data,
        )
