# backend/modules/payouts/gateways/base.py

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional


@dataclass
class PayoutSessionRequest:
    """Standard payout session request structure"""
    amount: Decimal
    recipient_phone: str
    reference: str
    currency: str = "ETB"
    recipient_name: Optional[str] = None
    description: Optional[str] = None
    callback_url: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class PayoutSessionResponse:
    """Standard payout session response structure"""
    session_id: str
    status: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


@dataclass
class TransferResponse:
    """Result of executing a transfer for a session"""
    accepted: bool
    session_id: Optional[str] = None
    message: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


class PayoutGatewayInterface(ABC):
    """Abstract interface for mobile-money payout gateways"""

    name = "base"

    def __init__(self, config: Dict[str, Any], test_mode: bool = False):
        """
        Initialize payout gateway

        Args:
            config: Gateway-specific configuration
            test_mode: Whether to use test/sandbox mode
        """
        self.config = config
        self.test_mode = test_mode

    @abstractmethod
    async def create_payout_session(self, request: PayoutSessionRequest) -> PayoutSessionResponse:
        """
        Create a payout session (phase 1)

        Raises:
            SessionCreationError: the gateway rejected the request
            TransientGatewayError: temporary failure after adapter retries
            GatewayTimeoutError: the outcome is unknown
        """
        pass

    @abstractmethod
    async def execute_transfer(self, session_id: str, recipient_address: str) -> TransferResponse:
        """
        Execute the transfer for a previously created session (phase 2)

        Acceptance only means the gateway queued the transfer; settlement is
        reported by webhook.
        """
        pass

    async def close(self) -> None:
        """Release any held connections"""
        return None

    def format_amount(self, amount: Decimal) -> str:
        """Format an amount in major units with two decimals"""
        return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
