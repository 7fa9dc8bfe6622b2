# backend/modules/payouts/gateways/__init__.py

from typing import Optional

from core.config import settings
from .base import (
    PayoutGatewayInterface,
    PayoutSessionRequest,
    PayoutSessionResponse,
    TransferResponse,
)
from .arifpay_gateway import ArifpayGateway
from .dry_run_gateway import DryRunPayoutGateway


def get_payout_gateway(merchant_key: Optional[str] = None) -> PayoutGatewayInterface:
    """Build the configured gateway for a merchant"""
    if settings.ARIFPAY_DRY_RUN:
        return DryRunPayoutGateway()
    return ArifpayGateway(
        {
            "base_url": settings.ARIFPAY_BASE_URL,
            "merchant_key": merchant_key or settings.ARIFPAY_MERCHANT_KEY,
        },
        test_mode=not settings.is_production,
    )


__all__ = [
    # Base classes
    "PayoutGatewayInterface",
    "PayoutSessionRequest",
    "PayoutSessionResponse",
    "TransferResponse",
    # Gateway implementations
    "ArifpayGateway",
    "DryRunPayoutGateway",
    "get_payout_gateway",
]
