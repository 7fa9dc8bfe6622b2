# backend/modules/payouts/gateways/dry_run_gateway.py

import logging
import time
from typing import Any, Dict, Optional

from .base import (
    PayoutGatewayInterface,
    PayoutSessionRequest,
    PayoutSessionResponse,
    TransferResponse,
)

logger = logging.getLogger(__name__)


class DryRunPayoutGateway(PayoutGatewayInterface):
    """Simulates payouts without contacting Arifpay (ARIFPAY_DRY_RUN=true)"""

    name = "dry_run"

    def __init__(self, config: Optional[Dict[str, Any]] = None, test_mode: bool = True):
        super().__init__(config or {}, test_mode)

    async def create_payout_session(self, request: PayoutSessionRequest) -> PayoutSessionResponse:
        session_id = f"dryrun_{request.reference}_{int(time.time() * 1000)}"
        logger.warning(
            f"Dry-run mode: simulated B2C session {session_id} for "
            f"{self.format_amount(request.amount)} {request.currency}"
        )
        return PayoutSessionResponse(session_id=session_id, status="PENDING")

    async def execute_transfer(self, session_id: str, recipient_address: str) -> TransferResponse:
        logger.warning(f"Dry-run mode: simulated B2C transfer for session {session_id}")
        return TransferResponse(
            accepted=True,
            session_id=session_id,
            message="Dry-run mode: B2C payout simulated",
        )
