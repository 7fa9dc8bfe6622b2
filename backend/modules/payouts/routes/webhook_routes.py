# backend/modules/payouts/routes/webhook_routes.py

"""
Payout callback endpoint.

Arifpay posts settlement notifications here. The body is read raw so the
HMAC signature is checked over exactly the bytes that were signed.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from ..schemas.payout_schemas import WebhookAck
from ..services.payout_orchestrator import PayoutOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payout Webhooks"])


def get_payout_orchestrator(db: Session = Depends(get_db)) -> PayoutOrchestrator:
    return PayoutOrchestrator(db)


@router.post(settings.PAYOUT_CALLBACK_PATH, response_model=WebhookAck)
async def arifpay_payout_callback(
    request: Request,
    orchestrator: PayoutOrchestrator = Depends(get_payout_orchestrator),
):
    """
    Receive an Arifpay B2C payout callback.

    ## Error Responses
    - **401**: Missing or invalid signature (generic message)
    - **400**: Malformed payload
    """
    raw_body = await request.body()
    signature = request.headers.get(settings.ARIFPAY_SIGNATURE_HEADER)
    return await orchestrator.handle_payout_callback(raw_body, signature)
