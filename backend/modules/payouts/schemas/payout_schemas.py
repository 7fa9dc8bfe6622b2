# backend/modules/payouts/schemas/payout_schemas.py

"""
Pydantic schemas for payout dispatch, callbacks and recovery.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ...payroll.enums.payroll_enums import PaymentStatus


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOOP = "noop"
    UNMATCHED = "unmatched"
    IGNORED = "ignored"
    STALE = "stale"


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway for every valid callback"""

    acknowledged: bool = True
    outcome: WebhookOutcome
    payment_id: Optional[int] = None
    status: Optional[PaymentStatus] = None
    message: Optional[str] = None


class StuckPaymentRow(BaseModel):
    payment_id: int
    marked_failed: bool
    message: Optional[str] = None


class StuckSweepResult(BaseModel):
    threshold_hours: int
    found: int = 0
    marked_failed: int = 0
    skipped: int = 0
    results: List[StuckPaymentRow] = Field(default_factory=list)


class CleanupResult(BaseModel):
    retention_days: int
    deleted: int = 0
