from .payout_schemas import (
    WebhookOutcome,
    WebhookAck,
    StuckPaymentRow,
    StuckSweepResult,
    CleanupResult,
)

__all__ = [
    "WebhookOutcome",
    "WebhookAck",
    "StuckPaymentRow",
    "StuckSweepResult",
    "CleanupResult",
]
