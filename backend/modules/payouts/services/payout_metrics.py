# backend/modules/payouts/services/payout_metrics.py

from typing import Optional

from prometheus_client import Counter, Histogram


# Dispatch counters
payout_dispatched_total = Counter(
    "payroll_payout_dispatched_total",
    "Total number of payouts handed to the gateway",
    ["gateway"],
)

payout_dispatch_failed_total = Counter(
    "payroll_payout_dispatch_failed_total",
    "Total number of payouts that failed during dispatch",
    ["gateway", "error_code"],
)

payout_outcome_unknown_total = Counter(
    "payroll_payout_outcome_unknown_total",
    "Total number of dispatches left in processing after a gateway timeout",
    ["gateway"],
)

# Webhook counters
payout_webhook_total = Counter(
    "payroll_payout_webhook_total",
    "Total number of payout callbacks by outcome",
    ["outcome", "vendor_status"],
)

payout_webhook_rejected_total = Counter(
    "payroll_payout_webhook_rejected_total",
    "Total number of payout callbacks rejected before processing",
    ["reason"],
)

# Recovery counters
payout_recovery_total = Counter(
    "payroll_payout_recovery_total",
    "Total number of recovery actions",
    ["action", "result"],
)

# Latency histograms
payout_dispatch_duration = Histogram(
    "payroll_payout_dispatch_duration_seconds",
    "Duration of the two-phase payout dispatch",
    ["gateway"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


class PayoutMetrics:
    """Helper class for recording payout metrics"""

    @staticmethod
    def record_dispatched(gateway: str):
        payout_dispatched_total.labels(gateway=gateway).inc()

    @staticmethod
    def record_dispatch_failed(gateway: str, error_code: Optional[str] = None):
        payout_dispatch_failed_total.labels(
            gateway=gateway, error_code=error_code or "unknown"
        ).inc()

    @staticmethod
    def record_outcome_unknown(gateway: str):
        payout_outcome_unknown_total.labels(gateway=gateway).inc()

    @staticmethod
    def record_dispatch_duration(gateway: str, seconds: float):
        payout_dispatch_duration.labels(gateway=gateway).observe(seconds)

    @staticmethod
    def record_webhook(outcome: str, vendor_status: Optional[str] = None):
        payout_webhook_total.labels(
            outcome=outcome, vendor_status=vendor_status or "none"
        ).inc()

    @staticmethod
    def record_webhook_rejected(reason: str):
        payout_webhook_rejected_total.labels(reason=reason).inc()

    @staticmethod
    def record_recovery(action: str, result: str, count: int = 1):
        if count:
            payout_recovery_total.labels(action=action, result=result).inc(count)
