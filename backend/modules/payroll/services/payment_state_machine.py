"""
Payment lifecycle state machine.

``TRANSITIONS`` is the only place legal edges are declared and
``apply_transition`` is the only place payment status is written. Each write
is a compare-and-set UPDATE conditioned on the expected current status, so
two actors racing on the same payment cannot both succeed.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.orm import Session

from core.exceptions import InvalidTransitionError, StaleStateError
from ..enums.payroll_enums import PaymentEvent, PaymentStatus
from ..models.payment_models import Payment

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[tuple, PaymentStatus] = {
    (PaymentStatus.PENDING, PaymentEvent.APPROVE): PaymentStatus.APPROVED,
    (PaymentStatus.APPROVED, PaymentEvent.BEGIN_DISPATCH): PaymentStatus.PROCESSING,
    (PaymentStatus.PROCESSING, PaymentEvent.CONFIRM_SUCCESS): PaymentStatus.COMPLETED,
    (PaymentStatus.PROCESSING, PaymentEvent.REPORT_FAILURE): PaymentStatus.FAILED,
    (PaymentStatus.PROCESSING, PaymentEvent.REPORT_PENDING): PaymentStatus.PROCESSING,
    (PaymentStatus.PROCESSING, PaymentEvent.GATEWAY_CANCEL): PaymentStatus.CANCELLED,
    (PaymentStatus.FAILED, PaymentEvent.RETRY): PaymentStatus.PENDING,
    (PaymentStatus.PENDING, PaymentEvent.CANCEL): PaymentStatus.CANCELLED,
    (PaymentStatus.APPROVED, PaymentEvent.CANCEL): PaymentStatus.CANCELLED,
}

TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.CANCELLED})


def next_status(current: PaymentStatus, event: PaymentEvent) -> PaymentStatus:
    """Validate ``(current, event)`` and return the target status."""
    try:
        return TRANSITIONS[(PaymentStatus(current), PaymentEvent(event))]
    except (KeyError, ValueError):
        raise InvalidTransitionError(current, event)


def can_transition(current: PaymentStatus, event: PaymentEvent) -> bool:
    return (PaymentStatus(current), PaymentEvent(event)) in TRANSITIONS


def apply_transition(
    db: Session,
    payment_id: int,
    expected: PaymentStatus,
    event: PaymentEvent,
    values: Optional[Dict[str, Any]] = None,
    extra_criteria: Sequence[Any] = (),
    now: Optional[datetime] = None,
) -> PaymentStatus:
    """
    Move a payment from ``expected`` to the status ``event`` leads to.

    ``values`` are extra columns written in the same UPDATE. ``extra_criteria``
    are further WHERE clauses (e.g. the retry budget or a staleness cutoff)
    that must also hold. Self-loops such as REPORT_PENDING perform no write.

    Raises:
        InvalidTransitionError: the edge does not exist
        StaleStateError: no row matched; someone else moved the payment first
    """
    target = next_status(expected, event)
    if target == expected:
        return target

    updates: Dict[Any, Any] = {"status": target, "updated_at": now or datetime.utcnow()}
    if values:
        updates.update(values)

    rowcount = (
        db.query(Payment)
        .filter(
            Payment.id == payment_id,
            Payment.status == expected,
            *extra_criteria,
        )
        .update(updates, synchronize_session=False)
    )
    if rowcount == 0:
        db.rollback()
        raise StaleStateError("Payment", payment_id, expected)

    db.commit()
    logger.info(
        f"Payment {payment_id}: {expected.value} -> {target.value} ({PaymentEvent(event).value})"
    )
    return target
