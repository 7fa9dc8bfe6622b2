"""
Pure hour calculations for time entries.

Every site that mutates a clock-in, clock-out or break calls
``recompute_derived`` so stored totals never drift from the raw events.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple

HOURS_QUANTUM = Decimal("0.01")
SECONDS_PER_HOUR = Decimal(3600)
ZERO = Decimal("0.00")


def quantize_hours(value: Decimal) -> Decimal:
    return Decimal(value).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def hours_between(start: datetime, end: datetime) -> Decimal:
    seconds = Decimal(str((end - start).total_seconds()))
    return seconds / SECONDS_PER_HOUR


@dataclass(frozen=True)
class DerivedHours:
    total_break_hours: Decimal
    duration_hours: Decimal
    regular_hours: Decimal
    bonus_hours: Decimal


def recompute_derived(
    clock_in: datetime,
    clock_out: Optional[datetime],
    breaks: Iterable[Tuple[datetime, Optional[datetime]]],
    max_daily_hours: Decimal,
) -> DerivedHours:
    """
    Derive break, worked, regular and bonus hours for one session.

    ``breaks`` is a sequence of ``(started_at, ended_at)`` pairs. Only closed
    breaks count; a break running past clock-out is clipped to clock-out.
    An open session reports its break total and zero worked hours.

    ``duration_hours`` is the worked time: elapsed time minus breaks. The
    daily cap applies to this single session.
    """
    cap = Decimal(str(max_daily_hours))

    total_break = Decimal(0)
    for started_at, ended_at in breaks:
        if ended_at is None:
            continue
        if clock_out is not None:
            ended_at = min(ended_at, clock_out)
        if ended_at > started_at:
            total_break += hours_between(started_at, ended_at)

    if clock_out is None:
        return DerivedHours(
            total_break_hours=quantize_hours(total_break),
            duration_hours=ZERO,
            regular_hours=ZERO,
            bonus_hours=ZERO,
        )

    worked = max(Decimal(0), hours_between(clock_in, clock_out) - total_break)
    regular = min(worked, cap)
    bonus = max(Decimal(0), worked - cap)

    return DerivedHours(
        total_break_hours=quantize_hours(total_break),
        duration_hours=quantize_hours(worked),
        regular_hours=quantize_hours(regular),
        bonus_hours=quantize_hours(bonus),
    )
