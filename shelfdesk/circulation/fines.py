"""
Overdue fine calculation.

Fines are charged per started day past the due instant:
- returned on or before the due instant: nothing
- one minute late already counts as a full day
- amounts are Decimal, rounded half-up to cents
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from shelfdesk.clock import ensure_utc
from shelfdesk.circulation.errors import InvalidInputError

DEFAULT_RATE_PER_DAY = Decimal("0.50")
ZERO = Decimal("0.00")
CENT = Decimal("0.01")
ONE_DAY = timedelta(days=1)


def days_late(due_date: Optional[datetime], return_date: Optional[datetime]) -> int:
    """Started days between the due instant and the return instant."""
    if due_date is None or return_date is None:
        raise InvalidInputError(
            "Fine calculation needs both dates",
            detail=f"due_date={due_date!r}, return_date={return_date!r}",
        )

    overdue = ensure_utc(return_date) - ensure_utc(due_date)
    if overdue <= timedelta(0):
        return 0

    whole_days, remainder = divmod(overdue, ONE_DAY)
    return whole_days + 1 if remainder else whole_days


def compute_fine(
    due_date: Optional[datetime],
    return_date: Optional[datetime],
    rate_per_day: Union[Decimal, str, float] = DEFAULT_RATE_PER_DAY,
) -> Decimal:
    """
    Compute the fine for a return.

    Args:
        due_date: Instant the loan was due
        return_date: Instant the copy came back
        rate_per_day: Charge per started day late

    Returns:
        Fine amount quantised to cents
    """
    late = days_late(due_date, return_date)
    if late == 0:
        return ZERO

    rate = Decimal(str(rate_per_day))
    return (rate * late).quantize(CENT, rounding=ROUND_HALF_UP)


class FineCalculator:
    """Fine calculator bound to the configured daily rate."""

    def __init__(self, rate_per_day: Union[Decimal, str, float] = DEFAULT_RATE_PER_DAY):
        rate = Decimal(str(rate_per_day))
        if rate < 0:
            raise InvalidInputError("Fine rate cannot be negative", detail=str(rate))
        self.rate_per_day = rate

    def compute(self, due_date: datetime, return_date: datetime) -> Decimal:
        return compute_fine(due_date, return_date, self.rate_per_day)

    def days_late(self, due_date: datetime, return_date: datetime) -> int:
        return days_late(due_date, return_date)
