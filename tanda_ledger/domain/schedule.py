"""Round due-date schedule derived from pool frequency"""

from datetime import date
from typing import List

from tanda_ledger.domain.models import Frequency
from tanda_ledger.utils.date_utils import add_days, add_months

_INTERVAL_DAYS = {
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}


def due_date_for_round(start_date: date, frequency: Frequency, round_number: int) -> date:
    """
    Due date for a round's contributions and payout.

    Round 1 is due one period after the pool starts, round N is due N periods
    after. Monthly periods are calendar months, so the schedule stays on the
    same day of month (clamped for short months) instead of drifting.

    Example:
        start 2026-01-31, monthly -> round 1 due 2026-02-28, round 2 due 2026-03-31
    """
    if round_number < 1:
        raise ValueError(f"round_number must be >= 1, got {round_number}")

    if frequency == Frequency.MONTHLY:
        return add_months(start_date, round_number)

    return add_days(start_date, _INTERVAL_DAYS[frequency] * round_number)


def generate_schedule(start_date: date, frequency: Frequency, total_rounds: int) -> List[date]:
    """Due dates for every round of a pool, round 1 first"""
    return [due_date_for_round(start_date, frequency, r) for r in range(1, total_rounds + 1)]
