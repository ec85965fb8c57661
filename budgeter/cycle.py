from datetime import date, datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from budgeter.utils import as_date

MAX_MONTH_START_DAY = 28


def resolve_cycle(now: date | datetime, month_start_day: Optional[int] = 1) -> tuple[date, date]:
    """Return the inclusive (start, end) dates of the billing cycle containing ``now``.

    A cycle starts on ``month_start_day`` and ends the day before the same
    day of the following month. The start day is capped at 28 so every
    month has it.
    """
    start_day = month_start_day or 1
    if not 1 <= start_day <= MAX_MONTH_START_DAY:
        raise ValueError(f"Month start day must be between 1 and {MAX_MONTH_START_DAY}")

    today = as_date(now)
    cycle_start = today.replace(day=start_day)
    if cycle_start > today:
        cycle_start -= relativedelta(months=1)

    cycle_end = cycle_start + relativedelta(months=1) - timedelta(days=1)
    return cycle_start, cycle_end


def days_between(start: date, end: date) -> int:
    """Inclusive number of calendar days from start to end (0 if end < start)."""
    return max(0, (end - start).days + 1)
