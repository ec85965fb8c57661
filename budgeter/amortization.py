from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Literal, Optional

from dateutil.relativedelta import relativedelta

from budgeter.models import Expense, ExpenseType

SortMode = Literal["date", "duration", "remaining"]
DurationUnit = Literal["days", "months"]

DAYS_PER_MONTH = 30


@dataclass
class InventoryGroup:
    category: str
    items: List[Expense]

    @property
    def total(self) -> float:
        return sum(e.amount for e in self.items)


def is_amortized(expense: Expense) -> bool:
    return expense.duration > 1


def remaining_days(expense: Expense, today: date) -> int:
    """Days left in an expense's amortization window, counting today."""
    ends = expense.date + timedelta(days=expense.duration)
    return max(0, (ends - today).days)


def group_amortized(
        expenses: Iterable[Expense],
        sort_by: SortMode = "date",
        today: Optional[date] = None,
        include_archived: bool = True,
) -> Dict[str, List[Expense]]:
    """Group multi-day expenses by exact category name.

    Groups keep the order in which their categories first appear. Within a
    group items are sorted newest first ("date"), longest window first
    ("duration") or most days left first ("remaining", needs ``today``).
    """
    if sort_by == "date":
        key = lambda e: e.date
    elif sort_by == "duration":
        key = lambda e: e.duration
    elif sort_by == "remaining":
        if today is None:
            raise ValueError("Sorting by remaining duration needs today's date")
        key = lambda e: remaining_days(e, today)
    else:
        raise ValueError(f"Unknown sort mode: {sort_by}")

    groups: Dict[str, List[Expense]] = {}
    for e in expenses:
        if not is_amortized(e):
            continue
        if e.is_archived and not include_archived:
            continue
        groups.setdefault(e.category, []).append(e)

    for items in groups.values():
        items.sort(key=key, reverse=True)
    return groups


def summarize_groups(groups: Dict[str, List[Expense]]) -> List[InventoryGroup]:
    return [InventoryGroup(category, items) for category, items in groups.items()]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def days_from_input(value: float) -> int:
    """Whole days for a duration typed in days: rounded up, at least one."""
    return max(1, math.ceil(value))


def resolve_duration(start: date, value: float, unit: DurationUnit = "days") -> int:
    """Convert a duration entered in days or months into whole days.

    Months advance the calendar from ``start`` (clamping to the end of
    shorter months), then any fractional month adds ``round(F * 30)`` days.
    Day inputs are rounded up. The result is always at least one day.
    """
    if value < 0:
        raise ValueError("Duration cannot be negative")

    if unit == "days":
        return days_from_input(value)
    if unit != "months":
        raise ValueError(f"Unknown duration unit: {unit}")

    whole = math.floor(value)
    fraction = value - whole
    target = start + relativedelta(months=whole)
    if fraction > 0:
        target += timedelta(days=_round_half_up(fraction * DAYS_PER_MONTH))

    return max(1, (target - start).days)


def split_duration(days: int, expense_type: ExpenseType = "FLEXIBLE") -> tuple[float, DurationUnit]:
    """Pick the unit a stored duration is best shown in when editing."""
    monthly = expense_type == "FIXED" or (days >= 28 and days % DAYS_PER_MONTH <= 1)
    if monthly and days >= 28:
        return round(days / DAYS_PER_MONTH, 1), "months"
    return days, "days"
