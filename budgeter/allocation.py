"""Daily budget allocation.

Turns the flexible pool of a monthly budget into a rolling daily allowance
for the active billing cycle. Every figure is a pure function of the
expenses, the settings and the current calendar date.
"""

from __future__ import annotations
from dataclasses import dataclass, field, astuple
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence

from budgeter.cycle import resolve_cycle, days_between
from budgeter.models import Expense, Income, BudgetSettings, Ledger
from budgeter.utils import as_date, get_logger

logger = get_logger(__name__)


@dataclass
class BudgetState:
    today: date
    cycle_start: date
    cycle_end: date
    flexible_pool: float
    average_daily_budget: float
    daily_budget: float
    tomorrow_budget: float
    today_spent: float
    today_saved: float
    total_saved: float
    total_days: int
    days_left: int
    spent_before_today: float
    spent_including_today: float
    today_expenses: List[Expense] = field(default_factory=list)
    today_incomes: List[Income] = field(default_factory=list)

    @property
    def days_passed(self) -> int:
        return self.total_days - self.days_left + 1

    @property
    def is_over_budget(self) -> bool:
        return self.today_saved < 0


def cycle_expenses(expenses: Iterable[Expense], cycle_start: date, cycle_end: date) -> List[Expense]:
    """Flexible expenses dated inside the cycle; fixed ones never count."""
    return [
        e for e in expenses
        if e.type == "FLEXIBLE" and cycle_start <= e.date <= cycle_end
    ]


def compute_budget(
        expenses: Sequence[Expense],
        settings: BudgetSettings,
        now: date | datetime,
        incomes: Sequence[Income] = (),
) -> BudgetState:
    today = as_date(now)
    cycle_start, cycle_end = resolve_cycle(today, settings.month_start_day)
    pool = settings.flexible_pool

    in_cycle = cycle_expenses(expenses, cycle_start, cycle_end)
    spent_before_today = sum(e.amount for e in in_cycle if e.date < today)
    spent_including_today = sum(e.amount for e in in_cycle if e.date <= today)
    today_expenses = [e for e in in_cycle if e.date == today]
    today_spent = sum(e.amount for e in today_expenses)

    total_days = days_between(cycle_start, cycle_end)
    days_left = days_between(today, cycle_end)
    days_left_after_today = max(0, days_left - 1)
    average_daily_budget = pool / total_days

    if days_left > 0:
        daily_budget = max(0.0, (pool - spent_before_today) / days_left)
    else:
        daily_budget = 0.0

    if days_left_after_today > 0:
        tomorrow_budget = max(0.0, (pool - spent_including_today) / days_left_after_today)
    else:
        # Tomorrow starts a new cycle, so show the flat rate.
        tomorrow_budget = average_daily_budget

    days_passed = total_days - days_left + 1
    total_saved = average_daily_budget * days_passed - spent_including_today

    return BudgetState(
        today=today,
        cycle_start=cycle_start,
        cycle_end=cycle_end,
        flexible_pool=pool,
        average_daily_budget=average_daily_budget,
        daily_budget=daily_budget,
        tomorrow_budget=tomorrow_budget,
        today_spent=today_spent,
        today_saved=average_daily_budget - today_spent,
        total_saved=total_saved,
        total_days=total_days,
        days_left=days_left,
        spent_before_today=spent_before_today,
        spent_including_today=spent_including_today,
        today_expenses=today_expenses,
        today_incomes=[i for i in incomes if i.date == today],
    )


def _settings_key(settings: BudgetSettings) -> tuple:
    return (
        settings.total_budget,
        settings.fixed_budget,
        settings.savings_goal,
        settings.month_start_day,
    )


class BudgetEngine:
    """Recompute entry point with a single-entry memo.

    The owning application calls :meth:`recompute` after any change to the
    ledger. The result is reused only while the records, the settings that
    feed the allocation and the calendar date are all unchanged.
    """

    def __init__(self):
        self._key: Optional[tuple] = None
        self._state: Optional[BudgetState] = None

    def recompute(self, ledger: Ledger, now: date | datetime) -> BudgetState:
        today = as_date(now)
        key = (
            tuple(astuple(e) for e in ledger.expenses),
            tuple(astuple(i) for i in ledger.incomes),
            _settings_key(ledger.settings),
            today,
        )
        if key == self._key and self._state is not None:
            return self._state

        self._state = compute_budget(ledger.expenses, ledger.settings, today, ledger.incomes)
        self._key = key
        logger.debug("Recomputed budget for %s: daily=%.2f tomorrow=%.2f",
                     today, self._state.daily_budget, self._state.tomorrow_budget)
        return self._state

    def invalidate(self) -> None:
        self._key = None
        self._state = None
