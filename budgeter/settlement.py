from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import List, Optional

from budgeter.allocation import BudgetState
from budgeter.models import Expense, Income

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass
class Receipt:
    date: date
    expenses: List[Expense] = field(default_factory=list)
    incomes: List[Income] = field(default_factory=list)
    savings: float = 0.0
    monthly_savings: float = 0.0

    @property
    def total_expense(self) -> float:
        return sum(e.amount for e in self.expenses)

    @property
    def total_income(self) -> float:
        return sum(i.amount for i in self.incomes)


def parse_settlement_time(value: str) -> time:
    """Parse an ``HH:mm`` settlement time."""
    match = _HHMM.match(value or "")
    if not match:
        raise ValueError("Settlement time must use HH:mm format, e.g. 22:00")
    return time(int(match.group(1)), int(match.group(2)))


def settlement_due(now: datetime, settlement_time: str, last_triggered: Optional[date]) -> bool:
    """True the first time ``now`` is at or past the settlement time on a given day."""
    if last_triggered == now.date():
        return False
    return now.time() >= parse_settlement_time(settlement_time)


def build_receipt(state: BudgetState) -> Receipt:
    return Receipt(
        date=state.today,
        expenses=list(state.today_expenses),
        incomes=list(state.today_incomes),
        savings=state.today_saved,
        monthly_savings=state.total_saved,
    )
