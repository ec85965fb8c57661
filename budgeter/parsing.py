"""Quick-entry parsing for one-line records.

A line looks like ``35 noodles with Sam @Dining 3``: the first number is the
amount, a later number is the duration in days, ``@word`` picks the
category and everything else becomes the description.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from budgeter.amortization import days_from_input
from budgeter.models import Expense

_NUMBER = re.compile(r"^\d+(\.\d+)?$")


@dataclass
class QuickEntry:
    amount: Optional[float] = None
    category: str = ""
    description: str = ""
    duration: int = 1


def parse_line(line: str) -> QuickEntry:
    entry = QuickEntry()
    desc_parts = []

    for part in line.split():
        if part.startswith("@"):
            entry.category = part[1:]
        elif _NUMBER.match(part):
            if entry.amount is None:
                entry.amount = float(part)
            else:
                entry.duration = days_from_input(float(part))
        else:
            desc_parts.append(part)

    entry.description = " ".join(desc_parts)
    return entry


def parse_bulk(text: str, day: date, default_category: str) -> List[Expense]:
    """Build flexible expenses for ``day`` from several quick-entry lines.

    Lines without a positive amount are ignored.
    """
    expenses = []
    for line in text.splitlines():
        if not line.strip():
            continue
        entry = parse_line(line)
        if not entry.amount:
            continue
        category = entry.category or default_category
        expenses.append(Expense(
            amount=entry.amount,
            category=category,
            date=day,
            description=entry.description,
            type="FLEXIBLE",
            duration=entry.duration,
        ))
    return expenses
