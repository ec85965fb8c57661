from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, List, Literal, Iterator
from uuid import uuid4


ExpenseType = Literal["FIXED", "FLEXIBLE"]
RecordType = Literal["expense", "income"]
CategoryKind = Literal["fixed", "flexible", "income"]

EXPENSE_TYPES = ("FIXED", "FLEXIBLE")
CATEGORY_KINDS = ("fixed", "flexible", "income")


def new_id() -> str:
    return uuid4().hex


@dataclass
class Expense:
    amount: float
    category: str
    date: date
    description: str = ""
    type: ExpenseType = "FLEXIBLE"
    duration: int = 1
    is_archived: bool = False
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if not self.description.strip():
            self.description = self.category


@dataclass
class Income:
    amount: float
    category: str
    date: date
    description: str = ""
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if not self.description.strip():
            self.description = self.category


@dataclass
class RecurringFixedItem:
    name: str
    amount: float
    day_of_month: int = 1
    id: str = field(default_factory=new_id)


class CategorySet:
    """Ordered collection of unique category names."""

    def __init__(self, names=()):
        self._names: List[str] = []
        for name in names:
            self.add(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name) -> bool:
        return name in self._names

    def __eq__(self, other) -> bool:
        if isinstance(other, CategorySet):
            return self._names == other._names
        return NotImplemented

    def __repr__(self) -> str:
        return f"CategorySet({self._names!r})"

    @staticmethod
    def _clean(name: str) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValueError("Category name cannot be blank")
        return cleaned

    def to_list(self) -> List[str]:
        return list(self._names)

    def first(self) -> Optional[str]:
        return self._names[0] if self._names else None

    def index(self, name: str) -> int:
        try:
            return self._names.index(name)
        except ValueError:
            raise KeyError(name) from None

    def add(self, name: str) -> str:
        cleaned = self._clean(name)
        if cleaned in self._names:
            raise ValueError(f"Category already exists: {cleaned}")
        self._names.append(cleaned)
        return cleaned

    def rename(self, old: str, new: str) -> str:
        i = self.index(old)
        cleaned = self._clean(new)
        if cleaned == old:
            return cleaned
        if cleaned in self._names:
            raise ValueError(f"Category already exists: {cleaned}")
        self._names[i] = cleaned
        return cleaned

    def remove(self, name: str) -> None:
        self._names.pop(self.index(name))

    def move(self, name: str, position: int) -> None:
        """Move a category to ``position``, clamped to the list bounds."""
        self._names.pop(self.index(name))
        position = max(0, min(position, len(self._names)))
        self._names.insert(position, name)


DEFAULT_FIXED_CATEGORIES = ["Rent", "Subscriptions", "Insurance", "Internet", "Phone"]
DEFAULT_FLEXIBLE_CATEGORIES = ["Dining", "Home", "Transport", "Shopping", "Entertainment", "Skincare", "Learning"]
DEFAULT_INCOME_CATEGORIES = ["Salary", "Side job", "Bonus", "Investments", "Gifts", "Other"]


@dataclass
class Categories:
    fixed: CategorySet = field(default_factory=lambda: CategorySet(DEFAULT_FIXED_CATEGORIES))
    flexible: CategorySet = field(default_factory=lambda: CategorySet(DEFAULT_FLEXIBLE_CATEGORIES))
    income: CategorySet = field(default_factory=lambda: CategorySet(DEFAULT_INCOME_CATEGORIES))

    def for_kind(self, kind: CategoryKind) -> CategorySet:
        if kind not in CATEGORY_KINDS:
            raise ValueError(f"Unknown category kind: {kind}")
        return getattr(self, kind)


@dataclass
class BudgetSettings:
    total_budget: float = 0.0
    fixed_budget: float = 0.0
    savings_goal: float = 0.0
    month_start_day: int = 1
    settlement_time: str = "22:00"
    categories: Categories = field(default_factory=Categories)
    recurring_fixed: List[RecurringFixedItem] = field(default_factory=list)
    budget_start_date: Optional[date] = None

    @property
    def flexible_pool(self) -> float:
        # May be negative for a misconfigured budget; callers clamp results.
        return self.total_budget - self.fixed_budget - self.savings_goal

    @property
    def is_configured(self) -> bool:
        return self.total_budget != 0


def default_settings() -> BudgetSettings:
    return BudgetSettings()


@dataclass
class Ledger:
    expenses: List[Expense] = field(default_factory=list)
    incomes: List[Income] = field(default_factory=list)
    settings: BudgetSettings = field(default_factory=default_settings)
    last_settlement: Optional[date] = None
