from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from budgeter.cycle import resolve_cycle, MAX_MONTH_START_DAY
from budgeter.models import (
    Expense, Income, ExpenseType, RecordType, CategoryKind, RecurringFixedItem, Ledger, EXPENSE_TYPES
)
from budgeter.settlement import parse_settlement_time
from budgeter.utils import as_date


def _check_amount(amount: float) -> float:
    amount = float(amount)
    if amount < 0:
        raise ValueError("Amount cannot be negative")
    return amount


def _category_or_default(ledger: Ledger, kind: CategoryKind, category: Optional[str]) -> str:
    if category:
        return category
    default = ledger.settings.categories.for_kind(kind).first()
    if default is None:
        raise ValueError(f"No {kind} categories defined")
    return default


# ===== RECORDS =====
def add_expense(
        ledger: Ledger,
        amount: float,
        t_date: date,
        category: Optional[str] = None,
        desc: str = "",
        e_type: ExpenseType = "FLEXIBLE",
        duration: int = 1,
) -> Expense:
    if e_type not in EXPENSE_TYPES:
        raise ValueError(f"Expense type must be one of {', '.join(EXPENSE_TYPES)}")
    if duration < 1:
        raise ValueError("Duration must be at least one day")

    kind = "fixed" if e_type == "FIXED" else "flexible"
    expense = Expense(
        amount=_check_amount(amount),
        category=_category_or_default(ledger, kind, category),
        date=t_date,
        description=desc,
        type=e_type,
        duration=int(duration),
    )
    return save_expense(ledger, expense)


def add_income(
        ledger: Ledger,
        amount: float,
        t_date: date,
        category: Optional[str] = None,
        desc: str = "",
) -> Income:
    income = Income(
        amount=_check_amount(amount),
        category=_category_or_default(ledger, "income", category),
        date=t_date,
        description=desc,
    )
    return save_income(ledger, income)


def save_expense(ledger: Ledger, expense: Expense) -> Expense:
    """Insert or replace an expense by id, dropping any income with that id."""
    for i, e in enumerate(ledger.expenses):
        if e.id == expense.id:
            ledger.expenses[i] = expense
            break
    else:
        ledger.expenses.insert(0, expense)

    ledger.incomes[:] = [i for i in ledger.incomes if i.id != expense.id]
    return expense


def save_income(ledger: Ledger, income: Income) -> Income:
    """Insert or replace an income by id, dropping any expense with that id."""
    for i, inc in enumerate(ledger.incomes):
        if inc.id == income.id:
            ledger.incomes[i] = income
            break
    else:
        ledger.incomes.insert(0, income)

    ledger.expenses[:] = [e for e in ledger.expenses if e.id != income.id]
    return income


def find_record(ledger: Ledger, record_id: str) -> tuple[RecordType, Expense | Income]:
    for e in ledger.expenses:
        if e.id == record_id:
            return "expense", e
    for i in ledger.incomes:
        if i.id == record_id:
            return "income", i
    raise KeyError(record_id)


def delete_record(ledger: Ledger, record_id: str, kind: Optional[RecordType] = None) -> bool:
    if kind in (None, "expense"):
        count = len(ledger.expenses)
        ledger.expenses[:] = [e for e in ledger.expenses if e.id != record_id]
        if len(ledger.expenses) != count:
            return True
    if kind in (None, "income"):
        count = len(ledger.incomes)
        ledger.incomes[:] = [i for i in ledger.incomes if i.id != record_id]
        if len(ledger.incomes) != count:
            return True
    return False


def archive_expense(ledger: Ledger, record_id: str, archived: bool = True) -> Expense:
    kind, record = find_record(ledger, record_id)
    if kind != "expense":
        raise ValueError("Only expenses can be archived")
    record.is_archived = archived
    return record


def convert_record(ledger: Ledger, record_id: str) -> Expense | Income:
    """Turn an expense into an income or back, keeping its id."""
    kind, record = find_record(ledger, record_id)
    if kind == "expense":
        income_cats = ledger.settings.categories.income
        category = record.category if record.category in income_cats else _category_or_default(
            ledger, "income", None)
        return save_income(ledger, Income(
            amount=record.amount,
            category=category,
            date=record.date,
            description=record.description,
            id=record.id,
        ))

    flexible_cats = ledger.settings.categories.flexible
    category = record.category if record.category in flexible_cats else _category_or_default(
        ledger, "flexible", None)
    return save_expense(ledger, Expense(
        amount=record.amount,
        category=category,
        date=record.date,
        description=record.description,
        id=record.id,
    ))


def records_on(ledger: Ledger, day: date) -> List[Expense | Income]:
    return [i for i in ledger.incomes if i.date == day] + [e for e in ledger.expenses if e.date == day]


@dataclass
class CycleSummary:
    cycle_start: date
    cycle_end: date
    total_expense: float = 0.0
    total_income: float = 0.0
    expenses_by_date: Dict[date, List[Expense]] = field(default_factory=dict)
    incomes_by_date: Dict[date, List[Income]] = field(default_factory=dict)


def cycle_summary(ledger: Ledger, now: date | datetime) -> CycleSummary:
    """Totals of every expense and income in the current cycle, grouped by day (newest first)."""
    start, end = resolve_cycle(now, ledger.settings.month_start_day)
    summary = CycleSummary(start, end)

    expenses = sorted((e for e in ledger.expenses if start <= e.date <= end),
                      key=lambda e: e.date, reverse=True)
    incomes = sorted((i for i in ledger.incomes if start <= i.date <= end),
                     key=lambda i: i.date, reverse=True)

    for e in expenses:
        summary.total_expense += e.amount
        summary.expenses_by_date.setdefault(e.date, []).append(e)
    for i in incomes:
        summary.total_income += i.amount
        summary.incomes_by_date.setdefault(i.date, []).append(i)

    return summary


# ===== SETTINGS =====
def configure_budget(
        ledger: Ledger,
        total_budget: float,
        savings_goal: Optional[float] = None,
        fixed_budget: Optional[float] = None,
        today: Optional[date] = None,
) -> None:
    settings = ledger.settings
    settings.total_budget = _check_amount(total_budget)
    if savings_goal is not None:
        settings.savings_goal = _check_amount(savings_goal)
    if fixed_budget is not None:
        settings.fixed_budget = _check_amount(fixed_budget)
    if settings.budget_start_date is None:
        settings.budget_start_date = as_date(today or date.today())


def set_month_start_day(ledger: Ledger, day: int) -> None:
    if not 1 <= day <= MAX_MONTH_START_DAY:
        raise ValueError(f"Month start day must be between 1 and {MAX_MONTH_START_DAY}")
    ledger.settings.month_start_day = day


def set_settlement_time(ledger: Ledger, value: str) -> None:
    parse_settlement_time(value)
    ledger.settings.settlement_time = value


def _sync_fixed_budget(ledger: Ledger) -> None:
    ledger.settings.fixed_budget = sum(item.amount for item in ledger.settings.recurring_fixed)


def add_fixed_item(ledger: Ledger, name: str, amount: float, day_of_month: int = 1) -> RecurringFixedItem:
    amount = _check_amount(amount)
    if not name or amount <= 0:
        raise ValueError("Fixed items need a name and a positive amount")
    item = RecurringFixedItem(name=name, amount=amount, day_of_month=day_of_month)
    ledger.settings.recurring_fixed.append(item)
    _sync_fixed_budget(ledger)
    return item


def remove_fixed_item(ledger: Ledger, item_id: str) -> bool:
    items = ledger.settings.recurring_fixed
    count = len(items)
    items[:] = [item for item in items if item.id != item_id]
    if len(items) == count:
        return False
    _sync_fixed_budget(ledger)
    return True


# ===== CATEGORIES =====
def add_category(ledger: Ledger, kind: CategoryKind, name: str) -> str:
    return ledger.settings.categories.for_kind(kind).add(name)


def remove_category(ledger: Ledger, kind: CategoryKind, name: str) -> None:
    # Records keep their label; it simply no longer appears in the picker.
    ledger.settings.categories.for_kind(kind).remove(name)


def move_category(ledger: Ledger, kind: CategoryKind, name: str, position: int) -> None:
    ledger.settings.categories.for_kind(kind).move(name, position)


def _records_of_kind(ledger: Ledger, kind: CategoryKind) -> List[Expense | Income]:
    if kind == "income":
        return list(ledger.incomes)
    e_type = "FIXED" if kind == "fixed" else "FLEXIBLE"
    return [e for e in ledger.expenses if e.type == e_type]


def rename_category(ledger: Ledger, kind: CategoryKind, old: str, new: str) -> int:
    """Rename a category and relabel its records. Returns the number relabelled."""
    new = ledger.settings.categories.for_kind(kind).rename(old, new)
    count = 0
    for record in _records_of_kind(ledger, kind):
        if record.category == old:
            if record.description == old:
                record.description = new
            record.category = new
            count += 1
    return count
