import json
import os
from datetime import date
from pathlib import Path
from typing import Optional

from budgeter import config
from budgeter.models import (
    Expense, Income, RecurringFixedItem, BudgetSettings, Categories, CategorySet, Ledger, EXPENSE_TYPES,
    default_settings,
)
from budgeter.cycle import MAX_MONTH_START_DAY
from budgeter.settlement import parse_settlement_time
from budgeter.utils import get_logger

logger = get_logger(__name__)

FORMAT_VERSION = "2.0"


class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, CategorySet):
            return obj.to_list()
        return super().default(obj)


def _save_dir(directory: Optional[Path]) -> Path:
    return Path(directory) if directory is not None else config.DATA_DIR


def list_save_files(directory: Optional[Path] = None):
    return sorted(f.stem for f in _save_dir(directory).glob("*.json"))


def _optional_date(value):
    return date.fromisoformat(value) if value else None


def _record_id(data):
    return data.get("id") if isinstance(data, dict) else repr(data)


def settings_to_dict(settings: BudgetSettings) -> dict:
    return {
        "total_budget": settings.total_budget,
        "fixed_budget": settings.fixed_budget,
        "savings_goal": settings.savings_goal,
        "month_start_day": settings.month_start_day,
        "settlement_time": settings.settlement_time,
        "budget_start_date": settings.budget_start_date,
        "categories": {
            "fixed": settings.categories.fixed,
            "flexible": settings.categories.flexible,
            "income": settings.categories.income,
        },
        "recurring_fixed": [
            {
                "id": item.id,
                "name": item.name,
                "amount": item.amount,
                "day_of_month": item.day_of_month,
            } for item in settings.recurring_fixed
        ],
    }


def _setting(data: dict, key: str, convert, default, check=None):
    """Read one stored setting, keeping the default when it is unusable."""
    if key not in data:
        return default
    try:
        value = convert(data[key])
        if check is not None and not check(value):
            raise ValueError("out of range")
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning("Ignoring invalid setting %s=%r: %s", key, data[key], e)
        return default
    return value


def _valid_start_day(day: int) -> bool:
    return 1 <= day <= MAX_MONTH_START_DAY


def _settlement_time(value) -> str:
    parse_settlement_time(value)
    return value


def _category_set(stored: dict, kind: str, default: CategorySet) -> CategorySet:
    if kind not in stored:
        return CategorySet(default)
    names = stored[kind]
    if not isinstance(names, list):
        logger.warning("Ignoring invalid %s categories: %r", kind, names)
        return CategorySet(default)

    categories = CategorySet()
    for name in names:
        try:
            categories.add(name)
        except (AttributeError, ValueError) as e:
            logger.warning("Dropping %s category %r: %s", kind, name, e)
    return categories


def _recurring_fixed(items) -> list:
    if not isinstance(items, list):
        logger.warning("Ignoring invalid fixed items: %r", items)
        return []

    result = []
    for item in items:
        try:
            result.append(RecurringFixedItem(
                id=item["id"],
                name=item["name"],
                amount=float(item["amount"]),
                day_of_month=int(item.get("day_of_month", 1)),
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping invalid fixed item %r: %s", item, e)
    return result


def settings_from_dict(data: dict) -> BudgetSettings:
    """Build settings from stored values, falling back to defaults field by field."""
    defaults = default_settings()
    stored_cats = data.get("categories") or {}
    if not isinstance(stored_cats, dict):
        logger.warning("Ignoring invalid categories: %r", stored_cats)
        stored_cats = {}

    categories = Categories(
        fixed=_category_set(stored_cats, "fixed", defaults.categories.fixed),
        flexible=_category_set(stored_cats, "flexible", defaults.categories.flexible),
        income=_category_set(stored_cats, "income", defaults.categories.income),
    )
    return BudgetSettings(
        total_budget=_setting(data, "total_budget", float, defaults.total_budget),
        fixed_budget=_setting(data, "fixed_budget", float, defaults.fixed_budget),
        savings_goal=_setting(data, "savings_goal", float, defaults.savings_goal),
        month_start_day=_setting(data, "month_start_day", int, defaults.month_start_day, _valid_start_day),
        settlement_time=_setting(data, "settlement_time", _settlement_time, defaults.settlement_time),
        budget_start_date=_setting(data, "budget_start_date", _optional_date, defaults.budget_start_date),
        categories=categories,
        recurring_fixed=_recurring_fixed(data.get("recurring_fixed") or []),
    )


def ledger_to_dict(ledger: Ledger) -> dict:
    return {
        "metadata": {
            "version": FORMAT_VERSION,
            "saved": date.today().isoformat(),
            "last_settlement": ledger.last_settlement,
        },
        "settings": settings_to_dict(ledger.settings),
        "expenses": [
            {
                "id": e.id,
                "amount": e.amount,
                "description": e.description,
                "date": e.date,
                "type": e.type,
                "category": e.category,
                "duration": e.duration,
                "is_archived": e.is_archived,
            } for e in ledger.expenses
        ],
        "incomes": [
            {
                "id": i.id,
                "amount": i.amount,
                "description": i.description,
                "date": i.date,
                "category": i.category,
            } for i in ledger.incomes
        ],
    }


def ledger_from_dict(data: dict) -> Ledger:
    ledger = Ledger(settings=settings_from_dict(data.get("settings") or {}))
    ledger.last_settlement = _setting(data.get("metadata") or {}, "last_settlement", _optional_date, None)

    for e_data in data.get("expenses") or []:
        try:
            if e_data.get("type", "FLEXIBLE") not in EXPENSE_TYPES:
                raise ValueError(f"unknown expense type {e_data.get('type')}")
            ledger.expenses.append(Expense(
                id=e_data["id"],
                amount=float(e_data["amount"]),
                description=e_data.get("description") or "",
                date=date.fromisoformat(e_data["date"]),
                type=e_data.get("type", "FLEXIBLE"),
                category=e_data["category"],
                duration=int(e_data.get("duration", 1)),
                is_archived=bool(e_data.get("is_archived", False)),
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping invalid expense %s: %s", _record_id(e_data), e)

    expense_ids = {e.id for e in ledger.expenses}
    for i_data in data.get("incomes") or []:
        try:
            if i_data["id"] in expense_ids:
                raise ValueError("id already used by an expense")
            ledger.incomes.append(Income(
                id=i_data["id"],
                amount=float(i_data["amount"]),
                description=i_data.get("description") or "",
                date=date.fromisoformat(i_data["date"]),
                category=i_data["category"],
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping invalid income %s: %s", _record_id(i_data), e)

    return ledger


class SaveFileError(Exception):
    """A save file exists but cannot be read back."""


def save_ledger(ledger: Ledger, save_name: str = config.DEFAULT_SAVE_NAME, directory: Optional[Path] = None) -> bool:
    save_dir = _save_dir(directory)
    target = save_dir / f"{save_name}.json"
    tmp_path = save_dir / f".{save_name}.json.tmp"
    try:
        save_dir.mkdir(parents=True, exist_ok=True)
        json_str = json.dumps(ledger_to_dict(ledger), cls=EnhancedJSONEncoder, indent=2, ensure_ascii=False)
        tmp_path.write_text(json_str, encoding="utf-8")
        os.replace(tmp_path, target)
    except OSError as e:
        logger.error("Error saving '%s': %s", save_name, e)
        return False
    logger.info("Saved %d expenses and %d incomes to '%s'", len(ledger.expenses), len(ledger.incomes), save_name)
    return True


def read_ledger(save_name: str = config.DEFAULT_SAVE_NAME, directory: Optional[Path] = None) -> Ledger:
    """Load a save file. A missing one yields a fresh ledger; an unreadable one raises SaveFileError."""
    filepath = _save_dir(directory) / f"{save_name}.json"
    if not filepath.exists():
        logger.info("Save file '%s' not found, starting with default settings", save_name)
        return Ledger()

    try:
        data = json.loads(filepath.read_text(encoding="utf-8"))
        ledger = ledger_from_dict(data)
    except (OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
        raise SaveFileError(f"Cannot read save file '{save_name}': {e}") from e

    logger.info("Loaded %d expenses and %d incomes from '%s'", len(ledger.expenses), len(ledger.incomes), save_name)
    return ledger


def load_ledger(save_name: str = config.DEFAULT_SAVE_NAME, directory: Optional[Path] = None) -> Ledger:
    """Like read_ledger, but an unreadable file is logged and a fresh ledger returned."""
    try:
        return read_ledger(save_name, directory)
    except SaveFileError as e:
        logger.error("Error loading '%s': %s", save_name, e)
        return Ledger()
