import io
import json
import tempfile
import unittest
from datetime import date, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

from dateutil.relativedelta import relativedelta

from budgeter.models import (
    Expense, Income, BudgetSettings, CategorySet, Ledger, default_settings
)
from budgeter.cycle import resolve_cycle, days_between
from budgeter.allocation import compute_budget, BudgetEngine
from budgeter.amortization import (
    group_amortized, summarize_groups, remaining_days, resolve_duration, split_duration
)
from budgeter.logic import (
    add_expense, add_income, save_expense, save_income, find_record, delete_record,
    archive_expense, convert_record, records_on, cycle_summary, configure_budget,
    set_month_start_day, set_settlement_time, add_fixed_item, remove_fixed_item,
    add_category, remove_category, rename_category, move_category
)
from budgeter.parsing import parse_line, parse_bulk
from budgeter.settlement import settlement_due, build_receipt, parse_settlement_time
from budgeter import config
from budgeter.storage import save_ledger, load_ledger, read_ledger, list_save_files, SaveFileError
from budgeter.cli import BudgetCLI


def flexible(amount, day, category="Dining", **kwargs):
    return Expense(amount=amount, category=category, date=day, **kwargs)


def budget(total, fixed=0.0, savings=0.0, start_day=1):
    return BudgetSettings(total_budget=total, fixed_budget=fixed, savings_goal=savings, month_start_day=start_day)


class TestModels(unittest.TestCase):
    def test_expense_defaults(self):
        """Blank descriptions fall back to the category"""
        e = Expense(amount=12.5, category="Dining", date=date(2024, 1, 1))
        self.assertEqual(e.description, "Dining")
        self.assertEqual(e.type, "FLEXIBLE")
        self.assertEqual(e.duration, 1)
        self.assertFalse(e.is_archived)
        self.assertTrue(e.id)

    def test_ids_are_unique(self):
        a = Income(amount=1, category="Salary", date=date(2024, 1, 1))
        b = Income(amount=1, category="Salary", date=date(2024, 1, 1))
        self.assertNotEqual(a.id, b.id)

    def test_default_settings(self):
        s = default_settings()
        self.assertEqual(s.total_budget, 0)
        self.assertFalse(s.is_configured)
        self.assertEqual(s.month_start_day, 1)
        self.assertEqual(s.settlement_time, "22:00")
        self.assertEqual(s.categories.flexible.first(), "Dining")

    def test_flexible_pool_is_not_clamped(self):
        self.assertEqual(budget(1000, fixed=800, savings=500).flexible_pool, -300)

    def test_category_set_uniqueness(self):
        cats = CategorySet(["Food", "Rent"])
        self.assertEqual(cats.add("  Travel "), "Travel")
        self.assertEqual(cats.to_list(), ["Food", "Rent", "Travel"])
        with self.assertRaises(ValueError):
            cats.add("Food")
        with self.assertRaises(ValueError):
            cats.add("   ")
        with self.assertRaises(ValueError):
            CategorySet(["A", "A"])

    def test_category_set_rename_remove_move(self):
        cats = CategorySet(["A", "B", "C"])
        cats.rename("B", "Bee")
        self.assertEqual(cats.to_list(), ["A", "Bee", "C"])
        with self.assertRaises(ValueError):
            cats.rename("A", "C")
        with self.assertRaises(KeyError):
            cats.remove("Z")

        cats.move("C", 0)
        self.assertEqual(cats.to_list(), ["C", "A", "Bee"])
        cats.move("C", 99)
        self.assertEqual(cats.to_list(), ["A", "Bee", "C"])

        cats.remove("A")
        self.assertNotIn("A", cats)
        self.assertEqual(len(cats), 2)


class TestCycle(unittest.TestCase):
    def test_cycle_from_first_of_month(self):
        self.assertEqual(resolve_cycle(date(2024, 1, 10), 1), (date(2024, 1, 1), date(2024, 1, 31)))

    def test_cycle_not_started_this_month(self):
        start, end = resolve_cycle(date(2023, 3, 10), 15)
        self.assertEqual((start, end), (date(2023, 2, 15), date(2023, 3, 14)))
        self.assertEqual(days_between(start, end), 28)

    def test_cycle_starts_today(self):
        self.assertEqual(resolve_cycle(date(2024, 5, 20), 20), (date(2024, 5, 20), date(2024, 6, 19)))

    def test_cycle_across_year_end(self):
        self.assertEqual(resolve_cycle(date(2023, 1, 5), 10), (date(2022, 12, 10), date(2023, 1, 9)))

    def test_time_of_day_is_ignored(self):
        self.assertEqual(resolve_cycle(datetime(2024, 2, 29, 23, 59), 1), (date(2024, 2, 1), date(2024, 2, 29)))

    def test_start_day_bounds(self):
        self.assertEqual(resolve_cycle(date(2024, 1, 10), 0), (date(2024, 1, 1), date(2024, 1, 31)))
        with self.assertRaises(ValueError):
            resolve_cycle(date(2024, 1, 10), 29)
        with self.assertRaises(ValueError):
            resolve_cycle(date(2024, 1, 10), -1)

    def test_containment_and_length(self):
        """Every day of a leap year lies in its cycle, whose length matches the calendar"""
        for start_day in range(1, 29):
            day = date(2024, 1, 1)
            while day.year == 2024:
                start, end = resolve_cycle(day, start_day)
                self.assertTrue(start <= day <= end)
                self.assertEqual(start.day, start_day)
                total = days_between(start, end)
                self.assertEqual(total, (start + relativedelta(months=1) - start).days)
                self.assertTrue(28 <= total <= 31)
                day += timedelta(days=1)

    def test_days_between(self):
        self.assertEqual(days_between(date(2024, 1, 1), date(2024, 1, 1)), 1)
        self.assertEqual(days_between(date(2024, 1, 10), date(2024, 1, 31)), 22)
        self.assertEqual(days_between(date(2024, 2, 1), date(2024, 1, 31)), 0)


class TestAllocation(unittest.TestCase):
    def setUp(self):
        self.settings = budget(3100)
        self.today = date(2024, 1, 10)

    def test_no_spending(self):
        state = compute_budget([], self.settings, self.today)
        self.assertEqual(state.cycle_start, date(2024, 1, 1))
        self.assertEqual(state.cycle_end, date(2024, 1, 31))
        self.assertEqual(state.total_days, 31)
        self.assertEqual(state.days_left, 22)
        self.assertEqual(state.average_daily_budget, 100)
        self.assertAlmostEqual(state.daily_budget, 3100 / 22)
        self.assertAlmostEqual(round(state.daily_budget, 2), 140.91)
        self.assertAlmostEqual(state.tomorrow_budget, 3100 / 21)
        self.assertEqual(state.today_spent, 0)
        self.assertEqual(state.today_saved, 100)

    def test_rolling_daily_budget(self):
        expenses = [flexible(200, date(2024, 1, 5)), flexible(50, date(2024, 1, 10))]
        state = compute_budget(expenses, self.settings, self.today)

        self.assertEqual(state.spent_before_today, 200)
        self.assertEqual(state.spent_including_today, 250)
        self.assertAlmostEqual(state.daily_budget, 2900 / 22)
        self.assertAlmostEqual(round(state.daily_budget, 2), 131.82)
        self.assertAlmostEqual(state.tomorrow_budget, 2850 / 21)
        self.assertEqual(state.today_spent, 50)
        self.assertEqual(state.today_saved, 50)
        self.assertEqual(state.days_passed, 10)
        self.assertEqual(state.total_saved, 100 * 10 - 250)
        self.assertEqual([e.amount for e in state.today_expenses], [50])
        self.assertFalse(state.is_over_budget)

    def test_fixed_and_out_of_cycle_expenses_excluded(self):
        expenses = [
            flexible(999, date(2024, 1, 3), type="FIXED", category="Rent"),
            flexible(500, date(2023, 12, 31)),
            flexible(500, date(2024, 2, 1)),
            flexible(40, date(2024, 1, 10), type="FIXED", category="Rent"),
        ]
        state = compute_budget(expenses, self.settings, self.today)
        self.assertEqual(state.spent_including_today, 0)
        self.assertEqual(state.today_spent, 0)
        self.assertEqual(state.today_expenses, [])
        self.assertAlmostEqual(state.daily_budget, 3100 / 22)

    def test_future_expenses_in_cycle_do_not_count_yet(self):
        state = compute_budget([flexible(300, date(2024, 1, 20))], self.settings, self.today)
        self.assertEqual(state.spent_including_today, 0)
        self.assertAlmostEqual(state.daily_budget, 3100 / 22)

    def test_overspend_clamps_budgets_not_savings(self):
        settings = budget(100)
        today = date(2023, 2, 10)
        expenses = [flexible(150, date(2023, 2, 3)), flexible(20, today)]
        state = compute_budget(expenses, settings, today)

        self.assertEqual(state.daily_budget, 0)
        self.assertEqual(state.tomorrow_budget, 0)
        self.assertLess(state.today_saved, 0)
        self.assertTrue(state.is_over_budget)
        self.assertLess(state.total_saved, 0)

    def test_negative_pool(self):
        settings = budget(1000, fixed=900, savings=400)
        state = compute_budget([], settings, self.today)
        self.assertEqual(state.flexible_pool, -300)
        self.assertEqual(state.daily_budget, 0)
        self.assertEqual(state.tomorrow_budget, 0)
        self.assertLess(state.today_saved, 0)

    def test_last_day_of_cycle_falls_back_to_average(self):
        expenses = [flexible(3000, date(2024, 1, 2))]
        state = compute_budget(expenses, self.settings, date(2024, 1, 31))
        self.assertEqual(state.days_left, 1)
        self.assertEqual(state.tomorrow_budget, 3100 / 31)
        self.assertAlmostEqual(state.daily_budget, 100)

    def test_conservation(self):
        expenses = [
            flexible(12.5, date(2024, 1, 1)),
            flexible(30, date(2024, 1, 9)),
            flexible(7.25, date(2024, 1, 10)),
            flexible(4, date(2024, 1, 10)),
            flexible(80, date(2024, 1, 11)),
        ]
        state = compute_budget(expenses, self.settings, self.today)
        self.assertLessEqual(state.spent_before_today, state.spent_including_today)
        self.assertAlmostEqual(state.spent_including_today - state.spent_before_today, state.today_spent)
        self.assertAlmostEqual(state.today_spent, 11.25)

    def test_non_negative_budgets(self):
        for total in (-500, 0, 50, 3100):
            for spent in (0, 100, 10000):
                state = compute_budget([flexible(spent, date(2024, 1, 2))], budget(total), self.today)
                self.assertGreaterEqual(state.daily_budget, 0)
                self.assertGreaterEqual(state.tomorrow_budget, 0)

    def test_inputs_not_mutated(self):
        expenses = [flexible(20, date(2024, 1, 10)), flexible(5, date(2024, 1, 2))]
        snapshot = [(e.id, e.amount, e.date) for e in expenses]
        compute_budget(expenses, self.settings, self.today)
        self.assertEqual([(e.id, e.amount, e.date) for e in expenses], snapshot)
        self.assertEqual(self.settings.total_budget, 3100)

    def test_today_incomes(self):
        incomes = [
            Income(amount=500, category="Salary", date=self.today),
            Income(amount=80, category="Gifts", date=date(2024, 1, 2)),
        ]
        state = compute_budget([], self.settings, datetime(2024, 1, 10, 8, 30), incomes)
        self.assertEqual([i.amount for i in state.today_incomes], [500])

    def test_engine_memoizes_until_inputs_change(self):
        ledger = Ledger(settings=budget(3100))
        engine = BudgetEngine()
        first = engine.recompute(ledger, datetime(2024, 1, 10, 9))
        self.assertIs(engine.recompute(ledger, datetime(2024, 1, 10, 21)), first)

        ledger.expenses.append(flexible(100, date(2024, 1, 10)))
        second = engine.recompute(ledger, self.today)
        self.assertIsNot(second, first)
        self.assertEqual(second.today_spent, 100)

        ledger.expenses[0].amount = 60
        self.assertEqual(engine.recompute(ledger, self.today).today_spent, 60)

        ledger.settings.savings_goal = 310
        self.assertAlmostEqual(engine.recompute(ledger, self.today).average_daily_budget, 90)

        self.assertEqual(engine.recompute(ledger, date(2024, 1, 11)).today, date(2024, 1, 11))


class TestAmortization(unittest.TestCase):
    def setUp(self):
        self.expenses = [
            flexible(10, date(2024, 1, 1)),
            flexible(120, date(2024, 1, 5), category="Skincare", duration=90),
            flexible(60, date(2024, 2, 1), category="Skincare", duration=30),
            flexible(15, date(2024, 1, 20), category="skincare", duration=7),
            flexible(12, date(2024, 1, 3), category="Subscriptions", type="FIXED", duration=31,
                     is_archived=True),
        ]

    def test_only_multi_day_expenses_are_grouped(self):
        groups = group_amortized(self.expenses)
        self.assertEqual(list(groups), ["Skincare", "skincare", "Subscriptions"])
        self.assertNotIn("Dining", groups)
        for items in groups.values():
            for e in items:
                self.assertGreater(e.duration, 1)

    def test_sort_by_date(self):
        groups = group_amortized(self.expenses, sort_by="date")
        self.assertEqual([e.date for e in groups["Skincare"]], [date(2024, 2, 1), date(2024, 1, 5)])

    def test_sort_by_duration(self):
        groups = group_amortized(self.expenses, sort_by="duration")
        self.assertEqual([e.duration for e in groups["Skincare"]], [90, 30])

    def test_sort_by_remaining(self):
        expenses = [
            flexible(1, date(2024, 1, 1), category="Pantry", duration=40),
            flexible(1, date(2024, 1, 25), category="Pantry", duration=20),
        ]
        groups = group_amortized(expenses, sort_by="remaining", today=date(2024, 2, 1))
        self.assertEqual([e.duration for e in groups["Pantry"]], [20, 40])
        with self.assertRaises(ValueError):
            group_amortized(expenses, sort_by="remaining")
        with self.assertRaises(ValueError):
            group_amortized(expenses, sort_by="price")

    def test_remaining_days(self):
        e = flexible(1, date(2024, 1, 1), duration=10)
        self.assertEqual(remaining_days(e, date(2024, 1, 1)), 10)
        self.assertEqual(remaining_days(e, date(2024, 1, 8)), 3)
        self.assertEqual(remaining_days(e, date(2024, 3, 1)), 0)

    def test_archived_items(self):
        self.assertNotIn("Subscriptions", group_amortized(self.expenses, include_archived=False))

    def test_summarize_groups(self):
        summary = {g.category: g for g in summarize_groups(group_amortized(self.expenses))}
        self.assertEqual(summary["Skincare"].total, 180)
        self.assertEqual(len(summary["Skincare"].items), 2)

    def test_resolve_duration_clamps_month_end(self):
        self.assertEqual(resolve_duration(date(2023, 1, 31), 1, "months"), 28)
        self.assertEqual(resolve_duration(date(2024, 1, 31), 1, "months"), 29)

    def test_resolve_duration_fractional_months(self):
        # Feb 1 plus 15 days
        self.assertEqual(resolve_duration(date(2023, 1, 1), 1.5, "months"), 46)
        self.assertEqual(resolve_duration(date(2023, 1, 1), 0.05, "months"), 2)
        self.assertEqual(resolve_duration(date(2023, 1, 1), 12, "months"), 365)

    def test_resolve_duration_days(self):
        self.assertEqual(resolve_duration(date(2023, 1, 1), 5, "days"), 5)
        self.assertEqual(resolve_duration(date(2023, 1, 1), 2.3, "days"), 3)
        self.assertEqual(resolve_duration(date(2023, 1, 1), 0.1, "days"), 1)
        self.assertEqual(resolve_duration(date(2023, 1, 1), 0, "months"), 1)
        with self.assertRaises(ValueError):
            resolve_duration(date(2023, 1, 1), 3, "weeks")
        with self.assertRaises(ValueError):
            resolve_duration(date(2023, 1, 1), -1, "days")

    def test_split_duration(self):
        self.assertEqual(split_duration(30), (1.0, "months"))
        self.assertEqual(split_duration(91), (3.0, "months"))
        self.assertEqual(split_duration(45), (45, "days"))
        self.assertEqual(split_duration(10, "FIXED"), (10, "days"))
        self.assertEqual(split_duration(45, "FIXED"), (1.5, "months"))


class TestLogic(unittest.TestCase):
    def setUp(self):
        self.ledger = Ledger(settings=default_settings())
        self.day = date(2024, 1, 10)

    def test_add_expense_defaults(self):
        e = add_expense(self.ledger, 25, self.day)
        self.assertEqual(e.category, "Dining")
        self.assertEqual(e.description, "Dining")
        self.assertEqual(self.ledger.expenses, [e])

        fixed = add_expense(self.ledger, 900, self.day, e_type="FIXED")
        self.assertEqual(fixed.category, "Rent")
        self.assertEqual(self.ledger.expenses[0], fixed)

    def test_add_expense_validation(self):
        with self.assertRaises(ValueError):
            add_expense(self.ledger, -5, self.day)
        with self.assertRaises(ValueError):
            add_expense(self.ledger, 5, self.day, e_type="OTHER")
        with self.assertRaises(ValueError):
            add_expense(self.ledger, 5, self.day, duration=0)
        self.assertEqual(self.ledger.expenses, [])

    def test_add_income(self):
        i = add_income(self.ledger, 3000, self.day, desc="January pay")
        self.assertEqual(i.category, "Salary")
        self.assertEqual(i.description, "January pay")
        self.assertEqual(find_record(self.ledger, i.id), ("income", i))

    def test_save_replaces_by_id(self):
        e = add_expense(self.ledger, 25, self.day)
        save_expense(self.ledger, Expense(amount=30, category="Home", date=self.day, id=e.id))
        self.assertEqual(len(self.ledger.expenses), 1)
        self.assertEqual(self.ledger.expenses[0].amount, 30)

    def test_id_never_in_both_sets(self):
        e = add_expense(self.ledger, 25, self.day)
        save_income(self.ledger, Income(amount=25, category="Other", date=self.day, id=e.id))
        self.assertEqual(self.ledger.expenses, [])
        self.assertEqual(len(self.ledger.incomes), 1)

        save_expense(self.ledger, Expense(amount=25, category="Dining", date=self.day, id=e.id))
        self.assertEqual(self.ledger.incomes, [])
        self.assertEqual(len(self.ledger.expenses), 1)

    def test_convert_record(self):
        e = add_expense(self.ledger, 25, self.day, category="Dining", desc="refund")
        income = convert_record(self.ledger, e.id)
        self.assertIsInstance(income, Income)
        self.assertEqual(income.category, "Salary")
        self.assertEqual(income.description, "refund")
        self.assertEqual(self.ledger.expenses, [])

        expense = convert_record(self.ledger, e.id)
        self.assertIsInstance(expense, Expense)
        self.assertEqual(expense.category, "Dining")
        self.assertEqual(self.ledger.incomes, [])

    def test_delete_record(self):
        e = add_expense(self.ledger, 25, self.day)
        i = add_income(self.ledger, 100, self.day)
        self.assertFalse(delete_record(self.ledger, e.id, "income"))
        self.assertTrue(delete_record(self.ledger, e.id))
        self.assertTrue(delete_record(self.ledger, i.id, "income"))
        self.assertFalse(delete_record(self.ledger, "missing"))
        with self.assertRaises(KeyError):
            find_record(self.ledger, e.id)

    def test_archive_expense(self):
        e = add_expense(self.ledger, 120, self.day, category="Skincare", duration=90)
        archive_expense(self.ledger, e.id)
        self.assertTrue(e.is_archived)
        archive_expense(self.ledger, e.id, archived=False)
        self.assertFalse(e.is_archived)
        i = add_income(self.ledger, 1, self.day)
        with self.assertRaises(ValueError):
            archive_expense(self.ledger, i.id)

    def test_records_on(self):
        add_expense(self.ledger, 5, self.day)
        add_expense(self.ledger, 6, date(2024, 1, 9))
        add_income(self.ledger, 7, self.day)
        self.assertEqual([r.amount for r in records_on(self.ledger, self.day)], [7, 5])

    def test_cycle_summary(self):
        add_expense(self.ledger, 5, date(2024, 1, 2))
        add_expense(self.ledger, 6, date(2024, 1, 9))
        add_expense(self.ledger, 900, date(2024, 1, 1), e_type="FIXED")
        add_expense(self.ledger, 50, date(2023, 12, 31))
        add_income(self.ledger, 3000, date(2024, 1, 1))

        summary = cycle_summary(self.ledger, self.day)
        self.assertEqual((summary.cycle_start, summary.cycle_end), (date(2024, 1, 1), date(2024, 1, 31)))
        self.assertEqual(summary.total_expense, 911)
        self.assertEqual(summary.total_income, 3000)
        self.assertEqual(list(summary.expenses_by_date), [date(2024, 1, 9), date(2024, 1, 2), date(2024, 1, 1)])

    def test_configure_budget(self):
        configure_budget(self.ledger, 5000, savings_goal=500, today=self.day)
        s = self.ledger.settings
        self.assertTrue(s.is_configured)
        self.assertEqual(s.flexible_pool, 4500)
        self.assertEqual(s.budget_start_date, self.day)

        configure_budget(self.ledger, 6000, today=date(2024, 2, 1))
        self.assertEqual(s.savings_goal, 500)
        self.assertEqual(s.budget_start_date, self.day)

    def test_fixed_items_drive_fixed_budget(self):
        rent = add_fixed_item(self.ledger, "Rent", 1200)
        add_fixed_item(self.ledger, "Phone", 30)
        self.assertEqual(self.ledger.settings.fixed_budget, 1230)
        self.assertTrue(remove_fixed_item(self.ledger, rent.id))
        self.assertEqual(self.ledger.settings.fixed_budget, 30)
        self.assertFalse(remove_fixed_item(self.ledger, rent.id))
        with self.assertRaises(ValueError):
            add_fixed_item(self.ledger, "Gym", 0)

    def test_settings_validation(self):
        set_month_start_day(self.ledger, 28)
        self.assertEqual(self.ledger.settings.month_start_day, 28)
        with self.assertRaises(ValueError):
            set_month_start_day(self.ledger, 31)

        set_settlement_time(self.ledger, "21:30")
        self.assertEqual(self.ledger.settings.settlement_time, "21:30")
        for bad in ("24:00", "9:30", "21.30", ""):
            with self.assertRaises(ValueError):
                set_settlement_time(self.ledger, bad)
        self.assertEqual(self.ledger.settings.settlement_time, "21:30")

    def test_category_management(self):
        add_category(self.ledger, "flexible", "Pets")
        self.assertIn("Pets", self.ledger.settings.categories.flexible)
        with self.assertRaises(ValueError):
            add_category(self.ledger, "flexible", "Pets")

        move_category(self.ledger, "flexible", "Pets", 0)
        self.assertEqual(self.ledger.settings.categories.flexible.first(), "Pets")

        remove_category(self.ledger, "flexible", "Pets")
        self.assertNotIn("Pets", self.ledger.settings.categories.flexible)
        with self.assertRaises(ValueError):
            add_category(self.ledger, "savings", "Pets")

    def test_rename_category_relabels_records(self):
        e = add_expense(self.ledger, 5, self.day, category="Dining")
        other = add_expense(self.ledger, 5, self.day, category="Dining", desc="noodles")
        fixed = add_expense(self.ledger, 5, self.day, category="Rent", e_type="FIXED")

        self.assertEqual(rename_category(self.ledger, "flexible", "Dining", "Food"), 2)
        self.assertEqual(e.category, "Food")
        self.assertEqual(e.description, "Food")
        self.assertEqual(other.description, "noodles")
        self.assertEqual(fixed.category, "Rent")


class TestParsing(unittest.TestCase):
    def test_parse_line(self):
        entry = parse_line("35 noodles with Sam @Dining 3")
        self.assertEqual(entry.amount, 35)
        self.assertEqual(entry.description, "noodles with Sam")
        self.assertEqual(entry.category, "Dining")
        self.assertEqual(entry.duration, 3)

    def test_parse_line_without_amount(self):
        entry = parse_line("coffee @Dining")
        self.assertIsNone(entry.amount)
        self.assertEqual(entry.duration, 1)

    def test_fractional_days_round_up(self):
        """Quick entry rounds days the same way as the add command's duration input."""
        self.assertEqual(parse_line("10 rice 2.9").duration, 3)
        self.assertEqual(parse_line("10 rice 2.1").duration, 3)
        self.assertEqual(parse_line("10 rice 0.5").duration, 1)
        self.assertEqual(parse_line("10 rice 2.9").duration, resolve_duration(date(2024, 1, 10), 2.9, "days"))

    def test_parse_bulk(self):
        day = date(2024, 1, 10)
        expenses = parse_bulk("12.5 coffee\n\n0 nothing\n@Home 40 lamp 180\nno amount", day, "Dining")
        self.assertEqual(len(expenses), 2)
        self.assertEqual((expenses[0].amount, expenses[0].category, expenses[0].description),
                         (12.5, "Dining", "coffee"))
        self.assertEqual((expenses[1].category, expenses[1].duration), ("Home", 180))
        for e in expenses:
            self.assertEqual(e.date, day)
            self.assertEqual(e.type, "FLEXIBLE")


class TestSettlement(unittest.TestCase):
    def test_parse_settlement_time(self):
        self.assertEqual(parse_settlement_time("22:00").hour, 22)
        with self.assertRaises(ValueError):
            parse_settlement_time("25:00")

    def test_settlement_due_once_per_day(self):
        self.assertFalse(settlement_due(datetime(2024, 1, 10, 21, 59), "22:00", None))
        self.assertTrue(settlement_due(datetime(2024, 1, 10, 22, 0), "22:00", None))
        self.assertTrue(settlement_due(datetime(2024, 1, 10, 23, 0), "22:00", date(2024, 1, 9)))
        self.assertFalse(settlement_due(datetime(2024, 1, 10, 23, 0), "22:00", date(2024, 1, 10)))

    def test_build_receipt(self):
        today = date(2024, 1, 10)
        state = compute_budget(
            [flexible(30, today), flexible(20, today), flexible(10, date(2024, 1, 9))],
            budget(3100), today,
            [Income(amount=200, category="Gifts", date=today)],
        )
        receipt = build_receipt(state)
        self.assertEqual(receipt.date, today)
        self.assertEqual(receipt.total_expense, 50)
        self.assertEqual(receipt.total_income, 200)
        self.assertEqual(receipt.savings, 50)
        self.assertEqual(receipt.monthly_savings, 1000 - 60)


class TestStorage(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_save_and_load(self):
        ledger = Ledger(settings=budget(3100, savings=100, start_day=5))
        add_category(ledger, "flexible", "Pets")
        add_fixed_item(ledger, "Rent", 1000)
        e = add_expense(ledger, 120, date(2024, 1, 5), category="Skincare", duration=90)
        archive_expense(ledger, e.id)
        i = add_income(ledger, 3000, date(2024, 1, 1))
        ledger.last_settlement = date(2024, 1, 9)

        self.assertTrue(save_ledger(ledger, "test_roundtrip", self.dir))
        self.assertEqual(list_save_files(self.dir), ["test_roundtrip"])

        raw = json.loads((self.dir / "test_roundtrip.json").read_text(encoding="utf-8"))
        self.assertEqual(raw["expenses"][0]["date"], "2024-01-05")

        loaded = load_ledger("test_roundtrip", self.dir)
        self.assertEqual(loaded.expenses, ledger.expenses)
        self.assertEqual(loaded.incomes, ledger.incomes)
        self.assertEqual(loaded.last_settlement, date(2024, 1, 9))
        s = loaded.settings
        self.assertEqual((s.total_budget, s.fixed_budget, s.savings_goal, s.month_start_day), (3100, 1000, 100, 5))
        self.assertEqual(s.categories.flexible.to_list()[-1], "Pets")
        self.assertEqual(s.recurring_fixed[0].name, "Rent")
        self.assertTrue(find_record(loaded, e.id)[1].is_archived)
        self.assertEqual(find_record(loaded, i.id)[0], "income")

    def test_missing_file_gives_defaults(self):
        ledger = load_ledger("test_missing", self.dir)
        self.assertEqual(ledger.expenses, [])
        self.assertFalse(ledger.settings.is_configured)

    def test_corrupt_file_gives_defaults(self):
        (self.dir / "test_corrupt.json").write_text("{not json", encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="ERROR"):
            ledger = load_ledger("test_corrupt", self.dir)
        self.assertEqual(ledger.incomes, [])

    def test_partial_settings_are_merged_with_defaults(self):
        data = {"settings": {"total_budget": 2000, "categories": {"income": ["Pay"]}}}
        (self.dir / "test_partial.json").write_text(json.dumps(data), encoding="utf-8")
        s = load_ledger("test_partial", self.dir).settings
        self.assertEqual(s.total_budget, 2000)
        self.assertEqual(s.settlement_time, "22:00")
        self.assertEqual(s.categories.income.to_list(), ["Pay"])
        self.assertEqual(s.categories.flexible.first(), "Dining")

    def test_invalid_records_are_skipped(self):
        data = {
            "expenses": [
                {"id": "a", "amount": 5, "date": "2024-01-01", "category": "Dining"},
                {"id": "b", "amount": 5, "date": "01/02/2024", "category": "Dining"},
                {"id": "c", "amount": 5, "date": "2024-01-01", "category": "Dining", "type": "OTHER"},
            ],
            "incomes": [
                {"id": "a", "amount": 5, "date": "2024-01-01", "category": "Salary"},
                {"id": "d", "amount": 5, "date": "2024-01-01", "category": "Salary"},
            ],
        }
        (self.dir / "test_invalid.json").write_text(json.dumps(data), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING") as logs:
            ledger = load_ledger("test_invalid", self.dir)
        self.assertEqual([e.id for e in ledger.expenses], ["a"])
        self.assertEqual([i.id for i in ledger.incomes], ["d"])
        self.assertEqual(len(logs.records), 3)

    def test_duplicate_categories_keep_the_rest_of_the_file(self):
        data = {
            "settings": {"total_budget": 3000, "categories": {"flexible": ["Dining", "Dining"]}},
            "expenses": [{"id": "a", "amount": 40, "date": "2024-01-10", "category": "Dining"}],
        }
        (self.dir / "test_dupes.json").write_text(json.dumps(data), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING") as logs:
            ledger = load_ledger("test_dupes", self.dir)
        self.assertEqual([e.id for e in ledger.expenses], ["a"])
        self.assertEqual(ledger.settings.total_budget, 3000)
        self.assertEqual(ledger.settings.categories.flexible.to_list(), ["Dining"])
        self.assertIn("Dining", logs.output[0])

    def test_invalid_settings_fall_back_field_by_field(self):
        data = {
            "settings": {
                "total_budget": 3100,
                "month_start_day": 31,
                "settlement_time": "25:99",
                "savings_goal": "lots",
                "recurring_fixed": [{"id": "r1", "name": "Rent", "amount": 1000}, {"name": "Broken"}, "junk"],
                "categories": {"income": ["Pay", None, 7]},
            },
            "metadata": {"last_settlement": "yesterday"},
        }
        (self.dir / "test_bad_settings.json").write_text(json.dumps(data), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING") as logs:
            ledger = load_ledger("test_bad_settings", self.dir)
        s = ledger.settings
        self.assertEqual(s.total_budget, 3100)
        self.assertEqual(s.month_start_day, 1)
        self.assertEqual(s.settlement_time, "22:00")
        self.assertEqual(s.savings_goal, 0)
        self.assertEqual([item.name for item in s.recurring_fixed], ["Rent"])
        self.assertEqual(s.categories.income.to_list(), ["Pay"])
        self.assertIsNone(ledger.last_settlement)
        self.assertEqual(len(logs.records), 8)

    def test_start_day_out_of_range_still_computes_a_cycle(self):
        (self.dir / "test_day31.json").write_text(
            json.dumps({"settings": {"total_budget": 3100, "month_start_day": 31}}), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING"):
            ledger = load_ledger("test_day31", self.dir)
        state = BudgetEngine().recompute(ledger, datetime(2024, 1, 10, 9, 0))
        self.assertEqual(state.cycle_start, date(2024, 1, 1))

    def test_null_description_defaults_to_category(self):
        data = {"expenses": [{"id": "a", "amount": 5, "date": "2024-01-01", "category": "Dining", "description": None}],
                "incomes": ["junk"]}
        (self.dir / "test_null_desc.json").write_text(json.dumps(data), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING"):
            ledger = load_ledger("test_null_desc", self.dir)
        self.assertEqual(ledger.expenses[0].description, "Dining")
        self.assertEqual(ledger.incomes, [])

    def test_save_replaces_file_without_leftovers(self):
        ledger = Ledger(settings=budget(3100))
        add_expense(ledger, 50, date(2024, 1, 10))
        self.assertTrue(save_ledger(ledger, "test_atomic", self.dir))
        add_expense(ledger, 25, date(2024, 1, 10))
        self.assertTrue(save_ledger(ledger, "test_atomic", self.dir))

        self.assertEqual([p.name for p in self.dir.iterdir()], ["test_atomic.json"])
        self.assertEqual(list_save_files(self.dir), ["test_atomic"])
        self.assertEqual(len(load_ledger("test_atomic", self.dir).expenses), 2)

    def test_read_ledger_raises_on_unreadable_file(self):
        (self.dir / "test_corrupt.json").write_text("{not json", encoding="utf-8")
        with self.assertRaises(SaveFileError):
            read_ledger("test_corrupt", self.dir)
        (self.dir / "test_list.json").write_text("[1, 2]", encoding="utf-8")
        with self.assertRaises(SaveFileError):
            read_ledger("test_list", self.dir)
        self.assertEqual(read_ledger("test_missing", self.dir).expenses, [])


class TestCLI(unittest.TestCase):
    def setUp(self):
        self.now = datetime(2024, 1, 10, 9, 0)
        self.cli = BudgetCLI(ledger=Ledger(), autosave=False, clock=lambda: self.now)

    def run_cmd(self, line):
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            self.cli.onecmd(line)
        return out.getvalue()

    def test_setup_prompt(self):
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            self.cli.preloop()
        self.assertIn("No monthly budget", out.getvalue())

    def test_budget_and_today(self):
        self.assertIn("3,100.00", self.run_cmd("budget 3100"))
        self.run_cmd("add 50 lunch @Dining")
        self.run_cmd("add 200 shoes @Shopping --date 2024-01-05")

        output = self.run_cmd("today")
        self.assertIn("131.82", output)
        self.assertIn("lunch", output)
        self.assertEqual(len(self.cli.ledger.expenses), 2)

    def test_over_budget_indicator(self):
        self.run_cmd("budget 31")
        self.run_cmd("add 80 dinner")
        self.assertIn("(over budget)", self.run_cmd("today"))

    def test_add_with_months(self):
        self.run_cmd("add 120 serum @Skincare --months 3 --date 2024-01-31")
        e = self.cli.ledger.expenses[0]
        self.assertEqual(e.duration, (date(2024, 4, 30) - date(2024, 1, 31)).days)
        self.assertIn("Skincare: 1 items", self.run_cmd("backpack"))

    def test_invalid_input(self):
        self.assertIn("Invalid input", self.run_cmd("add lunch"))
        self.assertIn("Invalid input", self.run_cmd("add 5 --date tomorrow"))
        self.assertIn("Invalid input", self.run_cmd("startday 30"))
        self.assertEqual(self.cli.ledger.expenses, [])

    def test_edit_and_delete(self):
        self.run_cmd("add 50 lunch")
        e = self.cli.ledger.expenses[0]
        self.run_cmd(f"edit {e.id} --amount 65 --desc \"team lunch\"")
        self.assertEqual(self.cli.ledger.expenses[0].amount, 65)
        self.assertEqual(self.cli.ledger.expenses[0].description, "team lunch")

        self.assertIn("Invalid input", self.run_cmd(f"edit {e.id} --amount -1"))
        self.assertEqual(self.cli.ledger.expenses[0].amount, 65)

        self.assertIn("Deleted", self.run_cmd(f"delete {e.id}"))
        self.assertIn("not found", self.run_cmd(f"delete {e.id}"))

    def test_bulk(self):
        self.assertIn("Added 2 expenses", self.run_cmd("bulk 12 coffee; 30 taxi @Transport"))
        self.assertEqual({e.category for e in self.cli.ledger.expenses}, {"Dining", "Transport"})

    def test_settlement_reminder_once_per_day(self):
        self.now = datetime(2024, 1, 10, 22, 5)
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            self.cli.postcmd(False, "today")
            self.cli.postcmd(False, "today")
        self.assertEqual(out.getvalue().count("Daily receipt"), 1)
        self.assertEqual(self.cli.ledger.last_settlement, date(2024, 1, 10))

    def test_category_command(self):
        self.run_cmd("category flexible add Pets")
        self.assertIn("Pets", self.cli.ledger.settings.categories.flexible)
        self.assertIn("Invalid input", self.run_cmd("category flexible add Pets"))
        self.assertIn("not found", self.run_cmd("category flexible remove Nope"))
    def test_convert_without_income_categories(self):
        self.run_cmd("add 50 refund @Shopping")
        e = self.cli.ledger.expenses[0]
        self.cli.ledger.settings.categories.income = CategorySet()
        self.assertIn("Invalid input", self.run_cmd(f"convert {e.id}"))
        self.assertEqual(self.cli.ledger.expenses, [e])


class TestCLISaveFiles(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.now = datetime(2024, 1, 10, 23, 0)
        patcher = patch.object(config, "DATA_DIR", self.dir)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def open_cli(self, name):
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            cli = BudgetCLI(save_name=name, clock=lambda: self.now)
        return cli, out.getvalue()

    def run_cmd(self, cli, line):
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            stop = cli.onecmd(line)
            cli.postcmd(stop, line)
        return out.getvalue()

    def test_autosave_keeps_records_from_a_file_with_duplicate_categories(self):
        data = {
            "settings": {"total_budget": 3000, "categories": {"flexible": ["Dining", "Dining"]}},
            "expenses": [{"id": "a", "amount": 40, "date": "2024-01-10", "category": "Dining"}],
        }
        (self.dir / "main.json").write_text(json.dumps(data), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING"):
            cli, _ = self.open_cli("main")
        output = self.run_cmd(cli, "today")
        self.assertIn("Daily receipt", output)

        saved = json.loads((self.dir / "main.json").read_text(encoding="utf-8"))
        self.assertEqual([e["id"] for e in saved["expenses"]], ["a"])
        self.assertEqual(saved["settings"]["total_budget"], 3000)
        self.assertEqual(saved["settings"]["categories"]["flexible"], ["Dining"])

    def test_unreadable_file_is_not_autosaved_over(self):
        path = self.dir / "main.json"
        path.write_text("{not json", encoding="utf-8")
        cli, intro = self.open_cli("main")
        self.assertIn("Warning", intro)
        self.assertTrue(cli.save_blocked)

        self.run_cmd(cli, "add 50 lunch")
        self.run_cmd(cli, "today")
        self.assertEqual(path.read_text(encoding="utf-8"), "{not json")

        self.run_cmd(cli, "save")
        self.assertFalse(cli.save_blocked)
        self.assertEqual(len(read_ledger("main").expenses), 1)

    def test_start_day_out_of_range_in_save_file(self):
        (self.dir / "main.json").write_text(
            json.dumps({"settings": {"total_budget": 3100, "month_start_day": 31}}), encoding="utf-8")
        with self.assertLogs("budgeter.storage", level="WARNING"):
            cli, _ = self.open_cli("main")
        self.now = datetime(2024, 1, 10, 9, 0)
        output = self.run_cmd(cli, "today")
        self.assertIn("2024-01-01 → 2024-01-31", output)
        self.assertEqual(cli.ledger.settings.month_start_day, 1)


if __name__ == '__main__':
    unittest.main()
