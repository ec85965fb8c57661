import cmd
import shlex
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

from budgeter import config
from budgeter.allocation import BudgetEngine, BudgetState
from budgeter.amortization import group_amortized, summarize_groups, resolve_duration, remaining_days
from budgeter.logic import (
    add_expense,
    add_income,
    save_expense,
    save_income,
    find_record,
    delete_record,
    archive_expense,
    convert_record,
    cycle_summary,
    configure_budget,
    set_month_start_day,
    set_settlement_time,
    add_fixed_item,
    remove_fixed_item,
    add_category,
    remove_category,
    rename_category,
    move_category,
)
from budgeter.models import Ledger, Income, CATEGORY_KINDS
from budgeter.parsing import parse_line, parse_bulk
from budgeter.settlement import build_receipt, settlement_due
from budgeter.storage import save_ledger, read_ledger, list_save_files, SaveFileError


class BudgetCLI(cmd.Cmd):
    prompt = "(budget) "

    def __init__(self, ledger: Optional[Ledger] = None, save_name: str = config.DEFAULT_SAVE_NAME,
                 autosave: bool = True, clock=datetime.now):
        super().__init__()
        self.intro = "Welcome to Budgeter. Type 'help' for commands."
        self.save_name = save_name
        self.autosave = autosave
        self.save_blocked = False
        self.ledger = ledger if ledger is not None else self._open_save(save_name)
        self.clock = clock
        self.engine = BudgetEngine()

    @property
    def state(self) -> BudgetState:
        return self.engine.recompute(self.ledger, self.clock())

    def _open_save(self, name: str) -> Ledger:
        """Read a save file; an unreadable one is never autosaved over."""
        try:
            ledger = read_ledger(name)
            self.save_blocked = False
        except SaveFileError as e:
            print(f"Warning: {e}")
            print(f"Changes will not be saved to '{name}' until you run 'save' explicitly.")
            ledger = Ledger()
            self.save_blocked = True
        return ledger

    def _changed(self):
        if self.autosave and not self.save_blocked:
            save_ledger(self.ledger, self.save_name)

    # ===== LIFECYCLE =====
    def preloop(self):
        if not self.ledger.settings.is_configured:
            print("No monthly budget yet. Set one with: budget <total> [savings_goal]")

    def postcmd(self, stop, line):
        if not stop:
            self._check_settlement()
        return stop

    def _check_settlement(self):
        now = self.clock()
        if settlement_due(now, self.ledger.settings.settlement_time, self.ledger.last_settlement):
            self.ledger.last_settlement = now.date()
            self._changed()
            self._print_receipt()

    # ===== RECORDS =====
    def do_add(self, arg):
        """Add an expense: add <amount> [description] [@category] [days] [--date YYYY-MM-DD] [--months N] [--fixed]"""
        try:
            args = self._parse_record_args(arg)
            entry = parse_line(" ".join(args['words']))
            if entry.amount is None:
                raise ValueError("Missing amount")

            duration = entry.duration
            if args['months'] is not None:
                duration = resolve_duration(args['date'], args['months'], "months")

            expense = add_expense(
                self.ledger,
                amount=entry.amount,
                t_date=args['date'],
                category=entry.category or None,
                desc=entry.description,
                e_type="FIXED" if args['fixed'] else "FLEXIBLE",
                duration=duration,
            )
            self._changed()
            confirmation = f"✓ Added {expense.type.lower()} expense of {expense.amount:.2f} ({expense.category})"
            if expense.duration > 1:
                confirmation += f" over {expense.duration} days"
            print(confirmation)
            print(f"  id: {expense.id}")
        except (ValueError, KeyError) as e:
            print(f"Invalid input: {e}")

    def do_income(self, arg):
        """Add an income: income <amount> [description] [@category] [--date YYYY-MM-DD]"""
        try:
            args = self._parse_record_args(arg)
            entry = parse_line(" ".join(args['words']))
            if entry.amount is None:
                raise ValueError("Missing amount")
            income = add_income(
                self.ledger,
                amount=entry.amount,
                t_date=args['date'],
                category=entry.category or None,
                desc=entry.description,
            )
            self._changed()
            print(f"✓ Added income of {income.amount:.2f} ({income.category})")
            print(f"  id: {income.id}")
        except (ValueError, KeyError) as e:
            print(f"Invalid input: {e}")

    def do_edit(self, arg):
        """Edit a record: edit <id> [--amount X] [--date YYYY-MM-DD] [--category NAME] [--desc TEXT] [--days N] [--fixed|--flexible]"""
        try:
            args = shlex.split(arg)
            if not args:
                raise ValueError("Missing record id")
            kind, record = find_record(self.ledger, args[0])
            record = replace(record)

            i = 1
            while i < len(args):
                flag = args[i]
                if flag in ('--fixed', '--flexible'):
                    if kind != "expense":
                        raise ValueError("Only expenses have a type")
                    record.type = "FIXED" if flag == '--fixed' else "FLEXIBLE"
                    i += 1
                    continue
                if i + 1 >= len(args):
                    raise ValueError(f"Missing value after {flag}")
                value = args[i + 1]
                if flag == '--amount':
                    amount = float(value)
                    if amount < 0:
                        raise ValueError("Amount cannot be negative")
                    record.amount = amount
                elif flag == '--date':
                    record.date = date.fromisoformat(value)
                elif flag == '--category':
                    record.category = value
                elif flag == '--desc':
                    record.description = value or record.category
                elif flag == '--days':
                    if kind != "expense":
                        raise ValueError("Only expenses have a duration")
                    record.duration = resolve_duration(record.date, float(value), "days")
                else:
                    raise ValueError(f"Unknown flag: {flag}")
                i += 2

            if kind == "expense":
                save_expense(self.ledger, record)
            else:
                save_income(self.ledger, record)
            self._changed()
            print(f"✓ Updated {kind} {record.id}")
        except KeyError as e:
            print(f"Record not found: {e}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_convert(self, arg):
        """Switch a record between expense and income: convert <id>"""
        try:
            record = convert_record(self.ledger, arg.strip())
            self._changed()
            kind = "an income" if isinstance(record, Income) else "an expense"
            print(f"✓ {record.id} is now {kind}")
        except KeyError as e:
            print(f"Record not found: {e}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_delete(self, arg):
        """Delete a record: delete <id>"""
        record_id = arg.strip()
        if not record_id:
            print("Usage: delete <id>")
            return
        if delete_record(self.ledger, record_id):
            self._changed()
            print(f"✓ Deleted record {record_id}")
        else:
            print("Record not found")

    def do_archive(self, arg):
        """Archive an inventory item: archive <id> [--undo]"""
        args = arg.split()
        if not args:
            print("Usage: archive <id> [--undo]")
            return
        try:
            archive_expense(self.ledger, args[0], archived='--undo' not in args)
            self._changed()
            print(f"✓ {'Restored' if '--undo' in args else 'Archived'} {args[0]}")
        except KeyError as e:
            print(f"Record not found: {e}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_bulk(self, arg):
        """Add several of today's flexible expenses: bulk <line>; <line>; ..."""
        default_category = self.ledger.settings.categories.flexible.first()
        if default_category is None:
            print("Invalid input: No flexible categories defined")
            return
        text = "\n".join(arg.split(";"))
        added = parse_bulk(text, self.clock().date(), default_category)
        for expense in added:
            save_expense(self.ledger, expense)
        if added:
            self._changed()
        print(f"✓ Added {len(added)} expenses")

    # ===== VIEWS =====
    def do_today(self, arg):
        """Show today's budget dashboard"""
        state = self.state
        saved = f"{state.today_saved:,.2f}"
        if state.is_over_budget:
            saved += " (over budget)"
        print(f"\n{' ' + state.today.isoformat() + ' ':-^50}")
        print(f"Cycle:            {state.cycle_start} → {state.cycle_end} ({state.days_left} days left)")
        print(f"Saved today:      {saved}")
        print(f"Saved this cycle: {state.total_saved:,.2f}")
        print(f"Spent today:      {state.today_spent:,.2f}")
        print(f"Today's budget:   {state.daily_budget:,.2f}")
        print(f"Tomorrow:         {state.tomorrow_budget:,.2f}")

        records = state.today_incomes + state.today_expenses
        if not records:
            print("\nNothing recorded today yet.")
            return
        print("\nToday:")
        for r in state.today_incomes:
            print(f"  + {r.amount:>10.2f}  {r.description} [{r.category}]  ({r.id})")
        for r in state.today_expenses:
            print(f"  - {r.amount:>10.2f}  {r.description} [{r.category}]  ({r.id})")

    def do_records(self, arg):
        """Show this cycle's records: records [--income]"""
        summary = cycle_summary(self.ledger, self.clock())
        print(f"\nCycle {summary.cycle_start} → {summary.cycle_end}")
        print(f"  Expenses: {summary.total_expense:,.2f}")
        print(f"  Income:   {summary.total_income:,.2f}")

        grouped = summary.incomes_by_date if '--income' in arg.split() else summary.expenses_by_date
        for day, records in grouped.items():
            print(f"\n{day}")
            for r in records:
                label = f" ({r.type.lower()})" if hasattr(r, 'type') else ""
                print(f"  {r.amount:>10.2f}  {r.description} [{r.category}]{label}  ({r.id})")

    def do_backpack(self, arg):
        """Show amortized items: backpack [category] [--sort date|duration|remaining] [--active]"""
        try:
            args = shlex.split(arg)
            sort_by = "date"
            category = None
            i = 0
            while i < len(args):
                if args[i] == '--sort':
                    if i + 1 >= len(args):
                        raise ValueError("Missing sort mode after --sort")
                    sort_by = args[i + 1]
                    i += 2
                    continue
                if args[i] != '--active':
                    category = args[i]
                i += 1

            today = self.clock().date()
            groups = group_amortized(self.ledger.expenses, sort_by=sort_by, today=today,
                                     include_archived='--active' not in args)
        except ValueError as e:
            print(f"Invalid input: {e}")
            return

        if not groups:
            print("Your backpack is empty")
            return

        if category is None:
            for group in summarize_groups(groups):
                print(f"  {group.category}: {len(group.items)} items, {group.total:,.2f}")
            return

        if category not in groups:
            print(f"No items in {category}")
            return
        print(f"\n{category}")
        for e in groups[category]:
            archived = " [archived]" if e.is_archived else ""
            print(f"  {e.date}  {e.description}  {e.amount:,.2f}  "
                  f"{e.duration} days ({remaining_days(e, today)} left){archived}  ({e.id})")

    def do_settle(self, arg):
        """Show today's settlement receipt"""
        self._print_receipt()

    def _print_receipt(self):
        receipt = build_receipt(self.state)
        print(f"\n{' Daily receipt ':=^40}")
        print(f"{receipt.date.isoformat():^40}")
        for i in receipt.incomes:
            print(f"  {i.description:<24}{'+' + format(i.amount, '.2f'):>14}")
        for e in receipt.expenses:
            print(f"  {e.description:<24}{'-' + format(e.amount, '.2f'):>14}")
        print("-" * 40)
        print(f"  {'Income':<24}{receipt.total_income:>14.2f}")
        print(f"  {'Spent':<24}{receipt.total_expense:>14.2f}")
        print(f"  {'Saved today':<24}{receipt.savings:>14.2f}")
        print(f"  {'Saved this cycle':<24}{receipt.monthly_savings:>14.2f}")

    # ===== SETTINGS =====
    def do_budget(self, arg):
        """Set the monthly budget: budget <total> [savings_goal] [fixed_budget]"""
        try:
            values = [float(v) for v in arg.split()]
            if not values:
                s = self.ledger.settings
                print(f"Total: {s.total_budget:,.2f}  Fixed: {s.fixed_budget:,.2f}  "
                      f"Savings goal: {s.savings_goal:,.2f}  Flexible: {s.flexible_pool:,.2f}")
                return
            configure_budget(
                self.ledger,
                total_budget=values[0],
                savings_goal=values[1] if len(values) > 1 else None,
                fixed_budget=values[2] if len(values) > 2 else None,
                today=self.clock().date(),
            )
            self._changed()
            print(f"✓ Flexible pool is now {self.ledger.settings.flexible_pool:,.2f}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_fixed(self, arg):
        """Manage recurring fixed costs: fixed <add|remove|list> [name amount|id]"""
        args = arg.split()
        try:
            if not args or args[0] == "list":
                items = self.ledger.settings.recurring_fixed
                if not items:
                    print("No fixed costs defined")
                for item in items:
                    print(f"  {item.name}: {item.amount:,.2f}  ({item.id})")
                print(f"Fixed budget: {self.ledger.settings.fixed_budget:,.2f}")
            elif args[0] == "add" and len(args) >= 3:
                item = add_fixed_item(self.ledger, " ".join(args[1:-1]), float(args[-1]))
                self._changed()
                print(f"✓ Added fixed cost {item.name}; fixed budget is {self.ledger.settings.fixed_budget:,.2f}")
            elif args[0] == "remove" and len(args) == 2:
                if remove_fixed_item(self.ledger, args[1]):
                    self._changed()
                    print("✓ Removed fixed cost")
                else:
                    print("Fixed cost not found")
            else:
                print(self.do_fixed.__doc__)
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_category(self, arg):
        """Manage categories: category <fixed|flexible|income> <list|add|remove|rename|move> [name] [new name|position]"""
        args = shlex.split(arg)
        if len(args) < 2 or args[0] not in CATEGORY_KINDS:
            print(self.do_category.__doc__)
            return

        kind, action = args[0], args[1]
        try:
            if action == "list":
                for i, name in enumerate(self.ledger.settings.categories.for_kind(kind), 1):
                    print(f"  {i}. {name}")
                return
            if action == "add" and len(args) == 3:
                print(f"✓ Added category: {add_category(self.ledger, kind, args[2])}")
            elif action == "remove" and len(args) == 3:
                remove_category(self.ledger, kind, args[2])
                print(f"✓ Removed category: {args[2]}")
            elif action == "rename" and len(args) == 4:
                count = rename_category(self.ledger, kind, args[2], args[3])
                print(f"✓ Renamed {args[2]} to {args[3]} ({count} records relabelled)")
            elif action == "move" and len(args) == 4:
                move_category(self.ledger, kind, args[2], int(args[3]) - 1)
                print(f"✓ Moved {args[2]} to position {args[3]}")
            else:
                print(self.do_category.__doc__)
                return
            self._changed()
        except KeyError as e:
            print(f"Category not found: {e}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_startday(self, arg):
        """Set the day of month a billing cycle starts: startday <1-28>"""
        try:
            set_month_start_day(self.ledger, int(arg.strip()))
            self._changed()
            print(f"✓ Cycles now start on day {self.ledger.settings.month_start_day}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    def do_settletime(self, arg):
        """Set the daily settlement reminder time: settletime HH:mm"""
        try:
            set_settlement_time(self.ledger, arg.strip())
            self._changed()
            print(f"✓ Settlement reminder at {self.ledger.settings.settlement_time}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    # ===== DATA MANAGEMENT =====
    def do_save(self, arg):
        """Save current data: save [name]"""
        name = arg.strip() or self.save_name
        if save_ledger(self.ledger, name):
            self.save_name = name
            self.save_blocked = False
            print(f"✓ Saved as '{name}'")
        else:
            print(f"Could not save '{name}'")

    def do_load(self, arg):
        """Load saved data: load [name]"""
        saves = list_save_files()
        if not saves:
            print("No save files available")
            return

        if not arg:
            print("Available saves:")
            for i, name in enumerate(saves, 1):
                print(f"{i}. {name}")
            try:
                choice = int(input("Select save: ")) - 1
                name = saves[choice]
            except (ValueError, IndexError):
                print("Invalid selection")
                return
        else:
            name = arg.strip()

        self.ledger = self._open_save(name)
        self.save_name = name
        self.engine.invalidate()
        if self.save_blocked:
            return
        print(f"✓ Loaded {len(self.ledger.expenses)} expenses, {len(self.ledger.incomes)} incomes")

    # ===== UTILITIES =====
    def do_exit(self, arg):
        """Exit the program"""
        print("Goodbye!")
        return True

    # ===== HELPERS =====
    def _parse_record_args(self, arg):
        """Split flags from the quick-entry words of add/income"""
        args = shlex.split(arg)
        result = {
            'words': [],
            'date': self.clock().date(),
            'months': None,
            'fixed': False,
        }

        i = 0
        while i < len(args):
            if args[i] == '--date':
                if i + 1 >= len(args):
                    raise ValueError("Missing date after --date")
                try:
                    result['date'] = date.fromisoformat(args[i + 1])
                except ValueError:
                    raise ValueError("Date must be in YYYY-MM-DD format")
                i += 2
            elif args[i] == '--months':
                if i + 1 >= len(args):
                    raise ValueError("Missing value after --months")
                result['months'] = float(args[i + 1])
                i += 2
            elif args[i] == '--fixed':
                result['fixed'] = True
                i += 1
            elif args[i].startswith('--'):
                raise ValueError(f"Unknown flag: {args[i]}")
            else:
                result['words'].append(args[i])
                i += 1

        return result


if __name__ == "__main__":
    BudgetCLI().cmdloop()
