import cmd
from datetime import date

from kharcha.engine import FinanceEngine
from kharcha.models import FREQUENCIES, GOAL_CATEGORIES, GOAL_SCOPES, PAYMENT_MODES
from kharcha.storage import StorageError

PERIOD_FLAGS = {
    '--day': 'daily',
    '--week': 'weekly',
    '--month': 'monthly',
    '--quarter': 'quarterly',
    '--year': 'yearly',
}


class KharchaCLI(cmd.Cmd):
    prompt = "(kharcha) "

    def __init__(self, engine: FinanceEngine):
        super().__init__()
        self.engine = engine
        self.intro = "Welcome to Kharcha. Type 'help' for commands."

    def preloop(self):
        if self.engine.process_recurring_expenses():
            print("✓ Recorded due subscription payments")
        print(self.engine.get_motivational_message())

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except StorageError as e:
            print(f"Storage error: {e}")
        except ValueError as e:
            print(f"Invalid input: {e}")

    # ===== CORE COMMANDS =====
    def do_add(self, arg):
        """Add an entry: add <amount> <income|expense> [category] [YYYY-MM-DD] [--mode upi|cash] [--desc "description"]"""
        args = self._parse_add_args(arg, ('income', 'expense'))
        entry = self.engine.add_transaction(
            amount=args['amount'],
            t_type=args['kind'],
            t_date=args['date'],
            mode=args['mode'],
            category_id=args['category'],
            note=args['desc'],
        )
        print(f"✓ Added {entry.t_type} #{entry.id} of {self.engine.symbol}{entry.amount:,.2f} ({entry.mode})")
        self._announce_achievements()

    def do_adjust(self, arg):
        """Adjust an account balance: adjust <amount> <add|subtract> [category] [YYYY-MM-DD] [--mode upi|cash] [--desc "note"]"""
        args = self._parse_add_args(arg, ('add', 'subtract'))
        entry = self.engine.add_transaction(
            amount=args['amount'],
            t_type='balance_adjustment',
            t_date=args['date'],
            mode=args['mode'],
            category_id=args['category'],
            note=args['desc'],
            adjustment_type=args['kind'],
        )
        print(f"✓ Recorded {entry.adjustment_type} adjustment #{entry.id} of {self.engine.symbol}{entry.amount:,.2f}")

    def do_delete(self, arg):
        """Delete an entry: delete <ID>"""
        args = arg.split()
        if not args or not args[0].isdigit():
            print("Usage: delete <ID>")
            return
        if self.engine.delete_transaction(int(args[0])):
            print(f"✓ Deleted entry {args[0]}")
        else:
            print("Entry not found")

    def do_list(self, arg):
        """List entries: list [--day|--week|--month|--quarter|--year] [--from DATE --to DATE]"""
        period, start, end = self._parse_period_args(arg)
        entries = self.engine.list_transactions(period, start, end)
        if not entries:
            print("No entries")
            return
        for t in entries:
            kind = t.t_type if t.t_type != 'balance_adjustment' else f"adjust/{t.adjustment_type}"
            print(f"  #{t.id:<5} {t.t_date}  {kind:<16} {self.engine.symbol}{t.amount:>10,.2f}  {t.mode:<4} {t.note}")

    def do_report(self, arg):
        """
        Spending report:
        report [--day|--week|--month|--quarter|--year] [--from YYYY-MM-DD --to YYYY-MM-DD]

        Without a period flag the report covers every entry.
        """
        period, start, end = self._parse_period_args(arg)
        totals = self.engine.totals(period, start, end)
        sym = self.engine.symbol

        title = ' ' + (period or 'all time').capitalize() + ' Report '
        print(f"\n{title:-^50}")
        print(f"  Income:   {sym}{totals.income:,.2f}  (UPI {sym}{totals.income_upi:,.2f}, Cash {sym}{totals.income_cash:,.2f})")
        print(f"  Expenses: {sym}{totals.expense:,.2f}  (UPI {sym}{totals.expense_upi:,.2f}, Cash {sym}{totals.expense_cash:,.2f})")
        print(f"  Net:      {sym}{totals.balance:,.2f}")

    def do_balance(self, arg):
        """Account balances: balance [set <upi|cash> <amount>]"""
        args = arg.split()
        if args and args[0] == 'set':
            if len(args) != 3 or args[1] not in PAYMENT_MODES:
                print("Usage: balance set <upi|cash> <amount>")
                return
            self.engine.set_opening_balance(args[1], float(args[2]))
            print(f"✓ Opening {args[1]} balance set")
            return

        for mode in PAYMENT_MODES:
            balance = self.engine.current_balance(mode)
            shown = f"{self.engine.symbol}{balance:,.2f}" if balance is not None else "not set"
            print(f"  {mode.upper():<5} {shown}")

    # ===== SUBSCRIPTIONS =====
    def do_sub(self, arg):
        """Manage subscriptions: sub <add|list|delete|pause|resume> ...
        sub add <name> <amount> <daily|weekly|monthly|yearly> <next YYYY-MM-DD> [upi|cash]"""
        args = arg.split()
        if not args:
            print(self.do_sub.__doc__)
            return

        if args[0] == 'add':
            if len(args) < 5:
                raise ValueError("sub add <name> <amount> <frequency> <next date> [mode]")
            if args[3] not in FREQUENCIES:
                raise ValueError(f"Invalid frequency, use: {'/'.join(FREQUENCIES)}")
            sub = self.engine.add_subscription(
                name=args[1],
                amount=float(args[2]),
                frequency=args[3],
                next_billing_date=date.fromisoformat(args[4]),
                mode=args[5] if len(args) > 5 else 'upi',
            )
            print(f"✓ Added subscription {sub.name} ({sub.id[:8]})")
        elif args[0] == 'list':
            subs = self.engine.list_subscriptions()
            if not subs:
                print("No subscriptions")
                return
            for sub in subs:
                state = "active" if sub.is_active else "paused"
                print(f"  {(sub.id or '?')[:8]}  {sub.name:<16} {self.engine.symbol}{sub.amount:,.2f} "
                      f"{sub.frequency:<8} next {sub.next_billing_date or '?'}  {state}")
        elif args[0] in ('delete', 'pause', 'resume') and len(args) > 1:
            sub_id = self._find_subscription_id(args[1])
            if sub_id is None:
                print(f"Subscription not found: {args[1]}")
            elif args[0] == 'delete':
                self.engine.delete_subscription(sub_id)
                print("✓ Deleted subscription")
            else:
                self.engine.update_subscription(sub_id, is_active=args[0] == 'resume')
                print(f"✓ Subscription {'resumed' if args[0] == 'resume' else 'paused'}")
        else:
            print(self.do_sub.__doc__)

    def do_process(self, arg):
        """Record any subscription payments that fell due: process"""
        if self.engine.process_recurring_expenses():
            print("✓ Recorded due subscription payments")
        else:
            print("Nothing due")

    # ===== ENGAGEMENT =====
    def do_streak(self, arg):
        """Show the daily tracking streak: streak"""
        record = self.engine.get_streak()
        print(f"  Current streak: {record.current_streak} day(s)")
        print(f"  Longest streak: {record.longest_streak} day(s)")
        if record.last_entry_date:
            print(f"  Last entry:     {record.last_entry_date}")

    def do_goal(self, arg):
        """Goals: goal show | goal set <scope> <savings|expense> <amount> [name] | goal range <from> <to>|clear"""
        args = arg.split()
        if not args or args[0] == 'show':
            self._show_goals()
        elif args[0] == 'set':
            if len(args) < 4 or args[1] not in GOAL_SCOPES or args[2] not in GOAL_CATEGORIES:
                raise ValueError(f"goal set <{'|'.join(GOAL_SCOPES)}> <savings|expense> <amount> [name]")
            name = ' '.join(args[4:]) if len(args) > 4 else None
            self.engine.set_goal(args[1], args[2], float(args[3]), name)
            print(f"✓ {args[1].capitalize()} {args[2]} goal set to {self.engine.symbol}{float(args[3]):,.2f}")
            self._announce_achievements()
        elif args[0] == 'range':
            if len(args) == 2 and args[1] == 'clear':
                self.engine.set_custom_range(None, None)
                print("✓ Custom goal now covers all entries")
            elif len(args) == 3:
                self.engine.set_custom_range(date.fromisoformat(args[1]), date.fromisoformat(args[2]))
                print(f"✓ Custom goal covers {args[1]} to {args[2]}")
            else:
                raise ValueError("goal range <YYYY-MM-DD> <YYYY-MM-DD> | goal range clear")
        else:
            print(self.do_goal.__doc__)

    def do_achievements(self, arg):
        """List achievements: achievements"""
        report = self.engine.check_achievements()
        for a in report.all_achievements:
            mark = "★" if a.unlocked else "·"
            print(f"  {mark} {a.name:<22} {a.description}")

    def do_motivate(self, arg):
        """Show a motivational message: motivate"""
        print(self.engine.get_motivational_message())

    # ===== UTILITIES =====
    def do_exit(self, arg):
        """Exit the program"""
        print("Goodbye!")
        return True

    # ===== HELPERS =====
    def _announce_achievements(self):
        for a in self.engine.check_achievements().new_achievements:
            print(f"🏅 Achievement unlocked: {a.name} ({a.description})")

    def _show_goals(self):
        goals = self.engine.active_goals()
        if not goals:
            print("No goals set")
            return
        sym = self.engine.symbol
        for g in goals:
            if g.category == 'expense':
                state = "over limit" if g.is_over_limit else "within limit"
            else:
                state = "reached" if g.is_completed else f"{sym}{g.remaining:,.2f} to go"
            print(f"  {g.scope:<8} {g.category:<8} {sym}{g.current_value:,.2f} / {sym}{g.target_goal:,.2f} "
                  f"({g.progress:.0f}%) {state}")

    def _find_subscription_id(self, prefix):
        for sub in self.engine.list_subscriptions():
            if sub.id and sub.id.startswith(prefix):
                return sub.id
        return None

    def _parse_add_args(self, arg, kinds):
        """Parse add/adjust arguments with proper date handling"""
        args = arg.split()
        if len(args) < 2:
            raise ValueError("Missing required arguments (amount and type)")

        result = {
            'amount': float(args[0]),
            'kind': args[1].lower(),
            'category': None,
            'date': self.engine.today(),
            'mode': 'upi',
            'desc': ""
        }

        if result['kind'] not in kinds:
            raise ValueError(f"Type must be {' or '.join(repr(k) for k in kinds)}")

        i = 2
        while i < len(args):
            if args[i] == '--mode':
                if i+1 >= len(args) or args[i+1] not in PAYMENT_MODES:
                    raise ValueError("Mode must be 'upi' or 'cash'")
                result['mode'] = args[i+1]
                i += 2
            elif args[i] == '--desc':
                result['desc'] = ' '.join(args[i+1:]).strip('"')
                break
            elif args[i].startswith('--'):
                raise ValueError(f"Unknown flag: {args[i]}")
            else:
                try:
                    result['date'] = date.fromisoformat(args[i])
                    i += 1
                    continue
                except ValueError:
                    pass

                if result['category'] is None:
                    result['category'] = args[i]
                    i += 1
                else:
                    raise ValueError(f"Unexpected argument: {args[i]}")

        return result

    @staticmethod
    def _parse_period_args(arg):
        """Parse a period flag or a --from/--to range"""
        args = arg.split()
        period, start, end = None, None, None

        i = 0
        while i < len(args):
            if args[i] in PERIOD_FLAGS:
                period = PERIOD_FLAGS[args[i]]
            elif args[i] in ('--from', '--to') and i+1 < len(args):
                if args[i] == '--from':
                    start = date.fromisoformat(args[i+1])
                else:
                    end = date.fromisoformat(args[i+1])
                i += 1
            else:
                raise ValueError(f"Unknown argument: {args[i]}")
            i += 1

        if start or end:
            if not (start and end):
                raise ValueError("Both --from and --to are needed for a date range")
            if start > end:
                raise ValueError("--from must not be after --to")
            period = 'custom'
        return period, start, end
