import io
import random
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date
from pathlib import Path
from unittest.mock import patch

from kharcha.cli import KharchaCLI
from kharcha.engagement import (
    DEFAULT_MESSAGE, EngagementSnapshot, evaluate_achievements, motivational_candidates, next_streak,
    select_motivational_message,
)
from kharcha.engine import FinanceEngine
from kharcha.logic import (
    advance_billing_date, calculate_current_balance, calculate_goal_progress, calculate_totals,
    catch_up_subscription, process_subscriptions,
)
from kharcha.models import (
    CompletedGoalsFlags, GoalConfig, GoalTarget, StreakRecord, Subscription, Transaction,
)
from kharcha.periods import filter_by_period, get_period_dates, in_period
from kharcha.storage import (
    GoalConfigStore, JsonStore, OpeningBalanceStore, StorageError, SubscriptionStore, TransactionStore,
)


def expense(amount, t_date, mode="upi"):
    return Transaction(amount=amount, t_type="expense", t_date=t_date, mode=mode)


def income(amount, t_date, mode="upi"):
    return Transaction(amount=amount, t_type="income", t_date=t_date, mode=mode)


def unset_goal(scope="monthly"):
    return calculate_goal_progress(scope, "savings", [], GoalConfig(), date(2024, 5, 15))


class StoreTestCase(unittest.TestCase):
    """Gives every test a fresh store file and a clock it can move."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "kharcha.json"
        self.today = date(2024, 5, 15)
        self.engine = self.make_engine()

    def tearDown(self):
        self._tmp.cleanup()

    def make_engine(self, **kwargs):
        return FinanceEngine(JsonStore(self.path), today=lambda: self.today, **kwargs)


class TestPeriods(unittest.TestCase):
    today = date(2024, 5, 15)  # a Wednesday

    def test_named_periods(self):
        """Test windows of the named periods"""
        self.assertEqual(get_period_dates("daily", self.today), (self.today, self.today))
        self.assertEqual(get_period_dates("weekly", self.today), (date(2024, 5, 13), date(2024, 5, 19)))
        self.assertEqual(get_period_dates("monthly", self.today), (date(2024, 5, 1), date(2024, 5, 31)))
        self.assertEqual(get_period_dates("quarterly", self.today), (date(2024, 4, 1), date(2024, 6, 30)))
        self.assertEqual(get_period_dates("yearly", self.today), (date(2024, 1, 1), date(2024, 12, 31)))

    def test_month_end_in_leap_february(self):
        """Test February ends on the 29th in a leap year"""
        self.assertEqual(get_period_dates("monthly", date(2024, 2, 10))[1], date(2024, 2, 29))
        self.assertEqual(get_period_dates("quarterly", date(2023, 11, 5)), (date(2023, 10, 1), date(2023, 12, 31)))

    def test_sunday_closes_the_week(self):
        """Test that Sunday closes the week that began on Monday"""
        self.assertEqual(get_period_dates("weekly", date(2024, 5, 19))[0], date(2024, 5, 13))

    def test_custom_range(self):
        """Test custom ranges are inclusive and require both bounds"""
        matches = in_period("custom", self.today, date(2024, 1, 1), date(2024, 1, 31))
        self.assertTrue(matches(date(2024, 1, 1)))
        self.assertTrue(matches(date(2024, 1, 31)))
        self.assertFalse(matches(date(2024, 2, 1)))

        with self.assertRaises(ValueError):
            get_period_dates("custom", self.today, date(2024, 1, 1))

    def test_reversed_custom_range_matches_nothing(self):
        """Test a reversed range is passed through, not corrected"""
        entries = [expense(10, date(2024, 1, 15))]
        self.assertEqual(filter_by_period(entries, "custom", self.today, date(2024, 2, 1), date(2024, 1, 1)), [])

    def test_unknown_period(self):
        with self.assertRaises(ValueError):
            get_period_dates("fortnightly", self.today)


class TestTotals(unittest.TestCase):
    def test_balance_adjustments_are_excluded(self):
        """Test that only income and expense entries are summed"""
        entries = [
            expense(100, date(2024, 1, 1)),
            income(50, date(2024, 1, 1)),
            Transaction(amount=1000, t_type="balance_adjustment", t_date=date(2024, 1, 1), adjustment_type="add"),
        ]
        totals = calculate_totals(entries)
        self.assertEqual(totals.expense, 100)
        self.assertEqual(totals.income, 50)
        self.assertEqual(totals.balance, -50)

    def test_split_by_mode(self):
        """Test totals split between UPI and cash"""
        entries = [
            expense(30, date(2024, 1, 1), "cash"),
            expense(70, date(2024, 1, 2), "upi"),
            income(500, date(2024, 1, 3), "upi"),
            income(20, date(2024, 1, 4), "cash"),
        ]
        totals = calculate_totals(entries)
        self.assertEqual(totals.expense_cash, 30)
        self.assertEqual(totals.expense_upi, 70)
        self.assertEqual(totals.income_upi, 500)
        self.assertEqual(totals.income_cash, 20)
        self.assertEqual(totals.balance, 420)

    def test_empty(self):
        self.assertEqual(calculate_totals([]).balance, 0)

    def test_current_balance_per_mode(self):
        """Test opening balance folding including adjustments"""
        entries = [
            income(1000, date(2024, 1, 1), "upi"),
            expense(200, date(2024, 1, 2), "upi"),
            expense(50, date(2024, 1, 2), "cash"),
            Transaction(amount=300, t_type="balance_adjustment", t_date=date(2024, 1, 3),
                        mode="upi", adjustment_type="subtract"),
        ]
        self.assertEqual(calculate_current_balance(100, entries, "upi"), 600)
        self.assertEqual(calculate_current_balance(100, entries, "cash"), 50)
        self.assertIsNone(calculate_current_balance(None, entries, "upi"))

    def test_current_balance_skips_adjustment_without_type(self):
        entries = [Transaction(amount=300, t_type="balance_adjustment", t_date=date(2024, 1, 3), id=9)]
        with self.assertLogs("kharcha.logic", "WARNING"):
            self.assertEqual(calculate_current_balance(100, entries, "upi"), 100)


class TestRecurringBilling(unittest.TestCase):
    def test_advance_each_frequency(self):
        """Test one-period advances"""
        start = date(2024, 1, 10)
        self.assertEqual(advance_billing_date(start, "daily"), date(2024, 1, 11))
        self.assertEqual(advance_billing_date(start, "weekly"), date(2024, 1, 17))
        self.assertEqual(advance_billing_date(start, "monthly"), date(2024, 2, 10))
        self.assertEqual(advance_billing_date(start, "yearly"), date(2025, 1, 10))

        with self.assertRaises(ValueError):
            advance_billing_date(start, "hourly")

    def test_month_end_billing_day_is_kept(self):
        """Test a 31st-of-month bill clamps in short months and comes back"""
        feb = advance_billing_date(date(2024, 1, 31), "monthly", 31)
        self.assertEqual(feb, date(2024, 2, 29))
        self.assertEqual(advance_billing_date(feb, "monthly", 31), date(2024, 3, 31))
        self.assertEqual(advance_billing_date(date(2024, 3, 31), "monthly", 31), date(2024, 4, 30))

    def test_leap_day_yearly(self):
        """Test yearly subscriptions started on Feb 29"""
        due = date(2024, 2, 29)
        seen = []
        for _ in range(4):
            due = advance_billing_date(due, "yearly", 29)
            seen.append(due)
        self.assertEqual(seen, [date(2025, 2, 28), date(2026, 2, 28), date(2027, 2, 28), date(2028, 2, 29)])

    def test_three_missed_periods(self):
        """Test catch-up bills each missed week exactly once"""
        sub = Subscription(name="Gym", amount=25.0, frequency="weekly",
                           next_billing_date=date(2024, 1, 1), mode="cash", category_id="health")
        entries, next_due = catch_up_subscription(sub, date(2024, 1, 15))

        self.assertEqual([t.t_date for t in entries], [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)])
        self.assertEqual(next_due, date(2024, 1, 22))
        for t in entries:
            self.assertEqual(t.t_type, "expense")
            self.assertEqual(t.amount, 25.0)
            self.assertEqual(t.mode, "cash")
            self.assertEqual(t.category_id, "health")
            self.assertEqual(t.note, "Subscription: Gym")

    def test_monthly_catch_up_keeps_day(self):
        sub = Subscription(name="Rent", amount=900.0, frequency="monthly",
                           next_billing_date=date(2024, 1, 31), billing_day=31)
        entries, next_due = catch_up_subscription(sub, date(2024, 4, 15))
        self.assertEqual([t.t_date for t in entries], [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)])
        self.assertEqual(next_due, date(2024, 4, 30))

    def test_not_yet_due(self):
        sub = Subscription(name="Music", amount=5.0, frequency="monthly", next_billing_date=date(2024, 6, 1))
        entries, next_due = catch_up_subscription(sub, date(2024, 5, 31))
        self.assertEqual(entries, [])
        self.assertEqual(next_due, date(2024, 6, 1))

    def test_broken_and_inactive_subscriptions(self):
        """Test that bad records are skipped without blocking the others"""
        subs = [
            Subscription(name="Paused", amount=5.0, frequency="daily",
                         next_billing_date=date(2024, 1, 1), is_active=False),
            Subscription(name="NoDate", amount=5.0, frequency="daily", next_billing_date=None),
            Subscription(name="Odd", amount=5.0, frequency="fortnightly", next_billing_date=date(2024, 1, 1)),
            Subscription(name="News", amount=2.0, frequency="daily", next_billing_date=date(2024, 1, 1)),
        ]
        with self.assertLogs("kharcha.logic", "WARNING") as logs:
            updated, entries, changed = process_subscriptions(subs, date(2024, 1, 2))

        self.assertTrue(changed)
        self.assertEqual(len(logs.records), 2)
        self.assertEqual([t.note for t in entries], ["Subscription: News"] * 2)
        self.assertEqual(updated[0].next_billing_date, date(2024, 1, 1))
        self.assertIsNone(updated[1].next_billing_date)
        self.assertEqual(updated[2].next_billing_date, date(2024, 1, 1))
        self.assertEqual(updated[3].next_billing_date, date(2024, 1, 3))


class TestRecurringEngine(StoreTestCase):
    def test_process_and_idempotence(self):
        """Test processing twice without elapsed time bills nothing the second time"""
        self.engine.add_subscription("Netflix", 199.0, "monthly", date(2024, 3, 10))

        self.assertTrue(self.engine.process_recurring_expenses())
        billed = self.engine.list_transactions()
        self.assertEqual([t.t_date for t in billed], [date(2024, 3, 10), date(2024, 4, 10), date(2024, 5, 10)])
        self.assertEqual([t.id for t in billed], [1, 2, 3])

        self.assertFalse(self.engine.process_recurring_expenses())
        self.assertEqual(len(self.engine.list_transactions()), 3)
        self.assertEqual(self.engine.list_subscriptions()[0].next_billing_date, date(2024, 6, 10))

    def test_state_survives_reopen(self):
        self.engine.add_subscription("Netflix", 199.0, "weekly", date(2024, 5, 1))
        self.engine.process_recurring_expenses()

        reopened = self.make_engine()
        self.assertEqual(len(reopened.list_transactions()), 3)
        self.assertEqual(reopened.list_subscriptions()[0].next_billing_date, date(2024, 5, 22))

    def test_failed_write_leaves_nothing_behind(self):
        """Test billed entries and the new due date are written together"""
        self.engine.add_subscription("Netflix", 199.0, "weekly", date(2024, 5, 1))

        with patch.object(JsonStore, "_flush", side_effect=StorageError("disk full")):
            with self.assertRaises(StorageError):
                self.engine.process_recurring_expenses()

        reopened = self.make_engine()
        self.assertEqual(reopened.list_transactions(), [])
        self.assertEqual(reopened.list_subscriptions()[0].next_billing_date, date(2024, 5, 1))

    def test_paused_subscription(self):
        sub = self.engine.add_subscription("Gym", 30.0, "daily", date(2024, 5, 1))
        self.engine.update_subscription(sub.id, is_active=False)
        self.assertFalse(self.engine.process_recurring_expenses())

    def test_unreadable_due_date_is_reported(self):
        """Test a stored subscription with a garbage date is skipped"""
        self.engine.store.set(SubscriptionStore.KEY, [
            {"id": "a", "name": "Gym", "amount": 10, "frequency": "monthly",
             "next_billing_date": "soon", "is_active": True},
            {"id": "b", "name": "News", "amount": 2, "frequency": "daily",
             "next_billing_date": "2024-05-14T00:00:00.000Z", "is_active": True},
        ])
        with self.assertLogs("kharcha", "WARNING"):
            self.assertTrue(self.engine.process_recurring_expenses())
        self.assertEqual(len(self.engine.list_transactions()), 2)

    def test_stray_subscription_record_is_skipped(self):
        """Test a stored subscription that is not an object does not block the others"""
        self.engine.store.set(SubscriptionStore.KEY, [
            "garbage",
            {"id": "b", "name": "News", "amount": 2, "frequency": "daily",
             "next_billing_date": "2024-05-14", "is_active": True},
        ])
        with self.assertLogs("kharcha.storage", "WARNING"):
            self.assertTrue(self.engine.process_recurring_expenses())
        self.assertEqual([t.t_date for t in self.engine.list_transactions()], [date(2024, 5, 14), date(2024, 5, 15)])

    def test_legacy_month_end_subscription_keeps_its_day(self):
        """Test a stored bill due on the 31st without a billing day still lands on the 31st after February"""
        self.engine.store.set(SubscriptionStore.KEY, [
            {"id": "r", "name": "Rent", "amount": 900, "frequency": "monthly",
             "next_billing_date": "2024-01-31", "is_active": True},
        ])
        self.today = date(2024, 2, 15)
        self.engine.process_recurring_expenses()
        self.assertEqual(self.make_engine().list_subscriptions()[0].billing_day, 31)

        self.today = date(2024, 4, 15)
        self.engine.process_recurring_expenses()
        billed = [t.t_date for t in self.engine.list_transactions()]
        self.assertEqual(billed, [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)])
        self.assertEqual(self.engine.list_subscriptions()[0].next_billing_date, date(2024, 4, 30))

    def test_subscription_crud(self):
        sub = self.engine.add_subscription("Cloud", 3.0, "monthly", date(2024, 6, 30), mode="cash")
        self.assertEqual(sub.billing_day, 30)
        self.assertTrue(sub.is_active)

        updated = self.engine.update_subscription(sub.id, amount=4.0)
        self.assertEqual(updated.amount, 4.0)
        self.assertIsNone(self.engine.update_subscription("missing", amount=1.0))

        self.assertTrue(self.engine.delete_subscription(sub.id))
        self.assertFalse(self.engine.delete_subscription(sub.id))
        self.assertEqual(self.engine.list_subscriptions(), [])

        with self.assertRaises(ValueError):
            self.engine.add_subscription("Bad", 3.0, "hourly", date(2024, 6, 1))

    def test_update_subscription_is_validated(self):
        """Test updates are checked the same way new subscriptions are"""
        sub = self.engine.add_subscription("Cloud", 3.0, "monthly", date(2024, 6, 30))
        for changes in ({"next_billing_date": None}, {"frequency": "hourly"}, {"amount": 0}, {"mode": "card"}):
            with self.assertRaises(ValueError):
                self.engine.update_subscription(sub.id, **changes)
        self.assertEqual(self.engine.list_subscriptions(), [sub])

        moved = self.engine.update_subscription(sub.id, next_billing_date=date(2024, 7, 31))
        self.assertEqual(moved.billing_day, 31)


class TestStreak(unittest.TestCase):
    def test_sequence_with_gap(self):
        """Test two consecutive days, a repeat, then a gap"""
        record = StreakRecord()
        for day in (date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 2), date(2024, 1, 4)):
            record = next_streak(record, day)
        self.assertEqual(record.current_streak, 1)
        self.assertEqual(record.longest_streak, 2)
        self.assertEqual(record.last_entry_date, date(2024, 1, 4))

    def test_first_entry(self):
        record = next_streak(StreakRecord(), date(2024, 1, 1))
        self.assertEqual((record.current_streak, record.longest_streak), (1, 1))

    def test_reset_keeps_longest(self):
        record = StreakRecord(current_streak=5, longest_streak=9, last_entry_date=date(2024, 1, 1))
        record = next_streak(record, date(2024, 1, 10))
        self.assertEqual((record.current_streak, record.longest_streak), (1, 9))

    def test_clock_behind_last_entry(self):
        """Test that a clock moved backwards leaves the streak alone"""
        record = StreakRecord(current_streak=3, longest_streak=3, last_entry_date=date(2024, 1, 10))
        with self.assertLogs("kharcha.engagement", "WARNING"):
            self.assertEqual(next_streak(record, date(2024, 1, 8)), record)


class TestStreakEngine(StoreTestCase):
    def test_entries_drive_streak(self):
        """Test that adding entries over several days builds a streak"""
        for day in (13, 14, 15):
            self.today = date(2024, 5, day)
            self.engine.add_transaction(10, "expense")
            self.engine.add_transaction(5, "expense")

        record = self.engine.get_streak()
        self.assertEqual(record.current_streak, 3)
        self.assertEqual(record.longest_streak, 3)

    def test_balance_adjustments_do_not_count(self):
        self.engine.add_transaction(100, "balance_adjustment", adjustment_type="add")
        self.assertEqual(self.engine.get_streak(), StreakRecord())

    def test_subscription_billing_does_not_count(self):
        self.engine.add_subscription("News", 2.0, "daily", date(2024, 5, 10))
        self.engine.process_recurring_expenses()
        self.assertEqual(self.engine.get_streak().current_streak, 0)

    def test_editing_past_entries_keeps_streak(self):
        self.today = date(2024, 5, 14)
        first = self.engine.add_transaction(10, "expense")
        self.today = date(2024, 5, 15)
        self.engine.add_transaction(10, "expense")

        self.engine.delete_transaction(first.id)
        self.assertEqual(self.engine.get_streak().current_streak, 2)


class TestGoals(unittest.TestCase):
    today = date(2024, 5, 15)

    def goals(self, **targets):
        return GoalConfig(**targets)

    def test_expense_limit_within(self):
        """Test staying under an expense limit counts as success"""
        goals = self.goals(monthly=GoalTarget(expense=1000))
        progress = calculate_goal_progress("monthly", "expense", [expense(800, date(2024, 5, 10))], goals, self.today)
        self.assertTrue(progress.is_completed)
        self.assertFalse(progress.is_over_limit)
        self.assertAlmostEqual(progress.progress, 80)
        self.assertEqual(progress.remaining, 200)

    def test_expense_limit_exceeded(self):
        goals = self.goals(monthly=GoalTarget(expense=1000))
        progress = calculate_goal_progress("monthly", "expense", [expense(1200, date(2024, 5, 10))], goals, self.today)
        self.assertFalse(progress.is_completed)
        self.assertTrue(progress.is_over_limit)
        self.assertEqual(progress.progress, 100)
        self.assertEqual(progress.remaining, 0)

    def test_savings_reached(self):
        goals = self.goals(monthly=GoalTarget(savings=500))
        entries = [income(700, date(2024, 5, 1)), expense(200, date(2024, 5, 2))]
        progress = calculate_goal_progress("monthly", "savings", entries, goals, self.today)
        self.assertEqual(progress.current_value, 500)
        self.assertTrue(progress.is_completed)
        self.assertFalse(progress.is_over_limit)

    def test_unset_goal_is_never_completed(self):
        """Test a zero target means the goal is not configured"""
        entries = [income(700, date(2024, 5, 1))]
        for category in ("savings", "expense"):
            progress = calculate_goal_progress("monthly", category, entries, GoalConfig(), self.today)
            self.assertFalse(progress.is_completed)
            self.assertFalse(progress.is_over_limit)
            self.assertEqual(progress.progress, 0)
            self.assertFalse(progress.is_set)

    def test_negative_savings_clamps_progress(self):
        goals = self.goals(weekly=GoalTarget(savings=100))
        progress = calculate_goal_progress("weekly", "savings", [expense(50, self.today)], goals, self.today)
        self.assertEqual(progress.progress, 0)
        self.assertEqual(progress.remaining, 150)

    def test_scope_windows(self):
        """Test each scope only counts entries inside its window"""
        entries = [
            expense(10, self.today),
            expense(20, date(2024, 5, 13)),
            expense(40, date(2024, 5, 1)),
            expense(80, date(2024, 1, 1)),
            expense(160, date(2023, 12, 31)),
        ]
        goals = GoalConfig(**{scope: GoalTarget(expense=1) for scope in ("daily", "weekly", "monthly", "yearly", "custom")})
        expected = {"daily": 10, "weekly": 30, "monthly": 70, "yearly": 150, "custom": 310}
        for scope, value in expected.items():
            progress = calculate_goal_progress(scope, "expense", entries, goals, self.today)
            self.assertEqual(progress.current_value, value, scope)

    def test_custom_range(self):
        goals = GoalConfig(custom=GoalTarget(savings=100),
                           custom_start=date(2024, 2, 1), custom_end=date(2024, 2, 29))
        entries = [income(100, date(2024, 2, 10)), expense(500, date(2024, 3, 1))]
        progress = calculate_goal_progress("custom", "savings", entries, goals, self.today)
        self.assertTrue(progress.is_completed)

    def test_adjustments_do_not_move_goals(self):
        goals = self.goals(monthly=GoalTarget(savings=500))
        entries = [Transaction(amount=1000, t_type="balance_adjustment", t_date=self.today, adjustment_type="add")]
        self.assertFalse(calculate_goal_progress("monthly", "savings", entries, goals, self.today).is_completed)

    def test_unknown_scope_or_category(self):
        with self.assertRaises(ValueError):
            calculate_goal_progress("hourly", "savings", [], GoalConfig(), self.today)
        with self.assertRaises(ValueError):
            calculate_goal_progress("monthly", "fun", [], GoalConfig(), self.today)


class TestGoalEngine(StoreTestCase):
    def test_set_goal_and_active_goals(self):
        """Test only configured goals are listed"""
        self.engine.set_goal("monthly", "savings", 500)
        self.engine.set_goal("custom", "expense", 2000, name="Trip")
        self.engine.add_transaction(600, "income")

        goals = self.engine.get_goals()
        self.assertEqual(goals.custom_expense_name, "Trip")
        active = self.engine.active_goals()
        self.assertEqual([(g.scope, g.category) for g in active], [("monthly", "savings"), ("custom", "expense")])
        self.assertTrue(self.engine.calculate_goal_progress("monthly", "savings").is_completed)

    def test_invalid_goal_input(self):
        with self.assertRaises(ValueError):
            self.engine.set_goal("monthly", "savings", -1)
        with self.assertRaises(ValueError):
            self.engine.set_goal("hourly", "savings", 1)
        with self.assertRaises(ValueError):
            self.engine.set_custom_range(date(2024, 2, 1), date(2024, 1, 1))


class TestAchievements(unittest.TestCase):
    def snapshot(self, **overrides):
        values = dict(
            entry_count=0,
            current_streak=0,
            balance=0.0,
            monthly_goal=unset_goal("monthly"),
            yearly_goal=unset_goal("yearly"),
            custom_goal=unset_goal("custom"),
        )
        values.update(overrides)
        return EngagementSnapshot(**values)

    def test_nothing_to_unlock(self):
        report, registry, flags = evaluate_achievements(self.snapshot(), [], CompletedGoalsFlags())
        self.assertEqual(report.new_achievements, [])
        self.assertEqual(registry, [])
        self.assertEqual(len(report.all_achievements), 12)

    def test_thresholds(self):
        """Test entry, streak and balance thresholds unlock in order"""
        snapshot = self.snapshot(entry_count=50, current_streak=7, balance=10000)
        report, registry, _ = evaluate_achievements(snapshot, [], CompletedGoalsFlags())
        self.assertEqual(registry, [
            "first_entry", "ten_entries", "fifty_entries", "streak_7", "savings_10k", "positive_balance",
        ])
        self.assertEqual([a.id for a in report.new_achievements], registry)
        self.assertTrue(all(a.unlocked for a in report.new_achievements))

    def test_idempotent(self):
        """Test a second run with the same state unlocks nothing"""
        snapshot = self.snapshot(entry_count=100, current_streak=30, balance=100000)
        _, registry, flags = evaluate_achievements(snapshot, [], CompletedGoalsFlags())
        report, again, same_flags = evaluate_achievements(snapshot, registry, flags)
        self.assertEqual(report.new_achievements, [])
        self.assertEqual(again, registry)
        self.assertEqual(same_flags, flags)

    def test_registry_is_never_shrunk(self):
        report, registry, _ = evaluate_achievements(self.snapshot(), ["streak_30"], CompletedGoalsFlags())
        self.assertEqual(registry, ["streak_30"])
        self.assertTrue(next(a for a in report.all_achievements if a.id == "streak_30").unlocked)

    def test_goal_achievement_sets_flag(self):
        goals = GoalConfig(monthly=GoalTarget(savings=100))
        monthly = calculate_goal_progress("monthly", "savings", [income(150, date(2024, 5, 2))], goals, date(2024, 5, 15))
        report, registry, flags = evaluate_achievements(
            self.snapshot(monthly_goal=monthly), [], CompletedGoalsFlags(), symbol="$",
        )
        self.assertIn("monthly_goal_completed", registry)
        self.assertTrue(flags.monthly)
        self.assertFalse(flags.yearly)
        achieved = next(a for a in report.new_achievements if a.id == "monthly_goal_completed")
        self.assertEqual(achieved.description, "Reached your monthly savings goal of $100!")


class TestAchievementEngine(StoreTestCase):
    def ids(self, report):
        return [a.id for a in report.new_achievements]

    def test_first_entry(self):
        self.engine.add_transaction(100, "income")
        self.assertEqual(self.ids(self.engine.check_achievements()), ["first_entry", "positive_balance"])
        self.assertEqual(self.ids(self.engine.check_achievements()), [])

    def test_goal_achievement_fires_again_after_target_change(self):
        """Test that changing a savings target lets its achievement fire again"""
        self.engine.set_goal("monthly", "savings", 50)
        self.engine.add_transaction(100, "income")
        self.assertIn("monthly_goal_completed", self.ids(self.engine.check_achievements()))
        self.assertEqual(self.ids(self.engine.check_achievements()), [])

        self.engine.set_goal("monthly", "savings", 80)
        self.assertEqual(self.ids(self.engine.check_achievements()), ["monthly_goal_completed"])
        self.assertEqual(self.engine.achievements.get().count("monthly_goal_completed"), 1)

    def test_unchanged_target_keeps_flag(self):
        self.engine.set_goal("yearly", "savings", 50)
        self.engine.add_transaction(100, "income")
        self.engine.check_achievements()
        self.engine.set_goal("yearly", "savings", 50)
        self.assertEqual(self.ids(self.engine.check_achievements()), [])

    def test_expense_goals_grant_nothing(self):
        self.engine.set_goal("monthly", "expense", 1000)
        self.engine.add_transaction(10, "expense")
        self.assertEqual(self.ids(self.engine.check_achievements()), ["first_entry"])
        self.assertFalse(self.engine.completed_goals.get().monthly)


class TestMotivation(unittest.TestCase):
    def test_default_message(self):
        self.assertEqual(select_motivational_message(0, unset_goal(), 0, 0), DEFAULT_MESSAGE)

    def test_candidates(self):
        """Test every signal contributes one candidate"""
        goals = GoalConfig(monthly=GoalTarget(savings=100))
        monthly = calculate_goal_progress("monthly", "savings", [income(80, date(2024, 5, 2))], goals, date(2024, 5, 15))
        messages = motivational_candidates(8, monthly, 80, 120)
        self.assertEqual(len(messages), 4)
        self.assertIn("8 days in a row", messages[0])
        self.assertIn("80%", messages[1])
        self.assertIn("120 entries", messages[3])

    def test_choice_uses_rng(self):
        messages = motivational_candidates(2, unset_goal(), 10, 0)
        picked = select_motivational_message(2, unset_goal(), 10, 0, rng=random.Random(7))
        self.assertIn(picked, messages)


class TestMotivationEngine(StoreTestCase):
    def test_message_from_store(self):
        self.engine = self.make_engine(rng=random.Random(1))
        self.engine.add_transaction(10, "expense")
        self.assertEqual(self.engine.get_motivational_message(), "🔥 1 day streak! You're doing great!")


class TestStorage(StoreTestCase):
    def test_ids_increase_after_delete(self):
        """Test ids keep growing even after the newest entry is deleted"""
        first = self.engine.add_transaction(1, "expense")
        second = self.engine.add_transaction(2, "expense")
        self.assertTrue(self.engine.delete_transaction(second.id))
        third = self.engine.add_transaction(3, "expense")
        self.assertEqual((first.id, second.id, third.id), (1, 2, 3))
        self.assertFalse(self.engine.delete_transaction(99))

    def test_edit_transaction(self):
        entry = self.engine.add_transaction(10, "expense", note="tea")
        edited = self.engine.edit_transaction(entry.id, amount=12.5, mode="cash")
        self.assertEqual(edited.id, entry.id)
        self.assertEqual(self.engine.list_transactions(), [edited])
        self.assertIsNone(self.engine.edit_transaction(42, amount=1))
        with self.assertRaises(ValueError):
            self.engine.edit_transaction(entry.id, amount=-3)

    def test_invalid_input_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.add_transaction(0, "expense")
        with self.assertRaises(ValueError):
            self.engine.add_transaction(10, "balance_adjustment")
        with self.assertRaises(ValueError):
            self.engine.add_transaction(10, "expense", mode="card")

    def test_malformed_transaction_skipped(self):
        self.engine.store.set(TransactionStore.KEY, [
            {"id": 1, "type": "expense", "amount": 5, "date": "not a date"},
            {"id": 2, "type": "income", "amount": 7, "date": "2024-05-01"},
        ])
        with self.assertLogs("kharcha.storage", "WARNING"):
            entries = self.engine.list_transactions()
        self.assertEqual([t.id for t in entries], [2])

    def test_batch_rolls_back(self):
        """Test an exception inside a batch discards its writes"""
        store = JsonStore(self.path)
        store.set("a", 1)
        with self.assertRaises(RuntimeError):
            with store.batch():
                store.set("a", 2)
                store.set("b", 3)
                raise RuntimeError("boom")
        self.assertEqual(store.get("a"), 1)
        self.assertIsNone(store.get("b"))
        self.assertEqual(JsonStore(self.path).get("a"), 1)

    def test_corrupt_file(self):
        self.path.write_text("{not json")
        with self.assertRaises(StorageError):
            self.make_engine().list_transactions()

    def test_legacy_goal_records(self):
        """Test flat goal records from older versions are migrated"""
        self.engine.store.set(GoalConfigStore.KEY, {
            "monthlyGoal": 500, "yearlyGoal": 6000, "customGoal": 100, "customGoalName": "Bike",
            "dailyExpenseGoal": 50,
        })
        goals = self.engine.get_goals()
        self.assertEqual(goals.target("monthly", "savings"), 500)
        self.assertEqual(goals.target("yearly", "savings"), 6000)
        self.assertEqual(goals.target("daily", "expense"), 50)
        self.assertEqual(goals.custom_savings_name, "Bike")

    def test_goal_config_round_trip(self):
        self.engine.set_goal("weekly", "expense", 300)
        self.engine.set_custom_range(date(2024, 1, 1), date(2024, 6, 30))
        goals = self.make_engine().get_goals()
        self.assertEqual(goals.target("weekly", "expense"), 300)
        self.assertEqual((goals.custom_start, goals.custom_end), (date(2024, 1, 1), date(2024, 6, 30)))

    def test_opening_balance(self):
        self.assertIsNone(self.engine.current_balance("cash"))
        self.engine.set_opening_balance("cash", 500)
        self.engine.add_transaction(120, "expense", mode="cash")
        self.engine.add_transaction(20, "balance_adjustment", mode="cash", adjustment_type="add")
        self.assertEqual(self.engine.current_balance("cash"), 400)

    def test_unreadable_opening_balances_are_ignored(self):
        """Test opening balances stored in the wrong shape read as not set"""
        self.engine.store.set(OpeningBalanceStore.KEY, [500])
        with self.assertLogs("kharcha.storage", "WARNING"):
            self.assertIsNone(self.engine.current_balance("cash"))

        self.engine.store.set(OpeningBalanceStore.KEY, {"cash": "lots"})
        with self.assertLogs("kharcha.storage", "WARNING"):
            self.assertIsNone(self.engine.current_balance("cash"))

    def test_store_file_is_plain_json(self):
        """Test dates are saved as ISO strings"""
        self.engine.add_transaction(10, "expense", t_date=date(2024, 5, 1))
        self.assertIn('2024-05-01', self.path.read_text())


class TestCLI(StoreTestCase):
    def run_cmd(self, line):
        out = io.StringIO()
        with redirect_stdout(out):
            KharchaCLI(self.engine).onecmd(line)
        return out.getvalue()

    def test_add_and_report(self):
        self.assertIn("✓ Added income #1", self.run_cmd("add 1000 income salary --mode cash"))
        self.run_cmd("add 250 expense food 2024-05-14 --desc lunch with team")
        report = self.run_cmd("report --month")
        self.assertIn(f"Net:      {self.engine.symbol}750.00", report)

        entries = self.engine.list_transactions()
        self.assertEqual(entries[0].note, "lunch with team")
        self.assertEqual(entries[0].category_id, "food")
        self.assertEqual(entries[1].mode, "cash")

    def test_bad_input_is_reported(self):
        self.assertIn("Invalid input", self.run_cmd("add 10 gift"))
        self.assertIn("Invalid input", self.run_cmd("goal set monthly savings -5"))

    def test_adjust_keeps_category(self):
        self.assertIn("✓ Recorded add adjustment", self.run_cmd("adjust 100 add Food --mode cash"))
        entry = self.engine.list_transactions()[0]
        self.assertEqual((entry.category_id, entry.adjustment_type, entry.mode), ("Food", "add", "cash"))

    def test_subscription_commands(self):
        self.run_cmd("sub add Netflix 199 monthly 2024-05-01")
        self.assertIn("Recorded due subscription payments", self.run_cmd("process"))
        self.assertIn("Nothing due", self.run_cmd("process"))
        self.assertIn("next 2024-06-01", self.run_cmd("sub list"))


if __name__ == "__main__":
    unittest.main()
