"""Entry points used by the user interface.

``FinanceEngine`` loads what each operation needs from the store, runs the
pure functions in ``logic`` and ``engagement`` against an injected "today",
and writes back only the records that changed.
"""
import logging
import random
from dataclasses import replace
from datetime import date
from typing import Callable, Optional
from uuid import uuid4

from kharcha.config import CURRENCY_SYMBOL
from kharcha.engagement import EngagementSnapshot, evaluate_achievements, next_streak, select_motivational_message
from kharcha.logic import calculate_current_balance, calculate_goal_progress, calculate_totals, process_subscriptions
from kharcha.models import (
    AchievementReport, GoalCategory, GoalConfig, GoalProgress, GoalScope, PaymentMode, PeriodKind, StreakRecord,
    Subscription, Totals, Transaction, TransactionType,
    ADJUSTMENT_TYPES, FREQUENCIES, GOAL_CATEGORIES, GOAL_SCOPES, PAYMENT_MODES, TRACKED_GOAL_SCOPES,
    TRANSACTION_TYPES,
)
from kharcha.periods import filter_by_period
from kharcha.storage import (
    AchievementStore, CompletedGoalsStore, GoalConfigStore, JsonStore, OpeningBalanceStore, StreakStore,
    SubscriptionStore, TransactionStore,
)

logger = logging.getLogger(__name__)


def validate_transaction(t: Transaction) -> None:
    if t.t_type not in TRANSACTION_TYPES:
        raise ValueError(f"Type must be one of: {', '.join(TRANSACTION_TYPES)}")
    if t.amount <= 0:
        raise ValueError("Amount must be positive")
    if t.mode not in PAYMENT_MODES:
        raise ValueError("Mode must be 'upi' or 'cash'")
    if t.t_type == "balance_adjustment" and t.adjustment_type not in ADJUSTMENT_TYPES:
        raise ValueError("Balance adjustments need an adjustment type of 'add' or 'subtract'")
    if t.t_type != "balance_adjustment" and t.adjustment_type is not None:
        raise ValueError("Only balance adjustments take an adjustment type")


def validate_subscription(sub: Subscription) -> None:
    if sub.frequency not in FREQUENCIES:
        raise ValueError(f"Invalid frequency, use: {'/'.join(FREQUENCIES)}")
    if sub.amount <= 0:
        raise ValueError("Amount must be positive")
    if sub.mode not in PAYMENT_MODES:
        raise ValueError("Mode must be 'upi' or 'cash'")
    if not isinstance(sub.next_billing_date, date):
        raise ValueError("Next billing date must be a date")


class FinanceEngine:
    def __init__(
            self,
            store: JsonStore,
            today: Callable[[], date] = date.today,
            symbol: str = CURRENCY_SYMBOL,
            rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.today = today
        self.symbol = symbol
        self.rng = rng
        self.transactions = TransactionStore(store)
        self.subscriptions = SubscriptionStore(store)
        self.streaks = StreakStore(store)
        self.achievements = AchievementStore(store)
        self.goals = GoalConfigStore(store)
        self.completed_goals = CompletedGoalsStore(store)
        self.opening_balances = OpeningBalanceStore(store)

    # ===== TRANSACTIONS =====
    def add_transaction(
            self,
            amount: float,
            t_type: TransactionType,
            t_date: Optional[date] = None,
            mode: PaymentMode = "upi",
            category_id: Optional[str] = None,
            note: str = "",
            adjustment_type: Optional[str] = None,
    ) -> Transaction:
        entry = Transaction(
            amount=amount,
            t_type=t_type,
            t_date=t_date or self.today(),
            mode=mode,
            category_id=category_id,
            note=note,
            adjustment_type=adjustment_type,
        )
        validate_transaction(entry)
        stored = self.transactions.append(entry)
        if stored.t_type != "balance_adjustment":
            self.update_streak()
        return stored

    def edit_transaction(self, transaction_id: int, **changes) -> Optional[Transaction]:
        changes.pop("id", None)
        entries = self.transactions.load_all()
        for i, t in enumerate(entries):
            if t.id == transaction_id:
                edited = replace(t, **changes, id=transaction_id)
                validate_transaction(edited)
                entries[i] = edited
                self.transactions.save_all(entries)
                return edited
        return None

    def delete_transaction(self, transaction_id: int) -> bool:
        entries = self.transactions.load_all()
        remaining = [t for t in entries if t.id != transaction_id]
        if len(remaining) == len(entries):
            return False
        self.transactions.save_all(remaining)
        return True

    def list_transactions(
            self,
            period: Optional[PeriodKind] = None,
            start: Optional[date] = None,
            end: Optional[date] = None,
    ) -> list[Transaction]:
        entries = self.transactions.load_all()
        if period is not None:
            entries = filter_by_period(entries, period, self.today(), start, end)
        return sorted(entries, key=lambda t: (t.t_date, t.id or 0))

    def totals(
            self,
            period: Optional[PeriodKind] = None,
            start: Optional[date] = None,
            end: Optional[date] = None,
    ) -> Totals:
        return calculate_totals(self.list_transactions(period, start, end))

    def set_opening_balance(self, mode: PaymentMode, amount: float) -> None:
        self.opening_balances.set(mode, amount)

    def current_balance(self, mode: PaymentMode) -> Optional[float]:
        return calculate_current_balance(
            self.opening_balances.get(mode), self.transactions.load_all(), mode,
        )

    # ===== SUBSCRIPTIONS =====
    def add_subscription(
            self,
            name: str,
            amount: float,
            frequency: str,
            next_billing_date: date,
            mode: PaymentMode = "upi",
            category_id: Optional[str] = None,
    ) -> Subscription:
        sub = Subscription(
            id=uuid4().hex,
            name=name,
            amount=amount,
            frequency=frequency,
            next_billing_date=next_billing_date,
            mode=mode,
            category_id=category_id,
            billing_day=next_billing_date.day if isinstance(next_billing_date, date) else None,
        )
        validate_subscription(sub)
        subs = self.subscriptions.load_all()
        subs.append(sub)
        self.subscriptions.save_all(subs)
        return sub

    def update_subscription(self, subscription_id: str, **changes) -> Optional[Subscription]:
        changes.pop("id", None)
        subs = self.subscriptions.load_all()
        for i, sub in enumerate(subs):
            if sub.id == subscription_id:
                updated = replace(sub, **changes, id=subscription_id)
                validate_subscription(updated)
                if "next_billing_date" in changes and "billing_day" not in changes:
                    updated = replace(updated, billing_day=updated.next_billing_date.day)
                subs[i] = updated
                self.subscriptions.save_all(subs)
                return subs[i]
        return None

    def delete_subscription(self, subscription_id: str) -> bool:
        subs = self.subscriptions.load_all()
        remaining = [s for s in subs if s.id != subscription_id]
        if len(remaining) == len(subs):
            return False
        self.subscriptions.save_all(remaining)
        return True

    def list_subscriptions(self) -> list[Subscription]:
        return self.subscriptions.load_all()

    def process_recurring_expenses(self) -> bool:
        """Bill every active subscription for the periods it missed.

        The new expenses and the advanced due dates are written together, so
        a failed write leaves neither behind. Returns whether anything was
        billed.
        """
        subs = self.subscriptions.load_all()
        updated_subs, new_entries, changed = process_subscriptions(subs, self.today())
        if not changed:
            return False
        with self.store.batch():
            self.transactions.append_all(new_entries)
            self.subscriptions.save_all(updated_subs)
        logger.info("Recorded %d subscription expense(s)", len(new_entries))
        return True

    # ===== STREAK =====
    def get_streak(self) -> StreakRecord:
        return self.streaks.get()

    def update_streak(self) -> StreakRecord:
        record = self.streaks.get()
        updated = next_streak(record, self.today())
        if updated != record:
            self.streaks.set(updated)
        return updated

    # ===== GOALS =====
    def get_goals(self) -> GoalConfig:
        return self.goals.get()

    def set_goal(self, scope: GoalScope, category: GoalCategory, amount: float, name: Optional[str] = None) -> GoalConfig:
        if scope not in GOAL_SCOPES:
            raise ValueError(f"Scope must be one of: {', '.join(GOAL_SCOPES)}")
        if category not in GOAL_CATEGORIES:
            raise ValueError("Category must be 'savings' or 'expense'")
        if amount < 0:
            raise ValueError("Goal amount cannot be negative")

        goals = self.goals.get()
        previous = goals.target(scope, category)
        goals = replace(goals, **{scope: replace(goals.scope(scope), **{category: float(amount)})})
        if scope == "custom" and name is not None:
            goals = replace(goals, **{f"custom_{category}_name": name})

        with self.store.batch():
            self.goals.set(goals)
            if category == "savings" and scope in TRACKED_GOAL_SCOPES and previous != amount:
                self._reset_goal_completion(scope)
        return goals

    def set_custom_range(self, start: Optional[date], end: Optional[date]) -> GoalConfig:
        if (start is None) != (end is None):
            raise ValueError("Custom goal range needs both a start and an end date")
        if start is not None and start > end:
            raise ValueError("Custom goal range starts after it ends")
        goals = replace(self.goals.get(), custom_start=start, custom_end=end)
        with self.store.batch():
            self.goals.set(goals)
            self._reset_goal_completion("custom")
        return goals

    def _reset_goal_completion(self, scope: GoalScope) -> None:
        flags = self.completed_goals.get()
        if flags.is_set(scope):
            self.completed_goals.set(replace(flags, **{scope: False}))

    def calculate_goal_progress(self, scope: GoalScope = "monthly", category: GoalCategory = "savings") -> GoalProgress:
        return calculate_goal_progress(
            scope, category, self.transactions.load_all(), self.goals.get(), self.today(),
        )

    def active_goals(self) -> list[GoalProgress]:
        """Progress for every goal with a target set."""
        entries = self.transactions.load_all()
        goals = self.goals.get()
        today = self.today()
        progress = []
        for category in GOAL_CATEGORIES:
            for scope in GOAL_SCOPES:
                result = calculate_goal_progress(scope, category, entries, goals, today)
                if result.is_set:
                    progress.append(result)
        return progress

    # ===== ACHIEVEMENTS =====
    def _snapshot(self) -> EngagementSnapshot:
        entries = self.transactions.load_all()
        goals = self.goals.get()
        today = self.today()
        return EngagementSnapshot(
            entry_count=len(entries),
            current_streak=self.streaks.get().current_streak,
            balance=calculate_totals(entries).balance,
            monthly_goal=calculate_goal_progress("monthly", "savings", entries, goals, today),
            yearly_goal=calculate_goal_progress("yearly", "savings", entries, goals, today),
            custom_goal=calculate_goal_progress("custom", "savings", entries, goals, today),
        )

    def check_achievements(self) -> AchievementReport:
        unlocked = self.achievements.get()
        flags = self.completed_goals.get()
        report, registry, new_flags = evaluate_achievements(self._snapshot(), unlocked, flags, self.symbol)

        if registry != unlocked or new_flags != flags:
            with self.store.batch():
                self.achievements.set(registry)
                self.completed_goals.set(new_flags)
        return report

    def get_motivational_message(self) -> str:
        snapshot = self._snapshot()
        return select_motivational_message(
            snapshot.current_streak,
            snapshot.monthly_goal,
            snapshot.balance,
            snapshot.entry_count,
            self.rng,
        )
