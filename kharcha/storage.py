import copy
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import asdict, replace
from datetime import date
from pathlib import Path
from typing import Optional
from uuid import uuid4

from dateutil.parser import isoparse

from kharcha.models import (
    CompletedGoalsFlags, GoalConfig, GoalTarget, PaymentMode, StreakRecord, Subscription, Transaction,
    GOAL_SCOPES, PAYMENT_MODES, TRACKED_GOAL_SCOPES, TRANSACTION_TYPES,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The store file could not be read or written."""


def parse_date(value) -> date:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        raise ValueError(f"not a date: {value!r}")
    return isoparse(value).date()


def _optional_date(value) -> Optional[date]:
    return parse_date(value) if value else None


class JsonStore:
    """Durable key-value slots kept in a single JSON document.

    Every ``set`` rewrites the document through a temp file and
    ``os.replace``. Inside ``batch()`` writes are held back until the
    outermost batch exits, and dropped if it raises.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Optional[dict] = None
        self._depth = 0

    def _load(self) -> dict:
        if self._data is None:
            if not self.path.exists():
                self._data = {}
            else:
                try:
                    data = json.loads(self.path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    raise StorageError(f"Error loading {self.path}: {e}") from e
                if not isinstance(data, dict):
                    raise StorageError(f"Error loading {self.path}: expected a JSON object")
                self._data = data
        return self._data

    def _flush(self) -> None:
        data = self._load()
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            # memory may now be ahead of disk; reread on next access
            self._data = None
            raise StorageError(f"Error saving {self.path}: {e}") from e

    def get(self, key: str, default=None):
        return copy.deepcopy(self._load().get(key, default))

    def set(self, key: str, value) -> None:
        self._load()[key] = copy.deepcopy(value)
        if self._depth == 0:
            self._flush()

    @contextmanager
    def batch(self):
        snapshot = copy.deepcopy(self._load())
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._data = snapshot
            raise
        finally:
            self._depth -= 1
        if self._depth == 0:
            self._flush()


def transaction_to_dict(t: Transaction) -> dict:
    data = {
        "id": t.id,
        "type": t.t_type,
        "amount": t.amount,
        "date": t.t_date.isoformat(),
        "mode": t.mode,
        "category_id": t.category_id,
        "note": t.note,
    }
    if t.t_type == "balance_adjustment":
        data["adjustment_type"] = t.adjustment_type
    return data


def transaction_from_dict(data: dict) -> Transaction:
    t_type = data["type"]
    if t_type not in TRANSACTION_TYPES:
        raise ValueError(f"unknown type {t_type!r}")
    return Transaction(
        id=int(data["id"]) if data.get("id") is not None else None,
        amount=float(data["amount"]),
        t_type=t_type,
        t_date=parse_date(data["date"]),
        mode=data.get("mode") or "upi",
        category_id=data.get("category_id"),
        note=data.get("note") or "",
        adjustment_type=data.get("adjustment_type") if t_type == "balance_adjustment" else None,
    )


def subscription_to_dict(sub: Subscription) -> dict:
    data = asdict(sub)
    data["next_billing_date"] = sub.next_billing_date.isoformat() if sub.next_billing_date else None
    return data


def subscription_from_dict(data: dict) -> Subscription:
    try:
        next_billing = _optional_date(data.get("next_billing_date"))
    except ValueError:
        logger.warning("Subscription %r has an unreadable next billing date: %r",
                       data.get("name"), data.get("next_billing_date"))
        next_billing = None
    return Subscription(
        id=data.get("id"),
        name=data["name"],
        amount=float(data["amount"]),
        frequency=data.get("frequency") or "",
        next_billing_date=next_billing,
        mode=data.get("mode") or "upi",
        category_id=data.get("category_id"),
        is_active=bool(data.get("is_active", True)),
        billing_day=data.get("billing_day"),
    )


def goal_config_to_dict(goals: GoalConfig) -> dict:
    return {
        "savings": {scope: goals.target(scope, "savings") for scope in GOAL_SCOPES},
        "expense": {scope: goals.target(scope, "expense") for scope in GOAL_SCOPES},
        "custom_savings_name": goals.custom_savings_name,
        "custom_expense_name": goals.custom_expense_name,
        "custom_start": goals.custom_start.isoformat() if goals.custom_start else None,
        "custom_end": goals.custom_end.isoformat() if goals.custom_end else None,
    }


def goal_config_from_dict(data: dict) -> GoalConfig:
    if "savings" in data or "expense" in data:
        savings = data.get("savings") or {}
        expense = data.get("expense") or {}
        targets = {
            scope: GoalTarget(float(savings.get(scope) or 0), float(expense.get(scope) or 0))
            for scope in GOAL_SCOPES
        }
        savings_name = data.get("custom_savings_name") or ""
        expense_name = data.get("custom_expense_name") or ""
    else:
        # flat camelCase records; the oldest ones only had monthlyGoal/yearlyGoal/customGoal
        targets = {}
        for scope in GOAL_SCOPES:
            saved = data.get(f"{scope}SavingsGoal")
            if saved is None:
                saved = data.get(f"{scope}Goal")
            targets[scope] = GoalTarget(float(saved or 0), float(data.get(f"{scope}ExpenseGoal") or 0))
        savings_name = data.get("customSavingsGoalName") or data.get("customGoalName") or ""
        expense_name = data.get("customExpenseGoalName") or ""

    return GoalConfig(
        custom_savings_name=savings_name,
        custom_expense_name=expense_name,
        custom_start=_optional_date(data.get("custom_start")),
        custom_end=_optional_date(data.get("custom_end")),
        **targets,
    )


class TransactionStore:
    KEY = "transactions"
    COUNTER_KEY = "transaction_counter"

    def __init__(self, store: JsonStore):
        self.store = store

    def load_all(self) -> list[Transaction]:
        entries = []
        for raw in self.store.get(self.KEY, []):
            try:
                entries.append(transaction_from_dict(raw))
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping invalid transaction %s: %s",
                               raw.get("id") if isinstance(raw, dict) else raw, e)
        return entries

    def _next_id(self, raw_entries: list) -> int:
        counter = self.store.get(self.COUNTER_KEY, 0) or 0
        for raw in raw_entries:
            try:
                counter = max(counter, int(raw.get("id")))
            except (TypeError, ValueError, AttributeError):
                continue
        return counter + 1

    def append_all(self, entries: list[Transaction]) -> list[Transaction]:
        with self.store.batch():
            raw_entries = self.store.get(self.KEY, [])
            next_id = self._next_id(raw_entries)
            stored = []
            for t in entries:
                t = replace(t, id=next_id)
                next_id += 1
                raw_entries.append(transaction_to_dict(t))
                stored.append(t)
            self.store.set(self.KEY, raw_entries)
            self.store.set(self.COUNTER_KEY, next_id - 1)
        return stored

    def append(self, entry: Transaction) -> Transaction:
        return self.append_all([entry])[0]

    def save_all(self, entries: list[Transaction]) -> None:
        with self.store.batch():
            next_id = self._next_id(self.store.get(self.KEY, []))
            raw_entries = []
            for t in entries:
                if t.id is None:
                    t = replace(t, id=next_id)
                    next_id += 1
                raw_entries.append(transaction_to_dict(t))
            self.store.set(self.KEY, raw_entries)
            self.store.set(self.COUNTER_KEY, next_id - 1)


class SubscriptionStore:
    KEY = "subscriptions"

    def __init__(self, store: JsonStore):
        self.store = store

    def load_all(self) -> list[Subscription]:
        subs = []
        for raw in self.store.get(self.KEY, []):
            try:
                subs.append(subscription_from_dict(raw))
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping invalid subscription %s: %s",
                               raw.get("id") if isinstance(raw, dict) else raw, e)
        return subs

    def save_all(self, subs: list[Subscription]) -> None:
        self.store.set(self.KEY, [
            subscription_to_dict(sub if sub.id else replace(sub, id=uuid4().hex))
            for sub in subs
        ])


class StreakStore:
    KEY = "streak"

    def __init__(self, store: JsonStore):
        self.store = store

    def get(self) -> StreakRecord:
        raw = self.store.get(self.KEY)
        if not raw:
            return StreakRecord()
        try:
            return StreakRecord(
                current_streak=int(raw.get("current_streak", raw.get("currentStreak", 0))),
                longest_streak=int(raw.get("longest_streak", raw.get("longestStreak", 0))),
                last_entry_date=_optional_date(raw.get("last_entry_date", raw.get("lastEntryDate"))),
            )
        except (AttributeError, ValueError, TypeError) as e:
            logger.warning("Ignoring unreadable streak record: %s", e)
            return StreakRecord()

    def set(self, record: StreakRecord) -> None:
        self.store.set(self.KEY, {
            "current_streak": record.current_streak,
            "longest_streak": record.longest_streak,
            "last_entry_date": record.last_entry_date.isoformat() if record.last_entry_date else None,
        })


class AchievementStore:
    KEY = "achievements"

    def __init__(self, store: JsonStore):
        self.store = store

    def get(self) -> list[str]:
        raw = self.store.get(self.KEY, [])
        if not isinstance(raw, list):
            logger.warning("Ignoring unreadable achievement registry")
            return []
        return [str(a) for a in raw]

    def set(self, unlocked: list[str]) -> None:
        self.store.set(self.KEY, list(unlocked))


class GoalConfigStore:
    KEY = "goals"

    def __init__(self, store: JsonStore):
        self.store = store

    def get(self) -> GoalConfig:
        raw = self.store.get(self.KEY)
        if not raw:
            return GoalConfig()
        try:
            return goal_config_from_dict(raw)
        except (AttributeError, ValueError, TypeError) as e:
            logger.warning("Ignoring unreadable goal config: %s", e)
            return GoalConfig()

    def set(self, goals: GoalConfig) -> None:
        self.store.set(self.KEY, goal_config_to_dict(goals))


class CompletedGoalsStore:
    KEY = "goals_completed"

    def __init__(self, store: JsonStore):
        self.store = store

    def get(self) -> CompletedGoalsFlags:
        raw = self.store.get(self.KEY) or {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring unreadable completed goal flags")
            return CompletedGoalsFlags()
        return CompletedGoalsFlags(**{
            scope: bool(raw.get(scope, raw.get(f"{scope}GoalCompleted", False)))
            for scope in TRACKED_GOAL_SCOPES
        })

    def set(self, flags: CompletedGoalsFlags) -> None:
        self.store.set(self.KEY, asdict(flags))


class OpeningBalanceStore:
    KEY = "opening_balances"

    def __init__(self, store: JsonStore):
        self.store = store

    def _balances(self) -> dict:
        balances = self.store.get(self.KEY) or {}
        if not isinstance(balances, dict):
            logger.warning("Ignoring unreadable opening balances")
            return {}
        return balances

    def get(self, mode: PaymentMode) -> Optional[float]:
        value = self._balances().get(mode)
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable opening %s balance: %r", mode, value)
            return None

    def set(self, mode: PaymentMode, amount: float) -> None:
        if mode not in PAYMENT_MODES:
            raise ValueError(f"Unknown payment mode: {mode}")
        balances = self._balances()
        balances[mode] = amount
        self.store.set(self.KEY, balances)
