import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from kharcha.models import (
    GoalCategory, GoalConfig, GoalProgress, GoalScope, PaymentMode, Subscription, Totals, Transaction,
    FREQUENCIES, GOAL_CATEGORIES,
)
from kharcha.periods import filter_by_period

logger = logging.getLogger(__name__)


def calculate_totals(entries: Iterable[Transaction]) -> Totals:
    """Sum expenses and income, split by payment mode.

    Balance adjustments move an account balance and are not spending or
    earning, so only ``expense`` and ``income`` entries are counted.
    """
    sums = {
        ("expense", "upi"): 0.0,
        ("expense", "cash"): 0.0,
        ("income", "upi"): 0.0,
        ("income", "cash"): 0.0,
    }
    for t in entries:
        if t.t_type not in ("expense", "income"):
            continue
        mode = "cash" if t.mode == "cash" else "upi"
        sums[(t.t_type, mode)] += t.amount

    expense = sums[("expense", "upi")] + sums[("expense", "cash")]
    income = sums[("income", "upi")] + sums[("income", "cash")]
    return Totals(
        expense=expense,
        income=income,
        balance=income - expense,
        expense_upi=sums[("expense", "upi")],
        expense_cash=sums[("expense", "cash")],
        income_upi=sums[("income", "upi")],
        income_cash=sums[("income", "cash")],
    )


def calculate_current_balance(
        initial_balance: Optional[float],
        entries: Iterable[Transaction],
        mode: PaymentMode,
) -> Optional[float]:
    """Fold one payment mode's entries onto its opening balance."""
    if initial_balance is None:
        return None

    balance = initial_balance
    for t in entries:
        if t.mode != mode or t.amount <= 0:
            continue
        if t.t_type == "income":
            balance += t.amount
        elif t.t_type == "expense":
            balance -= t.amount
        elif t.t_type == "balance_adjustment":
            if t.adjustment_type == "add":
                balance += t.amount
            elif t.adjustment_type == "subtract":
                balance -= t.amount
            else:
                logger.warning("Skipping balance adjustment %s without adjustment type", t.id)
    return round(balance, 2)


def advance_billing_date(current: date, frequency: str, billing_day: Optional[int] = None) -> date:
    """Move a due date forward by one billing period.

    Monthly and yearly periods land on ``billing_day`` (the current day of
    month when not given), clamped to the length of the target month.
    """
    if frequency == "daily":
        return current + timedelta(days=1)
    if frequency == "weekly":
        return current + timedelta(days=7)
    if frequency == "monthly":
        return current + relativedelta(months=1, day=billing_day or current.day)
    if frequency == "yearly":
        return current + relativedelta(years=1, day=billing_day or current.day)
    raise ValueError(f"Unknown billing frequency: {frequency}")


def catch_up_subscription(sub: Subscription, today: date) -> tuple[list[Transaction], date]:
    """Materialize one expense per period elapsed up to and including today.

    Returns the new entries in date order and the first due date after today.
    """
    if sub.next_billing_date is None:
        raise ValueError(f"Subscription {sub.id} has no next billing date")
    if sub.frequency not in FREQUENCIES:
        raise ValueError(f"Unknown billing frequency: {sub.frequency}")

    due = sub.next_billing_date
    billing_day = sub.billing_day or due.day
    materialized = []
    while due <= today:
        materialized.append(Transaction(
            amount=sub.amount,
            t_type="expense",
            t_date=due,
            mode=sub.mode,
            category_id=sub.category_id,
            note=f"Subscription: {sub.name}",
        ))
        due = advance_billing_date(due, sub.frequency, billing_day)
    return materialized, due


def process_subscriptions(
        subscriptions: Iterable[Subscription],
        today: date,
) -> tuple[list[Subscription], list[Transaction], bool]:
    """Catch every active subscription up to today.

    Broken subscriptions are logged and passed through unchanged so one bad
    record never blocks the rest.
    """
    updated_subs = []
    new_entries = []
    changed = False
    for sub in subscriptions:
        if not sub.is_active:
            updated_subs.append(sub)
            continue
        try:
            entries, next_due = catch_up_subscription(sub, today)
        except ValueError as e:
            logger.warning("Skipping subscription %r: %s", sub.name, e)
            updated_subs.append(sub)
            continue

        if entries:
            logger.info("Billed %d missed period(s) for %r", len(entries), sub.name)
            new_entries.extend(entries)
            # pin the day so a clamped month-end due date does not become the new anchor
            updated_subs.append(replace(
                sub,
                next_billing_date=next_due,
                billing_day=sub.billing_day or sub.next_billing_date.day,
            ))
            changed = True
        else:
            updated_subs.append(sub)
    return updated_subs, new_entries, changed


def calculate_goal_progress(
        scope: GoalScope,
        category: GoalCategory,
        entries: Iterable[Transaction],
        goals: GoalConfig,
        today: date,
) -> GoalProgress:
    if category not in GOAL_CATEGORIES:
        raise ValueError(f"Unknown goal category: {category}")
    target = goals.target(scope, category)

    if scope == "custom":
        if goals.custom_start and goals.custom_end:
            scoped = filter_by_period(entries, "custom", today, goals.custom_start, goals.custom_end)
        else:
            # no explicit window: the custom goal covers the whole history
            scoped = list(entries)
    else:
        scoped = filter_by_period(entries, scope, today)

    totals = calculate_totals(scoped)
    current = totals.balance if category == "savings" else totals.expense

    if target > 0:
        progress = min(max(current * 100 / target, 0.0), 100.0)
    else:
        progress = 0.0
    remaining = max(target - current, 0.0)

    if category == "savings":
        is_completed = current >= target and target > 0
        is_over_limit = False
    else:
        is_completed = current <= target and target > 0
        is_over_limit = current > target and target > 0

    return GoalProgress(
        scope=scope,
        category=category,
        current_value=current,
        target_goal=target,
        progress=progress,
        remaining=remaining,
        is_completed=is_completed,
        is_over_limit=is_over_limit,
    )
