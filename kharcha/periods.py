from datetime import date, timedelta
from typing import Callable, Iterable, Optional

from dateutil.relativedelta import relativedelta

from kharcha.models import PeriodKind, Transaction


def get_period_dates(
        period: PeriodKind,
        today: date,
        start: Optional[date] = None,
        end: Optional[date] = None,
) -> tuple[date, date]:
    """Return the inclusive (start, end) window of a period relative to today.

    Weeks run Monday to Sunday. For ``custom`` both bounds must be given and
    are returned untouched, even when reversed.
    """
    if period == "daily":
        return today, today
    if period == "weekly":
        week_start = today - timedelta(days=today.weekday())
        return week_start, week_start + timedelta(days=6)
    if period == "monthly":
        month_start = today.replace(day=1)
        return month_start, month_start + relativedelta(months=1, days=-1)
    if period == "quarterly":
        quarter_start = date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
        return quarter_start, quarter_start + relativedelta(months=3, days=-1)
    if period == "yearly":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if period == "custom":
        if start is None or end is None:
            raise ValueError("Custom period needs both a start and an end date")
        return start, end
    raise ValueError(f"Unknown period: {period}")


def in_period(
        period: PeriodKind,
        today: date,
        start: Optional[date] = None,
        end: Optional[date] = None,
) -> Callable[[date], bool]:
    window_start, window_end = get_period_dates(period, today, start, end)

    def predicate(t_date: date) -> bool:
        return window_start <= t_date <= window_end

    return predicate


def filter_by_period(
        entries: Iterable[Transaction],
        period: PeriodKind,
        today: date,
        start: Optional[date] = None,
        end: Optional[date] = None,
) -> list[Transaction]:
    matches = in_period(period, today, start, end)
    return [t for t in entries if matches(t.t_date)]


def filter_by_date_range(entries: Iterable[Transaction], start: date, end: date) -> list[Transaction]:
    return [t for t in entries if start <= t.t_date <= end]
