import math
from collections import defaultdict
from datetime import date, datetime, time, timezone
from typing import Callable, Dict, Iterable, Tuple

from tracker.domain import ALL, Expense
from tracker.validation import parse_date


def add_expense(expenses: Tuple[Expense, ...], e: Expense) -> Tuple[Expense, ...]:
    return expenses + (e,)


def replace_expense(expenses: Tuple[Expense, ...], e: Expense) -> Tuple[Expense, ...]:
    return tuple(e if x.id == e.id else x for x in expenses)


def remove_expense(expenses: Tuple[Expense, ...], expense_id: str) -> Tuple[Expense, ...]:
    return tuple(filter(lambda x: x.id != expense_id, expenses))


def find_expense(expenses: Iterable[Expense], expense_id: str):
    return next((x for x in expenses if x.id == expense_id), None)


def total_amount(expenses: Iterable[Expense]) -> float:
    return math.fsum(map(lambda x: x.amount, expenses))


def by_category(category: str) -> Callable[[Expense], bool]:
    def _filter(e: Expense) -> bool:
        return category in (None, ALL) or e.category == category

    return _filter


def by_date_range(start, end) -> Callable[[Expense], bool]:
    lo = parse_date(start).get_or_else(date.min)
    hi = parse_date(end).get_or_else(date.max)

    def _filter(e: Expense) -> bool:
        d = parse_date(e.date).get_or_else(None)
        return d is not None and lo <= d <= hi

    return _filter


def _date_key(e: Expense) -> date:
    return parse_date(e.date).get_or_else(date.min)


def newest_first(expenses: Iterable[Expense]) -> Tuple[Expense, ...]:
    # sorted() is stable, equal dates keep insertion order; unparseable dates go last
    return tuple(sorted(expenses, key=_date_key, reverse=True))


def category_statistics(expenses: Tuple[Expense, ...]) -> Dict[str, dict]:
    grand_total = total_amount(expenses)
    totals: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)

    for e in expenses:
        totals[e.category] += e.amount
        counts[e.category] += 1

    return {
        cat: {
            "total": totals[cat],
            "count": counts[cat],
            "percentage": round(totals[cat] / grand_total * 100, 1) if grand_total > 0 else 0.0,
        }
        for cat in totals
    }


def average_daily(expenses: Tuple[Expense, ...], now: datetime) -> float:
    if not expenses:
        return 0.0
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    # unparseable dates do not move the start of the window
    dates = [d for d in (parse_date(e.date).get_or_else(None) for e in expenses) if d is not None]
    if not dates:
        return total_amount(expenses)
    start = datetime.combine(min(dates), time.min, tzinfo=timezone.utc)
    days = max(1, math.ceil((now - start).total_seconds() / 86400))
    return total_amount(expenses) / days
