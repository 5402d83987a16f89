"""Shape checks and coercions for records and expense input.

Checks return ``Either``: ``Right`` with the parsed value or ``Left`` with an
error dict ``{"error": <code>, "message": <text>}``. Coercions return ``Maybe``.
"""

import math
from datetime import date, datetime
from typing import Any

from tracker.domain import CATEGORIES, RECORD_VERSION, Expense, Record, is_amount, utc_now_iso
from tracker.functional import Either, Left, Maybe, Nothing, Right, Some

REQUIRED_TEXT_FIELDS = ("id", "description", "category", "date")


def _error(code: str, message: str, **extra) -> dict:
    return {"error": code, "message": message, **extra}


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def coerce_amount(value: Any) -> Maybe[float]:
    """Parse a user-supplied number. Strings are stripped first."""
    if isinstance(value, bool) or value is None:
        return Nothing()
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return Nothing()
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return Nothing()
    if not math.isfinite(number):
        return Nothing()
    return Some(number)


def coerce_budget(value: Any) -> float:
    return coerce_amount(value).map(lambda n: n if n >= 0 else 0.0).get_or_else(0.0)


def parse_date(value: Any) -> Maybe[date]:
    if isinstance(value, datetime):
        return Some(value.date())
    if isinstance(value, date):
        return Some(value)
    if not isinstance(value, str):
        return Nothing()
    try:
        return Some(date.fromisoformat(value.strip()[:10]))
    except ValueError:
        return Nothing()


def parse_expense(raw: Any) -> Either[dict, Expense]:
    if not isinstance(raw, dict):
        return Left(_error("invalid_expense", "Expense entry is not an object"))
    for name in REQUIRED_TEXT_FIELDS:
        if not _is_text(raw.get(name)):
            return Left(_error("missing_field", f"Expense field '{name}' is missing", field=name, id=raw.get("id")))
    amount = raw.get("amount")
    if not is_amount(amount) or amount < 0:
        return Left(_error("invalid_amount", "Expense amount must be a finite number >= 0", id=raw["id"], amount=amount))
    return Right(Expense.from_dict(raw))


def parse_record(data: Any) -> Either[dict, Record]:
    """Build a Record from decoded JSON. A missing or invalid budget reads as 0."""
    if not isinstance(data, dict):
        return Left(_error("invalid_record", "Record is not an object"))
    raw_expenses = data.get("expenses")
    if not isinstance(raw_expenses, list):
        return Left(_error("invalid_record", "Record has no expense list"))

    expenses = []
    for raw in raw_expenses:
        parsed = parse_expense(raw)
        if parsed.is_left():
            return parsed
        expenses.append(parsed.get_or_else(None))

    budget = data.get("budget")
    created_at = data.get("createdAt")
    return Right(Record(
        budget=float(budget) if is_amount(budget) and budget >= 0 else 0.0,
        expenses=tuple(expenses),
        version=str(data.get("version") or RECORD_VERSION),
        created_at=created_at if isinstance(created_at, str) else utc_now_iso(),
        last_modified=data.get("lastModified"),
        user_id=data.get("userId"),
    ))


def parse_import(data: Any) -> Either[dict, Record]:
    """Like ``parse_record`` but the budget must already be a number >= 0."""
    budget = data.get("budget") if isinstance(data, dict) else None
    if not is_amount(budget) or budget < 0:
        return Left(_error("invalid_budget", "Budget must be a finite number >= 0", budget=budget))
    return parse_record(data)


def validate_record(record: Any) -> Either[dict, Record]:
    """Check a Record before it is persisted."""
    if not isinstance(record, Record):
        return Left(_error("invalid_record", "Not a Record"))
    if not is_amount(record.budget) or record.budget < 0:
        return Left(_error("invalid_budget", "Budget must be a finite number >= 0", budget=record.budget))
    for expense in record.expenses:
        checked = parse_expense(expense.to_dict() if isinstance(expense, Expense) else expense)
        if checked.is_left():
            return checked
    return Right(record)


def validate_expense_input(data: dict) -> Either[dict, dict]:
    """Normalise the caller-editable fields of an expense.

    Amounts must be coercible to a number > 0; anything else is rejected
    rather than coerced.
    """
    description = data.get("description")
    if not _is_text(description):
        return Left(_error("missing_field", "Description is required", field="description"))

    amount = coerce_amount(data.get("amount"))
    if amount.is_none() or amount.get_or_else(0.0) <= 0:
        return Left(_error("invalid_amount", "Amount must be greater than zero", amount=data.get("amount")))

    category = data.get("category")
    if category not in CATEGORIES:
        return Left(_error("invalid_category", f"Unknown category {category!r}", category=category))

    day = parse_date(data.get("date"))
    if day.is_none():
        return Left(_error("invalid_date", "Date must be YYYY-MM-DD", date=data.get("date")))

    return Right({
        "description": description.strip(),
        "amount": amount.get_or_else(0.0),
        "category": category,
        "date": day.get_or_else(None).isoformat(),
    })
