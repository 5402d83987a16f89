import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from tracker.domain import Expense, generate_id
from tracker.storage import StorageService
from tracker.transforms import (
    add_expense,
    average_daily,
    by_category,
    by_date_range,
    category_statistics,
    find_expense,
    newest_first,
    remove_expense,
    replace_expense,
    total_amount,
)
from tracker.validation import coerce_budget, validate_expense_input

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BudgetManager:
    """Reads and sets the budget of the record held by ``storage``."""

    def __init__(self, storage: StorageService):
        self.storage = storage

    async def get_budget(self) -> float:
        record = await self.storage.read()
        return record.budget or 0.0

    async def set_budget(self, amount: Any) -> bool:
        """Store ``amount`` as the budget. Unparseable or negative input becomes 0."""
        record = await self.storage.read()
        return await self.storage.write(record.with_budget(coerce_budget(amount)))

    async def get_remaining(self) -> float:
        # not floored at zero, a negative value means overspend
        record = await self.storage.read()
        return record.budget - total_amount(record.expenses)


class ExpenseManager:
    """Expense list operations over the record held by ``storage``.

    Every mutation reads the whole record, changes it and writes it back.
    Failures come back as ``None``/``False``, never as exceptions.
    """

    def __init__(self, storage: StorageService, clock: Optional[Clock] = None):
        self.storage = storage
        self.clock = clock or _utc_now

    def _timestamp(self) -> str:
        return self.clock().isoformat()

    async def list_expenses(self, category: Optional[str] = None) -> Tuple[Expense, ...]:
        record = await self.storage.read()
        return tuple(filter(by_category(category), record.expenses))

    async def get(self, expense_id: str) -> Optional[Expense]:
        record = await self.storage.read()
        return find_expense(record.expenses, expense_id)

    async def add(self, data: Dict[str, Any]) -> Optional[Expense]:
        checked = validate_expense_input(data)
        if checked.is_left():
            logger.warning("Expense rejected: %s", checked.get_error()["message"])
            return None

        expense = Expense(id=generate_id(), created_at=self._timestamp(), **checked.get_or_else({}))
        record = await self.storage.read()
        if not await self.storage.write(record.with_expenses(add_expense(record.expenses, expense))):
            return None
        return expense

    async def update(self, expense_id: str, changes: Dict[str, Any]) -> Optional[Expense]:
        record = await self.storage.read()
        current = find_expense(record.expenses, expense_id)
        if current is None:
            logger.info("No expense with id %s", expense_id)
            return None

        merged = {
            "description": current.description,
            "amount": current.amount,
            "category": current.category,
            "date": current.date,
        }
        merged.update({k: v for k, v in changes.items() if k in merged})
        checked = validate_expense_input(merged)
        if checked.is_left():
            logger.warning("Update of %s rejected: %s", expense_id, checked.get_error()["message"])
            return None

        updated = replace(current, updated_at=self._timestamp(), **checked.get_or_else({}))
        if not await self.storage.write(record.with_expenses(replace_expense(record.expenses, updated))):
            return None
        return updated

    async def remove(self, expense_id: str) -> bool:
        record = await self.storage.read()
        remaining = remove_expense(record.expenses, expense_id)
        if len(remaining) == len(record.expenses):
            logger.info("No expense with id %s", expense_id)
            return False
        return await self.storage.write(record.with_expenses(remaining))

    async def total(self) -> float:
        record = await self.storage.read()
        return total_amount(record.expenses)

    async def statistics_by_category(self) -> Dict[str, dict]:
        record = await self.storage.read()
        return category_statistics(record.expenses)

    async def recent(self, n: int = 5) -> Tuple[Expense, ...]:
        record = await self.storage.read()
        return newest_first(record.expenses)[: max(0, n)]

    async def by_date_range(self, start, end) -> Tuple[Expense, ...]:
        record = await self.storage.read()
        return tuple(filter(by_date_range(start, end), record.expenses))

    async def average_daily_spend(self) -> float:
        record = await self.storage.read()
        return average_daily(record.expenses, self.clock())
