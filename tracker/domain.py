import math
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

CATEGORIES = (
    "food",
    "transport",
    "bills",
    "shopping",
    "entertainment",
    "health",
    "education",
    "other",
)

# passing this to a category filter disables filtering
ALL = "all"

RECORD_VERSION = "1.0.0"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    # millisecond clock + random suffix, unique enough within one record
    return f"exp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def is_amount(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


@dataclass(frozen=True)
class Expense:
    id: str
    description: str
    amount: float
    category: str
    date: str                          # "YYYY-MM-DD"
    created_at: str
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "date": self.date,
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Expense":
        return cls(
            id=data["id"],
            description=data["description"],
            amount=float(data["amount"]),
            category=data["category"],
            date=data["date"],
            created_at=data.get("createdAt") or "",
            updated_at=data.get("updatedAt"),
        )


@dataclass(frozen=True)
class Record:
    budget: float = 0.0
    expenses: tuple[Expense, ...] = ()
    version: str = RECORD_VERSION
    created_at: str = field(default_factory=utc_now_iso)
    # only set on records read back from the remote store
    last_modified: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "budget": self.budget,
            "expenses": [e.to_dict() for e in self.expenses],
            "version": self.version,
            "createdAt": self.created_at,
        }
        if self.last_modified is not None:
            data["lastModified"] = self.last_modified
        if self.user_id is not None:
            data["userId"] = self.user_id
        return data

    def with_budget(self, budget: float) -> "Record":
        return replace(self, budget=budget)

    def with_expenses(self, expenses: tuple[Expense, ...]) -> "Record":
        return replace(self, expenses=tuple(expenses))

    def is_empty(self) -> bool:
        return self.budget == 0 and not self.expenses


def default_record() -> Record:
    return Record()
