"""Wires storage, managers and auth together for one client session.

``BudgetTracker`` owns the active storage backend and the managers built on
it. In cloud mode it swaps backends on auth-state changes; the UI talks to the
tracker and listens on its event bus.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from tracker.auth import AuthManager, IdentityToolkitProvider, User
from tracker.cloud import RemoteStorageService
from tracker.config import MODE_CLOUD, Settings
from tracker.domain import Expense, Record
from tracker.events import (
    AUTH_STATE_CHANGED,
    BUDGET_ALERT,
    RECORD_CHANGED,
    EventBus,
    register_default_handlers,
)
from tracker.firestore import FirestoreClient
from tracker.services import BudgetManager, Clock, ExpenseManager
from tracker.storage import LocalStorageService, StorageService
from tracker.transforms import (
    average_daily,
    by_category,
    category_statistics,
    newest_first,
    total_amount,
)

logger = logging.getLogger(__name__)

RemoteFactory = Callable[[User], RemoteStorageService]
MigrationPrompt = Callable[[Record], Union[bool, Awaitable[bool]]]


def summarize(record: Record, now: datetime, category: Optional[str] = None) -> Dict[str, Any]:
    total = total_amount(record.expenses)
    return {
        "budget": record.budget,
        "total": total,
        "remaining": record.budget - total,
        "count": len(record.expenses),
        "expenses": newest_first(filter(by_category(category), record.expenses)),
        "statistics": category_statistics(record.expenses),
        "average_daily": average_daily(record.expenses, now),
    }


class BudgetTracker:

    def __init__(
        self,
        local_storage: LocalStorageService,
        auth: Optional[AuthManager] = None,
        remote_factory: Optional[RemoteFactory] = None,
        bus: Optional[EventBus] = None,
        confirm_migration: Optional[MigrationPrompt] = None,
        live_updates: bool = True,
        clock: Optional[Clock] = None,
    ):
        self.local_storage = local_storage
        self.auth = auth
        self.remote_factory = remote_factory
        self.confirm_migration = confirm_migration
        self.live_updates = live_updates
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.remote: Optional[RemoteStorageService] = None

        if bus is None:
            bus = EventBus()
            register_default_handlers(bus)
        self.bus = bus

        self._activate(local_storage)

    def _activate(self, storage: StorageService) -> None:
        self.storage = storage
        self.budget = BudgetManager(storage)
        self.expenses = ExpenseManager(storage, clock=self.clock)

    @property
    def cloud_enabled(self) -> bool:
        return self.auth is not None and self.remote_factory is not None

    @property
    def using_remote(self) -> bool:
        return self.remote is not None and self.storage is self.remote

    async def start(self) -> None:
        if not self.cloud_enabled:
            logger.info("Using local storage at %s", self.local_storage.path)
            return
        self.auth.on_auth_state_changed(self.handle_auth_state)
        await self.handle_auth_state(self.auth.current_user())

    async def handle_auth_state(self, user: Optional[User]) -> None:
        if self.remote is not None:
            self.remote.unsubscribe()
            self.remote = None

        if user is None:
            self._activate(self.local_storage)
        else:
            remote = self.remote_factory(user)
            await self.offer_migration(remote)
            self.remote = remote
            self._activate(remote)
            if self.live_updates:
                remote.subscribe(self._on_remote_change)

        self.bus.publish(AUTH_STATE_CHANGED, {
            "user": user,
            "backend": "remote" if self.using_remote else "local",
        })

    async def offer_migration(self, remote: RemoteStorageService) -> bool:
        """Copy a non-empty local record to ``remote`` if the user agrees."""
        local = await self.local_storage.read()
        if local.is_empty() or self.confirm_migration is None:
            return False

        answer = self.confirm_migration(local)
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            logger.info("Migration declined")
            return False

        migrated = await remote.migrate_once(local)
        if migrated:
            await self.local_storage.clear()
        return migrated

    def _on_remote_change(self, record: Record) -> None:
        self._announce(record)

    def _announce(self, record: Record) -> Dict[str, Any]:
        payload = summarize(record, self.clock())
        for result in self.bus.publish(RECORD_CHANGED, payload):
            if isinstance(result, dict) and result.get("alert"):
                self.bus.publish(BUDGET_ALERT, result)
        return payload

    async def _after_write(self, ok: bool) -> None:
        if ok:
            self._announce(await self.storage.read())

    async def summary(self, category: Optional[str] = None) -> Dict[str, Any]:
        record = await self.storage.read()
        return summarize(record, self.clock(), category)

    async def set_budget(self, amount: Any) -> bool:
        ok = await self.budget.set_budget(amount)
        await self._after_write(ok)
        return ok

    async def add_expense(self, data: Dict[str, Any]) -> Optional[Expense]:
        expense = await self.expenses.add(data)
        await self._after_write(expense is not None)
        return expense

    async def update_expense(self, expense_id: str, changes: Dict[str, Any]) -> Optional[Expense]:
        expense = await self.expenses.update(expense_id, changes)
        await self._after_write(expense is not None)
        return expense

    async def remove_expense(self, expense_id: str) -> bool:
        ok = await self.expenses.remove(expense_id)
        await self._after_write(ok)
        return ok

    async def import_from_text(self, text: str) -> bool:
        ok = await self.storage.import_from_text(text)
        await self._after_write(ok)
        return ok

    async def export_as_text(self) -> str:
        return await self.storage.export_as_text()

    async def clear(self) -> bool:
        ok = await self.storage.clear()
        await self._after_write(ok)
        return ok

    def close(self) -> None:
        if self.remote is not None:
            self.remote.unsubscribe()


def build_tracker(
    settings: Settings,
    confirm_migration: Optional[MigrationPrompt] = None,
    live_updates: bool = True,
) -> BudgetTracker:
    """Assemble a tracker from settings; cloud pieces only when configured."""
    local = LocalStorageService(settings.data_dir, settings.storage_key, settings.max_record_bytes)
    if not local.is_available():
        logger.warning("Local storage unavailable, changes will not be saved")

    if not settings.cloud_enabled:
        if settings.mode == MODE_CLOUD:
            logger.warning("Cloud mode needs FIREBASE_API_KEY and FIREBASE_PROJECT_ID, using local storage")
        return BudgetTracker(local, live_updates=live_updates)

    auth = AuthManager(IdentityToolkitProvider(settings.firebase_api_key, timeout=settings.http_timeout))

    def id_token() -> Optional[str]:
        user = auth.current_user()
        return user.id_token if user else None

    client = FirestoreClient(
        settings.firebase_project_id,
        id_token,
        timeout=settings.http_timeout,
        poll_seconds=settings.poll_seconds,
    )
    return BudgetTracker(
        local,
        auth=auth,
        remote_factory=lambda user: RemoteStorageService(client, user.uid),
        confirm_migration=confirm_migration,
        live_updates=live_updates,
    )
