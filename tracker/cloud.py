"""Remote storage backend: one document per signed-in user."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from tracker.domain import Record, default_record
from tracker.firestore import DocumentClient, DocumentSnapshot, DocumentStoreError
from tracker.storage import StorageService
from tracker.validation import parse_record, validate_record

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"

RecordCallback = Callable[[Record], None]


class RemoteStorageService(StorageService):
    """Stores the record in ``users/<user_id>`` of a document store.

    Writes are shallow merges, so concurrent edits from two devices resolve
    as last write wins per top-level field.
    """

    def __init__(self, client: DocumentClient, user_id: Optional[str] = None):
        self.client = client
        self.user_id = user_id
        self._cancel_watch: Optional[Callable[[], None]] = None

    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def _to_record(self, snapshot: DocumentSnapshot) -> Record:
        if not snapshot.exists:
            return default_record()
        data = dict(snapshot.data)
        if snapshot.update_time is not None:
            data["lastModified"] = snapshot.update_time
        parsed = parse_record(data)
        if parsed.is_left():
            logger.warning(
                "Invalid remote record for %s (%s). Using defaults.",
                self.user_id, parsed.get_error()["message"],
            )
            return default_record()
        return parsed.get_or_else(None)

    async def read(self) -> Record:
        if not self.user_id:
            logger.warning("No user authenticated, using default record")
            return default_record()
        try:
            snapshot = await self.client.get(USERS_COLLECTION, self.user_id)
        except DocumentStoreError as e:
            logger.error("Error reading remote record: %s", e)
            return default_record()
        if not snapshot.exists:
            logger.info("No remote record for %s, using defaults", self.user_id)
        return self._to_record(snapshot)

    async def write(self, record: Record) -> bool:
        if not self.user_id:
            logger.warning("Cannot save: no user authenticated")
            return False
        checked = validate_record(record)
        if checked.is_left():
            logger.error("Refusing to save invalid record: %s", checked.get_error()["message"])
            return False

        data = record.to_dict()
        # the server owns the modification time
        data.pop("lastModified", None)
        data["userId"] = self.user_id
        try:
            await self.client.set(USERS_COLLECTION, self.user_id, data, merge=True)
        except DocumentStoreError as e:
            logger.error("Error saving remote record: %s", e)
            return False
        logger.debug("Remote record saved for %s", self.user_id)
        return True

    async def clear(self) -> bool:
        if not self.user_id:
            logger.warning("Cannot clear: no user authenticated")
            return False
        try:
            await self.client.delete(USERS_COLLECTION, self.user_id)
        except DocumentStoreError as e:
            logger.error("Error clearing remote record: %s", e)
            return False
        return True

    def subscribe(self, callback: RecordCallback) -> Callable[[], None]:
        """Report every change of the user's document to ``callback``.

        Only one subscription is active at a time; subscribing again cancels
        the previous one.
        """
        if not self.user_id:
            logger.warning("Cannot subscribe: no user authenticated")
            return lambda: None

        self.unsubscribe()

        def on_snapshot(snapshot: DocumentSnapshot) -> None:
            if snapshot.exists:
                logger.debug("Remote update received for %s", self.user_id)
                callback(self._to_record(snapshot))

        def on_error(error: Exception) -> None:
            logger.error("Snapshot error: %s", error)

        cancel = self.client.watch(USERS_COLLECTION, self.user_id, on_snapshot, on_error)
        self._cancel_watch = cancel

        def unsubscribe() -> None:
            if self._cancel_watch is cancel:
                self.unsubscribe()

        return unsubscribe

    def unsubscribe(self) -> None:
        if self._cancel_watch is not None:
            self._cancel_watch()
            self._cancel_watch = None
            logger.info("Unsubscribed from remote updates")

    @property
    def subscribed(self) -> bool:
        return self._cancel_watch is not None

    async def migrate_once(self, local_record: Record) -> bool:
        """Copy a local record over the remote one.

        Overwrites whatever the remote document holds, so callers must get
        the user's confirmation first.
        """
        if not self.user_id:
            logger.warning("Cannot migrate: no user authenticated")
            return False
        logger.info("Migrating local record to remote storage for %s", self.user_id)
        ok = await self.write(local_record)
        if ok:
            logger.info("Migration successful")
        return ok
