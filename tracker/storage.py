"""Persistence of the budget record.

``StorageService`` is the one contract both backends implement. Every
operation is a coroutine so callers do not care whether the backend is a local
file or a remote document. None of the operations raise: invalid state
degrades to the default record and failed writes return ``False``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from tracker.config import DEFAULT_STORAGE_KEY, MAX_RECORD_BYTES
from tracker.domain import Record, default_record
from tracker.validation import parse_import, parse_record, validate_record

logger = logging.getLogger(__name__)


def serialize(record: Record, indent: Optional[int] = None) -> str:
    return json.dumps(record.to_dict(), indent=indent, ensure_ascii=False)


class StorageService(ABC):

    @abstractmethod
    async def read(self) -> Record:
        ...

    @abstractmethod
    async def write(self, record: Record) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> bool:
        ...

    async def export_as_text(self) -> str:
        record = await self.read()
        return serialize(record, indent=2)

    async def import_from_text(self, text: str) -> bool:
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            logger.error("Import rejected, not valid JSON: %s", e)
            return False
        parsed = parse_import(data)
        if parsed.is_left():
            logger.error("Import rejected: %s", parsed.get_error()["message"])
            return False
        return await self.write(parsed.get_or_else(None))


class LocalStorageService(StorageService):
    """Keeps the record as ``<directory>/<key>.json``."""

    def __init__(
        self,
        directory: Path,
        key: str = DEFAULT_STORAGE_KEY,
        max_bytes: int = MAX_RECORD_BYTES,
    ):
        self.directory = Path(directory)
        self.key = key
        self.max_bytes = max_bytes

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def is_available(self) -> bool:
        """Probe the directory with a throwaway write."""
        probe = self.directory / "__storage_test__"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            probe.write_text("__storage_test__", encoding="utf-8")
            probe.unlink()
            return True
        except OSError as e:
            logger.error("Local storage is not available at %s: %s", self.directory, e)
            return False

    def read_sync(self) -> Record:
        if not self.path.exists():
            return default_record()
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (ValueError, OSError) as e:
            logger.error("Error reading %s: %s", self.path, e)
            return default_record()

        parsed = parse_record(data)
        if parsed.is_left():
            logger.warning(
                "Invalid data structure in %s (%s). Resetting to defaults.",
                self.path, parsed.get_error()["message"],
            )
            return default_record()
        return parsed.get_or_else(None)

    def write_sync(self, record: Record) -> bool:
        checked = validate_record(record)
        if checked.is_left():
            logger.error("Refusing to save invalid record: %s", checked.get_error()["message"])
            return False

        payload = serialize(record)
        size = len(payload.encode("utf-8"))
        if size > self.max_bytes:
            logger.error("Record is %d bytes, over the %d byte storage limit", size, self.max_bytes)
            return False

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{self.key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error("Error saving to %s: %s", self.path, e)
            return False
        return True

    def clear_sync(self) -> bool:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Error clearing %s: %s", self.path, e)
            return False
        return True

    async def read(self) -> Record:
        return self.read_sync()

    async def write(self, record: Record) -> bool:
        return self.write_sync(record)

    async def clear(self) -> bool:
        return self.clear_sync()
