"""Document store access for the cloud backend.

``DocumentClient`` is the small surface the remote storage needs.
``FirestoreClient`` implements it against the Firestore REST API; change
notifications are produced by polling the document's ``updateTime``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"

SnapshotCallback = Callable[["DocumentSnapshot"], None]
ErrorCallback = Callable[[Exception], None]


class DocumentStoreError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class DocumentSnapshot:
    data: Optional[Dict[str, Any]]
    update_time: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


class DocumentClient(ABC):

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = True) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def watch(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """Start reporting snapshots of one document; returns a cancel function."""


# Firestore typed values ------------------------------------------------------


def encode_value(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": value.isoformat()}
    if isinstance(value, (list, tuple)):
        if not value:
            return {"arrayValue": {}}
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot store {type(value).__name__} in a document")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_value(value: Dict[str, Any]) -> Any:
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise ValueError(f"Unsupported document value: {sorted(value)}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


# REST client -----------------------------------------------------------------


class FirestoreClient(DocumentClient):

    def __init__(
        self,
        project_id: str,
        token_provider: Callable[[], Optional[str]],
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        poll_seconds: float = 5.0,
        database: str = "(default)",
    ):
        self.project_id = project_id
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.timeout = timeout
        self.poll_seconds = poll_seconds
        self.database = database

    def document_url(self, collection: str, doc_id: str) -> str:
        return (
            f"{FIRESTORE_URL}/projects/{self.project_id}/databases/{self.database}"
            f"/documents/{collection}/{doc_id}"
        )

    def _headers(self) -> Dict[str, str]:
        token = self.token_provider()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise DocumentStoreError(f"{method} {url} failed: {e}") from e
        return resp

    @staticmethod
    def _raise_for_status(resp: requests.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            message = resp.json().get("error", {}).get("message", resp.text)
        except ValueError:
            message = resp.text
        raise DocumentStoreError(f"Firestore error {resp.status_code}: {message}", status=resp.status_code)

    def _get_sync(self, collection: str, doc_id: str) -> DocumentSnapshot:
        resp = self._request("GET", self.document_url(collection, doc_id))
        if resp.status_code == 404:
            return DocumentSnapshot(data=None)
        self._raise_for_status(resp)
        body = resp.json()
        return DocumentSnapshot(
            data=decode_fields(body.get("fields", {})),
            update_time=body.get("updateTime"),
        )

    def _set_sync(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool) -> None:
        # with an update mask only the listed top-level fields are replaced
        params = [("updateMask.fieldPaths", key) for key in data] if merge else None
        resp = self._request(
            "PATCH",
            self.document_url(collection, doc_id),
            params=params,
            json={"fields": encode_fields(data)},
        )
        self._raise_for_status(resp)

    def _delete_sync(self, collection: str, doc_id: str) -> None:
        resp = self._request("DELETE", self.document_url(collection, doc_id))
        if resp.status_code != 404:
            self._raise_for_status(resp)

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        return await asyncio.to_thread(self._get_sync, collection, doc_id)

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = True) -> None:
        await asyncio.to_thread(self._set_sync, collection, doc_id, data, merge)

    async def delete(self, collection: str, doc_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, collection, doc_id)

    def watch(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        task = asyncio.get_running_loop().create_task(
            self._poll(collection, doc_id, on_snapshot, on_error)
        )
        return task.cancel

    async def _poll(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        last_seen: Optional[str] = None
        first = True
        while True:
            try:
                snapshot = await self.get(collection, doc_id)
            except DocumentStoreError as e:
                if on_error is not None:
                    on_error(e)
                else:
                    logger.error("Snapshot error for %s/%s: %s", collection, doc_id, e)
            else:
                if first or snapshot.update_time != last_seen:
                    first = False
                    last_seen = snapshot.update_time
                    try:
                        on_snapshot(snapshot)
                    except Exception:
                        logger.exception("Snapshot listener for %s/%s failed", collection, doc_id)
            await asyncio.sleep(self.poll_seconds)
