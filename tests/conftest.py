import copy
from datetime import datetime, timezone

import pytest
import requests

from tracker.auth import AuthProviderError, IdentityProvider, User
from tracker.firestore import DocumentClient, DocumentSnapshot, DocumentStoreError
from tracker.storage import LocalStorageService

FIXED_NOW = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)


class FakeDocumentClient(DocumentClient):
    """In-memory document store; watchers are called synchronously on change."""

    def __init__(self):
        self.docs = {}
        self.update_times = {}
        self.watchers = {}
        self.set_calls = []
        self.fail = False
        self._clock = 0

    def _snapshot(self, key):
        data = self.docs.get(key)
        return DocumentSnapshot(copy.deepcopy(data) if data is not None else None, self.update_times.get(key))

    def _notify(self, key):
        for callback in list(self.watchers.get(key, [])):
            callback(self._snapshot(key))

    async def get(self, collection, doc_id):
        if self.fail:
            raise DocumentStoreError("offline")
        return self._snapshot((collection, doc_id))

    async def set(self, collection, doc_id, data, merge=True):
        if self.fail:
            raise DocumentStoreError("offline")
        key = (collection, doc_id)
        self.set_calls.append((key, copy.deepcopy(data), merge))
        base = dict(self.docs.get(key, {})) if merge else {}
        base.update(copy.deepcopy(data))
        self.docs[key] = base
        self._clock += 1
        self.update_times[key] = f"2025-01-01T00:00:{self._clock:02d}Z"
        self._notify(key)

    async def delete(self, collection, doc_id):
        if self.fail:
            raise DocumentStoreError("offline")
        key = (collection, doc_id)
        self.docs.pop(key, None)
        self.update_times.pop(key, None)
        self._notify(key)

    def watch(self, collection, doc_id, on_snapshot, on_error=None):
        key = (collection, doc_id)
        self.watchers.setdefault(key, []).append(on_snapshot)
        on_snapshot(self._snapshot(key))

        def cancel():
            if on_snapshot in self.watchers.get(key, []):
                self.watchers[key].remove(on_snapshot)

        return cancel

    def watcher_count(self, collection, doc_id):
        return len(self.watchers.get((collection, doc_id), []))


class FakeIdentityProvider(IdentityProvider):

    def __init__(self):
        self.accounts = {}
        self.reset_requests = []
        self.fail_with = None

    def _check(self):
        if self.fail_with:
            raise AuthProviderError(self.fail_with)

    async def create_user(self, email, password):
        self._check()
        if email in self.accounts:
            raise AuthProviderError("auth/email-already-in-use")
        if len(password) < 6:
            raise AuthProviderError("auth/weak-password")
        user = User(uid=f"uid-{len(self.accounts) + 1}", email=email, id_token="token")
        self.accounts[email] = (password, user)
        return user

    async def sign_in(self, email, password):
        self._check()
        if email not in self.accounts:
            raise AuthProviderError("auth/user-not-found")
        stored, user = self.accounts[email]
        if stored != password:
            raise AuthProviderError("auth/wrong-password")
        return user

    async def sign_in_with_idp(self, provider_id, id_token):
        self._check()
        if not id_token:
            raise AuthProviderError("auth/popup-closed-by-user")
        return User(uid=f"{provider_id}:{id_token}", email=f"{id_token}@example.com")

    async def sign_out(self, user):
        self._check()

    async def send_password_reset(self, email):
        self._check()
        if email not in self.accounts:
            raise AuthProviderError("auth/user-not-found")
        self.reset_requests.append(email)

    async def update_email(self, user, email):
        self._check()
        return User(uid=user.uid, email=email, id_token=user.id_token)

    async def update_password(self, user, password):
        self._check()
        if len(password) < 6:
            raise AuthProviderError("auth/weak-password")
        return user

    async def delete_user(self, user):
        self._check()
        self.accounts = {k: v for k, v in self.accounts.items() if v[1].uid != user.uid}


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    """Stands in for requests.Session; replays queued responses, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self):
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self._next()

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        return self._next()


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorageService(tmp_path)


@pytest.fixture
def doc_client():
    return FakeDocumentClient()


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def connection_error():
    return requests.exceptions.ConnectionError("connection refused")
