import asyncio

import pytest

from conftest import FakeResponse, FakeSession
from tracker.firestore import (
    DocumentStoreError,
    FirestoreClient,
    decode_fields,
    encode_fields,
    encode_value,
)


def make_client(session, **kwargs):
    return FirestoreClient("demo-project", lambda: "id-token", session=session, **kwargs)


def test_encode_nested_record():
    fields = encode_fields({
        "budget": 5000,
        "expenses": [{"id": "e1", "amount": 12.5, "updatedAt": None}],
        "archived": False,
        "tags": [],
    })
    assert fields["budget"] == {"integerValue": "5000"}
    assert fields["archived"] == {"booleanValue": False}
    assert fields["tags"] == {"arrayValue": {}}
    expense = fields["expenses"]["arrayValue"]["values"][0]["mapValue"]["fields"]
    assert expense["amount"] == {"doubleValue": 12.5}
    assert expense["updatedAt"] == {"nullValue": None}


def test_decode_reverses_encode():
    data = {"budget": 5000, "version": "1.0.0", "expenses": [{"id": "e1", "amount": 12.5}], "tags": []}
    assert decode_fields(encode_fields(data)) == data


def test_encode_rejects_unknown_types():
    with pytest.raises(TypeError):
        encode_value(object())


@pytest.mark.asyncio
async def test_get_missing_document():
    session = FakeSession(FakeResponse(404, {"error": {"message": "not found"}}))
    snapshot = await make_client(session).get("users", "u1")

    assert not snapshot.exists
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url.endswith("/projects/demo-project/databases/(default)/documents/users/u1")
    assert kwargs["headers"] == {"Authorization": "Bearer id-token"}


@pytest.mark.asyncio
async def test_get_decodes_fields():
    body = {
        "name": "projects/demo-project/databases/(default)/documents/users/u1",
        "fields": {"budget": {"doubleValue": 10.5}, "expenses": {"arrayValue": {}}},
        "updateTime": "2025-03-01T10:00:00.000000Z",
    }
    snapshot = await make_client(FakeSession(FakeResponse(200, body))).get("users", "u1")
    assert snapshot.data == {"budget": 10.5, "expenses": []}
    assert snapshot.update_time == "2025-03-01T10:00:00.000000Z"


@pytest.mark.asyncio
async def test_merge_set_sends_update_mask():
    session = FakeSession(FakeResponse(200, {}))
    await make_client(session).set("users", "u1", {"budget": 1, "userId": "u1"}, merge=True)

    method, _, kwargs = session.calls[0]
    assert method == "PATCH"
    assert kwargs["params"] == [("updateMask.fieldPaths", "budget"), ("updateMask.fieldPaths", "userId")]
    assert kwargs["json"]["fields"]["userId"] == {"stringValue": "u1"}


@pytest.mark.asyncio
async def test_replace_set_has_no_mask():
    session = FakeSession(FakeResponse(200, {}))
    await make_client(session).set("users", "u1", {"budget": 1}, merge=False)
    assert session.calls[0][2]["params"] is None


@pytest.mark.asyncio
async def test_http_errors_raise_document_store_error(connection_error):
    client = make_client(FakeSession(
        FakeResponse(403, {"error": {"message": "Missing or insufficient permissions."}}),
        connection_error,
    ))
    with pytest.raises(DocumentStoreError) as info:
        await client.set("users", "u1", {"budget": 1})
    assert info.value.status == 403

    with pytest.raises(DocumentStoreError):
        await client.get("users", "u1")


@pytest.mark.asyncio
async def test_delete_ignores_missing_document():
    client = make_client(FakeSession(FakeResponse(404, None, text="missing")))
    await client.delete("users", "u1")


@pytest.mark.asyncio
async def test_watch_reports_only_changes():
    def doc(update_time):
        return FakeResponse(200, {"fields": {"budget": {"integerValue": "1"}}, "updateTime": update_time})

    session = FakeSession(doc("t1"), doc("t1"), doc("t2"), *[doc("t2")] * 20)
    client = make_client(session, poll_seconds=0)
    seen = []

    cancel = client.watch("users", "u1", lambda snap: seen.append(snap.update_time))
    for _ in range(50):
        if len(session.calls) >= 4:
            break
        await asyncio.sleep(0.01)
    cancel()

    assert seen == ["t1", "t2"]


@pytest.mark.asyncio
async def test_watch_survives_failing_listener():
    def doc(update_time):
        return FakeResponse(200, {"fields": {}, "updateTime": update_time})

    session = FakeSession(doc("t1"), doc("t2"), doc("t2"))
    client = make_client(session, poll_seconds=0)
    seen = []

    def listener(snap):
        seen.append(snap.update_time)
        if snap.update_time == "t1":
            raise RuntimeError("listener bug")

    cancel = client.watch("users", "u1", listener)
    for _ in range(50):
        if len(seen) >= 2:
            break
        await asyncio.sleep(0.01)
    cancel()

    assert seen == ["t1", "t2"]
