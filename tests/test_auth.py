import pytest

from conftest import FakeResponse, FakeSession
from tracker.auth import (
    GENERIC_ERROR,
    AuthManager,
    AuthProviderError,
    IdentityToolkitProvider,
    User,
    get_error_message,
    rest_error_code,
    validate_email,
    validate_password,
)


def test_error_messages_fall_back_to_generic():
    assert get_error_message("auth/wrong-password") == "Incorrect password. Please try again."
    assert get_error_message("auth/something-new") == GENERIC_ERROR
    assert get_error_message(None) == GENERIC_ERROR


def test_validate_email_and_password():
    assert validate_email("ana@example.com")
    assert not validate_email("ana@example")
    assert not validate_email("ana example.com")
    assert validate_password("secret") == (True, [])
    assert validate_password("123") == (False, ["Password must be at least 6 characters"])
    assert validate_password("x" * 129) == (False, ["Password is too long"])


@pytest.mark.asyncio
async def test_sign_up_and_sign_in(identity):
    auth = AuthManager(identity)
    result = await auth.sign_up("ana@example.com", "secret1")
    assert result.success
    assert auth.is_authenticated()
    assert auth.current_user().email == "ana@example.com"

    await auth.sign_out()
    assert not auth.is_authenticated()

    result = await auth.sign_in("ana@example.com", "secret1")
    assert result.success
    assert result.user.uid == "uid-1"


@pytest.mark.asyncio
async def test_failures_are_translated(identity):
    auth = AuthManager(identity)
    await auth.sign_up("ana@example.com", "secret1")
    await auth.sign_out()

    dup = await auth.sign_up("ana@example.com", "secret1")
    assert not dup.success
    assert dup.error == "This email is already registered. Please sign in instead."

    wrong = await auth.sign_in("ana@example.com", "nope123")
    assert wrong.error == "Incorrect password. Please try again."
    assert not auth.is_authenticated()

    identity.fail_with = "auth/quota-exceeded"
    odd = await auth.reset_password("ana@example.com")
    assert odd.error == GENERIC_ERROR


@pytest.mark.asyncio
async def test_federated_sign_in(identity):
    auth = AuthManager(identity)
    ok = await auth.sign_in_with_provider("google.com", "abc")
    assert ok.success
    assert auth.current_user().uid == "google.com:abc"

    await auth.sign_out()
    cancelled = await auth.sign_in_with_provider("google.com", "")
    assert cancelled.error == "Sign-in cancelled."


@pytest.mark.asyncio
async def test_state_callback_fires_on_transitions_only(identity):
    auth = AuthManager(identity)
    seen = []
    auth.on_auth_state_changed(lambda user: seen.append(user.uid if user else None))

    await auth.sign_up("ana@example.com", "secret1")
    await auth.update_email("ana@new.example.com")
    await auth.sign_out()
    await auth.sign_out()

    assert seen == ["uid-1", None]


@pytest.mark.asyncio
async def test_async_callback_is_awaited_and_replaced(identity):
    auth = AuthManager(identity)
    first, second = [], []

    async def record(user):
        second.append(user)

    auth.on_auth_state_changed(first.append)
    auth.on_auth_state_changed(record)
    await auth.sign_up("ana@example.com", "secret1")

    assert first == []
    assert second[0].email == "ana@example.com"


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_sign_in(identity):
    auth = AuthManager(identity)

    def boom(user):
        raise RuntimeError("listener bug")

    auth.on_auth_state_changed(boom)
    result = await auth.sign_up("ana@example.com", "secret1")
    assert result.success


@pytest.mark.asyncio
async def test_account_operations_need_a_user(identity):
    auth = AuthManager(identity)
    for result in (
        await auth.update_email("x@example.com"),
        await auth.update_password("secret2"),
        await auth.delete_account(),
    ):
        assert not result.success
        assert result.error == "No user is signed in."


@pytest.mark.asyncio
async def test_password_reset_and_account_deletion(identity):
    auth = AuthManager(identity)
    await auth.sign_up("ana@example.com", "secret1")

    assert (await auth.reset_password("ana@example.com")).success
    assert identity.reset_requests == ["ana@example.com"]

    weak = await auth.update_password("123")
    assert weak.error == "Password should be at least 6 characters."

    assert (await auth.delete_account()).success
    assert not auth.is_authenticated()
    assert identity.accounts == {}


def test_rest_error_codes():
    assert rest_error_code("EMAIL_EXISTS") == "auth/email-already-in-use"
    assert rest_error_code("WEAK_PASSWORD : Password should be at least 6 characters") == "auth/weak-password"
    assert rest_error_code("INVALID_LOGIN_CREDENTIALS") == "auth/invalid-credential"
    assert rest_error_code("QUOTA_EXCEEDED") == "auth/quota-exceeded"
    assert rest_error_code("") == "auth/unknown"


@pytest.mark.asyncio
async def test_identity_toolkit_sign_in():
    session = FakeSession(FakeResponse(200, {
        "localId": "u42", "email": "ana@example.com", "idToken": "tok", "refreshToken": "ref",
    }))
    provider = IdentityToolkitProvider("api-key", session=session)

    user = await provider.sign_in("ana@example.com", "secret1")
    assert user == User(uid="u42", email="ana@example.com", id_token="tok", refresh_token="ref")

    method, url, kwargs = session.calls[0]
    assert url.endswith("/accounts:signInWithPassword")
    assert kwargs["params"] == {"key": "api-key"}
    assert kwargs["json"]["returnSecureToken"] is True


@pytest.mark.asyncio
async def test_identity_toolkit_errors(connection_error):
    provider = IdentityToolkitProvider("api-key", session=FakeSession(
        FakeResponse(400, {"error": {"code": 400, "message": "EMAIL_NOT_FOUND"}}),
        connection_error,
    ))
    with pytest.raises(AuthProviderError) as info:
        await provider.send_password_reset("nobody@example.com")
    assert info.value.code == "auth/user-not-found"

    auth = AuthManager(provider)
    result = await auth.sign_in("ana@example.com", "secret1")
    assert result.error == "Network error. Please check your connection."
