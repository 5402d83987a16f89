"""Authentication for cloud sync.

``AuthManager`` wraps an ``IdentityProvider`` and turns every outcome into an
``AuthResult``; provider error codes are translated to messages that can be
shown to the user as-is.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import requests

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred. Please try again."

ERROR_MESSAGES: Dict[str, str] = {
    "auth/email-already-in-use": "This email is already registered. Please sign in instead.",
    "auth/invalid-email": "Please enter a valid email address.",
    "auth/operation-not-allowed": "Email/password sign-in is not enabled.",
    "auth/weak-password": "Password should be at least 6 characters.",
    "auth/user-disabled": "This account has been disabled.",
    "auth/user-not-found": "No account found with this email.",
    "auth/wrong-password": "Incorrect password. Please try again.",
    "auth/invalid-credential": "Incorrect email or password.",
    "auth/too-many-requests": "Too many failed attempts. Please try again later.",
    "auth/network-request-failed": "Network error. Please check your connection.",
    "auth/requires-recent-login": "Please sign in again to perform this action.",
    "auth/popup-blocked": "Popup blocked. Please allow popups for this site.",
    "auth/popup-closed-by-user": "Sign-in cancelled.",
    "auth/no-current-user": "No user is signed in.",
}

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128


def get_error_message(code: Optional[str]) -> str:
    return ERROR_MESSAGES.get(code or "", GENERIC_ERROR)


def validate_email(email: str) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def validate_password(password: str) -> Tuple[bool, List[str]]:
    errors = []
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password or "") > MAX_PASSWORD_LENGTH:
        errors.append("Password is too long")
    return not errors, errors


@dataclass(frozen=True)
class User:
    uid: str
    email: Optional[str] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class AuthResult:
    success: bool
    user: Optional[User] = None
    error: Optional[str] = None


class AuthProviderError(Exception):
    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code


class IdentityProvider(ABC):

    @abstractmethod
    async def create_user(self, email: str, password: str) -> User:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> User:
        ...

    @abstractmethod
    async def sign_in_with_idp(self, provider_id: str, id_token: str) -> User:
        ...

    @abstractmethod
    async def sign_out(self, user: Optional[User]) -> None:
        ...

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        ...

    @abstractmethod
    async def update_email(self, user: User, email: str) -> User:
        ...

    @abstractmethod
    async def update_password(self, user: User, password: str) -> User:
        ...

    @abstractmethod
    async def delete_user(self, user: User) -> None:
        ...


# Identity Toolkit REST API -----------------------------------------------------

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

REST_ERROR_CODES = {
    "EMAIL_EXISTS": "auth/email-already-in-use",
    "INVALID_EMAIL": "auth/invalid-email",
    "MISSING_EMAIL": "auth/invalid-email",
    "OPERATION_NOT_ALLOWED": "auth/operation-not-allowed",
    "PASSWORD_LOGIN_DISABLED": "auth/operation-not-allowed",
    "WEAK_PASSWORD": "auth/weak-password",
    "USER_DISABLED": "auth/user-disabled",
    "EMAIL_NOT_FOUND": "auth/user-not-found",
    "USER_NOT_FOUND": "auth/user-not-found",
    "INVALID_PASSWORD": "auth/wrong-password",
    "INVALID_LOGIN_CREDENTIALS": "auth/invalid-credential",
    "INVALID_IDP_RESPONSE": "auth/invalid-credential",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "auth/too-many-requests",
    "CREDENTIAL_TOO_OLD_LOGIN_AGAIN": "auth/requires-recent-login",
    "TOKEN_EXPIRED": "auth/requires-recent-login",
    "INVALID_ID_TOKEN": "auth/requires-recent-login",
}


def rest_error_code(message: str) -> str:
    # messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
    key = (message or "").split(":")[0].strip()
    return REST_ERROR_CODES.get(key, f"auth/{key.lower().replace('_', '-')}" if key else "auth/unknown")


class IdentityToolkitProvider(IdentityProvider):

    def __init__(
        self,
        api_key: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        request_uri: str = "http://localhost",
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.request_uri = request_uri

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{IDENTITY_TOOLKIT_URL}/accounts:{endpoint}"
        try:
            resp = self.session.post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise AuthProviderError("auth/network-request-failed", str(e)) from e
        except requests.exceptions.RequestException as e:
            raise AuthProviderError("auth/unknown", str(e)) from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400:
            message = body.get("error", {}).get("message", "") if isinstance(body, dict) else ""
            raise AuthProviderError(rest_error_code(message), message)
        return body

    @staticmethod
    def _user(body: Dict[str, Any], fallback: Optional[User] = None) -> User:
        return User(
            uid=body.get("localId") or (fallback.uid if fallback else ""),
            email=body.get("email") or (fallback.email if fallback else None),
            id_token=body.get("idToken") or (fallback.id_token if fallback else None),
            refresh_token=body.get("refreshToken") or (fallback.refresh_token if fallback else None),
        )

    async def create_user(self, email: str, password: str) -> User:
        body = await asyncio.to_thread(
            self._post, "signUp", {"email": email, "password": password, "returnSecureToken": True}
        )
        return self._user(body)

    async def sign_in(self, email: str, password: str) -> User:
        body = await asyncio.to_thread(
            self._post, "signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}
        )
        return self._user(body)

    async def sign_in_with_idp(self, provider_id: str, id_token: str) -> User:
        body = await asyncio.to_thread(self._post, "signInWithIdp", {
            "postBody": f"id_token={id_token}&providerId={provider_id}",
            "requestUri": self.request_uri,
            "returnSecureToken": True,
            "returnIdpCredential": True,
        })
        return self._user(body)

    async def sign_out(self, user: Optional[User]) -> None:
        # tokens are held client side only, nothing to revoke
        return None

    async def send_password_reset(self, email: str) -> None:
        await asyncio.to_thread(self._post, "sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})

    async def update_email(self, user: User, email: str) -> User:
        body = await asyncio.to_thread(
            self._post, "update", {"idToken": user.id_token, "email": email, "returnSecureToken": True}
        )
        return self._user(body, fallback=replace(user, email=email))

    async def update_password(self, user: User, password: str) -> User:
        body = await asyncio.to_thread(
            self._post, "update", {"idToken": user.id_token, "password": password, "returnSecureToken": True}
        )
        return self._user(body, fallback=user)

    async def delete_user(self, user: User) -> None:
        await asyncio.to_thread(self._post, "delete", {"idToken": user.id_token})


# Manager -----------------------------------------------------------------------

AuthStateCallback = Callable[[Optional[User]], Union[None, Awaitable[None]]]


class AuthManager:

    def __init__(self, provider: IdentityProvider):
        self.provider = provider
        self._user: Optional[User] = None
        self._callback: Optional[AuthStateCallback] = None

    def on_auth_state_changed(self, callback: Optional[AuthStateCallback]) -> None:
        """Register the single auth-state listener, replacing any earlier one."""
        self._callback = callback

    def current_user(self) -> Optional[User]:
        return self._user

    def is_authenticated(self) -> bool:
        return self._user is not None

    async def _set_user(self, user: Optional[User]) -> None:
        before = self._user.uid if self._user else None
        after = user.uid if user else None
        self._user = user
        if before == after or self._callback is None:
            return
        try:
            result = self._callback(user)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Auth state listener failed")

    def _failure(self, action: str, error: AuthProviderError) -> AuthResult:
        logger.error("%s error: %s", action, error.code)
        return AuthResult(success=False, error=get_error_message(error.code))

    async def sign_up(self, email: str, password: str) -> AuthResult:
        try:
            user = await self.provider.create_user(email, password)
        except AuthProviderError as e:
            return self._failure("Sign up", e)
        logger.info("User created: %s", user.email)
        await self._set_user(user)
        return AuthResult(success=True, user=user)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            user = await self.provider.sign_in(email, password)
        except AuthProviderError as e:
            return self._failure("Sign in", e)
        logger.info("User signed in: %s", user.email)
        await self._set_user(user)
        return AuthResult(success=True, user=user)

    async def sign_in_with_provider(self, provider_id: str, id_token: str) -> AuthResult:
        try:
            user = await self.provider.sign_in_with_idp(provider_id, id_token)
        except AuthProviderError as e:
            return self._failure(f"{provider_id} sign in", e)
        logger.info("%s sign in: %s", provider_id, user.email)
        await self._set_user(user)
        return AuthResult(success=True, user=user)

    async def sign_out(self) -> AuthResult:
        try:
            await self.provider.sign_out(self._user)
        except AuthProviderError as e:
            return self._failure("Sign out", e)
        logger.info("User signed out")
        await self._set_user(None)
        return AuthResult(success=True)

    async def reset_password(self, email: str) -> AuthResult:
        try:
            await self.provider.send_password_reset(email)
        except AuthProviderError as e:
            return self._failure("Password reset", e)
        logger.info("Password reset email sent")
        return AuthResult(success=True)

    async def update_email(self, new_email: str) -> AuthResult:
        if self._user is None:
            return self._failure("Email update", AuthProviderError("auth/no-current-user"))
        try:
            user = await self.provider.update_email(self._user, new_email)
        except AuthProviderError as e:
            return self._failure("Email update", e)
        await self._set_user(user)
        return AuthResult(success=True, user=user)

    async def update_password(self, new_password: str) -> AuthResult:
        if self._user is None:
            return self._failure("Password update", AuthProviderError("auth/no-current-user"))
        try:
            user = await self.provider.update_password(self._user, new_password)
        except AuthProviderError as e:
            return self._failure("Password update", e)
        await self._set_user(user)
        return AuthResult(success=True, user=user)

    async def delete_account(self) -> AuthResult:
        if self._user is None:
            return self._failure("Account deletion", AuthProviderError("auth/no-current-user"))
        try:
            await self.provider.delete_user(self._user)
        except AuthProviderError as e:
            return self._failure("Account deletion", e)
        logger.info("Account deleted")
        await self._set_user(None)
        return AuthResult(success=True)
