"""
Auth Client Module

Email/password accounts with session-change notification. The signed-in
session is remembered in LocalState so a restart resumes it.

Two backends:
    SupabaseAuthClient  GoTrue REST endpoints under /auth/v1
    LocalAuthClient     JSON users file with PBKDF2 password hashes

Listeners registered with on_session_change() receive (SessionEvent, session)
after every sign-in, restored session and sign-out. Listeners may be plain
functions or coroutines.
"""

import base64
import hashlib
import hmac
import inspect
import json
import os
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import structlog

from resonext.models.account import AuthSession, SessionEvent
from resonext.models.config import SupabaseConfig
from resonext.utils.errors import AuthError
from resonext.utils.local_state import LocalState

logger = structlog.get_logger(__name__)

SessionListener = Callable[
    [SessionEvent, Optional[AuthSession]], Union[None, Awaitable[None]]
]

MIN_PASSWORD_LENGTH = 6


class AuthClient(ABC):
    """Sign-up, sign-in and sign-out with session-change listeners."""

    def __init__(self, state: Optional[LocalState] = None) -> None:
        self._state = state
        self._session: Optional[AuthSession] = None
        self._restored = False
        self._listeners: list[SessionListener] = []

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _emit(self, event: SessionEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            result = listener(event, session)
            if inspect.isawaitable(result):
                await result

    async def _set_session(self, session: Optional[AuthSession]) -> None:
        self._session = session
        if self._state is not None:
            self._state.save_session(session)
        if session is None:
            logger.info("Signed out")
            await self._emit(SessionEvent.SIGNED_OUT, None)
        else:
            logger.info("Signed in", email=session.email)
            await self._emit(SessionEvent.SIGNED_IN, session)

    def access_token(self) -> Optional[str]:
        """Access token of the current session, or None."""
        return self._session.access_token if self._session else None

    @property
    def current_session(self) -> Optional[AuthSession]:
        return self._session

    async def get_session(self) -> Optional[AuthSession]:
        """
        Current session, resuming a remembered one on first call.

        A remembered session that the backend no longer accepts is cleared.
        Resuming emits SIGNED_IN to listeners.
        """
        if self._session is not None or self._restored:
            return self._session
        self._restored = True

        state = self._state
        remembered = state.session if state is not None else None
        if state is None or remembered is None:
            return None

        if remembered.expires_at is not None and remembered.expires_at <= time.time():
            logger.info("Remembered session expired", email=remembered.email)
            state.clear_session()
            return None

        if not await self._validate(remembered):
            logger.info("Remembered session rejected", email=remembered.email)
            state.clear_session()
            return None

        await self._set_session(remembered)
        return remembered

    async def sign_out(self) -> None:
        """End the current session. Listeners see SIGNED_OUT even if revocation fails."""
        session = self._session
        if session is not None:
            try:
                await self._revoke(session)
            except AuthError as e:
                logger.warning("Session revocation failed", error=str(e))
        await self._set_session(None)

    @abstractmethod
    async def sign_up(
        self, full_name: str, email: str, password: str
    ) -> Optional[AuthSession]:
        """
        Create an account.

        Returns:
            The new session, or None if the backend requires email confirmation

        Raises:
            AuthError: If the email is taken or the input is rejected
        """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Sign in with email and password.

        Raises:
            AuthError: If the credentials are rejected
        """

    @abstractmethod
    async def _validate(self, session: AuthSession) -> bool:
        """Whether the backend still accepts a remembered session."""

    @abstractmethod
    async def _revoke(self, session: AuthSession) -> None:
        """Invalidate a session on the backend."""

    async def aclose(self) -> None:
        """Release any held connections."""


def _validate_credentials(email: str, password: str) -> str:
    email = email.strip()
    if "@" not in email:
        raise AuthError("Please enter a valid email address.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AuthError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    return email


class SupabaseAuthClient(AuthClient):
    """GoTrue-backed accounts.

    Args:
        config: Supabase URL and anon key
        state: LocalState used to remember the session
        client: Optional pre-built httpx.AsyncClient (tests pass a MockTransport)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        config: SupabaseConfig,
        state: Optional[LocalState] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(state)
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.url, timeout=httpx.Timeout(timeout)
        )

    def _headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        headers = {"apikey": self.config.anon_key, "Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                f"/auth/v1/{path}",
                json=json_body,
                params=params,
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Auth service unreachable: {e}") from e

        if response.is_error:
            raise AuthError(_error_message(response))
        return response

    @staticmethod
    def _session_from(payload: dict[str, Any]) -> AuthSession:
        user = payload.get("user") or {}
        metadata = user.get("user_metadata") or {}
        return AuthSession(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", ""),
            email=user.get("email", ""),
            full_name=metadata.get("full_name", ""),
            expires_at=payload.get("expires_at"),
        )

    async def sign_up(
        self, full_name: str, email: str, password: str
    ) -> Optional[AuthSession]:
        email = _validate_credentials(email, password)
        response = await self._request(
            "POST",
            "signup",
            json_body={
                "email": email,
                "password": password,
                "data": {"full_name": full_name.strip()},
            },
        )
        payload = response.json()
        if not payload.get("access_token"):
            logger.info("Sign-up awaiting email confirmation", email=email)
            return None

        session = self._session_from(payload)
        await self._set_session(session)
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        response = await self._request(
            "POST",
            "token",
            params={"grant_type": "password"},
            json_body={"email": email.strip(), "password": password},
        )
        session = self._session_from(response.json())
        await self._set_session(session)
        return session

    async def _validate(self, session: AuthSession) -> bool:
        try:
            await self._request("GET", "user", access_token=session.access_token)
        except AuthError:
            return False
        return True

    async def _revoke(self, session: AuthSession) -> None:
        await self._request("POST", "logout", access_token=session.access_token)

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except json.JSONDecodeError:
        return f"Auth request failed with HTTP {response.status_code}"
    for key in ("error_description", "msg", "message", "error"):
        if isinstance(payload, dict) and payload.get(key):
            return str(payload[key])
    return f"Auth request failed with HTTP {response.status_code}"


class LocalAuthClient(AuthClient):
    """Offline accounts stored in a JSON users file.

    Passwords are stored as PBKDF2-HMAC-SHA256 hashes with a per-user salt.
    Issued tokens are kept per user until sign-out.
    """

    ITERATIONS = 200_000

    def __init__(
        self, data_dir: str | Path = ".resonext", state: Optional[LocalState] = None
    ) -> None:
        super().__init__(state)
        self.users_file = Path(data_dir) / "users.json"

    def _load_users(self) -> dict[str, dict[str, Any]]:
        if not self.users_file.exists():
            return {}
        try:
            with open(self.users_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise AuthError(f"Corrupted users file {self.users_file}: {e}") from e

    def _save_users(self, users: dict[str, dict[str, Any]]) -> None:
        self.users_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.users_file, "w", encoding="utf-8") as f:
            json.dump(users, f, indent=2)

    @classmethod
    def _hash(cls, password: str, salt: bytes) -> str:
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, cls.ITERATIONS)
        return base64.b64encode(digest).decode()

    def _issue(self, users: dict[str, dict[str, Any]], key: str) -> AuthSession:
        token = uuid.uuid4().hex
        users[key].setdefault("tokens", []).append(token)
        self._save_users(users)
        return AuthSession(
            access_token=token,
            email=users[key]["email"],
            full_name=users[key].get("full_name", ""),
        )

    async def sign_up(
        self, full_name: str, email: str, password: str
    ) -> Optional[AuthSession]:
        email = _validate_credentials(email, password)
        key = email.lower()
        users = self._load_users()
        if key in users:
            raise AuthError("User already registered")

        salt = os.urandom(16)
        users[key] = {
            "email": email,
            "full_name": full_name.strip(),
            "salt": base64.b64encode(salt).decode(),
            "password_hash": self._hash(password, salt),
        }
        session = self._issue(users, key)
        await self._set_session(session)
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        key = email.strip().lower()
        users = self._load_users()
        user = users.get(key)
        if user is None:
            raise AuthError("Invalid login credentials")

        salt = base64.b64decode(user["salt"])
        if not hmac.compare_digest(self._hash(password, salt), user["password_hash"]):
            raise AuthError("Invalid login credentials")

        session = self._issue(users, key)
        await self._set_session(session)
        return session

    async def _validate(self, session: AuthSession) -> bool:
        user = self._load_users().get(session.account_id)
        return user is not None and session.access_token in user.get("tokens", [])

    async def _revoke(self, session: AuthSession) -> None:
        users = self._load_users()
        user = users.get(session.account_id)
        if user and session.access_token in user.get("tokens", []):
            user["tokens"].remove(session.access_token)
            self._save_users(users)
