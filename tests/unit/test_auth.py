"""
Unit tests for the auth clients.
"""

import json
import time

import httpx
import pytest

from resonext.models.account import AuthSession, SessionEvent
from resonext.models.config import SupabaseConfig
from resonext.storage.auth import LocalAuthClient, SupabaseAuthClient
from resonext.utils.errors import AuthError
from resonext.utils.local_state import LocalState

BASE_URL = "https://demo.supabase.co"
CONFIG = SupabaseConfig(url=BASE_URL, anon_key="anon-key")


@pytest.fixture
def state(tmp_path) -> LocalState:
    return LocalState(tmp_path / "state.json")


@pytest.fixture
def local_auth(tmp_path, state, monkeypatch) -> LocalAuthClient:
    monkeypatch.setattr(LocalAuthClient, "ITERATIONS", 1_000)
    return LocalAuthClient(tmp_path, state=state)


def _token_payload(email: str = "ada@example.edu", token: str = "jwt-1") -> dict:
    return {
        "access_token": token,
        "refresh_token": "refresh-1",
        "expires_at": int(time.time()) + 3600,
        "user": {"email": email, "user_metadata": {"full_name": "Ada Lovelace"}},
    }


def _supabase(handler, state=None) -> SupabaseAuthClient:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return SupabaseAuthClient(CONFIG, state=state, client=client)


class TestLocalAuthClient:
    """Offline accounts in a users file."""

    @pytest.mark.asyncio
    async def test_sign_up_signs_in_and_notifies(self, local_auth, state):
        """Sign-up returns a session, remembers it and emits SIGNED_IN."""
        # Arrange
        events = []
        local_auth.on_session_change(lambda event, session: events.append((event, session)))

        # Act
        session = await local_auth.sign_up(" Ada Lovelace ", "Ada@Example.edu", "secret1")

        # Assert
        assert session.account_id == "ada@example.edu"
        assert session.full_name == "Ada Lovelace"
        assert local_auth.access_token() == session.access_token
        assert state.session == session
        assert events == [(SessionEvent.SIGNED_IN, session)]

    @pytest.mark.asyncio
    async def test_duplicate_sign_up_is_rejected(self, local_auth):
        await local_auth.sign_up("Ada", "ada@example.edu", "secret1")

        with pytest.raises(AuthError, match="already registered"):
            await local_auth.sign_up("Ada", "ADA@example.edu", "secret2")

    @pytest.mark.asyncio
    async def test_weak_input_is_rejected(self, local_auth):
        with pytest.raises(AuthError, match="email"):
            await local_auth.sign_up("Ada", "not-an-email", "secret1")
        with pytest.raises(AuthError, match="at least 6"):
            await local_auth.sign_up("Ada", "ada@example.edu", "123")

    @pytest.mark.asyncio
    async def test_sign_in_checks_password(self, local_auth):
        await local_auth.sign_up("Ada", "ada@example.edu", "secret1")
        await local_auth.sign_out()

        with pytest.raises(AuthError, match="Invalid login credentials"):
            await local_auth.sign_in("ada@example.edu", "wrong-password")
        session = await local_auth.sign_in(" ADA@example.edu ", "secret1")

        assert session.email == "ada@example.edu"

    @pytest.mark.asyncio
    async def test_password_is_not_stored(self, local_auth):
        await local_auth.sign_up("Ada", "ada@example.edu", "secret1")

        users = json.loads(local_auth.users_file.read_text(encoding="utf-8"))

        assert "secret1" not in json.dumps(users)
        assert users["ada@example.edu"]["password_hash"]

    @pytest.mark.asyncio
    async def test_session_is_resumed_after_restart(self, tmp_path, local_auth):
        """A new client with the same state file resumes the session once."""
        # Arrange
        session = await local_auth.sign_up("Ada", "ada@example.edu", "secret1")
        restarted = LocalAuthClient(tmp_path, state=LocalState(tmp_path / "state.json"))
        events = []
        restarted.on_session_change(lambda event, s: events.append(event))

        # Act
        resumed = await restarted.get_session()
        again = await restarted.get_session()

        # Assert
        assert resumed == session
        assert again == session
        assert events == [SessionEvent.SIGNED_IN]

    @pytest.mark.asyncio
    async def test_signed_out_token_is_not_resumed(self, tmp_path, local_auth, state):
        # Arrange
        session = await local_auth.sign_up("Ada", "ada@example.edu", "secret1")
        await local_auth.sign_out()
        stale_state = LocalState(tmp_path / "stale.json")
        stale_state.save_session(session)
        restarted = LocalAuthClient(tmp_path, state=stale_state)

        # Act
        resumed = await restarted.get_session()

        # Assert
        assert resumed is None
        assert stale_state.session is None

    @pytest.mark.asyncio
    async def test_sign_out_notifies_async_listener(self, local_auth, state):
        # Arrange
        events = []

        async def listener(event, session):
            events.append((event, session))

        await local_auth.sign_up("Ada", "ada@example.edu", "secret1")
        local_auth.on_session_change(listener)

        # Act
        await local_auth.sign_out()

        # Assert
        assert events == [(SessionEvent.SIGNED_OUT, None)]
        assert local_auth.current_session is None
        assert state.session is None

    @pytest.mark.asyncio
    async def test_unsubscribe(self, local_auth):
        events = []
        unsubscribe = local_auth.on_session_change(lambda e, s: events.append(e))

        unsubscribe()
        await local_auth.sign_up("Ada", "ada@example.edu", "secret1")

        assert events == []


class TestSupabaseAuthClient:
    """GoTrue endpoints served by a MockTransport."""

    @pytest.mark.asyncio
    async def test_sign_in_posts_password_grant(self, state):
        # Arrange
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json=_token_payload())

        auth = _supabase(handler, state)

        # Act
        session = await auth.sign_in("ada@example.edu", "secret1")

        # Assert
        request = seen["request"]
        assert request.url.path == "/auth/v1/token"
        assert request.url.params["grant_type"] == "password"
        assert request.headers["apikey"] == "anon-key"
        assert session.access_token == "jwt-1"
        assert session.full_name == "Ada Lovelace"
        assert state.session == session

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        auth = _supabase(
            lambda request: httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
            )
        )

        with pytest.raises(AuthError, match="Invalid login credentials"):
            await auth.sign_in("ada@example.edu", "nope")

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        auth = _supabase(handler)

        with pytest.raises(AuthError, match="unreachable"):
            await auth.sign_in("ada@example.edu", "secret1")

    @pytest.mark.asyncio
    async def test_sign_up_awaiting_confirmation(self):
        """Sign-up without an access token returns None and stays signed out."""
        # Arrange
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "u1", "email": "ada@example.edu"})

        auth = _supabase(handler)

        # Act
        session = await auth.sign_up("Ada Lovelace", "ada@example.edu", "secret1")

        # Assert
        assert session is None
        assert auth.current_session is None
        assert seen["body"]["data"] == {"full_name": "Ada Lovelace"}

    @pytest.mark.asyncio
    async def test_remembered_session_is_validated(self, state):
        """A remembered session is checked against /user before resuming."""
        # Arrange
        state.save_session(
            AuthSession(access_token="jwt-old", email="ada@example.edu", expires_at=None)
        )
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(401, json={"msg": "invalid JWT"})

        auth = _supabase(handler, state)

        # Act
        session = await auth.get_session()

        # Assert
        assert session is None
        assert seen["auth"] == "Bearer jwt-old"
        assert state.session is None

    @pytest.mark.asyncio
    async def test_expired_session_is_dropped_without_request(self, state):
        state.save_session(
            AuthSession(access_token="jwt-old", email="ada@example.edu", expires_at=1)
        )
        calls = []
        auth = _supabase(lambda request: calls.append(request) or httpx.Response(200), state)

        assert await auth.get_session() is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_sign_out_survives_revocation_failure(self, state):
        """SIGNED_OUT is emitted even if the logout request fails."""
        # Arrange
        responses = [httpx.Response(200, json=_token_payload()), httpx.Response(500)]
        auth = _supabase(lambda request: responses.pop(0), state)
        await auth.sign_in("ada@example.edu", "secret1")
        events = []
        auth.on_session_change(lambda event, session: events.append(event))

        # Act
        await auth.sign_out()

        # Assert
        assert events == [SessionEvent.SIGNED_OUT]
        assert auth.access_token() is None
