"""
Unit tests for the document store backends.

Supabase requests are served by an httpx.MockTransport.
"""

import json

import httpx
import pytest

from resonext.models.account import AuthSession, SessionEvent
from resonext.models.config import SupabaseConfig
from resonext.models.document import UserDocument
from resonext.models.profile import create_new_profile
from resonext.session import SessionController
from resonext.storage.document_store import LocalDocumentStore, SupabaseDocumentStore
from resonext.utils.errors import DataLoadError, DataSaveError, VersionConflictError

BASE_URL = "https://demo.supabase.co"
CONFIG = SupabaseConfig(url=BASE_URL, anon_key="anon-key")


def _document() -> UserDocument:
    profile = create_new_profile("Default Profile")
    return UserDocument(profiles=[profile], active_profile_id=profile.id)


def _supabase(handler, token: str = "user-token") -> SupabaseDocumentStore:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return SupabaseDocumentStore(CONFIG, token_provider=lambda: token, client=client)


class TestSupabaseGet:
    @pytest.mark.asyncio
    async def test_get_returns_document_with_version(self):
        """The row's version column is copied onto the document."""
        # Arrange
        document = _document()
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(
                200, json=[{"data": document.to_json_dict(), "version": 4}]
            )

        store = _supabase(handler)

        # Act
        result = await store.get("ada@example.edu")

        # Assert
        assert result.version == 4
        assert result.active_profile_id == document.active_profile_id
        request = seen["request"]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/user_data"
        assert request.url.params["user_email"] == "eq.ada@example.edu"
        assert request.headers["Authorization"] == "Bearer user-token"
        assert request.headers["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_missing_row_returns_none(self):
        store = _supabase(lambda request: httpx.Response(200, json=[]))

        assert await store.get("new@example.edu") is None

    @pytest.mark.asyncio
    async def test_anon_key_used_without_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json=[])

        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        store = SupabaseDocumentStore(CONFIG, client=client)

        await store.get("ada@example.edu")

        assert seen["auth"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_http_error_raises_data_load_error(self):
        store = _supabase(lambda request: httpx.Response(500, json={"message": "boom"}))

        with pytest.raises(DataLoadError, match="HTTP 500"):
            await store.get("ada@example.edu")

    @pytest.mark.asyncio
    async def test_network_error_raises_data_load_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = _supabase(handler)

        with pytest.raises(DataLoadError):
            await store.get("ada@example.edu")

    @pytest.mark.asyncio
    async def test_malformed_document_raises_data_load_error(self):
        store = _supabase(
            lambda request: httpx.Response(
                200, json=[{"data": {"profiles": "not a list"}, "version": 1}]
            )
        )

        with pytest.raises(DataLoadError, match="malformed"):
            await store.get("ada@example.edu")


class TestSupabasePut:
    @pytest.mark.asyncio
    async def test_first_save_inserts_version_one(self):
        """A never-stored document is inserted with POST."""
        # Arrange
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json=[seen["body"]])

        store = _supabase(handler)

        # Act
        version = await store.put("ada@example.edu", _document(), 0)

        # Assert
        assert version == 1
        assert seen["method"] == "POST"
        assert seen["body"]["user_email"] == "ada@example.edu"
        assert seen["body"]["version"] == 1
        assert seen["body"]["data"]["version"] == 1
        assert "updatedAt" in seen["body"]["data"]

    @pytest.mark.asyncio
    async def test_insert_conflict(self):
        """A row created elsewhere since the load is a version conflict."""
        store = _supabase(lambda request: httpx.Response(409, json={"code": "23505"}))

        with pytest.raises(VersionConflictError):
            await store.put("ada@example.edu", _document(), 0)

    @pytest.mark.asyncio
    async def test_update_is_conditional_on_version(self):
        # Arrange
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json=[{"version": 3}])

        store = _supabase(handler)

        # Act
        version = await store.put("ada@example.edu", _document(), 2)

        # Assert
        request = seen["request"]
        assert version == 3
        assert request.method == "PATCH"
        assert request.url.params["version"] == "eq.2"
        assert request.headers["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_update_matching_no_rows_is_conflict(self):
        """An empty representation means the stored version moved on."""
        store = _supabase(lambda request: httpx.Response(200, json=[]))

        with pytest.raises(VersionConflictError) as exc_info:
            await store.put("ada@example.edu", _document(), 2)
        assert exc_info.value.expected_version == 2

    @pytest.mark.asyncio
    async def test_server_error_raises_data_save_error(self):
        store = _supabase(lambda request: httpx.Response(503))

        with pytest.raises(DataSaveError) as exc_info:
            await store.put("ada@example.edu", _document(), 2)
        assert not isinstance(exc_info.value, VersionConflictError)


class TestUnversionedRows:
    """Rows inserted with only user_email and data (version column null)."""

    @pytest.mark.asyncio
    async def test_fetched_row_is_marked_stored(self):
        document = _document()
        store = _supabase(
            lambda request: httpx.Response(
                200, json=[{"data": document.to_json_dict(), "version": None}]
            )
        )

        result = await store.get("ada@example.edu")

        assert result.version == 0
        assert result.stored is True

    @pytest.mark.asyncio
    async def test_save_patches_unversioned_row(self):
        """The first save of an existing row is a PATCH, never an insert."""
        # Arrange
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"version": 1}])

        document = _document()
        document.stored = True
        store = _supabase(handler)

        # Act
        new_version = await store.put("ada@example.edu", document, 0)

        # Assert
        assert new_version == 1
        request = seen[0]
        assert request.method == "PATCH"
        assert request.url.params["user_email"] == "eq.ada@example.edu"
        assert request.url.params["or"] == "(version.is.null,version.eq.0)"
        assert "version" not in request.url.params
        assert json.loads(request.content)["version"] == 1

    @pytest.mark.asyncio
    async def test_session_keeps_saving_an_unversioned_row(self):
        """Commits against a legacy row succeed and start its version counter."""
        # Arrange
        row = {"data": _document().to_json_dict(), "version": None}
        methods = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            if request.method == "GET":
                return httpx.Response(200, json=[row])
            if request.method == "POST":
                return httpx.Response(409, json={"code": "23505"})
            params = request.url.params
            matches = (
                row["version"] in (None, 0)
                if "or" in params
                else params["version"] == f"eq.{row['version']}"
            )
            if not matches:
                return httpx.Response(200, json=[])
            body = json.loads(request.content)
            row.update(data=body["data"], version=body["version"])
            return httpx.Response(200, json=[row])

        store = _supabase(handler)
        session = SessionController(store)
        await session.handle_session_change(
            SessionEvent.SIGNED_IN,
            AuthSession(access_token="user-token", email="ada@example.edu"),
        )

        # Act
        session.commit("first edit")
        await session.flush()
        session.commit("second edit")
        await session.flush()

        # Assert
        assert session.conflict_detected is False
        assert session.document.version == 2
        assert row["version"] == 2
        assert "POST" not in methods
        assert methods.count("PATCH") == 2


class TestLocalDocumentStore:
    @pytest.mark.asyncio
    async def test_roundtrip_and_versions(self, tmp_path):
        """Each put appends a record and the latest one is returned."""
        # Arrange
        store = LocalDocumentStore(tmp_path)
        document = _document()

        # Act
        first = await store.put("ada@example.edu", document, 0)
        document.profiles[0].name = "Ada"
        second = await store.put("ada@example.edu", document, first)
        loaded = await store.get("ada@example.edu")

        # Assert
        assert (first, second) == (1, 2)
        assert loaded.version == 2
        assert loaded.profiles[0].name == "Ada"
        assert await store.get("grace@example.edu") is None

    @pytest.mark.asyncio
    async def test_stale_version_is_rejected(self, tmp_path):
        store = LocalDocumentStore(tmp_path)
        await store.put("ada@example.edu", _document(), 0)

        with pytest.raises(VersionConflictError):
            await store.put("ada@example.edu", _document(), 0)

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self, tmp_path):
        store = LocalDocumentStore(tmp_path)

        await store.put("ada@example.edu", _document(), 0)
        version = await store.put("grace@example.edu", _document(), 0)

        assert version == 1

    @pytest.mark.asyncio
    async def test_corrupted_log_raises(self, tmp_path):
        store = LocalDocumentStore(tmp_path)
        store.log_file.write_text("{not json\n", encoding="utf-8")

        with pytest.raises(DataLoadError):
            await store.get("ada@example.edu")
        with pytest.raises(DataSaveError):
            await store.put("ada@example.edu", _document(), 0)
