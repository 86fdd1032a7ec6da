"""
Unit tests for application wiring.
"""

from unittest.mock import MagicMock

import pytest

from resonext.agents.gateway import AssistGateway
from resonext.coordinator import ResonextApp, create_auth_client, create_document_store
from resonext.models.config import AppConfig
from resonext.storage.auth import LocalAuthClient, SupabaseAuthClient
from resonext.storage.document_store import LocalDocumentStore, SupabaseDocumentStore
from resonext.utils.errors import ConfigurationError
from resonext.utils.local_state import LocalState

SUPABASE = {"url": "https://demo.supabase.co", "anon_key": "anon-key"}


class TestFactories:
    @pytest.mark.asyncio
    async def test_local_backend(self, tmp_path):
        config = AppConfig(storage={"backend": "local", "local_dir": str(tmp_path)})
        state = LocalState(tmp_path / "state.json")

        auth = create_auth_client(config, state)
        store = create_document_store(config, auth)

        assert isinstance(auth, LocalAuthClient)
        assert isinstance(store, LocalDocumentStore)

    @pytest.mark.asyncio
    async def test_supabase_store_uses_auth_token(self, tmp_path):
        """The store reads the access token from the auth client."""
        # Arrange
        config = AppConfig(supabase=SUPABASE)
        auth = create_auth_client(config, LocalState(tmp_path / "state.json"))

        # Act
        store = create_document_store(config, auth)

        # Assert
        assert isinstance(auth, SupabaseAuthClient)
        assert isinstance(store, SupabaseDocumentStore)
        assert store._token_provider == auth.access_token
        await store.aclose()
        await auth.aclose()


class TestResonextApp:
    def test_missing_credentials_are_fatal(self, tmp_path):
        config = AppConfig(storage={"local_dir": str(tmp_path)})

        with pytest.raises(ConfigurationError):
            ResonextApp(config)

    @pytest.mark.asyncio
    async def test_components_share_the_session(self, tmp_path, store):
        # Arrange
        config = AppConfig(storage={"backend": "local", "local_dir": str(tmp_path)})
        auth = LocalAuthClient(tmp_path)

        # Act
        async with ResonextApp(
            config,
            auth=auth,
            store=store,
            gateway=MagicMock(spec=AssistGateway),
            state=LocalState(tmp_path / "state.json"),
        ) as app:
            # Assert
            assert app.profiles.session is app.session
            assert app.programs.tracker is app.saved
            assert app.emails.tracker is app.saved
            assert await app.resume() is None
