"""
Application Coordinator

Builds the auth client, document store, Gateway, session controller and the
feature controllers from an AppConfig and wires them together. The session
controller listens to the auth client; feature controllers are rebuilt
whenever the signed-in account changes so no view state leaks between
accounts.
"""

import uuid
from pathlib import Path
from types import TracebackType
from typing import Optional

from resonext.agents.discovery import DiscoveryFlow
from resonext.agents.document_generators import EmailGenerator, SopGenerator
from resonext.agents.gateway import AssistGateway
from resonext.agents.profile_manager import ProfileManager
from resonext.agents.program_discovery import ProgramDiscovery
from resonext.agents.saved_items import SavedItemsTracker
from resonext.models.account import AuthSession, SessionEvent
from resonext.models.config import AppConfig, StorageBackend
from resonext.session import SessionController
from resonext.storage.auth import AuthClient, LocalAuthClient, SupabaseAuthClient
from resonext.storage.document_store import (
    DocumentStore,
    LocalDocumentStore,
    SupabaseDocumentStore,
)
from resonext.utils.local_state import LocalState
from resonext.utils.logger import get_logger


def create_auth_client(config: AppConfig, state: LocalState) -> AuthClient:
    """Auth client for the configured backend."""
    if config.storage.backend is StorageBackend.LOCAL:
        return LocalAuthClient(config.storage.local_dir, state=state)
    return SupabaseAuthClient(
        config.supabase, state=state, timeout=config.storage.request_timeout_seconds
    )


def create_document_store(config: AppConfig, auth: AuthClient) -> DocumentStore:
    """Document store for the configured backend."""
    if config.storage.backend is StorageBackend.LOCAL:
        return LocalDocumentStore(config.storage.local_dir)
    return SupabaseDocumentStore(
        config.supabase,
        token_provider=auth.access_token,
        timeout=config.storage.request_timeout_seconds,
    )


class ResonextApp:
    """
    Wired application.

    Args:
        config: Validated application configuration
        auth: Auth client override (tests)
        store: Document store override (tests)
        gateway: Gateway override (tests)
        state: Local state override (tests)
        correlation_id: Correlation ID for logging (auto-generated if None)

    Raises:
        ConfigurationError: If the Supabase backend is selected without credentials
    """

    def __init__(
        self,
        config: AppConfig,
        auth: Optional[AuthClient] = None,
        store: Optional[DocumentStore] = None,
        gateway: Optional[AssistGateway] = None,
        state: Optional[LocalState] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        if auth is None or store is None:
            config.validate_credentials()

        self.config = config
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.logger = get_logger(
            correlation_id=self.correlation_id,
            flow="app",
            component="resonext_app",
        )

        self.state = state or LocalState(Path(config.storage.local_dir) / "state.json")
        self.auth = auth or create_auth_client(config, self.state)
        self.store = store or create_document_store(config, self.auth)
        self.gateway = gateway or AssistGateway(config.gateway)
        self.session = SessionController(self.store)
        self._build_components()

        self._unsubscribe = self.auth.on_session_change(self._on_session_change)
        self.logger.info(
            "Application initialized",
            backend=config.storage.backend.value,
            model=config.gateway.model,
        )

    def _build_components(self) -> None:
        self.saved = SavedItemsTracker(self.session)
        self.profiles = ProfileManager(self.session, self.gateway)
        self.discovery = DiscoveryFlow(self.session, self.gateway)
        self.programs = ProgramDiscovery(self.session, self.gateway, self.saved)
        self.emails = EmailGenerator(self.session, self.gateway, self.saved)
        self.sops = SopGenerator(self.session, self.gateway)

    async def _on_session_change(
        self, event: SessionEvent, session: Optional[AuthSession]
    ) -> None:
        account = session.account_id if session else None
        if account != self.session.account_id:
            self._build_components()
        await self.session.handle_session_change(event, session)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def resume(self) -> Optional[AuthSession]:
        """Resume a remembered session, loading its document."""
        return await self.auth.get_session()

    async def sign_in(self, email: str, password: str) -> AuthSession:
        return await self.auth.sign_in(email, password)

    async def sign_up(
        self, full_name: str, email: str, password: str
    ) -> Optional[AuthSession]:
        return await self.auth.sign_up(full_name, email, password)

    async def sign_out(self) -> None:
        """Finish pending saves, then sign out and clear all local data."""
        await self.session.flush()
        await self.auth.sign_out()

    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Finish pending saves and release connections."""
        await self.session.flush()
        self._unsubscribe()
        await self.store.aclose()
        await self.auth.aclose()

    async def __aenter__(self) -> "ResonextApp":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
