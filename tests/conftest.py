"""
Shared test fixtures.

Provides an in-memory document store, a mocked Gateway, signed-in sessions
and a SessionController that has completed its first load.
"""

import asyncio
import os
from typing import Any, Optional
from unittest.mock import MagicMock

# Keep test runs from writing logs/resonext.log
os.environ.setdefault("RESONEXT_LOG_FILE", "")

import pytest
import pytest_asyncio

from resonext.agents.gateway import AssistGateway
from resonext.models.account import AuthSession, SessionEvent
from resonext.models.document import UserDocument
from resonext.models.profile import DegreeInfo, UserProfile
from resonext.session import SessionController
from resonext.storage.document_store import DocumentStore
from resonext.utils.errors import DataLoadError, DataSaveError, VersionConflictError


class InMemoryDocumentStore(DocumentStore):
    """DocumentStore keeping one (version, data) record per account.

    Attributes:
        puts: (account_id, expected_version, snapshot) for every put() call
        gets: Account ids passed to get()
        fail_load: Raise DataLoadError from get()
        fail_saves: Number of upcoming put() calls that raise DataSaveError
        gate: One-shot event the next put() waits on before writing
    """

    def __init__(self) -> None:
        self.records: dict[str, tuple[int, dict[str, Any]]] = {}
        self.puts: list[tuple[str, int, UserDocument]] = []
        self.gets: list[str] = []
        self.fail_load = False
        self.fail_saves = 0
        self.gate: Optional[asyncio.Event] = None
        self.load_gate: Optional[asyncio.Event] = None

    def seed(self, account_id: str, document: UserDocument, version: int = 1) -> None:
        self.records[account_id] = (version, document.to_json_dict())

    def stored(self, account_id: str) -> Optional[UserDocument]:
        record = self.records.get(account_id)
        if record is None:
            return None
        version, data = record
        document = UserDocument.model_validate(data)
        document.version = version
        return document

    async def get(self, account_id: str) -> Optional[UserDocument]:
        self.gets.append(account_id)
        gate, self.load_gate = self.load_gate, None
        if gate is not None:
            await gate.wait()
        if self.fail_load:
            raise DataLoadError("Failed to load account data: connection refused")
        return self.stored(account_id)

    async def put(
        self, account_id: str, document: UserDocument, expected_version: int
    ) -> int:
        self.puts.append((account_id, expected_version, document.model_copy(deep=True)))
        gate, self.gate = self.gate, None
        if gate is not None:
            await gate.wait()
        if self.fail_saves:
            self.fail_saves -= 1
            raise DataSaveError("Failed to save account data: connection reset")

        current = self.records.get(account_id, (0, {}))[0]
        if current != expected_version:
            raise VersionConflictError(account_id, expected_version)
        self.records[account_id] = (expected_version + 1, document.to_json_dict())
        return expected_version + 1

    async def aclose(self) -> None:
        pass


def complete(profile: UserProfile, **overrides: Any) -> UserProfile:
    """Fill the fields that make a profile complete (in place)."""
    profile.name = overrides.get("name", "Ada Lovelace")
    profile.academic_summary = overrides.get(
        "academic_summary", "BSc Mathematics, thesis on analytical engines."
    )
    profile.research_interests = overrides.get(
        "research_interests", "machine learning, program synthesis"
    )
    profile.bachelor = DegreeInfo(
        university="University of London", major=overrides.get("major", "Mathematics")
    )
    return profile


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def auth_session() -> AuthSession:
    return AuthSession(access_token="token-a", email="Ada@Example.edu", full_name="Ada")


@pytest.fixture
def other_session() -> AuthSession:
    return AuthSession(access_token="token-b", email="grace@example.edu", full_name="Grace")


@pytest.fixture
def gateway() -> MagicMock:
    """AssistGateway mock; every coroutine method is an AsyncMock."""
    return MagicMock(spec=AssistGateway)


@pytest_asyncio.fixture
async def session(store, auth_session) -> SessionController:
    """SessionController signed in and READY with one default profile."""
    controller = SessionController(store)
    await controller.handle_session_change(SessionEvent.SIGNED_IN, auth_session)
    assert controller.is_ready
    return controller


@pytest_asyncio.fixture
async def ready_profile(session) -> UserProfile:
    """The session's active profile, made complete."""
    profile = complete(session.active_profile)
    session.commit("complete profile")
    await session.flush()
    return profile
