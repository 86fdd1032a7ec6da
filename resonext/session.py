"""
Session & Data Sync Controller

Owns the one in-memory UserDocument for the signed-in account and keeps it in
step with the stored copy.

State machine:
    UNAUTHENTICATED --start()--> LOADING
    LOADING --document found--> READY
    LOADING --no document--> BOOTSTRAPPING --default profile saved--> READY
    LOADING --fetch failed--> LOAD_FAILED --reload()--> LOADING
    any --stop() / sign-out--> UNAUTHENTICATED

Every mutation calls commit(). Persistence is coalescing and last-write-wins:
one background task sends the whole current document, and sends it again if
it changed while a save was in flight. Saves are suppressed until the first
load of the session has completed, while signed out, and for any account other
than the one that scheduled them. Each save carries the version it was loaded
at; a version conflict stops persistence until reload().

Example Usage:
    session = SessionController(store)
    auth.on_session_change(session.handle_session_change)

    await auth.sign_in("ada@example.edu", "secret")   # -> start() -> READY
    session.document.saved_professors.append(professor)
    session.commit("save professor")
    await session.flush()
"""

import asyncio
import uuid
from enum import Enum
from typing import Callable, Optional

from resonext.models.account import AuthSession, SessionEvent
from resonext.models.document import UserDocument, utc_now_iso
from resonext.models.profile import DEFAULT_PROFILE_NAME, UserProfile, create_new_profile
from resonext.storage.document_store import DocumentStore
from resonext.utils.errors import (
    DataLoadError,
    DataSaveError,
    InputValidationError,
    VersionConflictError,
)
from resonext.utils.logger import get_logger

ChangeListener = Callable[["SessionController"], None]


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    LOAD_FAILED = "load_failed"


class SessionController:
    """Single owner of the signed-in account's document.

    Attributes:
        state: Current SessionState
        session: Signed-in AuthSession, or None
        document: The in-memory UserDocument (empty unless READY)
        load_error: Message of the last failed load (LOAD_FAILED only)
        conflict_detected: True after the store rejected a stale write
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.state = SessionState.UNAUTHENTICATED
        self.session: Optional[AuthSession] = None
        self.document = UserDocument()
        self.load_error: Optional[str] = None
        self.conflict_detected = False

        self._loaded = False
        self._dirty = False
        self._generation = 0
        self._save_task: Optional[asyncio.Task[None]] = None
        self._listeners: list[ChangeListener] = []
        self.logger = get_logger(flow="session", component="session_controller")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def account_id(self) -> Optional[str]:
        return self.session.account_id if self.session else None

    @property
    def generation(self) -> int:
        """Advances whenever local state is discarded (sign-out, account switch, reload)."""
        return self._generation

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def active_profile(self) -> Optional[UserProfile]:
        return self.document.find_profile(self.document.active_profile_id)

    def require_ready(self) -> UserDocument:
        """
        The document, for callers about to mutate it.

        Raises:
            InputValidationError: If no account document is loaded
        """
        if not self.is_ready:
            raise InputValidationError(
                f"Account data is not available (session is {self.state.value})"
            )
        return self.document

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """Register a listener called after every state change; returns an unsubscriber."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            self.logger.info(
                "Session state changed", previous=self.state.value, state=state.value
            )
        self.state = state
        self._notify()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        """Discard all local data and abandon pending saves."""
        self._generation += 1
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = None
        self._dirty = False
        self._loaded = False
        self.document = UserDocument()
        self.load_error = None
        self.conflict_detected = False

    async def start(self, session: AuthSession) -> None:
        """Begin a session: clear local state, then load the account's document."""
        self._reset()
        self.session = session
        self.logger = get_logger(
            correlation_id=str(uuid.uuid4()),
            flow="session",
            component="session_controller",
        ).bind(account=session.account_id)
        await self._load()

    async def reload(self) -> None:
        """Load the current account's document again, discarding local changes."""
        if self.session is None:
            self.logger.warning("Reload requested while signed out")
            return
        self._reset()
        await self._load()

    def stop(self) -> None:
        """End the session and discard all local state."""
        self._reset()
        self.session = None
        self._set_state(SessionState.UNAUTHENTICATED)

    async def handle_session_change(
        self, event: SessionEvent, session: Optional[AuthSession]
    ) -> None:
        """Auth listener: start, switch or end the session."""
        if event is SessionEvent.SIGNED_OUT or session is None:
            if self.state is not SessionState.UNAUTHENTICATED:
                self.logger.info("Signed out; clearing session")
                self.stop()
            return

        if (
            self.session is not None
            and self.account_id == session.account_id
            and self.state is not SessionState.UNAUTHENTICATED
        ):
            # Same account (e.g. token refresh); keep the loaded document
            self.session = session
            return

        if self.session is not None:
            self.logger.info("Account changed; resetting local state")
        await self.start(session)

    async def _load(self) -> None:
        generation = self._generation
        account = self.account_id
        if account is None:
            self.logger.warning("Load requested while signed out")
            return
        self._set_state(SessionState.LOADING)

        try:
            document = await self.store.get(account)
        except DataLoadError as e:
            if generation != self._generation:
                return
            self.logger.error("Loading account data failed", error=str(e))
            self.load_error = str(e)
            self._set_state(SessionState.LOAD_FAILED)
            return

        if generation != self._generation:
            self.logger.debug("Discarding load result for an ended session")
            return

        if document is None:
            self._set_state(SessionState.BOOTSTRAPPING)
            profile = create_new_profile(DEFAULT_PROFILE_NAME)
            self.document = UserDocument(profiles=[profile], active_profile_id=profile.id)
            self._loaded = True
            self.logger.info("Created first document", profile_id=profile.id)
            self._schedule("bootstrap")
            await self.flush()
            if generation == self._generation:
                self._set_state(SessionState.READY)
            return

        self.document = document
        if document.repair_active_profile():
            self.logger.info(
                "Repaired active profile", active_profile_id=document.active_profile_id
            )
        self._loaded = True
        self.logger.info(
            "Account data loaded",
            version=document.version,
            profiles=len(document.profiles),
            saved_professors=len(document.saved_professors),
            saved_programs=len(document.saved_programs),
            sops=len(document.sops),
        )
        self._set_state(SessionState.READY)

        if not document.profiles:
            profile = create_new_profile(DEFAULT_PROFILE_NAME)
            document.profiles.append(profile)
            document.active_profile_id = profile.id
            self.commit("add default profile")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def commit(self, reason: str) -> bool:
        """
        Record a mutation of the document and schedule it to be saved.

        Args:
            reason: Short description for the log (e.g. "save professor")

        Returns:
            True if a save was scheduled, False if persistence is suppressed
        """
        if not self._loaded or self.session is None:
            self.logger.debug("Save suppressed before first load", reason=reason)
            return False
        if self.conflict_detected:
            self.logger.warning("Save suppressed after version conflict", reason=reason)
            return False

        self._schedule(reason)
        self._notify()
        return True

    def _schedule(self, reason: str) -> None:
        self._dirty = True
        self.logger.debug("Save scheduled", reason=reason)
        if self._save_task is not None and not self._save_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop yet; flush() starts the save
            return
        self._save_task = loop.create_task(
            self._persist(self._generation, self.account_id)
        )

    async def flush(self) -> None:
        """Wait until every scheduled save has been attempted."""
        while True:
            idle = self._save_task is None or self._save_task.done()
            if idle and self._dirty and self._loaded and not self.conflict_detected:
                self._save_task = asyncio.get_running_loop().create_task(
                    self._persist(self._generation, self.account_id)
                )
            task = self._save_task
            if task is None or task.done():
                return
            await asyncio.gather(task, return_exceptions=True)

    async def _persist(self, generation: int, account: Optional[str]) -> None:
        while self._dirty:
            if generation != self._generation or account != self.account_id or account is None:
                return
            if self.conflict_detected:
                return

            self._dirty = False
            expected_version = self.document.version
            snapshot = self.document.model_copy(deep=True)

            try:
                new_version = await self.store.put(account, snapshot, expected_version)
            except VersionConflictError:
                if generation != self._generation:
                    return
                self.logger.warning(
                    "Stored document changed elsewhere; saving paused until reload",
                    expected_version=expected_version,
                )
                self.conflict_detected = True
                self._dirty = False
                self._notify()
                return
            except DataSaveError as e:
                self.logger.warning("Save dropped", error=str(e))
                continue

            if generation != self._generation:
                return
            self.document.version = new_version
            self.document.stored = True
            self.document.updated_at = utc_now_iso()
            self.logger.debug("Document saved", version=new_version)
