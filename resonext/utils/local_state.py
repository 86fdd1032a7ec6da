"""
Local-only client state: the remembered session, theme and last-active view.

This file never leaves the machine and is not part of the account document.
"""

import json
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from resonext.models.account import AuthSession

logger = structlog.get_logger(__name__)

VALID_THEMES = ("light", "dark")


class LocalStateData(BaseModel):
    session: Optional[AuthSession] = None
    theme: str = "light"
    last_view: str = "profile"


class LocalState:
    """JSON file holding LocalStateData.

    Args:
        state_file: Path to the JSON file (created on first write)
    """

    def __init__(self, state_file: str | Path = ".resonext/state.json") -> None:
        self.state_file = Path(state_file)
        self.data = self._read()

    def _read(self) -> LocalStateData:
        if not self.state_file.exists():
            return LocalStateData()
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                return LocalStateData.model_validate(json.load(f))
        except (json.JSONDecodeError, ValueError) as e:
            # Unreadable local state is discarded; the user signs in again
            logger.warning(
                "Discarding unreadable local state",
                state_file=str(self.state_file),
                error=str(e),
            )
            return LocalStateData()

    def _write(self) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w", encoding="utf-8") as f:
            json.dump(self.data.model_dump(mode="json"), f, indent=2)

    @property
    def session(self) -> Optional[AuthSession]:
        return self.data.session

    def save_session(self, session: Optional[AuthSession]) -> None:
        self.data.session = session
        self._write()

    def clear_session(self) -> None:
        self.save_session(None)

    @property
    def theme(self) -> str:
        return self.data.theme

    def set_theme(self, theme: str) -> None:
        if theme not in VALID_THEMES:
            raise ValueError(f"Theme must be one of {VALID_THEMES}, got {theme!r}")
        self.data.theme = theme
        self._write()

    @property
    def last_view(self) -> str:
        return self.data.last_view

    def set_last_view(self, view: str) -> None:
        self.data.last_view = view
        self._write()

    def as_dict(self) -> dict[str, Any]:
        """State without the session token, for display."""
        return self.data.model_dump(mode="json", exclude={"session"})
