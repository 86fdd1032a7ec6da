"""
Account Document Models

One UserDocument is stored per account. It is always read and written whole.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from resonext.models.base import CamelModel
from resonext.models.professor import SavedProfessor
from resonext.models.profile import UserProfile
from resonext.models.program import SavedProgram


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class TargetProfessor(CamelModel):
    """Snapshot of a professor mentioned in an SOP."""

    name: str
    research_summary: str = ""


class Sop(CamelModel):
    """A generated statement of purpose tied to exactly one profile."""

    id: str
    profile_id: str
    university: str
    program: str
    content: str
    target_professors: list[TargetProfessor] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class UserDocument(CamelModel):
    """Everything stored for one account.

    Attributes:
        profiles: Applicant profiles (at most MAX_PROFILES)
        active_profile_id: Id of an entry in profiles, or None
        saved_professors: Saved professors, unique by (name, university)
        saved_programs: Saved programs, unique by id
        sops: Generated statements of purpose
        version: Store version this document was read at (0 = never stored)
        stored: True once a record exists in the store, even an unversioned one
        updated_at: Time of the last successful save
    """

    profiles: list[UserProfile] = Field(default_factory=list)
    active_profile_id: Optional[str] = None
    saved_professors: list[SavedProfessor] = Field(default_factory=list)
    saved_programs: list[SavedProgram] = Field(default_factory=list)
    sops: list[Sop] = Field(default_factory=list)
    version: int = 0
    updated_at: Optional[str] = None
    stored: bool = Field(default=False, exclude=True)

    def find_profile(self, profile_id: Optional[str]) -> Optional[UserProfile]:
        """Profile with the given id, or None."""
        return next((p for p in self.profiles if p.id == profile_id), None)

    def repair_active_profile(self) -> bool:
        """Point active_profile_id at an existing profile.

        A stale or missing id falls back to the first profile, or None when
        there are no profiles.

        Returns:
            True if active_profile_id was changed
        """
        if self.find_profile(self.active_profile_id) is not None:
            return False
        repaired = self.profiles[0].id if self.profiles else None
        changed = repaired != self.active_profile_id
        self.active_profile_id = repaired
        return changed
