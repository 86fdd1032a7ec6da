"""
Applicant Profile Data Models
"""

import uuid
from typing import Optional

from pydantic import Field

from resonext.models.base import CamelModel

MAX_PROFILES = 5
MAX_SAMPLE_SOPS = 3
DEFAULT_PROFILE_NAME = "Default Profile"


class DegreeInfo(CamelModel):
    """One degree record (bachelor's or master's)."""

    university: str = ""
    major: str = ""
    gpa: str = ""


class SampleSop(CamelModel):
    """Example statement of purpose used as a style reference."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str = ""
    file_name: Optional[str] = None
    file_content: Optional[str] = None  # base64
    file_mime_type: Optional[str] = None


class UserProfile(CamelModel):
    """Applicant identity and application materials.

    Attributes:
        id: Random identifier assigned by create_new_profile()
        profile_name: Label shown in the profile switcher
        name: Applicant's full name
        bachelor: Primary degree record
        master: Optional second degree record
        research_interests: Free-text research interests
        academic_summary: Free-text academic history
        cv_content: Uploaded CV as base64 (empty if none)
        sample_sops: Up to MAX_SAMPLE_SOPS style references
    """

    id: str
    profile_name: str
    name: str = ""
    bachelor: DegreeInfo = Field(default_factory=DegreeInfo)
    master: Optional[DegreeInfo] = None
    research_interests: str = ""
    relevant_coursework: str = ""
    academic_summary: str = ""
    work_experience: str = ""
    conferences: str = ""
    portfolio: str = ""
    future_goals: str = ""
    cv_content: str = ""
    cv_file_name: str = ""
    cv_mime_type: str = ""
    demo_sop: str = ""
    sample_sops: list[SampleSop] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """Whether the profile can drive discovery and document generation.

        Returns:
            True if name, academic summary, research interests and the
            primary-degree major are all non-empty
        """
        return bool(
            self.name.strip()
            and self.academic_summary.strip()
            and self.research_interests.strip()
            and self.bachelor.major.strip()
        )

    def style_samples(self) -> list[str]:
        """Non-empty sample SOP texts, in order."""
        return [sop.content for sop in self.sample_sops if sop.content.strip()]


class PartialProfile(CamelModel):
    """Fields extracted from an uploaded CV."""

    name: str = ""
    bachelor: DegreeInfo = Field(default_factory=DegreeInfo)
    master: DegreeInfo = Field(default_factory=DegreeInfo)
    academic_summary: str = ""
    research_interests: str = ""
    relevant_coursework: str = ""
    work_experience: str = ""
    conferences: str = ""
    portfolio: str = ""
    future_goals: str = ""


def create_new_profile(profile_name: str) -> UserProfile:
    """Create an empty profile with a fresh random identifier.

    Args:
        profile_name: Label for the new profile

    Returns:
        UserProfile with empty bachelor and master records
    """
    return UserProfile(
        id=str(uuid.uuid4()),
        profile_name=profile_name,
        master=DegreeInfo(),
    )
