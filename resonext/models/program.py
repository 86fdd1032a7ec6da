"""Graduate program data models and saved-program tracking."""

import re
from enum import Enum
from typing import Optional

from pydantic import Field

from resonext.models.base import CamelModel
from resonext.models.university import Citation, Tier

NOT_SPECIFIED = "Not specified on official website"


class ApplicationStatus(str, Enum):
    """Application progress tracked by the user for a saved program."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ApplicationRequirements(CamelModel):
    """Admission requirements for international applicants."""

    ielts: str = NOT_SPECIFIED
    toefl: str = NOT_SPECIFIED
    gre_gmat: str = NOT_SPECIFIED
    gpa_requirement: str = NOT_SPECIFIED


class ApplicationDeadline(CamelModel):
    """One application cycle."""

    intake: str
    deadline: str


class ProgramDetails(CamelModel):
    """A graduate program found by the Gateway."""

    program_name: str
    degree_type: str = ""
    field_relevance: str = ""
    application_requirements: ApplicationRequirements = Field(
        default_factory=ApplicationRequirements
    )
    application_fee: str = NOT_SPECIFIED
    application_deadlines: list[ApplicationDeadline] = Field(default_factory=list)
    program_link: str = ""
    application_link: str = ""


class UniversityWithPrograms(CamelModel):
    """A university and its recommended programs."""

    university_name: str
    us_news_ranking: Optional[str] = None
    qs_ranking: Optional[str] = None
    tier: Optional[Tier] = None
    recommended_programs: list[ProgramDetails] = Field(default_factory=list)


class ProgramDiscoveryResult(CamelModel):
    """Result of a program search, with grounding sources."""

    universities: list[UniversityWithPrograms] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)


class SavedProgram(ProgramDetails):
    """A program the user saved, keyed by generate_program_id()."""

    id: str
    university_name: str
    application_status: ApplicationStatus = ApplicationStatus.NOT_STARTED
    deadline: str = ""
    notes: str = ""


def generate_program_id(program_name: str, university_name: str) -> str:
    """Generate a deterministic program id.

    Args:
        program_name: Program name (e.g., "MSc AI")
        university_name: University name (e.g., "MIT")

    Returns:
        Lower-cased "{program}-{university}" with whitespace runs replaced
        by "-" (e.g., "msc-ai-mit")
    """
    return re.sub(r"\s+", "-", f"{program_name}-{university_name}").lower()
