"""Professor data models: discovery results, saved records and email analysis."""

import re
from enum import Enum
from typing import Optional, Union

from pydantic import Field

from resonext.models.base import CamelModel


class Outcome(str, Enum):
    """Outcome of an outreach email as tracked by the user."""

    PENDING = "pending"
    POSITIVE = "positive"
    NEGATIVE = "negative"


class SuggestedPaper(CamelModel):
    """A paper suggested by the Gateway for a professor."""

    title: str
    link: str = ""


class ProfessorProfile(CamelModel):
    """Professor description sent to the Gateway for email and SOP drafting."""

    name: str
    university: str
    department: str = ""
    email: str = ""
    lab_website: str = ""
    research_focus: str = ""
    selected_paper_link: Optional[str] = None


class ProfessorRecommendation(CamelModel):
    """A professor returned by the Gateway's professor search.

    Attributes:
        id: Gateway-supplied id, or generate_professor_id(name, university)
        research_summary: 2-3 sentence research summary
        suggested_papers: Recent or highly cited papers (may be empty)
    """

    id: str = ""
    name: str
    university: str = ""
    department: str = ""
    research_summary: str = ""
    lab_website: str = ""
    email: str = ""
    designation: Optional[str] = None
    suggested_papers: list[SuggestedPaper] = Field(default_factory=list)

    def model_post_init(self, __context: object) -> None:
        if not self.id:
            self.id = generate_professor_id(self.name, self.university)


class AnalysisResult(CamelModel):
    """Alignment analysis and outreach email drafted by the Gateway."""

    alignment_summary: str
    outreach_email: str
    email_subject: str


class EmailRevision(CamelModel):
    """Revised email returned by the Gateway; the alignment summary is not revised."""

    outreach_email: str
    email_subject: str


class SavedProfessor(ProfessorRecommendation):
    """A professor the user saved, with tracked outreach state.

    Attributes:
        feedback: Free-text notes (exported as "Notes")
        email_sent: Whether the user has sent the outreach email
        outcome: Outreach outcome
        alignment_summary: Saved analysis, if one was generated
        outreach_email: Saved email body, if one was generated
        email_subject: Saved email subject, if one was generated
    """

    university_profile_link: str = ""
    google_scholar_link: str = ""
    feedback: str = ""
    email_sent: bool = False
    outcome: Outcome = Outcome.PENDING
    alignment_summary: Optional[str] = None
    outreach_email: Optional[str] = None
    email_subject: Optional[str] = None

    def analysis(self) -> Optional[AnalysisResult]:
        """Saved analysis, or None if no email was generated for this professor."""
        if self.outreach_email is None:
            return None
        return AnalysisResult(
            alignment_summary=self.alignment_summary or "",
            outreach_email=self.outreach_email,
            email_subject=self.email_subject or "",
        )


AnyProfessor = Union[ProfessorProfile, ProfessorRecommendation, SavedProfessor]


def generate_professor_id(name: str, university: str) -> str:
    """Generate a deterministic professor id from name and university.

    The id does not follow later renames of the professor or university.

    Args:
        name: Professor's full name
        university: University name

    Returns:
        "{name}-{university}" with every whitespace run replaced by "-"
    """
    return re.sub(r"\s+", "-", f"{name}-{university}")


def describe_professor(professor: AnyProfessor) -> ProfessorProfile:
    """Build the Gateway description for any professor record.

    Args:
        professor: Manual entry, discovery result or saved record

    Returns:
        ProfessorProfile with research_focus taken from the research summary
    """
    if isinstance(professor, ProfessorProfile):
        return professor
    return ProfessorProfile(
        name=professor.name,
        university=professor.university,
        department=professor.department,
        email=professor.email,
        lab_website=professor.lab_website,
        research_focus=professor.research_summary,
    )


def research_summary_of(professor: AnyProfessor) -> str:
    """Research summary for any professor record."""
    if isinstance(professor, ProfessorProfile):
        return professor.research_focus
    return professor.research_summary
