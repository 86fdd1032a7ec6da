"""University search results and grounding sources."""

from enum import Enum
from typing import Optional

from pydantic import Field

from resonext.models.base import CamelModel
from resonext.models.professor import ProfessorRecommendation


class Tier(str, Enum):
    """Applicant-fit classification of a candidate university."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Citation(CamelModel):
    """A web reference returned alongside a search result."""

    uri: str
    title: str = ""


class University(CamelModel):
    """A candidate university."""

    name: str
    country: str = ""
    us_news_ranking: Optional[str] = None
    qs_ranking: Optional[str] = None


class TieredUniversities(CamelModel):
    """Candidate universities partitioned into high/medium/low tiers."""

    high_tier: list[University] = Field(default_factory=list)
    medium_tier: list[University] = Field(default_factory=list)
    low_tier: list[University] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)

    def tier(self, tier: Tier) -> list[University]:
        """Universities in one tier."""
        return {
            Tier.HIGH: self.high_tier,
            Tier.MEDIUM: self.medium_tier,
            Tier.LOW: self.low_tier,
        }[tier]


class ProfessorSearchResult(CamelModel):
    """Professors found at one university, with grounding sources."""

    university_name: str = ""
    professors: list[ProfessorRecommendation] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
