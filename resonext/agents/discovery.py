"""
Discovery Flow

Four-stage wizard for finding professors:

    SEARCH -> UNIVERSITIES -> PROFESSORS -> DETAIL

SEARCH leads to UNIVERSITIES (tiered search by country) or straight to
PROFESSORS (a university typed by the user). back() walks the stages in
reverse and clears what the exited stage showed.

Every Gateway request captures the flow's generation token; back() and
reset() advance the generation, so a response that arrives after the user
moved on is dropped instead of being applied to the wrong stage.
"""

from enum import Enum
from typing import Optional

from resonext.agents.gateway import AssistGateway
from resonext.models.professor import ProfessorRecommendation
from resonext.models.profile import UserProfile
from resonext.models.university import Citation, Tier, TieredUniversities
from resonext.session import SessionController
from resonext.utils.errors import GatewayError
from resonext.utils.logger import get_logger

INCOMPLETE_PROFILE_MESSAGE = (
    "Please complete your profile (name, academic summary, research interests "
    "and major) before searching."
)


class DiscoveryStage(str, Enum):
    SEARCH = "search"
    UNIVERSITIES = "universities"
    PROFESSORS = "professors"
    DETAIL = "detail"


def merge_citations(existing: list[Citation], new: list[Citation]) -> list[Citation]:
    """Append citations whose URI is not already listed."""
    seen = {c.uri for c in existing}
    merged = list(existing)
    for citation in new:
        if citation.uri not in seen:
            seen.add(citation.uri)
            merged.append(citation)
    return merged


class DiscoveryFlow:
    """Professor discovery wizard state.

    Attributes:
        stage: Current DiscoveryStage
        search_profile_id: Profile used for searches (defaults to the active one)
        country_query, state_query: Tiered-search location
        university_query: University for the direct path
        department_query, interest_query: Optional professor-search filters
        universities: Last tiered result, or None
        selected_university: University whose professors are shown
        professors: Professors found so far
        citations: Grounding sources for the professor list
        selected_professor: Professor shown in DETAIL
        error: Inline message for the last failed action
    """

    def __init__(self, session: SessionController, gateway: AssistGateway) -> None:
        self.session = session
        self.gateway = gateway
        self.logger = get_logger(flow="discovery", component="discovery_flow")

        self.search_profile_id: Optional[str] = None
        self.country_query = ""
        self.state_query = ""
        self.university_query = ""
        self.department_query = ""
        self.interest_query = ""

        self.tier_filters: set[Tier] = set(Tier)
        self.interest_suggestions: list[str] = []
        self._suggestion_cache: dict[str, list[str]] = {}

        self.is_loading = False
        self.is_load_more_loading = False
        self.is_suggestions_loading = False
        self._generation = 0
        self._clear_results()

    def _clear_results(self) -> None:
        self.stage = DiscoveryStage.SEARCH
        self.universities: Optional[TieredUniversities] = None
        self.selected_university: Optional[str] = None
        self.professors: list[ProfessorRecommendation] = []
        self.citations: list[Citation] = []
        self.selected_professor: Optional[ProfessorRecommendation] = None
        self.selected_papers: list[str] = []
        self.manual_paper_link = ""
        self.error: Optional[str] = None

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def _advance_generation(self) -> None:
        self._generation += 1
        self.is_loading = False
        self.is_load_more_loading = False

    def _begin_search(self) -> int:
        """Supersede in-flight requests and mark a new search as loading."""
        self._generation += 1
        self.is_load_more_loading = False
        self.is_loading = True
        self.error = None
        return self._generation

    def reset(self) -> None:
        """Return to SEARCH and drop all results; in-flight responses are ignored."""
        self._advance_generation()
        self._clear_results()

    def back(self) -> DiscoveryStage:
        """Go one stage back, clearing the data of the stage being left."""
        self._advance_generation()
        self.error = None
        if self.stage is DiscoveryStage.DETAIL:
            self.stage = DiscoveryStage.PROFESSORS
        elif self.stage is DiscoveryStage.PROFESSORS:
            self.selected_university = None
            self.professors = []
            self.citations = []
            self.stage = (
                DiscoveryStage.UNIVERSITIES
                if self.universities is not None
                else DiscoveryStage.SEARCH
            )
        elif self.stage is DiscoveryStage.UNIVERSITIES:
            self.stage = DiscoveryStage.SEARCH
        return self.stage

    # ------------------------------------------------------------------
    # Searches
    # ------------------------------------------------------------------

    @property
    def search_profile(self) -> Optional[UserProfile]:
        document = self.session.document
        return document.find_profile(self.search_profile_id or document.active_profile_id)

    def _ready_profile(self) -> Optional[UserProfile]:
        profile = self.search_profile
        if profile is None or not profile.is_complete:
            self.error = INCOMPLETE_PROFILE_MESSAGE
            return None
        return profile

    async def find_universities(self) -> bool:
        """
        Tiered university search for country_query (and optional state_query).

        Returns:
            True if results were applied
        """
        if self.is_loading:
            return False
        if not self.country_query.strip():
            self.error = "Please enter a country name."
            return False
        profile = self._ready_profile()
        if profile is None:
            return False

        token = self._begin_search()
        self.logger.info(
            "Finding universities", country=self.country_query, state=self.state_query
        )
        try:
            result = await self.gateway.find_universities(
                profile,
                self.country_query.strip(),
                self.state_query.strip() or None,
            )
        except GatewayError as e:
            if token == self._generation:
                self.logger.error("University search failed", error=str(e))
                self.error = "Failed to find universities. Please try again."
                self.is_loading = False
            return False

        if token != self._generation:
            self.logger.debug("Discarding stale university results", request_token=token)
            return False
        self.is_loading = False
        self.universities = result
        self.stage = DiscoveryStage.UNIVERSITIES
        return True

    async def find_professors(self, university: Optional[str] = None) -> bool:
        """
        Professor search at a university from the tier list, or university_query.

        Returns:
            True if results were applied
        """
        if self.is_loading:
            return False
        name = (university or self.university_query).strip()
        if not name:
            self.error = "Please enter a university name."
            return False
        profile = self._ready_profile()
        if profile is None:
            return False

        token = self._begin_search()
        self.selected_university = name
        self.logger.info("Finding professors", university=name)
        try:
            result = await self.gateway.find_professors(
                profile,
                name,
                department=self.department_query.strip() or None,
                interest=self.interest_query.strip() or None,
                exclude=[],
            )
        except GatewayError as e:
            if token == self._generation:
                self.logger.error("Professor search failed", error=str(e))
                self.error = "Failed to find professors for this university. Please try again."
                self.is_loading = False
            return False

        if token != self._generation:
            self.logger.debug("Discarding stale professor results", request_token=token)
            return False
        self.is_loading = False
        self.professors = list(result.professors)
        self.citations = merge_citations([], result.citations)
        self.stage = DiscoveryStage.PROFESSORS
        return True

    async def load_more_professors(self) -> bool:
        """Fetch more professors at the selected university, excluding those shown."""
        if self.is_load_more_loading or self.stage is not DiscoveryStage.PROFESSORS:
            return False
        if not self.selected_university:
            return False
        profile = self._ready_profile()
        if profile is None:
            return False

        token = self._generation
        self.is_load_more_loading = True
        self.error = None
        exclude = [p.name for p in self.professors]
        try:
            result = await self.gateway.find_professors(
                profile,
                self.selected_university,
                department=self.department_query.strip() or None,
                interest=self.interest_query.strip() or None,
                exclude=exclude,
            )
        except GatewayError as e:
            if token == self._generation:
                self.logger.error("Loading more professors failed", error=str(e))
                self.error = "Failed to load more professors."
                self.is_load_more_loading = False
            return False

        if token != self._generation:
            self.logger.debug("Discarding stale professor results", request_token=token)
            return False
        self.is_load_more_loading = False
        seen = {p.id for p in self.professors}
        added = [p for p in result.professors if p.id not in seen]
        self.professors.extend(added)
        self.citations = merge_citations(self.citations, result.citations)
        self.logger.info("Loaded more professors", added=len(added), excluded=len(exclude))
        return True

    # ------------------------------------------------------------------
    # Detail
    # ------------------------------------------------------------------

    def select_professor(self, professor: ProfessorRecommendation) -> None:
        """Show a professor's detail with a fresh paper selection."""
        self.selected_professor = professor
        self.selected_papers = []
        self.manual_paper_link = ""
        self.stage = DiscoveryStage.DETAIL

    def toggle_paper(self, title: str) -> None:
        if title in self.selected_papers:
            self.selected_papers.remove(title)
        else:
            self.selected_papers.append(title)

    def set_manual_paper_link(self, url: str) -> None:
        self.manual_paper_link = url.strip()

    def combined_papers(self) -> list[str]:
        """Checked paper titles followed by the manual link, if any."""
        combined = list(self.selected_papers)
        if self.manual_paper_link:
            combined.append(self.manual_paper_link)
        return combined

    # ------------------------------------------------------------------
    # Tier filters
    # ------------------------------------------------------------------

    def toggle_tier(self, tier: Tier) -> set[Tier]:
        """Turn a tier filter on or off; the last active tier cannot be removed."""
        if tier in self.tier_filters:
            if len(self.tier_filters) > 1:
                self.tier_filters.discard(tier)
        else:
            self.tier_filters.add(tier)
        return self.tier_filters

    def select_all_tiers(self) -> set[Tier]:
        self.tier_filters = set(Tier)
        return self.tier_filters

    def visible_tiers(self) -> list[Tier]:
        """Active tiers in high, medium, low order."""
        return [tier for tier in Tier if tier in self.tier_filters]

    # ------------------------------------------------------------------
    # Interest suggestions
    # ------------------------------------------------------------------

    async def suggest_interests(self, force_refresh: bool = False) -> list[str]:
        """Research-interest keywords for the search profile, cached per profile."""
        profile = self.search_profile
        if profile is None or self.is_suggestions_loading:
            return self.interest_suggestions

        if not force_refresh and profile.id in self._suggestion_cache:
            self.interest_suggestions = self._suggestion_cache[profile.id]
            return self.interest_suggestions

        self.is_suggestions_loading = True
        self.error = None
        try:
            suggestions = await self.gateway.suggest_keywords(profile, "interests")
        except GatewayError as e:
            self.logger.warning("Interest suggestions failed", error=str(e))
            return self.interest_suggestions
        finally:
            self.is_suggestions_loading = False

        self._suggestion_cache[profile.id] = suggestions
        self.interest_suggestions = suggestions
        return suggestions

    def add_interest(self, suggestion: str) -> str:
        """Append a keyword to interest_query unless already present (case-insensitive)."""
        keywords = [k.strip() for k in self.interest_query.split(",") if k.strip()]
        if suggestion.lower() not in (k.lower() for k in keywords):
            keywords.append(suggestion)
        self.interest_query = ", ".join(keywords)
        return self.interest_query
