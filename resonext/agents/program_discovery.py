"""
Program Discovery

Graduate program search at one named university or broadly (optionally within
a country and state), with "load more" for broad searches. Results can be
saved and unsaved through the SavedItemsTracker.
"""

from typing import Optional

from resonext.agents.discovery import INCOMPLETE_PROFILE_MESSAGE, merge_citations
from resonext.agents.gateway import AssistGateway
from resonext.agents.saved_items import SavedItemsTracker
from resonext.models.program import (
    ProgramDetails,
    ProgramDiscoveryResult,
    UniversityWithPrograms,
    generate_program_id,
)
from resonext.models.profile import UserProfile
from resonext.models.university import Tier
from resonext.session import SessionController
from resonext.utils.errors import GatewayError
from resonext.utils.logger import get_logger


class ProgramDiscovery:
    """Program search state.

    Attributes:
        results: Last search result, or None
        mode: "university" or "broad" for the last search
        keyword_suggestions: Program keywords suggested for the search profile
        error: Inline message for the last failed action
    """

    def __init__(
        self,
        session: SessionController,
        gateway: AssistGateway,
        tracker: SavedItemsTracker,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.tracker = tracker
        self.logger = get_logger(flow="programs", component="program_discovery")

        self.search_profile_id: Optional[str] = None
        self.results: Optional[ProgramDiscoveryResult] = None
        self.mode: Optional[str] = None
        self.error: Optional[str] = None
        self.is_loading = False
        self.is_load_more_loading = False
        self.tier_filters: set[Tier] = set(Tier)
        self.keyword_suggestions: list[str] = []
        self._suggestion_cache: dict[str, list[str]] = {}
        self._broad_query: dict[str, Optional[str]] = {}
        self._generation = 0

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

    def reset(self) -> None:
        """Drop results; in-flight responses are ignored."""
        self._generation += 1
        self.results = None
        self.mode = None
        self.error = None
        self.is_loading = False
        self.is_load_more_loading = False
        self._broad_query = {}

    async def search_university(
        self, university: str, keywords: Optional[str] = None
    ) -> bool:
        """Programs at one university."""
        if not university.strip():
            self.error = "Please enter a university name."
            return False
        return await self._search(
            "university", university=university.strip(), keywords=keywords
        )

    async def search_broadly(
        self,
        country: Optional[str] = None,
        state: Optional[str] = None,
        keywords: Optional[str] = None,
    ) -> bool:
        """Programs across tiered universities, optionally within a country/state."""
        return await self._search(
            "broad",
            country=(country or "").strip() or None,
            state=(state or "").strip() or None,
            keywords=keywords,
        )

    async def _search(
        self,
        mode: str,
        university: Optional[str] = None,
        country: Optional[str] = None,
        state: Optional[str] = None,
        keywords: Optional[str] = None,
    ) -> bool:
        if self.is_loading:
            return False
        profile = self._ready_profile()
        if profile is None:
            return False

        self._generation += 1
        token = self._generation
        keywords = (keywords or "").strip() or None
        self.is_loading = True
        self.is_load_more_loading = False
        self.error = None
        self.logger.info(
            "Finding programs", mode=mode, university=university, country=country
        )
        try:
            result = await self.gateway.find_programs(
                profile,
                university=university,
                country=country,
                state=state,
                keywords=keywords,
            )
        except GatewayError as e:
            if token == self._generation:
                self.logger.error("Program search failed", error=str(e))
                self.error = "Failed to find programs. Please try again."
                self.is_loading = False
            return False

        if token != self._generation:
            self.logger.debug("Discarding stale program results", request_token=token)
            return False
        self.is_loading = False
        self.results = result
        self.mode = mode
        self._broad_query = (
            {"country": country, "state": state, "keywords": keywords}
            if mode == "broad"
            else {}
        )
        return True

    async def load_more(self) -> bool:
        """More universities for the last broad search, excluding those listed."""
        if self.is_load_more_loading or self.mode != "broad" or self.results is None:
            return False
        profile = self._ready_profile()
        if profile is None:
            return False

        token = self._generation
        self.is_load_more_loading = True
        self.error = None
        exclude = [u.university_name for u in self.results.universities]
        try:
            more = await self.gateway.find_programs(
                profile, exclude=exclude, **self._broad_query
            )
        except GatewayError as e:
            if token == self._generation:
                self.logger.error("Loading more programs failed", error=str(e))
                self.error = "Failed to load more programs."
                self.is_load_more_loading = False
            return False

        if token != self._generation or self.results is None:
            self.logger.debug("Discarding stale program results", request_token=token)
            return False
        self.is_load_more_loading = False
        listed = {u.university_name.lower() for u in self.results.universities}
        added = [u for u in more.universities if u.university_name.lower() not in listed]
        self.results.universities.extend(added)
        self.results.citations = merge_citations(self.results.citations, more.citations)
        self.logger.info("Loaded more programs", added=len(added))
        return True

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

    def visible_universities(self) -> list[UniversityWithPrograms]:
        """Result universities whose tier is active; untiered ones are always shown."""
        if self.results is None:
            return []
        return [
            u
            for u in self.results.universities
            if u.tier is None or u.tier in self.tier_filters
        ]

    def is_saved(self, program: ProgramDetails, university_name: str) -> bool:
        return self.tracker.is_program_saved(
            generate_program_id(program.program_name, university_name)
        )

    def toggle_save(self, program: ProgramDetails, university_name: str) -> bool:
        """Save or unsave a result program; returns True if it is now saved."""
        return self.tracker.save_program(program, university_name)

    async def suggest_keywords(self, force_refresh: bool = False) -> list[str]:
        """Program keywords for the search profile, cached per profile."""
        profile = self.search_profile
        if profile is None:
            return self.keyword_suggestions
        if not force_refresh and profile.id in self._suggestion_cache:
            self.keyword_suggestions = self._suggestion_cache[profile.id]
            return self.keyword_suggestions

        try:
            suggestions = await self.gateway.suggest_keywords(profile, "programs")
        except GatewayError as e:
            self.logger.warning("Program keyword suggestions failed", error=str(e))
            return self.keyword_suggestions

        self._suggestion_cache[profile.id] = suggestions
        self.keyword_suggestions = suggestions
        return suggestions
