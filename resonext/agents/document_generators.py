"""
Document Generators

EmailGenerator drafts and revises outreach emails. A fresh analysis is held in
an AnalysisModalState until the user saves it into a SavedProfessor; revising
replaces only the subject and body, never the alignment summary.

SopGenerator drafts statements of purpose for a profile, revises them as a
whole, and manages the stored Sop records.

Gateway failures are recorded in the generator's ``error`` and never raised to
the caller; input problems are recorded before any Gateway call.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from resonext.agents.gateway import AssistGateway
from resonext.agents.saved_items import SavedItemsTracker
from resonext.models.document import Sop, TargetProfessor, utc_now_iso
from resonext.models.professor import (
    AnalysisResult,
    AnyProfessor,
    ProfessorProfile,
    SavedProfessor,
    describe_professor,
    research_summary_of,
)
from resonext.models.profile import UserProfile
from resonext.session import SessionController
from resonext.utils.errors import GatewayError
from resonext.utils.logger import get_logger

INCOMPLETE_PROFILE_MESSAGE = (
    "Please complete your profile (name, academic summary, research interests "
    "and major) before generating documents."
)


def _resolve_profile(
    session: SessionController, profile_id: Optional[str]
) -> Optional[UserProfile]:
    document = session.document
    profile = document.find_profile(profile_id or document.active_profile_id)
    if profile is None or not profile.is_complete:
        return None
    return profile


@dataclass
class AnalysisModalState:
    """An unsaved email analysis being reviewed by the user."""

    professor: AnyProfessor
    result: AnalysisResult
    profile_id: str
    papers: list[str] = field(default_factory=list)
    is_regenerating: bool = False
    error: Optional[str] = None


class EmailGenerator:
    """Outreach email drafting.

    Attributes:
        modal: Unsaved analysis under review, or None
        is_loading: True while a new analysis is being drafted
        analyzing_professor_id: Saved professor currently being drafted for
        error: Message of the last failed action
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
        self.logger = get_logger(flow="email", component="email_generator")

        self.modal: Optional[AnalysisModalState] = None
        self.is_loading = False
        self.analyzing_professor_id: Optional[str] = None
        self.error: Optional[str] = None
        self._generation = 0

    async def analyze(
        self,
        professor: AnyProfessor,
        papers: Optional[list[str]] = None,
        profile_id: Optional[str] = None,
    ) -> Optional[AnalysisResult]:
        """
        Draft an alignment summary and email; the result opens the modal.

        Returns:
            The analysis, or None on failure (see self.error)
        """
        if self.is_loading:
            return None
        profile = _resolve_profile(self.session, profile_id)
        if profile is None:
            self.error = INCOMPLETE_PROFILE_MESSAGE
            return None

        token = self._generation
        session_generation = self.session.generation
        self.is_loading = True
        self.error = None
        papers = list(papers or [])
        self.logger.info(
            "Drafting email", professor=professor.name, papers=len(papers)
        )
        try:
            result = await self.gateway.analyze_and_draft_email(
                profile, describe_professor(professor), papers
            )
        except GatewayError as e:
            self.logger.error("Email drafting failed", error=str(e))
            self.error = "An error occurred during analysis. Please try again."
            return None
        finally:
            self.is_loading = False

        if token != self._generation or session_generation != self.session.generation:
            self.logger.debug("Discarding stale email analysis", request_token=token)
            return None
        self.modal = AnalysisModalState(
            professor=professor, result=result, profile_id=profile.id, papers=papers
        )
        return result

    async def revise(self, instruction: str) -> Optional[AnalysisResult]:
        """Revise the modal's email; the alignment summary is kept as is."""
        modal = self.modal
        if modal is None:
            self.error = "Cannot regenerate. Missing original context."
            return None
        if modal.is_regenerating:
            return None
        if not instruction.strip():
            modal.error = "Please describe how the email should change."
            return None
        profile = self.session.document.find_profile(modal.profile_id)
        if profile is None:
            modal.error = "Cannot regenerate. Missing original context."
            return None

        session_generation = self.session.generation
        modal.is_regenerating = True
        modal.error = None
        try:
            revision = await self.gateway.revise_email(
                profile, describe_professor(modal.professor), modal.result, instruction
            )
        except GatewayError as e:
            self.logger.error("Email revision failed", error=str(e))
            modal.error = "An error occurred during regeneration."
            return None
        finally:
            modal.is_regenerating = False

        if self.modal is not modal or session_generation != self.session.generation:
            self.logger.debug("Discarding revision for a closed analysis")
            return None
        modal.result = modal.result.model_copy(update=revision.model_dump())
        return modal.result

    def save_result(self, close: bool = True) -> Optional[SavedProfessor]:
        """Store the modal's analysis with its professor (merge or create)."""
        if self.modal is None:
            return None
        saved = self.tracker.save_analysis(self.modal.professor, self.modal.result)
        self.logger.info("Email saved", professor_id=saved.id)
        if close:
            self.close()
        return saved

    def close(self) -> None:
        """Dismiss the modal; a pending analysis is dropped when it returns."""
        self._generation += 1
        self.modal = None

    async def generate_and_save_manual(
        self,
        professor: ProfessorProfile,
        papers: Optional[list[str]] = None,
        profile_id: Optional[str] = None,
    ) -> Optional[SavedProfessor]:
        """Draft an email for a manually entered professor and save it right away."""
        if not professor.name.strip() or not professor.university.strip():
            self.error = "Professor name and university are required."
            return None
        if papers is None:
            papers = [professor.selected_paper_link] if professor.selected_paper_link else []

        result = await self.analyze(professor, papers, profile_id)
        if result is None:
            return None
        return self.save_result(close=False)

    async def analyze_saved(
        self,
        professor_id: str,
        papers: Optional[list[str]] = None,
        profile_id: Optional[str] = None,
    ) -> Optional[SavedProfessor]:
        """Draft an email for a saved professor and store it on the record."""
        if self.analyzing_professor_id is not None:
            return None
        professor = self.tracker.get_professor(professor_id)
        if professor is None:
            self.error = "This professor is no longer saved."
            return None
        profile = _resolve_profile(self.session, profile_id)
        if profile is None:
            self.error = INCOMPLETE_PROFILE_MESSAGE
            return None

        session_generation = self.session.generation
        self.analyzing_professor_id = professor_id
        self.error = None
        try:
            result = await self.gateway.analyze_and_draft_email(
                profile, describe_professor(professor), list(papers or [])
            )
        except GatewayError as e:
            self.logger.error("Email drafting failed", error=str(e), professor_id=professor_id)
            self.error = "An error occurred during analysis. Please try again."
            return None
        finally:
            self.analyzing_professor_id = None

        if session_generation != self.session.generation:
            self.logger.debug("Discarding analysis for an ended session", professor_id=professor_id)
            return None
        current = self.tracker.get_professor(professor_id)
        if current is None or not self.session.is_ready:
            self.logger.debug("Discarding analysis for a removed professor")
            return None
        return self.tracker.save_analysis(current, result)

    async def revise_saved(
        self,
        professor_id: str,
        instruction: str,
        profile_id: Optional[str] = None,
    ) -> Optional[SavedProfessor]:
        """Revise the email stored on a saved professor."""
        if self.analyzing_professor_id is not None:
            return None
        professor = self.tracker.get_professor(professor_id)
        previous = professor.analysis() if professor else None
        if professor is None or previous is None:
            self.error = "There is no email to regenerate for this professor."
            return None
        if not instruction.strip():
            self.error = "Please describe how the email should change."
            return None
        profile = _resolve_profile(self.session, profile_id)
        if profile is None:
            self.error = INCOMPLETE_PROFILE_MESSAGE
            return None

        session_generation = self.session.generation
        self.analyzing_professor_id = professor_id
        self.error = None
        try:
            revision = await self.gateway.revise_email(
                profile, describe_professor(professor), previous, instruction
            )
        except GatewayError as e:
            self.logger.error("Email revision failed", error=str(e), professor_id=professor_id)
            self.error = "An error occurred during regeneration."
            return None
        finally:
            self.analyzing_professor_id = None

        if session_generation != self.session.generation:
            self.logger.debug("Discarding revision for an ended session", professor_id=professor_id)
            return None
        if self.tracker.get_professor(professor_id) is None or not self.session.is_ready:
            return None
        return self.tracker.update_professor(
            professor_id,
            outreach_email=revision.outreach_email,
            email_subject=revision.email_subject,
        )


@dataclass
class SopRequestState:
    """The "generate SOP for this professor" prompt awaiting a program name."""

    professor: AnyProfessor
    university: str
    papers: list[str] = field(default_factory=list)


class SopGenerator:
    """Statement of purpose drafting and management.

    Attributes:
        request: Pending SOP request for a professor, or None
        newly_created_sop_id: Id of the last generated SOP, until cleared
        is_loading: True while drafting or revising
        error: Message of the last failed action
    """

    def __init__(self, session: SessionController, gateway: AssistGateway) -> None:
        self.session = session
        self.gateway = gateway
        self.logger = get_logger(flow="sop", component="sop_generator")

        self.request: Optional[SopRequestState] = None
        self.newly_created_sop_id: Optional[str] = None
        self.is_loading = False
        self.error: Optional[str] = None

    def get(self, sop_id: str) -> Optional[Sop]:
        return next((s for s in self.session.document.sops if s.id == sop_id), None)

    def sops_for_active_profile(self) -> list[Sop]:
        """SOPs of the active profile, most recently updated first."""
        active_id = self.session.document.active_profile_id
        return sorted(
            (s for s in self.session.document.sops if s.profile_id == active_id),
            key=lambda s: s.updated_at,
            reverse=True,
        )

    async def generate(
        self,
        university: str,
        program: str,
        target_professors: Optional[list[AnyProfessor]] = None,
        papers: Optional[list[str]] = None,
        profile_id: Optional[str] = None,
    ) -> Optional[Sop]:
        """
        Draft a new SOP and store it for the profile.

        Returns:
            The new Sop, or None on failure (see self.error)
        """
        if self.is_loading:
            return None
        if not university.strip() or not program.strip():
            self.error = "Please enter both a university and a program."
            return None
        profile = _resolve_profile(self.session, profile_id)
        if profile is None:
            self.error = INCOMPLETE_PROFILE_MESSAGE
            return None

        targets = [
            TargetProfessor(name=p.name, research_summary=research_summary_of(p))
            for p in target_professors or []
        ]
        session_generation = self.session.generation
        self.is_loading = True
        self.error = None
        self.logger.info(
            "Drafting SOP",
            university=university,
            program=program,
            target_professors=len(targets),
        )
        try:
            content = await self.gateway.draft_sop(
                profile, university.strip(), program.strip(), targets, list(papers or [])
            )
        except GatewayError as e:
            self.logger.error("SOP drafting failed", error=str(e))
            self.error = "Failed to generate SOP. Please try again."
            return None
        finally:
            self.is_loading = False

        if session_generation != self.session.generation:
            self.logger.debug("Discarding SOP for an ended session")
            return None
        document = self.session.document
        if not self.session.is_ready or document.find_profile(profile.id) is None:
            self.logger.debug("Discarding SOP for a removed profile")
            return None

        now = utc_now_iso()
        sop = Sop(
            id=str(uuid.uuid4()),
            profile_id=profile.id,
            university=university.strip(),
            program=program.strip(),
            content=content,
            target_professors=targets,
            created_at=now,
            updated_at=now,
        )
        document.sops.append(sop)
        self.newly_created_sop_id = sop.id
        self.session.commit("create sop")
        return sop

    def open_request(
        self,
        professor: AnyProfessor,
        university: Optional[str] = None,
        papers: Optional[list[str]] = None,
    ) -> SopRequestState:
        self.request = SopRequestState(
            professor=professor,
            university=university or professor.university,
            papers=list(papers or []),
        )
        return self.request

    async def submit_request(
        self, program: str, profile_id: Optional[str] = None
    ) -> Optional[Sop]:
        """Generate the pending request's SOP for a program; closes the request on success."""
        request = self.request
        if request is None:
            return None
        sop = await self.generate(
            request.university,
            program,
            [request.professor],
            request.papers,
            profile_id,
        )
        if sop is not None and self.request is request:
            self.request = None
        return sop

    def cancel_request(self) -> None:
        self.request = None

    def clear_newly_created(self) -> None:
        self.newly_created_sop_id = None

    async def revise(self, sop_id: str, instruction: str) -> Optional[Sop]:
        """Replace an SOP's content with a revision following an instruction."""
        if self.is_loading:
            return None
        sop = self.get(sop_id)
        if sop is None:
            self.error = "This SOP no longer exists."
            return None
        if not instruction.strip():
            self.error = "Please describe how the SOP should change."
            return None
        profile = self.session.document.find_profile(sop.profile_id)
        if profile is None:
            self.error = "Could not find the original profile used to generate this SOP."
            return None

        session_generation = self.session.generation
        self.is_loading = True
        self.error = None
        try:
            content = await self.gateway.revise_sop(profile, sop.content, instruction)
        except GatewayError as e:
            self.logger.error("SOP revision failed", error=str(e), sop_id=sop_id)
            self.error = "Failed to regenerate SOP. Please try again."
            return None
        finally:
            self.is_loading = False

        if session_generation != self.session.generation or self.get(sop_id) is None:
            self.logger.debug("Discarding revision for a deleted SOP", sop_id=sop_id)
            return None
        return self.update_content(sop_id, content)

    def update_content(self, sop_id: str, content: str) -> Optional[Sop]:
        document = self.session.require_ready()
        for index, sop in enumerate(document.sops):
            if sop.id == sop_id:
                updated = sop.model_copy(
                    update={"content": content, "updated_at": utc_now_iso()}
                )
                document.sops[index] = updated
                self.session.commit("update sop")
                return updated
        self.error = "This SOP no longer exists."
        return None

    def delete(self, sop_id: str) -> None:
        document = self.session.require_ready()
        before = len(document.sops)
        document.sops = [s for s in document.sops if s.id != sop_id]
        if len(document.sops) != before:
            self.session.commit("delete sop")
