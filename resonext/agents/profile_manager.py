"""
Profile Manager

CRUD over the account's applicant profiles (at most MAX_PROFILES). Edits go to
a local draft copy of the active profile; save_draft() commits the draft into
the document and schedules persistence. CV and sample-SOP uploads are read
through the Gateway.
"""

import base64
from typing import Any, Optional

from resonext.agents.gateway import AssistGateway
from resonext.models.profile import (
    MAX_PROFILES,
    MAX_SAMPLE_SOPS,
    DegreeInfo,
    SampleSop,
    UserProfile,
    create_new_profile,
)
from resonext.session import SessionController
from resonext.utils.errors import (
    GatewayError,
    InputValidationError,
    LastProfileError,
    ProfileLimitError,
)
from resonext.utils.logger import get_logger

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME = "text/plain"

CV_MIME_TYPES = (PDF_MIME, DOCX_MIME)
SAMPLE_SOP_MIME_TYPES = (PDF_MIME, DOCX_MIME, TEXT_MIME)

DEGREE_KINDS = ("bachelor", "master")

_EDITABLE_FIELDS = set(UserProfile.model_fields) - {"id", "bachelor", "master", "sample_sops"}


class ProfileManager:
    """Profile CRUD and draft editing for the signed-in account.

    Attributes:
        draft: Working copy of the profile being edited, or None
        error: Message of the last failed Gateway call
        is_extracting: True while a CV or sample SOP is being read
    """

    def __init__(self, session: SessionController, gateway: AssistGateway) -> None:
        self.session = session
        self.gateway = gateway
        self.draft: Optional[UserProfile] = None
        self.error: Optional[str] = None
        self.is_extracting = False
        self.logger = get_logger(flow="profile", component="profile_manager")

    @property
    def profiles(self) -> list[UserProfile]:
        return self.session.document.profiles

    @property
    def active_profile(self) -> Optional[UserProfile]:
        return self.session.active_profile

    @property
    def is_profile_complete(self) -> bool:
        """Whether the active profile can drive discovery and generation."""
        profile = self.active_profile
        return profile is not None and profile.is_complete

    # ------------------------------------------------------------------
    # Profile list
    # ------------------------------------------------------------------

    def create_profile(self, profile_name: Optional[str] = None) -> UserProfile:
        """
        Add a new empty profile and make it active.

        Args:
            profile_name: Label for the profile (default "Profile N")

        Returns:
            The new profile

        Raises:
            ProfileLimitError: If the account already has MAX_PROFILES profiles
        """
        document = self.session.require_ready()
        if len(document.profiles) >= MAX_PROFILES:
            self.logger.warning("Profile limit reached", limit=MAX_PROFILES)
            raise ProfileLimitError(f"You can create up to {MAX_PROFILES} profiles.")

        profile = create_new_profile(
            (profile_name or "").strip() or f"Profile {len(document.profiles) + 1}"
        )
        document.profiles.append(profile)
        document.active_profile_id = profile.id
        self.draft = None
        self.session.commit("create profile")
        self.logger.info("Profile created", profile_id=profile.id)
        return profile

    def select_active(self, profile_id: str) -> UserProfile:
        """Switch the active profile; any unsaved draft is dropped."""
        document = self.session.require_ready()
        profile = document.find_profile(profile_id)
        if profile is None:
            raise InputValidationError(f"Unknown profile: {profile_id}")

        self.draft = None
        self.error = None
        if document.active_profile_id != profile_id:
            document.active_profile_id = profile_id
            self.session.commit("select profile")
        return profile

    def delete_profile(self, profile_id: Optional[str] = None) -> None:
        """
        Delete a profile (default: the active one) and its SOPs.

        The first remaining profile becomes active.

        Raises:
            LastProfileError: If it is the only profile
        """
        document = self.session.require_ready()
        profile_id = profile_id or document.active_profile_id
        if document.find_profile(profile_id) is None:
            raise InputValidationError(f"Unknown profile: {profile_id}")
        if len(document.profiles) <= 1:
            raise LastProfileError("You must have at least one profile.")

        document.profiles = [p for p in document.profiles if p.id != profile_id]
        removed_sops = [s for s in document.sops if s.profile_id == profile_id]
        document.sops = [s for s in document.sops if s.profile_id != profile_id]
        document.active_profile_id = document.profiles[0].id
        if self.draft is not None and self.draft.id == profile_id:
            self.draft = None
        self.session.commit("delete profile")
        self.logger.info(
            "Profile deleted", profile_id=profile_id, removed_sops=len(removed_sops)
        )

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    def begin_edit(self) -> UserProfile:
        """Start editing a copy of the active profile."""
        self.session.require_ready()
        profile = self.active_profile
        if profile is None:
            raise InputValidationError("There is no active profile to edit.")
        self.draft = profile.model_copy(deep=True)
        if self.draft.master is None:
            self.draft.master = DegreeInfo()
        return self.draft

    def _require_draft(self) -> UserProfile:
        return self.draft if self.draft is not None else self.begin_edit()

    def update_draft(self, **fields: Any) -> UserProfile:
        """Set top-level text fields on the draft (e.g. name, research_interests)."""
        draft = self._require_draft()
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise InputValidationError(
                f"Unknown profile field(s): {', '.join(sorted(unknown))}"
            )
        for key, value in fields.items():
            setattr(draft, key, value)
        return draft

    def update_degree(self, kind: str, **fields: str) -> UserProfile:
        """Set university/major/gpa on the draft's bachelor or master record."""
        if kind not in DEGREE_KINDS:
            raise InputValidationError(f"Degree must be one of {DEGREE_KINDS}")
        draft = self._require_draft()
        degree = getattr(draft, kind) or DegreeInfo()
        unknown = set(fields) - set(DegreeInfo.model_fields)
        if unknown:
            raise InputValidationError(
                f"Unknown degree field(s): {', '.join(sorted(unknown))}"
            )
        setattr(draft, kind, degree.model_copy(update=fields))
        return draft

    def save_draft(self) -> UserProfile:
        """Commit the draft into the profile list and schedule persistence."""
        document = self.session.require_ready()
        if self.draft is None:
            raise InputValidationError("There are no profile changes to save.")

        saved = self.draft
        for index, profile in enumerate(document.profiles):
            if profile.id == saved.id:
                document.profiles[index] = saved
                break
        else:
            raise InputValidationError("The profile being edited no longer exists.")

        self.draft = None
        self.session.commit("save profile")
        self.logger.info(
            "Profile saved", profile_id=saved.id, complete=saved.is_complete
        )
        return saved

    def discard_draft(self) -> None:
        self.draft = None

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def attach_cv(self, file_bytes: bytes, mime_type: str, file_name: str) -> UserProfile:
        """Store a PDF or DOCX CV on the draft."""
        if mime_type not in CV_MIME_TYPES:
            raise InputValidationError("Please upload a PDF or DOCX file.")
        draft = self._require_draft()
        draft.cv_content = base64.b64encode(file_bytes).decode()
        draft.cv_mime_type = mime_type
        draft.cv_file_name = file_name
        return draft

    async def extract_from_cv(self) -> bool:
        """
        Fill the draft from its attached CV.

        The existing portfolio is kept when the CV has none.

        Returns:
            True on success; on failure the message is in self.error
        """
        draft = self._require_draft()
        if not draft.cv_content:
            raise InputValidationError("Attach a CV before extracting.")
        if self.is_extracting:
            return False

        session_generation = self.session.generation
        self.is_extracting = True
        self.error = None
        try:
            partial = await self.gateway.extract_profile_from_cv(
                draft.cv_content, draft.cv_mime_type
            )
        except GatewayError as e:
            self.logger.error("CV extraction failed", error=str(e))
            self.error = "Failed to extract information from CV. Please fill the form manually."
            return False
        finally:
            self.is_extracting = False

        if self.draft is not draft or session_generation != self.session.generation:
            self.logger.debug("Discarding CV extraction for an abandoned draft")
            return False

        extracted = partial.model_dump()
        extracted["portfolio"] = partial.portfolio or draft.portfolio
        extracted["bachelor"] = partial.bachelor.model_copy()
        extracted["master"] = partial.master.model_copy()
        for key, value in extracted.items():
            setattr(draft, key, value)
        self.logger.info("Profile filled from CV", profile_id=draft.id)
        return True

    def add_sample_sop(self, content: str = "") -> SampleSop:
        """Add a pasted sample SOP to the draft."""
        draft = self._require_draft()
        self._check_sample_limit(draft)
        sample = SampleSop(content=content)
        draft.sample_sops.append(sample)
        return sample

    async def add_sample_sop_file(
        self, file_bytes: bytes, mime_type: str, file_name: str
    ) -> Optional[SampleSop]:
        """
        Add a sample SOP from an uploaded file.

        Plain text is decoded locally; PDF and DOCX are read by the Gateway.

        Returns:
            The new sample, or None if extraction failed (see self.error)
        """
        if mime_type not in SAMPLE_SOP_MIME_TYPES:
            raise InputValidationError("Please upload a PDF, DOCX or TXT file.")
        draft = self._require_draft()
        self._check_sample_limit(draft)

        encoded = base64.b64encode(file_bytes).decode()
        session_generation = self.session.generation
        if mime_type == TEXT_MIME:
            text = file_bytes.decode("utf-8", errors="replace")
        else:
            if self.is_extracting:
                return None
            self.is_extracting = True
            self.error = None
            try:
                text = await self.gateway.extract_text(encoded, mime_type)
            except GatewayError as e:
                self.logger.error("Sample SOP extraction failed", error=str(e))
                self.error = f"Failed to read {file_name}."
                return None
            finally:
                self.is_extracting = False

        if self.draft is not draft or session_generation != self.session.generation:
            self.logger.debug("Discarding sample SOP for an abandoned draft")
            return None
        self._check_sample_limit(draft)
        sample = SampleSop(
            content=text,
            file_name=file_name,
            file_content=encoded,
            file_mime_type=mime_type,
        )
        draft.sample_sops.append(sample)
        return sample

    def update_sample_sop(self, sample_id: str, content: str) -> SampleSop:
        draft = self._require_draft()
        for sample in draft.sample_sops:
            if sample.id == sample_id:
                sample.content = content
                return sample
        raise InputValidationError(f"Unknown sample SOP: {sample_id}")

    def remove_sample_sop(self, sample_id: str) -> None:
        draft = self._require_draft()
        draft.sample_sops = [s for s in draft.sample_sops if s.id != sample_id]

    @staticmethod
    def _check_sample_limit(draft: UserProfile) -> None:
        if len(draft.sample_sops) >= MAX_SAMPLE_SOPS:
            raise InputValidationError(
                f"You can add up to {MAX_SAMPLE_SOPS} sample SOPs."
            )
