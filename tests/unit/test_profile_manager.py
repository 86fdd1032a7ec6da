"""
Unit tests for the Profile Manager.
"""

import asyncio
import base64

import pytest

from resonext.agents.profile_manager import DOCX_MIME, PDF_MIME, TEXT_MIME, ProfileManager
from resonext.models.account import SessionEvent
from resonext.models.document import Sop
from resonext.models.profile import MAX_PROFILES, DegreeInfo, PartialProfile
from resonext.utils.errors import (
    GatewayError,
    InputValidationError,
    LastProfileError,
    ProfileLimitError,
)


@pytest.fixture
def manager(session, gateway) -> ProfileManager:
    return ProfileManager(session, gateway)


class TestProfileList:
    """Create, select and delete."""

    @pytest.mark.asyncio
    async def test_create_profile_becomes_active(self, manager, session, store):
        """A new profile is appended, made active and persisted."""
        # Act
        profile = manager.create_profile("Robotics")
        await session.flush()

        # Assert
        assert [p.profile_name for p in manager.profiles] == ["Default Profile", "Robotics"]
        assert manager.active_profile.id == profile.id
        assert store.stored("ada@example.edu").active_profile_id == profile.id

    @pytest.mark.asyncio
    async def test_default_profile_name_is_numbered(self, manager):
        profile = manager.create_profile()

        assert profile.profile_name == "Profile 2"

    @pytest.mark.asyncio
    async def test_profile_limit(self, manager):
        """A sixth profile is rejected and nothing changes."""
        # Arrange
        for _ in range(MAX_PROFILES - 1):
            manager.create_profile()

        # Act / Assert
        with pytest.raises(ProfileLimitError):
            manager.create_profile("One too many")
        assert len(manager.profiles) == MAX_PROFILES

    @pytest.mark.asyncio
    async def test_last_profile_cannot_be_deleted(self, manager):
        """Deleting the only profile is rejected."""
        with pytest.raises(LastProfileError):
            manager.delete_profile()
        assert len(manager.profiles) == 1

    @pytest.mark.asyncio
    async def test_delete_removes_profile_sops(self, manager, session):
        """Deleting a profile deletes its SOPs and activates the first profile."""
        # Arrange
        first = manager.active_profile
        second = manager.create_profile("Second")
        session.document.sops = [
            Sop(id="s1", profile_id=first.id, university="MIT", program="MSc", content="a"),
            Sop(id="s2", profile_id=second.id, university="CMU", program="MSc", content="b"),
        ]

        # Act
        manager.delete_profile(second.id)

        # Assert
        assert [p.id for p in manager.profiles] == [first.id]
        assert [s.id for s in session.document.sops] == ["s1"]
        assert session.document.active_profile_id == first.id

    @pytest.mark.asyncio
    async def test_select_unknown_profile(self, manager):
        with pytest.raises(InputValidationError):
            manager.select_active("missing")

    @pytest.mark.asyncio
    async def test_select_drops_draft(self, manager):
        first = manager.active_profile
        manager.create_profile("Second")
        manager.update_draft(name="Unsaved")

        manager.select_active(first.id)

        assert manager.draft is None
        assert manager.active_profile.id == first.id


class TestDraftEditing:
    """Edits go to a draft until saved."""

    @pytest.mark.asyncio
    async def test_draft_is_not_applied_until_saved(self, manager, session, store):
        # Arrange
        puts_before = len(store.puts)

        # Act
        manager.update_draft(name="Ada Lovelace", research_interests="ML")
        unsaved_name = manager.active_profile.name
        manager.save_draft()
        await session.flush()

        # Assert
        assert unsaved_name == ""
        assert manager.active_profile.name == "Ada Lovelace"
        assert len(store.puts) == puts_before + 1

    @pytest.mark.asyncio
    async def test_discard_draft(self, manager):
        manager.update_draft(name="Ada")

        manager.discard_draft()

        assert manager.active_profile.name == ""
        assert manager.draft is None

    @pytest.mark.asyncio
    async def test_update_degree(self, manager):
        manager.update_degree("bachelor", major="Mathematics", gpa="3.9")
        manager.update_degree("master", university="ETH Zurich")
        saved = manager.save_draft()

        assert saved.bachelor.major == "Mathematics"
        assert saved.bachelor.gpa == "3.9"
        assert saved.master.university == "ETH Zurich"

    @pytest.mark.asyncio
    async def test_unknown_fields_are_rejected(self, manager):
        with pytest.raises(InputValidationError):
            manager.update_draft(id="hijack")
        with pytest.raises(InputValidationError):
            manager.update_degree("phd", major="x")
        with pytest.raises(InputValidationError):
            manager.update_degree("bachelor", thesis="x")

    @pytest.mark.asyncio
    async def test_completeness(self, manager):
        """A profile is complete once name, summary, interests and major are set."""
        assert manager.is_profile_complete is False

        manager.update_draft(
            name="Ada", academic_summary="BSc", research_interests="ML"
        )
        manager.update_degree("bachelor", major="Mathematics")
        manager.save_draft()

        assert manager.is_profile_complete is True


class TestCvExtraction:
    """Filling the draft from an uploaded CV."""

    @pytest.mark.asyncio
    async def test_attach_cv_rejects_images(self, manager):
        with pytest.raises(InputValidationError):
            manager.attach_cv(b"\x89PNG", "image/png", "cv.png")

    @pytest.mark.asyncio
    async def test_extract_fills_draft_and_keeps_portfolio(self, manager, gateway):
        """Extracted fields replace the draft's; an empty portfolio keeps the old one."""
        # Arrange
        manager.update_draft(portfolio="https://ada.dev")
        manager.attach_cv(b"%PDF-1.7", PDF_MIME, "cv.pdf")
        gateway.extract_profile_from_cv.return_value = PartialProfile(
            name="Ada Lovelace",
            bachelor=DegreeInfo(university="London", major="Mathematics"),
            academic_summary="Analytical engine notes",
            research_interests="Computation",
        )

        # Act
        ok = await manager.extract_from_cv()

        # Assert
        assert ok is True
        assert manager.draft.name == "Ada Lovelace"
        assert manager.draft.bachelor.major == "Mathematics"
        assert manager.draft.portfolio == "https://ada.dev"
        assert manager.draft.cv_file_name == "cv.pdf"
        gateway.extract_profile_from_cv.assert_awaited_once_with(
            base64.b64encode(b"%PDF-1.7").decode(), PDF_MIME
        )

    @pytest.mark.asyncio
    async def test_extract_failure_sets_error(self, manager, gateway):
        manager.attach_cv(b"PK", DOCX_MIME, "cv.docx")
        gateway.extract_profile_from_cv.side_effect = GatewayError("timeout")

        ok = await manager.extract_from_cv()

        assert ok is False
        assert manager.error.startswith("Failed to extract information from CV")
        assert manager.is_extracting is False

    @pytest.mark.asyncio
    async def test_extract_requires_cv(self, manager):
        with pytest.raises(InputValidationError):
            await manager.extract_from_cv()

    @pytest.mark.asyncio
    async def test_extraction_after_sign_out_is_dropped(self, manager, session, gateway):
        """A CV read that finishes after the account signed out fills nothing."""
        # Arrange
        release = asyncio.Event()

        async def slow_extract(*args, **kwargs):
            await release.wait()
            return PartialProfile(name="Ada Lovelace")

        manager.attach_cv(b"%PDF-1.7", PDF_MIME, "cv.pdf")
        gateway.extract_profile_from_cv.side_effect = slow_extract

        # Act
        pending = asyncio.create_task(manager.extract_from_cv())
        await asyncio.sleep(0)
        await session.handle_session_change(SessionEvent.SIGNED_OUT, None)
        release.set()
        ok = await pending

        # Assert
        assert ok is False
        assert manager.draft.name == ""
        assert manager.is_extracting is False


class TestSampleSops:
    """Style-reference SOPs on the draft."""

    @pytest.mark.asyncio
    async def test_text_file_is_read_locally(self, manager, gateway):
        sample = await manager.add_sample_sop_file(b"My statement.", TEXT_MIME, "sop.txt")

        assert sample.content == "My statement."
        assert sample.file_name == "sop.txt"
        gateway.extract_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_pdf_is_read_by_gateway(self, manager, gateway):
        gateway.extract_text.return_value = "Extracted statement."

        sample = await manager.add_sample_sop_file(b"%PDF", PDF_MIME, "sop.pdf")

        assert sample.content == "Extracted statement."
        assert sample.file_mime_type == PDF_MIME

    @pytest.mark.asyncio
    async def test_sample_limit(self, manager):
        for _ in range(3):
            manager.add_sample_sop("sample")

        with pytest.raises(InputValidationError):
            manager.add_sample_sop("fourth")
        with pytest.raises(InputValidationError):
            await manager.add_sample_sop_file(b"x", TEXT_MIME, "x.txt")

    @pytest.mark.asyncio
    async def test_update_and_remove_sample(self, manager):
        sample = manager.add_sample_sop("draft")

        manager.update_sample_sop(sample.id, "final")
        assert manager.draft.sample_sops[0].content == "final"

        manager.remove_sample_sop(sample.id)
        assert manager.draft.sample_sops == []
