"""
Unit tests for the data models.
"""

from resonext.models.document import Sop, UserDocument
from resonext.models.professor import (
    ProfessorProfile,
    ProfessorRecommendation,
    SavedProfessor,
    describe_professor,
    generate_professor_id,
)
from resonext.models.profile import DegreeInfo, UserProfile, create_new_profile
from resonext.models.program import generate_program_id


class TestIds:
    def test_professor_id_replaces_whitespace(self):
        assert generate_professor_id("Jane  Doe", "Stanford University") == (
            "Jane-Doe-Stanford-University"
        )

    def test_program_id_is_lower_case(self):
        assert generate_program_id("MSc AI", "MIT") == "msc-ai-mit"
        assert generate_program_id("MEng  Robotics", "ETH Zurich") == (
            "meng-robotics-eth-zurich"
        )

    def test_recommendation_gets_default_id(self):
        professor = ProfessorRecommendation(name="Jane Doe", university="MIT")

        assert professor.id == "Jane-Doe-MIT"

    def test_new_profiles_have_unique_ids(self):
        first = create_new_profile("A")
        second = create_new_profile("B")

        assert first.id != second.id
        assert first.master == DegreeInfo()


class TestUserProfile:
    def test_is_complete(self):
        profile = UserProfile(
            id="p1",
            profile_name="Main",
            name="Ada",
            academic_summary="BSc",
            research_interests="ML",
            bachelor=DegreeInfo(major="Mathematics"),
        )

        assert profile.is_complete is True
        profile.bachelor.major = "   "
        assert profile.is_complete is False


class TestSerialization:
    def test_camel_case_roundtrip_drops_nulls(self):
        """Stored documents use camelCase keys; explicit nulls become defaults."""
        # Arrange
        raw = {
            "profiles": [
                {"id": "p1", "profileName": "Main", "researchInterests": "ML", "master": None}
            ],
            "activeProfileId": "p1",
            "savedProfessors": [
                {"name": "Jane Doe", "university": "MIT", "emailSent": True, "outcome": None}
            ],
            "sops": [],
        }

        # Act
        document = UserDocument.model_validate(raw)
        dumped = document.to_json_dict()

        # Assert
        assert document.profiles[0].research_interests == "ML"
        assert document.saved_professors[0].email_sent is True
        assert document.saved_professors[0].outcome.value == "pending"
        assert dumped["activeProfileId"] == "p1"
        assert dumped["savedProfessors"][0]["id"] == "Jane-Doe-MIT"

    def test_repair_active_profile(self):
        document = UserDocument(
            profiles=[UserProfile(id="p1", profile_name="A")], active_profile_id="gone"
        )

        assert document.repair_active_profile() is True
        assert document.active_profile_id == "p1"
        assert document.repair_active_profile() is False

    def test_repair_without_profiles(self):
        document = UserDocument(active_profile_id="gone")

        assert document.repair_active_profile() is True
        assert document.active_profile_id is None

    def test_sop_timestamps_default(self):
        sop = Sop(id="s1", profile_id="p1", university="MIT", program="PhD", content="x")

        assert sop.created_at
        assert sop.updated_at


def test_describe_professor_uses_research_summary():
    saved = SavedProfessor(name="Jane Doe", university="MIT", research_summary="HRI")

    described = describe_professor(saved)

    assert isinstance(described, ProfessorProfile)
    assert described.research_focus == "HRI"
