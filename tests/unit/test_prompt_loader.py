"""
Unit tests for prompt_loader module.
"""

import pytest
from jinja2 import TemplateNotFound, UndefinedError

from resonext.models.profile import DegreeInfo, SampleSop, UserProfile
from resonext.utils.prompt_loader import (
    PromptLoader,
    get_default_loader,
    render_prompt,
)


@pytest.fixture
def template_dir(tmp_path):
    directory = tmp_path / "prompts"
    directory.mkdir()
    return directory


class TestPromptLoader:
    """Test cases for PromptLoader class."""

    def test_initialization_with_default_path(self):
        """Test that PromptLoader initializes with default template directory."""
        # Act
        loader = PromptLoader()

        # Assert
        assert loader.template_dir.name == "prompts"
        assert loader.template_dir.exists()

    def test_render_simple_template(self, template_dir):
        """Test rendering a simple template with variables."""
        # Arrange
        (template_dir / "test.j2").write_text("Hello {{ name }}!")
        loader = PromptLoader(template_dir=template_dir)

        # Act
        result = loader.render("test.j2", name="World")

        # Assert
        assert result == "Hello World!"

    def test_render_template_not_found(self, template_dir):
        """Test that TemplateNotFound is raised for missing template."""
        # Arrange
        loader = PromptLoader(template_dir=template_dir)

        # Act & Assert
        with pytest.raises(TemplateNotFound):
            loader.render("nonexistent.j2")

    def test_undefined_variable_non_strict(self, template_dir):
        """In non-strict mode, undefined variables render as empty string."""
        # Arrange
        (template_dir / "test.j2").write_text("Hello {{ name }}!")
        loader = PromptLoader(template_dir=template_dir, strict_undefined=False)

        # Act
        result = loader.render("test.j2")

        # Assert
        assert result == "Hello !"

    def test_undefined_variable_strict(self, template_dir):
        (template_dir / "test.j2").write_text("Hello {{ name }}!")
        loader = PromptLoader(template_dir=template_dir, strict_undefined=True)

        with pytest.raises(UndefinedError):
            loader.render("test.j2")

    def test_or_na_filter(self, template_dir):
        """Empty values are replaced by N/A or a custom fallback."""
        # Arrange
        (template_dir / "test.j2").write_text(
            "{{ gpa | or_na }}/{{ goals | or_na('Not specified.') }}/{{ major | or_na }}"
        )
        loader = PromptLoader(template_dir=template_dir)

        # Act
        result = loader.render("test.j2", gpa="  ", goals=None, major="Physics")

        # Assert
        assert result == "N/A/Not specified./Physics"

    def test_get_system_prompt(self, template_dir):
        """Test get_system_prompt convenience method."""
        # Arrange
        base_dir = template_dir / "base"
        base_dir.mkdir()
        (base_dir / "editor.j2").write_text("System: {{ instruction }}")
        loader = PromptLoader(template_dir=template_dir)

        # Act
        result = loader.get_system_prompt("editor", instruction="Edit text")

        # Assert
        assert result == "System: Edit text"

    def test_trim_blocks_and_lstrip_blocks(self, template_dir):
        """Block tags do not leave blank lines or indentation behind."""
        # Arrange
        (template_dir / "test.j2").write_text(
            "Start\n  {% if true %}\nContent\n  {% endif %}\nEnd"
        )
        loader = PromptLoader(template_dir=template_dir)

        # Act
        result = loader.render("test.j2")

        # Assert
        assert result == "Start\nContent\nEnd"


class TestRenderPromptFunction:
    """Test cases for render_prompt convenience function."""

    def test_render_prompt_uses_default_loader(self, template_dir, monkeypatch):
        """Test that render_prompt uses the default loader."""
        # Arrange
        (template_dir / "test.j2").write_text("Hello {{ name }}!")
        loader = PromptLoader(template_dir=template_dir)
        monkeypatch.setattr("resonext.utils.prompt_loader._default_loader", loader)

        # Act
        result = render_prompt("test.j2", name="World")

        # Assert
        assert result == "Hello World!"

    def test_get_default_loader_creates_singleton(self, monkeypatch):
        """Test that get_default_loader creates and reuses singleton."""
        # Arrange
        monkeypatch.setattr("resonext.utils.prompt_loader._default_loader", None)

        # Act
        loader1 = get_default_loader()
        loader2 = get_default_loader()

        # Assert
        assert loader1 is loader2


class TestRealTemplates:
    """Rendering the packaged templates."""

    @pytest.fixture
    def profile(self) -> UserProfile:
        return UserProfile(
            id="p1",
            profile_name="Main",
            name="Ada Lovelace",
            bachelor=DegreeInfo(university="London", major="Mathematics"),
            research_interests="robot learning",
            academic_summary="BSc Mathematics",
        )

    def test_student_partial_fills_missing_fields(self, profile):
        result = render_prompt(
            "email/analysis.j2",
            profile=profile,
            professor={"name": "Jane Doe", "university": "MIT"},
            papers=[],
        )

        assert "Ada Lovelace" in result
        assert "Mathematics from London (GPA: N/A)" in result
        assert "Master's Degree: N/A" in result
        assert "Stated Future Goals: Not specified." in result
        assert "Key Research Papers" not in result

    def test_keyword_template_switches_on_kind(self, profile):
        programs = render_prompt("profile/keyword_suggestions.j2", profile=profile, kind="programs")
        interests = render_prompt(
            "profile/keyword_suggestions.j2", profile=profile, kind="interests"
        )

        assert "relevant graduate programs" in programs
        assert "professors with similar research interests" in interests

    def test_sop_template_includes_style_samples(self, profile):
        profile.sample_sops = [SampleSop(content="Sample statement text.")]

        result = render_prompt(
            "sop/draft.j2",
            profile=profile,
            university="MIT",
            program="PhD EECS",
            target_professors=[],
            papers=[],
        )

        assert "Sample 1:" in result
        assert "Sample statement text." in result
        assert "follow the tone, style and structure" in result

    @pytest.mark.parametrize("name", ["editor", "extractor", "research_assistant"])
    def test_system_prompts_exist(self, name):
        assert get_default_loader().get_system_prompt(name).strip()
