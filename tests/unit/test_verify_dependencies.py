"""
Unit tests for the dependency verification script.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "scripts"))
from verify_dependencies import DEPENDENCIES, verify_imports  # noqa: E402


def test_dependencies_cover_runtime_stack():
    """Every library the package imports at runtime is checked."""
    module_names = {module_name for module_name, _ in DEPENDENCIES}

    assert {
        "claude_agent_sdk",
        "httpx",
        "pydantic",
        "structlog",
        "tenacity",
        "jinja2",
        "jsonlines",
        "rich",
        "dotenv",
    } <= module_names


def test_dependencies_list_structure():
    """Each entry is an (import name, distribution name) pair of strings."""
    for dep in DEPENDENCIES:
        assert len(dep) == 2, f"Dependency {dep} should have exactly 2 elements"
        module_name, display_name = dep
        assert isinstance(module_name, str)
        assert isinstance(display_name, str)


@patch("verify_dependencies.import_module")
@patch("builtins.print")
def test_verify_imports_all_succeed(mock_print, mock_import):
    """Test verify_imports when all imports succeed."""
    mock_import.return_value = MagicMock()

    with pytest.raises(SystemExit) as exc_info:
        verify_imports()

    assert exc_info.value.code == 0, "Should exit with code 0 on success"
    ok_calls = [call for call in mock_print.call_args_list if "[OK]" in str(call)]
    assert len(ok_calls) == len(DEPENDENCIES), "Should print OK for each dependency"
    assert any("[SUCCESS]" in str(call) for call in mock_print.call_args_list)


@patch("verify_dependencies.import_module")
@patch("builtins.print")
def test_verify_imports_reports_missing_distribution(mock_print, mock_import):
    """A failed import exits 1 and names the distribution to install."""

    def side_effect(module_name):
        if module_name == "jsonlines":
            raise ImportError(f"No module named '{module_name}'")
        return MagicMock()

    mock_import.side_effect = side_effect

    with pytest.raises(SystemExit) as exc_info:
        verify_imports()

    assert exc_info.value.code == 1, "Should exit with code 1 on failure"
    printed = " ".join(str(call) for call in mock_print.call_args_list)
    assert "[FAILED] jsonlines" in printed
    assert "[ERROR] 1 dependencies failed" in printed
