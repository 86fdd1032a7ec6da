"""
Integration test fixtures.

Tests marked ``slow`` (real password hashing cost) are skipped when CI=true.
"""

import os
from pathlib import Path

import pytest


@pytest.fixture
def is_ci_environment() -> bool:
    return os.getenv("CI", "").lower() == "true"


@pytest.fixture(autouse=True)
def skip_slow_tests_in_ci(request, is_ci_environment):
    if is_ci_environment and request.node.get_closest_marker("slow"):
        pytest.skip("Skipping slow test in CI environment")


@pytest.fixture
def data_dir(tmp_path) -> Path:
    """Data directory shared by every app instance within one test."""
    directory = tmp_path / "resonext-data"
    directory.mkdir()
    return directory
