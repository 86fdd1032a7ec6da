#!/usr/bin/env python3
"""
Dependency Verification Script
Imports every runtime and test dependency of Resonext and reports failures.
"""

import sys
from importlib import import_module

# (import name, distribution name)
DEPENDENCIES = [
    ("claude_agent_sdk", "claude-agent-sdk"),
    ("httpx", "httpx"),
    ("dotenv", "python-dotenv"),
    ("pydantic", "pydantic"),
    ("structlog", "structlog"),
    ("rich", "rich"),
    ("jinja2", "Jinja2"),
    ("jsonlines", "jsonlines"),
    ("tenacity", "tenacity"),
    ("pytest", "pytest"),
    ("pytest_asyncio", "pytest-asyncio"),
    ("pytest_mock", "pytest-mock"),
]


def verify_imports():
    """Verify all dependencies import; exit 0 on success, 1 otherwise."""
    failed = []

    print("Verifying dependencies...\n")

    for module_name, display_name in DEPENDENCIES:
        try:
            import_module(module_name)
            print(f"[OK] {display_name}")
        except ImportError as e:
            print(f"[FAILED] {display_name}: {e}")
            failed.append(display_name)

    print(f"\n{'='*60}")

    if failed:
        print(f"[ERROR] {len(failed)} dependencies failed:")
        for name in failed:
            print(f"   - {name}")
        print("\nInstall with: pip install -e '.[test]'")
        sys.exit(1)

    print("[SUCCESS] All dependencies verified successfully!")
    sys.exit(0)


if __name__ == "__main__":
    verify_imports()
