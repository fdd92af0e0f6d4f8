"""
tests/ui/conftest.py — pytest configuration for UI tests.

Registers custom markers so pytest doesn't warn about unknown markers:
    @pytest.mark.smoke
    @pytest.mark.regression

UI tests drive a deployed manage-cases environment, so the whole directory
is skipped unless playwright is installed and TEST_URL points somewhere.

Run with:
    TEST_URL=https://manage-case.aat.platform.hmcts.net pytest tests/ui -m smoke
"""

from __future__ import annotations

import os

import pytest


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "smoke: smoke-level UI tests — fast sanity check")
    config.addinivalue_line("markers", "regression: regression-level UI tests — full suite")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip all UI tests without playwright or a target environment."""
    reason = None
    try:
        import playwright  # noqa: F401
    except ImportError:
        reason = "playwright not installed — run: pip install -e '.[test]' && playwright install chromium"
    if reason is None and not os.environ.get("TEST_URL"):
        reason = "TEST_URL not set — point it at a manage-cases environment to run UI tests"
    if reason is None:
        return

    skip_marker = pytest.mark.skip(reason=reason)
    for item in items:
        if "tests/ui" in str(item.fspath).replace(os.sep, "/"):
            item.add_marker(skip_marker)
