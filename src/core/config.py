"""
core/config.py — Centralised path constants and environment defaults.

All other modules import paths and settings from here rather than reading
os.environ or computing paths from __file__ themselves.

Usage::

    from core.config import STORAGE_STATE_DIR, Settings

    settings = Settings.from_env()
    settings.manage_case_base_url
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

# ── Repository layout ──────────────────────────────────────────────────────────

SRC_DIR: Path = Path(__file__).parent.parent       # …/exui-e2e/src/
REPO_ROOT: Path = SRC_DIR.parent                   # …/exui-e2e/

# Runtime artefacts produced by test runs (gitignored)
TEST_RESULTS_DIR: Path = REPO_ROOT / "test-results"
STORAGE_STATE_DIR: Path = TEST_RESULTS_DIR / "storage-states" / "api"
PLAYWRIGHT_JSON_REPORT: Path = TEST_RESULTS_DIR / "json" / "results.json"

COVERAGE_DIR: Path = REPO_ROOT / "coverage"
COVERAGE_SUMMARY: Path = COVERAGE_DIR / "coverage-summary.json"
COVERAGE_TEXT: Path = COVERAGE_DIR / "coverage-summary.txt"
COVERAGE_ROWS: Path = COVERAGE_DIR / "coverage-summary-rows.json"

# ── Defaults (overridable via env) ─────────────────────────────────────────────

TEST_ENV_DEFAULT: str = "aat"
TEST_URL_DEFAULT: str = "https://manage-case.aat.platform.hmcts.net"

STORAGE_TTL_MIN_DEFAULT: int = 15
IDLE_TIMEOUT_MS_DEFAULT: int = 30_000
IDLE_QUIET_MS_DEFAULT: int = 400


def parse_int(value: str | None, fallback: int) -> int:
    """Parse a base-10 integer from an env value; blank or invalid → fallback."""
    if value is None or not value.strip():
        return fallback
    try:
        return int(value.strip(), 10)
    except ValueError:
        return fallback


def is_enabled(value: str | None) -> bool:
    return value is not None and value.strip() == "1"


def trim_trailing_slash(value: str) -> str:
    return value.rstrip("/")


def _resolve_url(value: str | None, fallback: str) -> str:
    return value if value and value.strip() else fallback


@dataclass(frozen=True)
class Settings:
    """Environment-derived settings for one test run."""

    test_env: str
    base_url: str
    manage_case_base_url: str
    storage_root: Path
    storage_ttl_ms: int
    idle_timeout_ms: int
    idle_quiet_ms: int
    idle_allowlist: str | None
    fail_on_http_errors: bool
    fail_on_http_4xx: bool

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env

        base_url = trim_trailing_slash(_resolve_url(env.get("TEST_URL"), TEST_URL_DEFAULT))
        manage_case_default = base_url if base_url.endswith("/cases") else f"{base_url}/cases"
        manage_case_base_url = trim_trailing_slash(
            _resolve_url(env.get("MANAGE_CASES_BASE_URL"), manage_case_default)
        )

        storage_root = env.get("PW_STORAGE_ROOT")
        ttl_min = max(0, parse_int(env.get("API_STORAGE_TTL_MIN"), STORAGE_TTL_MIN_DEFAULT))
        allowlist = (env.get("PW_UI_IDLE_ALLOWLIST") or "").strip() or None

        return cls(
            test_env=(env.get("TEST_ENV") or TEST_ENV_DEFAULT).strip(),
            base_url=base_url,
            manage_case_base_url=manage_case_base_url,
            storage_root=Path(storage_root) if storage_root else STORAGE_STATE_DIR,
            storage_ttl_ms=ttl_min * 60_000,
            idle_timeout_ms=parse_int(env.get("PW_UI_IDLE_TIMEOUT_MS"), IDLE_TIMEOUT_MS_DEFAULT),
            idle_quiet_ms=parse_int(env.get("PW_UI_IDLE_QUIET_MS"), IDLE_QUIET_MS_DEFAULT),
            idle_allowlist=allowlist,
            fail_on_http_errors=is_enabled(env.get("PW_UI_FAIL_ON_HTTP_ERRORS")),
            fail_on_http_4xx=is_enabled(env.get("PW_UI_FAIL_ON_HTTP_4XX")),
        )

    @property
    def fail_on_status(self) -> int | None:
        """Lowest response status treated as a UI failure, or None when disabled."""
        if not self.fail_on_http_errors:
            return None
        return 400 if self.fail_on_http_4xx else 500
