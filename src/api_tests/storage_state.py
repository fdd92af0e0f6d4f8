"""
api_tests/storage_state.py — Per-role session cache shared by parallel workers.

Each role's storage state lives at ``<storage_root>/<test_env>/<role>.json``
next to a ``<role>.lock`` file.  ``ensure_storage_state`` takes the lock,
reuses the cached state while it is still good, and otherwise logs in again,
so N workers starting together log in once instead of N times.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

import httpx

from api_tests.auth import (
    create_storage_state_via_form,
    format_error,
    get_credentials,
    has_expired_auth_cookies,
    has_required_auth_cookies,
    is_storage_state_authenticated,
    mask,
    read_storage_state,
    sanitize_path_for_logs,
    sanitize_url_for_logs,
)
from core.config import Settings
from core.file_lock import FileLock, acquire_file_lock
from core.logger import LOGGER

LOCK_RETRIES = 30
LOCK_RETRY_DELAY_MS = 1_000
LOCK_MAX_RETRY_DELAY_MS = 5_000
LOCK_STALE_MS = 10 * 60_000

CREATE_MAX_ATTEMPTS = 3
CREATE_RETRY_BASE_MS = 750
CREATE_RETRY_MAX_MS = 4_000

RETRYABLE_ERROR_MARKERS = (
    "enotfound",
    "eai_again",
    "econnreset",
    "ehostunreach",
    "etimedout",
    "ecanceled",
    "getaddrinfo",
    "network",
    "socket hang up",
    "503",
    "504",
    "502",
)


def resolve_storage_path(role: str, settings: Settings | None = None) -> Path:
    settings = settings or Settings.from_env()
    return settings.storage_root / settings.test_env / f"{role}.json"


def resolve_lock_path(role: str, settings: Settings | None = None) -> Path:
    settings = settings or Settings.from_env()
    return settings.storage_root / settings.test_env / f"{role}.lock"


def is_storage_state_fresh(path: str | Path, ttl_ms: int) -> bool:
    """True while the file's mtime is within ``ttl_ms``."""
    try:
        mtime = Path(path).stat().st_mtime
    except OSError:
        return False
    return (time.time() - mtime) * 1000 <= ttl_ms


def is_storage_state_reusable(path: Path, state: dict, settings: Settings | None = None) -> bool:
    settings = settings or Settings.from_env()
    cookies = state.get("cookies")
    cookies = cookies if isinstance(cookies, list) else []
    if not has_required_auth_cookies(cookies):
        return False
    if has_expired_auth_cookies(cookies):
        return False
    if is_storage_state_fresh(path, settings.storage_ttl_ms):
        return True
    return is_storage_state_authenticated(state, settings)


def is_retryable_error(error: BaseException) -> bool:
    """Transient network failures are worth another login attempt."""
    current: BaseException | None = error
    while current is not None:
        if isinstance(current, httpx.TransportError):
            return True
        current = current.__cause__
    message = format_error(error).lower()
    return any(marker in message for marker in RETRYABLE_ERROR_MARKERS)


def retry_delay_ms(attempt: int) -> int:
    return min(CREATE_RETRY_MAX_MS, CREATE_RETRY_BASE_MS * attempt)


def create_storage_state(role: str, settings: Settings | None = None) -> Path:
    """Log in as ``role`` and write a fresh storage state.  Returns its path."""
    settings = settings or Settings.from_env()
    storage_path = resolve_storage_path(role, settings)
    storage_path.parent.mkdir(parents=True, exist_ok=True)

    credentials = get_credentials(role)
    LOGGER.info(
        "Creating storage state for %s (env %s, base %s, user %s)",
        role,
        settings.test_env,
        sanitize_url_for_logs(settings.base_url),
        mask(credentials.username),
    )
    create_storage_state_via_form(credentials, storage_path, role, settings)
    return storage_path


def _default_lock(lock_path: Path) -> FileLock:
    return acquire_file_lock(
        lock_path,
        retries=LOCK_RETRIES,
        retry_delay_ms=LOCK_RETRY_DELAY_MS,
        max_retry_delay_ms=LOCK_MAX_RETRY_DELAY_MS,
        stale_ms=LOCK_STALE_MS,
    )


def ensure_storage_state(
    role: str,
    settings: Settings | None = None,
    *,
    create: Callable[[str, Settings], Path] = create_storage_state,
    acquire_lock: Callable[[Path], Callable[[], None]] = _default_lock,
    is_reusable: Callable[[Path, dict, Settings], bool] = is_storage_state_reusable,
    sleep: Callable[[float], None] = time.sleep,
) -> Path:
    """Return a path to a usable storage state for ``role``, logging in if needed.

    Raises:
        LockTimeoutError: another worker held the role's lock for too long.
        StorageStateError: login failed (after retries for transient errors).
    """
    settings = settings or Settings.from_env()
    storage_path = resolve_storage_path(role, settings)
    lock_path = resolve_lock_path(role, settings)

    release = acquire_lock(lock_path)
    try:
        state = read_storage_state(storage_path)
        if state is not None and is_reusable(storage_path, state, settings):
            LOGGER.debug("Reusing storage state for %s", role)
            return storage_path

        reason = "stale-or-invalid" if state is not None else "missing"
        LOGGER.info("Refreshing storage state for %s (%s): %s", role, reason, sanitize_path_for_logs(storage_path))

        for attempt in range(1, CREATE_MAX_ATTEMPTS + 1):
            storage_path.unlink(missing_ok=True)
            try:
                return create(role, settings)
            except Exception as exc:
                if not is_retryable_error(exc) or attempt == CREATE_MAX_ATTEMPTS:
                    raise
                delay_ms = retry_delay_ms(attempt)
                LOGGER.warning(
                    "Storage state for %s failed (attempt %d/%d), retrying in %dms: %s",
                    role,
                    attempt,
                    CREATE_MAX_ATTEMPTS,
                    delay_ms,
                    format_error(exc),
                )
                sleep(delay_ms / 1000)
    finally:
        try:
            release()
        except OSError as exc:
            LOGGER.warning("Could not release storage-state lock %s: %s", lock_path, exc)
