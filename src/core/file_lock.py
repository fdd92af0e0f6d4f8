"""
core/file_lock.py — Cross-process advisory lock on a shared file path.

The lock is the file itself: whoever manages an exclusive create
(O_CREAT | O_EXCL) of ``path`` owns it.  While held, a daemon heartbeat
thread keeps touching the file's mtime; a competing acquirer that finds the
mtime older than ``stale_ms`` treats the owner as gone and evicts the file.
The pid recorded in the file is for humans only and never consulted.

Usage::

    from core.file_lock import acquire_file_lock, file_lock

    release = acquire_file_lock(lock_path, retries=30, stale_ms=600_000)
    try:
        write_storage_state()
    finally:
        release()

    with file_lock(lock_path):
        write_storage_state()
"""

from __future__ import annotations

import json
import os
import socket
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from core.exception import LockTimeoutError
from core.logger import LOGGER

DEFAULT_RETRIES = 30
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_MAX_RETRY_DELAY_MS = 5_000
DEFAULT_STALE_MS = 300_000

BACKOFF_FACTOR = 1.5
MIN_RETRY_DELAY_MS = 50
MIN_STALE_MS = 1_000
MIN_HEARTBEAT_MS = 500
MAX_HEARTBEAT_MS = 5_000

_HOST = socket.gethostname()
# Approximate; monotonic() is only an uptime proxy.
_BOOT_TIME_MS = int((time.time() - time.monotonic()) * 1000)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_token() -> str:
    return f"{os.getpid()}-{_now_ms()}-{uuid.uuid4().hex}"


def heartbeat_interval_ms(stale_ms: int) -> int:
    return max(MIN_HEARTBEAT_MS, min(MAX_HEARTBEAT_MS, stale_ms // 3))


# ── Lock record ────────────────────────────────────────────────────────────────


@dataclass
class LockRecord:
    """Content of a lock file.  Only ``token`` matters for correctness."""

    token: str
    pid: int | None = None
    created_at: int | None = None
    heartbeat_at: int | None = None
    host: str | None = None
    boot_time: int | None = None

    def to_text(self) -> str:
        return json.dumps(asdict(self)) + "\n"

    @classmethod
    def parse(cls, raw: str) -> LockRecord | None:
        """Parse lock file content; anything that is not a JSON record is a bare token."""
        text = raw.strip()
        if not text:
            return None
        if text.startswith("{"):
            try:
                data = json.loads(text)
            except ValueError:
                data = None
            if isinstance(data, dict) and isinstance(data.get("token"), str):
                return cls(**{f.name: data.get(f.name) for f in fields(cls)})
        return cls(token=text)


def read_lock_record(path: str | Path) -> LockRecord | None:
    """Return the record stored at ``path``, or None if it cannot be read."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    return LockRecord.parse(raw)


def _lock_age_ms(path: Path) -> int | None:
    """Milliseconds since the lock file's mtime, or None if it has gone."""
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return None
    return _now_ms() - int(mtime * 1000)


@dataclass
class LockStatus:
    path: Path
    exists: bool
    record: LockRecord | None = None
    age_ms: int | None = None
    stale: bool = False


def inspect_lock(path: str | Path, stale_ms: int = DEFAULT_STALE_MS) -> LockStatus:
    """Describe the lock at ``path`` without touching it."""
    lock_path = Path(path)
    age_ms = _lock_age_ms(lock_path)
    if age_ms is None:
        return LockStatus(path=lock_path, exists=False)
    return LockStatus(
        path=lock_path,
        exists=True,
        record=read_lock_record(lock_path),
        age_ms=age_ms,
        stale=age_ms >= max(MIN_STALE_MS, stale_ms),
    )


# ── Heartbeat ──────────────────────────────────────────────────────────────────


class LockHeartbeat(threading.Thread):
    """Daemon thread that refreshes a held lock file's mtime until stopped."""

    def __init__(self, path: Path, interval_ms: int) -> None:
        super().__init__(name=f"lock-heartbeat:{path.name}", daemon=True)
        self.__path = path
        self.__interval_secs = interval_ms / 1000
        self.__event = threading.Event()

    def stop(self) -> None:
        self.__event.set()

    def run(self) -> None:
        while not self.__event.wait(self.__interval_secs):
            try:
                os.utime(self.__path)
            except OSError as exc:
                LOGGER.debug("Lock heartbeat could not touch %s: %s", self.__path, exc)


# ── Held lock ──────────────────────────────────────────────────────────────────


class FileLock:
    """A held lock.  Call it (or ``release()``) to give the lock up.

    Release is idempotent and only deletes the file while it still carries
    this acquisition's token, so a lock that was evicted and re-acquired by
    someone else is left alone.
    """

    def __init__(self, path: Path, token: str, heartbeat: LockHeartbeat) -> None:
        self._path = path
        self._token = token
        self._heartbeat = heartbeat
        self._released = False
        self._guard = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def token(self) -> str:
        return self._token

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._guard:
            if self._released:
                return
            self._released = True

        self._heartbeat.stop()
        self._heartbeat.join(timeout=1.0)

        record = read_lock_record(self._path)
        if record is None or record.token != self._token:
            LOGGER.debug("Lock %s no longer ours; leaving it in place", self._path)
            return
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        LOGGER.debug("Released lock %s", self._path)

    def __call__(self) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"<FileLock {self._path} {state}>"


def _create_lock(lock_path: Path, token: str, stale_ms: int) -> FileLock:
    """Exclusive-create ``lock_path`` and start its heartbeat.  Raises FileExistsError."""
    fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    now = _now_ms()
    record = LockRecord(
        token=token,
        pid=os.getpid(),
        created_at=now,
        heartbeat_at=now,
        host=_HOST,
        boot_time=_BOOT_TIME_MS,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(record.to_text())
    except BaseException:
        lock_path.unlink(missing_ok=True)
        raise

    heartbeat = LockHeartbeat(lock_path, heartbeat_interval_ms(stale_ms))
    heartbeat.start()
    LOGGER.debug("Acquired lock %s (token %s)", lock_path, token)
    return FileLock(lock_path, token, heartbeat)


def acquire_file_lock(
    path: str | Path,
    retries: int = DEFAULT_RETRIES,
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    max_retry_delay_ms: int = DEFAULT_MAX_RETRY_DELAY_MS,
    stale_ms: int = DEFAULT_STALE_MS,
) -> FileLock:
    """Acquire the lock at ``path``, blocking with backoff.

    Args:
        path: Lock file location; its parent directory is created.
        retries: Extra attempts after the first one (>= 0).
        retry_delay_ms: Initial backoff between attempts (>= 50).
        max_retry_delay_ms: Backoff ceiling; the delay grows x1.5 per attempt.
        stale_ms: mtime age at which a lock is considered abandoned (>= 1000).

    Returns:
        FileLock release capability.

    Raises:
        LockTimeoutError: every attempt found a live lock.
        OSError: any filesystem failure other than the lock already existing.
    """
    lock_path = Path(path)
    retries = max(0, retries)
    retry_delay_ms = max(MIN_RETRY_DELAY_MS, retry_delay_ms)
    max_retry_delay_ms = max(retry_delay_ms, max_retry_delay_ms)
    stale_ms = max(MIN_STALE_MS, stale_ms)

    lock_path.parent.mkdir(parents=True, exist_ok=True)

    attempt = 0
    delay_ms = retry_delay_ms
    while attempt <= retries:
        try:
            return _create_lock(lock_path, _new_token(), stale_ms)
        except FileExistsError:
            pass

        age_ms = _lock_age_ms(lock_path)
        if age_ms is None:
            # Released between our create and stat.
            attempt += 1
            continue

        if age_ms >= stale_ms:
            # A stopped heartbeat wins over a live owner pid.
            record = read_lock_record(lock_path)
            LOGGER.warning(
                "Evicting stale lock %s (age %dms >= %dms, owner pid %s)",
                lock_path,
                age_ms,
                stale_ms,
                record.pid if record else None,
            )
            lock_path.unlink(missing_ok=True)
            continue

        attempt += 1
        if attempt > retries:
            break
        LOGGER.debug("Lock %s busy; retry %d/%d in %dms", lock_path, attempt, retries, delay_ms)
        time.sleep(delay_ms / 1000)
        delay_ms = min(max_retry_delay_ms, int(delay_ms * BACKOFF_FACTOR))

    raise LockTimeoutError(lock_path)


@contextmanager
def file_lock(path: str | Path, **options):
    """Context manager around acquire_file_lock(); always releases on exit."""
    lock = acquire_file_lock(path, **options)
    try:
        yield lock
    finally:
        lock.release()
