"""
core/ui_idle.py — Decide when a Playwright page has stopped talking to the backend.

``load``/``domcontentloaded`` fire long before the Angular front end has
finished fetching the data it renders.  A UiNetworkTracker listens to the
page's request events and keeps the set of in-flight fetch/XHR calls to the
application's own hosts; ``wait_for_ui_idle`` then waits for that set to stay
empty for a short quiet window.

Analytics and RUM beacons are ignored so background telemetry cannot hold a
test hostage.  Requests that make no progress for a whole timeout window are
forgiven as idle (long-polling endpoints would otherwise hang every wait);
this can hide a genuinely stuck call, which is why it is logged.

Usage::

    from core.ui_idle import wait_for_ui_idle

    page.get_by_role("button", name="Apply").click()
    wait_for_ui_idle(page)
"""

from __future__ import annotations

import re
import time
import weakref
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from core.config import Settings
from core.exception import UiIdleTimeoutError, UiNetworkResponseError
from core.logger import LOGGER

if TYPE_CHECKING:
    from playwright.sync_api import Page, Request, Response

TRACKED_RESOURCE_TYPES = frozenset({"fetch", "xhr"})
POLL_SLICE_MS = 50

DEFAULT_IGNORE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"google-analytics\.com", re.I),
    re.compile(r"googletagmanager\.com", re.I),
    re.compile(r"/analytics/", re.I),
    re.compile(r"/rb_[^/?]+", re.I),
    re.compile(r"dynatrace", re.I),
    re.compile(r"ruxit", re.I),
)


def build_allowlist(settings: Settings) -> re.Pattern | None:
    """Pattern restricting tracking to the application's hosts.

    PW_UI_IDLE_ALLOWLIST wins when set (an invalid regex disables the
    allow-list); otherwise it is built from the configured base URLs.
    """
    if settings.idle_allowlist:
        try:
            return re.compile(settings.idle_allowlist, re.I)
        except re.error as exc:
            LOGGER.warning("Ignoring invalid PW_UI_IDLE_ALLOWLIST %r: %s", settings.idle_allowlist, exc)
            return None

    hosts: list[str] = []
    for url in (settings.base_url, settings.manage_case_base_url):
        host = urlsplit(url).netloc.lower() if url else ""
        if host and host not in hosts:
            hosts.append(host)
    if not hosts:
        return None
    pattern = "|".join(re.escape(host) for host in hosts)
    return re.compile(rf"^https?://(?:{pattern})(?:/|$)", re.I)


class UiNetworkTracker:
    """In-flight fetch/XHR bookkeeping for one page.

    The tracker only holds a weak reference to its page; the page owns the
    tracker through its event listeners.
    """

    def __init__(
        self,
        page: Page,
        allowlist: re.Pattern | None = None,
        ignore_patterns: Iterable[re.Pattern] = DEFAULT_IGNORE_PATTERNS,
        fail_on_status: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._page_ref = weakref.ref(page)
        self._allowlist = allowlist
        self._ignore_patterns = tuple(ignore_patterns)
        self._fail_on_status = fail_on_status
        self._clock = clock

        self._pending: set[Request] = set()
        self._classified: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
        self._last_error: tuple[int, str] | None = None
        self._last_change = clock()

        page.on("request", self._on_request)
        page.on("requestfinished", self._on_request_done)
        page.on("requestfailed", self._on_request_done)
        page.on("response", self._on_response)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def should_track(self, request: Request) -> bool:
        if request.resource_type not in TRACKED_RESOURCE_TYPES:
            return False
        url = request.url
        if any(pattern.search(url) for pattern in self._ignore_patterns):
            return False
        if self._allowlist is not None and not self._allowlist.search(url):
            return False
        return True

    def _is_tracked(self, request: Request) -> bool:
        """should_track(), evaluated once per request."""
        tracked = self._classified.get(request)
        if tracked is None:
            tracked = self._classified[request] = self.should_track(request)
        return tracked

    # ── Page events ───────────────────────────────────────────────────────────

    def _on_request(self, request: Request) -> None:
        if not self._is_tracked(request):
            return
        self._pending.add(request)
        self._last_change = self._clock()

    def _on_request_done(self, request: Request) -> None:
        # Membership, not re-classification, keeps add/remove symmetric.
        if request not in self._pending:
            return
        self._pending.discard(request)
        self._last_change = self._clock()

    def _on_response(self, response: Response) -> None:
        if self._fail_on_status is None:
            return
        if not self._is_tracked(response.request):
            return
        status = response.status
        if status >= self._fail_on_status:
            self._last_error = (status, response.url)

    # ── Waiting ───────────────────────────────────────────────────────────────

    def wait_for_idle(self, timeout_ms: int, idle_ms: int) -> None:
        """Block until no tracked request has been in flight for ``idle_ms``.

        Raises:
            UiNetworkResponseError: a tracked response met the failure status.
            UiIdleTimeoutError: still busy when ``timeout_ms`` ran out.
        """
        page = self._page_ref()
        if page is None:
            return

        quiet_ms = max(0, idle_ms)
        window_secs = timeout_ms / 1000
        deadline = self._clock() + window_secs

        while self._clock() < deadline:
            pending = len(self._pending)
            if pending and self._clock() - self._last_change > window_secs:
                LOGGER.warning(
                    "Treating %d stalled UI request(s) as idle after %dms without progress",
                    pending,
                    timeout_ms,
                )
                self._pending.clear()
                self._last_change = self._clock()
                return

            if self._last_error is not None:
                status, url = self._last_error
                self._last_error = None
                raise UiNetworkResponseError(status, url)

            if not self._pending:
                page.wait_for_timeout(quiet_ms)
                if not self._pending:
                    return
            else:
                page.wait_for_timeout(POLL_SLICE_MS)

        raise UiIdleTimeoutError(timeout_ms, len(self._pending))


_TRACKERS: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def _forget_page(page: Page) -> None:
    _TRACKERS.pop(page, None)


def install_ui_network_tracker(page: Page, settings: Settings | None = None) -> UiNetworkTracker:
    """Return the page's tracker, attaching one on first use."""
    tracker = _TRACKERS.get(page)
    if tracker is not None:
        return tracker

    settings = settings or Settings.from_env()
    tracker = UiNetworkTracker(
        page,
        allowlist=build_allowlist(settings),
        fail_on_status=settings.fail_on_status,
    )
    _TRACKERS[page] = tracker
    page.once("close", _forget_page)
    return tracker


def wait_for_ui_idle(
    page: Page,
    timeout_ms: int | None = None,
    idle_ms: int | None = None,
    settings: Settings | None = None,
) -> None:
    """Wait for the page's tracked network activity to settle.

    Defaults come from PW_UI_IDLE_TIMEOUT_MS (30000) and PW_UI_IDLE_QUIET_MS (400).
    """
    settings = settings or Settings.from_env()
    tracker = install_ui_network_tracker(page, settings)
    tracker.wait_for_idle(
        settings.idle_timeout_ms if timeout_ms is None else timeout_ms,
        settings.idle_quiet_ms if idle_ms is None else idle_ms,
    )
