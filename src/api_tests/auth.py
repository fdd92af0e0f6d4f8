"""
api_tests/auth.py — Log in to manage-cases over plain HTTP and persist the session.

The result is a Playwright storage-state file (``{"cookies": [...],
"origins": []}``) that both ``browser.new_context(storage_state=...)`` and the
API clients in this package can reuse.

Credentials come from ``<ROLE>_USERNAME`` / ``<ROLE>_PASSWORD``, e.g.
SOLICITOR_USERNAME and CASEOFFICER_R1_PASSWORD.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

import httpx

from core.config import Settings
from core.exception import ConfigError, StorageStateError
from core.logger import LOGGER

REQUIRED_AUTH_COOKIES = ("Idam.Session", "__auth__")

_CSRF_RE = re.compile(r'name="_csrf"\s+value="([^"]+)"', re.I)
_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.I)
_BEARER_RE = re.compile(r"\b[Bb]earer\s+[A-Za-z0-9\-._~+/]+=*")
_SECRET_PARAM_RE = re.compile(r"\b(password|secret|token|code)=([^&\s]+)", re.I)

ClientFactory = Callable[..., httpx.Client]


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={mask(self.username)!r}, password='***')"


def get_credentials(role: str, env: Mapping[str, str] | None = None) -> Credentials:
    env = os.environ if env is None else env
    prefix = role.upper()
    username = env.get(f"{prefix}_USERNAME", "")
    password = env.get(f"{prefix}_PASSWORD", "")
    if not username or not password:
        raise ConfigError(f'No credentials configured for role "{role}" ({prefix}_USERNAME / {prefix}_PASSWORD)')
    return Credentials(username=username, password=password)


# ── Log hygiene ────────────────────────────────────────────────────────────────


def mask(value: str | None) -> str:
    if not value:
        return "<unset>"
    return f"{value[0]}***"


def redact_sensitive(text: str) -> str:
    text = _BEARER_RE.sub("Bearer [REDACTED]", text)
    return _SECRET_PARAM_RE.sub(lambda m: f"{m.group(1)}=[REDACTED]", text)


def format_error(error: BaseException) -> str:
    return redact_sensitive(str(error) or error.__class__.__name__)


def sanitize_url_for_logs(url: str) -> str:
    """Drop query string, fragment and userinfo."""
    parts = urlsplit(url)
    if parts.scheme and parts.hostname:
        port = f":{parts.port}" if parts.port else ""
        return f"{parts.scheme}://{parts.hostname}{port}{parts.path}"
    return re.sub(r"[?#].*$", "", url.rstrip("/"))


def sanitize_path_for_logs(path: str | Path) -> str:
    return _EMAIL_RE.sub("[REDACTED_EMAIL]", str(path))


# ── Storage-state files ────────────────────────────────────────────────────────


def read_storage_state(path: str | Path) -> dict | None:
    """Load a storage-state JSON file; None when missing or unreadable."""
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def write_storage_state(path: str | Path, state: dict) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.tmp")
    tmp.write_text(json.dumps(state, indent=2) + "\n", encoding="utf-8")
    os.replace(tmp, target)


def has_required_auth_cookies(cookies: Iterable[dict]) -> bool:
    names = {cookie.get("name") for cookie in cookies if isinstance(cookie, dict)}
    return all(name in names for name in REQUIRED_AUTH_COOKIES)


def has_expired_auth_cookies(cookies: Iterable[dict], now: float | None = None) -> bool:
    """True if a required auth cookie carries a positive expiry in the past."""
    now_secs = int(time.time() if now is None else now)
    for cookie in cookies:
        if not isinstance(cookie, dict) or cookie.get("name") not in REQUIRED_AUTH_COOKIES:
            continue
        expires = cookie.get("expires")
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            continue
        if 0 < expires <= now_secs:
            return True
    return False


def _same_site(cookie) -> str:
    value = (cookie.get_nonstandard_attr("SameSite") or cookie.get_nonstandard_attr("samesite") or "Lax").capitalize()
    return value if value in ("Strict", "Lax", "None") else "Lax"


def cookies_to_storage_state(jar) -> dict:
    """Convert an http.cookiejar.CookieJar into Playwright's storage-state shape."""
    cookies = []
    for cookie in jar:
        cookies.append(
            {
                "name": cookie.name,
                "value": cookie.value or "",
                "domain": cookie.domain,
                "path": cookie.path or "/",
                "expires": float(cookie.expires) if cookie.expires is not None else -1,
                "httpOnly": cookie.has_nonstandard_attr("HttpOnly") or cookie.has_nonstandard_attr("httponly"),
                "secure": bool(cookie.secure),
                "sameSite": _same_site(cookie),
            }
        )
    return {"cookies": cookies, "origins": []}


# ── HTTP login ─────────────────────────────────────────────────────────────────


def extract_csrf(html: str) -> str | None:
    match = _CSRF_RE.search(html)
    return match.group(1) if match else None


def default_client(base_url: str, **kwargs) -> httpx.Client:
    """httpx client configured like the suite's API request contexts."""
    return httpx.Client(
        base_url=base_url,
        follow_redirects=True,
        max_redirects=10,
        verify=False,
        timeout=30.0,
        **kwargs,
    )


def _is_authenticated(response: httpx.Response) -> bool:
    if response.status_code != 200:
        return False
    try:
        return response.json() is True
    except ValueError:
        return False


def create_storage_state_via_form(
    credentials: Credentials,
    storage_path: str | Path,
    role: str,
    settings: Settings | None = None,
    client_factory: ClientFactory = default_client,
) -> None:
    """Run the IDAM login form and write the resulting cookies to ``storage_path``.

    Raises:
        StorageStateError: any step failed; the message names the role.
    """
    settings = settings or Settings.from_env()
    try:
        with client_factory(f"{settings.base_url}/") as client:
            login_page = client.get("auth/login")
            if login_page.status_code >= 400:
                raise StorageStateError(f"GET /auth/login responded with {login_page.status_code}")

            login_url = str(login_page.url)
            form = {
                "username": credentials.username,
                "password": credentials.password,
                "save": "Sign in",
            }
            csrf = extract_csrf(login_page.text)
            if csrf:
                form["_csrf"] = csrf

            login_response = client.post(login_url, data=form)
            if login_response.status_code >= 400:
                raise StorageStateError(
                    f"POST {sanitize_url_for_logs(login_url)} responded with {login_response.status_code}"
                )

            client.get("/")
            auth_check = client.get("auth/isAuthenticated")
            if not _is_authenticated(auth_check):
                raise StorageStateError(
                    f'Login failed for role "{role}" (auth/isAuthenticated status {auth_check.status_code})'
                )

            state = cookies_to_storage_state(client.cookies.jar)
            if not has_required_auth_cookies(state["cookies"]):
                raise StorageStateError(f'Login failed for role "{role}" (required auth cookies missing)')
            write_storage_state(storage_path, state)
    except (httpx.HTTPError, StorageStateError) as exc:
        raise StorageStateError(f"Failed to login as {role}: {format_error(exc)}") from exc

    LOGGER.info("Stored session for %s at %s", role, sanitize_path_for_logs(storage_path))


def is_storage_state_authenticated(
    state: dict,
    settings: Settings | None = None,
    client_factory: ClientFactory = default_client,
) -> bool:
    """Ask the app whether the cookies in ``state`` still belong to a live session."""
    settings = settings or Settings.from_env()
    try:
        with client_factory(f"{settings.base_url}/") as client:
            for cookie in state.get("cookies", []):
                if not isinstance(cookie, dict) or "name" not in cookie:
                    continue
                client.cookies.set(
                    cookie["name"],
                    cookie.get("value", ""),
                    domain=cookie.get("domain", ""),
                    path=cookie.get("path", "/"),
                )
            return _is_authenticated(client.get("auth/isAuthenticated"))
    except httpx.HTTPError as exc:
        LOGGER.debug("isAuthenticated check failed: %s", format_error(exc))
        return False
