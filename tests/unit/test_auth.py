"""
Unit tests for api_tests/auth.py — form login against an httpx.MockTransport.

Covers:
  - credentials lookup per role
  - log hygiene helpers (masking, redaction, URL/path sanitising)
  - storage-state file helpers and cookie checks
  - create_storage_state_via_form happy path and each failure mode
  - is_storage_state_authenticated session check
"""

from urllib.parse import parse_qs

import httpx
import pytest

from api_tests.auth import (
    Credentials,
    create_storage_state_via_form,
    extract_csrf,
    format_error,
    get_credentials,
    has_expired_auth_cookies,
    has_required_auth_cookies,
    is_storage_state_authenticated,
    mask,
    read_storage_state,
    redact_sensitive,
    sanitize_path_for_logs,
    sanitize_url_for_logs,
    write_storage_state,
)
from core.exception import ConfigError, StorageStateError

LOGIN_PAGE = """
<form method="post" action="/login?client_id=xuiwebapp&state=abc">
  <input type="hidden" name="_csrf" value="csrf-123"/>
  <input name="username"/><input name="password" type="password"/>
</form>
"""

SESSION_COOKIES = [
    ("set-cookie", "Idam.Session=session-abc; Path=/; HttpOnly"),
    ("set-cookie", "__auth__=jwt-xyz; Path=/; SameSite=Strict"),
]


class FakeIdam:
    """Minimal manage-cases + IDAM login flow served through MockTransport."""

    def __init__(self, login_status=200, set_cookies=True, authenticated=True):
        self.login_status = login_status
        self.set_cookies = set_cookies
        self.authenticated = authenticated
        self.posted_form = None
        self.paths = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.paths.append((request.method, path))
        if path == "/auth/login" and request.method == "GET":
            return httpx.Response(self.login_status, text=LOGIN_PAGE)
        if path == "/auth/login" and request.method == "POST":
            self.posted_form = parse_qs(request.content.decode())
            headers = SESSION_COOKIES if self.set_cookies else []
            return httpx.Response(200, headers=headers, text="<html>cases</html>")
        if path == "/auth/isAuthenticated":
            return httpx.Response(200, json=self.authenticated)
        return httpx.Response(200, text="<html></html>")

    def client_factory(self, base_url, **kwargs):
        return httpx.Client(base_url=base_url, transport=httpx.MockTransport(self), follow_redirects=True)


@pytest.fixture
def credentials():
    return Credentials(username="solicitor@example.com", password="Pa55word11")


# ── Credentials ───────────────────────────────────────────────────────────────


class TestCredentials:
    def test_reads_role_env(self):
        env = {"CASEOFFICER_R1_USERNAME": "co@example.com", "CASEOFFICER_R1_PASSWORD": "pw"}
        creds = get_credentials("caseofficer_r1", env)
        assert creds.username == "co@example.com"
        assert creds.password == "pw"

    def test_missing_password_raises(self):
        with pytest.raises(ConfigError, match="SOLICITOR_PASSWORD"):
            get_credentials("solicitor", {"SOLICITOR_USERNAME": "someone"})

    def test_repr_hides_secrets(self, credentials):
        text = repr(credentials)
        assert "Pa55word11" not in text
        assert "solicitor@example.com" not in text
        assert "s***" in text


# ── Log hygiene ───────────────────────────────────────────────────────────────


class TestLogHygiene:
    def test_mask(self):
        assert mask("alice") == "a***"
        assert mask("") == "<unset>"
        assert mask(None) == "<unset>"

    def test_redacts_bearer_and_secret_params(self):
        text = redact_sensitive("Authorization: Bearer abc.def-ghi url?code=xyz&password=p4ss&state=1")
        assert "abc.def-ghi" not in text
        assert "xyz" not in text
        assert "p4ss" not in text
        assert "state=1" in text
        assert "Bearer [REDACTED]" in text

    def test_format_error_uses_class_name_when_empty(self):
        assert format_error(ValueError()) == "ValueError"

    def test_sanitize_url(self):
        url = "https://user:pw@idam.example.net:8443/login?client_id=x&code=y#frag"
        assert sanitize_url_for_logs(url) == "https://idam.example.net:8443/login"

    def test_sanitize_relative_url(self):
        assert sanitize_url_for_logs("/auth/login?code=1") == "/auth/login"

    def test_sanitize_path_redacts_email(self):
        path = "/tmp/states/solicitor@example.com.json"
        assert sanitize_path_for_logs(path) == "/tmp/states/[REDACTED_EMAIL].json"


# ── Storage-state files ───────────────────────────────────────────────────────


class TestStorageStateFiles:
    def test_write_then_read(self, tmp_path):
        path = tmp_path / "aat" / "solicitor.json"
        write_storage_state(path, {"cookies": [], "origins": []})
        assert read_storage_state(path) == {"cookies": [], "origins": []}
        assert not (tmp_path / "aat" / ".solicitor.json.tmp").exists()

    def test_read_missing_or_invalid(self, tmp_path):
        assert read_storage_state(tmp_path / "missing.json") is None
        bad = tmp_path / "bad.json"
        bad.write_text("{not json", encoding="utf-8")
        assert read_storage_state(bad) is None
        listed = tmp_path / "list.json"
        listed.write_text("[]", encoding="utf-8")
        assert read_storage_state(listed) is None

    def test_required_cookies(self):
        assert has_required_auth_cookies([{"name": "Idam.Session"}, {"name": "__auth__"}])
        assert not has_required_auth_cookies([{"name": "Idam.Session"}])
        assert not has_required_auth_cookies(["junk"])

    def test_expired_cookies(self):
        now = 1_700_000_000
        assert has_expired_auth_cookies([{"name": "__auth__", "expires": now - 1}], now=now)
        assert not has_expired_auth_cookies([{"name": "__auth__", "expires": -1}], now=now)
        assert not has_expired_auth_cookies([{"name": "__auth__", "expires": now + 60}], now=now)
        assert not has_expired_auth_cookies([{"name": "other", "expires": now - 1}], now=now)
        assert not has_expired_auth_cookies([{"name": "__auth__", "expires": True}], now=now)

    def test_extract_csrf(self):
        assert extract_csrf(LOGIN_PAGE) == "csrf-123"
        assert extract_csrf("<form></form>") is None


# ── Form login ────────────────────────────────────────────────────────────────


class TestCreateStorageStateViaForm:
    def test_writes_session_cookies(self, tmp_path, credentials, settings):
        idam = FakeIdam()
        path = tmp_path / "aat" / "solicitor.json"

        create_storage_state_via_form(credentials, path, "solicitor", settings, client_factory=idam.client_factory)

        state = read_storage_state(path)
        names = {cookie["name"] for cookie in state["cookies"]}
        assert {"Idam.Session", "__auth__"} <= names
        assert state["origins"] == []
        auth = next(c for c in state["cookies"] if c["name"] == "__auth__")
        assert auth["value"] == "jwt-xyz"
        assert auth["domain"].endswith("manage-case.example.net")
        assert auth["sameSite"] == "Strict"

    def test_posts_credentials_and_csrf(self, tmp_path, credentials, settings):
        idam = FakeIdam()
        create_storage_state_via_form(
            credentials, tmp_path / "s.json", "solicitor", settings, client_factory=idam.client_factory
        )
        assert idam.posted_form["username"] == ["solicitor@example.com"]
        assert idam.posted_form["password"] == ["Pa55word11"]
        assert idam.posted_form["_csrf"] == ["csrf-123"]
        assert idam.posted_form["save"] == ["Sign in"]
        assert ("GET", "/auth/isAuthenticated") in idam.paths

    def test_login_page_error(self, tmp_path, credentials, settings):
        idam = FakeIdam(login_status=503)
        with pytest.raises(StorageStateError, match="Failed to login as solicitor") as exc_info:
            create_storage_state_via_form(
                credentials, tmp_path / "s.json", "solicitor", settings, client_factory=idam.client_factory
            )
        assert "503" in str(exc_info.value)
        assert not (tmp_path / "s.json").exists()

    def test_not_authenticated(self, tmp_path, credentials, settings):
        idam = FakeIdam(authenticated=False)
        with pytest.raises(StorageStateError, match="isAuthenticated"):
            create_storage_state_via_form(
                credentials, tmp_path / "s.json", "solicitor", settings, client_factory=idam.client_factory
            )

    def test_missing_cookies(self, tmp_path, credentials, settings):
        idam = FakeIdam(set_cookies=False)
        with pytest.raises(StorageStateError, match="required auth cookies missing"):
            create_storage_state_via_form(
                credentials, tmp_path / "s.json", "solicitor", settings, client_factory=idam.client_factory
            )

    def test_transport_error_is_wrapped(self, tmp_path, credentials, settings):
        def refuse(request):
            raise httpx.ConnectError("ECONNRESET", request=request)

        def factory(base_url, **kwargs):
            return httpx.Client(base_url=base_url, transport=httpx.MockTransport(refuse))

        with pytest.raises(StorageStateError) as exc_info:
            create_storage_state_via_form(credentials, tmp_path / "s.json", "solicitor", settings, client_factory=factory)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


# ── Session check ─────────────────────────────────────────────────────────────


class TestIsStorageStateAuthenticated:
    STATE = {
        "cookies": [
            {"name": "Idam.Session", "value": "s1", "domain": "manage-case.example.net", "path": "/"},
            {"name": "__auth__", "value": "jwt", "domain": "manage-case.example.net", "path": "/"},
        ],
        "origins": [],
    }

    def _factory(self, handler):
        def factory(base_url, **kwargs):
            return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler))

        return factory

    def test_sends_cookies_and_reads_true(self, settings):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["cookie"] = request.headers.get("cookie", "")
            return httpx.Response(200, json=True)

        assert is_storage_state_authenticated(self.STATE, settings, client_factory=self._factory(handler))
        assert seen["path"] == "/auth/isAuthenticated"
        assert "__auth__=jwt" in seen["cookie"]
        assert "Idam.Session=s1" in seen["cookie"]

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json=False),
            httpx.Response(401, json=True),
            httpx.Response(200, text="<html>login</html>"),
        ],
    )
    def test_negative_answers(self, settings, response):
        assert not is_storage_state_authenticated(self.STATE, settings, client_factory=self._factory(lambda r: response))

    def test_network_error_is_false(self, settings):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        assert not is_storage_state_authenticated(self.STATE, settings, client_factory=self._factory(handler))
