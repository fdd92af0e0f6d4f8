"""
conftest.py — Shared pytest fixtures for the unit suite.

FakePage stands in for playwright.sync_api.Page: it records listeners
registered with on()/once(), lets tests emit request/response events, and
implements wait_for_timeout() with a real sleep plus an optional hook so a
test can fire events while the tracker is waiting.
"""

import sys
import time
from collections import defaultdict
from pathlib import Path

import pytest

# src/ is the Python root for all packages (core, api_tests, cli)
_SRC = Path(__file__).parent.parent.parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from core.config import Settings  # noqa: E402

APP_URL = "https://manage-case.example.net"


class FakeRequest:
    def __init__(self, url, resource_type="fetch"):
        self.url = url
        self.resource_type = resource_type

    def __repr__(self):
        return f"<FakeRequest {self.resource_type} {self.url}>"


class FakeResponse:
    def __init__(self, request, status):
        self.request = request
        self.status = status
        self.url = request.url


class FakeLocator:
    def __init__(self, selector):
        self.selector = selector


class FakePage:
    def __init__(self, url=f"{APP_URL}/cases"):
        self.url = url
        self.listeners = defaultdict(list)
        self.once_listeners = defaultdict(list)
        self.timer_calls = []
        self.visited = []
        self.on_wait = None

    # playwright.sync_api.Page surface used by the code under test

    def on(self, event, handler):
        self.listeners[event].append(handler)

    def once(self, event, handler):
        self.once_listeners[event].append(handler)

    def wait_for_timeout(self, timeout):
        self.timer_calls.append(timeout)
        if self.on_wait is not None:
            self.on_wait(self)
        time.sleep(timeout / 1000)

    def goto(self, url, wait_until=None):
        self.visited.append((url, wait_until))

    def locator(self, selector):
        return FakeLocator(selector)

    def get_by_text(self, text):
        return FakeLocator(f"text={text}")

    # test helpers

    def emit(self, event, payload):
        for handler in list(self.listeners[event]):
            handler(payload)
        for handler in self.once_listeners.pop(event, []):
            handler(payload)

    def dispatch(self, request):
        self.emit("request", request)

    def finish(self, request):
        self.emit("requestfinished", request)

    def fail(self, request):
        self.emit("requestfailed", request)

    def respond(self, request, status):
        self.emit("response", FakeResponse(request, status))

    def close(self):
        self.emit("close", self)


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def app_url():
    return APP_URL


@pytest.fixture
def make_request():
    """Factory: make_request('/api/x') → tracked fetch to the app host."""

    def _make(path_or_url="/data/internal/cases", resource_type="fetch"):
        url = path_or_url if "://" in path_or_url else f"{APP_URL}{path_or_url}"
        return FakeRequest(url, resource_type)

    return _make


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings from a minimal env pointing at the fake app host."""

    def _make(**overrides):
        env = {"TEST_URL": APP_URL, "PW_STORAGE_ROOT": str(tmp_path / "storage")}
        env.update(overrides)
        return Settings.from_env(env)

    return _make


@pytest.fixture
def settings(settings_factory):
    return settings_factory()


@pytest.fixture
def lock_dir(tmp_path):
    d = tmp_path / "locks"
    d.mkdir()
    return d
