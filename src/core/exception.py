"""Exceptions for the exui-e2e test tooling."""


class Error(Exception):
    """Base class for exceptions raised by this package."""

    pass


class ConfigError(Error):
    """Raised when a required setting or credential is not configured."""

    pass


class LockTimeoutError(Error):
    """Raised when a file lock could not be acquired within its retry budget."""

    def __init__(self, path):
        self.path = str(path)
        super().__init__(f"Timed out acquiring lock file: {self.path}")


class UiNetworkResponseError(Error):
    """Raised when a tracked UI request came back at or above the failure status."""

    def __init__(self, status, url):
        self.status = status
        self.url = url
        super().__init__(f"UI API response {status} for {url}")


class UiIdleTimeoutError(Error):
    """Raised when tracked UI network activity never went quiet."""

    def __init__(self, timeout_ms, pending):
        self.timeout_ms = timeout_ms
        self.pending = pending
        super().__init__(f"UI network idle timeout after {timeout_ms}ms (pending requests: {pending}).")


class StorageStateError(Error):
    """Raised when an authenticated storage state cannot be created."""

    pass
