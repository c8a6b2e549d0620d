"""Error taxonomy for usage acquisition.

Every error carries a ``kind`` so callers can tell "needs login" from
"layout changed" from "network unreachable" without string matching.
"""

from typing import Optional


class SentinelError(Exception):
    """Base class for all usage-sentinel errors."""

    kind = "error"


class BrowserConnectionError(SentinelError):
    """Raised when no controlled browser could be attached or launched."""

    kind = "connection"


class ProfileLockedError(BrowserConnectionError):
    """Raised when the persistent profile is held by another browser process."""

    kind = "connection"


class NetworkUnreachableError(SentinelError):
    """Raised when the usage page could not be loaded in time."""

    kind = "network"


class AuthenticationTimeout(SentinelError):
    """Raised when interactive login was not completed within the window."""

    kind = "needs_login"


class ApiFetchError(SentinelError):
    """Raised when replaying a captured endpoint fails.

    Never surfaced by the orchestrator; it triggers the HTML fallback.
    """

    kind = "api"

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class HtmlParseError(SentinelError):
    """Raised when the fallback page text does not contain usage data."""

    kind = "layout_changed"


class ConfigLoadError(SentinelError):
    """Raised when configuration loading fails."""

    kind = "config"
