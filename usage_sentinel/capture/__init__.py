"""Browser control and endpoint capture for usage-sentinel.

Main Components:
- Browser Session: attach-or-launch lifecycle, login wait, teardown
- Endpoint Observer: passive discovery of internal data endpoints

Usage:
    from usage_sentinel.capture import BrowserSession

    session = BrowserSession()
    await session.ensure_ready()
    await session.ensure_logged_in()
"""

from .browser_session import (
    BrowserConfig,
    BrowserSession,
    chrome_candidates,
    find_chrome,
)
from .network_observer import EndpointObserver

__all__ = [
    "BrowserConfig",
    "BrowserSession",
    "EndpointObserver",
    "chrome_candidates",
    "find_chrome",
]
