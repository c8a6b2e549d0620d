"""Shared fixtures for end-to-end fetch cycle tests.

Playwright is replaced by a scripted browser: navigating to the usage page
fires the configured requests through whatever "request" listeners were
registered on the context, and the context's request client answers from
a URL-keyed table.
"""

import pytest
from pathlib import Path
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock, MagicMock, patch
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))


class ScriptedBrowser:
    """Stand-in for a Playwright driver with one persistent context."""

    def __init__(self):
        self.page_url = "https://claude.ai/settings/usage"
        self.page_text = ""
        self.fired_urls: List[str] = []
        self.responses: Dict[str, Any] = {}
        self.listeners: List[Callable] = []

        self.page = MagicMock()
        self.page.goto = AsyncMock(side_effect=self._goto)
        self.page.wait_for_timeout = AsyncMock()
        self.page.wait_for_url = AsyncMock()
        self.page.evaluate = AsyncMock(return_value=1)
        self.page.inner_text = AsyncMock(side_effect=lambda *args, **kwargs: self.page_text)
        type(self.page).url = property(lambda _: self.page_url)

        self.context = MagicMock()
        self.context.pages = [self.page]
        self.context.close = AsyncMock()
        self.context.on = MagicMock(side_effect=lambda event, handler: self.listeners.append(handler))
        self.context.remove_listener = MagicMock(
            side_effect=lambda event, handler: self.listeners.remove(handler)
        )
        self.context.request.get = AsyncMock(side_effect=self._get)

        self.playwright = MagicMock()
        self.playwright.chromium.connect_over_cdp = AsyncMock(side_effect=Exception("ECONNREFUSED"))
        self.playwright.chromium.launch_persistent_context = AsyncMock(return_value=self.context)
        self.playwright.stop = AsyncMock()

    async def _goto(self, url, **kwargs):
        for fired in self.fired_urls:
            request = MagicMock()
            request.url = fired
            request.headers = {"accept": "application/json", "host": "claude.ai"}
            for listener in list(self.listeners):
                listener(request)

    async def _get(self, url, **kwargs):
        if url not in self.responses:
            raise Exception(f"net::ERR_FAILED {url}")
        return self.responses[url]


@pytest.fixture
def scripted_browser():
    """Patch Playwright with a scripted browser."""
    browser = ScriptedBrowser()
    with patch('usage_sentinel.capture.browser_session.async_playwright') as mock_pw:
        driver = MagicMock()
        driver.start = AsyncMock(return_value=browser.playwright)
        mock_pw.return_value = driver
        yield browser
