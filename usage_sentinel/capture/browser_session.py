"""Browser session controller for the usage page.

This module provides the BrowserSession class that owns the controlled
browser's lifecycle: attach to an already running browser on the local
debug port or launch one against a persistent profile, wait for an
interactive login when the service redirects to its auth pages, and tear
down correctly depending on whether the browser was launched or attached.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from .network_observer import EndpointObserver
from ..errors import (
    AuthenticationTimeout,
    BrowserConnectionError,
    NetworkUnreachableError,
    ProfileLockedError,
)
from ..models.capture import SessionInfo, SessionMode, SessionState

logger = logging.getLogger(__name__)


DEFAULT_USAGE_URL = "https://claude.ai/settings/usage"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)

PROFILE_LOCK_MARKERS = (
    "already running",
    "processsingleton",
    "singletonlock",
    "profile is already in use",
    "user data directory is already in use",
)


def chrome_candidates(platform: Optional[str] = None) -> List[Path]:
    """Well-known Chrome/Chromium/Edge install locations for a platform."""
    platform = platform or sys.platform
    home = Path.home()

    if platform.startswith("win"):
        return [
            Path(r"C:\Program Files\Google\Chrome\Application\chrome.exe"),
            Path(r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe"),
            home / "AppData" / "Local" / "Google" / "Chrome" / "Application" / "chrome.exe",
            Path(r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe"),
            Path(r"C:\Program Files\Microsoft\Edge\Application\msedge.exe"),
        ]
    if platform == "darwin":
        return [Path("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome")]
    return [
        Path("/usr/bin/google-chrome"),
        Path("/usr/bin/chromium-browser"),
        Path("/usr/bin/chromium"),
    ]


def find_chrome(candidates: Optional[Sequence[Path]] = None) -> Optional[Path]:
    """Return the first installed browser executable, or None.

    None means Playwright's bundled Chromium will be used.
    """
    for path in candidates if candidates is not None else chrome_candidates():
        try:
            if path.exists():
                logger.debug(f"Found browser executable at: {path}")
                return path
        except OSError:
            continue
    logger.debug("No system browser found, using Playwright's Chromium")
    return None


class BrowserConfig:
    """Configuration for the controlled browser and usage page navigation."""

    def __init__(
        self,
        headless: bool = True,
        debug_port: int = 9222,
        user_data_dir: Optional[Path] = None,
        executable_path: Optional[Path] = None,
        discover_executable: bool = True,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        launch_args: Optional[List[str]] = None,
        usage_url: str = DEFAULT_USAGE_URL,
        target_host: str = "claude.ai",
        auth_markers: Sequence[str] = ("login", "auth"),
        page_timeout_ms: int = 30000,
        login_timeout_ms: int = 300000,
        settle_delay_ms: int = 2000,
        liveness_timeout_ms: int = 5000,
        attach_timeout_ms: int = 3000,
        **kwargs
    ):
        """Initialize browser configuration.

        Args:
            headless: Run a launched browser without a window
            debug_port: Local remote-debugging port used to attach
            user_data_dir: Persistent profile directory (cookies survive restarts)
            executable_path: Explicit browser executable
            discover_executable: Look for an installed Chrome when no path is given
            viewport: Viewport size dict with 'width' and 'height'
            user_agent: User-Agent for launched browsers
            launch_args: Extra command-line switches for launched browsers
            usage_url: Page that shows usage and triggers the data requests
            target_host: Host used to pick an existing tab when attaching
            auth_markers: URL fragments that indicate an auth redirect
            page_timeout_ms: Timeout for navigation and page operations
            login_timeout_ms: How long to wait for an interactive login
            settle_delay_ms: Pause after navigation for client-side redirects
            liveness_timeout_ms: Timeout for the liveness probe
            attach_timeout_ms: Timeout for connecting to the debug port
        """
        self.headless = headless
        self.debug_port = debug_port
        self.user_data_dir = Path(user_data_dir or Path.home() / ".claude-browser-session").expanduser()
        self.executable_path = Path(executable_path) if executable_path else None
        self.discover_executable = discover_executable
        self.viewport = viewport or {'width': 1280, 'height': 800}
        self.user_agent = user_agent
        self.launch_args = launch_args or [
            '--no-sandbox',
            '--disable-setuid-sandbox',
            '--disable-dev-shm-usage',
            '--disable-blink-features=AutomationControlled',
        ]
        self.usage_url = usage_url
        self.target_host = target_host
        self.auth_markers = tuple(auth_markers)
        self.page_timeout_ms = page_timeout_ms
        self.login_timeout_ms = login_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.liveness_timeout_ms = liveness_timeout_ms
        self.attach_timeout_ms = attach_timeout_ms
        self.extra_options = kwargs

    @property
    def debug_endpoint(self) -> str:
        """CDP endpoint of a browser started with our debug port."""
        return f"http://127.0.0.1:{self.debug_port}"

    def to_launch_options(self, force_visible: bool = False) -> Dict[str, Any]:
        """Convert to Playwright launch_persistent_context options."""
        options: Dict[str, Any] = {
            'headless': False if force_visible else self.headless,
            'args': [*self.launch_args, f'--remote-debugging-port={self.debug_port}'],
            'viewport': self.viewport,
            'timeout': self.page_timeout_ms,
        }

        if self.user_agent:
            options['user_agent'] = self.user_agent

        executable = self.executable_path
        if executable is None and self.discover_executable:
            executable = find_chrome()
        if executable is not None:
            options['executable_path'] = str(executable)

        options.update(self.extra_options)
        return options

    def is_auth_url(self, url: str) -> bool:
        """Whether a URL looks like an authentication page."""
        lowered = (url or "").lower()
        return any(marker in lowered for marker in self.auth_markers)


class BrowserSession:
    """Owns one controlled browser and its login state."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        observer: Optional[EndpointObserver] = None,
        on_login_required: Optional[Callable[[str], None]] = None,
    ):
        """Initialize browser session.

        Args:
            config: Browser configuration (uses defaults if None)
            observer: Endpoint observer attached to every browser context
            on_login_required: Called with a message when the user must log in
        """
        self.config = config or BrowserConfig()
        self.observer = observer if observer is not None else EndpointObserver()
        self.on_login_required = on_login_required

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.mode: Optional[SessionMode] = None
        self._state = SessionState.UNINITIALIZED
        self._visible = not self.config.headless

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    def _transition(self, state: SessionState) -> None:
        if state != self._state:
            logger.debug(f"Browser session: {self._state.value} -> {state.value}")
        self._state = state

    @property
    def is_initialized(self) -> bool:
        """Whether a browser is attached or launched."""
        return self.page is not None and self._state not in (
            SessionState.UNINITIALIZED, SessionState.CLOSED
        )

    def has_existing_session(self) -> bool:
        """Check the persistent profile for a non-empty cookie store."""
        cookie_files = [
            self.config.user_data_dir / "Default" / "Cookies",
            self.config.user_data_dir / "Default" / "Network" / "Cookies",
        ]
        for cookie_file in cookie_files:
            try:
                if cookie_file.is_file() and cookie_file.stat().st_size > 0:
                    return True
            except OSError as e:
                logger.debug(f"Error checking {cookie_file}: {e}")
        return False

    async def is_alive(self) -> bool:
        """Liveness probe: evaluate a trivial expression in the page."""
        if self.page is None:
            return False
        if self.browser is not None and not self.browser.is_connected():
            return False
        try:
            await asyncio.wait_for(
                self.page.evaluate("() => 1"),
                timeout=self.config.liveness_timeout_ms / 1000,
            )
            return True
        except Exception as e:
            logger.debug(f"Browser liveness probe failed: {e}")
            return False

    async def ensure_ready(self, force_visible: bool = False) -> None:
        """Make sure a live browser page is available.

        Reuses a live session, otherwise attaches to a browser on the debug
        port, otherwise launches a new one against the persistent profile.

        Raises:
            ProfileLockedError: If the profile is locked by another process
            BrowserConnectionError: If no browser could be attached or launched
        """
        if self.is_initialized:
            if await self.is_alive():
                return
            logger.info("Browser session no longer responds, reconnecting")
            await self._release()

        self._transition(SessionState.UNINITIALIZED)

        if self.playwright is None:
            try:
                self.playwright = await async_playwright().start()
            except Exception as e:
                raise BrowserConnectionError(f"Failed to start Playwright: {e}") from e

        if await self._try_attach():
            self._attach_observer()
            return

        try:
            await self._launch(force_visible)
        except BrowserConnectionError:
            await self._stop_playwright()
            raise
        self._attach_observer()

    async def _try_attach(self) -> bool:
        """Connect to an already running browser on the debug port."""
        self._transition(SessionState.ATTACHING)
        try:
            browser = await self.playwright.chromium.connect_over_cdp(
                self.config.debug_endpoint,
                timeout=self.config.attach_timeout_ms,
            )
        except Exception as e:
            logger.debug(f"Could not connect to existing browser: {e}")
            self._transition(SessionState.UNINITIALIZED)
            return False

        try:
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = None
            for candidate in context.pages:
                if self.config.target_host in (candidate.url or ""):
                    page = candidate
                    break
            if page is None:
                page = context.pages[0] if context.pages else await context.new_page()
        except Exception as e:
            logger.warning(f"Connected to browser but could not open a page: {e}")
            try:
                await browser.close()
            except Exception as close_error:
                logger.debug(f"Error disconnecting from browser: {close_error}")
            self._transition(SessionState.UNINITIALIZED)
            return False

        self.browser = browser
        self.context = context
        self.page = page
        self.mode = SessionMode.ATTACHED
        self._visible = True
        self._transition(SessionState.ATTACHED)
        logger.info(f"Attached to existing browser on port {self.config.debug_port}")
        return True

    async def _launch(self, force_visible: bool) -> None:
        """Launch a browser against the persistent profile."""
        self._transition(SessionState.LAUNCHING)
        options = self.config.to_launch_options(force_visible=force_visible)

        try:
            self.config.user_data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(
                f"Launching browser (headless={options['headless']}, "
                f"debug port {self.config.debug_port})"
            )
            context = await self.playwright.chromium.launch_persistent_context(
                str(self.config.user_data_dir),
                **options
            )
            page = context.pages[0] if context.pages else await context.new_page()
        except Exception as e:
            self._transition(SessionState.UNINITIALIZED)
            message = str(e)
            if any(marker in message.lower() for marker in PROFILE_LOCK_MARKERS):
                raise ProfileLockedError(
                    "Browser profile is locked by another process. Close all "
                    "Chrome/Edge windows using it and try again."
                ) from e
            raise BrowserConnectionError(
                f"Failed to launch browser: {message}. Make sure Chromium is installed "
                f"(playwright install chromium)."
            ) from e

        self.browser = None
        self.context = context
        self.page = page
        self.mode = SessionMode.OWNED
        self._visible = not options['headless']
        self._transition(SessionState.OWNED)
        logger.info("Launched new browser")

    def _attach_observer(self) -> None:
        if not self.observer.attach(self.context):
            logger.warning("Endpoint capture unavailable; usage will be read from the page")

    async def navigate_to_usage(self) -> str:
        """Navigate to the usage page and return the resulting URL.

        Raises:
            NetworkUnreachableError: If the page does not load in time
        """
        if self.page is None:
            raise BrowserConnectionError("Browser session not ready. Call ensure_ready() first.")

        try:
            await self.page.goto(
                self.config.usage_url,
                wait_until="networkidle",
                timeout=self.config.page_timeout_ms,
            )
            # Client-side redirects land after networkidle
            await self.page.wait_for_timeout(self.config.settle_delay_ms)
        except PlaywrightTimeoutError as e:
            raise NetworkUnreachableError(
                "Usage page took too long to load. Check your internet connection."
            ) from e
        except PlaywrightError as e:
            raise NetworkUnreachableError(f"Failed to load usage page: {e}") from e

        return self.page.url

    async def ensure_logged_in(self) -> None:
        """Navigate to the usage page and wait for login if redirected.

        Raises:
            AuthenticationTimeout: If login is not completed in time
            NetworkUnreachableError: If the page does not load
        """
        current_url = await self.navigate_to_usage()

        if not self.config.is_auth_url(current_url):
            self._transition(SessionState.LOGGED_IN)
            return

        self._transition(SessionState.NEEDS_LOGIN)
        message = "Please log in in the browser window. Fetching continues once you are logged in."
        logger.warning(message)
        if self.on_login_required is not None:
            try:
                self.on_login_required(message)
            except Exception as e:
                logger.error(f"Error in login-required callback: {e}")

        if not self._visible:
            await self._show()

        self._transition(SessionState.WAITING_FOR_LOGIN)
        try:
            await self.page.wait_for_url(
                lambda url: not self.config.is_auth_url(url),
                timeout=self.config.login_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            self._transition(SessionState.NEEDS_LOGIN)
            raise AuthenticationTimeout(
                "Login was not completed in time. Please try again and finish logging in."
            ) from e
        except PlaywrightError as e:
            # Login window closed or the page crashed while waiting
            self._transition(SessionState.NEEDS_LOGIN)
            raise BrowserConnectionError(f"Browser closed while waiting for login: {e}") from e

        self._transition(SessionState.LOGGED_IN)
        logger.info("Login successful, session saved in the browser profile")

    async def _show(self) -> None:
        """Relaunch a headless owned browser with a window for login."""
        logger.info("Relaunching browser with a visible window for login")
        await self._release()
        await self.ensure_ready(force_visible=True)
        current_url = await self.navigate_to_usage()
        if not self.config.is_auth_url(current_url):
            logger.debug("Visible browser is already past the login page")

    async def page_text(self) -> str:
        """Visible text of the current page."""
        if self.page is None:
            raise BrowserConnectionError("Browser session not ready. Call ensure_ready() first.")
        try:
            return await self.page.inner_text("body", timeout=self.config.page_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NetworkUnreachableError("Timed out reading the usage page") from e
        except PlaywrightError as e:
            raise BrowserConnectionError(f"Could not read the usage page: {e}") from e

    def mark_ready(self) -> None:
        """Record a successful fetch."""
        self._transition(SessionState.READY)

    async def _release(self) -> None:
        """Disconnect or terminate the browser without stopping Playwright."""
        self.observer.detach()
        try:
            if self.mode == SessionMode.ATTACHED and self.browser is not None:
                # Closing a CDP connection disconnects; the browser keeps running
                await self.browser.close()
                logger.info("Disconnected from shared browser")
            elif self.mode == SessionMode.OWNED and self.context is not None:
                await self.context.close()
                logger.info("Closed launched browser")
        except Exception as e:
            logger.warning(f"Error releasing browser: {e}")
        finally:
            self.browser = None
            self.context = None
            self.page = None
            self.mode = None

    async def _stop_playwright(self) -> None:
        if self.playwright is None:
            return
        try:
            await self.playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping Playwright: {e}")
        self.playwright = None

    async def close(self) -> None:
        """Disconnect (attached) or terminate (owned) the browser. Idempotent."""
        await self._release()
        await self._stop_playwright()

        self._visible = not self.config.headless
        self._transition(SessionState.CLOSED)

    def info(self) -> SessionInfo:
        """Describe the session."""
        return SessionInfo(
            mode=self.mode,
            state=self._state,
            cookie_store_location=str(self.config.user_data_dir),
        )

    def __repr__(self) -> str:
        """String representation of browser session."""
        mode = self.mode.value if self.mode else None
        return f"BrowserSession(mode={mode}, state={self._state.value})"
