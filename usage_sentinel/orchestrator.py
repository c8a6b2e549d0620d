"""Acquisition orchestrator that turns a browser session into usage snapshots.

This module provides the AcquisitionOrchestrator class that coordinates the
browser session, endpoint observer, schema extraction, HTML fallback and
local log aggregation. All per-session state lives in an explicit
FetchContext passed to every call; there is no process-wide instance.
Callers are expected to serialise fetches on one context.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .capture.browser_session import BrowserConfig, BrowserSession
from .capture.network_observer import EndpointObserver
from .errors import ApiFetchError, SentinelError
from .extraction.html_parser import parse_usage_text
from .extraction.schema import SCHEMA_VERSION, build_usage_snapshot
from .history import UsageHistory
from .logs.aggregator import LogAggregator
from .models.capture import CapturedEndpoint, EndpointCategory
from .models.logs import AggregateUsage
from .models.usage import UsageSnapshot

logger = logging.getLogger(__name__)


# Recomputed by the HTTP client for every replayed request
HOP_BY_HOP_HEADERS = frozenset({
    'host',
    'content-length',
    'connection',
    'keep-alive',
    'proxy-connection',
    'transfer-encoding',
    'upgrade',
    'te',
    'trailer',
    'accept-encoding',
})


def replay_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Captured request headers that are safe to send again."""
    return {
        name: value for name, value in headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS and not name.startswith(':')
    }


@dataclass
class FetchContext:
    """State of one acquisition session."""

    session: BrowserSession
    logged_in: bool = False
    last_snapshot: Optional[UsageSnapshot] = None
    fetch_count: int = 0

    @property
    def observer(self) -> EndpointObserver:
        return self.session.observer


@dataclass
class FetchOutcome:
    """Result of a combined fetch; snapshot and aggregate are independent."""

    snapshot: Optional[UsageSnapshot] = None
    error: Optional[SentinelError] = None
    aggregate: AggregateUsage = field(default_factory=AggregateUsage)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.snapshot is not None and self.error is None


class AcquisitionOrchestrator:
    """Drives one fetch cycle: session, capture, replay, fallback."""

    def __init__(
        self,
        browser_config: Optional[BrowserConfig] = None,
        aggregator: Optional[LogAggregator] = None,
        history: Optional[UsageHistory] = None,
        on_login_required: Optional[Callable[[str], None]] = None,
        api_timeout_ms: int = 15000,
    ):
        """Initialize orchestrator.

        Args:
            browser_config: Configuration for sessions created by new_context()
            aggregator: Local log aggregator (uses defaults if None)
            history: Usage history store; None disables history recording
            on_login_required: Called when the user has to log in
            api_timeout_ms: Timeout for replayed API requests
        """
        self.browser_config = browser_config or BrowserConfig()
        self.aggregator = aggregator or LogAggregator()
        self.history = history
        self.on_login_required = on_login_required
        self.api_timeout_ms = api_timeout_ms

    def new_context(self, session: Optional[BrowserSession] = None) -> FetchContext:
        """Create a fresh acquisition context."""
        if session is None:
            session = BrowserSession(
                config=self.browser_config,
                on_login_required=self.on_login_required,
            )
        return FetchContext(session=session)

    async def fetch_usage(self, context: FetchContext) -> UsageSnapshot:
        """Acquire one usage snapshot.

        Prefers replaying the captured usage endpoint and falls back to
        reading the rendered page when no endpoint is available or the
        replay fails.

        Raises:
            BrowserConnectionError: If no browser could be attached or launched
            AuthenticationTimeout: If login was required and not completed
            NetworkUnreachableError: If the usage page could not be loaded
            HtmlParseError: If the fallback found no usage data
        """
        session = context.session
        first_fetch = not context.logged_in

        force_visible = first_fetch and not session.has_existing_session()
        if force_visible:
            logger.info("No saved browser session found, opening a visible browser for login")
        await session.ensure_ready(force_visible=force_visible)

        if not context.observer.is_attached:
            context.observer.attach(session.context)

        if first_fetch:
            await session.ensure_logged_in()
            context.logged_in = True
        elif not context.observer.has(EndpointCategory.USAGE):
            await session.navigate_to_usage()

        snapshot = None
        usage_endpoint = context.observer.get(EndpointCategory.USAGE)
        if usage_endpoint is not None:
            try:
                snapshot = await self._fetch_from_api(context, usage_endpoint)
            except ApiFetchError as e:
                logger.warning(f"API fetch failed, falling back to page text: {e}")
        else:
            logger.info("Usage endpoint not captured, reading usage from page text")

        if snapshot is None:
            snapshot = await self._fetch_from_html(context)

        session.mark_ready()
        context.last_snapshot = snapshot
        context.fetch_count += 1

        await self._record_history(snapshot)
        return snapshot

    async def _replay(self, context: FetchContext, endpoint: CapturedEndpoint) -> Any:
        """Re-issue a captured request with the session's cookies.

        Raises:
            ApiFetchError: On transport failure, non-2xx status or non-JSON body
        """
        browser_context = context.session.context
        if browser_context is None:
            raise ApiFetchError("Browser context unavailable", url=endpoint.url)

        try:
            response = await browser_context.request.get(
                endpoint.url,
                headers=replay_headers(endpoint.headers),
                timeout=self.api_timeout_ms,
            )
        except Exception as e:
            raise ApiFetchError(f"Request failed: {e}", url=endpoint.url) from e

        if not response.ok:
            raise ApiFetchError(
                f"HTTP {response.status}: {response.status_text}",
                status=response.status,
                url=endpoint.url,
            )

        try:
            return await response.json()
        except Exception as e:
            raise ApiFetchError(
                f"Response is not JSON: {e}",
                status=response.status,
                url=endpoint.url,
            ) from e

    async def _replay_optional(self, context: FetchContext, category: EndpointCategory) -> Optional[Any]:
        """Replay a secondary endpoint; failures only cost that section."""
        endpoint = context.observer.get(category)
        if endpoint is None:
            return None
        try:
            return await self._replay(context, endpoint)
        except ApiFetchError as e:
            logger.warning(f"Failed to fetch {category.value} data: {e}")
            return None

    async def _fetch_from_api(self, context: FetchContext, usage_endpoint: CapturedEndpoint) -> UsageSnapshot:
        usage_payload = await self._replay(context, usage_endpoint)
        if not isinstance(usage_payload, dict):
            raise ApiFetchError(
                f"Unexpected usage payload type: {type(usage_payload).__name__}",
                url=usage_endpoint.url,
            )

        overage_payload = await self._replay_optional(context, EndpointCategory.OVERAGE_LIMIT)
        credits_payload = await self._replay_optional(context, EndpointCategory.CREDITS)

        snapshot = build_usage_snapshot(
            usage_payload,
            overage_payload=overage_payload if isinstance(overage_payload, dict) else None,
            credits_payload=credits_payload if isinstance(credits_payload, dict) else None,
        )
        logger.info(f"Fetched usage from API: {snapshot.usage_percent}% of five-hour limit")
        return snapshot

    async def _fetch_from_html(self, context: FetchContext) -> UsageSnapshot:
        session = context.session
        await session.navigate_to_usage()
        text = await session.page_text()
        html_usage = parse_usage_text(text)
        logger.info(f"Fetched usage from page text: {html_usage.usage_percent}%")
        return UsageSnapshot.from_html(html_usage, schema_version=SCHEMA_VERSION)

    async def _record_history(self, snapshot: UsageSnapshot) -> None:
        if self.history is None or snapshot.usage_percent is None:
            return
        try:
            await self.history.add_data_point(snapshot.usage_percent, timestamp=snapshot.timestamp)
        except Exception as e:
            logger.warning(f"Failed to record usage history: {e}")

    async def aggregate_tokens(self, since: Optional[datetime] = None) -> AggregateUsage:
        """Token totals from the local activity logs."""
        return await self.aggregator.aggregate(since=since)

    async def fetch(self, context: FetchContext, since: Optional[datetime] = None) -> FetchOutcome:
        """Acquire a snapshot and the local aggregate.

        A snapshot failure is recorded on the outcome and never prevents
        the aggregate from being computed.
        """
        outcome = FetchOutcome()

        try:
            outcome.snapshot = await self.fetch_usage(context)
        except SentinelError as e:
            logger.error(f"Usage fetch failed ({e.kind}): {e}")
            outcome.error = e
        except Exception as e:
            logger.exception(f"Unexpected error while fetching usage: {e}")
            outcome.error = SentinelError(f"Unexpected error while fetching usage: {e}")
            outcome.error.__cause__ = e

        outcome.aggregate = await self.aggregate_tokens(since=since)
        return outcome

    async def reset(self, context: FetchContext) -> None:
        """Forget captured endpoints and login state and close the browser."""
        context.observer.reset()
        await context.session.close()
        context.logged_in = False
        context.last_snapshot = None
        logger.info("Acquisition context reset")

    async def close(self, context: FetchContext) -> None:
        """Close the browser session."""
        await context.session.close()
