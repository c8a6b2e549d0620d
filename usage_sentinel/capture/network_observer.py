"""Passive network observer that discovers internal data endpoints.

This module provides the EndpointObserver class that hooks into Playwright
request events, classifies each outbound request against declarative
endpoint descriptors and remembers the first URL and headers seen for each
category so they can be replayed later. Requests are only observed; they
are never routed, blocked or modified.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import Request

from ..extraction.schema import API_ENDPOINTS
from ..models.capture import CapturedEndpoint, EndpointCategory, EndpointDescriptor

logger = logging.getLogger(__name__)


class EndpointObserver:
    """Observes requests and captures matching endpoints, first writer wins."""

    def __init__(self, descriptors: Optional[Sequence[EndpointDescriptor]] = None):
        """Initialize endpoint observer.

        Args:
            descriptors: Ordered endpoint descriptors (defaults to API_ENDPOINTS)
        """
        self.descriptors: List[EndpointDescriptor] = list(descriptors or API_ENDPOINTS)
        self._captured: Dict[EndpointCategory, CapturedEndpoint] = {}
        self._targets: List[Any] = []
        self.requests_seen = 0

    def attach(self, target: Any) -> bool:
        """Start observing requests on a Playwright BrowserContext or Page.

        Returns:
            True if the listener was registered. Failure is logged and
            reported, never raised; acquisition then relies on the fallback.
        """
        if target is None:
            return False
        if any(existing is target for existing in self._targets):
            return True

        try:
            target.on("request", self._on_request)
        except Exception as e:
            logger.warning(f"Could not enable request interception: {e}")
            return False

        self._targets.append(target)
        logger.debug("Endpoint observer attached")
        return True

    def detach(self) -> None:
        """Stop observing all attached targets."""
        for target in self._targets:
            try:
                target.remove_listener("request", self._on_request)
            except Exception as e:
                logger.debug(f"Failed to remove request listener: {e}")
        self._targets.clear()

    def _classify(self, url: str) -> Optional[EndpointDescriptor]:
        for descriptor in self.descriptors:
            if descriptor.matches(url):
                return descriptor
        return None

    def _on_request(self, request: Request) -> None:
        """Handle request start event.

        Runs synchronously inside the event dispatch, so it must stay
        cheap and must never raise.
        """
        try:
            self.requests_seen += 1
            url = request.url
            descriptor = self._classify(url)
            if descriptor is None:
                return

            if descriptor.category in self._captured:
                logger.debug(f"Ignoring additional {descriptor.category.value} endpoint: {url}")
                return

            headers = {}
            try:
                headers = dict(request.headers)
            except Exception as e:
                logger.debug(f"Failed to extract request headers: {e}")

            self._captured[descriptor.category] = CapturedEndpoint(
                category=descriptor.category,
                url=url,
                headers=headers,
            )
            logger.info(f"Captured {descriptor.category.value} endpoint: {url}")

        except Exception as e:
            logger.error(f"Error observing request: {e}")

    def get(self, category: EndpointCategory) -> Optional[CapturedEndpoint]:
        """Get the captured endpoint for a category, if any."""
        return self._captured.get(category)

    def has(self, category: EndpointCategory) -> bool:
        """Check whether a category has been captured."""
        return category in self._captured

    @property
    def captured(self) -> Dict[EndpointCategory, CapturedEndpoint]:
        """Copy of all captured endpoints."""
        return dict(self._captured)

    @property
    def is_attached(self) -> bool:
        """Whether at least one target is being observed."""
        return bool(self._targets)

    def reset(self) -> None:
        """Forget all captured endpoints."""
        self._captured.clear()
        logger.debug("Captured endpoints cleared")

    def __repr__(self) -> str:
        """String representation of endpoint observer."""
        categories = ", ".join(c.value for c in self._captured)
        return f"EndpointObserver(captured=[{categories}], attached={self.is_attached})"
