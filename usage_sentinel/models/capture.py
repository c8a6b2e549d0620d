"""Pydantic models for browser session state and captured endpoints."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class SessionMode(str, Enum):
    """How the controlled browser was obtained."""
    OWNED = "owned"           # launched by us, terminated on close
    ATTACHED = "attached"     # pre-existing, only disconnected on close


class SessionState(str, Enum):
    """Lifecycle states of a browser session."""
    UNINITIALIZED = "uninitialized"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    LAUNCHING = "launching"
    OWNED = "owned"
    NEEDS_LOGIN = "needs_login"
    WAITING_FOR_LOGIN = "waiting_for_login"
    LOGGED_IN = "logged_in"
    READY = "ready"
    CLOSED = "closed"


class EndpointCategory(str, Enum):
    """Categories of internal data endpoints worth capturing."""
    USAGE = "usage"
    CREDITS = "credits"
    OVERAGE_LIMIT = "overage_limit"


class EndpointDescriptor(BaseModel):
    """Declarative matcher for an internal endpoint.

    A URL matches when its path starts with ``path_prefix`` and contains
    ``path_substring``. Query strings and IDs are ignored on purpose.
    """

    model_config = {"frozen": True}

    category: EndpointCategory = Field(description="Category this endpoint feeds")
    path_prefix: str = Field(description="Required path prefix")
    path_substring: str = Field(description="Required path fragment")
    description: str = Field(default="", description="Human readable purpose")

    def matches(self, url: str) -> bool:
        """Check whether a request URL matches this descriptor."""
        path = urlparse(url).path
        return path.startswith(self.path_prefix) and self.path_substring in path


class CapturedEndpoint(BaseModel):
    """A data endpoint discovered from live traffic."""

    model_config = {"frozen": True}

    category: EndpointCategory = Field(description="Endpoint category")
    url: str = Field(description="Full request URL as observed")
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Request headers as observed"
    )
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the request was first observed"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        result = urlparse(v)
        if not result.scheme or not result.netloc:
            raise ValueError(f"Invalid URL: {v}")
        return v


class SessionInfo(BaseModel):
    """Snapshot of a browser session for diagnostics."""

    mode: Optional[SessionMode] = Field(default=None, description="Owned or attached")
    state: SessionState = Field(description="Current lifecycle state")
    cookie_store_location: str = Field(description="Persistent profile directory")
