"""Pydantic models for normalized usage snapshots.

Percentages are always in [0, 100] or None. None means the source field
was structurally absent; it is never coerced to 0.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..utils.reset_time import UNKNOWN, time_until


class LimitWindow(BaseModel):
    """Utilization of one rate-limit window."""

    model_config = {"frozen": True}

    utilization: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        description="Percent of the window used (None when not reported)"
    )
    resets_at: Optional[str] = Field(
        default=None,
        description="ISO-8601 reset timestamp as reported"
    )


class MonthlyCredits(BaseModel):
    """Monthly overage spend converted to major currency units."""

    model_config = {"frozen": True}

    used: float = Field(description="Credits used this month")
    limit: float = Field(description="Monthly credit limit")
    currency: str = Field(default="USD", description="ISO currency code")
    percent: int = Field(ge=0, description="Share of the limit used")
    out_of_credits: bool = Field(default=False, description="Whether the limit is exhausted")


class HtmlUsage(BaseModel):
    """Usage figures scraped from the rendered page text."""

    model_config = {"frozen": True}

    usage_percent: int = Field(ge=0, le=100, description="Percent used")
    reset_time: str = Field(default=UNKNOWN, description="Relative reset phrase")


class UsageSnapshot(BaseModel):
    """One immutable, normalized result of a successful fetch."""

    model_config = {"frozen": True}

    five_hour: LimitWindow = Field(default_factory=LimitWindow)
    seven_day: LimitWindow = Field(default_factory=LimitWindow)
    seven_day_per_model: Dict[str, LimitWindow] = Field(
        default_factory=dict,
        description="Per-model seven day windows keyed by model name"
    )
    extra_usage: Optional[Any] = Field(default=None, description="Extra usage field as reported")
    monthly_credits: Optional[MonthlyCredits] = Field(default=None)
    prepaid_credits: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Prepaid credits payload as reported"
    )
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    schema_version: str = Field(description="Version of the schema used to extract")
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    source: str = Field(default="api", description="'api' or 'html'")
    reset_time_text: Optional[str] = Field(
        default=None,
        description="Reset phrase scraped from the page (html source only)"
    )

    @property
    def usage_percent(self) -> Optional[float]:
        """Five-hour utilization, the headline figure."""
        return self.five_hour.utilization

    @property
    def reset_time(self) -> str:
        """Relative time until the five-hour window resets."""
        if self.reset_time_text is not None:
            return self.reset_time_text
        if self.five_hour.resets_at is None:
            return UNKNOWN
        return time_until(self.five_hour.resets_at, self.timestamp)

    @classmethod
    def from_html(cls, html_usage: HtmlUsage, schema_version: str, timestamp: Optional[datetime] = None):
        """Create a snapshot from fallback page scraping."""
        return cls(
            five_hour=LimitWindow(utilization=html_usage.usage_percent),
            timestamp=timestamp or datetime.now(timezone.utc),
            schema_version=schema_version,
            raw_payload={"html": html_usage.model_dump()},
            source="html",
            reset_time_text=html_usage.reset_time,
        )


def usage_level(percent: Optional[float]) -> str:
    """Classify a usage percentage for display."""
    if percent is None:
        return "unknown"
    if percent >= 90:
        return "critical"
    if percent >= 80:
        return "warning"
    return "normal"
