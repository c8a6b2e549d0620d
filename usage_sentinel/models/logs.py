"""Pydantic models for local activity log records and their aggregate."""

import math
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field


class LogRecord(BaseModel):
    """One assistant message with token usage, read from an append-only log."""

    message_id: Optional[str] = Field(default=None, description="message.id")
    request_id: Optional[str] = Field(default=None, description="requestId")
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_creation_tokens: int = Field(default=0, ge=0)
    cache_read_tokens: int = Field(default=0, ge=0)
    timestamp: Optional[datetime] = Field(default=None, description="Record timestamp")
    model: Optional[str] = Field(default=None, description="Model that produced the message")

    @property
    def dedup_key(self) -> Tuple[str, str]:
        """Composite identity used to avoid double counting."""
        return (self.message_id or "", self.request_id or "")

    @property
    def total_tokens(self) -> int:
        """Sum of all token categories."""
        return (
            self.input_tokens +
            self.output_tokens +
            self.cache_creation_tokens +
            self.cache_read_tokens
        )

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], timestamp: Optional[datetime] = None) -> 'LogRecord':
        """Build a record from a validated raw log line."""
        message = raw.get('message') or {}
        usage = message.get('usage') or {}

        def _tokens(key: str) -> int:
            value = usage.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return 0
            if not math.isfinite(value):
                return 0
            return max(int(value), 0)

        def _text(value: Any) -> Optional[str]:
            return None if value is None else str(value)

        return cls(
            message_id=_text(message.get('id')),
            request_id=_text(raw.get('requestId')),
            input_tokens=_tokens('input_tokens'),
            output_tokens=_tokens('output_tokens'),
            cache_creation_tokens=_tokens('cache_creation_input_tokens'),
            cache_read_tokens=_tokens('cache_read_input_tokens'),
            timestamp=timestamp,
            model=_text(message.get('model')),
        )


class AggregateUsage(BaseModel):
    """Token totals over a deduplicated set of log records."""

    total_tokens: int = Field(default=0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_creation_tokens: int = Field(default=0, ge=0)
    cache_read_tokens: int = Field(default=0, ge=0)
    record_count: int = Field(default=0, ge=0)

    @property
    def is_empty(self) -> bool:
        """True when no records contributed."""
        return self.record_count == 0
