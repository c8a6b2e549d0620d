"""Data models for usage-sentinel."""

from .capture import (
    SessionMode,
    SessionState,
    EndpointCategory,
    EndpointDescriptor,
    CapturedEndpoint,
    SessionInfo,
)
from .usage import (
    LimitWindow,
    MonthlyCredits,
    HtmlUsage,
    UsageSnapshot,
    usage_level,
)
from .logs import LogRecord, AggregateUsage

__all__ = [
    # Session and capture
    'SessionMode',
    'SessionState',
    'EndpointCategory',
    'EndpointDescriptor',
    'CapturedEndpoint',
    'SessionInfo',

    # Usage
    'LimitWindow',
    'MonthlyCredits',
    'HtmlUsage',
    'UsageSnapshot',
    'usage_level',

    # Local logs
    'LogRecord',
    'AggregateUsage',
]
