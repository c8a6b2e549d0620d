"""Usage Sentinel - Claude plan usage tracking.

Acquires rate-limit utilization from the claude.ai usage page through a
controlled browser and sums token usage from local activity logs.
"""

__version__ = "0.1.0"

from .errors import (
    SentinelError,
    BrowserConnectionError,
    ProfileLockedError,
    NetworkUnreachableError,
    AuthenticationTimeout,
    ApiFetchError,
    HtmlParseError,
    ConfigLoadError,
)
from .orchestrator import AcquisitionOrchestrator, FetchContext, FetchOutcome

__all__ = [
    '__version__',
    'SentinelError',
    'BrowserConnectionError',
    'ProfileLockedError',
    'NetworkUnreachableError',
    'AuthenticationTimeout',
    'ApiFetchError',
    'HtmlParseError',
    'ConfigLoadError',
    'AcquisitionOrchestrator',
    'FetchContext',
    'FetchOutcome',
]
