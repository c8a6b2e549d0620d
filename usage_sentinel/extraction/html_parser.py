"""Pattern-based fallback extraction from rendered page text.

Used only when structured endpoint replay is unavailable or fails.
"""

import logging
import re

from ..errors import HtmlParseError
from ..models.usage import HtmlUsage
from ..utils.reset_time import UNKNOWN

logger = logging.getLogger(__name__)


USAGE_PERCENT_PATTERN = re.compile(r'(\d+)%\s*used', re.IGNORECASE)
RESET_PATTERN = re.compile(r'Resets?\s+in\s+([^\n]+)', re.IGNORECASE)

LAYOUT_CHANGED_MESSAGE = (
    "Expected usage data not found on the page - "
    "the source layout may have changed"
)


def parse_usage_text(text: str) -> HtmlUsage:
    """Extract the usage percentage and reset phrase from page text.

    Args:
        text: Visible text of the usage page

    Returns:
        HtmlUsage with the first percentage found and the reset phrase,
        or "Unknown" when no reset phrase is present

    Raises:
        HtmlParseError: If no percentage is present. A missing figure is
            not the same as 0% used.
    """
    if not text:
        raise HtmlParseError(LAYOUT_CHANGED_MESSAGE)

    usage_match = USAGE_PERCENT_PATTERN.search(text)
    if not usage_match:
        logger.warning(f"Usage percentage not found in page text: {text[:200]!r}")
        raise HtmlParseError(LAYOUT_CHANGED_MESSAGE)

    usage_percent = min(int(usage_match.group(1)), 100)

    reset_match = RESET_PATTERN.search(text)
    reset_time = reset_match.group(1).strip() if reset_match else ""

    return HtmlUsage(
        usage_percent=usage_percent,
        reset_time=reset_time or UNKNOWN,
    )
