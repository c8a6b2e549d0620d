"""Usage history persistence and sparkline rendering.

A small JSON document in the temp directory keeps the most recent
five-hour utilization readings so a trend can be drawn between fetches.
"""

import json
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

import aiofiles
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


DEFAULT_HISTORY_FILENAME = "claude-usage-history.json"
DEFAULT_MAX_DATA_POINTS = 48
SPARKLINE_CHARS = ['▁', '▂', '▃', '▄', '▅', '▆', '▇', '█']


class HistoryPoint(BaseModel):
    """One five-hour utilization reading."""

    timestamp: datetime
    five_hour: float = Field(alias="fiveHour")

    model_config = {"populate_by_name": True}


class HistoryData(BaseModel):
    """On-disk history document."""

    data_points: List[HistoryPoint] = Field(default_factory=list, alias="dataPoints")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")

    model_config = {"populate_by_name": True}


def generate_sparkline(values: Sequence[float]) -> str:
    """Render values in [0, 100] as block characters.

    A flat series is placed by absolute level; otherwise values are
    normalized between the series minimum and maximum.
    """
    if not values:
        return SPARKLINE_CHARS[0] * 8

    low = min(values)
    high = max(values)
    spread = high - low

    if spread == 0:
        index = min(max(int(values[0] // 12.5), 0), 7)
        return SPARKLINE_CHARS[index] * len(values)

    return ''.join(
        SPARKLINE_CHARS[min(int((value - low) / spread * 7.99), 7)]
        for value in values
    )


class UsageHistory:
    """Keeps the last N five-hour readings in a JSON file."""

    def __init__(
        self,
        history_file: Optional[Union[str, Path]] = None,
        max_data_points: int = DEFAULT_MAX_DATA_POINTS,
    ):
        self.history_file = Path(history_file) if history_file else (
            Path(tempfile.gettempdir()) / DEFAULT_HISTORY_FILENAME
        )
        self.max_data_points = max_data_points

    async def load(self) -> HistoryData:
        """Read the history file. Missing or corrupt files read as empty."""
        try:
            async with aiofiles.open(self.history_file, 'r', encoding='utf-8') as f:
                content = await f.read()
        except FileNotFoundError:
            return HistoryData()
        except OSError as e:
            logger.warning(f"Cannot read usage history {self.history_file}: {e}")
            return HistoryData()

        try:
            return HistoryData.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring corrupt usage history {self.history_file}: {e}")
            return HistoryData()

    async def save(self, data: HistoryData) -> None:
        """Write the history file."""
        payload = data.model_dump(mode='json', by_alias=True)
        async with aiofiles.open(self.history_file, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(payload, indent=2))

    async def add_data_point(self, five_hour: float, timestamp: Optional[datetime] = None) -> HistoryPoint:
        """Append a reading and drop the oldest beyond the limit."""
        data = await self.load()
        point = HistoryPoint(
            timestamp=timestamp or datetime.now(timezone.utc),
            five_hour=five_hour,
        )

        data.data_points.append(point)
        if len(data.data_points) > self.max_data_points:
            data.data_points = data.data_points[-self.max_data_points:]
        data.last_updated = point.timestamp

        await self.save(data)
        logger.debug(f"Recorded usage history point: {five_hour}%")
        return point

    async def get_recent_data_points(self, count: int = 8) -> List[HistoryPoint]:
        """The last ``count`` readings, oldest first."""
        if count <= 0:
            return []
        data = await self.load()
        return data.data_points[-count:]

    async def get_five_hour_sparkline(self, count: int = 24, aggregate_size: int = 2) -> str:
        """Sparkline of up to ``count`` characters, each averaging ``aggregate_size`` readings."""
        aggregate_size = max(aggregate_size, 1)
        points = await self.get_recent_data_points(count * aggregate_size)
        if not points:
            return SPARKLINE_CHARS[0] * count

        averages = []
        for start in range(0, len(points), aggregate_size):
            chunk = points[start:start + aggregate_size]
            averages.append(sum(p.five_hour for p in chunk) / len(chunk))

        return generate_sparkline(averages)

    async def clear_history(self) -> None:
        """Remove all readings."""
        await self.save(HistoryData())
        logger.info("Usage history cleared")
