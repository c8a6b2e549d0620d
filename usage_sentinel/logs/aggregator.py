"""Aggregation of token usage from local append-only JSONL activity logs.

Every call rescans the data directory and recomputes totals from scratch.
There is no cursor or cache; if log volume grows, a per-file byte offset
is the natural next step.
"""

import json
import logging
import math
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from ..models.logs import AggregateUsage, LogRecord
from ..utils.reset_time import parse_timestamp

logger = logging.getLogger(__name__)


DEFAULT_ENV_VAR = "CLAUDE_CONFIG_DIR"
DEFAULT_FILE_SUFFIX = ".jsonl"
SYNTHETIC_MODEL = "<synthetic>"


def default_candidate_dirs(env_var: str = DEFAULT_ENV_VAR) -> List[Path]:
    """Candidate log directories in lookup order.

    Entries from the comma-separated environment variable come first,
    followed by the XDG and legacy locations.
    """
    candidates: List[Path] = []

    env_value = os.environ.get(env_var)
    if env_value:
        candidates.extend(
            Path(entry.strip()).expanduser()
            for entry in env_value.split(',')
            if entry.strip()
        )

    home = Path.home()
    candidates.append(home / ".config" / "claude" / "projects")
    candidates.append(home / ".claude" / "projects")
    return candidates


class LogAggregator:
    """Discovers, parses, validates, deduplicates and sums log records."""

    def __init__(
        self,
        candidate_dirs: Optional[Sequence[Union[str, Path]]] = None,
        env_var: str = DEFAULT_ENV_VAR,
        file_suffix: str = DEFAULT_FILE_SUFFIX,
    ):
        """Initialize log aggregator.

        Args:
            candidate_dirs: Explicit directories to check, in order. When
                None, the environment variable and standard locations
                are used (resolved on each lookup).
            env_var: Environment variable holding extra directories
            file_suffix: Suffix of log files to collect
        """
        self._candidate_dirs = [Path(d).expanduser() for d in candidate_dirs] if candidate_dirs else None
        self.env_var = env_var
        self.file_suffix = file_suffix

    @property
    def candidate_dirs(self) -> List[Path]:
        """Directories checked by find_data_directory, in order."""
        if self._candidate_dirs is not None:
            return list(self._candidate_dirs)
        return default_candidate_dirs(self.env_var)

    async def find_data_directory(self) -> Optional[Path]:
        """Return the first existing candidate directory, or None."""
        for candidate in self.candidate_dirs:
            if await aiofiles.os.path.isdir(candidate):
                logger.debug(f"Found log data directory: {candidate}")
                return candidate

        logger.info("No log data directory found in any candidate location")
        return None

    async def discover_log_files(self, directory: Union[str, Path]) -> List[Path]:
        """Recursively collect log files under ``directory``.

        Unreadable directories are logged and skipped.
        """
        directory = Path(directory)
        found: List[Path] = []

        try:
            entries = await aiofiles.os.listdir(directory)
        except OSError as e:
            logger.warning(f"Cannot read directory {directory}: {e}")
            return found

        for name in sorted(entries):
            path = directory / name
            if await aiofiles.os.path.isdir(path):
                found.extend(await self.discover_log_files(path))
            elif name.endswith(self.file_suffix) and await aiofiles.os.path.isfile(path):
                found.append(path)

        return found

    @staticmethod
    def is_valid_record(record: Any) -> bool:
        """Check that a raw log entry carries real token usage.

        Requires numeric input and output token counts, and rejects
        synthetic placeholder messages and API error messages.
        """
        if not isinstance(record, dict):
            return False

        message = record.get('message')
        if not isinstance(message, dict):
            return False

        usage = message.get('usage')
        if not isinstance(usage, dict):
            return False

        for key in ('input_tokens', 'output_tokens'):
            value = usage.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if not math.isfinite(value):
                return False

        if message.get('model') == SYNTHETIC_MODEL:
            return False

        if record.get('isApiErrorMessage'):
            return False

        return True

    async def parse_file(self, file_path: Union[str, Path]) -> List[LogRecord]:
        """Parse one JSONL file into valid records.

        A malformed line is logged and skipped; it never aborts the file.
        An unreadable file yields no records.
        """
        file_path = Path(file_path)
        records: List[LogRecord] = []

        try:
            async with aiofiles.open(file_path, 'r', encoding='utf-8', errors='replace') as f:
                content = await f.read()
        except OSError as e:
            logger.error(f"Error reading log file {file_path}: {e}")
            return records

        for line_number, line in enumerate(content.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue

            try:
                raw = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed line {line_number} in {file_path}: {e}")
                continue

            if not self.is_valid_record(raw):
                continue

            try:
                record = LogRecord.from_raw(raw, timestamp=parse_timestamp(raw.get('timestamp')))
            except (ValidationError, ValueError, OverflowError) as e:
                logger.warning(f"Skipping unusable record on line {line_number} in {file_path}: {e}")
                continue

            records.append(record)

        return records

    async def load_records(self) -> List[LogRecord]:
        """Load every valid record from the data directory."""
        data_dir = await self.find_data_directory()
        if data_dir is None:
            return []

        files = await self.discover_log_files(data_dir)
        logger.debug(f"Found {len(files)} log files in {data_dir}")

        records: List[LogRecord] = []
        for file_path in files:
            records.extend(await self.parse_file(file_path))
        return records

    async def aggregate(self, since: Optional[datetime] = None) -> AggregateUsage:
        """Sum token usage across all log files.

        Args:
            since: Only count records at or after this time. Records
                without a parseable timestamp are excluded when set.

        Returns:
            AggregateUsage over the deduplicated records; all zeros when
            no log directory exists.
        """
        records = await self.load_records()

        if since is not None:
            cutoff = parse_timestamp(since)
            records = [
                record for record in records
                if record.timestamp is not None and record.timestamp >= cutoff
            ]

        seen: Set[Tuple[str, str]] = set()
        totals: Dict[str, int] = {
            'input_tokens': 0,
            'output_tokens': 0,
            'cache_creation_tokens': 0,
            'cache_read_tokens': 0,
        }
        record_count = 0

        for record in records:
            key = record.dedup_key
            if key in seen:
                continue
            seen.add(key)

            totals['input_tokens'] += record.input_tokens
            totals['output_tokens'] += record.output_tokens
            totals['cache_creation_tokens'] += record.cache_creation_tokens
            totals['cache_read_tokens'] += record.cache_read_tokens
            record_count += 1

        return AggregateUsage(
            total_tokens=sum(totals.values()),
            record_count=record_count,
            **totals,
        )

    async def current_session_usage(self, now: Optional[datetime] = None) -> AggregateUsage:
        """Usage over the last hour."""
        now = now or datetime.now(timezone.utc)
        return await self.aggregate(since=now - timedelta(hours=1))

    async def today_usage(self, now: Optional[datetime] = None) -> AggregateUsage:
        """Usage since local midnight."""
        now = now or datetime.now().astimezone()
        if now.tzinfo is None:
            now = now.astimezone()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return await self.aggregate(since=start_of_day)
