"""Development session ledger with token usage against a context limit.

Sessions are kept in a JSON document: each one records when it started
and ended, its latest token count against a limit, and the activities and
files touched while it was open. The most recent session is the active
one unless another was started through this tracker.
"""

import json
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from .models.usage import usage_level

logger = logging.getLogger(__name__)


DEFAULT_SESSION_FILENAME = "claude-session-data.json"
DEFAULT_TOKEN_LIMIT = 200000


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TokenUsage(BaseModel):
    """Token count of one session against its limit."""

    current: int = Field(default=0, ge=0)
    limit: int = Field(default=DEFAULT_TOKEN_LIMIT, ge=0)
    remaining: int = Field(default=DEFAULT_TOKEN_LIMIT)
    last_update: datetime = Field(default_factory=_now, alias="lastUpdate")

    model_config = {"populate_by_name": True}

    @property
    def percent(self) -> Optional[int]:
        """Share of the limit used, or None without a limit."""
        if self.limit <= 0:
            return None
        return round(self.current / self.limit * 100)

    @property
    def level(self) -> str:
        return usage_level(self.percent)


class TrackedSession(BaseModel):
    """One development session."""

    session_id: str = Field(alias="sessionId")
    start_time: datetime = Field(default_factory=_now, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    description: str = "Development session"
    token_usage: TokenUsage = Field(default_factory=TokenUsage, alias="tokenUsage")
    activities: List[str] = Field(default_factory=list)
    file_changes: List[str] = Field(default_factory=list, alias="fileChanges")

    model_config = {"populate_by_name": True}

    @property
    def is_active(self) -> bool:
        return self.end_time is None


class SessionTotals(BaseModel):
    total_sessions: int = Field(default=0, alias="totalSessions")
    total_tokens_used: int = Field(default=0, alias="totalTokensUsed")
    last_session_date: Optional[datetime] = Field(default=None, alias="lastSessionDate")

    model_config = {"populate_by_name": True}


class SessionLedger(BaseModel):
    """On-disk session document."""

    sessions: List[TrackedSession] = Field(default_factory=list)
    totals: SessionTotals = Field(default_factory=SessionTotals)


class SessionSummary(BaseModel):
    total_sessions: int = 0
    total_tokens: int = 0
    average_tokens_per_session: int = 0
    last_session: Optional[TrackedSession] = None


class SessionTracker:
    """Reads and updates the session ledger file."""

    def __init__(
        self,
        session_file: Optional[Union[str, Path]] = None,
        token_limit: int = DEFAULT_TOKEN_LIMIT,
    ):
        self.session_file = Path(session_file) if session_file else (
            Path(tempfile.gettempdir()) / DEFAULT_SESSION_FILENAME
        )
        self.token_limit = token_limit
        self._current_id: Optional[str] = None

    async def load(self) -> SessionLedger:
        """Read the ledger. Missing or corrupt files read as empty."""
        try:
            async with aiofiles.open(self.session_file, 'r', encoding='utf-8') as f:
                content = await f.read()
        except FileNotFoundError:
            return SessionLedger()
        except OSError as e:
            logger.warning(f"Cannot read session ledger {self.session_file}: {e}")
            return SessionLedger()

        try:
            return SessionLedger.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring corrupt session ledger {self.session_file}: {e}")
            return SessionLedger()

    async def save(self, ledger: SessionLedger) -> None:
        """Write the ledger."""
        payload = ledger.model_dump(mode='json', by_alias=True)
        async with aiofiles.open(self.session_file, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(payload, indent=2))

    def _active(self, ledger: SessionLedger) -> Optional[TrackedSession]:
        if self._current_id is not None:
            for session in ledger.sessions:
                if session.session_id == self._current_id:
                    return session
        return ledger.sessions[-1] if ledger.sessions else None

    async def start_session(self, description: str = "Development session") -> TrackedSession:
        """Open a new session and make it the active one."""
        ledger = await self.load()
        started = _now()
        number = len(ledger.sessions) + 1

        session = TrackedSession(
            session_id=f"session-{started.date().isoformat()}-{number:03d}",
            start_time=started,
            description=description,
            token_usage=TokenUsage(
                limit=self.token_limit,
                remaining=self.token_limit,
                last_update=started,
            ),
        )

        ledger.sessions.append(session)
        ledger.totals.total_sessions = len(ledger.sessions)
        ledger.totals.last_session_date = started
        await self.save(ledger)

        self._current_id = session.session_id
        logger.info(f"Started session {session.session_id}")
        return session

    async def update_tokens(self, tokens_used: int, token_limit: Optional[int] = None) -> Optional[TrackedSession]:
        """Record the active session's token count.

        ``remaining`` may go negative when the limit is exceeded.
        """
        ledger = await self.load()
        session = self._active(ledger)
        if session is None:
            logger.warning("No active session to update")
            return None

        limit = self.token_limit if token_limit is None else token_limit
        session.token_usage = TokenUsage(
            current=tokens_used,
            limit=limit,
            remaining=limit - tokens_used,
        )
        ledger.totals.total_tokens_used = sum(s.token_usage.current for s in ledger.sessions)

        await self.save(ledger)
        return session

    async def add_activity(self, activity: str) -> Optional[TrackedSession]:
        """Note an activity on the active session once."""
        ledger = await self.load()
        session = self._active(ledger)
        if session is None:
            logger.warning("No active session to add activity to")
            return None

        if activity not in session.activities:
            session.activities.append(activity)
            await self.save(ledger)
        return session

    async def add_file_changes(self, files: Union[str, Iterable[str]]) -> Optional[TrackedSession]:
        """Note changed files on the active session once each."""
        ledger = await self.load()
        session = self._active(ledger)
        if session is None:
            logger.warning("No active session to add file changes to")
            return None

        if isinstance(files, str):
            files = [files]
        for file_name in files:
            if file_name not in session.file_changes:
                session.file_changes.append(file_name)

        await self.save(ledger)
        return session

    async def end_session(self) -> Optional[TrackedSession]:
        """Close the active session."""
        ledger = await self.load()
        session = self._active(ledger)
        if session is None:
            logger.warning("No active session to end")
            return None

        session.end_time = _now()
        await self.save(ledger)
        self._current_id = None
        logger.info(f"Ended session {session.session_id}")
        return session

    async def current_session(self) -> Optional[TrackedSession]:
        """The active session, or the most recent one."""
        return self._active(await self.load())

    async def summary(self) -> SessionSummary:
        """Totals across all recorded sessions."""
        ledger = await self.load()
        count = len(ledger.sessions)
        total = ledger.totals.total_tokens_used
        return SessionSummary(
            total_sessions=count,
            total_tokens=total,
            average_tokens_per_session=round(total / count) if count else 0,
            last_session=ledger.sessions[-1] if ledger.sessions else None,
        )

    async def reset_session_tokens(self) -> Optional[TrackedSession]:
        """Zero the active session's token count, keeping its limit."""
        ledger = await self.load()
        session = self._active(ledger)
        if session is None:
            logger.info("No session to reset")
            return None

        limit = session.token_usage.limit
        session.token_usage = TokenUsage(current=0, limit=limit, remaining=limit)
        ledger.totals.total_tokens_used = sum(s.token_usage.current for s in ledger.sessions)

        await self.save(ledger)
        logger.info(f"Session tokens reset for {session.session_id}")
        return session
