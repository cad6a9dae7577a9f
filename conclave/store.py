"""Debate persistence: one JSON document per session."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from conclave.models import DebateOutcome, DebateSession, DebateTurn, TokenUsage

logger = logging.getLogger(__name__)


class DebateStore(ABC):
    """Where debate sessions are recorded for later audit."""

    @abstractmethod
    async def save(self, session: DebateSession) -> None:
        """Record a new session before its first turn."""
        ...

    @abstractmethod
    async def update_turns(
        self,
        session_id: str,
        turns: Sequence[DebateTurn],
        total_tokens: TokenUsage,
        total_cost_usd: float,
    ) -> None:
        """Replace the stored turn list and running totals of an open session."""
        ...

    @abstractmethod
    async def complete(self, session_id: str, outcome: DebateOutcome, duration_sec: float) -> None:
        """Attach the terminal outcome. A session can be completed once."""
        ...

    @abstractmethod
    async def get(self, session_id: str) -> DebateSession | None:
        """The stored session, or None when it was never saved."""
        ...

    @abstractmethod
    async def get_by_workflow(self, workflow_id: str) -> list[DebateSession]:
        """All sessions started under ``workflow_id``, oldest first."""
        ...


class FileDebateStore(DebateStore):
    """Writes ``<directory>/<session id>.json``. File I/O runs off the event loop.

    Failures are logged and re-raised; the caller decides whether they are fatal.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def path_for(self, session_id: str) -> Path:
        return self._directory / f"{session_id}.json"

    def _write(self, session: DebateSession) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(session.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(session.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _read(self, session_id: str) -> DebateSession | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        return DebateSession.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def _read_existing(self, session_id: str) -> DebateSession:
        session = self._read(session_id)
        if session is None:
            raise KeyError(f"Debate session not found: {session_id}")
        return session

    def _scan_workflow(self, workflow_id: str) -> list[DebateSession]:
        if not self._directory.is_dir():
            return []
        sessions = []
        for path in sorted(self._directory.glob("*.json")):
            data = json.loads(path.read_text(encoding="utf-8"))
            if data.get("workflow_id") == workflow_id:
                sessions.append(DebateSession.from_dict(data))
        return sorted(sessions, key=lambda s: s.created_at)

    async def save(self, session: DebateSession) -> None:
        try:
            await asyncio.to_thread(self._write, session)
        except Exception:
            logger.exception("Failed to save debate session %s", session.id)
            raise
        logger.debug("Debate session saved: %s", session.id)

    async def update_turns(
        self,
        session_id: str,
        turns: Sequence[DebateTurn],
        total_tokens: TokenUsage,
        total_cost_usd: float,
    ) -> None:
        """Rewrite the session file with the current turns and totals.

        Raises:
            KeyError: If the session was never saved.
        """

        def _update() -> None:
            session = self._read_existing(session_id)
            session.turns = list(turns)
            session.total_tokens = total_tokens
            session.total_cost_usd = total_cost_usd
            self._write(session)

        try:
            await asyncio.to_thread(_update)
        except Exception:
            logger.exception("Failed to update turns for debate session %s", session_id)
            raise

    async def complete(self, session_id: str, outcome: DebateOutcome, duration_sec: float) -> None:
        """Close the stored session with ``outcome``.

        Raises:
            KeyError: If the session was never saved.
            SessionClosedError: If the stored session already has an outcome.
        """

        def _complete() -> None:
            session = self._read_existing(session_id)
            session.close(outcome, duration_sec)
            self._write(session)

        try:
            await asyncio.to_thread(_complete)
        except Exception:
            logger.exception("Failed to complete debate session %s", session_id)
            raise
        logger.info("Debate session completed: %s (%s)", session_id, outcome.status.value)

    async def get(self, session_id: str) -> DebateSession | None:
        return await asyncio.to_thread(self._read, session_id)

    async def get_by_workflow(self, workflow_id: str) -> list[DebateSession]:
        try:
            return await asyncio.to_thread(self._scan_workflow, workflow_id)
        except Exception:
            logger.exception("Failed to list debate sessions for workflow %s", workflow_id)
            raise
