"""Library exceptions. Expected budget conditions are GuardViolation values, not these."""

from typing import Any


class SessionClosedError(Exception):
    """Raised when a closed DebateSession is mutated."""

    def __init__(self, session_id: str, message: str) -> None:
        self.session_id = session_id
        super().__init__(f"[{session_id}] {message}")


class DebateTimeoutError(Exception):
    """Raised by the engine when the cooperative debate timeout is hit before a turn."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class RoutingError(Exception):
    """Raised when a role has no provider and no fallback is configured."""
