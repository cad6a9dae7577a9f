"""Observer: structured event stream and advisory anomaly detection for one session."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from conclave.models import DebateTurn, Role, utc_now

logger = logging.getLogger(__name__)

HASH_PREFIX_CHARS = 500
LOOP_REPETITIONS = 3
SPIKE_MIN_PRIOR_TURNS = 3
SPIKE_RATIO = 2.0
WARNING_RATIO = 0.8
CRITICAL_RATIO = 0.95


class EventType(str, Enum):
    TURN_START = "turn_start"
    TURN_END = "turn_end"
    BUDGET_WARNING = "budget_warning"
    ANOMALY_DETECTED = "anomaly_detected"
    GATE_RESULT = "gate_result"


class AnomalyType(str, Enum):
    INFINITE_LOOP = "infinite-loop"
    TOKEN_SPIKE = "token-spike"
    TIMEOUT_APPROACHING = "timeout-approaching"
    COST_SPIKE = "cost-spike"


class Severity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ObserverEvent:
    type: EventType
    session_id: str
    data: dict[str, Any]
    role: Role | None = None
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class AnomalyAlert:
    type: AnomalyType
    session_id: str
    message: str
    severity: Severity
    data: dict[str, Any]
    timestamp: str = field(default_factory=utc_now)


EventListener = Callable[[ObserverEvent], None]
AnomalyListener = Callable[[AnomalyAlert], None]


@dataclass(frozen=True)
class _TurnRecord:
    role: Role
    content_hash: int
    tokens: int


def content_hash(text: str) -> int:
    """32-bit rolling hash of the first 500 characters. Not cryptographic."""
    h = 0
    for ch in text[:HASH_PREFIX_CHARS]:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


class Observer:
    """Records every event of one session and flags anomalies after each turn.

    Alerts are advisory: the observer never stops a debate, it only reports.
    Listener exceptions are logged and do not reach the caller.

    Args:
        session_id: Session the events belong to.
        budget_total_usd: Budget the cost-spike detector measures against.
        timeout_sec: Wall-clock limit the timeout detector measures against.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        session_id: str,
        budget_total_usd: float,
        timeout_sec: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_id = session_id
        self._budget_total_usd = budget_total_usd
        self._timeout_sec = timeout_sec
        self._clock = clock
        self._started_at = clock()
        self._events: list[ObserverEvent] = []
        self._history: list[_TurnRecord] = []
        self._event_listeners: list[EventListener] = []
        self._anomaly_listeners: list[AnomalyListener] = []

    @property
    def events(self) -> tuple[ObserverEvent, ...]:
        """Snapshot of all events emitted so far, oldest first."""
        return tuple(self._events)

    def on_event(self, listener: EventListener) -> None:
        """Subscribe ``listener`` to every future event, anomalies included."""
        self._event_listeners.append(listener)

    def on_anomaly(self, listener: AnomalyListener) -> None:
        """Subscribe ``listener`` to anomaly alerts only."""
        self._anomaly_listeners.append(listener)

    def _emit(self, event_type: EventType, data: dict[str, Any], role: Role | None = None) -> None:
        event = ObserverEvent(type=event_type, session_id=self._session_id, data=data, role=role)
        self._events.append(event)
        logger.debug("Observer event %s: %s", event_type.value, data)
        for listener in self._event_listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event_type.value)

    def _emit_anomaly(self, alert: AnomalyAlert) -> None:
        logger.warning("Anomaly detected [%s] %s", alert.severity.value, alert.message)
        self._emit(
            EventType.ANOMALY_DETECTED,
            {"anomaly": alert.type.value, "severity": alert.severity.value, "message": alert.message, **alert.data},
            role=alert.data.get("role"),
        )
        for listener in self._anomaly_listeners:
            try:
                listener(alert)
            except Exception:
                logger.exception("Anomaly listener failed for %s", alert.type.value)

    def on_turn_start(self, role: Role, turn_number: int) -> None:
        self._emit(EventType.TURN_START, {"turn_number": turn_number}, role=role)

    def on_turn_end(self, turn: DebateTurn, accumulated_cost_usd: float) -> list[AnomalyAlert]:
        """Record a finished turn and run every anomaly detector on it.

        Args:
            turn: The completed turn.
            accumulated_cost_usd: Session cost including this turn.

        Returns:
            Alerts raised by this turn, in detector order: loop, token spike,
            timeout, cost. Each alert is also emitted as an event.
        """
        self._emit(
            EventType.TURN_END,
            {
                "turn_number": turn.turn_number,
                "type": turn.type.value,
                "tokens_input": turn.tokens_used.input,
                "tokens_output": turn.tokens_used.output,
                "duration_sec": turn.duration_sec,
                "model": turn.model,
            },
            role=turn.role,
        )

        record = _TurnRecord(turn.role, content_hash(turn.content), turn.tokens_used.total)
        prior = list(self._history)
        self._history.append(record)

        checks = (
            self._detect_infinite_loop(record),
            self._detect_token_spike(record.tokens, prior),
            self._detect_timeout_approaching(),
            self._detect_cost_spike(accumulated_cost_usd),
        )
        alerts = [a for a in checks if a is not None]
        for alert in alerts:
            self._emit_anomaly(alert)
        return alerts

    def on_gate_result(self, gate: str, passed: bool, duration_sec: float) -> None:
        self._emit(EventType.GATE_RESULT, {"gate": gate, "passed": passed, "duration_sec": duration_sec})

    def on_budget_warning(self, message: str, data: dict[str, Any]) -> None:
        """Emit a budget warning raised outside the detectors, e.g. a per-turn token overrun."""
        self._emit(EventType.BUDGET_WARNING, {"message": message, **data})

    # ─── Anomaly detection ──────────────────────────────────────────────────────

    def _alert(self, anomaly: AnomalyType, message: str, severity: Severity, data: dict[str, Any]) -> AnomalyAlert:
        return AnomalyAlert(
            type=anomaly, session_id=self._session_id, message=message, severity=severity, data=data
        )

    def _detect_infinite_loop(self, record: _TurnRecord) -> AnomalyAlert | None:
        # history already includes record
        repetitions = sum(
            1 for r in self._history if r.role == record.role and r.content_hash == record.content_hash
        )
        if repetitions < LOOP_REPETITIONS:
            return None
        return self._alert(
            AnomalyType.INFINITE_LOOP,
            f"Role {record.role.value} has repeated the same content {repetitions} times",
            Severity.CRITICAL,
            {"role": record.role, "repetitions": repetitions},
        )

    def _detect_token_spike(self, current: int, prior: list[_TurnRecord]) -> AnomalyAlert | None:
        """Warn when a turn uses more than twice the average of the turns before it."""
        if len(prior) < SPIKE_MIN_PRIOR_TURNS:
            return None
        average = sum(r.tokens for r in prior) / len(prior)
        if current <= average * SPIKE_RATIO:
            return None
        return self._alert(
            AnomalyType.TOKEN_SPIKE,
            f"Token spike detected: {current} tokens (avg: {round(average)})",
            Severity.WARNING,
            {"current": current, "average": round(average), "ratio": current / average if average else None},
        )

    def _detect_timeout_approaching(self) -> AnomalyAlert | None:
        elapsed = self._clock() - self._started_at
        ratio = elapsed / self._timeout_sec
        if ratio < WARNING_RATIO:
            return None
        percent = round(ratio * 100)
        return self._alert(
            AnomalyType.TIMEOUT_APPROACHING,
            f"Timeout approaching: {percent}% of {self._timeout_sec}s elapsed",
            Severity.CRITICAL if ratio >= CRITICAL_RATIO else Severity.WARNING,
            {"elapsed_sec": elapsed, "timeout_sec": self._timeout_sec, "percent": percent},
        )

    def _detect_cost_spike(self, accumulated_cost_usd: float) -> AnomalyAlert | None:
        ratio = accumulated_cost_usd / self._budget_total_usd
        if ratio < WARNING_RATIO:
            return None
        percent = round(ratio * 100)
        return self._alert(
            AnomalyType.COST_SPIKE,
            f"Cost at {percent}% of budget (${accumulated_cost_usd:.4f} / ${self._budget_total_usd})",
            Severity.CRITICAL if ratio >= CRITICAL_RATIO else Severity.WARNING,
            {"accumulated": accumulated_cost_usd, "budget": self._budget_total_usd, "percent": percent},
        )
