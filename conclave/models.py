"""Dataclasses for the Conclave debate pipeline. No I/O, no deps."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from conclave.errors import SessionClosedError


class Role(str, Enum):
    PM = "pm"                                  # VisionKeeper
    SYSTEM_PLANNER = "system-planner"          # BlueprintMaster
    UX_DESIGNER = "ux-designer"                # ExperienceCraftsman
    UI_DEVELOPER = "ui-developer"              # PixelPerfect
    BACKEND_DEVELOPER = "backend-developer"    # DataGuardian
    QA = "qa"                                  # QualityGatekeeper
    DEVOPS = "devops"                          # InfrastructureKeeper


class TurnType(str, Enum):
    PROPOSAL = "proposal"
    COUNTER = "counter"
    SUPPLEMENT = "supplement"
    CONSENSUS = "consensus"
    DECISION = "decision"


class OutcomeStatus(str, Enum):
    CONSENSUS = "consensus"
    MODERATOR_DECIDED = "moderator-decided"
    BUDGET_EXCEEDED = "budget-exceeded"
    MAX_TURNS_REACHED = "max-turns-reached"
    ERROR = "error"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(self.input + other.input, self.output + other.output)


@dataclass(frozen=True)
class Artifact:
    type: str       # "design-doc", "implementation-plan", "code", "test-plan", ...
    title: str
    content: str
    format: str = "markdown"


@dataclass(frozen=True)
class DebateContext:
    env: str                 # "dev", "staging", "prod"
    ticket_id: str
    summary: str
    description: str | None = None
    wiki_knowledge: str | None = None
    design_context: str | None = None
    code_context: str | None = None
    previous_decisions: str | None = None
    additional: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DebateConfig:
    topic: str
    context: DebateContext
    participants: tuple[Role, ...]
    moderator: Role
    max_turns: int = 12
    budget_usd: float = 5.0

    def __post_init__(self) -> None:
        # Accept any sequence, store an immutable tuple
        object.__setattr__(self, "participants", tuple(Role(p) for p in self.participants))
        object.__setattr__(self, "moderator", Role(self.moderator))
        if not self.participants:
            raise ValueError("participants must not be empty")
        if len(set(self.participants)) != len(self.participants):
            raise ValueError("participants must not contain duplicates")
        if self.moderator not in self.participants:
            raise ValueError(f"moderator {self.moderator.value} must be one of the participants")
        if self.max_turns <= 0:
            raise ValueError("max_turns must be positive")
        if self.budget_usd <= 0:
            raise ValueError("budget_usd must be positive")

    @property
    def debaters(self) -> list[Role]:
        """Participants other than the moderator, in config order."""
        return [p for p in self.participants if p != self.moderator]


@dataclass(frozen=True)
class DebateTurn:
    turn_number: int
    role: Role
    type: TurnType
    content: str
    artifacts: tuple[Artifact, ...] = ()
    tokens_used: TokenUsage = TokenUsage()
    model: str = ""
    duration_sec: float = 0.0
    timestamp: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class DissentingView:
    role: Role
    view: str


@dataclass
class DebateOutcome:
    status: OutcomeStatus
    decision: str
    artifacts: list[Artifact] = field(default_factory=list)
    dissenting_views: list[DissentingView] | None = None
    error: str | None = None


@dataclass
class DebateSession:
    id: str
    workflow_id: str
    config: DebateConfig
    turns: list[DebateTurn] = field(default_factory=list)
    total_tokens: TokenUsage = TokenUsage()
    total_cost_usd: float = 0.0
    duration_sec: float = 0.0
    created_at: str = field(default_factory=utc_now)
    outcome: DebateOutcome | None = None
    completed_at: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.outcome is not None

    def append_turn(self, turn: DebateTurn, cost_usd: float) -> None:
        """Append a turn and fold its usage into the running totals."""
        if self.outcome is not None:
            raise SessionClosedError(self.id, "cannot append a turn after the outcome is set")
        expected = len(self.turns) + 1
        if turn.turn_number != expected:
            raise ValueError(f"turn number {turn.turn_number} out of sequence, expected {expected}")
        self.turns.append(turn)
        self.total_tokens = self.total_tokens + turn.tokens_used
        self.total_cost_usd += cost_usd

    def close(self, outcome: DebateOutcome, duration_sec: float) -> None:
        if self.outcome is not None:
            raise SessionClosedError(self.id, "outcome already set")
        self.outcome = outcome
        self.duration_sec = duration_sec
        self.completed_at = utc_now()

    def collect_artifacts(self) -> list[Artifact]:
        return [a for t in self.turns for a in t.artifacts]

    def last_turn_of(self, role: Role) -> DebateTurn | None:
        for turn in reversed(self.turns):
            if turn.role == role:
                return turn
        return None

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DebateSession":
        cfg = data["config"]
        config = DebateConfig(
            topic=cfg["topic"],
            context=DebateContext(**cfg["context"]),
            participants=tuple(cfg["participants"]),
            moderator=cfg["moderator"],
            max_turns=cfg["max_turns"],
            budget_usd=cfg["budget_usd"],
        )
        outcome = None
        if data.get("outcome"):
            out = data["outcome"]
            dissent = out.get("dissenting_views")
            outcome = DebateOutcome(
                status=OutcomeStatus(out["status"]),
                decision=out["decision"],
                artifacts=[Artifact(**a) for a in out.get("artifacts", [])],
                dissenting_views=(
                    [DissentingView(Role(d["role"]), d["view"]) for d in dissent]
                    if dissent is not None else None
                ),
                error=out.get("error"),
            )
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            config=config,
            turns=[turn_from_dict(t) for t in data.get("turns", [])],
            total_tokens=TokenUsage(**data.get("total_tokens", {})),
            total_cost_usd=float(data.get("total_cost_usd", 0.0)),
            duration_sec=float(data.get("duration_sec", 0.0)),
            created_at=data["created_at"],
            outcome=outcome,
            completed_at=data.get("completed_at"),
        )


def turn_from_dict(data: dict[str, Any]) -> DebateTurn:
    return DebateTurn(
        turn_number=int(data["turn_number"]),
        role=Role(data["role"]),
        type=TurnType(data["type"]),
        content=data["content"],
        artifacts=tuple(Artifact(**a) for a in data.get("artifacts", [])),
        tokens_used=TokenUsage(**data.get("tokens_used", {})),
        model=data.get("model", ""),
        duration_sec=float(data.get("duration_sec", 0.0)),
        timestamp=data["timestamp"],
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {(k.value if isinstance(k, Enum) else k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class Completion:
    """One provider reply: generated text plus usage."""

    text: str
    model: str
    tokens_used: TokenUsage
    finish_reason: str = "unknown"
    latency_sec: float = 0.0
