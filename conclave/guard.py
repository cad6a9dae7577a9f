"""Execution guard: per-session budget accounting and per-role tool allowlists.

Expected limits are reported as GuardViolation values and never raised.
One guard belongs to exactly one session; build a new instance per session.
"""

import logging
import os
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from conclave.models import Role, TokenUsage

logger = logging.getLogger(__name__)


class ViolationType(str, Enum):
    BUDGET_EXCEEDED = "budget_exceeded"
    TURN_LIMIT = "turn_limit"
    RETRY_LIMIT = "retry_limit"
    TIMEOUT = "timeout"
    TOOL_DENIED = "tool_denied"


@dataclass(frozen=True)
class GuardViolation:
    type: ViolationType
    message: str
    details: dict[str, Any] = field(default_factory=dict)


def _env_number(name: str, default: float, cast: Callable[[str], Any]) -> Any:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'") from exc


def _env_float(name: str, default: float) -> float:
    return _env_number(name, default, float)


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


@dataclass(frozen=True)
class ExecutionBudget:
    max_tokens_per_turn: int = 8192
    max_total_cost_usd: float = 5.0
    max_debate_turns: int = 12
    max_retries: int = 3
    codegen_timeout_sec: float = 600.0
    debate_timeout_sec: float = 1800.0

    @classmethod
    def from_env(cls, base: "ExecutionBudget | None" = None) -> "ExecutionBudget":
        """Budget from process configuration, falling back to ``base`` (or the defaults).

        Reads DEBATE_MAX_TOKENS_PER_TURN, DEBATE_COST_LIMIT_USD, DEBATE_MAX_TURNS,
        CODEGEN_MAX_RETRIES, CODEGEN_TIMEOUT_SEC and DEBATE_TIMEOUT_SEC. Unset or
        blank variables keep the base value.

        Raises:
            ValueError: If a variable is set but is not a number.
        """
        base = base or cls()
        return cls(
            max_tokens_per_turn=_env_int("DEBATE_MAX_TOKENS_PER_TURN", base.max_tokens_per_turn),
            max_total_cost_usd=_env_float("DEBATE_COST_LIMIT_USD", base.max_total_cost_usd),
            max_debate_turns=_env_int("DEBATE_MAX_TURNS", base.max_debate_turns),
            max_retries=_env_int("CODEGEN_MAX_RETRIES", base.max_retries),
            codegen_timeout_sec=_env_float("CODEGEN_TIMEOUT_SEC", base.codegen_timeout_sec),
            debate_timeout_sec=_env_float("DEBATE_TIMEOUT_SEC", base.debate_timeout_sec),
        )

    def with_overrides(self, **overrides: Any) -> "ExecutionBudget":
        """Copy with the given fields replaced; ``None`` values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


# ─── Allowlists ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Unrestricted:
    """Every tool is allowed."""

    def permits(self, tool_id: str) -> bool:
        return True


@dataclass(frozen=True)
class Restricted:
    tools: frozenset[str]

    def permits(self, tool_id: str) -> bool:
        return tool_id in self.tools


Allowlist = Unrestricted | Restricted

UNRESTRICTED = Unrestricted()
DENY_ALL = Restricted(frozenset())


def restricted(tools: Iterable[str]) -> Restricted:
    return Restricted(frozenset(tools))


DEFAULT_TOOL_ALLOWLIST: dict[Role, Allowlist] = {
    Role.PM: restricted([
        "jira_get_issue",
        "jira_search_issues",
        "jira_update_issue",
        "jira_add_comment",
        "jira_create_subtask",
    ]),
    Role.SYSTEM_PLANNER: restricted([
        "jira_get_issue",
        "github_search_code",
        "github_get_file_contents",
        "github_list_files",
    ]),
    Role.UX_DESIGNER: restricted([
        "figma_get_file",
        "figma_get_node",
        "figma_get_comments",
        "jira_get_issue",
    ]),
    Role.UI_DEVELOPER: restricted([
        "figma_get_file",
        "figma_get_node",
        "github_get_file_contents",
        "github_search_code",
        "github_list_files",
    ]),
    Role.BACKEND_DEVELOPER: restricted([
        "github_get_file_contents",
        "github_search_code",
        "github_list_files",
        "jira_get_issue",
    ]),
    Role.QA: restricted([
        "github_get_file_contents",
        "github_search_code",
        "jira_get_issue",
    ]),
    Role.DEVOPS: restricted([
        "github_get_file_contents",
        "github_list_files",
        "datadog_get_metrics",
        "datadog_get_events",
    ]),
}


# ─── Guard ─────────────────────────────────────────────────────────────────────


@dataclass
class GuardState:
    session_id: str
    budget: ExecutionBudget
    tool_allowlist: dict[Role, Allowlist]
    tokens_used: TokenUsage = TokenUsage()
    cost_accumulated: float = 0.0
    turns_elapsed: int = 0
    retries_used: int = 0
    started_at: float = 0.0


@dataclass(frozen=True)
class RemainingBudget:
    cost_remaining: float
    turns_remaining: int
    retries_remaining: int
    time_remaining_sec: float
    cost_used_percent: float


class ExecutionGuard:
    """Tracks consumption against an ExecutionBudget and enforces tool allowlists."""

    def __init__(
        self,
        session_id: str,
        budget: ExecutionBudget | None = None,
        tool_allowlist: Mapping[Role, Allowlist] | None = None,
        unknown_role_policy: Allowlist = UNRESTRICTED,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._unknown_role_policy = unknown_role_policy
        self._state = GuardState(
            session_id=session_id,
            budget=budget if budget is not None else ExecutionBudget.from_env(),
            tool_allowlist={**DEFAULT_TOOL_ALLOWLIST, **(tool_allowlist or {})},
            started_at=clock(),
        )
        logger.info("ExecutionGuard initialized for %s: %s", session_id, self._state.budget)

    @property
    def budget(self) -> ExecutionBudget:
        return self._state.budget

    @property
    def state(self) -> GuardState:
        """Copy of the current state; mutating it does not affect the guard."""
        return replace(self._state, tool_allowlist=dict(self._state.tool_allowlist))

    def _allowlist_for(self, role: Role) -> Allowlist:
        return self._state.tool_allowlist.get(role, self._unknown_role_policy)

    def check_tool_access(self, role: Role, tool_id: str) -> GuardViolation | None:
        """Check ``role`` against its allowlist.

        Roles with no entry follow the guard's ``unknown_role_policy``.

        Returns:
            None when the tool is permitted, otherwise a TOOL_DENIED violation
            listing the role's allowed tools.
        """
        allowlist = self._allowlist_for(role)
        if allowlist.permits(tool_id):
            return None

        allowed = sorted(allowlist.tools) if isinstance(allowlist, Restricted) else []
        violation = GuardViolation(
            type=ViolationType.TOOL_DENIED,
            message=f"Role {role.value} is not allowed to use tool {tool_id}",
            details={"role": role.value, "tool": tool_id, "allowed_tools": allowed},
        )
        logger.warning("Tool access denied: %s", violation.message)
        return violation

    def allowed_tools(self, role: Role) -> list[str]:
        """Tools listed for the role; empty for an unrestricted role."""
        allowlist = self._allowlist_for(role)
        return sorted(allowlist.tools) if isinstance(allowlist, Restricted) else []

    def record_turn(self, tokens: TokenUsage, cost_usd: float) -> GuardViolation | None:
        """Accumulate a finished turn and check the session limits.

        Usage is recorded even when the turn crosses a limit, so the totals
        always match what was spent.

        Args:
            tokens: Tokens consumed by the turn.
            cost_usd: Cost of the turn.

        Returns:
            BUDGET_EXCEEDED when accumulated cost reaches the budget, else
            TURN_LIMIT when the turn count reaches the maximum, else None.
            Cost is checked first.
        """
        state = self._state
        state.tokens_used = state.tokens_used + tokens
        state.cost_accumulated += cost_usd
        state.turns_elapsed += 1

        if state.cost_accumulated >= state.budget.max_total_cost_usd:
            violation = GuardViolation(
                type=ViolationType.BUDGET_EXCEEDED,
                message=(
                    f"Cost budget exceeded: ${state.cost_accumulated:.4f} "
                    f">= ${state.budget.max_total_cost_usd}"
                ),
                details={"accumulated": state.cost_accumulated, "limit": state.budget.max_total_cost_usd},
            )
            logger.error("%s", violation.message)
            return violation

        if state.turns_elapsed >= state.budget.max_debate_turns:
            violation = GuardViolation(
                type=ViolationType.TURN_LIMIT,
                message=f"Turn limit reached: {state.turns_elapsed} >= {state.budget.max_debate_turns}",
                details={"turns": state.turns_elapsed, "limit": state.budget.max_debate_turns},
            )
            logger.warning("%s", violation.message)
            return violation

        return None

    def check_turn_tokens(self, tokens: TokenUsage) -> GuardViolation | None:
        """Per-turn ceiling check. Advisory: callers report it, the debate continues."""
        limit = self._state.budget.max_tokens_per_turn
        if tokens.total > limit:
            return GuardViolation(
                type=ViolationType.BUDGET_EXCEEDED,
                message=f"Turn token limit exceeded: {tokens.total} > {limit}",
                details={"input": tokens.input, "output": tokens.output, "limit": limit},
            )
        return None

    def record_retry(self) -> GuardViolation | None:
        """Consume one retry. Returns RETRY_LIMIT once more than ``max_retries`` were used."""
        state = self._state
        state.retries_used += 1

        if state.retries_used > state.budget.max_retries:
            violation = GuardViolation(
                type=ViolationType.RETRY_LIMIT,
                message=f"Retry limit exceeded: {state.retries_used} > {state.budget.max_retries}",
                details={"retries": state.retries_used, "limit": state.budget.max_retries},
            )
            logger.error("%s", violation.message)
            return violation

        return None

    def elapsed_sec(self) -> float:
        return self._clock() - self._state.started_at

    def check_debate_timeout(self) -> GuardViolation | None:
        """TIMEOUT once the elapsed time since construction reaches ``debate_timeout_sec``."""
        elapsed = self.elapsed_sec()
        limit = self._state.budget.debate_timeout_sec
        if elapsed >= limit:
            return GuardViolation(
                type=ViolationType.TIMEOUT,
                message=f"Debate timeout reached: {elapsed:.1f}s >= {limit}s",
                details={"elapsed_sec": elapsed, "limit_sec": limit},
            )
        return None

    def remaining_budget(self) -> RemainingBudget:
        """Headroom left on every limit. Values go negative once a limit is overrun."""
        state = self._state
        budget = state.budget
        return RemainingBudget(
            cost_remaining=budget.max_total_cost_usd - state.cost_accumulated,
            turns_remaining=budget.max_debate_turns - state.turns_elapsed,
            retries_remaining=budget.max_retries - state.retries_used,
            time_remaining_sec=budget.debate_timeout_sec - self.elapsed_sec(),
            cost_used_percent=(state.cost_accumulated / budget.max_total_cost_usd) * 100,
        )
