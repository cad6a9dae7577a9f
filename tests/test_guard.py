"""Tests for conclave/guard.py."""

import pytest

from conclave.guard import (
    DEFAULT_TOOL_ALLOWLIST,
    DENY_ALL,
    UNRESTRICTED,
    ExecutionBudget,
    ExecutionGuard,
    Restricted,
    ViolationType,
    restricted,
)
from conclave.models import Role, TokenUsage


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _guard(**budget_kwargs) -> ExecutionGuard:
    return ExecutionGuard("debate-test", budget=ExecutionBudget(**budget_kwargs))


def test_budget_defaults():
    budget = ExecutionBudget()
    assert budget.max_tokens_per_turn == 8192
    assert budget.max_total_cost_usd == 5.0
    assert budget.max_debate_turns == 12
    assert budget.max_retries == 3


def test_budget_from_env(monkeypatch, clean_budget_env):
    monkeypatch.setenv("DEBATE_COST_LIMIT_USD", "2.5")
    monkeypatch.setenv("DEBATE_MAX_TURNS", "7")
    monkeypatch.setenv("CODEGEN_MAX_RETRIES", "1")
    budget = ExecutionBudget.from_env()
    assert budget.max_total_cost_usd == 2.5
    assert budget.max_debate_turns == 7
    assert budget.max_retries == 1
    assert budget.max_tokens_per_turn == 8192


def test_budget_from_env_keeps_base_when_unset(clean_budget_env):
    base = ExecutionBudget(max_debate_turns=4)
    assert ExecutionBudget.from_env(base).max_debate_turns == 4


@pytest.mark.parametrize("name, raw", [("DEBATE_TIMEOUT_SEC", "30m"), ("DEBATE_MAX_TURNS", "7.5")])
def test_budget_from_env_names_malformed_variable(monkeypatch, clean_budget_env, name, raw):
    monkeypatch.setenv(name, raw)
    with pytest.raises(ValueError, match=f"{name} must be a number, got '{raw}'"):
        ExecutionBudget.from_env()


def test_with_overrides_ignores_none():
    budget = ExecutionBudget().with_overrides(max_debate_turns=3, max_total_cost_usd=None)
    assert budget.max_debate_turns == 3
    assert budget.max_total_cost_usd == 5.0


def test_record_turn_under_budget():
    guard = _guard()
    assert guard.record_turn(TokenUsage(100, 50), 0.1) is None
    state = guard.state
    assert state.turns_elapsed == 1
    assert state.tokens_used == TokenUsage(100, 50)


def test_record_turn_cost_reaching_ceiling_is_violation():
    guard = _guard(max_total_cost_usd=1.0)
    assert guard.record_turn(TokenUsage(), 0.5) is None
    violation = guard.record_turn(TokenUsage(), 0.5)
    assert violation is not None
    assert violation.type == ViolationType.BUDGET_EXCEEDED
    assert violation.details["limit"] == 1.0


def test_record_turn_turn_limit():
    guard = _guard(max_debate_turns=2)
    assert guard.record_turn(TokenUsage(), 0.0) is None
    violation = guard.record_turn(TokenUsage(), 0.0)
    assert violation.type == ViolationType.TURN_LIMIT


def test_record_turn_cost_checked_before_turns():
    guard = _guard(max_debate_turns=1, max_total_cost_usd=0.1)
    violation = guard.record_turn(TokenUsage(), 0.2)
    assert violation.type == ViolationType.BUDGET_EXCEEDED


def test_check_turn_tokens_is_stateless():
    guard = _guard(max_tokens_per_turn=100)
    assert guard.check_turn_tokens(TokenUsage(60, 40)) is None
    violation = guard.check_turn_tokens(TokenUsage(60, 41))
    assert violation.type == ViolationType.BUDGET_EXCEEDED
    assert guard.state.turns_elapsed == 0
    assert guard.state.tokens_used == TokenUsage()


def test_record_retry_allows_exactly_max_retries():
    guard = _guard(max_retries=2)
    assert guard.record_retry() is None
    assert guard.record_retry() is None
    violation = guard.record_retry()
    assert violation.type == ViolationType.RETRY_LIMIT


def test_debate_timeout_uses_clock():
    clock = FakeClock()
    guard = ExecutionGuard("debate-test", budget=ExecutionBudget(debate_timeout_sec=60), clock=clock)
    assert guard.check_debate_timeout() is None
    clock.now += 30
    assert guard.check_debate_timeout() is None
    clock.now += 30
    violation = guard.check_debate_timeout()
    assert violation.type == ViolationType.TIMEOUT


def test_remaining_budget():
    clock = FakeClock()
    guard = ExecutionGuard(
        "debate-test",
        budget=ExecutionBudget(max_total_cost_usd=4.0, max_debate_turns=10, debate_timeout_sec=100),
        clock=clock,
    )
    guard.record_turn(TokenUsage(), 1.0)
    guard.record_retry()
    clock.now += 25
    remaining = guard.remaining_budget()
    assert remaining.cost_remaining == pytest.approx(3.0)
    assert remaining.turns_remaining == 9
    assert remaining.retries_remaining == 2
    assert remaining.time_remaining_sec == pytest.approx(75)
    assert remaining.cost_used_percent == pytest.approx(25.0)


def test_state_is_a_copy():
    guard = _guard()
    state = guard.state
    state.turns_elapsed = 99
    state.tool_allowlist[Role.PM] = UNRESTRICTED
    assert guard.state.turns_elapsed == 0
    assert guard.check_tool_access(Role.PM, "figma_get_file") is not None


def test_default_allowlist_covers_every_role():
    assert set(DEFAULT_TOOL_ALLOWLIST) == set(Role)
    assert all(isinstance(a, Restricted) for a in DEFAULT_TOOL_ALLOWLIST.values())


def test_tool_access_allowed_and_denied():
    guard = _guard()
    assert guard.check_tool_access(Role.QA, "github_search_code") is None
    violation = guard.check_tool_access(Role.QA, "jira_update_issue")
    assert violation.type == ViolationType.TOOL_DENIED
    assert "github_search_code" in violation.details["allowed_tools"]


def test_allowlist_override_replaces_role_entry():
    guard = ExecutionGuard(
        "debate-test",
        budget=ExecutionBudget(),
        tool_allowlist={Role.QA: restricted(["pytest_run"]), Role.DEVOPS: UNRESTRICTED},
    )
    assert guard.check_tool_access(Role.QA, "pytest_run") is None
    assert guard.check_tool_access(Role.QA, "github_search_code") is not None
    assert guard.check_tool_access(Role.DEVOPS, "anything_at_all") is None
    assert guard.allowed_tools(Role.DEVOPS) == []
    assert guard.check_tool_access(Role.PM, "jira_get_issue") is None


def test_unknown_role_policy_applies_to_missing_entries():
    allow_all = ExecutionGuard("d1", budget=ExecutionBudget(), tool_allowlist={})
    allow_all._state.tool_allowlist.pop(Role.QA)
    assert allow_all.check_tool_access(Role.QA, "anything") is None

    deny = ExecutionGuard("d2", budget=ExecutionBudget(), unknown_role_policy=DENY_ALL)
    deny._state.tool_allowlist.pop(Role.QA)
    assert deny.check_tool_access(Role.QA, "github_search_code") is not None
