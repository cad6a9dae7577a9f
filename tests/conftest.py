"""Shared pytest fixtures."""

from collections.abc import Sequence
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, CodegenConfig, DefaultsConfig, GuardConfig, ModelConfig, RoutingConfig
from conclave.guard import ExecutionBudget
from conclave.models import (
    Artifact,
    Completion,
    DebateConfig,
    DebateContext,
    DebateTurn,
    Role,
    TokenUsage,
    TurnType,
)
from conclave.providers.base import AIProvider
from conclave.router import ProviderRouter


def make_completion(
    text: str,
    model: str = "claude-sonnet-4-5",
    tokens_in: int = 100,
    tokens_out: int = 50,
) -> Completion:
    return Completion(text=text, model=model, tokens_used=TokenUsage(tokens_in, tokens_out), finish_reason="end_turn")


class MockProvider(AIProvider):
    """Test double AIProvider.

    ``replies`` may be one string (returned forever) or a sequence returned in
    order, one per call.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        replies: str | Sequence[str] = "Mock response",
        model: str = "claude-sonnet-4-5",
        tokens_in: int = 100,
        tokens_out: int = 50,
    ) -> None:
        self._name = provider_name
        self._model = model
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because complete is defined in the class body below.
        if isinstance(replies, str):
            self.complete = AsyncMock(  # type: ignore[assignment]
                return_value=make_completion(replies, model, tokens_in, tokens_out)
            )
        else:
            self.complete = AsyncMock(  # type: ignore[assignment]
                side_effect=[make_completion(r, model, tokens_in, tokens_out) for r in replies]
            )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return self._model

    async def complete(self, prompt, *, system_prompt, max_tokens, temperature=0.7) -> Completion:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return make_completion("Mock response", self._model)


def router_for(providers: dict[Role, AIProvider], fallback: AIProvider | None = None) -> ProviderRouter:
    return ProviderRouter(providers, fallback=fallback)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="anthropic",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        participants=[Role.PM, Role.BACKEND_DEVELOPER, Role.QA],
        moderator=Role.PM,
        max_turns=10,
        budget_usd=3.0,
        output_dir=tmp_path / "output",
    )


@pytest.fixture
def sample_app_config(sample_defaults_config: DefaultsConfig) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-5",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        budget=ExecutionBudget(),
        guard=GuardConfig(),
        models={"claude": model_cfg},
        routing=RoutingConfig(assignments={Role.QA: "claude"}, fallback="claude"),
        codegen=CodegenConfig(),
        available_providers={"claude"},
    )


@pytest.fixture
def sample_context() -> DebateContext:
    return DebateContext(
        env="dev",
        ticket_id="SHOP-42",
        summary="Catalogue pages are slow under load",
        code_context="services/catalogue/cache.py",
    )


@pytest.fixture
def sample_debate_config(sample_context: DebateContext) -> DebateConfig:
    return DebateConfig(
        topic="Which caching strategy should the catalogue service use?",
        context=sample_context,
        participants=(Role.PM, Role.BACKEND_DEVELOPER, Role.QA),
        moderator=Role.PM,
        max_turns=12,
        budget_usd=5.0,
    )


@pytest.fixture
def sample_turn() -> DebateTurn:
    return DebateTurn(
        turn_number=1,
        role=Role.BACKEND_DEVELOPER,
        type=TurnType.PROPOSAL,
        content="Use a read-through cache in front of the catalogue database.",
        artifacts=(Artifact("design-doc", "Cache design", "## Read-through cache"),),
        tokens_used=TokenUsage(120, 80),
        model="claude-sonnet-4-5",
        duration_sec=1.5,
    )


@pytest.fixture
def budget() -> ExecutionBudget:
    """Explicit budget so DEBATE_* variables in the environment cannot leak in."""
    return ExecutionBudget()


@pytest.fixture
def clean_budget_env(monkeypatch):
    for name in (
        "DEBATE_MAX_TOKENS_PER_TURN",
        "DEBATE_COST_LIMIT_USD",
        "DEBATE_MAX_TURNS",
        "CODEGEN_MAX_RETRIES",
        "CODEGEN_TIMEOUT_SEC",
        "DEBATE_TIMEOUT_SEC",
    ):
        monkeypatch.delenv(name, raising=False)
