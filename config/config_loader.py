"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from conclave.costs import ModelPricing
from conclave.guard import DENY_ALL, UNRESTRICTED, Allowlist, ExecutionBudget, restricted
from conclave.models import Role
from conclave.policy import Policy

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class DefaultsConfig:
    participants: list[Role]
    moderator: Role
    max_turns: int
    budget_usd: float
    output_dir: Path
    temperature: float = 0.7
    locale: str = "en"


@dataclass
class GuardConfig:
    unknown_role_policy: Allowlist = UNRESTRICTED
    tool_allowlist: dict[Role, Allowlist] = field(default_factory=dict)


@dataclass
class RoutingConfig:
    assignments: dict[Role, str] = field(default_factory=dict)
    fallback: str | None = None


@dataclass
class GateConfig:
    name: str
    command: str


@dataclass
class CodegenConfig:
    cli_path: str = "claude"
    max_turns: int = 30
    instruction_file: str = "CLAUDE.md"
    allowed_tools: list[str] = field(default_factory=list)
    stop_on_failure: bool = True
    gates: list[GateConfig] = field(default_factory=list)
    # Added to the built-in policies; an entry with a built-in id replaces it.
    policies: list[Policy] = field(default_factory=list)


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    budget: ExecutionBudget
    guard: GuardConfig
    models: dict[str, ModelConfig]
    routing: RoutingConfig
    pricing: dict[str, ModelPricing] = field(default_factory=dict)
    codegen: CodegenConfig = field(default_factory=CodegenConfig)
    available_providers: set[str] = field(default_factory=set)


def _parse_allowlist(value: Any) -> Allowlist:
    """``"*"`` means unrestricted, a list restricts to exactly those tools."""
    if value == "*":
        return UNRESTRICTED
    if value is None:
        return DENY_ALL
    return restricted(str(v) for v in value)


def _parse_guard(raw: dict[str, Any]) -> GuardConfig:
    policy = str(raw.get("unknown_role_policy", "allow")).lower()
    if policy not in ("allow", "deny"):
        raise ValueError(f"guard.unknown_role_policy must be 'allow' or 'deny', got '{policy}'")
    return GuardConfig(
        unknown_role_policy=UNRESTRICTED if policy == "allow" else DENY_ALL,
        tool_allowlist={Role(k): _parse_allowlist(v) for k, v in (raw.get("tool_allowlist") or {}).items()},
    )


def _parse_budget(raw: dict[str, Any]) -> ExecutionBudget:
    base = ExecutionBudget()
    fields = {
        "max_tokens_per_turn": int,
        "max_total_cost_usd": float,
        "max_debate_turns": int,
        "max_retries": int,
        "codegen_timeout_sec": float,
        "debate_timeout_sec": float,
    }
    overrides = {k: cast(raw[k]) for k, cast in fields.items() if k in raw}
    return ExecutionBudget.from_env(base.with_overrides(**overrides))


def _parse_codegen(raw: dict[str, Any]) -> CodegenConfig:
    return CodegenConfig(
        cli_path=str(raw.get("cli_path", "claude")),
        max_turns=int(raw.get("max_turns", 30)),
        instruction_file=str(raw.get("instruction_file", "CLAUDE.md")),
        allowed_tools=[str(t) for t in raw.get("allowed_tools", [])],
        stop_on_failure=bool(raw.get("stop_on_failure", True)),
        gates=[GateConfig(name=str(g["name"]), command=str(g["command"])) for g in raw.get("gates", [])],
        policies=[Policy.from_dict(p) for p in raw.get("policies") or []],
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise — callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        participants=[Role(p) for p in defaults_raw["participants"]],
        moderator=Role(defaults_raw["moderator"]),
        max_turns=int(defaults_raw["max_turns"]),
        budget_usd=float(defaults_raw["budget_usd"]),
        output_dir=Path(defaults_raw["output_dir"]),
        temperature=float(defaults_raw.get("temperature", 0.7)),
        locale=str(defaults_raw.get("locale", "en")),
    )

    routing_raw = raw.get("routing") or {}
    routing = RoutingConfig(
        assignments={Role(k): str(v) for k, v in (routing_raw.get("roles") or {}).items()},
        fallback=routing_raw.get("fallback"),
    )

    pricing = {
        str(k): ModelPricing(float(v["input"]), float(v["output"]))
        for k, v in (raw.get("pricing") or {}).items()
    }

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s — set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        budget=_parse_budget(raw.get("budget") or {}),
        guard=_parse_guard(raw.get("guard") or {}),
        models=models,
        routing=routing,
        pricing=pricing,
        codegen=_parse_codegen(raw.get("codegen") or {}),
        available_providers=available_providers,
    )
