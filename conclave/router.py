"""Role to provider routing."""

import logging
from collections.abc import Mapping

from config.config_loader import AppConfig
from conclave.errors import RoutingError
from conclave.models import Role
from conclave.providers.anthropic import AnthropicProvider
from conclave.providers.base import AIProvider
from conclave.providers.gemini import GeminiProvider
from conclave.providers.openai_provider import OpenAIProvider
from conclave.providers.xai import XAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "xai": XAIProvider,
}


class ProviderRouter:
    """Maps each debate role to the provider that speaks for it."""

    def __init__(
        self,
        assignments: Mapping[Role, AIProvider],
        fallback: AIProvider | None = None,
    ) -> None:
        self._assignments = dict(assignments)
        self._fallback = fallback

    def provider_for(self, role: Role) -> AIProvider:
        provider = self._assignments.get(role, self._fallback)
        if provider is None:
            raise RoutingError(f"No provider assigned for role {role.value} and no fallback configured")
        return provider


def build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by model name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        model_cfg = config.models[name]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def build_router(config: AppConfig, providers: Mapping[str, AIProvider]) -> ProviderRouter:
    """Resolve the ``routing`` settings against the providers that were built."""
    assignments: dict[Role, AIProvider] = {}
    for role, model_name in config.routing.assignments.items():
        if model_name in providers:
            assignments[role] = providers[model_name]
        else:
            logger.warning("Role %s routed to unavailable model '%s'", role.value, model_name)

    fallback = None
    if config.routing.fallback:
        fallback = providers.get(config.routing.fallback)
        if fallback is None:
            logger.warning("Fallback model '%s' is unavailable", config.routing.fallback)

    return ProviderRouter(assignments, fallback=fallback)
