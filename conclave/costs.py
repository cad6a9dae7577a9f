"""Token cost accounting in USD per million tokens."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

logger = logging.getLogger(__name__)

CostModel = Callable[[int, int, str], float]


@dataclass(frozen=True)
class ModelPricing:
    input_per_million: float
    output_per_million: float


# Matched by substring against the model id, first hit wins.
MODEL_PRICING: Mapping[str, ModelPricing] = MappingProxyType({
    "opus": ModelPricing(15.0, 75.0),
    "sonnet": ModelPricing(3.0, 15.0),
    "haiku": ModelPricing(0.25, 1.25),
})

DEFAULT_PRICING = MODEL_PRICING["sonnet"]


def pricing_for(model: str, rates: Mapping[str, ModelPricing] = MODEL_PRICING) -> ModelPricing:
    """Exact (case-insensitive) key first, then the first key contained in ``model``, else sonnet rates."""
    lowered = model.lower()
    if lowered in rates:
        return rates[lowered]
    for key, pricing in rates.items():
        if key in lowered:
            return pricing
    return DEFAULT_PRICING


def calculate_cost(
    tokens_in: int,
    tokens_out: int,
    model: str,
    rates: Mapping[str, ModelPricing] = MODEL_PRICING,
) -> float:
    pricing = pricing_for(model, rates)
    return (tokens_in * pricing.input_per_million + tokens_out * pricing.output_per_million) / 1_000_000


def make_cost_model(extra: Mapping[str, ModelPricing]) -> CostModel:
    """Cost function over the built-in rates plus ``extra``, e.g. the ``pricing`` settings section.

    Keys in ``extra`` are matched before the built-in ones. Neither table is modified.
    """
    rates = {key.lower(): pricing for key, pricing in extra.items()}
    for key, pricing in MODEL_PRICING.items():
        rates.setdefault(key, pricing)
    logger.debug("Cost model rates: %s", sorted(rates))

    def cost_model(tokens_in: int, tokens_out: int, model: str) -> float:
        return calculate_cost(tokens_in, tokens_out, model, rates)

    return cost_model
