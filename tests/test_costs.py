"""Tests for conclave/costs.py."""

import pytest

from conclave.costs import (
    DEFAULT_PRICING,
    MODEL_PRICING,
    ModelPricing,
    calculate_cost,
    make_cost_model,
    pricing_for,
)


def test_pricing_matched_by_family():
    assert pricing_for("claude-opus-4-1") == ModelPricing(15.0, 75.0)
    assert pricing_for("claude-sonnet-4-5") == ModelPricing(3.0, 15.0)
    assert pricing_for("Claude-Haiku-4-5") == ModelPricing(0.25, 1.25)


def test_unknown_model_uses_default():
    assert pricing_for("mystery-model") == DEFAULT_PRICING


def test_calculate_cost():
    assert calculate_cost(1_000_000, 0, "claude-sonnet-4-5") == pytest.approx(3.0)
    assert calculate_cost(2000, 1000, "claude-opus-4-1") == pytest.approx(0.03 + 0.075)
    assert calculate_cost(0, 0, "claude-haiku-4-5") == 0.0


def test_cost_model_adds_configured_rates():
    cost = make_cost_model({"gpt-4o": ModelPricing(2.5, 10.0)})
    assert cost(1_000_000, 1_000_000, "gpt-4o-2024-08-06") == pytest.approx(12.5)
    assert cost(1_000_000, 0, "claude-opus-4-1") == pytest.approx(15.0)


def test_configured_rates_win_over_builtin():
    cost = make_cost_model({"claude-sonnet-4-5-mini": ModelPricing(1.0, 2.0)})
    assert cost(1_000_000, 1_000_000, "claude-sonnet-4-5-mini") == pytest.approx(3.0)


def test_cost_model_leaves_builtin_table_alone():
    make_cost_model({"gpt-4o": ModelPricing(2.5, 10.0)})
    assert "gpt-4o" not in MODEL_PRICING
    assert pricing_for("gpt-4o") == DEFAULT_PRICING
    with pytest.raises(TypeError):
        MODEL_PRICING["gpt-4o"] = ModelPricing(1.0, 1.0)
