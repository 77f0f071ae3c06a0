"""
Tests for the pricing table and cost calculator.
Run with: pytest tests/test_pricing.py
"""

import pytest

from switchboard.pricing import DEFAULT_PRICE, PRICING, PricingTable, calculate_cost


def test_zero_tokens_cost_nothing_for_every_model():
    """cost(model, 0, 0) is 0 for all known models and the default."""
    for model in list(PRICING) + ["llama3.2", "no-such-model"]:
        assert calculate_cost(model, 0, 0) == 0


def test_known_model_cost():
    """1M input + 1M output tokens costs exactly the listed prices."""
    assert calculate_cost("gpt-4o", 1_000_000, 1_000_000) == 250 + 1000
    assert calculate_cost("claude-opus-4-20250514", 10_000, 2_000) == 30


def test_unknown_model_is_free():
    """Unknown models fall back to the zero-priced default instead of failing."""
    table = PricingTable()
    assert table.price_for("mistral") == DEFAULT_PRICE
    assert calculate_cost("mistral", 5_000_000, 5_000_000) == 0


def test_rounds_half_up_to_nearest_cent():
    """Fractional cents round to the nearest integer, halves up."""
    # 2000 tokens at 250¢/M = 0.5¢ → 1
    assert calculate_cost("gpt-4o", 2000, 0) == 1
    # 1999 tokens at 250¢/M = 0.49975¢ → 0
    assert calculate_cost("gpt-4o", 1999, 0) == 0


def test_cost_is_monotonic_in_each_token_count():
    """Holding one count fixed, more tokens never cost less."""
    for model in PRICING:
        previous = -1
        for n in range(0, 3_000_000, 137_000):
            cost = calculate_cost(model, n, 5000)
            assert cost >= previous
            previous = cost

        previous = -1
        for n in range(0, 3_000_000, 137_000):
            cost = calculate_cost(model, 5000, n)
            assert cost >= previous
            previous = cost


def test_large_counts_stay_exact():
    """Integer arithmetic: no float drift on big totals."""
    assert calculate_cost("gemini-1.5-flash", 10**12, 0) == 7 * 10**6


def test_negative_tokens_rejected():
    with pytest.raises(ValueError):
        calculate_cost("gpt-4o", -1, 0)


def test_overrides_extend_and_replace():
    """Config overrides add new models and replace built-in prices."""
    table = PricingTable({
        "my-finetune": {"input": 300, "output": 1200},
        "gpt-4o": {"input": 1, "output": 1},
    })
    assert table.cost("my-finetune", 1_000_000, 1_000_000) == 1500
    assert table.cost("gpt-4o", 1_000_000, 1_000_000) == 2
    # Module-level table is untouched
    assert calculate_cost("gpt-4o", 1_000_000, 1_000_000) == 1250
