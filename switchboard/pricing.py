"""
Pricing table and cost calculator.

Prices are integer US cents per million tokens. Costs come out as integer
cents, rounded half-up, computed without floats so totals never drift.
Models not in the table (local Ollama models, anything new) cost nothing.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

logger = logging.getLogger(__name__)

TOKENS_PER_UNIT = 1_000_000


class ModelPrice(NamedTuple):
    input: int   # cents per 1M input tokens
    output: int  # cents per 1M output tokens


DEFAULT_PRICE = ModelPrice(0, 0)

PRICING: dict[str, ModelPrice] = {
    # Anthropic
    "claude-opus-4-20250514":    ModelPrice(1500, 7500),
    "claude-sonnet-4-20250514":  ModelPrice(300, 1500),
    "claude-haiku-4-5-20251001": ModelPrice(80, 400),
    # OpenAI
    "gpt-4o":                    ModelPrice(250, 1000),
    "gpt-4o-mini":               ModelPrice(15, 60),
    "gpt-4-turbo":               ModelPrice(1000, 3000),
    # Google
    "gemini-1.5-pro":            ModelPrice(125, 375),
    "gemini-1.5-flash":          ModelPrice(7, 21),
    "gemini-2.0-flash":          ModelPrice(10, 40),
}


class PricingTable:
    """Model id → price lookup with a zero-priced fallback."""

    def __init__(self, overrides: dict | None = None):
        self.prices = dict(PRICING)
        for model, entry in (overrides or {}).items():
            self.prices[model] = ModelPrice(int(entry["input"]), int(entry["output"]))
        if overrides:
            logger.info("Pricing overrides loaded for: %s", ", ".join(sorted(overrides)))

    def price_for(self, model: str) -> ModelPrice:
        return self.prices.get(model, DEFAULT_PRICE)

    def cost(self, model: str, input_tokens: int, output_tokens: int) -> int:
        """Cost of one generation in cents, rounded half-up."""
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token counts must be non-negative")
        price = self.price_for(model)
        micro_cents = input_tokens * price.input + output_tokens * price.output
        return (micro_cents + TOKENS_PER_UNIT // 2) // TOKENS_PER_UNIT


_default_table = PricingTable()


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> int:
    """Cost in cents against the built-in table."""
    return _default_table.cost(model, input_tokens, output_tokens)
