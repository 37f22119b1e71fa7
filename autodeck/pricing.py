"""
Model pricing metadata for generation usage telemetry.
"""

from __future__ import annotations

from dataclasses import dataclass

# Values are USD per 1M tokens: (input, output, cache_read, cache_write)
MODEL_PRICING: dict[str, tuple[float, float, float, float]] = {
    "claude-sonnet-4-6": (3.00, 15.00, 0.30, 3.75),
    "claude-sonnet-4-5": (3.00, 15.00, 0.30, 3.75),
    "claude-3-5-sonnet-20241022": (3.00, 15.00, 0.30, 3.75),
    "claude-3-5-haiku-20241022": (0.80, 4.00, 0.08, 1.00),
    "gpt-4o": (2.50, 10.00, 1.25, 2.50),
    "gpt-4o-mini": (0.15, 0.60, 0.075, 0.15),
}


@dataclass
class CostEstimate:
    input_cost_usd: float
    output_cost_usd: float
    cache_cost_usd: float
    total_cost_usd: float

    @property
    def display(self) -> str:
        return f"${self.total_cost_usd:.4f}"


def _lookup(model: str) -> tuple[float, float, float, float] | None:
    pricing = MODEL_PRICING.get(model)
    if pricing is None and "/" in model:
        # LiteLLM provider-prefixed names, e.g. "anthropic/claude-sonnet-4-6"
        pricing = MODEL_PRICING.get(model.split("/", 1)[1])
    return pricing


def estimate_cost_usd(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
    cache_write_tokens: int = 0,
) -> CostEstimate:
    pricing = _lookup(model)
    if pricing is None:
        return CostEstimate(0.0, 0.0, 0.0, 0.0)
    input_rate, output_rate, read_rate, write_rate = pricing
    input_cost = (max(input_tokens, 0) / 1_000_000.0) * input_rate
    output_cost = (max(output_tokens, 0) / 1_000_000.0) * output_rate
    cache_cost = (max(cache_read_tokens, 0) / 1_000_000.0) * read_rate + (
        max(cache_write_tokens, 0) / 1_000_000.0
    ) * write_rate
    return CostEstimate(
        input_cost_usd=input_cost,
        output_cost_usd=output_cost,
        cache_cost_usd=cache_cost,
        total_cost_usd=input_cost + output_cost + cache_cost,
    )
