"""
Server-side cost calculation for OpenAI model usage.

Two uses:
  • calculate_cost() — the real cost of a completed generation, from the
    token usage OpenAI reports.
  • estimate_generation() — a rough pre-flight estimate from the issue text
    and attachment count, before any tokens are spent.

Decimal everywhere avoids floating-point rounding on money.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
import math

# ── Pricing table ───────────────────────────────────────────
# Per-1M-token prices in USD (snapshot of https://openai.com/api/pricing).
#
# Format: model_name -> { "input": Decimal, "output": Decimal }

MODEL_PRICING: dict[str, dict[str, Decimal]] = {
    "gpt-4o-mini": {
        "input": Decimal("0.15"),
        "output": Decimal("0.60"),
    },
    "gpt-4o": {
        "input": Decimal("2.50"),
        "output": Decimal("10.00"),
    },
    "gpt-4.1-mini": {
        "input": Decimal("0.40"),
        "output": Decimal("1.60"),
    },
    "gpt-4.1": {
        "input": Decimal("2.00"),
        "output": Decimal("8.00"),
    },
}

DEFAULT_MODEL = "gpt-4o-mini"

_ONE_MILLION = Decimal("1000000")

# Estimation heuristics: ~4 characters per token, a flat token cost per
# attached image, and a typical completion size for a full test-case suite.
_CHARS_PER_TOKEN = 4
_TOKENS_PER_IMAGE = 200
_EXPECTED_OUTPUT_TOKENS = 8000


def get_supported_models() -> list[str]:
    """Return a sorted list of model names with known pricing."""
    return sorted(MODEL_PRICING.keys())


def _pricing_for(model_name: str) -> dict[str, Decimal]:
    pricing = MODEL_PRICING.get(model_name)
    if pricing is None:
        supported = ", ".join(get_supported_models())
        raise ValueError(
            f"Unknown model '{model_name}'. "
            f"Supported models: {supported}"
        )
    return pricing


def calculate_cost(
    model_name: str,
    prompt_tokens: int,
    completion_tokens: int,
) -> Decimal:
    """
    Calculate the USD cost of an OpenAI call.

    Raises:
        ValueError: If model_name is not in the pricing table.
    """
    pricing = _pricing_for(model_name)
    input_cost = (Decimal(prompt_tokens) / _ONE_MILLION) * pricing["input"]
    output_cost = (Decimal(completion_tokens) / _ONE_MILLION) * pricing["output"]
    return input_cost + output_cost


@dataclass(frozen=True, slots=True)
class GenerationEstimate:
    estimated_tokens: int
    estimated_cost: Decimal


def estimate_generation(
    context_text: str,
    image_count: int = 0,
    model_name: str = DEFAULT_MODEL,
) -> GenerationEstimate:
    """Rough token and cost estimate for generating from `context_text`."""
    pricing = _pricing_for(model_name)
    tokens = math.ceil(len(context_text) / _CHARS_PER_TOKEN) + image_count * _TOKENS_PER_IMAGE

    cost = (
        (Decimal(tokens) / _ONE_MILLION) * pricing["input"]
        + (Decimal(_EXPECTED_OUTPUT_TOKENS) / _ONE_MILLION) * pricing["output"]
    )
    return GenerationEstimate(
        estimated_tokens=tokens,
        estimated_cost=cost.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
    )
