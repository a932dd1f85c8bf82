"""
Token cost model.

WHAT: Map token usage + model pricing to USD, and estimate cost pre-flight
WHY: Show spend per reply and before sending, without a network call
HOW: Pure functions over Usage and ModelConfig pricing (per 1K tokens)
"""

import math
from typing import Any, Iterable, Optional

from .types import ModelConfig, Usage

CHARS_PER_TOKEN = 4
MIN_COMPLETION_TOKENS = 100
COST_PRECISION = 6


def estimate_tokens(text: str) -> int:
    """Approximate token count (4 characters per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def calculate_cost(usage: Optional[Usage], model: Optional[ModelConfig]) -> float:
    """
    Cost of a completed exchange.

    Returns 0 when usage is missing, total_tokens is 0, or the model has no pricing.
    """
    if usage is None or not usage.total_tokens:
        return 0.0
    if model is None or model.pricing is None:
        return 0.0

    input_cost = (usage.prompt_tokens / 1000) * model.pricing.input
    output_cost = (usage.completion_tokens / 1000) * model.pricing.output
    return round(input_cost + output_cost, COST_PRECISION)


def estimate_cost(messages: Iterable[dict[str, Any]], model: Optional[ModelConfig]) -> dict[str, Any]:
    """
    Pre-flight cost range for sending `messages` to `model`.

    Returns:
        {"min", "max", "estimated", "breakdown": {...}} with min <= estimated <= max
    """
    if model is None or model.pricing is None:
        return {"min": 0.0, "max": 0.0, "estimated": 0.0}

    text = " ".join(str(m.get("content") or "") for m in messages)
    prompt_tokens = estimate_tokens(text)

    completion_max = model.max_tokens
    completion_min = min(MIN_COMPLETION_TOKENS, completion_max)
    completion_estimated = max(completion_max / 2, completion_min)

    prompt_cost = (prompt_tokens / 1000) * model.pricing.input

    def _total(completion_tokens: float) -> float:
        return round(prompt_cost + (completion_tokens / 1000) * model.pricing.output, COST_PRECISION)

    return {
        "min": _total(completion_min),
        "max": _total(completion_max),
        "estimated": _total(completion_estimated),
        "breakdown": {
            "prompt_tokens": prompt_tokens,
            "prompt_cost": round(prompt_cost, COST_PRECISION),
            "completion_tokens_min": completion_min,
            "completion_tokens_max": completion_max,
            "completion_tokens_estimated": completion_estimated,
        },
    }
