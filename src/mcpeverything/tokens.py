"""Token estimation for model calls.

The HTTP client uses these estimates for the run log when the API response
carries no usage block, and the CLI uses them for the generation summary.
"""

from __future__ import annotations

import math
from typing import Optional

# Dollars per 1K tokens (input, output)
MODEL_PRICING = {
    "claude-3-5-haiku-20241022": (0.0008, 0.004),
    "claude-sonnet-4-20250514": (0.003, 0.015),
}
DEFAULT_PRICING = (0.003, 0.015)


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in a text string.

    Uses ~1.3 tokens per whitespace-separated word. Source code tokenizes
    denser than prose, so the estimate is the larger of the word heuristic
    and one token per four characters.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    if not text:
        return 0

    by_words = math.ceil(len(text.split()) * 1.3)
    by_chars = math.ceil(len(text) / 4)
    return int(max(by_words, by_chars))


def estimate_prompt_tokens(prompt: str, system: Optional[str] = None) -> int:
    """Estimate input tokens for a prompt plus optional system prompt."""
    return estimate_tokens(prompt) + estimate_tokens(system or "")


def format_token_count(tokens: int) -> str:
    """Format a token count for display.

    Args:
        tokens: Number of tokens.

    Returns:
        Human-readable string like "1.2K tokens" or "15 tokens".
    """
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}K tokens"
    return f"{tokens} tokens"


def estimate_cost(input_tokens: int, output_tokens: int, model: str = "") -> float:
    """Estimate the dollar cost of a call.

    Args:
        input_tokens: Prompt tokens.
        output_tokens: Completion tokens.
        model: Model identifier used to look up pricing.

    Returns:
        Estimated cost in dollars.
    """
    input_rate, output_rate = MODEL_PRICING.get(model, DEFAULT_PRICING)
    return (input_tokens / 1000) * input_rate + (output_tokens / 1000) * output_rate
