"""
Static per-model token pricing, used only when a provider does not report
the cost of a run itself.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

# USD per 1,000 tokens
MODEL_PRICING: dict[str, dict[str, float]] = {
    # Gemini
    "gemini-3-flash-preview": {"input": 0.0001, "output": 0.0004},
    "gemini-3-pro-preview": {"input": 0.002, "output": 0.012},
    "gemini-2.0-flash": {"input": 0.0001, "output": 0.0004},
    # OpenAI
    "gpt-5-codex": {"input": 0.005, "output": 0.015},
    "gpt-5": {"input": 0.005, "output": 0.015},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    # Anthropic
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-opus-4-20250514": {"input": 0.015, "output": 0.075},
    "sonnet": {"input": 0.003, "output": 0.015},
    "opus-4.5": {"input": 0.015, "output": 0.075},
}

# Conservative default for unknown models
DEFAULT_PRICING = {"input": 0.001, "output": 0.003}


def get_model_pricing(model: str) -> dict[str, float]:
    """Look up pricing by exact name, then by partial match in either direction."""
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    for name, pricing in MODEL_PRICING.items():
        if model and (name in model or model in name):
            return pricing
    return DEFAULT_PRICING


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate the USD cost of a run from its token counts."""
    pricing = get_model_pricing(model)
    return (input_tokens / 1000) * pricing["input"] + (output_tokens / 1000) * pricing["output"]
