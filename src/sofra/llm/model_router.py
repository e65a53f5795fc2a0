"""
Sofra - Model Router.

Picks model, temperature and token budget per pipeline node.

Complexity levels:
- low: grocery categorisation, tiny structured outputs → gpt-4.1-mini
- medium: menu decision (short, creative) → gpt-4.1-mini
- high: recipe expansion (long, detailed JSON) → gpt-4.1-mini
"""

from typing import Literal, TypedDict


class ModelConfig(TypedDict, total=False):
    """Configuration for model calls."""

    model: str
    temperature: float
    max_tokens: int


MODEL_CONFIGS: dict[str, ModelConfig] = {
    "low": {
        "model": "gpt-4.1-mini",
        "temperature": 0.2,
        "max_tokens": 2000,
    },
    "medium": {
        "model": "gpt-4.1-mini",
        "temperature": 0.5,
        "max_tokens": 1500,
    },
    "high": {
        "model": "gpt-4.1-mini",
        "temperature": 0.5,
        "max_tokens": 6000,  # three full recipes with nutrition
    },
}

DEFAULT_CONFIG: ModelConfig = {
    "model": "gpt-4.1-mini",
    "temperature": 0.5,
    "max_tokens": 2000,
}

# Default complexity for each node
NODE_COMPLEXITY: dict[str, str] = {
    "menu_decision": "medium",
    "recipe_expansion": "high",
    "grocery": "low",
}

# Node-specific temperature overrides
# Lower = more deterministic, higher = more creative
NODE_TEMPERATURE: dict[str, float] = {
    "menu_decision": 0.8,  # variety across days matters
    "recipe_expansion": 0.4,  # quantities and steps must be consistent
    "grocery": 0.1,  # classification
}


def get_model(complexity: Literal["low", "medium", "high"] | str) -> str:
    """OpenAI model name for a complexity level."""
    config = MODEL_CONFIGS.get(complexity, DEFAULT_CONFIG)
    return config["model"]


def get_node_config(
    node: str,
    complexity: Literal["low", "medium", "high"] | str | None = None,
    *,
    model_override: str | None = None,
) -> ModelConfig:
    """
    Get model configuration for a pipeline node.

    Args:
        node: Node name ("menu_decision", "recipe_expansion", "grocery")
        complexity: Overrides the node's default complexity
        model_override: Use this model instead of the configured one

    Returns:
        A fresh ModelConfig (safe to mutate)
    """
    level = complexity or NODE_COMPLEXITY.get(node, "medium")
    config = MODEL_CONFIGS.get(level, DEFAULT_CONFIG).copy()

    if node in NODE_TEMPERATURE:
        config["temperature"] = NODE_TEMPERATURE[node]

    if model_override:
        config["model"] = model_override

    return config
