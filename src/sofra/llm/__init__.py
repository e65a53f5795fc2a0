"""
Sofra - LLM access.

Raw-text schema-constrained completions for the generation pipeline,
Instructor structured calls for auxiliary tasks.
"""

from sofra.llm.client import (
    BackendUnavailable,
    Completion,
    OpenAIBackend,
    TextBackend,
    call_llm,
    closed_json_schema,
    get_client,
)
from sofra.llm.model_router import get_model

__all__ = [
    "BackendUnavailable",
    "Completion",
    "OpenAIBackend",
    "TextBackend",
    "call_llm",
    "closed_json_schema",
    "get_client",
    "get_model",
]
