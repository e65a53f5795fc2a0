"""
Sofra - Observability Package.

Provides:
- LangSmith tracing integration
- Cost tracking
"""

from sofra.observability.langsmith import (
    CostTracker,
    estimate_cost,
    get_session_tracker,
    init_langsmith,
    trace_llm_call,
)

__all__ = [
    "CostTracker",
    "estimate_cost",
    "get_session_tracker",
    "init_langsmith",
    "trace_llm_call",
]
