"""
Sofra - LangSmith Integration and cost tracking.

Provides:
- Optional LangSmith tracing of pipeline stages
- Cost estimation per LLM call
- A session-level cost tracker

To enable tracing:
1. Set LANGCHAIN_TRACING_V2=true
2. Set LANGCHAIN_API_KEY=<your-key>
3. Set LANGCHAIN_PROJECT=sofra (optional)
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Literal
from uuid import uuid4

from langsmith import Client as LangSmithClient
from langsmith.run_trees import RunTree

logger = logging.getLogger(__name__)

_langsmith_client: LangSmithClient | None = None
_tracing_enabled: bool = False


def init_langsmith() -> bool:
    """
    Initialize LangSmith tracing if configured.

    Returns True if tracing is enabled. Call once at startup.
    """
    global _langsmith_client, _tracing_enabled

    tracing_enabled = os.environ.get("LANGCHAIN_TRACING_V2", "").lower() == "true"
    api_key = os.environ.get("LANGCHAIN_API_KEY")
    project = os.environ.get("LANGCHAIN_PROJECT", "sofra")

    if not tracing_enabled:
        logger.debug("LangSmith tracing disabled (set LANGCHAIN_TRACING_V2=true to enable)")
        return False

    if not api_key:
        logger.warning("LangSmith tracing requested but LANGCHAIN_API_KEY is not set")
        return False

    try:
        _langsmith_client = LangSmithClient()
    except Exception as e:
        logger.warning(f"Failed to initialize LangSmith: {e}")
        return False

    _tracing_enabled = True
    logger.info(f"LangSmith tracing enabled for project: {project}")
    return True


def is_tracing_enabled() -> bool:
    return _tracing_enabled


class _NoopRun:
    def end(self, **kwargs: Any) -> None:
        return None


@asynccontextmanager
async def trace_llm_call(
    name: str,
    run_type: str = "chain",
    inputs: dict | None = None,
    metadata: dict | None = None,
):
    """
    Trace a pipeline stage.

    Usage:
        async with trace_llm_call("menu_decision", inputs={"date": ...}) as run:
            result = await decide_menu(...)
            run.end(outputs={"cuisine": ...})
    """
    if not _tracing_enabled:
        yield _NoopRun()
        return

    run = RunTree(
        name=name,
        run_type=run_type,
        inputs=inputs or {},
        extra=metadata or {},
        project_name=os.environ.get("LANGCHAIN_PROJECT", "sofra"),
        id=str(uuid4()),
    )

    try:
        run.post()
        yield run
    except Exception as e:
        run.end(error=str(e))
        run.patch()
        raise
    else:
        run.patch()


# Per 1M tokens (USD)
MODEL_COSTS = {
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-5-mini": {"input": 0.25, "output": 2.00},
    "gpt-5": {"input": 1.25, "output": 10.00},
}


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated USD cost of one call. Unknown models are priced as gpt-4.1-mini."""
    costs = MODEL_COSTS.get(model, MODEL_COSTS["gpt-4.1-mini"])
    return (input_tokens / 1_000_000) * costs["input"] + (output_tokens / 1_000_000) * costs["output"]


@dataclass(frozen=True)
class LLMCall:
    """One priced LLM call."""

    node: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float


class CostTracker:
    """Running token and cost totals for the LLM calls of a session."""

    def __init__(self):
        self.calls: list[LLMCall] = []

    def add(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        node: str = "unknown",
    ) -> float:
        """Record a call and return its estimated cost."""
        call = LLMCall(node, model, input_tokens, output_tokens, estimate_cost(model, input_tokens, output_tokens))
        self.calls.append(call)
        return call.cost

    @property
    def total_input_tokens(self) -> int:
        return sum(c.input_tokens for c in self.calls)

    @property
    def total_output_tokens(self) -> int:
        return sum(c.output_tokens for c in self.calls)

    @property
    def total_cost(self) -> float:
        return sum(c.cost for c in self.calls)

    def cost_by(self, key: Literal["node", "model"]) -> dict[str, float]:
        """Cost per pipeline node or per model."""
        totals: dict[str, float] = {}
        for call in self.calls:
            name = getattr(call, key)
            totals[name] = totals.get(name, 0.0) + call.cost
        return {name: round(cost, 6) for name, cost in totals.items()}


_session_tracker: CostTracker | None = None


def get_session_tracker() -> CostTracker:
    """Get or create the process-wide cost tracker."""
    global _session_tracker
    if _session_tracker is None:
        _session_tracker = CostTracker()
    return _session_tracker


def reset_session_tracker() -> None:
    global _session_tracker
    _session_tracker = CostTracker()
