"""
Sofra - LLM Client.

Two ways to talk to OpenAI:

- TextBackend / OpenAIBackend: returns the raw reply text for a closed
  JSON schema. The generation pipeline uses this so that it can tell a
  reply with no JSON apart from a reply that breaks the schema.
- call_llm: Instructor-wrapped structured call for auxiliary tasks
  (grocery categorisation) where schema-retry is fine.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

import instructor
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from sofra.config import settings
from sofra.llm.model_router import get_node_config
from sofra.llm.prompt_logger import log_prompt
from sofra.llm.retry import RetryPolicy, with_retry
from sofra.observability.langsmith import get_session_tracker

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_raw_client: AsyncOpenAI | None = None
_client: instructor.AsyncInstructor | None = None


class BackendUnavailable(Exception):
    """The LLM could not be reached (transport error, auth, retries exhausted)."""


@dataclass(frozen=True)
class Completion:
    """Raw reply from a text backend."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@runtime_checkable
class TextBackend(Protocol):
    """Anything that can answer a prompt under a JSON schema with raw text."""

    async def complete(
        self,
        *,
        node: str,
        system_prompt: str,
        user_prompt: str,
        json_schema: dict[str, Any],
        schema_name: str,
    ) -> Completion:
        ...


def get_raw_async_client() -> AsyncOpenAI:
    """Singleton AsyncOpenAI client. SDK retries are off; retry.py owns that."""
    global _raw_client

    if _raw_client is None:
        _raw_client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.llm_request_timeout_seconds,
            max_retries=0,
        )

    return _raw_client


def get_client() -> instructor.AsyncInstructor:
    """Instructor-wrapped async client, shared across calls."""
    global _client

    if _client is None:
        _client = instructor.from_openai(get_raw_async_client())

    return _client


def closed_json_schema(model: type[BaseModel]) -> dict[str, Any]:
    """
    JSON schema for a closed pydantic model, in the shape OpenAI's
    strict structured outputs expect: camelCase keys, every property
    required, no additional properties, no titles or defaults.
    """
    schema = copy.deepcopy(model.model_json_schema(by_alias=True))

    def _close(node: Any) -> None:
        if isinstance(node, dict):
            node.pop("title", None)
            node.pop("default", None)
            if node.get("type") == "object" and "properties" in node:
                node["additionalProperties"] = False
                node["required"] = list(node["properties"])
            for value in node.values():
                _close(value)
        elif isinstance(node, list):
            for value in node:
                _close(value)

    _close(schema)
    return schema


class OpenAIBackend:
    """TextBackend over the OpenAI chat completions API."""

    def __init__(self, client: AsyncOpenAI | None = None, policy: RetryPolicy | None = None):
        self._client = client
        self.policy = policy or RetryPolicy.from_settings()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = get_raw_async_client()
        return self._client

    async def complete(
        self,
        *,
        node: str,
        system_prompt: str,
        user_prompt: str,
        json_schema: dict[str, Any],
        schema_name: str,
    ) -> Completion:
        config = get_node_config(node, model_override=settings.openai_model)
        model = config.pop("model")

        async def _call():
            return await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=config.get("temperature", 0.5),
                max_tokens=config.get("max_tokens"),
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": schema_name, "schema": json_schema, "strict": True},
                },
                store=False,
            )

        try:
            response = await with_retry(_call, policy=self.policy, label=node)
        except openai.OpenAIError as e:
            log_prompt(
                node=node,
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                schema_name=schema_name,
                error=str(e),
                config=dict(config),
            )
            raise BackendUnavailable(f"{node}: {e}") from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        input_tokens = response.usage.prompt_tokens if response.usage else 0
        output_tokens = response.usage.completion_tokens if response.usage else 0

        get_session_tracker().add(model, input_tokens, output_tokens, node=node)
        log_prompt(
            node=node,
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            schema_name=schema_name,
            response=text,
            usage=(input_tokens, output_tokens),
            config=dict(config),
        )

        return Completion(
            text=text,
            model=response.model or model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


async def call_llm(
    *,
    response_model: type[T],
    system_prompt: str,
    user_prompt: str,
    node: str,
    complexity: str | None = None,
    max_retries: int = 2,
) -> T:
    """
    Make a structured LLM call with guaranteed schema compliance.

    Args:
        response_model: Pydantic model class for the response
        system_prompt: System message setting context
        user_prompt: User message with the actual request
        node: Pipeline node, for model routing and prompt logs
        complexity: Override the node's default complexity
        max_retries: Instructor re-asks if the reply doesn't validate

    Returns:
        Instance of response_model with validated data
    """
    client = get_client()
    config = get_node_config(node, complexity, model_override=settings.openai_model)
    model = config.pop("model")

    try:
        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_model=response_model,
            max_retries=max_retries,
            temperature=config.get("temperature", 0.5),
            store=False,
        )
    except Exception as e:
        log_prompt(
            node=node,
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            schema_name=response_model.__name__,
            error=str(e),
            config=dict(config),
        )
        raise

    log_prompt(
        node=node,
        model=model,
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        schema_name=response_model.__name__,
        response=response,
        config=dict(config),
    )
    return response
