"""
Sofra - JSON extraction from LLM replies.

A fenced ```json block wins over the reply as a whole. No JSON at all is
a parse failure; JSON that does not fit the closed model is a schema
violation. Nothing is coerced.
"""

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from sofra.core.result import Err, ErrorKind, Ok, Result

M = TypeVar("M", bound=BaseModel)

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


def extract_json(text: str) -> Result[Any]:
    """Pull a JSON value out of a reply: fenced block first, then the whole text."""
    if not text or not text.strip():
        return Err(ErrorKind.PARSE_FAILURE, "empty reply")

    match = _FENCED_JSON.search(text)
    if match:
        try:
            return Ok(json.loads(match.group(1)))
        except ValueError as e:
            return Err(ErrorKind.PARSE_FAILURE, f"fenced json block is not valid JSON: {e}")

    try:
        return Ok(json.loads(text.strip()))
    except ValueError as e:
        return Err(ErrorKind.PARSE_FAILURE, f"no JSON found in reply: {e}")


def _summarize(error: ValidationError, limit: int = 5) -> str:
    parts = []
    for item in error.errors()[:limit]:
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    more = error.error_count() - limit
    if more > 0:
        parts.append(f"(+{more} more)")
    return "; ".join(parts)


def parse_reply(text: str, model: type[M]) -> Result[M]:
    """Extract JSON from a reply and validate it against a closed model."""
    extracted = extract_json(text)
    if isinstance(extracted, Err):
        return extracted

    if not isinstance(extracted.value, dict):
        return Err(ErrorKind.SCHEMA_VIOLATION, f"expected a JSON object, got {type(extracted.value).__name__}")

    try:
        return Ok(model.model_validate(extracted.value))
    except ValidationError as e:
        return Err(ErrorKind.SCHEMA_VIOLATION, f"{model.__name__}: {_summarize(e)}")
