"""
Sofra - Tagged results.

Pipeline stages, the resolver and status waits return Ok/Err values
instead of raising, so callers can branch on ErrorKind without parsing
messages. Exceptions stay reserved for contract errors.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced by the core."""

    SCHEMA_VIOLATION = "schema_violation"  # parsed, but broke the closed schema or a domain rule
    PARSE_FAILURE = "parse_failure"  # no JSON could be extracted
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"  # transport error or budget exhausted
    CACHE_MISS = "cache_miss"  # nothing in any tier
    TIMEOUT = "timeout"  # client-side wait expired


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        if self.detail:
            return f"{self.kind.value}: {self.detail}"
        return self.kind.value


Result = Ok[T] | Err
