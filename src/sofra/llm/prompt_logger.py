"""
Sofra - Prompt Logger.

Writes every LLM prompt and reply to a markdown file for debugging.
Enabled via SOFRA_LOG_PROMPTS=1 or the --log-prompts CLI flag.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LOG_PROMPTS = os.getenv("SOFRA_LOG_PROMPTS", "0") == "1"
LOG_DIR = Path("prompt_logs")

_session_id: str | None = None
_call_counter: int = 0


def enable_prompt_logging(enabled: bool = True, log_dir: Path | None = None) -> None:
    """Turn prompt logging on or off, optionally moving the log root."""
    global LOG_PROMPTS, LOG_DIR
    LOG_PROMPTS = enabled
    if log_dir is not None:
        LOG_DIR = log_dir
    if enabled:
        LOG_DIR.mkdir(parents=True, exist_ok=True)


def _session_dir() -> Path:
    global _session_id
    if _session_id is None:
        _session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = LOG_DIR / _session_id
    path.mkdir(parents=True, exist_ok=True)
    return path


def _format_response(response: Any) -> str:
    if isinstance(response, str):
        try:
            parsed = json.loads(response)
        except ValueError:
            return f"```\n{response}\n```\n"
        return f"```json\n{json.dumps(parsed, indent=2, ensure_ascii=False)}\n```\n"
    if hasattr(response, "model_dump"):
        response = response.model_dump(mode="json", by_alias=True)
    return f"```json\n{json.dumps(response, indent=2, default=str, ensure_ascii=False)}\n```\n"


def log_prompt(
    *,
    node: str,
    model: str,
    system_prompt: str,
    user_prompt: str,
    schema_name: str,
    response: Any = None,
    error: str | None = None,
    usage: tuple[int, int] | None = None,
    config: dict | None = None,
) -> Path | None:
    """
    Log one LLM call.

    Args:
        node: Pipeline node that made the call
        model: Model used
        system_prompt: The system prompt
        user_prompt: The user prompt
        schema_name: Name of the JSON schema / response model expected
        response: Raw text or parsed model (optional)
        error: Error message if the call failed (optional)
        usage: (input_tokens, output_tokens) if known
        config: Temperature / token budget used

    Returns:
        Path to the log file, or None if logging is disabled
    """
    if not LOG_PROMPTS:
        return None

    global _call_counter
    _call_counter += 1

    filepath = _session_dir() / f"{_call_counter:02d}_{node}.md"

    header = [
        f"# LLM Call: {node}",
        "",
        f"**Time:** {datetime.now().isoformat()}",
        f"**Model:** {model}",
        f"**Schema:** {schema_name}",
    ]
    if config:
        header.append(f"**Config:** {', '.join(f'{k}={v}' for k, v in config.items())}")
    if usage:
        header.append(f"**Tokens:** {usage[0]} in / {usage[1]} out")

    sections = [
        "\n".join(header),
        f"## System Prompt\n\n```\n{system_prompt}\n```",
        f"## User Prompt\n\n```\n{user_prompt}\n```",
    ]
    if error:
        sections.append(f"## Response\n\n**ERROR:** {error}\n")
    elif response is not None:
        sections.append(f"## Response\n\n{_format_response(response)}")
    else:
        sections.append("## Response\n\n(No response)\n")

    try:
        filepath.write_text("\n\n---\n\n".join(sections), encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not write prompt log {filepath}: {e}")
        return None
    return filepath


def get_session_log_dir() -> Path | None:
    """Current session's log directory, if logging is enabled."""
    if not LOG_PROMPTS:
        return None
    return _session_dir()


def reset_session() -> None:
    """Start a fresh log session (tests, new CLI run)."""
    global _session_id, _call_counter
    _session_id = None
    _call_counter = 0
