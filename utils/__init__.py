# utils/__init__.py
"""General utility functions for the continuity engine."""

from __future__ import annotations

import inspect
import json
import re
from collections.abc import Callable
from typing import Any

import structlog

from .logging import setup_logging
from .similarity import keyword_tokens, overlap_ratio, shingles, token_coverage
from .text_processing import (
    format_to_txt,
    get_text_segments,
    head_text,
    split_clauses,
    strip_tags,
    tail_text,
    window,
)

logger = structlog.get_logger(__name__)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_BRACED_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Pull the first JSON object out of a model response.

    Accepts fenced ```json blocks or a bare ``{...}`` span. Returns ``None``
    when nothing parses to a dictionary.
    """
    if not text or not text.strip():
        return None
    candidates: list[str] = []
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    braced = _BRACED_JSON_RE.search(text)
    if braced:
        candidates.append(braced.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            logger.debug("Candidate JSON failed to parse: %s", exc)
            continue
        if isinstance(data, dict):
            return data
    logger.warning("No JSON object found in model output: %s...", text[:120])
    return None


async def maybe_await(hook: Callable[..., Any] | None, *args: Any) -> Any:
    """Call a sync or async hook and await the result when needed."""
    if hook is None:
        return None
    result = hook(*args)
    if inspect.isawaitable(result):
        return await result
    return result


__all__ = [
    "extract_json_object",
    "maybe_await",
    "setup_logging",
    "format_to_txt",
    "get_text_segments",
    "head_text",
    "keyword_tokens",
    "overlap_ratio",
    "shingles",
    "split_clauses",
    "strip_tags",
    "tail_text",
    "token_coverage",
    "window",
]
