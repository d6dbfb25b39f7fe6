# utils/text_processing.py
"""Plain-text helpers shared by the scanner, validator and writer."""

from __future__ import annotations

import re

import structlog

logger = structlog.get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_CLAUSE_SPLIT_RE = re.compile(r"[，。！？；、,.!?;\n]+|\s+(?:and|then|but)\s+", re.IGNORECASE)
_SENTENCE_RE = re.compile(r"[^。！？!?\.\n]+[。！？!?\.]*", re.UNICODE)

FULL_WIDTH_INDENT = "　　"


def strip_tags(text: str) -> str:
    """Remove markup tags, leaving plain text."""
    if not text:
        return ""
    return _TAG_RE.sub("", text)


def format_to_txt(content: str, newline: str = "\n") -> str:
    """Normalize generated text into indented paragraphs.

    Tags become paragraph breaks, blank lines are dropped, and every
    paragraph starts with two full-width spaces.
    """
    if not content:
        return ""
    text = _TAG_RE.sub("\n", content)
    paragraphs = []
    for line in re.split(r"\r?\n", text):
        line = line.strip().lstrip("　").strip()
        if line:
            paragraphs.append(FULL_WIDTH_INDENT + line)
    return newline.join(paragraphs)


def tail_text(text: str, max_chars: int) -> str:
    """Return the last ``max_chars`` characters of ``text``."""
    if not text or max_chars <= 0:
        return ""
    return text[-max_chars:]


def head_text(text: str, max_chars: int) -> str:
    if not text or max_chars <= 0:
        return ""
    return text[:max_chars]


def split_clauses(text: str) -> list[str]:
    """Split prose into short clauses on punctuation and simple conjunctions."""
    if not text:
        return []
    return [c.strip() for c in _CLAUSE_SPLIT_RE.split(text) if c and c.strip()]


def get_text_segments(text: str) -> list[tuple[str, int, int]]:
    """Return sentences of ``text`` with their character offsets."""
    segments: list[tuple[str, int, int]] = []
    if not text:
        return segments
    for match in _SENTENCE_RE.finditer(text):
        sentence = match.group(0)
        if sentence.strip():
            segments.append((sentence, match.start(), match.end()))
    return segments


def window(text: str, start: int, end: int, radius: int) -> tuple[str, int, int]:
    """Return the slice of ``text`` around ``[start, end)`` widened by ``radius``."""
    w_start = max(0, start - radius)
    w_end = min(len(text), end + radius)
    return text[w_start:w_end], w_start, w_end
