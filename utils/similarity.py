# utils/similarity.py
"""Keyword tokenization and overlap scoring for natural-language event phrases."""

from __future__ import annotations

import re
from collections.abc import Iterable

import structlog

logger = structlog.get_logger(__name__)

_CJK_RUN_RE = re.compile(r"[一-鿿]+")
_LATIN_WORD_RE = re.compile(r"[a-z0-9]+")
_SEGMENT_SPLIT_RE = re.compile(
    r"[\s，。！？、；：,.!?;:\"'“”‘’（）()《》【】\[\]—\-…·/]+"
)

LATIN_STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "has",
        "he", "her", "his", "in", "into", "is", "it", "its", "of", "on", "or",
        "she", "that", "the", "their", "them", "they", "this", "to", "was",
        "with", "who", "while", "after", "before", "finally", "then",
    }
)


def _chunk_cjk(buffer: str) -> list[str]:
    return [buffer[i : i + 2] for i in range(0, len(buffer), 2)]


def _tokenize_cjk_run(run: str, vocabulary: tuple[str, ...]) -> list[str]:
    tokens: list[str] = []
    pending = ""
    i = 0
    while i < len(run):
        matched = next((w for w in vocabulary if run.startswith(w, i)), None)
        if matched:
            if pending:
                tokens.extend(_chunk_cjk(pending))
                pending = ""
            tokens.append(matched)
            i += len(matched)
        else:
            pending += run[i]
            i += 1
    if pending:
        tokens.extend(_chunk_cjk(pending))
    return tokens


def keyword_tokens(text: str, vocabulary: Iterable[str] = ()) -> list[str]:
    """Split an event phrase into ordered, de-duplicated keyword tokens.

    Vocabulary words are kept whole; remaining CJK runs are cut into
    two-character chunks; Latin words are lowercased with stopwords dropped.
    """
    if not text:
        return []
    cjk_vocab = tuple(
        sorted((w for w in vocabulary if _CJK_RUN_RE.fullmatch(w)), key=len, reverse=True)
    )
    tokens: list[str] = []
    for segment in _SEGMENT_SPLIT_RE.split(text.lower()):
        if not segment:
            continue
        pos = 0
        for run in _CJK_RUN_RE.finditer(segment):
            tokens.extend(_latin_words(segment[pos : run.start()]))
            tokens.extend(_tokenize_cjk_run(run.group(0), cjk_vocab))
            pos = run.end()
        tokens.extend(_latin_words(segment[pos:]))
    seen: set[str] = set()
    unique: list[str] = []
    for token in tokens:
        if token not in seen:
            seen.add(token)
            unique.append(token)
    return unique


def _latin_words(fragment: str) -> list[str]:
    return [
        w
        for w in _LATIN_WORD_RE.findall(fragment)
        if len(w) > 1 and w not in LATIN_STOPWORDS
    ]


def token_coverage(tokens: list[str], text: str) -> float:
    """Fraction of ``tokens`` that occur as substrings of ``text``."""
    if not tokens:
        return 0.0
    haystack = text.lower()
    hits = sum(1 for t in tokens if t in haystack)
    return hits / len(tokens)


def shingles(text: str) -> set[str]:
    """Overlapping CJK bigrams plus Latin content words."""
    result: set[str] = set()
    if not text:
        return result
    lowered = text.lower()
    for run in _CJK_RUN_RE.findall(lowered):
        if len(run) == 1:
            continue
        result.update(run[i : i + 2] for i in range(len(run) - 1))
    result.update(_latin_words(_CJK_RUN_RE.sub(" ", lowered)))
    return result


def overlap_ratio(text_a: str, text_b: str) -> float:
    """Share of the smaller shingle set found in the other text."""
    set_a = shingles(text_a)
    set_b = shingles(text_b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / min(len(set_a), len(set_b))
