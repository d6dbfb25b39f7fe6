# core/usage.py
"""Running token totals reported by the generation service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, usage: TokenUsage | dict[str, Any] | None) -> None:
        """Fold one response's ``usage`` block (or another total) into this one.

        Missing or non-numeric counters are read as zero.
        """
        if not usage:
            return
        source = asdict(usage) if isinstance(usage, TokenUsage) else usage
        for field in fields(self):
            value = source.get(field.name)
            if isinstance(value, int) and not isinstance(value, bool):
                setattr(self, field.name, getattr(self, field.name) + value)

    def totals(self) -> dict[str, int] | None:
        """Counters as a dict for logging, or None when nothing was spent."""
        counts = asdict(self)
        return counts if any(counts.values()) else None
