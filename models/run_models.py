"""Structures exchanged between the sequencer and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .analysis_models import DeathCandidate, ValidationResult, Violation


class ProgressStatus(str, Enum):
    WRITING = "writing"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """One state transition reported to the progress sink."""

    current_ordinal: int
    total_count: int
    item_title: str
    status: ProgressStatus
    item_id: str | None = None
    partition_id: str | None = None
    error: str | None = None


@dataclass
class ItemFailure:
    item_id: str
    item_title: str
    reason: str


@dataclass
class ItemViolations:
    item_id: str
    violations: list[Violation]


@dataclass
class OutlineFinding:
    partition_id: str
    result: ValidationResult


@dataclass
class RunResult:
    """Outcome of a sequencer run."""

    completed_count: int = 0
    failed_count: int = 0
    total_chars: int = 0
    cancelled: bool = False
    rolling_summary: str = ""
    failures: list[ItemFailure] = field(default_factory=list)
    violations: list[ItemViolations] = field(default_factory=list)
    death_candidates: list[DeathCandidate] = field(default_factory=list)
    outline_findings: list[OutlineFinding] = field(default_factory=list)
    pacing_hint: str = ""


@dataclass
class GenerationRequest:
    """Everything the item body prompt needs."""

    item_id: str
    title: str
    outline: str
    world_setting: str = ""
    styles: list[str] = field(default_factory=list)
    target_word_count: int = 2500
    roster: str = ""
    exclusion_block: str = ""
    rolling_summary: str = ""
    previous_tail: str = ""
    next_outline: str = ""
    new_partition: bool = False
    partition_title: str = ""
    handoff_tail: str = ""
    boundary_constraint: str = ""
    pacing_hint: str = ""
