"""Findings produced by the scanner, validator and pacing analyzer."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AppearanceScan(BaseModel):
    appeared: list[str] = Field(default_factory=list)
    newly_active: list[str] = Field(default_factory=list)


class DeathCandidate(BaseModel):
    entity_id: str
    name: str
    phrase: str
    context: str


class DeathScan(BaseModel):
    death_keyword_hits: list[DeathCandidate] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW
    distinct_phrases: int = 0

    @property
    def candidate_ids(self) -> list[str]:
        ids: list[str] = []
        for hit in self.death_keyword_hits:
            if hit.entity_id not in ids:
                ids.append(hit.entity_id)
        return ids


class Violation(BaseModel):
    entity_id: str
    name: str
    death_item_id: str | None = None
    occurrences: int
    contexts: list[str] = Field(default_factory=list)


class ViolationScan(BaseModel):
    violations: list[Violation] = Field(default_factory=list)

    @property
    def has_violation(self) -> bool:
        return bool(self.violations)


class ScanFindings(BaseModel):
    """Combined result of one scanner pass over an item."""

    appearances: AppearanceScan = Field(default_factory=AppearanceScan)
    deaths: DeathScan = Field(default_factory=DeathScan)
    violations: ViolationScan = Field(default_factory=ViolationScan)


class Boundary(BaseModel):
    """Derived event constraints for one partition."""

    partition_id: str
    partition_index: int
    partition_title: str = ""
    must_complete_events: list[str] = Field(default_factory=list)
    completed_events: list[str] = Field(default_factory=list)
    forbidden_events: list[str] = Field(default_factory=list)
    starting_events: list[str] = Field(default_factory=list)
    starting_state: str | None = None
    ending_state: str | None = None


class OutlineCandidate(BaseModel):
    """A freshly produced outline to validate."""

    number: int = 0
    title: str = ""
    outline: str = ""
    item_id: str | None = None


class ValidationIssue(BaseModel):
    type: str
    number: int
    title: str = ""
    description: str
    conflict_source: str | None = None
    severity: str = "high"


class ValidationWarning(BaseModel):
    type: str
    number: int
    description: str


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)


class EmotionPoint(BaseModel):
    ordinal: int
    emotion: str = "neutral"
    intensity: int = Field(default=5, ge=0, le=10)
    tension: int = Field(default=5, ge=0, le=10)
    hope: int = Field(default=0, ge=-10, le=10)


class PacingSuggestion(BaseModel):
    kind: str
    suggestion: str
    target_intensity: int
    target_tension: int
    reason: str


class EmotionalArc(BaseModel):
    points: list[EmotionPoint] = Field(default_factory=list)
    trend: str = "stable"
    peaks: list[int] = Field(default_factory=list)
    valleys: list[int] = Field(default_factory=list)
    suggestion: PacingSuggestion | None = None
