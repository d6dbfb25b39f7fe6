"""Central package for continuity engine data models."""

from .analysis_models import (
    AppearanceScan,
    Boundary,
    Confidence,
    DeathCandidate,
    DeathScan,
    EmotionalArc,
    EmotionPoint,
    OutlineCandidate,
    PacingSuggestion,
    ScanFindings,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
    Violation,
    ViolationScan,
)
from .content_models import Item, Partition, Work
from .entity_models import Entity, EntityRole, EntityStatus, EntityUpdate, Relationship
from .run_models import (
    GenerationRequest,
    ItemFailure,
    ItemViolations,
    OutlineFinding,
    ProgressEvent,
    ProgressStatus,
    RunResult,
)

__all__ = [
    "AppearanceScan",
    "Boundary",
    "Confidence",
    "DeathCandidate",
    "DeathScan",
    "EmotionalArc",
    "EmotionPoint",
    "OutlineCandidate",
    "PacingSuggestion",
    "ScanFindings",
    "ValidationIssue",
    "ValidationResult",
    "ValidationWarning",
    "Violation",
    "ViolationScan",
    "Item",
    "Partition",
    "Work",
    "Entity",
    "EntityRole",
    "EntityStatus",
    "EntityUpdate",
    "Relationship",
    "GenerationRequest",
    "ItemFailure",
    "ItemViolations",
    "OutlineFinding",
    "ProgressEvent",
    "ProgressStatus",
    "RunResult",
]
