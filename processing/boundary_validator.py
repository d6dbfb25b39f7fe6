# processing/boundary_validator.py
"""Cross-partition boundary checks for item outlines.

A partition's boundary is derived from its own key events plus those of its
neighbours: events of the previous partition must not be repeated, events
of the next partition (especially its opening transitions) must not be
pre-empted. Validation is advisory; it reports and never regenerates.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

import utils
from config import BoundaryThresholds
from models import (
    Boundary,
    Item,
    OutlineCandidate,
    Partition,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
)

logger = structlog.get_logger(__name__)

ACTION_VOCABULARY: dict[str, tuple[str, ...]] = {
    "combat": (
        "击败", "战胜", "打败", "消灭", "杀死", "斩杀", "覆灭", "决战", "大战",
        "defeat", "defeats", "defeated", "battle", "fight", "kill", "kills", "destroy",
    ),
    "advancement": (
        "突破", "晋级", "进阶", "觉醒", "获得", "得到", "习得",
        "breakthrough", "awaken", "awakens", "obtain", "obtains", "gain", "gains", "master",
    ),
    "revelation": (
        "发现", "揭露", "揭开", "真相", "识破",
        "discover", "discovers", "reveal", "reveals", "uncover", "uncovers", "truth",
    ),
    "alliance": (
        "结盟", "联合", "背叛", "反目", "决裂",
        "ally", "allies", "alliance", "betray", "betrays", "betrayal",
    ),
    "travel": (
        "逃离", "离开", "进入", "到达", "返回",
        "escape", "escapes", "flee", "flees", "return", "returns",
    ),
    "trial": (
        "比赛", "大赛", "考核", "试炼", "挑战",
        "tournament", "trial", "challenge", "challenges", "contest",
    ),
    "death": (
        "死亡", "牺牲", "陨落", "身亡",
        "dies", "death", "sacrifice", "sacrifices",
    ),
}

TRANSITION_VOCABULARY: tuple[str, ...] = (
    "进入", "到达", "抵达", "来到", "前往", "出发", "启程", "离开",
    "开始", "开启", "加入", "投靠", "遭遇", "遇到", "偶遇",
    "enter", "enters", "arrive", "arrives", "depart", "departs", "begin", "begins",
    "start", "starts", "join", "joins", "encounter", "encounters", "meet", "meets",
)

ACTION_WORDS: tuple[str, ...] = tuple(
    dict.fromkeys(word for group in ACTION_VOCABULARY.values() for word in group)
)
CORE_WORDS = frozenset(ACTION_WORDS) | frozenset(TRANSITION_VOCABULARY)
MATCH_VOCABULARY: tuple[str, ...] = tuple(CORE_WORDS)

MAX_EXTRACTED_EVENTS = 6
MAX_EVENT_CLAUSE_CHARS = 40


def _contains_any(text: str, words: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in words)


def _explicit_events(partition: Partition) -> list[str]:
    events = [e.strip() for e in [*partition.key_points, *partition.key_events] if e and e.strip()]
    return list(dict.fromkeys(events))


def extract_key_events(
    summary: str,
    key_events: Sequence[str] | None = None,
    main_plot: str | None = None,
) -> list[str]:
    """Candidate events: explicit ones, else short action clauses from prose."""
    if key_events:
        return list(dict.fromkeys(e.strip() for e in key_events if e and e.strip()))
    events: list[str] = []
    for source in (main_plot or "", summary or ""):
        for clause in utils.split_clauses(source):
            if len(clause) > MAX_EVENT_CLAUSE_CHARS:
                continue
            if _contains_any(clause, ACTION_WORDS) and clause not in events:
                events.append(clause)
            if len(events) >= MAX_EXTRACTED_EVENTS:
                return events
    return events


def extract_starting_events(partition: Partition) -> list[str]:
    """Opening transitions of a partition (arrivals, departures, first meetings)."""
    explicit = _explicit_events(partition)
    if explicit:
        return [e for e in explicit if _contains_any(e, TRANSITION_VOCABULARY)]
    events: list[str] = []
    for source in (partition.main_plot or "", partition.summary or ""):
        for clause in utils.split_clauses(source):
            if len(clause) > MAX_EVENT_CLAUSE_CHARS:
                continue
            if _contains_any(clause, TRANSITION_VOCABULARY) and clause not in events:
                events.append(clause)
    return events[:3]


def _partition_events(partition: Partition) -> list[str]:
    return extract_key_events(
        partition.summary, _explicit_events(partition), partition.main_plot
    )


def build_boundary(
    partition: Partition,
    index: int,
    previous: Partition | None = None,
    following: Partition | None = None,
) -> Boundary:
    """Derive the event constraints for ``partition`` from its neighbours."""
    boundary = Boundary(
        partition_id=partition.id,
        partition_index=index,
        partition_title=partition.title,
        must_complete_events=_partition_events(partition),
    )
    if previous is not None:
        boundary.completed_events = _partition_events(previous)
        boundary.starting_state = f"Continue from the ending of '{previous.title or previous.id}'"
    if following is not None:
        boundary.forbidden_events = _partition_events(following)
        boundary.starting_events = extract_starting_events(following)
        boundary.ending_state = f"Set up the opening of '{following.title or following.id}'"
    logger.debug(
        "Boundary built",
        partition_id=partition.id,
        must_complete=len(boundary.must_complete_events),
        completed=len(boundary.completed_events),
        forbidden=len(boundary.forbidden_events),
        starting=len(boundary.starting_events),
    )
    return boundary


def event_matches(
    event: str,
    text: str,
    ratio: float,
    thresholds: BoundaryThresholds | None = None,
) -> bool:
    """Decide whether ``text`` covers the natural-language ``event``.

    Short events need every token present. Longer events need ``ratio`` of
    their tokens plus at least one core action token when they have any.
    """
    thresholds = thresholds or BoundaryThresholds()
    tokens = utils.keyword_tokens(event, MATCH_VOCABULARY)
    if not tokens:
        return False
    coverage = utils.token_coverage(tokens, text)
    if len(tokens) <= thresholds.short_event_max_tokens:
        return coverage >= 1.0
    if coverage < ratio:
        return False
    core = [t for t in tokens if t in CORE_WORDS]
    if not core:
        return True
    return utils.token_coverage(core, text) > 0


def _find_event(
    text: str, events: Sequence[str], ratio: float, thresholds: BoundaryThresholds
) -> str | None:
    for event in events:
        if event_matches(event, text, ratio, thresholds):
            return event
    return None


def _outline_text(title: str, outline: str) -> str:
    return f"{title} {outline}".strip()


class BoundaryValidator:
    """Validates outline batches against a partition ``Boundary``."""

    def __init__(self, thresholds: BoundaryThresholds | None = None) -> None:
        self.thresholds = thresholds or BoundaryThresholds()

    def validate(
        self,
        outlines: Sequence[OutlineCandidate],
        boundary: Boundary,
        sibling_items: Sequence[Item] | None = None,
        prev_partition_items: Sequence[Item] | None = None,
    ) -> ValidationResult:
        t = self.thresholds
        errors: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        for candidate in outlines:
            text = _outline_text(candidate.title, candidate.outline)

            if boundary.completed_events:
                hit = _find_event(text, boundary.completed_events, t.event_overlap_ratio, t)
                if hit:
                    errors.append(
                        ValidationIssue(
                            type="past_repeat",
                            number=candidate.number,
                            title=candidate.title,
                            description="Repeats an event already completed in the previous partition",
                            conflict_source=hit,
                        )
                    )

            leak = None
            if boundary.starting_events:
                leak = _find_event(
                    text, boundary.starting_events, t.starting_event_overlap_ratio, t
                )
            if leak is None and boundary.forbidden_events:
                leak = _find_event(text, boundary.forbidden_events, t.event_overlap_ratio, t)
            if leak:
                errors.append(
                    ValidationIssue(
                        type="future_leak",
                        number=candidate.number,
                        title=candidate.title,
                        description="Pre-empts an event that belongs to the next partition",
                        conflict_source=leak,
                    )
                )

            if prev_partition_items:
                self._check_similarity(
                    candidate, text, prev_partition_items, "previous partition", errors, warnings
                )
            if sibling_items:
                self._check_similarity(
                    candidate, text, sibling_items, "this partition", errors, warnings
                )

        self._check_coverage(outlines, boundary, warnings)

        result = ValidationResult(
            is_valid=not any(e.severity == "high" for e in errors),
            errors=errors,
            warnings=warnings,
        )
        if not result.is_valid:
            logger.warning(
                "Outline boundary violations found",
                partition_id=boundary.partition_id,
                errors=len(errors),
            )
        return result

    def _check_similarity(
        self,
        candidate: OutlineCandidate,
        text: str,
        others: Sequence[Item],
        scope: str,
        errors: list[ValidationIssue],
        warnings: list[ValidationWarning],
    ) -> None:
        for other in others:
            if candidate.item_id and other.id == candidate.item_id:
                continue
            if not other.outline and not other.title:
                continue
            ratio = utils.overlap_ratio(text, _outline_text(other.title, other.outline))
            label = other.title or other.id
            if ratio > self.thresholds.similarity_error:
                errors.append(
                    ValidationIssue(
                        type="past_repeat",
                        number=candidate.number,
                        title=candidate.title,
                        description=f"Nearly duplicates '{label}' from {scope} ({round(ratio * 100)}%)",
                        conflict_source=label,
                    )
                )
            elif ratio >= self.thresholds.similarity_warning:
                warnings.append(
                    ValidationWarning(
                        type="similar_content",
                        number=candidate.number,
                        description=f"Resembles '{label}' from {scope} ({round(ratio * 100)}%)",
                    )
                )

    def _check_coverage(
        self,
        outlines: Sequence[OutlineCandidate],
        boundary: Boundary,
        warnings: list[ValidationWarning],
    ) -> None:
        if not outlines:
            return
        combined = " ".join(_outline_text(c.title, c.outline) for c in outlines)
        for event in boundary.must_complete_events:
            tokens = utils.keyword_tokens(event, MATCH_VOCABULARY)
            if not tokens:
                continue
            if utils.token_coverage(tokens, combined) < self.thresholds.must_complete_min_coverage:
                warnings.append(
                    ValidationWarning(
                        type="potential_overlap",
                        number=0,
                        description=f"Key event may be left unfinished: {event}",
                    )
                )


def candidates_from_items(items: Iterable[Item]) -> list[OutlineCandidate]:
    return [
        OutlineCandidate(number=i + 1, title=item.title, outline=item.outline, item_id=item.id)
        for i, item in enumerate(items)
    ]


def build_boundary_constraint_prompt(boundary: Boundary) -> str:
    """Render a boundary as instructions for the generation request."""
    sections: list[str] = []
    if boundary.completed_events:
        lines = ["[ALREADY COMPLETED - DO NOT REWRITE]"]
        lines += [f"{i}. {e}" for i, e in enumerate(boundary.completed_events, 1)]
        sections.append("\n".join(lines))
    future = list(dict.fromkeys([*boundary.starting_events, *boundary.forbidden_events]))
    if future:
        lines = ["[BELONGS TO THE NEXT PARTITION - FORESHADOW ONLY]"]
        lines += [f"{i}. {e}" for i, e in enumerate(future, 1)]
        sections.append("\n".join(lines))
    if boundary.must_complete_events:
        lines = ["[THIS PARTITION MUST ADVANCE]"]
        lines += [f"{i}. {e}" for i, e in enumerate(boundary.must_complete_events, 1)]
        sections.append("\n".join(lines))
    states = []
    if boundary.starting_state:
        states.append(f"Starting state: {boundary.starting_state}")
    if boundary.ending_state:
        states.append(f"Target state: {boundary.ending_state}")
    if states:
        sections.append("\n".join(states))
    return "\n\n".join(sections)


def format_validation_result(result: ValidationResult) -> str:
    """Human-readable summary of a validation pass."""
    if result.is_valid and not result.errors and not result.warnings:
        return "Outline validation passed with no boundary conflicts."
    lines: list[str] = []
    if result.errors:
        lines.append("Boundary problems:")
        for error in result.errors:
            lines.append(f"  [{error.type}] #{error.number} '{error.title}' ({error.severity})")
            lines.append(f"    {error.description}")
            if error.conflict_source:
                lines.append(f"    conflicts with: {error.conflict_source}")
    if result.warnings:
        lines.append("Warnings:")
        for warning in result.warnings:
            prefix = f"#{warning.number}: " if warning.number > 0 else ""
            lines.append(f"  - {prefix}{warning.description}")
    if not result.is_valid:
        lines.append("Review the outlines above before generating bodies.")
    return "\n".join(lines)
