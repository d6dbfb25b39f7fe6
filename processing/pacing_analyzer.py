# processing/pacing_analyzer.py
"""Emotional pacing: per-item scoring, arc trend and next-item suggestions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

import utils
from config import RunConfig, settings
from core.exceptions import GenerationError
from core.llm_interface import CompletionOptions, GenerationService
from models import EmotionalArc, EmotionPoint, PacingSuggestion
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

TREND_WINDOW = 5
RHYTHM_WINDOW = 10
SCORING_EXCERPT_CHARS = 2500


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def calculate_trend(points: Sequence[EmotionPoint], window: int = TREND_WINDOW) -> str:
    """Classify the recent intensity movement."""
    if len(points) < 3:
        return "stable"
    intensities = [p.intensity for p in points[-window:]]
    rises = falls = 0
    for prev, curr in zip(intensities, intensities[1:]):
        diff = curr - prev
        if diff > 1:
            rises += 1
        elif diff < -1:
            falls += 1
    if rises > falls + 1:
        return "rising"
    if falls > rises + 1:
        return "falling"
    if rises and falls:
        return "fluctuating"
    return "stable"


def generate_suggestion(
    points: Sequence[EmotionPoint], window: int = TREND_WINDOW
) -> PacingSuggestion | None:
    """First matching pacing rule over the recent window."""
    if len(points) < 3:
        return None
    recent = list(points[-window:])

    if all(p.intensity > 7 for p in recent):
        return PacingSuggestion(
            kind="cooldown",
            suggestion="Lower the emotional intensity and give the reader room to breathe.",
            target_intensity=4,
            target_tension=3,
            reason="Several consecutive high-intensity items.",
        )
    if all(p.intensity < 4 for p in recent):
        return PacingSuggestion(
            kind="escalate",
            suggestion="Introduce conflict and raise the emotional stakes.",
            target_intensity=7,
            target_tension=6,
            reason="Several consecutive low-intensity items.",
        )
    if all(p.tension > 7 for p in recent):
        return PacingSuggestion(
            kind="release",
            suggestion="Release some tension before the reader tires.",
            target_intensity=5,
            target_tension=3,
            reason="Sustained high tension.",
        )
    if all(p.hope < -3 for p in recent):
        return PacingSuggestion(
            kind="hope",
            suggestion="Add a glimmer of hope to break the oppressive mood.",
            target_intensity=6,
            target_tension=5,
            reason="Prolonged despair.",
        )
    if len(recent) >= window and all(p.intensity < 7 for p in recent):
        return PacingSuggestion(
            kind="minor_climax",
            suggestion="Stage a minor climax to keep the reader engaged.",
            target_intensity=8,
            target_tension=7,
            reason=f"No high point in the last {window} items.",
        )
    return None


def build_arc(points: Sequence[EmotionPoint], window: int = TREND_WINDOW) -> EmotionalArc:
    """Sort points by ordinal and derive trend, local extremes and a suggestion."""
    ordered = sorted(points, key=lambda p: p.ordinal)
    if not ordered:
        return EmotionalArc()
    peaks: list[int] = []
    valleys: list[int] = []
    for prev, curr, nxt in zip(ordered, ordered[1:], ordered[2:]):
        if curr.intensity > prev.intensity and curr.intensity > nxt.intensity and curr.intensity >= 7:
            peaks.append(curr.ordinal)
        if curr.intensity < prev.intensity and curr.intensity < nxt.intensity and curr.intensity <= 3:
            valleys.append(curr.ordinal)
    return EmotionalArc(
        points=ordered,
        trend=calculate_trend(ordered, window),
        peaks=peaks,
        valleys=valleys,
        suggestion=generate_suggestion(ordered, window),
    )


def detect_rhythm_issues(arc: EmotionalArc) -> list[str]:
    """Longer-range pacing problems over the last ten points."""
    issues: list[str] = []
    if len(arc.points) < RHYTHM_WINDOW:
        return issues
    recent = arc.points[-RHYTHM_WINDOW:]

    streak = 0
    for point in recent:
        streak = streak + 1 if point.intensity < 5 else 0
        if streak >= 5:
            issues.append(f"{streak} consecutive flat items; add conflict.")
            break

    streak = 0
    for point in recent:
        streak = streak + 1 if point.intensity > 7 else 0
        if streak >= 4:
            issues.append(f"{streak} consecutive high-intensity items; schedule a pause.")
            break

    if len({p.emotion for p in recent}) <= 2:
        issues.append(f"Emotional palette is narrow over the last {RHYTHM_WINDOW} items.")

    intensities = [p.intensity for p in recent]
    low, high = min(intensities), max(intensities)
    if high - low < 3:
        issues.append(f"Intensity barely moves ({low}-{high}); add more contrast.")
    return issues


def emotion_guidance(arc: EmotionalArc) -> str:
    """Pacing hint text for the next generation request."""
    issues = detect_rhythm_issues(arc)
    if not arc.suggestion and not issues:
        return ""
    lines: list[str] = []
    if arc.suggestion:
        s = arc.suggestion
        lines += [
            s.suggestion,
            f"- Target intensity: {s.target_intensity}/10",
            f"- Target tension: {s.target_tension}/10",
            f"- Reason: {s.reason}",
        ]
    lines.append(f"- Current trend: {arc.trend}")
    if arc.peaks:
        lines.append(f"- Recent peaks: items {', '.join(str(p) for p in arc.peaks[-3:])}")
    if arc.valleys:
        lines.append(f"- Recent valleys: items {', '.join(str(v) for v in arc.valleys[-3:])}")
    lines.extend(f"- {issue}" for issue in issues)
    return "\n".join(lines)


class PacingAnalyzer:
    """Collects emotion points during a run and turns them into hints."""

    def __init__(self, service: GenerationService, config: RunConfig | None = None) -> None:
        self.service = service
        self.config = config or RunConfig()
        self.points: list[EmotionPoint] = []

    async def record_point(self, item_text: str, ordinal: int) -> EmotionPoint | None:
        """Score one item; a failed or unparseable call records nothing."""
        if not item_text or not item_text.strip():
            return None
        prompt = render_prompt(
            "pacing_analyzer/emotion_scoring.j2",
            {"content": item_text, "excerpt_chars": SCORING_EXCERPT_CHARS},
        )
        try:
            raw = await self.service.complete(
                prompt,
                CompletionOptions(
                    retries=self.config.aux_retries,
                    timeout=self.config.aux_timeout,
                    purpose="emotion_scoring",
                    temperature=settings.TEMPERATURE_CLASSIFICATION,
                    model=settings.CLASSIFICATION_MODEL,
                ),
            )
        except GenerationError as exc:
            logger.warning("Emotion scoring failed", ordinal=ordinal, error=exc.reason)
            return None
        data = utils.extract_json_object(raw)
        if data is None:
            return None
        point = EmotionPoint(
            ordinal=ordinal,
            emotion=str(data.get("emotion") or "neutral"),
            intensity=_clamp(data.get("intensity"), 0, 10, 5),
            tension=_clamp(data.get("tension"), 0, 10, 5),
            hope=_clamp(data.get("hope"), -10, 10, 0),
        )
        self.points.append(point)
        return point

    def arc(self) -> EmotionalArc:
        return build_arc(self.points, self.config.pacing_window)

    def hint(self) -> str:
        return emotion_guidance(self.arc())
