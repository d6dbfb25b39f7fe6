# processing/summary_manager.py
"""Bounded rolling summary of the work, refreshed on cadence or on events."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

import utils
from config import RunConfig, settings
from core.exceptions import GenerationError, StoreError
from core.llm_interface import CompletionOptions, GenerationService
from models import Entity, Item
from orchestration.interfaces import SummaryHook
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

SECTION_MAIN_PLOT = "## Main Plot Progress"
SECTION_TURNING_POINTS = "## Turning Points"
SECTION_ENTITY_STATUS = "## Entity Status"
SECTION_OPEN_THREADS = "## Open Threads"
DECEASED_MARKER = "[DECEASED]"

ITEM_EXCERPT_CHARS = 2000
CLASSIFICATION_EXCERPT_CHARS = 2000


class RefreshTrigger(str, Enum):
    NONE = "none"
    INTERVAL = "interval"
    DEATH = "death"
    POWER_CHANGE = "power_change"
    PLOT_TURN = "plot_turn"
    NEW_ARC = "new_arc"
    PARTITION = "partition_transition"
    RESUME = "resume"
    FINAL = "final"


_EVENT_TRIGGERS = (
    ("death", RefreshTrigger.DEATH),
    ("power_change", RefreshTrigger.POWER_CHANGE),
    ("plot_turn", RefreshTrigger.PLOT_TURN),
    ("new_arc", RefreshTrigger.NEW_ARC),
)


@dataclass(frozen=True)
class RefreshDecision:
    trigger: RefreshTrigger = RefreshTrigger.NONE
    reason: str = ""

    @property
    def should_refresh(self) -> bool:
        return self.trigger != RefreshTrigger.NONE


def _is_yes(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "y", "1"}
    return False


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def _status_line_pattern(name: str) -> re.Pattern[str]:
    # A status line belongs to an entity only when it opens with "name:"
    return re.compile(rf"^\s*(?:[-*]\s*)?{re.escape(name)}\s*[:：]")


def _clip(text: str, limit: int) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."


class RollingSummaryManager:
    """Owns the rolling summary, its refresh counter and the recent-item buffer.

    ``refresh`` is the pure operation: previous summary plus recent items in,
    new summary out. ``commit_refresh`` applies it to the manager's state,
    clears the buffer and calls the persistence hook.
    """

    def __init__(
        self,
        service: GenerationService,
        config: RunConfig | None = None,
        summary: str = "",
        last_refresh_ordinal: int = 0,
        persist_hook: SummaryHook | None = None,
    ) -> None:
        self.service = service
        self.config = config or RunConfig()
        self.summary = summary
        self.last_refresh_ordinal = last_refresh_ordinal
        self.persist_hook = persist_hook
        self.buffer: list[Item] = []
        self.refresh_count = 0

    def _options(self, purpose: str, temperature: float, model: str | None) -> CompletionOptions:
        return CompletionOptions(
            retries=self.config.aux_retries,
            timeout=self.config.aux_timeout,
            purpose=purpose,
            temperature=temperature,
            model=model,
        )

    # Buffer ----------------------------------------------------------------

    def add_to_buffer(self, item: Item) -> None:
        if item.has_body:
            self.buffer.append(item)

    def clear_buffer(self) -> None:
        self.buffer.clear()

    # Triggers --------------------------------------------------------------

    async def should_refresh(
        self,
        item_content: str,
        item_ordinal: int,
        last_refresh_ordinal: int | None = None,
        interval: int | None = None,
        entities: Sequence[Entity] = (),
    ) -> RefreshDecision:
        """Decide whether the item just written warrants a refresh.

        The interval check runs first; the event classification call is only
        made when the interval has not fired.
        """
        last = self.last_refresh_ordinal if last_refresh_ordinal is None else last_refresh_ordinal
        every = interval or self.config.summary_interval
        if item_ordinal - last >= every:
            return RefreshDecision(
                RefreshTrigger.INTERVAL, f"{item_ordinal - last} items since last refresh"
            )
        if not self.config.enable_event_triggers or not item_content:
            return RefreshDecision()
        return await self.classify_events(item_content, entities)

    async def classify_events(
        self, item_content: str, entities: Sequence[Entity] = ()
    ) -> RefreshDecision:
        prompt = render_prompt(
            "summary_manager/event_classification.j2",
            {
                "content": item_content,
                "excerpt_chars": CLASSIFICATION_EXCERPT_CHARS,
                "entity_names": [e.name for e in entities],
            },
        )
        try:
            raw = await self.service.complete(
                prompt,
                self._options(
                    "event_classification",
                    settings.TEMPERATURE_CLASSIFICATION,
                    settings.CLASSIFICATION_MODEL,
                ),
            )
        except GenerationError as exc:
            logger.warning("Event classification failed; no trigger", error=exc.reason)
            return RefreshDecision()
        data = utils.extract_json_object(raw)
        if not data:
            return RefreshDecision()
        for key, trigger in _EVENT_TRIGGERS:
            if _is_yes(data.get(key)):
                reason = str(data.get("description") or key)
                logger.info("Event trigger fired", trigger=trigger.value, reason=reason)
                return RefreshDecision(trigger, reason)
        return RefreshDecision()

    # Refresh ---------------------------------------------------------------

    async def refresh(
        self,
        existing_summary: str,
        recent_items: Sequence[Item],
        entities: Sequence[Entity],
        trigger: RefreshTrigger | str = RefreshTrigger.INTERVAL,
    ) -> str:
        """Produce a new summary from the previous one and recent items.

        Raises ``GenerationError`` when the service fails or returns nothing
        usable; callers decide whether to keep the old summary.
        """
        trigger_label = trigger.value if isinstance(trigger, RefreshTrigger) else str(trigger)
        prompt = render_prompt(
            "summary_manager/summary_refresh.j2",
            {
                "existing_summary": existing_summary,
                "recent_items": [i for i in recent_items if i.has_body],
                "entities": list(entities),
                "trigger": trigger_label,
                "excerpt_chars": ITEM_EXCERPT_CHARS,
                "max_plot_chars": self.config.max_summary_chars // 4,
            },
        )
        raw = await self.service.complete(
            prompt,
            self._options("summary_refresh", settings.TEMPERATURE_SUMMARY, settings.SUMMARY_MODEL),
        )
        if not raw or not raw.strip():
            raise GenerationError(
                "empty summary response", kind=GenerationError.EMPTY, purpose="summary_refresh"
            )
        data = utils.extract_json_object(raw)
        if data is None:
            # Free-form answers are accepted as the main plot section
            data = {"main_plot": raw.strip()}
        return self.render_summary(data, entities)

    def render_summary(self, data: dict[str, Any], entities: Sequence[Entity]) -> str:
        """Render structured refresh output into the fixed section layout."""
        main_plot = str(data.get("main_plot") or "").strip()
        turning_points = _as_str_list(data.get("turning_points"))
        entity_status = _as_str_list(data.get("entity_status"))
        open_threads = _as_str_list(data.get("open_threads"))

        entity_status = self._enforce_deaths(entity_status, entities)
        if len(turning_points) > self.config.max_turning_points:
            turning_points = turning_points[-self.config.max_turning_points :]

        while True:
            text = self._compose(main_plot, turning_points, entity_status, open_threads)
            if len(text) <= self.config.max_summary_chars or not turning_points:
                break
            turning_points = turning_points[1:]

        if len(text) > self.config.max_summary_chars:
            budget = self.config.max_summary_chars
            fixed = self._compose("", [], entity_status, [])
            main_plot = _clip(main_plot, max(0, (budget - len(fixed)) // 2))
            while open_threads and len(
                self._compose(main_plot, [], entity_status, open_threads)
            ) > budget:
                open_threads = open_threads[:-1]
            text = self._compose(main_plot, [], entity_status, open_threads)
            # Death markers are never trimmed away
            if len(text) > budget:
                text = self._compose("", [], entity_status, [])
        return text

    def _enforce_deaths(
        self, entity_status: list[str], entities: Sequence[Entity]
    ) -> list[str]:
        lines = list(entity_status)
        for entity in entities:
            if not entity.is_deceased:
                continue
            owner = _status_line_pattern(entity.name)
            index = next((i for i, line in enumerate(lines) if owner.match(line)), None)
            if index is None:
                where = f" in item {entity.death_item_id}" if entity.death_item_id else ""
                lines.append(f"{entity.name}: died{where} {DECEASED_MARKER}")
            elif DECEASED_MARKER not in lines[index]:
                lines[index] = f"{lines[index]} {DECEASED_MARKER}"
        return lines

    @staticmethod
    def _compose(
        main_plot: str,
        turning_points: list[str],
        entity_status: list[str],
        open_threads: list[str],
    ) -> str:
        parts = [SECTION_MAIN_PLOT, main_plot or "-", ""]
        parts.append(SECTION_TURNING_POINTS)
        parts.extend(f"{i}. {tp}" for i, tp in enumerate(turning_points, 1))
        if not turning_points:
            parts.append("-")
        parts.append("")
        parts.append(SECTION_ENTITY_STATUS)
        parts.extend(f"- {line}" for line in entity_status)
        if not entity_status:
            parts.append("-")
        parts.append("")
        parts.append(SECTION_OPEN_THREADS)
        parts.extend(f"- {line}" for line in open_threads)
        if not open_threads:
            parts.append("-")
        return "\n".join(parts)

    async def commit_refresh(
        self,
        ordinal: int,
        entities: Sequence[Entity],
        trigger: RefreshTrigger,
        items: Sequence[Item] | None = None,
    ) -> bool:
        """Refresh over ``items`` (default: the buffer) and apply the result.

        A failed refresh keeps the previous summary and the buffer.
        """
        source = list(self.buffer if items is None else items)
        if not any(item.has_body for item in source):
            logger.debug("Summary refresh skipped; nothing to summarize", trigger=trigger.value)
            return False
        try:
            new_summary = await self.refresh(self.summary, source, entities, trigger)
        except GenerationError as exc:
            logger.error(
                "Summary refresh failed; keeping previous summary",
                trigger=trigger.value,
                error=exc.reason,
            )
            return False
        self.summary = new_summary
        self.last_refresh_ordinal = ordinal
        self.refresh_count += 1
        self.clear_buffer()
        logger.info(
            "Rolling summary refreshed",
            trigger=trigger.value,
            ordinal=ordinal,
            chars=len(new_summary),
        )
        try:
            await utils.maybe_await(self.persist_hook, new_summary, ordinal)
        except StoreError as exc:
            logger.error("Summary persistence hook failed", error=str(exc))
        return True
