# orchestration/sequencer.py
"""Sequential body generation across a whole work.

One run walks the ordered items, generating bodies for the ones that need
them while carrying the rolling summary, entity registry, pacing hint and
partition boundary forward from item to item. Service calls are strictly
sequential because each prompt depends on state produced by the previous
item.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field

import structlog

import utils
from config import RunConfig
from core.exceptions import (
    BrokenContinuityError,
    GenerationError,
    MissingOutlineError,
    StoreError,
    UnknownStartItemError,
)
from core.llm_interface import GenerationService
from models import (
    Confidence,
    EntityStatus,
    Item,
    ItemFailure,
    ItemViolations,
    OutlineFinding,
    Partition,
    ProgressEvent,
    ProgressStatus,
    RunResult,
    Work,
)
from orchestration.interfaces import (
    CancellationPredicate,
    CancellationSource,
    CancellationToken,
    EntityHook,
    ItemStore,
    ProgressSink,
    SummaryHook,
    as_predicate,
)
from orchestration.item_writer import ItemWriter
from orchestration.ordering import order_items, partition_sequence
from processing.boundary_validator import (
    BoundaryValidator,
    build_boundary,
    build_boundary_constraint_prompt,
    candidates_from_items,
)
from processing.content_scanner import ContentScanner, HeuristicContentScanner
from processing.entity_registry import EntityRegistry
from processing.pacing_analyzer import PacingAnalyzer
from processing.summary_manager import RefreshTrigger, RollingSummaryManager

logger = structlog.get_logger(__name__)


@dataclass
class _RunState:
    """Mutable state owned by a single run."""

    work: Work
    ordered: list[Item]
    config: RunConfig
    registry: EntityRegistry
    summary: RollingSummaryManager
    pacing: PacingAnalyzer
    writer: ItemWriter
    emit: ProgressSink | None
    is_cancelled: CancellationPredicate
    result: RunResult = field(default_factory=RunResult)
    previous_tail: str = ""
    history: deque[Item] = field(default_factory=deque)
    since_reconcile: list[Item] = field(default_factory=list)
    generated_ids: set[str] = field(default_factory=set)
    partitions: dict[str, Partition] = field(default_factory=dict)
    boundary_text: dict[str, str] = field(default_factory=dict)
    last_ordinal: int = 0

    @property
    def total(self) -> int:
        return len(self.ordered)


class ContinuitySequencer:
    """Drives generation for a work through its collaborators."""

    def __init__(
        self,
        service: GenerationService,
        store: ItemStore,
        config: RunConfig | None = None,
        scanner: ContentScanner | None = None,
        progress: ProgressSink | None = None,
        cancellation: CancellationSource | None = None,
        summary_hook: SummaryHook | None = None,
        entity_hook: EntityHook | None = None,
    ) -> None:
        self.service = service
        self.store = store
        self.config = config or RunConfig.from_settings()
        self.scanner = scanner or HeuristicContentScanner()
        self.progress = progress
        self.cancellation = cancellation
        self.summary_hook = summary_hook
        self.entity_hook = entity_hook

    # Public API ------------------------------------------------------------

    async def run(
        self,
        work: Work,
        items: Sequence[Item],
        start_item_id: str | None = None,
        config: RunConfig | None = None,
    ) -> RunResult:
        """Generate bodies for every pending item, in order."""
        return await self._run(
            work,
            items,
            start_item_id,
            config or self.config,
            self.progress,
            as_predicate(self.cancellation),
        )

    def start(
        self,
        work: Work,
        items: Sequence[Item],
        start_item_id: str | None = None,
        config: RunConfig | None = None,
    ) -> RunHandle:
        """Run as a background task whose progress can be iterated."""
        token = CancellationToken()
        external = as_predicate(self.cancellation)
        queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()

        async def emit(event: ProgressEvent) -> None:
            queue.put_nowait(event)
            await utils.maybe_await(self.progress, event)

        async def runner() -> RunResult:
            try:
                return await self._run(
                    work,
                    items,
                    start_item_id,
                    config or self.config,
                    emit,
                    lambda: token.cancelled or external(),
                )
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(runner())
        return RunHandle(task, queue, token)

    # Run -------------------------------------------------------------------

    async def _run(
        self,
        work: Work,
        items: Sequence[Item],
        start_item_id: str | None,
        config: RunConfig,
        emit: ProgressSink | None,
        is_cancelled: CancellationPredicate,
    ) -> RunResult:
        ordered = order_items(items, work.partitions)
        start_index = self._resolve_start(ordered, start_item_id)

        state = _RunState(
            work=work,
            ordered=ordered,
            config=config,
            registry=EntityRegistry(work.entities, config.roster_limit),
            summary=RollingSummaryManager(
                self.service,
                config,
                summary=work.rolling_summary,
                last_refresh_ordinal=work.summary_refreshed_at,
                persist_hook=self.summary_hook,
            ),
            pacing=PacingAnalyzer(self.service, config),
            writer=ItemWriter(self.service, config),
            emit=emit,
            is_cancelled=is_cancelled,
            history=deque(maxlen=max(config.partition_handoff_window, config.resume_summary_window)),
        )
        self._prepare_partitions(state, start_index)
        logger.info(
            "Continuity run starting",
            work_id=work.id,
            total_items=state.total,
            start_index=start_index,
        )

        if start_index > 0:
            await self._resume(state, start_index)

        try:
            for index in range(start_index, state.total):
                if state.is_cancelled():
                    state.result.cancelled = True
                    logger.info("Run cancelled before item", ordinal=index + 1)
                    break
                await self._process_item(state, index)
        finally:
            await self._finalize(state)

        state.result.rolling_summary = state.summary.summary
        if config.enable_pacing:
            state.result.pacing_hint = state.pacing.hint()
        logger.info(
            "Continuity run finished",
            completed=state.result.completed_count,
            failed=state.result.failed_count,
            total_chars=state.result.total_chars,
            cancelled=state.result.cancelled,
        )
        return state.result

    @staticmethod
    def _resolve_start(ordered: list[Item], start_item_id: str | None) -> int:
        if not start_item_id:
            return 0
        for index, item in enumerate(ordered):
            if item.id == start_item_id:
                return index
        raise UnknownStartItemError("Resume item not found in work", start_item_id)

    def _prepare_partitions(self, state: _RunState, start_index: int) -> None:
        """Derive boundary prompts and run advisory outline checks."""
        sequence = partition_sequence(state.ordered)
        for pid in sequence:
            state.partitions[pid] = state.work.partition_by_id(pid) or Partition(id=pid)

        for position, pid in enumerate(sequence):
            previous = state.partitions[sequence[position - 1]] if position > 0 else None
            following = (
                state.partitions[sequence[position + 1]] if position + 1 < len(sequence) else None
            )
            boundary = build_boundary(state.partitions[pid], position, previous, following)
            state.boundary_text[pid] = build_boundary_constraint_prompt(boundary)

            if not state.config.validate_outlines:
                continue
            pending = [
                item
                for item in state.ordered[start_index:]
                if item.partition_id == pid and not self._is_done(item, state.config)
            ]
            if not pending:
                continue
            prev_items = (
                [i for i in state.ordered if i.partition_id == sequence[position - 1]]
                if position > 0
                else None
            )
            outline_result = BoundaryValidator(state.config.thresholds).validate(
                candidates_from_items(pending), boundary, prev_partition_items=prev_items
            )
            if outline_result.errors or outline_result.warnings:
                state.result.outline_findings.append(OutlineFinding(pid, outline_result))

    async def _resume(self, state: _RunState, start_index: int) -> None:
        """Seed context from the items before the resume point."""
        previous = state.ordered[start_index - 1]
        if not previous.has_body:
            await self._emit(
                state, start_index - 1, previous, ProgressStatus.ERROR, "broken continuity"
            )
            raise BrokenContinuityError(
                "Item before the resume point has no body", previous.id, previous.title
            )
        state.previous_tail = previous.content
        prior = [
            item
            for item in state.ordered[:start_index]
            if item.body_length() >= state.config.summary_source_min_chars
        ][-state.config.resume_summary_window :]
        state.history.extend(prior)
        if prior:
            await state.summary.commit_refresh(
                start_index, state.registry.entities, RefreshTrigger.RESUME, items=prior
            )

    @staticmethod
    def _is_done(item: Item, config: RunConfig) -> bool:
        return item.body_length() > config.min_complete_chars

    async def _emit(
        self, state: _RunState, index: int, item: Item, status: ProgressStatus, error: str | None = None
    ) -> None:
        event = ProgressEvent(
            current_ordinal=index + 1,
            total_count=state.total,
            item_title=item.title,
            status=status,
            item_id=item.id,
            partition_id=item.partition_id,
            error=error,
        )
        await utils.maybe_await(state.emit, event)

    def _record_failure(self, state: _RunState, item: Item, reason: str) -> None:
        state.result.failed_count += 1
        state.result.failures.append(ItemFailure(item.id, item.title, reason))
        logger.warning("Item skipped", item_id=item.id, reason=reason)

    async def _process_item(self, state: _RunState, index: int) -> None:
        config = state.config
        item = state.ordered[index]
        ordinal = index + 1
        state.last_ordinal = ordinal

        if self._is_done(item, config):
            state.previous_tail = item.content
            state.history.append(item)
            state.summary.add_to_buffer(item)
            state.result.completed_count += 1
            state.result.total_chars += len(item.content)
            await self._emit(state, index, item, ProgressStatus.COMPLETE)
            return

        if len(item.outline.strip()) < config.min_outline_chars:
            await self._emit(state, index, item, ProgressStatus.ERROR, "missing outline")
            raise MissingOutlineError("Outline is missing or too short", item.id, item.title)

        previous_item = state.ordered[index - 1] if index > 0 else None
        new_partition = (
            previous_item is not None and previous_item.partition_id != item.partition_id
        )
        handoff_tail = ""
        if new_partition:
            await self._partition_transition(state, ordinal)
            handoff_tail = self._handoff_tail(state, previous_item)

        next_item = state.ordered[index + 1] if index + 1 < state.total else None
        request = state.writer.build_request(
            state.work,
            item,
            state.registry,
            rolling_summary=state.summary.summary,
            previous_tail=state.previous_tail,
            next_outline=next_item.outline if next_item else "",
            partition=state.partitions.get(item.partition_id),
            new_partition=new_partition,
            handoff_tail=handoff_tail,
            boundary_constraint=state.boundary_text.get(item.partition_id, ""),
            pacing_hint=state.pacing.hint() if config.enable_pacing else "",
        )

        await self._emit(state, index, item, ProgressStatus.WRITING)
        try:
            body = await state.writer.write(request)
        except GenerationError as exc:
            self._record_failure(state, item, exc.reason)
            await self._emit(state, index, item, ProgressStatus.ERROR, exc.reason)
            return

        findings = self.scanner.scan(body, state.registry.entities)

        await self._emit(state, index, item, ProgressStatus.PERSISTING)
        try:
            await self.store.persist(item.id, body)
        except StoreError as exc:
            self._record_failure(state, item, str(exc))
            await self._emit(state, index, item, ProgressStatus.ERROR, str(exc))
            return

        generated = item.model_copy(update={"content": body, "word_count": len(body)})
        state.result.completed_count += 1
        state.result.total_chars += len(body)
        state.previous_tail = body
        state.history.append(generated)
        state.summary.add_to_buffer(generated)
        state.since_reconcile.append(generated)
        state.generated_ids.add(item.id)
        await self._emit(state, index, item, ProgressStatus.COMPLETE)

        if findings.violations.has_violation:
            state.result.violations.append(
                ItemViolations(item.id, findings.violations.violations)
            )
        updates = state.registry.apply_findings(item.id, findings)
        if findings.deaths.confidence == Confidence.MEDIUM:
            state.result.death_candidates.extend(findings.deaths.death_keyword_hits)
        death_recorded = any(u.new_value == EntityStatus.DECEASED.value for u in updates)

        if config.enable_pacing:
            await state.pacing.record_point(body, ordinal)

        decision = await state.summary.should_refresh(
            body, ordinal, entities=state.registry.entities
        )
        if decision.should_refresh:
            await state.summary.commit_refresh(
                ordinal, state.registry.entities, decision.trigger
            )

        if death_recorded or len(state.since_reconcile) >= config.entity_interval:
            await self._reconcile(state, "death" if death_recorded else "interval")

    @staticmethod
    def _handoff_tail(state: _RunState, previous_item: Item) -> str:
        """Body of the previous partition's final item, as generated in this run if so."""
        for item in reversed(state.history):
            if item.id == previous_item.id:
                return item.content
        return previous_item.content

    async def _partition_transition(self, state: _RunState, ordinal: int) -> None:
        """Force a summary refresh before the first item of a new partition."""
        if state.summary.last_refresh_ordinal == ordinal - 1:
            logger.debug("Partition transition refresh skipped; summary is current")
            return
        window = list(state.history)[-state.config.partition_handoff_window :]
        await state.summary.commit_refresh(
            ordinal - 1, state.registry.entities, RefreshTrigger.PARTITION, items=window
        )

    async def _reconcile(self, state: _RunState, reason: str) -> None:
        updates = state.registry.reconcile(state.since_reconcile, self.scanner)
        state.since_reconcile = []
        logger.info("Entity reconciliation", reason=reason, updates=len(updates))
        try:
            await utils.maybe_await(self.entity_hook, updates, state.registry.entities)
        except StoreError as exc:
            logger.error("Entity update hook failed", error=str(exc))

    async def _finalize(self, state: _RunState) -> None:
        """Final summary refresh and entity reconciliation, also after a stop."""
        if any(item.id in state.generated_ids for item in state.summary.buffer):
            await state.summary.commit_refresh(
                state.last_ordinal, state.registry.entities, RefreshTrigger.FINAL
            )
        if state.since_reconcile or state.registry.has_pending_updates():
            await self._reconcile(state, "final")


class RunHandle:
    """Handle to a sequencer run executing as an asyncio task."""

    def __init__(
        self,
        task: asyncio.Task[RunResult],
        queue: asyncio.Queue[ProgressEvent | None],
        token: CancellationToken,
    ) -> None:
        self._task = task
        self._queue = queue
        self._token = token

    def cancel(self) -> None:
        """Request a cooperative stop before the next item."""
        self._token.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def result(self) -> RunResult:
        return await self._task
