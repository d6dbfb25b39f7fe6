# orchestration/cli_runner.py
"""Command-line runner for continuity runs and outline validation."""

from __future__ import annotations

import asyncio
import signal

import structlog
from rich.console import Console

from config import RunConfig
from core.exceptions import ContinuityError, FatalSequenceError
from core.llm_interface import LLMService
from models import Partition, RunResult
from orchestration.interfaces import CancellationToken
from orchestration.ordering import order_items, partition_sequence
from orchestration.sequencer import ContinuitySequencer
from processing.boundary_validator import (
    BoundaryValidator,
    build_boundary,
    candidates_from_items,
    format_validation_result,
)
from processing.content_scanner import format_death_confirmation, format_violation_warning
from storage.work_file_store import WorkFileStore
from ui.rich_display import RichDisplayManager
from utils.logging import setup_logging

logger = structlog.get_logger(__name__)
console = Console()


def _install_interrupt(token: CancellationToken) -> bool:
    """Route Ctrl-C to the cancellation token; False where unsupported."""
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _report(result: RunResult) -> None:
    console.print(
        f"Completed: {result.completed_count}  Failed: {result.failed_count}  "
        f"Characters: {result.total_chars:,}"
        + ("  (cancelled)" if result.cancelled else "")
    )
    for failure in result.failures:
        console.print(f"[yellow]Skipped[/yellow] {failure.item_title or failure.item_id}: {failure.reason}")
    for entry in result.violations:
        console.print(format_violation_warning(entry.violations), markup=False)
    if result.death_candidates:
        console.print(format_death_confirmation(result.death_candidates, "this run"), markup=False)
    for finding in result.outline_findings:
        console.print(f"Partition {finding.partition_id}:", markup=False)
        console.print(format_validation_result(finding.result), markup=False)


async def _run(work_file: str, start_item_id: str | None) -> RunResult:
    store = WorkFileStore(work_file)
    work, items = store.load()
    service = LLMService()
    display = RichDisplayManager(service)
    token = CancellationToken()
    interrupt_installed = _install_interrupt(token)
    sequencer = ContinuitySequencer(
        service,
        store,
        config=RunConfig.from_settings(),
        progress=display.on_progress,
        cancellation=token,
        summary_hook=store.save_summary,
        entity_hook=store.save_entities,
    )
    display.start(work.title or work.id)
    try:
        return await sequencer.run(work, items, start_item_id)
    finally:
        await display.stop()
        await service.aclose()
        if interrupt_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        usage = service.usage.totals()
        if usage:
            logger.info("Token usage for run", **usage)


def run(work_file: str, start_item_id: str | None = None) -> int:
    """Drive a run over the work file; returns a process exit code."""
    setup_logging()
    try:
        result = asyncio.run(_run(work_file, start_item_id))
    except KeyboardInterrupt:
        logger.info("Continuity run interrupted.")
        return 130
    except FatalSequenceError as exc:
        logger.error("Run stopped", error=str(exc), item_id=exc.item_id)
        console.print(f"[red]Run stopped:[/red] {exc}", markup=True)
        return 2
    except ContinuityError as exc:
        logger.error("Run failed", error=str(exc))
        console.print(f"[red]Run failed:[/red] {exc}")
        return 1
    _report(result)
    return 0 if result.failed_count == 0 else 1


def validate(work_file: str, partition_id: str) -> int:
    """Print boundary validation for one partition's outlines."""
    setup_logging()
    try:
        work, items = WorkFileStore(work_file).load()
    except ContinuityError as exc:
        console.print(f"[red]Cannot load work file:[/red] {exc}")
        return 1
    ordered = order_items(items, work.partitions)
    sequence = partition_sequence(ordered)
    if partition_id not in sequence:
        console.print(f"[red]Partition '{partition_id}' has no items.[/red]")
        return 1
    position = sequence.index(partition_id)

    def partition_at(pos: int) -> Partition | None:
        if pos < 0 or pos >= len(sequence):
            return None
        return work.partition_by_id(sequence[pos])

    current = partition_at(position)
    if current is None:
        console.print(f"[red]Partition '{partition_id}' is not defined in the work.[/red]")
        return 1
    boundary = build_boundary(current, position, partition_at(position - 1), partition_at(position + 1))
    prev_items = (
        [i for i in ordered if i.partition_id == sequence[position - 1]] if position > 0 else None
    )
    result = BoundaryValidator(RunConfig.from_settings().thresholds).validate(
        candidates_from_items(i for i in ordered if i.partition_id == partition_id),
        boundary,
        prev_partition_items=prev_items,
    )
    console.print(format_validation_result(result), markup=False)
    logger.info(
        "Outline validation finished",
        partition_id=partition_id,
        valid=result.is_valid,
        errors=len(result.errors),
        warnings=len(result.warnings),
    )
    return 0 if result.is_valid else 1
