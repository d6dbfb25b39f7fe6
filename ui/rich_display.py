from __future__ import annotations

import asyncio
import time

from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from config import settings
from core.llm_interface import LLMService
from models import ProgressEvent, ProgressStatus


class RichDisplayManager:
    """Live progress panel for a continuity run."""

    def __init__(self, service: LLMService | None = None) -> None:
        self.service = service
        self.live: Live | None = None
        self.group: Group | None = None
        self.status_text_work_title: Text = Text("Work: N/A")
        self.status_text_current_item: Text = Text("Current Item: N/A")
        self.status_text_current_step: Text = Text("Current Step: Initializing...")
        self.status_text_counts: Text = Text("Completed: 0  Failed: 0")
        self.status_text_tokens_generated: Text = Text("Tokens Generated (this run): 0")
        self.status_text_elapsed_time: Text = Text("Elapsed Time: 0s")
        self.status_text_requests_per_minute: Text = Text("Requests/Min: 0.0")
        self.run_start_time: float = 0.0
        self.completed = 0
        self.failed = 0
        self._stop_event: asyncio.Event = asyncio.Event()
        self._task: asyncio.Task | None = None

        if settings.ENABLE_RICH_PROGRESS:
            self.group = Group(
                self.status_text_work_title,
                self.status_text_current_item,
                self.status_text_current_step,
                self.status_text_counts,
                self.status_text_tokens_generated,
                self.status_text_requests_per_minute,
                self.status_text_elapsed_time,
            )
            self.live = Live(
                Panel(
                    self.group,
                    title="Continuity Run Progress",
                    border_style="blue",
                    expand=True,
                ),
                refresh_per_second=4,
                transient=False,
                redirect_stdout=False,
                redirect_stderr=False,
            )

    def start(self, work_title: str = "") -> None:
        self.run_start_time = time.time()
        if work_title:
            self.status_text_work_title.plain = f"Work: {work_title}"
        if self.live:
            self.live.start()
            self._stop_event.clear()
            self._task = asyncio.create_task(self._auto_refresh())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self.live and self.live.is_started:
            self.live.stop()

    async def _auto_refresh(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            await asyncio.sleep(1)

    def on_progress(self, event: ProgressEvent) -> None:
        """Progress sink that feeds the panel."""
        if event.status == ProgressStatus.COMPLETE:
            self.completed += 1
        elif event.status == ProgressStatus.ERROR:
            self.failed += 1
        step = event.status.value
        if event.error:
            step = f"{step} ({event.error})"
        self.update(
            item_label=f"{event.current_ordinal}/{event.total_count} {event.item_title}",
            step=step,
        )

    def update(self, item_label: str | None = None, step: str | None = None) -> None:
        if not (self.live and self.group):
            return
        if item_label is not None:
            self.status_text_current_item.plain = f"Current Item: {item_label}"
        if step is not None:
            self.status_text_current_step.plain = f"Current Step: {step}"
        self.status_text_counts.plain = f"Completed: {self.completed}  Failed: {self.failed}"
        total_tokens = self.service.usage.completion_tokens if self.service else 0
        request_count = self.service.request_count if self.service else 0
        self.status_text_tokens_generated.plain = (
            f"Tokens Generated (this run): {total_tokens:,}"
        )
        elapsed_seconds = time.time() - self.run_start_time
        requests_per_minute = (
            request_count / (elapsed_seconds / 60) if elapsed_seconds > 0 else 0.0
        )
        self.status_text_requests_per_minute.plain = (
            f"Requests/Min: {requests_per_minute:.2f}"
        )
        self.status_text_elapsed_time.plain = (
            f"Elapsed Time: {time.strftime('%H:%M:%S', time.gmtime(elapsed_seconds))}"
        )
