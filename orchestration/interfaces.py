# orchestration/interfaces.py
"""Narrow interfaces between the sequencer and its external collaborators."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from models import Entity, EntityUpdate, ProgressEvent


class ItemStore(Protocol):
    """Persists generated bodies. Raises ``StoreError`` on rejection."""

    async def persist(self, item_id: str, content: str) -> None: ...


ProgressSink = Callable[[ProgressEvent], Awaitable[Any] | Any]
SummaryHook = Callable[[str, int], Awaitable[Any] | Any]
EntityHook = Callable[[list[EntityUpdate], list[Entity]], Awaitable[Any] | Any]
CancellationPredicate = Callable[[], bool]


class CancellationToken:
    """Cooperative cancellation flag checked by the sequencer between items."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def __call__(self) -> bool:
        return self.cancelled


CancellationSource = CancellationToken | CancellationPredicate


def as_predicate(source: CancellationSource | None) -> CancellationPredicate:
    """Normalize a token or predicate (or nothing) into a zero-argument check."""
    if source is None:
        return lambda: False
    if isinstance(source, CancellationToken):
        return lambda: source.cancelled
    return source
