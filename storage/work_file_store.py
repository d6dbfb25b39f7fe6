# storage/work_file_store.py
"""YAML-backed store holding one work, its partitions, entities and items."""

from __future__ import annotations

import asyncio
import os
import tempfile
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from core.exceptions import RecordValidationError, StoreError
from models import Entity, EntityUpdate, Item, Work

logger = structlog.get_logger(__name__)


def _validation_message(kind: str, index: int, exc: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return f"Invalid {kind} record #{index}: {problems}"


def parse_work_document(data: Any) -> tuple[Work, list[Item]]:
    """Validate a raw YAML document into a work and its items.

    Every malformed record surfaces as ``RecordValidationError`` naming the
    record, never as a partially loaded work.
    """
    if not isinstance(data, dict):
        raise RecordValidationError("Work file root must be a mapping")
    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise RecordValidationError("'items' must be a list")
    work_data = {k: v for k, v in data.items() if k != "items"}
    for key in ("partitions", "entities"):
        records = work_data.get(key) or []
        if not isinstance(records, list):
            raise RecordValidationError(f"'{key}' must be a list")
        work_data[key] = records
    try:
        work = Work.model_validate(work_data)
    except ValidationError as exc:
        raise RecordValidationError(_validation_message("work", 0, exc)) from exc

    items: list[Item] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise RecordValidationError(f"Invalid item record #{index}: not a mapping")
        try:
            item = Item.model_validate(raw)
        except ValidationError as exc:
            raise RecordValidationError(_validation_message("item", index, exc)) from exc
        if item.id in seen:
            raise RecordValidationError(f"Duplicate item id '{item.id}'")
        seen.add(item.id)
        items.append(item)
    return work, items


class WorkFileStore:
    """Reads a work file once and writes every change back atomically."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._document: dict[str, Any] = {}
        self.work: Work | None = None
        self.items: list[Item] = []

    def load(self) -> tuple[Work, list[Item]]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as exc:
            raise StoreError(f"Work file '{self.path}' not found") from exc
        except yaml.YAMLError as exc:
            raise RecordValidationError(f"Work file '{self.path}' is not valid YAML: {exc}") from exc
        if data is None:
            raise RecordValidationError(f"Work file '{self.path}' is empty")
        self.work, self.items = parse_work_document(data)
        self._document = data
        logger.info(
            "Work file loaded",
            path=self.path,
            work_id=self.work.id,
            items=len(self.items),
            entities=len(self.work.entities),
        )
        return self.work, self.items

    def _item_record(self, item_id: str) -> dict[str, Any]:
        for record in self._document.get("items") or []:
            if isinstance(record, dict) and str(record.get("id")) == item_id:
                return record
        raise StoreError(f"Unknown item '{item_id}'")

    def _write_sync(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".work-", suffix=".yaml", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._document, f, allow_unicode=True, sort_keys=False)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    async def _write(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_sync)
        except (OSError, yaml.YAMLError) as exc:
            raise StoreError(f"Could not write work file '{self.path}': {exc}") from exc

    async def persist(self, item_id: str, content: str) -> None:
        """Store a generated body, replacing any previous one."""
        record = self._item_record(item_id)
        record["content"] = content
        record["word_count"] = len(content)
        await self._write()
        for index, item in enumerate(self.items):
            if item.id == item_id:
                self.items[index] = item.model_copy(
                    update={"content": content, "word_count": len(content)}
                )
        logger.debug("Item body persisted", item_id=item_id, chars=len(content))

    async def save_summary(self, summary: str, refreshed_at: int | None = None) -> None:
        self._document["rolling_summary"] = summary
        if refreshed_at is not None:
            self._document["summary_refreshed_at"] = refreshed_at
        await self._write()

    async def save_entities(
        self, updates: list[EntityUpdate], entities: list[Entity]
    ) -> None:
        """Write the registry's entity states back, keeping unknown fields."""
        by_id = {e.id: e for e in entities}
        records = self._document.get("entities") or []
        for record in records:
            if not isinstance(record, dict):
                continue
            entity = by_id.get(str(record.get("id")))
            if entity is None:
                continue
            record["status"] = entity.status.value
            record["appearances"] = list(entity.appearances)
            if entity.death_item_id:
                record["death_item_id"] = entity.death_item_id
        self._document["entities"] = records
        await self._write()
        if updates:
            logger.info(
                "Entity updates saved",
                updates=[f"{u.name}.{u.field}: {u.old_value} -> {u.new_value}" for u in updates],
            )
