# processing/entity_registry.py
"""In-run registry of recurring entities and their lifecycle state."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

import structlog

from models import (
    Confidence,
    Entity,
    EntityRole,
    EntityStatus,
    EntityUpdate,
    Item,
    ScanFindings,
)
from processing.content_scanner import ContentScanner, HeuristicContentScanner

logger = structlog.get_logger(__name__)

ROLE_LABELS = {
    EntityRole.PRIMARY: "primary",
    EntityRole.ANTAGONIST: "antagonist",
    EntityRole.SECONDARY: "secondary",
}
_ROLE_ORDER = {EntityRole.PRIMARY: 0, EntityRole.ANTAGONIST: 1, EntityRole.SECONDARY: 2}

ROSTER_HEADER = "[ACTIVE ENTITIES]"
EXCLUSION_HEADER = "[DECEASED ENTITIES - MUST NOT APPEAR, SPEAK OR ACT]"


class EntityRegistry:
    """Owns the entity list for one run.

    Entities are copied on construction so the caller's records are only
    changed through the update hook. ``deceased`` is terminal: once set,
    no finding moves an entity out of it.
    """

    def __init__(self, entities: Iterable[Entity], roster_limit: int = 6) -> None:
        self._entities: dict[str, Entity] = {}
        for entity in entities:
            self._entities[entity.id] = entity.model_copy(deep=True)
        self.roster_limit = roster_limit
        self._pending_updates: list[EntityUpdate] = []

    @property
    def entities(self) -> list[Entity]:
        return list(self._entities.values())

    def get(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    def find_by_name(self, name: str) -> Entity | None:
        for entity in self._entities.values():
            if entity.name == name:
                return entity
        return None

    def living(self) -> list[Entity]:
        return [e for e in self._entities.values() if not e.is_deceased]

    def deceased(self) -> list[Entity]:
        return [e for e in self._entities.values() if e.is_deceased]

    def has_pending_updates(self) -> bool:
        return bool(self._pending_updates)

    def drain_updates(self) -> list[EntityUpdate]:
        """Return and clear updates recorded since the last drain."""
        updates, self._pending_updates = self._pending_updates, []
        return updates

    # Rendering -----------------------------------------------------------

    def render_roster(self) -> str:
        """Active entities with role, identity and up to two relationships."""
        active = [e for e in self._entities.values() if e.status == EntityStatus.ACTIVE]
        if not active:
            return ""
        active.sort(key=lambda e: _ROLE_ORDER.get(e.role, 3))
        lines = [ROSTER_HEADER]
        for entity in active[: self.roster_limit]:
            line = f"- {entity.name} ({ROLE_LABELS.get(entity.role, entity.role.value)})"
            if entity.identity:
                line += f": {entity.identity}"
            if entity.relationships:
                rels = ", ".join(
                    f"{r.target}: {r.label}" for r in entity.relationships[:2]
                )
                line += f" [relationships: {rels}]"
            lines.append(line)
        return "\n".join(lines)

    def render_exclusion_block(self) -> str:
        """Block listing every deceased entity; inserted into requests unchanged."""
        dead = self.deceased()
        if not dead:
            return ""
        lines = [EXCLUSION_HEADER]
        for entity in dead:
            if entity.death_item_id:
                lines.append(f"- {entity.name} (deceased since item {entity.death_item_id})")
            else:
                lines.append(f"- {entity.name} (deceased)")
        lines.append(
            "These entities may only be mentioned in memories or flashbacks."
        )
        return "\n".join(lines)

    # Mutation ------------------------------------------------------------

    def record_appearance(self, entity_id: str, item_id: str) -> list[EntityUpdate]:
        entity = self._entities.get(entity_id)
        if entity is None or entity.is_deceased:
            return []
        updates: list[EntityUpdate] = []
        if item_id not in entity.appearances:
            entity.appearances.append(item_id)
        if entity.status == EntityStatus.PENDING:
            entity.status = EntityStatus.ACTIVE
            updates.append(
                EntityUpdate(
                    entity_id=entity.id,
                    name=entity.name,
                    field="status",
                    old_value=EntityStatus.PENDING.value,
                    new_value=EntityStatus.ACTIVE.value,
                    item_id=item_id,
                    note="first appearance",
                )
            )
            logger.info("Entity activated", entity=entity.name, item_id=item_id)
        self._pending_updates.extend(updates)
        return updates

    def mark_deceased(
        self, entity_id: str, item_id: str, note: str = ""
    ) -> EntityUpdate | None:
        """Move an entity to the terminal deceased state.

        Returns ``None`` when the entity is unknown or already deceased.
        """
        entity = self._entities.get(entity_id)
        if entity is None or entity.is_deceased:
            return None
        old_status = entity.status.value
        entity.status = EntityStatus.DECEASED
        entity.death_item_id = item_id
        update = EntityUpdate(
            entity_id=entity.id,
            name=entity.name,
            field="status",
            old_value=old_status,
            new_value=EntityStatus.DECEASED.value,
            item_id=item_id,
            note=note or "death detected",
        )
        self._pending_updates.append(update)
        logger.info("Entity marked deceased", entity=entity.name, item_id=item_id)
        return update

    def apply_findings(self, item_id: str, findings: ScanFindings) -> list[EntityUpdate]:
        """Fold one item's scan results into the registry.

        Only high-confidence death hits change status; medium ones are left
        for review by the caller.
        """
        updates: list[EntityUpdate] = []
        for entity_id in findings.appearances.appeared:
            updates.extend(self.record_appearance(entity_id, item_id))
        if findings.deaths.confidence == Confidence.HIGH:
            for hit in findings.deaths.death_keyword_hits:
                update = self.mark_deceased(
                    hit.entity_id, item_id, note=f"death phrase '{hit.phrase}'"
                )
                if update:
                    updates.append(update)
        return updates

    # Reconciliation ------------------------------------------------------

    def analyze_appearances(
        self, items: Iterable[Item], scanner: ContentScanner | None = None
    ) -> Counter[str]:
        """Count in how many of ``items`` each entity is mentioned."""
        scanner = scanner or HeuristicContentScanner()
        counts: Counter[str] = Counter()
        entities = self.entities
        for item in items:
            if not item.has_body:
                continue
            findings = scanner.scan(item.content, entities)
            counts.update(findings.appearances.appeared)
        return counts

    def reconcile(
        self, items: Iterable[Item], scanner: ContentScanner | None = None
    ) -> list[EntityUpdate]:
        """Re-scan a batch of items and return every update since the last call.

        Appearances missed by the per-item pass are back-filled, then the
        accumulated update list is drained.
        """
        scanner = scanner or HeuristicContentScanner()
        batch = [item for item in items if item.has_body]
        for item in batch:
            findings = scanner.scan(item.content, self.living())
            for entity_id in findings.appearances.appeared:
                self.record_appearance(entity_id, item.id)
        updates = self.drain_updates()
        logger.info(
            "Entity registry reconciled",
            items=len(batch),
            updates=len(updates),
        )
        return updates

    def is_registered(self, name: str) -> bool:
        return self.find_by_name(name) is not None

    def names(self) -> list[str]:
        return [e.name for e in self._entities.values()]
