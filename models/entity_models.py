"""Entity (recurring participant) records."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EntityStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    DECEASED = "deceased"


class EntityRole(str, Enum):
    PRIMARY = "primary"
    ANTAGONIST = "antagonist"
    SECONDARY = "secondary"


class Relationship(BaseModel):
    target: str
    label: str = "related"


class Entity(BaseModel):
    """A recurring named participant tracked across items."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    role: EntityRole = EntityRole.SECONDARY
    status: EntityStatus = EntityStatus.PENDING
    identity: str = ""
    description: str = ""
    death_item_id: str | None = None
    appearances: list[str] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)

    @property
    def is_deceased(self) -> bool:
        return self.status == EntityStatus.DECEASED


class EntityUpdate(BaseModel):
    """A single change to an entity emitted during reconciliation."""

    entity_id: str
    name: str
    field: str
    old_value: str | None = None
    new_value: str | None = None
    item_id: str | None = None
    note: str = ""
