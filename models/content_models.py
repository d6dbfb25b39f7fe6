"""Records describing the work, its partitions and items."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .entity_models import Entity


class Item(BaseModel):
    """A chapter-equivalent content unit."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    partition_id: str = Field(min_length=1)
    partition_ordinal: int | None = None
    order: int
    title: str = ""
    outline: str = ""
    content: str = ""
    word_count: int = 0

    @field_validator("outline", "content", "title", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def has_body(self) -> bool:
        return bool(self.content and self.content.strip())

    def body_length(self) -> int:
        return len(self.content.strip()) if self.content else 0


class Partition(BaseModel):
    """A volume-equivalent division of the work."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    ordinal: int | None = None
    title: str = ""
    summary: str = ""
    main_plot: str | None = None
    key_events: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)


class Work(BaseModel):
    """Top-level serialized text project as seen by the engine."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    title: str = ""
    world_setting: str = ""
    styles: list[str] = Field(default_factory=list)
    target_word_count: int | None = None
    partitions: list[Partition] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)
    rolling_summary: str = ""
    summary_refreshed_at: int = 0

    @field_validator("partitions")
    @classmethod
    def _unique_partition_ordinals(cls, value: list[Partition]) -> list[Partition]:
        seen: set[int] = set()
        for partition in value:
            if partition.ordinal is None:
                continue
            if partition.ordinal in seen:
                raise ValueError(
                    f"Duplicate partition ordinal {partition.ordinal} (partition '{partition.id}')"
                )
            seen.add(partition.ordinal)
        return value

    def partition_by_id(self, partition_id: str) -> Partition | None:
        for partition in self.partitions:
            if partition.id == partition_id:
                return partition
        return None
