# orchestration/ordering.py
"""Total ordering of items across partitions."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from models import Item, Partition

logger = structlog.get_logger(__name__)


def order_items(items: Iterable[Item], partitions: Sequence[Partition] = ()) -> list[Item]:
    """Sort by (partition ordinal, item order).

    An item's own ``partition_ordinal`` wins over the partition record.
    Partitions without any known ordinal follow the numbered ones, grouped
    by partition in the order they are first encountered. Partitions sharing
    an ordinal stay contiguous, in encounter order. The sort is stable, so
    ties keep their input order.
    """
    known = {p.id: p.ordinal for p in partitions if p.ordinal is not None}
    item_list = list(items)
    resolved: dict[str, int | None] = {}
    for item in item_list:
        ordinal = item.partition_ordinal
        if ordinal is None:
            ordinal = known.get(item.partition_id)
        if resolved.get(item.partition_id) is None:
            resolved[item.partition_id] = ordinal

    encounter = {
        pid: index
        for index, pid in enumerate(dict.fromkeys(i.partition_id for i in item_list))
    }
    unknown_groups: dict[str, int] = {}
    for item in item_list:
        if resolved.get(item.partition_id) is None and item.partition_id not in unknown_groups:
            unknown_groups[item.partition_id] = len(unknown_groups)
    if unknown_groups:
        logger.debug(
            "Partitions without ordinals grouped by encounter order",
            partitions=list(unknown_groups),
        )

    def key(item: Item) -> tuple[int, int, int, int]:
        ordinal = item.partition_ordinal
        if ordinal is None:
            ordinal = resolved.get(item.partition_id)
        if ordinal is not None:
            return (0, ordinal, encounter[item.partition_id], item.order)
        return (1, unknown_groups[item.partition_id], 0, item.order)

    return sorted(item_list, key=key)


def partition_sequence(ordered: Sequence[Item]) -> list[str]:
    """Distinct partition ids in run order."""
    return list(dict.fromkeys(item.partition_id for item in ordered))
