# tests/test_ordering.py
from models import Item, Partition
from orchestration.ordering import order_items, partition_sequence


def _item(item_id, partition_id, order, partition_ordinal=None):
    return Item(id=item_id, partition_id=partition_id, order=order, partition_ordinal=partition_ordinal)


def test_orders_by_partition_ordinal_then_item_order():
    partitions = [Partition(id="p2", ordinal=2), Partition(id="p1", ordinal=1)]
    items = [_item("b2", "p2", 2), _item("a2", "p1", 2), _item("b1", "p2", 1), _item("a1", "p1", 1)]
    assert [i.id for i in order_items(items, partitions)] == ["a1", "a2", "b1", "b2"]


def test_item_partition_ordinal_wins_over_partition_record():
    partitions = [Partition(id="p1", ordinal=5), Partition(id="p2", ordinal=1)]
    items = [_item("x", "p1", 1, partition_ordinal=0), _item("y", "p2", 1)]
    assert [i.id for i in order_items(items, partitions)] == ["x", "y"]


def test_unknown_ordinals_follow_grouped_by_encounter():
    partitions = [Partition(id="p1", ordinal=1)]
    items = [
        _item("z1", "pz", 1),
        _item("m1", "pm", 1),
        _item("a1", "p1", 1),
        _item("z2", "pz", 2),
    ]
    assert [i.id for i in order_items(items, partitions)] == ["a1", "z1", "z2", "m1"]


def test_ties_keep_input_order():
    items = [_item("first", "p1", 1), _item("second", "p1", 1)]
    assert [i.id for i in order_items(items, [Partition(id="p1", ordinal=1)])] == ["first", "second"]


def test_partition_sequence():
    items = [_item("a1", "p1", 1), _item("a2", "p1", 2), _item("b1", "p2", 1)]
    assert partition_sequence(items) == ["p1", "p2"]
    assert partition_sequence([]) == []


def test_partitions_sharing_an_ordinal_stay_contiguous():
    items = [
        _item("a1", "A", 1, partition_ordinal=1),
        _item("a2", "A", 2, partition_ordinal=1),
        _item("b1", "B", 1, partition_ordinal=1),
        _item("b2", "B", 2, partition_ordinal=1),
    ]
    assert [i.id for i in order_items(items)] == ["a1", "a2", "b1", "b2"]
    assert [i.id for i in order_items(list(reversed(items)))] == ["b1", "b2", "a1", "a2"]
