# tests/test_item_writer.py
import pytest

from config import RunConfig
from conftest import FakeService
from core.exceptions import GenerationError
from models import Entity, EntityStatus, Item, Partition, Work
from orchestration.item_writer import ItemWriter
from processing.entity_registry import EXCLUSION_HEADER, ROSTER_HEADER, EntityRegistry


def _work():
    return Work(
        id="w1",
        title="废土行",
        world_setting="末日之后的废土世界。" * 100,
        styles=["冷峻", "简洁"],
        entities=[
            Entity(id="e1", name="张三", role="primary", status=EntityStatus.ACTIVE),
            Entity(id="e2", name="李四", status=EntityStatus.DECEASED, death_item_id="c02"),
        ],
    )


def _item():
    return Item(id="c03", partition_id="p2", order=1, title="启程", outline="  张三离开营地  ")


def test_build_request_collects_context():
    work = _work()
    writer = ItemWriter(FakeService(), RunConfig(previous_tail_chars=5, handoff_tail_chars=4))
    request = writer.build_request(
        work,
        _item(),
        EntityRegistry(work.entities),
        rolling_summary="## Main Plot Progress",
        previous_tail="0123456789",
        next_outline=" 张三抵达废土城 ",
        partition=Partition(id="p2", title="第二卷"),
        new_partition=True,
        handoff_tail="abcdefgh",
        boundary_constraint="[THIS PARTITION MUST ADVANCE]",
        pacing_hint="Raise the stakes.",
    )
    assert request.outline == "张三离开营地"
    assert request.next_outline == "张三抵达废土城"
    assert request.previous_tail == "56789"
    assert request.handoff_tail == "efgh"
    assert request.partition_title == "第二卷"
    assert request.target_word_count == 2500
    assert request.roster.startswith(ROSTER_HEADER)
    assert request.exclusion_block.startswith(EXCLUSION_HEADER)


def test_rendered_prompt_contains_every_section():
    work = _work()
    writer = ItemWriter(FakeService(), RunConfig())
    request = writer.build_request(
        work,
        _item(),
        EntityRegistry(work.entities),
        rolling_summary="SUMMARY-TEXT",
        next_outline="NEXT-OUTLINE",
        new_partition=True,
        handoff_tail="HANDOFF-TAIL",
        boundary_constraint="BOUNDARY-TEXT",
        pacing_hint="PACING-TEXT",
        partition=Partition(id="p2", title="第二卷"),
    )
    prompt = writer.render(request)
    assert "Title: 启程\n" in prompt
    assert "- 李四 (deceased since item c02)" in prompt
    assert "- 张三 (primary)" in prompt
    for marker in ("SUMMARY-TEXT", "NEXT-OUTLINE", "HANDOFF-TAIL", "BOUNDARY-TEXT", "PACING-TEXT"):
        assert marker in prompt
    assert '"第二卷"' in prompt
    assert "冷峻, 简洁" in prompt
    assert "末日之后的废土世界。" * 61 not in prompt


def test_previous_tail_used_when_not_a_new_partition():
    work = _work()
    writer = ItemWriter(FakeService(), RunConfig())
    request = writer.build_request(work, _item(), EntityRegistry([]), previous_tail="PREV-TAIL")
    prompt = writer.render(request)
    assert "[PREVIOUS ITEM ENDING]\nPREV-TAIL" in prompt
    assert "[NEW PARTITION]" not in prompt


@pytest.mark.asyncio
async def test_write_formats_body():
    service = FakeService(body_text="第一段。\n\n第二段。")
    writer = ItemWriter(service, RunConfig())
    body = await writer.write(writer.build_request(_work(), _item(), EntityRegistry([])))
    assert body == "　　第一段。\n　　第二段。"
    assert service.purposes() == ["item_body"]


@pytest.mark.asyncio
async def test_write_rejects_empty_body():
    service = FakeService()
    writer = ItemWriter(service, RunConfig())
    service.body_text = "<p></p>"
    with pytest.raises(GenerationError) as excinfo:
        await writer.write(writer.build_request(_work(), _item(), EntityRegistry([])))
    assert excinfo.value.kind == GenerationError.EMPTY
