# tests/test_sequencer.py
from unittest.mock import AsyncMock

import pytest

from config import RunConfig
from conftest import FakeService, MemoryStore
from core.exceptions import BrokenContinuityError, MissingOutlineError, UnknownStartItemError
from models import Entity, EntityStatus, Item, Partition, ProgressStatus, Work
from orchestration.interfaces import CancellationToken
from orchestration.sequencer import ContinuitySequencer

LONG_BODY = "主角在废土上跋涉，风沙扑面而来。" * 40
DEATH_BODY = "李四身中数剑，倒在血泊之中，终于断气身亡。"


def _work(entities=(), p2_key_events=()):
    return Work(
        id="w1",
        title="废土行",
        world_setting="末日之后的废土世界",
        partitions=[
            Partition(id="p1", ordinal=1, title="第一卷"),
            Partition(id="p2", ordinal=2, title="第二卷", key_events=list(p2_key_events)),
        ],
        entities=list(entities),
    )


def _item(n, partition_id="p1", content="", outline=None):
    return Item(
        id=f"c{n:02d}",
        partition_id=partition_id,
        order=n,
        title=f"第{n}章",
        outline=outline if outline is not None else f"主角在第{n}章继续冒险，遭遇新的挑战",
        content=content,
    )


def _bodies(service):
    return [prompt for purpose, prompt in service.calls if purpose == "item_body"]


def _sequencer(service, store, events=None, **kwargs):
    config = kwargs.pop("config", RunConfig(summary_interval=10))
    return ContinuitySequencer(
        service,
        store,
        config=config,
        progress=events.append if events is not None else None,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_completed_items_are_skipped_without_service_calls(fake_service, memory_store):
    events = []
    entity_hook = AsyncMock()
    items = [_item(n, content=LONG_BODY) for n in range(1, 4)]
    result = await _sequencer(fake_service, memory_store, events, entity_hook=entity_hook).run(
        _work(), items
    )
    assert fake_service.calls == []
    assert memory_store.order == []
    assert result.completed_count == 3
    assert result.failed_count == 0
    assert [e.status for e in events] == [ProgressStatus.COMPLETE] * 3
    entity_hook.assert_not_awaited()


@pytest.mark.asyncio
async def test_pending_items_generated_in_order(fake_service, memory_store):
    events = []
    summary_hook = AsyncMock()
    items = [_item(3), _item(1), _item(2)]
    result = await _sequencer(
        fake_service, memory_store, events, summary_hook=summary_hook
    ).run(_work(), items)

    assert memory_store.order == ["c01", "c02", "c03"]
    assert result.completed_count == 3
    assert result.total_chars == sum(len(v) for v in memory_store.saved.values())
    assert [e.status for e in events[:3]] == [
        ProgressStatus.WRITING,
        ProgressStatus.PERSISTING,
        ProgressStatus.COMPLETE,
    ]
    assert [(e.current_ordinal, e.total_count) for e in events[::3]] == [(1, 3), (2, 3), (3, 3)]

    bodies = _bodies(fake_service)
    assert "[PREVIOUS ITEM ENDING]" in bodies[1]
    assert "第1段正文" in bodies[1]
    assert "NEXT ITEM OUTLINE" in bodies[0]
    assert "第2章继续冒险" in bodies[0]

    # Only the final refresh runs: three items never reach the interval
    assert fake_service.count("summary_refresh") == 1
    summary_hook.assert_awaited_once()
    assert summary_hook.await_args.args[1] == 3
    assert result.rolling_summary == summary_hook.await_args.args[0]


@pytest.mark.asyncio
async def test_interval_of_ten_refreshes_once_and_empties_buffer(fake_service, memory_store):
    items = [_item(n) for n in range(1, 11)]
    result = await _sequencer(fake_service, memory_store).run(_work(), items)
    assert len(memory_store.order) == 10
    assert fake_service.count("summary_refresh") == 1
    refresh_index = fake_service.purposes().index("summary_refresh")
    assert fake_service.purposes()[:refresh_index].count("item_body") == 10
    assert "summary 1" in result.rolling_summary


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_item(fake_service, memory_store):
    token = CancellationToken()
    entity_hook = AsyncMock()
    completed = []

    def sink(event):
        if event.status == ProgressStatus.COMPLETE:
            completed.append(event.item_id)
            if len(completed) == 2:
                token.cancel()

    sequencer = ContinuitySequencer(
        fake_service,
        memory_store,
        config=RunConfig(summary_interval=10),
        progress=sink,
        cancellation=token,
        entity_hook=entity_hook,
    )
    result = await sequencer.run(_work(), [_item(n) for n in range(1, 6)])

    assert result.cancelled
    assert memory_store.order == ["c01", "c02"]
    assert result.completed_count == 2
    assert fake_service.count("item_body") == 2
    entity_hook.assert_awaited_once()
    # Final refresh still runs on a stop
    assert fake_service.count("summary_refresh") == 1


@pytest.mark.asyncio
async def test_cancellation_predicate_is_accepted(fake_service, memory_store):
    sequencer = ContinuitySequencer(
        fake_service, memory_store, config=RunConfig(), cancellation=lambda: True
    )
    result = await sequencer.run(_work(), [_item(1)])
    assert result.cancelled
    assert fake_service.calls == []


@pytest.mark.asyncio
async def test_resume_refreshes_summary_before_first_item(fake_service, memory_store):
    events = []
    items = [_item(n, content=LONG_BODY if n < 4 else "") for n in range(1, 6)]
    result = await _sequencer(fake_service, memory_store, events).run(
        _work(), items, start_item_id="c04"
    )

    purposes = fake_service.purposes()
    assert purposes[0] == "summary_refresh"
    first_body = _bodies(fake_service)[0]
    assert "summary 1" in first_body
    assert LONG_BODY[-50:] in first_body
    assert memory_store.order == ["c04", "c05"]
    assert result.completed_count == 2
    assert events[0].current_ordinal == 4
    assert events[0].total_count == 5


@pytest.mark.asyncio
async def test_resume_summary_draws_only_on_last_ten_prior_items(fake_service, memory_store):
    items = [_item(n, content=LONG_BODY if n <= 15 else "") for n in range(1, 18)]
    await _sequencer(fake_service, memory_store).run(_work(), items, start_item_id="c16")

    assert fake_service.purposes()[0] == "summary_refresh"
    resume_prompt = fake_service.calls[0][1]
    for n in range(6, 16):
        assert f"## 第{n}章\n" in resume_prompt
    for n in range(1, 6):
        assert f"## 第{n}章\n" not in resume_prompt
    assert memory_store.order == ["c16", "c17"]


@pytest.mark.asyncio
async def test_resume_after_item_without_body_is_fatal(fake_service, memory_store):
    events = []
    items = [_item(1, content=LONG_BODY), _item(2), _item(3)]
    with pytest.raises(BrokenContinuityError) as excinfo:
        await _sequencer(fake_service, memory_store, events).run(
            _work(), items, start_item_id="c03"
        )
    assert excinfo.value.item_id == "c02"
    assert fake_service.calls == []
    assert [(e.item_id, e.status, e.current_ordinal) for e in events] == [
        ("c02", ProgressStatus.ERROR, 2)
    ]
    assert events[0].error == "broken continuity"


@pytest.mark.asyncio
async def test_unknown_start_item_is_fatal(fake_service, memory_store):
    with pytest.raises(UnknownStartItemError):
        await _sequencer(fake_service, memory_store).run(_work(), [_item(1)], start_item_id="c99")


@pytest.mark.asyncio
async def test_missing_outline_halts_run_after_finalizing(fake_service, memory_store):
    events = []
    entity_hook = AsyncMock()
    items = [_item(1), _item(2, outline="短"), _item(3)]
    sequencer = _sequencer(fake_service, memory_store, events, entity_hook=entity_hook)
    with pytest.raises(MissingOutlineError) as excinfo:
        await sequencer.run(_work(), items)

    assert excinfo.value.item_id == "c02"
    assert memory_store.order == ["c01"]
    assert events[-1].status == ProgressStatus.ERROR
    assert events[-1].item_id == "c02"
    assert fake_service.count("summary_refresh") == 1
    entity_hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_generation_failure_skips_item_and_continues(memory_store):
    service = FakeService(fail_titles=["第2章"])
    events = []
    result = await _sequencer(service, memory_store, events).run(
        _work(), [_item(n) for n in range(1, 4)]
    )
    assert memory_store.order == ["c01", "c03"]
    assert result.failed_count == 1
    assert result.completed_count == 2
    assert result.failures[0].item_id == "c02"
    error_events = [e for e in events if e.status == ProgressStatus.ERROR]
    assert [e.item_id for e in error_events] == ["c02"]
    assert "第1段正文" in _bodies(service)[2]


@pytest.mark.asyncio
async def test_store_rejection_skips_item(fake_service):
    store = MemoryStore(reject={"c02"})
    result = await _sequencer(fake_service, store).run(_work(), [_item(n) for n in range(1, 4)])
    assert store.order == ["c01", "c03"]
    assert result.failed_count == 1
    assert result.failures[0].reason == "rejected c02"


@pytest.mark.asyncio
async def test_partition_transition_refreshes_and_flags_new_partition(fake_service, memory_store):
    items = [_item(1), _item(2), _item(3, partition_id="p2")]
    await _sequencer(fake_service, memory_store).run(_work(), items)

    purposes = fake_service.purposes()
    third_body = [i for i, p in enumerate(purposes) if p == "item_body"][2]
    assert "summary_refresh" in purposes[:third_body]
    prompt = _bodies(fake_service)[2]
    assert "[NEW PARTITION]" in prompt
    assert '"第二卷"' in prompt
    assert "第2段正文" in prompt
    assert "summary 1" in prompt
    # Transition refresh plus the final one
    assert fake_service.count("summary_refresh") == 2


@pytest.mark.asyncio
async def test_partition_transition_skips_refresh_when_summary_is_current(fake_service, memory_store):
    items = [_item(1), _item(2), _item(3, partition_id="p2")]
    await _sequencer(fake_service, memory_store, config=RunConfig(summary_interval=2)).run(
        _work(), items
    )
    # Interval refresh at item 2, no transition refresh, final refresh after item 3
    assert fake_service.count("summary_refresh") == 2


@pytest.mark.asyncio
async def test_high_confidence_death_excludes_entity_from_later_items(memory_store):
    service = FakeService(body_text=DEATH_BODY)
    entity_hook = AsyncMock()
    work = _work(
        entities=[
            Entity(id="e1", name="张三", role="primary", status=EntityStatus.ACTIVE),
            Entity(id="e2", name="李四", status=EntityStatus.ACTIVE),
        ]
    )
    result = await _sequencer(service, memory_store, entity_hook=entity_hook).run(
        work, [_item(1), _item(2)]
    )

    assert "- 李四 (deceased since item c01)" in _bodies(service)[1]
    assert "- 李四 (deceased since item c01)" not in _bodies(service)[0]
    first_updates, entities = entity_hook.await_args_list[0].args
    assert any(u.entity_id == "e2" and u.new_value == "deceased" for u in first_updates)
    assert next(e for e in entities if e.id == "e2").is_deceased
    assert entity_hook.await_count == 2
    assert [v.item_id for v in result.violations] == ["c02"]
    assert work.entities[1].status == EntityStatus.ACTIVE


@pytest.mark.asyncio
async def test_medium_confidence_death_is_reported_not_applied(memory_store):
    service = FakeService(body_text="李四死了。张三转身离开。")
    work = _work(entities=[Entity(id="e2", name="李四", status=EntityStatus.ACTIVE)])
    result = await _sequencer(service, memory_store).run(work, [_item(1), _item(2)])
    assert {c.entity_id for c in result.death_candidates} == {"e2"}
    assert "DECEASED ENTITIES" not in _bodies(service)[1]


@pytest.mark.asyncio
async def test_outline_findings_are_reported_per_partition(fake_service, memory_store):
    items = [_item(1), _item(2, outline="主角进入废土城，开始新的冒险"), _item(3, partition_id="p2")]
    result = await _sequencer(fake_service, memory_store).run(
        _work(p2_key_events=["主角进入废土城"]), items
    )
    findings = {f.partition_id: f.result for f in result.outline_findings}
    finding = findings["p1"]
    assert not finding.is_valid
    assert finding.errors[0].type == "future_leak"
    assert memory_store.order == ["c01", "c02", "c03"]


@pytest.mark.asyncio
async def test_run_handle_streams_events_and_result(fake_service, memory_store):
    sequencer = _sequencer(fake_service, memory_store)
    handle = sequencer.start(_work(), [_item(1), _item(2)])
    events = [event async for event in handle.events()]
    result = await handle.result()
    assert handle.done
    assert result.completed_count == 2
    assert [e.status for e in events].count(ProgressStatus.COMPLETE) == 2


@pytest.mark.asyncio
async def test_run_handle_cancel_before_first_item(fake_service, memory_store):
    handle = _sequencer(fake_service, memory_store).start(_work(), [_item(1), _item(2)])
    handle.cancel()
    result = await handle.result()
    assert result.cancelled
    assert result.completed_count == 0
    assert [event async for event in handle.events()] == []
    assert fake_service.calls == []
