# tests/test_content_scanner.py
from models import Confidence, DeathCandidate, Entity, EntityStatus, Violation
from processing.content_scanner import (
    HeuristicContentScanner,
    extract_potential_new_names,
    format_death_confirmation,
    format_violation_warning,
    is_retrospective,
)


def _entity(eid, name, status=EntityStatus.ACTIVE, death_item_id=None):
    return Entity(id=eid, name=name, status=status, death_item_id=death_item_id)


def test_high_confidence_death_needs_three_distinct_phrases():
    scanner = HeuristicContentScanner()
    text = "李四身中数剑，倒在血泊之中，终于断气身亡。"
    result = scanner.scan_deaths(text, [_entity("e2", "李四")])
    assert result.confidence == Confidence.HIGH
    assert result.candidate_ids == ["e2"]
    assert result.distinct_phrases == 3


def test_single_phrase_gives_medium_confidence():
    scanner = HeuristicContentScanner()
    result = scanner.scan_deaths("李四死了。", [_entity("e2", "李四")])
    assert result.confidence == Confidence.MEDIUM
    assert result.death_keyword_hits[0].phrase == "死了"


def test_flashback_framing_suppresses_death_hit():
    scanner = HeuristicContentScanner()
    result = scanner.scan_deaths("张三想起李四死了的那天。", [_entity("e2", "李四")])
    assert result.death_keyword_hits == []
    assert result.confidence == Confidence.LOW


def test_no_death_language_returns_empty_scan():
    scanner = HeuristicContentScanner()
    result = scanner.scan_deaths("李四笑着走了。", [_entity("e2", "李四")])
    assert result.distinct_phrases == 0
    assert result.death_keyword_hits == []


def test_present_tense_deceased_mention_is_violation():
    scanner = HeuristicContentScanner()
    dead = _entity("e2", "李四", EntityStatus.DECEASED, death_item_id="c05")
    result = scanner.detect_violations("李四笑着走了进来，拍了拍张三的肩膀。", [dead])
    assert result.has_violation
    violation = result.violations[0]
    assert violation.name == "李四"
    assert violation.death_item_id == "c05"
    assert violation.occurrences == 1


def test_memories_of_deceased_are_not_violations():
    scanner = HeuristicContentScanner()
    dead = _entity("e2", "李四", EntityStatus.DECEASED)
    text = "张三回忆起李四的笑容。\n他在李四的墓碑前站了很久。"
    assert not scanner.detect_violations(text, [dead]).has_violation


def test_scan_splits_living_and_deceased():
    scanner = HeuristicContentScanner()
    entities = [
        _entity("e1", "张三", EntityStatus.PENDING),
        _entity("e2", "李四", EntityStatus.DECEASED),
    ]
    findings = scanner.scan("<p>张三和李四并肩而行。</p>", entities)
    assert findings.appearances.appeared == ["e1"]
    assert findings.appearances.newly_active == ["e1"]
    assert [v.entity_id for v in findings.violations.violations] == ["e2"]


def test_is_retrospective_markers():
    assert is_retrospective("He remembered the old days")
    assert is_retrospective("已故的李四")
    assert not is_retrospective("李四拔出了剑")


def test_extract_potential_new_names():
    text = "王五说：“走吧。”"
    assert extract_potential_new_names(text, []) == ["王五"]
    assert extract_potential_new_names(text, ["王五"]) == []


def test_format_helpers():
    warning = format_violation_warning(
        [Violation(entity_id="e2", name="李四", death_item_id="c05", occurrences=2, contexts=["...李四说..."])]
    )
    assert "[李四] (deceased since item c05) - 2 occurrence(s):" in warning
    assert format_violation_warning([]) == ""

    candidates = [
        DeathCandidate(entity_id="e2", name="李四", phrase="死了", context="李四死了"),
        DeathCandidate(entity_id="e2", name="李四", phrase="身亡", context="李四身亡"),
    ]
    message = format_death_confirmation(candidates, "第五章")
    assert message.count("- 李四") == 1
    assert "'第五章'" in message
