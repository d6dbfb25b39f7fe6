# processing/content_scanner.py
"""Heuristic text analysis: entity mentions, death language, flashback framing."""

from __future__ import annotations

import re
from typing import Protocol

import structlog

import utils
from models import (
    AppearanceScan,
    Confidence,
    DeathCandidate,
    DeathScan,
    Entity,
    EntityStatus,
    ScanFindings,
    Violation,
    ViolationScan,
)

logger = structlog.get_logger(__name__)

DEATH_PHRASES: tuple[str, ...] = (
    "死了", "死亡", "牺牲", "去世", "陨落", "身亡", "殒命",
    "断气", "咽气", "没了呼吸", "停止了呼吸", "闭上了眼睛",
    "倒在血泊", "化为灰烬", "魂飞魄散",
    "灰飞烟灭", "香消玉殒", "与世长辞", "命丧", "丧命",
    "died", "was killed", "were killed", "is dead", "was dead",
    "breathed his last", "breathed her last", "passed away",
    "lifeless", "stopped breathing", "slain",
)

FLASHBACK_MARKERS: tuple[str, ...] = (
    "曾经", "当年", "想起", "回忆", "以前", "从前", "那时", "往事",
    "生前", "怀念", "梦见", "梦中",
    "remembered", "remembering", "recalled", "memory of", "memories of",
    "years ago", "long ago", "back then", "used to", "flashback", "dreamed",
)

# Memorial vocabulary counts as framing only when a deceased name is involved
RETROSPECTIVE_MARKERS: tuple[str, ...] = FLASHBACK_MARKERS + (
    "故去", "已故", "去世", "死后", "遗物", "墓碑", "遗像", "坟",
    "the late ", "grave", "in memory", "funeral", "mourned",
)

DIALOGUE_VERBS = ("说", "道", "问", "答", "喊", "叫", "笑", "怒", "叹")
ACTION_VERBS = (
    "转身", "走", "跑", "站", "坐", "躺", "跪", "跳", "冲", "挥", "举",
    "拿", "放", "看", "望", "听", "想", "觉得",
)
NON_NAME_WORDS = frozenset(
    {
        "自己", "对方", "众人", "大家", "所有", "一切", "这里", "那里",
        "此时", "当时", "这时", "那时", "之后", "之前", "突然", "居然",
        "竟然", "果然", "虽然", "当然", "显然", "必然", "偶然", "忽然",
        "仿佛", "似乎", "好像", "看来", "想来", "说来", "听来",
        "少年", "青年", "老人", "女子", "男子", "少女", "老者",
    }
)
_INVALID_NAME_STARTS = ("一个", "那个", "这个", "什么", "为什", "怎么", "如何", "如果", "虽然", "但是", "因为", "所以")

DEATH_WINDOW = 50
VIOLATION_WINDOW = 20
MAX_CONTEXTS = 3


class ContentScanner(Protocol):
    """Pluggable strategy used by the sequencer to analyze generated text."""

    def scan(self, text: str, entities: list[Entity]) -> ScanFindings: ...


def is_retrospective(
    context: str, markers: tuple[str, ...] = RETROSPECTIVE_MARKERS
) -> bool:
    """True when the snippet carries memory or flashback framing."""
    lowered = context.lower()
    return any(marker in lowered for marker in markers)


class HeuristicContentScanner:
    """Regex and keyword based implementation of ``ContentScanner``."""

    def __init__(
        self,
        death_phrases: tuple[str, ...] = DEATH_PHRASES,
        death_window: int = DEATH_WINDOW,
        violation_window: int = VIOLATION_WINDOW,
    ) -> None:
        self.death_phrases = death_phrases
        self.death_window = death_window
        self.violation_window = violation_window

    def scan(self, text: str, entities: list[Entity]) -> ScanFindings:
        deceased = [e for e in entities if e.is_deceased]
        living = [e for e in entities if not e.is_deceased]
        return ScanFindings(
            appearances=self.scan_appearances(text, living),
            deaths=self.scan_deaths(text, living),
            violations=self.detect_violations(text, deceased),
        )

    def scan_appearances(self, text: str, entities: list[Entity]) -> AppearanceScan:
        """Find entities whose display name occurs in the tag-stripped text."""
        plain = utils.strip_tags(text)
        result = AppearanceScan()
        for entity in entities:
            if entity.name and entity.name in plain:
                result.appeared.append(entity.id)
                if entity.status == EntityStatus.PENDING:
                    result.newly_active.append(entity.id)
        return result

    def scan_deaths(self, text: str, entities: list[Entity]) -> DeathScan:
        """Look for entity names near death phrases.

        Confidence is derived from the number of distinct death phrases
        present anywhere in the item.
        """
        plain = utils.strip_tags(text)
        lowered = plain.lower()
        present = [p for p in self.death_phrases if p.lower() in lowered]
        if not present:
            return DeathScan()

        hits: list[DeathCandidate] = []
        for entity in entities:
            if entity.is_deceased or not entity.name:
                continue
            hit = self._first_death_hit(plain, lowered, entity, present)
            if hit:
                hits.append(hit)

        if not hits:
            return DeathScan(distinct_phrases=len(present))
        confidence = Confidence.HIGH if len(present) >= 3 else Confidence.MEDIUM
        logger.debug(
            "Death candidates detected",
            names=[h.name for h in hits],
            confidence=confidence.value,
        )
        return DeathScan(
            death_keyword_hits=hits,
            confidence=confidence,
            distinct_phrases=len(present),
        )

    def _first_death_hit(
        self, plain: str, lowered: str, entity: Entity, phrases: list[str]
    ) -> DeathCandidate | None:
        for match in re.finditer(re.escape(entity.name), plain):
            context, _, _ = utils.window(
                plain, match.start(), match.end(), self.death_window
            )
            context_lower = context.lower()
            for phrase in phrases:
                if phrase.lower() not in context_lower:
                    continue
                if is_retrospective(context, FLASHBACK_MARKERS):
                    break
                return DeathCandidate(
                    entity_id=entity.id,
                    name=entity.name,
                    phrase=phrase,
                    context=context,
                )
        return None

    def detect_violations(self, text: str, deceased: list[Entity]) -> ViolationScan:
        """Report present-tense occurrences of deceased entities."""
        plain = utils.strip_tags(text)
        result = ViolationScan()
        for entity in deceased:
            if not entity.name:
                continue
            contexts: list[str] = []
            for match in re.finditer(re.escape(entity.name), plain):
                context, _, _ = utils.window(
                    plain, match.start(), match.end(), self.violation_window
                )
                if is_retrospective(context):
                    continue
                contexts.append(f"...{context}...")
            if contexts:
                result.violations.append(
                    Violation(
                        entity_id=entity.id,
                        name=entity.name,
                        death_item_id=entity.death_item_id,
                        occurrences=len(contexts),
                        contexts=contexts[:MAX_CONTEXTS],
                    )
                )
        if result.violations:
            logger.warning(
                "Deceased entities appear in generated text",
                names=[v.name for v in result.violations],
            )
        return result


def extract_potential_new_names(text: str, existing_names: list[str]) -> list[str]:
    """Guess unregistered CJK personal names from dialogue and action cues."""
    plain = utils.strip_tags(text)
    found: list[str] = []
    patterns = [
        re.compile(r"([^，。！？、\s“”「」『』\"]{2,4})(?:" + "|".join(DIALOGUE_VERBS) + r")[:：]?\s*[\"“「『]"),
        re.compile(r"([^，。！？、\s“”「」『』\"]{2,4})(?:" + "|".join(ACTION_VERBS) + r")"),
        re.compile(r"(?:这位|那位)([^，。！？、\s]{2,4})"),
    ]
    for pattern in patterns:
        for match in pattern.finditer(plain):
            name = match.group(1)
            if _looks_like_name(name) and name not in found:
                found.append(name)
    existing = set(existing_names)
    return [n for n in found if n not in existing and n not in NON_NAME_WORDS]


def _looks_like_name(name: str) -> bool:
    if not re.fullmatch(r"[一-龥]{2,4}", name):
        return False
    return not any(name.startswith(start) for start in _INVALID_NAME_STARTS)


def format_violation_warning(violations: list[Violation]) -> str:
    """Human-readable review text for deceased-entity violations."""
    if not violations:
        return ""
    lines = ["Deceased entities appear in the generated text:", ""]
    for v in violations:
        header = f"[{v.name}]"
        if v.death_item_id:
            header += f" (deceased since item {v.death_item_id})"
        lines.append(f"{header} - {v.occurrences} occurrence(s):")
        lines.extend(f'  "{ctx}"' for ctx in v.contexts)
        lines.append("")
    lines.append(
        "Review these passages; deceased entities may only appear in memories or flashbacks."
    )
    return "\n".join(lines)


def format_death_confirmation(candidates: list[DeathCandidate], item_title: str) -> str:
    """Message asking a human to confirm medium-confidence deaths."""
    if not candidates:
        return ""
    names = []
    for c in candidates:
        if c.name not in names:
            names.append(c.name)
    bullet_list = "\n".join(f"- {name}" for name in names)
    return (
        f"Possible deaths detected in '{item_title}':\n\n{bullet_list}\n\n"
        "Mark these entities as deceased so later items exclude them?"
    )
