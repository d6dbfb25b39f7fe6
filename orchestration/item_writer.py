# orchestration/item_writer.py
"""Builds item body requests and calls the generation service."""

from __future__ import annotations

import structlog

import utils
from config import RunConfig, settings
from core.exceptions import GenerationError
from core.llm_interface import CompletionOptions, GenerationService
from models import GenerationRequest, Item, Partition, Work
from processing.entity_registry import EntityRegistry
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

ITEM_BODY_TEMPLATE = "item_writer/item_body.j2"


class ItemWriter:
    def __init__(self, service: GenerationService, config: RunConfig) -> None:
        self.service = service
        self.config = config

    def build_request(
        self,
        work: Work,
        item: Item,
        registry: EntityRegistry,
        rolling_summary: str = "",
        previous_tail: str = "",
        next_outline: str = "",
        partition: Partition | None = None,
        new_partition: bool = False,
        handoff_tail: str = "",
        boundary_constraint: str = "",
        pacing_hint: str = "",
    ) -> GenerationRequest:
        """Assemble every piece of context the body prompt needs.

        The roster and deceased exclusion block are taken from the registry
        as rendered, without further editing.
        """
        return GenerationRequest(
            item_id=item.id,
            title=item.title,
            outline=item.outline.strip(),
            world_setting=work.world_setting,
            styles=list(work.styles),
            target_word_count=work.target_word_count or self.config.target_word_count,
            roster=registry.render_roster(),
            exclusion_block=registry.render_exclusion_block(),
            rolling_summary=rolling_summary,
            previous_tail=utils.tail_text(previous_tail, self.config.previous_tail_chars),
            next_outline=next_outline.strip(),
            new_partition=new_partition,
            partition_title=partition.title if partition else "",
            handoff_tail=utils.tail_text(handoff_tail, self.config.handoff_tail_chars),
            boundary_constraint=boundary_constraint,
            pacing_hint=pacing_hint,
        )

    def render(self, request: GenerationRequest) -> str:
        return render_prompt(ITEM_BODY_TEMPLATE, request)

    async def write(self, request: GenerationRequest) -> str:
        """Generate and normalize the body; raises ``GenerationError`` on failure."""
        prompt = self.render(request)
        raw = await self.service.complete(
            prompt,
            CompletionOptions(
                retries=self.config.body_retries,
                timeout=self.config.body_timeout,
                purpose="item_body",
                temperature=settings.TEMPERATURE_DRAFTING,
                model=settings.DRAFTING_MODEL,
            ),
        )
        body = utils.format_to_txt(raw)
        if not body:
            raise GenerationError(
                "Generated body is empty after formatting",
                kind=GenerationError.EMPTY,
                purpose="item_body",
            )
        logger.debug("Item body generated", item_id=request.item_id, chars=len(body))
        return body
