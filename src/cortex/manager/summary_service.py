"""Research summary pipeline.

Loads the unread research feed, selects items by source priority,
builds the attributed summary prompt and either streams the answer or
returns it whole. On natural completion the summary is stored in the
history table and, on request, every candidate item is marked read.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from cortex.db.client import DatabaseClient
from cortex.manager.cancellation import CancellationToken
from cortex.manager.prompts import build_summary_prompt
from cortex.manager.ranking import (
    SelectionBudget,
    clamp_max_items,
    count_by_tier,
    select_by_priority,
)
from cortex.manager.relay import StreamRelay
from cortex.manager.text import (
    derive_history_preview,
    derive_history_title,
    normalize_text,
    parse_timestamp,
)
from cortex.models.knowledge import KnowledgeItem, ScoredItem, SourceDescriptor
from cortex.models.stream import MetaEvent, SummaryFraming
from cortex.models.summary import SummaryMetadata, SummaryRequest, SummaryResponse
from cortex.tools.gemini import GeminiClient, GenerationConfig, user_turn

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 1200
MAX_TITLE_CHARS = 200
UNREAD_FETCH_LIMIT = 500
HISTORY_CONTEXT_SIZE = 5

SUMMARY_CONFIG = GenerationConfig(temperature=0.6, max_output_tokens=8192)

NO_SOURCES_MESSAGE = "No research sources found for this user."
NO_ITEMS_MESSAGE = "No unread research items found."
EMPTY_SUMMARY_MESSAGE = "Summary generation returned empty content."


@dataclass
class SummaryPlan:
    """Everything decided before generation starts."""

    requester_id: str
    target_user_id: str
    can_write: bool
    mark_as_read: bool
    sources: list[SourceDescriptor]
    candidates: list[KnowledgeItem]
    selected: list[ScoredItem[KnowledgeItem]]
    total_unread: int
    priority_counts: dict[int, int]
    prompt: str
    history: list[dict[str, Any]] = field(default_factory=list)

    @property
    def source_ids(self) -> list[str]:
        """Distinct sources among the candidates, in first-seen order."""
        return list(dict.fromkeys(item.source_id for item in self.candidates))

    @property
    def metadata(self) -> SummaryMetadata:
        return SummaryMetadata(
            item_count=self.total_unread,
            source_count=len(self.source_ids),
            priority_counts=self.priority_counts,
        )


def to_knowledge_item(row: dict[str, Any], source: SourceDescriptor) -> KnowledgeItem:
    """Normalise a ``research_items`` row for the prompt."""
    return KnowledgeItem(
        id=row["id"],
        source_id=row["source_id"],
        source_name=source.name,
        title=normalize_text(row.get("title") or "Untitled", MAX_TITLE_CHARS),
        body=normalize_text(row.get("content") or row.get("summary") or "", MAX_CONTENT_CHARS),
        url=row.get("url") or None,
        published_at=parse_timestamp(row.get("published_at")),
        is_read=bool(row.get("is_read")),
    )


class SummaryService:
    """Builds and runs research summaries for a user."""

    def __init__(self, db: DatabaseClient, gemini: GeminiClient) -> None:
        self.db = db
        self.gemini = gemini

    async def plan(self, requester_id: str, request: SummaryRequest) -> SummaryPlan | SummaryResponse:
        """Gather and select the summary input.

        Args:
            requester_id: The authenticated user
            request: Source filter, mark-read flag and item cap

        Returns:
            A SummaryPlan, or a SummaryResponse when there is nothing to
            summarise
        """
        shared_owner = await self._shared_owner()
        target_user_id = shared_owner or requester_id
        can_write = shared_owner is None or shared_owner == requester_id

        source_rows = await self.db.get_research_sources(target_user_id, request.source_ids)
        if not source_rows:
            return SummaryResponse(summary=NO_SOURCES_MESSAGE, metadata=SummaryMetadata())
        sources = [SourceDescriptor.from_row(row) for row in source_rows]
        source_map = {source.id: source for source in sources}
        source_ids = list(source_map)

        unread_count = await self._unread_count(source_ids)
        item_rows = await self.db.get_unread_items(source_ids, limit=UNREAD_FETCH_LIMIT)
        if not item_rows:
            return SummaryResponse(summary=NO_ITEMS_MESSAGE, metadata=SummaryMetadata())

        history = await self._history(target_user_id)

        candidates = [
            to_knowledge_item(row, source_map[row["source_id"]])
            for row in item_rows
            if row.get("source_id") in source_map
        ]
        priority_counts = count_by_tier(candidates, source_map)
        budget = SelectionBudget(global_cap=clamp_max_items(request.max_items))
        selected = select_by_priority(candidates, source_map, budget)
        total_unread = unread_count if unread_count is not None else len(item_rows)

        prompt = build_summary_prompt(
            sources=sources,
            selected=selected,
            history=history,
            total_unread=total_unread,
            source_count=len({item.source_id for item in candidates}),
            priority_counts=priority_counts,
        )
        logger.info(
            f"Summary plan for {target_user_id}: {len(selected)}/{len(candidates)} items "
            f"from {len(sources)} sources (unread {total_unread})"
        )

        return SummaryPlan(
            requester_id=requester_id,
            target_user_id=target_user_id,
            can_write=can_write,
            mark_as_read=request.mark_as_read,
            sources=sources,
            candidates=candidates,
            selected=selected,
            total_unread=total_unread,
            priority_counts=priority_counts,
            prompt=prompt,
            history=history,
        )

    async def generate(self, plan: SummaryPlan) -> SummaryResponse:
        """Generate the summary in one call and run the side effects."""
        text = await self.gemini.generate([user_turn(plan.prompt)], SUMMARY_CONFIG)
        await self.finalize(plan, text)
        return SummaryResponse(summary=text or EMPTY_SUMMARY_MESSAGE, metadata=plan.metadata)

    async def stream(self, plan: SummaryPlan, token: CancellationToken | None = None) -> StreamRelay:
        """Open the upstream stream and return a relay ready to iterate.

        Raises:
            RateLimitedError: If the generation API is rate limited
            GenerationError: If the stream cannot be opened
        """
        relay = StreamRelay(
            framing=SummaryFraming(),
            meta=MetaEvent(plan.metadata.model_dump(by_alias=True)),
            finalizer=lambda text: self.finalize(plan, text),
            token=token,
        )
        relay.prompt_built()
        relay.attach(await self.gemini.open_stream([user_turn(plan.prompt)], SUMMARY_CONFIG))
        return relay

    async def finalize(self, plan: SummaryPlan, text: str) -> None:
        """Store the history record and mark candidates read.

        Each step is independent: a failure is logged and does not stop
        the other.
        """
        if not plan.can_write:
            logger.info(f"User {plan.requester_id} reads a shared feed; skipping writes")
            return

        if text:
            try:
                await self.db.insert_summary_history({
                    "user_id": plan.target_user_id,
                    "summary": text,
                    "title": derive_history_title(text),
                    "preview": derive_history_preview(text),
                    "item_count": plan.total_unread,
                    "source_count": len(plan.source_ids),
                    "source_ids": plan.source_ids,
                    "priority_counts": {str(tier): count for tier, count in plan.priority_counts.items()},
                })
            except Exception as e:
                logger.error(f"Failed to store summary history: {e}")

        if plan.mark_as_read:
            try:
                await self.db.mark_items_read([item.id for item in plan.candidates])
            except Exception as e:
                logger.error(f"Failed to mark items as read: {e}")

    async def _shared_owner(self) -> str | None:
        try:
            return await self.db.get_shared_research_owner()
        except Exception as e:
            logger.error(f"Failed to resolve shared owner id: {e}")
            return None

    async def _unread_count(self, source_ids: list[str]) -> int | None:
        try:
            return await self.db.count_unread_items(source_ids)
        except Exception as e:
            logger.error(f"Failed to count unread items: {e}")
            return None

    async def _history(self, user_id: str) -> list[dict[str, Any]]:
        try:
            return await self.db.get_recent_summaries(user_id, limit=HISTORY_CONTEXT_SIZE)
        except Exception as e:
            logger.error(f"Failed to load summary history: {e}")
            return []
