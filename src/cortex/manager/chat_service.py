"""AI chat over the user's notes, research feed, Notion and the web."""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from cortex.db.client import DatabaseClient
from cortex.manager.cancellation import CancellationToken
from cortex.manager.enrichment import Enrichment, enrich
from cortex.manager.keywords import extract_keywords
from cortex.manager.prompts import ChatContext, build_chat_contents, build_chat_prompt
from cortex.manager.ranking import (
    DAILY_NOTE_BUDGET,
    RESEARCH_ITEM_BUDGET,
    STOCK_NOTE_BUDGET,
    WEEKLY_NOTE_BUDGET,
    rank_by_keywords,
    select_relevant,
)
from cortex.manager.relay import StreamRelay
from cortex.manager.text import parse_timestamp, remove_tags
from cortex.models.chat import ChatRequest, ChatStatus
from cortex.models.knowledge import SourceDescriptor
from cortex.models.stream import ChatFraming
from cortex.tools.gemini import GeminiClient, GenerationConfig
from cortex.tools.notion import NotionClient, NotionSearchResult
from cortex.tools.perplexity import PerplexityClient, WebSearchResult

logger = logging.getLogger(__name__)

CHAT_CONFIG = GenerationConfig(temperature=1.0, max_output_tokens=16384, thinking_budget=8192)

NOTE_CHARS = 600
RESEARCH_CONTENT_CHARS = 1000
WEB_TOKENS_RICH_NOTION = 300
WEB_TOKENS_DEFAULT = 600

CHAT_SOURCE_COLUMNS = "id, name, url, category, description, tags, priority"

Row = Mapping[str, Any]


# ---------------------------------------------------------------------------
# Section formatting
# ---------------------------------------------------------------------------

def group_stocks(groups: Sequence[Row], stocks: Sequence[Row]) -> dict[str, list[str]]:
    """Map each stock group name to the symbols it contains."""
    return {
        group["name"]: [stock["symbol"] for stock in stocks if stock.get("group_id") == group.get("id")]
        for group in groups
    }


def _note_body(content: str | None) -> str:
    return remove_tags(content or "")[:NOTE_CHARS] or "No content"


def format_daily_notes(notes: Sequence[Row]) -> str:
    return "\n\n".join(f"[{note.get('date')}]: {_note_body(note.get('content'))}" for note in notes)


def format_stock_notes(notes: Sequence[Row]) -> str:
    return "\n".join(f"[{note.get('date')}] {note.get('symbol')}: {note.get('note')}" for note in notes)


def format_weekly_notes(notes: Sequence[Row]) -> str:
    return "\n\n".join(
        f"[Week ending {note.get('week_end_date')}]: {_note_body(note.get('content'))}" for note in notes
    )


def format_research_sources(sources: Sequence[SourceDescriptor]) -> str:
    lines = []
    for source in sources:
        line = f"- {source.name} ({source.category or 'N/A'}): {source.description or source.url or ''}"
        if source.tags:
            line += f" [Tags: {', '.join(source.tags)}]"
        lines.append(line)
    return "\n".join(lines)


def format_research_items(items: Sequence[Row], sources: Mapping[str, SourceDescriptor]) -> str:
    blocks = []
    for item in items:
        source = sources.get(item.get("source_id"))
        content = remove_tags(item.get("content") or "")[:RESEARCH_CONTENT_CHARS] or item.get("summary") or ""
        blocks.append(
            f"### [{source.name if source else 'Unknown Source'}] {item.get('title')}\n"
            f"Published: {item.get('published_at') or 'Unknown date'}\n"
            f"URL: {item.get('url') or 'N/A'}\n"
            f"{content}"
        )
    return "\n\n---\n\n".join(blocks)


def _research_text(item: Row, sources: Mapping[str, SourceDescriptor]) -> str:
    source = sources.get(item.get("source_id"))
    return " ".join([
        source.name if source else "",
        item.get("title") or "",
        item.get("summary") or "",
        item.get("content") or "",
        " ".join(source.tags) if source else "",
    ])


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ChatService:
    """Assembles chat context and relays the model's streamed answer."""

    def __init__(self, db: DatabaseClient, gemini: GeminiClient, perplexity: PerplexityClient) -> None:
        self.db = db
        self.gemini = gemini
        self.perplexity = perplexity

    async def status(self, user_id: str | None) -> ChatStatus:
        """Report which enrichment sources the caller can use. Never raises."""
        try:
            has_notion = bool(user_id and await self.db.get_notion_key(user_id))
            return ChatStatus(has_notion=has_notion, has_web=self.perplexity.configured)
        except Exception as e:
            logger.error(f"Chat status check failed: {e}")
            return ChatStatus()

    async def build_context(self, user_id: str | None, message: str) -> ChatContext:
        """Load, rank and format every knowledge section for ``message``."""
        keywords = extract_keywords(message)
        logger.info(f"Chat keywords: {keywords}")

        (
            stock_groups,
            stocks,
            daily_notes,
            stock_notes,
            weekly_notes,
            (sources, research_items),
        ) = await asyncio.gather(
            self.db.get_stock_groups(),
            self.db.get_stocks(),
            self.db.get_daily_notes(),
            self.db.get_stock_notes(),
            self.db.get_weekly_notes(),
            self._load_research(user_id),
        )
        source_map = {source.id: source for source in sources}

        daily = select_relevant(
            rank_by_keywords(
                daily_notes, keywords,
                lambda n: n.get("content") or "",
                lambda n: parse_timestamp(n.get("date")),
            ),
            DAILY_NOTE_BUDGET,
        )
        stock = select_relevant(
            rank_by_keywords(
                stock_notes, keywords,
                lambda n: f"{n.get('symbol')} {n.get('note')}",
                lambda n: parse_timestamp(n.get("date")),
            ),
            STOCK_NOTE_BUDGET,
        )
        weekly = select_relevant(
            rank_by_keywords(
                weekly_notes, keywords,
                lambda n: n.get("content") or "",
                lambda n: parse_timestamp(n.get("week_end_date")),
            ),
            WEEKLY_NOTE_BUDGET,
        )
        research = select_relevant(
            rank_by_keywords(
                research_items, keywords,
                lambda item: _research_text(item, source_map),
                lambda item: parse_timestamp(item.get("published_at")),
            ),
            RESEARCH_ITEM_BUDGET,
        )
        logger.info(
            f"Chat context: {len(daily)} daily, {len(stock)} stock, {len(weekly)} weekly, "
            f"{len(research)} research items"
        )

        notion = await self._notion(user_id, keywords)
        web = await self._web(message, rich_notion=notion.present and notion.value.rich)

        return ChatContext(
            notion=notion.value,
            research_sources=format_research_sources(sources),
            research_items=format_research_items([s.record for s in research], source_map),
            stock_groups=group_stocks(stock_groups, stocks),
            daily_notes=format_daily_notes([s.record for s in daily]),
            stock_notes=format_stock_notes([s.record for s in stock]),
            weekly_notes=format_weekly_notes([s.record for s in weekly]),
            web=web.value,
        )

    async def stream(
        self,
        user_id: str | None,
        request: ChatRequest,
        token: CancellationToken | None = None,
    ) -> StreamRelay:
        """Build the prompt, open the model stream and return the relay.

        Raises:
            RateLimitedError: If the generation API is rate limited
            GenerationError: If the stream cannot be opened
        """
        relay = StreamRelay(framing=ChatFraming(), include_thoughts=True, token=token)
        context = await self.build_context(user_id, request.latest_message)
        contents = build_chat_contents(
            build_chat_prompt(context),
            [message.model_dump() for message in request.messages],
        )
        relay.prompt_built()
        relay.attach(await self.gemini.open_stream(contents, CHAT_CONFIG))
        return relay

    async def _load_research(self, user_id: str | None) -> tuple[list[SourceDescriptor], list[dict[str, Any]]]:
        if not user_id:
            return [], []
        rows = await self.db.get_research_sources(user_id, columns=CHAT_SOURCE_COLUMNS)
        sources = [SourceDescriptor.from_row(row) for row in rows]
        items = await self.db.get_research_items([source.id for source in sources])
        return sources, items

    async def _notion(self, user_id: str | None, keywords: list[str]) -> Enrichment[NotionSearchResult]:
        if not user_id:
            return Enrichment.absent("notion", "anonymous")
        key = await enrich("notion key", lambda: self.db.get_notion_key(user_id))
        if not key.present:
            return Enrichment.absent("notion", "not connected")
        notion = NotionClient(api_key=key.value)
        return await enrich("notion", lambda: notion.search(keywords), is_empty=lambda r: not r.results)

    async def _web(self, message: str, rich_notion: bool) -> Enrichment[WebSearchResult]:
        if not self.perplexity.configured:
            return Enrichment.absent("web", "not configured")
        max_tokens = WEB_TOKENS_RICH_NOTION if rich_notion else WEB_TOKENS_DEFAULT
        logger.info(f"Web search max tokens: {max_tokens} (Notion rich: {rich_notion})")
        return await enrich(
            "web",
            lambda: self.perplexity.search(message, max_tokens=max_tokens),
            is_empty=lambda r: not r.content,
        )
