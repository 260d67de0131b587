"""Streaming deal analysis (interview outlines, IC memos, ...)."""

import logging

from cortex.db.client import DatabaseClient
from cortex.exceptions import NotFoundError
from cortex.manager.cancellation import CancellationToken
from cortex.manager.enrichment import Enrichment, enrich
from cortex.manager.prompts import build_deal_prompt
from cortex.manager.relay import StreamRelay
from cortex.models.deal import AnalysisType, Deal, DealAnalysisRequest, DealMetadata
from cortex.models.stream import ChatFraming, MetaEvent
from cortex.tools.gemini import GeminiClient, GenerationConfig, user_turn
from cortex.tools.notion import NotionClient, NotionFolder
from cortex.tools.perplexity import PerplexityClient, WebSearchResult

logger = logging.getLogger(__name__)

DEAL_CONFIG = GenerationConfig(temperature=0.7, max_output_tokens=8192)
MAX_META_CITATIONS = 5

DEAL_SEARCH_PROMPT = (
    "You are a research assistant. Provide factual, concise information with data "
    "points when available. Focus on market size, competitors, recent funding, and "
    "industry trends."
)


def deal_search_query(deal: Deal) -> str:
    return f"{deal.project_name} {deal.sector} company funding market size competitors recent news"


class DealAnalyst:
    """Writes one analysis of a deal, grounded in its folder and the web."""

    def __init__(
        self,
        db: DatabaseClient,
        gemini: GeminiClient,
        perplexity: PerplexityClient,
        notion: NotionClient,
    ) -> None:
        self.db = db
        self.gemini = gemini
        self.perplexity = perplexity
        self.notion = notion

    async def load_deal(self, deal_id: str) -> Deal:
        row = await self.db.get_deal(deal_id)
        if row is None:
            raise NotFoundError("Deal not found")
        return Deal.from_row(row)

    async def stream(
        self,
        deal_id: str,
        request: DealAnalysisRequest,
        token: CancellationToken | None = None,
    ) -> StreamRelay:
        """Gather context for the deal and open the analysis stream.

        Raises:
            NotFoundError: If the deal does not exist
            RateLimitedError: If the generation API is rate limited
            GenerationError: If the stream cannot be opened
        """
        deal = await self.load_deal(deal_id)
        analysis_type = AnalysisType.parse(request.analysis_type)
        logger.info(f"Deal analysis {analysis_type.value} for {deal.project_name!r}")

        folder = await self._folder(deal)
        web = await self._web(deal)

        prompt = build_deal_prompt(
            analysis_type=analysis_type,
            deal_info=deal.describe(),
            notion_content=folder.value.content if folder.present else "",
            web=web.value,
            input_data=request.input_data,
        )
        metadata = self.metadata(deal, folder, web)

        relay = StreamRelay(
            framing=ChatFraming(),
            meta=MetaEvent(metadata.model_dump(by_alias=True)),
            token=token,
        )
        relay.prompt_built()
        relay.attach(await self.gemini.open_stream([user_turn(prompt)], DEAL_CONFIG))
        return relay

    @staticmethod
    def metadata(
        deal: Deal,
        folder: Enrichment[NotionFolder],
        web: Enrichment[WebSearchResult],
    ) -> DealMetadata:
        return DealMetadata(
            notion_connected=folder.present,
            web_connected=web.present,
            web_citations=web.value.citations[:MAX_META_CITATIONS] if web.present else [],
            deal_name=deal.project_name,
        )

    async def _folder(self, deal: Deal) -> Enrichment[NotionFolder]:
        if not deal.folder_link:
            return Enrichment.absent("notion folder", "no folder link")
        if not self.notion.configured:
            return Enrichment.absent("notion folder", "not configured")
        return await enrich("notion folder", lambda: self.notion.read_folder(deal.folder_link))

    async def _web(self, deal: Deal) -> Enrichment[WebSearchResult]:
        if not self.perplexity.configured:
            return Enrichment.absent("web", "not configured")
        return await enrich(
            "web",
            lambda: self.perplexity.search(
                deal_search_query(deal),
                system_prompt=DEAL_SEARCH_PROMPT,
                search_recency_filter="month",
            ),
            is_empty=lambda r: not r.content,
        )
