"""FastAPI routes for chat, research summaries, deals and stocks."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.responses import StreamingResponse

from cortex import __version__
from cortex.api.auth import Auth, OptionalAuth
from cortex.db.client import DatabaseClient
from cortex.exceptions import CortexError
from cortex.manager.cancellation import CancellationToken
from cortex.manager.chat_service import ChatService
from cortex.manager.deal_analyst import DealAnalyst
from cortex.manager.movement_explainer import FALLBACK_EXPLANATION, MovementExplainer
from cortex.manager.relay import StreamRelay
from cortex.manager.summary_service import SummaryService
from cortex.models.chat import ChatRequest, ChatStatus
from cortex.models.deal import DealAnalysisRequest
from cortex.models.stock import MovementExplanation, MovementRequest
from cortex.models.summary import (
    FavoriteUpdate,
    SummaryHistoryRecord,
    SummaryRequest,
    SummaryResponse,
)
from cortex.tools.gemini import GeminiClient
from cortex.tools.notion import NotionClient
from cortex.tools.perplexity import PerplexityClient
from cortex.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

# Dependency injection
_registry: ToolRegistry | None = None
_db_client: DatabaseClient | None = None
_summary_service: SummaryService | None = None
_chat_service: ChatService | None = None
_deal_analyst: DealAnalyst | None = None
_movement_explainer: MovementExplainer | None = None


def _build_registry() -> ToolRegistry:
    """Create and populate the tool registry."""
    registry = ToolRegistry()
    registry.register(GeminiClient())
    registry.register(PerplexityClient())
    registry.register(NotionClient())
    return registry


def get_registry() -> ToolRegistry:
    """Get or create the tool registry."""
    global _registry
    if _registry is None:
        _registry = _build_registry()
    return _registry


def get_db_client() -> DatabaseClient:
    """Get or create database client instance."""
    global _db_client
    if _db_client is None:
        _db_client = DatabaseClient()
    return _db_client


def get_summary_service() -> SummaryService:
    global _summary_service
    if _summary_service is None:
        registry = get_registry()
        _summary_service = SummaryService(
            db=get_db_client(),
            gemini=registry.require("generation"),
        )
    return _summary_service


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service is None:
        registry = get_registry()
        _chat_service = ChatService(
            db=get_db_client(),
            gemini=registry.require("generation"),
            perplexity=registry.require("web_search"),
        )
    return _chat_service


def get_deal_analyst() -> DealAnalyst:
    global _deal_analyst
    if _deal_analyst is None:
        registry = get_registry()
        _deal_analyst = DealAnalyst(
            db=get_db_client(),
            gemini=registry.require("generation"),
            perplexity=registry.require("web_search"),
            notion=registry.require("workspace_read"),
        )
    return _deal_analyst


def get_movement_explainer() -> MovementExplainer:
    global _movement_explainer
    if _movement_explainer is None:
        _movement_explainer = MovementExplainer(
            db=get_db_client(),
            perplexity=get_registry().require("web_search"),
        )
    return _movement_explainer


def sse_response(relay: StreamRelay) -> StreamingResponse:
    """Wrap a relay whose upstream is already open."""
    return StreamingResponse(
        relay.frames(),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )


def wants_stream(request: Request) -> bool:
    """``?stream=1`` or an ``Accept: text/event-stream`` header."""
    flag = request.query_params.get("stream", "").lower()
    return flag in {"1", "true"} or SSE_MEDIA_TYPE in request.headers.get("accept", "")


@router.get("/health")
async def health(check: bool = False) -> dict:
    """Health check endpoint.

    With ``?check=1`` every registered client is called and its entry
    gains a ``healthy`` flag.
    """
    response: dict = {
        "status": "ok",
        "version": __version__,
    }
    if _registry is not None:
        tools = _registry.describe()
        if check:
            for name, healthy in (await _registry.health_check_all()).items():
                tools[name]["healthy"] = healthy
        response["tools"] = tools
    return response


# -----------------------------------------------------------------------------
# Chat
# -----------------------------------------------------------------------------

@router.get("/chat/status", response_model=ChatStatus)
async def chat_status(
    service: Annotated[ChatService, Depends(get_chat_service)],
    user_id: OptionalAuth = None,
) -> ChatStatus:
    """Report whether Notion and web search are available to the caller."""
    return await service.status(user_id)


@router.post("/chat")
async def chat(
    body: ChatRequest,
    service: Annotated[ChatService, Depends(get_chat_service)],
    user_id: OptionalAuth = None,
) -> StreamingResponse:
    """Stream an answer to the conversation.

    Returns:
        StreamingResponse of chat frames, including reasoning deltas

    Raises:
        RateLimitedError: If the model API is rate limited (429)
        GenerationError: If the model stream cannot be opened (500)
    """
    if not body.latest_message.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message content is required",
        )
    relay = await service.stream(user_id, body, token=CancellationToken())
    return sse_response(relay)


# -----------------------------------------------------------------------------
# Research summaries
# -----------------------------------------------------------------------------

@router.post("/research/summary", response_model=None)
async def research_summary(
    request: Request,
    service: Annotated[SummaryService, Depends(get_summary_service)],
    user_id: Auth,
    body: SummaryRequest | None = None,
) -> StreamingResponse | JSONResponse:
    """Summarise the caller's unread research feed.

    Streams when ``?stream=1`` or ``Accept: text/event-stream`` is given,
    otherwise returns ``{summary, metadata}``.
    """
    plan = await service.plan(user_id, body or SummaryRequest())
    if isinstance(plan, SummaryResponse):
        return JSONResponse(plan.model_dump(by_alias=True))

    if wants_stream(request):
        relay = await service.stream(plan, token=CancellationToken())
        return sse_response(relay)

    result = await service.generate(plan)
    return JSONResponse(result.model_dump(by_alias=True))


@router.get("/research/summaries", response_model=list[SummaryHistoryRecord])
async def list_summaries(
    db: Annotated[DatabaseClient, Depends(get_db_client)],
    user_id: Auth,
) -> list[SummaryHistoryRecord]:
    """List the caller's 50 most recent summaries."""
    return await db.list_summary_history(user_id)


@router.patch("/research/summaries/{summary_id}/favorite", response_model=SummaryHistoryRecord)
async def set_summary_favorite(
    summary_id: str,
    body: FavoriteUpdate,
    db: Annotated[DatabaseClient, Depends(get_db_client)],
    user_id: Auth,
) -> SummaryHistoryRecord:
    """Mark or unmark one of the caller's summaries as a favourite.

    Raises:
        HTTPException: If the caller has no such summary
    """
    record = await db.set_summary_favorite(user_id, summary_id, body.is_favorite)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Summary {summary_id} not found",
        )

    return record


@router.delete("/research/summaries/{summary_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_summary(
    summary_id: str,
    db: Annotated[DatabaseClient, Depends(get_db_client)],
    user_id: Auth,
) -> Response:
    """Delete one of the caller's summaries.

    Raises:
        HTTPException: If the caller has no such summary
    """
    deleted = await db.delete_summary_history(user_id, summary_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Summary {summary_id} not found",
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------------------------------------------------------
# Deals and stocks
# -----------------------------------------------------------------------------

@router.post("/deals/{deal_id}/analysis")
async def deal_analysis(
    deal_id: str,
    service: Annotated[DealAnalyst, Depends(get_deal_analyst)],
    user_id: Auth,
    body: DealAnalysisRequest | None = None,
) -> StreamingResponse:
    """Stream an analysis of a deal.

    The first frame carries ``{notionConnected, webConnected,
    webCitations, dealName}``.
    """
    logger.info(f"User {user_id} requested analysis of deal {deal_id}")
    relay = await service.stream(deal_id, body or DealAnalysisRequest(), token=CancellationToken())
    return sse_response(relay)


@router.post("/stocks/explain-movement", response_model=MovementExplanation)
async def explain_movement(
    body: MovementRequest,
    service: Annotated[MovementExplainer, Depends(get_movement_explainer)],
) -> MovementExplanation | JSONResponse:
    """Explain why a stock moved on a given day."""
    try:
        return await service.explain(body)
    except CortexError as e:
        logger.error(f"Movement explanation for {body.symbol} failed: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": e.message, "explanation": FALLBACK_EXPLANATION},
        )
