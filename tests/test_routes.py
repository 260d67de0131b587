"""Tests for the HTTP surface: status codes, error bodies and SSE responses."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from cortex.api import auth, routes
from cortex.exceptions import GenerationError, NotFoundError, RateLimitedError, UpstreamError
from cortex.manager.relay import StreamRelay
from cortex.manager.summary_service import NO_SOURCES_MESSAGE
from cortex.models.chat import ChatStatus
from cortex.models.stock import MovementExplanation
from cortex.models.stream import DONE_FRAME, ChatFraming, MetaEvent, SummaryFraming
from cortex.models.summary import SummaryHistoryRecord, SummaryMetadata, SummaryResponse


AUTH_HEADERS = {"Authorization": "Bearer test-jwt"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FakeStream:
    def __init__(self, lines: list[str]) -> None:
        self._lines = lines

    async def _iterate(self):
        for line in self._lines:
            yield line

    def lines(self):
        return self._iterate()

    async def aclose(self) -> None:
        pass


def _relay(framing, text: str, meta: dict | None = None) -> StreamRelay:
    line = 'data: {"candidates": [{"content": {"parts": [{"text": "%s"}]}}]}' % text
    relay = StreamRelay(framing=framing, meta=MetaEvent(meta) if meta else None)
    relay.prompt_built()
    relay.attach(FakeStream([line]))
    return relay


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset module-level singletons between tests."""
    yield
    routes._registry = None
    routes._db_client = None
    routes._summary_service = None
    routes._chat_service = None
    routes._deal_analyst = None
    routes._movement_explainer = None
    auth._db_client = None


@pytest.fixture
def mock_db():
    """Database mock shared by the routes and the auth dependency."""
    db = MagicMock()
    db.get_user_id_from_token = AsyncMock(return_value="user-1")
    routes._db_client = db
    auth._db_client = db
    return db


async def _call(method: str, url: str, **kwargs):
    from httpx import ASGITransport, AsyncClient
    from cortex.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------

class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self):
        resp = await _call("GET", "/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_health_lists_registered_tools(self):
        registry = MagicMock()
        registry.describe.return_value = {
            "gemini": {"version": "0.1.0", "capabilities": ["generation"], "configured": True},
        }
        routes._registry = registry

        resp = await _call("GET", "/health")

        assert resp.json()["tools"]["gemini"]["configured"] is True
        assert "healthy" not in resp.json()["tools"]["gemini"]
        registry.health_check_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_health_check_calls_tools(self):
        registry = MagicMock()
        registry.describe.return_value = {
            "gemini": {"version": "0.1.0", "capabilities": ["generation"], "configured": True},
            "notion": {"version": "0.1.0", "capabilities": ["workspace_read"], "configured": False},
        }
        registry.health_check_all = AsyncMock(return_value={"gemini": True, "notion": False})
        routes._registry = registry

        resp = await _call("GET", "/health?check=1")

        tools = resp.json()["tools"]
        assert tools["gemini"]["healthy"] is True
        assert tools["notion"]["healthy"] is False


class TestAuthErrors:

    @pytest.mark.asyncio
    async def test_missing_token(self, mock_db):
        resp = await _call("GET", "/research/summaries")

        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}
        mock_db.get_user_id_from_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_token(self, mock_db):
        mock_db.get_user_id_from_token.return_value = None

        resp = await _call("GET", "/research/summaries", headers=AUTH_HEADERS)

        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

class TestChat:

    @pytest.fixture
    def chat_service(self, mock_db):
        service = MagicMock()
        routes._chat_service = service
        return service

    @pytest.mark.asyncio
    async def test_streams_frames(self, chat_service):
        chat_service.stream = AsyncMock(return_value=_relay(ChatFraming(), "Hello"))

        resp = await _call("POST", "/chat", json={"messages": [{"role": "user", "content": "NVDA?"}]})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert 'data: {"choices": [{"delta": {"content": "Hello"}}]}' in resp.text
        assert resp.text.endswith(DONE_FRAME)
        user_id, request = chat_service.stream.call_args.args
        assert user_id is None
        assert request.latest_message == "NVDA?"

    @pytest.mark.asyncio
    async def test_authenticated_caller(self, chat_service):
        chat_service.stream = AsyncMock(return_value=_relay(ChatFraming(), "Hi"))

        await _call("POST", "/chat", headers=AUTH_HEADERS,
                    json={"messages": [{"role": "user", "content": "NVDA?"}]})

        assert chat_service.stream.call_args.args[0] == "user-1"

    @pytest.mark.asyncio
    async def test_empty_message(self, chat_service):
        resp = await _call("POST", "/chat", json={"messages": [{"role": "user", "content": "  "}]})

        assert resp.status_code == 400
        assert resp.json() == {"error": "Message content is required"}

    @pytest.mark.asyncio
    async def test_missing_messages(self, chat_service):
        resp = await _call("POST", "/chat", json={})

        assert resp.status_code == 400
        assert "error" in resp.json()

    @pytest.mark.asyncio
    async def test_rate_limited(self, chat_service):
        chat_service.stream = AsyncMock(side_effect=RateLimitedError())

        resp = await _call("POST", "/chat", json={"messages": [{"role": "user", "content": "NVDA?"}]})

        assert resp.status_code == 429
        assert resp.json() == {"error": "Rate limits exceeded, please try again later."}

    @pytest.mark.asyncio
    async def test_generation_failure(self, chat_service):
        chat_service.stream = AsyncMock(side_effect=GenerationError("Gemini API error: 503", upstream_status=503))

        resp = await _call("POST", "/chat", json={"messages": [{"role": "user", "content": "NVDA?"}]})

        assert resp.status_code == 500
        assert resp.json() == {"error": "Gemini API error: 503"}

    @pytest.mark.asyncio
    async def test_status(self, chat_service):
        chat_service.status = AsyncMock(return_value=ChatStatus(has_notion=True, has_web=False))

        resp = await _call("GET", "/chat/status", headers=AUTH_HEADERS)

        assert resp.json() == {"hasNotion": True, "hasWeb": False}
        chat_service.status.assert_awaited_once_with("user-1")


# ---------------------------------------------------------------------------
# Research summaries
# ---------------------------------------------------------------------------

class TestResearchSummary:

    @pytest.fixture
    def summary_service(self, mock_db):
        service = MagicMock()
        service.plan = AsyncMock(return_value=MagicMock(name="plan"))
        routes._summary_service = service
        return service

    @pytest.mark.asyncio
    async def test_json_response(self, summary_service):
        summary_service.generate = AsyncMock(return_value=SummaryResponse(
            summary="## Brief Updates",
            metadata=SummaryMetadata(item_count=3, source_count=1, priority_counts={5: 3}),
        ))

        resp = await _call("POST", "/research/summary", headers=AUTH_HEADERS, json={"markAsRead": True})

        assert resp.status_code == 200
        assert resp.json() == {
            "summary": "## Brief Updates",
            "metadata": {"itemCount": 3, "sourceCount": 1, "priorityCounts": {"5": 3}},
        }
        request = summary_service.plan.call_args.args[1]
        assert request.mark_as_read is True

    @pytest.mark.asyncio
    async def test_stream_query_flag(self, summary_service):
        summary_service.stream = AsyncMock(return_value=_relay(
            SummaryFraming(), "Hi", meta={"itemCount": 3},
        ))

        resp = await _call("POST", "/research/summary?stream=1", headers=AUTH_HEADERS)

        assert resp.headers["content-type"].startswith("text/event-stream")
        frames = [frame for frame in resp.text.split("\n\n") if frame]
        assert frames[0] == 'data: {"type": "meta", "metadata": {"itemCount": 3}}'
        assert frames[1] == 'data: {"type": "delta", "text": "Hi"}'
        assert frames[-1] == "data: [DONE]"

    @pytest.mark.asyncio
    async def test_stream_accept_header(self, summary_service):
        summary_service.stream = AsyncMock(return_value=_relay(SummaryFraming(), "Hi"))

        await _call("POST", "/research/summary",
                    headers={**AUTH_HEADERS, "Accept": "text/event-stream"})

        summary_service.stream.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nothing_to_summarise_is_json(self, summary_service):
        summary_service.plan.return_value = SummaryResponse(summary=NO_SOURCES_MESSAGE, metadata=SummaryMetadata())
        summary_service.stream = AsyncMock()

        resp = await _call("POST", "/research/summary?stream=1", headers=AUTH_HEADERS)

        assert resp.json()["summary"] == NO_SOURCES_MESSAGE
        summary_service.stream.assert_not_awaited()


class TestSummaryHistory:

    RECORD = SummaryHistoryRecord(id="h1", title="Memory", summary="text", is_favorite=True)

    @pytest.mark.asyncio
    async def test_list(self, mock_db):
        mock_db.list_summary_history = AsyncMock(return_value=[self.RECORD])

        resp = await _call("GET", "/research/summaries", headers=AUTH_HEADERS)

        assert resp.status_code == 200
        assert resp.json()[0]["id"] == "h1"
        mock_db.list_summary_history.assert_awaited_once_with("user-1")

    @pytest.mark.asyncio
    async def test_favorite(self, mock_db):
        mock_db.set_summary_favorite = AsyncMock(return_value=self.RECORD)

        resp = await _call("PATCH", "/research/summaries/h1/favorite",
                           headers=AUTH_HEADERS, json={"isFavorite": True})

        assert resp.status_code == 200
        assert resp.json()["is_favorite"] is True
        mock_db.set_summary_favorite.assert_awaited_once_with("user-1", "h1", True)

    @pytest.mark.asyncio
    async def test_favorite_unknown(self, mock_db):
        mock_db.set_summary_favorite = AsyncMock(return_value=None)

        resp = await _call("PATCH", "/research/summaries/nope/favorite",
                           headers=AUTH_HEADERS, json={"isFavorite": False})

        assert resp.status_code == 404
        assert resp.json() == {"error": "Summary nope not found"}

    @pytest.mark.asyncio
    async def test_delete(self, mock_db):
        mock_db.delete_summary_history = AsyncMock(return_value=True)

        resp = await _call("DELETE", "/research/summaries/h1", headers=AUTH_HEADERS)

        assert resp.status_code == 204

    @pytest.mark.asyncio
    async def test_delete_unknown(self, mock_db):
        mock_db.delete_summary_history = AsyncMock(return_value=False)

        resp = await _call("DELETE", "/research/summaries/h1", headers=AUTH_HEADERS)

        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Deals and stocks
# ---------------------------------------------------------------------------

class TestDealAnalysis:

    @pytest.fixture
    def analyst(self, mock_db):
        service = MagicMock()
        routes._deal_analyst = service
        return service

    @pytest.mark.asyncio
    async def test_streams_with_meta(self, analyst):
        analyst.stream = AsyncMock(return_value=_relay(ChatFraming(), "Memo", meta={"dealName": "Acme"}))

        resp = await _call("POST", "/deals/d1/analysis", headers=AUTH_HEADERS,
                           json={"analysisType": "ic_memo", "inputData": {"section": "Risks"}})

        assert resp.text.startswith('data: {"metadata": {"dealName": "Acme"}}')
        deal_id, request = analyst.stream.call_args.args
        assert deal_id == "d1"
        assert request.analysis_type == "ic_memo"
        assert request.input_data == {"section": "Risks"}

    @pytest.mark.asyncio
    async def test_unknown_deal(self, analyst):
        analyst.stream = AsyncMock(side_effect=NotFoundError("Deal not found"))

        resp = await _call("POST", "/deals/missing/analysis", headers=AUTH_HEADERS, json={})

        assert resp.status_code == 404
        assert resp.json() == {"error": "Deal not found"}

    @pytest.mark.asyncio
    async def test_requires_auth(self, analyst):
        resp = await _call("POST", "/deals/d1/analysis", json={})
        assert resp.status_code == 401


class TestExplainMovement:

    BODY = {"symbol": "NVDA", "changePercent": -3.2, "date": "2025-03-03"}

    @pytest.fixture
    def explainer(self, mock_db):
        service = MagicMock()
        routes._movement_explainer = service
        return service

    @pytest.mark.asyncio
    async def test_explanation(self, explainer):
        explainer.explain = AsyncMock(return_value=MovementExplanation(explanation="Export curbs."))

        resp = await _call("POST", "/stocks/explain-movement", json=self.BODY)

        assert resp.status_code == 200
        assert resp.json() == {"explanation": "Export curbs."}

    @pytest.mark.asyncio
    async def test_failure_returns_fallback(self, explainer):
        explainer.explain = AsyncMock(side_effect=UpstreamError("Perplexity API error: 500", upstream_status=500))

        resp = await _call("POST", "/stocks/explain-movement", json=self.BODY)

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Perplexity API error: 500",
            "explanation": "Unable to generate explanation at this time.",
        }

    @pytest.mark.asyncio
    async def test_missing_fields(self, explainer):
        resp = await _call("POST", "/stocks/explain-movement", json={"symbol": "NVDA"})

        assert resp.status_code == 400
