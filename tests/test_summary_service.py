"""Tests for the research summary pipeline."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from cortex.manager.summary_service import (
    EMPTY_SUMMARY_MESSAGE,
    NO_ITEMS_MESSAGE,
    NO_SOURCES_MESSAGE,
    SummaryPlan,
    SummaryService,
)
from cortex.models.stream import DONE_FRAME
from cortex.models.summary import SummaryRequest, SummaryResponse


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

SOURCES = [
    {"id": "s1", "name": "SemiAnalysis", "priority": 5, "category": "semis", "tags": ["hbm"]},
    {"id": "s2", "name": "Newsletter", "priority": 1, "category": "", "tags": None},
]

ITEMS = [
    {"id": "i1", "source_id": "s1", "title": "HBM pricing", "content": "<p>Prices up</p>",
     "url": "https://a.com/1", "published_at": "2025-01-02T00:00:00Z", "is_read": False},
    {"id": "i2", "source_id": "s2", "title": None, "summary": "Weekly wrap",
     "url": None, "published_at": None, "is_read": False},
    {"id": "i3", "source_id": "s1", "title": "CoWoS", "content": "Capacity",
     "url": None, "published_at": "2025-01-01T00:00:00Z", "is_read": False},
]


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.get_shared_research_owner = AsyncMock(return_value=None)
    db.get_research_sources = AsyncMock(return_value=SOURCES)
    db.count_unread_items = AsyncMock(return_value=42)
    db.get_unread_items = AsyncMock(return_value=ITEMS)
    db.get_recent_summaries = AsyncMock(return_value=[])
    db.insert_summary_history = AsyncMock()
    db.mark_items_read = AsyncMock()
    return db


@pytest.fixture
def mock_gemini():
    gemini = MagicMock()
    gemini.generate = AsyncMock(return_value="## Brief Updates\n- HBM up [SemiAnalysis](https://a.com/1)")
    return gemini


@pytest.fixture
def service(mock_db, mock_gemini):
    return SummaryService(mock_db, mock_gemini)


class FakeStream:
    def __init__(self, lines: list[str]) -> None:
        self._lines = lines
        self.closed = False

    async def _iterate(self):
        for line in self._lines:
            yield line

    def lines(self):
        return self._iterate()

    async def aclose(self) -> None:
        self.closed = True


def _chunk(text: str) -> str:
    return "data: " + json.dumps({"candidates": [{"content": {"parts": [{"text": text}]}}]})


# ---------------------------------------------------------------------------
# plan
# ---------------------------------------------------------------------------

class TestPlan:
    """Loading and selecting summary input."""

    @pytest.mark.asyncio
    async def test_builds_plan(self, service, mock_db):
        plan = await service.plan("user-1", SummaryRequest(mark_as_read=True))

        assert isinstance(plan, SummaryPlan)
        assert plan.target_user_id == "user-1"
        assert plan.can_write is True
        assert plan.total_unread == 42
        assert plan.priority_counts == {5: 2, 1: 1}
        assert plan.source_ids == ["s1", "s2"]
        assert [s.record.id for s in plan.selected] == ["i1", "i3", "i2"]
        assert "HBM pricing" in plan.prompt
        mock_db.get_research_sources.assert_awaited_once_with("user-1", None)

    @pytest.mark.asyncio
    async def test_items_normalised(self, service):
        plan = await service.plan("user-1", SummaryRequest())

        by_id = {item.id: item for item in plan.candidates}
        assert by_id["i1"].body == "Prices up"
        assert by_id["i2"].title == "Untitled"
        assert by_id["i2"].body == "Weekly wrap"
        assert by_id["i2"].source_name == "Newsletter"

    @pytest.mark.asyncio
    async def test_no_sources(self, service, mock_db):
        mock_db.get_research_sources.return_value = []

        result = await service.plan("user-1", SummaryRequest())

        assert isinstance(result, SummaryResponse)
        assert result.summary == NO_SOURCES_MESSAGE
        assert result.metadata.item_count == 0
        mock_db.get_unread_items.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_unread_items(self, service, mock_db):
        mock_db.get_unread_items.return_value = []

        result = await service.plan("user-1", SummaryRequest())

        assert result.summary == NO_ITEMS_MESSAGE

    @pytest.mark.asyncio
    async def test_count_failure_falls_back_to_loaded(self, service, mock_db):
        mock_db.count_unread_items.side_effect = RuntimeError("timeout")

        plan = await service.plan("user-1", SummaryRequest())

        assert plan.total_unread == 3

    @pytest.mark.asyncio
    async def test_shared_feed_read_only_for_others(self, service, mock_db):
        mock_db.get_shared_research_owner.return_value = "owner-1"

        plan = await service.plan("user-1", SummaryRequest())

        assert plan.target_user_id == "owner-1"
        assert plan.can_write is False
        mock_db.get_research_sources.assert_awaited_once_with("owner-1", None)

    @pytest.mark.asyncio
    async def test_shared_feed_owner_can_write(self, service, mock_db):
        mock_db.get_shared_research_owner.return_value = "owner-1"

        plan = await service.plan("owner-1", SummaryRequest())

        assert plan.can_write is True

    @pytest.mark.asyncio
    async def test_owner_lookup_failure_uses_requester(self, service, mock_db):
        mock_db.get_shared_research_owner.side_effect = RuntimeError("rpc missing")

        plan = await service.plan("user-1", SummaryRequest())

        assert plan.target_user_id == "user-1"
        assert plan.can_write is True

    @pytest.mark.asyncio
    async def test_max_items_caps_selection(self, service, mock_db):
        rows = [
            {"id": f"i{n}", "source_id": "s1", "title": f"t{n}", "content": "c",
             "published_at": f"2025-01-{n % 28 + 1:02d}T00:00:00Z"}
            for n in range(30)
        ]
        mock_db.get_unread_items.return_value = rows

        plan = await service.plan("user-1", SummaryRequest(max_items=5))

        assert len(plan.selected) == 10
        assert len(plan.candidates) == 30


# ---------------------------------------------------------------------------
# generate / finalize
# ---------------------------------------------------------------------------

class TestGenerate:
    """Single-shot generation and side effects."""

    @pytest.mark.asyncio
    async def test_stores_history_and_marks_all_candidates(self, service, mock_db):
        plan = await service.plan("user-1", SummaryRequest(mark_as_read=True))

        response = await service.generate(plan)

        assert response.summary.startswith("## Brief Updates")
        assert response.metadata.item_count == 42
        record = mock_db.insert_summary_history.call_args.args[0]
        assert record["user_id"] == "user-1"
        assert record["title"] == "Brief Updates"
        assert record["source_ids"] == ["s1", "s2"]
        assert record["priority_counts"] == {"5": 2, "1": 1}
        mock_db.mark_items_read.assert_awaited_once_with(["i1", "i2", "i3"])

    @pytest.mark.asyncio
    async def test_empty_generation(self, service, mock_db, mock_gemini):
        mock_gemini.generate.return_value = ""
        plan = await service.plan("user-1", SummaryRequest(mark_as_read=True))

        response = await service.generate(plan)

        assert response.summary == EMPTY_SUMMARY_MESSAGE
        mock_db.insert_summary_history.assert_not_awaited()
        mock_db.mark_items_read.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_side_effects_independent(self, service, mock_db):
        mock_db.insert_summary_history.side_effect = RuntimeError("insert failed")
        plan = await service.plan("user-1", SummaryRequest(mark_as_read=True))

        await service.generate(plan)

        mock_db.mark_items_read.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_read_only_viewer_writes_nothing(self, service, mock_db):
        mock_db.get_shared_research_owner.return_value = "owner-1"
        plan = await service.plan("user-1", SummaryRequest(mark_as_read=True))

        await service.generate(plan)

        mock_db.insert_summary_history.assert_not_awaited()
        mock_db.mark_items_read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mark_as_read_off(self, service, mock_db):
        plan = await service.plan("user-1", SummaryRequest())

        await service.generate(plan)

        mock_db.insert_summary_history.assert_awaited_once()
        mock_db.mark_items_read.assert_not_awaited()


# ---------------------------------------------------------------------------
# stream
# ---------------------------------------------------------------------------

class TestStream:
    """Streaming summaries relay metadata first and finalise at the end."""

    @pytest.mark.asyncio
    async def test_stream_frames_and_finalize(self, service, mock_db, mock_gemini):
        mock_gemini.open_stream = AsyncMock(return_value=FakeStream([_chunk("## Brief"), _chunk(" Updates")]))
        plan = await service.plan("user-1", SummaryRequest(mark_as_read=True))

        relay = await service.stream(plan)
        frames = [frame async for frame in relay.frames()]

        first = json.loads(frames[0][len("data: "):])
        assert first == {
            "type": "meta",
            "metadata": {"itemCount": 42, "sourceCount": 2, "priorityCounts": {"5": 2, "1": 1}},
        }
        assert frames[-1] == DONE_FRAME
        record = mock_db.insert_summary_history.call_args.args[0]
        assert record["summary"] == "## Brief Updates"
        mock_db.mark_items_read.assert_awaited_once()
