"""Tests for the Notion workspace reader."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from cortex.tools.notion import (
    NotionClient,
    NotionSearchResult,
    extract_page_id,
    extract_property_value,
    extract_title,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _response(status_code: int = 200, payload: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


def _text(block_type: str, text: str, **extra) -> dict:
    block = {"type": block_type, block_type: {"rich_text": [{"plain_text": text}]}}
    block[block_type].update(extra.pop("content", {}))
    block.update(extra)
    return block


def _title(text: str, key: str = "title") -> dict:
    return {key: {"title": [{"plain_text": text}]}}


@pytest.fixture
def mock_http():
    """Patch httpx.AsyncClient and yield the client used inside ``async with``."""
    with patch("cortex.tools.notion.httpx.AsyncClient") as mock_cls:
        mock_client = MagicMock()
        mock_client.get = AsyncMock()
        mock_client.post = AsyncMock()
        mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
        mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        yield mock_client


def _children_router(children: dict[str, list[dict]], pages: dict[str, dict] | None = None):
    pages = pages or {}

    def route(url, headers=None, params=None):
        if "/pages/" in url:
            page_id = url.rsplit("/", 1)[1]
            if page_id in pages:
                return _response(payload=pages[page_id])
            return _response(status_code=404)
        block_id = url.split("/blocks/")[1].split("/")[0]
        return _response(payload={"results": children.get(block_id, [])})

    return route


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------

class TestExtraction:
    """Titles, property values and page ids."""

    def test_title_strategies_in_order(self):
        assert extract_title({"properties": _title("Main")}) == "Main"
        assert extract_title({"properties": _title("Named", key="Name")}) == "Named"
        assert extract_title({"properties": _title("Other", key="Project")}) == "Other"
        assert extract_title({"properties": {}}) == ""
        assert extract_title({}) == ""

    @pytest.mark.parametrize("prop,expected", [
        ({"type": "title", "title": [{"plain_text": "Acme"}]}, "Acme"),
        ({"type": "rich_text", "rich_text": []}, ""),
        ({"type": "number", "number": 0}, "0"),
        ({"type": "select", "select": {"name": "Seed"}}, "Seed"),
        ({"type": "multi_select", "multi_select": [{"name": "AI"}, {"name": "Infra"}]}, "AI, Infra"),
        ({"type": "date", "date": {"start": "2025-01-02"}}, "2025-01-02"),
        ({"type": "checkbox", "checkbox": True}, "Yes"),
        ({"type": "checkbox", "checkbox": False}, "No"),
        ({"type": "url", "url": "https://acme.com"}, "https://acme.com"),
        ({"type": "formula", "formula": {}}, ""),
        (None, ""),
    ])
    def test_property_values(self, prop, expected):
        assert extract_property_value(prop) == expected

    def test_page_id_from_slug(self):
        url = "https://www.notion.so/Acme-0123456789abcdef0123456789abcdef?pvs=4"
        assert extract_page_id(url) == "0123456789abcdef0123456789abcdef"

    def test_page_id_from_dashed_uuid(self):
        url = "https://notion.so/01234567-89ab-cdef-0123-456789abcdef"
        assert extract_page_id(url) == "0123456789abcdef0123456789abcdef"

    def test_no_page_id(self):
        assert extract_page_id("https://drive.google.com/folder") is None

    def test_rich_threshold(self):
        assert not NotionSearchResult(results=["x" * 600, "y" * 600]).rich
        assert not NotionSearchResult(results=["a", "b", "c"]).rich
        assert NotionSearchResult(results=["x" * 400] * 3).rich


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestSearch:
    """Keyword search, merge and page flattening."""

    @pytest.mark.asyncio
    async def test_search_merges_and_flattens(self, mock_http):
        page1 = {"object": "page", "id": "p1", "url": "https://notion.so/p1", "properties": _title("NVDA Thesis")}
        page2 = {"object": "page", "id": "p2", "properties": _title("HBM", key="Name")}
        by_keyword = {"NVDA": [page1], "HBM": [page1, page2]}

        def route_post(url, headers=None, json=None):
            if json["query"] == "fail":
                raise httpx.ConnectError("down")
            return _response(payload={"results": by_keyword.get(json["query"], [])})

        mock_http.post.side_effect = route_post
        mock_http.get.side_effect = _children_router({
            "p1": [
                _text("heading_1", "Thesis"),
                _text("paragraph", "Long NVDA", id="b1", has_children=True),
                _text("code", "print(1)", content={"language": "python"}),
            ],
            "b1": [_text("bulleted_list_item", "child")],
        })

        result = await NotionClient(api_key="secret").search(["NVDA", "HBM", "fail", "ignored"])

        assert mock_http.post.await_count == 3
        assert result.results == [
            "### NVDA Thesis\n# Thesis\nLong NVDA\n  • child\n```python\nprint(1)\n```",
            "### HBM\nNo content",
        ]
        assert result.sources == ["https://notion.so/p1", "notion://page/p2"]
        assert not result.rich

    @pytest.mark.asyncio
    async def test_search_uses_bearer_key(self, mock_http):
        mock_http.post.return_value = _response(payload={"results": []})

        await NotionClient(api_key="secret").search(["NVDA"])

        headers = mock_http.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        assert headers["Notion-Version"] == "2022-06-28"

    @pytest.mark.asyncio
    async def test_to_do_blocks(self, mock_http):
        page = {"object": "page", "id": "p1", "properties": _title("Tasks")}
        mock_http.post.return_value = _response(payload={"results": [page]})
        mock_http.get.side_effect = _children_router({"p1": [
            _text("to_do", "call CFO", content={"checked": True}),
            _text("to_do", "send memo", content={"checked": False}),
        ]})

        result = await NotionClient(api_key="secret").search(["memo"])

        assert result.results == ["### Tasks\n☑ call CFO\n☐ send memo"]

    @pytest.mark.asyncio
    async def test_non_json_keyword_response_keeps_other_results(self, mock_http):
        good = {"object": "page", "id": "p1", "properties": _title("Good page")}
        html = _response()
        html.json.side_effect = ValueError("Expecting value")

        def route_post(url, headers=None, json=None):
            return html if json["query"] == "bad" else _response(payload={"results": [good]})

        mock_http.post.side_effect = route_post
        mock_http.get.side_effect = _children_router({"p1": [_text("paragraph", "body")]})

        result = await NotionClient(api_key="secret").search(["good", "bad"])

        assert result.results == ["### Good page\nbody"]

    @pytest.mark.asyncio
    async def test_non_json_children_response(self, mock_http):
        page = {"object": "page", "id": "p1", "properties": _title("Tasks")}
        html = _response()
        html.json.side_effect = ValueError("Expecting value")
        mock_http.post.return_value = _response(payload={"results": [page]})
        mock_http.get.return_value = html

        result = await NotionClient(api_key="secret").search(["memo"])

        assert result.results == ["### Tasks\nNo content"]


# ---------------------------------------------------------------------------
# Folders
# ---------------------------------------------------------------------------

class TestReadFolder:
    """Deal folder flattening with sub-pages and databases."""

    PAGE_ID = "0123456789abcdef0123456789abcdef"
    URL = f"https://www.notion.so/Acme-{PAGE_ID}"

    @pytest.mark.asyncio
    async def test_reads_folder(self, mock_http):
        mock_http.get.side_effect = _children_router(
            {
                self.PAGE_ID: [
                    _text("heading_1", "Overview"),
                    {"type": "child_page", "id": "cp1", "has_children": True,
                     "child_page": {"title": "Financials"}},
                    {"type": "child_database", "id": "db1", "has_children": True,
                     "child_database": {"title": "Contacts"}},
                ],
                "cp1": [_text("numbered_list_item", "Revenue 10m")],
            },
            pages={self.PAGE_ID: {"properties": _title("Acme")}},
        )
        mock_http.post.return_value = _response(payload={"results": [
            {"properties": {
                "Name": {"type": "title", "title": [{"plain_text": "Jane"}]},
                "Role": {"type": "select", "select": {"name": "CEO"}},
                "Notes": {"type": "rich_text", "rich_text": []},
            }},
        ]})

        folder = await NotionClient(api_key="secret").read_folder(self.URL)

        assert folder is not None
        assert folder.title == "Acme"
        assert folder.content == "\n".join([
            "# Acme\n",
            "## Overview",
            "\n### Sub-page: Financials\n",
            "  - Revenue 10m",
            "\n### Database: Contacts\n",
            "- Name: Jane | Role: CEO",
        ])
        requested = [call.args[0] for call in mock_http.get.await_args_list]
        assert not any("db1" in url for url in requested)
        assert mock_http.post.call_args.kwargs["json"] == {"page_size": 50}

    @pytest.mark.asyncio
    async def test_depth_limit(self, mock_http):
        nested = {self.PAGE_ID: [_text("paragraph", "d0", id="a", has_children=True)]}
        for depth, (parent, child) in enumerate([("a", "b"), ("b", "c"), ("c", "d"), ("d", "e")], start=1):
            nested[parent] = [_text("paragraph", f"d{depth}", id=child, has_children=True)]
        mock_http.get.side_effect = _children_router(nested, pages={self.PAGE_ID: {"properties": {}}})

        folder = await NotionClient(api_key="secret").read_folder(self.URL)

        assert "d3" in folder.content
        assert "d4" not in folder.content
        assert folder.content.startswith("# Untitled Page\n")

    @pytest.mark.asyncio
    async def test_missing_page(self, mock_http):
        mock_http.get.side_effect = _children_router({}, pages={})
        assert await NotionClient(api_key="secret").read_folder(self.URL) is None

    @pytest.mark.asyncio
    async def test_link_without_id(self, mock_http):
        assert await NotionClient(api_key="secret").read_folder("https://drive.google.com/x") is None
        mock_http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_json_database_response(self, mock_http):
        mock_http.get.side_effect = _children_router(
            {self.PAGE_ID: [{"type": "child_database", "id": "db1", "child_database": {"title": "Contacts"}}]},
            pages={self.PAGE_ID: {"properties": _title("Acme")}},
        )
        html = _response()
        html.json.side_effect = ValueError("Expecting value")
        mock_http.post.return_value = html

        folder = await NotionClient(api_key="secret").read_folder(self.URL)

        assert folder.content == "# Acme\n\n\n### Database: Contacts\n"
