"""Notion workspace reader: keyword search and page flattening.

Pages are flattened to plain text by walking their block tree with an
explicit stack and a depth counter, so document order is kept and deep
nesting is cut off at a fixed depth.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from cortex.config import get_settings
from cortex.tools.base import ToolManifest

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

SEARCH_KEYWORDS = 3
SEARCH_PAGE_SIZE = 20
TOP_PAGES = 15
PAGE_CONTENT_CHARS = 2500
SEARCH_DEPTH = 2
FOLDER_DEPTH = 3
DATABASE_PAGE_SIZE = 50

_PAGE_ID = re.compile(
    r"([a-f0-9]{32}|[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})",
    re.IGNORECASE,
)

SEARCH_PREFIXES: dict[str, str] = {
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "• ",
    "numbered_list_item": "- ",
    "quote": "> ",
    "callout": "[Callout] ",
}

# Folder pages sit under a "# title" line, so headings move down a level
FOLDER_PREFIXES: dict[str, str] = {
    "heading_1": "## ",
    "heading_2": "### ",
    "heading_3": "#### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "- ",
}

BlockRenderer = Callable[[httpx.AsyncClient, dict[str, Any], int], Awaitable[list[str]]]


# ---------------------------------------------------------------------------
# Titles and properties
# ---------------------------------------------------------------------------

def _first_plain_text(prop: Any) -> str:
    if not isinstance(prop, dict):
        return ""
    title = prop.get("title")
    if not isinstance(title, list) or not title:
        return ""
    return (title[0] or {}).get("plain_text") or ""


def _title_property(props: dict[str, Any]) -> str:
    return _first_plain_text(props.get("title"))


def _name_property(props: dict[str, Any]) -> str:
    return _first_plain_text(props.get("Name"))


def _any_title_property(props: dict[str, Any]) -> str:
    for value in props.values():
        text = _first_plain_text(value)
        if text:
            return text
    return ""


TITLE_STRATEGIES: tuple[Callable[[dict[str, Any]], str], ...] = (
    _title_property,
    _name_property,
    _any_title_property,
)


def extract_title(page: dict[str, Any]) -> str:
    """Return the first non-empty title found by ``TITLE_STRATEGIES``."""
    props = page.get("properties")
    if not isinstance(props, dict):
        return ""
    for strategy in TITLE_STRATEGIES:
        title = strategy(props)
        if title:
            return title
    return ""


def extract_property_value(prop: dict[str, Any] | None) -> str:
    """Render a database property value as text; unsupported types are empty."""
    if not prop:
        return ""
    kind = prop.get("type")
    value = prop.get(kind) if kind else None
    if kind in ("title", "rich_text"):
        return (value[0] or {}).get("plain_text", "") if value else ""
    if kind == "number":
        return "" if value is None else str(value)
    if kind == "select":
        return (value or {}).get("name") or ""
    if kind == "multi_select":
        return ", ".join(option.get("name", "") for option in value or [])
    if kind == "date":
        return (value or {}).get("start") or ""
    if kind == "checkbox":
        return "Yes" if value else "No"
    if kind in ("url", "email", "phone_number"):
        return value or ""
    return ""


def extract_page_id(url: str) -> str | None:
    """Pull a page id (32 hex chars, dashes removed) out of a Notion link."""
    match = _PAGE_ID.search(url or "")
    if not match:
        return None
    return match.group(1).replace("-", "")


def _rich_text(content: dict[str, Any] | None) -> str | None:
    if not content or "rich_text" not in content:
        return None
    return "".join(t.get("plain_text", "") for t in content.get("rich_text") or [])


def _results(response: httpx.Response, what: str) -> list[dict[str, Any]]:
    """The ``results`` list of a 200 response; an unreadable body gives []."""
    try:
        data = response.json()
    except ValueError as e:
        logger.warning(f"Notion {what} returned a non-JSON body: {e}")
        return []
    results = data.get("results") if isinstance(data, dict) else None
    return [r for r in results if isinstance(r, dict)] if isinstance(results, list) else []


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class NotionSearchResult:
    """Flattened pages matching a query, with their links."""

    results: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    @property
    def rich(self) -> bool:
        """Enough material that web search can take a smaller share."""
        return len(self.results) >= 3 and len("".join(self.results)) > 1000


@dataclass
class NotionFolder:
    """A deal folder page flattened to text."""

    title: str
    content: str


class NotionClient:
    """Wrapper for the Notion search, block and database APIs."""

    name: str = "notion"
    capabilities: frozenset[str] = frozenset({"workspace_search", "workspace_read"})

    def manifest(self) -> ToolManifest:
        """Return static metadata about this tool."""
        return ToolManifest(
            name=self.name,
            version="0.1.0",
            description="Notion workspace search and page reader",
            capabilities=self.capabilities,
            config_keys=frozenset({"NOTION_API_KEY"}),
        )

    async def health_check(self) -> bool:
        """Check that the integration token is accepted."""
        if not self.configured:
            return False
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{NOTION_API_URL}/users/me", headers=self._headers())
                response.raise_for_status()
            return True
        except Exception:
            return False

    def __init__(self, api_key: str | None = None) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.notion_api_key
        self.timeout = settings.enrichment_timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": NOTION_VERSION,
        }

    # -- search -------------------------------------------------------------

    async def search(self, keywords: Sequence[str]) -> NotionSearchResult:
        """Search the workspace for pages matching the query keywords.

        Up to three keyword searches run concurrently; pages are merged by
        id, and the first fifteen are flattened (to depth 2, 2500 chars).
        A failing keyword search only loses its own results.

        Args:
            keywords: Keywords extracted from the user's message

        Returns:
            NotionSearchResult, possibly empty
        """
        keywords = list(keywords)[:SEARCH_KEYWORDS]
        result = NotionSearchResult()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            batches = await asyncio.gather(
                *(self._search_keyword(client, keyword) for keyword in keywords)
            )

            pages: dict[str, dict[str, Any]] = {}
            for batch in batches:
                for page in batch:
                    page_id = page.get("id")
                    if page_id and page_id not in pages:
                        pages[page_id] = page
            logger.info(f"Notion: {len(pages)} unique pages from {len(keywords)} keyword searches")

            for page in list(pages.values())[:TOP_PAGES]:
                title = extract_title(page)
                content = ""
                if page.get("object") == "page":
                    lines = await self.walk_blocks(client, page["id"], SEARCH_DEPTH, self._render_search_block)
                    content = "\n".join(lines)[:PAGE_CONTENT_CHARS]
                if title or content:
                    result.results.append(f"### {title or 'Untitled'}\n{content or 'No content'}")
                    result.sources.append(page.get("url") or f"notion://page/{page['id']}")

        logger.info(f"Notion: {len(result.results)} results, rich content: {result.rich}")
        return result

    async def _search_keyword(self, client: httpx.AsyncClient, keyword: str) -> list[dict[str, Any]]:
        try:
            response = await client.post(
                f"{NOTION_API_URL}/search",
                headers=self._headers(),
                json={
                    "query": keyword,
                    "page_size": SEARCH_PAGE_SIZE,
                    "sort": {"direction": "descending", "timestamp": "last_edited_time"},
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"Notion search failed for {keyword!r}: {e}")
            return []
        if response.status_code != 200:
            logger.warning(f"Notion search failed for {keyword!r}: {response.status_code}")
            return []
        return _results(response, f"search for {keyword!r}")

    async def _render_search_block(
        self,
        client: httpx.AsyncClient,
        block: dict[str, Any],
        depth: int,
    ) -> list[str]:
        block_type = block.get("type", "")
        content = block.get(block_type) or {}
        text = _rich_text(content)
        if not text or not text.strip():
            return []
        indent = "  " * depth
        if block_type == "code":
            return [f"{indent}```{content.get('language') or ''}\n{text}\n```"]
        if block_type == "to_do":
            prefix = "☑ " if content.get("checked") else "☐ "
        else:
            prefix = SEARCH_PREFIXES.get(block_type, "")
        return [f"{indent}{prefix}{text}"]

    # -- deal folders -------------------------------------------------------

    async def read_folder(self, folder_url: str) -> NotionFolder | None:
        """Flatten a deal's project folder page (to depth 3).

        Sub-pages are read inline under a ``### Sub-page`` header; child
        databases contribute up to 50 rows as ``key: value`` lines.

        Args:
            folder_url: Link to the Notion page

        Returns:
            NotionFolder, or None if the link has no page id or the page
            cannot be read
        """
        page_id = extract_page_id(folder_url)
        if page_id is None:
            logger.info(f"No Notion page id in folder link {folder_url!r}")
            return None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{NOTION_API_URL}/pages/{page_id}", headers=self._headers())
            if response.status_code != 200:
                logger.warning(f"Notion page {page_id} unavailable: {response.status_code}")
                return None

            try:
                page = response.json()
            except ValueError as e:
                logger.warning(f"Notion page {page_id} returned a non-JSON body: {e}")
                return None
            title = extract_title(page) if isinstance(page, dict) else ""
            lines = [f"# {title or 'Untitled Page'}\n"]
            lines.extend(await self.walk_blocks(client, page_id, FOLDER_DEPTH, self._render_folder_block))

        logger.info(f"Notion folder {page_id}: {len(lines)} lines")
        return NotionFolder(title=title, content="\n".join(lines))

    async def _render_folder_block(
        self,
        client: httpx.AsyncClient,
        block: dict[str, Any],
        depth: int,
    ) -> list[str]:
        block_type = block.get("type", "")
        content = block.get(block_type) or {}
        lines: list[str] = []

        text = _rich_text(content)
        if text and text.strip():
            lines.append(f"{'  ' * depth}{FOLDER_PREFIXES.get(block_type, '')}{text}")

        if block_type == "child_page":
            lines.append(f"\n### Sub-page: {content.get('title') or 'Untitled'}\n")
        elif block_type == "child_database" and block.get("id"):
            lines.append(f"\n### Database: {content.get('title') or 'Untitled'}\n")
            lines.extend(await self._database_rows(client, block["id"]))
        return lines

    async def _database_rows(self, client: httpx.AsyncClient, database_id: str) -> list[str]:
        try:
            response = await client.post(
                f"{NOTION_API_URL}/databases/{database_id}/query",
                headers=self._headers(),
                json={"page_size": DATABASE_PAGE_SIZE},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Notion database {database_id} query failed: {e}")
            return []
        if response.status_code != 200:
            return []

        rows = []
        for page in _results(response, f"database {database_id}"):
            props = [
                f"{key}: {value}"
                for key, prop in (page.get("properties") or {}).items()
                if (value := extract_property_value(prop))
            ]
            if props:
                rows.append(f"- {' | '.join(props)}")
        return rows

    # -- block tree ---------------------------------------------------------

    async def walk_blocks(
        self,
        client: httpx.AsyncClient,
        root_id: str,
        max_depth: int,
        render: BlockRenderer,
    ) -> list[str]:
        """Flatten a block tree in document order.

        Children of a block at depth ``d`` are read only while
        ``d + 1 <= max_depth``. Child databases are never descended into;
        their rows come from the renderer.
        """
        lines: list[str] = []
        stack: list[tuple[Iterator[dict[str, Any]], int]] = [
            (iter(await self._children(client, root_id)), 0)
        ]
        while stack:
            blocks, depth = stack[-1]
            block = next(blocks, None)
            if block is None:
                stack.pop()
                continue

            lines.extend(await render(client, block, depth))

            descend = block.get("type") == "child_page" or (
                block.get("has_children") and block.get("type") != "child_database"
            )
            if descend and block.get("id") and depth + 1 <= max_depth:
                stack.append((iter(await self._children(client, block["id"])), depth + 1))
        return lines

    async def _children(self, client: httpx.AsyncClient, block_id: str) -> list[dict[str, Any]]:
        try:
            response = await client.get(
                f"{NOTION_API_URL}/blocks/{block_id}/children",
                headers=self._headers(),
                params={"page_size": 100},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Notion blocks for {block_id} unavailable: {e}")
            return []
        if response.status_code != 200:
            return []
        return _results(response, f"blocks for {block_id}")
