"""Perplexity web search API wrapper."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from cortex.config import get_settings
from cortex.exceptions import UpstreamError
from cortex.tools.base import ToolManifest

logger = logging.getLogger(__name__)

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"

DEFAULT_SYSTEM_PROMPT = (
    "Provide concise, factual information with key data points. Focus on recent "
    "and relevant information. Include specific numbers, dates, and facts."
)


@dataclass
class WebSearchResult:
    """Answer text plus the URLs Perplexity cited."""

    content: str
    citations: list[str] = field(default_factory=list)


class PerplexityClient:
    """Wrapper for the Perplexity chat completions (sonar) API."""

    name: str = "perplexity"
    capabilities: frozenset[str] = frozenset({"web_search"})

    def manifest(self) -> ToolManifest:
        """Return static metadata about this tool."""
        return ToolManifest(
            name=self.name,
            version="0.1.0",
            description="Perplexity sonar web search wrapper",
            capabilities=self.capabilities,
            config_keys=frozenset({"PERPLEXITY_API_KEY"}),
        )

    async def health_check(self) -> bool:
        """Check connectivity to Perplexity with a minimal query."""
        if not self.configured:
            return False
        try:
            await self.search("ping", max_tokens=1)
            return True
        except Exception:
            return False

    def __init__(self) -> None:
        settings = get_settings()
        self.api_key = settings.perplexity_api_key
        self.model = "sonar"
        self.timeout = settings.enrichment_timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int | None = None,
        search_recency_filter: str | None = None,
        **options: Any,
    ) -> WebSearchResult:
        """Ask Perplexity a question grounded in live web results.

        Args:
            query: The user question
            system_prompt: Instructions for the answer style
            max_tokens: Optional answer length limit
            search_recency_filter: Optional recency window ("day", "week", "month")
            **options: Extra request fields passed through verbatim

        Returns:
            WebSearchResult with the answer and its citations

        Raises:
            UpstreamError: If the key is missing or the request fails
        """
        if not self.configured:
            raise UpstreamError("Perplexity API key not configured")

        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": query},
            ],
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if search_recency_filter:
            body["search_recency_filter"] = search_recency_filter
        body.update(options)

        logger.info(f"Perplexity search: {query[:80]!r} (max_tokens={max_tokens})")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    PERPLEXITY_API_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=body,
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Perplexity request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Perplexity API error {response.status_code}: {response.text[:300]}")
            raise UpstreamError(
                f"Perplexity API error: {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Perplexity returned a non-JSON body: {response.text[:300]}")
            raise UpstreamError(f"Perplexity returned an unreadable response: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamError("Perplexity returned an unreadable response")

        choices = data.get("choices") or [{}]
        content = ((choices[0] or {}).get("message") or {}).get("content") or ""
        citations = data.get("citations") or []
        logger.info(f"Perplexity returned {len(citations)} citations")
        return WebSearchResult(content=content, citations=list(citations))
