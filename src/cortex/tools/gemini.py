"""Gemini text-generation API wrapper with SSE streaming."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, NoReturn

import httpx

from cortex.config import get_settings
from cortex.exceptions import GenerationError, RateLimitedError
from cortex.tools.base import ToolManifest

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling settings for one generation call.

    Setting ``thinking_budget`` asks the model to return its reasoning
    as separate ``thought`` parts.
    """

    temperature: float
    max_output_tokens: int
    thinking_budget: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
        }
        if self.thinking_budget is not None:
            payload["thinkingConfig"] = {
                "includeThoughts": True,
                "thinkingBudget": self.thinking_budget,
            }
        return payload


@dataclass(frozen=True)
class ContentPart:
    """One text part of a response chunk."""

    text: str
    thought: bool = False


def parse_parts(payload: dict[str, Any]) -> list[ContentPart]:
    """Extract the text parts of the first candidate in a response chunk.

    Raises:
        ValueError: If the chunk is not shaped like a Gemini response
    """
    if not isinstance(payload, dict):
        raise ValueError(f"chunk is {type(payload).__name__}, expected object")
    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list):
        raise ValueError(f"candidates is {type(candidates).__name__}, expected list")
    if not candidates:
        return []
    candidate = candidates[0] or {}
    if not isinstance(candidate, dict):
        raise ValueError(f"candidate is {type(candidate).__name__}, expected object")
    content = candidate.get("content") or {}
    if not isinstance(content, dict):
        raise ValueError(f"content is {type(content).__name__}, expected object")
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise ValueError(f"parts is {type(parts).__name__}, expected list")
    return [
        ContentPart(text=part["text"], thought=part.get("thought") is True)
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]
    ]


def user_turn(text: str) -> dict[str, Any]:
    return {"role": "user", "parts": [{"text": text}]}


class GenerationStream:
    """An open streaming response. Close it with ``aclose()``."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response) -> None:
        self._client = client
        self._response = response

    def lines(self) -> AsyncIterator[str]:
        return self._response.aiter_lines()

    async def aclose(self) -> None:
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class GeminiClient:
    """Wrapper for the Gemini generateContent API."""

    name: str = "gemini"
    capabilities: frozenset[str] = frozenset({"generation"})

    def manifest(self) -> ToolManifest:
        """Return static metadata about this tool."""
        return ToolManifest(
            name=self.name,
            version="0.1.0",
            description="Gemini generateContent wrapper with SSE streaming",
            capabilities=self.capabilities,
            config_keys=frozenset({"GEMINI_API_KEY", "GEMINI_MODEL"}),
        )

    async def health_check(self) -> bool:
        """Check that the configured model is reachable with our key."""
        if not self.configured:
            return False
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(
                    f"{GEMINI_API_URL}/{self.model}",
                    params={"key": self.api_key},
                )
                response.raise_for_status()
            return True
        except Exception:
            return False

    def __init__(self) -> None:
        settings = get_settings()
        self.api_key = settings.gemini_api_key
        self.model = settings.gemini_model
        self.timeout = httpx.Timeout(
            settings.upstream_read_timeout,
            connect=settings.upstream_connect_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def build_payload(
        contents: list[dict[str, Any]],
        config: GenerationConfig,
    ) -> dict[str, Any]:
        return {"contents": contents, "generationConfig": config.to_payload()}

    async def generate(
        self,
        contents: list[dict[str, Any]],
        config: GenerationConfig,
    ) -> str:
        """Generate a complete response.

        Reasoning parts are left out of the returned text.

        Args:
            contents: Conversation turns in Gemini format
            config: Sampling settings

        Returns:
            The concatenated answer text (may be empty)

        Raises:
            RateLimitedError: If Gemini answers 429
            GenerationError: On any other failure
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{GEMINI_API_URL}/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=self.build_payload(contents, config),
                )
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise GenerationError(f"Gemini API error: {e}") from e

        if response.status_code != 200:
            self._raise_for_status(response.status_code, response.text)

        try:
            parts = parse_parts(response.json())
        except ValueError as e:
            logger.error(f"Unexpected Gemini response: {e}")
            raise GenerationError(f"Gemini API error: {e}") from e
        return "".join(part.text for part in parts if not part.thought)

    async def open_stream(
        self,
        contents: list[dict[str, Any]],
        config: GenerationConfig,
    ) -> GenerationStream:
        """Open a streaming generation request.

        The status is checked before returning, so a rate limit or upstream
        error is raised here rather than in the middle of a client stream.

        Args:
            contents: Conversation turns in Gemini format
            config: Sampling settings

        Returns:
            An open GenerationStream over the SSE lines

        Raises:
            RateLimitedError: If Gemini answers 429
            GenerationError: On any other failure
        """
        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            request = client.build_request(
                "POST",
                f"{GEMINI_API_URL}/{self.model}:streamGenerateContent",
                params={"alt": "sse", "key": self.api_key},
                json=self.build_payload(contents, config),
            )
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(f"Gemini stream request failed: {e}")
            raise GenerationError(f"Gemini API error: {e}") from e

        if response.status_code != 200:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            await client.aclose()
            self._raise_for_status(response.status_code, body)

        return GenerationStream(client, response)

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> NoReturn:
        logger.error(f"Gemini API error {status_code}: {body[:500]}")
        if status_code == 429:
            raise RateLimitedError()
        raise GenerationError(f"Gemini API error: {body}", upstream_status=status_code)
