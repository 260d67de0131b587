"""Best-effort enrichment results.

An enrichment source (Notion, web search, ...) either produced data or is
absent for a logged reason. Callers filter out absent results instead of
letting one failing source abort the request.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Enrichment(Generic[T]):
    """Outcome of one enrichment source."""

    source: str
    value: T | None = None
    reason: str | None = None

    @property
    def present(self) -> bool:
        return self.value is not None

    @classmethod
    def found(cls, source: str, value: T) -> "Enrichment[T]":
        return cls(source=source, value=value)

    @classmethod
    def absent(cls, source: str, reason: str) -> "Enrichment[T]":
        return cls(source=source, reason=reason)


async def enrich(
    source: str,
    fetch: Callable[[], Awaitable[T]],
    is_empty: Callable[[T], bool] = lambda value: not value,
) -> Enrichment[T]:
    """Run ``fetch`` and wrap its outcome; exceptions become ``absent``."""
    try:
        value = await fetch()
    except Exception as e:
        logger.warning(f"{source} enrichment unavailable: {e}")
        return Enrichment.absent(source, str(e))
    if is_empty(value):
        logger.info(f"{source} enrichment returned nothing")
        return Enrichment.absent(source, "empty")
    return Enrichment.found(source, value)
