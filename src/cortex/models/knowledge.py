"""Knowledge models: research sources, items and ranking results.

Items come from several tables (research feed, daily/stock/weekly notes);
ranking works on any record through ``ScoredItem``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, field_validator

DEFAULT_PRIORITY_TIER = 3
MIN_PRIORITY_TIER = 1
MAX_PRIORITY_TIER = 5

T = TypeVar("T")


def clamp_tier(priority: int | None) -> int:
    """Clamp a stored priority into a tier in [1, 5]; missing means 3."""
    if priority is None:
        return DEFAULT_PRIORITY_TIER
    return min(max(priority, MIN_PRIORITY_TIER), MAX_PRIORITY_TIER)


class SourceDescriptor(BaseModel):
    """A research source. ``name`` doubles as the citation label."""

    id: str
    name: str
    priority_tier: int = DEFAULT_PRIORITY_TIER
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    url: str | None = None
    description: str | None = None

    @field_validator("priority_tier", mode="before")
    @classmethod
    def _clamp(cls, value: int | None) -> int:
        return clamp_tier(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: list[str] | None) -> list[str]:
        return value or []

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SourceDescriptor":
        """Build from a ``research_sources`` row."""
        return cls(
            id=row["id"],
            name=row.get("name") or "",
            priority_tier=row.get("priority"),
            category=row.get("category") or "",
            tags=row.get("tags"),
            url=row.get("url"),
            description=row.get("description"),
        )


class KnowledgeItem(BaseModel):
    """A unit of retrievable content from a research source."""

    id: str
    source_id: str
    source_name: str = ""
    title: str = ""
    body: str = ""
    url: str | None = None
    published_at: datetime | None = None
    is_read: bool = False


@dataclass
class ScoredItem(Generic[T]):
    """A record with its ranking keys. Lives for one ranking pass."""

    record: T
    score: int = 0
    date: datetime | None = None
    priority_tier: int | None = None
