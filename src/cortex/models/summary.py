"""Research summary request/response and history models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model exchanged with the browser in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SummaryRequest(CamelModel):
    """Body of ``POST /research/summary``."""

    source_ids: list[str] | None = None
    mark_as_read: bool = False
    max_items: int | None = None


class SummaryMetadata(CamelModel):
    """Aggregate counts sent before any summary text."""

    item_count: int = 0
    source_count: int = 0
    priority_counts: dict[int, int] | None = None


class SummaryResponse(CamelModel):
    """Non-streaming summary result."""

    summary: str
    metadata: SummaryMetadata


class SummaryHistoryRecord(BaseModel):
    """A stored research summary (``research_summary_history`` row)."""

    id: str
    title: str | None = None
    preview: str | None = None
    summary: str = ""
    created_at: datetime | None = None
    item_count: int = 0
    source_count: int = 0
    source_ids: list[str] = Field(default_factory=list)
    priority_counts: dict[int, int] = Field(default_factory=dict)
    is_favorite: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SummaryHistoryRecord":
        """Build from a database row, tolerating null columns."""
        return cls(
            id=row["id"],
            title=row.get("title"),
            preview=row.get("preview"),
            summary=row.get("summary") or "",
            created_at=row.get("created_at"),
            item_count=row.get("item_count") or 0,
            source_count=row.get("source_count") or 0,
            source_ids=row.get("source_ids") or [],
            priority_counts=row.get("priority_counts") or {},
            is_favorite=bool(row.get("is_favorite")),
        )


class FavoriteUpdate(CamelModel):
    """Body of ``PATCH /research/summaries/{id}/favorite``."""

    is_favorite: bool
