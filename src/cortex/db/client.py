"""Supabase database client for research, notes and deal data."""

import logging
from typing import Any

from supabase import create_client, Client

from cortex.config import get_settings
from cortex.models.summary import SummaryHistoryRecord

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = "id, title, preview, summary, created_at, item_count, source_count, is_favorite"


class DatabaseClient:
    """Client for Supabase database operations."""

    def __init__(self) -> None:
        settings = get_settings()
        self.client: Client = create_client(
            settings.supabase_url,
            settings.supabase_key,
        )

    # -------------------------------------------------------------------------
    # Auth and profiles
    # -------------------------------------------------------------------------

    async def get_user_id_from_token(self, token: str) -> str | None:
        """Resolve a user access token to the user's id.

        Args:
            token: The JWT from the Authorization header

        Returns:
            The user id, or None if the token is not accepted
        """
        try:
            response = self.client.auth.get_user(token)
        except Exception as e:
            logger.debug(f"Token rejected: {e}")
            return None
        user = getattr(response, "user", None)
        return getattr(user, "id", None)

    async def get_notion_key(self, user_id: str) -> str | None:
        """Get the Notion integration key stored on a user's profile."""
        result = (
            self.client.table("profiles")
            .select("notion_api_key")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return result.data[0].get("notion_api_key") or None
        return None

    async def get_shared_research_owner(self) -> str | None:
        """Get the id of the account whose research feed is shared, if any."""
        result = self.client.rpc("shared_research_owner_id", {}).execute()
        return result.data if isinstance(result.data, str) else None

    # -------------------------------------------------------------------------
    # Research feed
    # -------------------------------------------------------------------------

    async def get_research_sources(
        self,
        user_id: str,
        source_ids: list[str] | None = None,
        columns: str = "id, name, priority, category, tags",
    ) -> list[dict[str, Any]]:
        """Get a user's research sources.

        Args:
            user_id: Owner of the sources
            source_ids: Optional subset of source ids
            columns: Columns to select

        Returns:
            Source rows ordered by priority
        """
        query = self.client.table("research_sources").select(columns).eq("user_id", user_id)
        if source_ids:
            query = query.in_("id", source_ids)
        result = query.order("priority").execute()
        return result.data or []

    async def count_unread_items(self, source_ids: list[str]) -> int | None:
        """Exact count of unread items across sources (None if unavailable)."""
        result = (
            self.client.table("research_items")
            .select("id", count="exact")
            .in_("source_id", source_ids)
            .eq("is_read", False)
            .limit(1)
            .execute()
        )
        return result.count

    async def get_unread_items(self, source_ids: list[str], limit: int = 500) -> list[dict[str, Any]]:
        """Get unread items of the given sources, newest first."""
        result = (
            self.client.table("research_items")
            .select("id, source_id, title, summary, content, url, published_at, is_read")
            .in_("source_id", source_ids)
            .eq("is_read", False)
            .order("published_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def get_research_items(self, source_ids: list[str]) -> list[dict[str, Any]]:
        """Get every item (read or not) of the given sources, newest first."""
        if not source_ids:
            return []
        result = (
            self.client.table("research_items")
            .select("id, source_id, title, summary, content, url, published_at")
            .in_("source_id", source_ids)
            .order("published_at", desc=True)
            .execute()
        )
        return result.data or []

    async def mark_items_read(self, item_ids: list[str]) -> None:
        """Set ``is_read`` on items. Re-marking read items is a no-op."""
        if not item_ids:
            return
        self.client.table("research_items").update({"is_read": True}).in_("id", item_ids).execute()
        logger.debug(f"Marked {len(item_ids)} research items read")

    # -------------------------------------------------------------------------
    # Summary history
    # -------------------------------------------------------------------------

    async def get_recent_summaries(self, user_id: str, limit: int = 5) -> list[dict[str, Any]]:
        """Get the latest summaries used as historical context."""
        result = (
            self.client.table("research_summary_history")
            .select("summary, title, preview, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def insert_summary_history(self, record: dict[str, Any]) -> None:
        """Store a generated summary."""
        self.client.table("research_summary_history").insert(record).execute()
        logger.debug(f"Stored summary history for user {record.get('user_id')}")

    async def list_summary_history(self, user_id: str, limit: int = 50) -> list[SummaryHistoryRecord]:
        """List a user's stored summaries, newest first."""
        result = (
            self.client.table("research_summary_history")
            .select(HISTORY_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [SummaryHistoryRecord.from_row(row) for row in result.data or []]

    async def set_summary_favorite(
        self,
        user_id: str,
        summary_id: str,
        is_favorite: bool,
    ) -> SummaryHistoryRecord | None:
        """Toggle the favourite flag on one of the user's summaries.

        Returns:
            The updated record, or None if the user has no such summary
        """
        result = (
            self.client.table("research_summary_history")
            .update({"is_favorite": is_favorite})
            .eq("id", summary_id)
            .eq("user_id", user_id)
            .execute()
        )
        if result.data:
            return SummaryHistoryRecord.from_row(result.data[0])
        return None

    async def delete_summary_history(self, user_id: str, summary_id: str) -> bool:
        """Delete one of the user's summaries. Returns False if none matched."""
        result = (
            self.client.table("research_summary_history")
            .delete()
            .eq("id", summary_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(result.data)

    # -------------------------------------------------------------------------
    # Market notes
    # -------------------------------------------------------------------------

    async def get_stock_groups(self) -> list[dict[str, Any]]:
        result = self.client.table("stock_groups").select("*").order("display_order").execute()
        return result.data or []

    async def get_stocks(self) -> list[dict[str, Any]]:
        result = self.client.table("stocks").select("*").order("display_order").execute()
        return result.data or []

    async def get_daily_notes(self) -> list[dict[str, Any]]:
        result = self.client.table("daily_notes").select("*").order("date", desc=True).execute()
        return result.data or []

    async def get_stock_notes(self) -> list[dict[str, Any]]:
        result = self.client.table("stock_notes").select("*").order("date", desc=True).execute()
        return result.data or []

    async def get_weekly_notes(self) -> list[dict[str, Any]]:
        result = (
            self.client.table("weekly_additional_notes")
            .select("*")
            .order("week_end_date", desc=True)
            .execute()
        )
        return result.data or []

    async def get_company_name(self, symbol: str, date: str) -> str | None:
        """Company name cached with the day's price for ``symbol``."""
        result = (
            self.client.table("stock_price_cache")
            .select("company_name")
            .eq("symbol", symbol)
            .eq("date", date)
            .limit(1)
            .execute()
        )
        if result.data:
            return result.data[0].get("company_name") or None
        return None

    # -------------------------------------------------------------------------
    # Deals
    # -------------------------------------------------------------------------

    async def get_deal(self, deal_id: str) -> dict[str, Any] | None:
        """Get a deal by id."""
        result = self.client.table("deals").select("*").eq("id", deal_id).limit(1).execute()
        if result.data:
            return result.data[0]
        return None

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """Run a trivial query and report latency."""
        import time

        start = time.perf_counter()
        try:
            self.client.table("research_sources").select("id").limit(1).execute()
            latency_ms = (time.perf_counter() - start) * 1000
            return {
                "healthy": True,
                "latency_ms": round(latency_ms, 2),
                "error": None,
            }
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.error(f"Database health check failed: {e}")
            return {
                "healthy": False,
                "latency_ms": round(latency_ms, 2),
                "error": str(e),
            }
