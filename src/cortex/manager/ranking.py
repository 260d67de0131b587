"""Relevance ranking and budget-capped selection.

Two regimes share the same goal of bounding the generation context:

* keyword relevance for chat context (``rank_by_keywords`` +
  ``select_relevant``), which always backfills with the most recent
  unmatched records;
* priority tiers with per-source caps for research summaries
  (``select_by_priority``).

Both are deterministic. Sorts are stable, so records with equal keys keep
their fetch order.
"""

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar

from cortex.models.knowledge import KnowledgeItem, ScoredItem, SourceDescriptor

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ITEMS = 160
MAX_ITEMS_CAP = 200
MIN_MAX_ITEMS = 10

PRIORITY_CAPS: dict[int, int] = {5: 12, 4: 10, 3: 8, 2: 6, 1: 4}


@dataclass(frozen=True)
class NoteBudget:
    """Caps for keyword selection: matched, unmatched and overall."""

    relevant: int
    recent: int
    total: int


DAILY_NOTE_BUDGET = NoteBudget(relevant=15, recent=10, total=20)
STOCK_NOTE_BUDGET = NoteBudget(relevant=40, recent=20, total=50)
WEEKLY_NOTE_BUDGET = NoteBudget(relevant=10, recent=5, total=12)
RESEARCH_ITEM_BUDGET = NoteBudget(relevant=25, recent=10, total=30)


def priority_cap(tier: int) -> int:
    """Per-source cap for a priority tier (5 -> 12 down to 1 -> 4)."""
    if tier >= 5:
        return PRIORITY_CAPS[5]
    return PRIORITY_CAPS.get(tier, PRIORITY_CAPS[1])


@dataclass(frozen=True)
class SelectionBudget:
    """Global item cap plus a per-source cap that depends on the tier."""

    global_cap: int = DEFAULT_MAX_ITEMS
    tier_caps: Mapping[int, int] = field(default_factory=lambda: dict(PRIORITY_CAPS))

    def per_group_cap(self, tier: int) -> int:
        if tier in self.tier_caps:
            return self.tier_caps[tier]
        return priority_cap(tier)


def clamp_max_items(value: int | None) -> int:
    """Apply the caller's ``maxItems`` override within [10, 200]."""
    if value is None:
        return DEFAULT_MAX_ITEMS
    return max(MIN_MAX_ITEMS, min(MAX_ITEMS_CAP, value))


def _recency_key(date: datetime | None) -> tuple[bool, float]:
    # Newest first; records without a date go last
    if date is None:
        return (True, 0.0)
    return (False, -date.timestamp())


# ---------------------------------------------------------------------------
# Keyword relevance
# ---------------------------------------------------------------------------

def score_text(text: str, keywords: Sequence[str]) -> int:
    """Count keywords that appear in ``text``, ignoring case."""
    if not text or not keywords:
        return 0
    lowered = text.lower()
    return sum(1 for keyword in keywords if keyword.lower() in lowered)


def rank_by_keywords(
    records: Iterable[T],
    keywords: Sequence[str],
    text_of: Callable[[T], str],
    date_of: Callable[[T], datetime | None],
) -> list[ScoredItem[T]]:
    """Score records against keywords and sort by score, then recency.

    Args:
        records: Candidate records in fetch order
        keywords: Extracted query keywords
        text_of: Builds the searchable text of a record
        date_of: Returns the record's date, or None

    Returns:
        Scored records, best first
    """
    scored = [
        ScoredItem(record=record, score=score_text(text_of(record), keywords), date=date_of(record))
        for record in records
    ]
    scored.sort(key=lambda item: (-item.score, *_recency_key(item.date)))
    return scored


def select_relevant(ranked: Sequence[ScoredItem[T]], budget: NoteBudget) -> list[ScoredItem[T]]:
    """Blend matched and recent unmatched records under a budget.

    Takes up to ``budget.relevant`` matched records and up to
    ``budget.recent`` unmatched ones, trimmed to ``budget.total``. Any room
    left is filled from the remaining unmatched records and then the
    remaining matched ones, so the result always holds
    ``min(budget.total, len(ranked))`` records.
    """
    relevant = [item for item in ranked if item.score > 0]
    recent = [item for item in ranked if item.score == 0]

    selected = (relevant[: budget.relevant] + recent[: budget.recent])[: budget.total]

    room = budget.total - len(selected)
    if room > 0:
        leftovers = recent[budget.recent:] + relevant[budget.relevant:]
        selected.extend(leftovers[:room])

    return selected


# ---------------------------------------------------------------------------
# Priority tiers
# ---------------------------------------------------------------------------

def select_by_priority(
    items: Iterable[KnowledgeItem],
    sources: Mapping[str, SourceDescriptor],
    budget: SelectionBudget | None = None,
) -> list[ScoredItem[KnowledgeItem]]:
    """Select items by source tier with a per-source cap.

    Items are sorted by tier (highest first) and then by publish date
    (newest first, undated last). An item is admitted while its source has
    used fewer than ``budget.per_group_cap(tier)`` slots; selection stops
    once ``budget.global_cap`` items are admitted. Items whose source is
    not in ``sources`` are dropped.

    Args:
        items: Unread candidate items
        sources: Source descriptors by id
        budget: Caps to apply (defaults to 160 items, standard tier caps)

    Returns:
        The admitted items in selection order
    """
    budget = budget or SelectionBudget()

    candidates = [
        ScoredItem(
            record=item,
            date=item.published_at,
            priority_tier=sources[item.source_id].priority_tier,
        )
        for item in items
        if item.source_id in sources
    ]
    candidates.sort(key=lambda c: (-(c.priority_tier or 0), *_recency_key(c.date)))

    usage: Counter[str] = Counter()
    selected: list[ScoredItem[KnowledgeItem]] = []
    for candidate in candidates:
        if len(selected) >= budget.global_cap:
            break
        source_id = candidate.record.source_id
        if usage[source_id] >= budget.per_group_cap(candidate.priority_tier or 0):
            continue
        selected.append(candidate)
        usage[source_id] += 1

    logger.debug(
        f"Priority selection admitted {len(selected)} of {len(candidates)} items "
        f"(cap {budget.global_cap})"
    )
    return selected


def count_by_tier(
    items: Iterable[KnowledgeItem],
    sources: Mapping[str, SourceDescriptor],
) -> dict[int, int]:
    """Count items per source tier, skipping items of unknown sources."""
    counts: Counter[int] = Counter(
        sources[item.source_id].priority_tier for item in items if item.source_id in sources
    )
    return dict(counts)
