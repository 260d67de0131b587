"""Pydantic models for Cortex - the contracts."""

from cortex.models.chat import ChatMessage, ChatRequest, ChatStatus
from cortex.models.deal import AnalysisType, Deal, DealAnalysisRequest, DealMetadata
from cortex.models.knowledge import (
    KnowledgeItem,
    ScoredItem,
    SourceDescriptor,
    clamp_tier,
)
from cortex.models.stock import MovementExplanation, MovementRequest
from cortex.models.stream import (
    DONE_FRAME,
    ChatFraming,
    DeltaEvent,
    MetaEvent,
    SummaryFraming,
)
from cortex.models.summary import (
    FavoriteUpdate,
    SummaryHistoryRecord,
    SummaryMetadata,
    SummaryRequest,
    SummaryResponse,
)

__all__ = [
    "AnalysisType",
    "ChatFraming",
    "ChatMessage",
    "ChatRequest",
    "ChatStatus",
    "DONE_FRAME",
    "Deal",
    "DealAnalysisRequest",
    "DealMetadata",
    "DeltaEvent",
    "FavoriteUpdate",
    "KnowledgeItem",
    "MetaEvent",
    "MovementExplanation",
    "MovementRequest",
    "ScoredItem",
    "SourceDescriptor",
    "SummaryFraming",
    "SummaryHistoryRecord",
    "SummaryMetadata",
    "SummaryRequest",
    "SummaryResponse",
    "clamp_tier",
]
