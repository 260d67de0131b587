"""Context assembly, ranking and stream relaying."""

from cortex.manager.cancellation import CancellationToken
from cortex.manager.chat_service import ChatService
from cortex.manager.deal_analyst import DealAnalyst
from cortex.manager.enrichment import Enrichment, enrich
from cortex.manager.keywords import extract_keywords
from cortex.manager.movement_explainer import MovementExplainer
from cortex.manager.relay import RelayState, StreamRelay
from cortex.manager.summary_service import SummaryService

__all__ = [
    "CancellationToken",
    "ChatService",
    "DealAnalyst",
    "Enrichment",
    "enrich",
    "extract_keywords",
    "MovementExplainer",
    "RelayState",
    "StreamRelay",
    "SummaryService",
]
