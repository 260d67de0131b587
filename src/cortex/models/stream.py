"""Client-facing stream events and their SSE framings.

Two framings share the same events: the chat/deal framing mirrors the
OpenAI delta shape, the summary framing uses typed ``meta``/``delta``
frames. Both end with a single ``data: [DONE]`` frame.
"""

import json
from dataclasses import dataclass
from typing import Any, Protocol

DONE_FRAME = "data: [DONE]\n\n"


@dataclass(frozen=True)
class DeltaEvent:
    """An incremental text fragment; ``thinking`` marks reasoning text."""

    text: str
    thinking: bool = False


@dataclass(frozen=True)
class MetaEvent:
    """Aggregate counts emitted before any delta."""

    metadata: dict[str, Any]


def sse_frame(payload: dict[str, Any]) -> str:
    """Encode one ``data:`` frame."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class StreamFraming(Protocol):
    """Turns events into wire frames."""

    def meta(self, event: MetaEvent) -> str: ...

    def delta(self, event: DeltaEvent) -> str: ...


class ChatFraming:
    """``{"choices": [{"delta": {"content": ..., "thinking": true?}}]}``."""

    def meta(self, event: MetaEvent) -> str:
        return sse_frame({"metadata": event.metadata})

    def delta(self, event: DeltaEvent) -> str:
        delta: dict[str, Any] = {"content": event.text}
        if event.thinking:
            delta["thinking"] = True
        return sse_frame({"choices": [{"delta": delta}]})


class SummaryFraming:
    """``{"type": "meta", ...}`` and ``{"type": "delta", "text": ...}``."""

    def meta(self, event: MetaEvent) -> str:
        return sse_frame({"type": "meta", "metadata": event.metadata})

    def delta(self, event: DeltaEvent) -> str:
        return sse_frame({"type": "delta", "text": event.text})
