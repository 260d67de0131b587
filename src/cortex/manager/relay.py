"""Streaming relay from the generation API to the client.

A relay owns one upstream stream. It re-frames upstream SSE chunks as
client frames, accumulates the answer text, runs the finalizer once on
natural completion, and always ends with exactly one ``[DONE]`` frame.

States::

    IDLE -> PROMPT_BUILT -> STREAMING -> FINALIZING -> DONE
                                 \\-> ABORTED
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Protocol

import httpx

from cortex.exceptions import RelayStateError
from cortex.manager.cancellation import CancellationToken
from cortex.models.stream import DONE_FRAME, DeltaEvent, MetaEvent, StreamFraming
from cortex.tools.gemini import parse_parts

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
END_SENTINEL = "[DONE]"

Finalizer = Callable[[str], Awaitable[None]]


class RelayState(str, Enum):
    """Lifecycle of one relayed generation."""

    IDLE = "idle"
    PROMPT_BUILT = "prompt_built"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


_TRANSITIONS: dict[RelayState, frozenset[RelayState]] = {
    RelayState.IDLE: frozenset({RelayState.PROMPT_BUILT}),
    RelayState.PROMPT_BUILT: frozenset({RelayState.STREAMING}),
    RelayState.STREAMING: frozenset({RelayState.FINALIZING, RelayState.ABORTED}),
    RelayState.FINALIZING: frozenset({RelayState.DONE}),
    RelayState.DONE: frozenset(),
    RelayState.ABORTED: frozenset(),
}


class UpstreamStream(Protocol):
    """What the relay needs from an open upstream response."""

    def lines(self) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class _EndOfStream(Exception):
    """The upstream sent its end sentinel."""


def parse_sse_line(line: str, include_thoughts: bool) -> list[DeltaEvent]:
    """Turn one upstream SSE line into delta events.

    Non-data lines and empty payloads yield nothing. Reasoning parts are
    flagged when ``include_thoughts`` is set and dropped otherwise.

    Raises:
        _EndOfStream: On the ``[DONE]`` sentinel
        ValueError: If the payload is not valid JSON or not shaped like a
            response chunk
    """
    if not line.startswith(DATA_PREFIX):
        return []
    payload = line[len(DATA_PREFIX):].strip()
    if not payload:
        return []
    if payload == END_SENTINEL:
        raise _EndOfStream()

    data = json.loads(payload)
    if not isinstance(data, dict):
        return []

    events = []
    for part in parse_parts(data):
        if part.thought and not include_thoughts:
            continue
        events.append(DeltaEvent(text=part.text, thinking=part.thought))
    return events


class StreamRelay:
    """Relays one upstream generation stream to the client."""

    def __init__(
        self,
        framing: StreamFraming,
        include_thoughts: bool = False,
        meta: MetaEvent | None = None,
        finalizer: Finalizer | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.framing = framing
        self.include_thoughts = include_thoughts
        self.meta = meta
        self.finalizer = finalizer
        self.token = token or CancellationToken()
        self.state = RelayState.IDLE
        self._stream: UpstreamStream | None = None
        self._chunks: list[str] = []
        self.deltas_forwarded = 0
        self.frames_skipped = 0

    @property
    def text(self) -> str:
        """Answer text accumulated so far (reasoning excluded)."""
        return "".join(self._chunks)

    def _transition(self, target: RelayState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RelayStateError(self.state.value, target.value)
        logger.debug(f"Relay {self.state.value} -> {target.value}")
        self.state = target

    def prompt_built(self) -> None:
        self._transition(RelayState.PROMPT_BUILT)

    def attach(self, stream: UpstreamStream) -> None:
        """Attach the opened upstream stream; the prompt must be built."""
        if self.state is not RelayState.PROMPT_BUILT:
            raise RelayStateError(self.state.value, RelayState.STREAMING.value)
        self._stream = stream

    async def frames(self) -> AsyncIterator[str]:
        """Yield client frames: optional meta, deltas, then ``[DONE]``.

        If the token is cancelled or the upstream connection fails midway,
        forwarding stops, the finalizer is skipped and ``[DONE]`` is still
        sent. Frames already delivered stay delivered.
        """
        if self._stream is None:
            raise RelayStateError(self.state.value, RelayState.STREAMING.value)
        self._transition(RelayState.STREAMING)

        completed = False
        try:
            if self.meta is not None:
                yield self.framing.meta(self.meta)
            completed = True
            async for line in self._stream.lines():
                if self.token.cancelled:
                    completed = False
                    break
                try:
                    events = parse_sse_line(line, self.include_thoughts)
                except _EndOfStream:
                    break
                except ValueError:
                    self.frames_skipped += 1
                    logger.warning(f"Skipping malformed upstream frame: {line[:100]!r}")
                    continue
                for event in events:
                    if not event.thinking:
                        self._chunks.append(event.text)
                    self.deltas_forwarded += 1
                    yield self.framing.delta(event)
        except (GeneratorExit, asyncio.CancelledError):
            self.token.cancel("client disconnected")
            self._transition(RelayState.ABORTED)
            raise
        except httpx.HTTPError as e:
            completed = False
            logger.error(f"Upstream stream failed after {self.deltas_forwarded} deltas: {e}")
        finally:
            await self._close_stream()

        if completed:
            self._transition(RelayState.FINALIZING)
            await self._finalize()
            self._transition(RelayState.DONE)
        else:
            self._transition(RelayState.ABORTED)

        logger.info(
            f"Relay {self.state.value}: {self.deltas_forwarded} deltas, "
            f"{self.frames_skipped} skipped, {len(self.text)} chars"
        )
        yield DONE_FRAME

    async def _finalize(self) -> None:
        if self.finalizer is None:
            return
        try:
            await self.finalizer(self.text)
        except Exception as e:
            logger.error(f"Stream finalizer failed: {e}")

    async def _close_stream(self) -> None:
        if self._stream is None:
            return
        try:
            await self._stream.aclose()
        except Exception as e:
            logger.debug(f"Closing upstream stream failed: {e}")
