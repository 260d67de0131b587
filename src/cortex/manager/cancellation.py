"""Cancellation tokens for long-running streams."""

import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop signal handed to a stream relay.

    The relay checks ``cancelled`` before forwarding each upstream line;
    whoever owns the client connection calls ``cancel()``.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            logger.info(f"Stream cancelled: {reason}")
            self._cancelled = True
            self.reason = reason
