"""Custom exceptions for Cortex.

Every ``CortexError`` carries the HTTP status it should be rendered with;
the API layer turns them into ``{"error": message}`` bodies.
"""


class CortexError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFoundError(CortexError):
    """Raised when a requested record does not exist."""

    status_code = 404


class UpstreamError(CortexError):
    """Raised when a third-party API call fails.

    ``upstream_status`` keeps the status code returned by the upstream
    service, if there was one.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        status_code: int | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(message, status_code)


class RateLimitedError(UpstreamError):
    """Raised when the generation API answers HTTP 429."""

    status_code = 429

    def __init__(self, message: str = "Rate limits exceeded, please try again later.") -> None:
        super().__init__(message, upstream_status=429)


class GenerationError(UpstreamError):
    """Raised when the primary generation call fails."""

    status_code = 500


class RelayStateError(Exception):
    """Raised on an invalid stream relay state transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid relay transition: {current} -> {target}")
