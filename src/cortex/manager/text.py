"""Plain-text helpers shared by prompt building and history records."""

import re
from datetime import UTC, datetime

HISTORY_TITLE_MAX = 120
HISTORY_PREVIEW_MAX = 240
DEFAULT_HISTORY_TITLE = "Research Summary"

_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")

# Applied in order; each pair is (pattern, replacement)
_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"`{1,3}[^`]*`{1,3}"), " "),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"_([^_]+)_"), r"\1"),
    (re.compile(r"!\[([^\]]*)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),
]


def strip_html(value: str) -> str:
    """Replace tags with spaces and collapse whitespace."""
    return _WHITESPACE.sub(" ", _TAG.sub(" ", value)).strip()


def remove_tags(value: str) -> str:
    """Drop tags without touching whitespace (note bodies keep their layout)."""
    return _TAG.sub("", value)


def strip_markdown(value: str) -> str:
    """Reduce markdown to a single line of plain text."""
    for pattern, replacement in _MARKDOWN_RULES:
        value = pattern.sub(replacement, value)
    return _WHITESPACE.sub(" ", value).strip()


def truncate(value: str, max_chars: int) -> str:
    """Cut ``value`` to ``max_chars`` and mark the cut with ``...``."""
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}..."


def normalize_text(value: str | None, max_chars: int) -> str:
    """Strip HTML from ``value`` and truncate it."""
    if not value:
        return ""
    return truncate(strip_html(value), max_chars)


def derive_history_title(summary_text: str) -> str:
    """Title for a history record: the first non-empty line, unformatted."""
    lines = [line.strip() for line in summary_text.split("\n") if line.strip()]
    if not lines:
        return DEFAULT_HISTORY_TITLE
    first = re.sub(r"^#+\s*", "", strip_markdown(lines[0]))
    if not first:
        return DEFAULT_HISTORY_TITLE
    return truncate(first, HISTORY_TITLE_MAX)


def derive_history_preview(summary_text: str) -> str:
    """Preview for a history record: markdown-free text, truncated."""
    clean = strip_markdown(summary_text)
    if not clean:
        return ""
    return truncate(clean, HISTORY_PREVIEW_MAX)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp or date; ``None`` if absent or invalid.

    Naive values are taken as UTC so that every result is comparable.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_history_date(value: str | None) -> str:
    """Render a history timestamp as ``YYYY-MM-DD``."""
    if not value:
        return "Unknown date"
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    return parsed.date().isoformat()
