"""Keyword extraction for mixed Latin/CJK chat queries."""

import logging
import re

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 5
SHORT_QUERY_CHARS = 50

STOP_WORDS: frozenset[str] = frozenset({
    # Chinese function words and request verbs
    "的", "了", "是", "在", "我", "有", "和", "就", "不", "人", "都", "一", "一个",
    "上", "也", "很", "到", "说", "要", "去", "你", "会", "着", "没有", "看", "好",
    "自己", "这", "那", "什么", "怎么", "为什么", "吗", "呢", "吧", "啊", "嗯",
    "请", "帮", "帮我", "分析", "一下", "看看", "告诉", "介绍", "解释", "说说",
    # English
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "can", "to", "of", "in", "for", "on", "with", "at", "by",
    "from", "as", "into", "about", "like", "through", "after", "over", "between",
    "out", "against", "during", "without", "before", "under", "around", "among",
    "what", "how", "why", "when", "where", "which", "who", "please", "tell", "me",
})

# Tickers and acronyms: 2-5 capitals followed by whitespace, comma, period or end
_UPPERCASE_TOKEN = re.compile(r"(?<![A-Za-z])([A-Z]{2,5})(?=\s|$|,|\.)")
_LATIN_RUN = re.compile(r"[A-Za-z]+(?:\s+[A-Za-z]+)*")
_NON_CJK = re.compile(r"[A-Za-z0-9\s.,!?;:'\"()\[\]{}]")
_CJK_DELIMITERS = re.compile(r"[\s，。！？；：、“”‘’（）【】]+")


def extract_keywords(message: str) -> list[str]:
    """Derive up to five search keywords from a free-text query.

    Candidates are gathered in order: uppercase tickers, Latin word runs
    that are not stop words, CJK segments of 2-10 characters, and finally
    the whole message when it is short. Duplicates keep their first
    position.

    Args:
        message: The user's query, possibly mixing Latin and CJK text

    Returns:
        At most five distinct keywords
    """
    if not message:
        return []

    candidates: list[str] = []

    candidates.extend(_UPPERCASE_TOKEN.findall(message))

    for run in _LATIN_RUN.findall(message):
        word = run.strip()
        if len(word) >= 3 and word.lower() not in STOP_WORDS:
            candidates.append(word)

    cjk_text = _NON_CJK.sub(" ", message)
    for segment in _CJK_DELIMITERS.split(cjk_text):
        if 2 <= len(segment) <= 10 and segment not in STOP_WORDS:
            candidates.append(segment)

    if len(message) <= SHORT_QUERY_CHARS and message.strip():
        candidates.append(message)

    keywords = list(dict.fromkeys(candidates))[:MAX_KEYWORDS]
    logger.debug(f"Extracted keywords: {keywords}")
    return keywords
