"""Builds the text embedded for semantic memory search.

Embedding similarity degrades as the query grows, so the raw user message
is reshaped into a short focused query before it is embedded.
"""

import logging
from collections.abc import Sequence
from typing import Any

logger = logging.getLogger(__name__)

OPTIMAL_MIN = 60
OPTIMAL_MAX = 200
CONTEXT_WORD_LIMIT = 15

_CONTEXT_STOPWORDS = frozenset({"that", "this", "with", "have", "been", "they", "your", "from", "about"})


def _truncate_at_sentence(message: str) -> str:
    truncated = message[:OPTIMAL_MAX]
    last_sentence = max(truncated.rfind("."), truncated.rfind("?"), truncated.rfind("!"))
    if last_sentence > OPTIMAL_MIN:
        return truncated[: last_sentence + 1].strip()
    return truncated.strip()


def _salient_words(text: str) -> list[str]:
    return [
        word
        for word in text.lower().split()
        if len(word) > 4 and word not in _CONTEXT_STOPWORDS
    ][:CONTEXT_WORD_LIMIT]


def build_memory_search_query(
    message: str,
    history: Sequence[dict[str, Any]] = (),
) -> str:
    """Shape a user message into a memory search query.

    Args:
        message: The new user message.
        history: Prior messages (dicts with ``role`` and ``content``), oldest first.

    Returns:
        The query text: the message itself when already 60-200 characters,
        a sentence-boundary truncation when longer, or the message padded
        with salient words from the last assistant reply when shorter.
    """
    trimmed = message.strip()
    length = len(trimmed)

    if OPTIMAL_MIN <= length <= OPTIMAL_MAX:
        return trimmed

    if length > OPTIMAL_MAX:
        query = _truncate_at_sentence(trimmed)
        logger.debug("Truncated memory query", extra={"from_chars": length, "to_chars": len(query)})
        return query

    last_assistant = next(
        (m for m in reversed(history) if m.get("role") == "assistant" and m.get("content")),
        None,
    )
    if last_assistant is None:
        return trimmed

    snippet = " ".join(_salient_words(str(last_assistant["content"])))
    query = f"{trimmed} {snippet}"[:OPTIMAL_MAX]
    logger.debug("Padded memory query with assistant context", extra={"to_chars": len(query)})
    return query
