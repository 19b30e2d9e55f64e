"""Importance scoring and metadata for stored memories."""

import re
from collections import Counter
from datetime import UTC, datetime
from typing import Any, Literal

MemorySource = Literal["conversation", "analysis", "user_confirmed", "search_result"]

BASE_IMPORTANCE = 0.5

_IDENTITY_PHRASES = ("my name", "my business", "i am", "i'm")
_BUSINESS_PHRASES = ("target audience", "brand voice", "content goal", "niche")
_PREFERENCE_PHRASES = ("prefer", "want to", "decided to", "will focus on")

_KEYWORD_STOPWORDS = frozenset(
    {
        "that", "this", "with", "have", "been", "they", "your", "from", "about",
        "would", "there", "their", "what", "which", "when", "where", "will",
        "were", "some",
    }
)


def calculate_importance_score(
    content: str,
    *,
    from_analysis: bool = False,
    user_statement: bool = False,
    business_info: bool = False,
) -> float:
    """Score how much a memory matters, from 0.5 up to 1.0.

    Args:
        content: The memory text.
        from_analysis: Derived from a profile, hashtag or blog analysis.
        user_statement: Stated directly by the user.
        business_info: Carries business-critical information.

    Returns:
        The importance score.
    """
    score = BASE_IMPORTANCE
    if from_analysis:
        score += 0.2
    if user_statement:
        score += 0.15
    if business_info:
        score += 0.15

    lowered = content.lower()
    if any(phrase in lowered for phrase in _IDENTITY_PHRASES):
        score += 0.2
    if any(phrase in lowered for phrase in _BUSINESS_PHRASES):
        score += 0.15
    if any(phrase in lowered for phrase in _PREFERENCE_PHRASES):
        score += 0.1

    return min(1.0, score)


def extract_keywords(content: str, limit: int = 10) -> list[str]:
    """Most frequent words longer than four characters, stopwords removed."""
    words = [
        word
        for word in re.sub(r"[^\w\s]", " ", content.lower()).split()
        if len(word) > 4 and word not in _KEYWORD_STOPWORDS
    ]
    counts = Counter(words)
    # Counter keeps first-seen order among ties
    return [word for word, _ in counts.most_common(limit)]


def create_memory_metadata(
    source: MemorySource,
    content: str = "",
    *,
    conversation_id: str | None = None,
    workflow_phase: str | None = None,
    importance: float | None = None,
    from_analysis: bool = False,
    user_statement: bool = False,
    business_info: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    """Metadata stored alongside a new memory."""
    if importance is None:
        importance = calculate_importance_score(
            content,
            from_analysis=from_analysis,
            user_statement=user_statement,
            business_info=business_info,
        )
    metadata: dict[str, Any] = {
        "source": source,
        "importance": importance,
        "retrieval_count": 0,
        "created_at": datetime.now(UTC).isoformat(),
    }
    if content:
        metadata["keywords"] = extract_keywords(content)
    if conversation_id:
        metadata["conversation_id"] = conversation_id
    if workflow_phase:
        metadata["workflow_phase"] = workflow_phase
    metadata.update(extra)
    return metadata
