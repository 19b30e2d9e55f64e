"""Shared contract of the enrichment adapters.

An adapter takes a target (username, hashtag or URL set) and a user id and
returns an :class:`EnrichmentResult`. Failures are returned as data; an
adapter never raises past its boundary, so a failed enrichment can't abort
the turn.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from strategist.core.embeddings import EmbeddingClient
from strategist.core.exceptions import StrategistError
from strategist.memory.importance import MemorySource, create_memory_metadata
from strategist.memory.store import MemoryStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], Awaitable[None]]


async def no_progress(message: str) -> None:
    return None


@dataclass(frozen=True)
class EnrichmentResult:
    """Outcome of one enrichment call."""

    success: bool
    analysis: dict[str, Any] | None = None
    cached: bool = False
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, analysis: dict[str, Any], cached: bool = False, **extra: Any) -> "EnrichmentResult":
        return cls(success=True, analysis=analysis, cached=cached, extra=extra)

    @classmethod
    def failed(cls, error: str) -> "EnrichmentResult":
        return cls(success=False, error=error)

    @property
    def fresh(self) -> bool:
        """A successful result that was not served from cache."""
        return self.success and not self.cached

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, "analysis": self.analysis, "cached": self.cached, **self.extra}


def hours_since(timestamp: Any, now: datetime | None = None) -> float | None:
    """Age of an ISO timestamp in hours, or None when it can't be parsed."""
    if not isinstance(timestamp, str) or not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return (now - parsed).total_seconds() / 3600


def is_fresh(snapshot: Any, max_age_hours: float) -> bool:
    """Whether a stored snapshot's ``cached_at`` is younger than ``max_age_hours``."""
    if not isinstance(snapshot, dict):
        return False
    age = hours_since(snapshot.get("cached_at"))
    return age is not None and age < max_age_hours


def failure_message(error: Exception, default: str) -> str:
    """User-facing text for a failed enrichment."""
    if isinstance(error, StrategistError) and error.code == "EXTERNAL_SERVICE_ERROR":
        return error.message
    return default


class AnalysisMemoryWriter:
    """Stores analysis-derived facts, replacing near-duplicates in place."""

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingClient,
        threshold: float,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._threshold = threshold

    async def write(
        self,
        user_id: str,
        texts: Sequence[str],
        source: MemorySource = "analysis",
        **metadata: Any,
    ) -> int:
        """Upsert each text; per-text failures are logged and skipped.

        Returns:
            Number of texts stored or updated.
        """
        written = 0
        for text in texts:
            try:
                embedding = await self._embeddings.embed(text)
                await self._store.upsert_memory(
                    user_id,
                    text,
                    embedding,
                    create_memory_metadata(source, text, from_analysis=True, **metadata),
                    threshold=self._threshold,
                )
                written += 1
            except Exception as e:
                logger.warning(
                    "Failed to store analysis memory",
                    extra={"user_id": user_id, "error": str(e)},
                )
        return written

