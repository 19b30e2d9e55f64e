"""Per-user semantic memory storage backed by Supabase and pgvector.

Provides:
- CRUD on a user's memories
- k-nearest similarity search through the ``match_memories`` RPC
- Similarity-gated upsert for externally sourced facts
- Similarity-gated insert for conversation-extracted facts
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from supabase import Client

from strategist.core.config import settings
from strategist.core.embeddings import cosine_similarity
from strategist.core.exceptions import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class Memory:
    """A stored long-term fact about a user."""

    id: str
    user_id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    similarity: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        data: dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if self.similarity is not None:
            data["similarity"] = self.similarity
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Memory:
        """Create Memory from a database record or RPC row."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        similarity = data.get("similarity")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            content=data["content"],
            metadata=data.get("metadata") or {},
            created_at=created_at,
            similarity=_clamp_similarity(similarity) if similarity is not None else None,
        )


def _clamp_similarity(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


class MemoryStore:
    """Service for memory persistence and similarity search."""

    def __init__(self, db_client: Client) -> None:
        """Initialize the memory store.

        Args:
            db_client: Supabase client for database operations.
        """
        self.db = db_client

    async def create_memory(
        self,
        user_id: str,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> Memory:
        """Insert a memory unconditionally."""
        result = (
            self.db.table("memories")
            .insert(
                {
                    "user_id": user_id,
                    "content": content,
                    "embedding": list(embedding),
                    "metadata": metadata or {},
                }
            )
            .execute()
        )
        return Memory.from_dict(result.data[0])

    async def list_memories(self, user_id: str, limit: int = 100) -> list[Memory]:
        """List a user's memories, newest first."""
        result = (
            self.db.table("memories")
            .select("id, user_id, content, metadata, created_at")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [Memory.from_dict(row) for row in result.data or []]

    async def get_memory(self, memory_id: str) -> Memory | None:
        result = (
            self.db.table("memories")
            .select("id, user_id, content, metadata, created_at")
            .eq("id", memory_id)
            .execute()
        )
        if not result.data:
            return None
        return Memory.from_dict(result.data[0])

    async def delete_memory(self, user_id: str, memory_id: str) -> None:
        """Delete one of the user's memories.

        Raises:
            NotFoundError: If the memory does not exist.
            AuthorizationError: If the memory belongs to another user.
        """
        memory = await self.get_memory(memory_id)
        if memory is None:
            raise NotFoundError("Memory", memory_id)
        if memory.user_id != user_id:
            raise AuthorizationError()
        self.db.table("memories").delete().eq("id", memory_id).execute()

    async def search_similar(
        self,
        user_id: str,
        embedding: Sequence[float],
        k: int | None = None,
    ) -> list[Memory]:
        """Return the user's k nearest memories by cosine similarity.

        Args:
            user_id: Owner of the memories.
            embedding: Query vector.
            k: Number of results; defaults to ``MEMORY_SEARCH_LIMIT``.

        Returns:
            Memories annotated with ``similarity`` in [0, 1], most similar first.
        """
        result = self.db.rpc(
            "match_memories",
            {
                "query_embedding": list(embedding),
                "match_user_id": user_id,
                "match_count": k or settings.MEMORY_SEARCH_LIMIT,
            },
        ).execute()
        memories = [Memory.from_dict(row) for row in result.data or []]
        memories.sort(key=lambda m: m.similarity or 0.0, reverse=True)
        return memories

    async def upsert_memory(
        self,
        user_id: str,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
        threshold: float | None = None,
    ) -> tuple[Memory, bool]:
        """Replace the nearest memory when it is similar enough, else insert.

        A replaced memory gets the new content, embedding and metadata and a
        refreshed timestamp.

        Args:
            user_id: Owner of the memory.
            content: Memory text.
            embedding: Vector for ``content``.
            metadata: Metadata to store.
            threshold: Similarity at or above which the nearest memory is
                replaced; defaults to ``MEMORY_UPSERT_SIMILARITY``.

        Returns:
            The stored memory and whether an existing one was updated.
        """
        threshold = settings.MEMORY_UPSERT_SIMILARITY if threshold is None else threshold
        nearest = await self.search_similar(user_id, embedding, k=1)
        if nearest and (nearest[0].similarity or 0.0) >= threshold:
            existing = nearest[0]
            result = (
                self.db.table("memories")
                .update(
                    {
                        "content": content,
                        "embedding": list(embedding),
                        "metadata": {**existing.metadata, **(metadata or {})},
                        "created_at": datetime.now(UTC).isoformat(),
                    }
                )
                .eq("id", existing.id)
                .eq("user_id", user_id)
                .execute()
            )
            logger.info(
                "Updated similar memory in place",
                extra={
                    "user_id": user_id,
                    "memory_id": existing.id,
                    "similarity": existing.similarity,
                },
            )
            row = result.data[0] if result.data else {**existing.to_dict(), "content": content}
            return Memory.from_dict(row), True

        return await self.create_memory(user_id, content, embedding, metadata), False

    async def insert_if_novel(
        self,
        user_id: str,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
        threshold: float | None = None,
        pending: Sequence[Sequence[float]] = (),
    ) -> Memory | None:
        """Insert a memory only if nothing stored or pending is near-identical.

        Args:
            user_id: Owner of the memory.
            content: Memory text.
            embedding: Vector for ``content``.
            metadata: Metadata to store.
            threshold: Similarity at or above which the candidate is dropped;
                defaults to ``MEMORY_INSERT_SIMILARITY``.
            pending: Embeddings already accepted earlier in the same batch.

        Returns:
            The inserted memory, or None when it was a duplicate.
        """
        threshold = settings.MEMORY_INSERT_SIMILARITY if threshold is None else threshold

        for other in pending:
            if cosine_similarity(embedding, other) >= threshold:
                logger.debug("Skipped memory duplicating the current batch", extra={"user_id": user_id})
                return None

        nearest = await self.search_similar(user_id, embedding, k=1)
        if nearest and (nearest[0].similarity or 0.0) >= threshold:
            logger.debug(
                "Skipped near-duplicate memory",
                extra={"user_id": user_id, "similarity": nearest[0].similarity},
            )
            return None

        return await self.create_memory(user_id, content, embedding, metadata)
