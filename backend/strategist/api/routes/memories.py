"""Memory routes: browse, add, delete and search a user's long-term memories."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from strategist.api.deps import CurrentUser, get_memory_store
from strategist.core.embeddings import EmbeddingClient
from strategist.memory.importance import create_memory_metadata
from strategist.memory.query_builder import build_memory_search_query
from strategist.memory.store import MemoryStore
from strategist.models.api import MemoryCreateRequest, MemorySearchRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/memories", tags=["memories"])

MemoryStoreDep = Annotated[MemoryStore, Depends(get_memory_store)]


def get_embedding_client() -> EmbeddingClient:
    return EmbeddingClient()


EmbeddingDep = Annotated[EmbeddingClient, Depends(get_embedding_client)]


@router.get("")
async def list_memories(
    current_user: CurrentUser,
    store: MemoryStoreDep,
    limit: int = 100,
) -> list[dict[str, Any]]:
    memories = await store.list_memories(current_user.id, limit=limit)
    return [m.to_dict() for m in memories]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_memory(
    current_user: CurrentUser,
    request: MemoryCreateRequest,
    store: MemoryStoreDep,
    embeddings: EmbeddingDep,
) -> dict[str, Any]:
    """Store a fact the user entered directly.

    User-entered memories are stored as confirmed facts, without a
    similarity check.
    """
    embedding = await embeddings.embed(request.content)
    metadata = {
        **create_memory_metadata("user_confirmed", request.content, user_statement=True),
        **request.metadata,
    }
    memory = await store.create_memory(current_user.id, request.content, embedding, metadata)
    logger.info("Memory created via API", extra={"user_id": current_user.id, "memory_id": memory.id})
    return memory.to_dict()


@router.delete("/{memory_id}")
async def delete_memory(
    current_user: CurrentUser,
    memory_id: str,
    store: MemoryStoreDep,
) -> dict[str, Any]:
    await store.delete_memory(current_user.id, memory_id)
    return {"success": True, "id": memory_id}


@router.post("/search")
async def search_memories(
    current_user: CurrentUser,
    request: MemorySearchRequest,
    store: MemoryStoreDep,
    embeddings: EmbeddingDep,
) -> dict[str, Any]:
    """Similarity search over the caller's memories.

    The query is shaped the same way as during a chat turn.
    """
    query = build_memory_search_query(request.query)
    embedding = await embeddings.embed(query)
    memories = await store.search_similar(current_user.id, embedding, request.limit)
    return {"query": query, "memories": [m.to_dict() for m in memories]}
