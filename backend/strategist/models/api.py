"""Request bodies for the HTTP routes."""

from typing import Any

from pydantic import BaseModel, Field


class MessageCreateRequest(BaseModel):
    """Body of ``POST /conversations/{id}/messages``.

    Length and emptiness are checked by the turn orchestrator so the caller
    gets the specific rejection reason.
    """

    content: str = ""


class ConversationCreateRequest(BaseModel):
    title: str | None = Field(None, max_length=200)


class MemoryCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    metadata: dict[str, Any] = Field(default_factory=dict)


class MemorySearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=4000)
    limit: int = Field(5, ge=1, le=20)
