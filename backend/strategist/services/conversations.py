"""Service for conversations and their messages.

Provides:
- Create, list, fetch, retitle and delete conversations
- Ownership-checked access for the routes and the turn pipeline
- Create, list and delete messages
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from supabase import Client

from strategist.core.exceptions import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"

MessageRole = Literal["user", "assistant", "system"]


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


@dataclass
class Conversation:
    """A conversation metadata record."""

    id: str
    user_id: str
    title: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        """Create Conversation from database record."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data.get("title") or DEFAULT_TITLE,
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


@dataclass
class ConversationMessage:
    """A message in a conversation."""

    id: str
    conversation_id: str
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_llm_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        """Create ConversationMessage from database record."""
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            metadata=data.get("metadata") or {},
            created_at=_parse_timestamp(data.get("created_at")),
        )


class ConversationService:
    """Service for conversation and message operations."""

    def __init__(self, db_client: Client) -> None:
        """Initialize the conversation service.

        Args:
            db_client: Supabase client for database operations.
        """
        self.db = db_client

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        result = (
            self.db.table("conversations")
            .insert({"user_id": user_id, "title": (title or "").strip() or DEFAULT_TITLE})
            .execute()
        )
        conversation = Conversation.from_dict(result.data[0])
        logger.info(
            "Conversation created",
            extra={"user_id": user_id, "conversation_id": conversation.id},
        )
        return conversation

    async def list_conversations(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        """List a user's conversations, most recently updated first."""
        result = (
            self.db.table("conversations")
            .select("*")
            .eq("user_id", user_id)
            .order("updated_at", desc=True)
            .limit(limit)
            .offset(offset)
            .execute()
        )
        return [Conversation.from_dict(row) for row in result.data or []]

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        result = self.db.table("conversations").select("*").eq("id", conversation_id).execute()
        if not result.data:
            return None
        return Conversation.from_dict(result.data[0])

    async def get_owned_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        """Fetch a conversation the caller owns.

        Raises:
            NotFoundError: If the conversation does not exist.
            AuthorizationError: If it belongs to another user.
        """
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        if conversation.user_id != user_id:
            logger.warning(
                "Conversation ownership mismatch",
                extra={"user_id": user_id, "conversation_id": conversation_id},
            )
            raise AuthorizationError()
        return conversation

    async def update_conversation_title(self, conversation_id: str, title: str) -> None:
        (
            self.db.table("conversations")
            .update({"title": title, "updated_at": datetime.now(UTC).isoformat()})
            .eq("id", conversation_id)
            .execute()
        )

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        """Delete a conversation and its messages.

        Raises:
            NotFoundError: If the conversation does not exist.
            AuthorizationError: If it belongs to another user.
        """
        await self.get_owned_conversation(user_id, conversation_id)
        self.db.table("messages").delete().eq("conversation_id", conversation_id).execute()
        (
            self.db.table("conversations")
            .delete()
            .eq("user_id", user_id)
            .eq("id", conversation_id)
            .execute()
        )
        logger.info(
            "Conversation deleted",
            extra={"user_id": user_id, "conversation_id": conversation_id},
        )

    async def create_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationMessage:
        """Insert a message and touch the conversation's ``updated_at``."""
        result = (
            self.db.table("messages")
            .insert(
                {
                    "conversation_id": conversation_id,
                    "role": role,
                    "content": content,
                    "metadata": metadata or {},
                }
            )
            .execute()
        )
        (
            self.db.table("conversations")
            .update({"updated_at": datetime.now(UTC).isoformat()})
            .eq("id", conversation_id)
            .execute()
        )
        return ConversationMessage.from_dict(result.data[0])

    async def get_messages(self, conversation_id: str) -> list[ConversationMessage]:
        """All messages of a conversation, oldest first."""
        result = (
            self.db.table("messages")
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("created_at")
            .execute()
        )
        return [ConversationMessage.from_dict(row) for row in result.data or []]

    async def delete_message(self, user_id: str, conversation_id: str, message_id: str) -> None:
        """Delete one message from a conversation the caller owns.

        Raises:
            NotFoundError: If the conversation or message does not exist.
            AuthorizationError: If the conversation belongs to another user.
        """
        await self.get_owned_conversation(user_id, conversation_id)
        result = (
            self.db.table("messages")
            .select("id")
            .eq("id", message_id)
            .eq("conversation_id", conversation_id)
            .execute()
        )
        if not result.data:
            raise NotFoundError("Message", message_id)
        self.db.table("messages").delete().eq("id", message_id).execute()
        logger.info(
            "Message deleted",
            extra={"user_id": user_id, "conversation_id": conversation_id, "message_id": message_id},
        )
