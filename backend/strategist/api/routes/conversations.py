"""Conversation routes."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from strategist.api.deps import CurrentUser, get_conversation_service
from strategist.models.api import ConversationCreateRequest
from strategist.services.conversations import ConversationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])

ConversationServiceDep = Annotated[ConversationService, Depends(get_conversation_service)]


@router.get("")
async def list_conversations(
    current_user: CurrentUser,
    service: ConversationServiceDep,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """List the caller's conversations, most recently updated first."""
    conversations = await service.list_conversations(current_user.id, limit=limit, offset=offset)
    return [c.to_dict() for c in conversations]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    current_user: CurrentUser,
    service: ConversationServiceDep,
    request: ConversationCreateRequest | None = None,
) -> dict[str, Any]:
    """Start a conversation; the title defaults to "New Conversation"."""
    conversation = await service.create_conversation(
        current_user.id, request.title if request else None
    )
    return conversation.to_dict()


@router.get("/{conversation_id}")
async def get_conversation(
    current_user: CurrentUser,
    conversation_id: str,
    service: ConversationServiceDep,
) -> dict[str, Any]:
    conversation = await service.get_owned_conversation(current_user.id, conversation_id)
    return conversation.to_dict()


@router.delete("/{conversation_id}")
async def delete_conversation(
    current_user: CurrentUser,
    conversation_id: str,
    service: ConversationServiceDep,
) -> dict[str, str]:
    """Delete a conversation and its messages.

    Raises:
        NotFoundError: 404 if the conversation does not exist.
        AuthorizationError: 403 if it belongs to another user.
    """
    await service.delete_conversation(current_user.id, conversation_id)
    logger.info(
        "Conversation deleted via API",
        extra={"user_id": current_user.id, "conversation_id": conversation_id},
    )
    return {"status": "deleted", "id": conversation_id}
