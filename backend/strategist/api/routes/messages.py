"""Message routes: the streamed turn plus message history."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from strategist.api.deps import (
    CurrentUser,
    get_conversation_service,
    get_turn_orchestrator,
)
from strategist.core.config import settings
from strategist.models.api import MessageCreateRequest
from strategist.services.conversations import ConversationService
from strategist.services.turn import TurnOrchestrator, run_in_background
from strategist.streaming.multiplexer import StreamMultiplexer
from strategist.streaming.protocol import StreamFormat, get_encoder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["messages"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/{conversation_id}/messages")
async def send_message(
    current_user: CurrentUser,
    conversation_id: str,
    request: MessageCreateRequest,
    orchestrator: Annotated[TurnOrchestrator, Depends(get_turn_orchestrator)],
    stream_format: Annotated[StreamFormat | None, Query(alias="format")] = None,
) -> StreamingResponse:
    """Send a message and stream the assistant's reply.

    Validation, usage and ownership failures are returned as JSON errors
    before streaming starts. The turn itself runs as its own task, so the
    reply is still saved if the client goes away mid-stream.

    Args:
        current_user: The authenticated user.
        conversation_id: Target conversation.
        request: The message body.
        orchestrator: Turn pipeline.
        stream_format: "ndjson" (default) or the legacy "markers" format.

    Returns:
        The streamed reply.
    """
    ctx = await orchestrator.prepare_turn(current_user.id, conversation_id, request.content)

    mux = StreamMultiplexer(get_encoder(stream_format or settings.STREAM_FORMAT))
    run_in_background(orchestrator.run(ctx, mux), name=f"turn-{conversation_id}")

    return StreamingResponse(mux.frames(), media_type=mux.media_type, headers=STREAM_HEADERS)


@router.get("/{conversation_id}/messages")
async def list_messages(
    current_user: CurrentUser,
    conversation_id: str,
    service: Annotated[ConversationService, Depends(get_conversation_service)],
) -> list[dict[str, Any]]:
    """Messages of a conversation the caller owns, oldest first."""
    await service.get_owned_conversation(current_user.id, conversation_id)
    messages = await service.get_messages(conversation_id)
    return [m.to_dict() for m in messages]


@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(
    current_user: CurrentUser,
    conversation_id: str,
    message_id: str,
    service: Annotated[ConversationService, Depends(get_conversation_service)],
) -> dict[str, Any]:
    await service.delete_message(current_user.id, conversation_id, message_id)
    return {"success": True, "id": message_id}
