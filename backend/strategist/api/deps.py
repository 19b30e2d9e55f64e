"""FastAPI dependencies: bearer-token auth and per-request service wiring."""

import logging
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from strategist.db.supabase import SupabaseClient, get_supabase_client
from strategist.memory.store import MemoryStore
from strategist.services.conversations import ConversationService
from strategist.services.turn import TurnOrchestrator

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Any:
    """Resolve the Supabase auth user behind the bearer token.

    Every failure, including an unreachable auth service, is a 401 so the
    client re-authenticates rather than retrying with the same token.

    Returns:
        The Supabase auth user; routes only rely on ``id``.
    """
    if credentials is None:
        raise _unauthorized("Authentication required")

    try:
        auth_response = SupabaseClient.get_client().auth.get_user(credentials.credentials)
    except Exception as e:
        logger.exception("Token validation failed")
        raise _unauthorized("Could not validate credentials") from e

    user = getattr(auth_response, "user", None)
    if user is None:
        logger.warning("Token validation returned no user")
        raise _unauthorized("Invalid authentication token")
    return user


CurrentUser = Annotated[Any, Depends(get_current_user)]


def get_conversation_service() -> ConversationService:
    return ConversationService(get_supabase_client())


def get_memory_store() -> MemoryStore:
    return MemoryStore(get_supabase_client())


def get_turn_orchestrator() -> TurnOrchestrator:
    return TurnOrchestrator()
