"""Tests for the HTTP routes."""

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from strategist.api.deps import (
    get_conversation_service,
    get_current_user,
    get_memory_store,
    get_turn_orchestrator,
)
from strategist.api.routes.memories import get_embedding_client
from strategist.api.routes.profile import get_merge_engine
from strategist.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    UsageLimitError,
    ValidationError,
)
from strategist.main import app
from strategist.memory.profile_merge import MergeResult
from strategist.memory.store import Memory
from strategist.models.events import ActivityType
from strategist.models.profile import CappedField
from strategist.services.conversations import Conversation
from strategist.services.turn import TurnContext
from strategist.services.workflow import POSITIONING, calculate_completeness
from strategist.streaming.multiplexer import StreamMultiplexer
from strategist.streaming.protocol import decode_stream

USER_ROW = {
    "id": "test-user-123",
    "first_name": "Dana",
    "content_niche": ["baking"],
    "primary_platform": "instagram",
    "profile_data": {},
    "messages_used": 3,
    "messages_limit": 10,
}


@pytest.fixture
def mock_current_user() -> MagicMock:
    """Create mock current user."""
    user = MagicMock()
    user.id = "test-user-123"
    return user


@pytest.fixture
def test_client(mock_current_user: MagicMock) -> Generator[TestClient, None, None]:
    """Create test client with mocked authentication."""

    async def override_get_current_user() -> MagicMock:
        return mock_current_user

    app.dependency_overrides[get_current_user] = override_get_current_user
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def _override(dependency: Any, value: Any) -> Any:
    app.dependency_overrides[dependency] = lambda: value
    return value


def _orchestrator(prepare: Any = None) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.prepare_turn = AsyncMock(
        return_value=TurnContext(
            user_id="test-user-123",
            conversation_id="conv-1",
            content="hello",
            user_message_id="msg-1",
        ),
        side_effect=prepare,
    )

    async def run(ctx: TurnContext, mux: StreamMultiplexer) -> TurnContext:
        await mux.activity(ActivityType.GENERATING, "Writing response...")
        await mux.write_text("Hi ")
        await mux.write_text("Dana!")
        await mux.message_id("msg-2")
        await mux.close()
        return ctx

    orchestrator.run = run
    return orchestrator


# --- Auth ----------------------------------------------------------------


def test_missing_token_is_rejected() -> None:
    response = TestClient(app).get("/api/v1/conversations")

    assert response.status_code == 401


def test_root_health() -> None:
    response = TestClient(app).get("/health")

    assert response.json() == {"status": "healthy"}


def test_detailed_health_reports_circuits() -> None:
    response = TestClient(app).get("/api/v1/health")

    data = response.json()
    assert response.status_code == 200
    assert data["status"] in ("healthy", "degraded")
    assert "web_search" in data["circuit_breakers"]
    assert set(data["services"]) == {"web_search", "grok", "instagram"}


# --- Messages ------------------------------------------------------------


def test_send_message_streams_ndjson(test_client: TestClient) -> None:
    orchestrator = _override(get_turn_orchestrator, _orchestrator())

    response = test_client.post("/api/v1/conversations/conv-1/messages", json={"content": "hello"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    assert response.headers["x-accel-buffering"] == "no"
    frames = decode_stream([response.content], "ndjson")
    assert [kind for kind, _ in frames] == ["activity", "text", "text", "message_id"]
    assert frames[-1] == ("message_id", {"messageId": "msg-2"})
    orchestrator.prepare_turn.assert_awaited_once_with("test-user-123", "conv-1", "hello")


def test_send_message_streams_markers(test_client: TestClient) -> None:
    _override(get_turn_orchestrator, _orchestrator())

    response = test_client.post(
        "/api/v1/conversations/conv-1/messages?format=markers", json={"content": "hello"}
    )

    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == (
        '[AI_ACTIVITY]{"type":"generating","message":"Writing response..."}[/AI_ACTIVITY]'
        'Hi Dana![MESSAGE_ID]{"messageId":"msg-2"}[/MESSAGE_ID]'
    )


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (ValidationError("Message cannot be empty. Please enter a message and try again."), 400, "VALIDATION_ERROR"),
        (UsageLimitError(10, 10), 429, "USAGE_LIMIT_REACHED"),
        (NotFoundError("Conversation", "conv-1"), 404, "NOT_FOUND"),
        (AuthorizationError(), 403, "AUTHORIZATION_ERROR"),
    ],
)
def test_send_message_errors_before_streaming(
    test_client: TestClient, error: Exception, status_code: int, code: str
) -> None:
    _override(get_turn_orchestrator, _orchestrator(prepare=error))

    response = test_client.post("/api/v1/conversations/conv-1/messages", json={"content": "hello"})

    assert response.status_code == status_code
    body = response.json()
    assert body["code"] == code
    assert "request_id" in body


def test_usage_limit_body_carries_counts(test_client: TestClient) -> None:
    _override(get_turn_orchestrator, _orchestrator(prepare=UsageLimitError(10, 10)))

    response = test_client.post("/api/v1/conversations/conv-1/messages", json={"content": "hi"})

    body = response.json()
    assert body["messagesUsed"] == 10
    assert body["messagesLimit"] == 10
    assert body["retryable"] is False


def test_malformed_body_is_400(test_client: TestClient) -> None:
    _override(get_turn_orchestrator, _orchestrator())

    response = test_client.post("/api/v1/conversations/conv-1/messages", json={"content": ["x"]})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_delete_message(test_client: TestClient) -> None:
    service = _override(get_conversation_service, MagicMock())
    service.delete_message = AsyncMock()

    response = test_client.delete("/api/v1/conversations/conv-1/messages/msg-1")

    assert response.json() == {"success": True, "id": "msg-1"}
    service.delete_message.assert_awaited_once_with("test-user-123", "conv-1", "msg-1")


# --- Conversations -------------------------------------------------------


def test_create_conversation_without_body(test_client: TestClient) -> None:
    service = _override(get_conversation_service, MagicMock())
    service.create_conversation = AsyncMock(
        return_value=Conversation(id="conv-1", user_id="test-user-123", title="New Conversation")
    )

    response = test_client.post("/api/v1/conversations")

    assert response.status_code == 201
    assert response.json()["title"] == "New Conversation"
    service.create_conversation.assert_awaited_once_with("test-user-123", None)


def test_get_foreign_conversation_is_403(test_client: TestClient) -> None:
    service = _override(get_conversation_service, MagicMock())
    service.get_owned_conversation = AsyncMock(side_effect=AuthorizationError())

    response = test_client.get("/api/v1/conversations/conv-9")

    assert response.status_code == 403


def test_delete_missing_conversation_is_404(test_client: TestClient) -> None:
    service = _override(get_conversation_service, MagicMock())
    service.delete_conversation = AsyncMock(side_effect=NotFoundError("Conversation", "conv-9"))

    response = test_client.delete("/api/v1/conversations/conv-9")

    assert response.status_code == 404
    assert response.json()["detail"] == "Conversation with ID 'conv-9' not found"


# --- Memories ------------------------------------------------------------


def test_create_memory_rejects_empty_content(test_client: TestClient) -> None:
    _override(get_memory_store, MagicMock())
    _override(get_embedding_client, MagicMock())

    response = test_client.post("/api/v1/memories", json={"content": ""})

    assert response.status_code == 400
    assert response.json()["errors"][0]["loc"] == ["body", "content"]


def test_search_memories(test_client: TestClient) -> None:
    store = _override(get_memory_store, MagicMock())
    store.search_similar = AsyncMock(
        return_value=[Memory(id="m1", user_id="test-user-123", content="Bakes sourdough", similarity=0.9)]
    )
    embeddings = _override(get_embedding_client, MagicMock())
    embeddings.embed = AsyncMock(return_value=[0.1, 0.2])

    response = test_client.post("/api/v1/memories/search", json={"query": "bread", "limit": 3})

    data = response.json()
    assert data["memories"][0]["similarity"] == 0.9
    assert store.search_similar.await_args.args[2] == 3


# --- Profile -------------------------------------------------------------


def test_get_profile(test_client: TestClient) -> None:
    mock_db = MagicMock()
    mock_db.get_user = AsyncMock(return_value=dict(USER_ROW))

    with patch("strategist.api.routes.profile.SupabaseClient", mock_db):
        response = test_client.get("/api/v1/profile")

    data = response.json()
    assert response.status_code == 200
    assert data["profile_completeness"] == calculate_completeness(USER_ROW)
    assert data["workflow_phase"] == POSITIONING
    assert data["messages_limit"] == 10


def test_patch_profile_requires_fields(test_client: TestClient) -> None:
    _override(get_merge_engine, MagicMock())

    response = test_client.patch("/api/v1/profile", json={"replaceArrays": True})

    assert response.status_code == 400
    assert response.json()["detail"] == "No profile fields to update"


def test_patch_profile(test_client: TestClient) -> None:
    engine = _override(get_merge_engine, MagicMock())
    engine.apply = AsyncMock(
        return_value=MergeResult(
            merged={**USER_ROW, "content_niche": ["Baking", "Pastry"]},
            changed_fields=["content_niche"],
            capped_fields=[CappedField("Content Niche", 10, 12)],
            completeness=43,
        )
    )

    response = test_client.patch(
        "/api/v1/profile",
        json={"contentNiche": ["Baking", "Pastry"], "replaceArrays": True},
    )

    data = response.json()
    assert response.status_code == 200
    assert data["changedFields"] == ["content_niche"]
    assert data["cappedFields"] == [{"field": "Content Niche", "limit": 10, "attempted": 12}]
    assert data["profile"]["content_niche"] == ["Baking", "Pastry"]
    engine.apply.assert_awaited_once_with(
        "test-user-123", {"content_niche": ["Baking", "Pastry"]}, replace_arrays=True
    )
