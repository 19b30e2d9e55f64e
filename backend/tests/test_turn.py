"""Tests for TurnOrchestrator: validation, streaming and post-processing."""

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from strategist.core.config import Settings
from strategist.core.exceptions import AuthorizationError, UsageLimitError, ValidationError
from strategist.memory.profile_merge import MergeResult, merge_profile
from strategist.models.intent import InstagramAnalysisDecision, ProfileUpdateDecision, UnifiedIntentDecision
from strategist.models.profile import ProfileUpdate
from strategist.services import turn as turn_module
from strategist.services.conversations import DEFAULT_TITLE, Conversation, ConversationMessage
from strategist.services.enrichment.base import EnrichmentResult
from strategist.services.response_generator import GenerationPlan
from strategist.services.turn import STREAM_ERROR_NOTICE, TurnContext, TurnOrchestrator
from strategist.streaming.multiplexer import StreamMultiplexer
from strategist.streaming.protocol import decode_stream, get_encoder

USER = {"id": "user-1", "first_name": "Dana", "messages_used": 2, "messages_limit": 10, "profile_data": {}}


def _message(message_id: str, role: str, content: str) -> ConversationMessage:
    return ConversationMessage(id=message_id, conversation_id="conv-1", role=role, content=content)


async def _tokens(*parts: str) -> AsyncIterator[str]:
    for part in parts:
        yield part


def _orchestrator(
    decision: UnifiedIntentDecision | None = None,
    tokens: tuple[str, ...] = ("Here are ", "three ideas."),
    plan: GenerationPlan | None = None,
    title: str = "Reel ideas",
) -> tuple[TurnOrchestrator, dict[str, MagicMock]]:
    conversations = MagicMock()
    conversations.get_owned_conversation = AsyncMock(
        return_value=Conversation(id="conv-1", user_id="user-1", title=title)
    )
    conversations.create_message = AsyncMock(
        side_effect=lambda conv_id, role, content, metadata=None: _message(f"msg-{role}", role, content)
    )
    conversations.get_messages = AsyncMock(return_value=[_message("msg-user", "user", "Ideas for reels?")])
    conversations.update_conversation_title = AsyncMock()

    store = MagicMock()
    store.search_similar = AsyncMock(return_value=[])
    embeddings = MagicMock()
    embeddings.embed = AsyncMock(return_value=[0.1, 0.2])
    intent = MagicMock()
    intent.classify = AsyncMock(return_value=decision or UnifiedIntentDecision.default())
    generator = MagicMock()
    generator.prepare = AsyncMock(return_value=plan or GenerationPlan(system_prompt="sys"))
    generator.stream = MagicMock(side_effect=lambda plan, history: _tokens(*tokens))
    profile_extractor = MagicMock()
    profile_extractor.extract = AsyncMock(return_value=None)
    merge = MagicMock()
    merge.apply = AsyncMock(return_value=MergeResult())
    memory_extractor = MagicMock()
    memory_extractor.extract = AsyncMock(return_value=[])
    memory_extractor.persist = AsyncMock(return_value=0)
    instagram = MagicMock()
    instagram.analyze = AsyncMock()

    mocks = {
        "conversations": conversations,
        "intent": intent,
        "generator": generator,
        "profile_extractor": profile_extractor,
        "merge": merge,
        "memory_extractor": memory_extractor,
        "instagram": instagram,
    }
    orchestrator = TurnOrchestrator(
        conversations=conversations,
        memory_store=store,
        embeddings=embeddings,
        intent=intent,
        generator=generator,
        profile_extractor=profile_extractor,
        merge_engine=merge,
        memory_extractor=memory_extractor,
        instagram=instagram,
        hashtag=MagicMock(),
        blog=MagicMock(),
    )
    return orchestrator, mocks


@pytest.fixture
def mock_db() -> Any:
    db = MagicMock()
    db.get_user = AsyncMock(return_value=dict(USER))
    db.increment_message_usage = AsyncMock()
    settings = Settings(_env_file=None, HIKER_API_KEY="hk-test")  # type: ignore[call-arg]
    with (
        patch("strategist.services.turn.SupabaseClient", db),
        patch("strategist.services.turn.settings", settings),
    ):
        yield db


def _ctx(title: str = "Reel ideas", content: str = "Ideas for reels?") -> TurnContext:
    return TurnContext(
        user_id="user-1",
        conversation_id="conv-1",
        content=content,
        user_message_id="msg-user",
        conversation_title=title,
    )


async def _run(orchestrator: TurnOrchestrator, ctx: TurnContext) -> tuple[TurnContext, list[Any], StreamMultiplexer]:
    mux = StreamMultiplexer(get_encoder("ndjson"))
    task = asyncio.create_task(orchestrator.run(ctx, mux))
    frames = [frame async for frame in mux.frames()]
    final = await task
    return final, decode_stream(frames, "ndjson"), mux


def _of_kind(frames: list[Any], kind: str) -> list[Any]:
    return [payload for frame_kind, payload in frames if frame_kind == kind]


# --- prepare_turn --------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   \n"])
async def test_prepare_rejects_empty_message(mock_db: MagicMock, content: str) -> None:
    orchestrator, mocks = _orchestrator()

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.prepare_turn("user-1", "conv-1", content)

    assert exc_info.value.message == "Message cannot be empty. Please enter a message and try again."
    mocks["conversations"].create_message.assert_not_called()


@pytest.mark.asyncio
async def test_prepare_rejects_long_message(mock_db: MagicMock) -> None:
    orchestrator, _ = _orchestrator()

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.prepare_turn("user-1", "conv-1", "x" * 4001)

    assert exc_info.value.message == "Message is too long. Please keep it under 4000 characters."
    assert exc_info.value.details["maxLength"] == 4000
    assert exc_info.value.details["length"] == 4001


@pytest.mark.asyncio
async def test_prepare_enforces_usage_limit(mock_db: MagicMock) -> None:
    mock_db.get_user.return_value = {**USER, "messages_used": 10, "messages_limit": 10}
    orchestrator, mocks = _orchestrator()

    with pytest.raises(UsageLimitError) as exc_info:
        await orchestrator.prepare_turn("user-1", "conv-1", "hello")

    assert exc_info.value.status_code == 429
    assert exc_info.value.details == {"messagesUsed": 10, "messagesLimit": 10}
    mocks["conversations"].create_message.assert_not_called()


@pytest.mark.asyncio
async def test_prepare_allows_unlimited_plan(mock_db: MagicMock) -> None:
    mock_db.get_user.return_value = {**USER, "messages_used": 500, "messages_limit": -1}
    orchestrator, _ = _orchestrator()

    ctx = await orchestrator.prepare_turn("user-1", "conv-1", "  hello  ")

    assert ctx.content == "hello"
    assert ctx.user_message_id == "msg-user"
    assert ctx.conversation_title == "Reel ideas"


@pytest.mark.asyncio
async def test_prepare_checks_ownership_before_saving(mock_db: MagicMock) -> None:
    orchestrator, mocks = _orchestrator()
    mocks["conversations"].get_owned_conversation.side_effect = AuthorizationError()

    with pytest.raises(AuthorizationError):
        await orchestrator.prepare_turn("user-1", "conv-1", "hello")

    mocks["conversations"].create_message.assert_not_called()


# --- run -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_streams_and_persists_reply(mock_db: MagicMock) -> None:
    orchestrator, mocks = _orchestrator()

    final, frames, mux = await _run(orchestrator, _ctx())

    assert "".join(_of_kind(frames, "text")) == "Here are three ideas."
    assert _of_kind(frames, "message_id") == [{"messageId": "msg-assistant"}]
    assert _of_kind(frames, "search_meta") == []
    assert frames[-1] == ("activity", {"type": None, "message": ""})
    call = mocks["conversations"].create_message.await_args
    assert call.args[:3] == ("conv-1", "assistant", "Here are three ideas.")
    assert "truncated" not in call.args[3]
    assert final.assistant_message_id == "msg-assistant"
    assert final.reply == mux.transcript
    mock_db.increment_message_usage.assert_awaited_once_with("user-1")
    mocks["memory_extractor"].extract.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_sends_search_metadata_when_search_was_attempted(mock_db: MagicMock) -> None:
    plan = GenerationPlan(system_prompt="sys", search_attempted=True, search_query="reel trends")
    orchestrator, mocks = _orchestrator(plan=plan)

    _, frames, _ = await _run(orchestrator, _ctx())

    assert _of_kind(frames, "search_meta") == [
        {"type": "search_metadata", "searchPerformed": False, "citations": [], "searchQuery": "reel trends"}
    ]
    metadata = mocks["conversations"].create_message.await_args.args[3]
    assert metadata["search_performed"] is False
    assert metadata["search_query"] == "reel trends"


@pytest.mark.asyncio
async def test_failed_enrichment_still_produces_reply(mock_db: MagicMock) -> None:
    decision = UnifiedIntentDecision.default().model_copy(
        update={
            "instagram_analysis": InstagramAnalysisDecision(
                should_analyze=True, username="rival", confidence=0.9
            )
        }
    )
    orchestrator, mocks = _orchestrator(decision=decision)
    mocks["instagram"].analyze.return_value = EnrichmentResult.failed("Instagram profile not found")

    final, frames, _ = await _run(orchestrator, _ctx())

    assert "".join(_of_kind(frames, "text")) == "Here are three ideas."
    activities = _of_kind(frames, "activity")
    generating = activities.index({"type": "generating", "message": "Writing response..."})
    assert activities[:generating] == [{"type": None, "message": ""}]
    assert final.enrichments["instagram"].error == "Instagram profile not found"
    assert mocks["instagram"].analyze.await_args.args[:2] == ("rival", "user-1")
    mocks["profile_extractor"].extract.assert_not_called()


@pytest.mark.asyncio
async def test_disconnect_persists_truncated_reply(mock_db: MagicMock) -> None:
    gate = asyncio.Event()

    async def tokens() -> AsyncIterator[str]:
        yield "Partial "
        await gate.wait()
        yield "never shown"

    orchestrator, mocks = _orchestrator()
    mocks["generator"].stream.side_effect = lambda plan, history: tokens()
    mux = StreamMultiplexer(get_encoder("ndjson"))
    task = asyncio.create_task(orchestrator.run(_ctx(), mux))

    frames = mux.frames()
    async for frame in frames:
        if b'"kind":"text"' in frame:
            break
    await frames.aclose()
    gate.set()
    final = await asyncio.wait_for(task, timeout=2)

    assert mux.disconnected
    call = mocks["conversations"].create_message.await_args
    assert call.args[2] == "Partial "
    assert call.args[3]["truncated"] is True
    assert final.reply == "Partial "


@pytest.mark.asyncio
async def test_generation_error_is_reported_inline(mock_db: MagicMock) -> None:
    async def failing() -> AsyncIterator[str]:
        yield "Start "
        raise RuntimeError("provider dropped the connection")

    orchestrator, mocks = _orchestrator()
    mocks["generator"].stream.side_effect = lambda plan, history: failing()

    _, frames, _ = await _run(orchestrator, _ctx())

    assert "".join(_of_kind(frames, "text")) == "Start " + STREAM_ERROR_NOTICE
    assert len(_of_kind(frames, "message_id")) == 1
    assert mocks["conversations"].create_message.await_args.args[2] == "Start " + STREAM_ERROR_NOTICE
    mock_db.increment_message_usage.assert_not_called()


@pytest.mark.asyncio
async def test_profile_update_event(mock_db: MagicMock) -> None:
    decision = UnifiedIntentDecision.default().model_copy(
        update={"profile_update": ProfileUpdateDecision(should_extract=True, confidence=0.9)}
    )
    orchestrator, mocks = _orchestrator(decision=decision)
    mocks["profile_extractor"].extract.return_value = ProfileUpdate(content_niche=["baking"])
    mocks["merge"].apply.return_value = MergeResult(changed_fields=["content_niche"], completeness=28)

    _, frames, _ = await _run(orchestrator, _ctx())

    assert mocks["merge"].apply.await_args.args == ("user-1", {"content_niche": ["baking"]})
    assert _of_kind(frames, "profile_updated") == [
        {"changedFields": ["content_niche"], "completeness": 28, "cappedFields": []}
    ]
    assert {"type": "profile_extracting", "message": "Updating your profile..."} in _of_kind(frames, "activity")


@pytest.mark.asyncio
async def test_capped_niche_is_reported_without_other_changes(mock_db: MagicMock) -> None:
    stored = {
        "id": "user-1",
        "content_niche": [f"Niche {i}" for i in range(10)],
        "primary_platform": "Instagram",
        "primary_platforms": ["Instagram"],
    }
    orchestrator, mocks = _orchestrator()
    mocks["profile_extractor"].extract.return_value = ProfileUpdate(content_niche=["a", "b", "c"])
    mocks["merge"].apply.return_value = merge_profile(stored, {"content_niche": ["a", "b", "c"]})

    _, frames, _ = await _run(orchestrator, _ctx(content="Please update my profile with new niches"))

    events = _of_kind(frames, "profile_updated")
    assert len(events) == 1
    assert events[0]["changedFields"] == []
    assert events[0]["cappedFields"] == [{"field": "Content Niche", "limit": 10, "attempted": 13}]


@pytest.mark.asyncio
async def test_unchanged_profile_sends_no_event(mock_db: MagicMock) -> None:
    orchestrator, mocks = _orchestrator()
    mocks["profile_extractor"].extract.return_value = ProfileUpdate(first_name="Dana")

    _, frames, _ = await _run(orchestrator, _ctx(content="Please update my name to Dana"))

    mocks["merge"].apply.assert_awaited_once()
    assert _of_kind(frames, "profile_updated") == []


@pytest.mark.asyncio
async def test_first_exchange_is_titled_in_background(mock_db: MagicMock) -> None:
    orchestrator, mocks = _orchestrator(title=DEFAULT_TITLE)

    with patch(
        "strategist.services.turn.generate_conversation_title",
        AsyncMock(return_value="Reel Ideas for Bakeries"),
    ) as titler:
        await _run(orchestrator, _ctx(title=DEFAULT_TITLE))
        await asyncio.gather(*list(turn_module._background_tasks))

    messages = titler.await_args.args[0]
    assert [m["role"] for m in messages] == ["user", "assistant"]
    mocks["conversations"].update_conversation_title.assert_awaited_once_with(
        "conv-1", "Reel Ideas for Bakeries"
    )


@pytest.mark.asyncio
async def test_titled_conversation_is_not_retitled(mock_db: MagicMock) -> None:
    orchestrator, mocks = _orchestrator()

    with patch("strategist.services.turn.generate_conversation_title", AsyncMock()) as titler:
        await _run(orchestrator, _ctx())

    titler.assert_not_called()
