"""Turn orchestration.

A turn runs in two phases:

1. ``prepare_turn`` validates the request and saves the user message. It
   raises before anything is streamed, so the route can still answer with
   a proper HTTP error.
2. ``run`` streams the reply through a :class:`StreamMultiplexer` and does
   all post-processing: saving the reply, usage accounting, profile
   extraction, memory extraction and conversation titling.

Every stage returns a frozen delta that is folded into the frozen
:class:`TurnContext`, so a stage can only change what it declares.
"""

import asyncio
import logging
import time
from collections.abc import Coroutine
from contextlib import aclosing
from dataclasses import dataclass, field, fields, replace
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from strategist.core.config import settings
from strategist.core.embeddings import EmbeddingClient
from strategist.core.exceptions import UsageLimitError, ValidationError
from strategist.db.supabase import SupabaseClient, get_supabase_client
from strategist.memory.extractor import MemoryExtractor
from strategist.memory.profile_merge import ProfileMergeEngine
from strategist.memory.query_builder import build_memory_search_query
from strategist.memory.store import Memory, MemoryStore
from strategist.models.events import ActivityType
from strategist.models.intent import UnifiedIntentDecision
from strategist.models.profile import ProfileUpdate
from strategist.services.conversations import DEFAULT_TITLE, ConversationService
from strategist.services.enrichment.base import EnrichmentResult
from strategist.services.enrichment.blog import BlogAnalyzer
from strategist.services.enrichment.hashtag import HashtagSearchAnalyzer
from strategist.services.enrichment.instagram import InstagramAnalyzer
from strategist.services.intent import IntentClassifier
from strategist.services.profile_extraction import ProfileExtractor, is_explicit_profile_request
from strategist.services.response_generator import (
    GenerationPlan,
    ResponseGenerator,
    generate_conversation_title,
)
from strategist.streaming.multiplexer import StreamMultiplexer

logger = logging.getLogger(__name__)

STREAM_ERROR_NOTICE = (
    "\n\n_Sorry, something went wrong while generating the response. Please try again._"
)
UNLIMITED = -1
TITLE_MAX_MESSAGES = 2

# Tasks that must outlive the request that started them
_background_tasks: set[asyncio.Task[Any]] = set()


def run_in_background(coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
    """Schedule ``coro`` and keep a reference until it finishes."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@dataclass(frozen=True)
class ContextLoad:
    history: tuple[dict[str, Any], ...]
    user: dict[str, Any] | None
    memories: tuple[Memory, ...]


@dataclass(frozen=True)
class IntentOutcome:
    decision: UnifiedIntentDecision


@dataclass(frozen=True)
class EnrichmentOutcome:
    enrichments: dict[str, EnrichmentResult]


@dataclass(frozen=True)
class GenerationOutcome:
    plan: GenerationPlan
    reply: str


@dataclass(frozen=True)
class PersistOutcome:
    assistant_message_id: str | None


@dataclass(frozen=True)
class TurnContext:
    """Everything known about one turn so far."""

    user_id: str
    conversation_id: str
    content: str
    user_message_id: str
    conversation_title: str = DEFAULT_TITLE
    history: tuple[dict[str, Any], ...] = ()
    user: dict[str, Any] | None = None
    memories: tuple[Memory, ...] = ()
    decision: UnifiedIntentDecision = field(default_factory=UnifiedIntentDecision.default)
    enrichments: dict[str, EnrichmentResult] = field(default_factory=dict)
    plan: GenerationPlan | None = None
    reply: str = ""
    assistant_message_id: str | None = None

    def apply(self, delta: Any) -> "TurnContext":
        """Return a copy with the delta's fields folded in."""
        return replace(self, **{f.name: getattr(delta, f.name) for f in fields(delta)})


def _merge_updates(*updates: dict[str, Any]) -> dict[str, Any]:
    combined: dict[str, Any] = {}
    for update in updates:
        for key, value in update.items():
            if key == "profile_data" and isinstance(combined.get(key), dict):
                combined[key] = {**combined[key], **value}
            else:
                combined[key] = value
    return combined


class TurnOrchestrator:
    """Runs one user turn end to end."""

    def __init__(
        self,
        conversations: ConversationService | None = None,
        memory_store: MemoryStore | None = None,
        embeddings: EmbeddingClient | None = None,
        intent: IntentClassifier | None = None,
        generator: ResponseGenerator | None = None,
        profile_extractor: ProfileExtractor | None = None,
        merge_engine: ProfileMergeEngine | None = None,
        memory_extractor: MemoryExtractor | None = None,
        instagram: InstagramAnalyzer | None = None,
        hashtag: HashtagSearchAnalyzer | None = None,
        blog: BlogAnalyzer | None = None,
    ) -> None:
        db = None
        if conversations is None or memory_store is None:
            db = get_supabase_client()
        self._conversations = conversations or ConversationService(db)
        self._store = memory_store or MemoryStore(db)
        self._embeddings = embeddings or EmbeddingClient()
        self._intent = intent or IntentClassifier()
        self._generator = generator or ResponseGenerator()
        self._profile_extractor = profile_extractor or ProfileExtractor()
        self._merge = merge_engine or ProfileMergeEngine()
        self._memory_extractor = memory_extractor or MemoryExtractor(self._store, self._embeddings)
        self._instagram = instagram or InstagramAnalyzer(
            store=self._store, embeddings=self._embeddings, merge_engine=self._merge
        )
        self._hashtag = hashtag or HashtagSearchAnalyzer(
            store=self._store, embeddings=self._embeddings, merge_engine=self._merge
        )
        self._blog = blog or BlogAnalyzer(
            store=self._store, embeddings=self._embeddings, merge_engine=self._merge
        )

    async def prepare_turn(self, user_id: str, conversation_id: str, content: str) -> TurnContext:
        """Validate the request and save the user message.

        Raises:
            ValidationError: If the message is empty or too long.
            UsageLimitError: If the user has no messages left.
            NotFoundError: If the conversation does not exist.
            AuthorizationError: If the conversation belongs to another user.
        """
        text = (content or "").strip()
        if not text:
            raise ValidationError(
                "Message cannot be empty. Please enter a message and try again.", field="content"
            )
        if len(text) > settings.MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message is too long. Please keep it under {settings.MAX_MESSAGE_LENGTH} characters.",
                field="content",
                details={"maxLength": settings.MAX_MESSAGE_LENGTH, "length": len(text)},
            )

        user = await SupabaseClient.get_user(user_id)
        used = int(user.get("messages_used") or 0)
        limit = user.get("messages_limit")
        limit = settings.DEFAULT_MESSAGES_LIMIT if limit is None else int(limit)
        if limit != UNLIMITED and used >= limit:
            logger.info(
                "Message limit reached",
                extra={"user_id": user_id, "messages_used": used, "messages_limit": limit},
            )
            raise UsageLimitError(used, limit)

        conversation = await self._conversations.get_owned_conversation(user_id, conversation_id)
        message = await self._conversations.create_message(conversation_id, "user", text)
        logger.info(
            "User message saved",
            extra={"user_id": user_id, "conversation_id": conversation_id, "message_id": message.id},
        )
        return TurnContext(
            user_id=user_id,
            conversation_id=conversation_id,
            content=text,
            user_message_id=message.id,
            conversation_title=conversation.title,
            user=user,
        )

    async def _recall(self, ctx: TurnContext, history_task: "asyncio.Future[Any]") -> tuple[Memory, ...]:
        try:
            history = [m.to_llm_message() for m in await history_task]
            query = build_memory_search_query(ctx.content, history[:-1])
            embedding = await self._embeddings.embed(query)
            memories = await self._store.search_similar(ctx.user_id, embedding, settings.MEMORY_SEARCH_LIMIT)
        except Exception as e:
            logger.warning(
                "Memory recall failed, continuing without memories",
                extra={"user_id": ctx.user_id, "error": str(e)},
            )
            return ()
        return tuple(memories)

    async def _load_context(self, ctx: TurnContext) -> ContextLoad:
        start = time.perf_counter()
        history_task = asyncio.ensure_future(self._conversations.get_messages(ctx.conversation_id))
        messages, user, memories = await asyncio.gather(
            history_task,
            SupabaseClient.get_user(ctx.user_id),
            self._recall(ctx, history_task),
        )
        history = tuple(
            m.to_llm_message() for m in messages if m.role in ("user", "assistant") and m.content
        )
        logger.info(
            "Turn context loaded",
            extra={
                "conversation_id": ctx.conversation_id,
                "messages": len(history),
                "memories": len(memories),
                "duration_ms": round((time.perf_counter() - start) * 1000),
            },
        )
        return ContextLoad(history=history, user=user, memories=memories)

    async def _run_enrichments(self, ctx: TurnContext, mux: StreamMultiplexer) -> EnrichmentOutcome:
        """Run the gated enrichments one after another."""
        threshold = settings.INTENT_CONFIDENCE_THRESHOLD
        decision = ctx.decision
        results: dict[str, EnrichmentResult] = {}

        async def progress(message: str) -> None:
            await mux.activity(ActivityType.ANALYZING, message)

        if decision.wants_instagram(threshold):
            if settings.instagram_configured:
                results["instagram"] = await self._instagram.analyze(
                    decision.instagram_analysis.username,
                    ctx.user_id,
                    decision.instagram_analysis.is_own_profile,
                    progress,
                )
            else:
                logger.warning("Instagram analysis requested but not configured")

        if decision.wants_hashtag(threshold):
            if settings.instagram_configured:
                results["hashtag"] = await self._hashtag.search(
                    decision.hashtag_search.hashtag, ctx.user_id, progress
                )
            else:
                logger.warning("Hashtag search requested but not configured")

        if decision.wants_blog(threshold):
            if settings.search_configured:
                results["blog"] = await self._blog.analyze(
                    decision.blog_analysis.urls, ctx.user_id, progress
                )
            else:
                logger.warning("Blog analysis requested but web search is not configured")

        for name, result in results.items():
            if not result.success:
                logger.info("Enrichment failed", extra={"enrichment": name, "error": result.error})
                await mux.clear_activity()
        return EnrichmentOutcome(enrichments=results)

    async def _generate(self, ctx: TurnContext, mux: StreamMultiplexer) -> TurnContext:
        ctx = ctx.apply(await self._load_context(ctx))
        ctx = ctx.apply(IntentOutcome(await self._intent.classify(ctx.history, ctx.user, ctx.memories)))

        if ctx.memories:
            await mux.activity(
                ActivityType.RECALLING, f"Recalling {len(ctx.memories)} relevant memories..."
            )
        if ctx.decision.wants_web_search(settings.INTENT_CONFIDENCE_THRESHOLD):
            await mux.activity(ActivityType.SEARCHING, "Searching the web for current information...")

        ctx = ctx.apply(await self._run_enrichments(ctx, mux))

        plan = await self._generator.prepare(ctx)
        ctx = ctx.apply(GenerationOutcome(plan=plan, reply=""))
        if plan.search_attempted:
            await mux.search_metadata(plan.search_performed, plan.citations, plan.search_query)

        await mux.activity(ActivityType.GENERATING, "Writing response...")
        first_token = True
        async with aclosing(self._generator.stream(plan, ctx.history)) as tokens:
            async for token in tokens:
                if mux.disconnected:
                    logger.info(
                        "Client disconnected, stopping generation",
                        extra={"conversation_id": ctx.conversation_id},
                    )
                    break
                if first_token:
                    await mux.clear_activity()
                    first_token = False
                await mux.write_text(token)
        return ctx.apply(GenerationOutcome(plan=plan, reply=mux.transcript))

    async def _persist_reply(self, ctx: TurnContext, mux: StreamMultiplexer) -> PersistOutcome:
        content = mux.transcript
        if not content.strip():
            logger.warning("Empty reply, nothing to persist", extra={"conversation_id": ctx.conversation_id})
            return PersistOutcome(assistant_message_id=None)

        plan = ctx.plan
        metadata: dict[str, Any] = {
            "search_performed": bool(plan and plan.search_performed),
            "citations": list(plan.citations) if plan else [],
            "search_query": plan.search_query if plan else "",
            "streaming": False,
        }
        if mux.disconnected:
            metadata["truncated"] = True
        try:
            message = await self._conversations.create_message(
                ctx.conversation_id, "assistant", content, metadata
            )
        except Exception:
            logger.exception(
                "Failed to save assistant message",
                extra={"conversation_id": ctx.conversation_id},
            )
            return PersistOutcome(assistant_message_id=None)

        await mux.message_id(message.id)
        return PersistOutcome(assistant_message_id=message.id)

    async def _update_usage(self, ctx: TurnContext) -> None:
        try:
            await SupabaseClient.increment_message_usage(ctx.user_id)
        except Exception as e:
            logger.error(
                "Failed to increment message usage",
                extra={"user_id": ctx.user_id, "error": str(e)},
            )

    def _should_extract_profile(self, ctx: TurnContext) -> bool:
        fresh_enrichment = any(result.fresh for result in ctx.enrichments.values())
        requested = ctx.decision.wants_profile_update(settings.PROFILE_UPDATE_CONFIDENCE_THRESHOLD)
        return fresh_enrichment or requested or is_explicit_profile_request(ctx.content)

    async def _update_profile(self, ctx: TurnContext, mux: StreamMultiplexer) -> None:
        updates: list[dict[str, Any]] = []
        phase_patch = ctx.decision.workflow_phase.profile_patch
        if phase_patch:
            try:
                updates.append(ProfileUpdate.model_validate(phase_patch).to_patch())
            except PydanticValidationError:
                logger.info("Ignoring malformed workflow profile patch", extra={"user_id": ctx.user_id})

        if self._should_extract_profile(ctx):
            await mux.activity(ActivityType.PROFILE_EXTRACTING, "Updating your profile...")
            extracted = await self._profile_extractor.extract(ctx.content, ctx.reply, ctx.user)
            if extracted is not None:
                updates.append(extracted.to_patch())

        update = _merge_updates(*updates)
        if not update:
            return
        try:
            result = await self._merge.apply(ctx.user_id, update)
        except Exception as e:
            logger.error(
                "Profile update failed",
                extra={"user_id": ctx.user_id, "error": str(e)},
            )
            return
        # A capped field is reported even when nothing else changed
        if result.changed or result.capped_fields:
            await mux.profile_updated(result.changed_fields, result.completeness, result.capped_fields)

    async def _extract_memories(self, ctx: TurnContext, mux: StreamMultiplexer) -> None:
        try:
            await mux.activity(ActivityType.EXTRACTING_MEMORIES, "Extracting key insights...")
            candidates = await self._memory_extractor.extract(ctx.content, ctx.reply, ctx.memories)
            if not candidates:
                return
            await mux.activity(ActivityType.SAVING_MEMORIES, f"Saving {len(candidates)} insights...")
            await self._memory_extractor.persist(
                ctx.user_id,
                ctx.conversation_id,
                candidates,
                workflow_phase=ctx.decision.workflow_phase.current_phase,
            )
        except Exception as e:
            logger.warning(
                "Memory extraction failed",
                extra={"user_id": ctx.user_id, "error": str(e)},
            )

    async def _retitle(self, conversation_id: str, messages: list[dict[str, Any]]) -> None:
        try:
            title = await generate_conversation_title(messages)
            if title != DEFAULT_TITLE:
                await self._conversations.update_conversation_title(conversation_id, title)
                logger.info(
                    "Conversation titled",
                    extra={"conversation_id": conversation_id, "title": title},
                )
        except Exception as e:
            logger.warning(
                "Conversation titling failed",
                extra={"conversation_id": conversation_id, "error": str(e)},
            )

    def _schedule_title(self, ctx: TurnContext) -> asyncio.Task[Any] | None:
        messages = [*ctx.history, {"role": "assistant", "content": ctx.reply}]
        if ctx.conversation_title != DEFAULT_TITLE or len(messages) > TITLE_MAX_MESSAGES:
            return None
        return run_in_background(
            self._retitle(ctx.conversation_id, messages), name=f"title-{ctx.conversation_id}"
        )

    async def run(self, ctx: TurnContext, mux: StreamMultiplexer) -> TurnContext:
        """Stream the reply for a prepared turn and run post-processing.

        Never raises; failures after streaming starts are reported inline.

        Returns:
            The final context.
        """
        start = time.perf_counter()
        try:
            try:
                ctx = await self._generate(ctx, mux)
            except Exception:
                logger.exception(
                    "Turn failed while generating",
                    extra={"user_id": ctx.user_id, "conversation_id": ctx.conversation_id},
                )
                await mux.clear_activity()
                await mux.write_text(STREAM_ERROR_NOTICE)
                ctx = ctx.apply(await self._persist_reply(ctx, mux))
                return ctx

            ctx = ctx.apply(await self._persist_reply(ctx, mux))
            if ctx.assistant_message_id is None:
                return ctx

            await self._update_usage(ctx)
            await self._update_profile(ctx, mux)
            await self._extract_memories(ctx, mux)
            self._schedule_title(ctx)
            await mux.clear_activity()
        finally:
            await mux.close()
            logger.info(
                "Turn completed",
                extra={
                    "user_id": ctx.user_id,
                    "conversation_id": ctx.conversation_id,
                    "reply_chars": len(mux.transcript),
                    "disconnected": mux.disconnected,
                    "duration_ms": round((time.perf_counter() - start) * 1000),
                },
            )
        return ctx
