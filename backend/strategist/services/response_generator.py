"""Streamed reply generation and conversation titling."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from strategist.core.config import settings
from strategist.core.llm import LLMClient
from strategist.services.prompt_builder import build_system_prompt
from strategist.services.search import SearchResult, WebSearchService

if TYPE_CHECKING:
    from strategist.services.turn import TurnContext

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
MAX_TITLE_LENGTH = 50
REPLY_MAX_TOKENS = 1000

TITLE_PROMPT = (
    "Generate a concise, descriptive title for this conversation. Keep it under 50 "
    "characters and focus on the main topic or question discussed."
)


@dataclass(frozen=True)
class GenerationPlan:
    """Everything needed to stream the reply."""

    system_prompt: str
    search_attempted: bool = False
    search_performed: bool = False
    citations: list[str] = field(default_factory=list)
    search_query: str = ""


def _last_user_message(history: Sequence[dict[str, Any]]) -> str:
    for message in reversed(history):
        if message.get("role") == "user" and str(message.get("content") or "").strip():
            return str(message["content"]).strip()
    return ""


class ResponseGenerator:
    """Builds the turn's prompt and streams the reply."""

    def __init__(
        self,
        llm: LLMClient | None = None,
        search: WebSearchService | None = None,
    ) -> None:
        self._llm = llm or LLMClient()
        self._search = search or WebSearchService()

    async def _run_search(self, ctx: TurnContext) -> tuple[bool, SearchResult | None, str]:
        decision = ctx.decision.web_search
        if not ctx.decision.wants_web_search(settings.INTENT_CONFIDENCE_THRESHOLD):
            if decision.should_search:
                logger.info(
                    "Search recommended but confidence too low",
                    extra={"confidence": decision.confidence},
                )
            return False, None, ""
        if not self._search.is_configured:
            logger.warning("Search requested but no search provider is configured")
            return False, None, ""

        query = decision.refined_query or _last_user_message(ctx.history)
        if not query:
            logger.info("No query available for web search, skipping")
            return False, None, ""

        start = time.perf_counter()
        try:
            result = await self._search.search(
                query,
                recency=decision.recency,
                domains=decision.domains,
                service=decision.search_service,
                social_handles=decision.social_handles,
            )
        except Exception as e:
            logger.warning(
                "Web search failed, continuing without search context",
                extra={"query": query, "error": str(e)},
            )
            return True, None, query

        logger.info(
            "Web search completed",
            extra={
                "query": query,
                "sources": len(result.citations),
                "duration_ms": round((time.perf_counter() - start) * 1000),
            },
        )
        return True, result, query

    async def prepare(self, ctx: TurnContext) -> GenerationPlan:
        """Run the gated web search and build the system prompt."""
        attempted, result, query = await self._run_search(ctx)
        system_prompt = build_system_prompt(
            ctx.decision.workflow_phase,
            profile=ctx.user,
            memories=ctx.memories,
            search_context=result,
            enrichments=ctx.enrichments,
        )
        logger.debug("System prompt built", extra={"prompt_length": len(system_prompt)})
        return GenerationPlan(
            system_prompt=system_prompt,
            search_attempted=attempted,
            search_performed=result is not None,
            citations=list(result.citations) if result else [],
            search_query=query,
        )

    async def stream(
        self, plan: GenerationPlan, history: Sequence[dict[str, Any]]
    ) -> AsyncIterator[str]:
        """Yield reply tokens as the provider produces them."""
        async for token in self._llm.stream_response(
            list(history),
            system_prompt=plan.system_prompt,
            max_tokens=REPLY_MAX_TOKENS,
            temperature=0.7,
        ):
            yield token


async def generate_conversation_title(
    messages: Sequence[dict[str, Any]], llm: LLMClient | None = None
) -> str:
    """Short title summarizing the opening of a conversation.

    Never raises; returns "New Conversation" when no title can be produced.
    """
    llm = llm or LLMClient(model=settings.TITLE_MODEL)
    transcript = "\n".join(f"{m.get('role')}: {m.get('content')}" for m in list(messages)[:4])
    try:
        title = await llm.generate_response(
            [{"role": "user", "content": f"Conversation:\n{transcript}\n\nGenerate a title:"}],
            system_prompt=TITLE_PROMPT,
            max_tokens=20,
            temperature=0.5,
        )
    except Exception as e:
        logger.warning("Title generation failed", extra={"error": str(e)})
        return DEFAULT_TITLE

    title = title.strip().strip('"').strip()
    if not title:
        return DEFAULT_TITLE
    if len(title) >= MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 4].rstrip() + "..."
    return title
