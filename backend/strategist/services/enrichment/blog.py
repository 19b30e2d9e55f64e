"""Blog enrichment: reads a user's blog through web search and profiles its style."""

import asyncio
import logging
import time
from typing import Any
from urllib.parse import urlparse

from strategist.core.config import settings
from strategist.core.embeddings import EmbeddingClient
from strategist.core.exceptions import EnrichmentError
from strategist.core.llm import LLMClient
from strategist.db.supabase import SupabaseClient
from strategist.memory.profile_merge import ProfileMergeEngine
from strategist.memory.store import MemoryStore
from strategist.models.enrichment import BlogProfile
from strategist.services.enrichment.base import (
    AnalysisMemoryWriter,
    EnrichmentResult,
    ProgressCallback,
    failure_message,
    is_fresh,
    no_progress,
)
from strategist.services.search import WebSearchService

logger = logging.getLogger(__name__)

MAX_URLS = 5
MIN_CONTENT_LENGTH = 100
MAX_ANALYSIS_INPUT = 8000
NO_CONTENT_ERROR = "Could not extract content from the provided blog URLs"

_EXTRACTION_PROMPT = (
    "Extract and provide the full text content of blog posts, including headlines, "
    "main content, and any key information about writing style and topics."
)

BLOG_ANALYSIS_PROMPT = """Analyze the provided blog content and extract detailed insights about the writing style, tone, and content patterns.

Return a JSON object with these fields:
- writingStyle: Overall writing approach (conversational, formal, academic, personal, storytelling, instructional, etc.)
- averagePostLength: Post length category (short: <500 words, medium: 500-1500 words, long: >1500 words)
- commonTopics: Array of frequently discussed topics/themes
- toneKeywords: Array of emotional/descriptive words that characterize the tone
- contentThemes: Array of broader content categories
- brandVoice: Description of the unique voice/personality
- targetAudience: Inferred target audience based on language and topics
- postingPattern: Any patterns in content structure or approach

Be thorough and specific in your analysis."""


def blog_host(url: str) -> str | None:
    """Hostname of a URL; a missing scheme is treated as https."""
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return urlparse(url).hostname


def blog_memory_texts(profile: BlogProfile) -> list[str]:
    return [
        f"Blog writing style: {profile.writing_style}, average post length: {profile.average_post_length}",
        f"Blog content themes: {', '.join(profile.content_themes)}",
        f"Blog tone characteristics: {', '.join(profile.tone_keywords)}",
        f"Blog target audience: {profile.target_audience or 'not specified'}",
    ]


class BlogAnalyzer:
    """Profiles the writing style of a user's blog posts."""

    def __init__(
        self,
        search: WebSearchService | None = None,
        llm: LLMClient | None = None,
        store: MemoryStore | None = None,
        embeddings: EmbeddingClient | None = None,
        merge_engine: ProfileMergeEngine | None = None,
        fetch_delay: float = 1.0,
    ) -> None:
        self._search = search or WebSearchService()
        self._llm = llm or LLMClient(model=settings.DECISION_MODEL)
        self._store = store
        self._embeddings = embeddings or EmbeddingClient()
        self._merge = merge_engine or ProfileMergeEngine()
        self._fetch_delay = fetch_delay

    async def _fetch_contents(self, urls: list[str], progress: ProgressCallback) -> list[str]:
        contents: list[str] = []
        for index, url in enumerate(urls[:MAX_URLS]):
            host = blog_host(url)
            if not host:
                continue
            await progress(f"📖 Reading {host}...")
            try:
                result = await self._search.search_for_chat_context(
                    f"site:{host} blog content text", _EXTRACTION_PROMPT, "month"
                )
            except Exception as e:
                logger.warning("Blog content fetch failed", extra={"url": url, "error": str(e)})
                continue
            if len(result.context) > MIN_CONTENT_LENGTH:
                contents.append(result.context)
            if index < len(urls[:MAX_URLS]) - 1:
                await asyncio.sleep(self._fetch_delay)
        return contents

    async def analyze(
        self,
        urls: list[str],
        user_id: str,
        progress: ProgressCallback | None = None,
    ) -> EnrichmentResult:
        """Analyze the blog at ``urls``.

        A stored analysis younger than 7 days is reused when any requested
        URL was part of it.
        """
        progress = progress or no_progress
        start = time.perf_counter()
        try:
            user = await SupabaseClient.get_user(user_id)
            stored = (user.get("profile_data") or {}).get("blog_profile")
            if is_fresh(stored, settings.BLOG_CACHE_HOURS):
                analyzed = set(stored.get("analyzed_urls") or [])
                if analyzed.intersection(urls):
                    logger.info("Using cached blog analysis", extra={"user_id": user_id})
                    return EnrichmentResult.ok(stored, cached=True)

            await progress(f"📝 Reading {min(len(urls), MAX_URLS)} blog page(s)...")
            contents = await self._fetch_contents(urls, progress)
            if not contents:
                raise EnrichmentError("Blog", NO_CONTENT_ERROR)

            await progress("🧠 Analyzing writing style...")
            combined = "\n\n---\n\n".join(contents)[:MAX_ANALYSIS_INPUT]
            raw: Any = await self._llm.generate_json(
                messages=[{"role": "user", "content": f"Please analyze this blog content:\n\n{combined}"}],
                system_prompt=BLOG_ANALYSIS_PROMPT,
                max_tokens=800,
                temperature=0.1,
            )
            if not isinstance(raw, dict):
                raise EnrichmentError("Blog", "Error processing blog content analysis")
            profile = BlogProfile.model_validate({**raw, "analyzed_urls": urls})
            analysis = profile.model_dump()

            await self._merge.apply(user_id, {"profile_data": {"blog_profile": analysis}})

            store = self._store or MemoryStore(SupabaseClient.get_client())
            await AnalysisMemoryWriter(
                store, self._embeddings, settings.MEMORY_UPSERT_SIMILARITY
            ).write(
                user_id,
                blog_memory_texts(profile),
                urls=urls,
                analysis_date=profile.cached_at,
                provenance="blog_analysis",
            )
        except Exception as e:
            logger.warning(
                "Blog analysis failed",
                extra={"user_id": user_id, "urls": urls, "error": str(e)},
            )
            return EnrichmentResult.failed(failure_message(e, "Failed to analyze blog content"))

        logger.info(
            "Blog analysis completed",
            extra={
                "user_id": user_id,
                "pages": len(contents),
                "duration_ms": round((time.perf_counter() - start) * 1000),
            },
        )
        return EnrichmentResult.ok(analysis, cached=False)


def format_blog_analysis_for_chat(analysis: dict[str, Any] | None, cached: bool = False) -> str:
    """Render a blog analysis as a context block."""
    if not analysis:
        return "Unable to retrieve blog analysis."

    profile = BlogProfile.model_validate(analysis)
    cache_note = " (from recent analysis)" if cached else ""
    audience = (
        f"• Target audience: {profile.target_audience}"
        if profile.target_audience
        else "• Target audience: Not clearly defined"
    )
    lines = [
        f"📝 **Blog Content Analysis**{cache_note}",
        "",
        "✍️ **Writing Style & Tone:**",
        f"• Writing style: {profile.writing_style}",
        f"• Brand voice: {profile.brand_voice}",
        f"• Average post length: {profile.average_post_length}",
        "",
        "🎯 **Content Insights:**",
        f"• Main themes: {' • '.join(profile.content_themes)}",
        f"• Common topics: {' • '.join(profile.common_topics[:5])}",
        f"• Tone keywords: {' • '.join(profile.tone_keywords[:5])}",
        "",
        "👥 **Audience & Approach:**",
        audience,
    ]
    if profile.posting_pattern:
        lines.append(f"• Content pattern: {profile.posting_pattern}")
    lines.extend(
        [
            "",
            "📊 **Analysis Summary:**",
            f"Analyzed {len(profile.analyzed_urls)} blog post(s) to understand your unique "
            "writing style and content approach.",
        ]
    )
    return "\n".join(lines)
