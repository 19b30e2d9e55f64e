"""Instagram profile enrichment: the user's own account or a competitor's."""

import logging
import re
import time
from typing import Any

from strategist.core.config import settings
from strategist.core.embeddings import EmbeddingClient
from strategist.db.supabase import SupabaseClient
from strategist.memory.profile_merge import ProfileMergeEngine
from strategist.memory.store import MemoryStore
from strategist.services.enrichment.base import (
    AnalysisMemoryWriter,
    EnrichmentResult,
    ProgressCallback,
    failure_message,
    is_fresh,
    no_progress,
)
from strategist.services.enrichment.hikerapi import HikerApiClient

logger = logging.getLogger(__name__)

_SAMPLE_NOISE = (
    re.compile(r"📞\d+"),
    re.compile(r"📨\S+@\S+"),
    re.compile(r"www\.\S+"),
    re.compile(r"https?://\S+"),
    re.compile(r"⭐+"),
    re.compile("👉"),
)


def is_own_profile(username: str, profile_data: dict[str, Any], explicit: bool | None = None) -> bool:
    """Decide whether ``username`` is the user's own account.

    An explicit answer from the intent decision wins. Otherwise the account
    is the user's own when it matches the recorded own username or the
    stored own profile, or when no own account has been recorded yet.
    """
    if explicit is not None:
        return explicit
    own_username = profile_data.get("own_instagram_username")
    stored = profile_data.get("instagram_profile")
    stored_username = stored.get("username") if isinstance(stored, dict) else None
    if username in (own_username, stored_username):
        return True
    return not stored and not own_username


def _sanitize_sample(text: str) -> str:
    for pattern in _SAMPLE_NOISE:
        text = pattern.sub("", text)
    text = text.split("|")[0].strip()
    return text[:200] + "..." if len(text) > 200 else text


def instagram_memory_texts(username: str, analysis: dict[str, Any]) -> list[str]:
    """Four facts worth remembering from a profile analysis."""
    samples = [
        sample
        for sample in (_sanitize_sample(t) for t in (analysis.get("post_texts") or [])[:3])
        if len(sample) > 20
    ]
    top_hashtags = analysis.get("top_hashtags") or []
    if samples:
        style = f"Content style samples for {username}: {' | '.join(samples)}"
    else:
        style = f"Content style for {username}: {', '.join(top_hashtags[:3])} focused content"
    similar = ", ".join(
        f"{acc.get('username')} ({acc.get('followers', 0)} followers)"
        for acc in analysis.get("similar_accounts") or []
    )
    return [
        f"Instagram profile analysis for {username}: {analysis.get('followers', 0)} followers, "
        f"{float(analysis.get('engagement_rate') or 0):.2f}% engagement rate",
        f"Top hashtags for {username}: {', '.join(top_hashtags)}",
        style,
        f"Similar accounts to {username}: {similar}",
    ]


class InstagramAnalyzer:
    """Analyzes an Instagram profile and records the result on the user."""

    def __init__(
        self,
        client: HikerApiClient | None = None,
        store: MemoryStore | None = None,
        embeddings: EmbeddingClient | None = None,
        merge_engine: ProfileMergeEngine | None = None,
    ) -> None:
        self._client = client or HikerApiClient()
        self._store = store
        self._embeddings = embeddings or EmbeddingClient()
        self._merge = merge_engine or ProfileMergeEngine()

    def _memory_writer(self) -> AnalysisMemoryWriter:
        store = self._store or MemoryStore(SupabaseClient.get_client())
        return AnalysisMemoryWriter(store, self._embeddings, settings.MEMORY_UPSERT_SIMILARITY)

    async def analyze(
        self,
        username: str,
        user_id: str,
        is_own: bool | None = None,
        progress: ProgressCallback | None = None,
    ) -> EnrichmentResult:
        """Analyze ``username`` for ``user_id``.

        Args:
            username: Instagram username, with or without "@".
            user_id: The requesting user.
            is_own: Explicit own-vs-competitor answer, when known.
            progress: Receives human-readable progress updates.

        Returns:
            The analysis (fresh or cached within 24h) or a failure.
        """
        progress = progress or no_progress
        username = username.lstrip("@").strip()
        start = time.perf_counter()
        try:
            await progress(f"🔍 Analyzing @{username} profile...")
            user = await SupabaseClient.get_user(user_id)
            profile_data = user.get("profile_data") or {}

            own = profile_data.get("instagram_profile")
            if isinstance(own, dict) and own.get("username") == username and is_fresh(
                own, settings.INSTAGRAM_CACHE_HOURS
            ):
                logger.info("Using cached own Instagram analysis", extra={"username": username})
                return EnrichmentResult.ok(own, cached=True)

            competitors = profile_data.get("competitor_analyses") or {}
            competitor = competitors.get(username) if isinstance(competitors, dict) else None
            if is_fresh(competitor, settings.INSTAGRAM_CACHE_HOURS):
                logger.info("Using cached competitor analysis", extra={"username": username})
                return EnrichmentResult.ok(competitor, cached=True)

            await progress("📊 Fetching profile data and posts...")
            analysis = (await self._client.analyze_profile(username)).model_dump()

            own_profile = is_own_profile(username, profile_data, is_own)
            if own_profile:
                data_update: dict[str, Any] = {
                    "instagram_profile": analysis,
                    "own_instagram_username": username,
                }
                if isinstance(competitors, dict) and username in competitors:
                    data_update["competitor_analyses"] = {username: None}
                    logger.info("Moved competitor analysis to own profile", extra={"username": username})
            else:
                data_update = {"competitor_analyses": {username: analysis}}
            await self._merge.apply(user_id, {"profile_data": data_update})

            await self._memory_writer().write(
                user_id,
                instagram_memory_texts(username, analysis),
                username=username,
                analysis_date=analysis["cached_at"],
                provenance="instagram_analysis",
            )
        except Exception as e:
            logger.warning(
                "Instagram analysis failed",
                extra={
                    "username": username,
                    "user_id": user_id,
                    "error": str(e),
                    "duration_ms": round((time.perf_counter() - start) * 1000),
                },
            )
            return EnrichmentResult.failed(failure_message(e, "Failed to analyze Instagram profile"))

        logger.info(
            "Instagram analysis completed",
            extra={
                "username": username,
                "own_profile": own_profile,
                "duration_ms": round((time.perf_counter() - start) * 1000),
            },
        )
        partial = not analysis["similar_accounts"] and analysis["followers"] > 0
        return EnrichmentResult.ok(analysis, cached=False, partial_success=partial, own_profile=own_profile)


def format_instagram_analysis_for_chat(analysis: dict[str, Any] | None, cached: bool = False) -> str:
    """Render a profile analysis as a context block."""
    if not analysis:
        return "Unable to retrieve Instagram analysis."

    cache_note = " (from recent analysis)" if cached else ""
    hashtags = " • ".join(f"#{tag}" for tag in (analysis.get("top_hashtags") or [])[:5])
    style = "\n".join(
        f'"{text[:100]}{"..." if len(text) > 100 else ""}"'
        for text in (analysis.get("post_texts") or [])[:2]
    )
    similar = " • ".join(
        f"@{acc.get('username')} ({int(acc.get('followers') or 0):,} followers)"
        for acc in (analysis.get("similar_accounts") or [])[:3]
    )
    lines = [
        f"📸 **Instagram Analysis for @{analysis.get('username')}**{cache_note}",
        "",
        "👥 **Audience & Reach:**",
        f"• {int(analysis.get('followers') or 0):,} followers",
        f"• {int(analysis.get('following') or 0):,} following",
        f"• {int(analysis.get('posts') or 0):,} posts",
        "",
        "📊 **Engagement Insights:**",
        f"• {float(analysis.get('engagement_rate') or 0):.2f}% engagement rate",
        f"• {round(float(analysis.get('avg_likes') or 0)):,} avg likes per post",
        f"• {round(float(analysis.get('avg_comments') or 0)):,} avg comments per post",
        "",
        "🏷️ **Top Hashtags:**",
        hashtags,
        "",
        "🎯 **Content Style:**",
        style,
        "",
        "👥 **Similar Accounts:**",
        similar,
    ]
    if analysis.get("biography"):
        lines.extend(["", f"📝 **Bio:** {analysis['biography']}"])
    return "\n".join(lines)
