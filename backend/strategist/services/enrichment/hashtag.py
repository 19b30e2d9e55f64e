"""Hashtag search enrichment: top posts for a hashtag as content inspiration."""

import logging
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
    hours_since,
    is_fresh,
    no_progress,
)
from strategist.services.enrichment.hikerapi import HikerApiClient

logger = logging.getLogger(__name__)

POSTS_PER_SEARCH = 12


def evict_oldest_searches(searches: dict[str, Any], incoming: str, limit: int) -> list[str]:
    """Tags to drop so that adding ``incoming`` keeps at most ``limit`` searches.

    The oldest searches by ``cached_at`` go first; unparseable timestamps
    count as oldest.
    """
    if incoming in searches or len(searches) < limit:
        return []

    def age(item: tuple[str, Any]) -> float:
        snapshot = item[1] if isinstance(item[1], dict) else {}
        hours = hours_since(snapshot.get("cached_at"))
        return float("inf") if hours is None else hours

    ordered = sorted(searches.items(), key=age, reverse=True)
    overflow = len(searches) - limit + 1
    return [tag for tag, _ in ordered[:overflow]]


def hashtag_memory_texts(hashtag: str, result: dict[str, Any]) -> list[str]:
    top_posts = (result.get("posts") or [])[:5]
    posters = ", ".join(post.get("username", "unknown") for post in top_posts)
    examples = ", ".join(
        f"{post.get('username', 'unknown')} ({post.get('like_count', 0)} likes)" for post in top_posts
    )
    return [
        f"Instagram hashtag search for #{hashtag}: Found {result.get('total_posts', 0)} "
        "trending posts with high engagement",
        f"Top content themes for #{hashtag}: {posters} are creating popular content",
        f"Popular post examples for #{hashtag}: {examples}"
        if top_posts
        else f"Hashtag #{hashtag} content analyzed",
    ]


class HashtagSearchAnalyzer:
    """Searches a hashtag and keeps the latest searches on the user's profile."""

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

    async def search(
        self,
        hashtag: str,
        user_id: str,
        progress: ProgressCallback | None = None,
    ) -> EnrichmentResult:
        """Fetch top posts for ``hashtag``, reusing a search younger than 6h."""
        progress = progress or no_progress
        hashtag = hashtag.lstrip("#").strip()
        start = time.perf_counter()
        try:
            await progress(f"🔍 Searching #{hashtag} for content ideas...")
            user = await SupabaseClient.get_user(user_id)
            profile_data = user.get("profile_data") or {}
            searches = profile_data.get("hashtag_searches")
            searches = searches if isinstance(searches, dict) else {}

            if is_fresh(searches.get(hashtag), settings.HASHTAG_CACHE_HOURS):
                logger.info("Using cached hashtag search", extra={"hashtag": hashtag})
                return EnrichmentResult.ok(searches[hashtag], cached=True)

            await progress(f"📊 Fetching trending posts for #{hashtag}...")
            result = (await self._client.search_hashtag(hashtag, POSTS_PER_SEARCH)).model_dump()

            update: dict[str, Any] = {hashtag: result}
            for tag in evict_oldest_searches(searches, hashtag, settings.HASHTAG_SEARCH_LIMIT):
                update[tag] = None
                logger.info("Evicting oldest hashtag search", extra={"hashtag": tag})
            await self._merge.apply(user_id, {"profile_data": {"hashtag_searches": update}})

            store = self._store or MemoryStore(SupabaseClient.get_client())
            await AnalysisMemoryWriter(
                store, self._embeddings, settings.MEMORY_UPSERT_SIMILARITY
            ).write(
                user_id,
                hashtag_memory_texts(hashtag, result),
                hashtag=hashtag,
                search_date=result["cached_at"],
                provenance="hashtag_search",
            )
        except Exception as e:
            logger.warning(
                "Hashtag search failed",
                extra={"hashtag": hashtag, "user_id": user_id, "error": str(e)},
            )
            return EnrichmentResult.failed(failure_message(e, "Failed to search Instagram hashtag"))

        logger.info(
            "Hashtag search completed",
            extra={
                "hashtag": hashtag,
                "posts": result["total_posts"],
                "duration_ms": round((time.perf_counter() - start) * 1000),
            },
        )
        return EnrichmentResult.ok(result, cached=False)


def _media_label(media_type: Any) -> str:
    if media_type == 1:
        return "photos"
    if media_type == 2:
        return "videos"
    return "carousels"


def format_hashtag_search_for_chat(result: dict[str, Any] | None, cached: bool = False) -> str:
    """Render a hashtag search as a context block."""
    posts = (result or {}).get("posts") or []
    if not posts:
        return "Unable to retrieve hashtag content or no posts found for this hashtag."

    hashtag = result.get("hashtag", "")
    cache_note = " (from recent search)" if cached else ""
    top = posts[:8]

    entries = []
    for index, post in enumerate(top, start=1):
        likes = int(post.get("like_count") or 0)
        comments = int(post.get("comment_count") or 0)
        caption = post.get("caption") or ""
        caption = (caption[:80] + "...") if len(caption) > 80 else (caption or "No caption")
        entries.append(
            f"**{index}.** @{post.get('username')} ({likes + comments:,} total engagement)\n"
            f'   "{caption}"\n'
            f"   👍 {likes:,} likes • 💬 {comments:,} comments"
        )

    leaders = ", ".join(f"@{post.get('username')}" for post in top[:3])
    variety = " and ".join(dict.fromkeys(_media_label(post.get("media_type")) for post in top))
    creators = ", ".join(list(dict.fromkeys(post.get("username") for post in top))[:4])

    return "\n".join(
        [
            f"🏷️ **Hashtag Content Ideas: #{hashtag}**{cache_note}",
            "",
            "🔥 **Top Performing Posts:**",
            "\n\n".join(entries),
            "",
            "💡 **Content Inspiration Ideas:**",
            f"• **Engagement leaders:** {leaders} are getting high engagement",
            f"• **Content variety:** Mix of {variety}",
            f"• **Posting patterns:** Active creators include {creators}",
            "",
            "🎯 **Your Content Strategy:**",
            f"Consider creating content that resonates with the #{hashtag} community "
            "by studying these high-performing examples!",
        ]
    )
