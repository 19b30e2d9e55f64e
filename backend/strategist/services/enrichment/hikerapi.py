"""HikerAPI client for Instagram profile, media and hashtag data."""

import asyncio
import logging
from collections import Counter
from collections.abc import Iterable
from typing import Any

import httpx

from strategist.core.circuit_breaker import instagram_circuit_breaker
from strategist.core.config import settings
from strategist.core.exceptions import EnrichmentError, ProviderTimeoutError
from strategist.models.enrichment import (
    HashtagPost,
    HashtagSearchResult,
    InstagramAccount,
    InstagramProfile,
)

logger = logging.getLogger(__name__)

POST_TEXT_LIMIT = 200
TOP_HASHTAG_COUNT = 5
SIMILAR_ACCOUNT_COUNT = 3
MAX_HASHTAG_POSTS = 50

_SERVICE = "Instagram"


class HikerApiClient:
    """Thin async wrapper over the HikerAPI REST endpoints.

    Args:
        api_key: Access key; defaults to ``HIKER_API_KEY``.
        base_url: API root; defaults to ``HIKER_API_URL``.
        page_delay: Pause between paginated media requests, in seconds.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        page_delay: float = 1.0,
    ) -> None:
        self._api_key = api_key or settings.HIKER_API_KEY.get_secret_value()
        self._base_url = (base_url or settings.HIKER_API_URL).rstrip("/")
        self._timeout = timeout_seconds
        self._page_delay = page_delay

    def _get_headers(self) -> dict[str, str]:
        return {"x-access-key": self._api_key, "accept": "application/json"}

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        if not self._api_key:
            raise EnrichmentError(_SERVICE, "Instagram analysis is not configured")

        instagram_circuit_breaker.check()
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=self._get_headers(),
            ) as client:
                response = await client.get(endpoint, params=clean_params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            # Private or missing accounts are not provider failures
            if status not in (403, 404):
                instagram_circuit_breaker.record_failure()
            logger.warning(
                "HikerAPI request failed",
                extra={"endpoint": endpoint, "status_code": status},
            )
            raise EnrichmentError(_SERVICE, f"HikerAPI error {status}") from e
        except httpx.TimeoutException as e:
            instagram_circuit_breaker.record_failure()
            raise ProviderTimeoutError(_SERVICE, self._timeout) from e
        except httpx.HTTPError as e:
            instagram_circuit_breaker.record_failure()
            raise EnrichmentError(_SERVICE, "Instagram API service temporarily unavailable") from e

        instagram_circuit_breaker.record_success()
        return data

    async def get_user_by_username(self, username: str) -> dict[str, Any]:
        """Fetch public profile fields for a username.

        Raises:
            EnrichmentError: If the user does not exist or is private.
        """
        data = await self._request("/v2/user/by/username", {"username": username})
        user = data.get("user") if isinstance(data, dict) else None
        if not user:
            raise EnrichmentError(_SERVICE, "Instagram user not found or account is private")
        return user

    async def get_user_medias_chunk(
        self, user_pk: str, end_cursor: str | None = None
    ) -> tuple[list[dict[str, Any]], str | None]:
        data = await self._request(
            "/v1/user/medias/chunk", {"user_id": user_pk, "end_cursor": end_cursor}
        )
        medias: list[dict[str, Any]] = []
        next_cursor: str | None = None
        if isinstance(data, list) and data:
            if isinstance(data[0], list):
                medias = [item for item in data[0] if isinstance(item, dict) and "pk" in item]
            if len(data) > 1 and isinstance(data[1], str) and data[1]:
                next_cursor = data[1]
        return medias, next_cursor

    async def get_user_medias(
        self, user_pk: str, max_amount: int = 20, max_retries: int = 3
    ) -> list[dict[str, Any]]:
        """Page through a user's posts, stopping early on private accounts."""
        medias: list[dict[str, Any]] = []
        cursor: str | None = None
        errors = 0
        while len(medias) < max_amount and errors < max_retries:
            try:
                chunk, cursor = await self.get_user_medias_chunk(user_pk, cursor)
            except EnrichmentError as e:
                errors += 1
                if "403" in e.message or "404" in e.message:
                    logger.info("Media access restricted", extra={"user_pk": user_pk})
                    break
                logger.warning(
                    "Media chunk fetch failed",
                    extra={"user_pk": user_pk, "attempt": errors},
                )
                if errors < max_retries:
                    await asyncio.sleep(errors * 2 * self._page_delay)
                continue

            errors = 0
            if not chunk:
                break
            medias.extend(chunk[: max_amount - len(medias)])
            if not cursor:
                break
            await asyncio.sleep(self._page_delay)
        return medias

    async def get_related_profiles(self, user_pk: str) -> list[dict[str, Any]]:
        """Related accounts suggested by Instagram; empty on any failure."""
        try:
            data = await self._request("/gql/user/related/profiles", {"id": user_pk})
        except Exception as e:
            logger.warning("Related profiles fetch failed", extra={"error": str(e)})
            return []
        return data[:5] if isinstance(data, list) else []

    async def search_hashtag(self, hashtag: str, amount: int = 12) -> HashtagSearchResult:
        """Top posts for a hashtag."""
        clean = hashtag.replace("#", "").strip()
        data = await self._request(
            "/v1/hashtag/medias/top", {"name": clean, "amount": min(amount, MAX_HASHTAG_POSTS)}
        )
        posts = [_hashtag_post(item) for item in data if isinstance(item, dict)] if isinstance(data, list) else []
        return HashtagSearchResult(hashtag=clean, total_posts=len(posts), posts=posts)

    async def analyze_account(self, username: str, max_posts: int = 5) -> InstagramAccount:
        user = await self.get_user_by_username(username)
        posts = await self.get_user_medias(str(user["pk"]), max_posts, max_retries=2)
        return InstagramAccount(**_account_fields(user, posts))

    async def analyze_profile(self, username: str) -> InstagramProfile:
        """Fetch a profile and its recent posts and compute engagement metrics.

        Similar accounts are analyzed best-effort; one failing is skipped.

        Raises:
            EnrichmentError: If the profile itself cannot be fetched.
        """
        user = await self.get_user_by_username(username)
        user_pk = str(user["pk"])
        posts = await self.get_user_medias(user_pk, 20)

        similar: list[InstagramAccount] = []
        for related in (await self.get_related_profiles(user_pk))[:SIMILAR_ACCOUNT_COUNT]:
            related_name = related.get("username") if isinstance(related, dict) else None
            if not related_name:
                continue
            try:
                similar.append(await self.analyze_account(related_name))
            except Exception as e:
                logger.info(
                    "Skipping similar account",
                    extra={"username": related_name, "error": str(e)},
                )

        return InstagramProfile(
            **_account_fields(user, posts),
            biography=user.get("biography") or "",
            following=int(user.get("following_count") or 0),
            posts=int(user.get("media_count") or 0),
            similar_accounts=similar,
            profile_pic_url=user.get("profile_pic_url") or "",
            is_verified=bool(user.get("is_verified")),
        )


def _truncate(text: str, limit: int = POST_TEXT_LIMIT) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _caption_hashtags(caption: str) -> list[str]:
    return [word[1:] for word in caption.split(" ") if word.startswith("#") and len(word) > 1]


def _account_fields(user: dict[str, Any], posts: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Engagement metrics shared by profile and similar-account analysis."""
    hashtags: list[str] = []
    texts: list[str] = []
    likes: list[int] = []
    comments: list[int] = []
    for post in posts:
        caption = post.get("caption_text") or ""
        if caption:
            clean = caption.split("#")[0].strip()
            if clean:
                texts.append(_truncate(clean))
            hashtags.extend(_caption_hashtags(caption))
        likes.append(int(post.get("like_count") or 0))
        comments.append(int(post.get("comment_count") or 0))

    avg_likes = sum(likes) / len(likes) if likes else 0.0
    avg_comments = sum(comments) / len(comments) if comments else 0.0
    followers = int(user.get("follower_count") or 0)
    engagement_rate = (avg_likes + avg_comments) / followers * 100 if followers > 0 else 0.0

    return {
        "username": user.get("username") or "",
        "full_name": user.get("full_name") or "",
        "category": user.get("category") or "",
        "followers": followers,
        "engagement_rate": engagement_rate,
        "avg_likes": avg_likes,
        "avg_comments": avg_comments,
        "top_hashtags": [tag for tag, _ in Counter(hashtags).most_common(TOP_HASHTAG_COUNT)],
        "post_texts": texts,
    }


def _hashtag_post(item: dict[str, Any]) -> HashtagPost:
    user = item.get("user") if isinstance(item.get("user"), dict) else {}
    return HashtagPost(
        id=str(item.get("id") or item.get("pk") or item.get("code") or ""),
        code=str(item.get("code") or ""),
        caption=item.get("caption_text") or item.get("caption") or "",
        like_count=int(item.get("like_count") or 0),
        comment_count=int(item.get("comment_count") or 0),
        media_type=int(item.get("media_type") or 1),
        taken_at=item.get("taken_at"),
        thumbnail_url=item.get("thumbnail_url") or item.get("display_url") or "",
        username=user.get("username") or item.get("username") or "unknown",
        user_id=str(user.get("pk") or item.get("user_id") or ""),
    )
