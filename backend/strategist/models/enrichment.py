"""Structured results of the enrichment adapters.

These are stored verbatim (``model_dump()``) inside ``profile_data`` so the
keys stay snake_case, and each carries its own ``cached_at`` timestamp.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


class _Snapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")


class InstagramAccount(_Snapshot):
    """Engagement summary of one Instagram account."""

    username: str
    full_name: str = ""
    category: str = ""
    followers: int = 0
    engagement_rate: float = 0.0
    avg_likes: float = 0.0
    avg_comments: float = 0.0
    top_hashtags: list[str] = Field(default_factory=list)
    post_texts: list[str] = Field(default_factory=list)


class InstagramProfile(InstagramAccount):
    """Full analysis of an Instagram profile, including similar accounts."""

    biography: str = ""
    following: int = 0
    posts: int = 0
    similar_accounts: list[InstagramAccount] = Field(default_factory=list)
    profile_pic_url: str = ""
    is_verified: bool = False
    cached_at: str = Field(default_factory=utc_now_iso)


class HashtagPost(_Snapshot):
    id: str = ""
    code: str = ""
    caption: str = ""
    like_count: int = 0
    comment_count: int = 0
    media_type: int = 1
    taken_at: Any = None
    thumbnail_url: str = ""
    username: str = "unknown"
    user_id: str = ""

    @property
    def engagement(self) -> int:
        return self.like_count + self.comment_count


class HashtagSearchResult(_Snapshot):
    """Top posts found for one hashtag."""

    hashtag: str
    total_posts: int = 0
    posts: list[HashtagPost] = Field(default_factory=list)
    cached_at: str = Field(default_factory=utc_now_iso)


class BlogProfile(_Snapshot):
    """Writing-style analysis of a user's blog.

    Accepts the camelCase keys the analysis model tends to return.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    analyzed_urls: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("analyzed_urls", "analyzedUrls")
    )
    writing_style: str = Field(
        "conversational", validation_alias=AliasChoices("writing_style", "writingStyle")
    )
    average_post_length: str = Field(
        "medium", validation_alias=AliasChoices("average_post_length", "averagePostLength")
    )
    common_topics: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("common_topics", "commonTopics")
    )
    tone_keywords: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("tone_keywords", "toneKeywords")
    )
    content_themes: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("content_themes", "contentThemes")
    )
    brand_voice: str = Field(
        "authentic and personal", validation_alias=AliasChoices("brand_voice", "brandVoice")
    )
    target_audience: str | None = Field(
        None, validation_alias=AliasChoices("target_audience", "targetAudience")
    )
    posting_pattern: str | None = Field(
        None, validation_alias=AliasChoices("posting_pattern", "postingPattern")
    )
    cached_at: str = Field(default_factory=utc_now_iso)

    @field_validator("common_topics", "tone_keywords", "content_themes", "analyzed_urls", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _str_list(v)

    @field_validator("writing_style", "average_post_length", "brand_voice", mode="before")
    @classmethod
    def _text(cls, v: Any, info: ValidationInfo) -> str:
        if isinstance(v, (list, tuple)):
            v = ", ".join(str(item) for item in v)
        text = str(v).strip() if v is not None else ""
        return text or cls.model_fields[info.field_name].default

    @field_validator("target_audience", "posting_pattern", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        if isinstance(v, (list, tuple)):
            v = ", ".join(str(item) for item in v)
        text = str(v).strip()
        return text or None
