"""User profile models shared by extraction, merge and the profile routes."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _clean_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = [value]
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        return None
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v).strip() for v in value if v is not None and str(v).strip())
    text = str(value).strip()
    return text or None


class _ProfileModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProfileDataUpdate(_ProfileModel):
    """Business facts stored in the ``profile_data`` bag."""

    target_audience: list[str] | None = None
    brand_voice: list[str] | None = None
    content_goals: list[str] | None = None
    business_type: str | None = None
    business_location: str | None = None

    @field_validator("target_audience", "brand_voice", "content_goals", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str] | None:
        return _clean_list(v)

    @field_validator("business_type", "business_location", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> str | None:
        return _clean_str(v)


class ProfileUpdate(_ProfileModel):
    """A proposed change to the user profile.

    Accepts camelCase or snake_case keys. Blog analysis results are written
    only by the blog adapter, so ``blogProfile`` is never accepted here.
    """

    first_name: str | None = None
    last_name: str | None = None
    content_niche: list[str] | None = None
    primary_platform: str | None = None
    primary_platforms: list[str] | None = None
    profile_data: ProfileDataUpdate | None = None

    @field_validator("first_name", "last_name", "primary_platform", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> str | None:
        return _clean_str(v)

    @field_validator("content_niche", "primary_platforms", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str] | None:
        return _clean_list(v)

    @field_validator("profile_data", mode="before")
    @classmethod
    def _data(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    def to_patch(self) -> dict[str, Any]:
        """Return only the fields that carry a value, in storage shape."""
        patch: dict[str, Any] = {}
        for name in ("first_name", "last_name", "primary_platform"):
            value = getattr(self, name)
            if value:
                patch[name] = value
        for name in ("content_niche", "primary_platforms"):
            value = getattr(self, name)
            if value:
                patch[name] = value
        if self.profile_data is not None:
            data = {k: v for k, v in self.profile_data.model_dump().items() if v}
            if data:
                patch["profile_data"] = data
        return patch

    def is_empty(self) -> bool:
        return not self.to_patch()


class ProfilePatchRequest(ProfileUpdate):
    """Body of ``PATCH /profile``."""

    replace_arrays: bool = False
    own_instagram_username: str | None = None

    @field_validator("own_instagram_username", mode="before")
    @classmethod
    def _username(cls, v: Any) -> str | None:
        cleaned = _clean_str(v)
        return cleaned.lstrip("@") if cleaned else None

    def to_patch(self) -> dict[str, Any]:
        patch = super().to_patch()
        if self.own_instagram_username:
            patch.setdefault("profile_data", {})["own_instagram_username"] = self.own_instagram_username
        return patch


@dataclass(frozen=True)
class CappedField:
    """A list field that could not admit every proposed item."""

    field: str
    limit: int
    attempted: int

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "limit": self.limit, "attempted": self.attempted}


class ProfileResponse(BaseModel):
    """Body of ``GET /profile``."""

    id: str
    first_name: str | None = None
    last_name: str | None = None
    content_niche: list[str] = Field(default_factory=list)
    primary_platform: str | None = None
    primary_platforms: list[str] = Field(default_factory=list)
    profile_data: dict[str, Any] = Field(default_factory=dict)
    profile_completeness: int = 0
    workflow_phase: str
    missing_fields: list[str] = Field(default_factory=list)
    messages_used: int = 0
    messages_limit: int = 0
