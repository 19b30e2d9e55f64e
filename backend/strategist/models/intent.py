"""Intent decision models.

The decision model returns loosely shaped JSON: sections may be missing,
lists may arrive as bare strings, confidences as strings. These schemas
coerce that output into one typed :class:`UnifiedIntentDecision` per turn.
"""

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Recency = Literal["hour", "day", "week", "month", "year"]
SearchService = Literal["perplexity", "grok"]

DISCOVERY_PHASE = "Discovery & Personalization"
DEFAULT_SECTION_CONFIDENCE = 0.8

_RECENCY_VALUES = ("hour", "day", "week", "month", "year")
_SEARCH_SERVICES = ("perplexity", "grok")


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _as_str_list(value: Any) -> list[str]:
    return [str(item).strip() for item in _as_list(value) if item is not None and str(item).strip()]


def coerce_confidence(value: Any) -> float:
    """Turn a confidence of any shape into a float in [0, 1]."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(1.0, number))


class _Decision(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    confidence: float = 0.0
    reason: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        return coerce_confidence(v)

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, v: Any) -> str:
        return "" if v is None else str(v)


class WebSearchDecision(_Decision):
    """Whether the turn needs fresh information from the web."""

    should_search: bool = False
    refined_query: str = Field(
        default="",
        validation_alias=AliasChoices("refinedQuery", "refined_query", "query"),
    )
    recency: Recency = "week"
    domains: list[str] = Field(default_factory=list)
    search_service: SearchService = "perplexity"
    social_handles: list[str] = Field(default_factory=list)

    @field_validator("refined_query", mode="before")
    @classmethod
    def _query(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("recency", mode="before")
    @classmethod
    def _recency(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in _RECENCY_VALUES else "week"

    @field_validator("search_service", mode="before")
    @classmethod
    def _service(cls, v: Any) -> str:
        value = str(v).strip().lower() if v is not None else ""
        return value if value in _SEARCH_SERVICES else "perplexity"

    @field_validator("domains", mode="before")
    @classmethod
    def _domains(cls, v: Any) -> list[str]:
        return _as_str_list(v)

    @field_validator("social_handles", mode="before")
    @classmethod
    def _handles(cls, v: Any) -> list[str]:
        return [handle.lstrip("@") for handle in _as_str_list(v)]


class InstagramAnalysisDecision(_Decision):
    """Whether to analyze an Instagram profile, and whose."""

    should_analyze: bool = False
    username: str | None = None
    is_own_profile: bool | None = None

    @field_validator("username", mode="before")
    @classmethod
    def _username(cls, v: Any) -> str | None:
        if v is None:
            return None
        cleaned = str(v).strip().lstrip("@").strip()
        return cleaned or None

    @field_validator("is_own_profile", mode="before")
    @classmethod
    def _own(cls, v: Any) -> bool | None:
        if v is None or isinstance(v, bool):
            return v
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in ("true", "yes"):
                return True
            if lowered in ("false", "no"):
                return False
        return None


class HashtagSearchDecision(_Decision):
    """Whether to pull top posts for a hashtag."""

    should_search: bool = False
    hashtag: str | None = None

    @field_validator("hashtag", mode="before")
    @classmethod
    def _hashtag(cls, v: Any) -> str | None:
        if v is None:
            return None
        cleaned = str(v).strip().lstrip("#").strip()
        return cleaned or None


class BlogAnalysisDecision(_Decision):
    """Whether to analyze blog posts at the given URLs."""

    should_analyze: bool = False
    urls: list[str] = Field(default_factory=list)

    @field_validator("urls", mode="before")
    @classmethod
    def _urls(cls, v: Any) -> list[str]:
        return _as_str_list(v)


class WorkflowPhaseDecision(_Decision):
    """The classifier's view of where the user is in the onboarding workflow."""

    current_phase: str = DISCOVERY_PHASE
    missing_fields: list[str] = Field(default_factory=list)
    ready_to_advance: bool = False
    suggested_prompts: list[str] = Field(default_factory=list)
    profile_patch: dict[str, Any] = Field(default_factory=dict)
    should_block_content_generation: bool = True
    confidence: float = 0.9

    @field_validator("current_phase", mode="before")
    @classmethod
    def _phase(cls, v: Any) -> str:
        return str(v).strip() if v and str(v).strip() else DISCOVERY_PHASE

    @field_validator("missing_fields", "suggested_prompts", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> list[str]:
        return _as_str_list(v)

    @field_validator("profile_patch", mode="before")
    @classmethod
    def _patch(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}


class ProfileUpdateDecision(_Decision):
    """Whether the exchange carries profile facts worth extracting."""

    should_extract: bool = False
    expected_fields: list[str] = Field(default_factory=list)

    @field_validator("expected_fields", mode="before")
    @classmethod
    def _fields(cls, v: Any) -> list[str]:
        return _as_str_list(v)


def _section(raw: dict[str, Any], *keys: str) -> dict[str, Any] | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, dict):
            return value
    return None


def _present(section: dict[str, Any], flag: str, reason: str) -> dict[str, Any]:
    """A section the model chose to include means "act", defaulting confidence."""
    data = dict(section)
    data[flag] = True
    if not coerce_confidence(data.get("confidence")):
        data["confidence"] = DEFAULT_SECTION_CONFIDENCE
    if not data.get("reason"):
        data["reason"] = reason
    return data


class UnifiedIntentDecision(BaseModel):
    """All six sub-decisions produced by one classification call."""

    model_config = ConfigDict(frozen=True)

    web_search: WebSearchDecision = Field(default_factory=WebSearchDecision)
    instagram_analysis: InstagramAnalysisDecision = Field(default_factory=InstagramAnalysisDecision)
    hashtag_search: HashtagSearchDecision = Field(default_factory=HashtagSearchDecision)
    blog_analysis: BlogAnalysisDecision = Field(default_factory=BlogAnalysisDecision)
    workflow_phase: WorkflowPhaseDecision = Field(default_factory=WorkflowPhaseDecision)
    profile_update: ProfileUpdateDecision = Field(default_factory=ProfileUpdateDecision)

    @classmethod
    def default(cls) -> "UnifiedIntentDecision":
        """All-negative decision used whenever classification fails."""
        return cls(
            web_search=WebSearchDecision(reason="Analysis failed - defaulting to no search"),
            instagram_analysis=InstagramAnalysisDecision(reason="Error in analysis"),
            hashtag_search=HashtagSearchDecision(reason="Error in analysis"),
            blog_analysis=BlogAnalysisDecision(reason="Error in analysis"),
            workflow_phase=WorkflowPhaseDecision(
                current_phase=DISCOVERY_PHASE,
                missing_fields=["name", "niche", "platform"],
                ready_to_advance=False,
                suggested_prompts=["What's your name?", "What type of content do you create?"],
                should_block_content_generation=True,
                confidence=0.9,
            ),
            profile_update=ProfileUpdateDecision(reason="No profile extraction needed"),
        )

    @classmethod
    def from_condensed(cls, raw: Any) -> "UnifiedIntentDecision":
        """Expand the model's condensed response into a full decision.

        Only sections the model wants acted on are expected to be present.
        A present section turns its action on; an absent one leaves it off.

        Args:
            raw: Parsed JSON from the decision model (any shape).

        Returns:
            The normalized decision.
        """
        if not isinstance(raw, dict):
            return cls.default()
        fallback = cls.default()

        web = _section(raw, "webSearch", "web_search")
        if web is not None:
            web_search = WebSearchDecision.model_validate(
                _present(web, "shouldSearch", "AI recommended search")
            )
        else:
            web_search = WebSearchDecision(
                confidence=0.9, reason="No web search needed for this query"
            )

        insta = _section(raw, "instagramAnalysis", "instagram_analysis")
        instagram = (
            InstagramAnalysisDecision.model_validate(
                _present(insta, "shouldAnalyze", "AI recommended Instagram analysis")
            )
            if insta is not None
            else fallback.instagram_analysis
        )

        tag = _section(raw, "instagramHashtagSearch", "hashtagSearch", "hashtag_search")
        hashtag = (
            HashtagSearchDecision.model_validate(
                _present(tag, "shouldSearch", "AI recommended Instagram hashtag search")
            )
            if tag is not None
            else fallback.hashtag_search
        )

        blog_raw = _section(raw, "blogAnalysis", "blog_analysis")
        blog = (
            BlogAnalysisDecision.model_validate(
                _present(blog_raw, "shouldAnalyze", "AI recommended blog analysis")
            )
            if blog_raw is not None
            else fallback.blog_analysis
        )

        phase_raw = dict(_section(raw, "workflowPhase", "workflow_phase") or {})
        if not coerce_confidence(phase_raw.get("confidence")):
            phase_raw.pop("confidence", None)
        for key in ("readyToAdvance", "shouldBlockContentGeneration"):
            if not isinstance(phase_raw.get(key), bool):
                phase_raw.pop(key, None)
        workflow = WorkflowPhaseDecision.model_validate(phase_raw)

        update_raw = _section(raw, "profileUpdate", "profile_update")
        profile_update = (
            ProfileUpdateDecision.model_validate(
                _present(update_raw, "shouldExtract", "AI recommended profile update")
            )
            if update_raw is not None
            else fallback.profile_update
        )

        return cls(
            web_search=web_search,
            instagram_analysis=instagram,
            hashtag_search=hashtag,
            blog_analysis=blog,
            workflow_phase=workflow,
            profile_update=profile_update,
        )

    def wants_web_search(self, threshold: float) -> bool:
        return self.web_search.should_search and self.web_search.confidence >= threshold

    def wants_instagram(self, threshold: float) -> bool:
        decision = self.instagram_analysis
        return decision.should_analyze and bool(decision.username) and decision.confidence >= threshold

    def wants_hashtag(self, threshold: float) -> bool:
        decision = self.hashtag_search
        return decision.should_search and bool(decision.hashtag) and decision.confidence >= threshold

    def wants_blog(self, threshold: float) -> bool:
        decision = self.blog_analysis
        return decision.should_analyze and bool(decision.urls) and decision.confidence >= threshold

    def wants_profile_update(self, threshold: float) -> bool:
        return self.profile_update.should_extract and self.profile_update.confidence >= threshold
