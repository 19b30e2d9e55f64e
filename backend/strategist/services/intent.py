"""Unified intent classification.

One decision-model call per turn answers every routing question at once:
web search, Instagram profile analysis, hashtag search, blog analysis,
profile update and the user's workflow phase. Any failure yields the
all-negative default decision so the turn carries on without enrichment.
"""

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from strategist.core.config import settings
from strategist.core.llm import LLMClient
from strategist.models.intent import UnifiedIntentDecision, WorkflowPhaseDecision
from strategist.services.workflow import calculate_completeness, has_field, profile_value

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 4
MEMORY_SAMPLE = 3
CONTENT_READY_COMPLETENESS = 60

INTENT_SYSTEM_PROMPT = """You are a unified intent classifier for a social media content strategy assistant. Use semantic understanding to detect user intent across all languages.

Date: {date}

INTENT DETECTION:

1. WEB SEARCH - Need for current information:
- Questions about recent events, prices, status
- Website/competitor analysis requests and general website reading requests
- Fact verification needs
Use grok for X/Twitter content, perplexity for general web

2. INSTAGRAM ANALYSIS - Profile examination:
- "Analyze @username" or competitor research
- DISTINGUISH own profile vs competitor:
  - Own: "my Instagram", "my profile", matches the existing own username
  - Competitor: "competitor", "check @brand", "analyze @other"
  - Default: competitor if unclear

3. INSTAGRAM HASHTAG SEARCH - Ideas and content inspiration:
- Requests like "show me #fitness posts", "get ideas from #marketing"

4. BLOG ANALYSIS - Writing style examination:
- ONLY explicit blog analysis requests ("analyze my blog", "review my writing style")
- For general website reading, use web search instead

5. WORKFLOW PHASE - User journey stage:
- Discovery & Personalization (0-35%): exit needs name + content niche + platform. Block content generation.
- Brand Voice & Positioning (35-55%): focus on identity, voice, audience. Block content generation.
- Collaborative Idea Generation (55-65%): ideas only, block full drafts.
- Developing Chosen Ideas and later (65%+): full content allowed.
- If profile score < 60%, shouldBlockContentGeneration MUST be true.
- Only list fields marked ❌ Missing in missingFields and only suggest prompts for those.

6. PROFILE UPDATE - Be conservative:
- Explicit requests ("update my profile", "change my business type")
- Or significant NEW business information that fills a ❌ missing field
- Never for casual chat, acknowledgments, content idea discussion or questions

STRICT VALIDATION RULES:
- Extract usernames without @ ONLY if explicitly mentioned
- Do NOT hallucinate URLs, usernames, hashtags or requests
- For website analysis use ONLY "site:domain.com" as the query
- Do NOT infer analysis requests from stored memories
- When in doubt, don't trigger

Return JSON (only include a section when its action should happen):
{{
"webSearch": {{"refinedQuery": "string", "searchService": "perplexity|grok", "recency": "hour|day|week|month|year", "domains": [], "socialHandles": [], "confidence": 0.9}},
"instagramAnalysis": {{"username": "string", "isOwnProfile": true, "confidence": 0.9}},
"instagramHashtagSearch": {{"hashtag": "hashtag_without_#", "confidence": 0.9}},
"blogAnalysis": {{"urls": ["url1"], "confidence": 0.9}},
"workflowPhase": {{"currentPhase": "phase", "missingFields": ["field1"], "suggestedPrompts": ["prompt1"], "shouldBlockContentGeneration": true, "confidence": 0.9}},
"profileUpdate": {{"expectedFields": ["field1"], "reason": "string", "confidence": 0.9}}
}}"""

_STATUS_FIELDS: tuple[tuple[str, str], ...] = (
    ("first_name", "Name"),
    ("content_niche", "Content Niche"),
    ("primary_platform", "Primary Platform(s)"),
    ("target_audience", "Target Audience"),
    ("brand_voice", "Brand Voice"),
    ("content_goals", "Content Goals"),
    ("business_type", "Business Type"),
)

# Normalized field name -> profile field it refers to
_MISSING_FIELD_ALIASES: dict[str, str] = {
    "name": "first_name",
    "firstname": "first_name",
    "lastname": "last_name",
    "niche": "content_niche",
    "contentniche": "content_niche",
    "platform": "primary_platform",
    "primaryplatform": "primary_platform",
    "primaryplatforms": "primary_platforms",
    "targetaudience": "target_audience",
    "brandvoice": "brand_voice",
    "businesstype": "business_type",
    "contentgoals": "content_goals",
    "businesslocation": "business_location",
}


def _display(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def build_profile_status(user: dict[str, Any] | None) -> str:
    """Render which profile fields are present, for the classifier prompt."""
    if not user:
        return "CURRENT USER PROFILE STATUS:\n❌ No user profile available - stay in Discovery phase"

    score = int(user.get("profile_completeness") or calculate_completeness(user))
    verdict = (
        "✅ Profile is substantial enough for content generation"
        if score >= CONTENT_READY_COMPLETENESS
        else "❌ Profile needs more information before content generation"
    )
    lines = [
        "CURRENT USER PROFILE STATUS:",
        f"PROFILE COMPLETENESS SCORE: {score}%",
        verdict,
        "",
        "INDIVIDUAL FIELD STATUS:",
    ]
    for field, label in _STATUS_FIELDS:
        if not has_field(user, field):
            lines.append(f"❌ {label}: Missing")
            continue
        if field == "first_name":
            value = " ".join(filter(None, [user.get("first_name"), user.get("last_name")]))
        elif field == "primary_platform":
            value = _display(user.get("primary_platforms") or user.get("primary_platform"))
        else:
            value = _display(profile_value(user, field))
        lines.append(f"✅ {label}: {value}")

    own_username = (user.get("profile_data") or {}).get("own_instagram_username")
    if own_username:
        lines.append(f"Own Instagram username: {own_username}")
    return "\n".join(lines)


def _field_missing(user: dict[str, Any], field: str) -> bool:
    if field == "primary_platforms":
        return not user.get("primary_platforms")
    return not has_field(user, field)


def filter_missing_fields(fields: Sequence[str], user: dict[str, Any] | None) -> list[str]:
    """Drop fields the model reported missing that the profile actually has.

    Names are matched case-insensitively, ignoring spaces and underscores.
    Unknown names are kept.
    """
    if not user:
        return list(fields)
    kept: list[str] = []
    for name in fields:
        key = name.lower().replace(" ", "").replace("_", "")
        field = _MISSING_FIELD_ALIASES.get(key)
        if field is None or _field_missing(user, field):
            kept.append(name)
    return kept


class IntentClassifier:
    """Makes the per-turn routing decision."""

    def __init__(self, llm: LLMClient | None = None, timeout_seconds: float | None = None) -> None:
        self._llm = llm or LLMClient(model=settings.DECISION_MODEL)
        self._timeout = timeout_seconds or settings.INTENT_TIMEOUT_SECONDS

    def _build_user_prompt(
        self,
        history: Sequence[dict[str, Any]],
        user: dict[str, Any] | None,
        memories: Sequence[Any],
    ) -> str:
        conversation = "\n".join(
            f"{msg.get('role')}: {msg.get('content')}" for msg in list(history)[-HISTORY_WINDOW:]
        )
        parts = [build_profile_status(user)]
        if user:
            existing = {
                "first_name": user.get("first_name"),
                "content_niche": user.get("content_niche"),
                "primary_platform": user.get("primary_platform"),
                "primary_platforms": user.get("primary_platforms"),
                "profile_data": {
                    k: v
                    for k, v in (user.get("profile_data") or {}).items()
                    if k in ("target_audience", "brand_voice", "content_goals", "business_type",
                             "business_location", "own_instagram_username")
                },
            }
            parts.append("EXISTING DATA TO CONSIDER:\n" + json.dumps(existing, ensure_ascii=False, indent=2))
        sample = [getattr(m, "content", m) for m in list(memories)[:MEMORY_SAMPLE]]
        if sample:
            parts.append(
                "BACKGROUND MEMORIES (context only):\n" + "\n".join(f"- {text}" for text in sample)
            )
        parts.append(f"RECENT CONVERSATION:\n{conversation}")
        parts.append("Analyze the LATEST user message and return the JSON decision.")
        return "\n\n".join(parts)

    async def classify(
        self,
        history: Sequence[dict[str, Any]],
        user: dict[str, Any] | None,
        memories: Sequence[Any] = (),
    ) -> UnifiedIntentDecision:
        """Classify the latest user message.

        Args:
            history: Conversation messages as role/content dicts, oldest first.
            user: Stored user row, if loaded.
            memories: Retrieved memories for background context.

        Returns:
            The normalized decision, or the default decision on any failure.
        """
        start = time.perf_counter()
        try:
            raw = await asyncio.wait_for(
                self._llm.generate_json(
                    messages=[
                        {"role": "user", "content": self._build_user_prompt(history, user, memories)}
                    ],
                    system_prompt=INTENT_SYSTEM_PROMPT.format(
                        date=datetime.now(UTC).date().isoformat()
                    ),
                    max_tokens=500,
                    temperature=0.05,
                ),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning(
                "Intent classification timed out, using default decision",
                extra={"timeout_seconds": self._timeout},
            )
            return UnifiedIntentDecision.default()
        except Exception as e:
            logger.warning(
                "Intent classification failed, using default decision",
                extra={"error": str(e)},
            )
            return UnifiedIntentDecision.default()

        decision = UnifiedIntentDecision.from_condensed(raw)
        phase = decision.workflow_phase
        if phase.missing_fields and user:
            kept = filter_missing_fields(phase.missing_fields, user)
            if len(kept) != len(phase.missing_fields):
                logger.debug(
                    "Filtered missing fields already present on profile",
                    extra={"before": phase.missing_fields, "after": kept},
                )
                decision = decision.model_copy(
                    update={
                        "workflow_phase": WorkflowPhaseDecision.model_validate(
                            {**phase.model_dump(), "missing_fields": kept}
                        )
                    }
                )

        logger.info(
            "Intent classified",
            extra={
                "duration_ms": round((time.perf_counter() - start) * 1000),
                "web_search": decision.web_search.should_search,
                "instagram": decision.instagram_analysis.should_analyze,
                "hashtag": decision.hashtag_search.should_search,
                "blog": decision.blog_analysis.should_analyze,
                "profile_update": decision.profile_update.should_extract,
                "phase": decision.workflow_phase.current_phase,
            },
        )
        return decision
