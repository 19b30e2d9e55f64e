"""Profile fact extraction from one conversation exchange."""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from strategist.core.config import settings
from strategist.core.llm import LLMClient
from strategist.models.profile import ProfileUpdate

logger = logging.getLogger(__name__)

# Explicit requests to change stored profile information
EXPLICIT_PROFILE_REQUEST = re.compile(
    r"\b(update|change|set|save|correct|fix|edit|add)\b[^.?!]{0,40}\b(my\s+)?"
    r"(profile|business\s+type|niche|platform|target\s+audience|audience|brand\s+voice|"
    r"goals?|location|name)\b",
    re.IGNORECASE,
)

PROFILE_EXTRACTION_PROMPT = """Extract user profile info from both the user message AND the assistant response. Return JSON containing only CHANGED or NEW fields:

Fields to consider: firstName, lastName, contentNiche (array), primaryPlatform, primaryPlatforms (array), profileData: {{targetAudience (array), brandVoice (array), businessType, contentGoals (array), businessLocation}}

Do NOT return blogProfile; it is reserved for blog content analysis.

Current profile:
{profile}

ONLY EXTRACT SIGNIFICANT PROFILE CHANGES:
1. NEW business information not already in the profile
2. MAJOR corrections or updates to existing information
3. CONCRETE business details discovered through analysis (website, Instagram, etc.)
4. EXPLICIT user statements about their business or goals that ADD new information

DO NOT EXTRACT:
- Minor variations of existing contentNiche items
- Information already in the profile
- General conversation topics, content ideas or recommendations the user has not adopted

Only add a contentNiche item when it is a genuinely different field (if the user has "fitness", don't add "weight training").

FIELD USAGE:
- businessLocation: physical business address or location
- businessType: services offered or industry

Return {{}} when there is nothing genuinely new."""


def is_explicit_profile_request(message: str) -> bool:
    return bool(EXPLICIT_PROFILE_REQUEST.search(message or ""))


def _profile_snapshot(profile: dict[str, Any] | None) -> str:
    profile = profile or {}
    data = profile.get("profile_data") or {}
    return json.dumps(
        {
            "firstName": profile.get("first_name"),
            "lastName": profile.get("last_name"),
            "contentNiche": profile.get("content_niche") or [],
            "primaryPlatforms": profile.get("primary_platforms") or [],
            "profileData": {
                key: data.get(key)
                for key in (
                    "target_audience",
                    "brand_voice",
                    "business_type",
                    "content_goals",
                    "business_location",
                )
                if data.get(key)
            },
        },
        ensure_ascii=False,
    )


class ProfileExtractor:
    """Turns an exchange into a :class:`ProfileUpdate`, when it carries one."""

    def __init__(self, llm: LLMClient | None = None) -> None:
        self._llm = llm or LLMClient(model=settings.DECISION_MODEL)

    async def extract(
        self,
        user_message: str,
        assistant_response: str,
        profile: dict[str, Any] | None,
    ) -> ProfileUpdate | None:
        """Extract profile changes from one exchange.

        Args:
            user_message: The user's turn.
            assistant_response: The reply that was streamed.
            profile: The current user row.

        Returns:
            The proposed update, or None when nothing concrete was found or
            the call failed.
        """
        try:
            raw = await self._llm.generate_json(
                messages=[
                    {
                        "role": "user",
                        "content": (
                            f"User message: {user_message}\n\n"
                            f"Assistant response: {assistant_response}\n\n"
                            "Extract new or changed business info from both sources."
                        ),
                    }
                ],
                system_prompt=PROFILE_EXTRACTION_PROMPT.format(profile=_profile_snapshot(profile)),
                max_tokens=1000,
                temperature=0.1,
            )
        except Exception as e:
            logger.warning("Profile extraction failed", extra={"error": str(e)})
            return None

        if not isinstance(raw, dict):
            return None
        try:
            update = ProfileUpdate.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning("Profile extraction returned an invalid shape", extra={"error": str(e)})
            return None

        if update.is_empty():
            logger.debug("No profile updates found")
            return None
        logger.info("Profile updates extracted", extra={"fields": sorted(update.to_patch())})
        return update
