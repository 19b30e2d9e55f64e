"""Onboarding workflow phases.

The assistant walks each user through six phases. Which phase applies is a
function of profile completeness plus a set of required fields; the early
phases block free-form content generation until enough is known about the
user.
"""

from dataclasses import dataclass
from typing import Any

DISCOVERY = "Discovery & Personalization"
POSITIONING = "Brand Voice & Positioning"
IDEATION = "Collaborative Idea Generation"
DEVELOPMENT = "Developing Chosen Ideas"
DRAFTING = "Content Drafting & Iterative Review"
FINALIZATION = "Finalization & Scheduling"

COMPLETENESS_FIELDS = (
    "first_name",
    "last_name",
    "content_niche",
    "primary_platform",
    "target_audience",
    "brand_voice",
    "business_type",
)

FIELD_LABELS: dict[str, str] = {
    "first_name": "Name",
    "content_niche": "Content Niche",
    "primary_platform": "Primary Platform",
    "target_audience": "Target Audience",
    "brand_voice": "Brand Voice",
    "business_type": "Business Type",
    "content_goals": "Content Goals",
}

_PROFILE_DATA_FIELDS = frozenset(
    {"target_audience", "brand_voice", "business_type", "content_goals", "business_location"}
)


@dataclass(frozen=True)
class WorkflowPhase:
    """Requirements and permissions of one workflow phase."""

    name: str
    min_completeness: int
    max_completeness: int
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...]
    can_generate_content: bool
    can_generate_ideas: bool
    description: str


_BASE_REQUIRED = ("first_name", "content_niche", "primary_platform")

WORKFLOW_PHASES: tuple[WorkflowPhase, ...] = (
    WorkflowPhase(
        name=DISCOVERY,
        min_completeness=0,
        max_completeness=35,
        required_fields=_BASE_REQUIRED,
        optional_fields=("last_name", "primary_platforms"),
        can_generate_content=False,
        can_generate_ideas=False,
        description="Getting to know the user and their basic content needs",
    ),
    WorkflowPhase(
        name=POSITIONING,
        min_completeness=35,
        max_completeness=55,
        required_fields=_BASE_REQUIRED,
        optional_fields=("target_audience", "brand_voice", "business_type", "content_goals"),
        can_generate_content=False,
        can_generate_ideas=False,
        description="Understanding brand identity, voice, and target audience",
    ),
    WorkflowPhase(
        name=IDEATION,
        min_completeness=50,
        max_completeness=60,
        required_fields=_BASE_REQUIRED,
        optional_fields=("target_audience", "brand_voice", "business_type", "content_goals"),
        can_generate_content=False,
        can_generate_ideas=True,
        description="Generating content themes and high-level ideas",
    ),
    WorkflowPhase(
        name=DEVELOPMENT,
        min_completeness=60,
        max_completeness=75,
        required_fields=_BASE_REQUIRED,
        optional_fields=("target_audience", "brand_voice", "business_type"),
        can_generate_content=True,
        can_generate_ideas=True,
        description="Creating specific content outlines and structures",
    ),
    WorkflowPhase(
        name=DRAFTING,
        min_completeness=75,
        max_completeness=90,
        required_fields=(*_BASE_REQUIRED, "target_audience"),
        optional_fields=("brand_voice", "business_type", "content_goals"),
        can_generate_content=True,
        can_generate_ideas=True,
        description="Creating full content drafts in the user's voice",
    ),
    WorkflowPhase(
        name=FINALIZATION,
        min_completeness=90,
        max_completeness=100,
        required_fields=(*_BASE_REQUIRED, "target_audience", "brand_voice"),
        optional_fields=("business_type", "content_goals", "business_location"),
        can_generate_content=True,
        can_generate_ideas=True,
        description="Optimizing and finalizing content for publication",
    ),
)

_PHASES_BY_NAME = {phase.name: phase for phase in WORKFLOW_PHASES}

_PHASE_GUIDANCE: dict[str, str] = {
    DISCOVERY: """Focus on getting to know the user personally:
- Ask for their name if not provided
- Discover their content niche and expertise areas through thoughtful questions
- Understand their primary social media platform preferences
- Learn about their target audience and business goals
- If they mention using Instagram, ask for their handle so their profile can be analyzed
- Users can also request analysis of competitor accounts by mentioning specific handles
- Explore their content creation experience and current challenges
DO NOT suggest content ideas yet - focus purely on discovery and building rapport.""",
    POSITIONING: """Help clarify their brand identity and voice:
- Explore how they want to be perceived by their audience
- Understand their unique value proposition and expertise
- Identify any content topics they want to avoid or embrace
- Clarify their brand personality (playful, authoritative, inspirational, etc.)
- Ask about successful content they've created before
Still avoid specific content ideas - focus on brand foundation.""",
    IDEATION: """Now you can start collaborative content ideation:
- Present 2-3 tailored content themes based on their discovered profile
- Provide brief rationale for each suggestion
- Ask for their feedback on which ideas resonate
- Explain how each idea targets their specific audience
- Invite them to modify or reject suggestions
Be collaborative - don't overwhelm with too many ideas at once.""",
    DEVELOPMENT: """Develop the ideas they've shown interest in:
- Ask about preferred content formats (carousel, video, reel, infographic)
- Explore different angles (educational, story-driven, promotional)
- Provide content outlines and key points
- Ask for their input on direction and tone
- Suggest specific hooks and engagement strategies""",
    DRAFTING: """Create actual content drafts for their approval:
- Write specific captions, scripts, or post content
- Provide multiple style options (long vs short, formal vs casual)
- Ask for feedback and be ready to iterate
- Include specific calls-to-action tailored to their goals
- Suggest visual content directions when relevant""",
    FINALIZATION: """Help finalize and optimize their content:
- Add platform-specific hashtags and optimization
- Suggest best posting times for their platform and audience
- Provide cross-platform adaptation suggestions
- Offer scheduling and batch creation tips
- Ask if they want additional content pieces in this style""",
}

_DEFAULT_GUIDANCE = (
    "Stay in discovery mode and focus on getting to know the user better "
    "through natural conversation."
)


def profile_value(profile: dict[str, Any] | None, field: str) -> Any:
    """Read a profile field from a user row.

    Business fields live in ``profile_data``; identity fields are columns.
    """
    if not profile:
        return None
    if field in _PROFILE_DATA_FIELDS:
        data = profile.get("profile_data") or {}
        return data.get(field) if isinstance(data, dict) else None
    return profile.get(field)


def has_field(profile: dict[str, Any] | None, field: str) -> bool:
    """Whether the profile carries a non-empty value for ``field``."""
    if field == "primary_platform":
        return bool(profile_value(profile, "primary_platform")) or bool(
            profile_value(profile, "primary_platforms")
        )
    return bool(profile_value(profile, field))


def calculate_completeness(profile: dict[str, Any] | None) -> int:
    """Percentage of the seven tracked profile fields that are filled in."""
    filled = sum(1 for field in COMPLETENESS_FIELDS if bool(profile_value(profile, field)))
    return round(filled / len(COMPLETENESS_FIELDS) * 100)


def get_phase(name: str) -> WorkflowPhase | None:
    return _PHASES_BY_NAME.get(name)


def determine_workflow_phase(completeness: int, profile: dict[str, Any] | None) -> WorkflowPhase:
    """Pick the first phase whose completeness band and required fields both match.

    Args:
        completeness: Profile completeness percentage.
        profile: User row.

    Returns:
        The matching phase, or Discovery when none matches.
    """
    for phase in WORKFLOW_PHASES:
        if phase.min_completeness <= completeness <= phase.max_completeness and all(
            has_field(profile, field) for field in phase.required_fields
        ):
            return phase
    return WORKFLOW_PHASES[0]


def get_missing_fields(phase: WorkflowPhase, profile: dict[str, Any] | None) -> list[str]:
    """Human-readable labels of the phase's required fields the profile lacks."""
    return [
        FIELD_LABELS.get(field, field)
        for field in phase.required_fields
        if not has_field(profile, field)
    ]


def can_advance_to_next_phase(
    phase: WorkflowPhase, completeness: int, profile: dict[str, Any] | None
) -> bool:
    if completeness < phase.max_completeness:
        return False
    return not get_missing_fields(phase, profile)


def get_next_phase(phase_name: str) -> WorkflowPhase | None:
    """The phase after ``phase_name``, or None at the end or for unknown names."""
    for index, phase in enumerate(WORKFLOW_PHASES[:-1]):
        if phase.name == phase_name:
            return WORKFLOW_PHASES[index + 1]
    return None


def phase_guidance(phase_name: str) -> str:
    return _PHASE_GUIDANCE.get(phase_name, _DEFAULT_GUIDANCE)


def blocks_content_generation(phase_name: str) -> bool:
    """Whether the named phase forbids full content drafts."""
    phase = get_phase(phase_name)
    return True if phase is None else not phase.can_generate_content
