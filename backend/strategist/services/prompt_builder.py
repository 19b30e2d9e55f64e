"""System prompt assembly for the streamed reply."""

from collections.abc import Mapping, Sequence
from typing import Any

from strategist.models.intent import WorkflowPhaseDecision
from strategist.services.enrichment.base import EnrichmentResult
from strategist.services.enrichment.blog import format_blog_analysis_for_chat
from strategist.services.enrichment.hashtag import format_hashtag_search_for_chat
from strategist.services.enrichment.instagram import format_instagram_analysis_for_chat
from strategist.services.search import SearchResult
from strategist.services.workflow import phase_guidance

MAX_SOURCES = 3

BASE_PROMPT = """You are a world-class social media content strategist and creative partner with web search capabilities to provide current information.

CRITICAL WORKFLOW RULES:
- Always follow the natural conversation flow while guiding users through the 6 phases
- Be conversational, enthusiastic, and build genuine rapport
- Use emojis appropriately to make conversations engaging
- NEVER jump ahead to content generation until sufficient discovery is complete
- Ask thoughtful follow-up questions to gather missing information naturally
- Present options and get feedback before advancing to next phases"""

# enrichment key -> (section title, formatter, instruction on success, instruction on failure)
_ENRICHMENT_BLOCKS = {
    "instagram": (
        "INSTAGRAM ANALYSIS RESULTS",
        format_instagram_analysis_for_chat,
        "Provide detailed insights and actionable recommendations based on this data.",
        "Provide helpful guidance on Instagram analysis and suggest alternative approaches.",
    ),
    "hashtag": (
        "INSTAGRAM HASHTAG SEARCH RESULTS",
        format_hashtag_search_for_chat,
        "Use these posts as inspiration for tailored content ideas.",
        "Suggest other ways to find content inspiration for this hashtag.",
    ),
    "blog": (
        "BLOG ANALYSIS RESULTS",
        format_blog_analysis_for_chat,
        "Match the user's writing style and tone in any content you suggest.",
        "Ask the user to share a few paragraphs of their writing instead.",
    ),
}


def _join(value: Any, default: str) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value) or default
    return str(value) if value else default


def _profile_section(profile: Mapping[str, Any]) -> list[str]:
    data = profile.get("profile_data") or {}
    name = " ".join(filter(None, [profile.get("first_name"), profile.get("last_name")]))
    lines = [
        "CURRENT USER PROFILE:",
        f"- Name: {name or 'Not provided'}",
        f"- Content Niche: {_join(profile.get('content_niche'), 'Not specified')}",
        f"- Primary Platform: "
        f"{_join(profile.get('primary_platforms') or profile.get('primary_platform'), 'Not specified')}",
    ]
    for key, label in (
        ("target_audience", "Target Audience"),
        ("brand_voice", "Brand Voice"),
        ("business_type", "Business Type"),
        ("content_goals", "Content Goals"),
        ("business_location", "Business Location"),
    ):
        if data.get(key):
            lines.append(f"- {label}: {_join(data[key], '')}")
    return lines


def _memory_section(memories: Sequence[Any]) -> list[str]:
    lines = ["RELEVANT MEMORIES FROM PAST CONVERSATIONS:"]
    for index, memory in enumerate(memories, start=1):
        similarity = float(getattr(memory, "similarity", None) or 0.0)
        lines.append(f"{index}. {memory.content} (similarity: {similarity * 100:.1f}%)")
    return lines


def _enrichment_section(key: str, result: EnrichmentResult) -> list[str]:
    title, formatter, on_success, on_failure = _ENRICHMENT_BLOCKS[key]
    if not result.success:
        return [f"{title}:", f"ERROR: {result.error}", on_failure]
    return [f"{title}:", formatter(result.analysis, cached=result.cached), on_success]


def build_system_prompt(
    workflow: WorkflowPhaseDecision,
    profile: Mapping[str, Any] | None = None,
    memories: Sequence[Any] = (),
    search_context: SearchResult | None = None,
    enrichments: Mapping[str, EnrichmentResult] | None = None,
) -> str:
    """Assemble the system prompt for one turn.

    Args:
        workflow: The turn's workflow phase decision.
        profile: The user's row, if loaded.
        memories: Retrieved memories, most similar first.
        search_context: Web search results, when a search ran.
        enrichments: Results keyed by "instagram", "hashtag" or "blog".

    Returns:
        The prompt text.
    """
    missing = ", ".join(workflow.missing_fields) if workflow.missing_fields else "None"
    sections = [
        BASE_PROMPT,
        f"CURRENT WORKFLOW PHASE: {workflow.current_phase}",
        f"PHASE-SPECIFIC GUIDANCE:\n{phase_guidance(workflow.current_phase)}",
        f"MISSING INFORMATION: {missing}",
    ]
    if workflow.should_block_content_generation:
        sections.append("⚠️ CONTENT GENERATION BLOCKED - Must complete discovery first")
    if workflow.suggested_prompts:
        sections.append(
            "SUGGESTED QUESTIONS:\n" + "\n".join(f"- {prompt}" for prompt in workflow.suggested_prompts)
        )

    if profile:
        sections.append("\n".join(_profile_section(profile)))
    if memories:
        sections.append("\n".join(_memory_section(memories)))

    if search_context and search_context.context:
        block = ["CURRENT WEB SEARCH RESULTS:", search_context.context]
        if search_context.citations:
            block.append(f"SOURCES: {', '.join(search_context.citations[:MAX_SOURCES])}")
        sections.append("\n".join(block))

    for key in ("instagram", "hashtag", "blog"):
        result = (enrichments or {}).get(key)
        if result is not None:
            sections.append("\n".join(_enrichment_section(key, result)))

    return "\n\n".join(sections)
