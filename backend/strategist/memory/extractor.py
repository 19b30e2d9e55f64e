"""Post-turn extraction of long-term memories from a completed exchange."""

import logging
import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from strategist.core.config import settings
from strategist.core.embeddings import EmbeddingClient
from strategist.core.json_utils import safe_json_parse
from strategist.core.llm import LLMClient
from strategist.memory.importance import create_memory_metadata
from strategist.memory.store import MemoryStore

logger = logging.getLogger(__name__)

Provenance = Literal["user", "assistant", "conversation"]

BASE_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.5
FALLBACK_LIMIT = 5

_QUOTE_CHARS = "\"'«»“”‘’"
_QUOTED_STRING = re.compile(r'"([^"]*)"')
_JSON_OBJECT_LIKE = re.compile(r'^\{.*".*".*\}$', re.DOTALL)
_JSON_ARRAY_LIKE = re.compile(r"^\[.*\]$", re.DOTALL)

MEMORY_EXTRACTION_PROMPT = """Extract valuable insights from this conversation. Be thorough but selective - capture 2-6 memories depending on information density.

MEMORY EXTRACTION RULES:
- Extract valuable insights from BOTH user messages AND assistant responses
- Focus on confirmed preferences, decisions, and discovered business information
- Include specific content requests and strategy discussions
- Capture user's stated goals and content direction
- Be inclusive of important details but avoid speculation

EXTRACT FROM USER MESSAGES:
- Content preferences and directions ("I want to create...", "I'm interested in...")
- Business goals and objectives they mention
- Platform preferences and strategies they want to pursue
- Feedback on past content or strategies
- Personal/business details they share
- Explicit decisions or confirmations

EXTRACT FROM ASSISTANT RESPONSES:
- Discovered business information from website/Instagram analysis (confirmed facts only)
- Data-driven observations about their current performance
- User-confirmed strategic decisions or preferences

DO NOT EXTRACT:
- Suggestions, recommendations, or "could try" statements
- Generic advice or ideas not yet confirmed by user
- Questions the assistant asks to the user
- Any statement phrased as advice ("You should...", "You could...", "Try...")

EXAMPLES:
GOOD: "User wants to create relationship-focused content for Instagram"
GOOD: "Current Instagram engagement rate is 1.66% with 885 followers"
BAD: "Assistant suggests trying carousel format"
BAD: "Could explore fashion-wellness combination"
{existing}
Each memory: complete sentence, 20-150 chars, specific and actionable.

Return a JSON array of strings, or [] if no confirmed user insights found."""


@dataclass(frozen=True)
class ExtractedMemory:
    """A candidate fact proposed by extraction."""

    content: str
    confidence: float
    source: Provenance


def _meaningful_ratio_ok(text: str) -> bool:
    meaningful = sum(
        1
        for ch in text
        if not ch.isspace() and unicodedata.category(ch)[0] not in ("P", "S")
    )
    return meaningful >= len(text) * 0.4


def _score_candidate(text: str) -> ExtractedMemory | None:
    """Apply the quality filter to one candidate; None means rejected."""
    if len(text) < 10 or len(text) > 500:
        return None
    if not _meaningful_ratio_ok(text):
        return None
    if text.endswith("?"):
        return None

    hashtag_count = text.count("#")
    if hashtag_count == 0 and (_JSON_OBJECT_LIKE.match(text) or _JSON_ARRAY_LIKE.match(text)):
        return None

    confidence = BASE_CONFIDENCE
    if hashtag_count < 3:
        diversity = len(set(text.lower())) / len(text)
        if diversity < 0.15:
            return None
        if diversity > 0.3:
            confidence += 0.1

    if sum(text.count(q) for q in _QUOTE_CHARS) >= 8:
        return None

    word_count = len(text.split())
    if word_count < 4 and hashtag_count < 2:
        return None
    if word_count > 80:
        return None
    if 10 <= word_count <= 40 or hashtag_count >= 3:
        confidence += 0.15

    paren_count = sum(text.count(ch) for ch in "()[]")
    if paren_count >= 8 and hashtag_count < 2:
        return None

    lowered = text.lower()
    source: Provenance = "conversation"
    if "user wants" in lowered or "user confirmed" in lowered:
        source = "user"
        confidence += 0.1
    elif "analysis" in lowered or "discovered" in lowered:
        source = "assistant"

    return ExtractedMemory(content=text, confidence=min(1.0, confidence), source=source)


def filter_memory_candidates(candidates: Sequence[Any]) -> list[ExtractedMemory]:
    """Keep only candidates that read like durable facts.

    Questions, JSON fragments, quote- or bracket-heavy text, low character
    diversity and very short or very long statements are dropped. Hashtag
    lists get relaxed thresholds.
    """
    accepted: list[ExtractedMemory] = []
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        scored = _score_candidate(candidate.strip())
        if scored is None:
            logger.debug("Filtered memory candidate", extra={"candidate": candidate[:100]})
            continue
        accepted.append(scored)
    return accepted


def fallback_extract(raw: str) -> list[ExtractedMemory]:
    """Salvage quoted strings from output that failed to parse as JSON."""
    results: list[ExtractedMemory] = []
    for match in _QUOTED_STRING.findall(raw):
        text = match.strip()
        if len(text) < 10 or len(text) > 500 or not _meaningful_ratio_ok(text):
            continue
        results.append(ExtractedMemory(content=text, confidence=FALLBACK_CONFIDENCE, source="conversation"))
        if len(results) >= FALLBACK_LIMIT:
            break
    return results


class MemoryExtractor:
    """Derives candidate facts from an exchange and stores the novel ones."""

    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingClient | None = None,
        llm: LLMClient | None = None,
    ) -> None:
        self._store = store
        self._embeddings = embeddings or EmbeddingClient()
        self._llm = llm or LLMClient(model=settings.DECISION_MODEL)

    async def extract(
        self,
        user_message: str,
        assistant_response: str,
        existing: Sequence[Any] = (),
    ) -> list[ExtractedMemory]:
        """Propose memories from one exchange.

        Args:
            user_message: The user's message.
            assistant_response: The persisted assistant reply.
            existing: Already-retrieved memories (objects with ``content`` or
                strings); up to three are shown to discourage duplicates.

        Returns:
            Filtered candidates. Empty on any provider failure.
        """
        sample = [getattr(m, "content", m) for m in list(existing)[:3]]
        existing_block = (
            "\nEXISTING MEMORIES TO AVOID DUPLICATING:\n" + "\n".join(f"- {c}" for c in sample) + "\n"
            if sample
            else ""
        )
        try:
            raw = await self._llm.generate_response(
                messages=[
                    {
                        "role": "user",
                        "content": f"User: {user_message}\n\nAssistant: {assistant_response}",
                    }
                ],
                system_prompt=MEMORY_EXTRACTION_PROMPT.format(existing=existing_block),
                max_tokens=300,
                temperature=0.15,
            )
        except Exception as e:
            logger.warning("Memory extraction call failed", extra={"error": str(e)})
            return []

        if not raw.strip():
            return []

        parsed = safe_json_parse(raw, fallback=None, expect="array")
        if isinstance(parsed, dict):
            parsed = parsed.get("memories")
        if not isinstance(parsed, list):
            salvaged = fallback_extract(raw)
            logger.info("Memory extraction fell back to quoted strings", extra={"count": len(salvaged)})
            return salvaged

        return filter_memory_candidates(parsed)

    async def persist(
        self,
        user_id: str,
        conversation_id: str | None,
        candidates: Sequence[ExtractedMemory],
        workflow_phase: str | None = None,
    ) -> int:
        """Embed and store candidates that are not near-duplicates.

        Duplicates are judged against stored memories and against candidates
        already accepted in this batch, both at ``MEMORY_INSERT_SIMILARITY``.

        Returns:
            Number of memories saved.
        """
        saved = 0
        accepted_embeddings: list[list[float]] = []
        for candidate in candidates:
            try:
                embedding = await self._embeddings.embed(candidate.content)
                metadata = create_memory_metadata(
                    "conversation",
                    candidate.content,
                    conversation_id=conversation_id,
                    workflow_phase=workflow_phase,
                    user_statement=candidate.source == "user",
                    from_analysis=candidate.source == "assistant",
                    provenance=candidate.source,
                    confidence=candidate.confidence,
                )
                memory = await self._store.insert_if_novel(
                    user_id,
                    candidate.content,
                    embedding,
                    metadata,
                    threshold=settings.MEMORY_INSERT_SIMILARITY,
                    pending=accepted_embeddings,
                )
            except Exception as e:
                logger.warning(
                    "Failed to save extracted memory",
                    extra={"user_id": user_id, "error": str(e)},
                )
                continue
            if memory is not None:
                accepted_embeddings.append(embedding)
                saved += 1

        logger.info(
            "Memory extraction persisted",
            extra={"user_id": user_id, "candidates": len(candidates), "saved": saved},
        )
        return saved
