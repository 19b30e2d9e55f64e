"""Text embeddings for semantic memory search."""

import asyncio
import logging
import math
from collections.abc import Sequence

from litellm import aembedding

from strategist.core.circuit_breaker import embedding_circuit_breaker
from strategist.core.config import settings
from strategist.core.exceptions import classify_provider_error

logger = logging.getLogger(__name__)

_MAX_INPUT_CHARS = 8000
_RETRY_DELAY_SECONDS = 0.5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty or zero."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingClient:
    """Produces embedding vectors through LiteLLM.

    Args:
        model: LiteLLM embedding model string.
        retries: Extra attempts after a failed call.
    """

    def __init__(self, model: str | None = None, retries: int = 1) -> None:
        self._model = model or settings.EMBEDDING_MODEL
        key = settings.EMBEDDING_API_KEY.get_secret_value() or settings.LLM_API_KEY.get_secret_value()
        self._api_key = key or None
        self._retries = retries

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text: Text to embed; truncated to the provider input limit.

        Returns:
            The embedding vector.

        Raises:
            StrategistError: Classified provider failure after all retries.
        """
        embedding_circuit_breaker.check()
        last_error: Exception | None = None
        for attempt in range(self._retries + 1):
            try:
                response = await aembedding(
                    model=self._model,
                    input=[text[:_MAX_INPUT_CHARS]],
                    api_key=self._api_key,
                    timeout=settings.PROVIDER_TIMEOUT_SECONDS,
                )
                item = response.data[0]
                vector = item["embedding"] if isinstance(item, dict) else item.embedding
                embedding_circuit_breaker.record_success()
                return [float(v) for v in vector]
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Embedding call failed",
                    extra={"attempt": attempt + 1, "error": str(exc)},
                )
                if attempt < self._retries:
                    await asyncio.sleep(_RETRY_DELAY_SECONDS)

        embedding_circuit_breaker.record_failure()
        assert last_error is not None
        raise classify_provider_error(last_error, "embedding") from last_error
