"""Tests for the embedding client."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from strategist.core.embeddings import EmbeddingClient, cosine_similarity
from strategist.core.exceptions import StrategistError


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


@pytest.mark.asyncio
async def test_embed_retries_once_then_succeeds() -> None:
    response = MagicMock()
    response.data = [{"embedding": [1, 2, 3]}]
    mock_aembedding = AsyncMock(side_effect=[RuntimeError("connection reset"), response])

    with (
        patch("strategist.core.embeddings.aembedding", mock_aembedding),
        patch("strategist.core.embeddings.embedding_circuit_breaker") as mock_cb,
        patch("strategist.core.embeddings.asyncio.sleep", AsyncMock()),
    ):
        vector = await EmbeddingClient(model="text-embedding-3-small").embed("x" * 9000)

    assert vector == [1.0, 2.0, 3.0]
    assert mock_aembedding.await_count == 2
    assert len(mock_aembedding.call_args.kwargs["input"][0]) == 8000
    mock_cb.record_failure.assert_not_called()


@pytest.mark.asyncio
async def test_embed_raises_after_retries() -> None:
    mock_aembedding = AsyncMock(side_effect=RuntimeError("boom"))

    with (
        patch("strategist.core.embeddings.aembedding", mock_aembedding),
        patch("strategist.core.embeddings.embedding_circuit_breaker") as mock_cb,
        patch("strategist.core.embeddings.asyncio.sleep", AsyncMock()),
        pytest.raises(StrategistError),
    ):
        await EmbeddingClient(retries=1).embed("hello")

    assert mock_aembedding.await_count == 2
    mock_cb.record_failure.assert_called_once()
