"""Tests for the LiteLLM-backed LLM client."""

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from strategist.core.exceptions import ProviderTimeoutError, RateLimitError
from strategist.core.llm import LLMClient


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


async def _chunks(*contents: str | None) -> AsyncIterator[Any]:
    for content in contents:
        chunk = MagicMock()
        chunk.choices = [MagicMock(delta=MagicMock(content=content))]
        yield chunk


@pytest.mark.asyncio
async def test_generate_response_prepends_system_prompt() -> None:
    mock_acompletion = AsyncMock(return_value=_completion("Hello there"))

    with (
        patch("strategist.core.llm.acompletion", mock_acompletion),
        patch("strategist.core.llm.llm_circuit_breaker") as mock_cb,
    ):
        client = LLMClient(model="openai/gpt-4o-mini")
        result = await client.generate_response(
            [{"role": "user", "content": "Hi"}], system_prompt="Be brief."
        )

    assert result == "Hello there"
    kwargs = mock_acompletion.call_args.kwargs
    assert kwargs["model"] == "openai/gpt-4o-mini"
    assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
    assert "response_format" not in kwargs
    mock_cb.record_success.assert_called_once()


@pytest.mark.asyncio
async def test_generate_json_parses_fenced_output() -> None:
    mock_acompletion = AsyncMock(return_value=_completion('```json\n{"shouldSearch": true}\n```'))

    with (
        patch("strategist.core.llm.acompletion", mock_acompletion),
        patch("strategist.core.llm.llm_circuit_breaker"),
    ):
        result = await LLMClient().generate_json([{"role": "user", "content": "?"}])

    assert result == {"shouldSearch": True}
    assert mock_acompletion.call_args.kwargs["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_timeout_is_classified() -> None:
    with (
        patch("strategist.core.llm.acompletion", AsyncMock(side_effect=asyncio.TimeoutError())),
        patch("strategist.core.llm.llm_circuit_breaker") as mock_cb,
        pytest.raises(ProviderTimeoutError),
    ):
        await LLMClient(timeout_seconds=1).generate_response([{"role": "user", "content": "Hi"}])

    mock_cb.record_failure.assert_called_once()


@pytest.mark.asyncio
async def test_rate_limit_is_classified() -> None:
    error = RuntimeError("Rate limit exceeded for model")

    with (
        patch("strategist.core.llm.acompletion", AsyncMock(side_effect=error)),
        patch("strategist.core.llm.llm_circuit_breaker"),
        pytest.raises(RateLimitError),
    ):
        await LLMClient().generate_response([{"role": "user", "content": "Hi"}])


@pytest.mark.asyncio
async def test_stream_response_yields_deltas() -> None:
    mock_acompletion = AsyncMock(return_value=_chunks("Hel", None, "lo", ""))

    with (
        patch("strategist.core.llm.acompletion", mock_acompletion),
        patch("strategist.core.llm.llm_circuit_breaker") as mock_cb,
    ):
        tokens = [t async for t in LLMClient().stream_response([{"role": "user", "content": "Hi"}])]

    assert tokens == ["Hel", "lo"]
    assert mock_acompletion.call_args.kwargs["stream"] is True
    mock_cb.record_success.assert_called_once()
