"""LLM client routed through LiteLLM.

All chat-completion calls (intent decisions, response streaming, memory and
profile extraction, blog analysis, titles) go through :class:`LLMClient` so
that timeouts, the circuit breaker and error classification are applied
uniformly.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from litellm import acompletion

from strategist.core.circuit_breaker import llm_circuit_breaker
from strategist.core.config import settings
from strategist.core.exceptions import ProviderTimeoutError, classify_provider_error
from strategist.core.json_utils import extract_json

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2048


def _prepend_system_message(
    system_prompt: str | None,
    messages: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Convert a separate system prompt into a leading ``system`` message."""
    if not system_prompt:
        return list(messages)
    return [{"role": "system", "content": system_prompt}, *messages]


class LLMClient:
    """Async client for chat-completion calls.

    Args:
        model: LiteLLM model string; defaults to the configured chat model.
        timeout_seconds: Deadline for non-streaming calls and for the first
            streamed chunk.
    """

    def __init__(
        self,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._model = model or settings.CHAT_MODEL
        self._api_key = settings.LLM_API_KEY.get_secret_value() or None
        self._timeout = timeout_seconds or settings.PROVIDER_TIMEOUT_SECONDS

    @property
    def model(self) -> str:
        return self._model

    async def generate_response(
        self,
        messages: list[dict[str, Any]],
        system_prompt: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.7,
        response_format: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> str:
        """Generate a complete response.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            system_prompt: Optional system prompt for context.
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature (0-1).
            response_format: Optional provider response format (e.g. JSON mode).
            model: Per-call model override.

        Returns:
            Generated text response.

        Raises:
            StrategistError: Classified provider failure (timeout, rate limit,
                unavailable).
        """
        llm_messages = _prepend_system_message(system_prompt, messages)
        kwargs: dict[str, Any] = {
            "model": model or self._model,
            "messages": llm_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "api_key": self._api_key,
        }
        if response_format is not None:
            kwargs["response_format"] = response_format

        logger.debug(
            "Calling LLM via LiteLLM",
            extra={
                "model": self._model,
                "message_count": len(messages),
                "has_system": system_prompt is not None,
            },
        )

        llm_circuit_breaker.check()
        start = time.time()
        try:
            response = await asyncio.wait_for(acompletion(**kwargs), timeout=self._timeout)
        except (asyncio.TimeoutError, TimeoutError) as exc:
            llm_circuit_breaker.record_failure()
            raise ProviderTimeoutError("AI", self._timeout) from exc
        except Exception as exc:
            llm_circuit_breaker.record_failure()
            raise classify_provider_error(exc) from exc
        llm_circuit_breaker.record_success()

        text_content = str(response.choices[0].message.content or "")
        logger.debug(
            "LLM response received",
            extra={
                "response_length": len(text_content),
                "latency_ms": int((time.time() - start) * 1000),
            },
        )
        return text_content

    async def generate_json(
        self,
        messages: list[dict[str, Any]],
        system_prompt: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.2,
        model: str | None = None,
    ) -> Any:
        """Generate a response in JSON mode and parse it.

        Returns:
            The parsed JSON value.

        Raises:
            ValueError: If the response holds no parseable JSON.
            StrategistError: Classified provider failure.
        """
        text = await self.generate_response(
            messages,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            response_format={"type": "json_object"},
            model=model,
        )
        return extract_json(text)

    async def stream_response(
        self,
        messages: list[dict[str, Any]],
        system_prompt: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Stream a response token by token.

        Yields:
            Text chunks as they arrive from the provider.

        Raises:
            StrategistError: Classified provider failure, raised either before
                the first chunk or mid-stream.
        """
        llm_messages = _prepend_system_message(system_prompt, messages)

        logger.debug(
            "Streaming LLM response via LiteLLM",
            extra={
                "model": self._model,
                "message_count": len(messages),
                "has_system": system_prompt is not None,
            },
        )

        llm_circuit_breaker.check()
        try:
            response = await asyncio.wait_for(
                acompletion(
                    model=self._model,
                    messages=llm_messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    stream=True,
                    api_key=self._api_key,
                ),
                timeout=self._timeout,
            )
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta:
                    delta_content = chunk.choices[0].delta.content
                    if delta_content:
                        yield delta_content
        except (asyncio.TimeoutError, TimeoutError) as exc:
            llm_circuit_breaker.record_failure()
            raise ProviderTimeoutError("AI", self._timeout) from exc
        except Exception as exc:
            llm_circuit_breaker.record_failure()
            raise classify_provider_error(exc) from exc

        llm_circuit_breaker.record_success()
