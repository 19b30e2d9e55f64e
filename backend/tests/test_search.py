"""Tests for WebSearchService provider routing and error mapping."""

from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from strategist.core.circuit_breaker import CircuitBreakerOpen, search_circuit_breaker
from strategist.core.config import Settings
from strategist.core.exceptions import ExternalServiceError, ProviderTimeoutError, StrategistError
from strategist.services.search import GROK_BASE_URL, PERPLEXITY_BASE_URL, WebSearchService


@pytest.fixture(autouse=True)
def _closed_circuit() -> Iterator[None]:
    search_circuit_breaker.record_success()
    yield
    search_circuit_breaker.record_success()


def _settings(**overrides: Any) -> Settings:
    values = {"PERPLEXITY_API_KEY": "pk-test", "GROK_API_KEY": "gk-test", **overrides}
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


def _http_client(payload: dict[str, Any] | None = None, error: Exception | None = None) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload or {}
    if error is not None:
        response.raise_for_status.side_effect = error
    client = MagicMock()
    client.post = AsyncMock(return_value=response)
    client_cls = MagicMock()
    client_cls.return_value.__aenter__.return_value = client
    return client_cls


def _completion(content: str, citations: list[str] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"choices": [{"message": {"content": content}}]}
    if citations is not None:
        payload["citations"] = citations
    return payload


@pytest.mark.asyncio
async def test_perplexity_search() -> None:
    client_cls = _http_client(_completion("Reels are up.", ["https://a.example"]))

    with (
        patch("strategist.services.search.settings", _settings()),
        patch("strategist.services.search.httpx.AsyncClient", client_cls),
    ):
        result = await WebSearchService().search(
            "reel trends", recency="day", domains=["instagram.com"]
        )

    assert result.context == "Reels are up."
    assert result.citations == ["https://a.example"]
    post = client_cls.return_value.__aenter__.return_value.post
    assert post.await_args.args[0] == f"{PERPLEXITY_BASE_URL}/chat/completions"
    body = post.await_args.kwargs["json"]
    assert body["search_recency_filter"] == "day"
    assert body["search_domain_filter"] == ["instagram.com"]
    assert post.await_args.kwargs["headers"]["Authorization"] == "Bearer pk-test"


@pytest.mark.asyncio
async def test_unconfigured_perplexity_raises() -> None:
    with patch("strategist.services.search.settings", _settings(PERPLEXITY_API_KEY="")):
        service = WebSearchService()
        assert not service.is_configured
        with pytest.raises(ExternalServiceError):
            await service.search("anything")


@pytest.mark.asyncio
async def test_grok_search_is_cached_and_extracts_citations() -> None:
    client_cls = _http_client(_completion("See https://x.com/post/1 and https://x.com/post/1 again"))

    with (
        patch("strategist.services.search.settings", _settings()),
        patch("strategist.services.search.httpx.AsyncClient", client_cls),
    ):
        service = WebSearchService()
        first = await service.search("Launch buzz", service="grok", social_handles=["brand"])
        second = await service.search("launch buzz ", service="grok", social_handles=["brand"])

    post = client_cls.return_value.__aenter__.return_value.post
    assert post.await_count == 1
    assert post.await_args.args[0] == f"{GROK_BASE_URL}/chat/completions"
    sources = post.await_args.kwargs["json"]["search_parameters"]["sources"]
    assert sources == [{"type": "x", "included_x_handles": ["brand"]}]
    assert first.citations == ["https://x.com/post/1"]
    assert second is first


@pytest.mark.asyncio
async def test_grok_falls_back_to_perplexity_when_unconfigured() -> None:
    client_cls = _http_client(_completion("ok", []))

    with (
        patch("strategist.services.search.settings", _settings(GROK_API_KEY="")),
        patch("strategist.services.search.httpx.AsyncClient", client_cls),
    ):
        await WebSearchService().search("buzz", service="grok")

    post = client_cls.return_value.__aenter__.return_value.post
    assert post.await_args.args[0].startswith(PERPLEXITY_BASE_URL)


@pytest.mark.asyncio
async def test_error_status_maps_to_external_service_error() -> None:
    request = httpx.Request("POST", f"{PERPLEXITY_BASE_URL}/chat/completions")
    error = httpx.HTTPStatusError("server error", request=request, response=httpx.Response(500, request=request))
    client_cls = _http_client(error=error)

    with (
        patch("strategist.services.search.settings", _settings()),
        patch("strategist.services.search.httpx.AsyncClient", client_cls),
        pytest.raises(ExternalServiceError) as exc_info,
    ):
        await WebSearchService().search("q")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_timeout_maps_to_provider_timeout() -> None:
    client_cls = _http_client()
    client_cls.return_value.__aenter__.return_value.post.side_effect = httpx.ReadTimeout("slow")

    with (
        patch("strategist.services.search.settings", _settings()),
        patch("strategist.services.search.httpx.AsyncClient", client_cls),
        pytest.raises(ProviderTimeoutError),
    ):
        await WebSearchService(timeout_seconds=5).search("q")


@pytest.mark.asyncio
async def test_repeated_failures_open_the_circuit() -> None:
    client_cls = _http_client()
    client_cls.return_value.__aenter__.return_value.post.side_effect = httpx.ConnectError("refused")

    with (
        patch("strategist.services.search.settings", _settings()),
        patch("strategist.services.search.httpx.AsyncClient", client_cls),
    ):
        service = WebSearchService()
        for _ in range(search_circuit_breaker.failure_threshold):
            with pytest.raises(StrategistError):
                await service.search("q")
        with pytest.raises(CircuitBreakerOpen):
            await service.search("q")
