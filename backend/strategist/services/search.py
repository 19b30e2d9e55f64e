"""Web search through Perplexity (general web) and Grok (X/Twitter live search)."""

import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

import httpx

from strategist.core.circuit_breaker import search_circuit_breaker
from strategist.core.config import settings
from strategist.core.exceptions import (
    ExternalServiceError,
    ProviderTimeoutError,
    classify_provider_error,
)

logger = logging.getLogger(__name__)

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"
GROK_BASE_URL = "https://api.x.ai/v1"

DEFAULT_CONTEXT_PROMPT = "Provide a concise summary of the most relevant and current information."
SOCIAL_CONTEXT_PROMPT = (
    "Provide a concise summary of the most recent and relevant social media "
    "discussions and information."
)

_GROK_CACHE_TTL_SECONDS = 120
_GROK_CACHE_SIZE = 100
_URL_PATTERN = re.compile(r"https?://[^\s)\]]+")


@dataclass(frozen=True)
class SearchResult:
    """Search summary text plus the sources it cites."""

    context: str
    citations: list[str] = field(default_factory=list)


class WebSearchService:
    """Runs web searches for chat context.

    Perplexity is the default provider. Grok is used for X/Twitter and live
    social discussions; its results are cached briefly because the same
    query tends to repeat within a conversation.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._timeout = timeout_seconds or settings.PROVIDER_TIMEOUT_SECONDS
        self._grok_cache: OrderedDict[str, tuple[float, SearchResult]] = OrderedDict()

    @property
    def is_configured(self) -> bool:
        return settings.search_configured

    async def search(
        self,
        query: str,
        recency: str = "week",
        domains: list[str] | None = None,
        service: str = "perplexity",
        social_handles: list[str] | None = None,
        context_prompt: str | None = None,
    ) -> SearchResult:
        """Search the web and summarize the results for the chat prompt.

        Args:
            query: Search query.
            recency: Recency filter (hour, day, week, month, year).
            domains: Restrict results to these domains.
            service: "perplexity" or "grok".
            social_handles: X handles to focus a Grok search on.
            context_prompt: Instruction for how the results are summarized.

        Returns:
            SearchResult with summary text and citations.

        Raises:
            StrategistError: On provider failure, timeout or open circuit.
        """
        if service == "grok" and settings.grok_configured:
            return await self._search_grok(query, social_handles or [], context_prompt)
        return await self._search_perplexity(query, recency, domains or [], context_prompt)

    async def search_for_chat_context(
        self,
        query: str,
        context_prompt: str = DEFAULT_CONTEXT_PROMPT,
        recency: str = "week",
        domains: list[str] | None = None,
    ) -> SearchResult:
        return await self.search(
            query, recency=recency, domains=domains, context_prompt=context_prompt
        )

    async def _post(self, url: str, api_key: str, body: dict[str, Any], service: str) -> dict[str, Any]:
        search_circuit_breaker.check()
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url,
                    json=body,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            search_circuit_breaker.record_failure()
            logger.warning(
                "Search provider returned error status",
                extra={"service": service, "status_code": e.response.status_code},
            )
            if e.response.status_code == 429:
                raise classify_provider_error(e, service) from e
            raise ExternalServiceError(service, f"{service} search failed") from e
        except httpx.TimeoutException as e:
            search_circuit_breaker.record_failure()
            raise ProviderTimeoutError(service, self._timeout) from e
        except Exception as e:
            search_circuit_breaker.record_failure()
            raise classify_provider_error(e, service) from e

        search_circuit_breaker.record_success()
        logger.info(
            "Web search completed",
            extra={"service": service, "duration_ms": round((time.perf_counter() - start) * 1000)},
        )
        return data

    async def _search_perplexity(
        self,
        query: str,
        recency: str,
        domains: list[str],
        context_prompt: str | None,
    ) -> SearchResult:
        api_key = settings.PERPLEXITY_API_KEY.get_secret_value()
        if not api_key:
            raise ExternalServiceError("Perplexity", "Web search is not configured")

        body: dict[str, Any] = {
            "model": settings.PERPLEXITY_MODEL,
            "messages": [
                {"role": "system", "content": context_prompt or DEFAULT_CONTEXT_PROMPT},
                {"role": "user", "content": query},
            ],
            "temperature": 0.1,
            "top_p": 0.9,
            "search_recency_filter": recency,
            "return_images": False,
            "return_related_questions": False,
            "stream": False,
        }
        if domains:
            body["search_domain_filter"] = domains

        data = await self._post(f"{PERPLEXITY_BASE_URL}/chat/completions", api_key, body, "Perplexity")
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return SearchResult(context=content, citations=list(data.get("citations") or []))

    async def _search_grok(
        self,
        query: str,
        social_handles: list[str],
        context_prompt: str | None,
    ) -> SearchResult:
        cache_key = f"{query.strip().lower()}|{','.join(sorted(social_handles))}"
        cached = self._grok_cache.get(cache_key)
        if cached and time.monotonic() - cached[0] < _GROK_CACHE_TTL_SECONDS:
            self._grok_cache.move_to_end(cache_key)
            logger.debug("Grok search cache hit", extra={"query": query})
            return cached[1]

        source: dict[str, Any] = {"type": "x"}
        if social_handles:
            source["included_x_handles"] = social_handles
        body = {
            "model": settings.GROK_MODEL,
            "messages": [
                {"role": "system", "content": context_prompt or SOCIAL_CONTEXT_PROMPT},
                {"role": "user", "content": query},
            ],
            "temperature": 0.2,
            "search_parameters": {"mode": "on", "sources": [source], "return_citations": True},
        }
        data = await self._post(
            f"{GROK_BASE_URL}/chat/completions",
            settings.GROK_API_KEY.get_secret_value(),
            body,
            "Grok",
        )
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        citations = list(data.get("citations") or [])
        if not citations:
            citations = list(dict.fromkeys(_URL_PATTERN.findall(content)))

        result = SearchResult(context=content, citations=citations)
        self._grok_cache[cache_key] = (time.monotonic(), result)
        if len(self._grok_cache) > _GROK_CACHE_SIZE:
            self._grok_cache.popitem(last=False)
        return result
