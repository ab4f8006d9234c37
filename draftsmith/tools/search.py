"""
tools/search.py
===============
External search used to enrich the full-article prompt with fresh insights.

The public surface is a single coroutine that never raises:

    insights = await client.search("remote work productivity")

When the search endpoint is missing, rate limited, slow, or returns garbage,
a topic-matched mock answer is synthesized instead so the writing workflow
is never blocked by search availability.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx
import structlog

from draftsmith.app.config import Settings

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Degraded-mode answer
# ---------------------------------------------------------------------------


def mock_insights(query: str) -> str:
    """Deterministic stand-in insights that mention the query topic."""
    topic = " ".join(query.split()) or "the topic"
    return (
        f"Background notes on {topic} (offline summary, live search unavailable):\n"
        f"- Readers usually care about why {topic} matters right now and what changed recently.\n"
        f"- Concrete examples and first-hand experience make claims about {topic} more convincing.\n"
        f"- Common misconceptions about {topic} are a good hook for the opening section.\n"
        f"- Close with practical, actionable advice related to {topic}."
    )


# ---------------------------------------------------------------------------
# HTTP backend
# ---------------------------------------------------------------------------


class HttpSearchClient:
    """Perplexity-style answer endpoint: ``POST {query, model}``.

    Args:
        endpoint: Search URL; empty means search is disabled (mock only).
        api_key: Bearer token.
        model: Model name sent with the query.
        timeout: Overall bound in seconds.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        model: str = "sonar",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    async def _post(self, query: str) -> httpx.Response:
        payload = {"query": query, "model": self.model}
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            return await self._client.post(self.endpoint, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, json=payload, headers=headers)

    @staticmethod
    def _extract_answer(response: httpx.Response) -> str:
        data = response.json()
        if isinstance(data, dict):
            for key in ("answer", "result", "response"):
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return ""

    async def search(self, query: str) -> str:
        """Return free-text insights for ``query``; never raises."""
        log = logger.bind(query=query)

        if not query or not query.strip():
            log.debug("search.empty_query")
            return mock_insights(query or "")

        if not self.endpoint:
            log.info("search.disabled", reason="no endpoint configured")
            return mock_insights(query)

        try:
            response = await asyncio.wait_for(self._post(query), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning("search.timeout", timeout=self.timeout)
            return mock_insights(query)
        except Exception as e:
            log.warning("search.error", error=str(e), error_type=e.__class__.__name__)
            return mock_insights(query)

        if response.status_code == 429:
            log.warning("search.rate_limited", fallback="mock")
            return mock_insights(query)
        if response.status_code >= 400:
            log.warning("search.http_error", status=response.status_code, fallback="mock")
            return mock_insights(query)

        try:
            answer = self._extract_answer(response)
        except ValueError as e:
            log.warning("search.invalid_payload", error=str(e), fallback="mock")
            return mock_insights(query)

        if not answer:
            log.warning("search.empty_answer", fallback="mock")
            return mock_insights(query)

        log.info("search.success", answer_length=len(answer))
        return answer


def build_search_client(settings: Settings) -> HttpSearchClient:
    return HttpSearchClient(
        endpoint=settings.search_endpoint,
        api_key=settings.search_api_key,
        model=settings.search_model,
        timeout=settings.search_timeout,
    )
