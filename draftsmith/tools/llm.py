"""Text-generation providers behind a single async interface.

Two providers are available:

* ``GeminiTextGenerator``: HTTP ``generateContent`` endpoint called with
  httpx; the API key travels in the ``X-goog-api-key`` header.
* ``OllamaTextGenerator``: a local model through ``langchain_ollama``.

Both raise the draftsmith error taxonomy (``RateLimited``,
``GenerationTimeout``, ``ProviderUnavailable``, ``MalformedResponse``) so
callers never see provider-specific exceptions.
"""

from typing import Optional, Protocol

import httpx
import structlog
from langchain_core.messages import HumanMessage
from langchain_ollama import ChatOllama

from draftsmith.app.config import Settings
from draftsmith.errors import (
    GenerationTimeout,
    MalformedResponse,
    ProviderUnavailable,
    RateLimited,
)

logger = structlog.get_logger(__name__)


class TextGenerator(Protocol):
    """Anything that turns one free-text prompt into one completion."""

    async def generate(self, prompt: str) -> str:
        ...


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    if response.status_code == 429:
        raise RateLimited(f"{provider} rate limited the request")
    if response.status_code >= 400:
        raise ProviderUnavailable(
            f"{provider} returned HTTP {response.status_code}: {response.text[:200]}"
        )


class GeminiTextGenerator:
    """Gemini-style ``generateContent`` client.

    Args:
        api_key: Key sent in the ``X-goog-api-key`` header.
        endpoint: Full ``...:generateContent`` URL.
        timeout: Transport timeout in seconds.
        client: Optional shared ``httpx.AsyncClient`` (tests inject one with
            a ``MockTransport``).
    """

    provider = "gemini"

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client

    async def generate(self, prompt: str) -> str:
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        headers = {"Content-Type": "application/json", "X-goog-api-key": self.api_key}

        try:
            if self._client is not None:
                response = await self._client.post(self.endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise GenerationTimeout(f"gemini request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"gemini request failed: {e}") from e

        _raise_for_status(response, self.provider)

        try:
            data = response.json()
            return data["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"unexpected gemini payload: {e}") from e


class OllamaTextGenerator:
    """Local model via langchain-ollama."""

    provider = "ollama"

    def __init__(self, model: str, base_url: str) -> None:
        self.llm = ChatOllama(model=model, base_url=base_url)

    async def generate(self, prompt: str) -> str:
        try:
            response = await self.llm.ainvoke([HumanMessage(content=prompt)])
        except httpx.TimeoutException as e:
            raise GenerationTimeout(f"ollama request timed out: {e}") from e
        except Exception as e:
            # ollama.ResponseError carries the HTTP status of the failed call
            if getattr(e, "status_code", None) == 429:
                raise RateLimited(f"ollama rate limited the request: {e}") from e
            raise ProviderUnavailable(f"ollama request failed: {e}") from e

        content = response.content if hasattr(response, "content") else str(response)
        return content if isinstance(content, str) else str(content)


def build_text_generator(settings: Settings) -> TextGenerator:
    """Create the text generator selected by ``settings.text_provider``."""
    if settings.text_provider == "ollama":
        logger.info("llm.provider_selected", provider="ollama", model=settings.ollama_model)
        return OllamaTextGenerator(settings.ollama_model, settings.ollama_base_url)

    if not settings.gemini_api_key:
        logger.warning("llm.missing_api_key", provider="gemini")
    logger.info("llm.provider_selected", provider="gemini", model=settings.gemini_model)
    return GeminiTextGenerator(
        api_key=settings.gemini_api_key,
        endpoint=settings.gemini_endpoint,
        timeout=settings.text_timeout,
    )
