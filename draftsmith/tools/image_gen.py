"""
tools/image_gen.py
------------------
Image generation through two interchangeable HTTP providers.

Provides:
  - HttpImageProvider : one OpenAI-images-style endpoint returning a URL.
  - ImageGenerator    : tries providers in policy order and falls back to the
                        other one on failure.

Provider policy:
  - The *primary* provider may brand its output (watermark risk).
  - The *clean* provider never adds a watermark.
  - When ``no_watermark`` is requested the clean provider is tried first and
    the primary only on its failure; otherwise the primary goes first.
"""

from typing import List, Optional

import httpx
import structlog

from draftsmith.app.config import Settings
from draftsmith.errors import (
    DraftsmithError,
    GenerationTimeout,
    MalformedResponse,
    ProviderUnavailable,
    RateLimited,
)

logger = structlog.get_logger(__name__)

PROMPT_PREVIEW_LENGTH = 60


class HttpImageProvider:
    """Single image endpoint: ``POST {model, prompt, size, response_format}``.

    Args:
        name: Provider label used in logs.
        endpoint: Image generation URL.
        api_key: Bearer token.
        model: Model identifier sent in the body.
        watermark: Value of the ``watermark`` flag sent to the provider.
        timeout: Transport timeout in seconds.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        api_key: str,
        model: str = "",
        watermark: bool = False,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = name
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.watermark = watermark
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)

    async def generate(self, prompt: str, size: str = "1024x1024") -> str:
        """Generate one image and return its URL."""
        if not self.configured:
            raise ProviderUnavailable(f"image provider '{self.name}' has no endpoint configured")

        payload = {
            "model": self.model,
            "prompt": prompt,
            "size": size,
            "response_format": "url",
            "watermark": self.watermark,
        }
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(self.endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise GenerationTimeout(f"{self.name} image request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{self.name} image request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimited(f"{self.name} rate limited the image request")
        if response.status_code >= 400:
            raise ProviderUnavailable(f"{self.name} returned HTTP {response.status_code}")

        try:
            url = response.json()["data"][0]["url"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"unexpected {self.name} payload: {e}") from e
        if not url:
            raise MalformedResponse(f"{self.name} returned an empty image url")
        return url


class ImageGenerator:
    """Primary/clean provider pair with watermark-aware ordering."""

    def __init__(
        self,
        primary: HttpImageProvider,
        clean: HttpImageProvider,
        size: str = "1024x1024",
        no_watermark: bool = False,
    ) -> None:
        self.primary = primary
        self.clean = clean
        self.size = size
        self.no_watermark = no_watermark

    def provider_order(self, no_watermark: Optional[bool] = None) -> List[HttpImageProvider]:
        """Providers in the order they should be tried."""
        prefer_clean = self.no_watermark if no_watermark is None else no_watermark
        return [self.clean, self.primary] if prefer_clean else [self.primary, self.clean]

    async def generate(
        self,
        prompt: str,
        size: Optional[str] = None,
        no_watermark: Optional[bool] = None,
    ) -> str:
        """Generate an image URL, falling back to the other provider on failure.

        Raises:
            ProviderUnavailable: when both providers fail.
        """
        preview = prompt[:PROMPT_PREVIEW_LENGTH] + ("…" if len(prompt) > PROMPT_PREVIEW_LENGTH else "")
        log = logger.bind(prompt_preview=preview)
        errors: List[str] = []

        for provider in self.provider_order(no_watermark):
            try:
                url = await provider.generate(prompt, size or self.size)
            except DraftsmithError as e:
                log.warning(
                    "image_gen.provider_failed",
                    provider=provider.name,
                    error=str(e),
                    error_type=e.__class__.__name__,
                )
                errors.append(f"{provider.name}: {e}")
                continue

            log.info("image_gen.completed", provider=provider.name)
            return url

        log.error("image_gen.all_providers_failed", errors=errors)
        raise ProviderUnavailable("all image providers failed: " + "; ".join(errors), kind="image")


def build_image_generator(settings: Settings) -> ImageGenerator:
    """Create the provider pair from settings."""
    primary = HttpImageProvider(
        name="primary",
        endpoint=settings.image_endpoint,
        api_key=settings.image_api_key,
        model=settings.image_model,
        watermark=True,
        timeout=settings.image_timeout,
    )
    clean = HttpImageProvider(
        name="clean",
        endpoint=settings.image_fallback_endpoint,
        api_key=settings.image_fallback_api_key,
        model=settings.image_fallback_model,
        watermark=False,
        timeout=settings.image_timeout,
    )
    return ImageGenerator(primary, clean, size=settings.image_size, no_watermark=settings.no_watermark)
