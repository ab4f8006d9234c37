"""Provider tests with httpx.MockTransport (draftsmith.tools.llm / image_gen / search)."""

import json
from typing import List

import httpx
import pytest

from draftsmith.errors import (
    GenerationTimeout,
    MalformedResponse,
    ProviderUnavailable,
    RateLimited,
)
from draftsmith.tools.image_gen import HttpImageProvider, ImageGenerator
from draftsmith.tools.llm import GeminiTextGenerator
from draftsmith.tools.search import HttpSearchClient

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def respond(status: int, payload=None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload if payload is not None else {})

    return handler


def image_provider(name: str, handler, watermark: bool = False) -> HttpImageProvider:
    return HttpImageProvider(
        name=name,
        endpoint=f"https://{name}.example/v1/images",
        api_key="key",
        model="img-1",
        watermark=watermark,
        client=client_for(handler),
    )


# -----------------------------------------------------------------------------
# Text generation
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gemini_success_sends_key_header() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "hi"}]}}]})

    generator = GeminiTextGenerator("secret", "https://gemini.example/generate", client=client_for(handler))

    assert await generator.generate("hello") == "hi"
    assert seen[0].headers["X-goog-api-key"] == "secret"
    assert json.loads(seen[0].content) == {"contents": [{"parts": [{"text": "hello"}]}]}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, payload, error",
    [
        (429, {}, RateLimited),
        (503, {}, ProviderUnavailable),
        (200, {"candidates": []}, MalformedResponse),
    ],
)
async def test_gemini_error_mapping(status: int, payload, error) -> None:
    generator = GeminiTextGenerator("k", "https://gemini.example/generate", client=client_for(respond(status, payload)))

    with pytest.raises(error):
        await generator.generate("hello")


@pytest.mark.asyncio
async def test_gemini_transport_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    generator = GeminiTextGenerator("k", "https://gemini.example/generate", client=client_for(handler))

    with pytest.raises(GenerationTimeout):
        await generator.generate("hello")


# -----------------------------------------------------------------------------
# Image generation
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_image_provider_returns_url_and_sends_watermark_flag() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"data": [{"url": "https://cdn.example/a.png"}]})

    provider = image_provider("primary", handler, watermark=True)

    assert await provider.generate("a loaf", "512x512") == "https://cdn.example/a.png"
    assert bodies[0]["watermark"] is True
    assert bodies[0]["size"] == "512x512"
    assert bodies[0]["response_format"] == "url"


@pytest.mark.asyncio
async def test_image_generator_order_follows_no_watermark() -> None:
    calls: List[str] = []

    def recording(name: str):
        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(name)
            return httpx.Response(200, json={"data": [{"url": f"https://{name}.example/x.png"}]})

        return handler

    generator = ImageGenerator(
        image_provider("primary", recording("primary"), watermark=True),
        image_provider("clean", recording("clean")),
    )

    assert await generator.generate("p", no_watermark=True) == "https://clean.example/x.png"
    assert await generator.generate("p") == "https://primary.example/x.png"
    assert calls == ["clean", "primary"]


@pytest.mark.asyncio
async def test_image_generator_falls_back_then_fails() -> None:
    generator = ImageGenerator(
        image_provider("primary", respond(429), watermark=True),
        image_provider("clean", respond(200, {"data": [{"url": "https://clean.example/y.png"}]})),
    )
    assert await generator.generate("p") == "https://clean.example/y.png"

    broken = ImageGenerator(
        image_provider("primary", respond(500), watermark=True),
        image_provider("clean", respond(200, {"data": []})),
    )
    with pytest.raises(ProviderUnavailable):
        await broken.generate("p")


@pytest.mark.asyncio
async def test_unconfigured_provider_is_skipped() -> None:
    generator = ImageGenerator(
        HttpImageProvider(name="primary", endpoint="", api_key=""),
        image_provider("clean", respond(200, {"data": [{"url": "https://clean.example/z.png"}]})),
    )

    assert await generator.generate("p") == "https://clean.example/z.png"


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_search_returns_answer() -> None:
    client = HttpSearchClient(
        "https://search.example", "k", client=client_for(respond(200, {"answer": "Fresh facts."}))
    )

    assert await client.search("bread") == "Fresh facts."


@pytest.mark.asyncio
@pytest.mark.parametrize("status, payload", [(429, {}), (500, {}), (200, {"answer": ""})])
async def test_search_degrades_to_mock(status: int, payload) -> None:
    client = HttpSearchClient("https://search.example", "k", client=client_for(respond(status, payload)))

    insights = await client.search("urban beekeeping")

    assert "urban beekeeping" in insights


@pytest.mark.asyncio
async def test_search_without_endpoint_is_mock() -> None:
    assert "tea" in await HttpSearchClient("").search("tea")
