"""Shared fixtures: fast settings, scripted generators and a temp knowledge base."""

import asyncio
from typing import Iterable, List, Optional

import pytest
from pytest_mock import MockerFixture

from draftsmith.agents.pipeline import GenerationPipeline
from draftsmith.app.config import Settings
from draftsmith.graph.state import KnowledgeArticle, StyleElement
from draftsmith.memory.knowledge_base import STORAGE_KEY, KnowledgeBase
from draftsmith.memory.storage import JsonStorage

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def make_article(
    article_id: str,
    title: str,
    content: str = "",
    descriptors: Iterable[str] = (),
    category: str = "memory",
    confirmed: bool = True,
) -> KnowledgeArticle:
    """Build a knowledge article whose style elements all share ``confirmed``."""
    return KnowledgeArticle(
        id=article_id,
        title=title,
        content=content or f"{title} body text about everyday life and small lessons.",
        category=category,
        style_elements=[
            StyleElement(article_id=article_id, description=text, confirmed=confirmed)
            for text in descriptors
        ],
    )


def seed_knowledge_base(storage: JsonStorage, articles: List[KnowledgeArticle]) -> KnowledgeBase:
    storage.save(STORAGE_KEY, [article.model_dump(mode="json") for article in articles])
    return KnowledgeBase(storage).load()


class GatedGenerator:
    """Text generator that blocks until ``release`` is called."""

    def __init__(self, response: str = "[]") -> None:
        self.response = response
        self.started = asyncio.Event()
        self._gate = asyncio.Event()
        self.prompts: List[str] = []

    def release(self) -> None:
        self._gate.set()

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        self.started.set()
        await self._gate.wait()
        return self.response


class SlowGenerator:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def generate(self, prompt: str) -> str:
        await asyncio.sleep(self.delay)
        return "too late"


class GatedSearchClient:
    """Search client that blocks until ``release`` is called."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def search(self, query: str) -> str:
        self.started.set()
        await self._gate.wait()
        return f"insights about {query}"


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        text_timeout=0.5,
        search_timeout=0.5,
        image_timeout=0.5,
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def text_generator(mocker: MockerFixture):
    """A text generator whose ``generate`` is an AsyncMock returning ``"[]"``."""
    generator = mocker.MagicMock()
    generator.generate = mocker.AsyncMock(return_value="[]")
    return generator


@pytest.fixture
def pipeline(settings: Settings, text_generator) -> GenerationPipeline:
    return GenerationPipeline(settings, text_generator)


@pytest.fixture
def storage(settings: Settings) -> JsonStorage:
    return JsonStorage(settings.data_dir)


@pytest.fixture
def knowledge_base(storage: JsonStorage) -> KnowledgeBase:
    return KnowledgeBase(storage)


@pytest.fixture
def sample_articles() -> List[KnowledgeArticle]:
    return [
        make_article(
            "a1",
            "Morning runs and slow thinking",
            descriptors=["Diction: plain everyday words", "Tone: warm and self-deprecating"],
        ),
        make_article(
            "a2",
            "What my grandmother taught me about bread",
            descriptors=["Structure: opens with a childhood anecdote"],
        ),
        make_article("c1", "A case study in remote teams", category="case"),
    ]


def prompt_of(mock_call, index: Optional[int] = None) -> str:
    """Prompt passed to an AsyncMock ``generate`` (last call by default)."""
    call = mock_call.await_args_list[index] if index is not None else mock_call.await_args
    return call.args[0]
