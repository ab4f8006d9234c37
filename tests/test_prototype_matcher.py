"""Unit tests for prototype matching (draftsmith.agents.prototype_matcher)."""

import json
from typing import List

import pytest

from conftest import make_article, prompt_of
from draftsmith.agents.pipeline import GenerationPipeline
from draftsmith.agents.prototype_matcher import StylePrototypeMatcher
from draftsmith.errors import GenerationTimeout
from draftsmith.graph.state import KnowledgeArticle

DRAFT = "Last winter I learned to bake bread with my daughter."


@pytest.fixture
def matcher(pipeline: GenerationPipeline) -> StylePrototypeMatcher:
    return StylePrototypeMatcher(pipeline)


@pytest.fixture
def candidates() -> List[KnowledgeArticle]:
    return [
        make_article("a1", "Bread with grandma", "x" * 400, ["Tone: warm"]),
        make_article("a2", "Running in the rain", descriptors=["Diction: plain"]),
        make_article("a3", "Notes on patience"),
        make_article("a4", "A year of journaling"),
    ]


@pytest.mark.asyncio
async def test_no_candidates_skips_generation(matcher, text_generator) -> None:
    assert await matcher.match(DRAFT, []) == []
    text_generator.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_prompt_embeds_excerpt_and_confirmed_traits(matcher, text_generator, candidates) -> None:
    await matcher.match(DRAFT, candidates)

    prompt = prompt_of(text_generator.generate)
    assert DRAFT in prompt
    assert "id: a1" in prompt
    assert "x" * 300 + "..." in prompt
    assert "x" * 301 not in prompt
    assert "style traits: Tone: warm" in prompt
    assert "style traits: none confirmed" in prompt


@pytest.mark.asyncio
async def test_results_are_validated_clamped_and_ranked(matcher, text_generator, candidates) -> None:
    text_generator.generate.return_value = json.dumps(
        [
            {"title": "Bread", "description": "same topic", "articleId": "a1", "similarity": 150},
            {"title": "Ghost", "description": "does not exist", "articleId": "zz", "similarity": 99},
            {"title": "Rain", "description": "same voice", "articleId": "a2", "similarity": "high"},
            {"title": "Bread again", "description": "dup", "articleId": "a1", "similarity": 20},
            {"title": "Patience", "description": "meh", "articleId": "a3", "similarity": -5},
            {"title": "Journal", "description": "ok", "articleId": "a4", "similarity": 60},
        ]
    )

    prototypes = await matcher.match(DRAFT, candidates)

    assert [(p.article_id, p.similarity) for p in prototypes] == [("a1", 100), ("a2", 70), ("a4", 60)]
    assert {p.article_id for p in prototypes} <= {c.id for c in candidates}


@pytest.mark.asyncio
async def test_unparseable_response_uses_fallback_ranking(matcher, text_generator, candidates) -> None:
    text_generator.generate.return_value = "The first two look similar to me."

    prototypes = await matcher.match(DRAFT, candidates)

    assert [(p.article_id, p.similarity) for p in prototypes] == [("a1", 85), ("a2", 80), ("a3", 75)]


@pytest.mark.asyncio
async def test_fallback_with_single_candidate(matcher, text_generator, candidates) -> None:
    text_generator.generate.return_value = "not json"

    prototypes = await matcher.match(DRAFT, candidates[:1])

    assert [(p.article_id, p.similarity) for p in prototypes] == [("a1", 85)]


@pytest.mark.asyncio
async def test_generation_error_yields_no_prototypes(matcher, text_generator, candidates) -> None:
    text_generator.generate.side_effect = GenerationTimeout("slow")

    assert await matcher.match(DRAFT, candidates) == []
