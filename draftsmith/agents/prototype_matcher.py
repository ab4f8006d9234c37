"""
agents/prototype_matcher.py
---------------------------
Ranks knowledge-base articles as style prototypes for a new draft.

The model is asked for a JSON ranking; whatever comes back is validated
against the candidate set so a prototype can never point at an article that
does not exist. Provider failures yield no prototypes, which sends the
workflow straight to the outline.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from draftsmith.agents.pipeline import CallKind, GenerationPipeline
from draftsmith.errors import DraftsmithError
from draftsmith.graph.state import MAX_PROTOTYPES, KnowledgeArticle, StylePrototype
from draftsmith.tools.parsing import robust_parse

logger = structlog.get_logger(__name__)

EXCERPT_LENGTH = 300
FALLBACK_SIMILARITIES = (85, 80, 75)

MATCH_PROMPT = """You are matching a new draft against the author's reference articles.

Draft:
{draft}

Candidate reference articles:
{candidates}

Score each candidate on topical relevance and stylistic similarity to the draft
and pick the 1 to {limit} best matches.
Return ONLY a JSON array, best match first, where each item is:
{{"title": "...", "description": "why it matches", "articleId": "<candidate id>", "similarity": 0-100}}
"""


def _render_candidate(article: KnowledgeArticle) -> str:
    excerpt = article.content[:EXCERPT_LENGTH]
    if len(article.content) > EXCERPT_LENGTH:
        excerpt += "..."
    traits = "; ".join(article.confirmed_descriptions()) or "none confirmed"
    return (
        f"- id: {article.id}\n"
        f"  title: {article.title}\n"
        f"  excerpt: {excerpt}\n"
        f"  style traits: {traits}"
    )


def build_match_prompt(draft: str, candidates: Sequence[KnowledgeArticle]) -> str:
    return MATCH_PROMPT.format(
        draft=draft.strip(),
        candidates="\n".join(_render_candidate(article) for article in candidates),
        limit=MAX_PROTOTYPES,
    )


def fallback_prototypes(candidates: Sequence[KnowledgeArticle]) -> List[StylePrototype]:
    """The first candidates with descending placeholder scores."""
    return [
        StylePrototype(
            id=f"prototype_{article.id}",
            title=article.title,
            description="Suggested from your knowledge base (automatic ranking unavailable).",
            article_id=article.id,
            similarity=score,
        )
        for article, score in zip(candidates, FALLBACK_SIMILARITIES)
    ]


def _prototype_list(by_id: Dict[str, KnowledgeArticle]):
    def _normalize(data: Any) -> Optional[List[StylePrototype]]:
        if isinstance(data, dict):
            data = data.get("prototypes") or data.get("matches")
        if not isinstance(data, list):
            return None

        best: Dict[str, StylePrototype] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            article_id = str(item.get("articleId") or item.get("article_id") or "")
            article = by_id.get(article_id)
            if article is None:
                logger.warning("prototype_matcher.unknown_article", article_id=article_id)
                continue
            prototype = StylePrototype(
                id=f"prototype_{article_id}",
                title=str(item.get("title") or article.title),
                description=str(item.get("description") or item.get("reason") or ""),
                article_id=article_id,
                similarity=item.get("similarity"),
            )
            current = best.get(article_id)
            if current is None or prototype.similarity > current.similarity:
                best[article_id] = prototype

        ranked = sorted(best.values(), key=lambda p: p.similarity, reverse=True)
        return ranked[:MAX_PROTOTYPES]

    return _normalize


class StylePrototypeMatcher:
    """Propose up to three knowledge-base articles as style models for a draft."""

    def __init__(self, pipeline: GenerationPipeline) -> None:
        self.pipeline = pipeline

    async def match(self, draft: str, candidates: Sequence[KnowledgeArticle]) -> List[StylePrototype]:
        candidates = list(candidates)
        if not candidates:
            logger.info("prototype_matcher.no_candidates")
            return []

        try:
            raw = await self.pipeline.call(CallKind.MATCH, build_match_prompt(draft, candidates))
        except DraftsmithError as e:
            logger.warning("prototype_matcher.failed", error=str(e), error_type=e.__class__.__name__)
            return []

        by_id = {article.id: article for article in candidates}
        result = robust_parse(
            raw,
            validate=_prototype_list(by_id),
            fallback=lambda: fallback_prototypes(candidates),
            kind=CallKind.MATCH.value,
        )
        logger.info(
            "prototype_matcher.completed",
            candidates=len(candidates),
            prototypes=len(result.value),
            tier=result.tier,
        )
        return result.value
