"""Reference articles and their confirmed writing-style elements.

The knowledge base is loaded from and written back to ``JsonStorage`` under
a single key. Style elements are extracted by ``StyleElementExtractor`` and
stay unconfirmed until the user accepts them; re-extraction replaces only
the unconfirmed ones.
"""

from typing import Iterator, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from draftsmith.agents.style_extractor import StyleElementExtractor, to_style_elements
from draftsmith.errors import ValidationError
from draftsmith.graph.state import KnowledgeArticle, StyleElement
from draftsmith.memory.storage import JsonStorage

logger = structlog.get_logger(__name__)

STORAGE_KEY = "knowledge_base"


class KnowledgeBase:
    """In-memory article collection backed by ``JsonStorage``.

    Iterating a ``KnowledgeBase`` yields its articles in insertion order.
    """

    def __init__(self, storage: JsonStorage, extractor: Optional[StyleElementExtractor] = None) -> None:
        self.storage = storage
        self.extractor = extractor
        self._articles: List[KnowledgeArticle] = []

    def __iter__(self) -> Iterator[KnowledgeArticle]:
        return iter(list(self._articles))

    def __len__(self) -> int:
        return len(self._articles)

    @property
    def articles(self) -> List[KnowledgeArticle]:
        return list(self._articles)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> "KnowledgeBase":
        """Replace the in-memory articles with the persisted ones.

        Records that fail validation are skipped and logged.
        """
        records = self.storage.load(STORAGE_KEY, default=[])
        if not isinstance(records, list):
            logger.warning("knowledge_base.malformed_document", type=type(records).__name__)
            records = []

        articles = []
        for record in records:
            try:
                articles.append(KnowledgeArticle.model_validate(record))
            except PydanticValidationError as e:
                logger.warning("knowledge_base.invalid_record", error=str(e))
        self._articles = articles
        logger.info("knowledge_base.loaded", articles=len(articles))
        return self

    def save(self) -> None:
        self.storage.save(STORAGE_KEY, [a.model_dump(mode="json") for a in self._articles])

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def get(self, article_id: str) -> Optional[KnowledgeArticle]:
        for article in self._articles:
            if article.id == article_id:
                return article
        logger.warning("knowledge_base.article_not_found", article_id=article_id)
        return None

    def by_category(self, category: str) -> List[KnowledgeArticle]:
        return [a for a in self._articles if a.category == category]

    def add_article(
        self,
        title: str,
        content: str,
        category: str = "memory",
        source: str = "paste",
        url: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> KnowledgeArticle:
        """Store a new reference article and persist the knowledge base."""
        if not content or not content.strip():
            raise ValidationError("article content must not be empty", kind="knowledge_base")
        try:
            article = KnowledgeArticle(
                title=(title or "").strip() or "Untitled",
                content=content.strip(),
                category=category,
                source=source,
                url=url,
                tags=list(tags or []),
            )
        except PydanticValidationError as e:
            raise ValidationError(f"invalid article: {e}", kind="knowledge_base") from e

        self._articles.append(article)
        self.save()
        logger.info("knowledge_base.article_added", article_id=article.id, category=category)
        return article

    def delete_article(self, article_id: str) -> bool:
        remaining = [a for a in self._articles if a.id != article_id]
        if len(remaining) == len(self._articles):
            logger.warning("knowledge_base.article_not_found", article_id=article_id)
            return False
        self._articles = remaining
        self.save()
        logger.info("knowledge_base.article_deleted", article_id=article_id)
        return True

    def _replace(self, updated: KnowledgeArticle) -> None:
        self._articles = [updated if a.id == updated.id else a for a in self._articles]
        self.save()

    # ------------------------------------------------------------------
    # Style elements
    # ------------------------------------------------------------------

    def _set_confirmed(self, article_id: str, element_id: str, confirmed: bool) -> StyleElement:
        article = self.get(article_id)
        if article is None:
            raise ValidationError(f"unknown article: {article_id}", kind="knowledge_base")

        target = None
        elements = []
        for element in article.style_elements:
            if element.id == element_id:
                element = element.model_copy(update={"confirmed": confirmed})
                target = element
            elements.append(element)
        if target is None:
            raise ValidationError(f"unknown style element: {element_id}", kind="knowledge_base")

        self._replace(article.model_copy(update={"style_elements": elements}))
        logger.info(
            "knowledge_base.element_updated",
            article_id=article_id,
            element_id=element_id,
            confirmed=confirmed,
        )
        return target

    def confirm_element(self, article_id: str, element_id: str) -> StyleElement:
        return self._set_confirmed(article_id, element_id, True)

    def reject_element(self, article_id: str, element_id: str) -> StyleElement:
        return self._set_confirmed(article_id, element_id, False)

    async def refresh_style_elements(self, article_id: str) -> List[StyleElement]:
        """Re-extract style elements for one article.

        Confirmed elements are kept; unconfirmed ones are replaced by the new
        extraction. An empty extraction leaves the article untouched, and
        results for an article deleted meanwhile are discarded.
        """
        if self.extractor is None:
            raise ValidationError("no style extractor configured", kind="style")
        article = self.get(article_id)
        if article is None:
            return []

        descriptors = await self.extractor.extract([article.content])

        current = self.get(article_id)
        if current is None:
            logger.info("knowledge_base.extraction_discarded", article_id=article_id)
            return []
        if not descriptors:
            logger.warning("knowledge_base.extraction_empty", article_id=article_id)
            return []

        confirmed = [e for e in current.style_elements if e.confirmed]
        known = {e.description for e in confirmed}
        fresh = to_style_elements(article_id, (d for d in descriptors if d not in known))
        self._replace(current.model_copy(update={"style_elements": confirmed + fresh}))
        logger.info(
            "knowledge_base.elements_refreshed",
            article_id=article_id,
            confirmed=len(confirmed),
            extracted=len(fresh),
        )
        return fresh
