"""
graph/workflow.py
=================
Async executor that drives the writing workflow.

Each public coroutine validates its inputs, runs the model calls it needs
through the ``GenerationPipeline``, turns the results into events and feeds
them through the pure ``transition`` function. The resulting article is
persisted after every change so the session can be resumed with ``load``.

Async steps capture the article's ``session_id`` before awaiting; if the
user restarts or submits a new draft meanwhile, the late result is logged
and dropped.

Typical usage:

    settings = Settings.from_env()
    workflow = Workflow.from_settings(settings)
    await workflow.submit_draft("Three things I learned running a book club ...")
    if workflow.state.stage is Stage.ARTICLE_SELECTION:
        await workflow.confirm_selection(workflow.state.prototypes[:1])
    await workflow.generate_full_article()
"""

from typing import List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from draftsmith.agents.pipeline import GenerationPipeline
from draftsmith.agents.prompt_composer import (
    PromptExtras,
    StyleContext,
    Target,
    build_style_context,
    compose,
    compose_cover_prompt,
    compose_image_prompts_request,
    compose_titles_request,
    style_stats,
    summarize_style,
)
from draftsmith.agents.prototype_matcher import StylePrototypeMatcher
from draftsmith.agents.style_extractor import StyleElementExtractor
from draftsmith.app.config import Settings
from draftsmith.app.logging_config import configure_logging
from draftsmith.errors import DraftsmithError, InvalidTransition, ValidationError
from draftsmith.graph.state import (
    CurrentArticle,
    GeneratedImage,
    KnowledgeArticle,
    Notice,
    OutlineNode,
    Stage,
    StyleElement,
    StylePrototype,
    WorkflowState,
)
from draftsmith.graph.transitions import (
    ArticleGenerated,
    ContentEdited,
    ContentReplaced,
    CoverGenerated,
    DraftSubmitted,
    ImageRemoved,
    ImageReplaced,
    ImagesGenerated,
    InsightsAttached,
    NoticeRaised,
    OutlineEdited,
    OutlineGenerated,
    PrototypesMatched,
    Restarted,
    SelectionConfirmed,
    SelectionSkipped,
    TitleChosen,
    is_stale,
    transition,
)
from draftsmith.memory.knowledge_base import KnowledgeBase
from draftsmith.memory.storage import JsonStorage
from draftsmith.tools.image_gen import build_image_generator
from draftsmith.tools.llm import build_text_generator
from draftsmith.tools.search import build_search_client

logger = structlog.get_logger(__name__)

ARTICLE_KEY = "current_article"


class Workflow:
    """Drives one article at a time from draft to finished content.

    Attributes:
        pipeline: Gateway for every model call.
        knowledge_base: Reference articles and their style elements.
        storage: Where the current article snapshot is persisted.
        matcher: Proposes style prototypes for a draft.
        state: Current ``WorkflowState``.
    """

    def __init__(
        self,
        pipeline: GenerationPipeline,
        knowledge_base: KnowledgeBase,
        storage: JsonStorage,
        matcher: Optional[StylePrototypeMatcher] = None,
    ) -> None:
        self.pipeline = pipeline
        self.knowledge_base = knowledge_base
        self.storage = storage
        self.matcher = matcher or StylePrototypeMatcher(pipeline)
        self.state = WorkflowState()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Workflow":
        """Wire providers, storage and the knowledge base from ``settings``."""
        configure_logging(settings.log_level, settings.log_format)
        pipeline = GenerationPipeline(
            settings,
            build_text_generator(settings),
            build_image_generator(settings),
            build_search_client(settings),
        )
        storage = JsonStorage(settings.data_dir)
        knowledge_base = KnowledgeBase(storage, StyleElementExtractor(pipeline)).load()
        workflow = cls(pipeline, knowledge_base, storage)
        workflow.load()
        return workflow

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------

    @property
    def article(self) -> Optional[CurrentArticle]:
        return self.state.article

    def dispatch(self, event: object) -> WorkflowState:
        """Apply ``event`` and persist the resulting article."""
        previous = self.state
        self.state = transition(previous, event)
        if self.state is not previous:
            self._persist()
        return self.state

    def _persist(self) -> None:
        if self.state.article is None:
            self.storage.delete(ARTICLE_KEY)
        else:
            self.storage.save(ARTICLE_KEY, self.state.article.model_dump(mode="json"))

    def _require_article(self, *stages: Stage) -> CurrentArticle:
        if self.state.article is None:
            raise InvalidTransition("no article in progress", kind="workflow")
        if stages and self.state.stage not in stages:
            raise InvalidTransition(
                f"operation not allowed in stage '{self.state.stage.value}'", kind="workflow"
            )
        return self.state.article

    def _stale(self, session_id: str, step: str) -> bool:
        if is_stale(self.state, session_id):
            logger.info("workflow.stale_result_discarded", step=step, session_id=session_id)
            return True
        return False

    def _style_context(self, article: CurrentArticle) -> StyleContext:
        # None: no match step yet (memory-wide style); []: selection skipped
        selected = article.selected_prototypes
        return build_style_context(self.knowledge_base, selected, use_generic=selected == [])

    # ------------------------------------------------------------------
    # Draft -> selection -> outline
    # ------------------------------------------------------------------

    async def submit_draft(self, text: str, platform: str = "blog") -> WorkflowState:
        """Start a new article from ``text`` and match it against the knowledge base."""
        if not text or not text.strip():
            raise ValidationError("draft must not be empty", kind="draft")

        article = CurrentArticle(draft=text.strip(), platform=platform)
        self.dispatch(DraftSubmitted(article))
        session_id = article.session_id
        log = logger.bind(session_id=session_id)
        log.info("workflow.draft_submitted", draft_length=len(article.draft), platform=platform)

        prototypes = await self.matcher.match(article.draft, self.knowledge_base.articles)
        if self._stale(session_id, "match"):
            return self.state
        self.dispatch(PrototypesMatched(session_id, prototypes))
        log.info("workflow.prototypes_matched", count=len(prototypes))

        if prototypes:
            return self.state
        return await self._generate_outline(session_id)

    async def confirm_selection(self, prototypes: List[StylePrototype]) -> WorkflowState:
        """Use the chosen prototypes as the style model and generate the outline."""
        article = self._require_article(Stage.ARTICLE_SELECTION)
        if not prototypes:
            return await self.skip_selection()

        offered = {p.id for p in self.state.prototypes}
        unknown = [p.id for p in prototypes if p.id not in offered]
        if unknown:
            raise ValidationError(f"prototypes were not offered: {unknown}", kind="selection")

        self.dispatch(SelectionConfirmed(article.session_id, list(prototypes)))
        return await self._generate_outline(article.session_id)

    async def skip_selection(self) -> WorkflowState:
        """Ignore the matches and write in the generic style."""
        article = self._require_article(Stage.ARTICLE_SELECTION)
        self.dispatch(SelectionSkipped(article.session_id))
        return await self._generate_outline(article.session_id)

    async def _generate_outline(self, session_id: str) -> WorkflowState:
        article = self.state.article
        prompt = compose(
            Target.OUTLINE,
            article.draft,
            self._style_context(article),
            PromptExtras(platform=article.platform),
        )
        result = await self.pipeline.outline(prompt)
        if self._stale(session_id, "outline"):
            return self.state
        return self.dispatch(OutlineGenerated(session_id, result.nodes, result.notice))

    async def regenerate_outline(self) -> WorkflowState:
        article = self._require_article(Stage.OUTLINE)
        return await self._generate_outline(article.session_id)

    def update_outline(self, nodes: List[OutlineNode]) -> WorkflowState:
        """Replace the outline with user-edited nodes."""
        self._require_article(Stage.OUTLINE, Stage.EDITOR)
        if not nodes:
            raise ValidationError("outline must have at least one node", kind="outline")
        return self.dispatch(OutlineEdited(list(nodes)))

    # ------------------------------------------------------------------
    # Article and edits
    # ------------------------------------------------------------------

    async def external_search(self, query: str) -> str:
        """Fetch insights for ``query`` and attach them to the current article."""
        article = self.state.article
        session_id = article.session_id if article is not None else None
        insights = await self.pipeline.search(query)
        if session_id is None or self._stale(session_id, "search"):
            return insights
        self.dispatch(InsightsAttached(session_id, insights))
        return insights

    async def generate_full_article(self) -> WorkflowState:
        """Write the article from the outline; always reaches the editor."""
        article = self._require_article(Stage.OUTLINE, Stage.EDITOR)
        session_id = article.session_id
        prompt = compose(
            Target.ARTICLE,
            article.draft,
            self._style_context(article),
            PromptExtras(
                platform=article.platform,
                outline=tuple(article.outline),
                insights=article.external_insights,
            ),
        )
        result = await self.pipeline.article(prompt, article.outline, article.draft)
        if self._stale(session_id, "article"):
            return self.state
        return self.dispatch(ArticleGenerated(session_id, result.content, result.notice))

    async def edit_instruction(self, instruction: str, selected_span: Optional[str] = None) -> WorkflowState:
        """Rewrite the content, or only ``selected_span``, following ``instruction``.

        Raises:
            ValidationError: empty instruction, or a span not present in the content.
            DraftsmithError: the edit call failed; the content is unchanged.
        """
        article = self._require_article(Stage.EDITOR)
        if not instruction or not instruction.strip():
            raise ValidationError("edit instruction must not be empty", kind="edit")

        span = selected_span if selected_span and selected_span.strip() else None
        if span is not None and span not in article.content:
            raise ValidationError("selected text was not found in the article", kind="edit")
        target_text = span if span is not None else article.content
        if not target_text.strip():
            raise ValidationError("there is no content to edit", kind="edit")

        prompt = compose(
            Target.EDIT,
            target_text,
            self._style_context(article),
            PromptExtras(
                platform=article.platform,
                instruction=instruction.strip(),
                content=article.content if span is not None else None,
                selected_text=span,
            ),
        )
        session_id = article.session_id
        log = logger.bind(session_id=session_id, selection=span is not None)
        try:
            edited = await self.pipeline.edit(prompt)
        except DraftsmithError as e:
            log.error("workflow.edit_failed", error=str(e), error_type=e.__class__.__name__)
            raise

        if self._stale(session_id, "edit"):
            return self.state

        current = self.state.article.content
        if span is None:
            new_content = edited
        elif span in current:
            new_content = current.replace(span, edited, 1)
        else:
            raise ValidationError("selected text changed while the edit was running", kind="edit")

        log.info("workflow.edit_applied", content_length=len(new_content))
        return self.dispatch(ContentEdited(session_id, new_content))

    def update_content(self, text: str) -> WorkflowState:
        """Replace the content with user-edited text."""
        self._require_article(Stage.EDITOR)
        return self.dispatch(ContentReplaced(text))

    # ------------------------------------------------------------------
    # Editor side effects
    # ------------------------------------------------------------------

    def _require_content(self) -> CurrentArticle:
        article = self._require_article(Stage.EDITOR)
        if not article.content.strip():
            raise ValidationError("the article has no content yet", kind="editor")
        return article

    async def generate_images(self, no_watermark: Optional[bool] = None) -> List[GeneratedImage]:
        """Generate inline illustrations for the article body."""
        article = self._require_content()
        session_id = article.session_id
        prompts = await self.pipeline.image_prompts(
            compose_image_prompts_request(article.content), article.content
        )
        images = await self.pipeline.generate_images(prompts, no_watermark=no_watermark)
        if self._stale(session_id, "images"):
            return []

        self.dispatch(ImagesGenerated(session_id, images))
        if not images:
            self.dispatch(
                NoticeRaised(Notice(kind="image", message="No images could be generated.", retryable=True))
            )
        return images

    async def generate_cover(
        self,
        style: str = "minimal",
        platform: Optional[str] = None,
        no_watermark: Optional[bool] = None,
    ) -> GeneratedImage:
        """Generate the cover image. Provider failures reach the caller."""
        article = self._require_content()
        session_id = article.session_id
        prompt = compose_cover_prompt(article.title, style, platform or article.platform)
        image = await self.pipeline.generate_cover(prompt, no_watermark=no_watermark)
        if not self._stale(session_id, "cover"):
            self.dispatch(CoverGenerated(session_id, image))
        return image

    def _find_image(self, image_id: str) -> GeneratedImage:
        article = self._require_article(Stage.EDITOR)
        candidates = list(article.images)
        if article.cover_image is not None:
            candidates.append(article.cover_image)
        for image in candidates:
            if image.id == image_id:
                return image
        raise ValidationError(f"unknown image: {image_id}", kind="image")

    async def regenerate_image(self, image_id: str, no_watermark: Optional[bool] = None) -> GeneratedImage:
        """Generate a replacement for one image using its original prompt."""
        old = self._find_image(image_id)
        session_id = self.state.article.session_id
        image = await self.pipeline.generate_image(
            old.prompt, role=old.role, position=old.position, no_watermark=no_watermark
        )
        if not self._stale(session_id, "regenerate_image"):
            self.dispatch(ImageReplaced(session_id, image_id, image))
        return image

    def remove_image(self, image_id: str) -> WorkflowState:
        self._find_image(image_id)
        return self.dispatch(ImageRemoved(image_id))

    async def generate_titles(self) -> List[str]:
        """Title suggestions for the current content (state is unchanged)."""
        article = self._require_content()
        return await self.pipeline.titles(
            compose_titles_request(article.content, article.platform),
            article.content,
            article.title,
        )

    def choose_title(self, title: str) -> WorkflowState:
        self._require_article(Stage.OUTLINE, Stage.EDITOR)
        if not title or not title.strip():
            raise ValidationError("title must not be empty", kind="title")
        return self.dispatch(TitleChosen(title))

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    async def add_reference_article(
        self,
        title: str,
        content: str,
        category: str = "memory",
        source: str = "paste",
        url: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> KnowledgeArticle:
        """Store a reference article; the user's own writing gets style elements."""
        article = self.knowledge_base.add_article(title, content, category, source, url, tags)
        if category == "memory" and self.knowledge_base.extractor is not None:
            await self.knowledge_base.refresh_style_elements(article.id)
        return self.knowledge_base.get(article.id) or article

    def confirm_style_element(self, article_id: str, element_id: str) -> StyleElement:
        return self.knowledge_base.confirm_element(article_id, element_id)

    def reject_style_element(self, article_id: str, element_id: str) -> StyleElement:
        return self.knowledge_base.reject_element(article_id, element_id)

    def style_summary(self) -> str:
        """One-line description of the style the next prompt will use."""
        article = self.state.article
        if article is None:
            return summarize_style(build_style_context(self.knowledge_base))
        return summarize_style(self._style_context(article))

    def style_stats(self) -> dict:
        """Style element counts for the selected prototypes' articles."""
        article = self.state.article
        selected = article.selected_prototypes if article is not None else None
        return style_stats(self.knowledge_base, selected or [])

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def restart(self) -> WorkflowState:
        """Discard the current article and return to the draft stage."""
        logger.info("workflow.restarted")
        return self.dispatch(Restarted())

    def load(self) -> WorkflowState:
        """Resume the persisted article in the stage its progress implies."""
        record = self.storage.load(ARTICLE_KEY)
        if record is None:
            return self.state
        try:
            article = CurrentArticle.model_validate(record)
        except PydanticValidationError as e:
            logger.warning("workflow.invalid_snapshot", error=str(e))
            return self.state

        if article.content.strip():
            stage = Stage.EDITOR
        elif article.outline:
            stage = Stage.OUTLINE
        else:
            stage = Stage.DRAFT
        self.state = WorkflowState(stage=stage, article=article)
        logger.info("workflow.resumed", session_id=article.session_id, stage=stage.value)
        return self.state
