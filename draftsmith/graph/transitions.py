"""Pure state transitions of the writing workflow.

``transition(state, event)`` returns the next ``WorkflowState`` without
performing any I/O. Side effects (model calls, persistence) live in
``graph.workflow``; this module only decides what an event means for the
state and whether it is allowed in the current stage.

Events produced by async work carry the ``session_id`` of the article they
were started for. When that article has since been replaced, the event is
stale and the state is returned unchanged.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from draftsmith.errors import InvalidTransition
from draftsmith.graph.state import (
    CurrentArticle,
    GeneratedImage,
    Notice,
    OutlineNode,
    Stage,
    StylePrototype,
    WorkflowState,
    densify_outline,
)

logger = structlog.get_logger(__name__)

ANY_STAGE: Tuple[Stage, ...] = tuple(Stage)
WORKING_STAGES = (Stage.OUTLINE, Stage.EDITOR)


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class DraftSubmitted:
    article: CurrentArticle


@dataclass(frozen=True)
class PrototypesMatched:
    session_id: str
    prototypes: List[StylePrototype] = field(default_factory=list)


@dataclass(frozen=True)
class SelectionConfirmed:
    session_id: str
    prototypes: List[StylePrototype]


@dataclass(frozen=True)
class SelectionSkipped:
    session_id: str


@dataclass(frozen=True)
class OutlineGenerated:
    session_id: str
    nodes: List[OutlineNode]
    notice: Optional[Notice] = None


@dataclass(frozen=True)
class OutlineEdited:
    nodes: List[OutlineNode]


@dataclass(frozen=True)
class ArticleGenerated:
    session_id: str
    content: str
    notice: Optional[Notice] = None


@dataclass(frozen=True)
class ContentEdited:
    session_id: str
    content: str


@dataclass(frozen=True)
class ContentReplaced:
    content: str


@dataclass(frozen=True)
class ImagesGenerated:
    session_id: str
    images: List[GeneratedImage]


@dataclass(frozen=True)
class ImageReplaced:
    session_id: str
    image_id: str
    image: GeneratedImage


@dataclass(frozen=True)
class ImageRemoved:
    image_id: str


@dataclass(frozen=True)
class CoverGenerated:
    session_id: str
    image: GeneratedImage


@dataclass(frozen=True)
class TitleChosen:
    title: str


@dataclass(frozen=True)
class InsightsAttached:
    session_id: str
    insights: str


@dataclass(frozen=True)
class NoticeRaised:
    notice: Notice


@dataclass(frozen=True)
class Restarted:
    pass


# Stages in which each event is accepted.
ALLOWED_STAGES = {
    DraftSubmitted: ANY_STAGE,
    PrototypesMatched: (Stage.DRAFT,),
    SelectionConfirmed: (Stage.ARTICLE_SELECTION,),
    SelectionSkipped: (Stage.ARTICLE_SELECTION,),
    OutlineGenerated: (Stage.DRAFT, Stage.ARTICLE_SELECTION, Stage.OUTLINE),
    OutlineEdited: WORKING_STAGES,
    ArticleGenerated: WORKING_STAGES,
    ContentEdited: (Stage.EDITOR,),
    ContentReplaced: (Stage.EDITOR,),
    ImagesGenerated: (Stage.EDITOR,),
    ImageReplaced: (Stage.EDITOR,),
    ImageRemoved: (Stage.EDITOR,),
    CoverGenerated: (Stage.EDITOR,),
    TitleChosen: WORKING_STAGES,
    InsightsAttached: ANY_STAGE,
    NoticeRaised: ANY_STAGE,
    Restarted: ANY_STAGE,
}


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def is_stale(state: WorkflowState, session_id: Optional[str]) -> bool:
    """True when ``session_id`` does not belong to the current article."""
    return state.article is None or state.article.session_id != session_id


def _check_stage(state: WorkflowState, event: object) -> None:
    allowed = ALLOWED_STAGES.get(type(event))
    if allowed is None:
        raise InvalidTransition(f"unknown event {type(event).__name__}", kind="workflow")
    if state.stage not in allowed:
        raise InvalidTransition(
            f"{type(event).__name__} is not allowed in stage '{state.stage.value}'",
            kind="workflow",
        )
    if state.article is None and not isinstance(event, (DraftSubmitted, NoticeRaised, Restarted)):
        raise InvalidTransition(f"{type(event).__name__} requires an article", kind="workflow")


def _with_article(state: WorkflowState, **changes) -> WorkflowState:
    stage = changes.pop("stage", state.stage)
    notices = changes.pop("notices", state.notices)
    return state.model_copy(
        update={"stage": stage, "notices": notices, "article": state.article.updated(**changes)}
    )


def _add_notice(state: WorkflowState, notice: Optional[Notice]) -> List[Notice]:
    return state.notices + [notice] if notice is not None else state.notices


# -----------------------------------------------------------------------------
# Transition function
# -----------------------------------------------------------------------------


def transition(state: WorkflowState, event: object) -> WorkflowState:
    """Apply ``event`` to ``state`` and return the new state.

    Raises:
        InvalidTransition: the event is not allowed in the current stage.
    """
    session_id = getattr(event, "session_id", None)
    if session_id is not None and is_stale(state, session_id):
        logger.info("workflow.stale_event_ignored", event_type=type(event).__name__, session_id=session_id)
        return state

    _check_stage(state, event)

    if isinstance(event, DraftSubmitted):
        return WorkflowState(stage=Stage.DRAFT, article=event.article)

    if isinstance(event, Restarted):
        return WorkflowState()

    if isinstance(event, NoticeRaised):
        return state.model_copy(update={"notices": state.notices + [event.notice]})

    if isinstance(event, PrototypesMatched):
        stage = Stage.ARTICLE_SELECTION if event.prototypes else Stage.DRAFT
        return state.model_copy(
            update={
                "stage": stage,
                "prototypes": list(event.prototypes),
                "last_match_count": len(event.prototypes),
            }
        )

    if isinstance(event, SelectionConfirmed):
        return _with_article(state, selected_prototypes=list(event.prototypes))

    if isinstance(event, SelectionSkipped):
        return _with_article(state, selected_prototypes=[])

    if isinstance(event, OutlineGenerated):
        if state.stage == Stage.DRAFT and state.last_match_count != 0:
            raise InvalidTransition(
                "an outline can be generated from the draft stage only after an empty match",
                kind="workflow",
            )
        return _with_article(
            state,
            stage=Stage.OUTLINE,
            notices=_add_notice(state, event.notice),
            outline=densify_outline(event.nodes),
        )

    if isinstance(event, OutlineEdited):
        return _with_article(state, outline=densify_outline(event.nodes))

    if isinstance(event, ArticleGenerated):
        return _with_article(
            state,
            stage=Stage.EDITOR,
            notices=_add_notice(state, event.notice),
            content=event.content,
        )

    if isinstance(event, (ContentEdited, ContentReplaced)):
        return _with_article(state, content=event.content)

    if isinstance(event, ImagesGenerated):
        images = sorted(event.images, key=lambda image: image.position or 0)
        return _with_article(state, images=images)

    if isinstance(event, ImageReplaced):
        article = state.article
        if article.cover_image is not None and article.cover_image.id == event.image_id:
            return _with_article(state, cover_image=event.image)
        images = [event.image if image.id == event.image_id else image for image in article.images]
        return _with_article(state, images=images)

    if isinstance(event, ImageRemoved):
        article = state.article
        if article.cover_image is not None and article.cover_image.id == event.image_id:
            return _with_article(state, cover_image=None)
        return _with_article(
            state, images=[image for image in article.images if image.id != event.image_id]
        )

    if isinstance(event, CoverGenerated):
        return _with_article(state, cover_image=event.image)

    if isinstance(event, TitleChosen):
        return _with_article(state, title=event.title.strip())

    if isinstance(event, InsightsAttached):
        return _with_article(state, external_insights=event.insights)

    raise InvalidTransition(f"unhandled event {type(event).__name__}", kind="workflow")
