"""Shared data models and workflow state for draftsmith.

This module defines the knowledge-base entities (articles and the style
elements extracted from them), the ephemeral matching results (style
prototypes), the article aggregate the workflow edits (outline, content,
images) and the top-level ``WorkflowState`` the state machine transitions.

All models are Pydantic v2 models. The aggregate is treated as immutable by
convention: every workflow step produces a new instance via
``model_copy(update=...)`` instead of mutating fields in place.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_PROTOTYPES = 3
DEFAULT_SIMILARITY = 70


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class StyleElement(BaseModel):
    """A short descriptor of one writing-style trait of a reference article.

    Attributes:
        id: Unique identifier.
        article_id: Weak reference to the owning KnowledgeArticle.
        description: Natural-language trait, e.g. "opens with a rhetorical question".
        category: Coarse trait family.
        confirmed: Whether the user accepted this element.
        created_at: Creation timestamp (UTC).
    """

    id: str = Field(default_factory=_new_id, description="Unique element identifier")
    article_id: str = Field(..., description="ID of the owning knowledge article")
    description: str = Field(..., min_length=1, description="Style trait descriptor")
    category: Literal["vocabulary", "syntax", "structure", "rhetoric"] = Field(
        "rhetoric", description="Trait family"
    )
    confirmed: bool = Field(False, description="Whether the user confirmed the element")
    created_at: datetime = Field(default_factory=_utcnow)


class KnowledgeArticle(BaseModel):
    """A reference article stored in the knowledge base.

    ``memory`` articles are the user's own writing and feed style extraction;
    ``case`` articles are external references. The category never changes
    after creation.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id, description="Unique article identifier")
    title: str = Field(..., description="Article title")
    content: str = Field(..., description="Full article text")
    category: Literal["memory", "case"] = Field(..., frozen=True)
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    source: Literal["upload", "paste", "url"] = "paste"
    url: Optional[str] = None
    style_elements: List[StyleElement] = Field(default_factory=list)

    @model_validator(mode="after")
    def _elements_belong_to_article(self) -> "KnowledgeArticle":
        foreign = [e.id for e in self.style_elements if e.article_id != self.id]
        if foreign:
            raise ValueError(
                f"style elements {foreign} do not reference article {self.id}"
            )
        return self

    def confirmed_descriptions(self) -> List[str]:
        """Descriptions of the confirmed style elements, in stored order."""
        return [e.description for e in self.style_elements if e.confirmed]


class StylePrototype(BaseModel):
    """A ranked candidate reference article proposed as a style model.

    Attributes:
        id: Identifier of this recommendation (not of the article).
        title: Title of the referenced article.
        description: Human-readable rationale for the match.
        article_id: Weak reference into the knowledge base.
        similarity: Match score, clamped to [0, 100].
    """

    id: str = Field(..., description="Prototype identifier")
    title: str = Field(..., description="Referenced article title")
    description: str = Field("", description="Why this article matches the draft")
    article_id: str = Field(..., description="ID of the referenced knowledge article")
    similarity: int = Field(DEFAULT_SIMILARITY, ge=0, le=100)

    @field_validator("similarity", mode="before")
    @classmethod
    def _clamp_similarity(cls, value):
        try:
            score = int(round(float(value)))
        except (TypeError, ValueError):
            score = DEFAULT_SIMILARITY
        return max(0, min(100, score))


class OutlineNode(BaseModel):
    """One heading-level entry of the article outline."""

    id: str
    title: str
    summary: str = ""
    level: Literal[1, 2] = 1
    order: int = Field(0, ge=0)
    content: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _coerce_level(cls, value):
        try:
            return 2 if int(value) >= 2 else 1
        except (TypeError, ValueError):
            return 1


class GeneratedImage(BaseModel):
    """Metadata for a generated image.

    Attributes:
        id: Unique identifier.
        url: Location returned by the image provider.
        prompt: Prompt used to generate the image.
        role: ``cover`` for the article cover, ``inline`` for body images.
        position: Slot index inside the article (inline images only).
    """

    id: str = Field(default_factory=_new_id)
    url: str
    prompt: str
    role: Literal["cover", "inline"] = "inline"
    position: Optional[int] = None


class Notice(BaseModel):
    """Non-blocking message surfaced to the user (e.g. fallback content used)."""

    kind: str
    message: str
    retryable: bool = False


class CurrentArticle(BaseModel):
    """Aggregate root for the article being written in this session.

    ``session_id`` identifies one "start new article" action and is used to
    discard stale async results; ``version`` increases on every update.
    """

    session_id: str = Field(default_factory=_new_id)
    version: int = 0
    title: str = "Untitled Article"
    draft: str
    platform: str = "blog"
    outline: List[OutlineNode] = Field(default_factory=list)
    content: str = ""
    images: List[GeneratedImage] = Field(default_factory=list)
    cover_image: Optional[GeneratedImage] = None
    selected_prototypes: Optional[List[StylePrototype]] = None
    external_insights: Optional[str] = None

    def updated(self, **changes) -> "CurrentArticle":
        """Return a copy with ``changes`` applied and the version bumped."""
        return self.model_copy(update={**changes, "version": self.version + 1})


class Stage(str, Enum):
    """Workflow stages, in the order a user normally walks through them."""

    DRAFT = "draft"
    ARTICLE_SELECTION = "article_selection"
    OUTLINE = "outline"
    EDITOR = "editor"


class WorkflowState(BaseModel):
    """Complete state of the writing workflow.

    Attributes:
        stage: Current stage.
        article: The in-flight article, None before the first draft.
        prototypes: Style prototypes offered for the current draft.
        notices: Non-blocking notices accumulated since the last draft.
        last_match_count: Number of prototypes returned by the most recent
            matcher call (None before any match).
    """

    stage: Stage = Stage.DRAFT
    article: Optional[CurrentArticle] = None
    prototypes: List[StylePrototype] = Field(default_factory=list)
    notices: List[Notice] = Field(default_factory=list)
    last_match_count: Optional[int] = None


def densify_outline(nodes: List[OutlineNode]) -> List[OutlineNode]:
    """Return ``nodes`` sorted by order with a dense 0-based ``order`` sequence."""
    ordered = sorted(enumerate(nodes), key=lambda pair: (pair[1].order, pair[0]))
    return [
        node.model_copy(update={"order": index})
        for index, (_, node) in enumerate(ordered)
    ]
