"""
agents/pipeline.py
==================
The single gateway between the workflow and the AI providers.

Every text call goes through ``GenerationPipeline.call``, which bounds it
with a timeout, maps provider failures onto the draftsmith error taxonomy,
records a ``CallRecord`` and logs the failure with its call kind and a
truncated prompt. On top of it, one method per artifact decides what a
failure means for that artifact:

  outline / article     -> absorbed into deterministic fallback + Notice
  titles / image prompts -> absorbed into deterministic fallback
  edit                  -> propagated unchanged, never fabricated
  search                -> never raises, mock insights on any failure
  images                -> provider fallback, failed slots skipped
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, List, Optional

import structlog

from draftsmith.agents.fallbacks import (
    DEFAULT_SUMMARY,
    fallback_article,
    fallback_image_prompts,
    fallback_outline,
    fallback_titles,
)
from draftsmith.app.config import Settings
from draftsmith.errors import (
    DraftsmithError,
    GenerationTimeout,
    MalformedResponse,
    ProviderUnavailable,
    RateLimited,
    ValidationError,
)
from draftsmith.graph.state import GeneratedImage, Notice, OutlineNode, densify_outline
from draftsmith.tools.image_gen import ImageGenerator
from draftsmith.tools.llm import TextGenerator
from draftsmith.tools.parsing import (
    robust_parse,
    scan_lines,
    strip_preamble,
    truncate,
)
from draftsmith.tools.search import HttpSearchClient, mock_insights

logger = structlog.get_logger(__name__)

MAX_TITLES = 5
MAX_IMAGE_PROMPTS = 3
HISTORY_SIZE = 100


class CallKind(str, Enum):
    OUTLINE = "outline"
    ARTICLE = "article"
    EDIT = "edit"
    TITLES = "titles"
    IMAGE_PROMPTS = "image_prompts"
    STYLE = "style"
    MATCH = "match"
    SEARCH = "search"
    IMAGE = "image"


class CallOutcome(str, Enum):
    IDLE = "idle"
    CALLING = "calling"
    SUCCEEDED = "succeeded"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class CallRecord:
    """One finished provider call."""

    kind: CallKind
    outcome: CallOutcome
    prompt_preview: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class OutlineResult:
    nodes: List[OutlineNode]
    notice: Optional[Notice] = None


@dataclass
class ArticleResult:
    content: str
    notice: Optional[Notice] = None


# ---------------------------------------------------------------------------
# Response normalizers (validate callbacks for robust_parse)
# ---------------------------------------------------------------------------


def _unwrap_list(data: Any, *keys: str) -> Optional[list]:
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
        return None
    return data if isinstance(data, list) else None


def normalize_outline(data: Any) -> Optional[List[OutlineNode]]:
    """Turn decoded outline JSON into dense, ordered ``OutlineNode`` objects.

    Returns None when nothing usable is present so the next tier is tried.
    """
    items = _unwrap_list(data, "outline", "nodes", "sections")
    if not items:
        return None

    nodes: List[OutlineNode] = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {"title": item}
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or item.get("heading") or "").strip()
        if not title:
            continue
        node_id = item.get("id")
        nodes.append(
            OutlineNode(
                id=str(node_id) if node_id not in (None, "") else str(index + 1),
                title=title,
                summary=str(item.get("summary") or "").strip() or DEFAULT_SUMMARY,
                level=item.get("level", 1),
                order=len(nodes),
            )
        )
    return densify_outline(nodes) if nodes else None


def scan_outline_headings(text: str) -> Optional[List[dict]]:
    """Markdown headings as outline candidates; other prose is ignored."""
    found = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith("#"):
            continue
        marks = len(stripped) - len(stripped.lstrip("#"))
        title = stripped.lstrip("#").strip()
        if title:
            found.append({"title": title, "level": 1 if marks == 1 else 2})
    return found or None


def _string_list(limit: int):
    def _normalize(data: Any) -> Optional[List[str]]:
        items = _unwrap_list(data, "titles", "prompts", "items")
        if not items:
            return None
        seen, cleaned = set(), []
        for item in items:
            if not isinstance(item, str):
                continue
            value = item.strip().strip("\"'“”").strip()
            if value and value.lower() not in seen:
                seen.add(value.lower())
                cleaned.append(value)
        return cleaned[:limit] or None

    return _normalize


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class GenerationPipeline:
    """Timeout-bounded, error-mapped access to text, image and search providers.

    Args:
        settings: Timeouts come from here.
        text_generator: Any ``TextGenerator``.
        image_generator: Provider pair for images; image methods raise
            ``ProviderUnavailable`` when it is missing.
        search_client: External search; mock insights are used when missing.

    Attributes:
        history: Most recent ``CallRecord`` entries, oldest first.
        status: Outcome of the call in flight, ``idle`` between calls.
    """

    def __init__(
        self,
        settings: Settings,
        text_generator: TextGenerator,
        image_generator: Optional[ImageGenerator] = None,
        search_client: Optional[HttpSearchClient] = None,
    ) -> None:
        self.settings = settings
        self.text_generator = text_generator
        self.image_generator = image_generator
        self.search_client = search_client
        self.history: Deque[CallRecord] = deque(maxlen=HISTORY_SIZE)
        self.status = CallOutcome.IDLE

    # ------------------------------------------------------------------
    # Core call
    # ------------------------------------------------------------------

    def _timeout_for(self, kind: CallKind) -> float:
        if kind == CallKind.SEARCH:
            return self.settings.search_timeout
        if kind == CallKind.IMAGE:
            return self.settings.image_timeout
        return self.settings.text_timeout

    def _finish(self, record: CallRecord, outcome: CallOutcome, error: Optional[Exception] = None) -> None:
        record.outcome = outcome
        record.finished_at = datetime.now(timezone.utc)
        if error is not None:
            record.error = f"{error.__class__.__name__}: {error}"
            logger.error(
                "pipeline.call_failed",
                kind=record.kind.value,
                outcome=outcome.value,
                prompt_preview=record.prompt_preview,
                timestamp=record.started_at.isoformat(),
                error=str(error),
                error_type=error.__class__.__name__,
            )
        self.history.append(record)
        self.status = CallOutcome.IDLE

    async def call(self, kind: CallKind, prompt: str) -> str:
        """Run one text generation call.

        Raises:
            RateLimited, GenerationTimeout, MalformedResponse,
            ProviderUnavailable: tagged with ``kind``.
        """
        record = CallRecord(
            kind=kind,
            outcome=CallOutcome.CALLING,
            prompt_preview=truncate(prompt),
            started_at=datetime.now(timezone.utc),
        )
        self.status = CallOutcome.CALLING
        timeout = self._timeout_for(kind)

        try:
            text = await asyncio.wait_for(self.text_generator.generate(prompt), timeout=timeout)
        except asyncio.TimeoutError as e:
            error = GenerationTimeout(f"{kind.value} call exceeded {timeout}s", kind=kind.value)
            self._finish(record, CallOutcome.TIMED_OUT, error)
            raise error from e
        except RateLimited as e:
            e.kind = kind.value
            self._finish(record, CallOutcome.RATE_LIMITED, e)
            raise
        except GenerationTimeout as e:
            e.kind = kind.value
            self._finish(record, CallOutcome.TIMED_OUT, e)
            raise
        except DraftsmithError as e:
            e.kind = kind.value
            self._finish(record, CallOutcome.FAILED, e)
            raise
        except Exception as e:
            error = ProviderUnavailable(f"{kind.value} call failed: {e}", kind=kind.value)
            self._finish(record, CallOutcome.FAILED, error)
            raise error from e

        self._finish(record, CallOutcome.SUCCEEDED)
        logger.debug("pipeline.call_succeeded", kind=kind.value, response_length=len(text or ""))
        return text or ""

    async def run(self, kind: CallKind, prompt: str, **context: Any) -> Any:
        """Dispatch ``prompt`` to the artifact method for ``kind``.

        ``context`` carries the extra inputs some artifacts need for their
        fallbacks (``outline`` and ``draft`` for articles, ``content`` for
        titles and image prompts).
        """
        if kind == CallKind.OUTLINE:
            return await self.outline(prompt)
        if kind == CallKind.ARTICLE:
            return await self.article(prompt, context.get("outline") or [], context.get("draft", ""))
        if kind == CallKind.EDIT:
            return await self.edit(prompt)
        if kind == CallKind.TITLES:
            return await self.titles(prompt, context.get("content", ""), context.get("current_title", ""))
        if kind == CallKind.IMAGE_PROMPTS:
            return await self.image_prompts(prompt, context.get("content", ""))
        if kind == CallKind.SEARCH:
            return await self.search(prompt)
        return await self.call(kind, prompt)

    @staticmethod
    def _notice(kind: CallKind, error: Optional[DraftsmithError] = None) -> Notice:
        if error is None:
            return Notice(
                kind=kind.value,
                message=f"The {kind.value} response could not be parsed; a default template was used.",
            )
        return Notice(
            kind=kind.value,
            message=f"The {kind.value} could not be generated ({error.message}); a default template was used.",
            retryable=isinstance(error, (RateLimited, GenerationTimeout)),
        )

    # ------------------------------------------------------------------
    # Critical artifacts
    # ------------------------------------------------------------------

    async def outline(self, prompt: str) -> OutlineResult:
        """Generate an outline; never raises, never returns an empty outline."""
        try:
            raw = await self.call(CallKind.OUTLINE, prompt)
        except DraftsmithError as e:
            return OutlineResult(fallback_outline(), self._notice(CallKind.OUTLINE, e))

        result = robust_parse(
            raw,
            validate=normalize_outline,
            fallback=fallback_outline,
            line_scan=scan_outline_headings,
            kind=CallKind.OUTLINE.value,
        )
        notice = self._notice(CallKind.OUTLINE) if result.degraded else None
        logger.info("pipeline.outline_ready", nodes=len(result.value), tier=result.tier)
        return OutlineResult(result.value, notice)

    async def article(self, prompt: str, outline: List[OutlineNode], draft: str) -> ArticleResult:
        """Generate the full article; falls back to a template built from the outline."""
        try:
            raw = await self.call(CallKind.ARTICLE, prompt)
        except DraftsmithError as e:
            return ArticleResult(fallback_article(outline, draft), self._notice(CallKind.ARTICLE, e))

        content = strip_preamble(raw)
        if not content:
            logger.warning("pipeline.empty_article", response_snippet=truncate(raw, 100))
            return ArticleResult(fallback_article(outline, draft), self._notice(CallKind.ARTICLE))
        return ArticleResult(content)

    async def edit(self, prompt: str) -> str:
        """Apply an edit instruction. Errors propagate; empty output is an error."""
        raw = await self.call(CallKind.EDIT, prompt)
        edited = strip_preamble(raw)
        if not edited:
            error = MalformedResponse("edit returned empty content", kind=CallKind.EDIT.value)
            logger.error("pipeline.empty_edit", prompt_preview=truncate(prompt))
            raise error
        return edited

    # ------------------------------------------------------------------
    # Auxiliary artifacts
    # ------------------------------------------------------------------

    async def titles(self, prompt: str, content: str = "", current_title: str = "") -> List[str]:
        """Up to five distinct title candidates."""
        try:
            raw = await self.call(CallKind.TITLES, prompt)
        except DraftsmithError:
            return fallback_titles(content, current_title)

        result = robust_parse(
            raw,
            validate=_string_list(MAX_TITLES),
            fallback=lambda: fallback_titles(content, current_title),
            line_scan=lambda text: scan_lines(text, cap=MAX_TITLES),
            kind=CallKind.TITLES.value,
        )
        return result.value

    async def image_prompts(self, prompt: str, content: str = "") -> List[str]:
        """Up to three illustration prompts for the article body."""
        try:
            raw = await self.call(CallKind.IMAGE_PROMPTS, prompt)
        except DraftsmithError:
            return fallback_image_prompts(content, MAX_IMAGE_PROMPTS)

        result = robust_parse(
            raw,
            validate=_string_list(MAX_IMAGE_PROMPTS),
            fallback=lambda: fallback_image_prompts(content, MAX_IMAGE_PROMPTS),
            line_scan=lambda text: scan_lines(text, cap=MAX_IMAGE_PROMPTS),
            kind=CallKind.IMAGE_PROMPTS.value,
        )
        return result.value

    async def search(self, query: str) -> str:
        """External insights for ``query``; never raises."""
        record = CallRecord(
            kind=CallKind.SEARCH,
            outcome=CallOutcome.CALLING,
            prompt_preview=truncate(query),
            started_at=datetime.now(timezone.utc),
        )
        if self.search_client is None:
            self._finish(record, CallOutcome.SUCCEEDED)
            return mock_insights(query or "")

        try:
            insights = await asyncio.wait_for(
                self.search_client.search(query), timeout=self.settings.search_timeout + 1
            )
        except asyncio.TimeoutError as e:
            self._finish(record, CallOutcome.TIMED_OUT, GenerationTimeout(str(e) or "search timed out", kind="search"))
            return mock_insights(query or "")
        except Exception as e:
            self._finish(record, CallOutcome.FAILED, e)
            return mock_insights(query or "")

        self._finish(record, CallOutcome.SUCCEEDED)
        return insights

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def _image_url(self, prompt: str, no_watermark: Optional[bool]) -> str:
        if self.image_generator is None:
            raise ProviderUnavailable("no image generator configured", kind=CallKind.IMAGE.value)
        try:
            return await asyncio.wait_for(
                self.image_generator.generate(prompt, no_watermark=no_watermark),
                timeout=self.settings.image_timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeout(
                f"image call exceeded {self.settings.image_timeout}s", kind=CallKind.IMAGE.value
            ) from e

    async def generate_image(
        self,
        prompt: str,
        role: str = "inline",
        position: Optional[int] = None,
        no_watermark: Optional[bool] = None,
    ) -> GeneratedImage:
        """Generate one image; raises on failure."""
        if not prompt or not prompt.strip():
            raise ValidationError("image prompt must not be empty", kind=CallKind.IMAGE.value)
        url = await self._image_url(prompt, no_watermark)
        return GeneratedImage(url=url, prompt=prompt, role=role, position=position)

    async def generate_images(
        self, prompts: List[str], no_watermark: Optional[bool] = None
    ) -> List[GeneratedImage]:
        """Generate inline images concurrently, one per prompt slot.

        Slots that fail are skipped; the others keep their ``position``.
        """

        async def _slot(position: int, prompt: str) -> Optional[GeneratedImage]:
            try:
                return await self.generate_image(prompt, "inline", position, no_watermark)
            except DraftsmithError as e:
                logger.warning(
                    "pipeline.image_slot_failed",
                    position=position,
                    prompt_preview=truncate(prompt, 60),
                    error=str(e),
                    error_type=e.__class__.__name__,
                )
                return None

        slots = await asyncio.gather(
            *(_slot(position, prompt) for position, prompt in enumerate(prompts[:MAX_IMAGE_PROMPTS]))
        )
        images = [image for image in slots if image is not None]
        logger.info("pipeline.images_generated", requested=len(slots), generated=len(images))
        return images

    async def generate_cover(self, prompt: str, no_watermark: Optional[bool] = None) -> GeneratedImage:
        """Generate the cover image; raises when both providers fail."""
        return await self.generate_image(prompt, "cover", None, no_watermark)
