"""
agents/style_extractor.py
-------------------------
Derives short writing-style descriptors from one or more reference texts.

Extraction is non-critical: any provider failure yields an empty list and
the knowledge base simply keeps its existing elements.
"""

from typing import Any, Iterable, List, Optional

import structlog

from draftsmith.agents.pipeline import CallKind, GenerationPipeline
from draftsmith.errors import DraftsmithError
from draftsmith.graph.state import StyleElement
from draftsmith.tools.parsing import has_colon_or_quote, robust_parse, scan_lines

logger = structlog.get_logger(__name__)

MAX_DESCRIPTORS = 8
MAX_TEXT_LENGTH = 3000

EXTRACTION_PROMPT = """Analyze the writing style of the reference text(s) below and describe the author's personal style as short descriptors.

Cover these content dimensions:
1. Topic domain: which subjects the author writes about
2. Material type: personal experience, data, cases, quotations
3. Focus: what the author pays most attention to
4. Value orientation: the attitude or beliefs that come through

And these expression dimensions:
5. Diction: vocabulary habits and characteristic wording
6. Emotional tone: restrained, passionate, humorous, ...
7. Structural habit: how openings, paragraphs and endings are organized
8. Interaction style: how the author addresses the reader

Each descriptor is one concise phrase such as "Diction: plain everyday words, no jargon".
Return ONLY a JSON array of at most {limit} strings, no explanations.

Reference text(s):
{texts}
"""

# Checked in order; anything unmatched is rhetoric.
CATEGORY_KEYWORDS = [
    ("vocabulary", ("vocabulary", "word", "diction", "term", "jargon", "phrase", "词汇", "用词", "措辞", "术语")),
    ("syntax", ("sentence", "syntax", "clause", "rhythm", "句式", "句子", "句法", "节奏")),
    ("structure", ("structure", "paragraph", "opening", "ending", "section", "organiz", "结构", "段落", "开头", "结尾")),
]


def categorize(description: str) -> str:
    """Coarse trait family of a descriptor, by keyword."""
    lowered = description.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "rhetoric"


def to_style_elements(article_id: str, descriptors: Iterable[str]) -> List[StyleElement]:
    """Wrap descriptors as unconfirmed elements owned by ``article_id``."""
    return [
        StyleElement(article_id=article_id, description=text, category=categorize(text))
        for text in descriptors
        if text and text.strip()
    ]


def _descriptor_list(limit: int):
    def _normalize(data: Any) -> Optional[List[str]]:
        if isinstance(data, dict):
            data = data.get("descriptors") or data.get("styles") or data.get("elements")
        if not isinstance(data, list):
            return None
        descriptors = [item.strip() for item in data if isinstance(item, str) and item.strip()]
        return descriptors[:limit] or None

    return _normalize


class StyleElementExtractor:
    """Extract style descriptors through the generation pipeline."""

    def __init__(self, pipeline: GenerationPipeline, max_descriptors: int = MAX_DESCRIPTORS) -> None:
        self.pipeline = pipeline
        self.max_descriptors = max_descriptors

    def build_prompt(self, texts: List[str]) -> str:
        joined = "\n\n---\n\n".join(text[:MAX_TEXT_LENGTH] for text in texts)
        return EXTRACTION_PROMPT.format(limit=self.max_descriptors, texts=joined)

    async def extract(self, texts: List[str]) -> List[str]:
        """Return up to ``max_descriptors`` descriptors; ``[]`` on any failure."""
        texts = [text for text in texts if text and text.strip()]
        if not texts:
            return []

        try:
            raw = await self.pipeline.call(CallKind.STYLE, self.build_prompt(texts))
        except DraftsmithError as e:
            logger.warning("style_extractor.failed", error=str(e), error_type=e.__class__.__name__)
            return []

        cap = self.max_descriptors
        result = robust_parse(
            raw,
            validate=_descriptor_list(cap),
            fallback=list,
            line_scan=lambda text: scan_lines(text, keep=has_colon_or_quote, cap=cap),
            kind=CallKind.STYLE.value,
        )
        logger.info("style_extractor.completed", descriptors=len(result.value), tier=result.tier)
        return result.value
