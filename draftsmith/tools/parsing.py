"""Robust parsing helpers for LLM output.

Models are asked for JSON but routinely wrap it in prose, fences, or chat
pleasantries. ``robust_parse`` is the single entry point every structured
call uses; it tries, in order:

1. Direct ``json.loads`` on the whole response.
2. Regex extraction of the first JSON array (or object) span.
3. A caller-supplied heuristic line scan.
4. A caller-supplied deterministic fallback.

Each candidate is passed through the caller's ``validate`` callback, which
normalizes it into the target shape and returns ``None`` (or raises
``ValueError``) when the shape is unusable, moving on to the next tier.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)

_FENCE_RE = re.compile(r"^\s*(`{3,}|~{3,})[\w-]*\s*\n(?P<body>.*?)\n\s*\1\s*$", re.DOTALL)
_BULLET_RE = re.compile(r"^\s*(?:[-*•·]|\d+[.)、]|[（(]\d+[)）])\s*")
_QUOTES = "\"'“”‘’「」『』"

# Chat openers and self-references that break the "in character" contract.
# An interjection only counts when the rest of the line is about the response.
_PREAMBLE_PATTERNS = [
    re.compile(
        r"^(sure|certainly|of course|absolutely|okay|ok|alright)\s*[,!.:，！。]\s*"
        r"($|here\b|below\b|i(?:'ve|'ll| have| will)\b|the (?:revised|rewritten|edited|updated)\b)",
        re.I,
    ),
    re.compile(r"^here(?:'s| is| are)\b.{0,80}(article|draft|version|content|outline|post|text)", re.I),
    re.compile(r"^(hi|hello|hey)(?: there)?\s*[!,.]?\s*$", re.I),
    re.compile(r"^as an ai\b", re.I),
    re.compile(r"^i(?:'m| am) (?:an ai|a language model|happy to|glad to)", re.I),
    re.compile(r"^(好的|当然|没问题|可以的?)[，,！!。：:]\s*($|以下|下面|这是|我已|我将)"),
    re.compile(r"^(以下是|下面是|这是).{0,40}(文章|内容|版本|大纲|正文)"),
    re.compile(r"^作为(一个|一名)?\s*(AI|人工智能|语言模型)", re.I),
]
# Sign-offs addressed to the requester; reader-directed endings are content.
_CLOSER_PATTERNS = [
    re.compile(r"^let me know if (?:you(?:'d| would)? (?:like|want|need)|there(?:'s| is| are)|any\b)", re.I),
    re.compile(r"^(?:i )?hope (?:this|these|that) (?:helps|works|edit|revision|version|rewrite|meets|fits)", re.I),
    re.compile(r"^feel free to (?:ask|let me know|reach out|request|adjust|tweak|modify)\b", re.I),
    re.compile(r"^希望(这篇|以上|这些).{0,30}(帮助|喜欢|满意)"),
]
_PREAMBLE_MAX_LINE = 160


@dataclass
class ParseResult(Generic[T]):
    """Parsed value plus the tier that produced it."""

    value: T
    tier: str

    @property
    def degraded(self) -> bool:
        return self.tier == "fallback"


def _try_validate(candidate: Any, validate: Callable[[Any], Optional[T]]) -> Optional[T]:
    try:
        return validate(candidate)
    except (ValueError, TypeError, KeyError):
        return None


def robust_parse(
    raw: str,
    validate: Callable[[Any], Optional[T]],
    fallback: Callable[[], T],
    line_scan: Optional[Callable[[str], Any]] = None,
    pattern: re.Pattern = ARRAY_PATTERN,
    kind: str = "structured",
) -> ParseResult[T]:
    """Parse ``raw`` into the target shape, never raising.

    Args:
        raw: Raw model output.
        validate: Normalizes a decoded candidate; returns None when unusable.
        fallback: Builds the deterministic value used when every tier fails.
        line_scan: Optional heuristic that turns free text into a candidate.
        pattern: Regex locating the JSON span for tier 2.
        kind: Call kind, for logging.

    Returns:
        A ParseResult whose ``tier`` is one of ``json``, ``extracted``,
        ``line_scan`` or ``fallback``.
    """
    text = (raw or "").strip()

    # Strategy 1: direct JSON parse
    if text:
        try:
            value = _try_validate(json.loads(text), validate)
            if value is not None:
                return ParseResult(value, "json")
        except (json.JSONDecodeError, ValueError):
            pass

    # Strategy 2: regex extraction of the JSON span
    match = pattern.search(text)
    if match:
        try:
            value = _try_validate(json.loads(match.group()), validate)
            if value is not None:
                return ParseResult(value, "extracted")
        except (json.JSONDecodeError, ValueError):
            pass

    # Strategy 3: heuristic line scan
    if line_scan is not None and text:
        value = _try_validate(line_scan(text), validate)
        if value is not None:
            logger.info("parsing.line_scan_used", kind=kind, response_snippet=text[:100])
            return ParseResult(value, "line_scan")

    # Strategy 4: deterministic fallback
    logger.warning("parsing.fallback_used", kind=kind, response_snippet=text[:100])
    return ParseResult(fallback(), "fallback")


def clean_line(line: str) -> str:
    """Strip bullets, numbering, surrounding quotes and trailing commas."""
    line = _BULLET_RE.sub("", line.strip())
    line = line.rstrip(",，")
    return line.strip().strip(_QUOTES).strip()


def scan_lines(
    text: str,
    keep: Optional[Callable[[str], bool]] = None,
    cap: Optional[int] = None,
) -> List[str]:
    """Return cleaned, non-empty lines of ``text`` that satisfy ``keep``.

    Code fences and bare JSON brackets are skipped. ``keep`` sees the raw
    (stripped) line so it can inspect punctuation before cleaning.
    """
    results: List[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if not stripped or stripped.startswith("```") or stripped in ("[", "]", "{", "}"):
            continue
        if keep is not None and not keep(stripped):
            continue
        cleaned = clean_line(stripped)
        if cleaned:
            results.append(cleaned)
        if cap is not None and len(results) >= cap:
            break
    return results


def has_colon_or_quote(line: str) -> bool:
    return any(ch in line for ch in ":：") or any(ch in line for ch in _QUOTES)


def strip_code_fence(text: str) -> str:
    """Unwrap a response that is entirely enclosed in one fenced block."""
    match = _FENCE_RE.match(text or "")
    return match.group("body") if match else (text or "")


def strip_preamble(text: str) -> str:
    """Remove leading chat openers and trailing sign-offs from article text.

    Only short lines are considered, so a real first paragraph that happens
    to start with "Sure" is kept.
    """
    lines = strip_code_fence((text or "").strip()).splitlines()

    def _is_chatter(line: str, patterns) -> bool:
        candidate = line.strip()
        return len(candidate) <= _PREAMBLE_MAX_LINE and any(p.search(candidate) for p in patterns)

    while lines and (not lines[0].strip() or _is_chatter(lines[0], _PREAMBLE_PATTERNS)):
        lines.pop(0)
    while lines and (not lines[-1].strip() or _is_chatter(lines[-1], _CLOSER_PATTERNS)):
        lines.pop()

    return strip_code_fence("\n".join(lines).strip()).strip()


def truncate(text: str, limit: int = 200) -> str:
    """Shorten ``text`` for logs, marking the cut with an ellipsis."""
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "…"
