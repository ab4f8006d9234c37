"""Deterministic fallback content used when generation fails or is unparseable.

Every function here is pure: the same inputs always produce the same output,
so degraded runs are reproducible and easy to assert on in tests.
"""

import re
from typing import List

from draftsmith.graph.state import OutlineNode

DEFAULT_SUMMARY = "Summary to be completed."
DEFAULT_TITLE = "Untitled Article"

FALLBACK_OUTLINE = [
    ("Introduction", "Introduce the background of the topic or the personal experience behind it."),
    ("Main Content", "Develop the core points of the draft with concrete examples."),
    ("Conclusion", "Summarize the key points and close with practical advice."),
]

_HEADING_RE = re.compile(r"^\s{0,3}(#{1,6})\s+(.+?)\s*#*\s*$")


def fallback_outline() -> List[OutlineNode]:
    """The fixed three-node outline skeleton."""
    return [
        OutlineNode(id=str(index + 1), title=title, summary=summary, level=1, order=index)
        for index, (title, summary) in enumerate(FALLBACK_OUTLINE)
    ]


def fallback_article(outline: List[OutlineNode], draft: str) -> str:
    """Assemble a Markdown article from the outline, seeded with the draft.

    The draft is placed under the first heading so no user text is lost; the
    remaining sections carry their outline summaries as placeholders.
    """
    nodes = sorted(outline, key=lambda node: node.order) or fallback_outline()
    draft_text = (draft or "").strip()
    parts: List[str] = []

    for index, node in enumerate(nodes):
        marker = "#" if node.level == 1 else "##"
        parts.append(f"{marker} {node.title}")
        if index == 0 and draft_text:
            parts.append(draft_text)
        elif node.summary:
            parts.append(node.summary)

    return "\n\n".join(parts).strip() + "\n"


def headings(content: str) -> List[str]:
    """Markdown heading texts of ``content``, in document order."""
    found = []
    for line in (content or "").splitlines():
        match = _HEADING_RE.match(line)
        if match:
            found.append(match.group(2).strip())
    return found


def fallback_titles(content: str, current_title: str = "") -> List[str]:
    """One title candidate: the first heading, the current title, or a default."""
    found = headings(content)
    if found:
        return [found[0]]
    if current_title and current_title.strip():
        return [current_title.strip()]
    return [DEFAULT_TITLE]


def fallback_image_prompts(content: str, count: int = 3) -> List[str]:
    """Illustration prompts derived from the article's headings."""
    found = headings(content)[:count]
    if not found:
        return ["A clean, modern editorial illustration matching the article's theme"]
    return [
        f"A clean, modern editorial illustration for the section \"{heading}\""
        for heading in found
    ]
