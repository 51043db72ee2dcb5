"""
Pure text matching between captured messages and scraped UI blocks.

Nothing here touches the page, so the heuristics can be exercised on plain data.
"""
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

from .models import MessageRecord, is_image_content, text_of

MESSAGE_SNIPPET_CHARS = 140
BLOCK_SNIPPET_CHARS = 120

_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*]\((https?://[^)\s]+)\)", re.IGNORECASE | re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_UNDERSCORE_BOLD_RE = re.compile(r"__([^_]+)__")
_CODE_RE = re.compile(r"`([^`]+)`")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class UiBlock:
    index: int
    role: str
    body_text: str
    element: Any = field(default=None, compare=False, repr=False)

    @property
    def has_body(self) -> bool:
        return bool(self.body_text)


@dataclass
class ResponseBlockContext:
    blocks: List[UiBlock]
    used: Set[int] = field(default_factory=set)


def normalize_match_text(text: Optional[str]) -> str:
    text = _MARKDOWN_IMAGE_RE.sub(r"\1", text or "")
    text = _BOLD_RE.sub(r"\1", text)
    text = _UNDERSCORE_BOLD_RE.sub(r"\1", text)
    text = _CODE_RE.sub(r"\1", text)
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def message_match_text(message: MessageRecord) -> str:
    parts = [text for text in (text_of(c) for c in message.content_items) if text is not None]
    return normalize_match_text(" ".join(parts))


def is_image_only(message: MessageRecord) -> bool:
    items = message.content_items
    return bool(items) and all(is_image_content(c) for c in items)


def body_contains_message(message_text: str, block_text: str) -> bool:
    snippet = message_text[:MESSAGE_SNIPPET_CHARS]
    return bool(snippet) and bool(block_text) and snippet in block_text


def message_contains_body(message_text: str, block_text: str) -> bool:
    snippet = block_text[:BLOCK_SNIPPET_CHARS]
    return bool(snippet) and snippet in message_text


def select_block(message: MessageRecord, blocks: List[UiBlock], used: Set[int]) -> Optional[UiBlock]:
    """
    Picks the UI block that most plausibly renders ``message``.

    Only unused blocks with the message's role qualify. Preference order:
    an empty block for an image-only message, a block containing the
    message's leading text, a block whose leading text the message
    contains, then the first qualifying block. The chosen index is added
    to ``used``.
    """
    role = (message.role or "").lower()
    eligible = [b for b in blocks if b.role == role and b.index not in used]
    if not eligible:
        return None

    chosen = None
    if is_image_only(message):
        chosen = next((b for b in eligible if not b.has_body), None)

    if chosen is None:
        text = message_match_text(message)
        if text:
            chosen = next((b for b in eligible if body_contains_message(text, b.body_text)), None)
            if chosen is None:
                chosen = next((b for b in eligible if message_contains_body(text, b.body_text)), None)

    if chosen is None:
        chosen = eligible[0]
    used.add(chosen.index)
    return chosen
