import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional

UNKNOWN_CONVERSATION = "unknown"

# Content item types found in listing payloads.
INPUT_IMAGE = "input_image"
OUTPUT_IMAGE_URL = "output_image_url"
TEXT_CONTENT_TYPES = ("output_text", "input_text", "text")

# Candidate source types.
URL_EMBEDDED = "url-embedded"
FILE_REFERENCE = "file-reference"
MARKDOWN_LINK = "markdown-link"
ANNOTATED_PLACEHOLDER = "annotated-placeholder"

_HTTP_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

Resolver = Callable[[], Awaitable[Optional[str]]]


class RendererError(Exception):
    """Base class for errors raised by the renderer."""


class FileResolutionError(RendererError):
    """An authenticated file lookup failed or returned no usable locator."""


class CooldownError(FileResolutionError):
    """A lookup was refused because the file id is cooling down after a failure."""


def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and bool(_HTTP_URL_RE.match(value))


def image_url_of(content: Any) -> Optional[str]:
    """Returns the direct http(s) locator of an image content item, if any."""
    if not isinstance(content, dict):
        return None
    if content.get("type") not in (INPUT_IMAGE, OUTPUT_IMAGE_URL):
        return None
    url = content.get("image_url")
    return url if is_http_url(url) else None


def file_id_of(content: Any) -> Optional[str]:
    if not isinstance(content, dict) or content.get("type") != INPUT_IMAGE:
        return None
    file_id = content.get("file_id")
    return file_id if isinstance(file_id, str) and file_id else None


def is_image_content(content: Any) -> bool:
    return isinstance(content, dict) and content.get("type") in (INPUT_IMAGE, OUTPUT_IMAGE_URL)


def text_of(content: Any) -> Optional[str]:
    if not isinstance(content, dict) or content.get("type") not in TEXT_CONTENT_TYPES:
        return None
    text = content.get("text")
    return text if isinstance(text, str) else None


@dataclass
class MessageRecord:
    message_id: str
    role: str = "unknown"
    content_items: List[Dict[str, Any]] = field(default_factory=list)
    response_id: Optional[str] = None
    conversation_id: str = UNKNOWN_CONVERSATION
    # Page element the renders are mounted under; never serialized.
    anchor: Any = field(default=None, compare=False, repr=False)


class IdentityKey(NamedTuple):
    message_id: str
    source_type: str
    source_value: str

    def __str__(self) -> str:
        return f"{self.message_id}::{self.source_type}::{self.source_value}"


@dataclass
class ImageCandidate:
    message: MessageRecord
    source_type: str
    source_value: str
    caption: str
    resolver: Resolver
    fallback_note: Optional[str] = None
    requires_anchor: bool = True

    @property
    def key(self) -> IdentityKey:
        return IdentityKey(self.message.message_id, self.source_type, self.source_value)
