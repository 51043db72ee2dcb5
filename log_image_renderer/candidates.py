"""
Extraction of image candidates from captured messages.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .config import ExtractionConfig, FeatureFlags
from .models import (
    ANNOTATED_PLACEHOLDER,
    FILE_REFERENCE,
    MARKDOWN_LINK,
    URL_EMBEDDED,
    ImageCandidate,
    MessageRecord,
    file_id_of,
    image_url_of,
    is_image_content,
    text_of,
)

logger = logging.getLogger(__name__)

FileResolve = Callable[[str, Optional[str]], Awaitable[str]]

PLACEHOLDER_CAPTION = "Annotated image reference"
PLACEHOLDER_MATCHED_NOTE = "Annotated image placeholder matched to nearby input_image."
PLACEHOLDER_MISSING_NOTE = "Annotated image placeholder detected but no nearby input_image found."


def _literal(url: Optional[str]):
    async def resolve() -> Optional[str]:
        return url
    return resolve


def extract_markdown_images(text: str, extraction: ExtractionConfig) -> List[str]:
    return [match.group(1) for match in extraction.markdown_regex.finditer(text or "")]


def find_nearby_image(messages: Sequence[MessageRecord], index: int, window: int) -> Optional[Dict[str, Any]]:
    """
    Looks for an image content item near ``messages[index]``.

    At each distance from 0 to ``window`` the earlier message is checked
    before the later one; the first image content item found wins.
    """
    for distance in range(window + 1):
        for position in (index - distance, index + distance):
            if position < 0 or position >= len(messages):
                continue
            for content in messages[position].content_items:
                if is_image_content(content):
                    return content
    return None


class CandidateExtractor:
    def __init__(self, resolve_file: FileResolve, features: Optional[FeatureFlags] = None,
                 extraction: Optional[ExtractionConfig] = None):
        self._resolve_file = resolve_file
        self.features = features or FeatureFlags()
        self.extraction = extraction or ExtractionConfig()

    def _file_resolver(self, file_id: str, conversation_id: Optional[str]):
        async def resolve() -> Optional[str]:
            return await self._resolve_file(file_id, conversation_id)
        return resolve

    def _linked_resolver(self, linked: Optional[Dict[str, Any]], conversation_id: Optional[str]):
        async def resolve() -> Optional[str]:
            if linked is None:
                return None
            url = image_url_of(linked)
            if url:
                return url
            file_id = file_id_of(linked)
            if file_id:
                return await self._resolve_file(file_id, conversation_id)
            return None
        return resolve

    def extract(self, messages: Sequence[MessageRecord], requires_anchor: bool = True) -> List[ImageCandidate]:
        candidates: List[ImageCandidate] = []
        for index, message in enumerate(messages):
            for content in message.content_items:
                candidates.extend(self._from_content(messages, index, message, content, requires_anchor))
        return candidates

    def _from_content(self, messages, index, message, content, requires_anchor) -> List[ImageCandidate]:
        url = image_url_of(content)
        if url:
            return [ImageCandidate(message, URL_EMBEDDED, url, url, _literal(url),
                                   requires_anchor=requires_anchor)]

        file_id = file_id_of(content)
        if file_id:
            if not self.features.render_input_image_by_file_id:
                return []
            return [ImageCandidate(message, FILE_REFERENCE, file_id, file_id,
                                   self._file_resolver(file_id, message.conversation_id),
                                   requires_anchor=requires_anchor)]

        text = text_of(content)
        if text is None:
            return []

        found: List[ImageCandidate] = []
        if self.features.render_markdown_images:
            # Tagged as markdown links but resolved like embedded URLs: the link is the locator.
            for link in extract_markdown_images(text, self.extraction):
                found.append(ImageCandidate(message, MARKDOWN_LINK, link, link, _literal(link),
                                            requires_anchor=requires_anchor))

        if self.features.render_annotated_image_placeholder and self.extraction.placeholder_marker in text:
            linked = find_nearby_image(messages, index, self.extraction.placeholder_window)
            marker_value = (image_url_of(linked) or file_id_of(linked) or "missing") if linked else "missing"
            if linked is None:
                logger.debug(f"No image near placeholder in message {message.message_id}")
            found.append(ImageCandidate(
                message,
                ANNOTATED_PLACEHOLDER,
                marker_value,
                PLACEHOLDER_CAPTION,
                self._linked_resolver(linked, message.conversation_id),
                fallback_note=PLACEHOLDER_MATCHED_NOTE if linked else PLACEHOLDER_MISSING_NOTE,
                requires_anchor=requires_anchor,
            ))
        return found
