"""
Mounting of image cards, notes and error badges under page anchors.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from .models import ImageCandidate
from .page import PageAdapter

logger = logging.getLogger(__name__)

RENDERED = "rendered"
NOTE = "note"
ERROR = "error"
SKIPPED = "skipped"


class RenderSurface:
    """
    Renders each candidate identity key at most once per page lifetime.

    A key only renders again after the user activates the retry button on
    its error badge, which clears the key first.
    """

    def __init__(self, page: PageAdapter):
        self._page = page
        self._rendered = set()
        self._retry: Dict[str, ImageCandidate] = {}
        self.outcomes: Dict[str, Tuple[ImageCandidate, str, Optional[str]]] = {}

    def is_rendered(self, key: str) -> bool:
        return key in self._rendered

    async def mount(self, anchor: Any, message_id: str, allow_global_fallback: bool = True) -> Optional[Any]:
        host = anchor
        if host is None:
            if not allow_global_fallback:
                return None
            host = await self._page.global_gallery()
        return await self._page.ensure_mount(host, message_id)

    async def render_candidate(self, candidate: ImageCandidate, mount: Any = None) -> None:
        key = str(candidate.key)
        if key in self._rendered:
            return
        if mount is None:
            mount = await self.mount(
                candidate.message.anchor, candidate.message.message_id, not candidate.requires_anchor
            )
        if mount is None:
            return
        if key in self._rendered:
            return
        self._rendered.add(key)

        try:
            src = await candidate.resolver()
        except Exception as e:
            label = f"Image unavailable ({candidate.source_value})"
            self._retry[key] = candidate
            self.outcomes[key] = (candidate, ERROR, str(e))
            await self._page.show_error(mount, key, label)
            logger.warning(f"Render failed for {key}: {e}")
            return

        if src:
            if not await self._page.has_artifact(mount, "card", key):
                await self._page.append_image_card(mount, key, src, candidate.caption)
            self.outcomes[key] = (candidate, RENDERED, src)
            logger.debug(f"Rendered image card {key}")
        elif candidate.fallback_note:
            if not await self._page.has_artifact(mount, "note", key):
                await self._page.append_note(mount, key, candidate.fallback_note)
            self.outcomes[key] = (candidate, NOTE, candidate.fallback_note)
        else:
            self.outcomes[key] = (candidate, SKIPPED, None)

    async def retry(self, key: str, mount: Any) -> None:
        """
        Handles a retry click on the badge for ``key`` inside ``mount``:
        drops the badge and renders the key again into the same mount.
        """
        candidate = self._retry.pop(key, None)
        if candidate is None:
            logger.debug(f"Retry requested for unknown key {key}")
            return
        logger.info(f"Retrying {key}")
        await self._page.remove_error(mount, key)
        self._rendered.discard(key)
        await self.render_candidate(candidate, mount)

    def clear(self) -> None:
        self._rendered.clear()
        self._retry.clear()
