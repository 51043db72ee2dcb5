"""
The render engine: one instance per page session, owning every mutable table.
"""
import logging
import time
from typing import Any, Callable, List, Optional

from playwright.async_api import Error as PlaywrightError

from .auth import AuthContext
from .candidates import CandidateExtractor
from .config import RendererConfig
from .interception import NetworkInterceptor, attach_network_tap
from .models import MessageRecord
from .page import DOCUMENT, PageAdapter, PlaywrightPage
from .payloads import ConversationStore, normalize_rows, parse_list_payload
from .reconcile import Reconciler
from .render import RenderSurface
from .resolver import FileResolutionCache, Transport
from .scheduler import ChangeScheduler

logger = logging.getLogger(__name__)


class RenderEngine:
    def __init__(self, page: PageAdapter, config: Optional[RendererConfig] = None,
                 transport: Optional[Transport] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or RendererConfig()
        self.page = page
        self.auth = AuthContext()
        path_regex = self.config.api.items_path_regex
        self.store = ConversationStore(path_regex)
        self.resolver = FileResolutionCache(self.auth, self.config.api, transport, clock)
        self.extractor = CandidateExtractor(self.resolver.resolve, self.config.features, self.config.extraction)
        self.reconciler = Reconciler(page)
        self.surface = RenderSurface(page)
        self.scheduler = ChangeScheduler(self.scan, self.config.observation.mutation_debounce_ms)
        self.interceptor = NetworkInterceptor(
            self.auth, self.store, path_regex, page.location, on_messages=self._on_messages
        )
        self._last_location = ""
        self._closed = False

    def _on_messages(self, records: List[MessageRecord]) -> None:
        self.scheduler.enqueue(DOCUMENT)

    def refresh_location(self, href: Optional[str] = None) -> bool:
        """
        Records the page location; a change clears conversation-scoped auth.
        Returns True when the location changed.
        """
        href = href if href is not None else self.page.location()
        if not self._last_location:
            self._last_location = href
            return False
        if href == self._last_location:
            return False
        self._last_location = href
        self.auth.reset_for_location_change()
        return True

    def handle_navigation(self, href: Optional[str] = None) -> None:
        self.refresh_location(href)
        self.scheduler.enqueue(DOCUMENT)

    def reset_document(self) -> None:
        """
        Forgets everything tied to the previous document: rendered keys,
        retry entries, captured messages and seen listings.

        Resolved file locators and captured credentials are kept. Pending
        roots belonged to the old document and are dropped.
        """
        self.scheduler.clear_pending()
        self.surface.clear()
        self.store.clear()
        logger.info("New document loaded; render state reset.")
        if not self._closed:
            self.scheduler.enqueue(DOCUMENT)

    def enqueue(self, root: Any = DOCUMENT) -> None:
        self.scheduler.enqueue(root)

    async def scan(self, roots: List[Any]) -> None:
        """
        One scan cycle: the ambient payload scan over the roots, then
        reconciliation. Every element obtained during the cycle, the roots
        included, is released when it ends.
        """
        try:
            if self._closed:
                return
            self.refresh_location()
            budget = self.config.observation.max_scan_per_cycle
            for root in roots:
                if budget <= 0:
                    logger.debug("Scan budget exhausted for this cycle")
                    break
                budget -= await self.scan_root(root, budget)
            await self.process_captured_messages()
        finally:
            await self.page.release(roots)

    async def scan_root(self, root: Any, limit: int) -> int:
        containers = await self.page.find_payload_containers(root, limit)
        for element in containers:
            await self.process_container(element)
        return len(containers)

    async def process_container(self, element: Any) -> None:
        """Renders images from a listing payload printed verbatim in the page."""
        payload = parse_list_payload(await self.page.read_text(element))
        if payload is None:
            return
        conversation_id = self.store.conversation_for(None, self.page.location())
        messages = normalize_rows(payload["data"], conversation_id, anchor=element)
        for candidate in self.extractor.extract(messages, requires_anchor=False):
            await self.surface.render_candidate(candidate)
        await self.page.mark_processed(element)

    async def process_captured_messages(self) -> None:
        for conversation_id, messages in self.store.conversations().items():
            placed = await self.reconciler.reconcile(messages)
            for candidate in self.extractor.extract(placed, requires_anchor=True):
                if candidate.message.anchor is None:
                    continue
                await self.surface.render_candidate(candidate)

    async def idle(self) -> None:
        await self.interceptor.drain()
        await self.scheduler.idle()

    def close(self) -> None:
        """Tears the session down and releases every cache."""
        if self._closed:
            return
        self._closed = True
        self.scheduler.close()
        self.resolver.clear()
        self.auth.clear()
        self.surface.clear()
        self.store.clear()
        logger.info("Render engine closed.")


def is_new_document_request(request, main_frame) -> bool:
    """True for a request that replaces the main frame's document (load, reload, link)."""
    try:
        return request.is_navigation_request() and request.frame == main_frame
    except PlaywrightError:
        # Service worker requests have no frame.
        return False


async def attach(page, config: Optional[RendererConfig] = None,
                 transport: Optional[Transport] = None) -> RenderEngine:
    """
    Wires a render engine into a Playwright page.

    Call before navigating so the observer script and network tap see the
    first listing request.
    """
    config = config or RendererConfig()
    adapter = PlaywrightPage(page, config)
    engine = RenderEngine(adapter, config, transport)
    await adapter.install(engine.enqueue, engine.surface.retry)
    attach_network_tap(page, engine.interceptor)

    def on_request(request) -> None:
        if is_new_document_request(request, page.main_frame):
            engine.reset_document()

    def on_navigated(frame) -> None:
        if frame == page.main_frame:
            engine.handle_navigation(frame.url)

    page.on("request", on_request)
    page.on("framenavigated", on_navigated)
    page.on("close", lambda _page: engine.close())
    engine.refresh_location()
    logger.info("Render engine attached to page.")
    return engine
