"""
Observation of the host page's network traffic.

Playwright reports the page's fetch() calls and XMLHttpRequests as separate
resource types; both are adapted into one ObservedRequest record before the
interceptor looks at them. Nothing here can delay or alter what the page
receives: Playwright events are passive, and every error is caught and logged.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern
from urllib.parse import urlparse

from .auth import AuthContext
from .models import MessageRecord
from .payloads import ConversationStore

logger = logging.getLogger(__name__)

OBSERVED_RESOURCE_TYPES = ("fetch", "xhr")


@dataclass
class ObservedRequest:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    transport: str = "fetch"
    # Loads the parsed JSON body once the response is available.
    load_body: Optional[Callable[[], Awaitable[Any]]] = None


class NetworkInterceptor:
    def __init__(self, auth: AuthContext, store: ConversationStore, path_regex: Pattern,
                 location: Callable[[], Optional[str]],
                 on_messages: Optional[Callable[[List[MessageRecord]], None]] = None):
        self._auth = auth
        self._store = store
        self._path_regex = path_regex
        self._location = location
        self._on_messages = on_messages
        self._pending = set()

    def is_listing_request(self, url: Optional[str]) -> bool:
        if not url:
            return False
        try:
            return bool(self._path_regex.search(urlparse(url).path))
        except ValueError:
            return False

    def observe(self, request: ObservedRequest) -> None:
        """
        Captures credentials from any request and, for listing requests,
        schedules the response body for normalization.
        """
        try:
            self._auth.remember(request.headers)
            if not self.is_listing_request(request.url):
                return
            conversation_id = self._store.conversation_for(request.url, self._location())
            self._auth.remember_scoped(conversation_id, request.headers)
            if request.load_body is not None:
                task = asyncio.ensure_future(self._consume(request))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        except Exception as e:
            logger.debug(f"{request.transport} interception failed for {request.url}: {e}", exc_info=True)

    async def _consume(self, request: ObservedRequest) -> None:
        try:
            payload = await request.load_body()
            self.ingest(payload, request.url)
        except Exception as e:
            logger.debug(f"{request.transport} payload capture failed for {request.url}: {e}")

    def ingest(self, payload: Any, request_url: Optional[str]) -> List[MessageRecord]:
        records = self._store.ingest(payload, request_url, self._location())
        if records and self._on_messages is not None:
            self._on_messages(records)
        return records

    async def drain(self) -> None:
        """Waits for every scheduled payload capture to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# --- Playwright adaptation ---
def attach_network_tap(page, interceptor: NetworkInterceptor) -> None:
    """
    Feeds a Playwright page's fetch/XHR traffic into the interceptor.

    Request headers are captured as soon as a request starts; listing
    bodies are read once the response arrives.
    """

    async def on_request(request) -> None:
        if request.resource_type not in OBSERVED_RESOURCE_TYPES:
            return
        try:
            headers = await request.all_headers()
        except Exception as e:
            logger.debug(f"Could not read request headers for {request.url}: {e}")
            return
        interceptor.observe(ObservedRequest(request.url, headers, request.resource_type))

    async def on_response(response) -> None:
        request = response.request
        if request.resource_type not in OBSERVED_RESOURCE_TYPES:
            return
        if not interceptor.is_listing_request(request.url):
            return
        try:
            headers = await request.all_headers()
        except Exception as e:
            logger.debug(f"Could not read request headers for {request.url}: {e}")
            headers = {}
        interceptor.observe(ObservedRequest(request.url, headers, request.resource_type, response.json))

    page.on("request", on_request)
    page.on("response", on_response)
