"""
Resolution of file reference ids into displayable image locators.

Each file id gets at most one lookup in flight; concurrent callers share it.
A failed lookup puts the id into a cooldown during which calls fail fast
without touching the network. Resolved locators are cached until teardown.

The resolved locator is only ever handed to the page as an <img> source.
The lookup target's CSP forbids programmatic fetches of the signed URL,
so it is never downloaded here.
"""
import asyncio
import datetime
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import requests

from .auth import AuthContext
from .config import ApiConfig
from .models import CooldownError, FileResolutionError, is_http_url

logger = logging.getLogger(__name__)

Transport = Callable[[str, Dict[str, str]], Awaitable[Any]]

RESOLVED = "resolved"
IN_FLIGHT = "in-flight"
COOLING_DOWN = "cooling-down"
UNRESOLVED = "unresolved"


class RequestsTransport:
    """
    Issues lookup GETs with requests on a worker thread.
    Cookies are never sent; only the explicit auth headers are.
    """

    def __init__(self, timeout: float, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, url: str, headers: Dict[str, str]) -> Any:
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as e:
            raise FileResolutionError(f"Download link request failed: {e}") from e
        if not response.ok:
            raise FileResolutionError(f"Download link request failed with status {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise FileResolutionError(f"Download link response is not JSON: {e}") from e

    async def __call__(self, url: str, headers: Dict[str, str]) -> Any:
        return await asyncio.to_thread(self._get_json, url, headers)

    def close(self) -> None:
        self.session.close()


def download_link_endpoint(template: str, file_id: str) -> str:
    return template.replace("{file_id}", quote(file_id, safe=""))


class FileResolutionCache:
    def __init__(self, auth: AuthContext, api: Optional[ApiConfig] = None,
                 transport: Optional[Transport] = None, clock: Callable[[], float] = time.monotonic):
        self.api = api or ApiConfig()
        self._auth = auth
        self._transport = transport or RequestsTransport(self.api.lookup_timeout_seconds)
        self._clock = clock
        self._resolved: Dict[str, str] = {}
        self._errors: Dict[str, str] = {}
        self._retry_after: Dict[str, float] = {}
        self._in_flight: Dict[str, "asyncio.Future[str]"] = {}

    def status(self, file_id: str) -> str:
        if file_id in self._resolved:
            return RESOLVED
        if file_id in self._in_flight:
            return IN_FLIGHT
        if self._retry_after.get(file_id, 0) > self._clock():
            return COOLING_DOWN
        return UNRESOLVED

    def last_error(self, file_id: str) -> Optional[str]:
        return self._errors.get(file_id)

    async def resolve(self, file_id: str, conversation_id: Optional[str] = None) -> str:
        if not file_id:
            raise FileResolutionError("Missing file id")

        cached = self._resolved.get(file_id)
        if cached:
            return cached

        retry_after = self._retry_after.get(file_id, 0)
        remaining = retry_after - self._clock()
        if remaining > 0:
            until = datetime.datetime.now() + datetime.timedelta(seconds=remaining)
            raise CooldownError(
                f"Temporarily cooling down retries for {file_id} until {until.isoformat(timespec='seconds')}"
            )

        task = self._in_flight.get(file_id)
        if task is None:
            task = asyncio.ensure_future(self._lookup(file_id, conversation_id))
            self._in_flight[file_id] = task
            task.add_done_callback(lambda done, fid=file_id: self._forget(fid, done))
        # A cancelled caller must not abort the lookup other callers share.
        return await asyncio.shield(task)

    def _forget(self, file_id: str, task: "asyncio.Future[str]") -> None:
        if self._in_flight.get(file_id) is task:
            del self._in_flight[file_id]
        if not task.cancelled():
            # Mark the failure retrieved even when every caller went away.
            task.exception()

    async def _lookup(self, file_id: str, conversation_id: Optional[str]) -> str:
        endpoint = download_link_endpoint(self.api.download_link_template, file_id)
        headers = self._auth.headers_for(conversation_id)
        logger.debug(f"Requesting download link for {file_id} (conversation {conversation_id})")
        try:
            payload = await self._transport(endpoint, headers)
            url = payload.get("url") if isinstance(payload, dict) else None
            if not is_http_url(url):
                raise FileResolutionError("Download link response missing a valid signed URL.")
        except Exception as e:
            message = f"Download link lookup failed for {file_id}: {e}"
            self._errors[file_id] = message
            self._retry_after[file_id] = self._clock() + self.api.retry_cooldown_seconds
            logger.warning(message)
            raise FileResolutionError(message) from e

        self._resolved[file_id] = url
        self._errors.pop(file_id, None)
        self._retry_after.pop(file_id, None)
        logger.info(f"Resolved download link for {file_id}")
        return url

    def clear(self) -> None:
        """Releases every cached locator and error on teardown."""
        self._resolved.clear()
        self._errors.clear()
        self._retry_after.clear()
        self._in_flight.clear()
        close = getattr(self._transport, "close", None)
        if callable(close):
            close()
