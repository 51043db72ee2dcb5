#!/usr/bin/env python3
"""
Tests for network observation and the change scheduler.

Run with: python test_interception.py
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from log_image_renderer.auth import AuthContext
from log_image_renderer.config import ApiConfig
from log_image_renderer.interception import NetworkInterceptor, ObservedRequest, attach_network_tap
from log_image_renderer.payloads import ConversationStore
from log_image_renderer.scheduler import ChangeScheduler

ITEMS_URL = "https://api.openai.com/v1/dashboard/conversations/conv_a/items"
PAYLOAD = {
    "object": "list",
    "data": [{"item": {"type": "message", "id": "msg_1", "role": "user",
                       "content": [{"type": "input_image", "file_id": "file_1"}]}}],
}


def make_interceptor(location="https://platform.openai.com/logs"):
    auth = AuthContext()
    regex = ApiConfig().items_path_regex
    store = ConversationStore(regex)
    seen = []
    interceptor = NetworkInterceptor(auth, store, regex, lambda: location, on_messages=seen.extend)
    return interceptor, auth, store, seen


def body(value):
    async def load():
        if isinstance(value, Exception):
            raise value
        return value
    return load


def test_listing_detection():
    """Test which URLs count as conversation listings."""
    interceptor, *_ = make_interceptor()
    assert interceptor.is_listing_request(ITEMS_URL)
    assert interceptor.is_listing_request(ITEMS_URL + "?limit=50&order=asc")
    assert not interceptor.is_listing_request("https://api.openai.com/v1/dashboard/conversations/conv_a")
    assert not interceptor.is_listing_request("https://api.openai.com/v1/models")
    assert not interceptor.is_listing_request(None)
    print("✓ Listing requests are recognized by path")


def test_non_listing_requests_capture_auth_only():
    """Test that any request refreshes the fallback credentials."""
    interceptor, auth, store, seen = make_interceptor()

    async def run():
        interceptor.observe(ObservedRequest("https://api.openai.com/v1/models",
                                            {"Authorization": "Bearer tok_x"}, "xhr", body(PAYLOAD)))
        await interceptor.drain()

    asyncio.run(run())
    assert auth.bearer_token == "tok_x"
    assert auth.scoped("conv_a") is None, "Non-listing requests leave scoped snapshots alone"
    assert store.conversations() == {} and seen == []
    print("✓ Non-listing requests only capture credentials")


def test_fetch_and_xhr_listings_are_captured():
    """Test that both transports feed the same store."""
    for transport in ("fetch", "xhr"):
        interceptor, auth, store, seen = make_interceptor()

        async def run():
            interceptor.observe(ObservedRequest(ITEMS_URL, {"authorization": "Bearer t",
                                                            "openai-organization": "org_a"},
                                                transport, body(PAYLOAD)))
            await interceptor.drain()

        asyncio.run(run())
        assert [m.message_id for m in store.messages("conv_a")] == ["msg_1"], f"{transport} listing not captured"
        assert [m.message_id for m in seen] == ["msg_1"]
        assert auth.scoped("conv_a").organization == "org_a"
    print("✓ fetch and XHR listings are both captured")


def test_failures_never_propagate():
    """Test that broken bodies and headers are swallowed."""
    interceptor, auth, store, seen = make_interceptor()

    class BrokenHeaders(dict):
        def items(self):
            raise RuntimeError("unreadable")

    async def run():
        interceptor.observe(ObservedRequest(ITEMS_URL, {}, "fetch", body(ValueError("not json"))))
        interceptor.observe(ObservedRequest(ITEMS_URL, BrokenHeaders(authorization="Bearer t"), "xhr", body(PAYLOAD)))
        interceptor.observe(ObservedRequest(ITEMS_URL, {}, "fetch", body({"object": "not-a-list"})))
        await interceptor.drain()

    asyncio.run(run())
    assert store.conversations() == {}
    assert seen == []
    print("✓ Interception failures never reach the page")


def test_conversation_from_location():
    """Test the location fallback when the request URL has no conversation id."""
    interceptor, _, store, _ = make_interceptor(
        location="https://platform.openai.com/v1/dashboard/conversations/conv_loc/items"
    )
    interceptor.ingest(PAYLOAD, None)
    assert list(store.conversations()) == ["conv_loc"]
    print("✓ Location supplies the conversation id when the request lacks one")


class FakeRequest:
    def __init__(self, url, resource_type, headers):
        self.url = url
        self.resource_type = resource_type
        self._headers = headers

    async def all_headers(self):
        return self._headers


class FakeResponse:
    def __init__(self, request, payload):
        self.request = request
        self._payload = payload

    async def json(self):
        return self._payload


class EventPage:
    def __init__(self):
        self.handlers = {}

    def on(self, event, handler):
        self.handlers[event] = handler


def test_network_tap():
    """Test the Playwright event adaptation."""
    interceptor, auth, store, _ = make_interceptor()
    page = EventPage()
    attach_network_tap(page, interceptor)

    async def run():
        image = FakeRequest("https://cdn.test/a.png", "image", {"authorization": "Bearer ignored"})
        await page.handlers["request"](image)
        assert auth.bearer_token is None, "Only fetch/XHR traffic is observed"

        listing = FakeRequest(ITEMS_URL, "fetch", {"authorization": "Bearer tok_tap"})
        await page.handlers["request"](listing)
        await page.handlers["response"](FakeResponse(listing, PAYLOAD))
        await interceptor.drain()

    asyncio.run(run())
    assert auth.bearer_token == "tok_tap"
    assert [m.message_id for m in store.messages("conv_a")] == ["msg_1"]
    print("✓ Network tap forwards fetch/XHR traffic")


def test_scheduler_coalesces_changes():
    """Test that notifications inside one window become one cycle."""
    cycles = []

    async def scan(roots):
        cycles.append(list(roots))
        await asyncio.sleep(0.01)

    async def run():
        scheduler = ChangeScheduler(scan, debounce_ms=5)
        for root in ("a", "b", "a", "c"):
            scheduler.enqueue(root)
        assert scheduler.scheduled
        await scheduler.idle()
        scheduler.enqueue("d")
        await scheduler.idle()
        scheduler.close()
        scheduler.enqueue("e")
        await scheduler.idle()

    asyncio.run(run())
    assert cycles == [["a", "b", "c"], ["d"]], f"Unexpected cycles {cycles}"
    print("✓ Changes are coalesced into debounced cycles")


def test_scheduler_cycles_never_overlap():
    """Test that a cycle armed during a running scan waits for it."""
    active = []
    overlaps = []

    async def scan(roots):
        if active:
            overlaps.append(roots)
        active.append(roots)
        await asyncio.sleep(0.02)
        active.pop()

    async def failing(roots):
        raise RuntimeError("scan blew up")

    async def run():
        scheduler = ChangeScheduler(scan, debounce_ms=0)
        scheduler.enqueue("first")
        await asyncio.sleep(0.005)
        scheduler.enqueue("second")
        await scheduler.idle()

        broken = ChangeScheduler(failing, debounce_ms=0)
        broken.enqueue("x")
        await broken.idle()

    asyncio.run(run())
    assert overlaps == [], "Scan cycles must run one at a time"
    print("✓ Scan cycles are serialized and errors are contained")


if __name__ == '__main__':
    print("Running Interception Tests")
    print("=" * 60)
    print()

    try:
        test_listing_detection()
        test_non_listing_requests_capture_auth_only()
        test_fetch_and_xhr_listings_are_captured()
        test_failures_never_propagate()
        test_conversation_from_location()
        test_network_tap()
        test_scheduler_coalesces_changes()
        test_scheduler_cycles_never_overlap()
        print()
        print("=" * 60)
        print("All tests passed! ✓✓✓")
    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Unexpected error: {e}")
        sys.exit(1)
