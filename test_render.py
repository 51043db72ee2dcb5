#!/usr/bin/env python3
"""
Tests for the render and retry surface.

Run with: python test_render.py
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeElement, FakePage
from log_image_renderer.models import FILE_REFERENCE, URL_EMBEDDED, FileResolutionError, ImageCandidate, MessageRecord
from log_image_renderer.render import ERROR, NOTE, RENDERED, RenderSurface


class ScriptedResolver:
    """Returns or raises the scripted results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def setup(resolver, anchor=True, requires_anchor=True, fallback_note=None):
    page = FakePage()
    host = page.body.append(FakeElement("div", data_message_id="msg_1")) if anchor else None
    message = MessageRecord("msg_1", "user", anchor=host)
    candidate = ImageCandidate(message, FILE_REFERENCE, "file_1", "file_1", resolver,
                               fallback_note=fallback_note, requires_anchor=requires_anchor)
    return page, RenderSurface(page), candidate


def test_render_is_idempotent():
    """Test that a rendered identity key renders once."""
    resolver = ScriptedResolver("https://files.test/a.png")
    page, surface, candidate = setup(resolver)

    async def run():
        await surface.render_candidate(candidate)
        await surface.render_candidate(candidate)
        await surface.mount(candidate.message.anchor, "msg_1")

    asyncio.run(run())
    cards = page.artifacts("card")
    assert len(cards) == 1, f"Expected one card, got {len(cards)}"
    assert cards[0].attrs["src"] == "https://files.test/a.png"
    assert cards[0].attrs["data-lir-card"] == "msg_1::file-reference::file_1"
    assert resolver.calls == 1, "The resolver should run once"
    assert len([el for el in page.body.descendants() if "data-lir-root" in el.attrs]) == 1, \
        "Mounting twice must reuse the container"
    assert surface.outcomes[str(candidate.key)][1] == RENDERED
    print("✓ Same identity key renders exactly once")


def test_empty_result_shows_note():
    """Test that an empty resolver result shows the fallback note."""
    page, surface, candidate = setup(ScriptedResolver(None), fallback_note="No nearby image found.")
    asyncio.run(surface.render_candidate(candidate))
    notes = page.artifacts("note")
    assert [n.text for n in notes] == ["No nearby image found."]
    assert page.artifacts("card") == []
    assert surface.outcomes[str(candidate.key)][1] == NOTE
    print("✓ Empty results show the informational note")


def test_retry_replaces_badge_with_card():
    """Test that retry removes the badge and renders the card on success."""
    resolver = ScriptedResolver(FileResolutionError("boom"), "https://files.test/late.png")
    page, surface, candidate = setup(resolver)
    key = str(candidate.key)

    asyncio.run(surface.render_candidate(candidate))
    badges = page.artifacts("error")
    assert len(badges) == 1
    assert badges[0].text == "Image unavailable (file_1)"
    assert surface.outcomes[key][1] == ERROR

    asyncio.run(surface.render_candidate(candidate))
    assert resolver.calls == 1, "A failed key is not re-rendered without an explicit retry"

    asyncio.run(surface.retry(key, badges[0].parent))
    assert page.artifacts("error") == [], "The badge should be removed"
    assert [c.attrs["src"] for c in page.artifacts("card")] == ["https://files.test/late.png"]
    assert resolver.calls == 2
    print("✓ Retry swaps the error badge for the image card")


def test_retry_failure_shows_badge_again():
    """Test that a failing retry re-renders the badge."""
    resolver = ScriptedResolver(FileResolutionError("still broken"))
    page, surface, candidate = setup(resolver)
    key = str(candidate.key)

    asyncio.run(surface.render_candidate(candidate))
    mount = page.artifacts("error")[0].parent
    asyncio.run(surface.retry(key, mount))
    assert len(page.artifacts("error")) == 1, "Exactly one badge after a failed retry"
    assert page.artifacts("card") == []
    assert resolver.calls == 2
    asyncio.run(surface.retry("unknown::key::x", mount))
    print("✓ Repeated failure shows the badge again")


def test_missing_anchor():
    """Test anchor requirements and the global gallery fallback."""
    page, surface, candidate = setup(ScriptedResolver("https://files.test/a.png"), anchor=False)
    asyncio.run(surface.render_candidate(candidate))
    assert page.artifacts("card") == [], "Anchored-only candidates are dropped without an anchor"
    assert not surface.is_rendered(str(candidate.key)), "A dropped candidate may render in a later pass"

    page, surface, candidate = setup(ScriptedResolver("https://files.test/a.png"), anchor=False,
                                     requires_anchor=False)
    asyncio.run(surface.render_candidate(candidate))
    gallery = page.body.children[0]
    assert gallery.attrs.get("id") == "lir-global-gallery", "The gallery is prepended to the page"
    assert len(page.artifacts("card")) == 1
    print("✓ Unanchored candidates are dropped or sent to the global gallery")


def test_sequential_order():
    """Test that cards appear in candidate order."""
    page = FakePage()
    host = page.body.append(FakeElement("div"))
    message = MessageRecord("msg_1", "user", anchor=host)
    surface = RenderSurface(page)

    async def delayed(url, delay):
        await asyncio.sleep(delay)
        return url

    async def run():
        for url, delay in (("https://x.test/slow.png", 0.02), ("https://x.test/fast.png", 0)):
            candidate = ImageCandidate(message, URL_EMBEDDED, url, url, lambda u=url, d=delay: delayed(u, d))
            await surface.render_candidate(candidate)

    asyncio.run(run())
    assert [c.attrs["src"] for c in page.artifacts("card")] == ["https://x.test/slow.png", "https://x.test/fast.png"]
    print("✓ Cards keep candidate order")


if __name__ == '__main__':
    print("Running Render Surface Tests")
    print("=" * 60)
    print()

    try:
        test_render_is_idempotent()
        test_empty_result_shows_note()
        test_retry_replaces_badge_with_card()
        test_retry_failure_shows_badge_again()
        test_missing_anchor()
        test_sequential_order()
        print()
        print("=" * 60)
        print("All tests passed! ✓✓✓")
    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Unexpected error: {e}")
        sys.exit(1)
