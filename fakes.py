"""
In-memory stand-ins for the browser page and the lookup transport, used by the tests.
"""
import asyncio
from typing import Any, Dict, List, Optional

from log_image_renderer.config import PageSelectors
from log_image_renderer.page import DOCUMENT, PageAdapter


class FakeElement:
    def __init__(self, tag: str, text: str = "", children: Optional[List["FakeElement"]] = None, **attrs):
        self.tag = tag
        self.text = text
        self.attrs: Dict[str, str] = {k.rstrip("_").replace("_", "-"): v for k, v in attrs.items()}
        self.parent: Optional[FakeElement] = None
        self.children: List[FakeElement] = []
        for child in children or []:
            self.append(child)

    def append(self, child: "FakeElement") -> "FakeElement":
        child.parent = self
        self.children.append(child)
        return child

    def prepend(self, child: "FakeElement") -> "FakeElement":
        child.parent = self
        self.children.insert(0, child)
        return child

    def remove(self, child: "FakeElement") -> None:
        self.children.remove(child)
        child.parent = None

    def descendants(self):
        for child in self.children:
            yield child
            yield from child.descendants()

    def has_class(self, name: str) -> bool:
        return name in self.attrs.get("class", "").split()

    def closest(self, predicate) -> Optional["FakeElement"]:
        node = self
        while node is not None:
            if predicate(node):
                return node
            node = node.parent
        return None

    def text_content(self) -> str:
        return self.text + "".join(child.text_content() for child in self.children)

    def find_class(self, name: str) -> Optional["FakeElement"]:
        return next((el for el in self.descendants() if el.has_class(name)), None)

    def child_with(self, attribute: str, value: str) -> Optional["FakeElement"]:
        return next((c for c in self.children if c.attrs.get(attribute) == value), None)

    def __repr__(self):
        return f"<{self.tag} {self.attrs}>"


def _owned(element: FakeElement) -> bool:
    return element.closest(lambda el: "data-lir-owned" in el.attrs) is not None


def message_block(role: str, body: Optional[str]) -> FakeElement:
    children = [FakeElement("span", role.capitalize(), class_="Ykd-p")]
    if body is not None:
        children.append(FakeElement("div", body, class_="EWWAC"))
    return FakeElement("div", children=children, class_="zl9Lq")


def response_card(response_id: str, blocks: List[tuple]) -> FakeElement:
    """A response card shaped like the log viewer's: id marker plus ordered message blocks."""
    return FakeElement("div", class_="_7ho-7", children=[
        FakeElement("span", response_id, class_="zxtJj"),
        FakeElement("div", class_="nyCLx", children=[message_block(r, b) for r, b in blocks]),
    ])


class FakePage(PageAdapter):
    PAYLOAD_TAGS = ("pre", "code", "article", "section", "div")

    def __init__(self, url: str = "https://platform.openai.com/logs/conv_a", body: Optional[FakeElement] = None):
        self.url = url
        self.body = body or FakeElement("body")
        self.selectors = PageSelectors()
        self.calls: List[str] = []
        # Elements handed out and not yet released.
        self.live: List[FakeElement] = []
        self.released_roots: List[Any] = []

    def location(self) -> str:
        return self.url

    def _hand_out(self, element: Optional[FakeElement]) -> Optional[FakeElement]:
        if element is not None:
            self.live.append(element)
        return element

    async def release(self, roots=()) -> None:
        self.live.clear()
        self.released_roots.extend(root for root in roots if root is not DOCUMENT)

    async def find_payload_containers(self, root: Any, limit: int) -> List[Any]:
        root = self.body if root is DOCUMENT or root is None else root
        out = []
        for el in [root, *root.descendants()]:
            if len(out) >= limit:
                break
            if el.tag not in self.PAYLOAD_TAGS and "data-testid" not in el.attrs:
                continue
            if el.attrs.get("data-lir-processed") == "1" or _owned(el):
                continue
            text = el.text_content()
            if all(token in text for token in ('"object"', '"data"', '"type"', '"message"')):
                out.append(self._hand_out(el))
        return out

    async def read_text(self, element: Any) -> str:
        return element.text_content()

    async def mark_processed(self, element: Any) -> None:
        element.attrs["data-lir-processed"] = "1"

    async def find_by_identity(self, message_id: str) -> Optional[Any]:
        self.calls.append(f"identity:{message_id}")
        for attribute, operator in self.selectors.identity_rules:
            for el in self.body.descendants():
                value = el.attrs.get(attribute)
                if value is None or _owned(el):
                    continue
                if (operator == "=" and value == message_id) or (operator == "*=" and message_id in value):
                    return self._hand_out(el)
        return None

    async def find_response_card(self, response_id: str) -> Optional[Any]:
        self.calls.append(f"card:{response_id}")
        for el in self.body.descendants():
            if el.tag == "span" and el.has_class("zxtJj") and el.text_content().strip() == response_id:
                card = el.closest(lambda node: node.has_class("_7ho-7"))
                if card is not None:
                    return self._hand_out(card)
        return None

    async def read_blocks(self, card: Any) -> List[tuple]:
        self.calls.append("blocks")
        blocks = []
        for el in card.descendants():
            if el.has_class("zl9Lq") and el.closest(lambda node: node.has_class("nyCLx")):
                role = el.find_class("Ykd-p")
                body = el.find_class("EWWAC")
                blocks.append((role.text_content() if role else "", body.text_content() if body else "",
                               self._hand_out(el)))
        return blocks

    async def ensure_mount(self, host: Any, message_id: str) -> Any:
        for el in host.descendants():
            if el.attrs.get("data-lir-root") == message_id:
                return self._hand_out(el)
        return self._hand_out(host.append(FakeElement("div", data_lir_root=message_id, data_lir_owned="1")))

    async def global_gallery(self) -> Any:
        for el in self.body.descendants():
            if el.attrs.get("id") == "lir-global-gallery":
                return self._hand_out(el)
        return self._hand_out(self.body.prepend(FakeElement("section", id="lir-global-gallery", data_lir_owned="1")))

    async def has_artifact(self, mount: Any, kind: str, key: str) -> bool:
        return mount.child_with(f"data-lir-{kind}", key) is not None

    async def append_image_card(self, mount: Any, key: str, src: str, caption: Optional[str]) -> None:
        mount.append(FakeElement("div", caption or src, data_lir_card=key, src=src))

    async def append_note(self, mount: Any, key: str, text: str) -> None:
        mount.append(FakeElement("div", text, data_lir_note=key))

    async def show_error(self, mount: Any, key: str, label: str) -> None:
        box = mount.child_with("data-lir-error", key)
        if box is None:
            box = mount.append(FakeElement("div", data_lir_error=key))
        box.text = label

    async def remove_error(self, mount: Any, key: str) -> None:
        box = mount.child_with("data-lir-error", key)
        if box is not None:
            mount.remove(box)

    # --- inspection helpers ---
    def artifacts(self, kind: str) -> List[FakeElement]:
        return [el for el in self.body.descendants() if f"data-lir-{kind}" in el.attrs]


class FakeTransport:
    """
    Scripted lookup responses, consumed in order; the last one repeats.
    An Exception instance in the script is raised instead of returned.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [{"url": "https://files.test/signed.png"}]
        self.calls: List[tuple] = []

    async def __call__(self, url: str, headers: Dict[str, str]) -> Any:
        self.calls.append((url, dict(headers)))
        await asyncio.sleep(0)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
