"""
Narrow access to the host page.

The engine treats the live DOM as an untrusted external data source and only
reaches it through ``PageAdapter``. ``PlaywrightPage`` implements the adapter
for a Playwright page by evaluating the small scripts below; elements are
passed around as Playwright ElementHandles.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from .config import RendererConfig

logger = logging.getLogger(__name__)

# Pending-root sentinel meaning "the whole document".
DOCUMENT = "document"

NOTIFY_BINDING = "__lirNotifyMutation"
RETRY_BINDING = "__lirRetry"

# --- Page Scripts ---
OBSERVER_SCRIPT = """
(() => {
  if (window.__lirObserverInstalled) {
    return;
  }
  window.__lirObserverInstalled = true;

  const owned = (node) => {
    const el = node && node.nodeType === Node.ELEMENT_NODE ? node : node && node.parentElement;
    return Boolean(el && el.closest("[data-lir-owned]"));
  };

  const notify = (node) => {
    if (typeof window.__lirNotifyMutation === "function") {
      window.__lirNotifyMutation(node).catch(() => {});
    }
  };

  const start = () => {
    const observer = new MutationObserver((mutations) => {
      const roots = new Set();
      for (const mutation of mutations) {
        const changed = [...mutation.addedNodes, ...mutation.removedNodes];
        // Our own cards being added must not trigger another scan.
        if (owned(mutation.target) || (changed.length > 0 && changed.every(owned))) {
          continue;
        }
        roots.add(
          mutation.target.nodeType === Node.ELEMENT_NODE ? mutation.target : document.documentElement
        );
        for (const node of mutation.addedNodes) {
          if (node instanceof Element && !owned(node)) {
            roots.add(node);
          }
        }
      }
      for (const root of roots) {
        notify(root);
      }
    });
    observer.observe(document.body, { childList: true, subtree: true, characterData: true });
    notify(document.documentElement);
  };

  if (document.body) {
    start();
  } else {
    document.addEventListener("DOMContentLoaded", start, { once: true });
  }
})();
"""

STYLE_SCRIPT = """
(() => {
  const install = () => {
    if (document.getElementById("lir-styles")) {
      return;
    }
    const style = document.createElement("style");
    style.id = "lir-styles";
    style.textContent = `
      .lir-images { margin-top: 10px; display: grid; gap: 8px; }
      .lir-image-card {
        width: fit-content; max-width: min(100%, __MAX_WIDTH__px);
        border: 1px solid rgba(0, 0, 0, 0.12); border-radius: __RADIUS__px; padding: 8px;
      }
      .lir-image-card img {
        display: block; width: 100%; max-width: __MAX_WIDTH__px; height: auto; border-radius: __RADIUS__px;
      }
      .lir-caption { margin-top: 6px; font-size: 12px; word-break: break-all; }
      .lir-error {
        display: inline-flex; gap: 6px; border: 1px solid #d47373; color: #8b2f2f;
        border-radius: 999px; padding: 4px 10px; font-size: 12px;
      }
      .lir-retry { border: 0; background: transparent; text-decoration: underline; cursor: pointer; }
      .lir-note { padding: 4px 8px; border: 1px dashed rgba(0, 0, 0, 0.25); font-size: 12px; }
      .lir-global-gallery { margin: 14px 0; padding: 10px; border: 1px solid rgba(0, 0, 0, 0.12); }
    `;
    (document.head || document.documentElement).appendChild(style);
  };
  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", install, { once: true });
  } else {
    install();
  }
})();
"""

FIND_PAYLOAD_CONTAINERS_JS = """
(root, [selector, limit]) => {
  const textOf = (el) =>
    el.tagName === "PRE" || el.tagName === "CODE"
      ? el.textContent || ""
      : el.innerText || el.textContent || "";
  const looksLikePayload = (el) => {
    if (el.dataset.lirProcessed === "1" || el.closest("[data-lir-owned]")) {
      return false;
    }
    const text = textOf(el);
    return text.includes('"object"') && text.includes('"data"') &&
      text.includes('"type"') && text.includes('"message"');
  };
  const nodes = [];
  if (root instanceof Element && root.matches(selector)) {
    nodes.push(root);
  }
  nodes.push(...root.querySelectorAll(selector));
  const out = [];
  for (const el of nodes) {
    if (out.length >= limit) {
      break;
    }
    if (looksLikePayload(el)) {
      out.push(el);
    }
  }
  return out;
}
"""

READ_TEXT_JS = """
(el) => el.tagName === "PRE" || el.tagName === "CODE"
  ? el.textContent || ""
  : el.innerText || el.textContent || ""
"""

MARK_PROCESSED_JS = "(el) => { el.dataset.lirProcessed = '1'; }"

FIND_BY_IDENTITY_JS = """
([messageId, rules]) => {
  const escape = (value) =>
    window.CSS && typeof CSS.escape === "function"
      ? CSS.escape(value)
      : String(value).replace(/\\\\/g, "\\\\\\\\").replace(/"/g, '\\\\"');
  for (const [attribute, operator] of rules) {
    const found = document.querySelector(`[${attribute}${operator}"${escape(messageId)}"]`);
    if (found && !found.closest("[data-lir-owned]")) {
      return found;
    }
  }
  return null;
}
"""

FIND_RESPONSE_CARD_JS = """
([responseId, markerSelector, cardSelector]) => {
  for (const token of document.querySelectorAll(markerSelector)) {
    if ((token.textContent || "").trim() === responseId) {
      const card = token.closest(cardSelector);
      if (card) {
        return card;
      }
    }
  }
  return null;
}
"""

READ_BLOCKS_JS = """
(card, [blockSelector, roleSelector, bodySelector]) =>
  Array.from(card.querySelectorAll(blockSelector)).map((node) => {
    const roleEl = node.querySelector(roleSelector);
    const bodyEl = node.querySelector(bodySelector);
    return {
      role: roleEl ? roleEl.textContent || "" : "",
      body: bodyEl ? bodyEl.textContent || "" : "",
    };
  })
"""

ENSURE_MOUNT_JS = """
(host, messageId) => {
  for (const child of host.querySelectorAll("[data-lir-root]")) {
    if (child.getAttribute("data-lir-root") === messageId) {
      return child;
    }
  }
  const root = document.createElement("div");
  root.className = "lir-images";
  root.setAttribute("data-lir-root", messageId);
  root.setAttribute("data-lir-owned", "1");
  host.appendChild(root);
  return root;
}
"""

GLOBAL_GALLERY_JS = """
() => {
  let box = document.getElementById("lir-global-gallery");
  if (!box) {
    box = document.createElement("section");
    box.id = "lir-global-gallery";
    box.className = "lir-global-gallery";
    box.setAttribute("data-lir-owned", "1");
    const title = document.createElement("h3");
    title.textContent = "Conversation Images";
    box.appendChild(title);
    (document.querySelector("main") || document.body).prepend(box);
  }
  return box;
}
"""

HAS_CHILD_JS = """
(mount, [attribute, key]) =>
  Array.from(mount.children).some((child) => child.getAttribute(attribute) === key)
"""

APPEND_IMAGE_CARD_JS = """
(mount, { key, src, caption, showCaption }) => {
  const card = document.createElement("div");
  card.className = "lir-image-card";
  card.setAttribute("data-lir-card", key);
  const img = document.createElement("img");
  img.loading = "lazy";
  img.decoding = "async";
  img.src = src;
  img.alt = caption || "Conversation image";
  card.appendChild(img);
  if (showCaption) {
    const cap = document.createElement("div");
    cap.className = "lir-caption";
    cap.textContent = caption || src;
    card.appendChild(cap);
  }
  mount.appendChild(card);
}
"""

APPEND_NOTE_JS = """
(mount, { key, text }) => {
  const note = document.createElement("div");
  note.className = "lir-note";
  note.setAttribute("data-lir-note", key);
  note.textContent = text;
  mount.appendChild(note);
}
"""

SHOW_ERROR_JS = """
(mount, { key, label }) => {
  let box = Array.from(mount.children).find((child) => child.getAttribute("data-lir-error") === key);
  if (!box) {
    box = document.createElement("div");
    box.className = "lir-error";
    box.setAttribute("data-lir-error", key);
    mount.appendChild(box);
  } else {
    box.textContent = "";
  }
  const text = document.createElement("span");
  text.textContent = label;
  box.appendChild(text);
  const retry = document.createElement("button");
  retry.type = "button";
  retry.className = "lir-retry";
  retry.textContent = "Retry";
  retry.addEventListener("click", () => window.__lirRetry(box));
  box.appendChild(retry);
}
"""

REMOVE_ERROR_JS = """
(mount, key) => {
  for (const child of Array.from(mount.children)) {
    if (child.getAttribute("data-lir-error") === key) {
      child.remove();
    }
  }
}
"""


class PageAdapter(ABC):
    """The only surface through which the engine reads or changes the page."""

    @abstractmethod
    def location(self) -> str:
        ...

    @abstractmethod
    async def find_payload_containers(self, root: Any, limit: int) -> List[Any]:
        """Unprocessed elements under ``root`` whose text looks like a listing payload."""

    @abstractmethod
    async def read_text(self, element: Any) -> str:
        ...

    @abstractmethod
    async def mark_processed(self, element: Any) -> None:
        ...

    @abstractmethod
    async def find_by_identity(self, message_id: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def find_response_card(self, response_id: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def read_blocks(self, card: Any) -> List[Tuple[str, str, Any]]:
        """Ordered ``(role label, body text, element)`` for each message block of a card."""

    @abstractmethod
    async def ensure_mount(self, host: Any, message_id: str) -> Any:
        ...

    @abstractmethod
    async def global_gallery(self) -> Any:
        ...

    @abstractmethod
    async def has_artifact(self, mount: Any, kind: str, key: str) -> bool:
        ...

    @abstractmethod
    async def append_image_card(self, mount: Any, key: str, src: str, caption: Optional[str]) -> None:
        ...

    @abstractmethod
    async def append_note(self, mount: Any, key: str, text: str) -> None:
        ...

    @abstractmethod
    async def show_error(self, mount: Any, key: str, label: str) -> None:
        ...

    @abstractmethod
    async def remove_error(self, mount: Any, key: str) -> None:
        ...

    async def release(self, roots: Sequence[Any] = ()) -> None:
        """
        Drops every element reference handed out since the last release,
        plus the given scan roots. Elements must not be used afterwards.
        """


class PlaywrightPage(PageAdapter):
    def __init__(self, page, config: Optional[RendererConfig] = None):
        self._page = page
        self.config = config or RendererConfig()
        self._handles: List[Any] = []

    def _track(self, element: Optional[Any]) -> Optional[Any]:
        if element is not None:
            self._handles.append(element)
        return element

    async def release(self, roots: Sequence[Any] = ()) -> None:
        handles, self._handles = self._handles, []
        await self._dispose([*handles, *roots])

    async def _dispose(self, handles: Sequence[Any]) -> None:
        for handle in handles:
            if handle is None or handle is DOCUMENT:
                continue
            try:
                await handle.dispose()
            except Exception as e:
                logger.debug(f"Could not dispose element handle: {e}")

    async def install(self, on_mutation: Callable[[Any], None],
                      on_retry: Callable[[str, Any], Awaitable[None]]) -> None:
        """
        Exposes the page-side hooks and injects the observer and styles.
        The scripts are registered for future navigations and run now.
        """
        def notify(source, handle):
            element = handle.as_element() if handle is not None else None
            if element is None:
                on_mutation(DOCUMENT)
                if handle is not None:
                    asyncio.ensure_future(handle.dispose())
                return
            # Released by the scan cycle that consumes the root.
            on_mutation(element)

        async def retry(source, box):
            mount = None
            try:
                key = await box.get_attribute("data-lir-error")
                parent = await box.evaluate_handle("(el) => el.parentElement")
                mount = parent.as_element()
                if key and mount is not None:
                    await on_retry(key, mount)
            finally:
                await self._dispose([box, mount])

        await self._page.expose_binding(NOTIFY_BINDING, notify, handle=True)
        await self._page.expose_binding(RETRY_BINDING, retry, handle=True)

        ui = self.config.ui
        style_script = (STYLE_SCRIPT
                        .replace("__MAX_WIDTH__", str(int(ui.max_image_width_px)))
                        .replace("__RADIUS__", str(int(ui.border_radius_px))))
        for script in (style_script, OBSERVER_SCRIPT):
            await self._page.add_init_script(script)
            try:
                await self._page.evaluate(script)
            except Exception as e:
                logger.debug(f"Deferred page script to next navigation: {e}")
        logger.info("Page observer and render hooks installed.")

    def location(self) -> str:
        return self._page.url

    async def _elements(self, handle) -> List[Any]:
        try:
            properties = await handle.get_properties()
            ordered = sorted(properties.items(), key=lambda item: int(item[0]))
            return [self._track(element) for element in (value.as_element() for _, value in ordered)
                    if element is not None]
        finally:
            await handle.dispose()

    async def find_payload_containers(self, root: Any, limit: int) -> List[Any]:
        args = [",".join(self.config.selectors.payload_containers), int(limit)]
        if root is DOCUMENT or root is None:
            handle = await self._page.evaluate_handle(
                f"(args) => ({FIND_PAYLOAD_CONTAINERS_JS})(document, args)", args
            )
        else:
            handle = await root.evaluate_handle(FIND_PAYLOAD_CONTAINERS_JS, args)
        return await self._elements(handle)

    async def read_text(self, element: Any) -> str:
        return await element.evaluate(READ_TEXT_JS)

    async def mark_processed(self, element: Any) -> None:
        await element.evaluate(MARK_PROCESSED_JS)

    async def _single(self, script: str, arg: Any) -> Optional[Any]:
        handle = await self._page.evaluate_handle(script, arg)
        element = handle.as_element()
        if element is None:
            await handle.dispose()
        return self._track(element)

    async def find_by_identity(self, message_id: str) -> Optional[Any]:
        rules = [list(rule) for rule in self.config.selectors.identity_rules]
        return await self._single(FIND_BY_IDENTITY_JS, [message_id, rules])

    async def find_response_card(self, response_id: str) -> Optional[Any]:
        selectors = self.config.selectors
        return await self._single(
            FIND_RESPONSE_CARD_JS,
            [response_id.strip(), selectors.response_id_marker, selectors.response_card],
        )

    async def read_blocks(self, card: Any) -> List[Tuple[str, str, Any]]:
        selectors = self.config.selectors
        texts = await card.evaluate(
            READ_BLOCKS_JS, [selectors.message_block, selectors.block_role, selectors.block_body]
        )
        elements = await card.query_selector_all(selectors.message_block)
        for element in elements:
            self._track(element)
        return [(t["role"], t["body"], el) for t, el in zip(texts, elements)]

    async def ensure_mount(self, host: Any, message_id: str) -> Any:
        handle = await host.evaluate_handle(ENSURE_MOUNT_JS, message_id)
        return self._track(handle.as_element())

    async def global_gallery(self) -> Any:
        handle = await self._page.evaluate_handle(GLOBAL_GALLERY_JS)
        return self._track(handle.as_element())

    async def has_artifact(self, mount: Any, kind: str, key: str) -> bool:
        return await mount.evaluate(HAS_CHILD_JS, [f"data-lir-{kind}", key])

    async def append_image_card(self, mount: Any, key: str, src: str, caption: Optional[str]) -> None:
        await mount.evaluate(APPEND_IMAGE_CARD_JS, {
            "key": key, "src": src, "caption": caption, "showCaption": self.config.ui.show_caption,
        })

    async def append_note(self, mount: Any, key: str, text: str) -> None:
        await mount.evaluate(APPEND_NOTE_JS, {"key": key, "text": text})

    async def show_error(self, mount: Any, key: str, label: str) -> None:
        await mount.evaluate(SHOW_ERROR_JS, {"key": key, "label": label})

    async def remove_error(self, mount: Any, key: str) -> None:
        await mount.evaluate(REMOVE_ERROR_JS, key)
