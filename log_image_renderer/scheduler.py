import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class ChangeScheduler:
    """
    Coalesces change notifications into scan cycles.

    The first notification of a cycle arms a timer; notifications arriving
    before it fires only add their roots. Cycles never overlap.
    """

    def __init__(self, scan: Callable[[List[Any]], Awaitable[None]], debounce_ms: int):
        self._scan = scan
        self._delay = max(0, debounce_ms) / 1000.0
        self._pending = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._lock = asyncio.Lock()
        self._tasks = set()
        self._closed = False

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def enqueue(self, root: Any) -> None:
        if self._closed:
            return
        self._pending[root] = None
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        roots = list(self._pending)
        self._pending.clear()
        task = asyncio.ensure_future(self._run(roots))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, roots: List[Any]) -> None:
        async with self._lock:
            try:
                await self._scan(roots)
            except Exception as e:
                logger.error(f"Scan cycle over {len(roots)} root(s) failed: {e}", exc_info=True)

    async def idle(self) -> None:
        """Waits until no timer is armed and no cycle is running."""
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self._delay or 0)

    def clear_pending(self) -> None:
        self._pending.clear()

    def close(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
