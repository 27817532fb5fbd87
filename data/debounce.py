from __future__ import annotations

import asyncio, inspect, logging
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


class SearchDebouncer:
    """Trailing-edge debounce for search input.

    Every `submit` restarts the quiet period; only the last query submitted
    before it elapses reaches the callback. Superseded queries are dropped.
    Must be used from inside a running event loop.
    """

    def __init__(self, callback: Callable[[str], Any], delay: float = 0.3) -> None:
        self.callback = callback
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._query: Optional[str] = None
        self._tasks: set = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def submit(self, query: str) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._query = query
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._query = None

    def flush(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._fire()

    def _fire(self) -> None:
        query = self._query or ""
        self._handle = None
        self._query = None
        result = self.callback(query)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        log.debug("search dispatched: %r", query)
