"""
Trailing-edge debouncer for asyncio callbacks.

Each `trigger()` cancels the pending timer and starts a new one; the callback
only runs once the caller has been quiet for `delay` seconds, with the
arguments of the most recent trigger.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    def __init__(self, delay: float, callback: Callable[..., Awaitable[Any]]):
        self.delay = delay
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.last_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args: Any) -> None:
        """Restart the timer. Must be called from inside the running loop."""
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay, self._fire, args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, args: tuple) -> None:
        self._handle = None
        self.last_task = asyncio.ensure_future(self._run(args))

    async def _run(self, args: tuple) -> None:
        try:
            await self.callback(*args)
        except Exception as e:
            logger.error(f"Debounced callback {self.callback!r} failed: {e}")
