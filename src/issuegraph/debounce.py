"""Cancel-and-reschedule coalescing of async side effects."""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from .logging import get_logger

DEFAULT_DELAY_MS = 500


class Debouncer:
    """Run ``callback`` once, ``delay`` seconds after the last :meth:`schedule`.

    Every ``schedule`` call cancels the timer armed by the previous one, so a
    burst of calls produces a single invocation. ``flush`` runs a pending
    invocation immediately and waits for any invocation already running.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float = DEFAULT_DELAY_MS / 1000) -> None:
        self._callback = callback
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.logger = get_logger()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as exc:
            self.logger.log_error("debounced callback failed", error=str(exc))

    async def flush(self) -> None:
        if self._handle is not None:
            self.cancel()
            await self._run()
        if self._tasks:
            await asyncio.gather(*list(self._tasks))


__all__ = ["DEFAULT_DELAY_MS", "Debouncer"]
