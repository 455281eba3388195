"""
Scheduling primitives: a set-once awaitable latch and a restartable
debounce timer.
"""

from __future__ import annotations

import asyncio
from typing import Callable

__all__ = [
    "Latch",
    "DebounceTimer",
]


class Latch:
    """
    Single-resolution signal: transitions from unset to set exactly once and
    can be awaited any number of times.
    """

    _event: asyncio.Event

    def __init__(self):
        self._event = asyncio.Event()

    def __bool__(self) -> bool:
        return self._event.is_set()

    def __repr__(self):
        return f"Latch(set={self.is_set})"

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self):
        """
        Resolve the latch; subsequent calls are a no-op.
        """
        self._event.set()

    async def wait(self):
        await self._event.wait()


class DebounceTimer:
    """
    Invokes a callback once `delay` seconds have passed without another
    {obj}`trigger`.
    """

    delay: float

    _callback: Callable[[], None]
    _handle: asyncio.TimerHandle | None = None
    _loop: asyncio.AbstractEventLoop | None

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.delay = delay
        self._callback = callback
        self._loop = loop

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def trigger(self, delay: float | None = None):
        """
        (Re)start the timer.
        """
        self.cancel()

        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(
            self.delay if delay is None else delay, self._fire
        )

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        self._callback()
