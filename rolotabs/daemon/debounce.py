"""Trailing-edge debouncer for state-changed notifications.

A burst of host events inside one window produces a single callback. The
state machine is explicit: IDLE, or PENDING with a deadline that every
new trigger pushes back.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger


class DebounceState(Enum):
    IDLE = "idle"
    PENDING = "pending"


class Debouncer:
    """Coalesce triggers into one awaited callback per quiet window."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        """
        Args:
            delay: Quiet window in seconds
            callback: Coroutine function fired once the window passes
        """
        self.delay = delay
        self._callback = callback
        self._state = DebounceState.IDLE
        self._deadline: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self.fired = 0

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def trigger(self) -> None:
        """Arm the debouncer, or push back a pending deadline."""
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.delay
        if self._state is DebounceState.IDLE:
            self._state = DebounceState.PENDING
            self._task = loop.create_task(self._wait_and_fire())

    async def flush(self) -> None:
        """Fire a pending callback now."""
        if self._state is not DebounceState.PENDING:
            return
        self._cancel_task()
        self._reset()
        await self._fire()

    def cancel(self) -> None:
        """Drop a pending callback without firing it."""
        self._cancel_task()
        self._reset()

    async def _wait_and_fire(self) -> None:
        loop = asyncio.get_running_loop()
        while self._deadline is not None:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        self._task = None
        self._reset()
        await self._fire()

    async def _fire(self) -> None:
        self.fired += 1
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"Debounced callback failed: {e}")

    def _reset(self) -> None:
        self._state = DebounceState.IDLE
        self._deadline = None

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
