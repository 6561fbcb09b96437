"""
One-shot timer with a single owned handle.

Both autonomous components re-arm themselves after every firing. Arming
always cancels the previous handle first, so a timer never has two pending
fires; a cancelled fire never runs.

The clock is anything with call_later(delay, callback) returning an object
with cancel() - an asyncio event loop in production, a fake clock in tests.
"""

import asyncio
from typing import Callable


class OneShotTimer:
    """Owns at most one pending call_later handle."""

    def __init__(self, clock):
        self.clock = clock
        self._handle = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[[], None]) -> None:
        """Cancel any pending fire, then schedule callback after delay seconds."""
        self.cancel()
        self._generation += 1
        generation = self._generation

        def fire():
            # A handle cancelled after the clock already dequeued it must stay silent
            if generation != self._generation or self._handle is None:
                return
            self._handle = None
            callback()

        self._handle = self.clock.call_later(delay, fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._generation += 1


class LoopClock:
    """call_later on whichever asyncio loop is running when a timer is armed."""

    def call_later(self, delay: float, callback: Callable[[], None]):
        return asyncio.get_running_loop().call_later(delay, callback)
