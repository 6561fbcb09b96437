"""Pytest fixtures shared across the wavejam test suite.

Provides:
- clock: FakeClock with call_later()/advance() so timer behaviour is tested
  without sleeping
- registry / relay: a session registry wired to a relay
- connect: helper that connects a session whose inbox is a plain list
"""

import random

import pytest

from wavejam.relay import BroadcastRelay
from wavejam.sessions import SessionRegistry


class FakeHandle:
    """Stand-in for asyncio.TimerHandle."""

    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Deterministic call_later clock.

    Tracks every scheduled handle so tests can check how many were armed
    and the most that were ever outstanding at once.
    """

    def __init__(self):
        self.now = 0.0
        self.handles = []
        self.max_outstanding = 0

    def call_later(self, delay, callback):
        handle = FakeHandle(self.now + delay, callback)
        self.handles.append(handle)
        self.max_outstanding = max(self.max_outstanding, len(self.outstanding()))
        return handle

    def outstanding(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def run_next(self):
        """Fire the earliest outstanding handle. Returns its delay from now."""
        pending = self.outstanding()
        if not pending:
            return None
        handle = min(pending, key=lambda h: h.when)
        delay = handle.when - self.now
        self.now = handle.when
        handle.fired = True
        handle.callback()
        return delay

    def advance(self, seconds):
        """Fire everything due within the next `seconds`, in time order."""
        target = self.now + seconds
        while True:
            due = [h for h in self.outstanding() if h.when <= target]
            if not due:
                break
            self.run_next()
        self.now = target


class Inbox(list):
    """Messages delivered to one fake session."""

    def types(self):
        return [m['type'] for m in self]

    def of(self, event):
        return [m for m in self if m['type'] == event]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def registry(rng):
    return SessionRegistry(rng)


@pytest.fixture
def relay(registry):
    return BroadcastRelay(registry)


@pytest.fixture
def connect(registry):
    """Connect a session and return (session, inbox)."""
    def _connect(session_id=None):
        inbox = Inbox()
        session = registry.connect(inbox.append, session_id)
        return session, inbox
    return _connect
