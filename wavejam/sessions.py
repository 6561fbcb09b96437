"""
Session registry - one entry per live connection.

Sessions are created on connect and dropped on disconnect, so the registry
always equals the set of currently connected clients. Each session gets a
display color used by clients to attribute edits.
"""

import random
import uuid
from typing import Callable, Dict, List, Optional

from wavejam.log import get_logger

logger = get_logger(__name__)

# Attempts at finding a color nobody else has before accepting a duplicate
COLOR_ATTEMPTS = 16


def random_color(rng: random.Random) -> str:
    """Six lowercase hex digits, e.g. '3fa2c9'."""
    return f"{rng.randrange(0x1000000):06x}"


class Session:
    """A connected client.

    Args:
        session_id: Opaque unique identifier
        color: Display color (6 hex digits)
        deliver: Callable taking one outbound message dict. The websocket
            transport passes a queue's put_nowait; tests pass list.append.
    """

    def __init__(self, session_id: str, color: str, deliver: Callable[[dict], None]):
        self.session_id = session_id
        self.color = color
        self._deliver = deliver
        self.closed = False

    def send(self, message: dict) -> bool:
        """Hand a message to the transport. Returns False once closed."""
        if self.closed:
            return False
        self._deliver(message)
        return True

    def close(self) -> None:
        self.closed = True

    def __repr__(self):
        return f"Session({self.session_id[:8]}, #{self.color})"


class SessionRegistry:
    """Tracks connected sessions and notifies listeners on membership change."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self._sessions: Dict[str, Session] = {}
        self._listeners: List[Callable[[], None]] = []

    def __len__(self):
        return len(self._sessions)

    def __iter__(self):
        # Copy so a listener disconnecting someone mid-fan-out is harmless
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id):
        return session_id in self._sessions

    @property
    def count(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def add_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _assign_color(self) -> str:
        taken = {s.color for s in self._sessions.values()}
        color = random_color(self.rng)
        for _ in range(COLOR_ATTEMPTS):
            if color not in taken:
                break
            color = random_color(self.rng)
        return color

    def connect(self, deliver: Callable[[dict], None],
                session_id: Optional[str] = None,
                greet: Optional[Callable[[Session], None]] = None) -> Session:
        """Register a new session and notify listeners.

        greet, if given, runs after registration and before the listeners,
        so the new session receives its own welcome ahead of any membership
        broadcast.
        """
        session_id = session_id or uuid.uuid4().hex
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} already connected")

        session = Session(session_id, self._assign_color(), deliver)
        self._sessions[session_id] = session
        logger.info(f"Session {session_id[:8]} connected (#{session.color}), {self.count} online")
        if greet is not None:
            greet(session)
        self._notify()
        return session

    def disconnect(self, session_id: str) -> Optional[Session]:
        """Remove and close a session. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.close()
        logger.info(f"Session {session_id[:8]} disconnected, {self.count} online")
        self._notify()
        return session

    def snapshot(self) -> Dict[str, str]:
        """session_id -> color for every connected session."""
        return {sid: s.color for sid, s in self._sessions.items()}

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback()
