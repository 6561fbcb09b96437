"""
Broadcast relay - fan-out of state changes to sessions.

Two policies:
    peers(origin, ...)     every session except the author (peer-sync)
    everyone(...)          every session, author included (global)

Each call produces exactly one message per recipient, delivered in call
order. Envelope:

    {"type": "sync_adsr", "data": {...}, "originator": "<session id>"}

originator is the authoring session, AUTO_ORIGINATOR for scheduler notes,
or None for server-generated events with no author (drift, membership).
"""

from typing import Optional

from wavejam.log import get_logger
from wavejam.osc import MessageStatistics

logger = get_logger(__name__)

AUTO_ORIGINATOR = "auto"

NOTE_EVENT = "trigger_note"


def make_message(event: str, data, originator: Optional[str] = None) -> dict:
    return {'type': event, 'data': data, 'originator': originator}


class BroadcastRelay:
    """Delivers replication messages to the sessions in a SessionRegistry.

    Args:
        registry: SessionRegistry holding the live sessions
        stats: MessageStatistics for delivery counters (created if omitted)
        note_mirror: Optional osc.NoteMirror; trigger_note events are also
            sent to it
    """

    def __init__(self, registry, stats: Optional[MessageStatistics] = None,
                 note_mirror=None):
        self.registry = registry
        self.stats = stats or MessageStatistics()
        self.note_mirror = note_mirror

    def peers(self, origin: str, event: str, data) -> int:
        """Send to every session except origin, tagged with origin.

        Returns:
            Number of sessions the message was handed to
        """
        message = make_message(event, data, origin)
        delivered = 0
        for session in self.registry:
            if session.session_id == origin:
                continue
            if session.send(message):
                delivered += 1
        self.stats.increment('deliveries', delivered)
        logger.debug(f"{event} from {str(origin)[:8]} -> {delivered} peers")
        return delivered

    def everyone(self, event: str, data, originator: Optional[str] = None) -> int:
        """Send to every connected session, the originator included."""
        message = make_message(event, data, originator)
        delivered = 0
        for session in self.registry:
            if session.send(message):
                delivered += 1
        self.stats.increment('deliveries', delivered)

        if event == NOTE_EVENT and self.note_mirror is not None:
            self.note_mirror.send_note(dict(data, originator=originator))
        return delivered

    def send_to(self, session, event: str, data, originator: Optional[str] = None) -> bool:
        """Direct message to one session (used for the init sync)."""
        if session.send(make_message(event, data, originator)):
            self.stats.increment('deliveries')
            return True
        return False
