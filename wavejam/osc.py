#!/usr/bin/env python3
"""
Wavejam OSC Infrastructure - LAN note mirror and shared statistics.

The websocket sessions are the primary channel. In addition, every note
trigger can be mirrored onto a UDP broadcast bus as an OSC message so that
external synth processes (hardware bridges, SuperCollider patches, the
audio engines of other rigs) can play along without holding a session.

Classes:
    - BroadcastUDPClient: SimpleUDPClient with SO_BROADCAST enabled
    - NoteMirror: Forwards trigger_note payloads as /note OSC messages
    - MessageStatistics: Thread-safe message counter with formatted output

Functions:
    - validate_port(port): Validate port in range 1-65535

Constants:
    - PORT_NOTES: Note mirror broadcast port (8007)
    - NOTE_ADDRESS: OSC address used for mirrored notes
"""

import socket
import threading
from typing import Optional
from pythonosc import udp_client

from wavejam.log import get_logger

logger = get_logger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

PORT_NOTES = 8007          # Note mirror broadcast (Server → external synths)
BROADCAST_HOST = "255.255.255.255"

NOTE_ADDRESS = "/note"     # /note [pitch, duration, normX, normY, originator]

# Port validation range
PORT_MIN = 1
PORT_MAX = 65535


# ============================================================================
# BROADCAST UDP CLIENT
# ============================================================================

class BroadcastUDPClient(udp_client.SimpleUDPClient):
    """UDP client with SO_BROADCAST enabled for broadcasting OSC messages.

    Extends pythonosc's SimpleUDPClient to enable the SO_BROADCAST socket option,
    allowing messages to be sent to broadcast addresses (e.g., 255.255.255.255)
    so every listener on the LAN receives the same note stream.

    Args:
        address: Target IP address (use "255.255.255.255" for broadcast)
        port: Target UDP port
    """

    def __init__(self, address: str, port: int):
        super().__init__(address, port)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)

    def close(self):
        """Close the UDP socket."""
        if hasattr(self, '_sock') and self._sock:
            self._sock.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class NoteMirror:
    """Mirrors note trigger payloads onto the OSC broadcast bus.

    Send failures are logged and counted, never raised: the mirror is a
    side channel and must not disturb websocket fan-out.

    Args:
        client: Anything with send_message(address, args), normally a
            BroadcastUDPClient
        stats: Optional MessageStatistics to count mirrored notes
    """

    def __init__(self, client, stats: Optional["MessageStatistics"] = None):
        self.client = client
        self.stats = stats

    @classmethod
    def broadcast(cls, port: int = PORT_NOTES, host: str = BROADCAST_HOST,
                  stats: Optional["MessageStatistics"] = None) -> "NoteMirror":
        """Create a mirror that broadcasts to host:port."""
        validate_port(port)
        return cls(BroadcastUDPClient(host, port), stats)

    def send_note(self, note: dict) -> None:
        args = [
            str(note['pitch']),
            float(note['duration']),
            float(note.get('normX', 0.0)),
            float(note.get('normY', 0.0)),
            str(note.get('originator') or ''),
        ]
        try:
            self.client.send_message(NOTE_ADDRESS, args)
        except OSError as e:
            logger.warning(f"OSC note mirror send failed: {e}")
            if self.stats:
                self.stats.increment('osc_errors')
            return
        if self.stats:
            self.stats.increment('osc_notes')

    def close(self) -> None:
        if hasattr(self.client, 'close'):
            self.client.close()


# ============================================================================
# VALIDATION FUNCTIONS
# ============================================================================

def validate_port(port: int) -> None:
    """Validate UDP/TCP port number is in valid range.

    Args:
        port: Port number to validate

    Raises:
        ValueError: If port is outside range 1-65535

    Examples:
        >>> validate_port(3000)  # OK
        >>> validate_port(0)  # Raises ValueError
        >>> validate_port(70000)  # Raises ValueError
    """
    if port < PORT_MIN or port > PORT_MAX:
        raise ValueError(f"Port must be in range {PORT_MIN}-{PORT_MAX}, got {port}")


# ============================================================================
# MESSAGE STATISTICS
# ============================================================================

class MessageStatistics:
    """Thread-safe message statistics tracker with formatted output.

    Maintains counters for various message categories and provides formatted
    statistics display on shutdown.

    Typical counters:
        - total_messages: All received session messages
        - invalid_messages: Messages that failed parsing or validation
        - deliveries: Outbound messages handed to sessions
        - auto_notes: Notes fired by the autonomous scheduler
        - drift_ticks: Parameter drift ticks

    Examples:
        >>> stats = MessageStatistics()
        >>> stats.increment('total_messages')
        >>> stats.print_stats("WAVEJAM SERVER")
    """

    def __init__(self):
        self.counters = {}
        self.lock = threading.Lock()

    def increment(self, counter_name: str, amount: int = 1) -> None:
        """Increment a counter by specified amount (thread-safe).

        Creates the counter if it doesn't exist.
        """
        with self.lock:
            self.counters[counter_name] = self.counters.get(counter_name, 0) + amount

    def get(self, counter_name: str) -> int:
        """Get current value of a counter, or 0 if it doesn't exist."""
        with self.lock:
            return self.counters.get(counter_name, 0)

    def print_stats(self, title: str = "STATISTICS") -> None:
        """Print formatted statistics to console.

        Output format:
            ============================================================
            TITLE
            ============================================================
            Counter Name: value
            ...
            ============================================================
        """
        print("\n" + "=" * 60)
        print(title)
        print("=" * 60)

        # Snapshot counters under lock, print without holding it
        with self.lock:
            snapshot = dict(self.counters)

        for name in sorted(snapshot.keys()):
            display_name = name.replace('_', ' ').title()
            print(f"{display_name}: {snapshot[name]}")

        print("=" * 60)
