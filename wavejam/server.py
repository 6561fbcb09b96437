#!/usr/bin/env python3
"""
Wavejam Server - collaborative instrument state over websockets.

Every connected browser shares one instrument: waveform, envelope, mixer,
EQ, scale and a set of control params. An edit from one session is applied
to the shared state and replicated to the others. Optionally the server
plays on its own (auto notes) and drifts params (auto drift).

ARCHITECTURE:
- One asyncio loop runs the websocket server, every message handler and both
  autonomous timers; handlers run to completion, so state mutation needs no
  locking
- Each connection gets an outbound queue drained by its own writer task,
  which keeps per-session delivery order
- Frames are JSON text: {"type": ..., "data": ...}

PROTOCOL:

Session -> server:
    update_waveform   [128 floats]              -> sync_waveform     peers
    update_adsr       {attack,decay,sustain,release} -> sync_adsr   peers
    update_mixer      {synth, drone}            -> sync_mixer        peers
    update_eq         {low,mid,high: {freq,gain}} -> sync_eq         peers
    update_param      {key, value}              -> sync_param        peers
    update_scale      "MAJOR"                   -> sync_scale        everyone
    update_auto_note  {active, speed}           -> sync_auto_note    everyone
    update_auto_drift {active}                  -> sync_auto_drift   everyone
    play_note         {pitch, duration, normX?, normY?} -> trigger_note everyone

Server -> session:
    init              {sessionId, color, state, users, scales}  (new session only)
    users             {count, users}                            on connect/disconnect
    trigger_note      {pitch, duration, normX, normY, originator}
    sync_params       full params mapping                       (drift ticks)

Invalid frames are dropped and counted; the sender gets no reply.

USAGE:
    # Start with default settings (port 3000, or $PORT)
    python3 -m wavejam

    # Custom config and port
    python3 -m wavejam.server --config my.yaml --port 8080

    # Mirror notes to OSC listeners on the LAN
    python3 -m wavejam.server --osc-port 8007
"""

import argparse
import asyncio
import contextlib
import json
import os
import random
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import numpy as np
import websockets
from websockets.exceptions import ConnectionClosed
import yaml

from wavejam import osc
from wavejam.autonote import AutoNoteScheduler, AutoNoteTiming
from wavejam.drift import DriftSettings, ParamDriftEngine
from wavejam.log import get_logger, set_level
from wavejam.relay import BroadcastRelay, NOTE_EVENT
from wavejam.scales import SCALE_TABLE
from wavejam.sessions import SessionRegistry
from wavejam.state import SharedState, as_number
from wavejam.timers import LoopClock

logger = get_logger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "server.yaml"

MAX_NOTE_DURATION = 30.0  # seconds
OUTBOX_SIZE = 256        # queued outbound messages per session
SLOW_CLIENT_CODE = 1013  # websocket close code "try again later"

# Whole-field edits replicated to peers: inbound type -> (field, outbound type)
PEER_FIELDS = {
    'update_waveform': ('waveform', 'sync_waveform'),
    'update_adsr': ('adsr', 'sync_adsr'),
    'update_mixer': ('mixer', 'sync_mixer'),
    'update_eq': ('eq', 'sync_eq'),
}


# ============================================================================
# CONFIG LOADING
# ============================================================================

def default_config() -> dict:
    return {
        'server': {'host': DEFAULT_HOST, 'port': DEFAULT_PORT, 'outbox_size': OUTBOX_SIZE},
        'auto_note': asdict(AutoNoteTiming()),
        'drift': asdict(DriftSettings()),
        'osc': {'enabled': False, 'host': osc.BROADCAST_HOST, 'port': osc.PORT_NOTES},
    }


def load_config(config_path=None) -> dict:
    """Load YAML configuration and merge it over the defaults.

    Args:
        config_path: Path to a YAML file (default: wavejam/config/server.yaml)

    Returns:
        Configuration dict with server, auto_note, drift and osc sections

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config validation fails
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r') as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ValueError(f"Config must be a mapping, got {type(loaded).__name__}")

    config = default_config()
    for section, values in loaded.items():
        if section not in config:
            raise ValueError(f"Unknown config section: '{section}'")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")
        unknown = set(values) - set(config[section])
        if unknown:
            raise ValueError(f"Unknown keys in '{section}': {', '.join(sorted(unknown))}")
        config[section].update(values)

    # Build the dataclasses once to run their range checks
    AutoNoteTiming(**config['auto_note']).validate()
    DriftSettings(**config['drift']).validate()
    for section in ('server', 'osc'):
        port = config[section]['port']
        if not isinstance(port, int) or isinstance(port, bool):
            raise ValueError(f"{section}.port must be an integer, got {port!r}")
        osc.validate_port(port)

    outbox_size = config['server']['outbox_size']
    if not isinstance(outbox_size, int) or isinstance(outbox_size, bool) or outbox_size < 2:
        raise ValueError(f"server.outbox_size must be an integer >= 2, got {outbox_size!r}")

    logger.info(f"Loaded config from {path}")
    logger.info(f"  Listen: {config['server']['host']}:{config['server']['port']}")
    logger.info(f"  Drift: {config['drift']['strategy']} every {config['drift']['interval']}s")
    if config['osc']['enabled']:
        logger.info(f"  OSC note mirror: {config['osc']['host']}:{config['osc']['port']}")

    return config


# ============================================================================
# SERVER
# ============================================================================

class CollabServer:
    """Owns the shared state, the sessions and the autonomous components.

    The transport calls connect(), handle_message() and disconnect(); all
    three are synchronous so they can't interleave on the loop.

    Attributes:
        state (SharedState): Authoritative instrument state
        registry (SessionRegistry): Connected sessions
        relay (BroadcastRelay): Fan-out to sessions
        auto_notes (AutoNoteScheduler): Autonomous note generator
        drift (ParamDriftEngine): Autonomous param drift
        stats (osc.MessageStatistics): Message counters
    """

    def __init__(self, config: Optional[dict] = None, clock=None,
                 rng: Optional[random.Random] = None,
                 np_rng: Optional[np.random.Generator] = None,
                 note_mirror=None):
        self.config = config or default_config()
        self.host = self.config['server']['host']
        self.port = self.config['server']['port']
        self.outbox_size = self.config['server'].get('outbox_size', OUTBOX_SIZE)
        clock = clock or LoopClock()
        rng = rng or random.Random()

        self.stats = osc.MessageStatistics()
        if note_mirror is None and self.config['osc']['enabled']:
            note_mirror = osc.NoteMirror.broadcast(
                self.config['osc']['port'], self.config['osc']['host'], self.stats
            )

        self.state = SharedState()
        self.registry = SessionRegistry(rng)
        self.relay = BroadcastRelay(self.registry, self.stats, note_mirror)
        self.auto_notes = AutoNoteScheduler(
            self.state, self.relay, clock, AutoNoteTiming(**self.config['auto_note']), rng
        )
        self.drift = ParamDriftEngine(
            self.state, self.relay, clock, DriftSettings(**self.config['drift']), np_rng
        )
        self.registry.add_listener(self._broadcast_users)

        self.handlers = {
            'update_param': self.handle_param,
            'update_scale': self.handle_scale,
            'update_auto_note': self.handle_auto_note,
            'update_auto_drift': self.handle_auto_drift,
            'play_note': self.handle_play_note,
        }
        for event in PEER_FIELDS:
            self.handlers[event] = self.handle_field

        self.server = None
        self._closing = set()

    # ------------------------------------------------------------------------
    # SESSION LIFECYCLE
    # ------------------------------------------------------------------------

    def connect(self, deliver, session_id: Optional[str] = None):
        """Register a session; it receives init, then everyone gets users."""
        return self.registry.connect(deliver, session_id, greet=self._send_init)

    def disconnect(self, session_id: str) -> None:
        self.registry.disconnect(session_id)

    def _send_init(self, session) -> None:
        self.relay.send_to(session, 'init', {
            'sessionId': session.session_id,
            'color': session.color,
            'state': self.state.get(),
            'users': self.registry.snapshot(),
            'scales': list(SCALE_TABLE),
        })

    def _broadcast_users(self) -> None:
        self.relay.everyone('users', {
            'count': self.registry.count,
            'users': self.registry.snapshot(),
        })

    # ------------------------------------------------------------------------
    # MESSAGE HANDLING
    # ------------------------------------------------------------------------

    def handle_message(self, session, raw) -> None:
        """Parse one inbound frame and dispatch it.

        Args:
            session: Session the frame arrived on
            raw: JSON text (str or bytes) {"type": ..., "data": ...}
        """
        self.stats.increment('total_messages')

        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._reject(session, "frame", f"Invalid JSON: {e}")
            return

        if not isinstance(message, dict) or not isinstance(message.get('type'), str):
            self._reject(session, "frame", "Frame must be an object with a string 'type'")
            return

        event = message['type']
        handler = self.handlers.get(event)
        if handler is None:
            self._reject(session, event, f"Unknown message type: {event}")
            return

        handler(session, event, message.get('data'))

    def _reject(self, session, event: str, error_msg: str) -> None:
        self.stats.increment('invalid_messages')
        logger.warning(f"Dropped {event} from {session.session_id[:8]}: {error_msg}")

    def handle_field(self, session, event: str, data) -> None:
        """Whole-field edit (waveform/adsr/mixer/eq), replicated to peers."""
        field, outbound = PEER_FIELDS[event]
        is_valid, value, error_msg = self.state.replace_field(field, data)
        if not is_valid:
            self._reject(session, event, error_msg)
            return
        self.relay.peers(session.session_id, outbound, value)

    def handle_param(self, session, event: str, data) -> None:
        if not isinstance(data, dict) or 'key' not in data or 'value' not in data:
            self._reject(session, event, "update_param expects {key, value}")
            return
        is_valid, value, error_msg = self.state.set_param(data['key'], data['value'])
        if not is_valid:
            self._reject(session, event, error_msg)
            return
        self.relay.peers(session.session_id, 'sync_param', {'key': data['key'], 'value': value})

    def handle_scale(self, session, event: str, data) -> None:
        is_valid, value, error_msg = self.state.replace_scale(data)
        if not is_valid:
            self._reject(session, event, error_msg)
            return
        logger.info(f"Scale -> {value} ({session.session_id[:8]})")
        self.relay.everyone('sync_scale', value, session.session_id)

    def handle_auto_note(self, session, event: str, data) -> None:
        is_valid, value, error_msg = self.state.replace_field('autoNote', data)
        if not is_valid:
            self._reject(session, event, error_msg)
            return
        self.relay.everyone('sync_auto_note', value, session.session_id)
        self.auto_notes.configure()

    def handle_auto_drift(self, session, event: str, data) -> None:
        is_valid, value, error_msg = self.state.replace_field('autoDrift', data)
        if not is_valid:
            self._reject(session, event, error_msg)
            return
        self.relay.everyone('sync_auto_drift', value, session.session_id)
        self.drift.configure()

    def handle_play_note(self, session, event: str, data) -> None:
        """Live note from a session, played on every client."""
        if not isinstance(data, dict):
            self._reject(session, event, "play_note expects an object")
            return

        pitch = data.get('pitch')
        duration = as_number(data.get('duration'))
        if not isinstance(pitch, str) or not pitch:
            self._reject(session, event, f"Invalid pitch: {pitch!r}")
            return
        if duration is None or not 0.0 < duration <= MAX_NOTE_DURATION:
            self._reject(session, event, f"Invalid duration: {data.get('duration')!r}")
            return

        note = {'pitch': pitch, 'duration': duration, 'originator': session.session_id}
        for axis in ('normX', 'normY'):
            value = as_number(data.get(axis, 0.5))
            if value is None or not 0.0 <= value <= 1.0:
                self._reject(session, event, f"Invalid {axis}: {data.get(axis)!r}")
                return
            note[axis] = value

        self.relay.everyone(NOTE_EVENT, note, session.session_id)

    # ------------------------------------------------------------------------
    # WEBSOCKET TRANSPORT
    # ------------------------------------------------------------------------

    async def handle_client(self, websocket) -> None:
        """Serve one websocket connection until it closes.

        Outbound messages go through a queue of outbox_size entries. A
        session that lets it fill up is closed rather than buffered forever.
        """
        outbox = asyncio.Queue(maxsize=self.outbox_size)
        session = None

        def deliver(message):
            try:
                outbox.put_nowait(message)
            except asyncio.QueueFull:
                self._drop_slow_session(session, websocket)

        session = self.connect(deliver)
        writer = asyncio.create_task(self._write_loop(websocket, outbox))

        try:
            async for raw in websocket:
                self.handle_message(session, raw)
        except ConnectionClosed:
            pass
        finally:
            self.disconnect(session.session_id)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    def _drop_slow_session(self, session, websocket) -> None:
        if session is None or session.closed:
            return
        session.close()
        self.stats.increment('slow_disconnects')
        logger.warning(
            f"Session {session.session_id[:8]} outbox full "
            f"({self.outbox_size} messages), closing"
        )
        task = asyncio.get_running_loop().create_task(
            websocket.close(code=SLOW_CLIENT_CODE, reason="outbox full")
        )
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _write_loop(self, websocket, outbox: asyncio.Queue) -> None:
        try:
            while True:
                message = await outbox.get()
                await websocket.send(json.dumps(message))
        except ConnectionClosed:
            pass

    async def serve(self) -> None:
        """Start the websocket server and wait until it closes."""
        self.server = await websockets.serve(self.handle_client, self.host, self.port)
        logger.info(f"Wavejam listening on ws://{self.host}:{self.port}")
        logger.info(f"  Scale: {self.state.scale}, {len(SCALE_TABLE)} scales available")
        logger.info("Waiting for sessions... (Ctrl+C to stop)")
        try:
            await self.server.wait_closed()
        finally:
            self.stop()

    def stop(self) -> None:
        """Cancel both timers and close the listener. Safe to call twice."""
        self.auto_notes.stop()
        self.drift.stop()
        if self.server:
            self.server.close()
            self.server = None

    def run(self) -> None:
        """Serve until interrupted, then print statistics."""
        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            if self.relay.note_mirror is not None:
                self.relay.note_mirror.close()
            self.stats.print_stats("WAVEJAM SERVER STATISTICS")


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Main entry point with command-line argument parsing.

    Command-line arguments:
        --config PATH       Path to server.yaml (default: bundled config)
        --host HOST         Listen address (overrides config)
        --port N            Listen port (overrides $PORT and config)
        --osc-port N        Enable the OSC note mirror on this port
        --log-level LEVEL   Logging verbosity

    Exits with status 1 on invalid configuration or a busy port.
    """
    parser = argparse.ArgumentParser(
        description="Wavejam - collaborative synth state server"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help=f"Path to server.yaml (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Listen address (default: from config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"Listen port (default: $PORT, then config, then {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--osc-port",
        type=int,
        default=None,
        help=f"Mirror notes as OSC to this port (e.g. {osc.PORT_NOTES})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("WAVEJAM_LOG_LEVEL", "INFO"),
        help="Logging verbosity (default: INFO)",
    )

    args = parser.parse_args()

    set_level(args.log_level)

    try:
        config = load_config(args.config)

        if args.host:
            config['server']['host'] = args.host
        env_port = os.getenv("PORT")
        if args.port is not None:
            config['server']['port'] = args.port
        elif env_port:
            try:
                config['server']['port'] = int(env_port)
            except ValueError:
                raise ValueError(f"PORT must be an integer, got {env_port!r}")
        osc.validate_port(config['server']['port'])

        if args.osc_port is not None:
            osc.validate_port(args.osc_port)
            config['osc']['enabled'] = True
            config['osc']['port'] = args.osc_port

        server = CollabServer(config)
        server.run()
    except FileNotFoundError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"{e}")
        sys.exit(1)
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Listen port already in use: {e}")
        else:
            logger.error(f"{e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
