"""
Wavejam - collaborative synth state server.

Modules:
    scales: Scale name to pitch-name table
    state: Shared instrument state and validators
    sessions: Connected session registry
    relay: Peer-sync and global fan-out
    timers: Single-handle re-arming timer
    autonote: Autonomous note scheduler
    drift: Parameter drift engine
    server: Websocket server and CLI entry point
    osc: OSC note mirror and message statistics
"""

__version__ = "0.1.0"

# Note: Modules are imported on-demand so python -m wavejam.server works
# without RuntimeWarning.
# Use: from wavejam import state, relay, server, etc.
