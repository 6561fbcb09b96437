#!/usr/bin/env python3
"""
Entry point for running the server as a module.

Usage:
    python -m wavejam [--port N] [--config PATH] ...
"""

from wavejam.server import main

main()
