"""
Relay transports for serialhub.

Provides TCP, UDP and echo relays for a single serial line.
"""

from serialhub.transport.base import Relay, TransportMode, get_relay, run_relay

__all__ = [
    "Relay",
    "TransportMode",
    "get_relay",
    "run_relay",
]
