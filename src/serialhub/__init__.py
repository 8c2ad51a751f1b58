"""
Remote serial port hub (serialhub).

Shares serial lines with multiple network clients over HTTP polling,
push sockets, TCP and UDP relays, and a local echo mode.
"""

__version__ = "0.1.0"
