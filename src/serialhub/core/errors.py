"""
Error types for serial line sessions.

Overflow of the receive buffer is reported as a flag, never as an error.
"""


class SerialHubError(Exception):
    """Base class for all serialhub errors."""


class AlreadyOpenError(SerialHubError):
    """A session for the line is already open."""

    def __init__(self, name: str):
        super().__init__(f"Serial port is already open: {name}")
        self.name = name


class NotOpenError(SerialHubError):
    """No open session exists for the line, or it was closed concurrently."""

    def __init__(self, name: str):
        super().__init__(f"Serial port is not open: {name}")
        self.name = name


class DeviceError(SerialHubError):
    """The serial device could not be opened, closed, or read."""


class WriteError(SerialHubError):
    """The serial device rejected or failed a write."""


class AccessDeniedError(SerialHubError):
    """The access policy does not permit the requested operation."""


class InvalidLineNameError(SerialHubError, ValueError):
    """The line name does not follow the platform naming rules."""
