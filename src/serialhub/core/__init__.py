"""
Core components for serialhub.

Provides configuration, data models, errors, and the access policy.
"""

from serialhub.core.config import Config, load_config
from serialhub.core.errors import (
    AccessDeniedError,
    AlreadyOpenError,
    DeviceError,
    InvalidLineNameError,
    NotOpenError,
    SerialHubError,
    WriteError,
)
from serialhub.core.models import (
    EventKind,
    LineEvent,
    LineSettings,
    Parity,
    parse_line_spec,
)
from serialhub.core.policy import AccessPolicy, Capability, canonical_line_name

__all__ = [
    "Config",
    "load_config",
    "SerialHubError",
    "AlreadyOpenError",
    "NotOpenError",
    "DeviceError",
    "WriteError",
    "AccessDeniedError",
    "InvalidLineNameError",
    "EventKind",
    "LineEvent",
    "LineSettings",
    "Parity",
    "parse_line_spec",
    "AccessPolicy",
    "Capability",
    "canonical_line_name",
]
