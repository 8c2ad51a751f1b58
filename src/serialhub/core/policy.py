"""
Access policy and line naming rules.

The policy is fixed at startup and consulted by transport adapters before
they touch the registry or a session. Sessions themselves know nothing
about it.
"""

import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from serialhub.core.errors import AccessDeniedError, InvalidLineNameError

_WINDOWS_NAME = re.compile(r"COM\d+", re.IGNORECASE)
_UNIX_NAME = re.compile(r"[\w\-.]+")


class Capability(Enum):
    """Operations that can be enabled or disabled server-wide."""

    LIST = "listing"
    READ = "read"
    WRITE = "write"
    SUBSCRIBE = "subscribe"
    RELAY = "relay"


@dataclass(frozen=True)
class AccessPolicy:
    """Static capability flags plus an optional line allow-list."""

    listing: bool = True
    read: bool = True
    write: bool = True
    subscribe: bool = True
    relay: bool = True
    allowed_lines: tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        allowed_lines: Optional[Iterable[str]] = None,
        **flags: bool,
    ) -> "AccessPolicy":
        """Build a policy, normalizing the allow-list to a tuple."""
        names = tuple(n.strip() for n in (allowed_lines or ()) if n and n.strip())
        return cls(allowed_lines=names, **flags)

    def is_enabled(self, capability: Capability) -> bool:
        """Check whether a capability flag is turned on."""
        return bool(getattr(self, capability.value))

    def is_line_allowed(self, name: Optional[str]) -> bool:
        """
        Check a line name against the allow-list.

        An empty allow-list permits every name; otherwise only
        case-insensitive exact matches are permitted.
        """
        if not name or not isinstance(name, str):
            return False
        if not self.allowed_lines:
            return True
        lowered = name.lower()
        return any(allowed.lower() == lowered for allowed in self.allowed_lines)

    def check(self, capability: Capability, line_name: Optional[str] = None) -> bool:
        """
        Decide whether an operation is permitted.

        Args:
            capability: Operation being attempted
            line_name: Canonical line name, or None for line-independent
                operations such as listing

        Returns:
            True if the capability is enabled and the line is allowed
        """
        if not self.is_enabled(capability):
            return False
        if line_name is None:
            return True
        return self.is_line_allowed(line_name)

    def require(self, capability: Capability, line_name: Optional[str] = None) -> None:
        """Raise AccessDeniedError unless check() passes."""
        if not self.is_enabled(capability):
            raise AccessDeniedError(f"No {capability.value} permissions!")
        if line_name is not None and not self.is_line_allowed(line_name):
            raise AccessDeniedError("Access to serial port denied!")

    def require_line(self, line_name: str) -> None:
        """Raise AccessDeniedError unless the line is on the allow-list."""
        if not self.is_line_allowed(line_name):
            raise AccessDeniedError("Access to serial port denied!")


def canonical_line_name(name: Optional[str], platform: str = sys.platform) -> str:
    """
    Validate a line name from a URL or message and return its device path.

    On Windows names must look like ``COMx`` and are returned unchanged.
    Elsewhere names must not contain a slash and are resolved under /dev/.

    Raises:
        InvalidLineNameError: If the name is missing or malformed
    """
    if not name:
        raise InvalidLineNameError("Serial port name is missing!")

    if platform == "win32":
        if not _WINDOWS_NAME.fullmatch(name):
            raise InvalidLineNameError("Expected port to be named as 'COMx' on Windows!")
        return name

    if not _UNIX_NAME.fullmatch(name):
        raise InvalidLineNameError(
            "Expected port to be named without '/dev/' on Unix system!"
        )
    return "/dev/" + name
