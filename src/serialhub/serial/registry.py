"""
Registry of open sessions.

Maps canonical line names to sessions and guarantees at most one session
(and one device handle) per name. The registry is a plain object owned by
the composition root, not a module-level singleton.
"""

import logging
import threading
from typing import Callable, Optional

from serialhub.core.errors import AlreadyOpenError, DeviceError, NotOpenError
from serialhub.core.models import LineSettings
from serialhub.serial.buffer import DEFAULT_CAPACITY
from serialhub.serial.device import DeviceHandle, create_serial_device
from serialhub.serial.session import Session

logger = logging.getLogger(__name__)

DeviceFactory = Callable[[str, LineSettings], DeviceHandle]


class Registry:
    """Process-wide set of open sessions keyed by line name."""

    def __init__(
        self,
        device_factory: DeviceFactory = create_serial_device,
        capacity: int = DEFAULT_CAPACITY,
        queue_size: int = 1024,
    ):
        """
        Initialize registry.

        Args:
            device_factory: Creates an unopened device handle for a line
            capacity: Receive buffer capacity for new sessions
            queue_size: Per-subscriber event queue size for new sessions
        """
        self.device_factory = device_factory
        self.capacity = capacity
        self.queue_size = queue_size
        self._sessions: dict[str, Session] = {}
        self._opening: set[str] = set()
        self._lock = threading.Lock()

    def open(self, name: str, settings: Optional[LineSettings] = None) -> Session:
        """
        Open a line and register its session.

        Device I/O happens outside the registry lock; the name is reserved
        while the device opens so a concurrent open of the same name fails.

        Raises:
            AlreadyOpenError: If the line is open or being opened
            DeviceError: If the device cannot be opened
        """
        settings = settings or LineSettings()

        with self._lock:
            if name in self._sessions or name in self._opening:
                raise AlreadyOpenError(name)
            self._opening.add(name)

        try:
            device = self.device_factory(name, settings)
            session = Session(
                name,
                device,
                capacity=self.capacity,
                queue_size=self.queue_size,
                on_close=self._discard,
            )
            device.open()
        except DeviceError:
            with self._lock:
                self._opening.discard(name)
            raise
        except Exception as e:
            with self._lock:
                self._opening.discard(name)
            raise DeviceError(f"Error opening serial port {name}: {e}") from e

        with self._lock:
            self._opening.discard(name)
            self._sessions[name] = session

        logger.info(f"{name} ready")
        return session

    def get(self, name: str) -> Optional[Session]:
        """Get the open session for a line, if any."""
        with self._lock:
            return self._sessions.get(name)

    def require(self, name: str) -> Session:
        """Get the open session for a line or raise NotOpenError."""
        session = self.get(name)
        if session is None:
            raise NotOpenError(name)
        return session

    def close(self, name: str) -> None:
        """
        Close the session for a line.

        Raises:
            NotOpenError: If the line is not open
        """
        self.require(name).close()

    def close_all(self) -> None:
        """Close every open session, logging failures."""
        with self._lock:
            sessions = list(self._sessions.values())

        for session in sessions:
            try:
                session.close()
            except NotOpenError:
                pass
            except DeviceError as e:
                logger.error(f"Failed to close {session.name}: {e}")

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def _discard(self, session: Session) -> None:
        """Remove a closing session so no new operations reach it."""
        with self._lock:
            if self._sessions.get(session.name) is session:
                del self._sessions[session.name]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
