"""
Fixed-capacity receive buffer.

Accumulates bytes from the line between polls. Not thread-safe on its own:
the owning session serializes access with its read lock.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 65535


class ReceiveBuffer:
    """
    Accumulate-then-clear byte buffer with overflow detection.

    Bytes that do not fit are discarded and the overflow flag is raised.
    The flag describes only the most recent append, not whether anything
    was lost earlier since the last drain.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        self.capacity = capacity
        self._data = bytearray(capacity)
        self._fill = 0
        self._overflow = False

    @property
    def fill(self) -> int:
        """Number of bytes currently stored."""
        return self._fill

    @property
    def overflow(self) -> bool:
        """Whether the most recent append was truncated."""
        return self._overflow

    def append(self, data: bytes) -> int:
        """
        Store as much of data as fits.

        Returns:
            Number of bytes stored
        """
        remaining = self.capacity - self._fill
        if remaining <= 0:
            self._overflow = True
            return 0

        length = min(len(data), remaining)
        self._data[self._fill:self._fill + length] = data[:length]
        self._fill += length
        self._overflow = length < len(data)
        if self._overflow:
            logger.debug(f"Receive buffer full, discarded {len(data) - length} bytes")
        return length

    def drain(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Return up to max_bytes from the start and clear the whole buffer.

        Bytes beyond max_bytes are discarded along with the rest.
        """
        take = self.capacity if max_bytes is None else max(0, max_bytes)
        take = min(take, self._fill)
        result = bytes(self._data[:take])
        self.clear()
        return result

    def clear(self) -> None:
        """Discard all stored bytes and reset the overflow flag."""
        self._data[:self._fill] = bytes(self._fill)
        self._fill = 0
        self._overflow = False

    def peek_available(self) -> tuple[int, bool]:
        """Return (fill, overflow) without changing anything."""
        return self._fill, self._overflow

    def __len__(self) -> int:
        return self._fill
