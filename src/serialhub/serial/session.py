"""
Per-line session.

A session is the single point of serialized access to one open line. It
owns the device handle, the receive buffer, and two independent locks:
the write lock serializes writers, the read lock serializes buffer
mutation (device arrivals and client drains). A write may proceed while
the buffer is being drained. Neither lock is held while subscribers run.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from serialhub.core.errors import DeviceError, NotOpenError, WriteError
from serialhub.core.models import EventKind, LineSettings
from serialhub.serial.buffer import DEFAULT_CAPACITY, ReceiveBuffer
from serialhub.serial.device import DeviceHandle
from serialhub.serial.events import EventBus, Subscriber, Subscription

logger = logging.getLogger(__name__)


class SessionLock:
    """
    Binary lock that can be closed.

    Closing wakes every waiter with NotOpenError and makes later acquire
    attempts fail the same way. A holder at close time keeps the lock until
    it releases normally.
    """

    def __init__(self, line_name: str):
        self.line_name = line_name
        self._cond = threading.Condition()
        self._held = False
        self._closed = False

    @property
    def locked(self) -> bool:
        return self._held

    def acquire(self) -> None:
        with self._cond:
            while self._held and not self._closed:
                self._cond.wait()
            if self._closed:
                raise NotOpenError(self.line_name)
            self._held = True

    def release(self) -> None:
        with self._cond:
            self._held = False
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def wait_released(self, timeout: Optional[float] = None) -> bool:
        """Wait until no one holds the lock. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._held, timeout)

    def __enter__(self) -> "SessionLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class Session:
    """Open binding between a line, its buffer, its locks and its subscribers."""

    def __init__(
        self,
        name: str,
        device: DeviceHandle,
        capacity: int = DEFAULT_CAPACITY,
        queue_size: int = 1024,
        close_timeout: float = 5.0,
        on_close: Optional[Callable[["Session"], None]] = None,
    ):
        """
        Initialize session and wire it to the device callbacks.

        The device is expected to be opened by the caller afterwards, so no
        inbound bytes can arrive before the session is ready for them.

        Args:
            name: Canonical line name
            device: Unopened device handle, exclusively owned from now on
            capacity: Receive buffer capacity in bytes
            queue_size: Per-subscriber event queue size
            close_timeout: Seconds close() waits for in-flight operations
            on_close: Called first thing on close (registry removal)
        """
        self.name = name
        self.device = device
        self.capacity = capacity
        self.close_timeout = close_timeout
        self.opened_at = datetime.now()
        self.bytes_received = 0
        self.bytes_written = 0

        self.events = EventBus(name, queue_size)
        self._buffer = ReceiveBuffer(capacity)
        self._write_lock = SessionLock(name)
        self._read_lock = SessionLock(name)
        self._state_lock = threading.Lock()
        self._closed = False
        self._on_close = on_close

        device.on_data(self.on_device_data)
        device.on_error(self.on_device_error)

    @property
    def settings(self) -> LineSettings:
        return self.device.settings

    @property
    def is_open(self) -> bool:
        return not self._closed

    # --- Client operations ---

    def write(self, data: bytes) -> int:
        """
        Write bytes to the line.

        Only one write per session is in progress at any time.

        Returns:
            Number of bytes written

        Raises:
            NotOpenError: If the session is closed, or closes while waiting
            WriteError: If the device write fails
        """
        with self._write_lock:
            try:
                written = self.device.write(data)
            except DeviceError as e:
                logger.warning(f"{self.name} write failed: {e}")
                raise WriteError(str(e)) from e
            self.bytes_written += written

        logger.debug(f"{self.name} wrote {written} bytes")
        self.events.publish(EventKind.WRITTEN, bytes(data))
        return written

    def drain_buffer(self, max_bytes: Optional[int] = None) -> tuple[bytes, bool]:
        """
        Return buffered bytes and clear the buffer.

        Returns:
            Tuple of (up to max_bytes bytes, overflow flag before the drain)
        """
        with self._read_lock:
            overflow = self._buffer.overflow
            data = self._buffer.drain(max_bytes)
        return data, overflow

    def clear_buffer(self) -> None:
        """Discard buffered bytes without returning them."""
        with self._read_lock:
            self._buffer.clear()

    def peek_available(self) -> tuple[int, int, bool]:
        """Return (length, capacity, overflow) as a consistent snapshot."""
        with self._read_lock:
            length, overflow = self._buffer.peek_available()
        return length, self.capacity, overflow

    def subscribe(
        self,
        callback: Subscriber,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> Subscription:
        """
        Subscribe to session events.

        The session does not own subscribers; a subscriber must unsubscribe
        itself when its connection goes away.

        Raises:
            NotOpenError: If the session is closed
        """
        if self._closed:
            raise NotOpenError(self.name)
        return self.events.subscribe(callback, kinds)

    def unsubscribe(self, subscriber) -> bool:
        """Remove a subscription by Subscription object or callback."""
        return self.events.unsubscribe(subscriber)

    # --- Device notifications ---

    def on_device_data(self, data: bytes) -> None:
        """Buffer inbound bytes and publish them to subscribers."""
        try:
            with self._read_lock:
                self._buffer.append(data)
                self.bytes_received += len(data)
        except NotOpenError:
            logger.debug(f"{self.name} dropping {len(data)} bytes after close")
            return

        self.events.publish(EventKind.RECEIVED, bytes(data))

    def on_device_error(self, error: Exception) -> None:
        """Report a device read failure without closing the session."""
        logger.error(f"{self.name} device error: {error}")
        self.events.publish(EventKind.ERROR, error=str(error))

    # --- Lifecycle ---

    def close(self) -> None:
        """
        Close the session and its device.

        Pending lock waiters fail with NotOpenError; current holders are
        given close_timeout seconds to finish before the device is closed.

        Raises:
            NotOpenError: If the session is already closed
            DeviceError: If the device fails to close
        """
        with self._state_lock:
            if self._closed:
                raise NotOpenError(self.name)
            self._closed = True

        if self._on_close:
            self._on_close(self)

        self._write_lock.close()
        self._read_lock.close()
        released = True
        for lock in (self._write_lock, self._read_lock):
            if not lock.wait_released(self.close_timeout):
                logger.warning(f"{self.name} close timed out waiting for a lock holder")
                released = False

        try:
            self.device.close()
        finally:
            if released:
                self._buffer.clear()
            self.events.publish(EventKind.CLOSED)
            self.events.close()
            logger.info(f"Session {self.name} closed")

    def info(self) -> dict[str, Any]:
        """Describe the session for status listings."""
        try:
            length, capacity, overflow = self.peek_available()
        except NotOpenError:
            length, overflow = self._buffer.peek_available()
            capacity = self.capacity
        return {
            "name": self.name,
            "status": "open" if self.is_open else "closed",
            "config": self.settings.to_dict(),
            "length": length,
            "capacity": capacity,
            "overflow": overflow,
            "subscribers": self.events.subscriber_count,
            "bytes_received": self.bytes_received,
            "bytes_written": self.bytes_written,
            "opened_at": self.opened_at.isoformat(),
        }
