"""Shared fixtures for serialhub tests."""

import threading
import time

import pytest

from serialhub.core.errors import DeviceError
from serialhub.core.models import LineSettings
from serialhub.serial.device import DeviceHandle
from serialhub.serial.registry import Registry


class FakeDevice(DeviceHandle):
    """In-memory device handle that records writes."""

    def __init__(
        self,
        name: str,
        settings: LineSettings,
        fail_open: bool = False,
        fail_write: bool = False,
        write_delay: float = 0.0,
    ):
        super().__init__(name, settings)
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.write_delay = write_delay
        self.writes: list[bytes] = []
        self.open_count = 0
        self.close_count = 0
        self.active_writes = 0
        self.max_active_writes = 0
        self._open = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.fail_open:
            raise DeviceError(f"Error opening serial port {self.name}: no such device")
        self.open_count += 1
        self._open = True

    def close(self) -> None:
        self.close_count += 1
        self._open = False

    def write(self, data: bytes) -> int:
        with self._lock:
            self.active_writes += 1
            self.max_active_writes = max(self.max_active_writes, self.active_writes)
        try:
            if self.write_delay:
                time.sleep(self.write_delay)
            if self.fail_write:
                raise DeviceError("Error writing data: device unplugged")
            with self._lock:
                self.writes.append(bytes(data))
            return len(data)
        finally:
            with self._lock:
                self.active_writes -= 1

    def feed(self, data: bytes) -> None:
        """Simulate bytes arriving from the line."""
        self._notify_data(data)

    def fail(self, error: Exception) -> None:
        """Simulate a read failure."""
        self._notify_error(error)

    @property
    def written(self) -> bytes:
        with self._lock:
            return b"".join(self.writes)


class FakeDeviceFactory:
    """Device factory that remembers every device it created."""

    def __init__(self, **options):
        self.options = options
        self.devices: list[FakeDevice] = []

    def __call__(self, name: str, settings: LineSettings) -> FakeDevice:
        device = FakeDevice(name, settings, **self.options)
        self.devices.append(device)
        return device

    @property
    def last(self) -> FakeDevice:
        return self.devices[-1]


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def device_factory():
    """Factory producing fake devices."""
    return FakeDeviceFactory()


@pytest.fixture
def registry(device_factory):
    """Registry backed by fake devices, closed after the test."""
    reg = Registry(device_factory=device_factory, capacity=64, queue_size=16)
    yield reg
    reg.close_all()


@pytest.fixture
def wait():
    """Polling helper for conditions reached on other threads."""
    return wait_for


@pytest.fixture
def make_device():
    """Build a standalone fake device."""
    def _make(name: str = "/dev/ttyTEST0", settings: LineSettings | None = None, **options):
        return FakeDevice(name, settings or LineSettings(), **options)
    return _make
