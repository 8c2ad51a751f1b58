"""
Serial device handles.

A device handle owns one physical (or virtual) line. It is opened and
closed by its session, performs blocking writes bounded by a write
timeout, and reports inbound bytes and read failures through callbacks
invoked from its own reader thread.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import serial
from serial.tools import list_ports

from serialhub.core.errors import DeviceError
from serialhub.core.models import LineSettings

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


class DeviceHandle(ABC):
    """Abstract base class for serial line handles."""

    def __init__(self, name: str, settings: LineSettings):
        """
        Initialize device handle.

        Args:
            name: Canonical line name
            settings: Baud rate, data bits, parity and stop bits
        """
        self.name = name
        self.settings = settings
        self._data_callback: Optional[DataCallback] = None
        self._error_callback: Optional[ErrorCallback] = None

    def on_data(self, callback: DataCallback) -> None:
        """Register the byte-arrival callback."""
        self._data_callback = callback

    def on_error(self, callback: ErrorCallback) -> None:
        """Register the read-failure callback."""
        self._error_callback = callback

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def open(self) -> None:
        """
        Open the line and start reporting inbound bytes.

        Raises:
            DeviceError: If the line cannot be opened
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Stop reading and close the line.

        Raises:
            DeviceError: If closing fails
        """
        pass

    @abstractmethod
    def write(self, data: bytes) -> int:
        """
        Write bytes to the line, returning once they are accepted.

        Returns:
            Number of bytes written

        Raises:
            DeviceError: If the write fails or times out
        """
        pass

    def _notify_data(self, data: bytes) -> None:
        if self._data_callback:
            self._data_callback(data)

    def _notify_error(self, error: Exception) -> None:
        if self._error_callback:
            self._error_callback(error)


class SerialDevice(DeviceHandle):
    """Device handle backed by pyserial."""

    def __init__(
        self,
        name: str,
        settings: LineSettings,
        write_timeout: float = 2.0,
        read_timeout: float = 0.1,
        url: Optional[str] = None,
    ):
        """
        Initialize serial device.

        Args:
            name: Canonical line name
            settings: Line settings
            write_timeout: Seconds before a write is failed
            read_timeout: Poll interval of the reader thread
            url: pyserial URL to open instead of the name (e.g. loop://)
        """
        super().__init__(name, settings)
        self.url = url or name
        self.write_timeout = write_timeout
        self.read_timeout = read_timeout
        self._serial: Optional[serial.SerialBase] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        if self.is_open:
            raise DeviceError(f"Serial port already open: {self.name}")

        try:
            ser = serial.serial_for_url(self.url, do_not_open=True)
            ser.baudrate = self.settings.baud_rate
            ser.bytesize = self.settings.data_bits
            ser.parity = self.settings.parity.code
            ser.stopbits = self.settings.stop_bits
            ser.timeout = self.read_timeout
            ser.write_timeout = self.write_timeout
            ser.open()
        except (serial.SerialException, ValueError) as e:
            raise DeviceError(f"Error opening serial port {self.name}: {e}") from e

        self._serial = ser
        self._running = True
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            name=f"reader-{self.name}",
            daemon=True,
        )
        self._reader_thread.start()
        logger.info(f"{self.name} open at {self.settings.baud_rate} {self.settings.frame}")

    def close(self) -> None:
        self._running = False
        ser = self._serial
        if ser is None:
            return

        if hasattr(ser, "cancel_read"):
            try:
                ser.cancel_read()
            except serial.SerialException:
                pass

        if self._reader_thread is not None:
            self._reader_thread.join(timeout=max(1.0, self.read_timeout * 5))
            self._reader_thread = None

        self._serial = None
        try:
            ser.close()
        except serial.SerialException as e:
            raise DeviceError(f"Error closing serial port {self.name}: {e}") from e
        logger.info(f"{self.name} closed")

    def write(self, data: bytes) -> int:
        ser = self._serial
        if ser is None or not ser.is_open:
            raise DeviceError(f"Serial port not open: {self.name}")

        try:
            written = ser.write(data)
        except serial.SerialException as e:
            raise DeviceError(f"Error writing data: {e}") from e
        return len(data) if written is None else written

    def _reader_loop(self) -> None:
        """Read from the line and hand bytes to the data callback."""
        while self._running:
            ser = self._serial
            if ser is None:
                break
            try:
                data = ser.read(ser.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError) as e:
                # TypeError/OSError can surface when the port is closed under us
                if self._running:
                    logger.error(f"{self.name} read error: {e}")
                    self._notify_error(e)
                break

            if not data:
                continue

            logger.debug(f"{self.name} incoming {len(data)} bytes")
            try:
                self._notify_data(data)
            except Exception:
                logger.exception(f"{self.name} data callback failed")


def create_serial_device(
    name: str,
    settings: LineSettings,
    write_timeout: float = 2.0,
) -> SerialDevice:
    """Default device factory used by the registry."""
    return SerialDevice(name, settings, write_timeout=write_timeout)


def list_serial_ports() -> list[dict]:
    """Enumerate serial ports known to the operating system."""
    ports = []
    for p in list_ports.comports():
        ports.append({
            "name": p.device,
            "description": p.description,
            "manufacturer": p.manufacturer,
            "serial_number": p.serial_number,
            "vid": p.vid,
            "pid": p.pid,
            "location": p.location,
        })
    return ports
