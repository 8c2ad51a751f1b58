"""
Traffic logging for serial sessions.

Records every byte received from or written to a line in a timestamped
file, as an ordinary session subscriber.
"""

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from serialhub.core.models import EventKind, LineEvent
from serialhub.serial.events import Subscription
from serialhub.serial.session import Session

logger = logging.getLogger(__name__)


class TrafficLog:
    """Logs all traffic of one session to a file."""

    def __init__(self, log_dir: Path, line_name: str):
        self.log_dir = log_dir
        self.line_name = line_name
        self.log_file: Optional[Path] = None
        self._file_handle = None
        self._session: Optional[Session] = None
        self._subscription: Optional[Subscription] = None
        self._lock = threading.Lock()

    @property
    def file_stem(self) -> str:
        """Line name made safe for use in a file name."""
        return re.sub(r"[^\w\-.]+", "_", self.line_name).strip("_") or "line"

    def start(self) -> Path:
        """Start logging, returns log file path."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = self.log_dir / f"{self.file_stem}_{timestamp}.log"

        self._file_handle = open(self.log_file, "a", buffering=1)  # Line buffered
        self._write_header()
        return self.log_file

    def attach(self, session: Session) -> Path:
        """Start logging and subscribe to the session's traffic."""
        log_file = self.start()
        self._session = session
        self._subscription = session.subscribe(
            self.handle_event,
            kinds=(EventKind.RECEIVED, EventKind.WRITTEN, EventKind.CLOSED),
        )
        logger.info(f"Traffic logging for {self.line_name} to {log_file}")
        return log_file

    def _write_header(self) -> None:
        if self._file_handle:
            self._file_handle.write(f"# Line: {self.line_name}\n")
            self._file_handle.write(f"# Started: {datetime.now().isoformat()}\n")
            self._file_handle.write("# Format: [timestamp] [direction] data\n")
            self._file_handle.write("# Direction: >> = from device, << = to device\n")
            self._file_handle.write("#" + "=" * 60 + "\n")

    def handle_event(self, event: LineEvent) -> None:
        if event.kind == EventKind.RECEIVED:
            self.log_received(event.data)
        elif event.kind == EventKind.WRITTEN:
            self.log_written(event.data)
        elif event.kind == EventKind.CLOSED:
            self.stop()

    def log_received(self, data: bytes) -> None:
        """Log data received from the device."""
        self._write_line(">>", data)

    def log_written(self, data: bytes) -> None:
        """Log data written to the device."""
        self._write_line("<<", data)

    def _write_line(self, direction: str, data: bytes) -> None:
        with self._lock:
            if self._file_handle:
                timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
                # Escape non-printable bytes for readability
                text = data.decode("utf-8", errors="replace")
                self._file_handle.write(f"[{timestamp}] {direction} {repr(text)}\n")

    def stop(self) -> None:
        """Stop logging and detach from the session."""
        with self._lock:
            session, self._session = self._session, None
            self._subscription = None

            if self._file_handle:
                self._file_handle.write("#" + "=" * 60 + "\n")
                self._file_handle.write(f"# Ended: {datetime.now().isoformat()}\n")
                self._file_handle.close()
                self._file_handle = None

        if session is not None:
            session.unsubscribe(self.handle_event)
