"""
Data models for serialhub.

Defines line settings, parity values, and the events published by sessions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Parity(Enum):
    """Serial parity values."""

    NONE = "none"
    EVEN = "even"
    ODD = "odd"
    MARK = "mark"
    SPACE = "space"

    @property
    def code(self) -> str:
        """Single-letter code as used in frame strings like 8N1."""
        return self.value[0].upper()

    @classmethod
    def from_code(cls, code: str) -> "Parity":
        """Look up parity by its single-letter code (N, E, O, M, S)."""
        for parity in cls:
            if parity.code == code.upper():
                return parity
        raise ValueError(
            "parity should be N - none, E - even, O - odd, M - mark or S - space"
        )


class EventKind(Enum):
    """Kinds of events published by a session."""

    RECEIVED = "received"
    WRITTEN = "written"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class LineSettings:
    """Serial line configuration."""

    baud_rate: int = 9600
    data_bits: int = 8
    parity: Parity = Parity.NONE
    stop_bits: int = 1

    def __post_init__(self):
        if not isinstance(self.baud_rate, int) or self.baud_rate <= 0:
            raise ValueError("baud rate must be greater than 0")
        if self.data_bits not in (5, 6, 7, 8):
            raise ValueError("data bits should be 5, 6, 7 or 8")
        if self.stop_bits not in (1, 2):
            raise ValueError("stop bits should be 1 or 2")
        if not isinstance(self.parity, Parity):
            raise ValueError(f"Invalid parity: {self.parity}")

    @property
    def frame(self) -> str:
        """Frame string, e.g. 8N1."""
        return f"{self.data_bits}{self.parity.code}{self.stop_bits}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineSettings":
        """
        Create settings from a request body.

        Accepts the camelCase keys used on the wire (baudRate, dataBits,
        stopBits, parity) as well as snake_case equivalents.
        """
        if not isinstance(data, dict):
            raise ValueError("Port settings must be a JSON object")

        defaults = cls()

        def pick(camel: str, snake: str, default):
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        parity = pick("parity", "parity", defaults.parity.value)
        try:
            parity = Parity(str(parity).lower())
        except ValueError:
            raise ValueError(f"Invalid parity: {parity}")

        try:
            baud_rate = int(pick("baudRate", "baud_rate", defaults.baud_rate))
            data_bits = int(pick("dataBits", "data_bits", defaults.data_bits))
            stop_bits = int(pick("stopBits", "stop_bits", defaults.stop_bits))
        except (TypeError, ValueError):
            raise ValueError("baud rate, data bits and stop bits must be integers")

        return cls(
            baud_rate=baud_rate,
            data_bits=data_bits,
            parity=parity,
            stop_bits=stop_bits,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase form used in API responses."""
        return {
            "baudRate": self.baud_rate,
            "dataBits": self.data_bits,
            "parity": self.parity.value,
            "stopBits": self.stop_bits,
        }


def parse_line_spec(spec: str) -> tuple[str, LineSettings]:
    """
    Parse a compact line specification.

    Format is ``NAME[,BAUD[,FRAME]]`` where FRAME is data bits, parity
    letter and stop bits, e.g. ``/dev/ttyUSB0,9600,8N1``.

    Args:
        spec: Line specification string

    Returns:
        Tuple of (line name, settings)

    Raises:
        ValueError: If any part is malformed
    """
    parts = [p.strip() for p in spec.split(",")]
    if not parts[0]:
        raise ValueError("Error in line spec: serial port name is missing")
    if len(parts) > 3:
        raise ValueError(f"Unknown line spec argument: {parts[3]}")

    name = parts[0]
    baud_rate = LineSettings.baud_rate
    data_bits = LineSettings.data_bits
    parity = LineSettings.parity
    stop_bits = LineSettings.stop_bits

    if len(parts) > 1:
        try:
            baud_rate = int(parts[1])
        except ValueError:
            raise ValueError(f"Error in line spec: invalid baud rate {parts[1]!r}")
        if baud_rate <= 0:
            raise ValueError("Error in line spec: baud rate must be greater than 0")

    if len(parts) > 2:
        frame = parts[2]
        if len(frame) != 3 or not frame[0].isdigit() or not frame[2].isdigit():
            raise ValueError(f"Error in line spec: {frame}")
        data_bits = int(frame[0])
        stop_bits = int(frame[2])
        try:
            parity = Parity.from_code(frame[1])
        except ValueError as e:
            raise ValueError(f"Error in line spec: {e}")

    try:
        settings = LineSettings(
            baud_rate=baud_rate,
            data_bits=data_bits,
            parity=parity,
            stop_bits=stop_bits,
        )
    except ValueError as e:
        raise ValueError(f"Error in line spec: {e}")

    return name, settings


@dataclass(frozen=True)
class LineEvent:
    """Notification published by a session to its subscribers."""

    kind: EventKind
    line_name: str
    data: bytes = b""
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
