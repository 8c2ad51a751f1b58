"""Unit tests for data models."""

import pytest

from serialhub.core.models import (
    EventKind,
    LineEvent,
    LineSettings,
    Parity,
    parse_line_spec,
)


class TestParity:
    """Tests for Parity enum."""

    def test_codes(self):
        """Test single-letter parity codes."""
        assert Parity.NONE.code == "N"
        assert Parity.EVEN.code == "E"
        assert Parity.ODD.code == "O"
        assert Parity.MARK.code == "M"
        assert Parity.SPACE.code == "S"

    def test_from_code_case_insensitive(self):
        """Test looking up parity by code."""
        assert Parity.from_code("e") == Parity.EVEN
        assert Parity.from_code("N") == Parity.NONE

    def test_from_code_invalid(self):
        """Test unknown parity code is rejected."""
        with pytest.raises(ValueError, match="parity should be"):
            Parity.from_code("X")


class TestLineSettings:
    """Tests for LineSettings dataclass."""

    def test_defaults(self):
        """Test default line settings are 9600 8N1."""
        settings = LineSettings()
        assert settings.baud_rate == 9600
        assert settings.frame == "8N1"

    def test_invalid_baud_rate(self):
        """Test baud rate must be positive."""
        with pytest.raises(ValueError, match="baud rate"):
            LineSettings(baud_rate=0)

    def test_invalid_data_bits(self):
        """Test data bits must be 5 to 8."""
        with pytest.raises(ValueError, match="data bits"):
            LineSettings(data_bits=9)

    def test_invalid_stop_bits(self):
        """Test stop bits must be 1 or 2."""
        with pytest.raises(ValueError, match="stop bits"):
            LineSettings(stop_bits=3)

    def test_from_dict_camel_case(self):
        """Test parsing a request body with camelCase keys."""
        settings = LineSettings.from_dict({
            "baudRate": 115200,
            "dataBits": 7,
            "parity": "odd",
            "stopBits": 2,
        })
        assert settings == LineSettings(115200, 7, Parity.ODD, 2)

    def test_from_dict_snake_case(self):
        """Test parsing snake_case keys."""
        settings = LineSettings.from_dict({"baud_rate": "19200", "parity": "EVEN"})
        assert settings.baud_rate == 19200
        assert settings.parity == Parity.EVEN

    def test_from_dict_empty(self):
        """Test empty body gives defaults."""
        assert LineSettings.from_dict({}) == LineSettings()

    def test_from_dict_invalid_parity(self):
        """Test unknown parity name is rejected."""
        with pytest.raises(ValueError, match="Invalid parity"):
            LineSettings.from_dict({"parity": "sometimes"})

    def test_from_dict_non_numeric(self):
        """Test non-numeric baud rate is rejected."""
        with pytest.raises(ValueError):
            LineSettings.from_dict({"baudRate": "fast"})

    def test_from_dict_not_a_mapping(self):
        """Test non-object bodies are rejected."""
        with pytest.raises(ValueError, match="JSON object"):
            LineSettings.from_dict([1, 2])
        with pytest.raises(ValueError, match="JSON object"):
            LineSettings.from_dict("x")

    def test_to_dict(self):
        """Test API representation uses camelCase."""
        data = LineSettings(baud_rate=4800).to_dict()
        assert data == {
            "baudRate": 4800,
            "dataBits": 8,
            "parity": "none",
            "stopBits": 1,
        }


class TestParseLineSpec:
    """Tests for parse_line_spec function."""

    def test_name_only(self):
        """Test name without settings uses defaults."""
        name, settings = parse_line_spec("COM1")
        assert name == "COM1"
        assert settings == LineSettings()

    def test_name_and_baud(self):
        """Test name with baud rate."""
        name, settings = parse_line_spec("COM1,115200")
        assert name == "COM1"
        assert settings.baud_rate == 115200
        assert settings.frame == "8N1"

    def test_full_spec(self):
        """Test name, baud rate and frame."""
        name, settings = parse_line_spec("/dev/ttyUSB0,9600,7E2")
        assert name == "/dev/ttyUSB0"
        assert settings.data_bits == 7
        assert settings.parity == Parity.EVEN
        assert settings.stop_bits == 2

    def test_lowercase_parity(self):
        """Test parity letter is case-insensitive."""
        _, settings = parse_line_spec("COM1,9600,8o1")
        assert settings.parity == Parity.ODD

    @pytest.mark.parametrize("spec", [
        "",
        "COM1,0",
        "COM1,fast",
        "COM1,9600,8N",
        "COM1,9600,9N1",
        "COM1,9600,8N3",
        "COM1,9600,8X1",
        "COM1,9600,8N1,extra",
    ])
    def test_invalid_specs(self, spec):
        """Test malformed specs are rejected."""
        with pytest.raises(ValueError):
            parse_line_spec(spec)


class TestLineEvent:
    """Tests for LineEvent dataclass."""

    def test_defaults(self):
        """Test event defaults."""
        event = LineEvent(kind=EventKind.CLOSED, line_name="COM1")
        assert event.data == b""
        assert event.error is None
        assert event.timestamp is not None

    def test_immutable(self):
        """Test events cannot be modified."""
        event = LineEvent(kind=EventKind.RECEIVED, line_name="COM1", data=b"x")
        with pytest.raises(AttributeError):
            event.data = b"y"
