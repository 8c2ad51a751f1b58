"""
Serial line sessions for serialhub.

Handles device access, receive buffering, event fan-out, and the
registry of open lines.
"""

from serialhub.serial.buffer import DEFAULT_CAPACITY, ReceiveBuffer
from serialhub.serial.device import (
    DeviceHandle,
    SerialDevice,
    create_serial_device,
    list_serial_ports,
)
from serialhub.serial.events import EventBus, Subscription
from serialhub.serial.registry import Registry
from serialhub.serial.session import Session, SessionLock
from serialhub.serial.traffic_log import TrafficLog

__all__ = [
    "DEFAULT_CAPACITY",
    "ReceiveBuffer",
    "DeviceHandle",
    "SerialDevice",
    "create_serial_device",
    "list_serial_ports",
    "EventBus",
    "Subscription",
    "Registry",
    "Session",
    "SessionLock",
    "TrafficLog",
]
