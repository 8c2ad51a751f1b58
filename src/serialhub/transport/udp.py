"""
UDP datagram relay.

Remote endpoints are learned from inbound datagrams; every chunk received
from the line is sent to all of them. Inbound datagrams are written to the
line in arrival order.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from serialhub.core.policy import AccessPolicy
from serialhub.serial.session import Session
from serialhub.transport.base import Relay, TransportMode

logger = logging.getLogger(__name__)

Endpoint = tuple[str, int]


class _RelayProtocol(asyncio.DatagramProtocol):
    """Forwards datagram callbacks to the relay."""

    def __init__(self, relay: "DatagramRelay"):
        self.relay = relay

    def datagram_received(self, data: bytes, addr) -> None:
        self.relay.datagram_received(data, (addr[0], addr[1]))

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"{self.relay.name} socket error: {exc}")


class DatagramRelay(Relay):
    """Broadcasting UDP relay for a single session."""

    mode = TransportMode.UDP

    def __init__(
        self,
        session: Session,
        policy: AccessPolicy,
        host: str = "0.0.0.0",
        port: int = 5147,
    ):
        super().__init__(session, policy)
        self.host = host
        self.port = port
        self.endpoints: dict[Endpoint, datetime] = {}
        self._transport: Optional[asyncio.DatagramTransport] = None

    async def _start(self) -> None:
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _RelayProtocol(self),
            local_addr=(self.host, self.port),
        )
        sockname = self._transport.get_extra_info("sockname")
        if sockname:
            self.port = sockname[1]
        logger.info(f"UDP listening on {self.host}:{self.port}")

    async def _stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self.endpoints.clear()

    def datagram_received(self, data: bytes, addr: Endpoint) -> None:
        """Learn the sender and queue its payload for the line."""
        if not self._running:
            return

        if addr not in self.endpoints:
            logger.info(f"{self.name} client {addr[0]}:{addr[1]} registered")
        self.endpoints[addr] = datetime.now()
        self.enqueue_write(data, f"{addr[0]}:{addr[1]}")

    def broadcast(self, data: bytes) -> None:
        """Send data to every learned endpoint."""
        if self._transport is None:
            return
        for addr in list(self.endpoints):
            self._transport.sendto(data, addr)
        logger.debug(f"{self.name} sent {len(data)} bytes to {len(self.endpoints)} endpoints")
