"""
TCP stream relay.

Accepts many concurrent TCP peers for one line. Bytes from the line are
broadcast to every peer; bytes from any peer are written to the line.
Peers are not serialized against each other beyond the session's own
write lock.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from serialhub.core.policy import AccessPolicy
from serialhub.serial.session import Session
from serialhub.transport.base import Relay, TransportMode

logger = logging.getLogger(__name__)

# Peers with more than this many unsent bytes are disconnected
DEFAULT_HIGH_WATER = 1024 * 1024


@dataclass
class RelayPeer:
    """Represents a connected TCP peer."""

    peer_id: str
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    connected_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)
    bytes_in: int = 0
    bytes_out: int = 0

    @property
    def address(self) -> str:
        """Get peer address as string."""
        try:
            peername = self.writer.get_extra_info("peername")
            if peername:
                return f"{peername[0]}:{peername[1]}"
        except (AttributeError, OSError):
            pass
        return "unknown"


class StreamRelay(Relay):
    """Broadcasting TCP relay for a single session."""

    mode = TransportMode.TCP

    def __init__(
        self,
        session: Session,
        policy: AccessPolicy,
        host: str = "0.0.0.0",
        port: int = 5147,
        max_clients: int = 10,
        high_water: int = DEFAULT_HIGH_WATER,
    ):
        """
        Initialize TCP relay.

        Args:
            session: Open session to relay
            policy: Access policy
            host: Listen address
            port: Listen port (0 picks a free port)
            max_clients: Maximum concurrent peers
            high_water: Unsent bytes after which a slow peer is dropped
        """
        super().__init__(session, policy)
        self.host = host
        self.port = port
        self.max_clients = max_clients
        self.high_water = high_water

        self.peers: dict[str, RelayPeer] = {}
        self._server: asyncio.Server | None = None

    @property
    def peer_count(self) -> int:
        """Return number of connected peers."""
        return len(self.peers)

    async def _start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_client,
            self.host,
            self.port,
        )
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info(f"TCP listening on {self.host}:{self.port}")

    async def _stop(self) -> None:
        for peer in list(self.peers.values()):
            await self._disconnect_peer(peer, "Relay shutting down")

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle a new peer connection."""
        peer = RelayPeer(
            peer_id=str(uuid.uuid4()),
            reader=reader,
            writer=writer,
        )

        if not self._running or len(self.peers) >= self.max_clients:
            logger.warning(f"Rejecting peer {peer.address}: max clients reached")
            try:
                writer.write(b"\r\n[Relay: Maximum clients reached, connection refused]\r\n")
                await writer.drain()
            except ConnectionError:
                pass
            writer.close()
            return

        self.peers[peer.peer_id] = peer
        logger.info(f"Peer {peer.peer_id[:8]} connected from {peer.address}")

        try:
            await self._peer_read_loop(peer)
        except (ConnectionError, OSError) as e:
            logger.debug(f"Peer {peer.peer_id[:8]} error: {e}")
        finally:
            await self._disconnect_peer(peer, "Peer disconnected")

    async def _peer_read_loop(self, peer: RelayPeer) -> None:
        """Read from a peer and forward to the line."""
        while self._running:
            data = await peer.reader.read(4096)
            if not data:
                break  # Peer disconnected

            peer.last_activity = datetime.now()
            peer.bytes_in += len(data)
            await self.write_to_line(data, peer.address)

    def broadcast(self, data: bytes) -> None:
        """Send data to all connected peers, in publish order."""
        for peer in list(self.peers.values()):
            writer = peer.writer
            if writer.is_closing():
                continue
            if writer.transport.get_write_buffer_size() > self.high_water:
                logger.warning(f"Peer {peer.peer_id[:8]} is too slow, disconnecting")
                asyncio.ensure_future(self._disconnect_peer(peer, "Peer too slow"))
                continue
            writer.write(data)
            peer.bytes_out += len(data)

    async def _disconnect_peer(self, peer: RelayPeer, reason: str) -> None:
        """Disconnect a peer and clean up."""
        if self.peers.pop(peer.peer_id, None) is None:
            return

        try:
            peer.writer.close()
            await peer.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

        logger.info(f"Peer {peer.peer_id[:8]} disconnected: {reason}")

    def get_peers_info(self) -> list[dict]:
        """Get information about connected peers."""
        return [
            {
                "peer_id": p.peer_id,
                "address": p.address,
                "connected_at": p.connected_at.isoformat(),
                "bytes_in": p.bytes_in,
                "bytes_out": p.bytes_out,
            }
            for p in self.peers.values()
        ]
