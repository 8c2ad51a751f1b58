"""Unit tests for relay transports."""

import asyncio
import socket

import pytest

from serialhub.core.errors import AccessDeniedError
from serialhub.core.policy import AccessPolicy
from serialhub.transport import Relay, TransportMode, get_relay
from serialhub.transport.echo import EchoRelay
from serialhub.transport.tcp import RelayPeer, StreamRelay
from serialhub.transport.udp import DatagramRelay

LINE = "/dev/ttyUSB0"


async def wait_until(predicate, timeout: float = 2.0) -> bool:
    """Poll from inside the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


class TestGetRelay:
    """Tests for get_relay factory."""

    def test_tcp(self, registry):
        """Test TCP mode builds a stream relay."""
        session = registry.open(LINE)
        relay = get_relay(TransportMode.TCP, session, AccessPolicy(), port=0, max_clients=3)
        assert isinstance(relay, StreamRelay)
        assert relay.max_clients == 3

    def test_udp(self, registry):
        """Test UDP mode builds a datagram relay."""
        session = registry.open(LINE)
        assert isinstance(get_relay(TransportMode.UDP, session, AccessPolicy()), DatagramRelay)

    def test_echo(self, registry):
        """Test echo mode builds an echo relay."""
        session = registry.open(LINE)
        relay = get_relay(TransportMode.ECHO, session, AccessPolicy())
        assert isinstance(relay, EchoRelay)
        assert isinstance(relay, Relay)

    def test_http_has_no_relay(self, registry):
        """Test HTTP mode is rejected."""
        session = registry.open(LINE)
        with pytest.raises(ValueError):
            get_relay(TransportMode.HTTP, session, AccessPolicy())


class TestRelayPeer:
    """Tests for RelayPeer dataclass."""

    def test_address(self):
        """Test peer address formatting."""
        from unittest.mock import MagicMock

        writer = MagicMock()
        writer.get_extra_info.return_value = ("192.168.1.100", 54321)
        peer = RelayPeer(peer_id="p1", reader=MagicMock(), writer=writer)
        assert peer.address == "192.168.1.100:54321"

    def test_address_unknown(self):
        """Test peer address when peername is not available."""
        from unittest.mock import MagicMock

        writer = MagicMock()
        writer.get_extra_info.return_value = None
        peer = RelayPeer(peer_id="p1", reader=MagicMock(), writer=writer)
        assert peer.address == "unknown"


class TestStreamRelay:
    """Tests for the TCP relay."""

    def test_relay_permission_required(self, registry):
        """Test start fails when relaying is disabled."""
        session = registry.open(LINE)
        relay = StreamRelay(session, AccessPolicy.create(relay=False), host="127.0.0.1", port=0)

        async def run():
            with pytest.raises(AccessDeniedError):
                await relay.start()

        asyncio.run(run())
        assert relay.is_running is False

    def test_two_peers_see_same_bytes(self, registry, device_factory):
        """Test one received chunk reaches every peer identically."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = StreamRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            try:
                r1, w1 = await asyncio.open_connection("127.0.0.1", relay.port)
                r2, w2 = await asyncio.open_connection("127.0.0.1", relay.port)
                assert await wait_until(lambda: relay.peer_count == 2)

                device.feed(b"hello")

                got1 = await asyncio.wait_for(r1.readexactly(5), 2)
                got2 = await asyncio.wait_for(r2.readexactly(5), 2)
                assert got1 == got2 == b"hello"

                w1.close()
                w2.close()
            finally:
                await relay.stop()

        asyncio.run(run())

    def test_peer_bytes_written_to_line(self, registry, device_factory):
        """Test data from a peer reaches the device."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = StreamRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            try:
                _, writer = await asyncio.open_connection("127.0.0.1", relay.port)
                writer.write(b"AT\r\n")
                await writer.drain()
                assert await wait_until(lambda: device.written == b"AT\r\n")
                writer.close()
            finally:
                await relay.stop()

        asyncio.run(run())
        assert session.bytes_written == 4

    def test_no_write_permission(self, registry, device_factory):
        """Test peer bytes are dropped without write permission."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = StreamRelay(session, AccessPolicy.create(write=False), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            try:
                written = await relay.write_to_line(b"nope", "test")
                assert written is False
            finally:
                await relay.stop()

        asyncio.run(run())
        assert device.writes == []

    def test_max_clients(self, registry):
        """Test peers beyond the limit are refused."""
        session = registry.open(LINE)
        relay = StreamRelay(session, AccessPolicy(), host="127.0.0.1", port=0, max_clients=1)

        async def run():
            await relay.start()
            try:
                _, w1 = await asyncio.open_connection("127.0.0.1", relay.port)
                assert await wait_until(lambda: relay.peer_count == 1)

                r2, w2 = await asyncio.open_connection("127.0.0.1", relay.port)
                message = await asyncio.wait_for(r2.read(), 2)
                assert b"Maximum clients reached" in message
                assert relay.peer_count == 1

                w1.close()
                w2.close()
            finally:
                await relay.stop()

        asyncio.run(run())

    def test_stops_when_line_closes(self, registry):
        """Test the relay shuts down after the session closes."""
        session = registry.open(LINE)
        relay = StreamRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            reader, _ = await asyncio.open_connection("127.0.0.1", relay.port)
            assert await wait_until(lambda: relay.peer_count == 1)

            await asyncio.to_thread(registry.close, LINE)
            await asyncio.wait_for(relay.wait_closed(), 2)

            assert relay.is_running is False
            assert await asyncio.wait_for(reader.read(), 2) == b""

        asyncio.run(run())

    def test_stop_task_kept_until_done(self, registry):
        """Test the stop scheduled by a line close is held by the relay."""
        session = registry.open(LINE)
        relay = StreamRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            await asyncio.to_thread(registry.close, LINE)
            assert await wait_until(lambda: relay._stop_task is not None)

            task = relay._stop_task
            await asyncio.wait_for(relay.wait_closed(), 2)
            await asyncio.wait_for(task, 2)
            assert task.done()
            assert task.exception() is None
            assert relay.is_running is False

        asyncio.run(run())

    def test_get_peers_info(self, registry):
        """Test peer descriptions."""
        session = registry.open(LINE)
        relay = StreamRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            try:
                _, writer = await asyncio.open_connection("127.0.0.1", relay.port)
                assert await wait_until(lambda: relay.peer_count == 1)
                info = relay.get_peers_info()
                assert info[0]["address"].startswith("127.0.0.1:")
                writer.close()
            finally:
                await relay.stop()

        asyncio.run(run())


class TestDatagramRelay:
    """Tests for the UDP relay."""

    def test_learns_endpoints(self, registry, device_factory):
        """Test senders are learned and receive line data."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = DatagramRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        client.bind(("127.0.0.1", 0))
        client.settimeout(2)

        async def run():
            await relay.start()
            try:
                client.sendto(b"ping", ("127.0.0.1", relay.port))
                assert await wait_until(lambda: device.written == b"ping")
                assert client.getsockname() in relay.endpoints

                device.feed(b"pong")
                data, _ = await asyncio.to_thread(client.recvfrom, 1024)
                assert data == b"pong"
            finally:
                await relay.stop()

        try:
            asyncio.run(run())
        finally:
            client.close()

    def test_datagrams_written_in_order(self, registry, device_factory):
        """Test queued datagrams keep their arrival order."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = DatagramRelay(session, AccessPolicy(), host="127.0.0.1", port=0)

        async def run():
            await relay.start()
            try:
                for i in range(5):
                    relay.datagram_received(bytes([65 + i]), ("127.0.0.1", 9999))
                assert await wait_until(lambda: device.written == b"ABCDE")
            finally:
                await relay.stop()

        asyncio.run(run())


class TestEchoRelay:
    """Tests for the echo relay."""

    def test_echoes_received_bytes(self, registry, device_factory, wait):
        """Test bytes received from the line are written back."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = EchoRelay(session, AccessPolicy())

        async def run():
            await relay.start()
            try:
                device.feed(b"abc")
                device.feed(b"def")
                assert await wait_until(lambda: device.written == b"abcdef")
            finally:
                await relay.stop()

        asyncio.run(run())

    def test_no_echo_without_write(self, registry, device_factory):
        """Test nothing is echoed without write permission."""
        session = registry.open(LINE)
        device = device_factory.last
        relay = EchoRelay(session, AccessPolicy.create(write=False))

        async def run():
            await relay.start()
            try:
                device.feed(b"abc")
                await asyncio.sleep(0.1)
            finally:
                await relay.stop()

        asyncio.run(run())
        assert device.writes == []
