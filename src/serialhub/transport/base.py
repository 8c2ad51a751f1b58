"""
Base classes for relay transports.

A relay binds one open session to a network listener. Session events are
delivered on the event bus thread and handed over to the relay's asyncio
loop; bytes from peers are written to the session off the loop.
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from serialhub.core.errors import NotOpenError, WriteError
from serialhub.core.models import EventKind, LineEvent
from serialhub.core.policy import AccessPolicy, Capability
from serialhub.serial.events import Subscription
from serialhub.serial.session import Session

logger = logging.getLogger(__name__)


class TransportMode(Enum):
    """Server modes."""

    HTTP = "http"
    TCP = "tcp"
    UDP = "udp"
    ECHO = "echo"


class Relay(ABC):
    """Abstract base class for transports bound to a single session."""

    mode: TransportMode

    def __init__(self, session: Session, policy: AccessPolicy):
        """
        Initialize relay.

        Args:
            session: Open session to relay
            policy: Access policy checked before every session operation
        """
        self.session = session
        self.policy = policy
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscription: Optional[Subscription] = None
        self._stopped: Optional[asyncio.Event] = None
        self._write_queue: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self.session.name

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start listening and subscribe to the session.

        Raises:
            AccessDeniedError: If relaying is not permitted for this line
            NotOpenError: If the session is closed
        """
        if self._running:
            raise RuntimeError("Relay already running")

        self.policy.require(Capability.RELAY, self.name)
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()

        await self._start()
        self._running = True
        try:
            self._subscription = self.session.subscribe(self.handle_event)
        except NotOpenError:
            await self.stop()
            raise

        logger.info(f"{self.mode.value.upper()} relay for {self.name} started")

    async def stop(self) -> None:
        """Stop the relay and unsubscribe from the session."""
        if not self._running:
            return
        self._running = False

        if self._subscription is not None:
            self.session.unsubscribe(self._subscription)
            self._subscription = None

        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None

        await self._stop()
        if self._stopped is not None:
            self._stopped.set()
        logger.info(f"{self.mode.value.upper()} relay for {self.name} stopped")

    async def wait_closed(self) -> None:
        """Wait until the relay has stopped."""
        if self._stopped is not None:
            await self._stopped.wait()

    def handle_event(self, event: LineEvent) -> None:
        """Session callback; runs on the event bus thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._dispatch_event, event)
        except RuntimeError:
            # Loop closed between the check and the call
            pass

    def _dispatch_event(self, event: LineEvent) -> None:
        """Handle a session event on the relay's loop."""
        if not self._running:
            return

        if event.kind == EventKind.RECEIVED:
            if self.policy.check(Capability.READ, self.name):
                self.broadcast(event.data)
        elif event.kind in (EventKind.ERROR, EventKind.CLOSED):
            reason = event.error or "line closed"
            logger.warning(f"{self.name} {event.kind.value}: {reason}, stopping relay")
            self._schedule_stop()

    def _schedule_stop(self) -> None:
        """Stop the relay from a loop callback, keeping the task referenced."""
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.ensure_future(self.stop())

    async def write_to_line(self, data: bytes, origin: str) -> bool:
        """
        Forward peer bytes to the session.

        Returns:
            True if the bytes were written
        """
        if not self.policy.check(Capability.WRITE, self.name):
            logger.debug(f"Dropping {len(data)} bytes from {origin}: no write permissions")
            return False

        logger.debug(f"{self.name} client {origin} sent {len(data)} bytes")
        try:
            await asyncio.to_thread(self.session.write, data)
            return True
        except NotOpenError:
            logger.info(f"{self.name} closed, dropping data from {origin}")
            if self._running:
                self._schedule_stop()
            return False
        except WriteError as e:
            logger.warning(f"{self.name} client {origin} write error: {e}")
            return False

    def enqueue_write(self, data: bytes, origin: str) -> None:
        """Queue peer bytes for writing in arrival order."""
        if self._write_queue is None:
            self._write_queue = asyncio.Queue()
            self._writer_task = asyncio.ensure_future(self._writer_loop())
        self._write_queue.put_nowait((data, origin))

    async def _writer_loop(self) -> None:
        while True:
            data, origin = await self._write_queue.get()
            try:
                await self.write_to_line(data, origin)
            finally:
                self._write_queue.task_done()

    @abstractmethod
    async def _start(self) -> None:
        """Open the listener."""
        pass

    @abstractmethod
    async def _stop(self) -> None:
        """Disconnect peers and close the listener."""
        pass

    @abstractmethod
    def broadcast(self, data: bytes) -> None:
        """Send bytes received from the line to every peer."""
        pass


def get_relay(
    mode: TransportMode,
    session: Session,
    policy: AccessPolicy,
    host: str = "0.0.0.0",
    port: int = 5147,
    max_clients: int = 10,
) -> Relay:
    """
    Factory function to create the relay for a server mode.

    Args:
        mode: tcp, udp or echo
        session: Open session to relay
        policy: Access policy
        host: Listen address (tcp, udp)
        port: Listen port (tcp, udp)
        max_clients: Peer limit (tcp)

    Returns:
        Relay subclass instance

    Raises:
        ValueError: If mode has no relay (http) or is unknown
    """
    if mode == TransportMode.TCP:
        from serialhub.transport.tcp import StreamRelay
        return StreamRelay(session, policy, host=host, port=port, max_clients=max_clients)

    elif mode == TransportMode.UDP:
        from serialhub.transport.udp import DatagramRelay
        return DatagramRelay(session, policy, host=host, port=port)

    elif mode == TransportMode.ECHO:
        from serialhub.transport.echo import EchoRelay
        return EchoRelay(session, policy)

    else:
        raise ValueError(f"No relay for mode: {mode.value}")


async def run_relay(relay: Relay) -> None:
    """
    Run a relay until it stops on its own or SIGTERM/SIGINT is received.
    """
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, stopping relay...")
        shutdown.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            pass

    await relay.start()
    waiters = [
        asyncio.ensure_future(shutdown.wait()),
        asyncio.ensure_future(relay.wait_closed()),
    ]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        await relay.stop()
