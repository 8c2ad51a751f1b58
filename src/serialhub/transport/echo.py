"""
Echo transport.

Writes every chunk received from a line straight back to the same line.
Used for wire-level testing of serial links.
"""

import logging

from serialhub.core.errors import NotOpenError, WriteError
from serialhub.core.models import EventKind, LineEvent
from serialhub.core.policy import Capability
from serialhub.transport.base import Relay, TransportMode

logger = logging.getLogger(__name__)


class EchoRelay(Relay):
    """Loopback relay: the line is both the only producer and the only peer."""

    mode = TransportMode.ECHO

    def handle_event(self, event: LineEvent) -> None:
        # Runs on the event bus thread, which already preserves arrival order
        if event.kind == EventKind.RECEIVED:
            if self._running:
                self.broadcast(event.data)
        else:
            super().handle_event(event)

    def broadcast(self, data: bytes) -> None:
        if not self.policy.check(Capability.WRITE, self.name):
            logger.debug(f"Not echoing {len(data)} bytes: no write permissions")
            return
        try:
            self.session.write(data)
            logger.debug(f"{self.name} echo data sent {len(data)} bytes")
        except NotOpenError:
            logger.info(f"{self.name} closed, echo stopped")
        except WriteError as e:
            logger.warning(f"{self.name} echo write error: {e}")

    async def _start(self) -> None:
        pass

    async def _stop(self) -> None:
        pass
