"""
Push access to serial lines over Socket.IO.

Clients join a per-line room by subscribing. Bytes received on the line are
emitted to the room as binary 'data' events; the room is closed when the
line closes.
"""

import logging
import threading
from functools import partial
from typing import Optional

from flask import current_app, request
from flask_socketio import SocketIO, emit, join_room, leave_room

from serialhub.core.errors import SerialHubError
from serialhub.core.models import EventKind, LineEvent
from serialhub.core.policy import AccessPolicy, Capability, canonical_line_name
from serialhub.serial.events import Subscription
from serialhub.serial.registry import Registry
from serialhub.serial.session import Session

logger = logging.getLogger(__name__)

NAMESPACE = "/port"


class _Channel:
    """One bus subscription shared by every socket in a line's room."""

    def __init__(self, session: Session, subscription: Subscription):
        self.session = session
        self.subscription = subscription
        self.members: set[str] = set()


class PushHub:
    """
    Fans session events out to Socket.IO rooms.

    Event callbacks run on the session's event bus thread, so channel
    bookkeeping is guarded by a lock shared with the request handlers.
    """

    def __init__(
        self,
        sio: SocketIO,
        registry: Registry,
        policy: AccessPolicy,
        namespace: str = NAMESPACE,
    ):
        self.sio = sio
        self.registry = registry
        self.policy = policy
        self.namespace = namespace
        self._channels: dict[str, _Channel] = {}
        self._sid_lines: dict[str, str] = {}
        self._lock = threading.Lock()

    def register_handlers(self) -> None:
        """Register Socket.IO event handlers on the namespace."""
        ns = self.namespace

        @self.sio.on("connect", namespace=ns)
        def handle_connect():
            """Handle new WebSocket connection."""
            logger.info(f"WebSocket client connected: {request.sid}")

        @self.sio.on("disconnect", namespace=ns)
        def handle_disconnect(*args):
            """Handle WebSocket disconnection."""
            sid = request.sid
            logger.info(f"WebSocket client disconnected: {sid}")
            self._leave(sid)

        @self.sio.on("subscribe", namespace=ns)
        def handle_subscribe(data):
            """Join the room for a line.

            Expected data: {"name": "ttyUSB0"}
            """
            try:
                name = data.get("name") if isinstance(data, dict) else None
                line = self.subscribe(request.sid, name)
            except SerialHubError as e:
                emit("error", {"message": str(e)})
                return

            join_room(line)
            session = self.registry.get(line)
            emit("subscribed", {
                "name": line,
                "config": session.settings.to_dict() if session else None,
            })

        @self.sio.on("unsubscribe", namespace=ns)
        def handle_unsubscribe(*args):
            """Leave the current line's room."""
            line = self._leave(request.sid)
            if line:
                leave_room(line)
                emit("unsubscribed", {"name": line})

        @self.sio.on("write", namespace=ns)
        def handle_write(data):
            """Write to the subscribed line.

            Expected data: {"data": <bytes or text>} or raw bytes
            """
            payload = data.get("data") if isinstance(data, dict) else data
            if isinstance(payload, str):
                payload = payload.encode("utf-8")
            if not isinstance(payload, (bytes, bytearray)):
                emit("error", {"message": "data must be bytes or text"})
                return

            try:
                line, length = self.write(request.sid, bytes(payload))
            except SerialHubError as e:
                emit("error", {"message": str(e)})
                return

            emit("written", {"name": line, "length": length})

    # --- Operations ---

    def subscribe(self, sid: str, name: Optional[str]) -> str:
        """
        Attach a socket to a line's channel.

        Returns:
            Canonical line name (also the room name)

        Raises:
            InvalidLineNameError: If the name is malformed
            AccessDeniedError: If subscribe or read is not permitted
            NotOpenError: If the line is not open
        """
        line = canonical_line_name(name)
        self.policy.require(Capability.SUBSCRIBE, line)
        self.policy.require(Capability.READ, line)
        session = self.registry.require(line)

        previous = self._sid_lines.get(sid)
        if previous and previous != line:
            self._leave(sid)
            leave_room(previous)

        with self._lock:
            channel = self._channels.get(line)
            if channel is None or channel.session is not session:
                subscription = session.subscribe(partial(self._forward, session))
                channel = _Channel(session, subscription)
                self._channels[line] = channel
            channel.members.add(sid)
            self._sid_lines[sid] = line

        logger.info(f"{sid} subscribed to {line}")
        return line

    def write(self, sid: str, data: bytes) -> tuple[str, int]:
        """
        Write bytes from a socket to its subscribed line.

        Raises:
            SerialHubError: If the socket has not subscribed to a line
            NotOpenError: If the line closed
            AccessDeniedError: If writing is not permitted
            WriteError: If the device write fails
        """
        line = self._sid_lines.get(sid)
        if line is None:
            raise SerialHubError("Not subscribed to a serial port")
        self.policy.require(Capability.WRITE, line)
        session = self.registry.require(line)
        return line, session.write(data)

    def line_for(self, sid: str) -> Optional[str]:
        return self._sid_lines.get(sid)

    def subscriber_count(self, line: str) -> int:
        with self._lock:
            channel = self._channels.get(line)
            return len(channel.members) if channel else 0

    def _leave(self, sid: str) -> Optional[str]:
        """Detach a socket; unsubscribe the channel when it empties."""
        with self._lock:
            line = self._sid_lines.pop(sid, None)
            if line is None:
                return None
            channel = self._channels.get(line)
            if channel is None:
                return line
            channel.members.discard(sid)
            if channel.members:
                return line
            del self._channels[line]

        channel.session.unsubscribe(channel.subscription)
        logger.debug(f"Channel for {line} released")
        return line

    def _forward(self, session: Session, event: LineEvent) -> None:
        """Emit a session event to the line's room; runs on the bus thread."""
        line = session.name

        if event.kind == EventKind.RECEIVED:
            if self.policy.check(Capability.READ, line):
                self.sio.emit("data", event.data, to=line, namespace=self.namespace)

        elif event.kind == EventKind.ERROR:
            self.sio.emit(
                "line_error",
                {"name": line, "error": event.error},
                to=line,
                namespace=self.namespace,
            )

        elif event.kind == EventKind.CLOSED:
            self.sio.emit("line_closed", {"name": line}, to=line, namespace=self.namespace)
            with self._lock:
                channel = self._channels.get(line)
                if channel is None or channel.session is not session:
                    # Line already reopened with a new channel
                    return
                del self._channels[line]
                for sid in channel.members:
                    self._sid_lines.pop(sid, None)
            self.sio.close_room(line, namespace=self.namespace)
            logger.info(f"Room {line} closed")


def init_socketio(
    app,
    registry: Optional[Registry] = None,
    policy: Optional[AccessPolicy] = None,
    **kwargs,
) -> SocketIO:
    """
    Initialize SocketIO with Flask app.

    Registry and policy default to the ones stored by create_app().
    """
    sio = SocketIO(app, **kwargs)
    hub = PushHub(
        sio,
        registry or app.config["SERIALHUB_REGISTRY"],
        policy or app.config["SERIALHUB_POLICY"],
    )
    hub.register_handlers()
    app.extensions["serialhub_push"] = hub
    return sio


def get_push_hub(app=None) -> PushHub:
    """Get the push hub registered on an application."""
    app = app or current_app
    return app.extensions["serialhub_push"]
