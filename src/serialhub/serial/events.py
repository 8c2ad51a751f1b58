"""
Per-session publish/subscribe channel.

Every subscription gets its own bounded queue and delivery thread, so a
publisher (typically the device reader thread) never waits on a slow
subscriber. When a subscriber falls too far behind, events for that
subscriber are dropped and counted.
"""

import logging
import queue
import threading
from typing import Callable, Iterable, Optional

from serialhub.core.errors import NotOpenError
from serialhub.core.models import EventKind, LineEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[LineEvent], None]

_STOP = object()


class Subscription:
    """A subscriber callback plus its delivery queue and thread."""

    def __init__(
        self,
        line_name: str,
        callback: Subscriber,
        kinds: Optional[Iterable[EventKind]] = None,
        queue_size: int = 1024,
    ):
        self.line_name = line_name
        self.callback = callback
        self.kinds = frozenset(kinds) if kinds else None
        self.dropped = 0
        self._active = True
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._thread = threading.Thread(
            target=self._run,
            name=f"events-{line_name}",
            daemon=True,
        )
        self._thread.start()

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def pending(self) -> int:
        """Number of events queued but not yet delivered."""
        return self._queue.qsize()

    def accepts(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds

    def deliver(self, event: LineEvent) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        if not self._active:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            logger.warning(
                f"Subscriber on {self.line_name} is not keeping up, "
                f"dropped {event.kind.value} event ({self.dropped} total)"
            )
            return False

    def stop(self, discard_pending: bool = False) -> None:
        """
        Stop the delivery thread.

        Pending events are still delivered unless discard_pending is set or
        the queue is full, in which case they are thrown away.
        """
        if discard_pending:
            self._active = False
        while True:
            try:
                self._queue.put_nowait(_STOP)
                return
            except queue.Full:
                self._active = False
                self._discard_pending()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the delivery thread to exit."""
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
                self._queue.task_done()
            except queue.Empty:
                return

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                if self._active:
                    self.callback(event)
            except Exception:
                logger.exception(f"Subscriber on {self.line_name} failed")
            finally:
                self._queue.task_done()


class EventBus:
    """Publish/subscribe channel scoped to one session."""

    def __init__(self, line_name: str, queue_size: int = 1024):
        self.line_name = line_name
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(
        self,
        callback: Subscriber,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> Subscription:
        """
        Register a callback for events of the given kinds (all if None).

        The callback runs on the subscription's own thread.

        Raises:
            NotOpenError: If the bus has been closed
        """
        subscription = Subscription(self.line_name, callback, kinds, self.queue_size)
        with self._lock:
            if self._closed:
                subscription.stop(discard_pending=True)
                raise NotOpenError(self.line_name)
            self._subscriptions.append(subscription)
        logger.debug(f"Subscriber added on {self.line_name}")
        return subscription

    def unsubscribe(self, subscriber) -> bool:
        """
        Remove a subscription, given either the Subscription or its callback.

        Returns:
            True if something was removed
        """
        with self._lock:
            matches = [
                s for s in self._subscriptions
                if s is subscriber or s.callback == subscriber
            ]
            for s in matches:
                self._subscriptions.remove(s)

        for s in matches:
            s.stop(discard_pending=True)
        if matches:
            logger.debug(f"Subscriber removed from {self.line_name}")
        return bool(matches)

    def publish(
        self,
        kind: EventKind,
        data: bytes = b"",
        error: Optional[str] = None,
    ) -> LineEvent:
        """Queue an event for every interested subscriber."""
        event = LineEvent(kind=kind, line_name=self.line_name, data=data, error=error)
        with self._lock:
            subscriptions = list(self._subscriptions)

        for s in subscriptions:
            if s.accepts(kind):
                s.deliver(event)
        return event

    def close(self) -> None:
        """Drop all subscriptions after their queued events are delivered."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions = self._subscriptions
            self._subscriptions = []

        for s in subscriptions:
            s.stop()
