"""In-process notification hub.

Events are fanned out to every subscriber of a channel id. Channels are
opaque strings; the job queue publishes to ``user:<id>`` and ``job:<id>``.

Delivery is best-effort and at-most-once per subscriber: nothing is kept
for a channel with no subscribers, and a subscriber whose buffer is full
drops the event. Durable history lives on the job row.

Publishers run on worker threads. ``Subscription`` is read from threads;
``AsyncSubscription`` is read from an asyncio event loop and never ties
up a thread while it waits.
"""

import asyncio
import logging
import queue
import threading
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def job_channel(job_id) -> str:
    return f"job:{job_id}"


class Subscription:
    """A live stream of events for one channel."""

    def __init__(self, hub: "NotificationHub", channel: str, max_size: int):
        self.hub = hub
        self.channel = channel
        self._queue: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=max_size)
        self.closed = False

    def deliver(self, event: Dict[str, Any]):
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(f"Subscriber buffer full on {self.channel}, dropping event")

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event, or None if none arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        """All events currently buffered, without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self):
        if not self.closed:
            self.closed = True
            self.hub.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class AsyncSubscription:
    """Subscription consumed by a coroutine on ``loop``.

    Events published from any thread are handed to the loop, which owns
    the buffer.
    """

    def __init__(self, hub: "NotificationHub", channel: str, max_size: int, loop: asyncio.AbstractEventLoop):
        self.hub = hub
        self.channel = channel
        self.loop = loop
        self.closed = False
        self._events: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max_size)

    def deliver(self, event: Dict[str, Any]):
        self.loop.call_soon_threadsafe(self._put, event)

    def _put(self, event: Dict[str, Any]):
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Subscriber buffer full on {self.channel}, dropping event")

    def drain(self) -> List[Dict[str, Any]]:
        events = []
        while not self._events.empty():
            events.append(self._events.get_nowait())
        return events

    async def next_event(self, timeout: float) -> Optional[Dict[str, Any]]:
        """Next event, or None if none arrived within ``timeout``."""
        try:
            return await asyncio.wait_for(self._events.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self):
        if not self.closed:
            self.closed = True
            self.hub.unsubscribe(self)

    def __enter__(self) -> "AsyncSubscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


AnySubscription = Union[Subscription, AsyncSubscription]


class NotificationHub:
    """Publish/subscribe fan-out keyed by channel id."""

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, List[AnySubscription]] = {}
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, channel: str) -> Subscription:
        subscription = Subscription(self, channel, self.max_queue_size)
        with self._lock:
            self._subscriptions.setdefault(channel, []).append(subscription)
        logger.debug(f"Subscribed to {channel}")
        return subscription

    def subscribe_async(self, channel: str) -> AsyncSubscription:
        """Subscribe from a coroutine; events are buffered on the running loop."""
        subscription = AsyncSubscription(self, channel, self.max_queue_size, asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.setdefault(channel, []).append(subscription)
        logger.debug(f"Subscribed to {channel}")
        return subscription

    def unsubscribe(self, subscription: AnySubscription):
        with self._lock:
            subscribers = self._subscriptions.get(subscription.channel, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.channel, None)

    def add_listener(self, channel: str, listener: Listener):
        """Register a callback invoked synchronously for each event on ``channel``.

        Use ``"*"`` to receive every channel.
        """
        with self._lock:
            self._listeners.setdefault(channel, []).append(listener)

    def remove_listener(self, channel: str, listener: Listener):
        with self._lock:
            listeners = self._listeners.get(channel, [])
            if listener in listeners:
                listeners.remove(listener)

    def publish(self, channel: str, event: Dict[str, Any]) -> int:
        """Deliver ``event`` to every subscriber of ``channel``.

        A failing subscriber is logged and skipped; the others still receive
        the event. Returns the number of successful deliveries.
        """
        with self._lock:
            subscriptions = list(self._subscriptions.get(channel, []))
            listeners = list(self._listeners.get(channel, [])) + list(self._listeners.get("*", []))

        delivered = 0
        for subscription in subscriptions:
            try:
                subscription.deliver(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber on {channel} failed: {e}", exc_info=True)

        for listener in listeners:
            try:
                listener(channel, event)
                delivered += 1
            except Exception as e:
                logger.error(f"Listener on {channel} failed: {e}", exc_info=True)

        return delivered

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(channel, [])) + len(self._listeners.get(channel, []))
