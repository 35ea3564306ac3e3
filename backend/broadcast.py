"""
Server-sent events broadcaster.

BroadcastServer is an actor: a single coordination task owns the set of
subscribers and reacts to three input queues (registrations,
deregistrations, broadcasts). Nothing else touches the subscriber set,
so no lock is needed.

Each subscriber has a bounded mailbox. A broadcast never waits for a
subscriber: if its mailbox is full it is evicted on the spot.
"""

import asyncio
import itertools
import logging
from typing import AsyncIterator, Optional

from backend.metrics import SSE_SUBSCRIBERS, SSE_MESSAGES_SENT, SSE_EVICTIONS

logger = logging.getLogger(__name__)

DEFAULT_MAILBOX_SIZE = 16
DEFAULT_HEARTBEAT_INTERVAL = 10.0

HEARTBEAT_FRAME = ": heartbeat\n\n"

# Put in a mailbox once the subscriber is closed
_CLOSED = object()
_subscriber_ids = itertools.count(1)


def format_event(payload: str) -> str:
    """SSE data frame; multi-line payloads get one data field per line."""
    lines = payload.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


class Subscriber:
    """A dashboard connection and its mailbox."""

    def __init__(self, mailbox_size: int = DEFAULT_MAILBOX_SIZE):
        self.id = next(_subscriber_ids)
        self.mailbox: asyncio.Queue = asyncio.Queue(maxsize=mailbox_size)
        self.closed = False

    def offer(self, payload: str) -> bool:
        """Enqueue without waiting. False if the mailbox is full."""
        if self.closed:
            return False
        try:
            self.mailbox.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def close(self):
        """Drop pending payloads and wake the serving loop so it exits."""
        if self.closed:
            return
        self.closed = True
        while not self.mailbox.empty():
            self.mailbox.get_nowait()
        self.mailbox.put_nowait(_CLOSED)


class BroadcastServer:
    """Fan-out of store notifications to dashboard subscribers."""

    def __init__(
        self,
        mailbox_size: int = DEFAULT_MAILBOX_SIZE,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ):
        self.mailbox_size = mailbox_size
        self.heartbeat_interval = heartbeat_interval

        self._register: asyncio.Queue = asyncio.Queue()
        self._deregister: asyncio.Queue = asyncio.Queue()
        self._broadcast: asyncio.Queue = asyncio.Queue()
        self._wakeup = asyncio.Event()

        # Owned by run()
        self._subscribers: set[Subscriber] = set()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self.running = False

    # ============================================================================
    # Coordination loop
    # ============================================================================

    async def run(self):
        """
        Coordination loop. Runs until cancelled, then closes every subscriber.

        Pending registrations and deregistrations are applied before the
        next broadcast, so a subscriber registered before a broadcast was
        issued always receives it.
        """
        self._loop = asyncio.get_running_loop()
        self.running = True
        logger.info("Broadcast server started")
        try:
            while True:
                await self._wakeup.wait()
                self._wakeup.clear()
                self._drain()
        finally:
            self.running = False
            self._shutdown()
            logger.info("Broadcast server stopped")

    def _drain(self):
        while True:
            if not self._register.empty():
                self._handle_register(*self._register.get_nowait())
            elif not self._deregister.empty():
                self._remove(self._deregister.get_nowait())
            elif not self._broadcast.empty():
                self._handle_broadcast(self._broadcast.get_nowait())
            else:
                return

    def _handle_register(self, subscriber: Subscriber, registered: asyncio.Future):
        self._subscribers.add(subscriber)
        SSE_SUBSCRIBERS.set(len(self._subscribers))
        logger.info(f"Subscriber {subscriber.id} connected. Total subscribers: {len(self._subscribers)}")
        if not registered.done():
            registered.set_result(subscriber)

    def _remove(self, subscriber: Subscriber) -> bool:
        if subscriber not in self._subscribers:
            return False
        self._subscribers.discard(subscriber)
        subscriber.close()
        SSE_SUBSCRIBERS.set(len(self._subscribers))
        logger.info(f"Subscriber {subscriber.id} disconnected. Total subscribers: {len(self._subscribers)}")
        return True

    def _handle_broadcast(self, payload: str):
        for subscriber in list(self._subscribers):
            if subscriber.offer(payload):
                continue
            SSE_EVICTIONS.inc()
            logger.warning(f"Evicting subscriber {subscriber.id}: mailbox full")
            self._remove(subscriber)

    def _shutdown(self):
        for subscriber in list(self._subscribers):
            self._remove(subscriber)
        # Registrations that arrived too late
        while not self._register.empty():
            subscriber, registered = self._register.get_nowait()
            subscriber.close()
            if not registered.done():
                registered.cancel()

    # ============================================================================
    # Lifecycle
    # ============================================================================

    def start(self) -> asyncio.Task:
        """Start the coordination loop on the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self.run())
        return self._task

    async def stop(self):
        """Cancel the coordination loop and wait for it to close all subscribers."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ============================================================================
    # Input queues
    # ============================================================================

    async def subscribe(self) -> Subscriber:
        """Register a new subscriber; returns once the coordination loop has added it."""
        subscriber = Subscriber(self.mailbox_size)
        registered = asyncio.get_running_loop().create_future()
        self._register.put_nowait((subscriber, registered))
        self._wakeup.set()
        try:
            await registered
        except asyncio.CancelledError:
            # Registrations are applied before deregistrations
            self.unsubscribe(subscriber)
            raise
        return subscriber

    def unsubscribe(self, subscriber: Subscriber):
        """Request removal of a subscriber. Safe to call more than once."""
        self._deregister.put_nowait(subscriber)
        self._wakeup.set()

    def publish(self, payload: str):
        """Queue a payload for every subscriber."""
        self._broadcast.put_nowait(payload)
        self._wakeup.set()

    def publish_threadsafe(self, payload: str):
        """publish() from a thread other than the event loop's."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Broadcast loop not available, dropping notification")
            return
        loop.call_soon_threadsafe(self.publish, payload)

    # ============================================================================
    # Serving loop
    # ============================================================================

    async def serve(self) -> AsyncIterator[str]:
        """
        Subscribe and yield SSE frames.

        The subscription exists only while the generator is iterated, so a
        response that is never started leaves no subscriber behind.
        """
        subscriber = await self.subscribe()
        try:
            async for frame in self.stream(subscriber):
                yield frame
        finally:
            self.unsubscribe(subscriber)

    async def stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        """
        Yield the SSE frames of one subscriber until it is closed.

        Heartbeat comments are emitted every `heartbeat_interval` seconds.
        The subscriber is always deregistered when the stream ends,
        including when the client goes away and the stream is cancelled.
        """
        loop = asyncio.get_running_loop()
        next_heartbeat = loop.time() + self.heartbeat_interval
        try:
            while True:
                timeout = max(next_heartbeat - loop.time(), 0)
                try:
                    payload = await asyncio.wait_for(subscriber.mailbox.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    next_heartbeat += self.heartbeat_interval
                    SSE_MESSAGES_SENT.labels(type="heartbeat").inc()
                    yield HEARTBEAT_FRAME
                    continue

                if payload is _CLOSED:
                    break
                SSE_MESSAGES_SENT.labels(type="data").inc()
                yield format_event(payload)
        finally:
            self.unsubscribe(subscriber)
