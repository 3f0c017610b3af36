"""
relay/bus.py — Bounded Lossy Broadcast Bus

Multi-producer / multi-subscriber fan-out used for both internal channels
(upstream protocol lines and gateway messages).

Semantics:
  - Every subscriber sees every publish made after it subscribed, in
    publish order.
  - Each subscriber buffers at most `capacity` unread messages. Publishing
    into a full buffer overwrites the oldest message (drop-oldest); the
    publisher never blocks.
  - The next recv() on a subscriber that lost messages raises
    BusLaggedError(skipped). Receiving again continues with the oldest
    message still retained.
  - After close(), subscribers drain what is buffered and then get
    BusClosedError.

Usage:
    bus: Broadcast[str] = Broadcast(capacity=10, name="gateway")
    sub = bus.subscribe()
    bus.send("hello")
    msg = await sub.recv()
"""

from __future__ import annotations

import asyncio
import weakref
from collections import deque
from typing import Generic, TypeVar

from exceptions import BusClosedError, BusLaggedError, BusSendError

T = TypeVar("T")


class Broadcast(Generic[T]):
    """Bounded broadcast channel with a drop-oldest policy per subscriber."""

    def __init__(self, capacity: int, *, name: str = "bus") -> None:
        if capacity < 1:
            raise ValueError("Broadcast capacity must be >= 1")
        self._capacity = capacity
        self._name = name
        self._closed = False
        # Subscriptions nobody holds any more drop out on their own.
        self._subscribers: weakref.WeakSet[Subscription[T]] = weakref.WeakSet()

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> "Subscription[T]":
        sub: Subscription[T] = Subscription(self)
        if not self._closed:
            self._subscribers.add(sub)
        return sub

    def send(self, message: T) -> int:
        """
        Publish to every live subscriber. Returns the number of receivers.

        Raises BusClosedError after close(), BusSendError if nobody is
        subscribed.
        """
        if self._closed:
            raise BusClosedError(f"{self._name} bus is closed")
        receivers = list(self._subscribers)
        if not receivers:
            raise BusSendError(f"{self._name} bus has no subscribers")
        for sub in receivers:
            sub._push(message)
        return len(receivers)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subscribers):
            sub._wake()
        self._subscribers.clear()

    def _unsubscribe(self, sub: "Subscription[T]") -> None:
        self._subscribers.discard(sub)


class Subscription(Generic[T]):
    """One subscriber's view of a Broadcast."""

    def __init__(self, bus: Broadcast[T]) -> None:
        self._bus = bus
        self._buffer: deque[T] = deque(maxlen=bus.capacity)
        self._lagged = 0
        self._closed = bus.closed
        self._ready = asyncio.Event()

    @property
    def lagged(self) -> int:
        """Messages lost since the last BusLaggedError was raised."""
        return self._lagged

    def __len__(self) -> int:
        return len(self._buffer)

    def _push(self, message: T) -> None:
        if len(self._buffer) == self._buffer.maxlen:
            self._lagged += 1
        self._buffer.append(message)
        self._ready.set()

    def _wake(self) -> None:
        self._closed = True
        self._ready.set()

    def try_recv(self) -> T:
        """Non-blocking recv. Raises asyncio.QueueEmpty when nothing is buffered."""
        if self._lagged:
            skipped, self._lagged = self._lagged, 0
            raise BusLaggedError(skipped)
        if self._buffer:
            return self._buffer.popleft()
        if self._closed:
            raise BusClosedError(f"{self._bus.name} subscription is closed")
        raise asyncio.QueueEmpty()

    async def recv(self) -> T:
        """Wait for the next message."""
        while True:
            try:
                return self.try_recv()
            except asyncio.QueueEmpty:
                pass
            self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        """Stop receiving. A pending recv() drains the buffer then raises BusClosedError."""
        self._bus._unsubscribe(self)
        self._wake()
