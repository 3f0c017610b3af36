"""
withrottle/connector.py — Upstream WiThrottle TCP Connector

Owns the single TCP connection to the control-protocol server and exposes
it as a broadcast bus of ProtocolLine messages:

    socket ──read loop──▶  ProtocolLine(RECEIVE, text)  ──▶ bus
    bus    ──write loop──▶ ProtocolLine(SEND, text) + "\\n" ──▶ socket

Anything on the bus may publish SEND lines (clone_sender()) or consume
RECEIVE lines (subscribe()). The two loops fail independently; neither is
restarted.

Usage:
    connector = await UpstreamConnector.connect("127.0.0.1", 12090)
    connector.clone_sender().send(ProtocolLine.send("NThrottleBridge"))
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from exceptions import (
    BusClosedError,
    BusLaggedError,
    UpstreamClosedError,
    UpstreamConnectionError,
    UpstreamIOError,
)
from observability.counters import DropCounter
from observability.logger import get_logger
from relay.bus import Broadcast, Subscription
from withrottle.codec import LINE_SEPARATOR

log = get_logger(__name__)

DEFAULT_CAPACITY = 32


class LineKind(str, Enum):
    SEND = "send"          # bridge → upstream
    RECEIVE = "receive"    # upstream → bridge


@dataclass(frozen=True)
class ProtocolLine:
    kind: LineKind
    text: str

    @classmethod
    def send(cls, text: str) -> "ProtocolLine":
        return cls(LineKind.SEND, text)

    @classmethod
    def receive(cls, text: str) -> "ProtocolLine":
        return cls(LineKind.RECEIVE, text)

    def __str__(self) -> str:
        label = "Send" if self.kind is LineKind.SEND else "Receive"
        return f"{label}: {self.text}"


def split_lines(raw: str) -> list[str]:
    """Split on the line separator, trim, and drop empty fragments."""
    return [part.strip() for part in raw.split(LINE_SEPARATOR) if part.strip()]


class UpstreamConnector:
    """
    TCP connection to the upstream control server plus its line bus.

    Create with connect(); the read and write loops start immediately.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        capacity: int = DEFAULT_CAPACITY,
        drops: Optional[DropCounter] = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._drops = drops or DropCounter()
        self._bus: Broadcast[ProtocolLine] = Broadcast(capacity, name="upstream")
        # Subscribe before anything can publish so no SEND line is missed.
        self._send_subscription = self._bus.subscribe()
        self._read_task: Optional[asyncio.Task] = None
        self._write_task: Optional[asyncio.Task] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        *,
        capacity: int = DEFAULT_CAPACITY,
        drops: Optional[DropCounter] = None,
    ) -> "UpstreamConnector":
        """Open the connection and start both loops. Raises UpstreamConnectionError."""
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as exc:
            raise UpstreamConnectionError(host, port, str(exc)) from exc

        connector = cls(reader, writer, capacity=capacity, drops=drops)
        connector.start()
        log.info("upstream.connected", host=host, port=port)
        return connector

    def start(self) -> None:
        self._read_task = asyncio.create_task(self._read_loop(), name="upstream-read")
        self._write_task = asyncio.create_task(
            self._write_loop(self._send_subscription), name="upstream-write"
        )
        for task in (self._read_task, self._write_task):
            task.add_done_callback(_log_task_exit)

    async def wait(self) -> None:
        """Wait for both loops to finish. Loop failures are logged, not raised."""
        tasks = [t for t in (self._read_task, self._write_task) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        self._bus.close()
        for task in (self._read_task, self._write_task):
            if task is not None and not task.done():
                task.cancel()
        await self.wait()
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass
        log.info("upstream.closed")

    # ─────────────────────────────────────────────────────────────────────────
    # Bus access
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def bus(self) -> Broadcast[ProtocolLine]:
        return self._bus

    def clone_sender(self) -> Broadcast[ProtocolLine]:
        """Handle for publishing onto the upstream bus."""
        return self._bus

    def subscribe(self) -> Subscription[ProtocolLine]:
        return self._bus.subscribe()

    @property
    def read_task(self) -> Optional[asyncio.Task]:
        return self._read_task

    @property
    def write_task(self) -> Optional[asyncio.Task]:
        return self._write_task

    # ─────────────────────────────────────────────────────────────────────────
    # Loops
    # ─────────────────────────────────────────────────────────────────────────

    async def _read_loop(self) -> None:
        while True:
            try:
                raw = await self._reader.readline()
            except ValueError as exc:
                # Line longer than the stream limit. asyncio has already
                # discarded it and the socket is still usable.
                self._drops.record("upstream.oversized_line", error=str(exc))
                continue
            except OSError as exc:
                raise UpstreamIOError(f"Upstream read failed: {exc}") from exc

            if not raw:
                raise UpstreamClosedError("Upstream closed the connection")

            for line in split_lines(raw.decode("utf-8", errors="replace")):
                log.debug("upstream.received", line=line)
                # BusError ends the loop: nobody is left to consume lines
                self._bus.send(ProtocolLine.receive(line))

    async def _write_loop(self, subscription: Subscription[ProtocolLine]) -> None:
        while True:
            try:
                message = await subscription.recv()
            except BusLaggedError as exc:
                self._drops.record("upstream.write_lagged", count=exc.skipped)
                continue
            except BusClosedError:
                return

            if message.kind is not LineKind.SEND:
                continue

            try:
                self._writer.write((message.text + LINE_SEPARATOR).encode("utf-8"))
                await self._writer.drain()
            except (OSError, RuntimeError) as exc:
                raise UpstreamIOError(f"Upstream write failed: {exc}") from exc
            log.debug("upstream.sent", line=message.text)


def _log_task_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        log.info("upstream.loop_stopped", loop=task.get_name())
    else:
        log.error(
            "upstream.loop_failed",
            loop=task.get_name(),
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
