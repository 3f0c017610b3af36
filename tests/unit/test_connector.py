"""
tests/unit/test_connector.py — Upstream Connector Tests

Runs the connector against a local asyncio TCP server standing in for the
control-protocol server.
"""

from __future__ import annotations

import asyncio

import pytest

from exceptions import BusClosedError, UpstreamClosedError, UpstreamConnectionError
from observability.counters import DropCounter
from withrottle.connector import LineKind, ProtocolLine, UpstreamConnector, split_lines


class FakeUpstream:
    """Single-client TCP server that records received lines."""

    def __init__(self):
        self.received: asyncio.Queue[str] = asyncio.Queue()
        self.writer: asyncio.StreamWriter | None = None
        self.connected = asyncio.Event()
        self._server = None

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._on_client, "127.0.0.1", 0)
        return self._server.sockets[0].getsockname()[1]

    async def _on_client(self, reader, writer):
        self.writer = writer
        self.connected.set()
        while True:
            line = await reader.readline()
            if not line:
                break
            await self.received.put(line.decode().rstrip("\n"))

    async def push(self, raw: str) -> None:
        self.writer.write(raw.encode())
        await self.writer.drain()

    async def next_line(self) -> str:
        return await asyncio.wait_for(self.received.get(), 2.0)

    async def stop(self) -> None:
        if self.writer is not None:
            self.writer.close()
        self._server.close()
        await self._server.wait_closed()


async def _next_receive(sub) -> ProtocolLine:
    while True:
        line = await asyncio.wait_for(sub.recv(), 2.0)
        if line.kind is LineKind.RECEIVE:
            return line


class TestProtocolLine:
    def test_display(self):
        assert str(ProtocolLine.send("NBridge")) == "Send: NBridge"
        assert str(ProtocolLine.receive("VN2.0")) == "Receive: VN2.0"

    def test_split_lines(self):
        assert split_lines("PFT1<;>1.0\n\n  RL0 \nVN2.0") == ["PFT1<;>1.0", "RL0", "VN2.0"]

    def test_split_lines_blank(self):
        assert split_lines("\n  \n") == []


class TestUpstreamConnector:
    @pytest.mark.asyncio
    async def test_connect_refused(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        await upstream.stop()
        with pytest.raises(UpstreamConnectionError) as exc_info:
            await UpstreamConnector.connect("127.0.0.1", port)
        assert exc_info.value.port == port

    @pytest.mark.asyncio
    async def test_received_lines_published(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        connector = await UpstreamConnector.connect("127.0.0.1", port)
        try:
            sub = connector.subscribe()
            await asyncio.wait_for(upstream.connected.wait(), 2.0)
            await upstream.push("MTAS67<;>F112\n\nMTAS67<;>V20\n")
            first = await _next_receive(sub)
            second = await _next_receive(sub)
            assert first == ProtocolLine.receive("MTAS67<;>F112")
            assert second == ProtocolLine.receive("MTAS67<;>V20")
        finally:
            await connector.close()
            await upstream.stop()

    @pytest.mark.asyncio
    async def test_send_lines_written_with_newline(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        connector = await UpstreamConnector.connect("127.0.0.1", port)
        try:
            bus = connector.clone_sender()
            bus.send(ProtocolLine.send("NThrottleBridge"))
            bus.send(ProtocolLine.send("MTAS67<;>V20\nMTAS67<;>qV"))
            assert await upstream.next_line() == "NThrottleBridge"
            assert await upstream.next_line() == "MTAS67<;>V20"
            assert await upstream.next_line() == "MTAS67<;>qV"
        finally:
            await connector.close()
            await upstream.stop()

    @pytest.mark.asyncio
    async def test_receive_lines_not_written_back(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        connector = await UpstreamConnector.connect("127.0.0.1", port)
        try:
            bus = connector.clone_sender()
            bus.send(ProtocolLine.receive("F112"))
            bus.send(ProtocolLine.send("NBridge"))
            assert await upstream.next_line() == "NBridge"
        finally:
            await connector.close()
            await upstream.stop()

    @pytest.mark.asyncio
    async def test_upstream_eof_ends_read_loop(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        connector = await UpstreamConnector.connect("127.0.0.1", port)
        try:
            await asyncio.wait_for(upstream.connected.wait(), 2.0)
            upstream.writer.close()
            await asyncio.wait(
                {connector.read_task}, timeout=2.0
            )
            assert connector.read_task.done()
            assert isinstance(connector.read_task.exception(), UpstreamClosedError)
            # write loop keeps running on its own
            assert not connector.write_task.done()
        finally:
            await connector.close()
            await upstream.stop()

    @pytest.mark.asyncio
    async def test_oversized_line_dropped_and_reading_continues(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        drops = DropCounter()
        connector = await UpstreamConnector.connect("127.0.0.1", port, drops=drops)
        try:
            sub = connector.subscribe()
            await asyncio.wait_for(upstream.connected.wait(), 2.0)
            await upstream.push("X" * 70000 + "\nMTAS67<;>F112\n")
            # the tail of the long line may still arrive as its own line
            for _ in range(3):
                line = await _next_receive(sub)
                if line.text == "MTAS67<;>F112":
                    break
            assert line == ProtocolLine.receive("MTAS67<;>F112")
            assert not connector.read_task.done()
            assert drops.get("upstream.oversized_line") >= 1
        finally:
            await connector.close()
            await upstream.stop()

    @pytest.mark.asyncio
    async def test_write_lag_counted(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        drops = DropCounter()
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        connector = UpstreamConnector(reader, writer, capacity=1, drops=drops)
        try:
            bus = connector.clone_sender()
            for text in ("L1", "L2", "L3"):
                bus.send(ProtocolLine.send(text))
            connector.start()
            assert await upstream.next_line() == "L3"
            assert drops.get("upstream.write_lagged") == 2
        finally:
            await connector.close()
            await upstream.stop()

    @pytest.mark.asyncio
    async def test_close_closes_bus(self):
        upstream = FakeUpstream()
        port = await upstream.start()
        connector = await UpstreamConnector.connect("127.0.0.1", port)
        sub = connector.subscribe()
        await connector.close()
        assert connector.bus.closed
        assert connector.write_task.done()
        with pytest.raises(BusClosedError):
            await asyncio.wait_for(sub.recv(), 1.0)
        await upstream.stop()
