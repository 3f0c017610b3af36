"""
gateway/gateway_server.py — WebSocket Gateway Server

Serves UI clients over WebSocket and relays their traffic through the
gateway bus. Uses the `websockets` library.

Each accepted connection runs two loops:
  outbound — gateway bus SEND messages for this gateway's address → text frames
  inbound  — text frames → RECEIVE messages on the gateway bus

The HTTP health route is answered from the handshake hook, before any
WebSocket upgrade.

Usage:
    server = GatewayServer(address="S67", host="0.0.0.0", port=8080)
    await server.start()
    relay = Relay(store, upstream_bus, server.clone_channel(), address="S67")
    await server.wait_closed()
"""

from __future__ import annotations

import asyncio
import uuid
from http import HTTPStatus
from typing import Optional

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request, Response

from exceptions import BusClosedError, BusError, BusLaggedError
from gateway.protocol import GatewayMessage, make_receive
from observability.counters import DropCounter
from observability.logger import bind_connection, clear_connection, get_logger
from relay.bus import Broadcast, Subscription

log = get_logger(__name__)

DEFAULT_CAPACITY = 10


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


class GatewayServer:
    """
    WebSocket gateway server.

    Owns the gateway bus. Other components publish SEND messages on it
    (clone_channel()) and consume RECEIVE messages from it (subscribe()).
    """

    def __init__(
        self,
        *,
        address: str,
        host: str = "0.0.0.0",
        port: int = 8080,
        ws_path: str = "/ws",
        health_path: str = "/health",
        capacity: int = DEFAULT_CAPACITY,
        max_message_bytes: int = 2**20,
        drops: Optional[DropCounter] = None,
    ):
        self._address = address
        self._host = host
        self._port = port
        self._ws_path = ws_path
        self._health_path = health_path
        self._max_message_bytes = max_message_bytes
        self._drops = drops or DropCounter()
        self._bus: Broadcast[GatewayMessage] = Broadcast(capacity, name="gateway")
        self._server = None
        self._connections: set[ServerConnection] = set()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start listening."""
        self._server = await websockets.serve(
            self._handler,
            self._host,
            self._port,
            process_request=self._process_request,
            max_size=self._max_message_bytes,
        )
        log.info(
            "gateway.started",
            host=self._host,
            port=self.port,
            address=self._address,
        )

    async def wait_closed(self) -> None:
        """Block until the server is closed."""
        if self._server:
            await self._server.wait_closed()

    async def shutdown(self) -> None:
        """Close the bus and every client connection."""
        self._bus.close()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
        log.info("gateway.stopped")

    @property
    def port(self) -> int:
        """Bound port. Differs from the configured one when that was 0."""
        if self._server:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @property
    def address(self) -> str:
        return self._address

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ─────────────────────────────────────────────────────────────────────────
    # Bus access
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def bus(self) -> Broadcast[GatewayMessage]:
        return self._bus

    def clone_channel(self) -> Broadcast[GatewayMessage]:
        """Handle for publishing onto the gateway bus."""
        return self._bus

    def subscribe(self) -> Subscription[GatewayMessage]:
        return self._bus.subscribe()

    # ─────────────────────────────────────────────────────────────────────────
    # HTTP routing
    # ─────────────────────────────────────────────────────────────────────────

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        path = request.path.split("?", 1)[0]
        if path == self._health_path:
            return connection.respond(HTTPStatus.OK, "OK")
        if path != self._ws_path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    # ─────────────────────────────────────────────────────────────────────────
    # Connection handler
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a single WebSocket connection."""
        remote = str(getattr(websocket, "remote_address", ("?", 0)))
        bind_connection(_short_id("conn"), remote)

        # Subscribe before reading so a reply to the first frame is not missed.
        subscription = self._bus.subscribe()
        self._connections.add(websocket)
        log.info("gateway.client_connected")

        outbound = asyncio.create_task(self._outbound_loop(websocket, subscription))
        inbound = asyncio.create_task(self._inbound_loop(websocket))
        try:
            await inbound
        finally:
            # The socket is gone; release the subscription so the outbound
            # loop drains and stops instead of waiting on the bus forever.
            subscription.close()
            await asyncio.gather(outbound, return_exceptions=True)
            self._connections.discard(websocket)
            log.info("gateway.client_disconnected")
            clear_connection()

    async def _outbound_loop(
        self,
        websocket: ServerConnection,
        subscription: Subscription[GatewayMessage],
    ) -> None:
        while True:
            try:
                msg = await subscription.recv()
            except BusLaggedError as exc:
                self._drops.record("gateway.lagged", count=exc.skipped)
                continue
            except BusClosedError:
                return

            if not msg.is_send or msg.address != self._address:
                continue

            try:
                await websocket.send(msg.payload)
            except websockets.ConnectionClosed as exc:
                log.warning("gateway.write_failed", error=str(exc))
                return

    async def _inbound_loop(self, websocket: ServerConnection) -> None:
        try:
            async for frame in websocket:
                if not isinstance(frame, str):
                    self._drops.record("gateway.non_text_frame", size=len(frame))
                    continue
                try:
                    self._bus.send(make_receive(self._address, frame))
                except BusError as exc:
                    self._drops.record("gateway.publish_failed", error=str(exc))
        except websockets.ConnectionClosedError as exc:
            log.warning("gateway.read_failed", error=str(exc))
