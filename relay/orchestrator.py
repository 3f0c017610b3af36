"""
relay/orchestrator.py — Relay between the upstream and gateway buses

Two long-running loops, started once:

  upstream → gateway
      RECEIVE line → decode → StateStore.apply → Update JSON → gateway SEND

  gateway → upstream
      RECEIVE "update"       → Throttle snapshot JSON → gateway SEND
      RECEIVE "test-update"  → three canned Update JSONs → gateway SEND
      RECEIVE <Update JSON>  → encode → upstream SEND
      anything else          → dropped

Lines and payloads the bridge cannot use are dropped, never raised; every
drop goes through the DropCounter. Lag on either bus is counted and skipped.

Usage:
    relay = Relay(store, connector.clone_sender(), gateway.clone_channel(), address="S67")
    relay.start()
    relay.send_session_init(client_id, "ThrottleBridge")
    await relay.wait()
"""

from __future__ import annotations

import asyncio
from typing import Optional

from dcc.store import StateStore
from dcc.types import (
    Direction,
    DirectionUpdate,
    FunctionUpdate,
    Update,
    VelocityUpdate,
    update_from_json,
    update_to_json,
)
from exceptions import BusClosedError, BusError, BusLaggedError, UpdateDecodeError
from gateway.protocol import ClientCommand, GatewayMessage, make_send
from observability.counters import DropCounter
from observability.logger import get_logger
from relay.bus import Broadcast, Subscription
from withrottle.codec import decode, encode, session_init_lines
from withrottle.connector import LineKind, ProtocolLine

log = get_logger(__name__)

# Published in this order for "test-update"
TEST_UPDATES: tuple[Update, ...] = (
    FunctionUpdate(num=12, is_on=True),
    DirectionUpdate(direction=Direction.FORWARD),
    VelocityUpdate(value=20),
)


class Relay:
    """
    Wires the upstream line bus, the gateway bus and the state store together
    for one throttle address.
    """

    def __init__(
        self,
        store: StateStore,
        upstream_bus: Broadcast[ProtocolLine],
        gateway_bus: Broadcast[GatewayMessage],
        *,
        address: str,
        drops: Optional[DropCounter] = None,
    ) -> None:
        if address not in store.addresses:
            raise ValueError(f"Store has no throttle for address '{address}'")
        self._store = store
        self._upstream_bus = upstream_bus
        self._gateway_bus = gateway_bus
        self._address = address
        self._drops = drops or DropCounter()
        self._tasks: list[asyncio.Task] = []

    @property
    def address(self) -> str:
        return self._address

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Subscribe to both buses and start the two relay loops."""
        if self._tasks:
            raise RuntimeError("Relay already started")
        upstream_sub = self._upstream_bus.subscribe()
        gateway_sub = self._gateway_bus.subscribe()
        self._tasks = [
            asyncio.create_task(
                self.run_upstream_to_gateway(upstream_sub), name="relay-upstream-to-gateway"
            ),
            asyncio.create_task(
                self.run_gateway_to_upstream(gateway_sub), name="relay-gateway-to-upstream"
            ),
        ]
        for task in self._tasks:
            task.add_done_callback(_log_task_exit)
        log.info("relay.started", address=self._address)

    async def wait(self) -> None:
        """Wait until both loops have ended."""
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await self.wait()

    def send_session_init(self, client_id: str, client_name: str) -> None:
        """Identify ourselves upstream and acquire the throttle."""
        for line in session_init_lines(client_id, client_name, self._address):
            self._upstream_bus.send(ProtocolLine.send(line))
        log.info("relay.session_init_sent", client_name=client_name, address=self._address)

    # ─────────────────────────────────────────────────────────────────────────
    # Upstream → gateway
    # ─────────────────────────────────────────────────────────────────────────

    async def run_upstream_to_gateway(self, subscription: Subscription[ProtocolLine]) -> None:
        while True:
            try:
                line = await subscription.recv()
            except BusLaggedError as exc:
                self._drops.record("upstream.lagged", count=exc.skipped)
                continue
            except BusClosedError:
                log.error("relay.upstream_bus_closed")
                return

            if line.kind is not LineKind.RECEIVE:
                continue

            message = self.handle_upstream_line(line.text)
            if message is not None:
                self._publish_gateway(message)

    def handle_upstream_line(self, text: str) -> Optional[GatewayMessage]:
        """Decode + apply one upstream line. Returns the gateway message to publish."""
        update = decode(text)
        if update is None:
            self._drops.record("upstream.undecodable", line=text)
            return None

        self._store.apply(update, self._address)
        log.debug("relay.update_applied", update=repr(update))
        return make_send(self._address, update_to_json(update))

    # ─────────────────────────────────────────────────────────────────────────
    # Gateway → upstream
    # ─────────────────────────────────────────────────────────────────────────

    async def run_gateway_to_upstream(self, subscription: Subscription[GatewayMessage]) -> None:
        while True:
            try:
                message = await subscription.recv()
            except BusLaggedError as exc:
                self._drops.record("relay.gateway_lagged", count=exc.skipped)
                continue
            except BusClosedError:
                log.info("relay.gateway_bus_closed")
                return

            if not message.is_receive:
                continue

            for gateway_msg in self.handle_gateway_payload(message.payload):
                self._publish_gateway(gateway_msg)

    def handle_gateway_payload(self, payload: str) -> list[GatewayMessage]:
        """
        Act on one client payload.

        Snapshot / diagnostic requests come back as gateway messages for the
        caller to publish. Updates are encoded and published upstream here.
        """
        if payload == ClientCommand.UPDATE.value:
            snapshot = self._store.snapshot(self._address)
            return [make_send(self._address, snapshot.to_json())]

        if payload == ClientCommand.TEST_UPDATE.value:
            return [make_send(self._address, update_to_json(u)) for u in TEST_UPDATES]

        try:
            update = update_from_json(payload)
        except UpdateDecodeError as exc:
            self._drops.record("relay.unrecognized_payload", error=str(exc))
            return []

        command = encode(update, self._address)
        if command is not None:
            try:
                self._upstream_bus.send(ProtocolLine.send(command))
            except BusError as exc:
                self._drops.record("relay.publish_failed", bus="upstream", error=str(exc))
        return []

    def _publish_gateway(self, message: GatewayMessage) -> None:
        try:
            self._gateway_bus.send(message)
        except BusError as exc:
            self._drops.record("relay.publish_failed", bus="gateway", error=str(exc))


def _log_task_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        log.info("relay.loop_stopped", loop=task.get_name())
    else:
        log.error(
            "relay.loop_failed",
            loop=task.get_name(),
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
