"""
gateway/protocol.py — Gateway Bus Message Protocol

Messages carried on the gateway bus. Each one is tagged with a direction
and the logical throttle address it belongs to; the payload is opaque text
(a keyword such as "update", or a JSON document).

    SEND     bridge → WebSocket client
    RECEIVE  WebSocket client → bridge

The address never reaches the client; it only routes messages on the bus.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ─────────────────────────────────────────────────────────────────────────────
# Message kinds + client keywords
# ─────────────────────────────────────────────────────────────────────────────

class MessageKind(str, Enum):
    SEND    = "send"
    RECEIVE = "receive"


class ClientCommand(str, Enum):
    """Plain-text keywords a client may send instead of an Update document."""

    UPDATE      = "update"         # request full Throttle snapshot
    TEST_UPDATE = "test-update"    # diagnostic: three canned updates


# ─────────────────────────────────────────────────────────────────────────────
# Bus message
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GatewayMessage:
    kind: MessageKind
    address: str
    payload: str

    @property
    def is_send(self) -> bool:
        return self.kind is MessageKind.SEND

    @property
    def is_receive(self) -> bool:
        return self.kind is MessageKind.RECEIVE


def make_send(address: str, payload: str) -> GatewayMessage:
    """Build a bridge → client message."""
    return GatewayMessage(MessageKind.SEND, address, payload)


def make_receive(address: str, payload: str) -> GatewayMessage:
    """Build a client → bridge message."""
    return GatewayMessage(MessageKind.RECEIVE, address, payload)
