"""
gateway/ — WebSocket Gateway

WebSocket server that lets UI clients observe and command throttles without
speaking the upstream TCP protocol. Clients exchange plain-text keywords and
JSON Update / Throttle documents; inside the bridge every message is tagged
with its throttle address on the gateway bus.
"""

from gateway.protocol import ClientCommand, GatewayMessage, MessageKind, make_receive, make_send
from gateway.gateway_server import GatewayServer

__all__ = [
    "ClientCommand",
    "GatewayMessage",
    "GatewayServer",
    "MessageKind",
    "make_receive",
    "make_send",
]
