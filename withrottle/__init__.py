"""
withrottle/ — Upstream control-protocol side of the bridge

Line codec (decode/encode between protocol lines and Updates) and the TCP
connector that turns the upstream socket into a bus of ProtocolLines.
"""

from withrottle.codec import LINE_SEPARATOR, decode, encode, session_init_lines
from withrottle.connector import LineKind, ProtocolLine, UpstreamConnector

__all__ = [
    "LINE_SEPARATOR",
    "LineKind",
    "ProtocolLine",
    "UpstreamConnector",
    "decode",
    "encode",
    "session_init_lines",
]
