"""
withrottle/codec.py — WiThrottle Line Codec

Pure functions between raw protocol lines and Update objects.

decode() applies four patterns in fixed priority. The first one found
anywhere in the line wins:
    1. Function   F<0|1><n>            e.g. "MTAS67<;>F112"
    2. Velocity   V<-?ddd>             e.g. "MTAS67<;>V-1"
    3. Direction  R0 | R1
    4. Clock      PFT<secs><;><scale>  e.g. "PFT100<;>2.0"

encode() turns an Update back into the outbound command for one address.
"""

from __future__ import annotations

import re
from typing import Optional

from dcc.types import (
    Direction,
    DirectionUpdate,
    FunctionUpdate,
    TimeUpdate,
    Update,
    VelocityUpdate,
)

LINE_SEPARATOR = "\n"
FIELD_SEPARATOR = "<;>"

_U64_MAX = 2 ** 64 - 1

_RE_FUNCTION = re.compile(r"F(?P<on>[01])(?P<num>\d\d?)", re.ASCII)
_RE_VELOCITY = re.compile(r"V(?P<v>-?\d{1,3})", re.ASCII)
_RE_DIRECTION = re.compile(r"(?P<d>R[01])", re.ASCII)
_RE_CLOCK = re.compile(r"PFT(?P<time>\d+)<;>(?P<scale>\d+(?:\.\d+)?)", re.ASCII)


def decode(line: str) -> Optional[Update]:
    """Decode one protocol line. Returns None if no rule matches."""
    m = _RE_FUNCTION.search(line)
    if m:
        return FunctionUpdate(num=int(m.group("num")), is_on=m.group("on") == "1")

    m = _RE_VELOCITY.search(line)
    if m:
        return VelocityUpdate(value=int(m.group("v")))

    m = _RE_DIRECTION.search(line)
    if m:
        return DirectionUpdate(direction=Direction.from_code(m.group("d")))

    m = _RE_CLOCK.search(line)
    if m:
        timestamp = int(m.group("time"))
        if timestamp > _U64_MAX:
            return None
        return TimeUpdate(timestamp=timestamp, scale=float(m.group("scale")))

    return None


def _throttle_command(address: str, action: str) -> str:
    return f"MTA{address}{FIELD_SEPARATOR}{action}"


def encode(update: Update, address: str) -> Optional[str]:
    """
    Build the outbound command for an update.

    Velocity and direction changes are followed by a second line (qV, vR)
    asking the server to echo back the value it applied. Clock updates are
    never sent upstream and encode to None.
    """
    if isinstance(update, FunctionUpdate):
        state = "1" if update.is_on else "0"
        return _throttle_command(address, f"F{state}{update.num}")

    if isinstance(update, VelocityUpdate):
        return LINE_SEPARATOR.join([
            _throttle_command(address, f"V{update.value}"),
            _throttle_command(address, "qV"),
        ])

    if isinstance(update, DirectionUpdate):
        return LINE_SEPARATOR.join([
            _throttle_command(address, update.direction.code),
            _throttle_command(address, "vR"),
        ])

    if isinstance(update, TimeUpdate):
        return None

    raise TypeError(f"Not an Update: {update!r}")


def session_init_lines(client_id: str, client_name: str, address: str) -> list[str]:
    """Lines sent once after connecting: identify, name, acquire the throttle."""
    return [
        f"HU{client_id}",
        f"N{client_name}",
        f"MT+{address}{FIELD_SEPARATOR}{address}",
    ]
