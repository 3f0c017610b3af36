"""
dcc/types.py — Throttle, Clock and Update Types

Protocol-agnostic model of what the bridge tracks:

  Throttle     — velocity / direction / function flags for one address
  ClockState   — the layout fast-clock shared by every throttle
  Update       — closed union of the four changes the bridge understands:
                 FunctionUpdate | VelocityUpdate | DirectionUpdate | TimeUpdate

Updates travel between the codec, the state store and WebSocket clients as
externally-tagged JSON:

    {"Function": {"num": 12, "is_on": true}}
    {"Velocity": 20}
    {"Direction": "Forward"}
    {"Time": {"timestamp": 100, "scale": 2.0}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from exceptions import UpdateDecodeError


VELOCITY_MIN = -1
VELOCITY_MAX = 129

_I16_MIN, _I16_MAX = -(2 ** 15), 2 ** 15 - 1
_U8_MAX = 2 ** 8 - 1
_U64_MAX = 2 ** 64 - 1


def clamp_velocity(value: int) -> int:
    return max(VELOCITY_MIN, min(VELOCITY_MAX, value))


# ─────────────────────────────────────────────────────────────────────────────
# Direction
# ─────────────────────────────────────────────────────────────────────────────

class Direction(str, Enum):
    """Travel direction. The value is the JSON name."""

    REVERSE = "Reverse"
    FORWARD = "Forward"

    @property
    def code(self) -> str:
        """Two-character protocol token: R0 = reverse, R1 = forward."""
        return "R0" if self is Direction.REVERSE else "R1"

    @classmethod
    def from_code(cls, code: str) -> "Direction":
        return cls.REVERSE if code == "R0" else cls.FORWARD


# ─────────────────────────────────────────────────────────────────────────────
# Throttle + clock
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Throttle:
    """Control state for one addressable locomotive."""

    address: str
    velocity: int = 0
    direction: Direction = Direction.FORWARD
    functions: set[int] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.velocity = clamp_velocity(self.velocity)

    @property
    def is_emergency(self) -> bool:
        return self.velocity < 0

    def set_velocity(self, value: int) -> None:
        self.velocity = clamp_velocity(value)

    def set_direction(self, direction: Direction) -> None:
        self.direction = direction

    def set_function(self, num: int, is_on: bool) -> None:
        if is_on:
            self.functions.add(num)
        else:
            self.functions.discard(num)

    def is_function_on(self, num: int) -> bool:
        return num in self.functions

    def copy(self) -> "Throttle":
        return Throttle(
            address=self.address,
            velocity=self.velocity,
            direction=self.direction,
            functions=set(self.functions),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "velocity": {"value": self.velocity},
            "direction": self.direction.value,
            "functions": sorted(self.functions),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "Throttle":
        """Parse a snapshot produced by to_json()."""
        d = json.loads(raw)
        return cls(
            address=d["address"],
            velocity=d["velocity"]["value"],
            direction=Direction(d["direction"]),
            functions=set(d["functions"]),
        )


@dataclass
class ClockState:
    timestamp: int = 0
    scale: float = 1.0

    def update(self, timestamp: int, scale: float) -> None:
        self.timestamp = timestamp
        self.scale = scale

    def copy(self) -> "ClockState":
        return ClockState(self.timestamp, self.scale)


# ─────────────────────────────────────────────────────────────────────────────
# Update variants
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FunctionUpdate:
    num: int
    is_on: bool

    def to_dict(self) -> dict[str, Any]:
        return {"Function": {"num": self.num, "is_on": self.is_on}}


@dataclass(frozen=True)
class VelocityUpdate:
    value: int

    def to_dict(self) -> dict[str, Any]:
        return {"Velocity": self.value}


@dataclass(frozen=True)
class DirectionUpdate:
    direction: Direction

    def to_dict(self) -> dict[str, Any]:
        return {"Direction": self.direction.value}


@dataclass(frozen=True)
class TimeUpdate:
    timestamp: int
    scale: float

    def to_dict(self) -> dict[str, Any]:
        return {"Time": {"timestamp": self.timestamp, "scale": self.scale}}


Update = Union[FunctionUpdate, VelocityUpdate, DirectionUpdate, TimeUpdate]


def update_to_json(update: Update) -> str:
    return json.dumps(update.to_dict(), separators=(",", ":"))


def _int_field(value: Any, name: str, lo: int, hi: int) -> int:
    # bool is an int subclass; JSON true/false must not pass as a number
    if isinstance(value, bool) or not isinstance(value, int):
        raise UpdateDecodeError(f"'{name}' must be an integer, got {value!r}")
    if not lo <= value <= hi:
        raise UpdateDecodeError(f"'{name}' out of range [{lo}, {hi}]: {value}")
    return value


def _object_field(body: Any, tag: str) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise UpdateDecodeError(f"'{tag}' body must be an object")
    return body


def update_from_json(raw: str) -> Update:
    """
    Parse the externally-tagged JSON form of an Update.

    Raises UpdateDecodeError for anything that is not exactly one of the four
    variants with correctly typed fields.
    """
    try:
        d = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as exc:
        # RecursionError: nesting deeper than the interpreter stack
        raise UpdateDecodeError(f"Not JSON: {type(exc).__name__}") from exc

    if not isinstance(d, dict) or len(d) != 1:
        raise UpdateDecodeError("Update must be an object with exactly one tag")

    tag, body = next(iter(d.items()))

    if tag == "Function":
        body = _object_field(body, tag)
        is_on = body.get("is_on")
        if not isinstance(is_on, bool):
            raise UpdateDecodeError("'is_on' must be a boolean")
        return FunctionUpdate(num=_int_field(body.get("num"), "num", 0, _U8_MAX), is_on=is_on)

    if tag == "Velocity":
        return VelocityUpdate(value=_int_field(body, "Velocity", _I16_MIN, _I16_MAX))

    if tag == "Direction":
        try:
            return DirectionUpdate(direction=Direction(body))
        except ValueError as exc:
            raise UpdateDecodeError(f"Unknown direction {body!r}") from exc

    if tag == "Time":
        body = _object_field(body, tag)
        scale = body.get("scale")
        if isinstance(scale, bool) or not isinstance(scale, (int, float)):
            raise UpdateDecodeError("'scale' must be a number")
        return TimeUpdate(
            timestamp=_int_field(body.get("timestamp"), "timestamp", 0, _U64_MAX),
            scale=float(scale),
        )

    raise UpdateDecodeError(f"Unknown update tag '{tag}'")
