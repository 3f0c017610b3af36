"""
dcc/ — Throttle domain model and state store

Protocol-agnostic types (Throttle, ClockState, Update) and the lock-guarded
StateStore that the relay mutates.
"""

from dcc.types import (
    ClockState,
    Direction,
    DirectionUpdate,
    FunctionUpdate,
    Throttle,
    TimeUpdate,
    Update,
    VelocityUpdate,
    update_from_json,
    update_to_json,
)
from dcc.store import StateStore

__all__ = [
    "ClockState",
    "Direction",
    "DirectionUpdate",
    "FunctionUpdate",
    "StateStore",
    "Throttle",
    "TimeUpdate",
    "Update",
    "VelocityUpdate",
    "update_from_json",
    "update_to_json",
]
