"""
dcc/store.py — Throttle State Store

Owns every Throttle (keyed by address) and the shared ClockState.
This is the only mutable state shared between the relay loops.

One threading.Lock guards each operation. Operations are synchronous and
purely in-memory, so the lock is never held across an await point.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from dcc.types import (
    ClockState,
    DirectionUpdate,
    FunctionUpdate,
    Throttle,
    TimeUpdate,
    Update,
    VelocityUpdate,
)
from exceptions import UnknownAddressError


class StateStore:
    """
    In-memory throttle + clock state.

    Throttles are created once, at construction, for every known address.
    apply() never creates one; an unknown address is a programming error.

    Usage:
        store = StateStore(["S67"])
        store.apply(VelocityUpdate(40), "S67")
        snap = store.snapshot("S67")
    """

    def __init__(self, addresses: Iterable[str]) -> None:
        self._throttles: dict[str, Throttle] = {}
        for address in addresses:
            if address in self._throttles:
                raise ValueError(f"Duplicate throttle address '{address}'")
            self._throttles[address] = Throttle(address)
        self._clock = ClockState()
        self._lock = threading.Lock()

    @property
    def addresses(self) -> list[str]:
        return list(self._throttles)

    def apply(self, update: Update, address: str) -> None:
        """Apply a decoded update to the named throttle or the shared clock."""
        with self._lock:
            throttle = self._throttles.get(address)
            if throttle is None:
                raise UnknownAddressError(address)

            if isinstance(update, FunctionUpdate):
                throttle.set_function(update.num, update.is_on)
            elif isinstance(update, VelocityUpdate):
                throttle.set_velocity(update.value)
            elif isinstance(update, DirectionUpdate):
                throttle.set_direction(update.direction)
            elif isinstance(update, TimeUpdate):
                self._clock.update(update.timestamp, update.scale)
            else:
                raise TypeError(f"Not an Update: {update!r}")

    def snapshot(self, address: str) -> Throttle:
        """Return a consistent copy of one throttle."""
        with self._lock:
            throttle = self._throttles.get(address)
            if throttle is None:
                raise UnknownAddressError(address)
            return throttle.copy()

    def clock(self) -> ClockState:
        with self._lock:
            return self._clock.copy()
