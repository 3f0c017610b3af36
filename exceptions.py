"""
exceptions.py — throttle-bridge Unified Error Hierarchy

All bridge-specific exceptions live here. Every layer raises typed
subclasses of BridgeError — never bare Exception.

Import from here, not from individual modules:
    from exceptions import UpstreamConnectionError, BusLaggedError

Hierarchy:
    BridgeError
    ├── UpstreamError
    │   ├── UpstreamConnectionError
    │   ├── UpstreamIOError
    │   └── UpstreamClosedError
    ├── BusError
    │   ├── BusClosedError
    │   ├── BusLaggedError
    │   └── BusSendError
    ├── StoreError
    │   └── UnknownAddressError
    └── UpdateDecodeError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class BridgeError(Exception):
    """Base class for all throttle-bridge exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Upstream (TCP control protocol) layer
# ─────────────────────────────────────────────────────────────────────────────

class UpstreamError(BridgeError):
    """Base for failures on the upstream TCP connection."""


class UpstreamConnectionError(UpstreamError):
    """The upstream endpoint could not be reached. Fatal at startup."""

    def __init__(self, host: str, port: int, reason: str = "") -> None:
        self.host = host
        self.port = port
        super().__init__(
            f"Unable to connect to upstream {host}:{port}"
            + (f": {reason}" if reason else "")
        )


class UpstreamIOError(UpstreamError):
    """A socket read or write on an established connection failed."""


class UpstreamClosedError(UpstreamError):
    """The upstream peer closed the connection."""


# ─────────────────────────────────────────────────────────────────────────────
# Broadcast bus layer
# ─────────────────────────────────────────────────────────────────────────────

class BusError(BridgeError):
    """Base for broadcast bus errors."""


class BusClosedError(BusError):
    """The bus (or this subscription) has been closed and is drained."""


class BusLaggedError(BusError):
    """The subscriber fell behind and the oldest messages were overwritten."""

    def __init__(self, skipped: int) -> None:
        self.skipped = skipped
        super().__init__(f"Subscriber lagged; {skipped} message(s) skipped")


class BusSendError(BusError):
    """A publish found no live subscribers to deliver to."""


# ─────────────────────────────────────────────────────────────────────────────
# State store layer
# ─────────────────────────────────────────────────────────────────────────────

class StoreError(BridgeError):
    """Base for state store errors."""


class UnknownAddressError(StoreError, KeyError):
    """An update targeted a throttle address the store was not created with."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(address)

    def __str__(self) -> str:
        return f"No throttle registered for address '{self.address}'"


# ─────────────────────────────────────────────────────────────────────────────
# Codec layer
# ─────────────────────────────────────────────────────────────────────────────

class UpdateDecodeError(BridgeError, ValueError):
    """A text payload is not a valid serialized Update."""


__all__ = [
    "BridgeError",
    # Upstream
    "UpstreamError",
    "UpstreamConnectionError",
    "UpstreamIOError",
    "UpstreamClosedError",
    # Bus
    "BusError",
    "BusClosedError",
    "BusLaggedError",
    "BusSendError",
    # Store
    "StoreError",
    "UnknownAddressError",
    # Codec
    "UpdateDecodeError",
]
