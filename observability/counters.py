"""
observability/counters.py — Drop Counter

The bridge deliberately discards messages in several places (undecodable
lines, unrecognised client payloads, lagged subscribers, non-text frames).
None of those are errors, but each one is counted here and logged at debug
level so loss stays visible.

Usage:
    drops = DropCounter()
    drops.record("upstream.undecodable", line=raw)
    drops.get("upstream.undecodable")   # → 1
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from observability.logger import get_logger

log = get_logger(__name__)


class DropCounter:
    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def record(self, reason: str, count: int = 1, **context: Any) -> None:
        self._counts[reason] += count
        log.debug("bridge.dropped", reason=reason, count=count, **context)

    def get(self, reason: str) -> int:
        return self._counts[reason]

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)

    def __repr__(self) -> str:
        return f"DropCounter({dict(self._counts)!r})"
