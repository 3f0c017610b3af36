"""
tests/unit/test_types.py — Throttle / ClockState / Update JSON Tests
"""

from __future__ import annotations

import json

import pytest

from dcc.types import (
    ClockState,
    Direction,
    DirectionUpdate,
    FunctionUpdate,
    Throttle,
    TimeUpdate,
    VelocityUpdate,
    clamp_velocity,
    update_from_json,
    update_to_json,
)
from exceptions import UpdateDecodeError


# ─────────────────────────────────────────────────────────────────────────────
# Throttle
# ─────────────────────────────────────────────────────────────────────────────

class TestThrottle:
    def test_defaults(self):
        t = Throttle("S67")
        assert t.velocity == 0
        assert t.direction is Direction.FORWARD
        assert t.functions == set()
        assert t.is_emergency is False

    @pytest.mark.parametrize("value,expected", [
        (-200, -1), (-1, -1), (0, 0), (64, 64), (129, 129), (130, 129), (999, 129),
    ])
    def test_velocity_clamped(self, value, expected):
        t = Throttle("S67")
        t.set_velocity(value)
        assert t.velocity == expected
        assert clamp_velocity(value) == expected

    def test_constructor_clamps(self):
        assert Throttle("S67", velocity=500).velocity == 129

    def test_emergency_when_negative(self):
        t = Throttle("S67")
        t.set_velocity(-1)
        assert t.is_emergency is True

    def test_function_on_off(self):
        t = Throttle("S67")
        t.set_function(12, True)
        assert t.is_function_on(12)
        t.set_function(12, False)
        assert not t.is_function_on(12)

    def test_function_off_when_absent_is_noop(self):
        t = Throttle("S67")
        t.set_function(3, False)
        assert t.functions == set()

    def test_copy_is_independent(self):
        t = Throttle("S67")
        t.set_function(1, True)
        c = t.copy()
        c.set_function(2, True)
        assert t.functions == {1}
        assert c.functions == {1, 2}

    def test_json_shape(self):
        t = Throttle("S67", velocity=20, direction=Direction.REVERSE, functions={12, 0})
        d = json.loads(t.to_json())
        assert d == {
            "address": "S67",
            "velocity": {"value": 20},
            "direction": "Reverse",
            "functions": [0, 12],
        }

    def test_from_json(self):
        t = Throttle("S67", velocity=5, functions={4})
        parsed = Throttle.from_json(t.to_json())
        assert parsed == t


class TestDirection:
    def test_codes(self):
        assert Direction.REVERSE.code == "R0"
        assert Direction.FORWARD.code == "R1"

    def test_from_code(self):
        assert Direction.from_code("R0") is Direction.REVERSE
        assert Direction.from_code("R1") is Direction.FORWARD


class TestClockState:
    def test_defaults(self):
        clock = ClockState()
        assert clock.timestamp == 0
        assert clock.scale == 1.0

    def test_update(self):
        clock = ClockState()
        clock.update(100, 2.0)
        assert (clock.timestamp, clock.scale) == (100, 2.0)


# ─────────────────────────────────────────────────────────────────────────────
# Update JSON
# ─────────────────────────────────────────────────────────────────────────────

class TestUpdateJson:
    def test_function_shape(self):
        raw = update_to_json(FunctionUpdate(num=12, is_on=True))
        assert json.loads(raw) == {"Function": {"num": 12, "is_on": True}}

    def test_velocity_shape(self):
        assert json.loads(update_to_json(VelocityUpdate(20))) == {"Velocity": 20}

    def test_direction_shape(self):
        raw = update_to_json(DirectionUpdate(Direction.FORWARD))
        assert json.loads(raw) == {"Direction": "Forward"}

    def test_time_shape(self):
        raw = update_to_json(TimeUpdate(timestamp=100, scale=2.0))
        assert json.loads(raw) == {"Time": {"timestamp": 100, "scale": 2.0}}

    def test_parse_each_variant(self):
        assert update_from_json('{"Function": {"num": 3, "is_on": false}}') == FunctionUpdate(3, False)
        assert update_from_json('{"Velocity": -1}') == VelocityUpdate(-1)
        assert update_from_json('{"Direction": "Reverse"}') == DirectionUpdate(Direction.REVERSE)
        assert update_from_json('{"Time": {"timestamp": 5, "scale": 1}}') == TimeUpdate(5, 1.0)

    @pytest.mark.parametrize("raw", [
        "not json",
        "update",
        "[]",
        "42",
        "{}",
        '{"Velocity": 1, "Direction": "Forward"}',
        '{"Speed": 4}',
        '{"Velocity": "fast"}',
        '{"Velocity": true}',
        '{"Velocity": 40000}',
        '{"Function": {"num": 300, "is_on": true}}',
        '{"Function": {"num": 1, "is_on": 1}}',
        '{"Function": [1, true]}',
        '{"Direction": "Sideways"}',
        '{"Time": {"timestamp": -1, "scale": 1.0}}',
        '{"Time": {"timestamp": 1, "scale": "x"}}',
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(UpdateDecodeError):
            update_from_json(raw)

    @pytest.mark.parametrize("raw", ["[" * 200000, '{"Velocity":' * 100000])
    def test_deep_nesting_rejected(self, raw):
        with pytest.raises(UpdateDecodeError):
            update_from_json(raw)

    def test_decode_error_is_value_error(self):
        with pytest.raises(ValueError):
            update_from_json("{")
