"""
tests/unit/test_presence.py — Presence Tracker Tests

Covers:
  - format_remaining / Presence.remaining_label rendering
  - apply_update sets the value and starts one countdown
  - countdown decrements 1000 ms per tick, clamps and stops at zero
  - a new update replaces a running countdown (never two at once)
  - stop() keeps the value, reset() zeroes it
  - a failing listener never stops the countdown
"""

from __future__ import annotations

import asyncio

import pytest

from gateway.presence import PresenceTracker
from gateway.protocol import Presence, format_remaining


async def _instant(_seconds):
    await asyncio.sleep(0)


def _tracker(clock=None, changes=None):
    sleep = clock.sleep if clock is not None else _instant
    on_change = changes.append if changes is not None else None
    return PresenceTracker(tick_interval=1.0, on_change=on_change, sleep=sleep)


class TestFormatRemaining:
    @pytest.mark.parametrize(
        "ms,expected",
        [
            (0, "00:00:00"),
            (999, "00:00:00"),
            (5000, "00:00:05"),
            (61_000, "00:01:01"),
            (3_600_000, "01:00:00"),
            (3_661_500, "01:01:01"),
            (-1000, "00:00:00"),
        ],
    )
    def test_render(self, ms, expected):
        assert format_remaining(ms) == expected

    def test_presence_label(self):
        assert Presence(2, 90_000).remaining_label == "00:01:30"


class TestApplyUpdate:
    @pytest.mark.asyncio
    async def test_sets_value_and_starts_countdown(self, clock):
        changes = []
        tracker = _tracker(clock, changes)
        tracker.apply_update(3, 5000)
        assert tracker.presence == Presence(3, 5000)
        assert changes == [Presence(3, 5000)]
        assert tracker.is_counting_down
        tracker.stop()

    @pytest.mark.asyncio
    async def test_zero_remaining_does_not_count(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(4, 0)
        assert tracker.presence == Presence(4, 0)
        assert not tracker.is_counting_down
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_negative_inputs_clamped(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(-1, -5000)
        assert tracker.presence == Presence(0, 0)
        assert not tracker.is_counting_down


class TestCountdown:
    @pytest.mark.asyncio
    async def test_runs_to_zero_and_stops(self):
        changes = []
        tracker = _tracker(changes=changes)
        tracker.apply_update(3, 5000)
        await tracker._countdown
        assert [p.remaining_ms for p in changes] == [5000, 4000, 3000, 2000, 1000, 0]
        assert all(p.count == 3 for p in changes)
        assert not tracker.is_counting_down

    @pytest.mark.asyncio
    async def test_one_tick_per_second(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(3, 5000)
        await clock.tick()
        assert tracker.presence == Presence(3, 4000)
        await clock.tick(4)
        assert tracker.presence == Presence(3, 0)
        assert not tracker.is_counting_down

    @pytest.mark.asyncio
    async def test_no_ticks_after_zero(self, clock):
        changes = []
        tracker = _tracker(clock, changes)
        tracker.apply_update(1, 2000)
        await clock.tick(2)
        settled = list(changes)
        await clock.tick(3)
        assert changes == settled
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_partial_second_clamps_to_zero(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(2, 1500)
        await clock.tick()
        assert tracker.presence == Presence(2, 500)
        await clock.tick()
        assert tracker.presence == Presence(2, 0)
        assert not tracker.is_counting_down

    @pytest.mark.asyncio
    async def test_update_replaces_running_countdown(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(3, 5000)
        await clock.tick()
        assert tracker.presence == Presence(3, 4000)

        tracker.apply_update(2, 10_000)
        await asyncio.sleep(0)
        assert clock.pending == 1
        await clock.tick()
        # one decrement, not two: the old countdown is gone
        assert tracker.presence == Presence(2, 9000)
        tracker.stop()

    @pytest.mark.asyncio
    async def test_update_to_zero_cancels_countdown(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(3, 5000)
        await asyncio.sleep(0)
        tracker.apply_update(3, 0)
        await clock.tick(2)
        assert tracker.presence == Presence(3, 0)
        assert not tracker.is_counting_down


class TestStopAndReset:
    @pytest.mark.asyncio
    async def test_stop_keeps_value(self, clock):
        tracker = _tracker(clock)
        tracker.apply_update(3, 5000)
        await clock.tick()
        tracker.stop()
        await clock.tick(2)
        assert tracker.presence == Presence(3, 4000)
        assert not tracker.is_counting_down

    @pytest.mark.asyncio
    async def test_reset_zeroes_value(self, clock):
        changes = []
        tracker = _tracker(clock, changes)
        tracker.apply_update(3, 5000)
        tracker.reset()
        assert tracker.presence == Presence(0, 0)
        assert changes[-1] == Presence(0, 0)
        assert not tracker.is_counting_down

    @pytest.mark.asyncio
    async def test_reset_at_zero_is_silent(self):
        changes = []
        tracker = _tracker(changes=changes)
        tracker.reset()
        assert changes == []


class TestListenerFailures:
    @pytest.mark.asyncio
    async def test_countdown_survives_listener_error(self, clock):
        seen = []

        def flaky(presence):
            seen.append(presence)
            raise RuntimeError("render failed")

        tracker = PresenceTracker(on_change=flaky, sleep=clock.sleep)
        tracker.apply_update(1, 3000)
        await clock.tick(3)
        assert tracker.presence == Presence(1, 0)
        assert len(seen) == 4
