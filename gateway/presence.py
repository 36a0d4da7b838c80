"""
gateway/presence.py — Presence Tracker

Owns the room's Presence value and the local countdown that decays
remaining_ms between server pushes.

Rules
-----
* Exactly one countdown task handle at a time. apply_update() cancels the
  old handle before it installs the new one, and both steps run inside one
  synchronous call on the event loop, so two countdowns never overlap.
* The countdown subtracts 1000 ms per tick, clamps at zero, and ends itself
  once zero is reached. Nothing ticks again until the next apply_update().
* count is never touched locally; only the server changes it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional

from gateway.protocol import Presence
from observability.logger import get_logger

log = get_logger(__name__)

DECREMENT_MS = 1000

PresenceListener = Callable[[Presence], None]


class PresenceTracker:
    """
    Authoritative presence state plus its 1-second countdown.

    Must be driven from the event loop that owns the gateway state; the
    countdown task is created on the running loop.
    """

    def __init__(
        self,
        tick_interval: float = 1.0,
        on_change: Optional[PresenceListener] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._tick_interval = tick_interval
        self._sleep = sleep
        self.on_change = on_change
        self._presence = Presence()
        self._countdown: Optional[asyncio.Task] = None

    @property
    def presence(self) -> Presence:
        return self._presence

    @property
    def is_counting_down(self) -> bool:
        return self._countdown is not None and not self._countdown.done()

    def apply_update(self, count: int, remaining_ms: int) -> None:
        """Replace presence with a server value and restart the countdown."""
        self._cancel_countdown()
        presence = Presence(count=max(0, count), remaining_ms=max(0, remaining_ms))
        self._set(presence)
        if presence.remaining_ms > 0:
            self._countdown = asyncio.get_running_loop().create_task(
                self._run_countdown(), name="presence-countdown"
            )
        log.debug(
            "presence.updated",
            count=presence.count,
            remaining_ms=presence.remaining_ms,
            counting=self.is_counting_down,
        )

    def stop(self) -> None:
        """Halt the countdown, keeping the last value."""
        self._cancel_countdown()

    def reset(self) -> None:
        """Halt the countdown and return to the zero value."""
        self._cancel_countdown()
        if self._presence != Presence():
            self._set(Presence())

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _cancel_countdown(self) -> None:
        task, self._countdown = self._countdown, None
        if task is not None and not task.done():
            task.cancel()

    async def _run_countdown(self) -> None:
        me = asyncio.current_task()
        try:
            while True:
                await self._sleep(self._tick_interval)
                remaining = max(0, self._presence.remaining_ms - DECREMENT_MS)
                self._set(Presence(count=self._presence.count, remaining_ms=remaining))
                if remaining == 0:
                    log.debug("presence.countdown.finished")
                    return
        finally:
            if self._countdown is me:
                self._countdown = None

    def _set(self, presence: Presence) -> None:
        self._presence = presence
        if self.on_change is None:
            return
        try:
            self.on_change(presence)
        except Exception:
            log.exception("presence.listener_failed")
