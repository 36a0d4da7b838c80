"""
Shared fakes for the gateway unit tests.

FakeTransport stands in for socketio.AsyncClient: it records handler
registrations, connect calls and emits, and lets a test fire server events
straight into the registered handlers.

ManualClock replaces asyncio.sleep for the presence countdown so a test can
advance "seconds" one tick at a time.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest


class FakeTransport:
    def __init__(self) -> None:
        self.handlers: dict[str, Any] = {}
        self.connect_calls: list[tuple[str, dict]] = []
        self.emitted: list[tuple[str, Any]] = []
        self.shutdown_calls = 0
        # refusal: connect_error(refusal_payload) fires, then connect raises connect_exc
        self.connect_exc: Optional[BaseException] = None
        self.refusal_payload: Any = None
        # when set, connect() blocks until the event is set (or it is cancelled)
        self.connect_gate: Optional[asyncio.Event] = None
        self.fail_next_emit: Optional[BaseException] = None

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler
        return handler

    async def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_exc is not None:
            if self.refusal_payload is not None:
                await self.fire("connect_error", self.refusal_payload)
            raise self.connect_exc

    async def emit(self, event, data=None, **kwargs):
        if self.fail_next_emit is not None:
            exc, self.fail_next_emit = self.fail_next_emit, None
            raise exc
        self.emitted.append((event, data))

    async def shutdown(self):
        self.shutdown_calls += 1

    async def fire(self, event: str, *args: Any) -> None:
        await self.handlers[event](*args)

    def app_emits(self) -> list[tuple[str, Any]]:
        """Emits other than the join / presence request sent on connect."""
        return [e for e in self.emitted if e[0] not in ("join", "getPresence")]


class ManualClock:
    def __init__(self) -> None:
        self._waiters: list[asyncio.Future] = []

    async def sleep(self, _seconds: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        await fut

    @property
    def pending(self) -> int:
        return sum(1 for f in self._waiters if not f.done())

    async def tick(self, times: int = 1) -> None:
        for _ in range(times):
            # let freshly created countdown tasks reach their first sleep
            await settle()
            waiters, self._waiters = self._waiters, []
            for fut in waiters:
                if not fut.done():
                    fut.set_result(None)
            await settle()


async def settle(rounds: int = 3) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
