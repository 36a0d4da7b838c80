"""
app/bridge.py — GatewayClient ⇄ Qt bridge

Threading model
--------------
    Main thread  : Qt event loop (QApplication.exec())
    Worker thread: asyncio event loop owning the GatewayClient

Cross-thread communication:
    asyncio → Qt  : GatewaySignals (Qt queues cross-thread emits)
    Qt → asyncio  : loop.call_soon_threadsafe(client.method, ...)

NEVER call GatewayClient methods directly from a Qt slot.
NEVER touch Qt widgets from the asyncio thread.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Optional, Union

from app.signals import GatewaySignals, get_signals
from gateway.gateway_client import GatewayClient
from gateway.protocol import GatewaySnapshot, InboundMessage
from observability.logger import get_logger

log = get_logger(__name__)


class GatewayLoopThread:
    """Runs a private asyncio event loop in a daemon thread."""

    def __init__(self, name: str = "asyncio-gateway"):
        self._name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("GatewayLoopThread has not been started")
        return self._loop

    def start(self) -> asyncio.AbstractEventLoop:
        if self._thread is not None:
            return self.loop
        self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
        self._thread.start()
        self._ready.wait()
        return self.loop

    def stop(self, timeout: float = 3.0) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._ready.set()
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()


class GatewayQtBridge:
    """
    Wires a GatewayClient to GatewaySignals and marshals UI requests back
    onto the client's loop.

    The bridge takes over the client's on_message / on_state_change slots.
    """

    def __init__(
        self,
        client: GatewayClient,
        loop: asyncio.AbstractEventLoop,
        signals: Optional[GatewaySignals] = None,
    ):
        self._client = client
        self._loop = loop
        self._signals = signals or get_signals()
        client.on_state_change = self._on_snapshot
        client.on_message = self._on_message
        self._last: Optional[GatewaySnapshot] = None

    @property
    def client(self) -> GatewayClient:
        return self._client

    # ── asyncio thread → Qt ───────────────────────────────────────────────────

    def _on_snapshot(self, snap: GatewaySnapshot) -> None:
        last, self._last = self._last, snap
        if last is None or last.state is not snap.state:
            self._signals.state_changed.emit(snap.state.value, snap.is_connected, snap.is_connecting)
        if last is None or last.last_error != snap.last_error:
            self._signals.error_changed.emit(snap.last_error or "")
        if last is None or last.presence != snap.presence:
            p = snap.presence
            self._signals.presence_changed.emit(p.count, p.remaining_ms, p.remaining_label)

    def _on_message(self, message: InboundMessage) -> None:
        self._signals.message_received.emit(message)

    # ── Qt → asyncio thread ───────────────────────────────────────────────────

    def _call(self, fn: Callable[..., object], *args: object) -> None:
        self._loop.call_soon_threadsafe(fn, *args)

    def request_connect(self, token: str) -> bool:
        """Token gate: blank tokens never leave the UI thread."""
        if not (token or "").strip():
            return False
        log.info("bridge.connect_requested", url=self._client.url)
        self._call(self._client.connect, token)
        return True

    def request_disconnect(self) -> None:
        self._call(self._client.disconnect)

    def request_send_text(self, text: str) -> None:
        self._call(self._client.send_text, text)

    def request_send_image_file(self, path: Union[str, Path], caption: Optional[str] = None) -> None:
        self._call(self._client.send_image_file, path, caption)
