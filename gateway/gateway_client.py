"""
gateway/gateway_client.py — Chat Gateway Client

The one object the rest of the application touches. Composes the payload
codec, the presence tracker and the gateway connection, and republishes
their state as a single GatewaySnapshot.

Usage:
    async with GatewayClient.from_settings(settings) as client:
        client.on_message = render
        client.on_state_change = lambda snap: print(snap.state, snap.last_error)
        client.connect(token)
        ...
        client.send_text("hello")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Optional, Union

import socketio

from gateway.connection import GatewayConnection, MessageListener, ReconnectPolicy
from gateway.presence import PresenceTracker
from gateway.protocol import ConnectionState, GatewaySnapshot, InboundMessage, Presence
from observability.logger import get_logger

log = get_logger(__name__)

SnapshotListener = Callable[[GatewaySnapshot], None]


class GatewayClient:
    """
    Facade over the chat gateway.

    Async context manager — disconnects and stops its background tasks on
    exit. Every method returns immediately; outcomes arrive through
    on_state_change and on_message.
    """

    def __init__(
        self,
        url: str,
        path: str = "/ws",
        *,
        reconnect: Optional[ReconnectPolicy] = None,
        websocket_only: bool = True,
        image_dir: Optional[Union[str, Path]] = None,
        presence_tick: float = 1.0,
        transport: Optional[socketio.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._tracker = PresenceTracker(
            tick_interval=presence_tick,
            on_change=self._on_presence_change,
            sleep=sleep,
        )
        self._connection = GatewayConnection(
            url,
            path,
            tracker=self._tracker,
            reconnect=reconnect,
            websocket_only=websocket_only,
            image_dir=image_dir,
            transport=transport,
        )
        self._connection.on_state_change = self._on_connection_change
        self._connection.on_message = self._on_connection_message
        self._on_message: Optional[MessageListener] = None
        self.on_state_change: Optional[SnapshotListener] = None

    @classmethod
    def from_settings(cls, settings, **overrides) -> "GatewayClient":
        """Build a client from Settings (config.yaml + .env)."""
        gw = settings.gateway
        rc = gw.reconnect
        kwargs = dict(
            path=gw.path,
            reconnect=ReconnectPolicy(
                initial_delay=rc.initial_delay,
                max_delay=rc.max_delay,
                randomization_factor=rc.randomization_factor,
                max_attempts=rc.max_attempts,
            ),
            websocket_only=gw.websocket_only,
            image_dir=gw.image_directory,
            presence_tick=gw.presence_tick_seconds,
        )
        kwargs.update(overrides)
        return cls(settings.gateway_url, **kwargs)

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────────────
    # Observable state
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return self._connection.url

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.state is ConnectionState.CONNECTING

    @property
    def last_error(self) -> Optional[str]:
        return self._connection.last_error

    @property
    def presence(self) -> Presence:
        return self._tracker.presence

    def snapshot(self) -> GatewaySnapshot:
        return GatewaySnapshot(
            state=self.state,
            last_error=self.last_error,
            presence=self.presence,
        )

    @property
    def on_message(self) -> Optional[MessageListener]:
        return self._on_message

    @on_message.setter
    def on_message(self, listener: Optional[MessageListener]) -> None:
        # single slot: a new registration replaces the old one outright
        self._on_message = listener

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    def connect(self, token: str) -> bool:
        """
        Connect with a bearer token. A blank token is refused without any
        state change; returns whether a connection attempt was made.
        """
        credential = (token or "").strip()
        if not credential:
            log.info("gateway_client.connect.rejected", reason="empty token")
            return False
        self._connection.connect(credential)
        return True

    def disconnect(self) -> None:
        self._connection.disconnect()

    def send_text(self, text: str) -> bool:
        return self._connection.send_text(text)

    def send_image(
        self,
        data: bytes,
        filename: str,
        mime: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> bool:
        return self._connection.send_image(data, filename, mime, caption)

    def send_image_file(self, path: Union[str, Path], caption: Optional[str] = None) -> bool:
        return self._connection.send_image_file(path, caption)

    async def wait_idle(self) -> None:
        await self._connection.wait_idle()

    async def aclose(self) -> None:
        await self._connection.aclose()

    # ─────────────────────────────────────────────────────────────────────────
    # Fan-in from components
    # ─────────────────────────────────────────────────────────────────────────

    def _on_connection_change(self, state: ConnectionState, last_error: Optional[str]) -> None:
        self._notify()

    def _on_presence_change(self, presence: Presence) -> None:
        self._notify()

    def _on_connection_message(self, message: InboundMessage) -> None:
        if self._on_message is not None:
            self._on_message(message)

    def _notify(self) -> None:
        if self.on_state_change is not None:
            self.on_state_change(self.snapshot())
