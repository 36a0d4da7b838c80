"""
gateway/connection.py — Gateway Connection

Owns the Socket.IO transport handle and the connection state machine:

    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED
    CONNECTING → DISCONNECTED              (refused / handshake rejected)

Threading model
---------------
Transport handlers never touch state. Each one posts an _InboundEvent onto
the inbox queue; a single dispatcher task drains it and applies one event at
a time, so callback-originated updates never interleave. Sends go the other
way through an outbox drained by a single writer task, which keeps wire
order equal to call order.

Every event carries the session epoch it was produced under. disconnect()
bumps the epoch, so anything already queued (or mid-decode) when the user
disconnects is discarded instead of resurrecting state.

Reconnection belongs to the transport (python-socketio's own backoff loop,
configured from ReconnectPolicy). This class never retries by itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import socketio

from exceptions import ConnectionLayerError, HandshakeRejectedError, PayloadError, TransportError
from gateway import codec
from gateway.presence import PresenceTracker
from gateway.protocol import (
    PRESENCE_EVENTS,
    SESSION_ENDED_TEXT,
    ConnectionState,
    EventName,
    InboundMessage,
    OutboundImageFile,
    OutboundImageMessage,
    OutboundTextMessage,
)
from observability.logger import get_logger

log = get_logger(__name__)

MessageListener = Callable[[InboundMessage], None]
StateListener = Callable[[ConnectionState, Optional[str]], None]

Outbound = Union[EventName, OutboundTextMessage, OutboundImageMessage, OutboundImageFile]

_KEEP = object()   # sentinel: leave last_error as it is


@dataclass(frozen=True)
class ReconnectPolicy:
    """Backoff knobs handed to the transport (seconds; 0 attempts = unlimited)."""
    initial_delay: float = 2.0
    max_delay: float = 10.0
    randomization_factor: float = 0.5
    max_attempts: int = 0


@dataclass(frozen=True)
class _InboundEvent:
    epoch: int
    name: str
    args: tuple[Any, ...] = field(default=())


def build_transport(policy: ReconnectPolicy) -> socketio.AsyncClient:
    """The one Socket.IO client a connection owns for its whole life."""
    return socketio.AsyncClient(
        reconnection=True,
        reconnection_attempts=policy.max_attempts,
        reconnection_delay=policy.initial_delay,
        reconnection_delay_max=policy.max_delay,
        randomization_factor=policy.randomization_factor,
        logger=False,
    )


def classify_connect_error(data: Any) -> ConnectionLayerError:
    """
    Map a `connect_error` payload to the error taxonomy.

    A server-side refusal arrives as {"message": ...} (the handshake middleware
    rejected the token); transport failures arrive as a bare string.
    """
    if isinstance(data, dict):
        message = data.get("message")
        if isinstance(message, str) and message.strip():
            return HandshakeRejectedError(message.strip())
    detail = "" if data is None else str(data).strip()
    return TransportError(detail)


class GatewayConnection:
    """
    Socket lifecycle, inbound dispatch and outbound sends.

    All public methods are synchronous, return immediately, and must be
    called on the event loop that owns the gateway.
    """

    def __init__(
        self,
        url: str,
        path: str = "/ws",
        *,
        tracker: PresenceTracker,
        reconnect: Optional[ReconnectPolicy] = None,
        websocket_only: bool = True,
        image_dir: Optional[Union[str, Path]] = None,
        transport: Optional[socketio.AsyncClient] = None,
    ):
        self._url = url
        self._path = path
        self._tracker = tracker
        self._websocket_only = websocket_only
        self._image_dir = image_dir
        self._transport = transport if transport is not None else build_transport(
            reconnect or ReconnectPolicy()
        )

        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self.on_message: Optional[MessageListener] = None
        self.on_state_change: Optional[StateListener] = None

        self._epoch = 0
        self._transport_epoch = 0
        self._transport_open = False
        self._credential: Optional[str] = None
        self._opening: Optional[asyncio.Task] = None
        self._teardown: Optional[asyncio.Task] = None

        self._inbox: Optional[asyncio.Queue] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._pumps: list[asyncio.Task] = []

        self._register_handlers()

    # ─────────────────────────────────────────────────────────────────────────
    # Observable state
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def connect(self, credential: str) -> None:
        """
        Start connecting with `credential` as the handshake token.

        Never holds two transports at once. If one is already open (connecting,
        or inside its own reconnect loop) with the same credential, the call
        only resets the error and lets that transport carry on. A different
        credential retires the open transport and starts a fresh attempt once
        it has shut down, since the transport replays its handshake token on
        every retry.

        After a failed handshake the state stays DISCONNECTED (with
        last_error set) while the transport keeps retrying in the background;
        the next successful retry moves it straight to CONNECTED.
        """
        loop = self._ensure_pumps()

        if self._state is ConnectionState.CONNECTED:
            self._set_state(ConnectionState.CONNECTED, error=None)
            log.info("gateway.connect.already_connected")
            return

        if self._transport_open:
            if credential == self._credential:
                self._set_state(ConnectionState.CONNECTING, error=None)
                log.info("gateway.connect.transport_busy")
                return
            log.info("gateway.connect.credential_changed")
            self._retire_transport()

        self._set_state(ConnectionState.CONNECTING, error=None)
        self._epoch += 1
        self._credential = credential
        self._transport_open = True
        self._opening = loop.create_task(
            self._open(credential, self._epoch), name="gateway-open"
        )

    def disconnect(self) -> None:
        """
        End the session: halt reconnection, stop the presence countdown, and
        discard in-flight events. The DISCONNECTED transition is the last
        notification this session produces.
        """
        self._epoch += 1
        self._tracker.stop()
        self._retire_transport()

        previous = self._state
        self._set_state(ConnectionState.DISCONNECTED)
        log.info("gateway.disconnect.requested", previous=previous.value)

    async def wait_idle(self) -> None:
        """Wait until every queued inbound event and outbound send is handled."""
        if self._inbox is not None:
            await self._inbox.join()
        if self._outbox is not None:
            await self._outbox.join()

    async def aclose(self) -> None:
        """disconnect(), wait for the transport to shut down, stop the pumps."""
        self.disconnect()
        if self._teardown is not None:
            await self._teardown
        pumps, self._pumps = self._pumps, []
        for task in pumps:
            task.cancel()
        if pumps:
            await asyncio.gather(*pumps, return_exceptions=True)
        self._inbox = None
        self._outbox = None

    # ─────────────────────────────────────────────────────────────────────────
    # Sends
    # ─────────────────────────────────────────────────────────────────────────

    def send_text(self, text: str) -> bool:
        """Queue a text message. Returns False (and sends nothing) when not
        connected or when the text is blank."""
        if self._state is not ConnectionState.CONNECTED:
            return False
        content = (text or "").strip()
        if not content:
            return False
        self._enqueue(OutboundTextMessage(content))
        return True

    def send_image(
        self,
        data: bytes,
        filename: str,
        mime: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> bool:
        """Queue image bytes (metadata + attachment), then an optional caption."""
        if self._state is not ConnectionState.CONNECTED or not data:
            return False
        name = (filename or "").strip() or "image"
        self._enqueue(
            OutboundImageMessage(
                data=bytes(data),
                name=name,
                mime_type=codec.infer_mime_type(name, mime),
                caption=_clean_caption(caption),
            )
        )
        return True

    def send_image_file(self, path: Union[str, Path], caption: Optional[str] = None) -> bool:
        """Queue an image read from disk. The file is read by the writer task."""
        if self._state is not ConnectionState.CONNECTED:
            return False
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            log.warning("gateway.send_image.not_a_file", path=str(file_path))
            return False
        self._enqueue(OutboundImageFile(path=str(file_path), caption=_clean_caption(caption)))
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Transport handlers: post only, never mutate
    # ─────────────────────────────────────────────────────────────────────────

    def _register_handlers(self) -> None:
        on = self._transport.on
        on("connect", self._on_transport_connect)
        on("disconnect", self._on_transport_disconnect)
        on("connect_error", self._on_transport_error)
        for name in PRESENCE_EVENTS:
            on(name.value, self._on_presence)
        on(EventName.NEW_MESSAGE.value, self._on_new_message)
        on(EventName.SESSION_ENDED.value, self._on_session_ended)

    async def _on_transport_connect(self) -> None:
        self._post("connect")

    async def _on_transport_disconnect(self, reason: Any = None) -> None:
        self._post("disconnect", reason)

    async def _on_transport_error(self, data: Any = None) -> None:
        self._post("error", data)

    async def _on_presence(self, *args: Any) -> None:
        self._post("presence", *args)

    async def _on_new_message(self, *args: Any) -> None:
        self._post("message", *args)

    async def _on_session_ended(self, *args: Any) -> None:
        self._post("session_ended")

    def _post(self, name: str, *args: Any) -> None:
        if self._inbox is None:
            return
        self._inbox.put_nowait(_InboundEvent(self._transport_epoch, name, args))

    # ─────────────────────────────────────────────────────────────────────────
    # Dispatcher: the only place connection state changes after connect()
    # ─────────────────────────────────────────────────────────────────────────

    async def _dispatch_loop(self) -> None:
        inbox = self._inbox
        handlers = {
            "connect":       self._apply_connect,
            "disconnect":    self._apply_disconnect,
            "error":         self._apply_error,
            "closed":        self._apply_closed,
            "presence":      self._apply_presence,
            "message":       self._apply_message,
            "session_ended": self._apply_session_ended,
        }
        while True:
            event = await inbox.get()
            try:
                if event.epoch != self._epoch:
                    log.debug("gateway.event.stale", gateway_event=event.name)
                    continue
                await handlers[event.name](event)
            except Exception:
                log.exception("gateway.event.failed", gateway_event=event.name)
            finally:
                inbox.task_done()

    async def _apply_connect(self, event: _InboundEvent) -> None:
        self._enqueue(EventName.JOIN)
        self._enqueue(EventName.PRESENCE_REQUEST)
        self._set_state(ConnectionState.CONNECTED, error=None)
        log.info("gateway.connected", url=self._url)

    async def _apply_disconnect(self, event: _InboundEvent) -> None:
        reason = event.args[0] if event.args else None
        reason_text = "" if reason is None else str(reason).strip()
        if reason_text:
            self._set_state(ConnectionState.DISCONNECTED, error=f"Disconnected: {reason_text}")
        else:
            self._set_state(ConnectionState.DISCONNECTED)
        log.warning("gateway.disconnected", reason=reason_text or None)

    async def _apply_error(self, event: _InboundEvent) -> None:
        error = classify_connect_error(event.args[0] if event.args else None)
        self._set_state(ConnectionState.DISCONNECTED, error=error.diagnostic)
        log.warning("gateway.connect_error", kind=type(error).__name__, detail=str(error))

    async def _apply_closed(self, event: _InboundEvent) -> None:
        # connect() gave up; keep the more specific connect_error text if any
        if self._last_error is None:
            detail = event.args[0] if event.args else ""
            self._set_state(ConnectionState.DISCONNECTED, error=TransportError(detail).diagnostic)
        else:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _apply_presence(self, event: _InboundEvent) -> None:
        presence = codec.decode_presence(event.args[0] if event.args else None)
        self._tracker.apply_update(presence.count, presence.remaining_ms)

    async def _apply_message(self, event: _InboundEvent) -> None:
        try:
            # may write an image file; keep disk I/O off the loop
            message = await asyncio.to_thread(codec.decode_message, event.args, self._image_dir)
        except PayloadError as exc:
            log.debug("gateway.message.dropped", reason=str(exc))
            return
        if event.epoch != self._epoch:
            log.debug("gateway.message.stale")
            return
        self._deliver(message)

    async def _apply_session_ended(self, event: _InboundEvent) -> None:
        log.info("gateway.session_ended")
        self._deliver(InboundMessage.system(SESSION_ENDED_TEXT))

    def _deliver(self, message: InboundMessage) -> None:
        if self.on_message is None:
            return
        try:
            self.on_message(message)
        except Exception:
            log.exception("gateway.message_listener_failed")

    def _set_state(self, state: ConnectionState, error: Any = _KEEP) -> None:
        new_error = self._last_error if error is _KEEP else error
        if state is self._state and new_error == self._last_error:
            return
        self._state = state
        self._last_error = new_error
        log.debug("gateway.state", state=state.value, last_error=new_error)
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(state, new_error)
        except Exception:
            log.exception("gateway.state_listener_failed")

    # ─────────────────────────────────────────────────────────────────────────
    # Outbox writer
    # ─────────────────────────────────────────────────────────────────────────

    def _enqueue(self, item: Outbound) -> None:
        if self._outbox is not None:
            self._outbox.put_nowait((self._epoch, item))

    async def _write_loop(self) -> None:
        outbox = self._outbox
        while True:
            epoch, item = await outbox.get()
            try:
                if epoch == self._epoch:
                    await self._write(epoch, item)
            except (socketio.exceptions.SocketIOError, OSError) as exc:
                log.warning("gateway.send_failed", item=type(item).__name__, error=str(exc))
            except Exception:
                log.exception("gateway.send_crashed", item=type(item).__name__)
            finally:
                outbox.task_done()

    async def _write(self, epoch: int, item: Outbound) -> None:
        if isinstance(item, EventName):
            await self._transport.emit(item.value)
        elif isinstance(item, OutboundTextMessage):
            await self._transport.emit(item.event.value, item.to_payload())
        elif isinstance(item, OutboundImageMessage):
            await self._emit_image(item)
        elif isinstance(item, OutboundImageFile):
            path = Path(item.path)
            data = await asyncio.to_thread(path.read_bytes)
            if epoch != self._epoch or not data:
                return
            await self._emit_image(
                OutboundImageMessage(
                    data=data,
                    name=path.name,
                    mime_type=codec.infer_mime_type(path.name, None),
                    caption=item.caption,
                )
            )

    async def _emit_image(self, message: OutboundImageMessage) -> None:
        # a tuple becomes positional args: metadata, then the binary attachment
        await self._transport.emit(message.event.value, message.to_payload())
        log.info("gateway.image.sent", name=message.name, size=len(message.data))
        if message.caption:
            await self._transport.emit(
                EventName.SEND_MESSAGE.value,
                OutboundTextMessage(message.caption).to_payload(),
            )

    # ─────────────────────────────────────────────────────────────────────────
    # Transport open / close
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_pumps(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()
        if not self._pumps:
            self._inbox = asyncio.Queue()
            self._outbox = asyncio.Queue()
            self._pumps = [
                loop.create_task(self._dispatch_loop(), name="gateway-dispatch"),
                loop.create_task(self._write_loop(), name="gateway-write"),
            ]
        return loop

    def _retire_transport(self) -> None:
        """Cancel a pending open and schedule shutdown of the open transport."""
        opening, self._opening = self._opening, None
        if opening is not None and not opening.done():
            opening.cancel()

        if self._transport_open:
            self._transport_open = False
            self._credential = None
            self._teardown = asyncio.get_running_loop().create_task(
                self._close(opening, self._teardown), name="gateway-close"
            )

    async def _open(self, credential: str, epoch: int) -> None:
        if self._teardown is not None:
            await self._teardown
        if epoch != self._epoch:
            return
        self._transport_epoch = epoch
        log.info("gateway.connecting", url=self._url, path=self._path)
        try:
            await self._transport.connect(
                self._url,
                auth={"token": credential},
                socketio_path=self._path,
                transports=["websocket"] if self._websocket_only else None,
                retry=True,
            )
        except socketio.exceptions.ConnectionError as exc:
            if epoch != self._epoch:
                return
            self._transport_open = False
            self._post("closed", str(exc))

    async def _close(
        self,
        opening: Optional[asyncio.Task],
        previous: Optional[asyncio.Task] = None,
    ) -> None:
        pending = [t for t in (previous, opening) if t is not None]
        if pending:
            await asyncio.wait(pending)
        try:
            await self._transport.shutdown()
        except (socketio.exceptions.SocketIOError, OSError) as exc:
            log.warning("gateway.close_failed", error=str(exc))
        log.info("gateway.transport_closed")


def _clean_caption(caption: Optional[str]) -> Optional[str]:
    if caption is None:
        return None
    return caption.strip() or None
