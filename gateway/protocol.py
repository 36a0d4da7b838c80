"""
gateway/protocol.py — Chat Gateway Event Protocol

Socket.IO event names plus the canonical value types the rest of the
application sees. Wire payloads are plain JSON-like dicts; binary image data
travels as a Socket.IO attachment.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


# ─────────────────────────────────────────────────────────────────────────────
# Event names
# ─────────────────────────────────────────────────────────────────────────────

class EventName(str, Enum):
    """All application events in the gateway protocol."""

    # Client → Server
    JOIN             = "join"
    PRESENCE_REQUEST = "getPresence"
    SEND_MESSAGE     = "sendMessage"
    SEND_IMAGE       = "sendImage"

    # Server → Client
    PRESENCE_UPDATE  = "presenceUpdate"
    PRESENCE         = "presence"
    ROOM_PRESENCE    = "roomPresence"
    NEW_MESSAGE      = "newMessage"
    SESSION_ENDED    = "sessionEnded"


# Every alias the server has used for a presence push, oldest first.
PRESENCE_EVENTS: tuple[EventName, ...] = (
    EventName.PRESENCE_UPDATE,
    EventName.PRESENCE,
    EventName.ROOM_PRESENCE,
)

SYSTEM_SENDER = "System"
SESSION_ENDED_TEXT = "— Session ended —"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING   = "connecting"
    CONNECTED    = "connected"


class MessageKind(str, Enum):
    TEXT  = "text"
    IMAGE = "image"


# ─────────────────────────────────────────────────────────────────────────────
# Inbound values
# ─────────────────────────────────────────────────────────────────────────────

def format_remaining(ms: int) -> str:
    """HH:MM:SS from milliseconds (negative input renders as zero)."""
    total = max(0, ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class Presence:
    """Participant count and time left in the session."""
    count: int = 0
    remaining_ms: int = 0

    @property
    def remaining_label(self) -> str:
        return format_remaining(self.remaining_ms)


@dataclass(frozen=True)
class InboundMessage:
    """
    A decoded chat message ready for rendering.

    TEXT messages always carry non-empty text_content. IMAGE messages always
    carry image_ref: either the sender's remote URL or the path of a file the
    codec wrote locally. text_content on an IMAGE is the optional caption.
    """
    kind: MessageKind
    sender_name: str
    text_content: Optional[str] = None
    image_ref: Optional[str] = None

    @classmethod
    def system(cls, text: str) -> "InboundMessage":
        return cls(kind=MessageKind.TEXT, sender_name=SYSTEM_SENDER, text_content=text)


@dataclass(frozen=True)
class GatewaySnapshot:
    """Point-in-time copy of everything an observer may render."""
    state: ConnectionState
    last_error: Optional[str]
    presence: Presence

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.state is ConnectionState.CONNECTING


# ─────────────────────────────────────────────────────────────────────────────
# Outbound values
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class OutboundTextMessage:
    content: str

    event = EventName.SEND_MESSAGE

    def to_payload(self) -> dict[str, Any]:
        return {"type": MessageKind.TEXT.value, "content": self.content}


@dataclass
class OutboundImageMessage:
    """Image send: a metadata dict and the raw bytes as one attachment-bearing emit."""
    data: bytes
    name: str
    mime_type: str
    caption: Optional[str] = None

    event = EventName.SEND_IMAGE

    def metadata(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.mime_type, "size": len(self.data)}

    def to_payload(self) -> tuple[dict[str, Any], bytes]:
        return (self.metadata(), self.data)


@dataclass
class OutboundImageFile:
    """Image-by-path send; bytes are read by the outbox writer off the loop."""
    path: str
    caption: Optional[str] = None
