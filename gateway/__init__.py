"""
gateway/ — Realtime Chat Gateway Client

Keeps an authenticated, auto-reconnecting Socket.IO connection to the chat
gateway, normalizes its drifting payload shapes, and exposes one facade
(GatewayClient) for the UI layers to observe and drive.
"""

from gateway.protocol import (
    ConnectionState,
    EventName,
    GatewaySnapshot,
    InboundMessage,
    MessageKind,
    Presence,
    format_remaining,
)
from gateway.presence import PresenceTracker
from gateway.connection import GatewayConnection, ReconnectPolicy
from gateway.gateway_client import GatewayClient

__all__ = [
    "ConnectionState",
    "EventName",
    "GatewaySnapshot",
    "InboundMessage",
    "MessageKind",
    "Presence",
    "format_remaining",
    "PresenceTracker",
    "GatewayConnection",
    "ReconnectPolicy",
    "GatewayClient",
]
