"""
exceptions.py — Overlay Chat Unified Error Hierarchy

All gateway-client exceptions live here. Every layer raises typed subclasses
of GatewayClientError — never bare Exception.

Import from here, not from individual modules:
    from exceptions import MalformedPayloadError, MaterializationError

Hierarchy:
    GatewayClientError
    ├── ConnectionLayerError
    │   ├── HandshakeRejectedError
    │   └── TransportError
    ├── PayloadError
    │   ├── MalformedPayloadError
    │   └── MaterializationError
    └── ConfigError

Connection-layer errors are never raised into UI code: the connection turns
them into a state transition plus a `last_error` string. They exist so the
diagnostic text is built in one place.
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class GatewayClientError(Exception):
    """Base class for all gateway client exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Connection layer
# ─────────────────────────────────────────────────────────────────────────────

class ConnectionLayerError(GatewayClientError):
    """Base for transport / handshake failures."""

    prefix = "Socket error"

    @property
    def diagnostic(self) -> str:
        """Human-readable text suitable for `last_error`."""
        detail = str(self)
        return f"{self.prefix}: {detail}" if detail else self.prefix


class HandshakeRejectedError(ConnectionLayerError):
    """The gateway refused the credential during the handshake."""

    prefix = "Disconnected"


class TransportError(ConnectionLayerError):
    """Generic socket-level failure (DNS, refused connection, dropped stream)."""


# ─────────────────────────────────────────────────────────────────────────────
# Payload layer
# ─────────────────────────────────────────────────────────────────────────────

class PayloadError(GatewayClientError):
    """Base for inbound payload problems."""


class MalformedPayloadError(PayloadError):
    """An inbound item could not be decoded and must be dropped."""

    def __init__(self, event: str, reason: str) -> None:
        self.event = event
        self.reason = reason
        super().__init__(f"Malformed '{event}' payload: {reason}")


class MaterializationError(PayloadError):
    """Received image bytes could not be written to a local file."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Could not write image to '{path}': {reason}")


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(GatewayClientError):
    """Raised by Settings.validate_all() when configuration problems are found."""
