"""
app/signals.py — Gateway Qt Signal Bridge

Defines the Qt signals used to carry gateway state from the asyncio thread
(where GatewayClient lives) to the Qt GUI thread. This is the ONLY safe way
to update Qt widgets from asyncio callbacks running in a different thread.

Architecture
------------
    asyncio thread (GatewayClient)
        └── GatewayQtBridge emits  → Qt queues the call
    Qt main thread
        └── slots update the chat panel / status pill

Signal inventory
----------------
    state_changed     — connection state value + is_connected + is_connecting
    error_changed     — last_error text ("" when cleared)
    presence_changed  — participant count, remaining_ms, "HH:MM:SS" label
    message_received  — InboundMessage to render
"""

from __future__ import annotations

from PyQt6.QtCore import QObject, pyqtSignal


class GatewaySignals(QObject):
    """
    Singleton QObject that owns the gateway's Qt signals.

    Usage::

        signals = get_signals()
        signals.message_received.connect(chat_panel.append_message)

    Never instantiate directly in app code — use get_signals().
    """

    state_changed = pyqtSignal(str, bool, bool)        # state, is_connected, is_connecting
    error_changed = pyqtSignal(str)                    # last_error or ""
    presence_changed = pyqtSignal(int, int, str)       # count, remaining_ms, label
    message_received = pyqtSignal(object)              # InboundMessage


_signals: GatewaySignals | None = None


def get_signals() -> GatewaySignals:
    """Return the application-wide signal singleton. Created on first call."""
    global _signals
    if _signals is None:
        _signals = GatewaySignals()
    return _signals
