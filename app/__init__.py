"""
app/__init__.py — Qt host integration

A Qt overlay embeds the gateway by starting it on a background asyncio
thread and listening to GatewaySignals on the GUI thread.

Usage::

    from app import attach_gateway
    bridge, worker = attach_gateway(settings)
    get_signals().message_received.connect(panel.append_message)
    bridge.request_connect(token_field.text())
    ...
    detach_gateway(bridge, worker)      # on Quit
"""

from __future__ import annotations

import asyncio
from typing import Optional

from app.bridge import GatewayLoopThread, GatewayQtBridge
from app.signals import GatewaySignals


def attach_gateway(
    settings,
    signals: Optional[GatewaySignals] = None,
) -> tuple[GatewayQtBridge, GatewayLoopThread]:
    """Start the asyncio worker thread and wire a GatewayClient to Qt signals."""
    from gateway.gateway_client import GatewayClient

    worker = GatewayLoopThread()
    loop = worker.start()
    client = GatewayClient.from_settings(settings)
    return GatewayQtBridge(client, loop, signals), worker


def detach_gateway(bridge: GatewayQtBridge, worker: GatewayLoopThread, timeout: float = 3.0) -> None:
    """Disconnect on the worker loop, then stop the thread."""
    future = asyncio.run_coroutine_threadsafe(bridge.client.aclose(), worker.loop)
    try:
        future.result(timeout=timeout)
    finally:
        worker.stop(timeout=timeout)
