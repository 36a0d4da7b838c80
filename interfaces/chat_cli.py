"""
interfaces/chat_cli.py — Terminal chat over the gateway

A thin REPL on top of GatewayClient. It gates on a host token, prints
inbound messages and connection changes as they arrive, and sends whatever
is typed.

Usage:
    python main.py                          # prompts for the host token
    python main.py --token "$HOST_JWT" --env prod
"""

from __future__ import annotations

import shlex
from typing import Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from gateway.gateway_client import GatewayClient
from gateway.protocol import ConnectionState, GatewaySnapshot, InboundMessage, MessageKind
from observability.logger import get_logger

log = get_logger(__name__)


_HELP_TEXT = """
## Chat Commands

| Command | Description |
|---------|-------------|
| `<text>` | Send a message (default — just type normally) |
| `/image <path> [caption]` | Send an image file with an optional caption |
| `/status` | Show connection state, participants and time left |
| `/reconnect [token]` | Reconnect, optionally with a new token |
| `/help` | Show this help |
| `exit` / `/quit` / `Ctrl+D` | Disconnect and quit |
"""

_STATE_STYLE = {
    ConnectionState.CONNECTED:    "green",
    ConnectionState.CONNECTING:   "yellow",
    ConnectionState.DISCONNECTED: "red",
}


class ChatCLI:
    """REPL front-end. Knows nothing about sockets — only GatewayClient."""

    def __init__(
        self,
        client: GatewayClient,
        token: Optional[str] = None,
        console: Optional[Console] = None,
    ):
        self._client = client
        self._token = token
        self.console = console or Console()
        self._last: Optional[GatewaySnapshot] = None
        client.on_message = self.render_message
        client.on_state_change = self.render_state

    async def start(self) -> int:
        """Unlock with a token, then run the REPL until the user quits."""
        self.console.print(Panel(
            Text("Overlay Chat", style="bold cyan"),
            subtitle=f"gateway {self._client.url}",
            box=box.DOUBLE,
            border_style="bright_cyan",
        ))

        token = self._token
        if token is None:
            from aioconsole import ainput
            try:
                token = await ainput("Host token (JWT): ")
            except (EOFError, KeyboardInterrupt):
                return 1

        if not self.unlock(token):
            self.console.print("[red]A host token is required to connect.[/]")
            return 1

        try:
            await self._repl_loop()
        finally:
            await self._client.aclose()
        return 0

    def unlock(self, token: str) -> bool:
        """Trim and submit the token; blank input never reaches the gateway."""
        accepted = self._client.connect(token)
        if accepted:
            self._token = token.strip()
        return accepted

    # ─────────────────────────────────────────────────────────────────────────
    # Rendering (called on the client's loop)
    # ─────────────────────────────────────────────────────────────────────────

    def render_message(self, message: InboundMessage) -> None:
        # everything here is remote input; never let it parse as markup
        who = f"[bold magenta]{escape(message.sender_name)}[/]"
        if message.kind is MessageKind.IMAGE:
            caption = f" {escape(message.text_content)}" if message.text_content else ""
            self.console.print(f"{who} [cyan]🖼  {escape(message.image_ref or '')}[/]{caption}")
        else:
            self.console.print(f"{who}: {escape(message.text_content or '')}")

    def render_state(self, snap: GatewaySnapshot) -> None:
        last, self._last = self._last, snap
        if last is None or last.state is not snap.state:
            style = _STATE_STYLE[snap.state]
            self.console.print(f"[{style}]● {snap.state.value}[/]")
        if snap.last_error and (last is None or last.last_error != snap.last_error):
            self.console.print(f"[red]{escape(snap.last_error)}[/]")
        if last is not None and last.presence.count != snap.presence.count:
            self.console.print(f"[dim]{snap.presence.count} participant(s) in the room[/]")

    def status_line(self) -> str:
        snap = self._client.snapshot()
        line = (
            f"{snap.state.value} · {snap.presence.count} participant(s) · "
            f"{snap.presence.remaining_label} left"
        )
        if snap.last_error:
            line += f" · {snap.last_error}"
        return line

    # ─────────────────────────────────────────────────────────────────────────
    # REPL
    # ─────────────────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        from aioconsole import ainput

        while True:
            try:
                raw = await ainput("> ")
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye![/]")
                break

            raw = raw.strip()
            if not raw:
                continue
            if raw.lower() in ("exit", "quit", "/quit"):
                self.console.print("[dim]Goodbye![/]")
                break
            self.dispatch(raw)

    def dispatch(self, raw: str) -> None:
        """Route one line of input."""
        if not raw.startswith("/"):
            if not self._client.send_text(raw):
                self.console.print("[dim]Not connected — message not sent.[/]")
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == "/help":
            self.console.print(Markdown(_HELP_TEXT))
        elif cmd == "/status":
            self.console.print(self.status_line(), markup=False)
        elif cmd == "/image":
            self._cmd_image(arg)
        elif cmd == "/reconnect":
            if arg.strip():
                self.unlock(arg)
            elif self._token:
                self._client.connect(self._token)
        else:
            self.console.print(f"[dim]Unknown command: {escape(cmd)}. Type /help.[/]")

    def _cmd_image(self, arg: str) -> None:
        try:
            words = shlex.split(arg)
        except ValueError as exc:
            self.console.print(f"[red]{escape(str(exc))}[/]")
            return
        if not words:
            self.console.print("[dim]Usage: /image <path> \\[caption][/]")
            return
        path, caption = words[0], " ".join(words[1:]) or None
        if not self._client.send_image_file(path, caption):
            self.console.print(f"[red]Could not send {escape(path)} (not connected or not a file).[/]")


async def run_chat_cli(settings, log_, token: Optional[str] = None) -> int:
    """Entry point used by main.py."""
    client = GatewayClient.from_settings(settings)
    log_.info("chat_cli.starting", url=client.url)
    cli = ChatCLI(client, token=token or settings.gateway_token)
    return await cli.start()
