#!/usr/bin/env python3
"""Shell Chat CLI - Terminal client for the estimate assistant backend.

Posts each turn to ``/api/chat`` as multipart form data and renders the
streamed reply live with rich.
"""

import argparse
import asyncio
import json
import mimetypes
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.text import Text

# Cache directory for thread persistence
CACHE_DIR = Path.home() / ".cache" / "estimate-chat"
THREAD_FILE = CACHE_DIR / "thread_id"

NO_CONTENT_MESSAGE = "Sorry, I encountered an error. Please try again."

# Styles
USER_STYLE = Style(color="bright_blue", bold=True)
ASSISTANT_STYLE = Style(color="bright_green")
TOOL_STYLE = Style(color="yellow")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")


class ShellChat:
    """Terminal chat client for the estimate assistant."""

    def __init__(self, server_url: str):
        self.server_url = server_url.rstrip("/")
        self.thread_id: Optional[str] = None
        self.pending_files: list[Path] = []
        self.console = Console()
        self.running = True
        self._load_thread()

    def _load_thread(self) -> None:
        """Load thread ID from cache file."""
        try:
            if THREAD_FILE.exists():
                self.thread_id = THREAD_FILE.read_text().strip() or None
                if self.thread_id:
                    self.console.print(f"[dim]Resuming thread: {self.thread_id}[/dim]")
        except OSError:
            self.thread_id = None

    def _save_thread(self) -> None:
        """Save thread ID to cache file."""
        try:
            CACHE_DIR.mkdir(parents=True, exist_ok=True)
            if self.thread_id:
                THREAD_FILE.write_text(self.thread_id)
        except OSError as exc:
            self.console.print(f"[dim]Could not persist thread id: {exc}[/dim]")

    def _clear_thread(self) -> None:
        """Forget the current thread."""
        self.thread_id = None
        self.pending_files.clear()
        try:
            if THREAD_FILE.exists():
                THREAD_FILE.unlink()
        except OSError:
            pass
        self.console.print("Thread cleared. Starting fresh.", style=INFO_STYLE)

    async def _check_health(self) -> bool:
        """Check if backend is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    configured = resp.json().get("assistant_configured", False)
                    note = "" if configured else " (assistant NOT configured)"
                    self.console.print(f"[dim]Connected to backend{note}.[/dim]")
                    return True
        except httpx.HTTPError as e:
            self.console.print(f"Cannot connect to backend: {e}", style=ERROR_STYLE)
        return False

    def _attach(self, raw_path: str) -> None:
        path = Path(raw_path).expanduser()
        if not path.is_file():
            self.console.print(f"File not found: {path}", style=ERROR_STYLE)
            return
        self.pending_files.append(path)
        self.console.print(
            f"Attached {path.name} ({len(self.pending_files)} pending)", style=INFO_STYLE
        )

    def _show_help(self) -> None:
        """Show available commands."""
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /clear             Start a new thread
  /attach <path>     Attach a file to the next message
  /files             List files pending for the next message
  /thread            Show the current thread id
  /quit              Exit shell-chat

[bold]Shortcuts:[/bold]
  Ctrl+C             Cancel current request
  Ctrl+D             Exit shell-chat
"""
        self.console.print(
            Panel(help_text.strip(), title="Shell Chat Help", border_style="blue")
        )

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        parts = cmd.strip().split(maxsplit=1)
        if not parts:
            return False

        command = parts[0].lower()

        if command == "/help":
            self._show_help()
            return True
        elif command == "/clear":
            self._clear_thread()
            return True
        elif command == "/quit":
            self.running = False
            return True
        elif command == "/attach":
            if len(parts) > 1:
                self._attach(parts[1])
            else:
                self.console.print("[dim]Usage: /attach <path>[/dim]")
            return True
        elif command == "/files":
            if not self.pending_files:
                self.console.print("[dim]No files attached[/dim]")
            for path in self.pending_files:
                self.console.print(f"  {path}")
            return True
        elif command == "/thread":
            self.console.print(f"Thread: {self.thread_id or '(new)'}", style=INFO_STYLE)
            return True

        return False

    def _build_files(self) -> list[tuple[str, tuple[str, bytes, str]]]:
        files = []
        for index, path in enumerate(self.pending_files):
            mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            files.append((f"file_{index}", (path.name, path.read_bytes(), mime)))
        return files

    def _handle_event(self, event: dict[str, Any], state: dict[str, Any], live: Live) -> None:
        kind = event.get("type")
        if kind == "thread_id":
            self.thread_id = event.get("threadId")
            self._save_thread()
        elif kind == "content":
            state["text"] += event.get("content", "")
            live.update(Markdown(state["text"]))
        elif kind == "tool_result":
            result = event.get("result", {})
            icon = "✓" if result.get("success") else "✗"
            summary = result.get("message") or result.get("error") or ""
            state["tools"].append(f"{icon} {event.get('tool', '?')}: {summary}")
            live.update(Text(f"🔧 {event.get('tool', '?')} finished", style=TOOL_STYLE))
        elif kind == "error":
            state["errors"].append(event.get("message", "Unknown error"))

    async def _stream_chat(self, message: str) -> None:
        """Send message and stream response via SSE."""
        data = {"message": message}
        if self.thread_id:
            data["threadId"] = self.thread_id

        state: dict[str, Any] = {"text": "", "tools": [], "errors": []}

        try:
            files = self._build_files()
        except OSError as e:
            self.console.print(f"Cannot read attachment: {e}", style=ERROR_STYLE)
            return

        try:
            async with httpx.AsyncClient(timeout=None) as client:
                async with client.stream(
                    "POST",
                    f"{self.server_url}/api/chat",
                    data=data,
                    files=files or None,
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    if response.status_code != 200:
                        body = await response.aread()
                        try:
                            payload = json.loads(body)
                            error = payload.get("details") or payload.get("error")
                        except (json.JSONDecodeError, AttributeError):
                            error = body.decode(errors="replace")
                        self.console.print(
                            f"Error {response.status_code}: {error}", style=ERROR_STYLE
                        )
                        return

                    self.pending_files.clear()
                    buffer = ""
                    with Live(console=self.console, refresh_per_second=10) as live:
                        async for chunk in response.aiter_text():
                            buffer += chunk
                            lines = buffer.split("\n")
                            buffer = lines[-1]  # Keep incomplete line

                            for line in lines[:-1]:
                                line = line.strip()
                                if not line.startswith("data:"):
                                    continue
                                try:
                                    event = json.loads(line[5:].strip())
                                except json.JSONDecodeError:
                                    continue
                                if isinstance(event, dict):
                                    self._handle_event(event, state, live)

                        if state["text"]:
                            live.update(Markdown(state["text"]))

            for line in state["tools"]:
                self.console.print(f"[dim]{line}[/dim]")
            for error in state["errors"]:
                self.console.print(error, style=ERROR_STYLE)
            if not state["text"] and not state["errors"]:
                self.console.print(NO_CONTENT_MESSAGE, style=ERROR_STYLE)

        except httpx.ReadTimeout:
            self.console.print("Request timed out", style=ERROR_STYLE)
        except asyncio.CancelledError:
            self.console.print("\n[dim]Request cancelled[/dim]")
        except httpx.HTTPError as e:
            self.console.print(f"Error: {e}", style=ERROR_STYLE)

    async def run(self) -> None:
        """Main chat loop."""
        if not await self._check_health():
            return

        self.console.print()
        self.console.print(
            "[bold]Estimate Chat[/bold] - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print()

        while self.running:
            try:
                user_input = Prompt.ask("[bold blue]You[/bold blue]")
                if not user_input.strip() and not self.pending_files:
                    continue

                if user_input.startswith("/"):
                    handled = await self._handle_command(user_input)
                    if handled:
                        continue

                self.console.print()
                await self._stream_chat(user_input)
                self.console.print()

            except EOFError:
                self.console.print("\n[dim]Goodbye![/dim]")
                break
            except KeyboardInterrupt:
                self.console.print()
                continue


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Shell Chat - Terminal client for the estimate assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  shell_chat.py                           Connect to localhost:8000
  shell_chat.py --server http://pi:8000   Connect to remote server

Environment Variables:
  SHELLCHAT_SERVER    Default server URL
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("SHELLCHAT_SERVER", "http://localhost:8000"),
        help="Backend server URL (default: http://localhost:8000)",
    )
    args = parser.parse_args()

    def signal_handler(sig, frame):
        print("\nExiting...")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    chat = ShellChat(server_url=args.server)
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
