"""Terminal presentation for Remote mode and mode transitions."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.status import Status
from rich.text import Text

from tandem.engine.models import Mode

_TOOL_VERBS = {
    "Read": "Reading",
    "Write": "Writing to",
    "Edit": "Editing",
}


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def describe_tool(name: str, tool_input: Any) -> str:
    """One-line summary of a tool call."""
    inp = tool_input if isinstance(tool_input, dict) else {}
    if name in _TOOL_VERBS:
        path = str(inp.get("file_path") or "")
        return f"{_TOOL_VERBS[name]} {path.rsplit('/', 1)[-1]}"
    if name == "Bash":
        return f"$ {_truncate(str(inp.get('command') or ''), 60)}"
    if name in ("Glob", "Grep"):
        return f"Searching for {_truncate(str(inp.get('pattern') or ''), 40)}"
    if name == "WebFetch":
        return f"Fetching {_truncate(str(inp.get('url') or ''), 40)}"
    if name == "WebSearch":
        return f"Searching: {_truncate(str(inp.get('query') or ''), 40)}"
    if name == "AskUserQuestion":
        return "Asking question"
    return f"Using {name}"


def _user_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        )
    return ""


class TerminalRenderer:
    """Prints normalized assistant messages with rich."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(highlight=False)
        self._status: Status | None = None

    # ── Mode banners ──

    def mode_banner(self, mode: Mode) -> None:
        self.clear_thinking()
        if mode is Mode.REMOTE:
            self.console.print()
            self.console.print(Text("Remote Mode Active", style="bold cyan"))
            self.console.print(Text(
                "Messages from web will appear here. Press Enter/q to switch to local, "
                "Ctrl+C to exit.",
                style="dim",
            ))
            self.console.print()
        else:
            self.console.print(Text("Local mode: the assistant has the terminal.", style="dim"))

    def permission_notice(self, tool_name: str) -> None:
        self.clear_thinking()
        self.console.print()
        self.console.print(Text("Permission Required", style="bold yellow"))
        self.console.print(Text(f"Tool: {tool_name}", style="dim"))
        self.console.print(Text("Waiting for approval from web UI...", style="dim"))

    def notice(self, text: str, style: str = "dim") -> None:
        self.console.print(Text(text, style=style))

    # ── Thinking indicator ──

    def show_thinking(self) -> None:
        if self._status is None:
            self._status = self.console.status("Thinking...", spinner="dots")
            self._status.start()

    def clear_thinking(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def set_thinking(self, thinking: bool) -> None:
        if thinking:
            self.show_thinking()
        else:
            self.clear_thinking()

    # ── Messages ──

    def render(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind not in ("system", "user", "assistant", "result"):
            return
        self.clear_thinking()
        if kind == "system":
            self._render_system(message)
        elif kind == "user":
            self._render_user(message)
        elif kind == "assistant":
            self._render_assistant(message)
        else:
            self._render_result(message)

    def _render_system(self, message: dict[str, Any]) -> None:
        if message.get("subtype") != "init":
            return
        self.console.print()
        self.console.print(Text("Session Started", style="bold cyan"))
        session_id = message.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.console.print(Text(f"Session: {session_id[:8]}...", style="dim"))
        for label, key in (("Model", "model"), ("Directory", "cwd")):
            if message.get(key):
                self.console.print(Text(f"{label}: {message[key]}", style="dim"))
        self.console.print(Rule(style="dim"))

    def _render_user(self, message: dict[str, Any]) -> None:
        body = message.get("message")
        text = _user_text(body.get("content")) if isinstance(body, dict) else ""
        if not text:
            return
        self.console.print()
        self.console.print(Text("You", style="bold blue"))
        self.console.print(Text(text))

    def _render_assistant(self, message: dict[str, Any]) -> None:
        body = message.get("message")
        content = body.get("content") if isinstance(body, dict) else None
        if not isinstance(content, list):
            return
        header_shown = False
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                if not header_shown:
                    self.console.print()
                    self.console.print(Text("Claude", style="bold green"))
                    header_shown = True
                self.console.print(Text(block["text"]))
            elif block.get("type") == "tool_use" and block.get("name"):
                self.console.print()
                self.console.print(Text(block["name"], style="yellow"))
                self.console.print(Text(describe_tool(block["name"], block.get("input")), style="dim"))

    def _render_result(self, message: dict[str, Any]) -> None:
        self.console.print()
        self.console.print(Rule(style="dim"))
        if message.get("is_error"):
            self.console.print(Text("Error", style="bold red"))
            if message.get("result"):
                self.console.print(Text(str(message["result"]), style="red"))
        else:
            ok = message.get("subtype") == "success"
            self.console.print(Text("Completed", style="green" if ok else "yellow"))

        stats = []
        turns = message.get("num_turns")
        if turns:
            stats.append(f"{turns} turn{'s' if turns > 1 else ''}")
        duration = message.get("duration_ms")
        if duration:
            stats.append(f"{duration / 1000:.1f}s")
        cost = message.get("total_cost_usd")
        if cost:
            stats.append(f"${cost:.4f}")
        if stats:
            self.console.print(Text(" · ".join(stats), style="dim"))
