"""Generated assistant settings that route lifecycle hooks to the receiver."""
from __future__ import annotations

import json
import logging
import os
import shlex
import sys
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Events whose hook entry takes a "*" tool matcher.
MATCHED_EVENTS = frozenset({"SessionStart", "PostToolUse", "PermissionRequest"})

HOOK_EVENT_ORDER = (
    "SessionStart",
    "UserPromptSubmit",
    "PostToolUse",
    "PermissionRequest",
    "Stop",
    "SessionEnd",
)


def build_hook_command(port: int, python: str | None = None) -> str:
    executable = python or sys.executable
    return f"{shlex.quote(executable)} -m tandem.adapters.hook_forwarder {port}"


def build_hook_settings(port: int, python: str | None = None) -> dict[str, Any]:
    command = build_hook_command(port, python)
    hooks: dict[str, list[dict[str, Any]]] = {}
    for event in HOOK_EVENT_ORDER:
        entry: dict[str, Any] = {"hooks": [{"type": "command", "command": command}]}
        if event in MATCHED_EVENTS:
            entry = {"matcher": "*", **entry}
        hooks[event] = [entry]
    return {"hooks": hooks}


def settings_path(hooks_dir: Path, pid: int | None = None) -> Path:
    return Path(hooks_dir) / f"session-hook-{pid if pid is not None else os.getpid()}.json"


def _replace_file(path: Path, content: str) -> None:
    """Swap content in whole so the assistant never reads a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def generate_hook_settings_file(
    hooks_dir: Path, port: int, *, python: str | None = None, pid: int | None = None,
) -> Path:
    """Write the per-process settings file and return its path."""
    path = settings_path(hooks_dir, pid)
    _replace_file(path, json.dumps(build_hook_settings(port, python), indent=2))
    logger.info("Hook settings written to %s (port %d)", path, port)
    return path


def cleanup_hook_settings_file(path: Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove hook settings %s: %s", path, exc)
