"""Spawn and supervise the interactive assistant process (Local mode).

The process inherits the terminal. An abort token (asyncio.Event)
terminates it: SIGTERM first, SIGKILL after a grace period. A process
ended by abort is a normal return; any other non-zero exit raises
LocalProcessError.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from .errors import ClaudeNotFoundError, LocalProcessError

logger = logging.getLogger(__name__)

SpawnFn = Callable[..., Awaitable[asyncio.subprocess.Process]]

_SESSION_FLAGS = ("--continue", "--resume")


def build_local_args(
    *,
    session_id: str | None,
    session_exists: bool,
    claude_args: Sequence[str],
    settings_path: Path,
) -> list[str]:
    """Assistant argv (without the executable) for one Local spawn.

    ``--resume <id>`` is added only for an existing transcript and only
    when the operator did not pass their own --continue / --resume.
    """
    args: list[str] = []
    user_controls_session = any(flag in claude_args for flag in _SESSION_FLAGS)
    if session_id and session_exists and not user_controls_session:
        args += ["--resume", session_id]
    args += list(claude_args)
    args += ["--settings", str(settings_path)]
    return args


class LocalProcessRunner:
    """Runs one assistant process to completion or abort."""

    def __init__(
        self,
        command: str = "claude",
        *,
        terminate_grace_seconds: float = 5.0,
        env: dict[str, str] | None = None,
        spawn: SpawnFn = asyncio.create_subprocess_exec,
    ) -> None:
        self.command = command
        self._grace = terminate_grace_seconds
        self._env = env
        self._spawn = spawn

    async def run(self, args: Sequence[str], *, cwd: str, abort: asyncio.Event) -> None:
        """Run until the process exits or ``abort`` is set."""
        if abort.is_set():
            return
        try:
            proc = await self._spawn(self.command, *args, cwd=cwd, env=self._env)
        except FileNotFoundError as exc:
            raise ClaudeNotFoundError(self.command) from exc
        logger.info("Assistant process started pid=%s", proc.pid)

        wait_task = asyncio.create_task(proc.wait())
        abort_task = asyncio.create_task(abort.wait())
        try:
            await asyncio.wait({wait_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_task.cancel()
            if not wait_task.done():
                await self._terminate(proc, wait_task)

        returncode = wait_task.result()
        if abort.is_set():
            logger.info("Assistant process pid=%s stopped for mode change (rc=%s)", proc.pid, returncode)
            return
        if returncode != 0:
            raise LocalProcessError(returncode)
        logger.info("Assistant process pid=%s exited normally", proc.pid)

    async def _terminate(
        self, proc: asyncio.subprocess.Process, wait_task: asyncio.Task,
    ) -> None:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(asyncio.shield(wait_task), timeout=self._grace)
            return
        except asyncio.TimeoutError:
            logger.warning(
                "Assistant process pid=%s ignored SIGTERM for %.1fs, killing",
                proc.pid, self._grace,
            )
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await wait_task
