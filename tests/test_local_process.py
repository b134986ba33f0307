from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tandem.engine.errors import ClaudeNotFoundError, LocalProcessError
from tandem.engine.local_process import LocalProcessRunner, build_local_args


class _FakeProcess:
    def __init__(self, *, ignore_terminate: bool = False) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self.signals: list[str] = []
        self._ignore_terminate = ignore_terminate
        self._done = asyncio.Event()

    def finish(self, returncode: int) -> None:
        self.returncode = returncode
        self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("TERM")
        if not self._ignore_terminate:
            self.finish(-15)

    def kill(self) -> None:
        self.signals.append("KILL")
        self.finish(-9)


def _spawner(proc: _FakeProcess, calls: list):
    async def spawn(command, *args, cwd=None, env=None):
        calls.append((command, list(args), cwd))
        return proc

    return spawn


def test_resume_is_added_only_for_existing_sessions() -> None:
    settings = Path("/tmp/s.json")
    assert build_local_args(
        session_id="abc", session_exists=True, claude_args=["--model", "x"], settings_path=settings,
    ) == ["--resume", "abc", "--model", "x", "--settings", "/tmp/s.json"]
    assert build_local_args(
        session_id="abc", session_exists=False, claude_args=[], settings_path=settings,
    ) == ["--settings", "/tmp/s.json"]
    assert build_local_args(
        session_id="abc", session_exists=True, claude_args=["--continue"], settings_path=settings,
    ) == ["--continue", "--settings", "/tmp/s.json"]


@pytest.mark.asyncio
async def test_clean_exit_returns() -> None:
    proc = _FakeProcess()
    proc.finish(0)
    calls: list = []
    runner = LocalProcessRunner("claude", spawn=_spawner(proc, calls))

    await runner.run(["--settings", "x"], cwd="/work", abort=asyncio.Event())
    assert calls == [("claude", ["--settings", "x"], "/work")]


@pytest.mark.asyncio
async def test_nonzero_exit_raises() -> None:
    proc = _FakeProcess()
    proc.finish(2)
    runner = LocalProcessRunner(spawn=_spawner(proc, []))

    with pytest.raises(LocalProcessError) as excinfo:
        await runner.run([], cwd="/work", abort=asyncio.Event())
    assert excinfo.value.returncode == 2


@pytest.mark.asyncio
async def test_abort_terminates_and_returns_normally() -> None:
    proc = _FakeProcess()
    abort = asyncio.Event()
    runner = LocalProcessRunner(spawn=_spawner(proc, []))
    task = asyncio.create_task(runner.run([], cwd="/work", abort=abort))
    await asyncio.sleep(0.01)

    abort.set()
    await asyncio.wait_for(task, timeout=2.0)
    assert proc.signals == ["TERM"]


@pytest.mark.asyncio
async def test_stubborn_process_is_killed_after_grace() -> None:
    proc = _FakeProcess(ignore_terminate=True)
    abort = asyncio.Event()
    runner = LocalProcessRunner(terminate_grace_seconds=0.05, spawn=_spawner(proc, []))
    task = asyncio.create_task(runner.run([], cwd="/work", abort=abort))
    await asyncio.sleep(0.01)

    abort.set()
    await asyncio.wait_for(task, timeout=2.0)
    assert proc.signals == ["TERM", "KILL"]


@pytest.mark.asyncio
async def test_missing_executable_raises_not_found() -> None:
    async def spawn(*args, **kwargs):
        raise FileNotFoundError("claude")

    runner = LocalProcessRunner("claude-missing", spawn=spawn)
    with pytest.raises(ClaudeNotFoundError) as excinfo:
        await runner.run([], cwd="/work", abort=asyncio.Event())
    assert excinfo.value.command == "claude-missing"


@pytest.mark.asyncio
async def test_already_aborted_does_not_spawn() -> None:
    calls: list = []
    abort = asyncio.Event()
    abort.set()
    runner = LocalProcessRunner(spawn=_spawner(_FakeProcess(), calls))

    await runner.run([], cwd="/work", abort=abort)
    assert calls == []
