from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from tandem.adapters.events import PermissionReply, SwitchRequest
from tandem.adapters.hook_server import HookEvent
from tandem.engine.channels import Channel
from tandem.engine.errors import LocalProcessError
from tandem.engine.local_driver import LocalDriver
from tandem.engine.models import ExitReason, PermissionResponse
from tandem.engine.paths import project_dir
from tandem.engine.retry import RestartPolicy
from tandem.engine.session import Session


class _FakeHookServer:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.on_session_start: Channel[HookEvent] = Channel("fake.session_start")
        self.on_hook_event: Channel[HookEvent] = Channel("fake.hook_event")
        self.stopped = False

    async def start(self) -> int:
        return 45678

    async def stop(self) -> None:
        self.stopped = True


class _Runner:
    """Plays back a script: 'fail', 'exit', or 'block' (until abort)."""

    def __init__(self, script: list[str]) -> None:
        self._script = list(script)
        self.calls: list[list[str]] = []
        self.started = asyncio.Event()

    async def run(self, args, *, cwd, abort: asyncio.Event) -> None:
        self.calls.append(list(args))
        self.started.set()
        step = self._script.pop(0) if self._script else "block"
        if step == "fail":
            raise LocalProcessError(1)
        if step == "block":
            await abort.wait()


def _driver(session, config, runner, **kwargs):
    servers: list[_FakeHookServer] = []

    def factory(**kw):
        server = _FakeHookServer(**kw)
        servers.append(server)
        return server

    driver = LocalDriver(session, config, runner=runner, hook_server_factory=factory, **kwargs)
    return driver, servers


@pytest.mark.asyncio
async def test_queued_web_input_skips_local_mode(session: Session, config) -> None:
    session.queue.push("waiting")
    runner = _Runner([])
    driver, servers = _driver(session, config, runner)

    assert await driver.run() is ExitReason.SWITCH
    assert runner.calls == []
    assert servers == []


@pytest.mark.asyncio
async def test_permission_parked_between_drivers_skips_local_mode(
    session: Session, transport, config,
) -> None:
    transport.on_message.publish(PermissionReply(response=PermissionResponse.DENY))
    assert session.permissions.has_pending
    runner = _Runner([])
    driver, servers = _driver(session, config, runner)

    assert await driver.run() is ExitReason.SWITCH
    assert runner.calls == []
    assert servers == []
    assert session.take_pending_permission() is PermissionResponse.DENY


@pytest.mark.asyncio
async def test_normal_exit_ends_the_session_and_cleans_up(session: Session, config) -> None:
    runner = _Runner(["exit"])
    driver, servers = _driver(session, config, runner)

    assert await driver.run() is ExitReason.EXIT
    args = runner.calls[0]
    settings = Path(args[args.index("--settings") + 1])
    assert not settings.exists()
    assert servers[0].stopped
    assert servers[0].kwargs == {"read_timeout": config.hook_read_timeout_seconds}
    assert project_dir(config.claude_config_dir, session.path).is_dir()


@pytest.mark.asyncio
async def test_settings_file_points_hooks_at_receiver(session: Session, config) -> None:
    runner = _Runner(["block"])
    driver, _ = _driver(session, config, runner)
    task = asyncio.create_task(driver.run())
    await runner.started.wait()

    args = runner.calls[0]
    settings = json.loads(Path(args[args.index("--settings") + 1]).read_text(encoding="utf-8"))
    command = settings["hooks"]["Stop"][0]["hooks"][0]["command"]
    assert command.endswith("-m tandem.adapters.hook_forwarder 45678")

    driver.request_exit()
    assert await task is ExitReason.EXIT


@pytest.mark.asyncio
async def test_failure_restarts_and_drops_one_time_flags(transport, work_dir, config) -> None:
    session = Session(
        server_session_id="srv-1",
        user_id="u1",
        path=str(work_dir),
        transport=transport,
        claude_args=["--continue", "--model", "opus"],
    )
    runner = _Runner(["fail", "exit"])
    driver, _ = _driver(session, config, runner, restart_policy=RestartPolicy(3, 0.0))

    assert await driver.run() is ExitReason.EXIT
    assert len(runner.calls) == 2
    assert "--continue" in runner.calls[0]
    assert "--continue" not in runner.calls[1]
    assert "--model" in runner.calls[1]


@pytest.mark.asyncio
async def test_restart_limit_stops_the_driver(session: Session, config) -> None:
    runner = _Runner(["fail", "fail", "fail"])
    driver, _ = _driver(session, config, runner, restart_policy=RestartPolicy(1, 0.0))

    assert await driver.run() is ExitReason.EXIT
    assert len(runner.calls) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message",
    [SwitchRequest(), PermissionReply(response=PermissionResponse.ALLOW_ONCE)],
)
async def test_web_activity_switches_to_remote(session: Session, transport, config, message) -> None:
    runner = _Runner(["block"])
    driver, _ = _driver(session, config, runner)
    task = asyncio.create_task(driver.run())
    await runner.started.wait()

    transport.on_message.publish(message)
    assert await asyncio.wait_for(task, timeout=2.0) is ExitReason.SWITCH
    assert len(runner.calls) == 1


@pytest.mark.asyncio
async def test_hook_events_drive_session_state(session: Session, transport, config) -> None:
    runner = _Runner(["block"])
    driver, servers = _driver(session, config, runner)
    task = asyncio.create_task(driver.run())
    await runner.started.wait()
    server = servers[0]

    server.on_session_start.publish(HookEvent("SessionStart", "claude-1", {"session_id": "claude-1"}))
    server.on_hook_event.publish(HookEvent("UserPromptSubmit", "claude-1", {"prompt": "hi"}))
    server.on_hook_event.publish(
        HookEvent("PermissionRequest", "claude-1", {"tool_name": "Bash", "tool_input": {}}),
    )
    server.on_hook_event.publish(HookEvent("Stop", "claude-1", {}))

    driver.request_exit()
    assert await task is ExitReason.EXIT

    assert session.claude_session_id == "claude-1"
    assert session.last_permission_tool == "Bash"
    assert transport.thinking == [True, False]
    assert transport.event_types() == ["UserPromptSubmit", "PermissionRequest", "Stop"]


@pytest.mark.asyncio
async def test_transcript_entries_forwarded_and_idle_logged(
    session: Session, transport, config, caplog,
) -> None:
    caplog.set_level(logging.DEBUG, logger="tandem.engine.local_driver")
    transcript = project_dir(config.claude_config_dir, session.path) / "claude-2.jsonl"
    transcript.parent.mkdir(parents=True)
    entry = {"type": "assistant", "uuid": "a1", "message": {"role": "assistant", "content": []}}
    transcript.write_text(json.dumps(entry) + "\n", encoding="utf-8")
    runner = _Runner(["block"])
    driver, servers = _driver(session, config, runner)
    task = asyncio.create_task(driver.run())
    await runner.started.wait()

    servers[0].on_session_start.publish(HookEvent("SessionStart", "claude-2", {}))
    for _ in range(100):
        if transport.events:
            break
        await asyncio.sleep(0.01)
    driver.request_exit()
    assert await task is ExitReason.EXIT

    assert transport.event_types() == ["assistant"]
    assert "Assistant output settled for claude-2" in caplog.text


@pytest.mark.asyncio
async def test_resume_flag_added_for_existing_transcript(session: Session, config) -> None:
    session.set_claude_session_id("claude-7")
    transcript = project_dir(config.claude_config_dir, session.path) / "claude-7.jsonl"
    transcript.parent.mkdir(parents=True)
    transcript.write_text("", encoding="utf-8")
    runner = _Runner(["exit"])
    driver, _ = _driver(session, config, runner)

    await driver.run()
    assert runner.calls[0][:2] == ["--resume", "claude-7"]
