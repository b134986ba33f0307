from __future__ import annotations

import asyncio

import pytest

from tandem.adapters.events import UserInput
from tandem.engine.lifecycle import next_mode, validate_transition
from tandem.engine.local_driver import LocalDriver
from tandem.engine.loop import ModeLoop
from tandem.engine.models import ExitReason, Mode


class _ScriptedDriver:
    def __init__(self, reason: ExitReason, log: list[str], name: str) -> None:
        self._reason = reason
        self._log = log
        self._name = name

    async def run(self) -> ExitReason:
        self._log.append(self._name)
        return self._reason

    def request_exit(self) -> None:
        pass


class _BlockingDriver:
    def __init__(self) -> None:
        self.started = asyncio.Event()
        self._exit = asyncio.Event()

    async def run(self) -> ExitReason:
        self.started.set()
        await self._exit.wait()
        return ExitReason.EXIT

    def request_exit(self) -> None:
        self._exit.set()


class _BlockingRunner:
    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.calls: list[list[str]] = []

    async def run(self, args, *, cwd, abort: asyncio.Event) -> None:
        self.calls.append(list(args))
        self.started.set()
        await abort.wait()


def test_transitions_alternate_until_exit() -> None:
    assert next_mode(Mode.LOCAL, ExitReason.SWITCH) is Mode.REMOTE
    assert next_mode(Mode.REMOTE, ExitReason.SWITCH) is Mode.LOCAL
    assert next_mode(Mode.REMOTE, ExitReason.EXIT) is None
    with pytest.raises(ValueError):
        validate_transition(Mode.LOCAL, Mode.LOCAL)


@pytest.mark.asyncio
async def test_loop_runs_drivers_in_sequence(session, transport) -> None:
    log: list[str] = []
    script = iter([ExitReason.SWITCH, ExitReason.SWITCH, ExitReason.EXIT])
    banners: list[Mode] = []

    def factory(mode: Mode):
        return _ScriptedDriver(next(script), log, mode.value)

    loop = ModeLoop(session, factory, on_mode_change=banners.append)
    await loop.run()

    assert log == ["local", "remote", "local"]
    assert loop.transitions == [Mode.LOCAL, Mode.REMOTE, Mode.LOCAL]
    assert transport.modes == [Mode.LOCAL, Mode.REMOTE, Mode.LOCAL]
    assert banners == loop.transitions
    assert session.mode is Mode.LOCAL


@pytest.mark.asyncio
async def test_stop_ends_the_active_driver(session) -> None:
    driver = _BlockingDriver()
    loop = ModeLoop(session, lambda mode: driver, starting_mode=Mode.REMOTE)
    task = asyncio.create_task(loop.run())
    await driver.started.wait()
    assert loop.current_driver is driver

    loop.stop()
    await asyncio.wait_for(task, timeout=2.0)
    assert loop.transitions == [Mode.REMOTE]
    assert loop.current_driver is None


@pytest.mark.asyncio
async def test_web_input_in_local_mode_reaches_remote_exactly_once(session, transport, config) -> None:
    runner = _BlockingRunner()
    delivered: list[str] = []

    class _RemoteProbe:
        async def run(self) -> ExitReason:
            item = await session.queue.wait_for_message()
            delivered.append(item.message)
            return ExitReason.EXIT

        def request_exit(self) -> None:
            session.queue.reset()

    def factory(mode: Mode):
        if mode is Mode.LOCAL:
            return LocalDriver(session, config, runner=runner)
        return _RemoteProbe()

    loop = ModeLoop(session, factory)
    task = asyncio.create_task(loop.run())
    await asyncio.wait_for(runner.started.wait(), timeout=2.0)

    transport.on_message.publish(UserInput(prompt="from the web"))
    await asyncio.wait_for(task, timeout=5.0)

    assert delivered == ["from the web"]
    assert session.queue.size() == 0
    assert loop.transitions == [Mode.LOCAL, Mode.REMOTE]
    assert not list(config.resolved_hooks_dir.glob("*.json"))
