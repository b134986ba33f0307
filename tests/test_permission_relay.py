from __future__ import annotations

import asyncio

import pytest

from tandem.engine.errors import ConcurrentWaitError
from tandem.engine.models import PermissionResponse
from tandem.engine.permissions import PermissionRelay


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_response_resolves_open_wait() -> None:
    relay = PermissionRelay()
    waiter = asyncio.create_task(relay.wait_for_response())
    await asyncio.sleep(0)
    assert relay.waiting

    assert relay.deliver(PermissionResponse.ALLOW_ONCE) is True
    assert await waiter is PermissionResponse.ALLOW_ONCE
    assert not relay.waiting
    assert not relay.has_pending


def test_response_without_waiter_is_parked_and_announced() -> None:
    relay = PermissionRelay()
    announced: list[PermissionResponse] = []
    relay.on_deferred.subscribe(announced.append)

    assert relay.deliver(PermissionResponse.DENY) is False
    assert relay.has_pending
    assert announced == [PermissionResponse.DENY]


def test_parked_response_is_consumed_within_ttl() -> None:
    clock = _Clock()
    relay = PermissionRelay(pending_ttl_seconds=30.0, clock=clock)
    relay.deliver(PermissionResponse.ALLOW_ONCE)

    clock.now += 29.0
    assert relay.consume_pending() is PermissionResponse.ALLOW_ONCE
    assert relay.consume_pending() is None


def test_stale_parked_response_is_discarded() -> None:
    clock = _Clock()
    relay = PermissionRelay(pending_ttl_seconds=30.0, clock=clock)
    relay.deliver(PermissionResponse.ALLOW_ONCE)

    clock.now += 31.0
    assert relay.consume_pending() is None
    assert not relay.has_pending


def test_clear_pending_respects_age_unless_zero() -> None:
    clock = _Clock()
    relay = PermissionRelay(pending_ttl_seconds=30.0, clock=clock)
    relay.deliver(PermissionResponse.ALLOW_ONCE)

    clock.now += 5.0
    relay.clear_pending()
    assert relay.has_pending

    relay.clear_pending(max_age=1.0)
    assert not relay.has_pending

    relay.deliver(PermissionResponse.DENY)
    relay.clear_pending(0)
    assert not relay.has_pending


@pytest.mark.asyncio
async def test_new_wait_discards_fresh_parked_response() -> None:
    relay = PermissionRelay()
    relay.deliver(PermissionResponse.ALLOW_ALWAYS)

    resolver = relay.open_wait()
    assert not relay.has_pending
    assert not resolver.done()

    relay.deliver(PermissionResponse.DENY)
    assert await resolver is PermissionResponse.DENY


@pytest.mark.asyncio
async def test_only_one_wait_at_a_time() -> None:
    relay = PermissionRelay()
    relay.open_wait()
    with pytest.raises(ConcurrentWaitError):
        relay.open_wait()

    relay.cancel_wait()
    assert not relay.waiting
    relay.open_wait()


def test_protected_tools_never_become_always_allowed() -> None:
    relay = PermissionRelay(protected_tools={"AskUserQuestion"})

    assert relay.mark_tool_always_allowed("AskUserQuestion") is False
    assert not relay.is_tool_always_allowed("AskUserQuestion")
    assert relay.is_protected("AskUserQuestion")

    assert relay.mark_tool_always_allowed("Bash") is True
    assert relay.is_tool_always_allowed("Bash")
    assert relay.always_allowed_tools == frozenset({"Bash"})
