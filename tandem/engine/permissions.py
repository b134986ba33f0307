"""Permission-approval relay between the web client and the assistant.

Two cooperating paths:

- Synchronous wait (Remote mode): a request installs a resolver and
  suspends; the next response from the web resolves it directly.
- Deferred (Local mode): a response that finds no resolver is parked
  with its receipt time and announced on ``on_deferred`` so the Local
  driver can hand control to the Remote driver.

A parked response is never applied to a request issued after it:
opening a new wait discards it first, in the same synchronous step.
It can only be consumed opportunistically (on mode entry) within the TTL.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

from .channels import Channel
from .config import DEFAULT_PROTECTED_TOOLS
from .errors import ConcurrentWaitError
from .models import PendingPermission, PermissionResponse

logger = logging.getLogger(__name__)


class PermissionRelay:
    """Holds at most one permission wait and at most one parked response."""

    def __init__(
        self,
        *,
        pending_ttl_seconds: float = 30.0,
        protected_tools: Iterable[str] = DEFAULT_PROTECTED_TOOLS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = pending_ttl_seconds
        self._protected = frozenset(protected_tools)
        self._clock = clock
        self._resolver: asyncio.Future[PermissionResponse] | None = None
        self._pending: PendingPermission | None = None
        self._always_allowed: set[str] = set()
        self.on_deferred: Channel[PermissionResponse] = Channel("permission.deferred")

    # ── Always-allow cache ──

    @property
    def always_allowed_tools(self) -> frozenset[str]:
        return frozenset(self._always_allowed)

    def is_protected(self, tool_name: str) -> bool:
        return tool_name in self._protected

    def is_tool_always_allowed(self, tool_name: str) -> bool:
        if tool_name in self._protected:
            return False
        return tool_name in self._always_allowed

    def mark_tool_always_allowed(self, tool_name: str) -> bool:
        """Remember an allow-always decision. Returns False for protected tools."""
        if tool_name in self._protected:
            logger.warning("Ignoring 'always allow' for protected tool %s", tool_name)
            return False
        self._always_allowed.add(tool_name)
        logger.info("Tool %s marked as always allowed for this session", tool_name)
        return True

    # ── Incoming responses ──

    @property
    def waiting(self) -> bool:
        return self._resolver is not None and not self._resolver.done()

    def deliver(self, response: PermissionResponse) -> bool:
        """Route a response from the web.

        Returns True if it resolved an outstanding wait, False if it was
        parked for later.
        """
        resolver = self._resolver
        if resolver is not None and not resolver.done():
            self._resolver = None
            resolver.set_result(response)
            logger.info("Permission response %s resolved pending wait", response.value)
            return True

        self._pending = PendingPermission(response=response, received_at=self._clock())
        logger.info("Permission response %s parked (no waiter)", response.value)
        self.on_deferred.publish(response)
        return False

    # ── Parked response ──

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def consume_pending(self, max_age: float | None = None) -> PermissionResponse | None:
        """Take the parked response if it is younger than max_age (default TTL)."""
        pending = self._pending
        if pending is None:
            return None
        self._pending = None
        limit = self._ttl if max_age is None else max_age
        age = pending.age(self._clock())
        if age > limit:
            logger.warning(
                "Discarding stale permission response %s (age %.1fs)",
                pending.response.value, age,
            )
            return None
        return pending.response

    def clear_pending(self, max_age: float | None = None) -> None:
        """Drop the parked response.

        max_age=0 clears unconditionally (used when a new request is
        issued); otherwise only a response older than max_age (default
        TTL) is dropped.
        """
        pending = self._pending
        if pending is None:
            return
        if max_age == 0:
            logger.info(
                "Clearing parked permission response %s for new request",
                pending.response.value,
            )
            self._pending = None
            return
        limit = self._ttl if max_age is None else max_age
        age = pending.age(self._clock())
        if age > limit:
            logger.warning(
                "Clearing stale permission response %s (age %.1fs)",
                pending.response.value, age,
            )
            self._pending = None

    # ── Synchronous wait path ──

    def open_wait(self) -> asyncio.Future[PermissionResponse]:
        """Discard any parked response and install a fresh resolver."""
        if self.waiting:
            raise ConcurrentWaitError("PermissionRelay")
        self.clear_pending(0)
        resolver: asyncio.Future[PermissionResponse] = (
            asyncio.get_running_loop().create_future()
        )
        self._resolver = resolver
        return resolver

    async def wait_for_response(self) -> PermissionResponse:
        resolver = self.open_wait()
        try:
            return await resolver
        finally:
            if self._resolver is resolver:
                self._resolver = None

    def cancel_wait(self) -> None:
        resolver = self._resolver
        self._resolver = None
        if resolver is not None and not resolver.done():
            resolver.cancel()
            logger.debug("Cancelled outstanding permission wait")
