"""Session state shared by the mode drivers.

The Session owns the Message Queue, the Permission Relay, and the cloud
transport. Inbound cloud messages are routed here and turned into state
changes or channel publications; drivers subscribe to the channels they
care about while they are active.

All mutation happens on the event loop thread. Each inbound handler
applies its whole state change within one callback, so a later message
can never observe a half-applied transition.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from tandem.adapters.events import PermissionReply, SwitchRequest, UserInput

from .channels import Channel, ObserverSet
from .message_queue import MessageQueue
from .models import Mode, PermissionResponse
from .permissions import PermissionRelay

logger = logging.getLogger(__name__)


class SessionTransport(Protocol):
    """What the Session needs from the cloud channel."""

    on_message: Channel[Any]
    on_close: Channel[None]

    def send_claude_event(self, session_id: str, event: dict[str, Any]) -> bool: ...

    def send_thinking(self, thinking: bool) -> bool: ...

    def send_mode_change(self, mode: Mode) -> bool: ...

    async def close(self) -> None: ...


def strip_one_time_flags(args: Sequence[str]) -> list[str]:
    """Remove ``--continue`` and ``--resume <value>`` from assistant args."""
    filtered: list[str] = []
    skip_next = False
    for index, arg in enumerate(args):
        if skip_next:
            skip_next = False
            continue
        if arg == "--continue":
            continue
        if arg == "--resume":
            nxt = args[index + 1] if index + 1 < len(args) else None
            if nxt is not None and not nxt.startswith("-"):
                skip_next = True
                continue
        filtered.append(arg)
    return filtered


class Session:
    """One cloud session and the assistant conversation attached to it."""

    def __init__(
        self,
        *,
        server_session_id: str,
        user_id: str,
        path: str,
        transport: SessionTransport,
        device_id: str | None = None,
        claude_args: Sequence[str] | None = None,
        claude_session_id: str | None = None,
        relay: PermissionRelay | None = None,
        queue: MessageQueue | None = None,
    ) -> None:
        self.server_session_id = server_session_id
        self.user_id = user_id
        self.device_id = device_id
        self.path = path
        self.transport = transport
        self.queue = queue or MessageQueue()
        self.permissions = relay or PermissionRelay()
        self.mode: Mode = Mode.LOCAL

        self._claude_session_id = claude_session_id
        self._claude_args = list(claude_args or [])
        self._closed = False
        # Tool named by the most recent PermissionRequest hook (Local mode).
        self.last_permission_tool: str | None = None

        self.on_switch: Channel[None] = Channel("session.switch")
        self.session_found: ObserverSet[str] = ObserverSet("session.found")

        self._inbound = transport.on_message.subscribe(self._handle_message)

    # ── Identity ──

    @property
    def claude_session_id(self) -> str | None:
        return self._claude_session_id

    def set_claude_session_id(self, session_id: str) -> None:
        """Record the assistant session id and notify discovery observers."""
        if not session_id or session_id == self._claude_session_id:
            return
        logger.info(
            "Assistant session %s discovered (was %s)",
            session_id[:8], (self._claude_session_id or "-")[:8],
        )
        self._claude_session_id = session_id
        self.session_found.notify(session_id)

    @property
    def claude_args(self) -> list[str]:
        return list(self._claude_args)

    def consume_one_time_flags(self) -> None:
        """Drop --continue / --resume after the first spawn."""
        self._claude_args = strip_one_time_flags(self._claude_args)

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Inbound routing ──

    def _handle_message(self, message: Any) -> None:
        if isinstance(message, UserInput):
            logger.info(
                "User input from web (%d chars, %d image(s))",
                len(message.prompt), len(message.images),
            )
            self.queue.push(message.prompt, message.images)
        elif isinstance(message, PermissionReply):
            self.permissions.deliver(message.response)
        elif isinstance(message, SwitchRequest):
            if not self.on_switch.publish(None):
                logger.debug("Switch request with no active driver, ignored")
        else:
            logger.debug("Unhandled inbound message %r", message)

    # ── Outbound ──

    def send_claude_event(self, event: dict[str, Any]) -> None:
        self.transport.send_claude_event(self.server_session_id, event)

    def send_thinking(self, thinking: bool) -> None:
        self.transport.send_thinking(thinking)

    def send_mode_change(self, mode: Mode) -> None:
        self.transport.send_mode_change(mode)

    # ── Permission flow (Remote mode) ──

    async def request_permission(
        self, tool_name: str, tool_input: dict[str, Any] | None = None,
    ) -> PermissionResponse:
        """Ask the web client to approve a tool call and wait for the answer."""
        relay = self.permissions
        if relay.is_tool_always_allowed(tool_name):
            logger.info("Auto-approved %s (always allowed)", tool_name)
            return PermissionResponse.ALLOW_ALWAYS

        # Clear the parked response and open the wait in this same turn,
        # before the request leaves the process.
        resolver = relay.open_wait()
        if relay.is_protected(tool_name):
            self.queue.reset()
        self.send_claude_event({
            "type": "PermissionRequest",
            "hook_data": {"tool_name": tool_name, "tool_input": tool_input},
        })
        logger.info("Waiting for web approval of %s", tool_name)

        try:
            response = await resolver
        finally:
            relay.cancel_wait()

        if response is PermissionResponse.ALLOW_ALWAYS:
            relay.mark_tool_always_allowed(tool_name)
        logger.info("Permission for %s: %s", tool_name, response.value)
        return response

    def take_pending_permission(self) -> PermissionResponse | None:
        """Consume a parked response on Remote entry (within the TTL).

        An ``always`` answer is recorded against the tool named by the last
        PermissionRequest hook, so the retried call is auto-approved.
        """
        response = self.permissions.consume_pending()
        if response is None:
            return None
        tool = self.last_permission_tool
        if response is PermissionResponse.ALLOW_ALWAYS and tool:
            self.permissions.mark_tool_always_allowed(tool)
        self.last_permission_tool = None
        logger.info(
            "Using parked permission response %s (tool=%s)", response.value, tool or "-",
        )
        return response

    # ── Teardown ──

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.queue.close()
        self.permissions.cancel_wait()
        self._inbound.cancel()
        await self.transport.close()
