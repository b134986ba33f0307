"""Loopback HTTP receiver for the assistant's lifecycle hooks.

The assistant runs the hook forwarder on SessionStart, UserPromptSubmit,
PostToolUse, PermissionRequest, Stop and SessionEnd; the forwarder posts
the hook JSON here. SessionStart reveals the (possibly new) assistant
session id ahead of the transcript; every known event is also published
for relay to the cloud.

Routes:
    POST /hook                  all hook kinds
    POST /hook/session-start    legacy, treated as SessionStart
    *                           404
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from tandem.engine.channels import Channel

logger = logging.getLogger(__name__)

HOOK_EVENTS = frozenset({
    "SessionStart",
    "UserPromptSubmit",
    "PostToolUse",
    "PermissionRequest",
    "Stop",
    "SessionEnd",
})

_FORWARDED_FIELDS = (
    "tool_name",
    "tool_input",
    "tool_response",
    "prompt",
    "stop_reason",
    "response",
    "cwd",
)


@dataclass
class HookEvent:
    """One hook notification from the assistant."""
    event_name: str
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def tool_name(self) -> str | None:
        value = self.data.get("tool_name")
        return value if isinstance(value, str) else None

    def to_claude_event(self) -> dict[str, Any]:
        return {
            "type": self.event_name,
            "hook_data": {key: self.data.get(key) for key in _FORWARDED_FIELDS},
            "session_id": self.session_id,
        }


def parse_hook_body(body: bytes) -> dict[str, Any]:
    """Decode a hook body; anything malformed is treated as empty."""
    try:
        data = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, ValueError):
        logger.debug("Malformed hook body (%d bytes), treating as empty", len(body))
        return {}
    return data if isinstance(data, dict) else {}


class HookServer:
    """aiohttp app listening on an ephemeral loopback port."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        *,
        read_timeout: float = 5.0,
    ) -> None:
        self._host = host
        self._port = port
        self._read_timeout = read_timeout
        self._runner: web.AppRunner | None = None

        self.on_session_start: Channel[HookEvent] = Channel("hook.session_start")
        self.on_hook_event: Channel[HookEvent] = Channel("hook.event")

        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int:
        return self._port

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        start = time.monotonic()
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.debug("HOOK %s %s status=%s", request.method, request.path, exc.status)
            raise
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug(
            "HOOK %s %s status=%s duration_ms=%.1f",
            request.method, request.path, getattr(response, "status", "?"), elapsed_ms,
        )
        return response

    # ── Routes ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_post("/hook", self._handle_hook)
        r.add_post("/hook/session-start", self._handle_legacy_session_start)
        r.add_route("*", "/{tail:.*}", self._handle_not_found)

    async def _handle_not_found(self, request: web.Request) -> web.Response:
        return web.Response(status=404, text="not found")

    async def _handle_legacy_session_start(self, request: web.Request) -> web.Response:
        return await self._receive(request, legacy_session_start=True)

    async def _handle_hook(self, request: web.Request) -> web.Response:
        return await self._receive(request, legacy_session_start=False)

    async def _receive(self, request: web.Request, *, legacy_session_start: bool) -> web.Response:
        try:
            body = await asyncio.wait_for(request.read(), timeout=self._read_timeout)
        except asyncio.TimeoutError:
            logger.warning("Hook request body timed out after %.1fs", self._read_timeout)
            return web.Response(status=408, text="timeout")

        data = parse_hook_body(body)
        session_id = data.get("session_id") or data.get("sessionId")
        event_name = data.get("hook_event_name")
        if legacy_session_start and not event_name:
            event_name = "SessionStart"

        if isinstance(session_id, str) and session_id:
            self.dispatch(session_id, event_name, data, legacy_session_start=legacy_session_start)
        return web.Response(text="ok")

    def dispatch(
        self,
        session_id: str,
        event_name: Any,
        data: dict[str, Any],
        *,
        legacy_session_start: bool = False,
    ) -> None:
        known = isinstance(event_name, str) and event_name in HOOK_EVENTS
        event = HookEvent(
            event_name=event_name if isinstance(event_name, str) else "",
            session_id=session_id,
            data=data,
        )
        if event_name == "SessionStart" or legacy_session_start:
            self.on_session_start.publish(event)
        if known:
            self.on_hook_event.publish(event)
        elif event_name:
            logger.debug("Ignoring unknown hook event %r", event_name)

    # ── Lifecycle ──

    async def start(self) -> int:
        """Bind and start serving. Returns the bound port."""
        runner = web.AppRunner(self._app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is None:
            await runner.cleanup()
            raise RuntimeError("Hook server started but no listening socket was reported.")
        self._port = actual_port
        self._runner = runner
        logger.info("Hook server listening on %s:%d", self._host, actual_port)
        return actual_port

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()
            logger.info("Hook server stopped")

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None
