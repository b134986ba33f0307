"""Reconnecting duplex channel to the cloud session service.

One logical channel over an unreliable websocket. While open, a ping
frame is sent every ``ping_interval`` seconds. An unexpected close
triggers reconnection with linear backoff (attempt x step, capped) up
to ``max_reconnect_attempts``; on exhaustion the close channel fires
and the transport gives up. Outbound sends are dropped while no
connection is open.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import aiohttp

from tandem.engine.channels import Channel
from tandem.engine.errors import TransportConnectError
from tandem.engine.models import Mode

from .events import (
    PING_FRAME,
    PONG_FRAME,
    CloudMessage,
    claude_event_frame,
    mode_change_frame,
    parse_inbound,
    thinking_frame,
)

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def build_session_url(
    api_url: str,
    session_id: str,
    user_id: str,
    device_id: str | None = None,
    token: str | None = None,
) -> str:
    """Websocket URL for a cloud session (http->ws, https->wss)."""
    base = api_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    params = {"type": "cli", "userId": user_id}
    if device_id:
        params["deviceId"] = device_id
    if token:
        params["token"] = token
    return f"{base}/ws/session/{session_id}?{urlencode(params)}"


def _redact(url: str) -> str:
    head, sep, _ = url.partition("?")
    return head + (sep + "..." if sep else "")


class ReconnectingTransport:
    """Keeps a websocket to the cloud session alive across network blips."""

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        ping_interval: float = 30.0,
        max_reconnect_attempts: int = 50,
        backoff_step: float = 1.0,
        backoff_cap: float = 10.0,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ) -> None:
        self._url = url
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._ping_interval = ping_interval
        self._max_attempts = max_reconnect_attempts
        self._backoff_step = backoff_step
        self._backoff_cap = backoff_cap
        self._session_factory = session_factory

        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._outbox: asyncio.Queue[dict[str, Any]] | None = None
        self._runner: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._intentionally_closed = False
        self._close_notified = False

        self.on_message: Channel[CloudMessage] = Channel("transport.message")
        self.on_close: Channel[None] = Channel("transport.close")

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed and self._outbox is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def backoff_delay(self, attempt: int) -> float:
        return min(self._backoff_step * attempt, self._backoff_cap)

    # ── Lifecycle ──

    async def connect(self) -> None:
        """Perform the initial handshake and start the connection loop."""
        if self._runner is not None:
            return
        self._http = self._session_factory()
        try:
            ws = await self._open()
        except _CONNECT_ERRORS as exc:
            await self._http.close()
            self._http = None
            raise TransportConnectError(_redact(self._url), str(exc) or type(exc).__name__) from exc
        logger.info("Connected to session channel %s", _redact(self._url))
        self._runner = asyncio.create_task(self._run(ws))

    async def close(self) -> None:
        """Intentional close: no reconnection, close channel fires once."""
        self._intentionally_closed = True
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
        runner = self._runner
        if runner is not None and not runner.done():
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
        if self._http is not None:
            await self._http.close()
            self._http = None
        logger.info("Disconnected from session channel")
        self._notify_close()

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        assert self._http is not None
        return await self._http.ws_connect(self._url, headers=self._headers)

    async def _run(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        current: aiohttp.ClientWebSocketResponse | None = ws
        while current is not None:
            await self._serve(current)
            if self._intentionally_closed:
                return
            current = await self._reconnect()
        self._notify_close()

    async def _reconnect(self) -> aiohttp.ClientWebSocketResponse | None:
        while self._reconnect_attempts < self._max_attempts:
            self._reconnect_attempts += 1
            delay = self.backoff_delay(self._reconnect_attempts)
            logger.warning(
                "Connection lost, reconnecting in %.1fs (attempt %d/%d)",
                delay, self._reconnect_attempts, self._max_attempts,
            )
            await asyncio.sleep(delay)
            if self._intentionally_closed:
                return None
            try:
                return await self._open()
            except _CONNECT_ERRORS as exc:
                logger.warning("Reconnect attempt %d failed: %s", self._reconnect_attempts, exc)
        logger.error("Max reconnect attempts reached, giving up")
        return None

    async def _serve(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        if self._reconnect_attempts:
            logger.info("Reconnected to session channel")
        self._reconnect_attempts = 0

        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._ws = ws
        self._outbox = outbox
        writer = asyncio.create_task(self._write_loop(ws, outbox))
        pinger = asyncio.create_task(self._ping_loop())
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Session channel error: %s", ws.exception())
                    break
        finally:
            if self._ws is ws:
                self._ws = None
                self._outbox = None
            for task in (writer, pinger):
                task.cancel()
            for task in (writer, pinger):
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            if not ws.closed:
                await ws.close()

    async def _write_loop(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        outbox: asyncio.Queue[dict[str, Any]],
    ) -> None:
        while True:
            frame = await outbox.get()
            try:
                await ws.send_json(frame)
            except (ConnectionResetError, aiohttp.ClientError, RuntimeError) as exc:
                logger.debug("Dropped %s frame, connection closing: %s", frame.get("type"), exc)
                if self._outbox is outbox:
                    self._outbox = None
                return

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            self.send(PING_FRAME)

    def _handle_text(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except ValueError:
            logger.warning("Failed to parse session channel frame: %.80r", data)
            return
        if not isinstance(frame, dict):
            return
        frame_type = frame.get("type")
        if frame_type == "ping":
            self.send(PONG_FRAME)
            return
        if frame_type == "pong":
            return
        message = parse_inbound(frame)
        if message is None:
            logger.debug("Ignoring session channel frame type=%s", frame_type)
            return
        self.on_message.publish(message)

    def _notify_close(self) -> None:
        if self._close_notified:
            return
        self._close_notified = True
        self.on_close.publish(None)

    # ── Outbound ──

    def send(self, frame: dict[str, Any]) -> bool:
        """Queue a frame for the open connection. Returns False if dropped."""
        outbox = self._outbox
        if outbox is None or not self.is_open:
            logger.debug("Channel not open, dropping %s frame", frame.get("type"))
            return False
        outbox.put_nowait(frame)
        return True

    def send_claude_event(self, session_id: str, event: dict[str, Any]) -> bool:
        return self.send(claude_event_frame(session_id, event))

    def send_thinking(self, thinking: bool) -> bool:
        return self.send(thinking_frame(thinking))

    def send_mode_change(self, mode: Mode) -> bool:
        return self.send(mode_change_frame(mode))
