"""Remote driver: the web client drives the assistant through the SDK.

Blocks on the Message Queue for the next web message, streams the
assistant's response to the terminal and the cloud, and waits again
after each result. A keypress, a web switch request, or an exit request
aborts the in-flight exchange; the exchange task is cancelled and
awaited before ``run()`` returns.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from tandem.shared.keyboard import TerminalKeyReader
from tandem.shared.renderer import TerminalRenderer

from .config import TandemConfig
from .models import ExitReason, PermissionResponse, QueueMessage
from .paths import session_exists
from .remote_query import (
    OptionsFactory,
    QueryFn,
    make_permission_callback,
    run_query,
    sdk_options_factory,
    sdk_query,
)
from .session import Session

logger = logging.getLogger(__name__)

CONTINUE_PROMPT = "continue"
DENIED_PROMPT = "The user denied the pending permission request. Do not retry that tool call."


def resume_arg(claude_args: list[str]) -> str | None:
    """Session id given with --resume in the passthrough args, if any."""
    for index, arg in enumerate(claude_args):
        if arg == "--resume" and index + 1 < len(claude_args):
            value = claude_args[index + 1]
            if not value.startswith("-") and "-" in value:
                return value
    return None


class RemoteDriver:
    """Runs one Remote-mode stint. ``run()`` returns why it ended."""

    def __init__(
        self,
        session: Session,
        config: TandemConfig,
        *,
        query_fn: QueryFn = sdk_query,
        options_factory: OptionsFactory | None = None,
        key_reader_factory: Callable[[Callable[[ExitReason], None]], Any] = TerminalKeyReader,
        renderer: TerminalRenderer | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._query_fn = query_fn
        self._key_reader_factory = key_reader_factory
        self._renderer = renderer or TerminalRenderer()

        self.can_use_tool = make_permission_callback(self._request_permission)
        self._options_factory = options_factory or sdk_options_factory(
            cwd=session.path,
            can_use_tool=self.can_use_tool,
            env=config.sdk_env(),
        )

        self._abort = asyncio.Event()
        self._exit_reason: ExitReason | None = None
        self._thinking = False

    @property
    def exit_reason(self) -> ExitReason | None:
        return self._exit_reason

    def request(self, reason: ExitReason) -> None:
        """Abort the exchange. The first reason wins."""
        if self._exit_reason is None:
            self._exit_reason = reason
            logger.info("Remote mode ending: %s", reason.value)
        self._session.queue.reset()
        self._abort.set()

    def request_exit(self) -> None:
        self.request(ExitReason.EXIT)

    # ── Callbacks ──

    def _set_thinking(self, thinking: bool) -> None:
        if thinking == self._thinking:
            return
        self._thinking = thinking
        self._renderer.set_thinking(thinking)
        self._session.send_thinking(thinking)

    def _on_message(self, message: dict[str, Any]) -> None:
        self._renderer.render(message)
        self._session.send_claude_event(message)

    async def _request_permission(
        self, tool_name: str, tool_input: dict[str, Any],
    ) -> PermissionResponse:
        if not self._session.permissions.is_tool_always_allowed(tool_name):
            self._renderer.permission_notice(tool_name)
        return await self._session.request_permission(tool_name, tool_input)

    # ── Main loop ──

    def _resume_target(self) -> str | None:
        session = self._session
        target = session.claude_session_id or resume_arg(session.claude_args)
        if target and not session_exists(self._config.claude_config_dir, session.path, target):
            logger.info("No transcript for session %s, starting fresh", target[:8])
            return None
        return target

    def _queue_pending_permission(self) -> None:
        session = self._session
        pending = session.take_pending_permission()
        if pending is None:
            return
        # A queued message already answers (e.g. a question selection).
        if session.queue.size() > 0:
            return
        prompt = CONTINUE_PROMPT if pending.allows else DENIED_PROMPT
        logger.info("Pending permission response %s, queueing resume prompt", pending.value)
        session.queue.push(prompt)

    async def _query(self, first: QueueMessage, resume: str | None) -> None:
        await run_query(
            first,
            resume=resume,
            query_fn=self._query_fn,
            options_factory=self._options_factory,
            next_message=self._session.queue.wait_for_message,
            on_message=self._on_message,
            on_session_found=self._session.set_claude_session_id,
            set_thinking=self._set_thinking,
        )

    async def _converse(self) -> None:
        resume = self._resume_target()
        first = await self._session.queue.wait_for_message()
        if first is None:
            return
        try:
            await self._query(first, resume)
        except Exception as exc:
            if not resume or self._abort.is_set():
                raise
            logger.warning("Could not resume session %s, starting fresh: %s", resume[:8], exc)
            await self._query(first, None)

    async def run(self) -> ExitReason:
        session = self._session
        reader = self._key_reader_factory(self.request)
        if not reader.start():
            logger.debug("stdin is not a terminal, keyboard switching disabled")
        switch_sub = session.on_switch.subscribe(lambda _: self.request(ExitReason.SWITCH))
        try:
            self._queue_pending_permission()
            exchange = asyncio.create_task(self._converse())
            aborted = asyncio.create_task(self._abort.wait())
            try:
                await asyncio.wait({exchange, aborted}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                aborted.cancel()
                if not exchange.done():
                    exchange.cancel()
                    try:
                        await exchange
                    except asyncio.CancelledError:
                        pass

            if not exchange.cancelled() and exchange.exception() is not None:
                if not self._abort.is_set():
                    logger.error("Remote mode error", exc_info=exchange.exception())
            session.consume_one_time_flags()
        finally:
            self._set_thinking(False)
            switch_sub.cancel()
            reader.stop()
            session.permissions.cancel_wait()

        return self._exit_reason or ExitReason.EXIT
