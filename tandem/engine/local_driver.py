"""Local driver: the operator works with the assistant in this terminal.

While active it runs the hook receiver, writes the hook settings file,
tails the transcript, and supervises the assistant process. Any web
activity (input, switch request, permission answer) aborts the process
and hands control to the Remote driver.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from tandem.adapters.hook_server import HookEvent, HookServer
from tandem.adapters.hook_settings import cleanup_hook_settings_file, generate_hook_settings_file
from tandem.adapters.synchronizer import TranscriptSynchronizer
from tandem.adapters.transcript import TranscriptEntry

from .channels import Subscription
from .config import TandemConfig
from .errors import LocalProcessError
from .local_process import LocalProcessRunner, build_local_args
from .models import ExitReason
from .paths import project_dir, session_exists
from .retry import RestartDecision, RestartPolicy
from .session import Session

logger = logging.getLogger(__name__)

_THINKING_ON = frozenset({"UserPromptSubmit"})
_THINKING_OFF = frozenset({"Stop", "SessionEnd"})


class LocalDriver:
    """Runs one Local-mode stint. ``run()`` returns why it ended."""

    def __init__(
        self,
        session: Session,
        config: TandemConfig,
        *,
        runner: LocalProcessRunner | None = None,
        hook_server_factory: Callable[..., HookServer] = HookServer,
        restart_policy: RestartPolicy | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._runner = runner or LocalProcessRunner(
            config.claude_command,
            terminate_grace_seconds=config.local_terminate_grace_seconds,
            env=config.assistant_env(),
        )
        self._hook_server_factory = hook_server_factory
        self._policy = restart_policy or RestartPolicy(
            config.local_max_restarts, config.local_restart_delay_seconds,
        )

        self._abort = asyncio.Event()
        self._exit_reason: ExitReason | None = None
        self._thinking = False

    @property
    def exit_reason(self) -> ExitReason | None:
        return self._exit_reason

    def request(self, reason: ExitReason) -> None:
        """Ask the driver to stop. The first reason wins."""
        if self._exit_reason is None:
            self._exit_reason = reason
            logger.info("Local mode ending: %s", reason.value)
        self._abort.set()

    def request_exit(self) -> None:
        self.request(ExitReason.EXIT)

    # ── Event handlers ──

    def _set_thinking(self, thinking: bool) -> None:
        if thinking == self._thinking:
            return
        self._thinking = thinking
        self._session.send_thinking(thinking)

    def _handle_hook_event(self, event: HookEvent) -> None:
        if event.event_name == "PermissionRequest":
            self._session.last_permission_tool = event.tool_name
        if event.event_name in _THINKING_ON:
            self._set_thinking(True)
        elif event.event_name in _THINKING_OFF:
            self._set_thinking(False)
        self._session.send_claude_event(event.to_claude_event())

    def _handle_session_start(self, event: HookEvent) -> None:
        self._session.set_claude_session_id(event.session_id)

    def _forward_entry(self, entry: TranscriptEntry) -> None:
        # Summaries are generated on the web side.
        if entry.kind != "summary":
            self._session.send_claude_event(entry.raw)

    def _handle_idle(self, _: None) -> None:
        logger.debug(
            "Assistant output settled for %s", (self._session.claude_session_id or "-")[:8],
        )

    # ── Main loop ──

    async def run(self) -> ExitReason:
        session = self._session
        config = self._config

        # Web input or a permission answer already waiting: go straight to Remote.
        if session.queue.size() > 0:
            logger.info("Queue holds %d message(s), switching to remote", session.queue.size())
            return ExitReason.SWITCH
        session.permissions.clear_pending()
        if session.permissions.has_pending:
            logger.info("Parked permission response waiting, switching to remote")
            return ExitReason.SWITCH

        hook_server = self._hook_server_factory(read_timeout=config.hook_read_timeout_seconds)
        port = await hook_server.start()
        settings_file = generate_hook_settings_file(config.resolved_hooks_dir, port)
        projects = project_dir(config.claude_config_dir, session.path)
        synchronizer = TranscriptSynchronizer(
            projects,
            session.claude_session_id,
            debounce_seconds=config.transcript_debounce_seconds,
            fallback_interval_seconds=config.transcript_fallback_interval_seconds,
            poll_interval_seconds=config.transcript_poll_interval_seconds,
        )
        subscriptions: list[Subscription] = []
        try:
            subscriptions += [
                hook_server.on_session_start.subscribe(self._handle_session_start),
                hook_server.on_hook_event.subscribe(self._handle_hook_event),
                synchronizer.on_entry.subscribe(self._forward_entry),
                synchronizer.on_idle.subscribe(self._handle_idle),
                session.queue.on_push.subscribe(lambda _: self.request(ExitReason.SWITCH)),
                session.on_switch.subscribe(lambda _: self.request(ExitReason.SWITCH)),
                session.permissions.on_deferred.subscribe(self._handle_deferred_permission),
            ]
            session.session_found.add(synchronizer.retarget)
            await synchronizer.start()
            projects.mkdir(parents=True, exist_ok=True)
            await self._supervise(settings_file)
        finally:
            self._set_thinking(False)
            for subscription in subscriptions:
                subscription.cancel()
            session.session_found.discard(synchronizer.retarget)
            await synchronizer.close()
            await hook_server.stop()
            cleanup_hook_settings_file(settings_file)

        return self._exit_reason or ExitReason.EXIT

    def _handle_deferred_permission(self, _response) -> None:
        logger.info("Permission response received from web, switching to remote")
        self.request(ExitReason.SWITCH)

    async def _supervise(self, settings_file) -> None:
        session = self._session
        config = self._config
        while self._exit_reason is None:
            args = build_local_args(
                session_id=session.claude_session_id,
                session_exists=session_exists(
                    config.claude_config_dir, session.path, session.claude_session_id,
                ),
                claude_args=session.claude_args,
                settings_path=settings_file,
            )
            try:
                await self._runner.run(args, cwd=session.path, abort=self._abort)
            except LocalProcessError as exc:
                logger.warning("Local assistant failed: %s", exc)
                decision = self._policy.on_failure(exit_requested=self._exit_reason is not None)
                if decision is RestartDecision.STOP:
                    break
                await self._restart_delay()
                continue
            finally:
                session.consume_one_time_flags()

            # Operator quit the assistant.
            if self._exit_reason is None:
                self._exit_reason = ExitReason.EXIT

    async def _restart_delay(self) -> None:
        try:
            await asyncio.wait_for(self._abort.wait(), timeout=self._policy.delay_seconds)
        except asyncio.TimeoutError:
            return
