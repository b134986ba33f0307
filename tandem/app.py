"""Tandem: run the coding assistant with a live web remote control."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

logger = logging.getLogger(__name__)


def configure_logging(log_dir: Path, level: str = "INFO", *, verbose: bool = False) -> Path:
    """Rotating file log; stderr only with --verbose (the assistant owns the tty)."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "tandem.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="tandem",
        description=(
            "Start the coding assistant with remote control. Unrecognized "
            "arguments (or everything after --) are passed to the assistant."
        ),
    )
    parser.add_argument(
        "--path", default=os.getcwd(),
        help="Working directory (default: current directory)",
    )
    parser.add_argument(
        "--remote", action="store_true",
        help="Start in remote mode",
    )
    parser.add_argument(
        "--resume", metavar="SESSION_ID",
        help="Resume an assistant session",
    )
    parser.add_argument(
        "--continue", dest="continue_", action="store_true",
        help="Continue the last conversation",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="Config file (default: <config dir>/config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Debug logging to stderr as well as the log file",
    )
    return parser


def assistant_args(args, passthrough: list[str]) -> list[str]:
    claude_args: list[str] = []
    if args.resume:
        claude_args += ["--resume", args.resume]
    if args.continue_:
        claude_args.append("--continue")
    extra = list(passthrough)
    if extra and extra[0] == "--":
        extra = extra[1:]
    return claude_args + extra


async def run_session(config, args, claude_args: list[str]) -> int:
    """Create the cloud session, run the mode loop, then tear everything down."""
    from tandem.adapters.cloud_api import CloudApi
    from tandem.adapters.transport import ReconnectingTransport, build_session_url
    from tandem.engine.errors import ClaudeNotFoundError, CloudApiError, SessionLimitError, TransportConnectError
    from tandem.engine.local_driver import LocalDriver
    from tandem.engine.loop import ModeLoop
    from tandem.engine.models import Mode
    from tandem.engine.permissions import PermissionRelay
    from tandem.engine.remote_driver import RemoteDriver
    from tandem.engine.session import Session
    from tandem.shared.renderer import TerminalRenderer

    renderer = TerminalRenderer()
    path = str(Path(args.path).resolve())
    api = CloudApi(config)

    try:
        server_session_id = await api.create_session(path)
    except SessionLimitError as exc:
        renderer.notice(exc.message, style="red")
        if exc.upgrade_url:
            renderer.notice(f"Upgrade at: {exc.upgrade_url}", style="yellow")
        return 1
    except CloudApiError as exc:
        renderer.notice(f"Error: {exc.message}", style="red")
        return 1

    transport = ReconnectingTransport(
        build_session_url(
            config.api_url, server_session_id, config.user_id, config.device_id,
            config.access_token,
        ),
        token=config.access_token,
        ping_interval=config.ping_interval_seconds,
        max_reconnect_attempts=config.max_reconnect_attempts,
        backoff_step=config.reconnect_backoff_step_seconds,
        backoff_cap=config.reconnect_backoff_cap_seconds,
    )
    renderer.notice("Connecting to server...")
    try:
        await transport.connect()
    except TransportConnectError as exc:
        renderer.notice(f"Error: {exc}", style="red")
        await api.end_session(server_session_id)
        return 1

    session = Session(
        server_session_id=server_session_id,
        user_id=config.user_id,
        device_id=config.device_id,
        path=path,
        transport=transport,
        claude_args=claude_args,
        relay=PermissionRelay(
            pending_ttl_seconds=config.pending_permission_ttl_seconds,
            protected_tools=config.protected_tools,
        ),
    )

    def driver_factory(mode: Mode):
        if mode is Mode.LOCAL:
            return LocalDriver(session, config)
        return RemoteDriver(session, config, renderer=renderer)

    mode_loop = ModeLoop(
        session,
        driver_factory,
        starting_mode=Mode.REMOTE if args.remote else Mode.LOCAL,
        on_mode_change=renderer.mode_banner,
    )

    def _channel_lost(_: None) -> None:
        if not session.closed:
            logger.error("Session channel lost, shutting down")
            renderer.notice("Connection to server lost.", style="red")
            mode_loop.stop()

    transport.on_close.subscribe(_channel_lost)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, mode_loop.stop)

    exit_code = 0
    try:
        await mode_loop.run()
    except ClaudeNotFoundError as exc:
        renderer.notice(str(exc), style="red")
        exit_code = 1
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        renderer.notice("Shutting down...")
        await session.close()
        await api.end_session(server_session_id)
    return exit_code


def main(argv: list[str] | None = None) -> int:
    from tandem.engine.errors import NotLoggedInError
    from tandem.engine.yaml_config import load_config

    parser = build_parser()
    args, passthrough = parser.parse_known_args(argv)

    config = load_config(args.config)
    log_file = configure_logging(config.log_dir, config.log_level, verbose=args.verbose)
    logger.info("Starting tandem cwd=%s log=%s", args.path, log_file)

    if not config.is_logged_in:
        print(NotLoggedInError())
        return 1

    claude_args = assistant_args(args, passthrough)
    try:
        return asyncio.run(run_session(config, args, claude_args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
