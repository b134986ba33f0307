"""Raw-terminal key reader used while Remote mode owns the terminal.

Enter, Esc and ``q`` ask to hand the terminal back to the assistant
(switch to Local); Ctrl+C asks to exit. Signal generation is disabled
while the reader is active so Ctrl+C arrives as a key.
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Callable
from typing import TextIO

from tandem.engine.models import ExitReason

logger = logging.getLogger(__name__)

_SWITCH_KEYS = frozenset({"\r", "\n", "\x1b", "q"})
_EXIT_KEYS = frozenset({"\x03"})


def classify_key(chunk: str) -> ExitReason | None:
    """Map one read from the terminal to a driver request."""
    if not chunk:
        return None
    # Multi-byte escape sequences (arrow keys etc.) are not a bare Esc.
    if chunk.startswith("\x1b") and len(chunk) > 1:
        return None
    for ch in chunk:
        if ch in _EXIT_KEYS:
            return ExitReason.EXIT
        if ch in _SWITCH_KEYS:
            return ExitReason.SWITCH
    return None


class TerminalKeyReader:
    """Reads keys from a tty via the event loop's reader callbacks."""

    def __init__(
        self,
        on_request: Callable[[ExitReason], None],
        stream: TextIO | None = None,
    ) -> None:
        self._on_request = on_request
        self._stream = stream or sys.stdin
        self._fd: int | None = None
        self._saved_attrs: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def active(self) -> bool:
        return self._fd is not None

    def start(self) -> bool:
        """Begin reading. Returns False when stdin is not a terminal."""
        try:
            fd = self._stream.fileno()
        except (AttributeError, OSError, ValueError):
            return False
        if not os.isatty(fd):
            return False

        import termios

        self._saved_attrs = termios.tcgetattr(fd)
        attrs = termios.tcgetattr(fd)
        attrs[3] &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
        attrs[6][termios.VMIN] = 1
        attrs[6][termios.VTIME] = 0
        termios.tcsetattr(fd, termios.TCSANOW, attrs)

        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(fd, self._on_readable)
        self._fd = fd
        logger.debug("Key reader active on fd %d", fd)
        return True

    def _on_readable(self) -> None:
        if self._fd is None:
            return
        try:
            data = os.read(self._fd, 32)
        except OSError as exc:
            logger.debug("Key reader read failed: %s", exc)
            return
        request = classify_key(data.decode("utf-8", errors="ignore"))
        if request is not None:
            self._on_request(request)

    def stop(self) -> None:
        fd = self._fd
        if fd is None:
            return
        self._fd = None
        if self._loop is not None:
            self._loop.remove_reader(fd)
        if self._saved_attrs is not None:
            import termios

            termios.tcsetattr(fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None
        logger.debug("Key reader stopped")
