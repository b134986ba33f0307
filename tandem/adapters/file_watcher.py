"""Polling file watch primitive.

Compares a (mtime_ns, size) stat signature on an interval and calls
``on_change`` whenever it differs. The state at start is taken as the
baseline, so only later changes fire; a file that appears after start
counts as a change.
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

Signature = tuple[int, int] | None


def _signature(path: Path) -> Signature:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return (st.st_mtime_ns, st.st_size)


class PollingFileWatcher:
    """Watches a single file for modification."""

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], None],
        interval: float = 0.25,
    ) -> None:
        self.path = path
        self._on_change = on_change
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._last: Signature = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._last = _signature(self.path)
        self._task = asyncio.create_task(self._poll())
        logger.debug("Watching %s", self.path)

    def poll_once(self) -> bool:
        """Check for a change now. Returns True if one was detected."""
        current = _signature(self.path)
        if current == self._last:
            return False
        self._last = current
        if current is None:
            return False
        try:
            self._on_change()
        except Exception:
            logger.exception("File change handler for %s raised", self.path)
        return True

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.poll_once()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def close(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
