"""Mode loop: alternates the Local and Remote drivers until one exits.

On every transition the new mode is recorded on the session, shown by
the presentation observer and announced to the cloud, and only then is
the driver entered. A driver's ``run()`` returns only after its teardown
has completed, so two drivers never overlap.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from .lifecycle import next_mode
from .models import ExitReason, Mode
from .session import Session

logger = logging.getLogger(__name__)


class ModeDriver(Protocol):
    async def run(self) -> ExitReason: ...

    def request_exit(self) -> None: ...


DriverFactory = Callable[[Mode], ModeDriver]


class ModeLoop:
    """Runs drivers in sequence. ``run()`` returns when a driver exits."""

    def __init__(
        self,
        session: Session,
        driver_factory: DriverFactory,
        *,
        starting_mode: Mode = Mode.LOCAL,
        on_mode_change: Callable[[Mode], None] | None = None,
    ) -> None:
        self._session = session
        self._driver_factory = driver_factory
        self._starting_mode = starting_mode
        self._on_mode_change = on_mode_change
        self._current: ModeDriver | None = None
        self._stopping = False
        self.transitions: list[Mode] = []

    @property
    def current_driver(self) -> ModeDriver | None:
        return self._current

    def stop(self) -> None:
        """Ask the active driver to exit; the loop ends after its teardown."""
        self._stopping = True
        if self._current is not None:
            self._current.request_exit()

    def _enter(self, mode: Mode) -> None:
        self._session.mode = mode
        self.transitions.append(mode)
        logger.info("Entering %s mode", mode.value)
        if self._on_mode_change is not None:
            self._on_mode_change(mode)
        self._session.send_mode_change(mode)

    async def run(self) -> None:
        mode: Mode | None = self._starting_mode
        while mode is not None and not self._stopping:
            self._enter(mode)
            driver = self._driver_factory(mode)
            self._current = driver
            try:
                reason = await driver.run()
            finally:
                self._current = None
            logger.info("%s driver returned %s", mode.value, reason.value)
            if self._stopping:
                break
            mode = next_mode(mode, reason)
        logger.info("Mode loop finished")
