"""Restart policy for the Local driver's assistant process.

A small state machine: each failure is recorded and the policy answers
RETRY or STOP. A caller-requested exit or switch always wins, so a
process killed as part of teardown is never restarted.
"""
from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class RestartDecision(str, Enum):
    RETRY = "retry"
    STOP = "stop"


class RestartPolicy:
    """Bounded or unbounded restarts with a fixed delay."""

    def __init__(self, max_restarts: int | None = None, delay_seconds: float = 1.0) -> None:
        if max_restarts is not None and max_restarts < 0:
            raise ValueError("max_restarts must be >= 0 or None")
        self.max_restarts = max_restarts
        self.delay_seconds = delay_seconds
        self._restarts = 0

    @property
    def restarts(self) -> int:
        return self._restarts

    def on_failure(self, *, exit_requested: bool) -> RestartDecision:
        if exit_requested:
            return RestartDecision.STOP
        if self.max_restarts is not None and self._restarts >= self.max_restarts:
            logger.error(
                "Assistant process failed %d time(s), restart limit reached",
                self._restarts + 1,
            )
            return RestartDecision.STOP
        self._restarts += 1
        logger.warning(
            "Assistant process failed, restarting (restart %d%s)",
            self._restarts,
            f"/{self.max_restarts}" if self.max_restarts is not None else "",
        )
        return RestartDecision.RETRY

    def reset(self) -> None:
        self._restarts = 0
