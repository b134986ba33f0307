"""Mode state machine.

Defines valid mode transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    LOCAL ──(web input, web switch, deferred permission)──> REMOTE
    REMOTE ──(terminal reclaim, web switch)──> LOCAL

    Either driver may end the loop with ExitReason.EXIT.
"""
from __future__ import annotations

from .models import ExitReason, Mode

VALID_TRANSITIONS: dict[Mode, set[Mode]] = {
    Mode.LOCAL: {Mode.REMOTE},
    Mode.REMOTE: {Mode.LOCAL},
}


def validate_transition(current: Mode, target: Mode) -> None:
    """Validate a mode transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(m.value for m in allowed) or "none"
        raise ValueError(
            f"Invalid mode transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def next_mode(current: Mode, reason: ExitReason) -> Mode | None:
    """Mode to enter after a driver returns, or None when the loop ends."""
    if reason is ExitReason.EXIT:
        return None
    target = Mode.REMOTE if current is Mode.LOCAL else Mode.LOCAL
    validate_transition(current, target)
    return target
