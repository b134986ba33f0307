"""Envelope types exchanged with the cloud session channel.

Inbound frames are parsed into typed dataclasses for safe consumption
by the Session; outbound frames are built as plain dicts ready for
JSON serialization. Every frame is ``{"type": ..., "payload": {...}}``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tandem.engine.models import ImageAttachment, Mode, PermissionResponse

PING_FRAME: dict[str, str] = {"type": "ping"}
PONG_FRAME: dict[str, str] = {"type": "pong"}


@dataclass
class CloudMessage:
    """Base inbound message from the cloud channel."""
    message_type: str = ""
    session_id: str | None = None


@dataclass
class UserInput(CloudMessage):
    message_type: str = "user_input"
    prompt: str = ""
    images: tuple[ImageAttachment, ...] = field(default_factory=tuple)


@dataclass
class PermissionReply(CloudMessage):
    message_type: str = "permission_response"
    response: PermissionResponse = PermissionResponse.DENY


@dataclass
class SwitchRequest(CloudMessage):
    message_type: str = "switch"


INBOUND_TYPES = frozenset({"user_input", "permission_response", "switch"})
KEEPALIVE_TYPES = frozenset({"ping", "pong"})


def _parse_images(raw: Any) -> tuple[ImageAttachment, ...]:
    if not isinstance(raw, list):
        return ()
    images = []
    for item in raw:
        if isinstance(item, dict):
            image = ImageAttachment.from_dict(item)
            if image is not None:
                images.append(image)
    return tuple(images)


def parse_inbound(data: dict[str, Any]) -> CloudMessage | None:
    """Convert a decoded frame into a typed message.

    Returns None for keep-alive frames, unknown types, and frames whose
    payload does not carry the fields the type requires.
    """
    message_type = data.get("type")
    if message_type not in INBOUND_TYPES:
        return None
    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    session_id = payload.get("sessionId")

    if message_type == "user_input":
        prompt = payload.get("prompt")
        if not isinstance(prompt, str):
            return None
        return UserInput(
            session_id=session_id,
            prompt=prompt,
            images=_parse_images(payload.get("images")),
        )

    if message_type == "permission_response":
        response = PermissionResponse.parse(payload.get("response"))
        if response is None:
            return None
        return PermissionReply(session_id=session_id, response=response)

    return SwitchRequest(session_id=session_id)


def _now_ms() -> int:
    return int(time.time() * 1000)


def event_timestamp_ms(event: dict[str, Any]) -> int:
    """Use the event's own ISO timestamp when parseable, else now."""
    raw = event.get("timestamp")
    if isinstance(raw, str) and raw:
        try:
            return int(datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            pass
    return _now_ms()


def claude_event_frame(session_id: str, event: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "claude_event",
        "payload": {
            "sessionId": session_id,
            "event": event,
            "timestamp": event_timestamp_ms(event),
        },
    }


def thinking_frame(thinking: bool) -> dict[str, Any]:
    return {
        "type": "thinking",
        "payload": {"thinking": thinking, "timestamp": _now_ms()},
    }


def mode_change_frame(mode: Mode) -> dict[str, Any]:
    return {
        "type": "mode_change",
        "payload": {"mode": mode.value, "timestamp": _now_ms()},
    }
