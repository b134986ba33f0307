"""Core data models for the session orchestrator.

All enums and dataclasses shared between the engine and adapters.
Single source of truth to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Mode(str, Enum):
    """Which driver currently controls the assistant."""
    LOCAL = "local"
    REMOTE = "remote"


class ExitReason(str, Enum):
    """Why a mode driver returned."""
    SWITCH = "switch"
    EXIT = "exit"


class PermissionResponse(str, Enum):
    """Permission decision relayed from the web client.

    Values are the wire values used on the cloud channel.
    """
    ALLOW_ONCE = "yes"
    DENY = "no"
    ALLOW_ALWAYS = "always"

    @property
    def allows(self) -> bool:
        return self is not PermissionResponse.DENY

    @classmethod
    def parse(cls, value: Any) -> PermissionResponse | None:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class ImageAttachment:
    """Base64-encoded image sent along with a web prompt."""
    name: str
    mime_type: str
    data: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ImageAttachment | None:
        data = raw.get("data")
        mime_type = raw.get("mimeType") or raw.get("mime_type")
        if not isinstance(data, str) or not isinstance(mime_type, str):
            return None
        return cls(name=str(raw.get("name") or ""), mime_type=mime_type, data=data)

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "mimeType": self.mime_type, "data": self.data}


@dataclass(frozen=True)
class QueueMessage:
    """An outbound user message waiting for the Remote driver."""
    message: str
    images: tuple[ImageAttachment, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PendingPermission:
    """A permission response that arrived with no resolver waiting."""
    response: PermissionResponse
    received_at: float

    def age(self, now: float) -> float:
        return now - self.received_at
