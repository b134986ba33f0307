"""Tandem engine: dual-mode (terminal / web) session orchestration core."""
from .models import (
    ExitReason,
    ImageAttachment,
    Mode,
    PendingPermission,
    PermissionResponse,
    QueueMessage,
)
from .config import TandemConfig
from .channels import Channel, ObserverSet, Subscription
from .message_queue import MessageQueue
from .permissions import PermissionRelay
from .errors import (
    ClaudeNotFoundError,
    CloudApiError,
    ConcurrentWaitError,
    LocalProcessError,
    NotLoggedInError,
    SessionLimitError,
    SubscriberAlreadyRegisteredError,
    TandemError,
    TransportConnectError,
)

__all__ = [
    # Models
    "ExitReason",
    "ImageAttachment",
    "Mode",
    "PendingPermission",
    "PermissionResponse",
    "QueueMessage",
    # Config
    "TandemConfig",
    "load_config",
    # Primitives
    "Channel",
    "ObserverSet",
    "Subscription",
    "MessageQueue",
    "PermissionRelay",
    # Session and drivers (lazy import to avoid circular deps)
    "Session",
    "ModeLoop",
    "LocalDriver",
    "RemoteDriver",
    # Errors
    "ClaudeNotFoundError",
    "CloudApiError",
    "ConcurrentWaitError",
    "LocalProcessError",
    "NotLoggedInError",
    "SessionLimitError",
    "SubscriberAlreadyRegisteredError",
    "TandemError",
    "TransportConnectError",
]


def __getattr__(name: str):
    if name == "Session":
        from .session import Session
        return Session
    if name == "ModeLoop":
        from .loop import ModeLoop
        return ModeLoop
    if name == "LocalDriver":
        from .local_driver import LocalDriver
        return LocalDriver
    if name == "RemoteDriver":
        from .remote_driver import RemoteDriver
        return RemoteDriver
    if name == "load_config":
        from .yaml_config import load_config
        return load_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
