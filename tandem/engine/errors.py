"""Exception hierarchy for the session orchestrator.

Specific exceptions for each failure mode. Transient faults
(socket drops, hook timeouts, malformed lines) are handled where
they occur and never reach this hierarchy.
"""
from __future__ import annotations


class TandemError(Exception):
    """Base exception for all orchestrator errors."""


class SubscriberAlreadyRegisteredError(TandemError):
    """A single-subscriber channel already has an active subscriber."""
    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"Channel '{channel}' already has a subscriber")


class ConcurrentWaitError(TandemError):
    """A second waiter tried to suspend on a single-waiter primitive."""
    def __init__(self, primitive: str):
        self.primitive = primitive
        super().__init__(
            f"{primitive} supports a single outstanding wait"
        )


class TransportConnectError(TandemError):
    """The initial handshake with the cloud channel failed."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Cannot connect to {url}: {reason}")


class LocalProcessError(TandemError):
    """The interactive assistant process exited unexpectedly."""
    def __init__(self, returncode: int | None, reason: str = ""):
        self.returncode = returncode
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Assistant process exited with code {returncode}{detail}"
        )


class ClaudeNotFoundError(TandemError):
    """The assistant executable could not be launched."""
    def __init__(self, command: str):
        self.command = command
        super().__init__(
            f"Assistant command '{command}' not found on PATH"
        )


class CloudApiError(TandemError):
    """A REST call to the cloud service failed."""
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Cloud API error {status}: {message}")


class SessionLimitError(CloudApiError):
    """The account has reached its session limit."""
    def __init__(self, message: str, upgrade_url: str | None = None):
        self.upgrade_url = upgrade_url
        super().__init__(429, message)


class NotLoggedInError(TandemError):
    """No credentials are available for the cloud service."""
    def __init__(self) -> None:
        super().__init__('Not logged in. Run "tandem login" first.')
