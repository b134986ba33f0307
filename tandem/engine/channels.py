"""Typed event channels between the session and its collaborators.

Each collaborator event (user input, switch request, deferred permission,
transport close, ...) gets its own Channel. A Channel holds at most one
subscriber; registering a second one while the first is active raises
instead of silently replacing it. Drivers subscribe on entry and cancel
their Subscription on teardown.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

from .errors import SubscriberAlreadyRegisteredError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]


class Subscription(Generic[T]):
    """Handle for an active channel subscription."""

    def __init__(self, channel: Channel[T], handler: Handler[T]) -> None:
        self._channel = channel
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._channel._release(self)

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


class Channel(Generic[T]):
    """Single-subscriber event channel.

    publish() runs the handler synchronously within the caller's event
    loop turn, so a handler applies its state change atomically relative
    to other callbacks.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscription: Subscription[T] | None = None

    @property
    def has_subscriber(self) -> bool:
        return self._subscription is not None

    def subscribe(self, handler: Handler[T]) -> Subscription[T]:
        if self._subscription is not None:
            raise SubscriberAlreadyRegisteredError(self.name)
        subscription = Subscription(self, handler)
        self._subscription = subscription
        return subscription

    def publish(self, value: T) -> bool:
        """Deliver value to the subscriber. Returns False if nobody listens."""
        subscription = self._subscription
        if subscription is None:
            return False
        try:
            subscription._handler(value)
        except Exception:
            logger.exception("Subscriber on channel %s raised", self.name)
        return True

    def _release(self, subscription: Subscription[T]) -> None:
        if self._subscription is subscription:
            self._subscription = None


class ObserverSet(Generic[T]):
    """Multi-observer registry for broadcast notifications."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._observers: list[Handler[T]] = []

    def add(self, observer: Handler[T]) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def discard(self, observer: Handler[T]) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._observers)

    def notify(self, value: T) -> None:
        for observer in list(self._observers):
            try:
                observer(value)
            except Exception:
                logger.exception("Observer on %s raised", self.name)
