"""Hand-off queue for messages arriving from the web client.

A single-consumer rendezvous: pushes are buffered FIFO until the Remote
driver asks for the next one. At most one wait_for_message() may be
suspended at a time; a second concurrent wait raises ConcurrentWaitError.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable

from .channels import Channel
from .errors import ConcurrentWaitError
from .models import ImageAttachment, QueueMessage

logger = logging.getLogger(__name__)


class MessageQueue:
    """FIFO queue with one pending receive slot."""

    def __init__(self) -> None:
        self._items: deque[QueueMessage] = deque()
        self._waiter: asyncio.Future[QueueMessage | None] | None = None
        self._closed = False
        # Fires on every accepted push, whether or not a waiter is present.
        self.on_push: Channel[QueueMessage] = Channel("queue.push")

    @property
    def closed(self) -> bool:
        return self._closed

    def push(
        self,
        message: str,
        images: Iterable[ImageAttachment] | None = None,
    ) -> None:
        """Queue a message, or hand it straight to a suspended waiter."""
        if self._closed:
            logger.debug("Push ignored, queue closed")
            return

        item = QueueMessage(message=message, images=tuple(images or ()))
        self.on_push.publish(item)

        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(item)
            return

        self._items.append(item)

    def pop(self) -> QueueMessage | None:
        """Take the next message without waiting."""
        if self._items:
            return self._items.popleft()
        return None

    async def wait_for_message(self) -> QueueMessage | None:
        """Return the next message, suspending until one is pushed.

        Returns None when the queue is reset or closed while waiting.
        """
        if self._closed:
            return None
        if self._items:
            return self._items.popleft()
        if self._waiter is not None and not self._waiter.done():
            raise ConcurrentWaitError("MessageQueue")

        waiter: asyncio.Future[QueueMessage | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiter = waiter
        try:
            return await waiter
        except asyncio.CancelledError:
            # Handed a message in the same turn we were cancelled:
            # put it back so it is not lost.
            if waiter.done() and not waiter.cancelled():
                item = waiter.result()
                if item is not None:
                    self._items.appendleft(item)
            raise
        finally:
            if self._waiter is waiter:
                self._waiter = None

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def reset(self) -> None:
        """Drop queued messages and wake a suspended waiter with None."""
        dropped = len(self._items)
        self._items.clear()
        waiter = self._waiter
        self._waiter = None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
        if dropped:
            logger.debug("Queue reset dropped %d message(s)", dropped)

    def close(self) -> None:
        """Permanently disable pushes and reset."""
        self._closed = True
        self.reset()
