"""Streaming exchange with the assistant SDK (Remote mode).

The prompt is a pushable async stream: the first user message is pushed
up front, and after each ``result`` message the next queued message is
pushed into the same stream. A ``None`` from ``next_message`` ends the
stream. SDK message objects are normalized to plain dicts with a
``type`` tag so they can be rendered and forwarded unchanged.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from .models import PermissionResponse, QueueMessage

logger = logging.getLogger(__name__)

QueryFn = Callable[..., AsyncIterator[Any]]
OptionsFactory = Callable[[str | None], Any]

_END = object()

_MESSAGE_TYPES = {
    "SystemMessage": "system",
    "AssistantMessage": "assistant",
    "UserMessage": "user",
    "ResultMessage": "result",
    "StreamEvent": "stream_event",
}

_BLOCK_TYPES = {
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}


class PushableStream:
    """Async iterator fed by push(); end() finishes it after the backlog."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def push(self, item: dict[str, Any]) -> None:
        if self._ended:
            return
        self._queue.put_nowait(item)

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_END)

    def __aiter__(self) -> PushableStream:
        return self

    async def __anext__(self) -> dict[str, Any]:
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        return item


def build_content(text: str, images=()) -> str | list[dict[str, Any]]:
    """Plain text, or content blocks with images first and text last."""
    if not images:
        return text
    content: list[dict[str, Any]] = [
        {
            "type": "image",
            "source": {"type": "base64", "media_type": img.mime_type, "data": img.data},
        }
        for img in images
    ]
    if text:
        content.append({"type": "text", "text": text})
    return content


def user_message(item: QueueMessage) -> dict[str, Any]:
    return {
        "type": "user",
        "message": {"role": "user", "content": build_content(item.message, item.images)},
    }


def _to_plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        plain = {f.name: _to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
        block_type = _BLOCK_TYPES.get(type(value).__name__)
        if block_type:
            plain = {"type": block_type, **plain}
        return plain
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def normalize_message(message: Any) -> dict[str, Any]:
    """Convert an SDK message object to a tagged plain dict."""
    if isinstance(message, dict):
        return message
    kind = _MESSAGE_TYPES.get(type(message).__name__, type(message).__name__)
    plain = _to_plain(message)
    if not isinstance(plain, dict):
        return {"type": kind, "value": plain}

    if kind == "system":
        data = plain.pop("data", None) or {}
        return {"type": "system", **data, "subtype": plain.get("subtype")}
    if kind in ("assistant", "user"):
        body = {"role": kind, "content": plain.get("content")}
        if "model" in plain:
            body["model"] = plain["model"]
        return {
            "type": kind,
            "message": body,
            "parent_tool_use_id": plain.get("parent_tool_use_id"),
        }
    return {"type": kind, **plain}


def make_permission_callback(
    request_permission: Callable[[str, dict[str, Any]], Awaitable[PermissionResponse]],
):
    """Adapt a permission request coroutine to the SDK can_use_tool signature."""

    async def can_use_tool(tool_name: str, tool_input: dict[str, Any], context: object = None):
        from claude_agent_sdk.types import PermissionResultAllow, PermissionResultDeny

        response = await request_permission(tool_name, tool_input)
        if response.allows:
            return PermissionResultAllow(updated_input=tool_input)
        return PermissionResultDeny(message="User denied permission")

    return can_use_tool


def sdk_options_factory(
    *,
    cwd: str,
    can_use_tool,
    env: dict[str, str] | None = None,
) -> OptionsFactory:
    """Build ClaudeAgentOptions per attempt (resume differs between tries)."""

    def factory(resume: str | None):
        from claude_agent_sdk import ClaudeAgentOptions

        return ClaudeAgentOptions(
            cwd=cwd,
            permission_mode="default",
            resume=resume,
            can_use_tool=can_use_tool,
            env=dict(env or {}),
        )

    return factory


def sdk_query(**kwargs) -> AsyncIterator[Any]:
    from claude_agent_sdk import query

    return query(**kwargs)


async def run_query(
    first: QueueMessage,
    *,
    resume: str | None,
    query_fn: QueryFn,
    options_factory: OptionsFactory,
    next_message: Callable[[], Awaitable[QueueMessage | None]],
    on_message: Callable[[dict[str, Any]], None],
    on_session_found: Callable[[str], None],
    set_thinking: Callable[[bool], None],
) -> None:
    """Drive one SDK conversation until the prompt stream ends."""
    stream = PushableStream()
    opening = user_message(first)
    stream.push(opening)
    on_message(opening)

    messages = query_fn(prompt=stream, options=options_factory(resume))
    set_thinking(True)
    count = 0
    try:
        async for raw in messages:
            count += 1
            message = normalize_message(raw)
            kind = message.get("type")
            logger.debug("SDK message #%d type=%s subtype=%s", count, kind, message.get("subtype"))
            on_message(message)

            if kind == "system" and message.get("subtype") == "init":
                set_thinking(True)
                session_id = message.get("session_id")
                if isinstance(session_id, str) and session_id:
                    on_session_found(session_id)

            elif kind == "result":
                set_thinking(False)
                nxt = await next_message()
                if nxt is None:
                    logger.debug("No next message, ending prompt stream")
                    return
                follow_up = user_message(nxt)
                stream.push(follow_up)
                on_message(follow_up)
                set_thinking(True)
    finally:
        stream.end()
        aclose = getattr(messages, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.debug("SDK message loop ended after %d message(s)", count)
