from __future__ import annotations

from tandem.adapters.events import (
    PermissionReply,
    SwitchRequest,
    UserInput,
    claude_event_frame,
    event_timestamp_ms,
    mode_change_frame,
    parse_inbound,
    thinking_frame,
)
from tandem.engine.models import Mode, PermissionResponse


def test_user_input_with_images() -> None:
    message = parse_inbound({
        "type": "user_input",
        "payload": {
            "sessionId": "s-1",
            "prompt": "look",
            "images": [
                {"name": "a.png", "mimeType": "image/png", "data": "QUJD"},
                {"name": "broken"},
                "nope",
            ],
        },
    })
    assert isinstance(message, UserInput)
    assert message.session_id == "s-1"
    assert [image.name for image in message.images] == ["a.png"]


def test_permission_and_switch_frames() -> None:
    reply = parse_inbound({"type": "permission_response", "payload": {"response": "no"}})
    assert isinstance(reply, PermissionReply)
    assert reply.response is PermissionResponse.DENY

    assert isinstance(parse_inbound({"type": "switch"}), SwitchRequest)


def test_invalid_frames_are_ignored() -> None:
    assert parse_inbound({"type": "permission_response", "payload": {"response": "maybe"}}) is None
    assert parse_inbound({"type": "user_input", "payload": {"prompt": 5}}) is None
    assert parse_inbound({"type": "ping"}) is None
    assert parse_inbound({"type": "unknown"}) is None


def test_outbound_frame_shapes() -> None:
    event = {"type": "user", "timestamp": "2024-01-01T00:00:00.000Z"}
    frame = claude_event_frame("s-1", event)

    assert frame["type"] == "claude_event"
    assert frame["payload"]["sessionId"] == "s-1"
    assert frame["payload"]["timestamp"] == 1704067200000
    assert thinking_frame(True)["payload"]["thinking"] is True
    assert mode_change_frame(Mode.LOCAL)["payload"]["mode"] == "local"


def test_unparseable_timestamp_falls_back_to_now() -> None:
    assert event_timestamp_ms({"timestamp": "yesterday"}) > 1_600_000_000_000
    assert event_timestamp_ms({}) > 1_600_000_000_000
