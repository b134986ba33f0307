from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from tandem.engine.channels import Channel
from tandem.engine.config import TandemConfig
from tandem.engine.models import Mode
from tandem.engine.session import Session


class FakeTransport:
    """In-memory stand-in for the cloud channel."""

    def __init__(self) -> None:
        self.on_message: Channel[Any] = Channel("fake.message")
        self.on_close: Channel[None] = Channel("fake.close")
        self.events: list[dict[str, Any]] = []
        self.thinking: list[bool] = []
        self.modes: list[Mode] = []
        self.closed = False

    def send_claude_event(self, session_id: str, event: dict[str, Any]) -> bool:
        self.events.append(event)
        return True

    def send_thinking(self, thinking: bool) -> bool:
        self.thinking.append(thinking)
        return True

    def send_mode_change(self, mode: Mode) -> bool:
        self.modes.append(mode)
        return True

    async def close(self) -> None:
        self.closed = True

    def event_types(self) -> list[str]:
        return [event.get("type") for event in self.events]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path) -> TandemConfig:
    return TandemConfig(
        config_dir=tmp_path / "tandem",
        claude_config_dir=tmp_path / "claude",
        access_token="tok",
        user_id="u1",
        transcript_debounce_seconds=0.01,
        transcript_fallback_interval_seconds=60.0,
        transcript_poll_interval_seconds=60.0,
        local_restart_delay_seconds=0.0,
    )


@pytest.fixture
def session(transport: FakeTransport, work_dir: Path) -> Session:
    return Session(
        server_session_id="srv-1",
        user_id="u1",
        path=str(work_dir),
        transport=transport,
    )
