"""Adapters package - I/O at the edges of the session orchestrator.

The cloud channel (websocket + REST), the local hook receiver and its
generated settings, and the transcript synchronizer.
"""
from __future__ import annotations

__all__ = [
    "CloudApi",
    "HookEvent",
    "HookServer",
    "ReconnectingTransport",
    "TranscriptSynchronizer",
    "build_session_url",
]

from tandem.adapters.cloud_api import CloudApi
from tandem.adapters.hook_server import HookEvent, HookServer
from tandem.adapters.synchronizer import TranscriptSynchronizer
from tandem.adapters.transport import ReconnectingTransport, build_session_url
