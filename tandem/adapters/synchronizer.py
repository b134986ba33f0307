"""Turns the assistant's transcript file into a deduplicated entry stream.

Sync passes are triggered by the file watcher (debounced) and by a
periodic fallback timer. Each pass reads the whole file and publishes,
in file order, every entry whose key has not been seen by this
synchronizer. Retargeting to a new session file keeps the seen set, so
entries already forwarded are never replayed.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from tandem.engine.channels import Channel

from .file_watcher import PollingFileWatcher
from .transcript import TranscriptEntry, read_transcript

logger = logging.getLogger(__name__)

WatcherFactory = Callable[[Path, Callable[[], None], float], PollingFileWatcher]


class TranscriptSynchronizer:
    """Tails one session transcript at a time."""

    def __init__(
        self,
        project_dir: Path,
        session_id: str | None = None,
        *,
        debounce_seconds: float = 0.1,
        fallback_interval_seconds: float = 3.0,
        poll_interval_seconds: float = 0.25,
        watcher_factory: WatcherFactory = PollingFileWatcher,
    ) -> None:
        self.project_dir = Path(project_dir)
        self._session_id = session_id
        self._debounce = debounce_seconds
        self._fallback_interval = fallback_interval_seconds
        self._poll_interval = poll_interval_seconds
        self._watcher_factory = watcher_factory

        self._seen: set[str] = set()
        self._watcher: PollingFileWatcher | None = None
        self._retired: list[PollingFileWatcher] = []
        self._pending_sync: asyncio.TimerHandle | None = None
        self._fallback_task: asyncio.Task | None = None
        self._started = False
        self._closed = False

        self.on_entry: Channel[TranscriptEntry] = Channel("transcript.entry")
        self.on_idle: Channel[None] = Channel("transcript.idle")

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def session_file(self, session_id: str) -> Path:
        return self.project_dir / f"{session_id}.jsonl"

    # ── Lifecycle ──

    async def start(self) -> None:
        """Baseline the initial transcript and begin watching."""
        if self._started:
            return
        self._started = True
        if self._session_id:
            existing = read_transcript(self.session_file(self._session_id))
            self._seen.update(entry.key for entry in existing)
            logger.info(
                "Transcript %s: %d existing entries marked seen",
                self._session_id[:8], len(existing),
            )
            self._watch(self._session_id)
        self._fallback_task = asyncio.create_task(self._fallback_loop())

    async def close(self) -> None:
        self._closed = True
        if self._pending_sync is not None:
            self._pending_sync.cancel()
            self._pending_sync = None
        if self._fallback_task is not None:
            self._fallback_task.cancel()
            try:
                await self._fallback_task
            except asyncio.CancelledError:
                pass
            self._fallback_task = None
        watchers = self._retired + ([self._watcher] if self._watcher else [])
        self._watcher = None
        self._retired = []
        for watcher in watchers:
            await watcher.close()

    # ── Targeting ──

    def _watch(self, session_id: str) -> None:
        watcher = self._watcher_factory(
            self.session_file(session_id), self.schedule_sync, self._poll_interval,
        )
        watcher.start()
        self._watcher = watcher

    def retarget(self, session_id: str) -> None:
        """Follow a new or different assistant session file."""
        if self._closed or session_id == self._session_id:
            return
        logger.info(
            "Transcript retarget %s -> %s",
            (self._session_id or "-")[:8], session_id[:8],
        )
        self._session_id = session_id
        if self._watcher is not None:
            self._watcher.stop()
            self._retired.append(self._watcher)
            self._watcher = None
        self._watch(session_id)
        self.schedule_sync()

    # ── Sync passes ──

    def schedule_sync(self) -> None:
        """Debounced sync: bursts of triggers collapse into one pass."""
        if self._closed:
            return
        if self._pending_sync is not None:
            self._pending_sync.cancel()
        loop = asyncio.get_running_loop()
        self._pending_sync = loop.call_later(self._debounce, self._run_scheduled)

    def _run_scheduled(self) -> None:
        self._pending_sync = None
        if not self._closed:
            self.sync()

    def sync(self) -> int:
        """Forward unseen entries in file order. Returns how many were sent."""
        session_id = self._session_id
        if not session_id:
            return 0
        forwarded = 0
        saw_assistant = False
        for entry in read_transcript(self.session_file(session_id)):
            if entry.key in self._seen:
                continue
            self._seen.add(entry.key)
            self.on_entry.publish(entry)
            forwarded += 1
            saw_assistant = saw_assistant or entry.is_assistant
        if forwarded:
            logger.debug("Transcript %s: forwarded %d entries", session_id[:8], forwarded)
        if saw_assistant:
            self.on_idle.publish(None)
        return forwarded

    async def _fallback_loop(self) -> None:
        while True:
            await asyncio.sleep(self._fallback_interval)
            self.schedule_sync()
