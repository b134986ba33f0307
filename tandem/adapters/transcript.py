"""Parsing of the assistant's append-only session transcript.

One JSON object per line. Lines that fail to parse or do not match an
expected entry shape are skipped; internal bookkeeping records are
dropped before validation.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ENTRY_TYPES = frozenset({"user", "assistant", "system", "summary"})
INTERNAL_TYPES = frozenset({"file-history-snapshot", "change", "queue-operation"})


@dataclass(frozen=True)
class TranscriptEntry:
    """A validated transcript record and its deduplication key."""
    kind: str
    key: str
    raw: dict[str, Any]

    @property
    def is_assistant(self) -> bool:
        return self.kind == "assistant"


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def validate_entry(record: Any) -> TranscriptEntry | None:
    """Check a decoded record against the expected shapes."""
    if not isinstance(record, dict):
        return None
    kind = record.get("type")
    if kind not in ENTRY_TYPES:
        return None

    if kind == "summary":
        leaf, summary = record.get("leafUuid"), record.get("summary")
        if not (_is_str(leaf) and _is_str(summary)):
            return None
        return TranscriptEntry(kind, f"summary:{leaf}:{summary}", record)

    uuid = record.get("uuid")
    if not _is_str(uuid):
        return None
    message = record.get("message")
    if kind == "user" and not isinstance(message, dict):
        return None
    if kind == "assistant" and message is not None and not isinstance(message, dict):
        return None
    return TranscriptEntry(kind, uuid, record)


def parse_lines(lines: list[str]) -> list[TranscriptEntry]:
    entries: list[TranscriptEntry] = []
    for lineno, line in enumerate(lines, 1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except ValueError:
            logger.debug("Skipping malformed transcript line %d", lineno)
            continue
        if isinstance(record, dict) and record.get("type") in INTERNAL_TYPES:
            continue
        entry = validate_entry(record)
        if entry is not None:
            entries.append(entry)
    return entries


def read_transcript(path: Path) -> list[TranscriptEntry]:
    """Read and parse a whole transcript file. Missing file -> []."""
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.warning("Cannot read transcript %s: %s", path, exc)
        return []
    return parse_lines(content.split("\n"))
