"""Where the assistant keeps its per-project session transcripts."""
from __future__ import annotations

import re
from pathlib import Path

_PROJECT_ID_CHARS = re.compile(r"[\\/.:]")


def project_id(working_directory: str | Path) -> str:
    """Resolved path with separators, dots and colons replaced by dashes."""
    return _PROJECT_ID_CHARS.sub("-", str(Path(working_directory).resolve()))


def project_dir(claude_config_dir: Path, working_directory: str | Path) -> Path:
    return Path(claude_config_dir) / "projects" / project_id(working_directory)


def transcript_path(
    claude_config_dir: Path, working_directory: str | Path, session_id: str,
) -> Path:
    return project_dir(claude_config_dir, working_directory) / f"{session_id}.jsonl"


def session_exists(
    claude_config_dir: Path, working_directory: str | Path, session_id: str | None,
) -> bool:
    if not session_id:
        return False
    return transcript_path(claude_config_dir, working_directory, session_id).exists()
