"""Configuration for the session orchestrator.

All settings have sensible defaults. Override via TANDEM_* env vars
or the YAML config file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8080"

# Tools that always need a fresh interactive decision.
DEFAULT_PROTECTED_TOOLS = frozenset({"AskUserQuestion"})


def _default_config_dir() -> Path:
    return Path(os.getenv("TANDEM_CONFIG_DIR") or Path.home() / ".tandem")


def _default_claude_config_dir() -> Path:
    return Path(os.getenv("CLAUDE_CONFIG_DIR") or Path.home() / ".claude")


def _env_bool(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class TandemConfig:
    """Orchestrator configuration."""

    # Cloud endpoints and credentials
    api_url: str = DEFAULT_API_URL
    llm_url: str | None = None
    access_token: str | None = field(default=None, repr=False)
    user_id: str | None = None
    device_id: str | None = None
    email: str | None = None

    # Filesystem roots. hooks_dir defaults to <config_dir>/tmp/hooks.
    config_dir: Path = field(default_factory=_default_config_dir)
    hooks_dir: Path | None = None
    claude_config_dir: Path = field(default_factory=_default_claude_config_dir)

    # Assistant executable for Local mode.
    claude_command: str = "claude"

    # Permission relay policy
    pending_permission_ttl_seconds: float = 30.0
    protected_tools: frozenset[str] = DEFAULT_PROTECTED_TOOLS

    # Transport policy
    ping_interval_seconds: float = 30.0
    max_reconnect_attempts: int = 50
    reconnect_backoff_step_seconds: float = 1.0
    reconnect_backoff_cap_seconds: float = 10.0

    # Transcript synchronizer
    transcript_debounce_seconds: float = 0.1
    transcript_fallback_interval_seconds: float = 3.0
    transcript_poll_interval_seconds: float = 0.25

    # Hook receiver
    hook_read_timeout_seconds: float = 5.0

    # Local driver restart policy. None means unbounded restarts.
    local_max_restarts: int | None = None
    local_restart_delay_seconds: float = 1.0
    local_terminate_grace_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"

    @property
    def resolved_hooks_dir(self) -> Path:
        return self.hooks_dir or self.config_dir / "tmp" / "hooks"

    @property
    def log_dir(self) -> Path:
        return self.config_dir / "logs"

    @property
    def is_logged_in(self) -> bool:
        return bool(self.access_token and self.user_id)

    def assistant_env(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Environment for the assistant, routed through the cloud LLM proxy."""
        env = dict(os.environ if base is None else base)
        if self.llm_url:
            env["ANTHROPIC_BASE_URL"] = self.llm_url
        if self.access_token:
            env["ANTHROPIC_AUTH_TOKEN"] = self.access_token
            env.pop("ANTHROPIC_API_KEY", None)
        return env

    def sdk_env(self) -> dict[str, str]:
        """Overrides for the SDK, which layers them over os.environ.

        A key cannot be removed through an overlay, so the user's API key
        is blanked instead.
        """
        env = self.assistant_env({})
        if self.access_token:
            env["ANTHROPIC_API_KEY"] = ""
        return env

    def with_overrides(self, **overrides) -> TandemConfig:
        return replace(self, **overrides)

    @classmethod
    def from_env(cls, base: TandemConfig | None = None) -> TandemConfig:
        """Apply TANDEM_* environment overrides on top of base (or defaults)."""
        config = base or cls()
        tandem_vars = sorted(k for k in os.environ if k.startswith("TANDEM_"))
        if tandem_vars:
            logger.info(
                "TandemConfig.from_env: overrides from %s", ", ".join(tandem_vars)
            )

        overrides: dict = {}
        if os.getenv("TANDEM_API_URL"):
            overrides["api_url"] = os.environ["TANDEM_API_URL"]
        if os.getenv("TANDEM_LLM_URL"):
            overrides["llm_url"] = os.environ["TANDEM_LLM_URL"]
        if os.getenv("TANDEM_HOOKS_DIR"):
            overrides["hooks_dir"] = Path(os.environ["TANDEM_HOOKS_DIR"])
        if os.getenv("TANDEM_CLAUDE_COMMAND"):
            overrides["claude_command"] = os.environ["TANDEM_CLAUDE_COMMAND"]
        if os.getenv("TANDEM_LOG_LEVEL"):
            overrides["log_level"] = os.environ["TANDEM_LOG_LEVEL"].upper()

        float_vars = {
            "TANDEM_PERMISSION_TTL": "pending_permission_ttl_seconds",
            "TANDEM_PING_INTERVAL": "ping_interval_seconds",
            "TANDEM_RECONNECT_STEP": "reconnect_backoff_step_seconds",
            "TANDEM_RECONNECT_CAP": "reconnect_backoff_cap_seconds",
            "TANDEM_LOCAL_RESTART_DELAY": "local_restart_delay_seconds",
        }
        for env_name, attr in float_vars.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            try:
                overrides[attr] = float(raw)
            except ValueError:
                logger.warning("Ignoring non-numeric %s=%r", env_name, raw)

        raw_attempts = os.getenv("TANDEM_MAX_RECONNECTS")
        if raw_attempts is not None:
            try:
                overrides["max_reconnect_attempts"] = int(raw_attempts)
            except ValueError:
                logger.warning("Ignoring non-integer TANDEM_MAX_RECONNECTS=%r", raw_attempts)

        debug = _env_bool("TANDEM_DEBUG")
        if debug:
            overrides["log_level"] = "DEBUG"

        config = replace(config, **overrides)
        logger.debug(
            "TandemConfig: api_url=%s config_dir=%s claude_config_dir=%s",
            config.api_url, config.config_dir, config.claude_config_dir,
        )
        return config
