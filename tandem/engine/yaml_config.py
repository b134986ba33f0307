"""YAML configuration loader.

Loads ``<config_dir>/config.yaml`` holding credentials, endpoints and
policy overrides. Environment variables (TANDEM_*) win over the file.

Example YAML:
    api_url: https://cloud.example.com
    access_token: "..."
    user_id: u_123
    device_id: d_456
    email: dev@example.com

    policy:
      pending_permission_ttl_seconds: 30
      max_reconnect_attempts: 50
      protected_tools: [AskUserQuestion]
"""
from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from .config import TandemConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"

_CREDENTIAL_KEYS = ("api_url", "llm_url", "access_token", "user_id", "device_id", "email")
_PATH_KEYS = {"hooks_dir", "claude_config_dir"}
_POLICY_KEYS = {
    f.name for f in fields(TandemConfig)
    if f.name not in _CREDENTIAL_KEYS and f.name != "config_dir"
}


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.debug("load_config: no config file at %s", path)
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        logger.error("load_config: YAML parse error in %s: %s", path, exc)
        raise
    if not isinstance(raw, dict):
        logger.warning("load_config: %s is not a mapping, ignoring", path)
        return {}
    return raw


def _coerce_policy(key: str, value: Any) -> Any:
    if key in _PATH_KEYS:
        return Path(value).expanduser()
    if key == "protected_tools":
        return frozenset(str(v) for v in (value or []))
    return value


def load_config(
    path: str | Path | None = None,
    *,
    config_dir: Path | None = None,
    apply_env: bool = True,
) -> TandemConfig:
    """Build a TandemConfig from the YAML file plus env overrides."""
    base = TandemConfig() if config_dir is None else TandemConfig(config_dir=config_dir)
    config_path = Path(path) if path else base.config_dir / CONFIG_FILENAME
    raw = _read_yaml(config_path)

    overrides: dict[str, Any] = {}
    for key in _CREDENTIAL_KEYS:
        value = raw.get(key)
        if value is not None:
            overrides[key] = str(value)

    policy = raw.get("policy") or {}
    if not isinstance(policy, dict):
        logger.warning("load_config: 'policy' section is not a mapping, ignoring")
        policy = {}
    for key, value in policy.items():
        if key not in _POLICY_KEYS:
            logger.warning("load_config: unknown policy key '%s' ignored", key)
            continue
        overrides[key] = _coerce_policy(key, value)

    config = base.with_overrides(**overrides)
    if raw:
        logger.info(
            "Loaded config %s (logged_in=%s, policy overrides=%d)",
            config_path, config.is_logged_in, len(policy),
        )
    return TandemConfig.from_env(config) if apply_env else config
