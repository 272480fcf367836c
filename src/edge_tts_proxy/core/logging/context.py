"""
Logging Context and Process-wide Logging State.

The request id lives in a ContextVar so that every coroutine spawned for a
job (one per chunk) logs under the id of the request that created it:
asyncio copies the current context into each new task.

Environment Variables:
    - EDGE_TTS_LOG_LEVEL: Log level (1-4 or a name)
    - EDGE_TTS_LOG_DIR: Directory for the JSONL log file (off when unset)
    - EDGE_TTS_JSONL_FILE: JSONL filename
    - EDGE_TTS_LOG_ROTATE_BYTES: Max file size before rotation
    - EDGE_TTS_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Request id of the current context, "-" outside a request."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Bind a request id to the current context."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _int_env(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging options from settings.yaml and the environment.

    Environment variables win over the `logging:` section of the settings
    file. A missing or unreadable settings file leaves only the
    environment and built-in defaults.

    Returns:
        Dictionary with keys level, log_dir, jsonl_file,
        rotate_max_bytes and rotate_backup_count (all optional).
    """
    cfg: Dict[str, Any] = {}

    from edge_tts_proxy.core.config import load_settings
    try:
        settings = load_settings()
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, ValueError, yaml.YAMLError) as exc:
        # Malformed settings surface later through ServiceConfig validation.
        cfg["settings_error"] = str(exc)

    if os.getenv("EDGE_TTS_LOG_LEVEL"):
        cfg["level"] = os.environ["EDGE_TTS_LOG_LEVEL"]
    if os.getenv("EDGE_TTS_LOG_DIR"):
        cfg["log_dir"] = os.environ["EDGE_TTS_LOG_DIR"]
    if os.getenv("EDGE_TTS_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["EDGE_TTS_JSONL_FILE"]

    rotate_bytes = _int_env("EDGE_TTS_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _int_env("EDGE_TTS_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg
