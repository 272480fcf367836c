"""
Configuration Management for edge-tts-proxy.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based section configs
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Per-request overrides (concurrency, max_chunk_len, cleaning_options)
    2. Environment variables (EDGE_TTS_CONCURRENCY, EDGE_TTS_MAX_CHUNK_LEN, ...)
    3. YAML config file (config/settings.yaml)
    4. Defaults class values

Example settings.yaml:
    scheduler:
      concurrency: 10
      mode: batched

    chunking:
      max_chunk_len: 2000

    token:
      refresh_margin_s: 300

    voices:
      default: zh-CN-XiaoxiaoNeural
      openai:
        alloy: en-US-AriaNeural
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    Thrown when a configuration value is outside acceptable bounds
    or not one of the allowed choices.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Upstream: Handshake and synthesis endpoints, client identity
        - Token: Session token refresh and retry policy
        - Chunking: Text splitting parameters
        - Scheduler: Fan-out width and strategy
        - Cleaning: Default text-cleaning stages
        - Voices: Default voice and OpenAI alias map
        - Logging: Log level
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Upstream (mobile translator client identity)
    # ─────────────────────────────────────────────────────────────────────────
    UPSTREAM_TOKEN_URL = "https://dev.microsofttranslator.com/apps/endpoint?api-version=1.0"
    UPSTREAM_APP_ID = "MSTranslatorAndroidApp"
    UPSTREAM_SIGNING_KEY = (
        "oik6PdDdMnOXemTbwvMn9de/h9lFnfBaCWbGMMZqqoSaQaqUOqjVGm5NqsmjcBI1x+sS9ugjB55HEJWRiFXYFw=="
    )
    UPSTREAM_CLIENT_VERSION = "4.0.530a 5fe1dc6c"
    UPSTREAM_USER_AGENT = "okhttp/4.5.0"
    UPSTREAM_ACCEPT_LANGUAGE = "zh-Hans"
    UPSTREAM_HOME_REGION = "zh-Hans-CN"
    UPSTREAM_SYNTHESIS_URL = "https://{region}.tts.speech.microsoft.com/cognitiveservices/v1"
    UPSTREAM_OUTPUT_FORMAT = "audio-24khz-48kbitrate-mono-mp3"
    UPSTREAM_REQUEST_TIMEOUT_S = 30.0
    UPSTREAM_MARKUP_LANGUAGE = "zh-CN"

    # ─────────────────────────────────────────────────────────────────────────
    # Session Token
    # ─────────────────────────────────────────────────────────────────────────
    TOKEN_REFRESH_MARGIN_S = 300        # Refresh this long before expiry
    TOKEN_MAX_ATTEMPTS = 3              # Handshake attempts per refresh
    TOKEN_BACKOFF_MS = 1000             # Linear backoff step (attempt x step)
    TOKEN_FAILURE_COOLDOWN_S = 30       # Reuse a stale token this long after a failed refresh

    # ─────────────────────────────────────────────────────────────────────────
    # Text Chunking
    # ─────────────────────────────────────────────────────────────────────────
    CHUNKING_MAX_CHUNK_LEN = 2000       # Upstream accepts ~2k chars per call

    # ─────────────────────────────────────────────────────────────────────────
    # Scheduler
    # ─────────────────────────────────────────────────────────────────────────
    SCHEDULER_CONCURRENCY = 10          # Max in-flight synthesis calls
    SCHEDULER_MODE = "batched"          # "batched" or "pool"
    SCHEDULER_MODES = ("batched", "pool")

    # ─────────────────────────────────────────────────────────────────────────
    # Text Cleaning
    # ─────────────────────────────────────────────────────────────────────────
    CLEANING_REMOVE_MARKDOWN = True
    CLEANING_REMOVE_EMOJI = True
    CLEANING_REMOVE_URLS = True
    CLEANING_REMOVE_LINE_BREAKS = False
    CLEANING_REMOVE_CITATION_NUMBERS = True
    CLEANING_CUSTOM_KEYWORDS = ""

    # ─────────────────────────────────────────────────────────────────────────
    # Voices
    # ─────────────────────────────────────────────────────────────────────────
    VOICE_DEFAULT = "zh-CN-XiaoxiaoNeural"
    VOICE_OPENAI_MAP = {
        "shimmer": "zh-CN-XiaoxiaoNeural",
        "alloy": "zh-CN-YunyangNeural",
        "fable": "zh-CN-YunjianNeural",
        "onyx": "zh-CN-XiaoyiNeural",
        "nova": "zh-CN-YunxiNeural",
        "echo": "zh-CN-liaoning-XiaobeiNeural",
    }

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class UpstreamConfig:
    """
    Upstream engine endpoints and the mobile-client identity we present.

    `synthesis_url` is a template with a `{region}` placeholder filled from
    the session token's region code.
    """
    token_url: str = Defaults.UPSTREAM_TOKEN_URL
    app_id: str = Defaults.UPSTREAM_APP_ID
    signing_key: str = Defaults.UPSTREAM_SIGNING_KEY
    client_version: str = Defaults.UPSTREAM_CLIENT_VERSION
    user_agent: str = Defaults.UPSTREAM_USER_AGENT
    accept_language: str = Defaults.UPSTREAM_ACCEPT_LANGUAGE
    home_region: str = Defaults.UPSTREAM_HOME_REGION
    synthesis_url: str = Defaults.UPSTREAM_SYNTHESIS_URL
    output_format: str = Defaults.UPSTREAM_OUTPUT_FORMAT
    request_timeout_s: float = Defaults.UPSTREAM_REQUEST_TIMEOUT_S
    markup_language: str = Defaults.UPSTREAM_MARKUP_LANGUAGE


@dataclass
class TokenConfig:
    """Session token refresh policy."""
    refresh_margin_s: int = Defaults.TOKEN_REFRESH_MARGIN_S
    max_attempts: int = Defaults.TOKEN_MAX_ATTEMPTS
    backoff_ms: int = Defaults.TOKEN_BACKOFF_MS
    failure_cooldown_s: int = Defaults.TOKEN_FAILURE_COOLDOWN_S


@dataclass
class ChunkingConfig:
    """Text chunking configuration."""
    max_chunk_len: int = Defaults.CHUNKING_MAX_CHUNK_LEN


@dataclass
class SchedulerConfig:
    """
    Fan-out configuration.

    Modes:
        batched: sequential batches of `concurrency` chunks, each batch
            awaited as a whole before the next starts.
        pool: bounded worker pool with at most `concurrency` calls in flight.
    """
    concurrency: int = Defaults.SCHEDULER_CONCURRENCY
    mode: str = Defaults.SCHEDULER_MODE


@dataclass(frozen=True)
class CleaningConfig:
    """
    Enabled/disabled text-cleaning stages.

    Built per request from defaults plus overrides; immutable afterwards.
    `custom_keywords` is a comma-separated list of literal strings to delete.
    """
    remove_markdown: bool = Defaults.CLEANING_REMOVE_MARKDOWN
    remove_emoji: bool = Defaults.CLEANING_REMOVE_EMOJI
    remove_urls: bool = Defaults.CLEANING_REMOVE_URLS
    remove_line_breaks: bool = Defaults.CLEANING_REMOVE_LINE_BREAKS
    remove_citation_numbers: bool = Defaults.CLEANING_REMOVE_CITATION_NUMBERS
    custom_keywords: str = Defaults.CLEANING_CUSTOM_KEYWORDS

    def merged(self, overrides: Optional[Mapping[str, Any]]) -> "CleaningConfig":
        """Return a copy with known keys from `overrides` applied."""
        if not overrides:
            return self
        values = {
            "remove_markdown": self.remove_markdown,
            "remove_emoji": self.remove_emoji,
            "remove_urls": self.remove_urls,
            "remove_line_breaks": self.remove_line_breaks,
            "remove_citation_numbers": self.remove_citation_numbers,
            "custom_keywords": self.custom_keywords,
        }
        for key, value in overrides.items():
            if key not in values or value is None:
                continue
            if key == "custom_keywords":
                values[key] = str(value)
            else:
                values[key] = bool(value)
        return CleaningConfig(**values)


@dataclass
class VoicesConfig:
    """Default voice and the OpenAI voice alias map."""
    default: str = Defaults.VOICE_DEFAULT
    openai: Dict[str, str] = field(default_factory=lambda: dict(Defaults.VOICE_OPENAI_MAP))


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, token refreshes (default)
        3 = VERBOSE: Per-stage timing, per-batch progress
        4 = DEBUG: Internal state, full tracing
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class ServiceConfig:
    """
    Validated configuration for SpeechService.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = ServiceConfig.from_settings(settings)
        print(config.scheduler.concurrency)
    """
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    cleaning: CleaningConfig = field(default_factory=CleaningConfig)
    voices: VoicesConfig = field(default_factory=VoicesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ServiceConfig":
        """
        Create ServiceConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated ServiceConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Upstream
        # ─────────────────────────────────────────────────────────────────────
        up_raw = raw.get("upstream", {}) or {}
        upstream = UpstreamConfig(
            token_url=str(up_raw.get("token_url", Defaults.UPSTREAM_TOKEN_URL)),
            app_id=str(up_raw.get("app_id", Defaults.UPSTREAM_APP_ID)),
            signing_key=str(up_raw.get("signing_key", Defaults.UPSTREAM_SIGNING_KEY)),
            client_version=str(up_raw.get("client_version", Defaults.UPSTREAM_CLIENT_VERSION)),
            user_agent=str(up_raw.get("user_agent", Defaults.UPSTREAM_USER_AGENT)),
            accept_language=str(up_raw.get("accept_language", Defaults.UPSTREAM_ACCEPT_LANGUAGE)),
            home_region=str(up_raw.get("home_region", Defaults.UPSTREAM_HOME_REGION)),
            synthesis_url=str(up_raw.get("synthesis_url", Defaults.UPSTREAM_SYNTHESIS_URL)),
            output_format=str(up_raw.get("output_format", Defaults.UPSTREAM_OUTPUT_FORMAT)),
            request_timeout_s=float(up_raw.get("request_timeout_s", Defaults.UPSTREAM_REQUEST_TIMEOUT_S)),
            markup_language=str(up_raw.get("markup_language", Defaults.UPSTREAM_MARKUP_LANGUAGE)),
        )
        cls._validate_positive("upstream.request_timeout_s", upstream.request_timeout_s)
        if "{region}" not in upstream.synthesis_url:
            raise ConfigValidationError("upstream.synthesis_url must contain a {region} placeholder")

        # ─────────────────────────────────────────────────────────────────────
        # Session token
        # ─────────────────────────────────────────────────────────────────────
        token_raw = raw.get("token", {}) or {}
        token = TokenConfig(
            refresh_margin_s=int(token_raw.get("refresh_margin_s", Defaults.TOKEN_REFRESH_MARGIN_S)),
            max_attempts=int(token_raw.get("max_attempts", Defaults.TOKEN_MAX_ATTEMPTS)),
            backoff_ms=int(token_raw.get("backoff_ms", Defaults.TOKEN_BACKOFF_MS)),
            failure_cooldown_s=int(token_raw.get("failure_cooldown_s", Defaults.TOKEN_FAILURE_COOLDOWN_S)),
        )
        cls._validate_non_negative("token.refresh_margin_s", token.refresh_margin_s)
        cls._validate_positive("token.max_attempts", token.max_attempts)
        cls._validate_non_negative("token.backoff_ms", token.backoff_ms)
        cls._validate_non_negative("token.failure_cooldown_s", token.failure_cooldown_s)

        # ─────────────────────────────────────────────────────────────────────
        # Chunking
        # ─────────────────────────────────────────────────────────────────────
        chunking_raw = raw.get("chunking", {}) or {}
        chunking = ChunkingConfig(
            max_chunk_len=int(chunking_raw.get("max_chunk_len", Defaults.CHUNKING_MAX_CHUNK_LEN)),
        )
        cls._validate_positive("chunking.max_chunk_len", chunking.max_chunk_len)

        # ─────────────────────────────────────────────────────────────────────
        # Scheduler
        # ─────────────────────────────────────────────────────────────────────
        sched_raw = raw.get("scheduler", {}) or {}
        scheduler = SchedulerConfig(
            concurrency=int(sched_raw.get("concurrency", Defaults.SCHEDULER_CONCURRENCY)),
            mode=str(sched_raw.get("mode", Defaults.SCHEDULER_MODE)).lower(),
        )
        cls._validate_positive("scheduler.concurrency", scheduler.concurrency)
        cls._validate_choice("scheduler.mode", scheduler.mode, Defaults.SCHEDULER_MODES)

        # ─────────────────────────────────────────────────────────────────────
        # Cleaning defaults
        # ─────────────────────────────────────────────────────────────────────
        cleaning = CleaningConfig().merged(raw.get("cleaning", {}) or {})

        # ─────────────────────────────────────────────────────────────────────
        # Voices
        # ─────────────────────────────────────────────────────────────────────
        voices_raw = raw.get("voices", {}) or {}
        voice_map = dict(Defaults.VOICE_OPENAI_MAP)
        voice_map.update({str(k): str(v) for k, v in (voices_raw.get("openai", {}) or {}).items()})
        voices = VoicesConfig(
            default=str(voices_raw.get("default", Defaults.VOICE_DEFAULT)),
            openai=voice_map,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            upstream=upstream,
            token=token,
            chunking=chunking,
            scheduler=scheduler,
            cleaning=cleaning,
            voices=voices,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")

    @staticmethod
    def _validate_choice(name: str, value: str, choices: tuple[str, ...]) -> None:
        """Validate that a value is one of the allowed choices."""
        if value not in choices:
            raise ConfigValidationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_service_config() to get a validated ServiceConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def default_voice(self) -> str:
        """Voice used when a request names none."""
        return str(self.raw.get("voices", {}).get("default", Defaults.VOICE_DEFAULT))

    @property
    def concurrency(self) -> int:
        """Configured scheduler width."""
        return int(self.raw.get("scheduler", {}).get("concurrency", Defaults.SCHEDULER_CONCURRENCY))

    def get_service_config(self) -> ServiceConfig:
        """
        Get validated ServiceConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return ServiceConfig.from_settings(self)


def _apply_env_overrides(raw: Dict[str, Any]) -> None:
    """Fold EDGE_TTS_* environment variables into the raw settings dict."""
    concurrency = os.getenv("EDGE_TTS_CONCURRENCY")
    if concurrency:
        raw.setdefault("scheduler", {})["concurrency"] = int(concurrency)

    mode = os.getenv("EDGE_TTS_SCHEDULER_MODE")
    if mode:
        raw.setdefault("scheduler", {})["mode"] = mode

    max_len = os.getenv("EDGE_TTS_MAX_CHUNK_LEN")
    if max_len:
        raw.setdefault("chunking", {})["max_chunk_len"] = int(max_len)

    timeout = os.getenv("EDGE_TTS_REQUEST_TIMEOUT_S")
    if timeout:
        raw.setdefault("upstream", {})["request_timeout_s"] = float(timeout)


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    A missing file is not an error: the service runs on Defaults plus
    environment overrides.

    Environment variable overrides:
        - EDGE_TTS_SETTINGS: Settings path (used when `path` is None)
        - EDGE_TTS_CONCURRENCY: scheduler.concurrency
        - EDGE_TTS_SCHEDULER_MODE: scheduler.mode
        - EDGE_TTS_MAX_CHUNK_LEN: chunking.max_chunk_len
        - EDGE_TTS_REQUEST_TIMEOUT_S: upstream.request_timeout_s

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.
    """
    p = Path(path or os.getenv("EDGE_TTS_SETTINGS", "config/settings.yaml"))

    raw: Dict[str, Any] = {}
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    _apply_env_overrides(raw)
    return Settings(raw=raw)
