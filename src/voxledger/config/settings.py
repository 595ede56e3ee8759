"""
config/settings.py — VoxLedger Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and .env.
Pydantic-powered — all fields are validated and typed.

  - AudioConfig pins the capture format to 16 kHz mono at parse time
  - RecognizerConfig validates model size, language, temperature and timeouts
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a clear, human-readable message listing every problem
  - load_settings() respects VOXLEDGER_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_MODEL_SIZES = {"tiny", "base", "small", "medium"}

DEFAULT_DOWNLOAD_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main/ggml-{model_id}.bin"


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AudioConfig(BaseModel):
    sample_rate: int = 16000
    channels: int = 1
    block_ms: int = 30
    tick_ms: int = 16
    silence_threshold: float = 0.02
    silence_duration_ms: int = 1500
    max_utterance_s: float = 30.0
    device_index: Optional[int] = None

    @field_validator("sample_rate")
    @classmethod
    def _fixed_rate(cls, v: int) -> int:
        if v != 16000:
            raise ValueError(
                f"audio.sample_rate must be 16000 (the recognizer expects 16 kHz), got {v}"
            )
        return v

    @field_validator("channels")
    @classmethod
    def _mono(cls, v: int) -> int:
        if v != 1:
            raise ValueError(f"audio.channels must be 1 (mono), got {v}")
        return v

    @field_validator("silence_threshold")
    @classmethod
    def _valid_threshold(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("audio.silence_threshold must be between 0.0 and 1.0")
        return v

    @field_validator("block_ms", "tick_ms", "silence_duration_ms")
    @classmethod
    def _positive_ms(cls, v: int) -> int:
        if v < 1:
            raise ValueError("audio timing values must be >= 1 ms")
        return v

    @field_validator("max_utterance_s")
    @classmethod
    def _positive_cap(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("audio.max_utterance_s must be > 0")
        return v

    @property
    def block_size(self) -> int:
        return int(self.sample_rate * self.block_ms / 1000)


class RecognizerConfig(BaseModel):
    executable: Optional[str] = None
    bundled_paths: List[str] = Field(
        default_factory=lambda: ["./bin/whisper-cli", "./bin/whisper"]
    )
    executable_names: List[str] = Field(default_factory=lambda: ["whisper-cli", "whisper"])
    local_install_paths: List[str] = Field(
        default_factory=lambda: [
            "/usr/local/bin/whisper-cli",
            "/usr/local/bin/whisper",
            "/opt/homebrew/bin/whisper-cli",
            "~/.local/bin/whisper-cli",
        ]
    )
    models_dir: str = "./models/whisper"
    model_size: str = "base"
    language: str = "en"
    threads: int = 4
    temperature: float = 0.0
    beam_size: int = 5
    translate: bool = False
    timeout_s: float = 30.0
    partial_timeout_s: float = 5.0
    temp_dir: Optional[str] = None
    download_url_template: str = DEFAULT_DOWNLOAD_URL

    @field_validator("model_size")
    @classmethod
    def _known_model(cls, v: str) -> str:
        if v not in _VALID_MODEL_SIZES:
            raise ValueError(
                f"recognizer.model_size '{v}' is not supported. "
                f"Supported: {sorted(_VALID_MODEL_SIZES)}"
            )
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("recognizer.temperature must be between 0.0 and 1.0")
        return v

    @field_validator("threads", "beam_size")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("recognizer.threads and recognizer.beam_size must be >= 1")
        return v

    @field_validator("timeout_s", "partial_timeout_s")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("recognizer timeouts must be > 0")
        return v

    @field_validator("language")
    @classmethod
    def _nonempty_language(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("recognizer.language must not be empty")
        return v


class VocabularyConfig(BaseModel):
    db_path: str = "./data/dictionary.db"
    context_term_limit: int = 50
    seed_defaults: bool = True

    @field_validator("context_term_limit")
    @classmethod
    def _positive_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("vocabulary.context_term_limit must be >= 1")
        return v


class SessionConfig(BaseModel):
    enabled: bool = True
    history_size: int = 50
    auto_execute: bool = True

    @field_validator("history_size")
    @classmethod
    def _positive_history(cls, v: int) -> int:
        if v < 1:
            raise ValueError("session.history_size must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    VoxLedger runtime settings.

    Priority (highest to lowest):
      1. Environment variables (VOXLEDGER_AUDIO__SILENCE_THRESHOLD=0.03)
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="VOXLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    audio: AudioConfig = Field(default_factory=AudioConfig)
    recognizer: RecognizerConfig = Field(default_factory=RecognizerConfig)
    vocabulary: VocabularyConfig = Field(default_factory=VocabularyConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # load_settings() passes config.yaml in as init kwargs; env wins over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("audio", mode="before")
    @classmethod
    def _coerce_audio(cls, v: Any) -> Any:
        return AudioConfig(**v) if isinstance(v, dict) else v

    @field_validator("recognizer", mode="before")
    @classmethod
    def _coerce_recognizer(cls, v: Any) -> Any:
        return RecognizerConfig(**v) if isinstance(v, dict) else v

    @field_validator("vocabulary", mode="before")
    @classmethod
    def _coerce_vocabulary(cls, v: Any) -> Any:
        return VocabularyConfig(**v) if isinstance(v, dict) else v

    @field_validator("session", mode="before")
    @classmethod
    def _coerce_session(cls, v: Any) -> Any:
        return SessionConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def models_dir(self) -> Path:
        return Path(self.recognizer.models_dir).expanduser()

    @property
    def dictionary_path(self) -> Path:
        return Path(self.vocabulary.db_path).expanduser()

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems that a single field can't see.
        """
        errors: list[str] = []

        # ── Silence window must fit inside the utterance cap ─────────────────
        if self.audio.silence_duration_ms >= self.audio.max_utterance_s * 1000:
            errors.append(
                f"audio.silence_duration_ms ({self.audio.silence_duration_ms}) must be "
                f"shorter than audio.max_utterance_s ({self.audio.max_utterance_s}s)."
            )

        # ── Loudness ticks must not outrun frame delivery by much ────────────
        if self.audio.tick_ms > self.audio.silence_duration_ms:
            errors.append(
                "audio.tick_ms must not exceed audio.silence_duration_ms, "
                "otherwise silence can never be detected in time."
            )

        # ── Partial transcription is a shorter pass ──────────────────────────
        if self.recognizer.partial_timeout_s > self.recognizer.timeout_s:
            errors.append(
                "recognizer.partial_timeout_s must not exceed recognizer.timeout_s."
            )

        # ── Download template must carry the model id ────────────────────────
        if "{model_id}" not in self.recognizer.download_url_template:
            errors.append(
                "recognizer.download_url_template must contain the '{model_id}' placeholder."
            )

        # ── Configured executable must exist when pinned ─────────────────────
        exe = self.recognizer.executable
        if exe and not Path(exe).expanduser().exists():
            errors.append(
                f"recognizer.executable '{exe}' does not exist. Remove the setting "
                f"to fall back to automatic discovery."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nVoxLedger startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"audio", "recognizer", "vocabulary", "session", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. VOXLEDGER_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("VOXLEDGER_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    Config path resolution order:
      1. config_path argument  (--config CLI flag)
      2. VOXLEDGER_CONFIG env var
      3. config/config.yaml   (default)
    """
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton.
    If load_settings() has been called already, returns that instance.
    Otherwise loads from the default config path.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            load_settings()
        return _singleton  # type: ignore[return-value]


def reset_settings() -> None:
    """Drop the cached singleton. Used by tests and by `--config` reloads."""
    global _singleton
    with _singleton_lock:
        _singleton = None
