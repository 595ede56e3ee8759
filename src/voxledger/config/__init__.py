"""
config/__init__.py — VoxLedger Settings
"""

from voxledger.config.settings import (
    AudioConfig,
    ConfigError,
    LoggingConfig,
    RecognizerConfig,
    SessionConfig,
    Settings,
    VocabularyConfig,
    get_settings,
    load_settings,
    reset_settings,
)

__all__ = [
    "Settings",
    "AudioConfig",
    "RecognizerConfig",
    "VocabularyConfig",
    "SessionConfig",
    "LoggingConfig",
    "ConfigError",
    "load_settings",
    "get_settings",
    "reset_settings",
]
