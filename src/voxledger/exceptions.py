"""
exceptions.py — VoxLedger Unified Error Hierarchy

All VoxLedger-specific exceptions live here. Every layer of the pipeline
raises typed subclasses of VoxLedgerError — never bare Exception.

Import from here, not from individual modules:
    from voxledger.exceptions import AudioCaptureError, TranscriptionInProgressError

Hierarchy:
    VoxLedgerError
    ├── VoiceError
    │   ├── AudioCaptureError
    │   ├── TranscriptionError
    │   │   └── TranscriptionInProgressError
    │   ├── ModelNotFoundError
    │   ├── ModelDownloadError
    │   ├── WavFormatError
    │   └── InvalidStateTransitionError
    └── VocabularyError
        └── VocabularyNotInitializedError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class VoxLedgerError(Exception):
    """Base class for all VoxLedger exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Voice pipeline
# ─────────────────────────────────────────────────────────────────────────────

class VoiceError(VoxLedgerError):
    """Base for voice pipeline errors."""


class AudioCaptureError(VoiceError):
    """Microphone missing, permission denied, or PortAudio unavailable."""


class TranscriptionError(VoiceError):
    """Base for transcription failures that must reach the caller."""


class TranscriptionInProgressError(TranscriptionError):
    """transcribe() was called while a previous call on the same instance is still running."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or "Transcription already in progress")


class ModelNotFoundError(VoiceError):
    """Requested recognizer model id is not in the supported model table."""

    def __init__(self, model_id: str, message: str = "") -> None:
        self.model_id = model_id
        super().__init__(message or f"Model '{model_id}' not found")


class ModelDownloadError(VoiceError):
    """A model download failed (HTTP status, network error, or disk write)."""


class WavFormatError(VoiceError):
    """Bytes handed to the WAV decoder are not a PCM RIFF/WAVE container."""


class InvalidStateTransitionError(VoiceError):
    """VoiceSession was asked to move between two states that are not connected."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal voice state transition: {current} -> {target}")


# ─────────────────────────────────────────────────────────────────────────────
# Vocabulary
# ─────────────────────────────────────────────────────────────────────────────

class VocabularyError(VoxLedgerError):
    """Base for vocabulary store errors."""


class VocabularyNotInitializedError(VocabularyError):
    """The store's init() has not been called before first use."""


__all__ = [
    "VoxLedgerError",
    # Voice
    "VoiceError",
    "AudioCaptureError",
    "TranscriptionError",
    "TranscriptionInProgressError",
    "ModelNotFoundError",
    "ModelDownloadError",
    "WavFormatError",
    "InvalidStateTransitionError",
    # Vocabulary
    "VocabularyError",
    "VocabularyNotInitializedError",
]
