"""
voice/ — VoxLedger Voice Pipeline

Public API:
    from voxledger.voice import VoiceSession, AudioCapture, Transcriber, CommandInterpreter

Component overview:
    AudioCapture        Microphone stream → per-utterance buffer, silence auto-stop
    WhisperCppRecognizer  whisper.cpp subprocess adapter behind the Recognizer protocol
    ModelCatalog        Supported models, on-disk state, streamed downloads
    Transcriber         Samples → temp WAV → recognizer → TranscriptionResult
    CommandInterpreter  Transcript → intent + entities + confirmation decision
    VoiceSession        IDLE → LISTENING → PROCESSING state machine over the above
    EventChannel        Typed events for every observable step
"""

from voxledger.voice.capture import AudioCapture, SilenceDetector
from voxledger.voice.events import EventChannel
from voxledger.voice.interpreter import CommandInterpreter
from voxledger.voice.models import ModelCatalog
from voxledger.voice.recognizer import Recognizer, WhisperCppRecognizer
from voxledger.voice.session import VoiceSession
from voxledger.voice.transcriber import Transcriber
from voxledger.voice.types import (
    EntityType,
    ModelInfo,
    ParsedVoiceCommand,
    ParseResult,
    TranscriptionResult,
    VoiceEntity,
    VoiceIntent,
    VoiceState,
)

__all__ = [
    "VoiceSession",
    "AudioCapture",
    "SilenceDetector",
    "Transcriber",
    "Recognizer",
    "WhisperCppRecognizer",
    "ModelCatalog",
    "CommandInterpreter",
    "EventChannel",
    "VoiceState",
    "VoiceIntent",
    "EntityType",
    "VoiceEntity",
    "ParsedVoiceCommand",
    "ParseResult",
    "TranscriptionResult",
    "ModelInfo",
]
