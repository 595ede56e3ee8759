"""
voice/events.py — Typed Voice Event Channel

Every observable moment of the voice pipeline is a small frozen dataclass.
Subscribers register per event type; the channel fans events out in
subscription order.

A handler that raises is logged and skipped. The emitter never sees the
exception, so a broken UI callback can't stall capture or transcription.

Usage::

    channel = EventChannel()
    unsubscribe = channel.subscribe(CommandReady, on_ready)
    await channel.emit(CommandReady(result=parse_result))
    unsubscribe()

Handlers may be plain callables or coroutine functions.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import numpy as np

from voxledger.observability.logger import get_logger
from voxledger.voice.types import (
    ModelInfo,
    ParsedVoiceCommand,
    ParseResult,
    TranscriptionResult,
    VoiceState,
)

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VoiceEvent:
    """Base class. Only subclasses are emitted."""


@dataclass(frozen=True)
class Initialized(VoiceEvent):
    pass


@dataclass(frozen=True)
class ListeningStarted(VoiceEvent):
    session_id: str


@dataclass(frozen=True)
class ListeningStopped(VoiceEvent):
    session_id: str
    duration_ms: float
    audio_data: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    reason: str = "manual"  # manual | silence | max_duration | cancelled


@dataclass(frozen=True)
class AudioLevel(VoiceEvent):
    level: float
    is_silent: bool


@dataclass(frozen=True)
class TranscriptionComplete(VoiceEvent):
    result: TranscriptionResult


@dataclass(frozen=True)
class PartialTranscription(VoiceEvent):
    result: TranscriptionResult


@dataclass(frozen=True)
class CommandParsed(VoiceEvent):
    result: ParseResult


@dataclass(frozen=True)
class CommandReady(VoiceEvent):
    """Emitted when a parsed command needs the user to confirm it."""
    result: ParseResult


@dataclass(frozen=True)
class ErrorOccurred(VoiceEvent):
    error: BaseException
    stage: str  # capture | transcription | parse


@dataclass(frozen=True)
class ModelChanged(VoiceEvent):
    model: ModelInfo


@dataclass(frozen=True)
class StateChanged(VoiceEvent):
    previous: VoiceState
    current: VoiceState


@dataclass(frozen=True)
class ExecuteRequested(VoiceEvent):
    command: ParsedVoiceCommand


# ─────────────────────────────────────────────────────────────────────────────
# Channel
# ─────────────────────────────────────────────────────────────────────────────

E = TypeVar("E", bound=VoiceEvent)
Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventChannel:
    """Type-keyed observer registry."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> Callable[[], None]:
        """Register handler for event_type. Returns a callable that removes it again."""
        self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def subscriber_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    async def emit(self, event: VoiceEvent) -> None:
        # Snapshot so handlers may unsubscribe while being called.
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.error(
                    "events.handler_failed",
                    event=type(event).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )
