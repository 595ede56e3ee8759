"""
voice/session.py — VoiceSession orchestrator

Finite-state machine over one microphone:

    IDLE ──start──▶ LISTENING ──stopped──▶ PROCESSING ──done──▶ IDLE
                        │                      │
                        └──────▶ ERROR ◀───────┘
                                   │
                                   └──▶ IDLE

LISTENING → IDLE is the cancel path. Any other edge raises
InvalidStateTransitionError.

Capture stops either because the caller asked (stop_listening / toggle) or
because AudioCapture detected silence or hit the utterance cap. Both paths
emit ListeningStopped; the handler here moves to PROCESSING and starts the
transcribe → parse task. Transcription therefore only ever starts after
capture has released the buffer.

Per turn:
    TranscriptionComplete → (empty? back to IDLE)
    CommandParsed → history append
    CommandReady        if the command needs confirmation
    ExecuteRequested    otherwise, when auto_execute is on and it validates
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Optional

import numpy as np

from voxledger.exceptions import InvalidStateTransitionError
from voxledger.observability.logger import bind_session, clear_session, get_logger
from voxledger.voice.capture import AudioCapture
from voxledger.voice.events import (
    CommandParsed,
    CommandReady,
    ErrorOccurred,
    EventChannel,
    ExecuteRequested,
    ListeningStopped,
    StateChanged,
    TranscriptionComplete,
)
from voxledger.voice.interpreter import CommandInterpreter
from voxledger.voice.transcriber import Transcriber
from voxledger.voice.types import ParsedVoiceCommand, ParseResult, TranscriptionResult, VoiceState

log = get_logger(__name__)

_TRANSITIONS: dict[VoiceState, frozenset[VoiceState]] = {
    VoiceState.IDLE: frozenset({VoiceState.LISTENING}),
    VoiceState.LISTENING: frozenset({VoiceState.PROCESSING, VoiceState.IDLE, VoiceState.ERROR}),
    VoiceState.PROCESSING: frozenset({VoiceState.IDLE, VoiceState.ERROR}),
    VoiceState.ERROR: frozenset({VoiceState.IDLE}),
}


def can_transition(current: VoiceState, target: VoiceState) -> bool:
    return target in _TRANSITIONS[current]


class VoiceSession:
    def __init__(
        self,
        capture: AudioCapture,
        transcriber: Transcriber,
        interpreter: CommandInterpreter,
        events: EventChannel,
        history_size: int = 50,
        enabled: bool = True,
        auto_execute: bool = True,
    ) -> None:
        self._capture = capture
        self._transcriber = transcriber
        self._interpreter = interpreter
        self._events = events
        self._enabled = enabled
        self._auto_execute = auto_execute

        self._state = VoiceState.IDLE
        self._history: deque[ParsedVoiceCommand] = deque(maxlen=history_size)
        self._process_task: Optional[asyncio.Task] = None
        self._last_result: Optional[ParseResult] = None
        # Set whenever no utterance is being captured; cleared while LISTENING.
        self._turn_ended = asyncio.Event()
        self._turn_ended.set()

        self._unsubscribe = events.subscribe(ListeningStopped, self._on_listening_stopped)

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def state(self) -> VoiceState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state == VoiceState.LISTENING

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        log.info("session.enabled_changed", enabled=enabled)

    @property
    def history(self) -> list[ParsedVoiceCommand]:
        """Oldest first."""
        return list(self._history)

    @property
    def last_result(self) -> Optional[ParseResult]:
        return self._last_result

    def clear_history(self) -> None:
        self._history.clear()

    async def _transition(self, target: VoiceState) -> None:
        current = self._state
        if not can_transition(current, target):
            raise InvalidStateTransitionError(current.value, target.value)
        self._state = target
        log.debug("session.state_changed", previous=current.value, current=target.value)
        await self._events.emit(StateChanged(previous=current, current=target))

    # ── Listening ─────────────────────────────────────────────────────────────

    async def start_listening(self) -> bool:
        """Begin an utterance. No-op (returns False) unless IDLE and enabled."""
        if not self._enabled:
            log.warning("session.disabled")
            return False
        if self._state != VoiceState.IDLE:
            log.warning("session.start_ignored", state=self._state.value)
            return False

        self._process_task = None
        self._turn_ended.clear()
        await self._transition(VoiceState.LISTENING)
        try:
            audio_session = await self._capture.start_listening()
        except Exception as e:
            await self._fail(e, stage="capture")
            self._turn_ended.set()
            return False
        bind_session(audio_session.id)
        return True

    async def stop_listening(self) -> Optional[ParseResult]:
        """
        Stop capture and wait for the utterance to be transcribed and parsed.

        Returns the ParseResult, or None when nothing was heard, nothing was
        being captured, or the turn failed.
        """
        if self._state == VoiceState.LISTENING:
            await self._capture.stop_listening(reason="manual")
        elif self._state != VoiceState.PROCESSING:
            return None
        task = self._process_task
        if task is None:
            return None
        return await task

    async def toggle_listening(self) -> bool:
        """Flip LISTENING ↔ IDLE. Returns whether the session is now listening."""
        if self._state == VoiceState.LISTENING:
            await self.stop_listening()
            return False
        if self._state == VoiceState.IDLE:
            return await self.start_listening()
        log.warning("session.toggle_ignored", state=self._state.value)
        return False

    async def wait_for_turn(self) -> Optional[ParseResult]:
        """Wait for an auto-stopped utterance (silence or max duration) to finish."""
        await self._turn_ended.wait()
        task = self._process_task
        if task is None:
            return None
        return await task

    async def cancel(self) -> None:
        """Drop the current turn, whatever stage it is in, and return to IDLE."""
        if self._state == VoiceState.LISTENING:
            await self._capture.stop_listening(reason="cancelled")
        if self._state == VoiceState.PROCESSING:
            await self._transcriber.cancel()
        task = self._process_task
        if task is not None and not task.done():
            await task

    async def close(self) -> None:
        await self.cancel()
        await self._capture.close()
        self._unsubscribe()

    # ── Turn processing ───────────────────────────────────────────────────────

    async def _on_listening_stopped(self, event: ListeningStopped) -> None:
        if self._state != VoiceState.LISTENING:
            return
        if event.reason == "cancelled":
            log.info("session.cancelled", session_id=event.session_id)
            await self._transition(VoiceState.IDLE)
            clear_session()
            self._turn_ended.set()
            return
        await self._transition(VoiceState.PROCESSING)
        self._process_task = asyncio.create_task(self._process(event.audio_data))
        self._turn_ended.set()

    async def _process(self, audio: Optional[np.ndarray]) -> Optional[ParseResult]:
        stage = "transcription"
        try:
            if audio is None or len(audio) == 0:
                transcription = TranscriptionResult.fallback()
            else:
                transcription = await self._transcriber.transcribe(audio)
            await self._events.emit(TranscriptionComplete(result=transcription))

            if transcription.is_empty:
                log.info("session.nothing_heard")
                await self._transition(VoiceState.IDLE)
                return None

            stage = "parse"
            result = await self._interpreter.parse(transcription.text)
            self._history.append(result.command)
            self._last_result = result
            log.info(
                "session.command_parsed",
                intent=result.command.intent.value,
                confidence=round(result.command.confidence, 2),
                confirm=result.requires_confirmation,
            )
            await self._events.emit(CommandParsed(result=result))

            if result.requires_confirmation:
                await self._events.emit(CommandReady(result=result))
            elif self._auto_execute and self._interpreter.validate(result.command).is_valid:
                await self._events.emit(ExecuteRequested(command=result.command))

            await self._transition(VoiceState.IDLE)
            return result
        except Exception as e:
            await self._fail(e, stage=stage)
            return None
        finally:
            clear_session()

    async def _fail(self, error: BaseException, stage: str) -> None:
        log.error(
            "session.error",
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
        )
        if can_transition(self._state, VoiceState.ERROR):
            await self._transition(VoiceState.ERROR)
        await self._events.emit(ErrorOccurred(error=error, stage=stage))
        if self._state != VoiceState.IDLE:
            await self._transition(VoiceState.IDLE)

    # ── Execution hand-off ────────────────────────────────────────────────────

    async def retry_last_command(self) -> Optional[ParsedVoiceCommand]:
        """Re-emit the newest history entry as ExecuteRequested, without listening."""
        if not self._history:
            return None
        command = self._history[-1]
        await self._events.emit(ExecuteRequested(command=command))
        return command

    async def confirm_and_execute(self, command: ParsedVoiceCommand) -> bool:
        await self._events.emit(ExecuteRequested(command=command))
        return True
