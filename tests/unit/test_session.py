"""
tests/unit/test_session.py — VoiceSession orchestration

Real AudioCapture (fake stream), real Transcriber (scripted recognizer), real
CommandInterpreter. Covers:
  - the transition table and rejected edges
  - a full manual turn: LISTENING → PROCESSING → IDLE with events in order
  - CommandReady vs ExecuteRequested, auto_execute off, invalid commands
  - nothing heard / no audio → IDLE without a command
  - capture and transcription failures → ERROR → IDLE
  - cancel while listening and while processing
  - toggle, wait_for_turn on silence auto-stop, history bound, retry
"""

from __future__ import annotations

import asyncio
from datetime import date

import numpy as np
import pytest

from voxledger.config.settings import AudioConfig, RecognizerConfig
from voxledger.exceptions import InvalidStateTransitionError
from voxledger.vocabulary.store import InMemoryVocabularyStore
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
from voxledger.voice.models import ModelCatalog
from voxledger.voice.recognizer import RecognizerOutput
from voxledger.voice.session import VoiceSession, can_transition
from voxledger.voice.transcriber import Transcriber
from voxledger.voice.types import VoiceIntent, VoiceState

IDLE = VoiceState.IDLE
LISTENING = VoiceState.LISTENING
PROCESSING = VoiceState.PROCESSING
ERROR = VoiceState.ERROR

_LOUD = np.full(320, 16384, dtype=np.int16)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class _FakeStream:
    def __init__(self, callback):
        self.callback = callback

    def start(self):
        pass

    def stop(self):
        pass

    def close(self):
        pass


def _broken_stream(callback):
    raise OSError("No input device")


class _ScriptedRecognizer:
    """Returns the queued transcripts in order; the last one repeats."""

    name = "scripted"

    def __init__(self, *texts: str, hang: bool = False):
        self.texts = list(texts) or ["Show balance."]
        self.hang = hang
        self.raise_error: Exception | None = None
        self.calls: list = []
        self._release = asyncio.Event()

    def is_available(self) -> bool:
        return True

    async def recognize(self, audio_path, prompt, timeout, options):
        self.calls.append(audio_path)
        if self.raise_error is not None:
            raise self.raise_error
        if self.hang:
            await self._release.wait()
            return RecognizerOutput(text="", exit_code=-15, cancelled=True)
        text = self.texts.pop(0) if len(self.texts) > 1 else self.texts[0]
        return RecognizerOutput(text=text, exit_code=0)

    async def cancel(self) -> None:
        self._release.set()


async def _make_session(
    tmp_path,
    recognizer=None,
    stream_factory=_FakeStream,
    history_size: int = 50,
    auto_execute: bool = True,
    **audio_overrides,
):
    events = EventChannel()
    capture = AudioCapture(AudioConfig(**audio_overrides), events, stream_factory=stream_factory)

    cfg = RecognizerConfig(models_dir=str(tmp_path / "models"), temp_dir=str(tmp_path / "tmp"), threads=1)
    catalog = ModelCatalog(tmp_path / "models")
    catalog.models_dir.mkdir(parents=True, exist_ok=True)
    catalog.path_for(cfg.model_size).write_bytes(b"ggml")
    catalog.refresh()

    vocabulary = InMemoryVocabularyStore(seed_defaults=False)
    await vocabulary.init()

    recognizer = recognizer or _ScriptedRecognizer()
    transcriber = Transcriber(cfg, recognizer, vocabulary, catalog, events)
    interpreter = CommandInterpreter(vocabulary, today=lambda: date(2024, 3, 15))
    session = VoiceSession(
        capture,
        transcriber,
        interpreter,
        events,
        history_size=history_size,
        auto_execute=auto_execute,
    )
    return session, capture, recognizer, events


def _record(events: EventChannel, *event_types):
    seen = []
    for event_type in event_types:
        events.subscribe(event_type, seen.append)
    return seen


async def _speak(session: VoiceSession, capture: AudioCapture):
    assert await session.start_listening()
    capture.feed(_LOUD)
    return await session.stop_listening()


# ─────────────────────────────────────────────────────────────────────────────
# Transition table
# ─────────────────────────────────────────────────────────────────────────────

class TestTransitions:

    @pytest.mark.parametrize("current, target", [
        (IDLE, LISTENING),
        (LISTENING, PROCESSING),
        (LISTENING, IDLE),
        (LISTENING, ERROR),
        (PROCESSING, IDLE),
        (PROCESSING, ERROR),
        (ERROR, IDLE),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current, target", [
        (IDLE, PROCESSING),
        (IDLE, ERROR),
        (IDLE, IDLE),
        (PROCESSING, LISTENING),
        (ERROR, LISTENING),
        (ERROR, PROCESSING),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    @pytest.mark.asyncio
    async def test_invalid_transition_raises(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path)
        with pytest.raises(InvalidStateTransitionError):
            await session._transition(PROCESSING)
        assert session.state == IDLE


# ─────────────────────────────────────────────────────────────────────────────
# A full turn
# ─────────────────────────────────────────────────────────────────────────────

class TestTurn:

    @pytest.mark.asyncio
    async def test_manual_turn_executes_confident_command(self, tmp_path):
        session, capture, recognizer, events = await _make_session(tmp_path)
        states = _record(events, StateChanged)
        seen = _record(events, TranscriptionComplete, CommandParsed, CommandReady, ExecuteRequested)

        assert await session.start_listening()
        assert session.is_listening
        capture.feed(_LOUD)
        result = await session.stop_listening()

        assert result.command.intent == VoiceIntent.QUERY_BALANCE
        assert not result.requires_confirmation
        assert session.state == IDLE
        assert session.history == [result.command]
        assert session.last_result is result
        assert len(recognizer.calls) == 1

        assert [(s.previous, s.current) for s in states] == [
            (IDLE, LISTENING),
            (LISTENING, PROCESSING),
            (PROCESSING, IDLE),
        ]
        assert [type(e) for e in seen] == [TranscriptionComplete, CommandParsed, ExecuteRequested]
        assert seen[0].result.text == "Show balance."
        assert seen[2].command == result.command

    @pytest.mark.asyncio
    async def test_large_amount_waits_for_confirmation(self, tmp_path):
        session, capture, _, events = await _make_session(
            tmp_path, _ScriptedRecognizer("Paid 15000 for rent.")
        )
        ready = _record(events, CommandReady)
        executed = _record(events, ExecuteRequested)

        result = await _speak(session, capture)

        assert result.requires_confirmation
        assert ready == [CommandReady(result=result)]
        assert executed == []

        assert await session.confirm_and_execute(result.command) is True
        assert executed == [ExecuteRequested(command=result.command)]

    @pytest.mark.asyncio
    async def test_auto_execute_off(self, tmp_path):
        session, capture, _, events = await _make_session(tmp_path, auto_execute=False)
        parsed = _record(events, CommandParsed)
        executed = _record(events, ExecuteRequested, CommandReady)

        result = await _speak(session, capture)

        assert parsed == [CommandParsed(result=result)]
        assert executed == []

    @pytest.mark.asyncio
    async def test_invalid_command_is_not_executed(self, tmp_path):
        session, capture, _, events = await _make_session(
            tmp_path, _ScriptedRecognizer("Add expense for groceries.")
        )
        executed = _record(events, ExecuteRequested, CommandReady)

        result = await _speak(session, capture)

        assert result.command.intent == VoiceIntent.ADD_EXPENSE
        assert not result.requires_confirmation
        assert executed == []
        assert session.history == [result.command]

    @pytest.mark.asyncio
    async def test_nothing_heard_returns_to_idle(self, tmp_path):
        session, capture, _, events = await _make_session(tmp_path, _ScriptedRecognizer("   "))
        transcripts = _record(events, TranscriptionComplete)
        parsed = _record(events, CommandParsed)

        assert await _speak(session, capture) is None
        assert session.state == IDLE
        assert session.history == []
        assert transcripts[0].result.is_empty
        assert parsed == []

    @pytest.mark.asyncio
    async def test_no_audio_skips_recognizer(self, tmp_path):
        session, _, recognizer, _ = await _make_session(tmp_path)
        await session.start_listening()
        assert await session.stop_listening() is None
        assert recognizer.calls == []
        assert session.state == IDLE

    @pytest.mark.asyncio
    async def test_silence_auto_stop_and_wait_for_turn(self, tmp_path):
        session, capture, _, _ = await _make_session(tmp_path, tick_ms=5, silence_duration_ms=30)
        await session.start_listening()
        capture.feed(np.zeros(320, dtype=np.int16))

        result = await asyncio.wait_for(session.wait_for_turn(), timeout=2.0)

        assert result.command.intent == VoiceIntent.QUERY_BALANCE
        assert session.state == IDLE

    @pytest.mark.asyncio
    async def test_wait_for_turn_when_idle(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path)
        assert await session.wait_for_turn() is None

    @pytest.mark.asyncio
    async def test_waiter_shares_manual_stop_result(self, tmp_path):
        session, capture, _, _ = await _make_session(tmp_path)
        await session.start_listening()
        capture.feed(_LOUD)
        waiter = asyncio.create_task(session.wait_for_turn())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        result = await session.stop_listening()

        assert await asyncio.wait_for(waiter, timeout=1.0) is result

    @pytest.mark.asyncio
    async def test_waiter_released_by_cancel(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path)
        await session.start_listening()
        waiter = asyncio.create_task(session.wait_for_turn())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await session.cancel()

        assert await asyncio.wait_for(waiter, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_wait_for_turn_after_capture_failure(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path, stream_factory=_broken_stream)
        assert await session.start_listening() is False
        assert await asyncio.wait_for(session.wait_for_turn(), timeout=1.0) is None


# ─────────────────────────────────────────────────────────────────────────────
# Guards
# ─────────────────────────────────────────────────────────────────────────────

class TestGuards:

    @pytest.mark.asyncio
    async def test_disabled_session_ignores_start(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path)
        session.set_enabled(False)
        assert session.enabled is False
        assert await session.start_listening() is False
        assert session.state == IDLE

    @pytest.mark.asyncio
    async def test_start_while_listening_is_ignored(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path)
        assert await session.start_listening()
        assert await session.start_listening() is False
        await session.close()

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, tmp_path):
        session, _, _, _ = await _make_session(tmp_path)
        assert await session.stop_listening() is None

    @pytest.mark.asyncio
    async def test_toggle(self, tmp_path):
        session, capture, _, _ = await _make_session(tmp_path)
        assert await session.toggle_listening() is True
        assert session.state == LISTENING
        capture.feed(_LOUD)
        assert await session.toggle_listening() is False
        assert session.state == IDLE
        assert len(session.history) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Failures + cancellation
# ─────────────────────────────────────────────────────────────────────────────

class TestFailures:

    @pytest.mark.asyncio
    async def test_capture_failure(self, tmp_path):
        session, _, _, events = await _make_session(tmp_path, stream_factory=_broken_stream)
        states = _record(events, StateChanged)
        errors = _record(events, ErrorOccurred)

        assert await session.start_listening() is False

        assert session.state == IDLE
        assert [s.current for s in states] == [LISTENING, ERROR, IDLE]
        assert errors[0].stage == "capture"
        assert "microphone" in str(errors[0].error)

    @pytest.mark.asyncio
    async def test_transcription_failure(self, tmp_path):
        recognizer = _ScriptedRecognizer()
        recognizer.raise_error = RuntimeError("decoder crashed")
        session, capture, _, events = await _make_session(tmp_path, recognizer)
        states = _record(events, StateChanged)
        errors = _record(events, ErrorOccurred)

        assert await _speak(session, capture) is None

        assert session.state == IDLE
        assert [s.current for s in states] == [LISTENING, PROCESSING, ERROR, IDLE]
        assert errors[0].stage == "transcription"
        assert session.history == []

    @pytest.mark.asyncio
    async def test_session_recovers_after_failure(self, tmp_path):
        recognizer = _ScriptedRecognizer()
        recognizer.raise_error = RuntimeError("decoder crashed")
        session, capture, _, _ = await _make_session(tmp_path, recognizer)
        await _speak(session, capture)

        recognizer.raise_error = None
        result = await _speak(session, capture)
        assert result.command.intent == VoiceIntent.QUERY_BALANCE


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_while_listening(self, tmp_path):
        session, capture, recognizer, events = await _make_session(tmp_path)
        stopped = _record(events, ListeningStopped)
        await session.start_listening()
        capture.feed(_LOUD)

        await session.cancel()

        assert session.state == IDLE
        assert stopped[0].reason == "cancelled"
        assert recognizer.calls == []
        assert session.history == []

    @pytest.mark.asyncio
    async def test_cancel_while_processing(self, tmp_path):
        recognizer = _ScriptedRecognizer(hang=True)
        session, capture, _, _ = await _make_session(tmp_path, recognizer)
        await session.start_listening()
        capture.feed(_LOUD)
        await capture.stop_listening()
        assert session.state == PROCESSING

        while not recognizer.calls:
            await asyncio.sleep(0.005)
        await asyncio.wait_for(session.cancel(), timeout=2.0)

        assert session.state == IDLE
        assert session.history == []

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self, tmp_path):
        session, _, _, events = await _make_session(tmp_path)
        await session.start_listening()
        await session.close()
        assert session.state == IDLE
        assert events.subscriber_count(ListeningStopped) == 0


# ─────────────────────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────────────────────

class TestHistory:

    @pytest.mark.asyncio
    async def test_bounded_oldest_first(self, tmp_path):
        recognizer = _ScriptedRecognizer("Show balance.", "Go to dashboard.", "Open settings page.")
        session, capture, _, _ = await _make_session(tmp_path, recognizer, history_size=2)

        for _ in range(3):
            await _speak(session, capture)

        assert [c.raw_text for c in session.history] == ["Go to dashboard.", "Open settings page."]

        session.clear_history()
        assert session.history == []

    @pytest.mark.asyncio
    async def test_default_capacity_evicts_oldest(self, tmp_path):
        texts = [f"Spent {n} on fuel." for n in range(1, 52)]
        session, capture, _, _ = await _make_session(tmp_path, _ScriptedRecognizer(*texts))

        for _ in range(51):
            await _speak(session, capture)

        history = session.history
        assert len(history) == 50
        assert history[0].raw_text == "Spent 2 on fuel."
        assert history[-1].raw_text == "Spent 51 on fuel."

    @pytest.mark.asyncio
    async def test_retry_last_command(self, tmp_path):
        session, capture, _, events = await _make_session(tmp_path, auto_execute=False)
        executed = _record(events, ExecuteRequested)

        assert await session.retry_last_command() is None
        result = await _speak(session, capture)

        command = await session.retry_last_command()
        assert command == result.command
        assert executed == [ExecuteRequested(command=command)]
        assert session.state == IDLE
