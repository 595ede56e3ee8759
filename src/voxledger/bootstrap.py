"""
bootstrap.py — Voice Stack Factory

Composition root. Builds every pipeline component from Settings and wires
them to one EventChannel. Nothing else in the package constructs its own
collaborators, so tests can swap any piece by passing it in.

Usage:
    from voxledger.bootstrap import build_voice_stack
    stack = await build_voice_stack(settings)
    stack.events.subscribe(CommandReady, on_ready)
    await stack.session.start_listening()
    ...
    await stack.close()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from voxledger.config.settings import Settings
from voxledger.observability.logger import get_logger
from voxledger.vocabulary.sqlite_store import SQLiteVocabularyStore
from voxledger.vocabulary.store import VocabularyStore
from voxledger.voice.capture import AudioCapture, StreamFactory
from voxledger.voice.events import EventChannel, Initialized
from voxledger.voice.interpreter import CommandInterpreter
from voxledger.voice.models import ModelCatalog
from voxledger.voice.recognizer import Recognizer, WhisperCppRecognizer
from voxledger.voice.session import VoiceSession
from voxledger.voice.transcriber import Transcriber

log = get_logger(__name__)


@dataclass
class VoiceStack:
    """All wired components returned by build_voice_stack()."""
    events: EventChannel
    vocabulary: VocabularyStore
    catalog: ModelCatalog
    recognizer: Recognizer
    capture: AudioCapture
    transcriber: Transcriber
    interpreter: CommandInterpreter
    session: VoiceSession

    async def close(self) -> None:
        await self.session.close()
        await self.vocabulary.close()


async def build_voice_stack(
    settings: Settings,
    *,
    vocabulary: Optional[VocabularyStore] = None,
    recognizer: Optional[Recognizer] = None,
    stream_factory: Optional[StreamFactory] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> VoiceStack:
    """
    Wire up the voice pipeline from settings.

    Args:
        settings:       Loaded VoxLedger Settings.
        vocabulary:     Pre-built store. Defaults to SQLite at vocabulary.db_path.
        recognizer:     Pre-built recognizer. Defaults to whisper.cpp discovery.
        stream_factory: Input stream builder. Defaults to sounddevice.
        transport:      httpx transport for model downloads (tests).

    Returns:
        VoiceStack with the vocabulary initialised and Initialized emitted.
    """
    events = EventChannel()

    if vocabulary is None:
        vocabulary = SQLiteVocabularyStore(
            settings.dictionary_path,
            seed_defaults=settings.vocabulary.seed_defaults,
        )
    await vocabulary.init()

    catalog = ModelCatalog(
        settings.models_dir,
        url_template=settings.recognizer.download_url_template,
        transport=transport,
    )
    if recognizer is None:
        recognizer = WhisperCppRecognizer(settings.recognizer)

    capture = AudioCapture(settings.audio, events, stream_factory=stream_factory)
    transcriber = Transcriber(
        settings.recognizer,
        recognizer,
        vocabulary,
        catalog,
        events,
        context_term_limit=settings.vocabulary.context_term_limit,
    )
    interpreter = CommandInterpreter(vocabulary)
    session = VoiceSession(
        capture,
        transcriber,
        interpreter,
        events,
        history_size=settings.session.history_size,
        enabled=settings.session.enabled,
        auto_execute=settings.session.auto_execute,
    )

    log.info(
        "voxledger.stack_ready",
        recognizer=recognizer.name,
        recognizer_available=recognizer.is_available(),
        model=transcriber.model_id,
        model_downloaded=transcriber.model_path.is_file(),
    )
    await events.emit(Initialized())

    return VoiceStack(
        events=events,
        vocabulary=vocabulary,
        catalog=catalog,
        recognizer=recognizer,
        capture=capture,
        transcriber=transcriber,
        interpreter=interpreter,
        session=session,
    )
