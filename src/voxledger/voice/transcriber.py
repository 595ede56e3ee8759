"""
voice/transcriber.py — PCM → text

One transcribe() call:
    1. encode the float32 buffer as a 16 kHz mono WAV in a temp file
    2. fetch the vocabulary context prompt (first N active spoken forms)
    3. if the recognizer or the model file is missing → fallback result
    4. run the recognizer under the configured deadline
    5. exit 0 → transcript + heuristic confidence; anything else → fallback

The fallback is TranscriptionResult(text="", confidence=0.0). It is a normal
return value, not an error: the session treats it as "nothing was heard".

The temp WAV is owned by the in-flight call and is always deleted, whether
the call succeeds, falls back, is cancelled, or raises.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from voxledger.config.settings import RecognizerConfig
from voxledger.exceptions import TranscriptionInProgressError
from voxledger.observability.logger import get_logger
from voxledger.vocabulary.store import VocabularyStore
from voxledger.voice.events import EventChannel, ModelChanged, PartialTranscription
from voxledger.voice.models import ModelCatalog, ProgressCallback
from voxledger.voice.recognizer import DecodeOptions, Recognizer
from voxledger.voice.types import ModelInfo, TranscriptionResult
from voxledger.voice.wav import encode_wav

log = get_logger(__name__)

_SAMPLE_RATE = 16000


def score_transcript(text: str) -> float:
    """Heuristic confidence for a transcript. Empty text scores 0."""
    if not text:
        return 0.0
    score = 0.5
    n = len(text)
    if n > 10:
        score += 0.1
    if n > 30:
        score += 0.1
    if n > 50:
        score += 0.1
    if text[0].isupper():
        score += 0.05
    if text[-1] in ".!?":
        score += 0.05
    if n < 5:
        score -= 0.1
    return max(0.0, min(1.0, score))


class Transcriber:
    """
    Turns captured audio into a TranscriptionResult.

    Not re-entrant: a second transcribe() while one is in flight raises
    TranscriptionInProgressError immediately.
    """

    def __init__(
        self,
        cfg: RecognizerConfig,
        recognizer: Recognizer,
        vocabulary: VocabularyStore,
        catalog: ModelCatalog,
        events: EventChannel,
        context_term_limit: int = 50,
    ) -> None:
        self._cfg = cfg
        self._recognizer = recognizer
        self._vocabulary = vocabulary
        self._catalog = catalog
        self._events = events
        self._context_term_limit = context_term_limit

        self._model_id = cfg.model_size
        self._language = cfg.language
        self._threads = self._clamp_threads(cfg.threads)

        self._in_flight = False
        self._cancelled = False

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def is_processing(self) -> bool:
        return self._in_flight

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def language(self) -> str:
        return self._language

    @property
    def threads(self) -> int:
        return self._threads

    @property
    def model_path(self) -> Path:
        return self._catalog.path_for(self._model_id)

    # ── Transcription ─────────────────────────────────────────────────────────

    async def transcribe(self, samples: np.ndarray) -> TranscriptionResult:
        """Final pass over a complete utterance."""
        return await self._run(samples, timeout=self._cfg.timeout_s, is_final=True)

    async def transcribe_partial(self, samples: np.ndarray) -> TranscriptionResult:
        """Quick pass over audio captured so far. Emits PartialTranscription."""
        result = await self._run(samples, timeout=self._cfg.partial_timeout_s, is_final=False)
        await self._events.emit(PartialTranscription(result=result))
        return result

    async def cancel(self) -> None:
        """Abort the in-flight call; it resolves to the fallback. Always safe."""
        if not self._in_flight:
            return
        self._cancelled = True
        await self._recognizer.cancel()
        log.info("transcriber.cancel_requested")

    async def _run(self, samples: np.ndarray, timeout: float, is_final: bool) -> TranscriptionResult:
        if self._in_flight:
            raise TranscriptionInProgressError()
        self._in_flight = True
        self._cancelled = False
        try:
            with self._temp_wav(samples) as wav_path:
                prompt = await self._vocabulary.get_context_prompt(self._context_term_limit)

                if not self._recognizer.is_available():
                    log.warning("transcriber.recognizer_unavailable", recognizer=self._recognizer.name)
                    return TranscriptionResult.fallback(is_final)
                if not self.model_path.is_file():
                    log.warning(
                        "transcriber.model_missing",
                        model=self._model_id,
                        path=str(self.model_path),
                        hint=f"Run: voxledger download {self._model_id}",
                    )
                    return TranscriptionResult.fallback(is_final)
                if self._cancelled:
                    return TranscriptionResult.fallback(is_final)

                output = await self._recognizer.recognize(
                    wav_path,
                    prompt,
                    timeout,
                    self._decode_options(),
                )

            if self._cancelled or not output.ok:
                return TranscriptionResult.fallback(is_final)

            text = output.text.strip()
            result = TranscriptionResult(
                text=text,
                confidence=score_transcript(text),
                is_final=is_final,
            )
            log.info(
                "transcriber.complete",
                chars=len(text),
                confidence=round(result.confidence, 2),
                final=is_final,
            )
            return result
        finally:
            self._in_flight = False
            self._cancelled = False

    def _decode_options(self) -> DecodeOptions:
        return DecodeOptions(
            model_path=self.model_path,
            language=self._language,
            threads=self._threads,
            temperature=self._cfg.temperature,
            beam_size=self._cfg.beam_size,
            translate=self._cfg.translate,
        )

    @contextlib.contextmanager
    def _temp_wav(self, samples: np.ndarray) -> Iterator[Path]:
        temp_dir = self._cfg.temp_dir
        if temp_dir:
            Path(temp_dir).mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="voxledger_", suffix=".wav", dir=temp_dir)
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(encode_wav(samples, sample_rate=_SAMPLE_RATE, channels=1))
            yield path
        finally:
            path.unlink(missing_ok=True)
            # whisper.cpp -otxt drops <wav>.txt beside the input
            path.with_name(path.name + ".txt").unlink(missing_ok=True)

    # ── Model + decoding settings ─────────────────────────────────────────────

    def supported_models(self) -> list[ModelInfo]:
        return self._catalog.refresh()

    async def set_model(self, model_id: str) -> ModelInfo:
        """Switch model. Raises ModelNotFoundError for an unknown id."""
        model = self._catalog.get(model_id)
        self._model_id = model_id
        log.info("transcriber.model_changed", model=model_id, downloaded=model.is_downloaded)
        await self._events.emit(ModelChanged(model=model))
        return model

    def set_language(self, language: str) -> None:
        self._language = language.strip().lower()

    def set_threads(self, threads: int) -> int:
        self._threads = self._clamp_threads(threads)
        return self._threads

    async def download_model(
        self,
        model_id: str,
        progress: Optional[ProgressCallback] = None,
    ) -> ModelInfo:
        return await self._catalog.download(model_id, progress)

    @staticmethod
    def _clamp_threads(threads: int) -> int:
        return max(1, min(threads, os.cpu_count() or 1))
