"""
voice/capture.py — Microphone capture with silence auto-stop

Threading model:
    PortAudio thread  : sounddevice InputStream callback. Copies each int16
                        frame and hands it to the event loop with
                        loop.call_soon_threadsafe(). Never touches session state.
    Event loop        : feed() converts frames to float32 and appends them to
                        the active AudioSession. A monitor task ticks every
                        tick_ms, emits AudioLevel, and stops capture once the
                        signal has stayed under silence_threshold for
                        silence_duration_ms, or once max_utterance_s is reached.

Every utterance gets a fresh AudioSession. stop_listening() concatenates its
chunks, drops the session, and emits ListeningStopped with the audio attached.

Dependencies:
    sounddevice  — mic capture (imported lazily so tests never need PortAudio)
    numpy        — frame conversion + RMS
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import numpy as np

from voxledger.config.settings import AudioConfig
from voxledger.exceptions import AudioCaptureError
from voxledger.observability.logger import get_logger
from voxledger.voice.events import AudioLevel, EventChannel, ListeningStarted, ListeningStopped
from voxledger.voice.types import AudioSession

log = get_logger(__name__)

_DTYPE = "int16"
_INT16_SCALE = 32768.0

# stream_factory(callback) -> object with start(), stop(), close()
StreamFactory = Callable[[Callable[..., None]], Any]


def rms_level(frame: Optional[np.ndarray]) -> float:
    """Root-mean-square of a float32 frame; 0.0 for a missing or empty frame."""
    if frame is None or len(frame) == 0:
        return 0.0
    f = frame.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(f * f)))


# ─────────────────────────────────────────────────────────────────────────────
# Silence detection
# ─────────────────────────────────────────────────────────────────────────────

class SilenceDetector:
    """
    Tracks how long the signal has been continuously quiet.

    update() returns True once the quiet stretch reaches duration_ms.
    Any frame at or above the threshold resets the timer.
    """

    def __init__(self, threshold: float, duration_ms: float) -> None:
        self.threshold = threshold
        self.duration_ms = duration_ms
        self._silence_since: Optional[float] = None

    def is_silent(self, rms: float) -> bool:
        return rms < self.threshold

    def update(self, rms: float, now_ms: float) -> bool:
        if not self.is_silent(rms):
            self._silence_since = None
            return False
        if self._silence_since is None:
            self._silence_since = now_ms
        return (now_ms - self._silence_since) >= self.duration_ms

    def reset(self) -> None:
        self._silence_since = None


# ─────────────────────────────────────────────────────────────────────────────
# Capture
# ─────────────────────────────────────────────────────────────────────────────

class AudioCapture:
    """
    One microphone, at most one active AudioSession at a time.

    Args:
        cfg:            AudioConfig (16 kHz mono enforced by validation).
        events:         Channel for ListeningStarted / ListeningStopped / AudioLevel.
        stream_factory: Builds the input stream from a PortAudio-style callback.
                        Defaults to sounddevice.InputStream. Tests pass a fake.
        clock:          Monotonic seconds; injectable for deterministic tests.
    """

    def __init__(
        self,
        cfg: AudioConfig,
        events: EventChannel,
        stream_factory: Optional[StreamFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cfg = cfg
        self._events = events
        self._stream_factory = stream_factory or self._sounddevice_stream
        self._clock = clock

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream: Any = None
        self._session: Optional[AudioSession] = None
        self._detector = SilenceDetector(cfg.silence_threshold, cfg.silence_duration_ms)
        self._monitor_task: Optional[asyncio.Task] = None
        self._stop_lock = asyncio.Lock()

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def is_listening(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def current_session(self) -> Optional[AudioSession]:
        return self._session

    async def start_listening(self) -> AudioSession:
        """
        Open the input stream and start a new AudioSession.

        Suspends until the device is granted. Raises AudioCaptureError when
        sounddevice/PortAudio is missing, permission is denied, or there is
        no input device.
        """
        if self._session is not None:
            log.warning("capture.already_listening", session_id=self._session.id)
            return self._session

        self._loop = asyncio.get_running_loop()
        session = AudioSession(started_at=self._clock())
        self._detector.reset()

        stream = await self._loop.run_in_executor(None, self._open_stream)
        self._stream = stream
        self._session = session
        self._monitor_task = asyncio.create_task(self._monitor_loop(session))

        log.info(
            "capture.started",
            session_id=session.id,
            sample_rate=self._cfg.sample_rate,
            block_size=self._cfg.block_size,
        )
        await self._events.emit(ListeningStarted(session_id=session.id))
        return session

    async def stop_listening(self, reason: str = "manual") -> Optional[np.ndarray]:
        """
        Stop capture and return the utterance as float32 samples in [-1, 1].

        Returns None when nothing was being captured. A partial buffer from an
        abrupt stop is still returned.
        """
        async with self._stop_lock:
            session = self._session
            if session is None:
                return None
            session.active = False
            self._session = None

            task = self._monitor_task
            self._monitor_task = None
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            await self._close_stream()

            audio = session.concatenate()
            duration_ms = session.elapsed_ms(self._clock())
            session.chunks.clear()

        log.info(
            "capture.stopped",
            session_id=session.id,
            reason=reason,
            samples=len(audio),
            duration_ms=round(duration_ms),
        )
        await self._events.emit(
            ListeningStopped(
                session_id=session.id,
                duration_ms=duration_ms,
                audio_data=audio,
                reason=reason,
            )
        )
        return audio

    def feed(self, frame: np.ndarray) -> None:
        """
        Append one frame to the active session.

        Accepts int16 PCM (as delivered by PortAudio) or float samples. Frames
        arriving after stop are dropped.
        """
        session = self._session
        if session is None or not session.active:
            return
        arr = np.asarray(frame)
        if arr.dtype == np.int16:
            chunk = arr.astype(np.float32) / _INT16_SCALE
        else:
            chunk = arr.astype(np.float32)
        session.chunks.append(chunk.reshape(-1))

    async def close(self) -> None:
        if self._session is not None:
            await self.stop_listening(reason="cancelled")
        else:
            await self._close_stream()

    # ── Silence monitor ───────────────────────────────────────────────────────

    async def _monitor_loop(self, session: AudioSession) -> None:
        tick_s = self._cfg.tick_ms / 1000.0
        max_ms = self._cfg.max_utterance_s * 1000.0

        while session.active:
            await asyncio.sleep(tick_s)
            if not session.active:
                break

            now_ms = self._clock() * 1000.0
            level = rms_level(session.last_chunk)
            silent = self._detector.is_silent(level)
            await self._events.emit(AudioLevel(level=level, is_silent=silent))

            if self._detector.update(level, now_ms):
                log.debug("capture.silence_detected", session_id=session.id)
                await self.stop_listening(reason="silence")
                break

            if session.elapsed_ms(self._clock()) >= max_ms:
                log.info("capture.max_duration", session_id=session.id, limit_s=self._cfg.max_utterance_s)
                await self.stop_listening(reason="max_duration")
                break

    # ── Stream plumbing ───────────────────────────────────────────────────────

    def _callback(self, indata, frames, time_info, status) -> None:
        """PortAudio thread. Copy the buffer; sounddevice reuses it."""
        if status:
            log.debug("capture.sounddevice_status", status=str(status))
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.feed, np.array(indata, dtype=np.int16, copy=True))

    def _open_stream(self) -> Any:
        """Blocking — runs in executor."""
        try:
            stream = self._stream_factory(self._callback)
            stream.start()
        except AudioCaptureError:
            raise
        except Exception as e:
            raise AudioCaptureError(f"Could not open microphone: {e}") from e
        return stream

    def _sounddevice_stream(self, callback: Callable[..., None]) -> Any:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise AudioCaptureError(
                "sounddevice/PortAudio is not available. "
                "Install PortAudio and run: pip install sounddevice"
            ) from e

        return sd.InputStream(
            samplerate=self._cfg.sample_rate,
            channels=self._cfg.channels,
            dtype=_DTYPE,
            blocksize=self._cfg.block_size,
            device=self._cfg.device_index,
            callback=callback,
        )

    async def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        loop = asyncio.get_running_loop()

        def _shutdown() -> None:
            stream.stop()
            stream.close()

        try:
            await loop.run_in_executor(None, _shutdown)
        except Exception as e:
            log.warning("capture.stream_close_failed", error=str(e))
