"""
voice/wav.py — RIFF/WAVE PCM codec

The recognizer reads 16-bit little-endian PCM WAV files. encode_wav() writes
the canonical 44-byte header followed by exactly 2 × sample_count data bytes.
decode_wav() reads it back, skipping any chunk it doesn't know.

Float → int16 conversion clamps to [-1, 1], scales negatives by 0x8000 and
positives by 0x7FFF, then floors. An int16 buffer passes through unchanged.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

import numpy as np

from voxledger.exceptions import WavFormatError

HEADER_SIZE = 44
_PCM_FORMAT = 1
_BITS_PER_SAMPLE = 16


@dataclass(frozen=True)
class WavAudio:
    samples: np.ndarray  # int16, interleaved when channels > 1
    sample_rate: int
    channels: int

    @property
    def duration_s(self) -> float:
        frames = len(self.samples) // max(self.channels, 1)
        return frames / self.sample_rate if self.sample_rate else 0.0


def to_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to int16. int16 input is returned as-is."""
    arr = np.asarray(samples)
    if arr.dtype == np.int16:
        return arr
    f = np.clip(arr.astype(np.float64), -1.0, 1.0)
    scaled = np.where(f < 0, f * 0x8000, f * 0x7FFF)
    return np.floor(scaled).astype(np.int16)


def encode_wav(samples: np.ndarray, sample_rate: int = 16000, channels: int = 1) -> bytes:
    pcm = to_pcm16(samples)
    data = pcm.astype("<i2", copy=False).tobytes()
    block_align = channels * _BITS_PER_SAMPLE // 8
    byte_rate = sample_rate * block_align

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + len(data),
        b"WAVE",
        b"fmt ",
        16,
        _PCM_FORMAT,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        _BITS_PER_SAMPLE,
        b"data",
        len(data),
    )
    return header + data


def decode_wav(data: bytes) -> WavAudio:
    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise WavFormatError("Not a RIFF/WAVE container")

    fmt: tuple[int, int, int, int] | None = None
    offset = 12
    while offset + 8 <= len(data):
        chunk_id, chunk_size = struct.unpack_from("<4sI", data, offset)
        body_start = offset + 8
        body_end = body_start + chunk_size
        if body_end > len(data):
            raise WavFormatError(f"Chunk {chunk_id!r} overruns the buffer")

        if chunk_id == b"fmt ":
            if chunk_size < 16:
                raise WavFormatError("fmt chunk too short")
            audio_format, channels, sample_rate, _, _, bits = struct.unpack_from(
                "<HHIIHH", data, body_start
            )
            fmt = (audio_format, channels, sample_rate, bits)
        elif chunk_id == b"data":
            if fmt is None:
                raise WavFormatError("data chunk precedes fmt chunk")
            audio_format, channels, sample_rate, bits = fmt
            if audio_format != _PCM_FORMAT or bits != _BITS_PER_SAMPLE:
                raise WavFormatError(
                    f"Unsupported encoding: format={audio_format} bits={bits}"
                )
            if chunk_size % 2:
                raise WavFormatError("data chunk length is not a whole number of samples")
            samples = np.frombuffer(data[body_start:body_end], dtype="<i2").astype(np.int16)
            return WavAudio(samples=samples, sample_rate=sample_rate, channels=channels)

        # Chunks are word-aligned.
        offset = body_end + (chunk_size & 1)

    raise WavFormatError("No data chunk found")
