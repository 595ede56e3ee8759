"""
voice/types.py — VoxLedger Voice Pipeline Types

Shared value types for every stage of the pipeline:

    AudioSession         Per-utterance capture arena (chunks live here, nowhere else)
    TranscriptionResult  Recognizer output with a heuristic confidence
    VoiceEntity          One extracted slot (amount, date, description, category, party)
    ParsedVoiceCommand   Intent + entities + confidence for one utterance
    ParseResult          ParsedVoiceCommand + confirmation policy + suggested reply
    ValidationResult     Missing-field report for a parsed command
    ModelInfo            A recognizer model and whether it is present on disk
    VoiceState           VoiceSession finite-state-machine states

These types have no dependencies on other voxledger modules so they can be
imported from anywhere in the pipeline without creating cycles.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import numpy as np


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────

class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    ERROR = "error"


class EntityType(str, Enum):
    AMOUNT = "amount"
    DATE = "date"
    DESCRIPTION = "description"
    CATEGORY = "category"
    PARTY = "party"


class VoiceIntent(str, Enum):
    ADD_EXPENSE = "add_expense"
    ADD_INCOME = "add_income"
    ADD_TRANSACTION = "add_transaction"
    ADD_PARTY = "add_party"
    ADD_PRODUCT = "add_product"
    GENERATE_REPORT = "generate_report"
    QUERY_BALANCE = "query_balance"
    NAVIGATE = "navigate"
    UNKNOWN = "unknown"


# Intents that move money and therefore need an AMOUNT slot.
MONEY_INTENTS = frozenset({
    VoiceIntent.ADD_EXPENSE,
    VoiceIntent.ADD_INCOME,
    VoiceIntent.ADD_TRANSACTION,
})


# ─────────────────────────────────────────────────────────────────────────────
# Capture
# ─────────────────────────────────────────────────────────────────────────────

def _new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


@dataclass
class AudioSession:
    """
    Everything capture knows about one utterance.

    Chunks are float32 arrays in [-1, 1]. The whole object is dropped when
    capture stops, so no frame can leak into the next utterance.
    """
    id: str = field(default_factory=_new_session_id)
    started_at: float = field(default_factory=time.monotonic)
    chunks: list[np.ndarray] = field(default_factory=list)
    active: bool = True

    @property
    def sample_count(self) -> int:
        return sum(len(c) for c in self.chunks)

    @property
    def last_chunk(self) -> Optional[np.ndarray]:
        return self.chunks[-1] if self.chunks else None

    def elapsed_ms(self, now: Optional[float] = None) -> float:
        now = time.monotonic() if now is None else now
        return (now - self.started_at) * 1000.0

    def concatenate(self) -> np.ndarray:
        if not self.chunks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self.chunks).astype(np.float32, copy=False)


# ─────────────────────────────────────────────────────────────────────────────
# Transcription
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    confidence: float
    is_final: bool = True
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def fallback(cls, is_final: bool = True) -> "TranscriptionResult":
        """Empty transcript used whenever the recognizer can't produce one."""
        return cls(text="", confidence=0.0, is_final=is_final)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    size: str
    languages: tuple[str, ...]
    accuracy: float
    is_downloaded: bool = False
    local_path: Optional[Path] = None


# ─────────────────────────────────────────────────────────────────────────────
# Interpretation
# ─────────────────────────────────────────────────────────────────────────────

EntityValue = Union[Decimal, date, str]


@dataclass(frozen=True)
class VoiceEntity:
    type: EntityType
    value: EntityValue
    confidence: float


@dataclass(frozen=True)
class ParsedVoiceCommand:
    raw_text: str
    intent: VoiceIntent
    entities: tuple[VoiceEntity, ...] = ()
    confidence: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def entity(self, entity_type: EntityType) -> Optional[VoiceEntity]:
        for e in self.entities:
            if e.type == entity_type:
                return e
        return None

    def value(self, entity_type: EntityType) -> Optional[EntityValue]:
        e = self.entity(entity_type)
        return e.value if e is not None else None

    @property
    def amount(self) -> Optional[Decimal]:
        v = self.value(EntityType.AMOUNT)
        return v if isinstance(v, Decimal) else None


@dataclass(frozen=True)
class ParseResult:
    command: ParsedVoiceCommand
    requires_confirmation: bool
    suggested_response: str = ""


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[str, ...] = ()
