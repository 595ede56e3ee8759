"""
voice/entities.py — Slot extraction for voice commands

Five extractors run in a fixed order:

    AMOUNT → DATE → DESCRIPTION → CATEGORY → PARTY

Each tries its patterns in order and returns at most one VoiceEntity. The
results are deduplicated by type, first one wins. The order of extractors
and of patterns inside each extractor decides what the user sees, so both
are kept as explicit tuples.

All extractors except PARTY read the normalized text (lower-cased, trimmed,
trailing punctuation removed). PARTY reads the raw transcript because it
looks for a capitalized proper-noun span.

DATE confidence:
    today / yesterday / tomorrow           0.95
    this|last|next week|month|year,
    last N days|weeks|months               0.90
    absolute date that parses              0.80
    matched but not a real calendar date   0.60
"""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence

from voxledger.vocabulary.store import DictionaryTerm
from voxledger.voice.types import EntityType, VoiceEntity

# ─────────────────────────────────────────────────────────────────────────────
# Confidence table
# ─────────────────────────────────────────────────────────────────────────────

AMOUNT_CONFIDENCE = 0.9
DESCRIPTION_CONFIDENCE = 0.75
CATEGORY_CONFIDENCE = 0.7
PARTY_CONFIDENCE = 0.75
VOCABULARY_CONFIDENCE = 0.85

DATE_RELATIVE_DAY = 0.95
DATE_RELATIVE_PERIOD = 0.9
DATE_ABSOLUTE = 0.8
DATE_UNRESOLVED = 0.6

_MIN_TEXT_SLOT = 3

CATEGORY_TERM_CATEGORIES = frozenset({"cat_expense", "cat_income", "cat_gst"})
PARTY_TERM_CATEGORY = "cat_parties"
_COMPANY_LIKE = re.compile(r"\b(?:company|corp|ltd|inc|llp|india)\b", re.IGNORECASE)

# ─────────────────────────────────────────────────────────────────────────────
# Patterns
# ─────────────────────────────────────────────────────────────────────────────

_NUM = r"(\d[\d,]*(?:\.\d{1,2})?)"

AMOUNT_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"(?:\brs\.?|\binr\b|₹)\s*{_NUM}", re.IGNORECASE),
    re.compile(rf"{_NUM}\s*(?:rupees?|inr|rs)\b", re.IGNORECASE),
    re.compile(rf"\bamount\s+(?:of\s+)?{_NUM}", re.IGNORECASE),
    re.compile(rf"\bfor\s+{_NUM}", re.IGNORECASE),
    re.compile(rf"\bspent\s+(?:an?\s+)?{_NUM}", re.IGNORECASE),
    # Bare number; never a piece of 12/03/2024 or 10:30.
    re.compile(rf"(?<![\d/\-.,:]){_NUM}(?=[\s.!?,]|$)"),
)

_MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
_MONTH_ALT = "|".join(_MONTHS)

_DATE_RELATIVE_DAY = re.compile(r"\b(today|yesterday|tomorrow)\b", re.IGNORECASE)
_DATE_NUMERIC = re.compile(r"\b(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})\b")
_DATE_MONTH_NAME = re.compile(rf"\b(\d{{1,2}})\s+((?:{_MONTH_ALT})[a-z]*)\s+(\d{{2,4}})\b", re.IGNORECASE)
_DATE_PERIOD = re.compile(r"\b(this|last|next)\s+(week|month|year)\b", re.IGNORECASE)
_DATE_LAST_N = re.compile(r"\b(?:last|past)\s+(\d+)\s+(days?|weeks?|months?)\b", re.IGNORECASE)

_WORDS = r"([a-z][a-z\s]*?)"
_WORDS_AMP = r"([a-z][a-z\s&]*?)"

DESCRIPTION_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"\bfor\s+{_WORDS}(?:\s+(?:on|at|of|from)\b|$)"),
    re.compile(rf"\bspent\b.*?\bon\s+{_WORDS}(?:\s+(?:amount|for|at)\b|$)"),
    re.compile(rf"\bon\s+{_WORDS}(?:\s+(?:amount|for|bill)\b|$)"),
    re.compile(rf"\btowards\s+{_WORDS}(?:\s+(?:for|of)\b|$)"),
    re.compile(rf"\bdescription\s+(?:of\s+)?{_WORDS}(?:\s+amount\b|$)"),
    # Navigation target: "go to the reports page" → "reports"
    re.compile(
        rf"\b(?:go|navigate|take\s+me|switch)\s+to\s+(?:the\s+)?{_WORDS}"
        r"(?:\s+(?:page|screen|tab|section))?$"
    ),
    re.compile(rf"\bopen\s+(?:the\s+)?{_WORDS}(?:\s+(?:page|screen|tab|section))?$"),
)

CATEGORY_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"\b(?:under|category|of\s+type)\s+{_WORDS_AMP}(?:\s+(?:of|for)\b|$)"),
    re.compile(rf"\bas\s+{_WORDS_AMP}(?:\s+(?:expense|income)\b|$)"),
    re.compile(rf"\b(?:in|category)\s+{_WORDS_AMP}\s+(?:category|expense|income)\b"),
)

# Capitalized words, optionally joined by "&": "Ravi Traders", "Smith & Sons"
_PROPER_SPAN = r"([A-Z][\w'.\-]*(?:\s+(?:&\s+)?[A-Z][\w'.\-]*)*)"

PARTY_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"\b(?i:paid|received)\s+(?i:to|from)\s+{_PROPER_SPAN}"),
    re.compile(rf"\b(?i:from|to|with|at)\s+{_PROPER_SPAN}"),
    re.compile(rf"\b(?i:vendor|supplier|customer|client|party)\s+{_PROPER_SPAN}"),
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def normalize_text(text: str) -> str:
    """Lower-case, trim, drop trailing sentence punctuation."""
    return text.strip().lower().rstrip(".!?").strip()


def term_in_text(spoken: str, text: str) -> bool:
    """Whole-word occurrence of a vocabulary spoken form."""
    if not spoken:
        return False
    return re.search(rf"\b{re.escape(spoken)}\b", text) is not None


def shift_months(d: date, months: int) -> date:
    """Move d by whole months, clamping the day to the target month's length."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _expand_year(year: int) -> int:
    return 2000 + year if year < 100 else year


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _first_match(patterns: Iterable[re.Pattern], text: str, min_len: int = _MIN_TEXT_SLOT) -> Optional[str]:
    for pattern in patterns:
        m = pattern.search(text)
        if m and m.group(1):
            value = " ".join(m.group(1).split())
            if len(value) >= min_len:
                return value
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Extractors
# ─────────────────────────────────────────────────────────────────────────────

def extract_amount(text: str) -> Optional[VoiceEntity]:
    for pattern in AMOUNT_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        digits = m.group(1).replace(",", "")
        try:
            value = Decimal(digits)
        except InvalidOperation:
            continue
        return VoiceEntity(EntityType.AMOUNT, value, AMOUNT_CONFIDENCE)
    return None


def extract_date(text: str, today: date) -> Optional[VoiceEntity]:
    m = _DATE_RELATIVE_DAY.search(text)
    if m:
        offset = {"today": 0, "yesterday": -1, "tomorrow": 1}[m.group(1).lower()]
        return VoiceEntity(EntityType.DATE, today + timedelta(days=offset), DATE_RELATIVE_DAY)

    m = _DATE_NUMERIC.search(text)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), _expand_year(int(m.group(3)))
        resolved = _safe_date(year, month, day)
        if resolved is None:
            return VoiceEntity(EntityType.DATE, m.group(0), DATE_UNRESOLVED)
        return VoiceEntity(EntityType.DATE, resolved, DATE_ABSOLUTE)

    m = _DATE_MONTH_NAME.search(text)
    if m:
        day, year = int(m.group(1)), _expand_year(int(m.group(3)))
        month = _MONTHS.index(m.group(2)[:3].lower()) + 1
        resolved = _safe_date(year, month, day)
        if resolved is None:
            return VoiceEntity(EntityType.DATE, m.group(0), DATE_UNRESOLVED)
        return VoiceEntity(EntityType.DATE, resolved, DATE_ABSOLUTE)

    m = _DATE_PERIOD.search(text)
    if m:
        direction = {"this": 0, "last": -1, "next": 1}[m.group(1).lower()]
        unit = m.group(2).lower()
        if unit == "week":
            resolved = today + timedelta(weeks=direction)
        elif unit == "month":
            resolved = shift_months(today, direction)
        else:
            resolved = shift_months(today, 12 * direction)
        return VoiceEntity(EntityType.DATE, resolved, DATE_RELATIVE_PERIOD)

    m = _DATE_LAST_N.search(text)
    if m:
        n = int(m.group(1))
        unit = m.group(2).lower().rstrip("s")
        if unit == "day":
            resolved = today - timedelta(days=n)
        elif unit == "week":
            resolved = today - timedelta(weeks=n)
        else:
            resolved = shift_months(today, -n)
        return VoiceEntity(EntityType.DATE, resolved, DATE_RELATIVE_PERIOD)

    return None


def extract_description(text: str) -> Optional[VoiceEntity]:
    value = _first_match(DESCRIPTION_PATTERNS, text)
    if value is None:
        return None
    return VoiceEntity(EntityType.DESCRIPTION, value, DESCRIPTION_CONFIDENCE)


def extract_category(text: str, terms: Sequence[DictionaryTerm] = ()) -> Optional[VoiceEntity]:
    value = _first_match(CATEGORY_PATTERNS, text)
    if value is not None:
        return VoiceEntity(EntityType.CATEGORY, value, CATEGORY_CONFIDENCE)

    for term in terms:
        if term.category in CATEGORY_TERM_CATEGORIES and term_in_text(term.spoken, text):
            return VoiceEntity(EntityType.CATEGORY, term.mapped, VOCABULARY_CONFIDENCE)
    return None


def is_company_like(term: DictionaryTerm) -> bool:
    return term.category == PARTY_TERM_CATEGORY or bool(_COMPANY_LIKE.search(term.mapped))


def extract_party(
    raw_text: str,
    normalized: str,
    terms: Sequence[DictionaryTerm] = (),
) -> Optional[VoiceEntity]:
    for pattern in PARTY_PATTERNS:
        m = pattern.search(raw_text)
        if m:
            name = m.group(1).strip().rstrip(".,'-")
            if len(name) >= _MIN_TEXT_SLOT:
                return VoiceEntity(EntityType.PARTY, name, PARTY_CONFIDENCE)

    for term in terms:
        if is_company_like(term) and term_in_text(term.spoken, normalized):
            return VoiceEntity(EntityType.PARTY, term.mapped, VOCABULARY_CONFIDENCE)
    return None


def dedupe_by_type(entities: Iterable[Optional[VoiceEntity]]) -> tuple[VoiceEntity, ...]:
    seen: set[EntityType] = set()
    unique: list[VoiceEntity] = []
    for entity in entities:
        if entity is None or entity.type in seen:
            continue
        seen.add(entity.type)
        unique.append(entity)
    return tuple(unique)


def extract_entities(
    raw_text: str,
    normalized: str,
    today: date,
    terms: Sequence[DictionaryTerm] = (),
) -> tuple[VoiceEntity, ...]:
    """Run every extractor in order and keep the first entity of each type."""
    return dedupe_by_type((
        extract_amount(normalized),
        extract_date(normalized, today),
        extract_description(normalized),
        extract_category(normalized, terms),
        extract_party(raw_text, normalized, terms),
    ))
