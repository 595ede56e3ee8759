"""
voice/interpreter.py — Transcript → accounting command

CommandInterpreter.parse(text):
    1. normalize (lower-case, trim, strip trailing .!?)
    2. classify: walk INTENT_RULES in descending priority (stable, so equal
       priorities keep table order); first rule with any matching pattern wins
    3. extract entities (see voice/entities.py)
    4. score confidence
    5. decide whether the user must confirm
    6. phrase a suggested spoken/on-screen reply

The interpreter never raises on user input. Anything it can't classify comes
back as UNKNOWN with confirmation required.

Confidence:
    0.5
    + min(words × 0.02, 0.2)
    + 0.2  if the winning rule's patterns match
    + 0.1  if an AMOUNT was found and the intent moves money
    - 0.1  if the raw text is shorter than 5 characters
    clamped to [0, 1]

Confirmation is required when AMOUNT > 10,000, the intent is UNKNOWN, or
confidence < 0.6.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from voxledger.observability.logger import get_logger
from voxledger.vocabulary.store import DictionaryTerm, VocabularyStore
from voxledger.voice.entities import extract_entities, normalize_text
from voxledger.voice.types import (
    MONEY_INTENTS,
    EntityType,
    ParsedVoiceCommand,
    ParseResult,
    ValidationResult,
    VoiceEntity,
    VoiceIntent,
)

log = get_logger(__name__)

CONFIRMATION_AMOUNT = Decimal("10000")
CONFIRMATION_CONFIDENCE = 0.6

EMPTY_RESPONSE = "I didn't catch that. Could you please try again?"
UNKNOWN_RESPONSE = "I didn't understand that command. Could you please rephrase?"


# ─────────────────────────────────────────────────────────────────────────────
# Intent rules
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IntentRule:
    intent: VoiceIntent
    priority: int
    patterns: tuple[re.Pattern, ...]
    examples: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


def _rule(intent: VoiceIntent, priority: int, patterns: list[str], examples: list[str]) -> IntentRule:
    return IntentRule(
        intent=intent,
        priority=priority,
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        examples=tuple(examples),
    )


_REPORT_PERIOD = r"(?:(?:daily|weekly|monthly|quarterly|annual|yearly)\s+)?"
_REPORT_KIND = r"(?:(?:expense|income|sales|gst|tax)\s+)?"

_RULE_TABLE: tuple[IntentRule, ...] = (
    _rule(
        VoiceIntent.ADD_EXPENSE, 10,
        [
            r"\badd\s+expense\b",
            r"\badd\s+(?:an|a)\s+expense\b",
            r"\brecord\s+(?:an\s+)?expense\b",
            r"\blog\s+(?:an\s+)?expense\b",
            r"\bnew\s+expense\b",
            r"\bspent\b",
            r"\bpaid\s+for\b",
            r"(?<!got )\bpaid\s+(?:rs\.?\s*|inr\s*|₹\s*)?\d",
            r"\bexpense\s+of\b",
            r"\bbought\b",
            r"\bpurchased\b",
        ],
        [
            "Add expense of 500 for groceries",
            "Spent 2000 on fuel",
            "Record expense 500 rupees for office supplies",
            "Paid 150 for lunch",
        ],
    ),
    _rule(
        VoiceIntent.ADD_INCOME, 10,
        [
            r"\badd\s+income\b",
            r"\badd\s+(?:an|a)\s+income\b",
            r"\brecord\s+income\b",
            r"\blog\s+income\b",
            r"\bnew\s+income\b",
            r"\breceived\b",
            r"\bearned\b",
            r"\bincome\s+of\b",
            r"\bgot\s+paid\b",
            r"\bsalary\s+credit",
        ],
        [
            "Add income of 50000 from salary",
            "Received 10000 from consulting",
            "Record income 5000 as consulting fee",
            "Earned 20000 today",
        ],
    ),
    _rule(
        VoiceIntent.GENERATE_REPORT, 8,
        [
            rf"\bgenerate\s+(?:a\s+|the\s+)?{_REPORT_PERIOD}{_REPORT_KIND}report\b",
            r"\bshow\s+(?:me\s+)?(?:the\s+)?report\b",
            r"\bview\s+(?:the\s+)?report\b",
            r"\bprint\s+(?:the\s+)?report\b",
            r"\bexport\s+(?:the\s+)?report\b",
            rf"\b(?:give\s+me|show\s+me)\s+(?:a\s+|the\s+|my\s+)?{_REPORT_PERIOD}{_REPORT_KIND}report\b",
            rf"\bshow\s+(?:me\s+)?(?:my\s+)?{_REPORT_PERIOD}(?:expense|income|sales)\s+report\b",
            r"\bshow\s+(?:me\s+)?(?:the\s+)?balance\s+sheet\b",
            r"\bshow\s+(?:me\s+)?(?:the\s+)?profit\s+and\s+loss\b",
            r"\bshow\s+(?:me\s+)?(?:the\s+)?cash\s+flow\b",
            r"\bp\s+and\s+l\b",
            r"\bprofit\s+(?:and|&)\s+loss\b",
        ],
        [
            "Generate monthly report",
            "Show me expense report for last month",
            "View profit and loss statement",
            "Show balance sheet",
            "Give me weekly sales report",
        ],
    ),
    _rule(
        VoiceIntent.QUERY_BALANCE, 8,
        [
            r"\bwhat(?:'s|\s+is)?\s+(?:(?:my|the|our)\s+)?(?:current\s+)?(?:cash\s+)?balance\b",
            r"\bshow\s+(?:me\s+)?(?:(?:my|the|our)\s+)?(?:current\s+)?(?:cash\s+)?balance\b",
            r"\bcheck\s+(?:(?:my|the|our)\s+)?(?:current\s+)?(?:cash\s+)?balance\b",
            r"\btell\s+(?:me\s+)?(?:(?:my|the|our)\s+)?(?:current\s+)?balance\b",
            r"\b(?:how\s+much|what)\s+(?:is\s+)?(?:(?:my|the)\s+)?(?:cash|money|funds)\b",
            r"\btotal\s+(?:cash|money|balance)\b",
        ],
        [
            "What is my balance?",
            "Show me my current balance",
            "How much money do I have?",
            "Check my cash balance",
        ],
    ),
    _rule(
        VoiceIntent.ADD_TRANSACTION, 5,
        [
            r"\badd\s+(?:a\s+)?transaction\b",
            r"\bnew\s+transaction\b",
            r"\bcreate\s+(?:a\s+)?transaction\b",
            r"\badd\s+(?:an\s+)?entry\b",
            r"\bnew\s+entry\b",
            r"\bjournal\s+entry\b",
            r"\bmake\s+a\s+transaction\b",
        ],
        [
            "Add transaction for 1000",
            "Create new transaction",
            "Add entry for electricity bill",
        ],
    ),
    _rule(
        VoiceIntent.ADD_PARTY, 5,
        [
            r"\badd\s+(?:a\s+)?(?:new\s+)?(?:party|customer|client|vendor|supplier)\b",
            r"\bcreate\s+(?:a\s+)?(?:new\s+)?(?:party|customer|client|vendor|supplier)\b",
            r"\bregister\s+(?:a\s+)?(?:new\s+)?(?:party|customer|client|vendor|supplier)\b",
        ],
        [
            "Add new party ABC Corporation",
            "Create vendor for Amazon",
            "Add customer John Doe",
        ],
    ),
    _rule(
        VoiceIntent.ADD_PRODUCT, 5,
        [
            r"\badd\s+(?:a\s+)?(?:new\s+)?(?:product|item|inventory)\b",
            r"\bcreate\s+(?:a\s+)?(?:new\s+)?(?:product|item|inventory)\b",
            r"\bregister\s+(?:a\s+)?(?:new\s+)?(?:product|item|inventory)\b",
            r"\badd\s+(?:a\s+)?(?:new\s+)?service\b",
        ],
        [
            "Add new product Widget A",
            "Create item for software license",
            "Add inventory item Laptop",
        ],
    ),
    _rule(
        VoiceIntent.NAVIGATE, 1,
        [
            r"\bgo\s+to\b",
            r"\bnavigate\s+to\b",
            r"\bopen\b",
            r"\bshow\s+me\b",
            r"\btake\s+me\s+to\b",
            r"\bswitch\s+to\b",
        ],
        [
            "Go to dashboard",
            "Open transactions page",
            "Show me reports",
            "Take me to settings",
        ],
    ),
)

# sorted() is stable: equal priorities keep table order.
INTENT_RULES: tuple[IntentRule, ...] = tuple(
    sorted(_RULE_TABLE, key=lambda r: r.priority, reverse=True)
)


def classify(normalized: str, rules: tuple[IntentRule, ...] = INTENT_RULES) -> tuple[VoiceIntent, Optional[IntentRule]]:
    for rule in rules:
        if rule.matches(normalized):
            return rule.intent, rule
    return VoiceIntent.UNKNOWN, None


# ─────────────────────────────────────────────────────────────────────────────
# Scoring + policy
# ─────────────────────────────────────────────────────────────────────────────

def score_command(
    raw_text: str,
    intent: VoiceIntent,
    rule_matched: bool,
    entities: tuple[VoiceEntity, ...],
) -> float:
    confidence = 0.5
    confidence += min(len(raw_text.split()) * 0.02, 0.2)
    if rule_matched:
        confidence += 0.2
    has_amount = any(e.type == EntityType.AMOUNT for e in entities)
    if has_amount and intent in MONEY_INTENTS:
        confidence += 0.1
    if len(raw_text.strip()) < 5:
        confidence -= 0.1
    return max(0.0, min(1.0, confidence))


def requires_confirmation(command: ParsedVoiceCommand) -> bool:
    amount = command.amount
    if amount is not None and amount > CONFIRMATION_AMOUNT:
        return True
    if command.intent == VoiceIntent.UNKNOWN:
        return True
    return command.confidence < CONFIRMATION_CONFIDENCE


def validate_command(command: ParsedVoiceCommand) -> ValidationResult:
    """Report missing required slots. Never mutates the command."""
    errors: list[str] = []
    present = {e.type for e in command.entities}

    if command.intent in MONEY_INTENTS:
        if EntityType.AMOUNT not in present:
            errors.append("Amount is required for this transaction")
    elif command.intent == VoiceIntent.ADD_PARTY:
        if not present & {EntityType.PARTY, EntityType.DESCRIPTION}:
            errors.append("Party name is required")
    elif command.intent == VoiceIntent.ADD_PRODUCT:
        if not present & {EntityType.PARTY, EntityType.DESCRIPTION}:
            errors.append("Product name is required")

    return ValidationResult(is_valid=not errors, errors=tuple(errors))


# ─────────────────────────────────────────────────────────────────────────────
# Presentation
# ─────────────────────────────────────────────────────────────────────────────

def format_value(value: object) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def suggest_response(command: ParsedVoiceCommand) -> str:
    amount = command.value(EntityType.AMOUNT)
    desc = command.value(EntityType.DESCRIPTION)
    when = command.value(EntityType.DATE)

    amt = format_value(amount) if amount is not None else "?"
    desc_s = format_value(desc) if desc is not None else None
    when_s = format_value(when) if when is not None else None

    intent = command.intent
    if intent == VoiceIntent.ADD_EXPENSE:
        return (
            f"I'll record an expense of ₹{amt}"
            + (f" for {desc_s}" if desc_s else "")
            + (f" on {when_s}" if when_s else "")
            + ". Is this correct?"
        )
    if intent == VoiceIntent.ADD_INCOME:
        return (
            f"I'll record income of ₹{amt}"
            + (f" from {desc_s}" if desc_s else "")
            + (f" on {when_s}" if when_s else "")
            + ". Is this correct?"
        )
    if intent == VoiceIntent.ADD_TRANSACTION:
        return f"I'll add a transaction for ₹{amt}" + (f": {desc_s}" if desc_s else "") + ". Please confirm."
    if intent == VoiceIntent.GENERATE_REPORT:
        return "I'll generate the report you requested. One moment please."
    if intent == VoiceIntent.QUERY_BALANCE:
        return "Let me check your current balance."
    if intent == VoiceIntent.NAVIGATE:
        return f"Taking you to {desc_s or 'the requested page'}."
    if intent == VoiceIntent.UNKNOWN:
        return UNKNOWN_RESPONSE
    return f'I understand you want to "{command.raw_text}". Would you like me to proceed?'


def format_for_display(command: ParsedVoiceCommand) -> str:
    parts = [
        f"**Intent:** {command.intent.name.replace('_', ' ')}",
        f"**Confidence:** {round(command.confidence * 100)}%",
    ]
    if command.entities:
        parts.append("**Entities:**")
        for e in command.entities:
            parts.append(
                f"  - {e.type.name}: {format_value(e.value)} "
                f"({round(e.confidence * 100)}% confidence)"
            )
    return "\n".join(parts)


# ─────────────────────────────────────────────────────────────────────────────
# Interpreter
# ─────────────────────────────────────────────────────────────────────────────

class CommandInterpreter:
    """
    Stateless apart from its collaborators.

    Args:
        vocabulary: Active terms back-fill CATEGORY and PARTY. Optional.
        today:      Clock for relative dates. Injectable for tests.
    """

    def __init__(
        self,
        vocabulary: Optional[VocabularyStore] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._vocabulary = vocabulary
        self._today = today

    @property
    def rules(self) -> tuple[IntentRule, ...]:
        return INTENT_RULES

    def examples_for(self, intent: VoiceIntent) -> tuple[str, ...]:
        for rule in INTENT_RULES:
            if rule.intent == intent:
                return rule.examples
        return ()

    async def parse(self, text: str) -> ParseResult:
        if not text or not text.strip():
            command = ParsedVoiceCommand(raw_text="", intent=VoiceIntent.UNKNOWN, confidence=0.0)
            return ParseResult(
                command=command,
                requires_confirmation=requires_confirmation(command),
                suggested_response=EMPTY_RESPONSE,
            )

        normalized = normalize_text(text)
        intent, rule = classify(normalized)
        terms = await self._active_terms()
        entities = extract_entities(text, normalized, self._today(), terms)

        command = ParsedVoiceCommand(
            raw_text=text,
            intent=intent,
            entities=entities,
            confidence=score_command(text, intent, rule is not None and rule.matches(normalized), entities),
        )
        result = ParseResult(
            command=command,
            requires_confirmation=requires_confirmation(command),
            suggested_response=suggest_response(command),
        )
        log.debug(
            "interpreter.parsed",
            intent=intent.value,
            entities=[e.type.value for e in entities],
            confidence=round(command.confidence, 2),
            confirm=result.requires_confirmation,
        )
        return result

    def validate(self, command: ParsedVoiceCommand) -> ValidationResult:
        return validate_command(command)

    def format_for_display(self, command: ParsedVoiceCommand) -> str:
        return format_for_display(command)

    async def _active_terms(self) -> list[DictionaryTerm]:
        if self._vocabulary is None:
            return []
        return await self._vocabulary.get_active_terms()
