"""
tests/unit/test_interpreter.py — Transcript → command

Covers voice/interpreter.py:
  - every rule's examples classify to that rule's intent
  - priority ordering of the rule table
  - confidence scoring and the confirmation policy
  - validate_command slot checks
  - suggested responses and the display formatter
  - CommandInterpreter.parse end to end, with and without a vocabulary
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from voxledger.vocabulary.store import InMemoryVocabularyStore
from voxledger.voice.entities import normalize_text
from voxledger.voice.interpreter import (
    EMPTY_RESPONSE,
    INTENT_RULES,
    UNKNOWN_RESPONSE,
    CommandInterpreter,
    classify,
    format_for_display,
    requires_confirmation,
    score_command,
    suggest_response,
    validate_command,
)
from voxledger.voice.types import EntityType, ParsedVoiceCommand, VoiceEntity, VoiceIntent

TODAY = date(2024, 3, 15)


def _interpreter(vocabulary=None) -> CommandInterpreter:
    return CommandInterpreter(vocabulary, today=lambda: TODAY)


def _command(intent: VoiceIntent, confidence: float = 0.9, **slots) -> ParsedVoiceCommand:
    entities = tuple(
        VoiceEntity(EntityType[name.upper()], value, 0.9) for name, value in slots.items()
    )
    return ParsedVoiceCommand(raw_text="x", intent=intent, entities=entities, confidence=confidence)


_ALL_EXAMPLES = [(rule.intent, example) for rule in INTENT_RULES for example in rule.examples]


# ─────────────────────────────────────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────────────────────────────────────

class TestClassify:

    @pytest.mark.parametrize("intent, example", _ALL_EXAMPLES)
    def test_rule_examples_classify_to_their_intent(self, intent, example):
        got, rule = classify(normalize_text(example))
        assert got == intent
        assert rule is not None and rule.intent == intent

    def test_rules_sorted_by_priority(self):
        priorities = [r.priority for r in INTENT_RULES]
        assert priorities == sorted(priorities, reverse=True)
        assert INTENT_RULES[0].intent == VoiceIntent.ADD_EXPENSE
        assert INTENT_RULES[-1].intent == VoiceIntent.NAVIGATE

    def test_every_intent_except_unknown_has_a_rule(self):
        covered = {r.intent for r in INTENT_RULES}
        assert covered == set(VoiceIntent) - {VoiceIntent.UNKNOWN}

    @pytest.mark.parametrize("text, intent", [
        ("paid 500 for lunch", VoiceIntent.ADD_EXPENSE),
        ("paid ₹300 to the cleaner", VoiceIntent.ADD_EXPENSE),
        ("got paid 5000 by the client", VoiceIntent.ADD_INCOME),
        ("show me the balance sheet", VoiceIntent.GENERATE_REPORT),
        ("show me reports", VoiceIntent.NAVIGATE),
        ("what's the balance", VoiceIntent.QUERY_BALANCE),
        ("bought a printer for 8000", VoiceIntent.ADD_EXPENSE),
        ("hello there", VoiceIntent.UNKNOWN),
    ])
    def test_precedence(self, text, intent):
        assert classify(normalize_text(text))[0] == intent

    def test_examples_for(self):
        interp = _interpreter()
        assert "Show balance sheet" in interp.examples_for(VoiceIntent.GENERATE_REPORT)
        assert interp.examples_for(VoiceIntent.UNKNOWN) == ()
        assert interp.rules == INTENT_RULES


# ─────────────────────────────────────────────────────────────────────────────
# Scoring + confirmation
# ─────────────────────────────────────────────────────────────────────────────

class TestScoring:

    def test_money_intent_with_amount(self):
        amount = (VoiceEntity(EntityType.AMOUNT, Decimal("2000"), 0.9),)
        score = score_command("Spent 2000 on fuel", VoiceIntent.ADD_EXPENSE, True, amount)
        assert score == pytest.approx(0.88)

    def test_word_bonus_caps(self):
        text = " ".join(["word"] * 30)
        assert score_command(text, VoiceIntent.NAVIGATE, True, ()) == pytest.approx(0.9)

    def test_amount_bonus_only_for_money_intents(self):
        amount = (VoiceEntity(EntityType.AMOUNT, Decimal("5"), 0.9),)
        assert score_command("go to page 5", VoiceIntent.NAVIGATE, True, amount) == pytest.approx(0.78)

    def test_short_text_penalty(self):
        assert score_command("hi", VoiceIntent.UNKNOWN, False, ()) == pytest.approx(0.42)

    def test_best_case_never_exceeds_one(self):
        amount = (VoiceEntity(EntityType.AMOUNT, Decimal("5"), 0.9),)
        text = " ".join(["spent"] * 20)
        score = score_command(text, VoiceIntent.ADD_EXPENSE, True, amount)
        assert score == pytest.approx(1.0)
        assert score <= 1.0


class TestRequiresConfirmation:

    def test_large_amount(self):
        assert requires_confirmation(_command(VoiceIntent.ADD_EXPENSE, amount=Decimal("10000.01")))

    def test_boundary_amount_does_not_require(self):
        assert not requires_confirmation(_command(VoiceIntent.ADD_EXPENSE, amount=Decimal("10000")))

    def test_unknown_intent(self):
        assert requires_confirmation(_command(VoiceIntent.UNKNOWN, confidence=0.99))

    def test_low_confidence(self):
        assert requires_confirmation(_command(VoiceIntent.QUERY_BALANCE, confidence=0.59))
        assert not requires_confirmation(_command(VoiceIntent.QUERY_BALANCE, confidence=0.6))


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

class TestValidate:

    @pytest.mark.parametrize("intent", [
        VoiceIntent.ADD_EXPENSE, VoiceIntent.ADD_INCOME, VoiceIntent.ADD_TRANSACTION,
    ])
    def test_money_intents_need_amount(self, intent):
        result = validate_command(_command(intent))
        assert not result.is_valid
        assert result.errors == ("Amount is required for this transaction",)
        assert validate_command(_command(intent, amount=Decimal("1"))).is_valid

    def test_party_needs_name(self):
        assert validate_command(_command(VoiceIntent.ADD_PARTY)).errors == ("Party name is required",)
        assert validate_command(_command(VoiceIntent.ADD_PARTY, party="Ravi")).is_valid
        assert validate_command(_command(VoiceIntent.ADD_PARTY, description="ravi traders")).is_valid

    def test_product_needs_name(self):
        assert validate_command(_command(VoiceIntent.ADD_PRODUCT)).errors == ("Product name is required",)
        assert validate_command(_command(VoiceIntent.ADD_PRODUCT, description="widget")).is_valid

    @pytest.mark.parametrize("intent", [
        VoiceIntent.GENERATE_REPORT, VoiceIntent.QUERY_BALANCE,
        VoiceIntent.NAVIGATE, VoiceIntent.UNKNOWN,
    ])
    def test_other_intents_always_valid(self, intent):
        assert validate_command(_command(intent)).is_valid

    def test_does_not_mutate(self):
        command = _command(VoiceIntent.ADD_EXPENSE)
        validate_command(command)
        assert command.entities == ()


# ─────────────────────────────────────────────────────────────────────────────
# Presentation
# ─────────────────────────────────────────────────────────────────────────────

class TestPresentation:

    def test_expense_response(self):
        command = _command(
            VoiceIntent.ADD_EXPENSE,
            amount=Decimal("500"),
            date=date(2024, 3, 14),
            description="lunch",
        )
        assert suggest_response(command) == (
            "I'll record an expense of ₹500 for lunch on 2024-03-14. Is this correct?"
        )

    def test_income_response_without_description(self):
        command = _command(VoiceIntent.ADD_INCOME, amount=Decimal("10000"))
        assert suggest_response(command) == "I'll record income of ₹10000. Is this correct?"

    def test_transaction_response(self):
        command = _command(VoiceIntent.ADD_TRANSACTION, amount=Decimal("1000"), description="rent")
        assert suggest_response(command) == "I'll add a transaction for ₹1000: rent. Please confirm."

    def test_missing_amount_placeholder(self):
        assert "₹?" in suggest_response(_command(VoiceIntent.ADD_EXPENSE))

    def test_fixed_responses(self):
        assert suggest_response(_command(VoiceIntent.GENERATE_REPORT)).startswith("I'll generate the report")
        assert suggest_response(_command(VoiceIntent.QUERY_BALANCE)) == "Let me check your current balance."
        assert suggest_response(_command(VoiceIntent.NAVIGATE)) == "Taking you to the requested page."
        assert suggest_response(_command(VoiceIntent.UNKNOWN)) == UNKNOWN_RESPONSE

    def test_generic_response_echoes_text(self):
        command = ParsedVoiceCommand(raw_text="Add customer John Doe", intent=VoiceIntent.ADD_PARTY)
        assert suggest_response(command) == (
            'I understand you want to "Add customer John Doe". Would you like me to proceed?'
        )

    def test_format_for_display(self):
        command = ParsedVoiceCommand(
            raw_text="Spent 2000 on fuel",
            intent=VoiceIntent.ADD_EXPENSE,
            entities=(VoiceEntity(EntityType.AMOUNT, Decimal("2000"), 0.9),),
            confidence=0.88,
        )
        assert format_for_display(command) == (
            "**Intent:** ADD EXPENSE\n"
            "**Confidence:** 88%\n"
            "**Entities:**\n"
            "  - AMOUNT: 2000 (90% confidence)"
        )

    def test_format_for_display_without_entities(self):
        command = ParsedVoiceCommand(raw_text="hi", intent=VoiceIntent.UNKNOWN, confidence=0.42)
        assert format_for_display(command) == "**Intent:** UNKNOWN\n**Confidence:** 42%"


# ─────────────────────────────────────────────────────────────────────────────
# parse()
# ─────────────────────────────────────────────────────────────────────────────

class TestParse:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   "])
    async def test_empty_input(self, text):
        result = await _interpreter().parse(text)
        assert result.command.intent == VoiceIntent.UNKNOWN
        assert result.command.raw_text == ""
        assert result.command.confidence == 0.0
        assert result.command.entities == ()
        assert result.requires_confirmation
        assert result.suggested_response == EMPTY_RESPONSE

    @pytest.mark.asyncio
    async def test_deterministic_expense(self):
        interp = _interpreter()
        first = await interp.parse("add expense of 500 for groceries")
        second = await interp.parse("add expense of 500 for groceries")
        for result in (first, second):
            assert result.command.intent == VoiceIntent.ADD_EXPENSE
            assert result.command.amount == Decimal("500")
            assert result.command.value(EntityType.DESCRIPTION) == "groceries"
        assert first.command.entities == second.command.entities
        assert first.command.confidence == second.command.confidence

    @pytest.mark.asyncio
    async def test_expense(self):
        result = await _interpreter().parse("Spent 2000 on fuel")
        command = result.command
        assert command.raw_text == "Spent 2000 on fuel"
        assert command.intent == VoiceIntent.ADD_EXPENSE
        assert command.amount == Decimal("2000")
        assert command.value(EntityType.DESCRIPTION) == "fuel"
        assert command.confidence == pytest.approx(0.88)
        assert not result.requires_confirmation
        assert result.suggested_response == "I'll record an expense of ₹2000 for fuel. Is this correct?"

    @pytest.mark.asyncio
    async def test_large_amount_requires_confirmation(self):
        result = await _interpreter().parse("Paid 15000 for rent")
        assert result.command.intent == VoiceIntent.ADD_EXPENSE
        assert result.command.amount == Decimal("15000")
        assert result.requires_confirmation

    @pytest.mark.asyncio
    async def test_relative_date_uses_injected_clock(self):
        result = await _interpreter().parse("Paid 150 for lunch yesterday")
        assert result.command.value(EntityType.DATE) == date(2024, 3, 14)

    @pytest.mark.asyncio
    async def test_balance_query(self):
        result = await _interpreter().parse("What is my balance?")
        assert result.command.intent == VoiceIntent.QUERY_BALANCE
        assert result.command.confidence == pytest.approx(0.78)
        assert not result.requires_confirmation

    @pytest.mark.asyncio
    async def test_unknown(self):
        result = await _interpreter().parse("hello there")
        assert result.command.intent == VoiceIntent.UNKNOWN
        assert result.command.confidence == pytest.approx(0.54)
        assert result.requires_confirmation
        assert result.suggested_response == UNKNOWN_RESPONSE

    @pytest.mark.asyncio
    async def test_navigation_target(self):
        result = await _interpreter().parse("Go to dashboard")
        assert result.command.intent == VoiceIntent.NAVIGATE
        assert result.suggested_response == "Taking you to dashboard."

    @pytest.mark.asyncio
    async def test_vocabulary_fills_party(self):
        vocabulary = InMemoryVocabularyStore()
        await vocabulary.init()
        result = await _interpreter(vocabulary).parse("Bought coffee at starbucks for 300")
        assert result.command.intent == VoiceIntent.ADD_EXPENSE
        assert result.command.amount == Decimal("300")
        assert result.command.value(EntityType.PARTY) == "Starbucks India"

    @pytest.mark.asyncio
    async def test_income_terms_are_not_parties(self):
        vocabulary = InMemoryVocabularyStore()
        await vocabulary.init()
        result = await _interpreter(vocabulary).parse("received 10000 from consulting")
        assert result.command.intent == VoiceIntent.ADD_INCOME
        assert result.command.value(EntityType.CATEGORY) == "Consulting Income"
        assert result.command.entity(EntityType.PARTY) is None

    @pytest.mark.asyncio
    async def test_inactive_vocabulary_terms_are_ignored(self):
        vocabulary = InMemoryVocabularyStore(seed_defaults=False)
        await vocabulary.init()
        term = await vocabulary.add_term("starbucks", "Starbucks India", "cat_parties")
        await vocabulary.set_active(term.id, False)
        result = await _interpreter(vocabulary).parse("Bought coffee at starbucks for 300")
        assert result.command.entity(EntityType.PARTY) is None

    @pytest.mark.asyncio
    async def test_validate_and_format_passthrough(self):
        interp = _interpreter()
        result = await interp.parse("Add expense for groceries")
        assert interp.validate(result.command).errors == ("Amount is required for this transaction",)
        assert interp.format_for_display(result.command).startswith("**Intent:** ADD EXPENSE")
