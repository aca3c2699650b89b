"""Tests for the entity matching waterfall."""

import pytest

from ledger_import.corrections.store import CorrectionInput
from ledger_import.entities.directory import Entity, EntityDirectory
from ledger_import.imports.ai_categorizer import AiCategorizer
from ledger_import.imports.entity_matcher import EntityMatcher, match_static, strip_punctuation
from ledger_import.imports.models import normalize_description
from tests.helpers.anthropic_stub import AnthropicStub, answer, status_error
from tests.helpers.factories import COLES_ID, UNKNOWN_ID, WOOLWORTHS_ID, make_transaction


def ai(reply) -> tuple[AiCategorizer, AnthropicStub]:
    stub = AnthropicStub(reply)
    return AiCategorizer(api_key="test-key", client=stub), stub


class TestStaticStages:
    """Exact, prefix and contains matching against names and aliases."""

    def test_exact_name(self, directory):
        outcome = EntityMatcher(directory).match(make_transaction("Woolworths"))

        assert outcome.status == "matched"
        assert outcome.entity.match_type == "exact"
        assert outcome.entity.entity_id == WOOLWORTHS_ID
        assert outcome.entity.entity_name == "Woolworths"
        assert outcome.entity.entity_url == "https://www.notion.so/11111111111111111111111111111111"

    def test_exact_alias_is_case_and_whitespace_insensitive(self, directory):
        outcome = EntityMatcher(directory).match(make_transaction("  woolies  "))

        assert outcome.entity.match_type == "exact"
        assert outcome.entity.entity_id == WOOLWORTHS_ID

    def test_prefix(self, directory):
        outcome = EntityMatcher(directory).match(make_transaction("WOOLWORTHS METRO 1234"))

        assert outcome.status == "matched"
        assert outcome.entity.match_type == "prefix"
        assert outcome.entity.entity_id == WOOLWORTHS_ID

    def test_longest_prefix_wins(self):
        directory = EntityDirectory(entities=[
            Entity(id="short", name="Woolworths"),
            Entity(id="long", name="Woolworths Metro"),
        ])

        outcome = EntityMatcher(directory).match(make_transaction("WOOLWORTHS METRO 1234"))

        assert outcome.entity.entity_id == "long"
        assert outcome.entity.match_type == "prefix"

    def test_contains(self, directory):
        outcome = EntityMatcher(directory).match(make_transaction("EFTPOS COLES 0423 SYDNEY"))

        assert outcome.entity.match_type == "contains"
        assert outcome.entity.entity_id == COLES_ID

    def test_contains_ignores_short_names(self):
        directory = EntityDirectory(entities=[Entity(id="bp", name="BP")])

        outcome = EntityMatcher(directory).match(make_transaction("SHELL BP STATION"))

        assert outcome.status == "uncertain"
        assert outcome.entity.match_type == "none"

    def test_short_names_still_prefix_match(self):
        directory = EntityDirectory(entities=[Entity(id="bp", name="BP")])

        outcome = EntityMatcher(directory).match(make_transaction("BP CONNECT PARRAMATTA"))

        assert outcome.entity.match_type == "prefix"
        assert outcome.entity.entity_id == "bp"

    def test_longest_contains_wins(self):
        directory = EntityDirectory(entities=[
            Entity(id="star", name="Star"),
            Entity(id="starbucks", name="Starbucks"),
        ])

        outcome = EntityMatcher(directory).match(make_transaction("SQ *STARBUCKS SYDNEY"))

        assert outcome.entity.entity_id == "starbucks"
        assert outcome.entity.match_type == "contains"

    def test_apostrophes_stripped_on_retry(self):
        directory = EntityDirectory(entities=[Entity(id="mcd", name="McDonald's")])

        outcome = EntityMatcher(directory).match(make_transaction("MCDONALDS 1234 SYDNEY"))

        assert outcome.status == "matched"
        assert outcome.entity.entity_id == "mcd"
        assert outcome.entity.entity_name == "McDonald's"
        assert outcome.entity.match_type == "prefix"

    def test_default_transaction_type_applied(self, directory):
        outcome = EntityMatcher(directory).match(make_transaction("ACME PAYROLL JUNE", amount=3000))

        assert outcome.entity.match_type == "prefix"
        assert outcome.transaction_type == "income"

    def test_match_static_returns_none_without_hit(self, directory):
        assert match_static("NOTHING HERE", directory.candidates()) is None

    def test_strip_punctuation(self):
        assert strip_punctuation("MCDONALD'S `TEST` ’X") == "MCDONALDS TEST X"


class TestCorrectionStage:
    def test_correction_outranks_alias_contains(self, directory, corrections):
        directory.upsert(Entity(id="merchant-co", name="Merchant Co", aliases=["MERCHANT"]))
        corrections.create_or_update_correction(CorrectionInput(
            description_pattern="UNKNOWN MERCHANT",
            entity_id=UNKNOWN_ID,
            entity_name="Corner Store",
            confidence=0.9,
        ))

        outcome = EntityMatcher(directory, corrections).match(make_transaction("UNKNOWN MERCHANT"))

        assert outcome.status == "matched"
        assert outcome.entity.match_type == "manual"
        assert outcome.entity.entity_id == UNKNOWN_ID
        assert outcome.entity.entity_name == "Corner Store"
        assert outcome.entity.confidence == pytest.approx(0.9)

    def test_eligible_correction_matches_and_keeps_its_confidence(self, directory, corrections):
        corrections.create_or_update_correction(CorrectionInput(
            description_pattern="CORNER STORE 42",
            entity_id=UNKNOWN_ID,
            entity_name="Corner Store",
            confidence=0.8,
        ))

        outcome = EntityMatcher(directory, corrections).match(make_transaction("Corner Store 42"))

        assert outcome.status == "matched"
        assert outcome.entity.match_type == "manual"
        assert outcome.entity.entity_id == UNKNOWN_ID
        assert outcome.entity.confidence == pytest.approx(0.8)

    def test_correction_below_threshold_is_ignored(self, directory, corrections):
        corrections.create_or_update_correction(CorrectionInput(
            description_pattern="WOOLWORTHS METRO 1234",
            entity_id=UNKNOWN_ID,
            entity_name="Wrong",
        ))  # default confidence 0.5

        outcome = EntityMatcher(directory, corrections).match(make_transaction("WOOLWORTHS METRO 1234"))

        assert outcome.entity.entity_id == WOOLWORTHS_ID
        assert outcome.entity.match_type == "prefix"

    def test_correction_overrides_and_usage(self, directory, corrections):
        correction = corrections.create_or_update_correction(CorrectionInput(
            description_pattern="UBER",
            match_type="contains",
            entity_id=UNKNOWN_ID,
            entity_name="Uber",
            location="Sydney",
            online=True,
            transaction_type="transfer",
            confidence=0.95,
        ))

        outcome = EntityMatcher(directory, corrections).match(make_transaction("UBER *TRIP HELP.UBER.COM"))

        assert outcome.status == "matched"
        assert outcome.location == "Sydney"
        assert outcome.online is True
        assert outcome.transaction_type == "transfer"
        reloaded = corrections.get_correction(correction.id)
        assert reloaded.times_applied == 1
        assert reloaded.last_used_at is not None

    def test_correction_without_entity_is_skipped(self, directory, corrections):
        corrections.create_or_update_correction(CorrectionInput(
            description_pattern="COLES 0423",
            location="Sydney",
            confidence=1.0,
        ))

        outcome = EntityMatcher(directory, corrections).match(make_transaction("COLES 0423"))

        assert outcome.entity.match_type == "prefix"
        assert outcome.entity.entity_id == COLES_ID


class TestAiStage:
    def test_no_categorizer_is_uncertain(self, directory):
        outcome = EntityMatcher(directory).match(make_transaction("TOTALLY UNKNOWN MERCHANT"))

        assert outcome.status == "uncertain"
        assert outcome.ai_consulted is False

    def test_ai_suggestion_resolves_to_known_entity(self, directory):
        categorizer, stub = ai(answer("Woolworths", "Groceries"))

        outcome = EntityMatcher(directory, categorizer=categorizer).match(make_transaction("WW METRO SYD"))

        assert outcome.status == "matched"
        assert outcome.entity.match_type == "ai"
        assert outcome.entity.entity_id == WOOLWORTHS_ID
        assert outcome.ai_suggestion.category == "Groceries"
        assert outcome.usage is not None
        assert stub.call_count == 1

    def test_ai_suggestion_resolves_by_contains(self, directory):
        categorizer, _ = ai(answer("Coles Supermarkets", "Groceries"))

        outcome = EntityMatcher(directory, categorizer=categorizer).match(make_transaction("CLS 0423 SYD"))

        assert outcome.entity.entity_id == COLES_ID
        assert outcome.entity.match_type == "ai"

    def test_unknown_ai_suggestion_is_uncertain(self, directory):
        categorizer, _ = ai(answer("Bob's Bakery", "Dining"))

        outcome = EntityMatcher(directory, categorizer=categorizer).match(make_transaction("BOBS BKRY 12"))

        assert outcome.status == "uncertain"
        assert outcome.entity.match_type == "ai"
        assert outcome.entity.entity_id is None
        assert outcome.entity.entity_name == "Bob's Bakery"
        assert outcome.ai_suggestion.entity_name == "Bob's Bakery"

    def test_empty_ai_answer_is_uncertain(self, directory):
        categorizer, _ = ai(None)

        outcome = EntityMatcher(directory, categorizer=categorizer).match(make_transaction("XYZ 123"))

        assert outcome.status == "uncertain"
        assert outcome.entity.match_type == "none"
        assert outcome.usage is not None

    def test_non_string_ai_name_is_uncertain(self, directory):
        categorizer, stub = ai('{"entityName": 123, "category": "Misc"}')
        matcher = EntityMatcher(directory, categorizer=categorizer)

        first = matcher.match(make_transaction("MYSTERY 42"))
        cached = matcher.match(make_transaction("mystery 42"))

        assert first.status == "uncertain"
        assert first.entity.match_type == "none"
        assert first.usage is not None
        assert cached.status == "uncertain"
        assert cached.usage is None
        assert stub.call_count == 1

    def test_ai_error_is_failed(self, directory):
        categorizer, _ = ai(status_error(400, "Your credit balance is too low to access the API"))

        outcome = EntityMatcher(directory, categorizer=categorizer).match(make_transaction("XYZ 123"))

        assert outcome.status == "failed"
        assert outcome.ai_error.code == "INSUFFICIENT_CREDITS"
        assert "credit balance" in outcome.error

    def test_ai_not_called_when_static_stage_hits(self, directory):
        categorizer, stub = ai(answer("Coles"))

        EntityMatcher(directory, categorizer=categorizer).match(make_transaction("WOOLWORTHS 1"))

        assert stub.call_count == 0


class TestEntityDirectory:
    def test_candidates_sorted_longest_first(self, directory):
        lengths = [len(text) for text, _ in directory.candidates()]
        assert lengths == sorted(lengths, reverse=True)

    def test_aliases_resolve_to_owner(self, directory):
        assert directory.resolve("woolies").id == WOOLWORTHS_ID

    def test_resolve_ignores_non_string_names(self, directory):
        assert directory.resolve(123) is None
        assert directory.resolve(None) is None

    def test_load_round_trips_through_sqlite(self, db, directory):
        reloaded = EntityDirectory(db).load()

        woolworths = reloaded.get(WOOLWORTHS_ID)
        assert woolworths.aliases == ["Woolies"]
        assert len(reloaded) == 3

    def test_normalize_keeps_digits(self):
        assert normalize_description("  woolworths   metro 1234 ") == "WOOLWORTHS METRO 1234"
