"""Entity matching waterfall.

Stages, first hit wins:

1. Learned correction (exact pattern, then contains; confidence, then usage)
2. Exact name/alias match
3. Prefix match, longest name wins
4. Contains match, longest name of at least 4 characters wins
   (2-4 are retried once with apostrophes stripped)
5. AI fallback, resolved back onto the entity directory

Nothing here raises for a single transaction: AI failures come back as a
``failed`` outcome carrying the error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import config
from ledger_import.corrections.store import CorrectionStore
from ledger_import.entities.directory import MIN_CONTAINS_LENGTH, Entity, EntityDirectory
from ledger_import.imports.ai_categorizer import AiCategorizationError, AiCategorizer
from ledger_import.imports.models import (
    AiSuggestion,
    AiUsage,
    EntityMatch,
    ParsedTransaction,
    normalize_description,
    notion_url,
)
from ledger_import.log_setup import short

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"['‘’`]")

# Confidence reported for an AI name the directory does not know
AI_SUGGESTION_CONFIDENCE = 0.7


def strip_punctuation(text: str) -> str:
    return _PUNCTUATION.sub("", text)


@dataclass
class MatchOutcome:
    status: str  # "matched", "uncertain" or "failed"
    entity: EntityMatch = field(default_factory=EntityMatch)
    error: str | None = None
    ai_consulted: bool = False
    usage: AiUsage | None = None  # None when the AI answer came from cache
    ai_error: AiCategorizationError | None = None
    ai_suggestion: AiSuggestion | None = None
    # Overrides from a learned correction
    location: str | None = None
    online: bool | None = None
    transaction_type: str | None = None


def _entity_match(entity: Entity, match_type: str, confidence: float | None = None) -> EntityMatch:
    return EntityMatch(
        match_type=match_type,
        entity_id=entity.id,
        entity_name=entity.name,
        entity_url=entity.url,
        confidence=confidence,
    )


def match_static(normalized: str, candidates: list[tuple[str, Entity]],
                 stripped: bool = False) -> tuple[Entity, str] | None:
    """Stages 2-4 against (candidate text, entity) pairs sorted longest first."""
    if stripped:
        candidates = [(strip_punctuation(text), entity) for text, entity in candidates]
        candidates.sort(key=lambda pair: len(pair[0]), reverse=True)

    for text, entity in candidates:
        if normalized == text:
            return entity, "exact"

    for text, entity in candidates:
        if text and normalized.startswith(text):
            return entity, "prefix"

    for text, entity in candidates:
        if len(text) >= MIN_CONTAINS_LENGTH and text in normalized:
            return entity, "contains"

    return None


class EntityMatcher:
    def __init__(self, directory: EntityDirectory, corrections: CorrectionStore | None = None,
                 categorizer: AiCategorizer | None = None, min_confidence: float | None = None):
        self.directory = directory
        self.corrections = corrections
        self.categorizer = categorizer
        self.min_confidence = config.CORRECTION_MIN_CONFIDENCE if min_confidence is None else min_confidence

    def match(self, transaction: ParsedTransaction, import_batch_id: str | None = None) -> MatchOutcome:
        description = transaction.description

        outcome = self._match_correction(description)
        if outcome:
            return outcome

        normalized = normalize_description(description)
        candidates = self.directory.candidates()
        hit = match_static(normalized, candidates) or \
            match_static(strip_punctuation(normalized), candidates, stripped=True)
        if hit:
            entity, match_type = hit
            logger.debug(f"'{short(description)}' -> {entity.name} ({match_type})")
            return MatchOutcome(
                status="matched",
                entity=_entity_match(entity, match_type),
                transaction_type=entity.default_transaction_type,
            )

        return self._match_ai(description, import_batch_id)

    def _match_correction(self, description: str) -> MatchOutcome | None:
        if self.corrections is None:
            return None

        correction = self.corrections.find_matching_correction(description, self.min_confidence)
        if correction is None:
            return None

        self.corrections.record_usage(correction.id)
        logger.debug(
            f"'{short(description)}' -> {correction.entity_name} "
            f"(correction {correction.id}, confidence {correction.confidence:.2f})"
        )
        # The correction's confidence travels on the match for reviewers
        return MatchOutcome(
            status="matched",
            entity=EntityMatch(
                match_type="manual",
                entity_id=correction.entity_id,
                entity_name=correction.entity_name or "Unknown",
                entity_url=notion_url(correction.entity_id),
                confidence=correction.confidence,
            ),
            location=correction.location,
            online=correction.online,
            transaction_type=correction.transaction_type,
        )

    def _match_ai(self, description: str, import_batch_id: str | None) -> MatchOutcome:
        if self.categorizer is None:
            return MatchOutcome(status="uncertain")

        try:
            answer = self.categorizer.categorize(description, import_batch_id)
        except AiCategorizationError as e:
            logger.warning(f"AI fallback failed for '{short(description)}': [{e.code}] {e.message}")
            return MatchOutcome(status="failed", error=e.message, ai_consulted=True, ai_error=e)

        suggestion = None
        if answer.result is not None:
            suggestion = AiSuggestion(entity_name=answer.result.entity_name,
                                      category=answer.result.category)

        # The model's JSON is not schema-checked, so a name may be missing or not a string
        if suggestion is None or not isinstance(suggestion.entity_name, str) or not suggestion.entity_name.strip():
            return MatchOutcome(status="uncertain", ai_consulted=True, usage=answer.usage,
                                ai_suggestion=suggestion)

        entity = self.directory.resolve(suggestion.entity_name)
        if entity is None:
            logger.debug(f"AI suggested unknown entity '{suggestion.entity_name}' for '{short(description)}'")
            return MatchOutcome(
                status="uncertain",
                entity=EntityMatch(match_type="ai", entity_name=suggestion.entity_name,
                                   confidence=AI_SUGGESTION_CONFIDENCE),
                ai_consulted=True,
                usage=answer.usage,
                ai_suggestion=suggestion,
            )

        return MatchOutcome(
            status="matched",
            entity=_entity_match(entity, "ai"),
            ai_consulted=True,
            usage=answer.usage,
            ai_suggestion=suggestion,
            transaction_type=entity.default_transaction_type,
        )
