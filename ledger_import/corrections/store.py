"""Learned description -> entity corrections, persisted in SQLite.

A correction is written whenever the user fixes a match during review. Its
confidence grows each time the same pattern is confirmed again and shrinks on
negative feedback; rows that drop below ``MIN_KEEP_CONFIDENCE`` are removed.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass

from ledger_import.imports.models import TRANSACTION_TYPES, normalize_description
from ledger_import.storage import Database

logger = logging.getLogger(__name__)

CORRECTION_MATCH_TYPES = ("exact", "contains")
DEFAULT_CONFIDENCE = 0.5
REAPPLY_BOOST = 0.1
MIN_KEEP_CONFIDENCE = 0.3

_UPDATABLE = ("entity_id", "entity_name", "location", "online", "transaction_type", "confidence")


class CorrectionNotFoundError(LookupError):
    def __init__(self, correction_id: str):
        super().__init__(f"Correction {correction_id} not found")
        self.correction_id = correction_id


@dataclass
class Correction:
    id: str
    description_pattern: str
    match_type: str
    entity_id: str | None
    entity_name: str | None
    location: str | None
    online: bool | None
    transaction_type: str | None
    confidence: float
    times_applied: int
    created_at: str
    last_used_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Correction":
        return cls(
            id=row["id"],
            description_pattern=row["description_pattern"],
            match_type=row["match_type"],
            entity_id=row["entity_id"],
            entity_name=row["entity_name"],
            location=row["location"],
            online=None if row["online"] is None else row["online"] == 1,
            transaction_type=row["transaction_type"],
            confidence=row["confidence"],
            times_applied=row["times_applied"],
            created_at=row["created_at"],
            last_used_at=row["last_used_at"],
        )


@dataclass
class CorrectionInput:
    description_pattern: str
    match_type: str = "exact"
    entity_id: str | None = None
    entity_name: str | None = None
    location: str | None = None
    online: bool | None = None
    transaction_type: str | None = None
    confidence: float | None = None  # initial confidence for new rows only


def _validate(match_type: str | None = None, transaction_type: str | None = None,
              confidence: float | None = None):
    if match_type is not None and match_type not in CORRECTION_MATCH_TYPES:
        raise ValueError(f"Unsupported correction match type: {match_type}")
    if transaction_type is not None and transaction_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unsupported transaction type: {transaction_type}")
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        raise ValueError(f"Confidence must be between 0 and 1, got {confidence}")


def _online_value(online: bool | None) -> int | None:
    return None if online is None else int(bool(online))


class CorrectionStore:
    def __init__(self, db: Database):
        self.db = db

    def find_matching_correction(self, description: str,
                                 min_confidence: float = 0.7) -> Correction | None:
        """Best correction for a description: exact beats contains, then confidence, then usage."""
        normalized = normalize_description(description)
        if not normalized:
            return None

        row = self.db.fetchone(
            """SELECT * FROM transaction_corrections
               WHERE match_type = 'exact' AND description_pattern = ?
                 AND confidence >= ? AND entity_id IS NOT NULL AND entity_id != ''
               ORDER BY confidence DESC, times_applied DESC
               LIMIT 1""",
            (normalized, min_confidence),
        )
        if row:
            return Correction.from_row(row)

        # instr() rather than LIKE so '%' and '_' in a pattern stay literal
        row = self.db.fetchone(
            """SELECT * FROM transaction_corrections
               WHERE match_type = 'contains' AND instr(?, description_pattern) > 0
                 AND confidence >= ? AND entity_id IS NOT NULL AND entity_id != ''
               ORDER BY confidence DESC, times_applied DESC
               LIMIT 1""",
            (normalized, min_confidence),
        )
        return Correction.from_row(row) if row else None

    def list_corrections(self, min_confidence: float | None = None, limit: int = 50,
                         offset: int = 0) -> tuple[list[Correction], int]:
        where = "WHERE confidence >= ?" if min_confidence is not None else ""
        params: tuple = (min_confidence,) if min_confidence is not None else ()

        total = self.db.fetchone(
            f"SELECT COUNT(*) AS count FROM transaction_corrections {where}", params
        )["count"]
        rows = self.db.fetchall(
            f"""SELECT * FROM transaction_corrections {where}
                ORDER BY confidence DESC, times_applied DESC, id ASC
                LIMIT ? OFFSET ?""",
            params + (limit, offset),
        )
        return [Correction.from_row(r) for r in rows], total

    def get_correction(self, correction_id: str) -> Correction:
        row = self.db.fetchone(
            "SELECT * FROM transaction_corrections WHERE id = ?", (correction_id,)
        )
        if not row:
            raise CorrectionNotFoundError(correction_id)
        return Correction.from_row(row)

    def create_or_update_correction(self, data: CorrectionInput) -> Correction:
        """Insert a new pattern, or reinforce the existing (pattern, match_type) row."""
        _validate(data.match_type, data.transaction_type, data.confidence)
        normalized = normalize_description(data.description_pattern)
        if not normalized:
            raise ValueError("Correction pattern must not be empty")

        existing = self.db.fetchone(
            "SELECT * FROM transaction_corrections WHERE description_pattern = ? AND match_type = ?",
            (normalized, data.match_type),
        )

        if existing:
            new_confidence = round(min(existing["confidence"] + REAPPLY_BOOST, 1.0), 4)
            self.db.execute(
                """UPDATE transaction_corrections
                   SET confidence = ?,
                       times_applied = times_applied + 1,
                       last_used_at = datetime('now'),
                       entity_id = COALESCE(?, entity_id),
                       entity_name = COALESCE(?, entity_name),
                       location = COALESCE(?, location),
                       online = COALESCE(?, online),
                       transaction_type = COALESCE(?, transaction_type)
                   WHERE id = ?""",
                (new_confidence, data.entity_id, data.entity_name, data.location,
                 _online_value(data.online), data.transaction_type, existing["id"]),
            )
            logger.info(
                f"Reinforced correction {existing['id']} '{normalized}' "
                f"({existing['confidence']:.2f} -> {new_confidence:.2f})"
            )
            return self.get_correction(existing["id"])

        correction_id = uuid.uuid4().hex
        self.db.execute(
            """INSERT INTO transaction_corrections
               (id, description_pattern, match_type, entity_id, entity_name,
                location, online, transaction_type, confidence)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (correction_id, normalized, data.match_type, data.entity_id, data.entity_name,
             data.location, _online_value(data.online), data.transaction_type,
             DEFAULT_CONFIDENCE if data.confidence is None else data.confidence),
        )
        logger.info(f"Created correction {correction_id} '{normalized}' -> {data.entity_name}")
        return self.get_correction(correction_id)

    def update_correction(self, correction_id: str, **changes) -> Correction:
        """Overwrite individual fields; unknown field names raise TypeError."""
        unknown = set(changes) - set(_UPDATABLE)
        if unknown:
            raise TypeError(f"Cannot update correction fields: {', '.join(sorted(unknown))}")
        _validate(transaction_type=changes.get("transaction_type"),
                  confidence=changes.get("confidence"))

        existing = self.get_correction(correction_id)
        if not changes:
            return existing

        if "online" in changes:
            changes["online"] = _online_value(changes["online"])
        assignments = ", ".join(f"{name} = ?" for name in changes)
        self.db.execute(
            f"UPDATE transaction_corrections SET {assignments} WHERE id = ?",
            tuple(changes.values()) + (correction_id,),
        )
        return self.get_correction(correction_id)

    def delete_correction(self, correction_id: str):
        cursor = self.db.execute(
            "DELETE FROM transaction_corrections WHERE id = ?", (correction_id,)
        )
        if cursor.rowcount == 0:
            raise CorrectionNotFoundError(correction_id)

    def record_usage(self, correction_id: str):
        """Bump times_applied when the matcher used this correction."""
        self.db.execute(
            """UPDATE transaction_corrections
               SET times_applied = times_applied + 1, last_used_at = datetime('now')
               WHERE id = ?""",
            (correction_id,),
        )

    def adjust_confidence(self, correction_id: str, delta: float) -> Correction | None:
        """Nudge confidence, clamped to [0, 1]. Returns None when the row was dropped."""
        existing = self.get_correction(correction_id)
        new_confidence = round(max(0.0, min(1.0, existing.confidence + delta)), 4)

        if new_confidence < MIN_KEEP_CONFIDENCE:
            self.delete_correction(correction_id)
            logger.info(
                f"Deleted correction {correction_id} '{existing.description_pattern}' "
                f"(confidence {new_confidence:.2f})"
            )
            return None

        self.db.execute(
            "UPDATE transaction_corrections SET confidence = ? WHERE id = ?",
            (new_confidence, correction_id),
        )
        return self.get_correction(correction_id)
