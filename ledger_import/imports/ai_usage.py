"""Persistent record of AI categorization calls and their cost."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ledger_import.storage import Database

logger = logging.getLogger(__name__)


@dataclass
class AiUsageSummary:
    total_calls: int
    cache_hits: int
    total_input_tokens: int
    total_output_tokens: int
    total_cost_usd: float

    @property
    def api_calls(self) -> int:
        return self.total_calls - self.cache_hits

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.total_calls if self.total_calls else 0.0

    @property
    def avg_cost_per_call(self) -> float:
        return self.total_cost_usd / self.api_calls if self.api_calls else 0.0


class AiUsageLog:
    def __init__(self, db: Database):
        self.db = db

    def record(self, description, entry, usage, import_batch_id=None):
        """One row per categorize() call; ``usage`` is None for cache hits."""
        self.db.execute(
            """INSERT INTO ai_usage
               (description, entity_name, category, input_tokens, output_tokens,
                cost_usd, cached, import_batch_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                description,
                entry.entity_name if entry else None,
                entry.category if entry else None,
                usage.input_tokens if usage else 0,
                usage.output_tokens if usage else 0,
                usage.cost_usd if usage else 0.0,
                0 if usage else 1,
                import_batch_id,
            ),
        )

    def stats(self, import_batch_id: str | None = None) -> AiUsageSummary:
        where = "WHERE import_batch_id = ?" if import_batch_id else ""
        params = (import_batch_id,) if import_batch_id else ()
        row = self.db.fetchone(
            f"""SELECT COUNT(*) AS total_calls,
                       COALESCE(SUM(cached), 0) AS cache_hits,
                       COALESCE(SUM(input_tokens), 0) AS input_tokens,
                       COALESCE(SUM(output_tokens), 0) AS output_tokens,
                       COALESCE(SUM(cost_usd), 0) AS cost_usd
                FROM ai_usage {where}""",
            params,
        )
        return AiUsageSummary(
            total_calls=row["total_calls"],
            cache_hits=row["cache_hits"],
            total_input_tokens=row["input_tokens"],
            total_output_tokens=row["output_tokens"],
            total_cost_usd=row["cost_usd"],
        )
