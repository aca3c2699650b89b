"""Known counterparties (entities) and their aliases."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from ledger_import.imports.models import normalize_description, notion_url
from ledger_import.storage import Database

logger = logging.getLogger(__name__)

# Names shorter than this (e.g. "BP") produce too many substring hits
MIN_CONTAINS_LENGTH = 4


@dataclass
class Entity:
    id: str  # Notion page id
    name: str
    aliases: list[str] = field(default_factory=list)
    default_transaction_type: str | None = None
    default_category: str | None = None

    @property
    def url(self) -> str:
        return notion_url(self.id)

    @staticmethod
    def split_aliases(raw: str | None) -> list[str]:
        if not raw:
            return []
        return [alias.strip() for alias in raw.split(",") if alias.strip()]


class EntityDirectory:
    """In-memory view of the entities table.

    ``load()`` refreshes from SQLite; the matcher only reads ``candidates()``.
    """

    def __init__(self, db: Database | None = None, entities: list[Entity] | None = None):
        self.db = db
        self._lock = threading.Lock()
        self._entities: dict[str, Entity] = {}
        for entity in entities or []:
            self._entities[entity.id] = entity

    def load(self) -> "EntityDirectory":
        if self.db is None:
            return self
        rows = self.db.fetchall("SELECT * FROM entities ORDER BY name")
        entities = {
            row["notion_id"]: Entity(
                id=row["notion_id"],
                name=row["name"],
                aliases=Entity.split_aliases(row["aliases"]),
                default_transaction_type=row["default_transaction_type"],
                default_category=row["default_category"],
            )
            for row in rows
        }
        with self._lock:
            self._entities = entities
        logger.info(f"Loaded {len(entities)} entities")
        return self

    @property
    def entities(self) -> list[Entity]:
        with self._lock:
            return list(self._entities.values())

    def __len__(self):
        return len(self._entities)

    def get(self, entity_id: str) -> Entity | None:
        with self._lock:
            return self._entities.get(entity_id)

    def upsert(self, entity: Entity) -> Entity:
        if self.db is not None:
            self.db.execute(
                """INSERT INTO entities
                   (notion_id, name, aliases, default_transaction_type, default_category, last_edited_time)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(notion_id) DO UPDATE SET
                       name = excluded.name,
                       aliases = excluded.aliases,
                       default_transaction_type = excluded.default_transaction_type,
                       default_category = excluded.default_category,
                       last_edited_time = excluded.last_edited_time""",
                (entity.id, entity.name, ", ".join(entity.aliases) or None,
                 entity.default_transaction_type, entity.default_category,
                 datetime.now().isoformat()),
            )
        with self._lock:
            self._entities[entity.id] = entity
        return entity

    def candidates(self) -> list[tuple[str, Entity]]:
        """(normalized name or alias, owning entity) pairs, longest first."""
        pairs = []
        for entity in self.entities:
            for text in [entity.name] + entity.aliases:
                normalized = normalize_description(text)
                if normalized:
                    pairs.append((normalized, entity))
        pairs.sort(key=lambda pair: len(pair[0]), reverse=True)
        return pairs

    def resolve(self, name: str) -> Entity | None:
        """Map a free-text name (e.g. an AI suggestion) to a known entity.

        Exact name/alias match first, then the longest name or alias that the
        suggestion contains.
        """
        if not isinstance(name, str):
            return None
        normalized = normalize_description(name)
        if not normalized:
            return None
        candidates = self.candidates()
        for text, entity in candidates:
            if text == normalized:
                return entity
        for text, entity in candidates:
            if len(text) >= MIN_CONTAINS_LENGTH and text in normalized:
                return entity
        return None
