"""SQLite storage for entities, learned corrections and AI usage."""

from __future__ import annotations

import sqlite3
import logging
import threading
from pathlib import Path

import config

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS entities (
    notion_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    aliases TEXT,
    default_transaction_type TEXT,
    default_category TEXT,
    last_edited_time TEXT
);

CREATE TABLE IF NOT EXISTS transaction_corrections (
    id TEXT PRIMARY KEY DEFAULT (lower(hex(randomblob(16)))),
    description_pattern TEXT NOT NULL,
    match_type TEXT NOT NULL DEFAULT 'exact' CHECK(match_type IN ('exact', 'contains')),
    entity_id TEXT,
    entity_name TEXT,
    location TEXT,
    online INTEGER,
    transaction_type TEXT CHECK(transaction_type IN ('purchase', 'transfer', 'income')),
    confidence REAL NOT NULL DEFAULT 0.5 CHECK(confidence >= 0.0 AND confidence <= 1.0),
    times_applied INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    last_used_at TEXT,
    UNIQUE(description_pattern, match_type)
);

CREATE TABLE IF NOT EXISTS ai_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    description TEXT NOT NULL,
    entity_name TEXT,
    category TEXT,
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    cost_usd REAL NOT NULL DEFAULT 0,
    cached INTEGER NOT NULL DEFAULT 0,
    import_batch_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_corrections_pattern ON transaction_corrections(description_pattern);
CREATE INDEX IF NOT EXISTS idx_corrections_confidence ON transaction_corrections(confidence DESC);
CREATE INDEX IF NOT EXISTS idx_ai_usage_created_at ON ai_usage(created_at);
CREATE INDEX IF NOT EXISTS idx_ai_usage_batch ON ai_usage(import_batch_id);
"""


class Database:
    """One SQLite connection shared by the request thread and background jobs."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path or config.DB_PATH)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode=WAL")
        return self._connection

    def initialize(self):
        """Create tables and indexes (idempotent)."""
        with self._lock:
            self.connection.executescript(SCHEMA)
            self.connection.commit()
        logger.info(f"Import database initialized at {self.path}")

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a write statement and commit."""
        with self._lock:
            cursor = self.connection.execute(sql, params)
            self.connection.commit()
            return cursor

    def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.connection.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, params).fetchall()

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


_default: Database | None = None


def get_database() -> Database:
    """Process-wide database at config.DB_PATH, initialized on first use."""
    global _default
    if _default is None:
        _default = Database()
        _default.initialize()
    return _default
