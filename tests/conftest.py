"""Shared fixtures: a fresh SQLite database per test and a small entity directory."""

from __future__ import annotations

import pytest

from ledger_import.corrections.store import CorrectionStore
from ledger_import.entities.directory import Entity, EntityDirectory
from ledger_import.imports.sessions import InMemorySessionStore, JobRunner
from ledger_import.storage import Database
from tests.helpers.factories import COLES_ID, EMPLOYER_ID, WOOLWORTHS_ID


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "ledger_import.db")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def corrections(db):
    return CorrectionStore(db)


@pytest.fixture
def directory(db):
    directory = EntityDirectory(db)
    directory.upsert(Entity(id=WOOLWORTHS_ID, name="Woolworths", aliases=["Woolies"]))
    directory.upsert(Entity(id=COLES_ID, name="Coles"))
    directory.upsert(Entity(id=EMPLOYER_ID, name="Acme Payroll", default_transaction_type="income"))
    return directory


@pytest.fixture
def runner():
    return JobRunner(InMemorySessionStore())
