"""Tests for the command-line driver."""

import json

import pytest

import config
from ledger_import import main as cli
from ledger_import.corrections.store import CorrectionInput
from ledger_import.imports.service import ImportService
from tests.helpers.fake_ledger import FakeLedger


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    monkeypatch.setattr(cli, "POLL_INTERVAL", 0.01)


@pytest.fixture
def notion_configured(monkeypatch):
    monkeypatch.setattr(config, "NOTION_TOKEN", "secret")
    monkeypatch.setattr(config, "NOTION_BALANCE_SHEET_ID", "balance-db")
    monkeypatch.setattr(config, "NOTION_ENTITIES_DB_ID", "entities-db")


def write_rows(path, descriptions):
    rows = [
        {"date": "2024-11-18", "description": d, "account": "Everyday", "amount": -10,
         "rawRow": f"2024-11-18,{d},-10"}
        for d in descriptions
    ]
    path.write_text(json.dumps(rows))
    return path


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_missing_notion_token(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config, "NOTION_TOKEN", "")

        assert cli.main(["process", str(write_rows(tmp_path / "rows.json", ["COLES"])), "--account", "Amex"]) == 1

    def test_corrections_listing(self, monkeypatch, db, corrections, capsys):
        corrections.create_or_update_correction(CorrectionInput(
            description_pattern="UBER", entity_id="uber", entity_name="Uber", confidence=0.9,
        ))
        monkeypatch.setattr(cli, "get_database", lambda: db)

        assert cli.main(["corrections"]) == 0

        out = capsys.readouterr().out
        assert "1 corrections" in out
        assert "UBER -> Uber" in out

    def test_process_then_execute(self, monkeypatch, tmp_path, directory, runner, notion_configured, capsys):
        ledger = FakeLedger()
        service = ImportService(ledger, directory, runner=runner, delay_ms=0)
        monkeypatch.setattr(cli, "build_service", lambda: service)
        rows = write_rows(tmp_path / "rows.json", ["WOOLWORTHS METRO 1234", "TOTALLY UNKNOWN MERCHANT"])
        output = tmp_path / "result.json"

        assert cli.main(["process", str(rows), "--account", "Everyday", "--output", str(output)]) == 0
        result = json.loads(output.read_text())
        assert len(result["matched"]) == 1
        assert len(result["uncertain"]) == 1
        assert result["confirmed"][0]["entity_name"] == "Woolworths"

        assert cli.main(["execute", str(output)]) == 0
        assert [t.description for t in ledger.written] == ["WOOLWORTHS METRO 1234"]
        assert "Imported 1" in capsys.readouterr().out
