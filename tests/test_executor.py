"""Tests for the sequential ledger writer."""

from unittest.mock import Mock

from ledger_import.imports.executor import ExecutionEngine
from ledger_import.imports.models import ProcessedTransaction, EntityMatch
from tests.helpers.factories import WOOLWORTHS_ID, make_transaction
from tests.helpers.fake_ledger import FakeLedger


def confirmed(description, **kwargs):
    processed = ProcessedTransaction(
        transaction=make_transaction(description, **kwargs),
        status="matched",
        entity=EntityMatch(match_type="prefix", entity_id=WOOLWORTHS_ID, entity_name="Woolworths"),
    )
    return processed.confirm()


class TestExecutionEngine:
    def test_second_write_failure_does_not_abort(self):
        ledger = FakeLedger(fail_on={"ROW 2"})
        sleep = Mock()
        rows = [confirmed("ROW 1"), confirmed("ROW 2"), confirmed("ROW 3")]

        output = ExecutionEngine(ledger, delay_ms=400, sleep=sleep).execute(rows)

        assert output.imported == 2
        assert output.skipped == 0
        assert len(output.failed) == 1
        assert output.failed[0].transaction.description == "ROW 2"
        assert output.failed[0].success is False
        assert "Notion rejected ROW 2" in output.failed[0].error
        assert [t.description for t in ledger.attempts] == ["ROW 1", "ROW 2", "ROW 3"]
        assert [t.description for t in ledger.written] == ["ROW 1", "ROW 3"]

    def test_delay_between_writes_only(self):
        sleep = Mock()
        rows = [confirmed("ROW 1"), confirmed("ROW 2"), confirmed("ROW 3")]

        ExecutionEngine(FakeLedger(), delay_ms=400, sleep=sleep).execute(rows)

        assert sleep.call_count == 2
        sleep.assert_called_with(0.4)

    def test_zero_delay_never_sleeps(self):
        sleep = Mock()

        ExecutionEngine(FakeLedger(), delay_ms=0, sleep=sleep).execute([confirmed("ROW 1"), confirmed("ROW 2")])

        sleep.assert_not_called()

    def test_rows_already_in_ledger_are_skipped(self):
        first = confirmed("ROW 1")
        ledger = FakeLedger(checksums=[first.checksum])

        output = ExecutionEngine(ledger, delay_ms=0).execute([first, confirmed("ROW 2")])

        assert output.imported == 1
        assert output.skipped == 1
        assert [t.description for t in ledger.written] == ["ROW 2"]

    def test_lookup_failure_still_writes(self):
        ledger = FakeLedger(lookup_error=OSError("network down"))

        output = ExecutionEngine(ledger, delay_ms=0).execute([confirmed("ROW 1")])

        assert output.imported == 1

    def test_empty_list(self):
        output = ExecutionEngine(FakeLedger(), delay_ms=0).execute([])

        assert (output.imported, output.failed, output.skipped) == (0, [], 0)


class TestConfirm:
    def test_confirm_carries_entity_and_type(self):
        processed = ProcessedTransaction(
            transaction=make_transaction("ACME PAYROLL", amount=3000),
            status="matched",
            entity=EntityMatch(match_type="prefix", entity_id="acme", entity_name="Acme Payroll",
                               entity_url="https://www.notion.so/acme"),
            transaction_type="income",
        )

        row = processed.confirm()

        assert row.entity_id == "acme"
        assert row.transaction_type == "income"
        assert row.amount == 3000

    def test_confirm_without_entity(self):
        processed = ProcessedTransaction(transaction=make_transaction("MYSTERY"), status="uncertain")

        row = processed.confirm(EntityMatch(match_type="manual", entity_id=""))

        assert row.entity_id == ""
        assert row.entity_name == ""
