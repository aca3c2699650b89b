"""Writes confirmed transactions to the ledger, one at a time."""

from __future__ import annotations

import logging
import time

import config
from ledger_import.imports.errors import format_import_error
from ledger_import.imports.models import ConfirmedTransaction, ExecuteImportOutput, ImportResult
from ledger_import.log_setup import short

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """Sequential writer with a fixed pause between writes.

    ``ledger`` needs ``create_transaction(confirmed) -> page_id`` and
    ``existing_checksums(checksums) -> set``. A failed write is recorded and
    the next row is attempted; nothing is retried.
    """

    def __init__(self, ledger, delay_ms: int | None = None, sleep=time.sleep):
        self.ledger = ledger
        self.delay_ms = config.IMPORT_WRITE_DELAY_MS if delay_ms is None else delay_ms
        self.sleep = sleep

    def _already_written(self, transactions: list[ConfirmedTransaction]) -> set[str]:
        try:
            return self.ledger.existing_checksums([t.checksum for t in transactions])
        except Exception as e:
            logger.warning(f"Could not check for existing rows, writing all: {type(e).__name__}: {e}")
            return set()

    def execute(self, transactions: list[ConfirmedTransaction], progress=None) -> ExecuteImportOutput:
        output = ExecuteImportOutput()
        if not transactions:
            return output

        existing = self._already_written(transactions)
        attempted = 0

        for index, transaction in enumerate(transactions, start=1):
            if transaction.checksum in existing:
                logger.info(f"[{index}/{len(transactions)}] Already in ledger, skipping '{short(transaction.description)}'")
                output.skipped += 1
                if progress:
                    progress.advance()
                continue

            if attempted and self.delay_ms:
                self.sleep(self.delay_ms / 1000)
            attempted += 1

            try:
                page_id = self.ledger.create_transaction(transaction)
            except Exception as e:
                formatted = format_import_error(e, transaction.description)
                logger.error(
                    f"[{index}/{len(transactions)}] Write failed for '{short(transaction.description)}': "
                    f"{type(e).__name__}: {formatted}"
                )
                output.failed.append(ImportResult(transaction=transaction, success=False, error=str(e) or formatted.message))
                if progress:
                    progress.add_error(transaction.description, formatted.message)
            else:
                logger.debug(f"[{index}/{len(transactions)}] Wrote '{short(transaction.description)}' -> {page_id}")
                output.imported += 1

            if progress:
                progress.advance()

        logger.info(
            f"Execute complete: {output.imported} imported, {len(output.failed)} failed, {output.skipped} skipped"
        )
        return output
