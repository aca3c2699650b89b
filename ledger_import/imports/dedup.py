"""Checksum-based deduplication against the ledger."""

from __future__ import annotations

import logging

from ledger_import.imports.models import ImportWarning, ParsedTransaction, ProcessedTransaction

logger = logging.getLogger(__name__)

DUPLICATE_REASON = "Duplicate of existing record"


class ChecksumLookupError(Exception):
    """The ledger could not be asked which checksums it already holds."""

    def __init__(self, warning_type: str, message: str, details: str | None = None):
        super().__init__(message)
        self.warning_type = warning_type
        self.message = message
        self.details = details


class ChecksumStore:
    """Anything that can tell whether a checksum was already imported."""

    def checksum_exists(self, checksum: str) -> bool:
        raise NotImplementedError

    def existing_checksums(self, checksums: list[str]) -> set[str]:
        return {checksum for checksum in checksums if self.checksum_exists(checksum)}


class InMemoryChecksumStore(ChecksumStore):
    def __init__(self, checksums=()):
        self.checksums = set(checksums)

    def checksum_exists(self, checksum: str) -> bool:
        return checksum in self.checksums

    def add(self, checksum: str):
        self.checksums.add(checksum)


class DedupChecker:
    def __init__(self, store: ChecksumStore):
        self.store = store

    def partition(self, transactions: list[ParsedTransaction]
                  ) -> tuple[list[ParsedTransaction], list[ProcessedTransaction], ImportWarning | None]:
        """Split a batch into (new, skipped duplicates, lookup warning).

        Rows in the same batch are never compared with each other. When the
        lookup fails every row is treated as new and a warning says why.
        """
        if not transactions:
            return [], [], None

        warning = None
        try:
            existing = self.store.existing_checksums([t.checksum for t in transactions])
        except ChecksumLookupError as e:
            logger.warning(f"Checksum lookup failed, skipping deduplication: {e.message}")
            existing = set()
            warning = ImportWarning(type=e.warning_type, message=e.message, details=e.details)
        except Exception as e:
            logger.warning(f"Checksum lookup failed, skipping deduplication: {type(e).__name__}: {e}")
            existing = set()
            warning = ImportWarning(
                type="NOTION_API_ERROR",
                message="Failed to query Notion for duplicates",
                details=str(e),
            )

        new, skipped = [], []
        for transaction in transactions:
            if transaction.checksum in existing:
                skipped.append(ProcessedTransaction(
                    transaction=transaction, status="skipped", skip_reason=DUPLICATE_REASON,
                ))
            else:
                new.append(transaction)

        logger.info(f"Deduplication: {len(skipped)} duplicates, {len(new)} new")
        return new, skipped, warning
