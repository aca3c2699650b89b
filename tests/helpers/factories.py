"""Builders for test transactions and the entity ids the fixtures use."""

from __future__ import annotations

from ledger_import.imports.models import ParsedTransaction, compute_checksum

WOOLWORTHS_ID = "11111111-1111-1111-1111-111111111111"
COLES_ID = "22222222-2222-2222-2222-222222222222"
EMPLOYER_ID = "33333333-3333-3333-3333-333333333333"
UNKNOWN_ID = "44444444-4444-4444-4444-444444444444"


def make_transaction(description: str, amount: float = -10.0, account: str = "Everyday",
                     date: str = "2024-11-18", **extra) -> ParsedTransaction:
    raw_row = f"{date},{description},{amount}"
    return ParsedTransaction(
        date=date,
        description=description,
        account=account,
        amount=amount,
        raw_row=raw_row,
        checksum=compute_checksum(raw_row),
        **extra,
    )
