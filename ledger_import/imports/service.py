"""Import pipeline entry points: process, execute, poll, create entity."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace

from ledger_import.corrections.store import CorrectionStore
from ledger_import.entities.directory import Entity, EntityDirectory
from ledger_import.imports.ai_categorizer import AiCategorizationError, AiCategorizer
from ledger_import.imports.dedup import DedupChecker
from ledger_import.imports.entity_matcher import EntityMatcher, MatchOutcome
from ledger_import.imports.errors import format_import_error
from ledger_import.imports.executor import ExecutionEngine
from ledger_import.imports.models import (
    AiUsageStats,
    ConfirmedTransaction,
    ImportSession,
    ImportWarning,
    ParsedTransaction,
    ProcessedTransaction,
    ProcessImportOutput,
)
from ledger_import.imports.sessions import JobRunner, ProgressReporter
from ledger_import.log_setup import short

logger = logging.getLogger(__name__)

# AI errors that mean "no AI at all" rather than a flaky call
_AI_UNAVAILABLE = (AiCategorizationError.INSUFFICIENT_CREDITS, AiCategorizationError.API_KEY_MISSING)


def new_batch_id() -> str:
    return f"import-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def _apply_outcome(transaction: ParsedTransaction, outcome: MatchOutcome) -> ProcessedTransaction:
    if outcome.entity.match_type == "manual":
        # A learned correction overrides what the bank row says
        transaction = replace(
            transaction,
            location=outcome.location if outcome.location is not None else transaction.location,
            online=outcome.online if outcome.online is not None else transaction.online,
        )
        transaction_type = outcome.transaction_type or transaction.transaction_type
    else:
        transaction_type = transaction.transaction_type or outcome.transaction_type

    return ProcessedTransaction(
        transaction=transaction,
        status=outcome.status,
        entity=outcome.entity,
        error=outcome.error,
        transaction_type=transaction_type,
        ai_suggestion=outcome.ai_suggestion,
    )


class ImportService:
    def __init__(self, ledger, directory: EntityDirectory, corrections: CorrectionStore | None = None,
                 categorizer: AiCategorizer | None = None, runner: JobRunner | None = None,
                 delay_ms: int | None = None, sleep=time.sleep):
        self.ledger = ledger
        self.directory = directory
        self.dedup = DedupChecker(ledger)
        self.matcher = EntityMatcher(directory, corrections, categorizer)
        self.executor = ExecutionEngine(ledger, delay_ms=delay_ms, sleep=sleep)
        self.runner = runner if runner is not None else JobRunner()

    # --- Processing ---

    def process_import(self, transactions: list[ParsedTransaction], account: str) -> str:
        """Start the matching job and return its session id."""
        return self.runner.start_job(
            "process", len(transactions),
            lambda progress: self.run_process(transactions, account, progress),
        )

    def run_process(self, transactions: list[ParsedTransaction], account: str,
                    progress: ProgressReporter | None = None) -> ProcessImportOutput:
        """Dedup and match a batch synchronously."""
        batch_id = new_batch_id()
        logger.info(f"Processing {len(transactions)} transactions for {account} (batch {batch_id})")
        transactions = [t if t.account else replace(t, account=account) for t in transactions]

        if progress:
            progress.step("deduplicating", total=len(transactions))
        new, skipped, dedup_warning = self.dedup.partition(transactions)

        output = ProcessImportOutput()
        for item in skipped:
            output.add(item)
        if progress and skipped:
            progress.advance(len(skipped))

        if progress:
            progress.step("matching")

        stats = AiUsageStats()
        ai_error: AiCategorizationError | None = None
        ai_failures = 0

        for index, transaction in enumerate(new, start=1):
            failure: Exception | None = None
            try:
                outcome = self.matcher.match(transaction, batch_id)
            except Exception as e:
                logger.error(f"[{index}/{len(new)}] Matching failed for '{short(transaction.description)}': "
                             f"{type(e).__name__}: {e}")
                failure = e
                processed = ProcessedTransaction(transaction=transaction, status="failed", error=str(e))
            else:
                if outcome.ai_error is not None:
                    ai_error = outcome.ai_error
                    ai_failures += 1
                    failure = outcome.ai_error
                elif outcome.ai_consulted:
                    stats.record(outcome.usage)
                processed = _apply_outcome(transaction, outcome)

            output.add(processed)
            if processed.status == "failed" and progress:
                if failure is not None:
                    message = str(format_import_error(failure, transaction.description))
                else:
                    message = processed.error or "Unknown error"
                progress.add_error(transaction.description, message)
            if progress:
                progress.advance()

        if dedup_warning:
            output.warnings.append(dedup_warning)
        if ai_error is not None:
            output.warnings.append(ImportWarning(
                type="AI_CATEGORIZATION_UNAVAILABLE" if ai_error.code in _AI_UNAVAILABLE else "AI_API_ERROR",
                message=ai_error.message,
                affected_count=ai_failures,
            ))
        if stats.api_calls or stats.cache_hits:
            output.ai_usage = stats

        logger.info(
            f"Processed batch {batch_id}: {len(output.matched)} matched, {len(output.uncertain)} uncertain, "
            f"{len(output.skipped)} skipped, {len(output.failed)} failed, "
            f"AI {stats.api_calls} calls / {stats.cache_hits} cache hits (${stats.total_cost_usd:.6f})"
        )
        return output

    # --- Execution ---

    def execute_import(self, transactions: list[ConfirmedTransaction]) -> str:
        """Start the write job and return its session id."""
        return self.runner.start_job("execute", len(transactions), lambda progress: self.run_execute(transactions, progress))

    def run_execute(self, transactions: list[ConfirmedTransaction], progress: ProgressReporter | None = None):
        if progress:
            progress.step("writing", total=len(transactions))
        return self.executor.execute(transactions, progress)

    # --- Polling ---

    def get_import_progress(self, session_id: str) -> ImportSession:
        return self.runner.get_progress(session_id)

    def wait(self, session_id: str, timeout: float | None = None) -> ImportSession:
        return self.runner.wait(session_id, timeout)

    # --- Entities ---

    def create_entity(self, name: str) -> Entity:
        """Create the entity in the ledger and make it matchable immediately."""
        name = name.strip()
        if not name:
            raise ValueError("Entity name must not be empty")
        page_id = self.ledger.create_entity(name)
        entity = self.directory.upsert(Entity(id=page_id, name=name))
        logger.info(f"Created entity '{name}' ({page_id})")
        return entity
