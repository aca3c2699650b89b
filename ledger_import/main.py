"""Command-line driver for the statement import pipeline."""
import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path

import config
from ledger_import.corrections.store import CorrectionStore
from ledger_import.entities.directory import EntityDirectory
from ledger_import.imports.ai_categorizer import AiCategorizer
from ledger_import.imports.ai_usage import AiUsageLog
from ledger_import.imports.models import ConfirmedTransaction, ParsedTransaction
from ledger_import.imports.service import ImportService
from ledger_import.log_setup import configure_logging
from ledger_import.services.notion import NotionLedger
from ledger_import.storage import get_database

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


def create_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-import",
        description="Match bank statement rows to entities and write them to Notion",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    process_parser = subparsers.add_parser("process", help="Deduplicate and match parsed transactions")
    process_parser.add_argument("file", type=Path, help="JSON array of parsed transactions")
    process_parser.add_argument("--account", required=True, help="Account the statement belongs to")
    process_parser.add_argument("--output", type=Path, help="Write the full result as JSON")

    execute_parser = subparsers.add_parser("execute", help="Write confirmed transactions to Notion")
    execute_parser.add_argument(
        "file", type=Path,
        help="JSON array of confirmed transactions, or a process --output file",
    )

    subparsers.add_parser("sync-entities", help="Refresh the local entity directory from Notion")

    entity_parser = subparsers.add_parser("create-entity", help="Create an entity in Notion")
    entity_parser.add_argument("name")

    corrections_parser = subparsers.add_parser("corrections", help="List learned corrections")
    corrections_parser.add_argument("--min-confidence", type=float, default=None)
    corrections_parser.add_argument("--limit", type=int, default=50)
    corrections_parser.add_argument("--offset", type=int, default=0)

    return parser


def build_service() -> ImportService:
    db = get_database()
    directory = EntityDirectory(db).load()
    categorizer = None
    if config.ANTHROPIC_API_KEY:
        categorizer = AiCategorizer(usage_log=AiUsageLog(db))
    else:
        logger.warning("ANTHROPIC_API_KEY not set - unmatched rows go straight to review")
    return ImportService(
        ledger=NotionLedger(),
        directory=directory,
        corrections=CorrectionStore(db),
        categorizer=categorizer,
    )


def poll(service: ImportService, session_id: str):
    """Poll a session until it finishes, logging progress as it moves."""
    last = None
    while True:
        session = service.get_import_progress(session_id)
        position = (session.current_step, session.processed_count)
        if position != last:
            logger.info(f"{session.current_step or 'starting'}: {session.processed_count}/{session.total_transactions}")
            last = position
        if session.done:
            return session
        time.sleep(POLL_INTERVAL)


def _load_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def cmd_process(file: Path, account: str, output: Path | None = None) -> int:
    rows = _load_json(file)
    transactions = [ParsedTransaction.from_dict(row) for row in rows]
    service = build_service()

    session = poll(service, service.process_import(transactions, account))
    if session.status == "failed":
        for error in session.errors:
            print(f"❌ {error['description']}: {error['error']}")
        return 1

    result = session.result
    print(f"\n✅ Processed {result.total} transactions")
    print(f"   Matched:   {len(result.matched)}")
    print(f"   Uncertain: {len(result.uncertain)}")
    print(f"   Skipped:   {len(result.skipped)}")
    print(f"   Failed:    {len(result.failed)}")
    for warning in result.warnings:
        print(f"⚠️  {warning.type}: {warning.message}")
    if result.ai_usage:
        usage = result.ai_usage
        print(f"   AI: {usage.api_calls} calls, {usage.cache_hits} cache hits, ${usage.total_cost_usd:.4f}")

    if output:
        payload = asdict(result)
        payload["confirmed"] = [asdict(item.confirm()) for item in result.matched]
        with open(output, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=str)
        print(f"\nResult written to {output}")
    return 0


def cmd_execute(file: Path) -> int:
    data = _load_json(file)
    rows = data.get("confirmed", []) if isinstance(data, dict) else data
    transactions = [ConfirmedTransaction.from_dict(row) for row in rows]
    service = build_service()

    session = poll(service, service.execute_import(transactions))
    if session.status == "failed":
        for error in session.errors:
            print(f"❌ {error['description']}: {error['error']}")
        return 1

    result = session.result
    print(f"\n✅ Imported {result.imported}, skipped {result.skipped}, failed {len(result.failed)}")
    for failure in result.failed:
        print(f"❌ {failure.transaction.description}: {failure.error}")
    return 0 if not result.failed else 1


def cmd_sync_entities() -> int:
    db = get_database()
    count = NotionLedger().sync_entities(EntityDirectory(db))
    print(f"✅ Synced {count} entities")
    return 0


def cmd_create_entity(name: str) -> int:
    entity = build_service().create_entity(name)
    print(f"✅ Created {entity.name}: {entity.url}")
    return 0


def cmd_corrections(min_confidence, limit: int, offset: int) -> int:
    corrections, total = CorrectionStore(get_database()).list_corrections(min_confidence, limit, offset)
    print(f"{total} corrections")
    for c in corrections:
        print(f"  {c.confidence:.2f}  {c.match_type:<8} {c.description_pattern} -> {c.entity_name or '-'}"
              f"  (applied {c.times_applied}x)")
    return 0


def main(args=None) -> int:
    parser = create_cli()
    parsed = parser.parse_args(args)

    configure_logging("DEBUG" if parsed.verbose else config.LOG_LEVEL)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "corrections":
        return cmd_corrections(parsed.min_confidence, parsed.limit, parsed.offset)

    # Everything else talks to Notion
    if not config.NOTION_TOKEN:
        logger.error("NOTION_TOKEN not set. Please check your .env file.")
        return 1
    if parsed.command in ("process", "execute") and not config.NOTION_BALANCE_SHEET_ID:
        logger.error("NOTION_BALANCE_SHEET_ID not set. Please check your .env file.")
        return 1
    if parsed.command in ("sync-entities", "create-entity") and not config.NOTION_ENTITIES_DB_ID:
        logger.error("NOTION_ENTITIES_DB_ID not set. Please check your .env file.")
        return 1

    if parsed.command == "process":
        return cmd_process(parsed.file, parsed.account, parsed.output)
    elif parsed.command == "execute":
        return cmd_execute(parsed.file)
    elif parsed.command == "sync-entities":
        return cmd_sync_entities()
    elif parsed.command == "create-entity":
        return cmd_create_entity(parsed.name)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
