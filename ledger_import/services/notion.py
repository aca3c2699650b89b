"""Notion as the ledger: Balance Sheet writes, checksum lookups, entity sync."""
import logging
from typing import Optional

import httpx
from notion_client import Client

import config
from ledger_import.entities.directory import Entity, EntityDirectory
from ledger_import.imports.dedup import ChecksumLookupError, ChecksumStore

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"

# Notion caps compound filters at 100 conditions
CHECKSUM_BATCH_SIZE = 100

# Notion rich text blocks hold at most 2000 characters
RICH_TEXT_LIMIT = 2000

NOTION_TYPES = {"purchase": "Expense", "transfer": "Transfer", "income": "Income"}
TRANSACTION_TYPES_BY_NOTION = {name: key for key, name in NOTION_TYPES.items()}


class NotionQueryError(Exception):
    """Non-200 answer from a raw database query."""

    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def _plain_text(prop: Optional[dict]) -> str:
    if not prop:
        return ""
    items = prop.get(prop.get("type") or "rich_text") or []
    if not isinstance(items, list):
        return ""
    return "".join(item.get("plain_text") or item.get("text", {}).get("content", "") for item in items)


def _select_name(prop: Optional[dict]) -> Optional[str]:
    if not prop:
        return None
    select = prop.get("select")
    return select.get("name") if select else None


def _multi_select_names(prop: Optional[dict]) -> list:
    if not prop:
        return []
    return [option.get("name") for option in prop.get("multi_select") or [] if option.get("name")]


def _rich_text(content: str) -> dict:
    return {"rich_text": [{"text": {"content": content[:RICH_TEXT_LIMIT]}}]}


class NotionLedger(ChecksumStore):
    """Reads and writes the Balance Sheet and Entities databases."""

    def __init__(self, token=None, balance_sheet_id=None, entities_db_id=None, client=None, http=None):
        self.token = token or config.NOTION_TOKEN
        self.balance_sheet_id = balance_sheet_id or config.NOTION_BALANCE_SHEET_ID
        self.entities_db_id = entities_db_id or config.NOTION_ENTITIES_DB_ID
        self.client = client or Client(auth=self.token)
        # Raw API for database queries; databases.query is gone from newer notion-client releases
        self.http = http or httpx.Client(timeout=30.0)

    def _headers(self) -> dict:
        return {
            'Authorization': f'Bearer {self.token}',
            'Notion-Version': config.NOTION_VERSION,
            'Content-Type': 'application/json'
        }

    def _query(self, database_id: str, body: dict) -> list:
        """All result pages of a database query, following next_cursor."""
        results = []
        payload = dict(body)
        while True:
            resp = self.http.post(
                f'{NOTION_API_URL}/databases/{database_id}/query',
                headers=self._headers(),
                json=payload
            )
            if resp.status_code != 200:
                try:
                    error = resp.json()
                except ValueError:
                    error = {}
                raise NotionQueryError(
                    resp.status_code,
                    error.get("code", "unknown"),
                    error.get("message") or f"Notion query failed with HTTP {resp.status_code}",
                )
            data = resp.json()
            results.extend(data.get("results", []))
            if not data.get("has_more") or not data.get("next_cursor"):
                return results
            payload["start_cursor"] = data["next_cursor"]

    # --- Checksums ---

    def checksum_exists(self, checksum: str) -> bool:
        return checksum in self.existing_checksums([checksum])

    def existing_checksums(self, checksums: list) -> set:
        """Checksums already on Balance Sheet pages, queried 100 at a time."""
        existing = set()
        unique = list(dict.fromkeys(c for c in checksums if c))
        try:
            for start in range(0, len(unique), CHECKSUM_BATCH_SIZE):
                batch = unique[start:start + CHECKSUM_BATCH_SIZE]
                pages = self._query(self.balance_sheet_id, {
                    "filter": {
                        "or": [
                            {"property": "Checksum", "rich_text": {"equals": checksum}}
                            for checksum in batch
                        ]
                    },
                    "page_size": 100,
                })
                for page in pages:
                    value = _plain_text(page.get("properties", {}).get("Checksum"))
                    if value:
                        existing.add(value)
        except NotionQueryError as e:
            logger.warning(f"Checksum query failed: {e.status} {e.code}: {e.message}")
            if e.code == "object_not_found":
                raise ChecksumLookupError(
                    "NOTION_DATABASE_NOT_FOUND",
                    "Database not found. Check that NOTION_BALANCE_SHEET_ID is correct and the "
                    "database is shared with your integration.",
                    e.message,
                ) from e
            if e.code == "validation_error" and "Checksum" in e.message:
                raise ChecksumLookupError(
                    "DEDUPLICATION_DISABLED",
                    'Deduplication disabled: Notion database is missing the "Checksum" property. '
                    "All transactions will be processed (duplicates may occur).",
                    'To enable deduplication, add a "Rich text" property named "Checksum" to your '
                    "Balance Sheet database.",
                ) from e
            raise ChecksumLookupError(
                "NOTION_API_ERROR",
                e.message or "Failed to query Notion for duplicates",
                f"Code: {e.code}, Status: {e.status}",
            ) from e

        logger.info(f"Checksum lookup: {len(existing)} of {len(unique)} already imported")
        return existing

    # --- Writes ---

    def transaction_properties(self, transaction) -> dict:
        """Balance Sheet properties for one confirmed transaction."""
        properties = {
            "Description": {"title": [{"text": {"content": transaction.description[:RICH_TEXT_LIMIT]}}]},
            "Account": {"select": {"name": transaction.account}},
            "Amount": {"number": transaction.amount},
            "Date": {"date": {"start": transaction.date}},
            "Type": {"select": {"name": NOTION_TYPES.get(transaction.transaction_type or "purchase", "Expense")}},
            "Online": {"checkbox": bool(transaction.online)},
            "Raw Row": _rich_text(transaction.raw_row or ""),
            "Checksum": _rich_text(transaction.checksum),
        }
        if transaction.entity_id:
            properties["Entity"] = {"relation": [{"id": transaction.entity_id}]}
        if transaction.location:
            properties["Location"] = {"select": {"name": transaction.location}}
        return properties

    def create_transaction(self, transaction) -> str:
        response = self.client.pages.create(
            parent={"database_id": self.balance_sheet_id},
            properties=self.transaction_properties(transaction)
        )
        return response["id"]

    def create_entity(self, name: str) -> str:
        response = self.client.pages.create(
            parent={"database_id": self.entities_db_id},
            properties={"Name": {"title": [{"text": {"content": name}}]}}
        )
        return response["id"]

    # --- Entities ---

    @staticmethod
    def entity_from_page(page: dict) -> Optional[Entity]:
        props = page.get("properties", {})
        name = _plain_text(props.get("Name")).strip()
        if not name:
            return None
        default_type = _select_name(props.get("Default Transaction Type"))
        categories = _multi_select_names(props.get("Default Category"))
        return Entity(
            id=page["id"],
            name=name,
            aliases=Entity.split_aliases(_plain_text(props.get("Aliases"))),
            default_transaction_type=TRANSACTION_TYPES_BY_NOTION.get(default_type) if default_type else None,
            default_category=", ".join(categories) or None,
        )

    def sync_entities(self, directory: EntityDirectory) -> int:
        """Copy every Entities page into the local directory."""
        pages = self._query(self.entities_db_id, {"page_size": 100})
        count = 0
        for page in pages:
            if page.get("archived") or page.get("in_trash"):
                continue
            entity = self.entity_from_page(page)
            if entity is None:
                continue
            directory.upsert(entity)
            count += 1
        logger.info(f"Synced {count} entities from Notion")
        return count
