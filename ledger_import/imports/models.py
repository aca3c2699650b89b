"""Data models for the statement import pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime

MATCH_TYPES = ("manual", "exact", "prefix", "contains", "ai", "none")
TRANSACTION_TYPES = ("purchase", "transfer", "income")


def compute_checksum(raw_row: str) -> str:
    """SHA-256 of the raw source row, the dedup key stored in the ledger."""
    return hashlib.sha256(raw_row.encode("utf-8")).hexdigest()


def normalize_description(description: str) -> str:
    """Trim, collapse internal whitespace, uppercase. Digits are kept."""
    return " ".join(description.split()).upper()


def notion_url(page_id: str) -> str:
    return f"https://www.notion.so/{page_id.replace('-', '')}"


@dataclass
class ParsedTransaction:
    date: str  # YYYY-MM-DD
    description: str
    account: str
    amount: float  # expenses are negative
    raw_row: str
    checksum: str
    location: str | None = None
    online: bool | None = None
    transaction_type: str | None = None  # "purchase", "transfer", "income"; None means purchase

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedTransaction":
        """Build from a transformer row; accepts camelCase or snake_case keys."""
        raw_row = data.get("raw_row", data.get("rawRow", ""))
        checksum = data.get("checksum") or compute_checksum(raw_row)
        return cls(
            date=data["date"],
            description=data["description"],
            account=data["account"],
            amount=float(data["amount"]),
            raw_row=raw_row,
            checksum=checksum,
            location=data.get("location"),
            online=data.get("online"),
            transaction_type=data.get("transaction_type", data.get("transactionType")),
        )


@dataclass
class EntityMatch:
    match_type: str = "none"  # one of MATCH_TYPES
    entity_id: str | None = None
    entity_name: str | None = None
    entity_url: str | None = None
    confidence: float | None = None

    @property
    def resolved(self) -> bool:
        return bool(self.entity_id)


@dataclass
class AiSuggestion:
    entity_name: str | None = None
    category: str | None = None


@dataclass
class ConfirmedTransaction(ParsedTransaction):
    # Empty string entity_id means the user explicitly chose "no entity"
    entity_id: str | None = None
    entity_name: str | None = None
    entity_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ConfirmedTransaction":
        parsed = ParsedTransaction.from_dict(data)
        return cls(
            **asdict(parsed),
            entity_id=data.get("entity_id", data.get("entityId")),
            entity_name=data.get("entity_name", data.get("entityName")),
            entity_url=data.get("entity_url", data.get("entityUrl")),
        )


@dataclass
class ProcessedTransaction:
    transaction: ParsedTransaction
    status: str  # "matched", "uncertain", "skipped", "failed"
    entity: EntityMatch = field(default_factory=EntityMatch)
    skip_reason: str | None = None
    error: str | None = None
    transaction_type: str | None = None
    ai_suggestion: AiSuggestion | None = None

    @property
    def description(self) -> str:
        return self.transaction.description

    def confirm(self, entity: EntityMatch | None = None,
                transaction_type: str | None = None) -> ConfirmedTransaction:
        """Turn a reviewed row into a write-ready transaction.

        ``entity`` overrides the matched entity (manual resolution of an
        uncertain row). Pass ``EntityMatch(match_type="manual", entity_id="")``
        to import without an entity.
        """
        chosen = entity or self.entity
        fields = asdict(self.transaction)
        fields["transaction_type"] = (
            transaction_type or self.transaction_type or self.transaction.transaction_type
        )
        return ConfirmedTransaction(
            **fields,
            entity_id=chosen.entity_id or "",
            entity_name=chosen.entity_name or "",
            entity_url=chosen.entity_url or "",
        )


@dataclass
class ImportWarning:
    type: str  # AI_CATEGORIZATION_UNAVAILABLE, AI_API_ERROR, NOTION_DATABASE_NOT_FOUND, NOTION_API_ERROR, DEDUPLICATION_DISABLED
    message: str
    affected_count: int | None = None
    details: str | None = None


@dataclass
class AiUsage:
    """Cost of one external categorization call."""
    input_tokens: int
    output_tokens: int
    cost_usd: float


@dataclass
class AiUsageStats:
    api_calls: int = 0
    cache_hits: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0

    @property
    def avg_cost_per_call(self) -> float:
        return self.total_cost_usd / self.api_calls if self.api_calls else 0.0

    def record(self, usage: AiUsage | None):
        # Cache hits carry no usage and must not add cost
        if usage is None:
            self.cache_hits += 1
            return
        self.api_calls += 1
        self.total_input_tokens += usage.input_tokens
        self.total_output_tokens += usage.output_tokens
        self.total_cost_usd += usage.cost_usd


@dataclass
class ProcessImportOutput:
    matched: list[ProcessedTransaction] = field(default_factory=list)
    uncertain: list[ProcessedTransaction] = field(default_factory=list)
    skipped: list[ProcessedTransaction] = field(default_factory=list)
    failed: list[ProcessedTransaction] = field(default_factory=list)
    warnings: list[ImportWarning] = field(default_factory=list)
    ai_usage: AiUsageStats | None = None

    @property
    def total(self) -> int:
        return len(self.matched) + len(self.uncertain) + len(self.skipped) + len(self.failed)

    def add(self, processed: ProcessedTransaction):
        getattr(self, processed.status).append(processed)


@dataclass
class ImportResult:
    transaction: ConfirmedTransaction
    success: bool
    error: str | None = None
    page_id: str | None = None


@dataclass
class ExecuteImportOutput:
    imported: int = 0
    failed: list[ImportResult] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ImportSession:
    session_id: str
    kind: str  # "process" or "execute"
    status: str = "processing"  # "processing", "completed", "failed"
    current_step: str = ""
    total_transactions: int = 0
    processed_count: int = 0
    result: ProcessImportOutput | ExecuteImportOutput | None = None
    errors: list[dict] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.status in ("completed", "failed")
