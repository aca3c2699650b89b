"""AI-powered entity suggestions for descriptions the matcher could not resolve.

Only the description is sent to the API. Answers are cached per normalized
description for the life of the process, so each unique merchant string costs
at most one call (two if identical rows race; there is no single-flight).
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime

import anthropic
from anthropic import Anthropic

import config
from ledger_import.imports.models import AiUsage
from ledger_import.log_setup import short

logger = logging.getLogger(__name__)

# Haiku 4.5 pricing, USD per million tokens
INPUT_PRICE_PER_MTOK = 1.00
OUTPUT_PRICE_PER_MTOK = 5.00

# Billing rejections come back as one of these with a "credit balance" message
CREDIT_ERROR_STATUSES = (400, 402, 429)

PROMPT_TEMPLATE = """Given this bank transaction data, identify the merchant/entity name and a spending category.

Transaction data: {description}

Reply in JSON only: {{"entityName": "...", "category": "..."}}
Common categories: Groceries, Dining, Transport, Utilities, Entertainment, Shopping, Health, Insurance, Subscriptions, Income, Transfer, Government, Education, Travel, Rent, Other."""


class AiCategorizationError(Exception):
    """Raised when the AI fallback cannot produce an answer."""

    API_KEY_MISSING = "API_KEY_MISSING"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    API_ERROR = "API_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass
class AiCacheEntry:
    description: str
    entity_name: str | None
    category: str | None
    cached_at: datetime


@dataclass
class CategorizeResult:
    result: AiCacheEntry | None
    usage: AiUsage | None = None  # None on cache hits


def cache_key(description: str) -> str:
    return " ".join(description.split()).casefold()


def compute_cost(input_tokens: int, output_tokens: int) -> float:
    return (input_tokens / 1_000_000) * INPUT_PRICE_PER_MTOK + \
        (output_tokens / 1_000_000) * OUTPUT_PRICE_PER_MTOK


class AiCache:
    """In-memory answer cache. No TTL; cleared explicitly."""

    def __init__(self):
        self._entries: dict[str, AiCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> AiCacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: AiCacheEntry):
        with self._lock:
            self._entries[key] = entry

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


def _strip_fences(text: str) -> str:
    """Claude sometimes wraps JSON in ```json ... ``` fences."""
    text = text.strip()
    if "```" in text:
        json_part = text.split("```")[1]
        if json_part.startswith("json"):
            json_part = json_part[4:]
        text = json_part.strip()
    return text


def _error_message(error: anthropic.APIStatusError) -> str:
    body = error.body if isinstance(error.body, dict) else {}
    nested = body.get("error") if isinstance(body.get("error"), dict) else {}
    return nested.get("message") or error.message or str(error)


class AiCategorizer:
    def __init__(self, api_key=None, model=None, max_tokens=None, cache=None,
                 usage_log=None, client=None):
        self.api_key = config.ANTHROPIC_API_KEY if api_key is None else api_key
        self.model = model or config.CLAUDE_MODEL
        self.max_tokens = max_tokens or config.AI_MAX_TOKENS
        self.cache = cache if cache is not None else AiCache()
        self.usage_log = usage_log
        self._client = client

    def _get_client(self) -> Anthropic:
        if self._client is None:
            if not self.api_key:
                raise AiCategorizationError(
                    "ANTHROPIC_API_KEY not configured", AiCategorizationError.API_KEY_MISSING
                )
            self._client = Anthropic(api_key=self.api_key)
        return self._client

    def clear_cache(self):
        self.cache.clear()

    def categorize(self, description: str, import_batch_id: str | None = None) -> CategorizeResult:
        """Suggest an entity name and category for one description."""
        key = cache_key(description)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"AI cache hit for '{short(description)}' -> {cached.entity_name}")
            if self.usage_log is not None:
                self.usage_log.record(description, cached, None, import_batch_id)
            return CategorizeResult(result=cached)

        client = self._get_client()
        logger.debug(f"AI cache miss, calling {self.model} for '{short(description)}'")

        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": PROMPT_TEMPLATE.format(description=description.strip())}],
            )
        except anthropic.APIStatusError as e:
            message = _error_message(e)
            logger.error(f"AI categorization failed: {e.status_code} {message}")
            if e.status_code in CREDIT_ERROR_STATUSES and "credit balance" in message.lower():
                raise AiCategorizationError(
                    "Anthropic API credit balance too low. Add credits at "
                    "https://console.anthropic.com/settings/plans",
                    AiCategorizationError.INSUFFICIENT_CREDITS,
                ) from e
            raise AiCategorizationError(
                f"Anthropic API error: {message}", AiCategorizationError.API_ERROR
            ) from e
        except anthropic.APIError as e:
            logger.error(f"AI categorization failed: {type(e).__name__}: {e}")
            raise AiCategorizationError(
                f"Anthropic API error: {e}", AiCategorizationError.API_ERROR
            ) from e

        usage = AiUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            cost_usd=compute_cost(response.usage.input_tokens, response.usage.output_tokens),
        )

        text = next(
            (block.text for block in response.content or [] if getattr(block, "type", None) == "text"),
            None,
        )
        if not text or not text.strip():
            # The model gave no answer; not the same thing as a malformed one
            logger.warning(f"AI returned no text content for '{short(description)}'")
            return CategorizeResult(result=None, usage=usage)

        try:
            parsed = json.loads(_strip_fences(text))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse AI response: {e}")
            raise AiCategorizationError(
                f"AI response was not valid JSON: {short(text, 100)}",
                AiCategorizationError.INVALID_RESPONSE,
            ) from e
        if not isinstance(parsed, dict):
            raise AiCategorizationError(
                f"AI response was not a JSON object: {short(text, 100)}",
                AiCategorizationError.INVALID_RESPONSE,
            )

        entry = AiCacheEntry(
            description=description.strip(),
            entity_name=parsed.get("entityName"),
            category=parsed.get("category"),
            cached_at=datetime.now(),
        )
        self.cache.set(key, entry)
        if self.usage_log is not None:
            self.usage_log.record(description, entry, usage, import_batch_id)

        logger.info(
            f"AI categorized '{short(description)}' -> {entry.entity_name} / {entry.category} "
            f"({usage.input_tokens} in, {usage.output_tokens} out, ${usage.cost_usd:.6f})"
        )
        return CategorizeResult(result=entry, usage=usage)
