"""Turn import failures into messages an operator can act on."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from notion_client.errors import RequestTimeoutError

from ledger_import.imports.ai_categorizer import AiCategorizationError


@dataclass
class FormattedError:
    message: str
    suggestion: str | None = None
    details: str | None = None

    def __str__(self):
        text = self.message
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


_AI_ERRORS = {
    AiCategorizationError.API_KEY_MISSING: (
        "AI categorization unavailable",
        "Add ANTHROPIC_API_KEY to .env",
    ),
    AiCategorizationError.INSUFFICIENT_CREDITS: (
        "AI API credits exhausted",
        "Add credits at console.anthropic.com/settings/plans",
    ),
    AiCategorizationError.API_ERROR: (
        "AI categorization failed",
        "This may be a temporary API issue. Try again or categorize the transaction manually.",
    ),
    AiCategorizationError.INVALID_RESPONSE: (
        "Invalid AI response format",
        "This is usually temporary. Try again or categorize the transaction manually.",
    ),
}

_NOTION_ERRORS = {
    "object_not_found": (
        "Notion database not found",
        "Check NOTION_BALANCE_SHEET_ID and that the database is shared with your integration",
    ),
    "unauthorized": (
        "Notion API authentication failed",
        "Check NOTION_TOKEN and that it hasn't been revoked",
    ),
    "validation_error": (
        "Notion API validation error",
        "Check that all required properties exist in your Notion database",
    ),
    "rate_limited": (
        "Notion API rate limit exceeded",
        "Wait a moment and try again. Large imports may need to be split into smaller batches.",
    ),
}


def format_import_error(error: BaseException, transaction: str | None = None) -> FormattedError:
    if isinstance(error, AiCategorizationError):
        message, suggestion = _AI_ERRORS.get(error.code, ("AI categorization failed", None))
        details = error.message
        if error.code == AiCategorizationError.API_KEY_MISSING:
            details = "AI categorization requires an Anthropic API key."
        return FormattedError(message=message, suggestion=suggestion, details=details)

    # notion_client.APIResponseError and anything else shaped like it
    code = getattr(error, "code", None)
    if code is not None and str(getattr(code, "value", code)) in _NOTION_ERRORS:
        message, suggestion = _NOTION_ERRORS[str(getattr(code, "value", code))]
        return FormattedError(message=message, suggestion=suggestion, details=str(error))

    if isinstance(error, httpx.ConnectError):
        return FormattedError(
            message="Connection refused",
            suggestion="Check that the Notion API is reachable and your internet connection is working",
            details=str(error),
        )

    if isinstance(error, (httpx.TimeoutException, RequestTimeoutError)):
        return FormattedError(
            message="Request timed out",
            suggestion="Check your internet connection and try again",
            details=str(error),
        )

    return FormattedError(message=str(error) or type(error).__name__, details=transaction)
