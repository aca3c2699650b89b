"""Configuration management for the statement import pipeline."""
import os
from dotenv import load_dotenv

load_dotenv()


def clean_env_value(value):
    """Clean environment variable value - strip whitespace AND quotes.

    Hosting dashboards sometimes wrap pasted values in quotes.
    This function removes them so tokens and IDs work correctly.
    """
    if not value:
        return ""
    value = value.strip()
    if len(value) >= 2:
        if (value.startswith('"') and value.endswith('"')) or \
           (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        # Only a leading or trailing quote survived (partial corruption)
        elif value.startswith('"') or value.startswith("'"):
            value = value[1:]
        elif value.endswith('"') or value.endswith("'"):
            value = value[:-1]
    return value.strip()


def env_float(name, default):
    raw = clean_env_value(os.getenv(name))
    return float(raw) if raw else default


def env_int(name, default):
    raw = clean_env_value(os.getenv(name))
    return int(raw) if raw else default


# Notion Integration Token (get from notion.so/my-integrations)
NOTION_TOKEN = clean_env_value(os.getenv("NOTION_TOKEN"))

# Balance Sheet database: one page per imported transaction, needs a "Checksum" rich text property
NOTION_BALANCE_SHEET_ID = clean_env_value(os.getenv("NOTION_BALANCE_SHEET_ID"))

# Entities database: one page per counterparty (merchant, employer, ...)
NOTION_ENTITIES_DB_ID = clean_env_value(os.getenv("NOTION_ENTITIES_DB_ID"))

NOTION_VERSION = clean_env_value(os.getenv("NOTION_VERSION")) or "2022-06-28"

# Anthropic API Key for the AI fallback (optional - without it unmatched rows are left uncertain for review)
ANTHROPIC_API_KEY = clean_env_value(os.getenv("ANTHROPIC_API_KEY"))

CLAUDE_MODEL = clean_env_value(os.getenv("CLAUDE_MODEL")) or "claude-haiku-4-5-20251001"
AI_MAX_TOKENS = env_int("AI_MAX_TOKENS", 200)

# Local SQLite store for entities, learned corrections and AI usage
DATA_DIR = clean_env_value(os.getenv("DATA_DIR")) or "./data"
DB_PATH = clean_env_value(os.getenv("DB_PATH")) or os.path.join(DATA_DIR, "ledger_import.db")

# Pause between Notion page writes (Notion allows ~3 requests/second)
IMPORT_WRITE_DELAY_MS = env_int("IMPORT_WRITE_DELAY_MS", 400)

# Corrections below this confidence are ignored by the matcher
CORRECTION_MIN_CONFIDENCE = env_float("CORRECTION_MIN_CONFIDENCE", 0.7)

LOG_LEVEL = (clean_env_value(os.getenv("LOG_LEVEL")) or "INFO").upper()
