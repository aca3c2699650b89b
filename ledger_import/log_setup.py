"""Logging setup shared by the command-line driver and background jobs."""
import sys
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client SDKs that log full request/response bodies at DEBUG/INFO
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "anthropic",
    "anthropic._base_client",
    "notion_client",
)


def quiet_client_logging(level=logging.WARNING):
    """Keep HTTP client chatter (and transaction descriptions in it) out of the logs."""
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def configure_logging(level="INFO"):
    """Replace root stream handlers with a single stdout handler."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if isinstance(handler, logging.StreamHandler):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)

    quiet_client_logging()


def short(text, limit=50):
    """Truncate a description for log lines."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit]
