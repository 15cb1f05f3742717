"""Structured logging configuration for gcsfiles."""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

# Extras attached by the transport, signer and upload client
CONTEXT_FIELDS = ("bucket", "object", "action", "attempt", "status")

# Third-party loggers that are chatty at INFO (token refreshes, access logs)
NOISY_LOGGERS = ("gcloud.aio", "aiohttp.access")

# A signed URL's Signature and a session URI's upload_id grant access on their own
_SECRET_PARAM_RE = re.compile(r"(?P<key>[?&](?:Signature|upload_id)=)[^&\s\"']+")


def redact_url_secrets(text: str) -> str:
    """Mask Signature and upload_id query values in ``text``."""
    return _SECRET_PARAM_RE.sub(r"\g<key>REDACTED", text)


def _context(record: logging.LogRecord) -> dict[str, Any]:
    context = {}
    for key in CONTEXT_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            context[key] = val
    return context


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, exception, plus the
    gcsfiles context fields present on the record.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_url_secrets(record.getMessage()),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = redact_url_secrets(self.formatException(record.exc_info))
        entry.update(_context(record))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with context fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = redact_url_secrets(super().format(record))
        context = _context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure root logging with the specified level and format.

    Applications embedding gcsfiles normally configure logging themselves;
    this is used by the ``gcsfiles`` CLI. Below DEBUG the gcloud-aio and
    aiohttp access loggers are held at WARNING.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Format type, 'text' for human-readable or 'json' for structured.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.NOTSET if numeric_level <= logging.DEBUG else logging.WARNING
        )
