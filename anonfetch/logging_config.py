"""Structured JSON logging configuration.

Configures Python logging to emit JSON-formatted log entries with required
fields: level, timestamp, logger, message. Download-specific fields are
added contextually (target_url, identity, status_code, error_reason for
failures; size_bytes, duration_ms for completions).

SECURITY: Never logs the control password or credential headers.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone


# Patterns that should be redacted from log output
_SENSITIVE_PATTERNS = re.compile(
    r"(password|secret|token|credential|authorization|proxy.authorization)"
    r"[\s]*[=:]\s*\S+",
    re.IGNORECASE,
)
_AUTHENTICATE = re.compile(r'AUTHENTICATE\s+"(?:[^"\\]|\\.)*"', re.IGNORECASE)

# Structured fields copied from the record when present
_EXTRA_FIELDS = (
    "downloader",
    "target_url",
    "identity",
    "status_code",
    "error_reason",
    "retry_attempts",
    "size_bytes",
    "duration_ms",
    "cookies",
    "options",
    "control_address",
)


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON with structured fields.

    Each entry contains at minimum: level, timestamp, logger, message.
    Additional fields can be attached via the ``extra`` dict on log calls.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._sanitize(record.getMessage()),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                value = getattr(record, name)
                if name == "error_reason":
                    value = self._sanitize(str(value))
                elif name == "options":
                    value = self._sanitize_options(value)
                entry[name] = value

        # Exception info
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self._sanitize(
                self.formatException(record.exc_info)
            )

        return json.dumps(entry, default=str)

    @staticmethod
    def _sanitize(text: str) -> str:
        """Remove sensitive values from log text."""
        text = _AUTHENTICATE.sub('AUTHENTICATE "[REDACTED]"', text)
        return _SENSITIVE_PATTERNS.sub("[REDACTED]", text)

    @classmethod
    def _sanitize_options(cls, options: object) -> object:
        if not isinstance(options, dict):
            return options
        cleaned = dict(options)
        if isinstance(cleaned.get("headers"), list):
            cleaned["headers"] = [cls._sanitize(str(h)) for h in cleaned["headers"]]
        return cleaned


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with JSON formatting.

    Parameters
    ----------
    level:
        Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
