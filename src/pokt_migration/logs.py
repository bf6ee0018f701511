"""Logging setup and secret redaction."""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone

PACKAGE_LOGGER = "pokt_migration"
REDACTED = "[REDACTED]"

_SENSITIVE_FIELDS = (
    "private_key",
    "privkey",
    "priv",
    "mnemonic",
    "passphrase",
    "password",
    "secret",
    "seed",
    "signature",
)

_FIELD_RE = re.compile(
    r"(?i)(\"?(?:" + "|".join(_SENSITIVE_FIELDS) + r")\"?\s*[=:]\s*)(\"[^\"]*\"|[^,\s}]+)"
)
_HEX_RE = re.compile(r"\b(?:0x)?[0-9a-fA-F]{64,}\b")
_MNEMONIC_RE = re.compile(r"\b(?:[a-z]{3,8}\s+){11,23}[a-z]{3,8}\b")


def sanitize_text(value: str) -> str:
    """Strip key material, mnemonic-like phrases and sensitive ``key=value`` pairs."""
    redacted = _FIELD_RE.sub(lambda m: m.group(1) + REDACTED, value)
    redacted = _HEX_RE.sub(REDACTED, redacted)
    redacted = _MNEMONIC_RE.sub(REDACTED, redacted)
    return redacted


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = sanitize_text(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = sanitize_text(self.formatException(record.exc_info))
        return json.dumps(payload, sort_keys=True)


def configure_logging(level: str = "INFO", log_format: str = "text", stream=None) -> logging.Logger:
    """Install one handler on the package logger. Safe to call repeatedly."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonLineFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(formatter)
    handler.addFilter(RedactingFilter())

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(log_level)
    logger.handlers = [handler]
    logger.propagate = False
    return logger
