"""Structured logging configuration with run ID tracking."""

from __future__ import annotations

import json
import logging
import re
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from synthetic_checks.config import MonitorSettings, get_settings


# Context variable for run ID tracking
run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


@contextmanager
def bind_run_id(run_id: str) -> Iterator[None]:
    """Stamp every record logged inside the block with ``run_id``."""
    token = run_id_var.set(run_id)
    try:
        yield
    finally:
        run_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        run_id = run_id_var.get()
        if run_id:
            log_data["run_id"] = run_id

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for terminals and CI logs."""

    def format(self, record: logging.LogRecord) -> str:
        run_id = run_id_var.get()
        rid = f"[{run_id[:8]}] " if run_id else ""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        base = f"{timestamp} {record.levelname:8} {rid}{record.name}: {record.getMessage()}"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


class SensitiveDataFilter(logging.Filter):
    """Filter bearer credentials out of log messages."""

    SENSITIVE_KEYS = {
        "token",
        "authorization",
        "credential",
        "cookie",
        "access_token",
    }

    _BEARER = re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        text = record.getMessage()
        redacted = self._BEARER.sub(r"\1[REDACTED]", text)
        lowered = redacted.lower()
        for key in self.SENSITIVE_KEYS:
            if key in lowered:
                redacted = self._redact_value(redacted, key)
        if redacted != text:
            record.msg = redacted
            record.args = None
        return True

    def _redact_value(self, text: str, key: str) -> str:
        """Redact values after sensitive keys."""
        patterns = [
            rf"({key}\s*[=:]\s*)(?!\[REDACTED\])[^\s,}}\]]+",
            rf"('{key}'\s*:\s*)(?!\[REDACTED\])[^\s,}}\]]+",
            rf'("{key}"\s*:\s*)(?!\[REDACTED\])[^\s,}}\]]+',
        ]
        for pattern in patterns:
            text = re.sub(pattern, r"\1[REDACTED]", text, flags=re.IGNORECASE)
        return text


def setup_logging(settings: MonitorSettings | None = None) -> None:
    """Configure harness logging."""
    settings = settings or get_settings()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, settings.log_level))

    if settings.log_format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    handler.addFilter(SensitiveDataFilter())

    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the synthmon prefix."""
    return logging.getLogger(f"synthmon.{name}")
