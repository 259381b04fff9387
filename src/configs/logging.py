"""Structured logging with context injection.

Features:
- console handler on the `src` logger
- JSON logs optional (easy ingestion)
- context injection (run_id/source_name/stage) without needing a big framework
"""

from __future__ import annotations

import json
import logging
import sys
import time
from typing import Any

CONTEXT_FIELDS = ("run_id", "source_name", "stage")

# ---------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in CONTEXT_FIELDS:
            if hasattr(record, k):
                base[k] = getattr(record, k)

        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(base, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Format log records as human-readable text."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [record.levelname, record.name]

        ctx = []
        run_id = getattr(record, "run_id", None)
        source_name = getattr(record, "source_name", None)
        stage = getattr(record, "stage", None)
        if run_id:
            ctx.append(f"run={run_id}")
        if source_name:
            ctx.append(f"source={source_name}")
        if stage:
            ctx.append(f"stage={stage}")

        if ctx:
            parts.append("[" + " ".join(ctx) + "]")

        parts.append(record.getMessage())
        s = " ".join(parts)

        if record.exc_info:
            s += "\n" + self.formatException(record.exc_info)

        return s


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------


def setup_logging(level: str = "INFO", json_logs: bool = False) -> logging.Logger:
    """Configure the package logger with a single stdout handler."""
    logger = logging.getLogger("src")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    # Clear old handlers if re-configuring
    for h in list(logger.handlers):
        logger.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)
    handler.setFormatter(JsonFormatter() if json_logs else TextFormatter())
    logger.addHandler(handler)
    return logger


# ---------------------------------------------------------------------
# Context injection
# ---------------------------------------------------------------------


class ContextAdapter(logging.LoggerAdapter):
    """Inject context fields into log records."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        merged = dict(self.extra)
        merged.update(extra)
        kwargs["extra"] = merged
        return msg, kwargs


def with_context(
    logger: logging.Logger,
    *,
    run_id: str | None = None,
    source_name: str | None = None,
    stage: str | None = None,
) -> ContextAdapter:
    """Create a context adapter with run, source, and stage info."""
    extra: dict[str, Any] = {}
    if run_id:
        extra["run_id"] = run_id
    if source_name:
        extra["source_name"] = source_name
    if stage:
        extra["stage"] = stage
    return ContextAdapter(logger, extra)
