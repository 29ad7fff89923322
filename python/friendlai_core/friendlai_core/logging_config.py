"""Structured JSON logging configuration for friendlai.

Shared by the dispatch API and the worker processes.  ``LOG_FORMAT=json``
(the default) emits one JSON object per line; ``LOG_FORMAT=text`` is easier
to read when running a worker in a terminal.

Usage::

    from friendlai_core.logging_config import configure_logging
    configure_logging("worker")
"""
from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone

# ── Context propagation ────────────────────────────────────────────
# Request IDs (API) and job IDs (worker) show up in every record
# emitted from the same async/thread context.

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)
job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "job_id", default=""
)

# Structured extras copied into the JSON entry when present on the record.
_EXTRA_KEYS = (
    "service", "request_id", "job_id", "worker_id", "owner", "model",
    "status", "composite_id", "event", "status_code", "method", "path",
    "duration_ms", "processing_time_ms", "reclaimed", "models",
    "log_format", "tier",
)


class ContextFilter(logging.Filter):
    """Stamp the service name and current request/job ids onto each record."""

    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get("") or None
        if not getattr(record, "job_id", None):
            record.job_id = job_id_var.get("") or None
        return True


# ── Formatters ─────────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "func": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (key, getattr(record, key))
            for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            "%(asctime)s | %(service)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        job_id = getattr(record, "job_id", None)
        return f"{line} [job={job_id}]" if job_id else line


# ── Public setup function ──────────────────────────────────────────

def configure_logging(service: str = "api") -> None:
    """Configure the root logger for the given service.

    Environment variables
    ---------------------
    LOG_FORMAT : ``json`` (default) or ``text``
    LOG_LEVEL  : standard Python level name, default ``INFO``
    """
    log_format = os.getenv("LOG_FORMAT", "json")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(ContextFilter(service))
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    # SQL echo and per-request client logs drown out job events
    for name in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(f"friendlai.{service}").info(
        "Logging configured",
        extra={"event": "logging.init", "log_format": log_format},
    )
