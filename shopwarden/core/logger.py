"""
Centralized logging configuration for shopwarden.

Usage in any module:
    from shopwarden.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Price queued for %s", barcode, extra={"context": {"price": 105}})

Records carry the subsystem they come from (``pricing.engine``,
``lane.critical_lane``) so a kill-switch trip and the lane write it blocked
can be told apart in one stream. Structured details go in the ``context``
extra, never in the message.

Environment variables:
    SHOPWARDEN_LOG_LEVEL      – DEBUG / INFO / WARNING / ERROR  (default: INFO)
    SHOPWARDEN_LOG_FILE       – optional path, rotated, always JSON-lines
    SHOPWARDEN_LOG_MAX_BYTES  – rotation size for the log file  (default: 5 MB)
    SHOPWARDEN_LOG_JSON       – set "1" for JSON-lines console output (default: 0)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler


ROOT_LOGGER = "shopwarden"
LOG_FILE_BACKUPS = 3
DEFAULT_MAX_BYTES = 5 * 1024 * 1024

# APScheduler reports every firing; the scheduler wrapper already logs them.
_NOISY_LOGGERS = ("apscheduler",)

_CONFIGURED = False


def _subsystem(name: str) -> str:
    """``shopwarden.pricing.engine`` -> ``pricing.engine``."""
    if name.startswith(ROOT_LOGGER + "."):
        return name[len(ROOT_LOGGER) + 1:]
    return name


# ---------------------------------------------------------------------------
# JSON formatter for structured logging
# ---------------------------------------------------------------------------

class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "subsystem": _subsystem(record.name),
            "pid": record.process,
            "msg": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Console formatter (human-readable)
# ---------------------------------------------------------------------------

class _ConsoleFormatter(logging.Formatter):
    """Compact coloured output for terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        base = f"{color}[{ts}] {record.levelname:<7}{self.RESET} {_subsystem(record.name)}: {record.getMessage()}"
        context = getattr(record, "context", None)
        if context:
            base += " " + json.dumps(context, default=str, ensure_ascii=False)
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _max_bytes() -> int:
    try:
        return max(0, int(os.getenv("SHOPWARDEN_LOG_MAX_BYTES", str(DEFAULT_MAX_BYTES))))
    except ValueError:
        return DEFAULT_MAX_BYTES


def setup_logging() -> None:
    """Configure the root shopwarden logger (idempotent)."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    level_name = os.getenv("SHOPWARDEN_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = os.getenv("SHOPWARDEN_LOG_JSON", "0") == "1"
    log_file = os.getenv("SHOPWARDEN_LOG_FILE")

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(_JSONFormatter() if use_json else _ConsoleFormatter())
    root.addHandler(ch)

    if log_file:
        fh = RotatingFileHandler(
            log_file, maxBytes=_max_bytes(), backupCount=LOG_FILE_BACKUPS, encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(_JSONFormatter())
        root.addHandler(fh)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the 'shopwarden' namespace.

    Automatically calls setup_logging() on first use.
    """
    setup_logging()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
