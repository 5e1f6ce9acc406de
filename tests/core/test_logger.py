"""Tests for the centralized shopwarden logger."""

import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

import shopwarden.core.logger as _mod


@pytest.fixture(autouse=True)
def _reset_logging(monkeypatch):
    """Reset the configured flag so each test reconfigures."""
    monkeypatch.setattr(_mod, "_CONFIGURED", False)
    monkeypatch.delenv("SHOPWARDEN_LOG_FILE", raising=False)
    monkeypatch.delenv("SHOPWARDEN_LOG_LEVEL", raising=False)
    monkeypatch.delenv("SHOPWARDEN_LOG_MAX_BYTES", raising=False)
    root = logging.getLogger("shopwarden")
    scheduler_logger = logging.getLogger("apscheduler")
    old_handlers = list(root.handlers)
    old_level = root.level
    old_scheduler_level = scheduler_logger.level
    root.handlers = []
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers = old_handlers
    root.setLevel(old_level)
    scheduler_logger.setLevel(old_scheduler_level)


def _record(msg="hello world", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="shopwarden.test", level=level, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestGetLogger:
    def test_prefixes_with_namespace(self):
        assert _mod.get_logger("mymod").name == "shopwarden.mymod"

    def test_already_prefixed(self):
        assert _mod.get_logger("shopwarden.lane.critical_lane").name == "shopwarden.lane.critical_lane"

    def test_idempotent_setup(self):
        _mod.setup_logging()
        count1 = len(logging.getLogger("shopwarden").handlers)
        _mod.setup_logging()
        count2 = len(logging.getLogger("shopwarden").handlers)
        assert count1 == count2 == 1

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("SHOPWARDEN_LOG_LEVEL", "WARNING")
        _mod.setup_logging()
        assert logging.getLogger("shopwarden").level == logging.WARNING

    def test_log_file_handler(self, tmp_path, monkeypatch):
        log_file = tmp_path / "shopwarden.log"
        monkeypatch.setenv("SHOPWARDEN_LOG_FILE", str(log_file))
        _mod.setup_logging()
        lg = _mod.get_logger("filetest")
        lg.warning("written to file", extra={"context": {"sku": "A1"}})
        for handler in logging.getLogger("shopwarden").handlers:
            handler.flush()
        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["msg"] == "written to file"
        assert entry["context"] == {"sku": "A1"}
        assert entry["subsystem"] == "filetest"

    def test_log_file_rotates(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHOPWARDEN_LOG_FILE", str(tmp_path / "shopwarden.log"))
        monkeypatch.setenv("SHOPWARDEN_LOG_MAX_BYTES", "2048")
        _mod.setup_logging()
        handlers = [h for h in logging.getLogger("shopwarden").handlers if isinstance(h, RotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].maxBytes == 2048
        assert handlers[0].backupCount == _mod.LOG_FILE_BACKUPS

    def test_scheduler_chatter_quieted(self):
        _mod.setup_logging()
        assert logging.getLogger("apscheduler").level == logging.WARNING

    def test_debug_keeps_scheduler_logs(self, monkeypatch):
        logging.getLogger("apscheduler").setLevel(logging.NOTSET)
        monkeypatch.setenv("SHOPWARDEN_LOG_LEVEL", "DEBUG")
        _mod.setup_logging()
        assert logging.getLogger("apscheduler").level == logging.NOTSET


class TestFormatters:
    def test_console_contains_level_and_message(self):
        result = _mod._ConsoleFormatter().format(_record())
        assert "INFO" in result
        assert "hello world" in result

    def test_console_shows_subsystem(self):
        record = _record()
        record.name = "shopwarden.pricing.engine"
        assert "pricing.engine: hello world" in _mod._ConsoleFormatter().format(record)

    def test_json_timestamp_from_record(self):
        record = _record()
        record.created = 0
        entry = json.loads(_mod._JSONFormatter().format(record))
        assert entry["ts"].startswith("1970-01-01T00:00:00")
        assert entry["subsystem"] == "test"

    def test_console_appends_context(self):
        result = _mod._ConsoleFormatter().format(_record(context={"price": 105}))
        assert '"price": 105' in result

    def test_json_is_single_line(self):
        result = _mod._JSONFormatter().format(_record(level=logging.ERROR, msg="fail"))
        assert "\n" not in result
        entry = json.loads(result)
        assert entry["level"] == "ERROR"
        assert entry["logger"] == "shopwarden.test"
        assert "context" not in entry
