"""Tests for the state directory lock."""

import json
import os

import pytest

from shopwarden.core.state_lock import StateDirLock


class TestStateDirLock:
    def test_acquire_and_release(self, tmp_path):
        lock = StateDirLock(tmp_path / "shopwarden.lock")
        acquired, meta = lock.acquire()
        assert acquired is True
        assert meta["pid"] == os.getpid()
        assert meta["name"] == "shopwarden"
        assert lock.acquired is True
        lock.release()
        assert lock.acquired is False

    def test_double_acquire_same_instance(self, tmp_path):
        lock = StateDirLock(tmp_path / "shopwarden.lock")
        ok1, _ = lock.acquire()
        ok2, _ = lock.acquire()
        assert ok1 is True and ok2 is True
        lock.release()

    def test_second_owner_rejected(self, tmp_path):
        path = tmp_path / "shopwarden.lock"
        first = StateDirLock(path)
        second = StateDirLock(path)
        first.acquire(extra={"entrypoint": "test"})
        acquired, owner = second.acquire()
        assert acquired is False
        assert owner["pid"] == os.getpid()
        assert owner["entrypoint"] == "test"
        first.release()

        acquired, _ = second.acquire()
        assert acquired is True
        second.release()

    def test_lock_file_contains_metadata(self, tmp_path):
        path = tmp_path / "state" / "shopwarden.lock"
        lock = StateDirLock(path)
        lock.acquire(extra={"version": "0.3.0"})
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == "0.3.0"
        lock.release()

    def test_context_manager(self, tmp_path):
        path = tmp_path / "shopwarden.lock"
        with StateDirLock(path) as lock:
            assert lock.acquired is True
            with pytest.raises(RuntimeError):
                with StateDirLock(path):
                    pass
        assert lock.acquired is False
