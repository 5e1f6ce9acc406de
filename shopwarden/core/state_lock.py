"""
Single-owner lock for a shopwarden state directory.

Persisted documents are last-write-wins. Two long-running processes pointed at
the same state directory would race, so the runner takes an exclusive lock
file before it starts mutating anything.
"""

import atexit
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

try:
    import fcntl  # POSIX only (macOS/Linux)
except ImportError:  # pragma: no cover - non-POSIX runtime
    fcntl = None

from shopwarden.core.logger import get_logger

logger = get_logger(__name__)


class StateDirLock:
    """Exclusive, non-blocking lock file owned by one process at a time."""

    def __init__(self, lock_path: Union[str, Path], name: str = "shopwarden"):
        self.name = name
        self.lock_path = Path(lock_path)
        self._fh = None
        self._acquired = False
        self._metadata: Dict[str, Any] = {}

    @property
    def acquired(self) -> bool:
        return self._acquired

    def _read_owner(self) -> Dict[str, Any]:
        try:
            raw = self.lock_path.read_text(encoding="utf-8").strip()
            return json.loads(raw) if raw else {}
        except (OSError, ValueError):
            return {}

    def acquire(self, extra: Optional[Dict[str, Any]] = None) -> Tuple[bool, Dict[str, Any]]:
        """
        Acquire the lock.

        Returns:
            (acquired, details). If acquired=False, details describe the current owner.
        """
        if self._acquired:
            return True, dict(self._metadata)

        metadata = {
            "name": self.name,
            "pid": os.getpid(),
            "started_at": datetime.now().isoformat(),
        }
        if extra:
            metadata.update(extra)

        if fcntl is None:
            # No advisory locks on this platform: best effort.
            self._metadata = metadata
            self._acquired = True
            return True, dict(metadata)

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.lock_path, "a+", encoding="utf-8")
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            self._fh.close()
            self._fh = None
            owner = self._read_owner()
            logger.warning("State directory already owned by pid %s", owner.get("pid"))
            return False, owner

        self._fh.seek(0)
        self._fh.truncate(0)
        self._fh.write(json.dumps(metadata, ensure_ascii=False, indent=2))
        self._fh.flush()
        os.fsync(self._fh.fileno())
        self._metadata = metadata
        self._acquired = True
        atexit.register(self.release)
        return True, dict(metadata)

    def release(self) -> None:
        if not self._fh:
            self._acquired = False
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
            self._acquired = False

    def __enter__(self) -> "StateDirLock":
        acquired, owner = self.acquire()
        if not acquired:
            raise RuntimeError(f"State directory locked by pid {owner.get('pid')}: {self.lock_path}")
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
