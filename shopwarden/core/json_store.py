"""Atomic JSON document files for persisted state."""

import json
import os
import threading
from pathlib import Path
from typing import Any, Union

from shopwarden.core.logger import get_logger

logger = get_logger(__name__)


class JsonDocument:
    """A single JSON document on disk, written with temp-file-then-rename.

    Readers never observe a partially written file. There is no cross-process
    locking here; see ``shopwarden.core.state_lock`` for that.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, default: Any = None) -> Any:
        """Return the parsed document, or ``default`` when missing or corrupt."""
        with self._lock:
            if not self.exists():
                return default
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Could not read %s, using defaults: %s", self.path.name, exc)
                return default

    def save(self, data: Any) -> bool:
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                os.replace(tmp, self.path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to persist %s: %s", self.path, exc)
            try:
                tmp.unlink()
            except OSError:
                pass
            return False

    def delete(self) -> None:
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
