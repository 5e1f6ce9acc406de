"""
Snapshot store
==============

Named captures of state taken before a risky operation, one JSON document per
name. Saving the same name again overwrites the previous capture. Restoring is
read-only: the caller re-applies the returned state.

Usage:
    store = SnapshotStore(Path("~/.shopwarden/snapshots"), max_snapshots=50)
    store.save("pricing-run", {"869000": 105})
    store.rollback("pricing-run")       # -> {"869000": 105}
    store.latest()                      # newest Snapshot by timestamp
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shopwarden.core.json_store import JsonDocument
from shopwarden.core.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class Snapshot:
    name: str
    timestamp: str
    state: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "timestamp": self.timestamp, "state": self.state}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            name=str(data["name"]),
            timestamp=str(data["timestamp"]),
            state=data.get("state"),
        )


def snapshot_filename(name: str) -> str:
    """Map a snapshot name to a safe file name (``agent-loop/x`` -> ``agent-loop_x.json``)."""
    safe = _UNSAFE_CHARS.sub("_", name).strip("._") or "snapshot"
    return f"{safe}.json"


class SnapshotStore:
    """Directory of snapshot documents with keep-newest-N retention."""

    def __init__(self, snapshot_dir: Union[str, Path], max_snapshots: int = 50):
        self.snapshot_dir = Path(snapshot_dir)
        self.max_snapshots = max_snapshots

    def _doc(self, name: str) -> JsonDocument:
        return JsonDocument(self.snapshot_dir / snapshot_filename(name))

    def save(self, name: str, state: Any) -> Snapshot:
        snapshot = Snapshot(
            name=name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            state=state,
        )
        self._doc(name).save(snapshot.to_dict())
        logger.info("Snapshot saved: %s", name)
        if self.max_snapshots > 0:
            self._prune()
        return snapshot

    def load(self, name: str) -> Optional[Snapshot]:
        data = self._doc(name).load()
        if not isinstance(data, dict) or "name" not in data:
            return None
        return Snapshot.from_dict(data)

    def list(self) -> List[Snapshot]:
        """All readable snapshots, newest first."""
        if not self.snapshot_dir.exists():
            return []
        snapshots = []
        for path in self.snapshot_dir.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    snapshots.append(Snapshot.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable snapshot %s: %s", path.name, exc)
        snapshots.sort(key=lambda s: s.timestamp, reverse=True)
        return snapshots

    def latest(self) -> Optional[Snapshot]:
        snapshots = self.list()
        return snapshots[0] if snapshots else None

    def rollback(self, name: str) -> Optional[Any]:
        """Return the stored state for ``name``; None when no such snapshot exists."""
        snapshot = self.load(name)
        if snapshot is None:
            logger.warning('Rollback failed: snapshot "%s" not found', name)
            return None
        logger.info('ROLLBACK: restored "%s" snapshot from %s', name, snapshot.timestamp)
        return snapshot.state

    def delete(self, name: str) -> None:
        self._doc(name).delete()

    def _prune(self) -> None:
        """Keep only the N most recent snapshots."""
        for old in self.list()[self.max_snapshots:]:
            self.delete(old.name)
            logger.info("Pruned old snapshot: %s", old.name)
