"""
In-process escalation sink.

Unrecoverable failures and kill-switch trips are handed to humans through
registered callbacks (messaging bridges, pagers, dashboards). Delivery itself
lives in those callbacks; this module only fans out and keeps a short history.

Usage:
    sink = EscalationSink()
    sink.subscribe(lambda ticket: notify_ops(ticket))
    sink.escalate("kill_switch", {"barcode": "869..."})
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from shopwarden.core.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[Dict[str, Any]], None]


class EscalationSink:
    """Best-effort fan-out to escalation subscribers."""

    def __init__(self, max_recent: int = 200):
        self._lock = threading.Lock()
        self._subscribers: List[Handler] = []
        self._recent: List[Dict[str, Any]] = []
        self._max_recent = max_recent

    def subscribe(self, handler: Handler) -> None:
        with self._lock:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

    def emit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Deliver ``payload`` to every subscriber. Subscriber errors are swallowed."""
        with self._lock:
            self._recent.append(payload)
            if len(self._recent) > self._max_recent:
                del self._recent[: len(self._recent) - self._max_recent]
            handlers = list(self._subscribers)

        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:
                # One broken subscriber must not starve the others.
                logger.warning("Escalation subscriber %r failed: %s", handler, exc)
        return payload

    def escalate(self, reason: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Build a ``{reason, details, timestamp}`` payload and emit it."""
        return self.emit({
            "reason": reason,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent[-limit:])

    def clear(self) -> None:
        """Drop subscribers and history (for testing)."""
        with self._lock:
            self._subscribers.clear()
            self._recent.clear()
