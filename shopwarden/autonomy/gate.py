"""
Autonomy Gate
=============

Weighted outcome scoring that decides whether unattended execution is allowed.

Every automated action reports its outcome as a named event. Each event kind
carries a fixed weight; the running net score opens or closes the gate:

    net_score >= threshold  ->  autonomous
    net_score <  threshold  ->  manual approval required

A manual override (True/False) always wins over the score until cleared.
State is persisted atomically after every mutation.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shopwarden.core.json_store import JsonDocument
from shopwarden.core.logger import get_logger

logger = get_logger(__name__)

# ============================================
# Weighted outcome table (closed)
# ============================================

SCORE_WEIGHTS: Dict[str, int] = {
    # Positive outcomes
    "successful_price_update": 1,
    "successful_stock_update": 1,
    "good_prediction": 2,
    "user_approval": 3,
    "successful_auto_reply": 1,
    "sale_after_optimization": 2,
    # Negative outcomes
    "price_increase_rejected": -2,
    "stock_error": -5,
    "user_rejection": -3,
    "wrong_prediction": -1,
    "listing_error": -2,
    "kill_switch_triggered": -4,
    "escalated_customer": -2,
    # User defined
    "custom_positive": 1,
    "custom_negative": -1,
}

AUTONOMY_THRESHOLD = -10
MAX_EVENTS = 500


@dataclass
class ScoreEvent:
    kind: str
    weight: int
    context: str
    category: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "weight": self.weight,
            "context": self.context,
            "category": self.category,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreEvent":
        return cls(
            kind=str(data.get("kind", "")),
            weight=int(data.get("weight", 0)),
            context=str(data.get("context", "")),
            category=str(data.get("category", "general")),
            timestamp=str(data.get("timestamp", "")),
        )


def _empty_state() -> Dict[str, Any]:
    return {
        "net_score": 0,
        "events": [],
        "category_scores": {},
        "manual_override": None,  # None = score based, True/False = forced
    }


class AutonomyGate:
    """Outcome-scored permission for autonomous execution."""

    def __init__(
        self,
        state_path: Union[str, Path],
        threshold: int = AUTONOMY_THRESHOLD,
        max_events: int = MAX_EVENTS,
    ):
        self.threshold = threshold
        self.max_events = max_events
        self._doc = JsonDocument(state_path)
        self._lock = threading.RLock()
        self._state = self._load()
        logger.info(
            "AutonomyGate initialized: net_score=%s events=%d autonomous=%s",
            self._state["net_score"], len(self._state["events"]), self.is_autonomous(),
        )

    def _load(self) -> Dict[str, Any]:
        data = self._doc.load()
        state = _empty_state()
        if not isinstance(data, dict):
            return state
        try:
            state["net_score"] = int(data.get("net_score", 0))
            state["events"] = [ScoreEvent.from_dict(e).to_dict() for e in data.get("events", [])]
            state["category_scores"] = {
                str(k): int(v) for k, v in (data.get("category_scores") or {}).items()
            }
        except (TypeError, ValueError, AttributeError):
            logger.warning("Autonomy state is malformed, starting from a clean score")
            return _empty_state()
        override = data.get("manual_override")
        state["manual_override"] = override if isinstance(override, bool) else None
        return state

    def _save(self) -> None:
        self._doc.save(self._state)

    # ── scoring ────────────────────────────────────────────────

    def record(self, kind: str, context: str = "", category: str = "general") -> Optional[ScoreEvent]:
        """Record an outcome event.

        Unknown kinds are ignored with a warning; nothing is persisted.
        """
        weight = SCORE_WEIGHTS.get(kind)
        if weight is None:
            logger.warning("Unknown outcome event kind: %s", kind)
            return None

        event = ScoreEvent(
            kind=kind,
            weight=weight,
            context=context,
            category=category,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        with self._lock:
            was_open = self._score_allows()
            self._state["events"].append(event.to_dict())
            self._state["net_score"] += weight
            scores = self._state["category_scores"]
            scores[category] = scores.get(category, 0) + weight

            events = self._state["events"]
            if len(events) > self.max_events:
                del events[: len(events) - self.max_events]

            self._save()
            net_score = self._state["net_score"]
            crossed_down = was_open and not self._score_allows()

        if crossed_down:
            logger.warning(
                "AUTONOMOUS MODE DISABLED: net score %s fell below threshold %s, manual approval required",
                net_score, self.threshold,
            )
        logger.info(
            "Outcome %s (%+d) net_score=%s", kind, weight, net_score,
            extra={"context": {"category": category, "detail": context}},
        )
        return event

    def _score_allows(self) -> bool:
        return self._state["net_score"] >= self.threshold

    def is_autonomous(self) -> bool:
        """Manual override first, then the score threshold."""
        with self._lock:
            override = self._state["manual_override"]
            if override is not None:
                return bool(override)
            return self._score_allows()

    # ── administrative controls ────────────────────────────────

    def set_autonomous_mode(self, enabled: bool) -> None:
        with self._lock:
            self._state["manual_override"] = bool(enabled)
            self._save()
        logger.info("Autonomous mode manually set to: %s", bool(enabled))

    def clear_override(self) -> None:
        with self._lock:
            self._state["manual_override"] = None
            self._save()
        logger.info("Autonomous mode override cleared, score-based control active")

    def reset(self) -> None:
        """Wipe score, history and override."""
        with self._lock:
            self._state = _empty_state()
            self._save()
        logger.info("Autonomy gate reset")

    # ── inspection ─────────────────────────────────────────────

    @property
    def net_score(self) -> int:
        with self._lock:
            return self._state["net_score"]

    @property
    def manual_override(self) -> Optional[bool]:
        with self._lock:
            return self._state["manual_override"]

    def get_category_scores(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._state["category_scores"])

    def get_recent_events(self, limit: int = 20) -> List[ScoreEvent]:
        with self._lock:
            return [ScoreEvent.from_dict(e) for e in self._state["events"][-limit:]]

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "net_score": self._state["net_score"],
                "autonomous": self.is_autonomous(),
                "threshold": self.threshold,
                "override": self._state["manual_override"],
                "total_events": len(self._state["events"]),
                "category_scores": dict(self._state["category_scores"]),
            }
