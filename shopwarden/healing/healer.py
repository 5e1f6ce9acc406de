"""
Self-Healer
===========

Wraps operations that talk to the outside world. When one fails the healer
classifies the failure, applies a bounded remediation and, when nothing can be
done automatically, escalates to a human.

    failure -> classify -> remedy
                            retry / retry_delay / backoff / refresh_token  -> bounded retry loop
                            rollback                                       -> newest snapshot state
                            inspect                                        -> hint, never resent
                            (unknown)                                      -> support ticket

Usage:
    healer = SelfHealer(snapshots, error_log_path, escalations)
    result = await healer.with_healing("pricing", lambda: adapter.update_price(sku, 105))
"""

import asyncio
import inspect
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from shopwarden.core.config import HealerConfig
from shopwarden.core.errors import FailureKind
from shopwarden.core.escalation import EscalationSink
from shopwarden.core.json_store import JsonDocument
from shopwarden.core.logger import get_logger
from shopwarden.core.snapshots import Snapshot, SnapshotStore

logger = get_logger(__name__)

Operation = Callable[[], Any]
Sleep = Callable[[float], Awaitable[Any]]


class HealStrategy(str, Enum):
    RETRY = "retry"
    RETRY_DELAY = "retry_delay"
    BACKOFF = "backoff"
    REFRESH_TOKEN = "refresh_token"
    ROLLBACK = "rollback"
    INSPECT = "inspect"


@dataclass(frozen=True)
class Remedy:
    strategy: HealStrategy
    description: str


# Anything missing from this table is escalated.
REMEDIES: Dict[FailureKind, Remedy] = {
    FailureKind.TIMEOUT: Remedy(HealStrategy.RETRY, "Timeout, retrying"),
    FailureKind.CONNECTION_RESET: Remedy(HealStrategy.RETRY, "Connection reset, retrying"),
    FailureKind.CONNECTION_REFUSED: Remedy(HealStrategy.RETRY_DELAY, "Connection refused, delayed retry"),
    FailureKind.BAD_REQUEST: Remedy(HealStrategy.INSPECT, "Bad request, check the request parameters"),
    FailureKind.UNAUTHORIZED: Remedy(HealStrategy.REFRESH_TOKEN, "Auth failure, refreshing token"),
    FailureKind.FORBIDDEN: Remedy(HealStrategy.REFRESH_TOKEN, "Permission denied, refreshing token"),
    FailureKind.RATE_LIMITED: Remedy(HealStrategy.BACKOFF, "Rate limited, backing off"),
    FailureKind.SERVER_ERROR: Remedy(HealStrategy.RETRY_DELAY, "Server error, delayed retry"),
    FailureKind.SERVICE_UNAVAILABLE: Remedy(HealStrategy.RETRY_DELAY, "Service unavailable, delayed retry"),
    FailureKind.MALFORMED_DATA: Remedy(HealStrategy.ROLLBACK, "Malformed response data, rolling back"),
}

_TYPE_KINDS = (
    (json.JSONDecodeError, FailureKind.MALFORMED_DATA),
    (ConnectionResetError, FailureKind.CONNECTION_RESET),
    (ConnectionRefusedError, FailureKind.CONNECTION_REFUSED),
    (TimeoutError, FailureKind.TIMEOUT),
    (asyncio.TimeoutError, FailureKind.TIMEOUT),
)

_MESSAGE_PATTERNS = (
    (("ETIMEDOUT", "TIMEOUT", "TIMED OUT"), FailureKind.TIMEOUT),
    (("ECONNRESET", "CONNECTION RESET"), FailureKind.CONNECTION_RESET),
    (("ECONNREFUSED", "CONNECTION REFUSED"), FailureKind.CONNECTION_REFUSED),
    (("SYNTAXERROR", "UNEXPECTED TOKEN", "MALFORMED", "EXPECTING VALUE"), FailureKind.MALFORMED_DATA),
    (("429", "RATE LIMIT", "TOO MANY REQUESTS"), FailureKind.RATE_LIMITED),
)


def _status_of(error: BaseException) -> Any:
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if value is not None:
            return value
    response = getattr(error, "response", None)
    if response is not None:
        return getattr(response, "status_code", None) or getattr(response, "status", None)
    return None


def classify(error: BaseException) -> FailureKind:
    """Classify a failure: typed kind, status code, error code/type, then message."""
    kind = getattr(error, "kind", None)
    if isinstance(kind, FailureKind):
        return kind

    by_status = FailureKind.from_status(_status_of(error))
    if by_status is not None:
        return by_status

    by_code = FailureKind.from_code(getattr(error, "code", None))
    if by_code is not None:
        return by_code
    for exc_type, type_kind in _TYPE_KINDS:
        if isinstance(error, exc_type):
            return type_kind

    message = str(error).upper()
    for needles, pattern_kind in _MESSAGE_PATTERNS:
        if any(needle in message for needle in needles):
            return pattern_kind
    return FailureKind.UNKNOWN


@dataclass
class HealResult:
    healed: bool
    action: str
    message: str = ""
    attempt: Optional[int] = None
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"healed": self.healed, "action": self.action}
        if self.message:
            data["message"] = self.message
        if self.attempt is not None:
            data["attempt"] = self.attempt
        if self.result is not None:
            data["result"] = self.result
        return data


@dataclass
class ErrorRecord:
    module: str
    code: str
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {"module": self.module, "code": self.code, "message": self.message, "timestamp": self.timestamp}


async def _call(operation: Operation) -> Any:
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


class SelfHealer:
    """Failure classification, bounded remediation, snapshots and escalation."""

    def __init__(
        self,
        snapshots: SnapshotStore,
        error_log_path: Union[str, Path],
        escalations: Optional[EscalationSink] = None,
        config: Optional[HealerConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.snapshots = snapshots
        self.escalations = escalations or EscalationSink()
        self.config = config or HealerConfig()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._error_doc = JsonDocument(error_log_path)
        loaded = self._error_doc.load(default=[])
        self._errors: List[Dict[str, Any]] = loaded if isinstance(loaded, list) else []
        logger.info("SelfHealer initialized: %d known errors", len(self._errors))

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def on_escalation(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a handler for support tickets."""
        self.escalations.subscribe(callback)

    # ── snapshots ──────────────────────────────────────────────

    def save_snapshot(self, name: str, state: Any) -> Snapshot:
        return self.snapshots.save(name, state)

    def load_snapshot(self, name: str) -> Optional[Snapshot]:
        return self.snapshots.load(name)

    def list_snapshots(self) -> List[Snapshot]:
        return self.snapshots.list()

    def rollback(self, name: str) -> Optional[Any]:
        return self.snapshots.rollback(name)

    # ── healing ────────────────────────────────────────────────

    async def heal(
        self,
        error: BaseException,
        module: str,
        retry_operation: Optional[Operation] = None,
    ) -> HealResult:
        """Attempt to remediate ``error`` raised by ``module``."""
        kind = classify(error)
        self._log_error(error, module, kind)

        remedy = REMEDIES.get(kind)
        if remedy is None:
            self._escalate(error, module, kind)
            return HealResult(healed=False, action="escalated", message="Manual intervention required")

        logger.info("SelfHealer: %s", remedy.description, extra={"context": {"module": module, "code": kind.value}})
        cfg = self.config
        strategy = remedy.strategy

        if strategy is HealStrategy.RETRY:
            return await self._retry(retry_operation, cfg.retry_delay)
        if strategy is HealStrategy.RETRY_DELAY:
            return await self._retry(retry_operation, cfg.retry_delay_long)
        if strategy is HealStrategy.BACKOFF:
            return await self._retry(retry_operation, cfg.backoff_delay)
        if strategy is HealStrategy.REFRESH_TOKEN:
            logger.warning("Credentials rejected in %s, retrying after token refresh", module)
            return await self._retry(retry_operation, cfg.token_refresh_delay)
        if strategy is HealStrategy.ROLLBACK:
            return self._rollback_latest()
        return HealResult(healed=False, action="needs_inspection", message=remedy.description)

    async def with_healing(
        self,
        module: str,
        operation: Operation,
        snapshot_name: Optional[str] = None,
        snapshot_state: Any = None,
    ) -> Any:
        """Run ``operation``; heal on failure, re-raise the original error if that fails."""
        if snapshot_name and snapshot_state is not None:
            self.save_snapshot(snapshot_name, snapshot_state)

        try:
            return await _call(operation)
        except Exception as error:
            logger.warning("Error caught by SelfHealer in %s: %s", module, error)
            outcome = await self.heal(error, module, operation)
            if outcome.healed:
                logger.info("%s: recovered (%s)", module, outcome.message or outcome.action)
                return outcome.result
            logger.error("%s: could not recover (%s)", module, outcome.message or outcome.action)
            raise

    async def _retry(self, operation: Optional[Operation], base_delay: float) -> HealResult:
        if operation is None:
            return HealResult(healed=False, action="no_retry_fn", message="No retry operation supplied")

        for attempt in range(1, self.max_retries + 1):
            await self._sleep(base_delay * attempt)
            try:
                result = await _call(operation)
            except Exception as exc:
                logger.info("Retry %d/%d failed: %s", attempt, self.max_retries, exc)
                continue
            return HealResult(healed=True, action="retry", attempt=attempt, result=result)

        return HealResult(
            healed=False,
            action="retry_exhausted",
            message=f"{self.max_retries} attempts failed",
        )

    def _rollback_latest(self) -> HealResult:
        latest = self.snapshots.latest()
        if latest is None:
            return HealResult(healed=False, action="rollback_failed", message="No snapshot found")
        restored = self.snapshots.rollback(latest.name)
        if restored is None:
            return HealResult(healed=False, action="rollback_failed", message="Rollback failed")
        return HealResult(
            healed=True,
            action="rollback",
            message=f"Rolled back to {latest.name}",
            result=restored,
        )

    # ── error log + escalation ─────────────────────────────────

    def _log_error(self, error: BaseException, module: str, kind: FailureKind) -> None:
        record = ErrorRecord(module=module, code=kind.value, message=str(error) or type(error).__name__)
        with self._lock:
            self._errors.append(record.to_dict())
            limit = self.config.max_error_records
            if len(self._errors) > limit:
                del self._errors[: len(self._errors) - limit]
            snapshot = list(self._errors)
        self._error_doc.save(snapshot)

    def _escalate(self, error: BaseException, module: str, kind: FailureKind) -> Dict[str, Any]:
        ticket = {
            "type": "SUPPORT_TICKET",
            "severity": "critical",
            "module": module,
            "error_code": kind.value,
            "message": str(error) or type(error).__name__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "note": f"Critical failure in {module}. Automatic remediation unavailable, intervention required.",
        }
        logger.error("SUPPORT TICKET: %s (%s)", module, kind.value, extra={"context": ticket})
        self.escalations.emit(ticket)
        return ticket

    # ── health ─────────────────────────────────────────────────

    def get_recent_errors(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._errors[-limit:])

    def get_status(self) -> Dict[str, Any]:
        recent = self.get_recent_errors(20)
        fixable_codes = {kind.value for kind in REMEDIES}
        with self._lock:
            total = len(self._errors)
        return {
            "total_errors": total,
            "recent_errors": len(recent),
            "snapshots": len(self.snapshots.list()),
            "auto_fixable": sum(1 for e in recent if e.get("code") in fixable_codes),
            "escalated": sum(1 for e in recent if e.get("code") not in fixable_codes),
        }
