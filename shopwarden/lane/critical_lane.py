"""
Critical Lane
=============

Serialized execution of mutating marketplace operations (price/stock writes).
At most one operation is in flight at any time.

    pending:  [high..., normal, normal, ...]   ->   running: <one task>

- ``high`` priority goes to the front of the pending list, ``normal`` to the
  back. Nothing ever preempts the running task.
- Dry-run tasks settle immediately and never invoke the operation.
- Each task's failure rejects only its own future. An operation that raises
  ``CancelledError`` cancels its own future and the lane moves on.
- ``drain()`` rejects everything pending; the running task still settles.
"""

import asyncio
import inspect
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from shopwarden.core.errors import QueueDrainedError
from shopwarden.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_INTER_TASK_DELAY = 0.05


class Priority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class QueueTask:
    label: str
    operation: Callable[[], Any]
    future: "asyncio.Future[Any]"
    priority: Priority = Priority.NORMAL
    dry_run: bool = False
    enqueued_at: float = field(default_factory=time.monotonic)


async def _call(operation: Callable[[], Any]) -> Any:
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


class CriticalLane:
    """Single-flight write queue."""

    def __init__(self, inter_task_delay: float = DEFAULT_INTER_TASK_DELAY):
        self.inter_task_delay = inter_task_delay
        self._pending: Deque[QueueTask] = deque()
        self._current: Optional[QueueTask] = None
        self._busy = False
        self._worker: Optional["asyncio.Task[None]"] = None
        self._stats: Dict[str, Any] = {"processed": 0, "errors": 0, "dry_runs": 0, "last_run": None}
        logger.info("CriticalLane initialized")

    # ── public API ─────────────────────────────────────────────

    def enqueue(
        self,
        label: str,
        operation: Callable[[], Any],
        priority: str = "normal",
        dry_run: bool = False,
    ) -> "asyncio.Future[Any]":
        """Queue an operation and return a future for its outcome.

        Must be called from inside a running event loop.
        """
        loop = asyncio.get_running_loop()
        task = QueueTask(
            label=label,
            operation=operation,
            future=loop.create_future(),
            priority=Priority(priority),
            dry_run=dry_run,
        )

        if task.dry_run:
            logger.info('[DRY RUN] Would execute: "%s"', label)
            self._stats["dry_runs"] += 1
            task.future.set_result({"dry_run": True, "label": label, "status": "skipped"})
            return task.future

        if task.priority is Priority.HIGH:
            self._pending.appendleft(task)
        else:
            self._pending.append(task)

        logger.info(
            'Operation queued: "%s"', label,
            extra={"context": {"position": len(self._pending), "priority": task.priority.value}},
        )
        self._process_next()
        return task.future

    def drain(self) -> int:
        """Reject every not-yet-started task. The running task is unaffected."""
        cancelled = 0
        while self._pending:
            task = self._pending.popleft()
            if not task.future.done():
                task.future.set_exception(QueueDrainedError())
            cancelled += 1
        logger.warning("Queue drained, %d operations cancelled", cancelled)
        return cancelled

    @property
    def queue_length(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return 1 if self._current is not None else 0

    @property
    def is_running(self) -> bool:
        return self._current is not None

    def get_status(self) -> Dict[str, Any]:
        return {
            "queue_length": self.queue_length,
            "is_running": self.is_running,
            "running_label": self._current.label if self._current else None,
            "pending_labels": [t.label for t in self._pending],
            "stats": dict(self._stats),
        }

    # ── worker ─────────────────────────────────────────────────

    def _process_next(self) -> None:
        # Claim synchronously so a later high-priority enqueue can't overtake it.
        if self._busy or not self._pending:
            return
        self._busy = True
        task = self._pending.popleft()
        self._current = task
        self._worker = asyncio.get_running_loop().create_task(self._run(task))

    async def _run(self, task: QueueTask) -> None:
        try:
            await self._execute(task)
            self._current = None
            if self._pending:
                await asyncio.sleep(self.inter_task_delay)
        finally:
            self._current = None
            self._busy = False
            self._process_next()

    async def _execute(self, task: QueueTask) -> None:
        logger.info(
            'Executing: "%s"', task.label,
            extra={"context": {
                "waited_ms": int((time.monotonic() - task.enqueued_at) * 1000),
                "remaining": len(self._pending),
            }},
        )
        try:
            result = await _call(task.operation)
        except asyncio.CancelledError:
            # BaseException since 3.8; settle the caller instead of stalling the lane.
            self._stats["errors"] += 1
            logger.error('Cancelled: "%s"', task.label)
            if not task.future.done():
                task.future.cancel()
            return
        except Exception as exc:
            self._stats["errors"] += 1
            logger.error('Failed: "%s": %s', task.label, exc)
            if not task.future.done():
                task.future.set_exception(exc)
            return

        self._stats["processed"] += 1
        self._stats["last_run"] = datetime.now(timezone.utc).isoformat()
        if not task.future.done():
            task.future.set_result(result)
