"""
Persistent Scheduler
====================

Cron-style recurring jobs on top of APScheduler. Job *definitions*
(name, cron expression, message) are written to disk after every change so
they survive a restart; the executable task is never persisted and must be
re-registered by the owning process at startup:

    scheduler = PersistentScheduler(jobs_path)
    scheduler.restore_jobs(lambda record: TASKS.get(record.name))
    scheduler.start()

A firing logs start/success/failure. There is no automatic retry; wrap the
task with the self-healer if it needs one.
"""

import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from shopwarden.core.json_store import JsonDocument
from shopwarden.core.logger import get_logger

logger = get_logger(__name__)

Task = Callable[[], Any]


@dataclass
class CronJobRecord:
    name: str
    cron_expression: str
    message: str = ""
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cron_expression": self.cron_expression,
            "message": self.message,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CronJobRecord":
        return cls(
            name=str(data["name"]),
            cron_expression=str(data["cron_expression"]),
            message=str(data.get("message") or ""),
            created_at=str(data.get("created_at") or datetime.now(timezone.utc).isoformat()),
        )


class PersistentScheduler:
    """Named cron jobs whose definitions are persisted to a JSON document."""

    def __init__(
        self,
        jobs_path: Union[str, Path],
        timezone: str = "Europe/Istanbul",
        misfire_grace_seconds: int = 60,
        backend: Optional[BaseScheduler] = None,
    ):
        self.timezone = timezone
        self.misfire_grace_seconds = misfire_grace_seconds
        self._backend = backend or AsyncIOScheduler(timezone=timezone)
        self._doc = JsonDocument(jobs_path)
        self._tasks: Dict[str, Task] = {}
        self._definitions: Dict[str, CronJobRecord] = self._load_definitions()
        logger.info("Scheduler initialized: %d persisted jobs", len(self._definitions))

    def _load_definitions(self) -> Dict[str, CronJobRecord]:
        raw = self._doc.load(default=[])
        if not isinstance(raw, list):
            logger.warning("Cron jobs file is corrupt, starting fresh")
            return {}
        definitions: Dict[str, CronJobRecord] = {}
        for item in raw:
            try:
                record = CronJobRecord.from_dict(item)
            except (KeyError, TypeError):
                logger.warning("Skipping malformed job definition: %r", item)
                continue
            definitions[record.name] = record
        return definitions

    def _persist(self) -> None:
        self._doc.save([record.to_dict() for record in self._definitions.values()])

    # ── lifecycle ──────────────────────────────────────────────

    def start(self) -> None:
        """Start firing timers. Call from inside the running event loop."""
        if not self._backend.running:
            self._backend.start()
            logger.info("Scheduler started: %d jobs", len(self._tasks))

    def shutdown(self) -> None:
        if self._backend.running:
            self._backend.shutdown(wait=False)
            logger.info("Scheduler shut down")

    # ── jobs ───────────────────────────────────────────────────

    def add_job(
        self,
        name: str,
        cron_expression: str,
        task: Task,
        start_immediately: bool = True,
        message: str = "",
    ) -> CronJobRecord:
        """Register a job, replacing any job of the same name.

        Raises:
            ValueError: ``cron_expression`` is not a valid 5-field crontab.
        """
        trigger = CronTrigger.from_crontab(cron_expression, timezone=self.timezone)

        if name in self._tasks:
            logger.warning('Job "%s" already exists, replacing it', name)
            self.stop_job(name, persist=False)

        job_kwargs: Dict[str, Any] = {
            "id": name,
            "name": name,
            "replace_existing": True,
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": self.misfire_grace_seconds,
        }
        if not start_immediately:
            job_kwargs["next_run_time"] = None  # registered paused
        self._backend.add_job(self._make_runner(name, task), trigger, **job_kwargs)
        self._tasks[name] = task

        previous = self._definitions.get(name)
        record = CronJobRecord(name=name, cron_expression=cron_expression, message=message)
        if previous is not None:
            record.created_at = previous.created_at
        self._definitions[name] = record
        self._persist()
        logger.info('Job "%s" added: "%s"', name, cron_expression, extra={"context": {"message": message}})
        return record

    def start_job(self, name: str) -> bool:
        """Resume a job that was added with ``start_immediately=False``."""
        if name not in self._tasks:
            logger.warning('Job "%s" not found', name)
            return False
        self._backend.resume_job(name)
        return True

    def stop_job(self, name: str, persist: bool = True) -> bool:
        """Cancel future firings and forget the job. An in-flight firing finishes."""
        known = name in self._tasks or name in self._definitions
        if name in self._tasks:
            try:
                self._backend.remove_job(name)
            except JobLookupError:
                pass
            del self._tasks[name]
        if persist and name in self._definitions:
            del self._definitions[name]
            self._persist()

        if known:
            logger.info('Job "%s" stopped', name)
        else:
            logger.warning('Job "%s" not found', name)
        return known

    def stop_all_jobs(self) -> None:
        for name in list(self._tasks):
            self.stop_job(name, persist=False)
        self._definitions.clear()
        self._persist()

    async def run_now(self, name: str) -> None:
        """Fire a registered job immediately, outside its schedule."""
        if name not in self._tasks:
            raise KeyError(name)
        await self._make_runner(name, self._tasks[name])()

    def _make_runner(self, name: str, task: Task) -> Callable[[], Any]:
        async def _fire() -> None:
            logger.info("Running scheduled job: %s", name)
            try:
                result = task()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error('Job "%s" failed: %s', name, exc, exc_info=True)
                return
            logger.info('Job "%s" completed', name)

        return _fire

    # ── persistence / inspection ───────────────────────────────

    def get_persisted_jobs(self) -> List[CronJobRecord]:
        """Job definitions as stored on disk (live or awaiting re-registration)."""
        return list(self._definitions.values())

    def restore_jobs(self, factory: Callable[[CronJobRecord], Optional[Task]]) -> int:
        """Re-register persisted definitions that have no live task yet.

        ``factory`` maps a record to its executable task; returning None leaves
        the definition on disk untouched.
        """
        restored = 0
        for record in list(self._definitions.values()):
            if record.name in self._tasks:
                continue
            task = factory(record)
            if task is None:
                logger.warning('No task available for persisted job "%s"', record.name)
                continue
            self.add_job(record.name, record.cron_expression, task, True, record.message)
            restored += 1
        return restored

    def has_job(self, name: str) -> bool:
        return name in self._tasks

    def list_jobs(self) -> List[Dict[str, Any]]:
        jobs = []
        for name in self._tasks:
            record = self._definitions.get(name)
            job = self._backend.get_job(name)
            next_run = getattr(job, "next_run_time", None) if job is not None else None
            jobs.append({
                "name": name,
                "cron_expression": record.cron_expression if record else None,
                "message": record.message if record else "",
                "created_at": record.created_at if record else None,
                "paused": job is not None and next_run is None and self._backend.running,
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return jobs
