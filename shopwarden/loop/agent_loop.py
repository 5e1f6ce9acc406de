"""
Agent Loop
==========

Cron-driven heartbeat that runs registered modules (pricing sweeps, stock
sync, ...) through the safety core:

    autonomy gate closed?  -> skipped
    otherwise              -> self-healer (snapshot first) -> outcome event on the gate

A module failure never escapes the loop; it becomes ``{"error": message}``
and a negative outcome event in the module's category.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from shopwarden.autonomy.gate import SCORE_WEIGHTS, AutonomyGate
from shopwarden.core.logger import get_logger
from shopwarden.healing.healer import SelfHealer
from shopwarden.scheduling.scheduler import PersistentScheduler

logger = get_logger(__name__)

DEFAULT_CRON = "*/30 * * * *"
JOB_PREFIX = "agent-loop/"


@dataclass
class LoopModule:
    name: str
    fn: Callable[[], Any]
    cron_expression: str = DEFAULT_CRON
    enabled: bool = True
    success_event: str = "successful_price_update"
    failure_event: str = "listing_error"


class AgentLoop:
    """Schedules modules and gates every run on the autonomy score."""

    def __init__(self, autonomy: AutonomyGate, healer: SelfHealer, scheduler: PersistentScheduler):
        self.autonomy = autonomy
        self.healer = healer
        self.scheduler = scheduler
        self.modules: Dict[str, LoopModule] = {}
        self.running = False
        self.last_run: Dict[str, str] = {}
        self.results: Dict[str, Any] = {}
        logger.info("AgentLoop initialized")

    @staticmethod
    def job_name(name: str) -> str:
        return f"{JOB_PREFIX}{name}"

    def register(
        self,
        name: str,
        fn: Callable[[], Any],
        cron_expression: str = DEFAULT_CRON,
        enabled: bool = True,
        success_event: str = "successful_price_update",
        failure_event: str = "listing_error",
    ) -> LoopModule:
        for kind in (success_event, failure_event):
            if kind not in SCORE_WEIGHTS:
                raise ValueError(f"Unknown outcome event kind: {kind}")

        module = LoopModule(name, fn, cron_expression, enabled, success_event, failure_event)
        self.modules[name] = module
        if self.running:
            if enabled:
                self._schedule(module)
            elif self.scheduler.has_job(self.job_name(name)):
                self.scheduler.stop_job(self.job_name(name))
        logger.info(
            'AgentLoop: registered "%s" (%s, %s)',
            name, cron_expression, "enabled" if enabled else "disabled",
        )
        return module

    # ── lifecycle ──────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            logger.warning("AgentLoop already running")
            return
        scheduled = 0
        for module in self.modules.values():
            if module.enabled:
                self._schedule(module)
                scheduled += 1
        self.running = True
        logger.info("AgentLoop STARTED: %d modules active", scheduled)

    def stop(self) -> None:
        for name in self.modules:
            if self.scheduler.has_job(self.job_name(name)):
                self.scheduler.stop_job(self.job_name(name))
        self.running = False
        logger.info("AgentLoop STOPPED")

    def set_enabled(self, name: str, enabled: bool) -> bool:
        module = self.modules.get(name)
        if module is None:
            logger.warning('AgentLoop: module "%s" not found', name)
            return False
        module.enabled = enabled
        if self.running:
            if enabled:
                self._schedule(module)
            elif self.scheduler.has_job(self.job_name(name)):
                self.scheduler.stop_job(self.job_name(name))
        logger.info('AgentLoop: "%s" %s', name, "enabled" if enabled else "disabled")
        return True

    def _schedule(self, module: LoopModule) -> None:
        name = module.name

        async def _tick() -> None:
            await self._execute_module(name)

        self.scheduler.add_job(
            self.job_name(name),
            module.cron_expression,
            _tick,
            message=f"Agent loop module {name}",
        )

    # ── execution ──────────────────────────────────────────────

    async def trigger(self, name: str) -> Dict[str, Any]:
        """Run one module now, regardless of its schedule."""
        if name not in self.modules:
            return {"error": f'Module "{name}" not found'}
        return await self._execute_module(name)

    async def run_full_cycle(self) -> Dict[str, Any]:
        """Run every enabled module once, in registration order."""
        logger.info("Full cycle triggered manually")
        results: Dict[str, Any] = {}
        for name, module in list(self.modules.items()):
            if module.enabled:
                results[name] = await self._execute_module(name)
        return results

    async def _execute_module(self, name: str) -> Optional[Any]:
        module = self.modules.get(name)
        if module is None:
            return None

        if not self.autonomy.is_autonomous():
            logger.warning(
                'AgentLoop: "%s" skipped, autonomous mode disabled (score: %s)',
                name, self.autonomy.net_score,
            )
            return {"skipped": True, "reason": "Autonomous mode disabled"}

        logger.info('AgentLoop: executing "%s"', name)
        started = time.monotonic()
        try:
            result = await self.healer.with_healing(
                self.job_name(name),
                module.fn,
                snapshot_name=f"agent-loop-{name}",
                snapshot_state={"module": name, "timestamp": datetime.now(timezone.utc).isoformat()},
            )
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.autonomy.record(module.failure_event, f"{name} failed: {exc}", name)
            logger.error('AgentLoop: "%s" failed after %dms: %s', name, duration_ms, exc)
            return {"error": str(exc)}

        duration_ms = int((time.monotonic() - started) * 1000)
        self.last_run[name] = datetime.now(timezone.utc).isoformat()
        self.results[name] = result
        self.autonomy.record(module.success_event, f"{name} succeeded ({duration_ms}ms)", name)
        logger.info('AgentLoop: "%s" completed in %dms', name, duration_ms)
        return result

    def get_status(self) -> Dict[str, Any]:
        modules = {
            name: {
                "enabled": module.enabled,
                "cron_expression": module.cron_expression,
                "last_run": self.last_run.get(name),
                "last_result": "OK" if name in self.results else None,
            }
            for name, module in self.modules.items()
        }
        return {
            "running": self.running,
            "autonomous": self.autonomy.is_autonomous(),
            "net_score": self.autonomy.net_score,
            "active_modules": sum(1 for m in self.modules.values() if m.enabled),
            "total_modules": len(self.modules),
            "modules": modules,
        }
