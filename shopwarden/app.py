"""
Application wiring.

Every component is built once from a ``ShopwardenConfig`` and handed to its
dependents explicitly. Tests build their own ``AppState`` against a temporary
state directory instead of touching process-wide singletons.
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.base import BaseScheduler

from shopwarden.autonomy.gate import AutonomyGate
from shopwarden.core.config import ShopwardenConfig, get_config
from shopwarden.core.escalation import EscalationSink
from shopwarden.core.logger import get_logger
from shopwarden.core.snapshots import SnapshotStore
from shopwarden.core.state_lock import StateDirLock
from shopwarden.healing.healer import SelfHealer
from shopwarden.lane.critical_lane import CriticalLane
from shopwarden.loop.agent_loop import AgentLoop
from shopwarden.pricing.engine import KillSwitch, PricingEngine
from shopwarden.scheduling.scheduler import CronJobRecord, PersistentScheduler, Task

logger = get_logger(__name__)


@dataclass
class AppState:
    config: ShopwardenConfig
    escalations: EscalationSink
    autonomy: AutonomyGate
    lane: CriticalLane
    snapshots: SnapshotStore
    healer: SelfHealer
    scheduler: PersistentScheduler
    kill_switch: KillSwitch
    pricing: PricingEngine
    agent_loop: AgentLoop
    lock: StateDirLock

    def get_status(self) -> Dict[str, Any]:
        return {
            "state_dir": str(self.config.state_dir),
            "autonomy": self.autonomy.get_status(),
            "lane": self.lane.get_status(),
            "healer": self.healer.get_status(),
            "pricing": self.pricing.get_status(),
            "agent_loop": self.agent_loop.get_status(),
            "persisted_jobs": [record.to_dict() for record in self.scheduler.get_persisted_jobs()],
        }


def build_app_state(
    config: Optional[ShopwardenConfig] = None,
    scheduler_backend: Optional[BaseScheduler] = None,
) -> AppState:
    """Construct the full component graph. Nothing is started."""
    config = config or get_config()
    escalations = EscalationSink()
    autonomy = AutonomyGate(
        config.autonomy_file,
        threshold=config.autonomy.threshold,
        max_events=config.autonomy.max_events,
    )
    lane = CriticalLane(inter_task_delay=config.lane.inter_task_delay)
    snapshots = SnapshotStore(config.snapshot_dir, max_snapshots=config.snapshots.max_snapshots)
    healer = SelfHealer(snapshots, config.error_log_file, escalations=escalations, config=config.healer)
    scheduler = PersistentScheduler(
        config.jobs_file,
        timezone=config.scheduler.timezone,
        misfire_grace_seconds=config.scheduler.misfire_grace_seconds,
        backend=scheduler_backend,
    )
    kill_switch = KillSwitch(
        config.kill_switch_file if config.pricing.persist_kill_switch else None,
        escalations=escalations,
    )
    pricing = PricingEngine(
        lane,
        kill_switch=kill_switch,
        config=config.pricing,
        healer=healer,
        autonomy=autonomy,
    )
    agent_loop = AgentLoop(autonomy, healer, scheduler)
    lock = StateDirLock(config.lock_file)
    return AppState(
        config=config,
        escalations=escalations,
        autonomy=autonomy,
        lane=lane,
        snapshots=snapshots,
        healer=healer,
        scheduler=scheduler,
        kill_switch=kill_switch,
        pricing=pricing,
        agent_loop=agent_loop,
        lock=lock,
    )


async def run_forever(
    state: AppState,
    stop_event: Optional[asyncio.Event] = None,
    task_factory: Optional[Callable[[CronJobRecord], Optional[Task]]] = None,
) -> None:
    """Own the state directory and run the scheduler until ``stop_event`` is set.

    Modules registered on ``state.agent_loop`` are scheduled first. Other
    persisted job definitions are re-attached through ``task_factory``; any
    left without a task are logged and stay on disk.

    Raises:
        RuntimeError: another process already owns the state directory.
    """
    acquired, owner = state.lock.acquire(extra={"entrypoint": "shopwarden"})
    if not acquired:
        raise RuntimeError(
            f"State directory {state.config.state_dir} is owned by pid {owner.get('pid', 'unknown')}"
        )

    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    handled = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
            handled.append(signum)
        except (NotImplementedError, RuntimeError, ValueError):
            pass  # not supported off the main thread or on Windows

    try:
        state.agent_loop.start()
        if task_factory is not None:
            state.scheduler.restore_jobs(task_factory)
        orphaned = [r.name for r in state.scheduler.get_persisted_jobs() if not state.scheduler.has_job(r.name)]
        if orphaned:
            logger.warning("Persisted jobs without a task, not scheduled: %s", ", ".join(orphaned))
        state.scheduler.start()
        logger.info("shopwarden running", extra={"context": {"state_dir": str(state.config.state_dir)}})
        await stop.wait()
    finally:
        state.agent_loop.stop()
        state.scheduler.shutdown()
        drained = state.lane.drain()
        if drained:
            logger.warning("Shutdown cancelled %d pending writes", drained)
        for signum in handled:
            loop.remove_signal_handler(signum)
        state.lock.release()
        logger.info("shopwarden stopped")
