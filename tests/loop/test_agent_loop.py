"""Tests for the gated, self-healing agent loop."""

import pytest

from shopwarden.autonomy.gate import AutonomyGate
from shopwarden.core.snapshots import SnapshotStore
from shopwarden.healing.healer import SelfHealer
from shopwarden.loop.agent_loop import AgentLoop
from shopwarden.scheduling.scheduler import PersistentScheduler


async def _no_sleep(seconds):
    return None


@pytest.fixture()
def loop(tmp_path):
    """Fresh AgentLoop with all state in tmp."""
    gate = AutonomyGate(tmp_path / "memory" / "autonomy.json")
    healer = SelfHealer(SnapshotStore(tmp_path / "snapshots"), tmp_path / "memory" / "error-log.json", sleep=_no_sleep)
    scheduler = PersistentScheduler(tmp_path / "cron" / "jobs.json")
    return AgentLoop(gate, healer, scheduler)


class _Module:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"updated": 3}
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class TestScheduling:
    def test_start_schedules_enabled_modules(self, loop):
        loop.register("pricing", _Module(), "*/10 * * * *")
        loop.register("oracle", _Module(), enabled=False)
        loop.start()
        assert loop.running is True
        assert loop.scheduler.has_job("agent-loop/pricing")
        assert not loop.scheduler.has_job("agent-loop/oracle")
        names = [r.name for r in loop.scheduler.get_persisted_jobs()]
        assert names == ["agent-loop/pricing"]

    def test_start_twice_is_noop(self, loop):
        loop.register("pricing", _Module())
        loop.start()
        loop.start()
        assert len(loop.scheduler.list_jobs()) == 1

    def test_stop_removes_jobs(self, loop):
        loop.register("pricing", _Module())
        loop.start()
        loop.stop()
        assert loop.running is False
        assert loop.scheduler.list_jobs() == []
        assert loop.scheduler.get_persisted_jobs() == []

    def test_set_enabled_while_running(self, loop):
        loop.register("pricing", _Module())
        loop.start()
        assert loop.set_enabled("pricing", False) is True
        assert not loop.scheduler.has_job("agent-loop/pricing")
        loop.set_enabled("pricing", True)
        assert loop.scheduler.has_job("agent-loop/pricing")
        assert loop.set_enabled("ghost", True) is False

    def test_register_after_start_schedules(self, loop):
        loop.start()
        loop.register("late", _Module())
        assert loop.scheduler.has_job("agent-loop/late")

    def test_reregister_disabled_unschedules(self, loop):
        loop.register("pricing", _Module())
        loop.start()
        loop.register("pricing", _Module(), enabled=False)
        assert not loop.scheduler.has_job("agent-loop/pricing")
        assert loop.scheduler.get_persisted_jobs() == []
        assert loop.get_status()["active_modules"] == 0

    def test_unknown_outcome_kind_rejected(self, loop):
        with pytest.raises(ValueError):
            loop.register("pricing", _Module(), success_event="great_success")

    def test_invalid_cron_surfaces_on_start(self, loop):
        loop.register("pricing", _Module(), "whenever")
        with pytest.raises(ValueError):
            loop.start()


class TestExecution:
    @pytest.mark.asyncio
    async def test_success_records_positive_event(self, loop):
        module = _Module()
        loop.register("pricing", module)
        result = await loop.trigger("pricing")
        assert result == {"updated": 3}
        assert module.calls == 1
        assert loop.autonomy.get_category_scores() == {"pricing": 1}
        assert loop.get_status()["modules"]["pricing"]["last_result"] == "OK"
        assert loop.get_status()["modules"]["pricing"]["last_run"] is not None

    @pytest.mark.asyncio
    async def test_snapshot_taken_before_run(self, loop):
        loop.register("pricing", _Module())
        await loop.trigger("pricing")
        snapshot = loop.healer.load_snapshot("agent-loop-pricing")
        assert snapshot.state["module"] == "pricing"
        assert "timestamp" in snapshot.state

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, loop):
        loop.register("stock", _Module(error=RuntimeError("warehouse offline")))
        result = await loop.trigger("stock")
        assert result == {"error": "warehouse offline"}
        assert loop.autonomy.get_category_scores() == {"stock": -2}
        assert loop.healer.get_recent_errors()[-1]["module"] == "agent-loop/stock"

    @pytest.mark.asyncio
    async def test_custom_outcome_events(self, loop):
        loop.register(
            "stock",
            _Module(error=RuntimeError("oversold")),
            success_event="successful_stock_update",
            failure_event="stock_error",
        )
        await loop.trigger("stock")
        assert loop.autonomy.net_score == -5

    @pytest.mark.asyncio
    async def test_closed_gate_skips(self, loop):
        module = _Module()
        loop.register("pricing", module)
        loop.autonomy.set_autonomous_mode(False)
        result = await loop.trigger("pricing")
        assert result == {"skipped": True, "reason": "Autonomous mode disabled"}
        assert module.calls == 0
        assert loop.autonomy.get_recent_events() == []

    @pytest.mark.asyncio
    async def test_repeated_failures_close_the_gate(self, loop):
        module = _Module(error=RuntimeError("broken"))
        loop.register("pricing", module)
        for _ in range(6):
            await loop.trigger("pricing")
        assert loop.autonomy.net_score == -12
        assert module.calls == 6
        assert (await loop.trigger("pricing"))["skipped"] is True
        assert module.calls == 6

    @pytest.mark.asyncio
    async def test_trigger_unknown(self, loop):
        assert await loop.trigger("ghost") == {"error": 'Module "ghost" not found'}

    @pytest.mark.asyncio
    async def test_full_cycle_runs_enabled_only(self, loop):
        a, b = _Module(), _Module()
        loop.register("a", a)
        loop.register("b", b, enabled=False)
        results = await loop.run_full_cycle()
        assert list(results) == ["a"]
        assert (a.calls, b.calls) == (1, 0)

    @pytest.mark.asyncio
    async def test_scheduled_tick_runs_module(self, loop):
        module = _Module()
        loop.register("pricing", module)
        loop.start()
        await loop.scheduler.run_now("agent-loop/pricing")
        assert module.calls == 1


class TestStatus:
    def test_status_counts(self, loop):
        loop.register("a", _Module())
        loop.register("b", _Module(), enabled=False)
        status = loop.get_status()
        assert status["running"] is False
        assert status["autonomous"] is True
        assert status["net_score"] == 0
        assert status["active_modules"] == 1
        assert status["total_modules"] == 2
        assert status["modules"]["b"]["cron_expression"] == "*/30 * * * *"
