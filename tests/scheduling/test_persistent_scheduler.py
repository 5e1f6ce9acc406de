"""Tests for the persistent cron scheduler."""

import json

import pytest

from shopwarden.scheduling.scheduler import CronJobRecord, PersistentScheduler


@pytest.fixture()
def jobs_path(tmp_path):
    return tmp_path / "cron" / "jobs.json"


@pytest.fixture()
def scheduler(jobs_path):
    return PersistentScheduler(jobs_path)


def _noop():
    return None


def _persisted(jobs_path):
    return json.loads(jobs_path.read_text(encoding="utf-8"))


class TestAddJob:
    def test_definition_persisted(self, scheduler, jobs_path):
        record = scheduler.add_job("stock-sync", "*/15 * * * *", _noop, message="sync stock")
        assert isinstance(record, CronJobRecord)
        assert scheduler.has_job("stock-sync")
        assert _persisted(jobs_path) == [record.to_dict()]

    @pytest.mark.parametrize("expr", ["not a cron", "* * * *", "61 * * * *"])
    def test_invalid_cron_rejected(self, scheduler, jobs_path, expr):
        with pytest.raises(ValueError):
            scheduler.add_job("bad", expr, _noop)
        assert not scheduler.has_job("bad")
        assert not jobs_path.exists()

    def test_same_name_replaces(self, scheduler, jobs_path):
        first = scheduler.add_job("report", "0 9 * * *", _noop)
        second = scheduler.add_job("report", "0 18 * * *", _noop)
        assert [j["name"] for j in scheduler.list_jobs()] == ["report"]
        stored = _persisted(jobs_path)
        assert len(stored) == 1
        assert stored[0]["cron_expression"] == "0 18 * * *"
        assert second.created_at == first.created_at

    def test_registered_paused(self, scheduler):
        scheduler.add_job("later", "0 * * * *", _noop, start_immediately=False)
        job = scheduler._backend.get_job("later")
        assert job is not None
        assert getattr(job, "next_run_time", "unset") is None


class TestStopJob:
    def test_stop_removes_definition(self, scheduler, jobs_path):
        scheduler.add_job("a", "0 * * * *", _noop)
        scheduler.add_job("b", "0 * * * *", _noop)
        assert scheduler.stop_job("a") is True
        assert not scheduler.has_job("a")
        assert [j["name"] for j in _persisted(jobs_path)] == ["b"]

    def test_stop_unknown(self, scheduler):
        assert scheduler.stop_job("ghost") is False

    def test_stop_all(self, scheduler, jobs_path):
        scheduler.add_job("a", "0 * * * *", _noop)
        scheduler.add_job("b", "0 * * * *", _noop)
        scheduler.stop_all_jobs()
        assert scheduler.list_jobs() == []
        assert _persisted(jobs_path) == []

    def test_start_unknown_job(self, scheduler):
        assert scheduler.start_job("ghost") is False


class TestRestartDurability:
    def test_definitions_reconstructed(self, jobs_path):
        first = PersistentScheduler(jobs_path)
        first.add_job("price-sweep", "*/30 * * * *", _noop, message="reprice catalog")

        second = PersistentScheduler(jobs_path)
        records = second.get_persisted_jobs()
        assert len(records) == 1
        assert records[0].name == "price-sweep"
        assert records[0].cron_expression == "*/30 * * * *"
        assert records[0].message == "reprice catalog"
        assert not second.has_job("price-sweep")

    def test_unregistered_definitions_survive_other_changes(self, jobs_path):
        first = PersistentScheduler(jobs_path)
        first.add_job("old-a", "0 1 * * *", _noop)
        first.add_job("old-b", "0 2 * * *", _noop)

        second = PersistentScheduler(jobs_path)
        second.add_job("new", "0 3 * * *", _noop)
        second.stop_job("old-a")
        assert sorted(j["name"] for j in _persisted(jobs_path)) == ["new", "old-b"]

    def test_restore_jobs(self, jobs_path):
        first = PersistentScheduler(jobs_path)
        first.add_job("known", "0 1 * * *", _noop, message="m")
        first.add_job("orphan", "0 2 * * *", _noop)

        second = PersistentScheduler(jobs_path)
        restored = second.restore_jobs(lambda record: _noop if record.name == "known" else None)
        assert restored == 1
        assert second.has_job("known")
        assert not second.has_job("orphan")
        assert {r.name for r in second.get_persisted_jobs()} == {"known", "orphan"}

    def test_corrupt_file_starts_fresh(self, jobs_path):
        jobs_path.parent.mkdir(parents=True)
        jobs_path.write_text('{"not": "a list"}', encoding="utf-8")
        assert PersistentScheduler(jobs_path).get_persisted_jobs() == []

    def test_malformed_entries_skipped(self, jobs_path):
        jobs_path.parent.mkdir(parents=True)
        jobs_path.write_text(
            json.dumps([{"name": "ok", "cron_expression": "0 * * * *"}, {"cron_expression": "x"}]),
            encoding="utf-8",
        )
        assert [r.name for r in PersistentScheduler(jobs_path).get_persisted_jobs()] == ["ok"]


class TestExecution:
    @pytest.mark.asyncio
    async def test_run_now_executes_async_task(self, scheduler):
        calls = []

        async def task():
            calls.append("ran")

        scheduler.add_job("t", "0 * * * *", task)
        await scheduler.run_now("t")
        assert calls == ["ran"]

    @pytest.mark.asyncio
    async def test_failing_task_does_not_escape(self, scheduler):
        def task():
            raise RuntimeError("adapter down")

        scheduler.add_job("t", "0 * * * *", task)
        await scheduler.run_now("t")

    @pytest.mark.asyncio
    async def test_run_now_unknown(self, scheduler):
        with pytest.raises(KeyError):
            await scheduler.run_now("ghost")

    @pytest.mark.asyncio
    async def test_pause_and_resume_while_running(self, scheduler):
        scheduler.add_job("later", "0 * * * *", _noop, start_immediately=False)
        scheduler.start()
        try:
            assert scheduler.list_jobs()[0]["paused"] is True
            assert scheduler.start_job("later") is True
            job = scheduler.list_jobs()[0]
            assert job["paused"] is False
            assert job["next_run_time"] is not None
        finally:
            scheduler.shutdown()
