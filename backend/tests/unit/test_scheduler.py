"""
Unit tests for the periodic job scheduler
"""

import asyncio

import pytest

from acquirarr.workers.scheduler import PeriodicTask, Scheduler, build_default_scheduler


class TestPeriodicTask:

    @pytest.mark.asyncio
    async def test_run_records_result(self, session_factory):
        async def job(db):
            return {"synced": 3}

        task = PeriodicTask("download_sync", 5, job)
        assert await task.run_once(session_factory) == {"synced": 3}

        status = task.get_status()
        assert status["run_count"] == 1
        assert status["last_error"] is None
        assert status["last_run"] is not None

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, session_factory):
        release = asyncio.Event()
        calls = 0

        async def slow_job(db):
            nonlocal calls
            calls += 1
            await release.wait()
            return "done"

        task = PeriodicTask("rss_sync", 900, slow_job)
        first = asyncio.create_task(task.run_once(session_factory))
        await asyncio.sleep(0)

        assert task.is_running
        assert await task.run_once(session_factory) is None
        release.set()
        assert await first == "done"

        assert calls == 1
        assert task.skipped_count == 1
        assert not task.is_running

    @pytest.mark.asyncio
    async def test_errors_are_recorded_not_raised(self, session_factory):
        async def broken(db):
            raise RuntimeError("indexer exploded")

        task = PeriodicTask("missing_search", 3600, broken)
        assert await task.run_once(session_factory) is None
        assert task.last_error == "RuntimeError: indexer exploded"
        assert not task.is_running


class TestScheduler:

    @pytest.mark.asyncio
    async def test_trigger_runs_task(self, session_factory):
        ran = []

        async def job(db):
            ran.append(db)
            return len(ran)

        scheduler = Scheduler(session_factory=session_factory)
        scheduler.add_task(PeriodicTask("cutoff_search", 21600, job))

        assert await scheduler.trigger("cutoff_search") == 1

    @pytest.mark.asyncio
    async def test_trigger_unknown_task(self, session_factory):
        with pytest.raises(KeyError):
            await Scheduler(session_factory=session_factory).trigger("nope")

    @pytest.mark.asyncio
    async def test_loops_run_and_stop(self, session_factory):
        runs = 0

        async def job(db):
            nonlocal runs
            runs += 1

        scheduler = Scheduler(session_factory=session_factory)
        scheduler.add_task(PeriodicTask("download_sync", 0.01, job, run_on_start=True))

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert runs >= 2
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_not_start(self, session_factory):
        scheduler = Scheduler(session_factory=session_factory, enabled=False)
        await scheduler.start()
        assert not scheduler.is_running

    def test_default_jobs(self):
        names = [task["name"] for task in build_default_scheduler().get_status()["tasks"]]
        assert names == ["download_sync", "rss_sync", "missing_search", "cutoff_search"]
