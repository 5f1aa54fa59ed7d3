"""Test the PeriodicWorker base: lifecycle, error isolation, health."""

import asyncio

import pytest

from drink_tracker.core.periodic import PeriodicWorker


class _Counter(PeriodicWorker):
    def __init__(self, interval=0.01, fail=False, **kwargs):
        super().__init__(interval=interval, **kwargs)
        self.calls = 0
        self.fail = fail

    async def _work(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")


class TestPeriodicWorker:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            _Counter(interval=0)

    @pytest.mark.asyncio
    async def test_loop_runs_until_stopped(self):
        worker = _Counter(run_immediately=True)
        await worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()
        calls = worker.calls
        assert calls >= 1
        await asyncio.sleep(0.03)
        assert worker.calls == calls

    @pytest.mark.asyncio
    async def test_errors_are_counted_not_raised(self):
        worker = _Counter(fail=True)
        await worker.run_once()
        await worker.run_once()
        health = worker.health_check()
        assert health["error_count"] == 2
        assert health["cycles"] == 0
        assert health["worker"] == "_Counter"

    @pytest.mark.asyncio
    async def test_double_start_is_harmless(self):
        worker = _Counter(interval=10)
        await worker.start()
        await worker.start()
        assert worker.is_running
        await worker.stop()
        assert not worker.is_running

    @pytest.mark.asyncio
    async def test_health_records_last_run(self):
        worker = _Counter()
        await worker.run_once()
        assert worker.health_check()["last_work_at"] is not None
