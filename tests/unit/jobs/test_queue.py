"""Tests for the bounded work queue."""

import asyncio

import pytest

from provisioner.jobs.queue import BoundedWorkQueue


class TestBoundedWorkQueue:
    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedWorkQueue(0)

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self):
        queue = BoundedWorkQueue(3)
        active = 0
        peak = 0
        done = []

        async def worker(item):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            done.append(item)

        stats = await queue.run(range(10), worker)

        assert peak == 3
        assert stats.peak_in_flight == 3
        assert stats.started == 10
        assert sorted(done) == list(range(10))
        assert queue.in_flight == 0

    @pytest.mark.asyncio
    async def test_admits_in_order(self):
        queue = BoundedWorkQueue(1)
        started = []

        async def worker(item):
            started.append(item)

        await queue.run(["a", "b", "c"], worker)
        assert started == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_slot_refills_when_any_worker_settles(self):
        queue = BoundedWorkQueue(2)
        release_slow = asyncio.Event()
        started = []

        async def worker(item):
            started.append(item)
            if item == "slow":
                await release_slow.wait()

        run = asyncio.create_task(queue.run(["slow", "fast", "next"], worker))
        for _ in range(20):
            await asyncio.sleep(0)
        # "next" starts while "slow" is still running
        assert started == ["slow", "fast", "next"]
        release_slow.set()
        await run

    @pytest.mark.asyncio
    async def test_stop_skips_unstarted_items(self):
        queue = BoundedWorkQueue(1)
        stopped = False
        skipped = []

        async def worker(item):
            nonlocal stopped
            if item == 1:
                stopped = True

        stats = await queue.run(
            [0, 1, 2, 3, 4],
            worker,
            is_stopped=lambda: stopped,
            on_skip=skipped.append,
        )

        assert stats.started == 2
        assert stats.skipped == 3
        assert skipped == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_stop_does_not_cancel_in_flight(self):
        queue = BoundedWorkQueue(2)
        stopped = False
        finished = []

        async def worker(item):
            nonlocal stopped
            stopped = True
            await asyncio.sleep(0.01)
            finished.append(item)

        stats = await queue.run(["a", "b", "c"], worker, is_stopped=lambda: stopped)

        assert sorted(finished) == ["a", "b"]
        assert stats.skipped == 1

    @pytest.mark.asyncio
    async def test_empty_input(self):
        queue = BoundedWorkQueue(2)

        async def worker(item):
            raise AssertionError("not called")

        stats = await queue.run([], worker)
        assert stats.started == 0

    @pytest.mark.asyncio
    async def test_worker_error_is_reraised_after_in_flight_settle(self):
        queue = BoundedWorkQueue(2)
        finished = []

        async def worker(item):
            if item == "bad":
                raise RuntimeError("worker crashed")
            await asyncio.sleep(0.01)
            finished.append(item)

        with pytest.raises(RuntimeError, match="worker crashed"):
            await queue.run(["bad", "ok", "never"], worker)

        assert finished == ["ok"]

    @pytest.mark.asyncio
    async def test_cancelling_run_cancels_workers(self):
        queue = BoundedWorkQueue(2)
        cancelled = []

        async def worker(item):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(item)
                raise

        run = asyncio.create_task(queue.run(["a", "b", "c"], worker))
        await asyncio.sleep(0.01)
        run.cancel()

        with pytest.raises(asyncio.CancelledError):
            await run
        assert sorted(cancelled) == ["a", "b"]
        assert queue.in_flight == 0
