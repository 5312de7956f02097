"""Tests for the admission queue."""

import asyncio

import pytest

from formrelay.queue.admission import (
    AdmissionQueue,
    InvalidConfiguration,
    QueueFull,
    ShuttingDown,
    TaskTimeout,
)


async def settle(ticks: int = 10) -> None:
    """Let scheduled tasks run until they block."""
    for _ in range(ticks):
        await asyncio.sleep(0)


class TestConfiguration:
    """Tests for queue construction."""

    @pytest.mark.parametrize("limit", [0, -1, 1.5, "3", None, True])
    def test_invalid_limit(self, limit):
        with pytest.raises(InvalidConfiguration):
            AdmissionQueue(limit)

    def test_invalid_max_pending(self):
        with pytest.raises(InvalidConfiguration):
            AdmissionQueue(2, max_pending=0)

    def test_invalid_task_timeout(self):
        with pytest.raises(InvalidConfiguration):
            AdmissionQueue(2, task_timeout=0)

    def test_invalid_configuration_is_value_error(self):
        with pytest.raises(ValueError):
            AdmissionQueue(0)

    def test_valid_configuration(self):
        queue = AdmissionQueue(3, max_pending=10, task_timeout=5)
        assert queue.limit == 3
        assert queue.running == 0
        assert queue.pending == 0
        assert queue.closed is False


class TestAdmission:
    """Tests for admit() outcomes."""

    @pytest.mark.asyncio
    async def test_resolves_with_task_result(self):
        queue = AdmissionQueue(2)
        value = object()

        async def task():
            return value

        assert await queue.admit(task) is value

    @pytest.mark.asyncio
    async def test_run_helper(self):
        queue = AdmissionQueue(1)

        async def task():
            return 42

        assert await queue.run(task) == 42

    @pytest.mark.asyncio
    async def test_task_error_propagates_and_queue_continues(self):
        queue = AdmissionQueue(1)
        error = RuntimeError("downstream failed")

        async def failing():
            raise error

        async def succeeding():
            return "ok"

        failed = queue.admit(failing)
        later = queue.admit(succeeding)

        with pytest.raises(RuntimeError) as exc_info:
            await failed
        assert exc_info.value is error
        assert await later == "ok"
        assert queue.running == 0

    @pytest.mark.asyncio
    async def test_synchronous_raise_in_callback(self):
        queue = AdmissionQueue(1)

        def broken():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await queue.admit(broken)
        assert queue.running == 0

    @pytest.mark.asyncio
    async def test_every_task_settles_once(self):
        queue = AdmissionQueue(3)

        def make(i):
            async def task():
                await asyncio.sleep(0.001 * (i % 3))
                if i % 4 == 0:
                    raise ValueError(i)
                return i
            return task

        futures = [queue.admit(make(i)) for i in range(12)]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert all(f.done() for f in futures)
        for i, result in enumerate(results):
            if i % 4 == 0:
                assert isinstance(result, ValueError)
            else:
                assert result == i
        stats = queue.stats
        assert stats.total_completed + stats.total_failed == 12
        assert stats.total_failed == 3


class TestConcurrencyBound:
    """Tests for the concurrency limit and FIFO order."""

    @pytest.mark.asyncio
    async def test_serializes_with_limit_one(self):
        queue = AdmissionQueue(1)
        completed = []

        def make(name, delay):
            async def task():
                await asyncio.sleep(delay)
                completed.append(name)
                return name
            return task

        futures = [
            queue.admit(make("T1", 0.1)),
            queue.admit(make("T2", 0)),
            queue.admit(make("T3", 0)),
        ]
        await asyncio.gather(*futures)

        assert completed == ["T1", "T2", "T3"]

    @pytest.mark.asyncio
    async def test_excess_tasks_wait_in_arrival_order(self):
        queue = AdmissionQueue(3)
        started = []
        gates = [asyncio.Event() for _ in range(5)]

        def make(i):
            async def task():
                started.append(i)
                await gates[i].wait()
                return i
            return task

        futures = [queue.admit(make(i)) for i in range(5)]
        await settle()

        assert started == [0, 1, 2]
        assert queue.running == 3
        assert queue.pending == 2

        gates[0].set()
        assert await futures[0] == 0
        await settle()
        assert started == [0, 1, 2, 3]
        assert queue.running == 3

        gates[1].set()
        await futures[1]
        await settle()
        assert started == [0, 1, 2, 3, 4]
        assert queue.pending == 0

        for gate in gates:
            gate.set()
        assert await asyncio.gather(*futures) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_running_never_exceeds_limit(self):
        queue = AdmissionQueue(2)
        active = 0
        peak = 0

        def make(i):
            async def task():
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.001 * (i % 4))
                assert queue.running <= 2
                active -= 1
            return task

        await asyncio.gather(*(queue.admit(make(i)) for i in range(20)))

        assert peak == 2
        assert queue.stats.peak_running == 2

    @pytest.mark.asyncio
    async def test_fifo_start_order(self):
        queue = AdmissionQueue(1)
        started = []

        def make(i):
            async def task():
                started.append(i)
                await asyncio.sleep(0)
            return task

        await asyncio.gather(*(queue.admit(make(i)) for i in range(6)))
        assert started == list(range(6))

    @pytest.mark.asyncio
    async def test_admitted_tasks_overlap(self):
        queue = AdmissionQueue(2)
        a_ready = asyncio.Event()
        b_ready = asyncio.Event()

        async def task_a():
            a_ready.set()
            await b_ready.wait()
            return "a"

        async def task_b():
            b_ready.set()
            await a_ready.wait()
            return "b"

        results = await asyncio.wait_for(
            asyncio.gather(queue.admit(task_a), queue.admit(task_b)),
            timeout=1.0,
        )
        assert results == ["a", "b"]

    @pytest.mark.asyncio
    async def test_admit_does_not_run_task_inline(self):
        queue = AdmissionQueue(1)
        started = []

        async def task():
            started.append(True)

        future = queue.admit(task)
        assert started == []
        assert queue.running == 1
        await future
        assert started == [True]


class TestBackpressure:
    """Tests for the pending ceiling."""

    @pytest.mark.asyncio
    async def test_queue_full_is_raised_synchronously(self):
        queue = AdmissionQueue(1, max_pending=1)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        running = queue.admit(blocked)
        waiting = queue.admit(blocked)

        with pytest.raises(QueueFull):
            queue.admit(blocked)

        assert queue.pending == 1
        assert queue.stats.total_rejected == 1

        gate.set()
        await asyncio.gather(running, waiting)

    @pytest.mark.asyncio
    async def test_cancelled_waiters_do_not_hold_ceiling(self):
        queue = AdmissionQueue(1, max_pending=1)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        async def after():
            return "admitted"

        running = queue.admit(blocked)
        abandoned = queue.admit(blocked)
        abandoned.cancel()

        replacement = queue.admit(after)

        assert queue.pending == 1
        assert queue.stats.total_rejected == 0
        assert queue.stats.total_cancelled == 1

        gate.set()
        await running
        assert await replacement == "admitted"
        assert queue.stats.total_cancelled == 1


class TestTimeout:
    """Tests for per-task timeouts."""

    @pytest.mark.asyncio
    async def test_timeout_rejects_and_frees_slot(self):
        queue = AdmissionQueue(1, task_timeout=0.05)

        async def slow():
            await asyncio.sleep(10)

        async def fast():
            return "done"

        timed_out = queue.admit(slow)
        after = queue.admit(fast)

        with pytest.raises(TaskTimeout):
            await timed_out
        assert await after == "done"
        assert queue.stats.total_timeouts == 1

    @pytest.mark.asyncio
    async def test_per_task_timeout_override(self):
        queue = AdmissionQueue(1, task_timeout=0.01)

        async def slightly_slow():
            await asyncio.sleep(0.05)
            return "finished"

        assert await queue.admit(slightly_slow, timeout=None) == "finished"

    @pytest.mark.asyncio
    async def test_task_own_timeout_error_is_not_rewrapped(self):
        queue = AdmissionQueue(1, task_timeout=5)
        error = TimeoutError("remote timed out")

        async def task():
            raise error

        with pytest.raises(TimeoutError) as exc_info:
            await queue.admit(task)
        assert exc_info.value is error


class TestCancellation:
    """Tests for caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_pending_task_is_skipped(self):
        queue = AdmissionQueue(1)
        gate = asyncio.Event()
        ran = []

        async def blocked():
            await gate.wait()

        async def never():
            ran.append(True)

        first = queue.admit(blocked)
        skipped = queue.admit(never)
        skipped.cancel()

        gate.set()
        await first
        await settle()

        assert ran == []
        assert queue.running == 0
        assert queue.stats.total_cancelled == 1

    @pytest.mark.asyncio
    async def test_cancelling_running_future_cancels_work(self):
        queue = AdmissionQueue(1)
        cancelled = asyncio.Event()

        async def long_running():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        future = queue.admit(long_running)
        await settle()
        future.cancel()

        await asyncio.wait_for(cancelled.wait(), timeout=1.0)
        await settle()
        assert queue.running == 0


class TestShutdown:
    """Tests for shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_rejects_pending_and_waits_for_running(self):
        queue = AdmissionQueue(1)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return "finished"

        running = queue.admit(blocked)
        pending = [queue.admit(blocked), queue.admit(blocked)]
        await settle()

        shutdown = asyncio.create_task(queue.shutdown())
        await settle()

        for future in pending:
            with pytest.raises(ShuttingDown):
                await future
        assert not shutdown.done()

        gate.set()
        await shutdown
        assert await running == "finished"
        assert queue.closed is True

    @pytest.mark.asyncio
    async def test_admit_after_shutdown_rejects(self):
        queue = AdmissionQueue(2)
        await queue.shutdown()

        async def task():
            return 1

        future = queue.admit(task)
        assert future.done()
        with pytest.raises(ShuttingDown):
            await future

    @pytest.mark.asyncio
    async def test_shutdown_can_cancel_running(self):
        queue = AdmissionQueue(1)

        async def forever():
            await asyncio.Event().wait()

        future = queue.admit(forever)
        await settle()

        await asyncio.wait_for(queue.shutdown(cancel_running=True), timeout=1.0)

        assert future.cancelled()
        assert queue.running == 0

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self):
        queue = AdmissionQueue(1)
        await queue.shutdown()
        await queue.shutdown()
        assert queue.closed is True
