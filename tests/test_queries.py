"""Tests for request supersession and the background query runner."""

import asyncio

import pytest

from taskdeck.errors import PollTimeoutError
from taskdeck.jobs.models import TaskKind, TaskStatus
from taskdeck.jobs.queries import BackgroundQueryRunner, QueryPhase
from taskdeck.jobs.supersession import SupersessionGuard

from conftest import POLL_MS


async def _delayed(value, delay):
    await asyncio.sleep(delay)
    return value


class TestSupersessionGuard:
    async def test_newer_request_supersedes_older(self):
        guard = SupersessionGuard("lookup")

        first = asyncio.create_task(guard.run(_delayed, "old", 0.05))
        await asyncio.sleep(0)
        second = await guard.run(_delayed, "new", 0.01)

        assert second == "new"
        assert await first is None
        assert not guard.pending

    async def test_superseded_request_is_cancelled(self):
        guard = SupersessionGuard()
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        first = asyncio.create_task(guard.run(slow))
        await asyncio.sleep(0)
        await guard.run(_delayed, 1, 0)

        assert await first is None
        assert cancelled.is_set()

    async def test_late_result_of_superseded_request_is_discarded(self):
        guard = SupersessionGuard()
        settled = []

        async def stubborn():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                await asyncio.sleep(0.03)
            settled.append("A")
            return "A"

        async def replacement():
            await asyncio.sleep(0.01)
            settled.append("B")
            return "B"

        first = asyncio.create_task(guard.run(stubborn))
        await asyncio.sleep(0)
        latest = await guard.run(replacement)

        assert latest == "B"
        assert await first is None
        assert settled == ["B", "A"]
        assert not guard.pending

    async def test_late_error_of_superseded_request_is_discarded(self):
        guard = SupersessionGuard()

        async def stubborn():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                await asyncio.sleep(0.01)
            raise RuntimeError("connection reset")

        first = asyncio.create_task(guard.run(stubborn))
        await asyncio.sleep(0)
        second = asyncio.create_task(guard.run(_delayed, "B", 0.05))

        assert await first is None
        assert not second.done()
        assert await second == "B"

    async def test_errors_propagate_when_current(self):
        guard = SupersessionGuard()

        async def broken():
            raise RuntimeError("bad SQL")

        with pytest.raises(RuntimeError, match="bad SQL"):
            await guard.run(broken)

    async def test_cancel_settles_pending_as_none(self):
        guard = SupersessionGuard()
        pending = asyncio.create_task(guard.run(_delayed, "x", 10))
        await asyncio.sleep(0)

        assert guard.pending
        assert guard.cancel() is True
        assert await pending is None
        assert guard.cancel() is False

    async def test_caller_cancellation_propagates(self):
        guard = SupersessionGuard()
        caller = asyncio.create_task(guard.run(_delayed, "x", 10))
        await asyncio.sleep(0)

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller


class TestBackgroundQueryRunner:
    @pytest.fixture
    def runner(self, executor, source):
        return BackgroundQueryRunner(executor, source, poll_interval_ms=POLL_MS, max_attempts=20)

    async def test_query_completes(self, runner, registry, source):
        source.script("job-1", {"status": "running"}, {"status": "completed", "result": {"rows": [[1]]}})

        result = await runner.run("How many orders today?", database="sales")

        assert result == {"rows": [[1]]}
        assert runner.state.phase is QueryPhase.COMPLETED
        assert runner.state.result == {"rows": [[1]]}
        assert source.submitted == [{"question": "How many orders today?", "database": "sales"}]
        (task,) = registry.get_by_kind(TaskKind.QUERY_EXECUTION)
        assert task.status == TaskStatus.COMPLETED

    async def test_newer_query_wins(self, runner, registry, supervisor, source):
        source.script("job-2", {"status": "completed", "result": "second"})

        first = asyncio.create_task(runner.run("first question"))
        await asyncio.sleep(POLL_MS * 3 / 1000)
        assert supervisor.is_monitoring("job-1")

        result = await runner.run("second question")

        assert result == "second"
        assert await first is None
        assert runner.state.question == "second question"
        assert runner.state.result == "second"
        assert not supervisor.is_monitoring("job-1")
        statuses = {t.description: t.status for t in registry.get_all()}
        assert statuses == {
            "first question": TaskStatus.CANCELLED,
            "second question": TaskStatus.COMPLETED,
        }

    async def test_timeout_fails_query(self, executor, registry, source):
        runner = BackgroundQueryRunner(executor, source, poll_interval_ms=POLL_MS, max_attempts=3)

        with pytest.raises(PollTimeoutError):
            await runner.run("SELECT forever")

        assert runner.state.phase is QueryPhase.FAILED
        assert "after 3 attempts" in runner.state.error
        assert registry.failed_count() == 1

    async def test_empty_question_rejected(self, runner, registry):
        with pytest.raises(ValueError):
            await runner.run("   ")
        assert len(registry) == 0

    async def test_cancel_resets_state(self, runner, supervisor):
        pending = asyncio.create_task(runner.run("slow question"))
        await asyncio.sleep(POLL_MS * 2 / 1000)

        assert runner.pending
        assert runner.cancel() is True
        assert await pending is None
        assert runner.state.phase is QueryPhase.IDLE
        assert supervisor.get_active_monitor_count() == 0
