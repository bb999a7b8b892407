"""Tests for task execution and remote job tracking through the executor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from taskdeck.errors import (
    InvalidJobIdError,
    PollTimeoutError,
    RemoteJobFailedError,
    TaskNotFoundError,
)
from taskdeck.jobs.models import TaskKind, TaskStatus


class TestExecuteTask:
    async def test_success_completes_task(self, executor, registry):
        task_id = executor.create_task("Export", "CSV export", {"rows": 10})

        async def work():
            record = registry.get(task_id)
            assert record.status == TaskStatus.RUNNING
            return {"file": "export.csv"}

        result = await executor.execute_task(task_id, work)

        record = registry.get(task_id)
        assert result == {"file": "export.csv"}
        assert record.status == TaskStatus.COMPLETED
        assert record.progress == 100
        assert record.result == {"file": "export.csv"}
        assert record.started_at is not None
        assert record.completed_at >= record.started_at
        assert record.metadata == {"rows": 10}
        assert [t.id for t in registry.completed()] == [task_id]

    async def test_exception_fails_task_and_propagates(self, executor, registry):
        task_id = executor.create_task("Export")

        async def work():
            raise RuntimeError("disk full")

        with pytest.raises(RuntimeError, match="disk full"):
            await executor.execute_task(task_id, work)

        record = registry.get(task_id)
        assert record.status == TaskStatus.FAILED
        assert record.error == "disk full"
        assert record.completed_at is not None
        assert [t.id for t in registry.failed()] == [task_id]

    async def test_exception_without_message_uses_type_name(self, executor, registry):
        task_id = executor.create_task("Export")

        async def work():
            raise KeyError()

        with pytest.raises(KeyError):
            await executor.execute_task(task_id, work)
        assert registry.get(task_id).error == "KeyError"

    async def test_cancellation_marks_task_cancelled(self, executor, registry):
        task_id = executor.create_task("Long job")
        started = asyncio.Event()

        async def work():
            started.set()
            await asyncio.sleep(10)

        runner = asyncio.create_task(executor.execute_task(task_id, work))
        await started.wait()
        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner

        assert registry.get(task_id).status == TaskStatus.CANCELLED
        assert [t.id for t in registry.failed()] == [task_id]

    async def test_unknown_task(self, executor):
        with pytest.raises(TaskNotFoundError):
            await executor.execute_task("missing", AsyncMock())

    async def test_finished_task_cannot_run_again(self, executor):
        task_id = executor.create_task("Once")
        await executor.execute_task(task_id, AsyncMock(return_value=1))

        with pytest.raises(ValueError):
            await executor.execute_task(task_id, AsyncMock(return_value=2))


class TestLifecycleHelpers:
    def test_terminal_status_is_final(self, executor, registry):
        task_id = executor.create_task("Job")
        executor.start_task(task_id)
        executor.complete_task(task_id, "done")

        assert executor.fail_task(task_id, "late failure") is None
        assert executor.update_progress(task_id, 10) is None
        assert executor.start_task(task_id) is None
        record = registry.get(task_id)
        assert record.status == TaskStatus.COMPLETED
        assert record.error is None

    def test_started_at_set_once(self, executor, registry):
        task_id = executor.create_task("Job")
        first = executor.start_task(task_id).started_at
        second = executor.start_task(task_id).started_at
        assert first == second

    @pytest.mark.parametrize("value, expected", [(-5, 0), (42.7, 42), (250, 100)])
    def test_progress_is_clamped(self, executor, registry, value, expected):
        task_id = executor.create_task("Job")
        executor.update_progress(task_id, value)
        assert registry.get(task_id).progress == expected

    def test_helpers_ignore_unknown_tasks(self, executor):
        assert executor.complete_task("missing") is None
        assert executor.cancel_task("missing") is None


class TestRemoteJobs:
    async def test_run_remote_job_completes(self, executor, registry, supervisor, source):
        source.script(
            "job-1",
            {"status": "processing", "progress_percentage": 35},
            {"status": "completed", "result": {"report_url": "/r/1.pdf"}},
        )
        task_id = executor.create_task("Quarterly report", kind=TaskKind.REPORT_GENERATION)
        progress_seen = []

        def on_progress(payload):
            progress_seen.append(registry.get(task_id).progress)

        result = await executor.run_remote_job(
            task_id, source, {"template": "q3"}, on_progress=on_progress
        )

        record = registry.get(task_id)
        assert result == {"report_url": "/r/1.pdf"}
        assert progress_seen == [35]
        assert record.status == TaskStatus.COMPLETED
        assert record.metadata["remote_job_id"] == "job-1"
        assert source.submitted == [{"template": "q3"}]
        assert not supervisor.is_monitoring("job-1")

    async def test_run_remote_job_failure(self, executor, registry, supervisor, source):
        source.script("job-1", {"status": "failed", "error": "Template missing"})
        task_id = executor.create_task("Report")

        with pytest.raises(RemoteJobFailedError):
            await executor.run_remote_job(task_id, source, {})

        record = registry.get(task_id)
        assert record.status == TaskStatus.FAILED
        assert record.error == "Template missing"
        assert supervisor.get_active_monitor_count() == 0

    async def test_run_remote_job_rejects_blank_job_id(self, executor, registry, supervisor):
        remote = AsyncMock()
        remote.submit.return_value = "  "
        task_id = executor.create_task("Report")

        with pytest.raises(InvalidJobIdError):
            await executor.run_remote_job(task_id, remote, {})

        assert registry.get(task_id).error == "Invalid job ID received from server: '  '"
        remote.get_status.assert_not_called()
        assert supervisor.get_active_monitor_count() == 0

    async def test_run_remote_job_times_out(self, executor, registry, source):
        task_id = executor.create_task("Slow report")

        with pytest.raises(PollTimeoutError):
            await executor.run_remote_job(task_id, source, {}, max_attempts=2)

        assert registry.get(task_id).status == TaskStatus.FAILED
        assert source.fetch_count("job-1") == 2

    async def test_cancelling_run_stops_poller(self, executor, registry, supervisor, source):
        task_id = executor.create_task("Report")

        runner = asyncio.create_task(executor.run_remote_job(task_id, source, {}))
        await asyncio.sleep(0.03)
        assert supervisor.is_monitoring("job-1")

        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner

        assert not supervisor.is_monitoring("job-1")
        assert registry.get(task_id).status == TaskStatus.CANCELLED

    async def test_start_remote_monitoring_mirrors_outcome(self, executor, registry, supervisor):
        remote = AsyncMock()
        remote.get_status.side_effect = [
            {"status": "running", "progress_percentage": 60},
            {"status": "completed", "result": "ok"},
        ]
        task_id = executor.create_task("Import")
        completed = []

        started = executor.start_remote_monitoring(
            task_id, "job-42", remote.get_status, on_complete=completed.append
        )
        assert started is True
        assert registry.get(task_id).status == TaskStatus.RUNNING

        await supervisor.get_poller("job-42").wait()

        record = registry.get(task_id)
        assert completed == ["ok"]
        assert record.status == TaskStatus.COMPLETED
        assert record.result == "ok"
        assert remote.get_status.await_count == 2

    async def test_start_remote_monitoring_duplicate(self, executor, source):
        first = executor.create_task("A")
        second = executor.create_task("B")

        assert executor.start_remote_monitoring(first, "job-1", source.get_status) is True
        assert executor.start_remote_monitoring(second, "job-1", source.get_status) is False
