"""
Shared test fixtures for the orchestration core.

Provides: registry, supervisor and executor fixtures with short poll
intervals, and a scripted remote job source.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from taskdeck.jobs.client import RemoteJobSource
from taskdeck.jobs.executor import TaskExecutor
from taskdeck.jobs.registry import TaskRegistry
from taskdeck.jobs.supervisor import MonitorSupervisor

POLL_MS = 10


class ScriptedSource(RemoteJobSource):
    """Remote job source that replays a per-job list of statuses.

    The last scripted step repeats forever. A step that is an exception
    instance is raised instead of returned.
    """

    def __init__(self, job_ids: Optional[List[str]] = None):
        if job_ids is None:
            job_ids = (f"job-{n}" for n in itertools.count(1))
        self._ids = iter(job_ids)
        self.scripts: Dict[str, List[Any]] = {}
        self.submitted: List[Any] = []
        self.calls: List[str] = []

    def script(self, job_id: str, *steps: Any) -> None:
        self.scripts[job_id] = list(steps)

    async def submit(self, payload: Any) -> str:
        self.submitted.append(payload)
        return next(self._ids)

    async def get_status(self, job_id: str) -> Any:
        self.calls.append(job_id)
        steps = self.scripts.get(job_id) or [{"status": "running"}]
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, BaseException):
            raise step
        return step

    def fetch_count(self, job_id: str) -> int:
        return self.calls.count(job_id)


@pytest.fixture
def source():
    return ScriptedSource()


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
async def supervisor():
    sup = MonitorSupervisor(default_poll_interval_ms=POLL_MS)
    yield sup
    await sup.aclose()


@pytest.fixture
def executor(registry, supervisor):
    return TaskExecutor(registry, supervisor, report_poll_interval_ms=POLL_MS)
