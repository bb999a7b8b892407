"""Background database query execution, newest request wins."""

import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from taskdeck.jobs.client import RemoteJobSource
from taskdeck.jobs.executor import TaskExecutor
from taskdeck.jobs.models import TaskKind
from taskdeck.jobs.supersession import SupersessionGuard

logger = logging.getLogger(__name__)


class QueryPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class QueryState(BaseModel):
    """State of the latest query issued through a runner."""

    phase: QueryPhase = QueryPhase.IDLE
    task_id: Optional[str] = None
    question: Optional[str] = None
    result: Any = None
    error: Optional[str] = None


class BackgroundQueryRunner:
    """Submits queries to the remote server and polls them to completion.

    Each ``run`` creates a query_execution task. Issuing a new query cancels
    the previous one if it is still pending: its task ends cancelled, its
    poller is stopped, and it never touches ``state``.
    """

    def __init__(
        self,
        executor: TaskExecutor,
        source: RemoteJobSource,
        *,
        poll_interval_ms: int = 5000,
        max_attempts: int = 60,
    ):
        self._executor = executor
        self._source = source
        self._poll_interval_ms = poll_interval_ms
        self._max_attempts = max_attempts
        self._guard = SupersessionGuard("database query")
        self.state = QueryState()

    @property
    def pending(self) -> bool:
        return self._guard.pending

    async def run(self, question: str, **params: Any) -> Optional[Any]:
        """Run a query. Returns its result, or None if a newer query replaced it."""
        if not question.strip():
            raise ValueError("Question cannot be empty")

        task_id = self._executor.create_task(
            "Database query",
            question.strip(),
            {"question": question, **params},
            kind=TaskKind.QUERY_EXECUTION,
        )
        self.state = QueryState(phase=QueryPhase.RUNNING, task_id=task_id, question=question)

        try:
            result = await self._guard.run(
                self._executor.run_remote_job,
                task_id,
                self._source,
                {"question": question, **params},
                poll_interval_ms=self._poll_interval_ms,
                max_attempts=self._max_attempts,
            )
        except Exception as exc:
            if self.state.task_id == task_id:
                self.state = self.state.model_copy(
                    update={"phase": QueryPhase.FAILED, "error": str(exc)}
                )
            raise

        if self.state.task_id != task_id:
            logger.info("Query task %s was superseded", task_id)
            return None
        self.state = self.state.model_copy(
            update={"phase": QueryPhase.COMPLETED, "result": result}
        )
        return result

    def cancel(self) -> bool:
        """Cancel the pending query (e.g. when its view goes away)."""
        cancelled = self._guard.cancel()
        if cancelled:
            self.state = QueryState()
        return cancelled
