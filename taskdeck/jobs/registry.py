"""In-memory task registry with derived active / completed / failed views."""

import logging
from typing import Any, Callable, Dict, List, Optional

from taskdeck.jobs.models import (
    TaskCounts,
    TaskDraft,
    TaskKind,
    TaskRecord,
    TaskSnapshot,
    TaskStatus,
)

logger = logging.getLogger(__name__)

ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"

# Change listener: fn(event, record). Record is None for bulk clears.
TaskListener = Callable[[str, Optional[TaskRecord]], None]


def bucket_for(status: TaskStatus) -> str:
    """Bucket a status belongs to. Cancelled is a non-success terminal state."""
    if status in (TaskStatus.PENDING, TaskStatus.RUNNING):
        return ACTIVE
    if status == TaskStatus.COMPLETED:
        return COMPLETED
    return FAILED


class TaskRegistry:
    """Authoritative collection of task records keyed by id.

    - Records are immutable; every update swaps in a new record
    - Bucket membership is recomputed from ``status`` on every mutation,
      so a record is always in exactly one bucket
    - All operations are synchronous and never yield to the event loop
    """

    def __init__(self):
        self._tasks: Dict[str, TaskRecord] = {}
        self._buckets: Dict[str, Dict[str, TaskRecord]] = {
            ACTIVE: {},
            COMPLETED: {},
            FAILED: {},
        }
        self._listeners: List[TaskListener] = []
        self.is_task_list_open = False

    # -- mutations ---------------------------------------------------------

    def add_task(self, draft: TaskDraft) -> str:
        """Insert a new pending task and return its id."""
        record = TaskRecord(
            kind=draft.kind,
            title=draft.title,
            description=draft.description,
            metadata=dict(draft.metadata),
        )
        self._tasks[record.id] = record
        self._buckets[ACTIVE][record.id] = record
        logger.debug("Task added: %s (%s)", record.id, record.kind.value)
        self._notify("added", record)
        return record.id

    def update_task(self, task_id: str, **updates: Any) -> Optional[TaskRecord]:
        """Merge fields into a task. Returns the new record, or None if absent."""
        current = self._tasks.get(task_id)
        if current is None:
            return None
        if "id" in updates and updates["id"] != task_id:
            raise ValueError("Task id is immutable")

        # Validate the merged record before touching any collection
        updated = TaskRecord.model_validate({**dict(current), **updates})

        self._tasks[task_id] = updated
        self._buckets[bucket_for(current.status)].pop(task_id, None)
        self._buckets[bucket_for(updated.status)][task_id] = updated
        self._notify("updated", updated)
        return updated

    def remove_task(self, task_id: str) -> bool:
        record = self._tasks.pop(task_id, None)
        if record is None:
            return False
        for bucket in self._buckets.values():
            bucket.pop(task_id, None)
        self._notify("removed", record)
        return True

    def clear_completed(self) -> int:
        """Drop every completed task. Returns the number removed."""
        removed = list(self._buckets[COMPLETED])
        for task_id in removed:
            del self._tasks[task_id]
        self._buckets[COMPLETED].clear()
        if removed:
            self._notify("cleared", None)
        return len(removed)

    def clear_all(self) -> None:
        self._tasks.clear()
        for bucket in self._buckets.values():
            bucket.clear()
        self._notify("cleared", None)

    # -- reads -------------------------------------------------------------

    def get(self, task_id: str) -> Optional[TaskRecord]:
        return self._tasks.get(task_id)

    def get_all(self) -> List[TaskRecord]:
        return list(self._tasks.values())

    def get_by_kind(self, kind: TaskKind) -> List[TaskRecord]:
        return [t for t in self._tasks.values() if t.kind == kind]

    def active(self) -> List[TaskRecord]:
        return list(self._buckets[ACTIVE].values())

    def completed(self) -> List[TaskRecord]:
        return list(self._buckets[COMPLETED].values())

    def failed(self) -> List[TaskRecord]:
        return list(self._buckets[FAILED].values())

    def active_count(self) -> int:
        return len(self._buckets[ACTIVE])

    def completed_count(self) -> int:
        return len(self._buckets[COMPLETED])

    def failed_count(self) -> int:
        return len(self._buckets[FAILED])

    def counts(self) -> TaskCounts:
        return TaskCounts(
            total=len(self._tasks),
            active=self.active_count(),
            completed=self.completed_count(),
            failed=self.failed_count(),
        )

    def snapshot(self, kind: Optional[TaskKind] = None) -> TaskSnapshot:
        def keep(records: List[TaskRecord]) -> List[TaskRecord]:
            if kind is None:
                return records
            return [r for r in records if r.kind == kind]

        return TaskSnapshot(
            tasks=keep(self.get_all()),
            active=keep(self.active()),
            completed=keep(self.completed()),
            failed=keep(self.failed()),
            counts=self.counts(),
            is_task_list_open=self.is_task_list_open,
        )

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # -- task list panel ---------------------------------------------------

    def toggle_task_list(self) -> bool:
        self.is_task_list_open = not self.is_task_list_open
        return self.is_task_list_open

    def open_task_list(self) -> None:
        self.is_task_list_open = True

    def close_task_list(self) -> None:
        self.is_task_list_open = False

    # -- listeners ---------------------------------------------------------

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, record: Optional[TaskRecord]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, record)
            except Exception:
                logger.exception("Task listener failed on %s event", event)
