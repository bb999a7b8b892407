"""Bundle upload entry point: submit files, poll the bundle, reconcile records."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from taskdeck.errors import RemoteJobFailedError
from taskdeck.jobs.client import RemoteJobSource, require_job_id
from taskdeck.jobs.executor import TaskExecutor
from taskdeck.jobs.models import TaskKind
from taskdeck.jobs.supervisor import MonitorSupervisor
from taskdeck.uploads.matching import FilenameMatcher, match_subtask
from taskdeck.uploads.models import BundleStatusPayload, FileUploadRecord, FileUploadStatus
from taskdeck.uploads.reconciler import BundleReconciler

logger = logging.getLogger(__name__)

# fn(bundle_id, completed_file_ids)
FilesReadyCallback = Callable[[str, List[str]], None]


class BundleUploadManager:
    """Tracks upload records and drives one bundle poller per submitted bundle.

    When an executor is supplied, every bundle is also mirrored as a
    file_upload task so it shows up alongside other background work.
    """

    def __init__(
        self,
        supervisor: MonitorSupervisor,
        source: RemoteJobSource,
        *,
        executor: Optional[TaskExecutor] = None,
        poll_interval_ms: int = 2000,
        max_attempts: Optional[int] = 300,
        unmatched_warn_after_polls: int = 5,
        matcher: FilenameMatcher = match_subtask,
        on_files_ready: Optional[FilesReadyCallback] = None,
    ):
        self._supervisor = supervisor
        self._source = source
        self._executor = executor
        self._poll_interval_ms = poll_interval_ms
        self._max_attempts = max_attempts
        self._warn_after = unmatched_warn_after_polls
        self._matcher = matcher
        self._on_files_ready = on_files_ready

        self.files: List[FileUploadRecord] = []
        self._reconcilers: Dict[str, BundleReconciler] = {}
        self._outcomes: Dict[str, asyncio.Future] = {}
        self._task_ids: Dict[str, str] = {}

    async def upload_files(self, files: Sequence[Tuple[str, bytes]]) -> List[FileUploadRecord]:
        """Submit files as one bundle and start polling it.

        Records are failed (and the error re-raised) if the submission fails
        or returns no usable bundle id. If the returned bundle is already being
        polled, the new records are failed and the earlier bundle is left alone.
        """
        if not files:
            return []

        records = [FileUploadRecord(filename=name) for name, _ in files]
        self.files.extend(records)
        task_id = None
        if self._executor is not None:
            task_id = self._executor.create_task(
                f"Upload {len(records)} file(s)",
                ", ".join(r.filename for r in records),
                {"filenames": [r.filename for r in records]},
                kind=TaskKind.FILE_UPLOAD,
            )
            self._executor.start_task(task_id)

        for record in records:
            record.status = FileUploadStatus.UPLOADING
        try:
            bundle_id = require_job_id(await self._source.submit(list(files)), "bundle")
        except Exception as exc:
            logger.error("Bundle upload failed: %s", exc)
            for record in records:
                record.status = FileUploadStatus.FAILED
                record.error = str(exc)
            if task_id is not None:
                self._executor.fail_task(task_id, str(exc))
            raise

        for record in records:
            record.bundle_id = bundle_id
            record.status = FileUploadStatus.PROCESSING
            record.progress = 0
        if not self._watch(bundle_id, records):
            error = f"Bundle {bundle_id} is already being polled"
            logger.warning("%s; failing %d new file(s)", error, len(records))
            for record in records:
                record.status = FileUploadStatus.FAILED
                record.error = error
            if task_id is not None:
                self._executor.fail_task(task_id, error)
        elif task_id is not None:
            self._task_ids[bundle_id] = task_id
        return records

    async def wait_for_bundle(self, bundle_id: str) -> List[str]:
        """Wait until a bundle finishes. Returns its completed record ids."""
        outcome = self._outcomes.get(bundle_id)
        if outcome is None:
            return [
                r.id
                for r in self.files
                if r.bundle_id == bundle_id and r.status == FileUploadStatus.COMPLETED
            ]
        return await asyncio.shield(outcome)

    def completed_file_ids(self) -> List[str]:
        return [r.id for r in self.files if r.status == FileUploadStatus.COMPLETED]

    def get_file(self, file_id: str) -> Optional[FileUploadRecord]:
        return next((r for r in self.files if r.id == file_id), None)

    def remove_file(self, file_id: str) -> bool:
        """Forget a record. Stops its bundle poll once no record of that bundle is left."""
        record = self.get_file(file_id)
        if record is None:
            return False
        self.files.remove(record)

        reconciler = self._reconcilers.get(record.bundle_id) if record.bundle_id else None
        if reconciler is not None:
            reconciler.discard(record.id)
            if not reconciler.records:
                self._abandon(reconciler.bundle_id)
        return True

    def clear_all_files(self) -> None:
        for bundle_id in list(self._reconcilers):
            self._abandon(bundle_id)
        self.files.clear()

    # -- polling -----------------------------------------------------------

    def _watch(self, bundle_id: str, records: List[FileUploadRecord]) -> bool:
        reconciler = BundleReconciler(
            bundle_id,
            records,
            matcher=self._matcher,
            unmatched_warn_after_polls=self._warn_after,
        )
        started = self._supervisor.start_monitoring(
            bundle_id,
            self._source.get_status,
            on_progress=lambda payload: self._on_progress(bundle_id, payload),
            on_complete=lambda payload: self._on_terminal(bundle_id, payload),
            on_error=lambda exc: self._on_error(bundle_id, exc),
            poll_interval_ms=self._poll_interval_ms,
            max_attempts=self._max_attempts,
            payload_model=BundleStatusPayload,
            complete_with_payload=True,
        )
        if started:
            self._reconcilers[bundle_id] = reconciler
            self._outcomes[bundle_id] = asyncio.get_running_loop().create_future()
        return started

    def _on_progress(self, bundle_id: str, payload: BundleStatusPayload) -> None:
        reconciler = self._reconcilers.get(bundle_id)
        if reconciler is None:
            return
        reconciler.apply(payload)
        task_id = self._task_ids.get(bundle_id)
        if task_id is not None and payload.progress_percentage is not None:
            self._executor.update_progress(task_id, payload.progress_percentage)

    def _on_terminal(self, bundle_id: str, payload: BundleStatusPayload) -> None:
        reconciler = self._reconcilers.pop(bundle_id, None)
        if reconciler is None:
            return
        completed = reconciler.finalize(payload)
        self._supervisor.stop_monitoring(bundle_id)

        task_id = self._task_ids.pop(bundle_id, None)
        if task_id is not None:
            if len(completed) == len(reconciler.records):
                self._executor.complete_task(task_id, completed)
            else:
                self._executor.fail_task(
                    task_id,
                    f"{len(reconciler.records) - len(completed)} of "
                    f"{len(reconciler.records)} file(s) failed to process",
                )
        self._settle(bundle_id, completed)
        if completed and self._on_files_ready is not None:
            self._on_files_ready(bundle_id, completed)

    def _on_error(self, bundle_id: str, exc: BaseException) -> None:
        payload = getattr(exc, "payload", None)
        if isinstance(exc, RemoteJobFailedError) and isinstance(payload, BundleStatusPayload):
            self._on_terminal(bundle_id, payload)
            return

        reconciler = self._reconcilers.pop(bundle_id, None)
        if reconciler is None:
            return
        completed = reconciler.fail_outstanding(str(exc))
        task_id = self._task_ids.pop(bundle_id, None)
        if task_id is not None:
            self._executor.fail_task(task_id, str(exc))
        self._settle(bundle_id, completed)

    def _abandon(self, bundle_id: str) -> None:
        self._supervisor.stop_monitoring(bundle_id)
        reconciler = self._reconcilers.pop(bundle_id, None)
        task_id = self._task_ids.pop(bundle_id, None)
        if task_id is not None:
            self._executor.cancel_task(task_id)
        self._settle(bundle_id, reconciler.completed_ids() if reconciler else [])
        logger.info("Stopped tracking bundle %s", bundle_id)

    def _settle(self, bundle_id: str, completed: List[str]) -> None:
        outcome = self._outcomes.pop(bundle_id, None)
        if outcome is not None and not outcome.done():
            outcome.set_result(completed)
