"""Maps bundle status payloads onto the local upload records of one bundle."""

import logging
from typing import Dict, List, Sequence

from taskdeck.jobs.models import RemoteStatus
from taskdeck.uploads.matching import FilenameMatcher, match_subtask
from taskdeck.uploads.models import (
    BundleStatusPayload,
    FileUploadRecord,
    FileUploadStatus,
    SubTaskStatus,
)

logger = logging.getLogger(__name__)


class BundleReconciler:
    """Correlates one bundle id with the upload records submitted in it.

    Only the ``status``, ``progress`` and ``error`` fields of the records
    are touched; the records themselves belong to the caller.
    """

    def __init__(
        self,
        bundle_id: str,
        records: Sequence[FileUploadRecord],
        *,
        matcher: FilenameMatcher = match_subtask,
        unmatched_warn_after_polls: int = 5,
    ):
        self.bundle_id = bundle_id
        self._records = [r for r in records if r.bundle_id == bundle_id]
        self._matcher = matcher
        self._warn_after = unmatched_warn_after_polls
        self._unmatched_polls: Dict[str, int] = {}
        self.finished = False

    @property
    def records(self) -> List[FileUploadRecord]:
        return list(self._records)

    def discard(self, record_id: str) -> None:
        self._records = [r for r in self._records if r.id != record_id]
        self._unmatched_polls.pop(record_id, None)

    def apply(self, payload: BundleStatusPayload) -> None:
        """Update records from an intermediate (non-terminal) bundle status."""
        for record in self._records:
            task = self._matcher(record.filename, payload.individual_tasks)
            if task is None:
                self._note_unmatched(record)
                continue
            self._unmatched_polls.pop(record.id, None)
            _apply_subtask(record, task)

    def finalize(self, payload: BundleStatusPayload) -> List[str]:
        """Final pass once the bundle is terminal. Returns the completed record ids."""
        bundle_ok = payload.remote_status is RemoteStatus.COMPLETED
        has_subtasks = bool(payload.individual_tasks)

        for record in self._records:
            task = self._matcher(record.filename, payload.individual_tasks)
            if task is not None and task.remote_status.is_terminal:
                _apply_subtask(record, task)
            elif task is not None or not has_subtasks:
                # No per-file verdict; the bundle status decides
                if bundle_ok:
                    _set(record, FileUploadStatus.COMPLETED, 100)
                else:
                    _set(
                        record,
                        FileUploadStatus.FAILED,
                        record.progress,
                        f"Processing failed. Completed: {payload.completed_files}, "
                        f"Failed: {payload.failed_files}",
                    )
            else:
                logger.warning(
                    "No sub-task matched %s in finished bundle %s; marking it failed",
                    record.filename,
                    self.bundle_id,
                )
                _set(
                    record,
                    FileUploadStatus.FAILED,
                    record.progress,
                    f"No status reported for {record.filename} in bundle {self.bundle_id}",
                )

        self.finished = True
        completed = self.completed_ids()
        logger.info(
            "Bundle %s finished: %d/%d files completed",
            self.bundle_id,
            len(completed),
            len(self._records),
        )
        return completed

    def fail_outstanding(self, error: str) -> List[str]:
        """Bundle polling ended without a verdict; fail every unfinished record."""
        for record in self._records:
            if not record.status.is_terminal:
                _set(record, FileUploadStatus.FAILED, record.progress, error)
        self.finished = True
        return self.completed_ids()

    def completed_ids(self) -> List[str]:
        return [r.id for r in self._records if r.status == FileUploadStatus.COMPLETED]

    def _note_unmatched(self, record: FileUploadRecord) -> None:
        polls = self._unmatched_polls.get(record.id, 0) + 1
        self._unmatched_polls[record.id] = polls
        if polls == self._warn_after:
            logger.warning(
                "File %s in bundle %s has not matched any sub-task after %d polls",
                record.filename,
                self.bundle_id,
                polls,
            )


def _apply_subtask(record: FileUploadRecord, task: SubTaskStatus) -> None:
    status = task.remote_status
    if status is RemoteStatus.COMPLETED:
        _set(record, FileUploadStatus.COMPLETED, 100)
    elif status.is_terminal:
        _set(
            record,
            FileUploadStatus.FAILED,
            record.progress,
            task.error_message or "Processing failed",
        )
    else:
        _set(record, FileUploadStatus.PROCESSING, task.progress_value())


def _set(record: FileUploadRecord, status: FileUploadStatus, progress: int, error=None) -> None:
    record.status = status
    record.progress = progress
    record.error = error
