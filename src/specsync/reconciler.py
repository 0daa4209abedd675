"""Status reconciliation between task checkboxes and issue state.

Consistent pairs need no write:

    not_started / in_progress  <->  open
    completed                  <->  closed

``ONE_WAY`` mode treats the task file as the only source of truth.
``TWO_WAY`` mode is last-writer-wins: the task file's mtime is compared with
the issue's last-updated timestamp, both as observed before this run wrote
anything, and the newer side overwrites the older one. Ties and unknown issue
timestamps favour the task file. This is an assumption about intent, not a
merge: if both sides changed between runs, the older edit is lost.

Task-file writes go through ``TaskFileWriter``, which rewrites a single
checkbox character and nothing else.
"""

from __future__ import annotations

import shutil
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from .errors import ParseError
from .logging import get_logger
from .models import IssueRecord, IssueState, TaskRecord, TaskStatus
from .parser import DEFAULT_IN_PROGRESS_MARKER, replace_checkbox, task_id_of
from .tracker import TrackerClient


class SyncMode(str, Enum):
    ONE_WAY = "one_way"
    TWO_WAY = "two_way"


class StatusChange(str, Enum):
    NONE = "none"
    ISSUE_CLOSED = "issue_closed"
    ISSUE_REOPENED = "issue_reopened"
    TASK_COMPLETED = "task_completed"
    TASK_REOPENED = "task_reopened"


def issue_state_for(status: TaskStatus) -> IssueState:
    return IssueState.CLOSED if status is TaskStatus.COMPLETED else IssueState.OPEN


def task_status_for(state: IssueState, current: TaskStatus) -> TaskStatus:
    if state is IssueState.CLOSED:
        return TaskStatus.COMPLETED
    if current is TaskStatus.COMPLETED:
        return TaskStatus.IN_PROGRESS
    return current


def file_modified_at(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


class TaskFileWriter:
    """Single writer for every task file mutation in the process."""

    def __init__(self, in_progress_marker: str = DEFAULT_IN_PROGRESS_MARKER):
        self.in_progress_marker = in_progress_marker
        self._lock = threading.Lock()

    def set_status(self, task: TaskRecord, status: TaskStatus) -> bool:
        """Rewrite the checkbox of ``task`` in place; True when the file changed."""
        path = task.source_file
        with self._lock:
            with path.open(encoding="utf-8", newline="") as fh:
                lines = fh.read().splitlines(keepends=True)
            idx = self._locate(lines, task)
            updated = replace_checkbox(lines[idx], status, self.in_progress_marker)
            if updated == lines[idx]:
                return False
            lines[idx] = updated
            tmp = path.with_name(path.name + ".specsync.tmp")
            with tmp.open("w", encoding="utf-8", newline="") as fh:
                fh.write("".join(lines))
            shutil.copymode(path, tmp)
            tmp.replace(path)
            return True

    @staticmethod
    def _locate(lines: list[str], task: TaskRecord) -> int:
        recorded = task.source_line_range[0] - 1
        if 0 <= recorded < len(lines) and task_id_of(lines[recorded]) == task.task_id:
            return recorded
        for idx, line in enumerate(lines):
            if task_id_of(line) == task.task_id:
                return idx
        raise ParseError(
            f"task {task.task_id} no longer present in {task.source_file}",
            line_number=task.source_line_range[0],
        )


class StatusReconciler:
    def __init__(
        self,
        tracker: TrackerClient,
        writer: TaskFileWriter,
        *,
        mode: SyncMode = SyncMode.ONE_WAY,
        dry_run: bool = False,
    ):
        self.tracker = tracker
        self.writer = writer
        self.mode = SyncMode(mode)
        self.dry_run = dry_run
        self.logger = get_logger()

    def reconcile(
        self,
        task: TaskRecord,
        issue: IssueRecord,
        *,
        remote_updated_at: datetime | None = None,
        local_modified_at: datetime | None = None,
        issue_created: bool = False,
    ) -> StatusChange:
        """Bring ``task`` and ``issue`` into agreement, writing at most one side.

        ``remote_updated_at`` defaults to ``issue.updated_at`` and
        ``local_modified_at`` to the file's current mtime; pass the values
        observed before this run's own writes (to either side) so they do not
        count as edits. A freshly created issue never wins.
        """
        wanted = issue_state_for(task.status)
        if issue.state is wanted:
            return StatusChange.NONE
        if self.mode is SyncMode.TWO_WAY and not issue_created:
            observed = remote_updated_at or issue.updated_at
            local = local_modified_at or file_modified_at(task.source_file)
            if observed is not None and observed > local:
                return self._apply_to_task(task, issue)
        return self._apply_to_issue(task, issue, wanted)

    def _apply_to_issue(
        self, task: TaskRecord, issue: IssueRecord, wanted: IssueState
    ) -> StatusChange:
        change = (
            StatusChange.ISSUE_CLOSED if wanted is IssueState.CLOSED else StatusChange.ISSUE_REOPENED
        )
        self.logger.log_operation(
            change.value,
            issue_number=issue.number,
            task_id=task.task_id,
            spec=task.spec_name,
            dry_run=self.dry_run,
        )
        if not self.dry_run:
            updated = self.tracker.update_issue(issue.number, state=wanted)
            issue.state = updated.state
            issue.updated_at = updated.updated_at
        return change

    def _apply_to_task(self, task: TaskRecord, issue: IssueRecord) -> StatusChange:
        status = task_status_for(issue.state, task.status)
        change = (
            StatusChange.TASK_COMPLETED if status is TaskStatus.COMPLETED else StatusChange.TASK_REOPENED
        )
        self.logger.log_operation(
            change.value,
            issue_number=issue.number,
            task_id=task.task_id,
            spec=task.spec_name,
            status=status.value,
            dry_run=self.dry_run,
        )
        if not self.dry_run:
            self.writer.set_status(task, status)
        return change


__all__ = [
    "SyncMode",
    "StatusChange",
    "StatusReconciler",
    "TaskFileWriter",
    "issue_state_for",
    "task_status_for",
    "file_modified_at",
]
