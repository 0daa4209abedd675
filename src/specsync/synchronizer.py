"""Task -> issue synchronization.

For each task the synchronizer resolves the task's sync key against the
tracker, then creates, updates or leaves the issue alone. Writes happen only
when the rendered title/body/labels differ from what the tracker holds, so a
re-scan of an unchanged file never touches the tracker.

Duplicate issues for one key are reported, never merged or deleted: the
lowest issue number wins and the others are left for a human to resolve.

Issue creation is never blindly retried. When a create fails with a
transient error the tracker is searched again and an issue that did land is
adopted. Project membership is checked on every non-dry run, so an
assignment that failed once is repaired by the next run.
"""

from __future__ import annotations

from .diffing import DesiredIssue, compute_diff, needs_update
from .errors import (
    SyncConflictError,
    TrackerPermissionError,
    TransientNetworkError,
    classify_error,
)
from .logging import get_logger
from .models import IssueRecord, SyncKey, TaskRecord, TaskResult
from .tagging import CrossRepoTagger
from .tracker import TrackerClient


def render_title(task: TaskRecord) -> str:
    return f"[{task.spec_name}] {task.task_id} {task.title}"


def render_body(task: TaskRecord, marker: str) -> str:
    lines = [
        marker,
        f"**Spec:** {task.spec_name}",
        f"**Task:** {task.task_id}",
    ]
    if task.parent_task_id:
        lines.append(f"**Parent task:** {task.parent_task_id}")
    if task.is_optional:
        lines.append("**Optional:** yes")
    lines.append("")
    if task.description:
        lines.extend([task.description, ""])
    refs = ", ".join(task.requirement_refs) if task.requirement_refs else "_none_"
    lines.append(f"**Requirements:** {refs}")
    return "\n".join(lines) + "\n"


class IssueSynchronizer:
    def __init__(
        self,
        tracker: TrackerClient,
        tagger: CrossRepoTagger,
        *,
        project_id: str | None = None,
        dry_run: bool = False,
    ):
        self.tracker = tracker
        self.tagger = tagger
        self.project_id = project_id
        self.dry_run = dry_run
        self.logger = get_logger()

    def desired_issue(self, task: TaskRecord, key: SyncKey) -> DesiredIssue:
        return DesiredIssue(
            title=render_title(task),
            body=render_body(task, self.tagger.marker_for(key)),
            labels=tuple(self.tagger.labels_for(key)),
        )

    def sync_task(self, task: TaskRecord) -> TaskResult:
        """Create or update the issue for ``task``.

        Per-task failures come back as ``action='failed'``; only a permission
        error escapes, because no other task could succeed either.
        """
        key = self.tagger.key_for(task)
        try:
            return self._sync(task, key)
        except TrackerPermissionError:
            raise
        except Exception as exc:
            info = classify_error(exc)
            self.logger.log_error(
                "task_sync_failed",
                error=info.message,
                sync_key=str(key),
                category=info.category,
                transient=info.transient,
            )
            return TaskResult(task=task, key=key, action="failed", error=info.message)

    def _sync(self, task: TaskRecord, key: SyncKey) -> TaskResult:
        desired = self.desired_issue(task, key)
        candidates = self.tagger.find_existing(self.tracker, key)
        conflicts: list[int] = []
        if len(candidates) > 1:
            conflict = SyncConflictError(key, [c.number for c in candidates])
            self.logger.warning(
                "sync_conflict",
                sync_key=str(key),
                issues=conflict.numbers,
                canonical=conflict.canonical,
                detail=str(conflict),
            )
            conflicts = conflict.numbers[1:]
        if not candidates:
            result = TaskResult(
                task=task,
                key=key,
                action="created",
                issue=self._create(desired, key),
                dry_run=self.dry_run,
            )
        elif not needs_update(desired, candidates[0]):
            result = TaskResult(
                task=task,
                key=key,
                action="unchanged",
                issue=candidates[0],
                conflicts=conflicts,
                remote_updated_at=candidates[0].updated_at,
            )
        else:
            result = TaskResult(
                task=task,
                key=key,
                action="updated",
                issue=self._update(desired, candidates[0], key),
                conflicts=conflicts,
                dry_run=self.dry_run,
                remote_updated_at=candidates[0].updated_at,
            )
        if self.project_id and result.issue is not None and not self.dry_run:
            self._assign_project(
                result, result.issue, self.project_id, check=result.action != "created"
            )
        return result

    def _create(self, desired: DesiredIssue, key: SyncKey) -> IssueRecord | None:
        self.logger.log_task_action("create", str(key), dry_run=self.dry_run)
        if self.dry_run:
            return None
        try:
            return self.tracker.create_issue(desired.title, desired.body, list(desired.labels))
        except TransientNetworkError as exc:
            landed = self.tagger.find_existing(self.tracker, key)
            if not landed:
                raise
            self.logger.warning(
                "create_recovered",
                sync_key=str(key),
                issue_number=landed[0].number,
                error=str(exc),
            )
            return landed[0]

    def _assign_project(
        self, result: TaskResult, issue: IssueRecord, project_id: str, *, check: bool
    ) -> None:
        """Add ``issue`` to the project; failures are recorded on ``result``."""
        try:
            if check and self.tracker.project_contains(issue.number, project_id):
                return
            self.tracker.add_issue_to_project(issue.number, project_id)
        except TrackerPermissionError:
            raise
        except Exception as exc:
            info = classify_error(exc)
            self.logger.log_error(
                "project_assignment_failed",
                error=info.message,
                sync_key=str(result.key),
                issue_number=issue.number,
                category=info.category,
            )
            result.error = f"project assignment failed: {info.message}"
            return
        self.logger.log_operation(
            "project_item_added", issue_number=issue.number, project_id=project_id
        )

    def _update(self, desired: DesiredIssue, issue: IssueRecord, key: SyncKey) -> IssueRecord:
        diff = compute_diff(desired, issue)
        self.logger.log_task_action(
            "update",
            str(key),
            issue.number,
            dry_run=self.dry_run,
            fields=sorted(k for k in diff if k != "body_diff"),
        )
        if self.dry_run:
            return issue
        return self.tracker.update_issue(
            issue.number,
            title=desired.title,
            body=desired.body,
            labels=sorted(set(issue.labels) | set(desired.labels)),
        )


__all__ = ["IssueSynchronizer", "render_title", "render_body"]
