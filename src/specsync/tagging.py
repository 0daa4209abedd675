"""Sync key construction, key labels and tracker-side key lookup.

Issues are tied to tasks purely through labels:

* ``spec:<name>`` and ``task:<id>`` always;
* ``repo:<identifier>`` when cross-repo mode is on, so that the same task id
  in two repositories resolves to two different issues even inside one
  aggregating project.

No local mapping file is consulted; the tracker search is the source of truth
for "does an issue for this key already exist".
"""

from __future__ import annotations

from .errors import TrackerPermissionError
from .logging import get_logger
from .models import IssueRecord, SyncKey, TaskRecord
from .tracker import TrackerClient

SPEC_PREFIX = "spec:"
TASK_PREFIX = "task:"
REPO_PREFIX = "repo:"


class CrossRepoTagger:
    def __init__(self, repo: str, *, cross_repo: bool = False):
        if cross_repo and not repo:
            raise ValueError("cross-repo mode requires a repository identifier")
        self.repo = repo
        self.cross_repo = cross_repo
        self._permissions_checked = False

    def key_for(self, task: TaskRecord) -> SyncKey:
        return SyncKey(task.spec_name, task.task_id, self.repo)

    def labels_for(self, key: SyncKey) -> list[str]:
        labels = [f"{SPEC_PREFIX}{key.spec_name}", f"{TASK_PREFIX}{key.task_id}"]
        if self.cross_repo:
            labels.append(f"{REPO_PREFIX}{key.repo}")
        return labels

    def search_label(self, key: SyncKey) -> str:
        return f"{TASK_PREFIX}{key.task_id}"

    def marker_for(self, key: SyncKey) -> str:
        return f"<!-- specsync:key={key} -->"

    def carries_key(self, issue: IssueRecord, key: SyncKey) -> bool:
        if not set(self.labels_for(key)) <= issue.labels:
            return False
        if self.cross_repo:
            own = f"{REPO_PREFIX}{key.repo}"
            if any(lbl.startswith(REPO_PREFIX) and lbl != own for lbl in issue.labels):
                return False
        return True

    def find_existing(self, tracker: TrackerClient, key: SyncKey) -> list[IssueRecord]:
        """All tracker issues carrying exactly ``key``, lowest number first."""
        found = tracker.search_issues_by_label(self.search_label(key))
        matches = [issue for issue in found if self.carries_key(issue, key)]
        return sorted(matches, key=lambda issue: issue.number)

    def require_permissions(self, tracker: TrackerClient) -> None:
        """Fail fast when cross-repo mode lacks organization-level access."""
        if not self.cross_repo or self._permissions_checked:
            return
        try:
            tracker.verify_permissions(org_scope=True)
        except TrackerPermissionError:
            get_logger().log_error("cross_repo_permission_denied", repo=self.repo)
            raise
        self._permissions_checked = True


__all__ = ["CrossRepoTagger", "SPEC_PREFIX", "TASK_PREFIX", "REPO_PREFIX"]
