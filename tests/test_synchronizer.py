from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from specsync.errors import TrackerError, TrackerPermissionError, TransientNetworkError
from specsync.models import IssueState, TaskRecord, TaskStatus
from specsync.synchronizer import IssueSynchronizer, render_body, render_title
from specsync.tagging import CrossRepoTagger
from specsync.tracker import InMemoryTracker


def _task(task_id: str = "2.1", title: str = "Create download utility", **overrides: Any) -> TaskRecord:
    base: dict[str, Any] = {
        "spec_name": "kiro-workers",
        "task_id": task_id,
        "title": title,
        "description": "",
        "status": TaskStatus.NOT_STARTED,
        "requirement_refs": ("2.1",),
        "is_optional": False,
        "parent_task_id": "2",
        "source_file": Path("kiro-workers/tasks.md"),
        "source_line_range": (3, 3),
    }
    base.update(overrides)
    return TaskRecord(**base)


def _sync(tracker: InMemoryTracker, **kw: Any) -> IssueSynchronizer:
    return IssueSynchronizer(tracker, CrossRepoTagger("acme/app"), **kw)


def test_render_title_and_body() -> None:
    task = _task(description="Handle retries", is_optional=True)
    assert render_title(task) == "[kiro-workers] 2.1 Create download utility"
    body = render_body(task, "<!-- marker -->")
    assert body.startswith("<!-- marker -->\n")
    assert "**Parent task:** 2" in body
    assert "**Optional:** yes" in body
    assert "Handle retries" in body
    assert body.rstrip().endswith("**Requirements:** 2.1")


def test_create_then_idempotent() -> None:
    tracker = InMemoryTracker()
    synchronizer = _sync(tracker)

    first = synchronizer.sync_task(_task())
    assert first.action == "created"
    assert first.issue is not None
    assert first.issue.labels == {"spec:kiro-workers", "task:2.1"}
    assert first.issue.state is IssueState.OPEN

    tracker.reset_writes()
    second = synchronizer.sync_task(_task())
    assert second.action == "unchanged"
    assert second.issue_number == first.issue_number
    assert tracker.writes == []


def test_title_change_updates_in_place_and_keeps_foreign_labels() -> None:
    tracker = InMemoryTracker()
    synchronizer = _sync(tracker)
    created = synchronizer.sync_task(_task())
    assert created.issue is not None
    tracker.update_issue(
        created.issue.number, labels=sorted(created.issue.labels | {"priority:high"})
    )

    result = synchronizer.sync_task(_task(title="Create resilient download utility"))
    assert result.action == "updated"
    assert result.issue_number == created.issue_number
    assert len(tracker.issues) == 1
    issue = tracker.issues[created.issue.number]
    assert issue.title == "[kiro-workers] 2.1 Create resilient download utility"
    assert "priority:high" in issue.labels


def test_whitespace_only_body_drift_is_not_an_update() -> None:
    tracker = InMemoryTracker()
    synchronizer = _sync(tracker)
    created = synchronizer.sync_task(_task())
    assert created.issue is not None
    number = created.issue.number
    tracker.issues[number].body = tracker.issues[number].body.replace("\n", "  \r\n") + "\n\n"
    tracker.reset_writes()
    assert synchronizer.sync_task(_task()).action == "unchanged"
    assert tracker.writes == []


def test_duplicates_use_lowest_number_and_are_reported() -> None:
    tracker = InMemoryTracker()
    labels = ["spec:kiro-workers", "task:2.1"]
    synchronizer = _sync(tracker)
    desired = synchronizer.desired_issue(_task(), synchronizer.tagger.key_for(_task()))
    tracker.seed(desired.title, desired.body, labels)  # 1
    tracker.seed("unrelated", "", ["task:2.1", "spec:other"])  # 2
    tracker.seed(desired.title, desired.body, labels)  # 3

    result = synchronizer.sync_task(_task())
    assert result.action == "unchanged"
    assert result.issue_number == 1
    assert result.conflicts == [3]
    assert set(tracker.issues) == {1, 2, 3}
    assert tracker.writes == []


def test_dry_run_writes_nothing() -> None:
    tracker = InMemoryTracker()
    result = _sync(tracker, dry_run=True).sync_task(_task())
    assert result.action == "created"
    assert result.issue is None
    assert result.dry_run is True
    assert tracker.issues == {}


def test_project_assignment() -> None:
    tracker = InMemoryTracker()
    synchronizer = _sync(tracker, project_id="PVT_123")
    result = synchronizer.sync_task(_task())
    assert tracker.projects == {"PVT_123": [result.issue_number]}

    tracker.reset_writes()
    assert synchronizer.sync_task(_task()).action == "unchanged"
    assert tracker.writes == []


class _ProjectOutageTracker(InMemoryTracker):
    def __init__(self) -> None:
        super().__init__()
        self.project_failures = 1

    def add_issue_to_project(self, issue_number, project_id):  # type: ignore[override]
        if self.project_failures:
            self.project_failures -= 1
            raise TrackerError("project board unavailable", status=502)
        super().add_issue_to_project(issue_number, project_id)


def test_failed_project_assignment_is_repaired_next_run() -> None:
    tracker = _ProjectOutageTracker()
    synchronizer = _sync(tracker, project_id="PVT_123")

    first = synchronizer.sync_task(_task())
    assert first.action == "created"
    assert first.issue is not None
    assert first.error is not None and "project assignment failed" in first.error
    assert tracker.projects == {}

    second = synchronizer.sync_task(_task())
    assert second.action == "unchanged"
    assert second.error is None
    assert tracker.projects == {"PVT_123": [first.issue_number]}
    assert len(tracker.issues) == 1


class _TimeoutAfterCreateTracker(InMemoryTracker):
    def create_issue(self, title, body, labels):  # type: ignore[override]
        super().create_issue(title, body, labels)
        raise TransientNetworkError("read timed out")


def test_create_that_landed_despite_timeout_is_adopted() -> None:
    tracker = _TimeoutAfterCreateTracker()
    result = _sync(tracker).sync_task(_task())
    assert result.action == "created"
    assert result.issue is not None
    assert list(tracker.issues) == [result.issue_number]
    assert [w.op for w in tracker.writes] == ["create"]


class _TimeoutBeforeCreateTracker(InMemoryTracker):
    def create_issue(self, title, body, labels):  # type: ignore[override]
        raise TransientNetworkError("connection reset")


def test_create_that_never_landed_fails_without_retrying() -> None:
    tracker = _TimeoutBeforeCreateTracker()
    result = _sync(tracker).sync_task(_task())
    assert result.action == "failed"
    assert tracker.issues == {}


class _FlakyTracker(InMemoryTracker):
    def create_issue(self, title, body, labels):  # type: ignore[override]
        if "2.2" in title:
            raise TrackerError("validation failed", status=422)
        return super().create_issue(title, body, labels)


def test_one_task_failure_does_not_stop_the_next() -> None:
    tracker = _FlakyTracker()
    synchronizer = _sync(tracker)
    failed = synchronizer.sync_task(_task("2.2", "Write tests"))
    ok = synchronizer.sync_task(_task("2.3", "Document"))
    assert failed.action == "failed"
    assert failed.error == "validation failed"
    assert ok.action == "created"


class _ForbiddenTracker(InMemoryTracker):
    def search_issues_by_label(self, label):  # type: ignore[override]
        raise TrackerPermissionError("token lacks issues:write")


def test_permission_errors_propagate() -> None:
    with pytest.raises(TrackerPermissionError):
        _sync(_ForbiddenTracker()).sync_task(_task())
