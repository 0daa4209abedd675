"""Tracker client contract plus an in-memory implementation.

The engine only ever talks to a ``TrackerClient``; concrete wire protocols
(``github.GitHubTracker``) live behind it. ``InMemoryTracker`` backs mock mode
(``SPECSYNC_MOCK=1``) and the test-suite.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from .errors import TrackerError, TrackerPermissionError
from .models import IssueRecord, IssueState


class TrackerClient(Protocol):  # pragma: no cover - interface only
    def create_issue(self, title: str, body: str, labels: Iterable[str]) -> IssueRecord: ...

    def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: Iterable[str] | None = None,
        state: IssueState | None = None,
    ) -> IssueRecord: ...

    def search_issues_by_label(self, label: str) -> Sequence[IssueRecord]: ...

    def add_issue_to_project(self, issue_number: int, project_id: str) -> None: ...

    def project_contains(self, issue_number: int, project_id: str) -> bool: ...

    def verify_permissions(self, *, org_scope: bool = False) -> None: ...


@dataclass
class WriteRecord:
    op: str  # create | update | project
    number: int
    fields: dict[str, Any]


class InMemoryTracker:
    """Thread-safe tracker that keeps issues in a dict.

    Every mutation is appended to ``writes`` so callers can assert on exactly
    what a run changed. ``clock`` returns the timestamp stamped on writes;
    tests advance it to model "who changed last".
    """

    def __init__(
        self,
        repo: str = "local/mock",
        *,
        start_number: int = 1,
        org_permission: bool = True,
        clock: Any = None,
    ):
        self.repo = repo
        self.issues: dict[int, IssueRecord] = {}
        self.writes: list[WriteRecord] = []
        self.projects: dict[str, list[int]] = {}
        self.searches: list[str] = []
        self.org_permission = org_permission
        self._next = start_number
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    # --- test helpers ----------------------------------------------------
    def seed(
        self,
        title: str,
        body: str = "",
        labels: Iterable[str] = (),
        state: IssueState = IssueState.OPEN,
        updated_at: datetime | None = None,
    ) -> IssueRecord:
        """Insert an issue without recording a write (pre-existing state)."""
        with self._lock:
            issue = IssueRecord(
                number=self._next,
                title=title,
                body=body,
                state=state,
                labels=frozenset(labels),
                source_repo=self.repo,
                updated_at=updated_at or self._clock(),
            )
            self.issues[issue.number] = issue
            self._next += 1
            return replace(issue)

    def touch(self, number: int, *, state: IssueState | None = None, at: datetime | None = None) -> IssueRecord:
        """Simulate an external edit (a human reopening or closing an issue)."""
        with self._lock:
            issue = self.issues[number]
            issue.state = state or issue.state
            issue.updated_at = at or (self._clock() + timedelta(seconds=1))
            return replace(issue)

    def reset_writes(self) -> None:
        with self._lock:
            self.writes.clear()

    # --- TrackerClient -----------------------------------------------------
    def create_issue(self, title: str, body: str, labels: Iterable[str]) -> IssueRecord:
        with self._lock:
            issue = IssueRecord(
                number=self._next,
                title=title,
                body=body,
                state=IssueState.OPEN,
                labels=frozenset(labels),
                source_repo=self.repo,
                updated_at=self._clock(),
            )
            self._next += 1
            self.issues[issue.number] = issue
            self.writes.append(
                WriteRecord("create", issue.number, {"title": title, "labels": sorted(issue.labels)})
            )
            return replace(issue)

    def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: Iterable[str] | None = None,
        state: IssueState | None = None,
    ) -> IssueRecord:
        with self._lock:
            issue = self.issues.get(number)
            if issue is None:
                raise TrackerError(f"Issue #{number} not found", status=404)
            fields: dict[str, Any] = {}
            if title is not None:
                issue.title = title
                fields["title"] = title
            if body is not None:
                issue.body = body
                fields["body"] = body
            if labels is not None:
                issue.labels = frozenset(labels)
                fields["labels"] = sorted(issue.labels)
            if state is not None:
                issue.state = IssueState(state)
                fields["state"] = issue.state.value
            issue.updated_at = self._clock()
            self.writes.append(WriteRecord("update", number, fields))
            return replace(issue)

    def search_issues_by_label(self, label: str) -> list[IssueRecord]:
        with self._lock:
            self.searches.append(label)
            return [replace(i) for i in sorted(self.issues.values(), key=lambda i: i.number) if label in i.labels]

    def add_issue_to_project(self, issue_number: int, project_id: str) -> None:
        with self._lock:
            if issue_number not in self.issues:
                raise TrackerError(f"Issue #{issue_number} not found", status=404)
            self.projects.setdefault(project_id, []).append(issue_number)
            self.writes.append(WriteRecord("project", issue_number, {"project_id": project_id}))

    def project_contains(self, issue_number: int, project_id: str) -> bool:
        with self._lock:
            return issue_number in self.projects.get(project_id, [])

    def verify_permissions(self, *, org_scope: bool = False) -> None:
        if org_scope and not self.org_permission:
            raise TrackerPermissionError(
                "Cross-repo sync requires organization-level access to the tracker"
            )


__all__ = ["TrackerClient", "InMemoryTracker", "WriteRecord"]
