from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class IssueState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class TaskRecord:
    """One parsed checklist entry from a spec's tasks file.

    Records are rebuilt on every scan; the Markdown file stays the only place
    they live between runs.
    """

    spec_name: str
    task_id: str  # dotted, e.g. "3.2.1"
    title: str
    description: str
    status: TaskStatus
    requirement_refs: tuple[str, ...]
    is_optional: bool
    parent_task_id: str | None
    source_file: Path
    source_line_range: tuple[int, int]  # 1-based, inclusive


@dataclass
class IssueRecord:
    number: int
    title: str
    body: str
    state: IssueState
    labels: frozenset[str]
    source_repo: str | None = None
    updated_at: datetime | None = None
    node_id: str | None = None


@dataclass(frozen=True, order=True)
class SyncKey:
    spec_name: str
    task_id: str
    repo: str

    def __str__(self) -> str:
        return f"{self.spec_name}/{self.task_id}@{self.repo}"


SyncMapping = dict[SyncKey, int]


@dataclass
class TaskResult:
    """Outcome of syncing a single task (issue side + status side)."""

    task: TaskRecord
    key: SyncKey
    action: str  # created | updated | unchanged | failed | pending
    issue: IssueRecord | None = None
    status_change: str = "none"
    conflicts: list[int] = field(default_factory=list)
    error: str | None = None
    dry_run: bool = False
    # issue's last-updated time as found, before this run wrote to it
    remote_updated_at: datetime | None = None

    @property
    def issue_number(self) -> int | None:
        return self.issue.number if self.issue is not None else None


__all__ = [
    "TaskStatus",
    "IssueState",
    "TaskRecord",
    "IssueRecord",
    "SyncKey",
    "SyncMapping",
    "TaskResult",
]
