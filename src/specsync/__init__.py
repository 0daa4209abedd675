"""specsync - keep spec task checklists and GitHub issues in step.

High-level public API (stable):

from specsync import SpecSync, load_config

suite = SpecSync.from_config_path('specsync.config.yaml')
report = suite.sync(dry_run=True)
print(report.totals())

Every checklist item in ``<root>/<spec>/tasks.md`` maps to exactly one issue,
found again on later runs through its ``spec:`` / ``task:`` (and, in
cross-repo mode, ``repo:``) labels.
"""

from __future__ import annotations

from .config import SyncConfig, load_config
from .core import SpecSync
from .models import IssueRecord, SyncKey, TaskRecord, TaskStatus
from .report import SyncReport

__version__ = "0.1.0"


def __getattr__(name: str) -> object:
    """Lazy access to the less common entry points."""
    if name == "InMemoryTracker":
        from .tracker import InMemoryTracker  # noqa: PLC0415

        return InMemoryTracker
    if name == "GitHubTracker":
        from .github import GitHubTracker  # noqa: PLC0415

        return GitHubTracker
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "load_config",
    "SyncConfig",
    "SpecSync",
    "SyncReport",
    "TaskRecord",
    "TaskStatus",
    "IssueRecord",
    "SyncKey",
    "InMemoryTracker",
    "GitHubTracker",
    "__version__",
]
