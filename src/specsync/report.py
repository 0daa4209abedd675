"""Run report: one entry per task, plus totals and the rebuilt key mapping.

Output structure of ``SyncReport.to_dict`` (stable for JSON tooling):

```
{
    "generated_at": str,
    "dry_run": bool,
    "timed_out": bool,
    "totals": {"tasks": int, "created": int, "updated": int, "unchanged": int,
               "failed": int, "pending": int, "status_changes": int,
               "conflicts": int, "parse_warnings": int},
    "tasks": [
        {"key": "spec/task@repo", "spec": str, "task_id": str, "title": str,
         "action": str, "issue": int|None, "status_change": str,
         "conflicts": [int], "error": str|None}
    ],
    "mapping": {"spec/task@repo": int}
}
```
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import ParseError
from .models import SyncMapping, TaskResult

ACTIONS = ("created", "updated", "unchanged", "failed", "pending")


@dataclass
class SyncReport:
    results: list[TaskResult] = field(default_factory=list)
    parse_warnings: list[ParseError] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)
    dry_run: bool = False
    timed_out: bool = False
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )

    def by_action(self, action: str) -> list[TaskResult]:
        return [r for r in self.results if r.action == action]

    @property
    def ok(self) -> bool:
        return not self.by_action("failed") and not self.by_action("pending")

    def mapping(self) -> SyncMapping:
        return {r.key: r.issue.number for r in self.results if r.issue is not None}

    def totals(self) -> dict[str, int]:
        totals = {action: len(self.by_action(action)) for action in ACTIONS}
        totals["tasks"] = len(self.results)
        totals["status_changes"] = sum(1 for r in self.results if r.status_change != "none")
        totals["conflicts"] = sum(1 for r in self.results if r.conflicts)
        totals["parse_warnings"] = len(self.parse_warnings)
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "dry_run": self.dry_run,
            "timed_out": self.timed_out,
            "totals": self.totals(),
            "tasks": [
                {
                    "key": str(r.key),
                    "spec": r.task.spec_name,
                    "task_id": r.task.task_id,
                    "title": r.task.title,
                    "action": r.action,
                    "issue": r.issue_number,
                    "status_change": r.status_change,
                    "conflicts": list(r.conflicts),
                    "error": r.error,
                }
                for r in self.results
            ],
            "mapping": {str(k): v for k, v in sorted(self.mapping().items())},
        }

    def write_json(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
        return p


def format_report(report: SyncReport) -> list[str]:  # return list of human lines
    totals = report.totals()
    lines = [
        f"[sync] tasks={totals['tasks']} created={totals['created']} updated={totals['updated']} "
        f"unchanged={totals['unchanged']} failed={totals['failed']} pending={totals['pending']}"
        + (" [DRY]" if report.dry_run else "")
        + (" [TIMED OUT]" if report.timed_out else "")
    ]
    for r in report.results:
        number = f"#{r.issue_number}" if r.issue_number else "-"
        line = f"  {r.action:<9} {r.key} {number} :: {r.task.title}"
        if r.status_change != "none":
            line += f" ({r.status_change})"
        if r.conflicts:
            line += " duplicates=" + ",".join(f"#{n}" for n in r.conflicts)
        if r.error:
            line += f" error={r.error}"
        lines.append(line)
    for warning in report.parse_warnings:
        lines.append(f"  warning {warning.source_file}:{warning.line_number}: {warning}")
    return lines


__all__ = ["SyncReport", "format_report", "ACTIONS"]
