from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from typing import Any

from .models import IssueRecord

MAX_BODY_DIFF_LINES = 120

_ws_re = re.compile(r"\s+")


@dataclass(frozen=True)
class DesiredIssue:
    title: str
    body: str
    labels: tuple[str, ...]


def normalize_title(title: str) -> str:
    return _ws_re.sub(" ", title).strip()


def normalize_body(body: str) -> str:
    lines = body.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip()


def missing_labels(desired: DesiredIssue, issue: IssueRecord) -> set[str]:
    return set(desired.labels) - set(issue.labels)


def needs_update(desired: DesiredIssue, issue: IssueRecord) -> bool:
    if normalize_title(desired.title) != normalize_title(issue.title):
        return True
    if missing_labels(desired, issue):
        return True
    return normalize_body(desired.body) != normalize_body(issue.body)


def compute_diff(desired: DesiredIssue, issue: IssueRecord) -> dict[str, Any]:
    d: dict[str, Any] = {}
    if normalize_title(desired.title) != normalize_title(issue.title):
        d["title_from"] = issue.title
        d["title_to"] = desired.title
    added = missing_labels(desired, issue)
    if added:
        d["labels_added"] = sorted(added)
    old_body = normalize_body(issue.body).splitlines()
    new_body = normalize_body(desired.body).splitlines()
    if old_body != new_body:
        diff_lines = list(difflib.unified_diff(old_body, new_body, lineterm="", n=3))
        if len(diff_lines) > MAX_BODY_DIFF_LINES:
            diff_lines = diff_lines[:MAX_BODY_DIFF_LINES] + ["... (truncated)"]
        d["body_changed"] = True
        d["body_diff"] = diff_lines
    return d


__all__ = [
    "DesiredIssue",
    "needs_update",
    "compute_diff",
    "normalize_title",
    "normalize_body",
    "missing_labels",
    "MAX_BODY_DIFF_LINES",
]
