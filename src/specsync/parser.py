from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ParseError
from .logging import get_logger
from .models import TaskRecord, TaskStatus

TAB_WIDTH = 4
DEFAULT_IN_PROGRESS_MARKER = "-"
IN_PROGRESS_MARKERS = frozenset({"-", "~"})

_checkbox_re = re.compile(
    r'^(?P<indent>[ \t]*)[-*+] \[(?P<mark>[ xX~-])\](?P<star>\*)?(?:[ \t]+(?P<rest>.*?))?[ \t]*$'
)
_task_head_re = re.compile(r'^(?P<id>\d+(?:\.\d+)*)(?P<star>\*)?\.?(?:[ \t]+(?P<title>.*))?$')
_requirements_re = re.compile(
    r'^[ \t]*(?:[-*+][ \t]+)?_Requirements:[ \t]*(?P<refs>.*?)_[ \t]*$', re.IGNORECASE
)
_bullet_re = re.compile(r'^[-*+][ \t]+')


def _indent_width(indent: str) -> int:
    return len(indent.expandtabs(TAB_WIDTH))


def status_for_mark(mark: str) -> TaskStatus:
    if mark in ('x', 'X'):
        return TaskStatus.COMPLETED
    if mark in IN_PROGRESS_MARKERS:
        return TaskStatus.IN_PROGRESS
    return TaskStatus.NOT_STARTED


def mark_for_status(status: TaskStatus, in_progress_marker: str = DEFAULT_IN_PROGRESS_MARKER) -> str:
    if status is TaskStatus.COMPLETED:
        return 'x'
    if status is TaskStatus.IN_PROGRESS:
        return in_progress_marker
    return ' '


def checkbox_span(line: str) -> tuple[int, int] | None:
    """Index span of the checkbox character on a checklist line, if any."""
    m = _checkbox_re.match(line.rstrip('\r\n'))
    if not m:
        return None
    return m.start('mark'), m.end('mark')


def replace_checkbox(
    line: str, status: TaskStatus, in_progress_marker: str = DEFAULT_IN_PROGRESS_MARKER
) -> str:
    """Return ``line`` with only its checkbox character rewritten for ``status``.

    A line already carrying a mark for ``status`` is returned untouched, so an
    upper-case ``X`` is never normalised to ``x``.
    """
    span = checkbox_span(line)
    if span is None:
        raise ParseError(f'Not a checklist line: {line!r}', line=line)
    start, end = span
    if status_for_mark(line[start]) is status:
        return line
    return line[:start] + mark_for_status(status, in_progress_marker) + line[end:]


def task_id_of(line: str) -> str | None:
    m = _checkbox_re.match(line.rstrip('\r\n'))
    if not m or not m.group('rest'):
        return None
    head = _task_head_re.match(m.group('rest'))
    return head.group('id') if head else None


@dataclass
class _Draft:
    task_id: str
    title: str
    status: TaskStatus
    is_optional: bool
    parent_task_id: str | None
    indent: int
    start: int
    end: int
    description: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)

    def freeze(self, spec_name: str, source_file: Path) -> TaskRecord:
        return TaskRecord(
            spec_name=spec_name,
            task_id=self.task_id,
            title=self.title,
            description='\n'.join(self.description),
            status=self.status,
            requirement_refs=tuple(self.requirements),
            is_optional=self.is_optional,
            parent_task_id=self.parent_task_id,
            source_file=source_file,
            source_line_range=(self.start, self.end),
        )


def _parse_checklist(m: re.Match[str], line_number: int, raw: str) -> tuple[str, str, bool]:
    rest = (m.group('rest') or '').strip()
    head = _task_head_re.match(rest)
    if not head:
        raise ParseError('checklist line has no task id', line_number=line_number, line=raw)
    title = (head.group('title') or '').strip()
    if not title:
        raise ParseError(
            f'task {head.group("id")} has no title', line_number=line_number, line=raw
        )
    optional = bool(m.group('star') or head.group('star'))
    return head.group('id'), title, optional


def parse_tasks(
    lines: Iterable[str],
    *,
    spec_name: str,
    source_file: str | Path,
    warnings: list[ParseError] | None = None,
) -> list[TaskRecord]:
    """Parse checklist lines into task records in document order.

    A bad checklist line (no id, no title, duplicate id) is skipped with a
    warning; the rest of the file is still parsed.
    """
    logger = get_logger()
    path = Path(source_file)
    drafts: list[_Draft] = []
    seen: set[str] = set()
    stack: list[_Draft] = []  # open ancestors, strictly increasing indent
    last: _Draft | None = None  # receives requirements; only the task line just above
    current: _Draft | None = None  # receives description lines

    for line_number, raw in enumerate(lines, start=1):
        line = raw.rstrip('\r\n')
        if not line.strip():
            continue
        m = _checkbox_re.match(line)
        if m:
            current = None
            indent = _indent_width(m.group('indent'))
            try:
                task_id, title, optional = _parse_checklist(m, line_number, line)
                if task_id in seen:
                    raise ParseError(
                        f'duplicate task id {task_id}', line_number=line_number, line=line
                    )
            except ParseError as exc:
                exc.source_file = str(path)
                logger.warning(
                    'task_parse_skipped',
                    spec=spec_name,
                    source_file=str(path),
                    line_number=line_number,
                    reason=str(exc),
                )
                if warnings is not None:
                    warnings.append(exc)
                last = None
                continue
            while stack and stack[-1].indent >= indent:
                stack.pop()
            draft = _Draft(
                task_id=task_id,
                title=title,
                status=status_for_mark(m.group('mark')),
                is_optional=optional,
                parent_task_id=stack[-1].task_id if stack else None,
                indent=indent,
                start=line_number,
                end=line_number,
            )
            seen.add(task_id)
            drafts.append(draft)
            stack.append(draft)
            last = current = draft
            continue
        req = _requirements_re.match(line)
        if req:
            if last is not None:
                refs = [r.strip() for r in req.group('refs').split(',')]
                last.requirements.extend(r for r in refs if r)
                last.end = line_number
            continue
        if current is not None and _indent_width(line[: len(line) - len(line.lstrip())]) > current.indent:
            current.description.append(_bullet_re.sub('', line.strip(), count=1))
            current.end = line_number
            continue
        last = current = None

    return [d.freeze(spec_name, path) for d in drafts]


def parse_task_file(
    path: str | Path, *, spec_name: str | None = None, warnings: list[ParseError] | None = None
) -> list[TaskRecord]:
    p = Path(path)
    text = p.read_text(encoding='utf-8')
    return parse_tasks(
        text.splitlines(),
        spec_name=spec_name or p.parent.name,
        source_file=p,
        warnings=warnings,
    )


__all__ = [
    'parse_tasks',
    'parse_task_file',
    'replace_checkbox',
    'checkbox_span',
    'task_id_of',
    'status_for_mark',
    'mark_for_status',
    'ParseError',
]
