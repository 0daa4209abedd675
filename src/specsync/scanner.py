"""Discovery of spec task files.

A specs root holds one directory per spec; each spec directory holds a single
tasks file (``tasks.md`` by default). The scanner only lists paths; it never
opens a file.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

from .errors import DiscoveryError

DEFAULT_TASKS_FILENAME = "tasks.md"


class TaskScanner:
    """Restartable, lazy listing of ``<root>/<spec>/<filename>`` paths.

    Every ``iter()`` starts a fresh walk, so the same scanner can be reused
    across runs. A missing root yields nothing; an unreadable one raises
    ``DiscoveryError``.
    """

    def __init__(self, root: str | Path, filename: str = DEFAULT_TASKS_FILENAME):
        self.root = Path(root)
        self.filename = filename

    def __iter__(self) -> Iterator[Path]:
        return self._walk()

    def _walk(self) -> Iterator[Path]:
        try:
            with os.scandir(self.root) as it:
                entries = sorted(it, key=lambda e: e.name)
        except FileNotFoundError:
            return
        except NotADirectoryError as exc:
            raise DiscoveryError(f"Spec root is not a directory: {self.root}") from exc
        except OSError as exc:
            raise DiscoveryError(f"Cannot read spec root {self.root}: {exc}") from exc
        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if not entry.is_dir():
                    continue
            except OSError as exc:  # pragma: no cover - stat failure on a racing entry
                raise DiscoveryError(f"Cannot stat {entry.path}: {exc}") from exc
            candidate = Path(entry.path) / self.filename
            if candidate.is_file():
                yield candidate

    @staticmethod
    def spec_name_for(path: Path) -> str:
        return path.parent.name


def scan_task_files(root: str | Path, filename: str = DEFAULT_TASKS_FILENAME) -> list[Path]:
    return list(TaskScanner(root, filename))


__all__ = ["TaskScanner", "scan_task_files", "DEFAULT_TASKS_FILENAME"]
