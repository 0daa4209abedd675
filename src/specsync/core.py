from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .concurrency import ConcurrencyConfig, ConcurrentProcessor, Deadline, get_optimal_worker_count
from .config import ConfigError, SyncConfig, load_config
from .errors import (
    DiscoveryError,
    ParseError,
    TrackerPermissionError,
    classify_error,
)
from .github import build_github_tracker
from .logging import configure_logging
from .models import TaskRecord, TaskResult
from .observability import configure_telemetry, sync_span
from .parser import parse_task_file
from .reconciler import StatusReconciler, TaskFileWriter, file_modified_at
from .report import SyncReport
from .scanner import TaskScanner
from .synchronizer import IssueSynchronizer
from .tagging import CrossRepoTagger
from .tracker import InMemoryTracker, TrackerClient


@dataclass
class RunState:
    """Everything one sync run knows, passed explicitly from phase to phase."""

    dry_run: bool
    deadline: Deadline
    files: list[Path] = field(default_factory=list)
    # task file mtimes as read before any checkbox rewrite in this run
    file_mtimes: dict[Path, datetime] = field(default_factory=dict)
    tasks: list[TaskRecord] = field(default_factory=list)
    parse_warnings: list[ParseError] = field(default_factory=list)
    results: list[TaskResult] = field(default_factory=list)
    timed_out: bool = False


class SpecSync:
    def __init__(self, cfg: SyncConfig, tracker: TrackerClient | None = None):
        self.cfg = cfg
        self._mock = os.environ.get("SPECSYNC_MOCK") == "1"
        self._logger = configure_logging(
            json_logging=cfg.logging_json_enabled, level=cfg.logging_level
        )
        if cfg.telemetry_enabled:
            configure_telemetry(exporter=cfg.telemetry_exporter)
        self.tracker: TrackerClient = tracker if tracker is not None else self._build_tracker()
        self.tagger = CrossRepoTagger(cfg.repo_identifier, cross_repo=cfg.cross_repo)
        self.writer = TaskFileWriter(cfg.in_progress_marker)
        self.scanner = TaskScanner(cfg.specs_root, cfg.tasks_filename)

    @classmethod
    def from_config_path(cls, path: str | Path, tracker: TrackerClient | None = None) -> SpecSync:
        return cls(load_config(path), tracker=tracker)

    def _build_tracker(self) -> TrackerClient:
        if self._mock or self.cfg.tracker_kind == "memory":
            return InMemoryTracker(self.cfg.repo_identifier)
        if not self.cfg.github_repo:
            raise ConfigError("tracker.repo (owner/name) is required for the github tracker")
        return build_github_tracker(
            self.cfg.github_repo,
            load_env=self.cfg.env_load_dotenv,
            dotenv_path=self.cfg.env_dotenv_path,
        )

    # --- phases -----------------------------------------------------------
    def scan(self, state: RunState) -> None:
        state.files = list(self.scanner)
        self._logger.log_operation(
            "scan_complete", spec_root=str(self.cfg.specs_root), file_count=len(state.files)
        )

    def parse(self, state: RunState) -> None:
        for path in state.files:
            spec_name = TaskScanner.spec_name_for(path)
            try:
                state.file_mtimes[path] = file_modified_at(path)
                tasks = parse_task_file(path, spec_name=spec_name, warnings=state.parse_warnings)
            except FileNotFoundError:
                self._logger.warning("tasks_file_vanished", source_file=str(path))
                continue
            except OSError as exc:
                raise DiscoveryError(f"Cannot read tasks file {path}: {exc}") from exc
            state.tasks.extend(tasks)
        self._logger.log_operation(
            "parse_complete",
            task_count=len(state.tasks),
            warning_count=len(state.parse_warnings),
        )

    def process(self, state: RunState) -> None:
        synchronizer = IssueSynchronizer(
            self.tracker, self.tagger, project_id=self.cfg.project_id, dry_run=state.dry_run
        )
        reconciler = StatusReconciler(
            self.tracker, self.writer, mode=self.cfg.sync_mode, dry_run=state.dry_run
        )

        def _job(task: TaskRecord) -> TaskResult:
            result = synchronizer.sync_task(task)
            if result.action == "failed" or result.issue is None:
                return result
            try:
                change = reconciler.reconcile(
                    task,
                    result.issue,
                    remote_updated_at=result.remote_updated_at,
                    local_modified_at=state.file_mtimes.get(task.source_file),
                    issue_created=result.action == "created",
                )
            except TrackerPermissionError:
                raise
            except Exception as exc:
                info = classify_error(exc)
                self._logger.log_error(
                    "status_reconcile_failed",
                    error=info.message,
                    sync_key=str(result.key),
                    category=info.category,
                )
                result.action = "failed"
                result.error = info.message
                return result
            result.status_change = change.value
            return result

        workers = self.cfg.concurrency_max_workers
        if self.cfg.concurrency_enabled:
            workers = get_optimal_worker_count(len(state.tasks), workers)
            self._logger.log_operation(
                "concurrency_adjusted", task_count=len(state.tasks), workers=workers
            )
        processor = ConcurrentProcessor(
            ConcurrencyConfig(enabled=self.cfg.concurrency_enabled, max_workers=workers)
        )
        outcomes = processor.process(
            state.tasks,
            key=self.tagger.key_for,
            func=_job,
            deadline=state.deadline,
            stop_on=(TrackerPermissionError,),
        )
        fatal: BaseException | None = None
        for outcome in outcomes:
            task = outcome.item
            key = self.tagger.key_for(task)
            if outcome.pending:
                state.results.append(TaskResult(task=task, key=key, action="pending"))
                continue
            if outcome.error is not None:
                if isinstance(outcome.error, TrackerPermissionError) and fatal is None:
                    fatal = outcome.error
                state.results.append(
                    TaskResult(
                        task=task,
                        key=key,
                        action="failed",
                        error=classify_error(outcome.error).message,
                    )
                )
                continue
            if outcome.result is not None:
                state.results.append(outcome.result)
        if fatal is not None:
            raise fatal
        state.timed_out = any(r.action == "pending" for r in state.results)

    # --- public API -------------------------------------------------------
    def tasks(self) -> list[TaskRecord]:
        state = RunState(dry_run=True, deadline=Deadline(None))
        self.scan(state)
        self.parse(state)
        return state.tasks

    def sync(self, *, dry_run: bool | None = None, timeout: float | None = None) -> SyncReport:
        """Run scan -> parse -> sync -> reconcile and return the per-task report.

        Per-task failures end up in the report; discovery and permission
        failures raise.
        """
        effective_dry_run = self.cfg.dry_run if dry_run is None else dry_run
        seconds = timeout if timeout is not None else self.cfg.timeout_seconds
        state = RunState(dry_run=effective_dry_run, deadline=Deadline(seconds))
        attrs: dict[str, Any] = {
            "dry_run": effective_dry_run,
            "mode": self.cfg.sync_mode.value,
            "cross_repo": self.cfg.cross_repo,
        }
        try:
            with self._logger.timed_operation("sync", **attrs), sync_span(
                "specsync.sync", **attrs
            ) as span:
                self.tagger.require_permissions(self.tracker)
                self.scan(state)
                self.parse(state)
                self.process(state)
                report = SyncReport(
                    results=state.results,
                    parse_warnings=state.parse_warnings,
                    files=state.files,
                    dry_run=state.dry_run,
                    timed_out=state.timed_out,
                )
                totals = report.totals()
                for name, value in totals.items():
                    span.set_attribute(f"specsync.totals.{name}", value)
                self._logger.log_operation(
                    "sync_complete", **{f"total_{name}": value for name, value in totals.items()}
                )
                return report
        except Exception as exc:
            info = classify_error(exc)
            self._logger.log_error(
                "sync_failed",
                category=info.category,
                transient=info.transient,
                original_type=info.original_type,
                error=info.message,
            )
            raise


__all__ = ["SpecSync", "RunState"]
