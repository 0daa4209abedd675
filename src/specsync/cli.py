"""specsync CLI.

Subcommands:
  sync   -> create/update issues for every task and reconcile status
  tasks  -> list parsed tasks (human or JSON)

Exit codes: 0 when every task synced, 1 when some tasks failed or were left
pending, 2 when the run could not start (bad config, unreadable spec root,
missing permissions).
"""

from __future__ import annotations

import argparse
import json
import os
from collections.abc import Iterable
from typing import Any

from specsync.config import ConfigError, SyncConfig, locate_config
from specsync.core import SpecSync
from specsync.errors import DiscoveryError, TrackerPermissionError, redact
from specsync.reconciler import SyncMode
from specsync.report import format_report

REPO_HELP = "Override target repository (owner/repo)"
CONFIG_HELP = "Config file (a workflow-level .github/specsync.config.yaml wins when present)"

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="specsync", description="Sync spec task checklists with GitHub issues"
    )
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Only print the totals line (env: SPECSYNC_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    ps = sub.add_parser("sync", help="Sync tasks to issues and reconcile status")
    ps.add_argument("--config", help=CONFIG_HELP)
    ps.add_argument("--repo", help=REPO_HELP)
    ps.add_argument("--dry-run", action="store_true", help="Compute actions without writing")
    ps.add_argument("--mode", choices=[m.value for m in SyncMode])
    ps.add_argument(
        "--cross-repo",
        action="store_true",
        help="Tag issues with repo:<id> so several repositories share one tracker",
    )
    ps.add_argument("--summary-json", help="Write the run report as JSON to this path")
    ps.add_argument("--timeout", type=float, help="Run deadline in seconds")

    pt = sub.add_parser("tasks", help="List parsed tasks")
    pt.add_argument("--config", help=CONFIG_HELP)
    pt.add_argument("--json", action="store_true", help="Emit JSON instead of text")
    return p


def _print_lines(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def _apply_overrides(cfg: SyncConfig, args: argparse.Namespace) -> SyncConfig:
    repo = getattr(args, "repo", None)
    if repo:
        cfg.github_repo = repo
    mode = getattr(args, "mode", None)
    if mode:
        cfg.sync_mode = SyncMode(mode)
    if getattr(args, "cross_repo", False):
        cfg.cross_repo = True
    if cfg.cross_repo and not (cfg.repo_id or cfg.github_repo):
        raise ConfigError("--cross-repo requires --repo, tracker.repo or sync.repo_id")
    timeout = getattr(args, "timeout", None)
    if timeout is not None:
        if timeout <= 0:
            raise ConfigError("--timeout must be positive")
        cfg.timeout_seconds = timeout
    return cfg


def _cmd_sync(cfg: SyncConfig, args: argparse.Namespace) -> int:
    suite = SpecSync(cfg)
    report = suite.sync(dry_run=True if args.dry_run else None)
    lines = format_report(report)
    _print_lines(lines[:1] if args.quiet else lines)
    if args.summary_json:
        path = report.write_json(args.summary_json)
        if not args.quiet:
            print(f"[sync] wrote {path}")
    return 0 if report.ok else 1


def _cmd_tasks(cfg: SyncConfig, args: argparse.Namespace) -> int:
    tasks = SpecSync(cfg).tasks()
    if args.json:
        payload = [
            {
                "spec": t.spec_name,
                "task_id": t.task_id,
                "title": t.title,
                "status": t.status.value,
                "optional": t.is_optional,
                "parent": t.parent_task_id,
                "requirements": list(t.requirement_refs),
                "source_file": str(t.source_file),
                "lines": list(t.source_line_range),
            }
            for t in tasks
        ]
        print(json.dumps(payload, indent=2))
        return 0
    for t in tasks:
        optional = " (optional)" if t.is_optional else ""
        print(f"{t.spec_name:<20} {t.task_id:<8} {t.status.value:<12} {t.title}{optional}")
    if not args.quiet:
        print(f"[tasks] {len(tasks)} task(s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "quiet", False) and os.environ.get("SPECSYNC_QUIET") == "1":
        args.quiet = True
    handlers = {"sync": _cmd_sync, "tasks": _cmd_tasks}
    handler = handlers.get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    try:
        cfg = _apply_overrides(locate_config(args.config), args)
        return handler(cfg, args)
    except (ConfigError, DiscoveryError, TrackerPermissionError) as exc:
        print(f"[{args.cmd}] error: {redact(str(exc))}")
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
