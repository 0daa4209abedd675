from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Literal, TypeVar, cast

import yaml

from .reconciler import SyncMode

CONFIG_DEFAULT = "specsync.config.yaml"
WORKFLOW_CONFIG = Path(".github") / "specsync.config.yaml"

T = TypeVar("T")


class ConfigError(RuntimeError):
    pass


@dataclass
class SyncConfig:
    version: int
    config_path: Path | None
    specs_root: Path
    tasks_filename: str
    in_progress_marker: str
    tracker_kind: str
    github_repo: str | None
    project_id: str | None
    sync_mode: SyncMode
    cross_repo: bool
    repo_id: str | None
    dry_run: bool
    timeout_seconds: float | None
    # Concurrency configuration
    concurrency_enabled: bool
    concurrency_max_workers: int
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str
    # Telemetry configuration
    telemetry_enabled: bool
    telemetry_exporter: str
    # Environment configuration
    env_load_dotenv: bool
    env_dotenv_path: str | None

    @property
    def repo_identifier(self) -> str:
        """Repository component of every sync key."""
        return self.repo_id or self.github_repo or "local"


@dataclass(frozen=True)
class ResolvedConfig(Generic[T]):
    source: Literal["workflow", "custom", "default"]
    value: T


def resolve_config(workflow: T | None, custom: T | None, default: T) -> ResolvedConfig[T]:
    """Pick the highest-precedence tier that is present: workflow > custom > default."""
    if workflow is not None:
        return ResolvedConfig("workflow", workflow)
    if custom is not None:
        return ResolvedConfig("custom", custom)
    return ResolvedConfig("default", default)


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name, {}) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return cast(dict[str, Any], section)


def _optional_str(value: Any) -> str | None:
    value = _resolve_env_var(value)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_config(raw: dict[str, Any], *, base_dir: Path, config_path: Path | None = None) -> SyncConfig:
    src = _section(raw, "source")
    tracker = _section(raw, "tracker")
    sync = _section(raw, "sync")
    concurrency_config = _section(raw, "concurrency")
    logging_config = _section(raw, "logging")
    telemetry_config = _section(raw, "telemetry")
    env_config = _section(raw, "environment")

    try:
        mode = SyncMode(str(sync.get("mode", SyncMode.ONE_WAY.value)))
    except ValueError as exc:
        raise ConfigError(f"Unknown sync mode: {sync.get('mode')!r}") from exc

    marker = str(src.get("in_progress_marker", "-"))
    if marker not in {"-", "~"}:
        raise ConfigError(f"in_progress_marker must be '-' or '~', got {marker!r}")

    timeout_any = sync.get("timeout_seconds")
    timeout = float(timeout_any) if timeout_any is not None else None
    if timeout is not None and timeout <= 0:
        raise ConfigError("sync.timeout_seconds must be positive")

    workers = int(concurrency_config.get("max_workers", 4))
    if workers < 1:
        raise ConfigError("concurrency.max_workers must be at least 1")

    cfg = SyncConfig(
        version=int(raw.get("version", 1)),
        config_path=config_path,
        specs_root=base_dir / src.get("root", ".kiro/specs"),
        tasks_filename=src.get("filename", "tasks.md"),
        in_progress_marker=marker,
        tracker_kind=str(tracker.get("kind", "github")),
        github_repo=_optional_str(tracker.get("repo")),
        project_id=_optional_str(tracker.get("project_id")),
        sync_mode=mode,
        cross_repo=bool(sync.get("cross_repo", False)),
        repo_id=_optional_str(sync.get("repo_id")),
        dry_run=bool(sync.get("dry_run", False)),
        timeout_seconds=timeout,
        concurrency_enabled=bool(concurrency_config.get("enabled", False)),
        concurrency_max_workers=workers,
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=logging_config.get("level", "INFO"),
        telemetry_enabled=bool(telemetry_config.get("enabled", False)),
        telemetry_exporter=str(telemetry_config.get("exporter", "console")),
        env_load_dotenv=bool(env_config.get("load_dotenv", True)),
        env_dotenv_path=env_config.get("dotenv_path"),
    )
    if cfg.tracker_kind not in {"github", "memory"}:
        raise ConfigError(f"Unknown tracker kind: {cfg.tracker_kind!r}")
    if cfg.cross_repo and not (cfg.repo_id or cfg.github_repo):
        raise ConfigError("sync.cross_repo requires sync.repo_id or tracker.repo")
    return cfg


def default_config(base_dir: str | Path = ".") -> SyncConfig:
    return build_config({}, base_dir=Path(base_dir))


def load_config(path: str | Path, *, base_dir: str | Path | None = None) -> SyncConfig:
    """Load a YAML config; relative paths resolve against ``base_dir`` or the file's folder."""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration root must be a mapping: {p}")
    return build_config(
        cast(dict[str, Any], loaded),
        base_dir=Path(base_dir) if base_dir is not None else p.parent,
        config_path=p,
    )


def locate_config(custom: str | Path | None = None, *, cwd: str | Path = ".") -> SyncConfig:
    """Load the effective configuration.

    A workflow-level file (``.github/specsync.config.yaml``) beats an explicit
    ``custom`` path, which beats built-in defaults.
    """
    base = Path(cwd)
    workflow_path = base / WORKFLOW_CONFIG
    custom_path = Path(custom) if custom else base / CONFIG_DEFAULT
    resolved = resolve_config(
        workflow_path if workflow_path.is_file() else None,
        custom_path if custom_path.is_file() else None,
        None,
    )
    if resolved.value is None:
        if custom:
            raise ConfigError(f"Configuration file not found: {custom_path}")
        return default_config(base)
    if resolved.source == "workflow":
        return load_config(resolved.value, base_dir=base)
    return load_config(resolved.value)


__all__ = [
    "SyncConfig",
    "ConfigError",
    "ResolvedConfig",
    "resolve_config",
    "build_config",
    "default_config",
    "load_config",
    "locate_config",
    "CONFIG_DEFAULT",
]
