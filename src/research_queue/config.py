"""Runtime configuration for the research queue scheduler."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_MODELS: tuple[str, ...] = ("sonnet", "opus", "haiku")

DEFAULT_ALLOWED_TOOLS: tuple[str, ...] = (
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "WebSearch",
    "WebFetch",
    "Bash(git add:*)",
    "Bash(git commit:*)",
    "Bash(git status:*)",
)

DEFAULT_LEASE_TTL_SECONDS = 6 * 60 * 60


@dataclass(slots=True)
class QueueDefaults:
    """Defaults applied to items created by enqueue and sync."""

    priority: int = 5
    model: str = "sonnet"
    max_attempts: int = 2


@dataclass(slots=True)
class SchedulerSettings:
    """Worker, lease and task-runner settings."""

    logs_dir: Path = Path("automation/logs")
    lease_path: Path = Path("automation/logs/worker.lock")
    lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS
    agent_command: str = "claude"
    task_timeout_seconds: int = 600
    max_output_chars: int = 50_000
    allowed_tools_path: Path = Path("automation/allowed-tools.json")
    push_timeout_seconds: int = 30
    protected_paths: tuple[str, ...] = ("CLAUDE.md",)


@dataclass(slots=True)
class ValidationSettings:
    """Thresholds for research artifact validation."""

    min_chars: int = 5_000
    typical_chars: int = 8_000
    min_source_urls: int = 3
    sessions_log: Path = Path("sessions.md")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".research_queue.db")
    project_root: Path = Path(".")
    sqlite_busy_timeout_ms: int = 5_000
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    queue: QueueDefaults = field(default_factory=QueueDefaults)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development.

        Relative paths for logs, the lease file, the allow-list and the session
        log are resolved against the project root.
        """

        project_root = Path(os.getenv("RESEARCH_QUEUE_PROJECT_ROOT", ".")).resolve()
        logs_dir = _project_path(
            project_root,
            os.getenv("RESEARCH_QUEUE_LOGS_DIR", "automation/logs"),
        )
        return cls(
            db_path=db_path or Path(os.getenv("RESEARCH_QUEUE_DB_PATH", ".research_queue.db")),
            project_root=project_root,
            sqlite_busy_timeout_ms=_env_int("RESEARCH_QUEUE_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            scheduler=SchedulerSettings(
                logs_dir=logs_dir,
                lease_path=_project_path(
                    project_root,
                    os.getenv("RESEARCH_QUEUE_LEASE_PATH", str(logs_dir / "worker.lock")),
                ),
                lease_ttl_seconds=_env_int(
                    "RESEARCH_QUEUE_LEASE_TTL_SECONDS",
                    DEFAULT_LEASE_TTL_SECONDS,
                ),
                agent_command=os.getenv("RESEARCH_QUEUE_AGENT_COMMAND", "claude"),
                task_timeout_seconds=_env_int("RESEARCH_QUEUE_TASK_TIMEOUT_SECONDS", 600),
                max_output_chars=_env_int("RESEARCH_QUEUE_MAX_OUTPUT_CHARS", 50_000),
                allowed_tools_path=_project_path(
                    project_root,
                    os.getenv(
                        "RESEARCH_QUEUE_ALLOWED_TOOLS_PATH",
                        "automation/allowed-tools.json",
                    ),
                ),
                push_timeout_seconds=_env_int("RESEARCH_QUEUE_PUSH_TIMEOUT_SECONDS", 30),
                protected_paths=_env_csv("RESEARCH_QUEUE_PROTECTED_PATHS", ("CLAUDE.md",)),
            ),
            validation=ValidationSettings(
                min_chars=_env_int("RESEARCH_QUEUE_MIN_CHARS", 5_000),
                typical_chars=_env_int("RESEARCH_QUEUE_TYPICAL_CHARS", 8_000),
                min_source_urls=_env_int("RESEARCH_QUEUE_MIN_SOURCE_URLS", 3),
                sessions_log=_project_path(
                    project_root,
                    os.getenv("RESEARCH_QUEUE_SESSIONS_LOG", "sessions.md"),
                ),
            ),
            queue=QueueDefaults(
                priority=_env_int("RESEARCH_QUEUE_DEFAULT_PRIORITY", 5),
                model=os.getenv("RESEARCH_QUEUE_DEFAULT_MODEL", "sonnet").strip().lower(),
                max_attempts=_env_int("RESEARCH_QUEUE_DEFAULT_MAX_ATTEMPTS", 2),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the scheduler cannot run with."""

        if self.sqlite_busy_timeout_ms < 0:
            raise ValueError("RESEARCH_QUEUE_SQLITE_BUSY_TIMEOUT_MS must be >= 0.")
        if self.scheduler.lease_ttl_seconds <= 0:
            raise ValueError("RESEARCH_QUEUE_LEASE_TTL_SECONDS must be > 0.")
        if self.scheduler.task_timeout_seconds <= 0:
            raise ValueError("RESEARCH_QUEUE_TASK_TIMEOUT_SECONDS must be > 0.")
        if self.scheduler.max_output_chars <= 0:
            raise ValueError("RESEARCH_QUEUE_MAX_OUTPUT_CHARS must be > 0.")
        if self.scheduler.push_timeout_seconds <= 0:
            raise ValueError("RESEARCH_QUEUE_PUSH_TIMEOUT_SECONDS must be > 0.")
        if not self.scheduler.agent_command.strip():
            raise ValueError("RESEARCH_QUEUE_AGENT_COMMAND must not be empty.")
        if self.validation.min_chars < 0:
            raise ValueError("RESEARCH_QUEUE_MIN_CHARS must be >= 0.")
        if self.validation.typical_chars < self.validation.min_chars:
            raise ValueError(
                "RESEARCH_QUEUE_TYPICAL_CHARS must be >= RESEARCH_QUEUE_MIN_CHARS.",
            )
        if self.queue.model not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported RESEARCH_QUEUE_DEFAULT_MODEL: {self.queue.model!r}. "
                f"Expected one of: {', '.join(SUPPORTED_MODELS)}.",
            )
        if self.queue.max_attempts < 1:
            raise ValueError("RESEARCH_QUEUE_DEFAULT_MAX_ATTEMPTS must be >= 1.")


def load_allowed_tools(path: Path, default: tuple[str, ...] = DEFAULT_ALLOWED_TOOLS) -> list[str]:
    """Read the tool allow-list file, falling back to the built-in list when absent."""

    if not path.exists():
        return list(default)
    try:
        raw = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ValueError(f"Allowed tools file is not valid JSON: {path}: {error}") from error
    tools = raw.get("tools") if isinstance(raw, dict) else None
    if not isinstance(tools, list) or not all(isinstance(tool, str) for tool in tools):
        raise ValueError(f"Allowed tools file must contain a 'tools' list of strings: {path}")
    return [tool for tool in tools if tool.strip()]


def _project_path(project_root: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return project_root / path


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())
