from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from research_queue.config import (
    DEFAULT_ALLOWED_TOOLS,
    DEFAULT_LEASE_TTL_SECONDS,
    QueueDefaults,
    SchedulerSettings,
    Settings,
    ValidationSettings,
    load_allowed_tools,
)

pytestmark = [
    allure.epic("Research Queue"),
    allure.feature("Configuration"),
]


def test_from_env_resolves_relative_paths_against_project_root(
    research_env: Path,
    monkeypatch,
) -> None:
    monkeypatch.setenv("RESEARCH_QUEUE_LOGS_DIR", "var/logs")

    settings = Settings.from_env()

    assert settings.project_root == research_env.resolve()
    assert settings.scheduler.logs_dir == research_env.resolve() / "var/logs"
    assert settings.scheduler.lease_path == research_env.resolve() / "var/logs/worker.lock"
    assert settings.validation.sessions_log == research_env.resolve() / "sessions.md"
    assert settings.scheduler.lease_ttl_seconds == DEFAULT_LEASE_TTL_SECONDS


def test_from_env_reads_queue_defaults_and_protected_paths(research_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("RESEARCH_QUEUE_DEFAULT_PRIORITY", "2")
    monkeypatch.setenv("RESEARCH_QUEUE_DEFAULT_MODEL", " Opus ")
    monkeypatch.setenv("RESEARCH_QUEUE_DEFAULT_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("RESEARCH_QUEUE_PROTECTED_PATHS", "CLAUDE.md, AGENTS.md,")

    settings = Settings.from_env()

    assert settings.queue == QueueDefaults(priority=2, model="opus", max_attempts=3)
    assert settings.scheduler.protected_paths == ("CLAUDE.md", "AGENTS.md")


def test_from_env_rejects_non_integer_values(research_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("RESEARCH_QUEUE_LEASE_TTL_SECONDS", "six hours")

    with pytest.raises(ValueError, match="RESEARCH_QUEUE_LEASE_TTL_SECONDS"):
        Settings.from_env()


def test_explicit_db_path_overrides_environment(research_env: Path, tmp_path: Path) -> None:
    settings = Settings.from_env(db_path=tmp_path / "explicit.db")

    assert settings.db_path == tmp_path / "explicit.db"


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(scheduler=SchedulerSettings(lease_ttl_seconds=0)), "LEASE_TTL"),
        (Settings(scheduler=SchedulerSettings(task_timeout_seconds=0)), "TASK_TIMEOUT"),
        (Settings(scheduler=SchedulerSettings(agent_command="  ")), "AGENT_COMMAND"),
        (
            Settings(validation=ValidationSettings(min_chars=9000, typical_chars=8000)),
            "TYPICAL_CHARS",
        ),
        (Settings(queue=QueueDefaults(model="gpt")), "DEFAULT_MODEL"),
        (Settings(queue=QueueDefaults(max_attempts=0)), "MAX_ATTEMPTS"),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_validate_accepts_defaults() -> None:
    Settings().validate()


def test_load_allowed_tools_falls_back_to_builtin_list(tmp_path: Path) -> None:
    assert load_allowed_tools(tmp_path / "missing.json") == list(DEFAULT_ALLOWED_TOOLS)


def test_builtin_allowed_tools_only_grant_git_shell_commands() -> None:
    shell_tools = [tool for tool in DEFAULT_ALLOWED_TOOLS if tool.startswith("Bash(")]

    assert shell_tools == ["Bash(git add:*)", "Bash(git commit:*)", "Bash(git status:*)"]


def test_load_allowed_tools_reads_tools_list(tmp_path: Path) -> None:
    path = tmp_path / "allowed-tools.json"
    path.write_text(
        json.dumps({"tools": ["Read", "WebSearch", " "], "changelog": ["added WebSearch"]}),
        "utf-8",
    )

    assert load_allowed_tools(path) == ["Read", "WebSearch"]


@pytest.mark.parametrize("content", ["{not json", '{"tools": "Read"}', '["Read"]'])
def test_load_allowed_tools_rejects_malformed_file(tmp_path: Path, content: str) -> None:
    path = tmp_path / "allowed-tools.json"
    path.write_text(content, "utf-8")

    with pytest.raises(ValueError, match="Allowed tools file"):
        load_allowed_tools(path)
