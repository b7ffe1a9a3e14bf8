"""Shared test fixtures."""

from __future__ import annotations

import logging
import shlex
import sys
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from research_queue.scheduler.models import QueueItem, QueueItemStatus
from research_queue.scheduler.store import SQLiteQueueStore

ECHO_AGENT_COMMAND = f"{shlex.quote(sys.executable)} -m research_queue.scheduler.echo_agent"


@pytest.fixture(autouse=True)
def _reset_package_logging() -> Iterator[None]:
    yield
    package_logger = logging.getLogger("research_queue")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[SQLiteQueueStore]:
    queue_store = SQLiteQueueStore(tmp_path / "queue.db")
    queue_store.init_schema()
    try:
        yield queue_store
    finally:
        queue_store.close()


@pytest.fixture()
def research_env(tmp_path: Path, monkeypatch) -> Path:
    """Point every RESEARCH_QUEUE_* setting at an isolated project root."""

    project_root = tmp_path / "project"
    project_root.mkdir()
    monkeypatch.setenv("RESEARCH_QUEUE_PROJECT_ROOT", str(project_root))
    monkeypatch.setenv("RESEARCH_QUEUE_DB_PATH", str(tmp_path / "queue.db"))
    monkeypatch.setenv("RESEARCH_QUEUE_AGENT_COMMAND", ECHO_AGENT_COMMAND)
    monkeypatch.setenv("RESEARCH_QUEUE_TASK_TIMEOUT_SECONDS", "60")
    for name in (
        "RESEARCH_QUEUE_LOGS_DIR",
        "RESEARCH_QUEUE_LEASE_PATH",
        "RESEARCH_QUEUE_LEASE_TTL_SECONDS",
        "RESEARCH_QUEUE_ALLOWED_TOOLS_PATH",
        "RESEARCH_QUEUE_SESSIONS_LOG",
        "RESEARCH_QUEUE_PROTECTED_PATHS",
        "RESEARCH_QUEUE_DEFAULT_PRIORITY",
        "RESEARCH_QUEUE_DEFAULT_MODEL",
        "RESEARCH_QUEUE_DEFAULT_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)
    return project_root


def make_item(**overrides: object) -> QueueItem:
    """Build a detached queue item for components that never touch the store."""

    values: dict[str, object] = {
        "item_id": 1,
        "origin_id": 7,
        "topic": "Agent memory architectures",
        "description": "How do long-running agents persist memory?",
        "tags": ("ai", "agents"),
        "priority": 5,
        "status": QueueItemStatus.RUNNING,
        "attempts": 1,
        "max_attempts": 2,
        "model": "sonnet",
        "added": datetime(2026, 10, 19, 8, 0, tzinfo=UTC),
    }
    values.update(overrides)
    return QueueItem(**values)  # type: ignore[arg-type]


def write_artifact(  # noqa: PLR0913
    path: Path,
    *,
    topic: str = "Agent memory architectures",
    body_chars: int = 9_000,
    sections: tuple[str, ...] = (
        "## Context",
        "## Findings",
        "## Open Questions",
        "## Extracted Principles",
    ),
    urls: tuple[str, ...] = (
        "https://example.com/a",
        "https://example.org/b",
        "https://example.net/c",
    ),
    header: bool = True,
) -> str:
    """Write a research artifact of roughly ``body_chars`` characters."""

    parts = []
    if header:
        parts.append(f"---\ndate: 2026-10-19\ntopic: {topic}\nstatus: complete\ntags: [ai]\n---\n")
    parts.append(f"# {topic}\n")
    parts.extend(f"{section}\n\nNotes.\n" for section in sections)
    parts.append("Sources: " + " ".join(urls) + "\n")
    content = "\n".join(parts)
    if len(content) < body_chars:
        content += "x" * (body_chars - len(content) - 1) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, "utf-8")
    return content
