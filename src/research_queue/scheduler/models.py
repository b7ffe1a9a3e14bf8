"""Domain models for the research queue and its execution outcomes."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import NamedTuple


class QueueItemStatus(str, Enum):
    """Durable item lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class OriginStatus(str, Enum):
    """Lifecycle of the record a queue item originates from."""

    PENDING = "pending"
    TRIAGED = "triaged"
    PROCESSED = "processed"


TERMINAL_STATUSES = frozenset({QueueItemStatus.COMPLETED, QueueItemStatus.FAILED})


@dataclass(slots=True, frozen=True)
class OriginContext:
    """Typed view of the JSON context stored alongside an origin record."""

    topic: str | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw: str | None) -> OriginContext:
        """Parse stored context text; anything malformed yields the defaults."""

        if not raw:
            return cls()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return cls()
        if not isinstance(payload, dict):
            return cls()
        topic = payload.get("topic")
        tags = payload.get("tags")
        return cls(
            topic=topic if isinstance(topic, str) and topic.strip() else None,
            tags=tuple(tag for tag in tags if isinstance(tag, str))
            if isinstance(tags, list)
            else (),
        )

    def to_json(self) -> str:
        return json.dumps(
            {"topic": self.topic, "tags": list(self.tags)},
            ensure_ascii=False,
        )


@dataclass(slots=True)
class QueueItemCreate:
    """Input payload for enqueuing a research topic."""

    topic: str
    description: str = ""
    tags: tuple[str, ...] = ()
    priority: int = 5
    model: str = "sonnet"
    max_attempts: int = 2


@dataclass(slots=True)
class QueueItem:
    """Readable queue item view for scheduler and CLI logic."""

    item_id: int
    origin_id: int
    topic: str
    description: str
    tags: tuple[str, ...]
    priority: int
    status: QueueItemStatus
    attempts: int
    max_attempts: int
    model: str
    added: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    output_file: str | None = None
    error: str | None = None

    @property
    def label(self) -> str:
        """Stable human-facing id used in logs and attempt file names."""

        return f"t-{self.origin_id}"

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class InsertResult(NamedTuple):
    item: QueueItem
    created: bool


@dataclass(slots=True)
class ValidationResult:
    """Outcome of artifact validation; defects are data, never exceptions."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    output_file: str | None = None

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one external task-runner invocation."""

    success: bool
    exit_code: int | None
    timed_out: bool
    duration_ms: int
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    permission_warning: str | None = None
    stdout_path: Path | None = None
    stderr_path: Path | None = None
