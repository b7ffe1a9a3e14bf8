"""Controllers for research queue CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from research_queue.config import Settings, load_allowed_tools
from research_queue.log import configure_logging
from research_queue.scheduler.executor import CliTaskExecutor
from research_queue.scheduler.lease import FileLease
from research_queue.scheduler.models import QueueItem, QueueItemCreate, QueueItemStatus
from research_queue.scheduler.publisher import GitPublisher
from research_queue.scheduler.store import SQLiteQueueStore
from research_queue.scheduler.validator import OutputValidator
from research_queue.scheduler.worker import ResearchScheduler
from research_queue.storage.alembic_runner import current_revision

_STATUS_DISPLAY_ORDER = (
    QueueItemStatus.RUNNING,
    QueueItemStatus.QUEUED,
    QueueItemStatus.FAILED,
    QueueItemStatus.COMPLETED,
)


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for one scheduler run."""

    db_path: Path | None
    max_items: int | None = None
    verbose: bool = False


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for manual topic enqueue."""

    db_path: Path | None
    topic: str
    description: str | None
    tags: tuple[str, ...]
    priority: int | None
    model: str | None
    max_attempts: int | None


@dataclass(slots=True)
class SyncCommand:
    db_path: Path | None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for the queue overview."""

    db_path: Path | None
    limit: int = 50


class ResearchQueueCliController:
    """Runs the worker and the queue inspection commands."""

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        configure_logging(
            log_file=settings.scheduler.logs_dir / "worker.log",
            verbose=command.verbose,
        )
        with _store(settings) as store:
            scheduler = build_scheduler(settings=settings, store=store)
            summary = scheduler.run(max_items=command.max_items)

        if summary.lease_held:
            return ["Worker skipped: lease is held by another run."]
        return [
            "Worker summary: "
            f"synced={summary.synced} recovered={summary.recovered} "
            f"processed={summary.processed} completed={summary.completed} "
            f"retried={summary.retried} failed={summary.failed}",
        ]

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        defaults = settings.queue
        payload = QueueItemCreate(
            topic=command.topic,
            description=command.description or command.topic,
            tags=command.tags,
            priority=defaults.priority if command.priority is None else command.priority,
            model=(command.model or defaults.model).strip().lower(),
            max_attempts=(
                defaults.max_attempts if command.max_attempts is None else command.max_attempts
            ),
        )
        with _store(settings) as store:
            result = store.insert(payload)
            depth = store.count_by_status()[QueueItemStatus.QUEUED]

        item = result.item
        if not result.created:
            return [
                f'Already queued: {item.label} "{item.topic}" (status={item.status.value})',
                f"Queue depth: {depth} queued",
            ]
        return [
            f'Enqueued {item.label}: "{item.topic}"',
            f"  id={item.item_id} priority={item.priority} model={item.model} "
            f"max_attempts={item.max_attempts} tags={', '.join(item.tags) or '-'}",
            f"Queue depth: {depth} queued",
        ]

    def sync(self, command: SyncCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            promoted = store.sync()
        return [f"Synced {promoted} new research topic(s) into the queue."]

    def status(self, command: StatusCommand) -> list[str]:
        """Render per-status counts, lease state and the item table."""

        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            counts = store.count_by_status()
            items = store.list_items()
        revision = current_revision(
            settings.db_path,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )

        lines = [
            "Queue: " + " ".join(f"{status.value}={counts[status]}" for status in QueueItemStatus),
            _lease_line(settings),
            f"Schema: {revision or '-'}",
        ]

        completed = [item for item in items if item.status == QueueItemStatus.COMPLETED]
        if completed:
            last = max(completed, key=lambda item: (item.completed_at or item.added, item.item_id))
            finished = last.completed_at.isoformat() if last.completed_at else "-"
            lines.append(
                f'Last completed: {last.label} "{last.topic}" at {finished} '
                f"-> {last.output_file or '-'}",
            )
        else:
            lines.append("Last completed: -")

        ordered = _ordered_for_display(items)[: max(1, command.limit)]
        lines.append(f"Items: {len(items)}")
        lines.extend(_item_line(item) for item in ordered)
        return lines


def build_scheduler(*, settings: Settings, store: SQLiteQueueStore) -> ResearchScheduler:
    """Wire production components from settings."""

    scheduler_settings = settings.scheduler
    return ResearchScheduler(
        store=store,
        lease=FileLease(
            scheduler_settings.lease_path,
            ttl_seconds=scheduler_settings.lease_ttl_seconds,
        ),
        executor=CliTaskExecutor(
            command=scheduler_settings.agent_command,
            cwd=settings.project_root,
            logs_dir=scheduler_settings.logs_dir,
            timeout_seconds=scheduler_settings.task_timeout_seconds,
            max_output_chars=scheduler_settings.max_output_chars,
        ),
        validator=OutputValidator(
            project_root=settings.project_root,
            sessions_log=settings.validation.sessions_log,
            min_chars=settings.validation.min_chars,
            typical_chars=settings.validation.typical_chars,
            min_source_urls=settings.validation.min_source_urls,
        ),
        publisher=GitPublisher(
            repo_root=settings.project_root,
            push_timeout_seconds=scheduler_settings.push_timeout_seconds,
        ),
        allowed_tools=partial(load_allowed_tools, scheduler_settings.allowed_tools_path),
        logs_dir=scheduler_settings.logs_dir,
        protected_paths=scheduler_settings.protected_paths,
    )


def _lease_line(settings: Settings) -> str:
    lease = FileLease(
        settings.scheduler.lease_path,
        ttl_seconds=settings.scheduler.lease_ttl_seconds,
    )
    info = lease.read()
    if info is None:
        return "Lease: free"
    if info.age_seconds is None:
        return "Lease: unreadable (treated as stale)"
    state = "stale" if info.stale else "held"
    return f"Lease: {state} (acquired {info.age_seconds:.0f}s ago)"


def _ordered_for_display(items: list[QueueItem]) -> list[QueueItem]:
    rank = {status: index for index, status in enumerate(_STATUS_DISPLAY_ORDER)}
    return sorted(
        items,
        key=lambda item: (rank[item.status], item.priority, item.added, item.item_id),
    )


def _item_line(item: QueueItem) -> str:
    line = (
        f"  {item.label} {item.status.value:<9} p{item.priority} "
        f"attempts={item.attempts}/{item.max_attempts} model={item.model} "
        f'"{item.topic}"'
    )
    if item.status == QueueItemStatus.FAILED and item.error:
        line += f" error={item.error[:120]}"
    elif item.status == QueueItemStatus.COMPLETED and item.output_file:
        line += f" -> {item.output_file}"
    return line


@contextmanager
def _store(settings: Settings) -> Iterator[SQLiteQueueStore]:
    store = SQLiteQueueStore(
        settings.db_path,
        defaults=settings.queue,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
