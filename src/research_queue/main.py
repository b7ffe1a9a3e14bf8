"""CLI entrypoint for research-queue."""

from pathlib import Path

import rich_click as click

from research_queue import __version__
from research_queue.config import SUPPORTED_MODELS
from research_queue.scheduler.controllers import (
    EnqueueCommand,
    ResearchQueueCliController,
    StatusCommand,
    SyncCommand,
    WorkerCommand,
)
from research_queue.scheduler.store import QueueStoreError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ResearchQueueCliController()


@click.group()
@click.version_option(version=__version__, prog_name="research-queue")
def research_queue() -> None:
    """Research queue scheduler CLI."""


@research_queue.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-items",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many items instead of draining the queue.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def worker(db_path: Path | None, max_items: int | None, verbose: bool) -> None:
    """Drain the research queue under the worker lease.

    Exits 0 when the queue is drained, empty, or the lease is held by another run.
    """

    try:
        lines = CONTROLLER.run_worker(
            WorkerCommand(db_path=db_path, max_items=max_items, verbose=verbose),
        )
    except Exception as error:
        raise click.ClickException(f"Worker crashed: {error}") from error
    _emit_lines(lines)


@research_queue.command("enqueue")
@click.argument("topic")
@click.argument("description", required=False, default=None)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--tags", default="", help="Comma-separated tags, for example `ai,agents`.")
@click.option(
    "--priority",
    type=int,
    default=None,
    help="Lower runs first. Defaults to RESEARCH_QUEUE_DEFAULT_PRIORITY (5).",
)
@click.option(
    "--model",
    type=click.Choice(SUPPORTED_MODELS, case_sensitive=False),
    default=None,
    help="Model for the research session.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Attempt budget for this item.",
)
def enqueue(  # noqa: PLR0913
    topic: str,
    description: str | None,
    db_path: Path | None,
    tags: str,
    priority: int | None,
    model: str | None,
    max_attempts: int | None,
) -> None:
    """Add a research topic to the queue."""

    command = EnqueueCommand(
        db_path=db_path,
        topic=topic,
        description=description,
        tags=tuple(tag.strip() for tag in tags.split(",") if tag.strip()),
        priority=priority,
        model=model,
        max_attempts=max_attempts,
    )
    try:
        lines = CONTROLLER.enqueue(command)
    except (QueueStoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@research_queue.command("sync")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sync(db_path: Path | None) -> None:
    """Promote triaged research-topic records into the queue."""

    try:
        lines = CONTROLLER.sync(SyncCommand(db_path=db_path))
    except QueueStoreError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@research_queue.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of items to print.",
)
def status(db_path: Path | None, limit: int) -> None:
    """Show queue counts, lease state and items."""

    try:
        lines = CONTROLLER.status(StatusCommand(db_path=db_path, limit=limit))
    except QueueStoreError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    research_queue()
