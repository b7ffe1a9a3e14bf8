"""Lease-guarded drain loop that runs queued research items one at a time."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from datetime import date
from pathlib import Path

from research_queue.log import ItemLogAdapter
from research_queue.scheduler.executor import TaskExecutor
from research_queue.scheduler.instructions import build_instructions, expected_artifact_path
from research_queue.scheduler.lease import FileLease
from research_queue.scheduler.models import (
    ExecutionResult,
    QueueItem,
    QueueItemStatus,
    ValidationResult,
)
from research_queue.scheduler.publisher import Publisher
from research_queue.scheduler.store import QueueStore
from research_queue.scheduler.validator import OutputValidator
from research_queue.storage.common import utc_now

logger = logging.getLogger(__name__)

CRASH_RECOVERY_ERROR = "Worker crashed or timed out"

_PROMPT_PREVIEW_CHARS = 500
_STDERR_PREVIEW_CHARS = 5_000


@dataclass(slots=True)
class SchedulerRunSummary:
    """Aggregate run counters for CLI reporting."""

    lease_held: bool = False
    synced: int = 0
    recovered: int = 0
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


def _utc_today() -> date:
    return utc_now().date()


class ResearchScheduler:
    """Drains the queue under an exclusive lease with crash recovery."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: QueueStore,
        lease: FileLease,
        executor: TaskExecutor,
        validator: OutputValidator,
        publisher: Publisher,
        allowed_tools: Callable[[], list[str]],
        logs_dir: Path,
        protected_paths: tuple[str, ...] = ("CLAUDE.md",),
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.store = store
        self.lease = lease
        self.executor = executor
        self.validator = validator
        self.publisher = publisher
        self.allowed_tools = allowed_tools
        self.logs_dir = logs_dir
        self.protected_paths = protected_paths
        self.today = today

    def run(self, *, max_items: int | None = None) -> SchedulerRunSummary:
        """Sync, recover, and drain the queue; re-raises after crash recovery.

        Args:
            max_items: Stop after processing this many items (None = drain the queue).
        """

        summary = SchedulerRunSummary()
        logger.info("Worker starting")
        with self.lease.hold() as acquired:
            if not acquired:
                logger.warning("Lease held by another worker, skipping")
                summary.lease_held = True
                return summary
            try:
                self._drain(summary=summary, max_items=max_items)
            except BaseException:
                logger.exception("Worker crashed")
                self._recover_after_crash()
                raise
        return summary

    def recover_stuck_items(self) -> int:
        """Resolve every running item to queued or failed by its attempt budget."""

        recovered = 0
        for item in self.store.get_running():
            log = ItemLogAdapter(logger, item.label)
            if item.exhausted:
                self.store.update(
                    item.item_id,
                    status=QueueItemStatus.FAILED,
                    error=CRASH_RECOVERY_ERROR,
                )
                log.warning("Recovered stuck item, max attempts reached; marking as failed")
            else:
                self.store.update(item.item_id, status=QueueItemStatus.QUEUED)
                log.warning(
                    "Recovered stuck item, re-queued (attempt %d/%d)",
                    item.attempts,
                    item.max_attempts,
                )
            recovered += 1
        return recovered

    def process_item(self, item: QueueItem) -> QueueItemStatus:
        """Run one picked item end to end and return the status it settled in."""

        log = ItemLogAdapter(logger, item.label)
        attempt = item.attempts + 1
        log.info(
            'Picked "%s" (priority %d, attempt %d/%d)',
            item.topic,
            item.priority,
            attempt,
            item.max_attempts,
        )
        started_at = utc_now()
        self.store.update(
            item.item_id,
            status=QueueItemStatus.RUNNING,
            attempts=attempt,
            started_at=started_at,
        )
        running = replace(
            item,
            status=QueueItemStatus.RUNNING,
            attempts=attempt,
            started_at=started_at,
        )
        try:
            status = self._execute_and_settle(item=running, log=log)
        finally:
            self.publisher.restore(self.protected_paths)
        log.info("Done, status: %s", status.value)
        return status

    def _drain(self, *, summary: SchedulerRunSummary, max_items: int | None) -> None:
        summary.synced = self.store.sync()
        if summary.synced:
            logger.info("Synced %d newly eligible origin record(s) into the queue", summary.synced)
        summary.recovered = self.recover_stuck_items()

        while max_items is None or summary.processed < max_items:
            # Re-read every iteration: items may be enqueued while a task runs.
            item = self.store.get_next()
            if item is None:
                break
            status = self.process_item(item)
            summary.processed += 1
            if status == QueueItemStatus.COMPLETED:
                summary.completed += 1
            elif status == QueueItemStatus.FAILED:
                summary.failed += 1
            else:
                summary.retried += 1

        if summary.processed == 0:
            logger.info("No queued items, nothing to do")
        else:
            logger.info("Run complete, processed %d item(s)", summary.processed)

    def _recover_after_crash(self) -> None:
        try:
            recovered = self.recover_stuck_items()
        except Exception:
            logger.exception("Recovery after crash failed; running items may remain")
            return
        if recovered:
            logger.warning("Reset %d running item(s) after crash", recovered)

    def _execute_and_settle(self, *, item: QueueItem, log: ItemLogAdapter) -> QueueItemStatus:
        day = self.today()
        artifact_path = expected_artifact_path(item, day)
        instructions = build_instructions(
            item,
            artifact_path=artifact_path,
            day=day,
            protected_paths=self.protected_paths,
        )
        execution = self.executor.run(
            item,
            instructions=instructions,
            allowed_tools=self.allowed_tools(),
            attempt=item.attempts,
        )
        if execution.permission_warning is not None:
            log.warning(
                "Possible permission issue in runner stderr (%r); check the attempt log",
                execution.permission_warning,
            )
        duration_seconds = execution.duration_ms / 1000
        log.info(
            "Runner finished in %.1fs (exit=%s). Validating...",
            duration_seconds,
            "ok" if execution.success else "fail",
        )

        validation = self.validator.validate(item, artifact_path)
        self._write_attempt_log(
            item=item,
            instructions=instructions,
            execution=execution,
            validation=validation,
            log=log,
        )

        if validation.valid:
            self._complete(
                item=item,
                artifact_path=artifact_path,
                validation=validation,
                duration_seconds=duration_seconds,
                log=log,
            )
            return QueueItemStatus.COMPLETED
        return self._retry_or_fail(item=item, validation=validation, log=log)

    def _complete(
        self,
        *,
        item: QueueItem,
        artifact_path: str,
        validation: ValidationResult,
        duration_seconds: float,
        log: ItemLogAdapter,
    ) -> None:
        self.store.update(
            item.item_id,
            status=QueueItemStatus.COMPLETED,
            completed_at=utc_now(),
            output_file=artifact_path,
            error=None,
        )
        log.info("Validation passed in %.1fs", duration_seconds)
        if validation.warnings:
            log.warning("Warnings: %s", "; ".join(validation.warnings))
        self.store.mark_origin_processed(item.item_id)

        published = self.publisher.push()
        if published.ok:
            log.info("Pushed to remote")
        else:
            log.error("Git push failed (commit is local): %s", published.detail)

    def _retry_or_fail(
        self,
        *,
        item: QueueItem,
        validation: ValidationResult,
        log: ItemLogAdapter,
    ) -> QueueItemStatus:
        error_summary = "; ".join(validation.errors)
        log.error("Validation failed: %s", error_summary)
        if item.exhausted:
            self.store.update(item.item_id, status=QueueItemStatus.FAILED, error=error_summary)
            log.error("Max attempts (%d) reached, marking as failed", item.max_attempts)
            return QueueItemStatus.FAILED

        self.store.update(item.item_id, status=QueueItemStatus.QUEUED, error=error_summary)
        log.warning("Re-queued for retry (attempt %d/%d)", item.attempts, item.max_attempts)
        return QueueItemStatus.QUEUED

    def _write_attempt_log(
        self,
        *,
        item: QueueItem,
        instructions: str,
        execution: ExecutionResult,
        validation: ValidationResult,
        log: ItemLogAdapter,
    ) -> None:
        path = self.logs_dir / f"{item.label}-attempt{item.attempts}.json"
        payload = {
            "item": asdict(item),
            "prompt": instructions[:_PROMPT_PREVIEW_CHARS] + "...",
            "output": execution.stdout,
            "stderr": execution.stderr[:_STDERR_PREVIEW_CHARS],
            "duration_ms": execution.duration_ms,
            "success": execution.success,
            "exit_code": execution.exit_code,
            "timed_out": execution.timed_out,
            "error": execution.error,
            "permission_issue": execution.permission_warning is not None,
            "validation": {
                "valid": validation.valid,
                "errors": validation.errors,
                "warnings": validation.warnings,
                "output_file": validation.output_file,
            },
            "timestamp": utc_now().isoformat(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n",
                "utf-8",
            )
        except OSError as error:
            log.warning("Could not write attempt log %s: %s", path, error)
