"""Subprocess-based task runner invocation for one queue item."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
from pathlib import Path
from typing import IO, Protocol

from research_queue.log import ItemLogAdapter
from research_queue.scheduler.models import ExecutionResult, QueueItem

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124

# Only the error stream is scanned: research output legitimately discusses permissions.
_PERMISSION_DENIAL = re.compile(r"permission|not allowed|denied|unauthorized|disallowed", re.I)


class TaskExecutor(Protocol):
    """Protocol implemented by task runners."""

    def run(
        self,
        item: QueueItem,
        *,
        instructions: str,
        allowed_tools: list[str],
        attempt: int,
    ) -> ExecutionResult:
        """Run one attempt for ``item``; failures are returned, never raised."""


def build_run_args(*, command: str, model: str, allowed_tools: list[str]) -> list[str]:
    """Render the runner argv: headless mode, model, JSON output, tool allow-list."""

    head = shlex.split(command.strip())
    if not head:
        raise ValueError("Task runner command is empty.")
    return [
        *head,
        "-p",
        "--model",
        model,
        "--output-format",
        "json",
        "--allowedTools",
        *allowed_tools,
    ]


def detect_permission_denial(stderr: str) -> str | None:
    """Return the first permission-denial phrase found in ``stderr``."""

    match = _PERMISSION_DENIAL.search(stderr)
    return match.group(0) if match else None


class CliTaskExecutor:
    """Run the external research agent once per attempt, synchronously."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        command: str,
        cwd: Path,
        logs_dir: Path,
        timeout_seconds: int,
        max_output_chars: int = 50_000,
        poll_interval_seconds: float = 0.1,
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.logs_dir = logs_dir
        self.timeout_seconds = timeout_seconds
        self.max_output_chars = max_output_chars
        self.poll_interval_seconds = poll_interval_seconds

    def run(
        self,
        item: QueueItem,
        *,
        instructions: str,
        allowed_tools: list[str],
        attempt: int,
    ) -> ExecutionResult:
        log = ItemLogAdapter(logger, item.label)
        stdout_path = self.logs_dir / f"{item.label}-attempt{attempt}.stdout.log"
        stderr_path = self.logs_dir / f"{item.label}-attempt{attempt}.stderr.log"
        prompt_path = self.logs_dir / f"{item.label}-attempt{attempt}.prompt.txt"
        started = time.monotonic()

        exit_code: int | None = None
        timed_out = False
        error: str | None = None
        try:
            run_args = build_run_args(
                command=self.command,
                model=item.model,
                allowed_tools=allowed_tools,
            )
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            prompt_path.write_text(instructions, "utf-8")
            with (
                prompt_path.open("r", encoding="utf-8") as stdin_handle,
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out = self._run_subprocess(
                    run_args=run_args,
                    stdin_handle=stdin_handle,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                )
        except FileNotFoundError as exc:
            error = f"Task runner command not found: {exc.filename or self.command}"
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            error = f"Task runner failed to start: {exc}"

        duration_ms = int((time.monotonic() - started) * 1000)
        stdout = _read_bounded(stdout_path, limit=self.max_output_chars)
        stderr = _read_bounded(stderr_path, limit=self.max_output_chars)

        if error is None:
            if timed_out:
                error = f"Task runner timed out after {self.timeout_seconds}s"
            elif exit_code != 0:
                error = f"Task runner exited with code {exit_code}"
        success = error is None
        if not success:
            log.error("%s", error)
            if stderr.strip():
                log.error("stderr: %s", stderr.strip()[:500])

        permission_warning = detect_permission_denial(stderr)
        return ExecutionResult(
            success=success,
            exit_code=exit_code,
            timed_out=timed_out,
            duration_ms=duration_ms,
            stdout=stdout,
            stderr=stderr,
            error=error,
            permission_warning=permission_warning,
            stdout_path=stdout_path if stdout_path.exists() else None,
            stderr_path=stderr_path if stderr_path.exists() else None,
        )

    def _run_subprocess(
        self,
        *,
        run_args: list[str],
        stdin_handle: IO[str],
        stdout_handle: IO[str],
        stderr_handle: IO[str],
    ) -> tuple[int, bool]:
        process = subprocess.Popen(  # noqa: S603
            run_args,
            cwd=self.cwd,
            stdin=stdin_handle,
            stdout=stdout_handle,
            stderr=stderr_handle,
            text=True,
            encoding="utf-8",
        )
        start_monotonic = time.monotonic()

        while True:
            returncode = process.poll()
            if returncode is not None:
                return returncode, False
            if time.monotonic() - start_monotonic >= self.timeout_seconds:
                _terminate_process(process)
                return TIMEOUT_EXIT_CODE, True
            time.sleep(self.poll_interval_seconds)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _read_bounded(path: Path, *, limit: int) -> str:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            return handle.read(limit)
    except OSError:
        return ""
