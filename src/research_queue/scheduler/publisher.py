"""Version-control side effects the scheduler triggers around each item."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PublishResult:
    ok: bool
    detail: str = ""


class Publisher(Protocol):
    """Protocol implemented by publishers."""

    def push(self) -> PublishResult:
        """Publish the runner's local commit; report failure instead of raising."""

    def restore(self, paths: tuple[str, ...]) -> None:
        """Discard runner edits to protected files; best effort."""


class GitPublisher:
    """Push and checkout through the ``git`` CLI in the project root."""

    def __init__(self, *, repo_root: Path, push_timeout_seconds: int = 30) -> None:
        self.repo_root = repo_root
        self.push_timeout_seconds = push_timeout_seconds

    def push(self) -> PublishResult:
        try:
            completed = subprocess.run(  # noqa: S603
                ["git", "push"],  # noqa: S607
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                timeout=self.push_timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return PublishResult(
                ok=False,
                detail=f"git push timed out after {self.push_timeout_seconds}s",
            )
        except OSError as error:
            return PublishResult(ok=False, detail=f"git push could not start: {error}")
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout).strip()
            return PublishResult(
                ok=False,
                detail=f"git push exited with code {completed.returncode}: {detail[:200]}",
            )
        return PublishResult(ok=True)

    def restore(self, paths: tuple[str, ...]) -> None:
        for path in paths:
            try:
                completed = subprocess.run(  # noqa: S603
                    ["git", "checkout", "--", path],  # noqa: S607
                    cwd=self.repo_root,
                    capture_output=True,
                    text=True,
                    timeout=self.push_timeout_seconds,
                    check=False,
                )
            except (OSError, subprocess.SubprocessError) as error:
                logger.debug("Protected file restore skipped for %s: %s", path, error)
                continue
            if completed.returncode != 0:
                # Nothing to restore is the common case.
                logger.debug(
                    "Protected file restore was a no-op for %s: %s",
                    path,
                    completed.stderr.strip(),
                )
