"""File-backed advisory lease guarding a scheduler run.

The lease file holds the acquisition time in epoch milliseconds. A holder that
crashed can never release, so a lease older than the TTL is taken over by the
next run. Two runs racing past the TTL check at the same moment is accepted:
everything the scheduler persists afterwards is gated behind idempotent
validation.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LeaseInfo:
    """Snapshot of the lease file as seen by this process."""

    acquired_at: datetime | None
    age_seconds: float | None
    stale: bool


class FileLease:
    """Exclusive run lease with TTL-based stale takeover."""

    def __init__(
        self,
        path: Path,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def read(self) -> LeaseInfo | None:
        """Return the current lease state, or None when no lease file exists."""

        try:
            raw = self.path.read_text("utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            acquired_ms = int(raw)
        except ValueError:
            return LeaseInfo(acquired_at=None, age_seconds=None, stale=True)
        age_seconds = self.clock() - acquired_ms / 1000
        return LeaseInfo(
            acquired_at=datetime.fromtimestamp(acquired_ms / 1000, tz=UTC),
            age_seconds=age_seconds,
            stale=age_seconds >= self.ttl_seconds,
        )

    def acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        current = self.read()
        if current is not None:
            if not current.stale:
                logger.warning(
                    "Lease held by another run (acquired %.0fs ago): %s",
                    current.age_seconds or 0.0,
                    self.path,
                )
                return False
            logger.warning("Stale lease found, taking over: %s", self.path)
            self.path.unlink(missing_ok=True)
        return self._create()

    def release(self) -> None:
        self.path.unlink(missing_ok=True)

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Acquire for the duration of the block; release on every exit path."""

        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def _create(self) -> bool:
        # Hard-link a fully written temp file so readers never see a partial stamp.
        stamp = str(int(self.clock() * 1000))
        staging = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        staging.write_text(stamp, "utf-8")
        try:
            os.link(staging, self.path)
        except FileExistsError:
            logger.warning("Lease acquired concurrently by another run: %s", self.path)
            return False
        finally:
            staging.unlink(missing_ok=True)
        return True
