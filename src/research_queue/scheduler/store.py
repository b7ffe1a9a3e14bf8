"""Persistent queue store for research items and their origin records."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Protocol

from sqlalchemy import func
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from research_queue.config import SUPPORTED_MODELS, QueueDefaults
from research_queue.scheduler.models import (
    TERMINAL_STATUSES,
    InsertResult,
    OriginContext,
    OriginStatus,
    QueueItem,
    QueueItemCreate,
    QueueItemStatus,
)
from research_queue.storage.alembic_runner import upgrade_head
from research_queue.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from research_queue.storage.sqlmodel_models import (
    RESEARCH_TOPIC_CATEGORY,
    OriginRecord,
    ResearchQueueItem,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"status", "attempts", "started_at", "completed_at", "output_file", "error"},
)


class QueueStoreError(RuntimeError):
    """Backing store unavailable or in a state the caller cannot act on."""


class QueueStore(Protocol):
    """Capability interface the scheduler consumes."""

    def get_next(self) -> QueueItem | None:
        """Return the most urgent queued item, or None when the queue is empty."""

    def get_running(self) -> list[QueueItem]:
        """Return every item currently marked running."""

    def insert(self, payload: QueueItemCreate) -> InsertResult:
        """Create a queued item; a second insert for the same origin is a no-op."""

    def update(self, item_id: int, **changes: object) -> None:
        """Atomically apply a partial update to one item."""

    def sync(self) -> int:
        """Promote newly eligible origin records; return how many were promoted."""

    def mark_origin_processed(self, item_id: int) -> None:
        """Flag the item's origin record as processed."""


def origin_key_for(description: str) -> str:
    """Dedup key for an origin: whitespace-collapsed, casefolded description."""

    return " ".join(description.split()).casefold()


class SQLiteQueueStore:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        defaults: QueueDefaults | None = None,
        busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.defaults = defaults or QueueDefaults()
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as error:
            raise QueueStoreError(f"Queue store schema migration failed: {error}") from error

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise QueueStoreError(f"Queue store unavailable: {error}") from error

    def get_next(self) -> QueueItem | None:
        with self._session() as session:
            row = session.exec(
                _joined()
                .where(ResearchQueueItem.status == QueueItemStatus.QUEUED.value)
                .order_by(
                    col(ResearchQueueItem.priority).asc(),
                    col(ResearchQueueItem.created_at).asc(),
                    col(ResearchQueueItem.id).asc(),
                )
                .limit(1),
            ).one_or_none()
            if row is None:
                return None
            return _to_queue_item(*row)

    def get_running(self) -> list[QueueItem]:
        with self._session() as session:
            rows = session.exec(
                _joined()
                .where(ResearchQueueItem.status == QueueItemStatus.RUNNING.value)
                .order_by(col(ResearchQueueItem.id).asc()),
            ).all()
            return [_to_queue_item(item, origin) for item, origin in rows]

    def get_item(self, item_id: int) -> QueueItem | None:
        with self._session() as session:
            row = session.exec(
                _joined().where(ResearchQueueItem.id == item_id),
            ).one_or_none()
            if row is None:
                return None
            return _to_queue_item(*row)

    def list_items(self, *, status: QueueItemStatus | None = None) -> list[QueueItem]:
        """List items in creation order, optionally filtered by status."""

        with self._session() as session:
            statement = _joined().order_by(
                col(ResearchQueueItem.created_at).asc(),
                col(ResearchQueueItem.id).asc(),
            )
            if status is not None:
                statement = statement.where(ResearchQueueItem.status == status.value)
            rows = session.exec(statement).all()
            return [_to_queue_item(item, origin) for item, origin in rows]

    def count_by_status(self) -> dict[QueueItemStatus, int]:
        counts = dict.fromkeys(QueueItemStatus, 0)
        with self._session() as session:
            rows = session.exec(
                select(ResearchQueueItem.status, func.count()).group_by(
                    col(ResearchQueueItem.status),
                ),
            ).all()
        for status, count in rows:
            counts[QueueItemStatus(status)] = int(count)
        return counts

    def insert(self, payload: QueueItemCreate) -> InsertResult:
        topic = payload.topic.strip()
        if not topic:
            raise ValueError("Queue item topic must not be empty.")
        if payload.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {payload.max_attempts}.")
        if payload.model not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported model {payload.model!r}; "
                f"expected one of {', '.join(SUPPORTED_MODELS)}.",
            )
        description = payload.description.strip() or topic
        origin_key = origin_key_for(description)

        with self._session() as session:
            try:
                return self._insert_for_origin(
                    session=session,
                    payload=payload,
                    topic=topic,
                    description=description,
                    origin_key=origin_key,
                )
            except IntegrityError:
                session.rollback()

        # Lost a race with a concurrent enqueue for the same origin.
        with self._session() as session:
            existing = self._find_item_for_origin_key(session=session, origin_key=origin_key)
            if existing is None:
                raise QueueStoreError(f"Queue insert conflicted for origin {origin_key!r}.")
            return InsertResult(item=existing, created=False)

    def _insert_for_origin(
        self,
        *,
        session: Session,
        payload: QueueItemCreate,
        topic: str,
        description: str,
        origin_key: str,
    ) -> InsertResult:
        now = utc_now()
        origin = session.exec(
            select(OriginRecord).where(
                OriginRecord.category == RESEARCH_TOPIC_CATEGORY,
                OriginRecord.origin_key == origin_key,
            ),
        ).one_or_none()
        if origin is None:
            origin = OriginRecord(
                category=RESEARCH_TOPIC_CATEGORY,
                raw_input=description,
                context=OriginContext(topic=topic, tags=tuple(payload.tags)).to_json(),
                status=OriginStatus.PENDING.value,
                origin_key=origin_key,
                created_at=now,
            )
            session.add(origin)
            session.flush()
        else:
            existing = session.exec(
                select(ResearchQueueItem).where(ResearchQueueItem.origin_id == origin.id),
            ).one_or_none()
            if existing is not None:
                logger.info(
                    "Origin %s already queued as item %s (status=%s); skipping insert",
                    origin.id,
                    existing.id,
                    existing.status,
                )
                return InsertResult(item=_to_queue_item(existing, origin), created=False)

        row = ResearchQueueItem(
            origin_id=origin.id,
            status=QueueItemStatus.QUEUED.value,
            priority=payload.priority,
            model=payload.model,
            max_attempts=payload.max_attempts,
            attempts=0,
            created_at=now,
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        session.refresh(origin)
        return InsertResult(item=_to_queue_item(row, origin), created=True)

    def _find_item_for_origin_key(self, *, session: Session, origin_key: str) -> QueueItem | None:
        row = session.exec(
            _joined().where(
                OriginRecord.category == RESEARCH_TOPIC_CATEGORY,
                OriginRecord.origin_key == origin_key,
            ),
        ).one_or_none()
        if row is None:
            return None
        return _to_queue_item(*row)

    def update(self, item_id: int, **changes: object) -> None:
        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported queue item fields: {', '.join(unknown)}")
        if not changes:
            return

        values: dict[str, object] = {}
        for name, value in changes.items():
            if isinstance(value, QueueItemStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = to_db_datetime(value)
            values[name] = value

        with self._session() as session:
            result = session.exec(
                sa_update(ResearchQueueItem)
                .where(
                    col(ResearchQueueItem.id) == item_id,
                    col(ResearchQueueItem.status).not_in(
                        [status.value for status in TERMINAL_STATUSES],
                    ),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise QueueStoreError(
                    f"Queue item {item_id} not found or already in a terminal state.",
                )
            session.commit()

    def sync(self) -> int:
        now = utc_now()
        with self._session() as session:
            origins = session.exec(
                select(OriginRecord)
                .where(
                    OriginRecord.category == RESEARCH_TOPIC_CATEGORY,
                    OriginRecord.status == OriginStatus.TRIAGED.value,
                    col(OriginRecord.id).not_in(sa_select(ResearchQueueItem.origin_id)),
                )
                .order_by(col(OriginRecord.created_at).asc(), col(OriginRecord.id).asc()),
            ).all()
            for origin in origins:
                session.add(
                    ResearchQueueItem(
                        origin_id=origin.id,
                        status=QueueItemStatus.QUEUED.value,
                        priority=self.defaults.priority,
                        model=self.defaults.model,
                        max_attempts=self.defaults.max_attempts,
                        attempts=0,
                        created_at=now,
                    ),
                )
            session.commit()
            return len(origins)

    def mark_origin_processed(self, item_id: int) -> None:
        now = utc_now()
        with self._session() as session:
            origin_id = session.exec(
                select(ResearchQueueItem.origin_id).where(ResearchQueueItem.id == item_id),
            ).one_or_none()
            if origin_id is None:
                raise QueueStoreError(f"Queue item not found: {item_id}")
            session.exec(
                sa_update(OriginRecord)
                .where(col(OriginRecord.id) == origin_id)
                .values(
                    status=OriginStatus.PROCESSED.value,
                    processed_at=to_db_datetime(now),
                ),
            )
            session.commit()

    def add_origin(
        self,
        raw_input: str,
        *,
        topic: str | None = None,
        tags: tuple[str, ...] = (),
        status: OriginStatus = OriginStatus.TRIAGED,
        category: str = RESEARCH_TOPIC_CATEGORY,
    ) -> int:
        """Capture an origin record; returns the existing id for a known origin key."""

        origin_key = origin_key_for(raw_input)
        with self._session() as session:
            existing = session.exec(
                select(OriginRecord).where(
                    OriginRecord.category == category,
                    OriginRecord.origin_key == origin_key,
                ),
            ).one_or_none()
            if existing is not None and existing.id is not None:
                return existing.id
            origin = OriginRecord(
                category=category,
                raw_input=raw_input.strip(),
                context=OriginContext(topic=topic, tags=tags).to_json(),
                status=status.value,
                origin_key=origin_key,
                created_at=utc_now(),
            )
            session.add(origin)
            session.commit()
            session.refresh(origin)
            if origin.id is None:
                raise QueueStoreError("Origin record insert did not return an id.")
            return origin.id

    def get_origin_status(self, origin_id: int) -> OriginStatus | None:
        with self._session() as session:
            status = session.exec(
                select(OriginRecord.status).where(OriginRecord.id == origin_id),
            ).one_or_none()
        return OriginStatus(status) if status is not None else None


def _joined():
    return select(ResearchQueueItem, OriginRecord).join(
        OriginRecord,
        col(OriginRecord.id) == col(ResearchQueueItem.origin_id),
    )


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_queue_item(row: ResearchQueueItem, origin: OriginRecord) -> QueueItem:
    if row.id is None or origin.id is None:
        raise QueueStoreError("Queue rows must be persisted before conversion.")
    context = OriginContext.parse(origin.context)
    return QueueItem(
        item_id=row.id,
        origin_id=origin.id,
        topic=context.topic or origin.raw_input,
        description=origin.raw_input,
        tags=context.tags,
        priority=row.priority,
        status=QueueItemStatus(row.status),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        model=row.model,
        added=to_utc_aware_datetime(row.created_at),
        started_at=_optional_datetime(row.started_at),
        completed_at=_optional_datetime(row.completed_at),
        output_file=row.output_file,
        error=row.error,
    )
