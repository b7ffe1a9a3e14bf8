"""SQLModel ORM tables for the research queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

RESEARCH_TOPIC_CATEGORY = "research-topic"


class OriginRecord(SQLModel, table=True):
    __tablename__ = "origin_records"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "category",
            "origin_key",
            name="uq_origin_records_category_key",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    category: str = Field(index=True)
    raw_input: str = Field(sa_column=Column(Text, nullable=False))
    context: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str = Field(index=True)
    origin_key: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    processed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class ResearchQueueItem(SQLModel, table=True):
    __tablename__ = "research_queue_items"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    origin_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("origin_records.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    status: str = Field(index=True)
    priority: int = 5
    model: str = "sonnet"
    max_attempts: int = 2
    attempts: int = 0
    output_file: str | None = None
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
